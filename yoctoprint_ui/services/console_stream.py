from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

import aiohttp

from yoctoprint_ui.services.api_client import (
    PrinterApiClient,
    TransportError,
    client as default_client,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsoleMessage:
    """One console frame from the printer host."""

    line: str
    is_echo: bool = False

    @classmethod
    def from_json(cls, raw: str) -> ConsoleMessage:
        data = json.loads(raw)
        return cls(line=str(data["line"]), is_echo=bool(data.get("is_echo", False)))


class ConsoleStream:
    """Client for the printer host console (ws://<host>:5000/api/console)."""

    def __init__(self, api: PrinterApiClient | None = None) -> None:
        self.api = api or default_client
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def messages(self) -> AsyncIterator[ConsoleMessage]:
        """
        Connect and yield console messages until the socket closes.

        Frames that are not valid console JSON are logged and skipped.

        Raises:
            TransportError: the connection failed or the socket reported an error
        """
        url = self.api.console_url()
        try:
            async with self.api.session().ws_connect(url) as ws:
                self._ws = ws
                logger.info("Console connected: %s", url)
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        try:
                            yield ConsoleMessage.from_json(msg.data)
                        except (ValueError, KeyError, TypeError) as e:
                            logger.debug("Bad console frame %r: %s", msg.data, e)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        raise TransportError(f"Console socket error: {ws.exception()}")
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(f"Console connection to {url} failed: {e}") from e
        finally:
            self._ws = None

    async def send_line(self, line: str) -> None:
        """Send a raw G-code line to the printer."""
        if not self.connected:
            raise TransportError("Console is not connected")
        if not line.endswith("\n"):
            line += "\n"
        try:
            await self._ws.send_str(line)
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(f"Console send failed: {e}") from e
