from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote, urlencode

import aiohttp

from yoctoprint_ui.constants import (
    API_OK_REPLY,
    API_PORT,
    API_PREFIX,
    CONSOLE_PATH,
    PRINTER_HOST,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for printer host API failures."""


class TransportError(ApiError):
    """Connection refused, network unreachable, or request aborted."""


class DecodeError(ApiError):
    """Response body is not the JSON the caller expected."""


class RefreshHandle(Protocol):
    """Anything that can be asked to refresh printer status out of band."""

    def request_refresh(self) -> asyncio.Task | None: ...


@dataclass(frozen=True)
class CommandResponse:
    """Unparsed result of a command request."""

    status: int
    text: str

    @classmethod
    def from_body(cls, status: int, body: bytes) -> CommandResponse:
        # Undecodable bytes in a host error text become U+FFFD
        return cls(status=status, text=body.decode("utf-8", errors="replace"))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def accepted(self) -> bool:
        """True when the host answered 2xx with its OK reply."""
        return self.ok and self.text.strip() == API_OK_REPLY

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError as e:
            raise DecodeError(f"Invalid JSON in command response: {e}") from e


class PrinterApiClient:
    """
    HTTP client for the printer host REST API (http://<host>:5000/api/).

    Every request runs in its own task and is awaited through asyncio.shield,
    so cancelling the caller never aborts a request already on the wire; the
    request completes and its result is discarded. close() waits for those
    requests before closing the session.
    """

    def __init__(self, host: str = PRINTER_HOST, port: int = API_PORT) -> None:
        self.host = host
        self.port = port
        self._session: aiohttp.ClientSession | None = None
        self._inflight: set[asyncio.Task] = set()

    async def __aenter__(self) -> PrinterApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ---------- URLs ----------

    def api_url(self) -> str:
        return f"http://{self.host}:{self.port}/{API_PREFIX}"

    def console_url(self) -> str:
        return f"ws://{self.host}:{self.port}/{API_PREFIX}{CONSOLE_PATH}"

    # ---------- Session ----------

    def session(self) -> aiohttp.ClientSession:
        """Return the shared session, creating it on first use."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ---------- Requests ----------

    async def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        data: bytes | None = None,
        content_type: str | None = None,
    ) -> tuple[int, bytes]:
        headers = {"Accept": "application/json"}
        payload = data
        if body is not None:
            headers["Content-Type"] = "application/json"
            payload = json.dumps(body).encode("utf-8")
        elif content_type is not None:
            headers["Content-Type"] = content_type
        url = self.api_url() + path
        logger.debug("%s %s", method, url)
        try:
            async with self.session().request(
                method, url, headers=headers, data=payload
            ) as resp:
                return resp.status, await resp.read()
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

    def _request_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        # Retrieve the outcome so orphaned requests don't warn on GC
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Detached request ended with: %s", task.exception())

    async def _keepalive(self, *args, **kwargs) -> tuple[int, bytes]:
        task = asyncio.create_task(self._request(*args, **kwargs))
        self._inflight.add(task)
        task.add_done_callback(self._request_done)
        return await asyncio.shield(task)

    async def fetch_api(self, method: str, path: str, body: Any = None) -> Any:
        """
        Issue a request and return the parsed JSON body.

        The HTTP status code is not checked: any response whose body parses
        as JSON is returned as-is.

        Raises:
            TransportError: the request could not be completed
            DecodeError: the body is not valid UTF-8 JSON
        """
        _, raw = await self._keepalive(method, path, body)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(f"{method} {path}: invalid JSON: {e}") from e

    async def send_api_cmd(
        self,
        method: str,
        path: str,
        body: Any = None,
        refresh: RefreshHandle | None = None,
    ) -> CommandResponse:
        """
        Issue a command request without parsing the response body.

        On success, asks ``refresh`` for an immediate status refresh and does
        not wait for it. With no handle the refresh step is skipped.

        Raises:
            TransportError: the request could not be completed
        """
        status, raw = await self._keepalive(method, path, body)
        if refresh is not None:
            refresh.request_refresh()
        return CommandResponse.from_body(status, raw)

    # ---------- Printer commands ----------

    async def home(self, refresh: RefreshHandle | None = None) -> CommandResponse:
        return await self.send_api_cmd("POST", "home", refresh=refresh)

    async def move_relative(
        self,
        x: float | None = None,
        y: float | None = None,
        z: float | None = None,
        e: float | None = None,
        refresh: RefreshHandle | None = None,
    ) -> CommandResponse:
        """Jog by the given offsets (mm); omitted axes stay put."""
        axes = {"x": x, "y": y, "z": z, "e": e}
        body = {k: float(v) for k, v in axes.items() if v is not None}
        return await self.send_api_cmd("POST", "move", body, refresh=refresh)

    async def set_temperature(
        self,
        to_set: str,
        target: float,
        index: int | None = None,
        refresh: RefreshHandle | None = None,
    ) -> CommandResponse:
        """Set a heater target; ``to_set`` is a probe name such as HOTEND or BED."""
        body: dict[str, Any] = {"to_set": to_set.upper(), "target": float(target)}
        if index is not None:
            body["index"] = int(index)
        return await self.send_api_cmd(
            "POST", "set_temperature", body, refresh=refresh
        )

    async def list_gcode(self) -> list[str]:
        data = await self.fetch_api("GET", "list_gcode")
        if not isinstance(data, dict):
            raise DecodeError(f"list_gcode: expected an object, got {type(data).__name__}")
        return [str(f) for f in data.get("files") or []]

    async def upload_gcode(
        self,
        filename: str,
        data: bytes,
        refresh: RefreshHandle | None = None,
    ) -> CommandResponse:
        path = "upload_gcode?" + urlencode({"filename": filename}, quote_via=quote)
        status, raw = await self._keepalive(
            "PUT", path, data=data, content_type="application/octet-stream"
        )
        if refresh is not None:
            refresh.request_refresh()
        return CommandResponse.from_body(status, raw)


# Module-level singleton bound to the configured printer host
client = PrinterApiClient(host=PRINTER_HOST, port=API_PORT)


def api_url() -> str:
    return client.api_url()


def console_url() -> str:
    return client.console_url()


async def fetch_api(method: str, path: str, body: Any = None) -> Any:
    return await client.fetch_api(method, path, body)


async def send_api_cmd(
    method: str,
    path: str,
    body: Any = None,
    refresh: RefreshHandle | None = None,
) -> CommandResponse:
    return await client.send_api_cmd(method, path, body, refresh=refresh)
