from __future__ import annotations

import logging

from nicegui import ui

from yoctoprint_ui.services.api_client import TransportError
from yoctoprint_ui.services.console_stream import ConsoleMessage, ConsoleStream

logger = logging.getLogger(__name__)


class ConsolePage:
    """Printer console: live log plus a line input."""

    def __init__(self, stream: ConsoleStream) -> None:
        self.stream = stream
        self.console_log: ui.log | None = None
        self.line_input: ui.input | None = None

    def push(self, msg: ConsoleMessage) -> None:
        if self.console_log is None:
            return
        prefix = ">> " if msg.is_echo else ""
        self.console_log.push(f"{prefix}{msg.line.rstrip()}")

    async def send(self) -> None:
        if not self.line_input or not self.line_input.value:
            return
        line = str(self.line_input.value)
        try:
            await self.stream.send_line(line)
            self.line_input.value = ""
        except TransportError as e:
            ui.notify(str(e), color="negative")
            logger.error("Console send failed: %s", e)

    def build(self) -> None:
        with ui.card().classes("w-full"):
            ui.label("Console").classes("text-md font-medium")
            self.console_log = ui.log(max_lines=500).classes("w-full h-64")
            with ui.row().classes("items-center gap-2 w-full"):
                self.line_input = ui.input(placeholder="G-code, e.g. M115").classes(
                    "grow"
                )
                self.line_input.on("keydown.enter", self.send)
                ui.button("Send", on_click=self.send)
