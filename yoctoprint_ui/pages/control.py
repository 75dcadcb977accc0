from __future__ import annotations

import logging
from functools import partial

from nicegui import events, ui

from yoctoprint_ui.constants import JOG_STEPS_MM, TEMPERATURE_TARGETS
from yoctoprint_ui.services.api_client import CommandResponse, RefreshHandle, client
from yoctoprint_ui.state import printer_state

logger = logging.getLogger(__name__)


class ControlPage:
    """Manual control: home, jog, heater targets, G-code files."""

    def __init__(self) -> None:
        # Set by main once the status poller is started
        self.refresh: RefreshHandle | None = None
        self.step_toggle: ui.toggle | None = None
        self.temp_target_select: ui.select | None = None
        self.temp_input: ui.number | None = None
        self.files_select: ui.select | None = None

    # ---- Actions ----

    def _report(self, what: str, resp: CommandResponse, done: str | None = None) -> bool:
        """Notify the outcome of a command; the host answers "OK!" or an error text."""
        if not resp.accepted:
            reason = resp.text.strip() or f"HTTP {resp.status}"
            ui.notify(f"{what} failed: {reason}", color="negative")
            logger.error("%s rejected by host (HTTP %s): %s", what, resp.status, reason)
            return False
        if done:
            ui.notify(done, color="primary")
        return True

    async def home(self) -> None:
        try:
            resp = await client.home(refresh=self.refresh)
        except Exception as e:
            ui.notify(f"Home failed: {e}", color="negative")
            logger.error("Home failed: %s", e)
            return
        if self._report("Home", resp, "Homing"):
            logger.info("HOME sent")

    async def jog(self, axis: str, direction: int) -> None:
        step = float(self.step_toggle.value) if self.step_toggle else JOG_STEPS_MM[0]
        offset = step * direction
        try:
            resp = await client.move_relative(**{axis: offset}, refresh=self.refresh)
        except Exception as e:
            ui.notify(f"Move failed: {e}", color="negative")
            logger.error("Move %s failed: %s", axis, e)
            return
        if self._report(f"Move {axis.upper()}", resp):
            logger.info("MOVE %s%+.2f", axis.upper(), offset)

    async def set_temperature(self) -> None:
        target = self.temp_target_select.value if self.temp_target_select else "HOTEND"
        value = float(self.temp_input.value or 0) if self.temp_input else 0.0
        try:
            resp = await client.set_temperature(target, value, refresh=self.refresh)
        except Exception as e:
            ui.notify(f"Set temperature failed: {e}", color="negative")
            logger.error("Set temperature failed: %s", e)
            return
        if self._report("Set temperature", resp, f"{target} -> {value:.0f} °C"):
            logger.info("SET_TEMPERATURE %s %.1f", target, value)

    async def load_files(self) -> list[str]:
        try:
            files = await client.list_gcode()
        except Exception as e:
            ui.notify(f"Listing G-code failed: {e}", color="negative")
            logger.error("List G-code failed: %s", e)
            return []
        if self.files_select is not None:
            self.files_select.set_options(files, value=files[0] if files else None)
        logger.debug("G-code files: %s", files)
        return files

    async def upload(self, e: events.UploadEventArguments) -> None:
        name = e.name
        try:
            resp = await client.upload_gcode(name, e.content.read(), refresh=self.refresh)
        except Exception as ex:
            ui.notify(f"Upload failed: {ex}", color="negative")
            logger.error("Upload %s failed: %s", name, ex)
            return
        if self._report(f"Upload {name}", resp, f"Uploaded {name}"):
            logger.info("UPLOAD %s", name)
            await self.load_files()

    # ---- UI ----

    def build(self) -> None:
        with ui.card().classes("w-full"):
            ui.label("Manual control").classes("text-md font-medium")
            with ui.row().classes("items-center gap-2"):
                ui.button("Home", on_click=self.home).bind_enabled_from(
                    printer_state, "printer_connected"
                )
                self.step_toggle = ui.toggle(
                    options=JOG_STEPS_MM, value=JOG_STEPS_MM[1]
                ).props("dense")
            for axis in ("x", "y", "z"):
                with ui.row().classes("items-center gap-2"):
                    ui.button(
                        f"{axis.upper()}-", on_click=partial(self.jog, axis, -1)
                    ).props("unelevated").bind_enabled_from(
                        printer_state, "manual_control_enabled"
                    )
                    ui.button(
                        f"{axis.upper()}+", on_click=partial(self.jog, axis, 1)
                    ).props("unelevated").bind_enabled_from(
                        printer_state, "manual_control_enabled"
                    )
            ui.separator()
            with ui.row().classes("items-center gap-2"):
                self.temp_target_select = ui.select(
                    TEMPERATURE_TARGETS, value=TEMPERATURE_TARGETS[0]
                ).props("dense")
                self.temp_input = ui.number(
                    label="Target °C", value=0, min=0, max=300, step=5
                ).props("dense")
                ui.button("Set", on_click=self.set_temperature)

        with ui.card().classes("w-full"):
            ui.label("G-code files").classes("text-md font-medium")
            with ui.row().classes("items-center gap-2"):
                self.files_select = ui.select([], label="On host").classes("w-64")
                ui.button("Refresh", on_click=self.load_files).props("flat")
            ui.upload(
                label="Upload .gcode", on_upload=self.upload, auto_upload=True
            ).props("accept=.gcode,.gco,.g flat").classes("w-full")
