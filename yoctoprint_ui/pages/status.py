from __future__ import annotations

from nicegui import ui

from yoctoprint_ui.state import printer_state


def _fmt_list(values: list, unit: str) -> str:
    if not values:
        return "-"
    return ", ".join(f"{v}{unit}" for v in values)


def _on_off(v: bool) -> str:
    return "yes" if v else "no"


class StatusPage:
    """Status readouts bound to printer_state."""

    def __init__(self) -> None:
        self.host_label: ui.label | None = None
        self.printer_label: ui.label | None = None

    def build(self) -> None:
        with ui.card().classes("w-full"):
            ui.label("Printer").classes("text-md font-medium")
            with ui.column().classes("gap-1"):
                self.host_label = (
                    ui.label("Host: -")
                    .bind_text_from(
                        printer_state,
                        "host_connected",
                        backward=lambda v: f"Host: {'connected' if v else 'disconnected'}",
                    )
                    .classes("text-sm")
                )
                self.printer_label = (
                    ui.label("Printer: -")
                    .bind_text_from(
                        printer_state,
                        "printer_connected",
                        backward=lambda v: f"Printer: {'connected' if v else 'disconnected'}",
                    )
                    .classes("text-sm")
                )
                ui.label("Manual control: -").bind_text_from(
                    printer_state,
                    "manual_control_enabled",
                    backward=lambda v: f"Manual control: {_on_off(v)}",
                ).classes("text-sm")
                ui.separator()
                ui.label("Temperatures: -").bind_text_from(
                    printer_state,
                    "temperatures",
                    backward=lambda v: f"Temperatures: {_fmt_list(v, ' °C')}",
                ).classes("text-sm")
                ui.label("Fan speed: -").bind_text_from(
                    printer_state,
                    "fan_speed",
                    backward=lambda v: f"Fan speed: {_fmt_list(v, '')}",
                ).classes("text-sm")
