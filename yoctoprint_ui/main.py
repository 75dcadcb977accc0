import argparse
import asyncio
import contextlib
import logging
import sys
import weakref

from nicegui import app as ng_app
from nicegui import ui

from yoctoprint_ui.common.logging_config import (
    TRACE,
    attach_ui_log,
    configure_logging,
    detach_ui_log,
)
from yoctoprint_ui.constants import (
    CONSOLE_RECONNECT_S,
    LOG_LEVEL,
    SERVER_HOST,
    SERVER_PORT,
)
from yoctoprint_ui.pages.console import ConsolePage
from yoctoprint_ui.pages.control import ControlPage
from yoctoprint_ui.pages.status import StatusPage
from yoctoprint_ui.services.api_client import ApiError, client
from yoctoprint_ui.services.console_stream import ConsoleStream
from yoctoprint_ui.services.status_poller import StatusPoller
from yoctoprint_ui.state import printer_state

# Fixed name: under `python -m` __name__ is "__main__"
logger = logging.getLogger("yoctoprint_ui.main")

# ------------------------ Global services ------------------------

poller = StatusPoller(client)
console_stream = ConsoleStream(client)
console_task: asyncio.Task | None = None
_unsubscribe_state = None

# Open console pages (one per connected browser tab)
console_pages: "weakref.WeakSet[ConsolePage]" = weakref.WeakSet()


# --------------- Service lifecycle ---------------


async def start_services() -> None:
    global console_task, _unsubscribe_state
    # First subscriber starts the poll loop
    if _unsubscribe_state is None:
        _unsubscribe_state = poller.subscribe(printer_state.apply)
    if console_task is None or console_task.done():
        console_task = asyncio.create_task(_console_consumer())
    logger.info("Printer host: %s", client.api_url())


async def stop_services() -> None:
    global console_task, _unsubscribe_state
    if _unsubscribe_state is not None:
        _unsubscribe_state()
        _unsubscribe_state = None
    await poller.stop()
    if console_task:
        console_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await console_task
        console_task = None
    await client.close()


async def _console_consumer() -> None:
    """Mirror the printer console into every open console page; reconnect forever."""
    while True:
        try:
            async for msg in console_stream.messages():
                for page in list(console_pages):
                    page.push(msg)
            logger.info("Console closed by host")
        except ApiError as e:
            logger.debug("Console unavailable: %s", e)
        await asyncio.sleep(CONSOLE_RECONNECT_S)


ng_app.on_startup(start_services)
ng_app.on_shutdown(stop_services)


# --------------- Page ---------------


def build_footer() -> None:
    with ui.footer().classes("justify-between items-center px-3 py-1"):
        with ui.row().classes("items-center gap-4"):
            ui.label("HOST").classes("text-sm").bind_style_from(
                printer_state,
                "host_connected",
                backward=lambda v: "color: #21BA45" if v else "color: #DB2828",
            )
            ui.label("|").classes("text-sm")
            ui.label("PRINTER").classes("text-sm").bind_style_from(
                printer_state,
                "printer_connected",
                backward=lambda v: "color: #21BA45" if v else "color: #DB2828",
            )
        ui.label(client.api_url()).classes("text-sm")


@ui.page("/")
def index() -> None:
    status_page = StatusPage()
    control_page = ControlPage()
    control_page.refresh = poller
    console_page = ConsolePage(console_stream)

    with ui.header().classes("p-0"), ui.tabs() as tabs:
        printer_tab = ui.tab("Printer")
        console_tab = ui.tab("Console")

    with ui.tab_panels(tabs, value=printer_tab).classes("w-full"):
        with ui.tab_panel(printer_tab):
            status_page.build()
            control_page.build()
        with ui.tab_panel(console_tab):
            console_page.build()
            with ui.expansion("Application log").classes("w-full"):
                app_log = ui.log(max_lines=200).classes("w-full h-40")

    console_pages.add(console_page)
    attach_ui_log(app_log)
    ui.context.client.on_disconnect(lambda: detach_ui_log(app_log))

    build_footer()


def main() -> None:
    # CLI: web bind and log level
    parser = argparse.ArgumentParser(description="Yoctoprint NiceGUI Webserver")
    parser.add_argument("--host", default=SERVER_HOST, help="Webserver bind host")
    parser.add_argument(
        "--port", type=int, default=SERVER_PORT, help="Webserver bind port"
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set log level",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Enable WARNING logging"
    )
    args, _ = parser.parse_known_args()

    # Resolve log level priority: explicit --log-level > -v/-q > env default from constants
    if args.log_level:
        if args.log_level == "TRACE":
            log_level = TRACE
        else:
            log_level = getattr(logging, args.log_level)
    elif args.verbose >= 3:
        log_level = TRACE
    elif args.verbose >= 2:
        log_level = logging.DEBUG
    elif args.verbose == 1:
        log_level = logging.INFO
    elif args.quiet:
        log_level = logging.WARNING
    else:
        log_level = LOG_LEVEL

    configure_logging(log_level)
    logger.info("Webserver bind: host=%s port=%s", args.host, args.port)
    logger.info("Printer host target: %s", client.api_url())

    ui.run(
        title="Yoctoprint",
        host=args.host,
        port=int(args.port),
        reload=False,
        show=False,
        loop="uvloop" if sys.platform != "win32" else "asyncio",
        binding_refresh_interval=0.1,
    )


if __name__ in {"__main__", "__mp_main__"}:
    main()
