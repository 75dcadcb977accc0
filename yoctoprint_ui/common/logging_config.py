from __future__ import annotations

import logging
import sys
import threading
import weakref

# Package logger namespace; every module logs under it via getLogger(__name__)
LOGGER_NAME = "yoctoprint_ui"

# Below DEBUG: one record per published status snapshot
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Third-party loggers held at INFO or above even when the app runs at DEBUG/TRACE
_LIBRARY_LOGGERS = ("aiohttp", "asyncio", "uvicorn.access")

_LEVEL_COLORS = {
    "TRACE": "\033[32m",
    "DEBUG": "\033[36m",
    "INFO": "\033[37m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[41m",
}
_RESET = "\033[0m"
_DIM = "\033[2m"


def short_name(name: str) -> str:
    """'yoctoprint_ui.services.status_poller' -> 'services.status_poller'."""
    prefix = LOGGER_NAME + "."
    return name[len(prefix):] if name.startswith(prefix) else name


class _ShortNameFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.shortname = short_name(record.name)
        return super().format(record)


class AnsiColorFormatter(_ShortNameFormatter):
    """Console formatter: dimmed timestamp, colored level, package-relative logger name."""

    def __init__(self, colored: bool = True) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(shortname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.colored = colored and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.colored:
            return base
        ts, _, rest = base.partition(" ")
        color = _LEVEL_COLORS.get(record.levelname, "")
        if color:
            rest = rest.replace(record.levelname, f"{color}{record.levelname}{_RESET}", 1)
        return f"{_DIM}{ts}{_RESET} {rest}"


# ---- Browser log sink ----

# Open app-log widgets, one per connected tab; dropped when the element goes away
_ui_logs: weakref.WeakSet = weakref.WeakSet()
_ui_lock = threading.Lock()


class NiceGuiLogHandler(logging.Handler):
    """
    Mirror the package's log records into every attached ui.log widget.

    Only records under ``yoctoprint_ui`` are shown, so the browser sees host
    reachability, commands and console state but not uvicorn or aiohttp chatter.
    """

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self.addFilter(logging.Filter(LOGGER_NAME))
        self.setFormatter(
            _ShortNameFormatter(
                "%(asctime)s [%(levelname)s] %(shortname)s: %(message)s", "%H:%M:%S"
            )
        )

    def emit(self, record: logging.LogRecord) -> None:
        if not _ui_logs:
            return
        line = self.format(record)
        with _ui_lock:
            for widget in list(_ui_logs):
                try:
                    widget.push(line)
                except Exception:
                    # Client disconnected or element deleted
                    _ui_logs.discard(widget)


def attach_ui_log(log_widget) -> None:
    """Register a ui.log widget as a sink for package log records."""
    with _ui_lock:
        _ui_logs.add(log_widget)


def detach_ui_log(log_widget) -> None:
    with _ui_lock:
        _ui_logs.discard(log_widget)


def configure_logging(
    level: int = logging.INFO, use_color: bool = True, add_ui_handler: bool = True
) -> logging.Logger:
    """
    Configure the root logger:
      - colored stderr handler at ``level``
      - optional browser sink (INFO and above, package records only)
      - third-party loggers held at INFO or above
    Idempotent across multiple calls.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if not any(isinstance(h.formatter, AnsiColorFormatter) for h in root.handlers):
        console = logging.StreamHandler(stream=sys.stderr)
        console.setLevel(level)
        console.setFormatter(AnsiColorFormatter(colored=use_color))
        root.addHandler(console)

    if add_ui_handler and not any(isinstance(h, NiceGuiLogHandler) for h in root.handlers):
        root.addHandler(NiceGuiLogHandler(level=max(level, logging.INFO)))

    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    return root
