from __future__ import annotations

import logging
import os

# Printer host (the device-control server the UI talks to).
# Captured once at import; every request reads it.
PRINTER_HOST: str = os.getenv("YOCTO_PRINTER_HOST", "127.0.0.1")
# Fixed by the host, not configurable
API_PORT: int = 5000
API_PREFIX: str = "api/"
CONSOLE_PATH: str = "console"
# Body the host answers to a command it carried out; anything else is an error text
API_OK_REPLY: str = "OK!"

# Delay between the end of one status request and the start of the next
STATUS_POLL_INTERVAL_S: float = 1.0
# Console reconnect delay after the socket drops
CONSOLE_RECONNECT_S: float = 1.0

# Webserver bind (NiceGUI host/port)
SERVER_HOST: str = os.getenv("YOCTO_SERVER_IP", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("YOCTO_SERVER_PORT", "8080"))

# Manual control
JOG_STEPS_MM: list[float] = [0.1, 1.0, 10.0, 50.0]
TEMPERATURE_TARGETS: list[str] = ["HOTEND", "BED"]


def _resolve_log_level() -> int:
    s = os.getenv("YOCTO_LOG_LEVEL")
    if s:
        name = s.strip().upper()
        mapping = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return mapping.get(name, logging.WARNING)
    else:
        return logging.WARNING


LOG_LEVEL: int = _resolve_log_level()
