from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from dataclasses import field
from types import MappingProxyType
from typing import Any

from nicegui import binding


class StatusSnapshot(Mapping[str, Any]):
    """
    Read-only view of one ``GET status`` payload.

    Holds whatever JSON object the host returned; unknown keys pass through.
    The typed accessors below fall back to disconnected defaults when the host
    omits a field. Compares equal to any mapping with the same items.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data = MappingProxyType(dict(data or {}))

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> StatusSnapshot:
        """Widen a status payload with ``host_connected: True``."""
        return cls({**payload, "host_connected": True})

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"StatusSnapshot({dict(self._data)!r})"

    @property
    def host_connected(self) -> bool:
        return bool(self._data.get("host_connected", False))

    @property
    def printer_connected(self) -> bool:
        return bool(self._data.get("printer_connected", False))

    @property
    def manual_control_enabled(self) -> bool:
        return bool(self._data.get("manual_control_enabled", False))

    @property
    def temperatures(self) -> list:
        return list(self._data.get("temperatures") or [])

    @property
    def fan_speed(self) -> list:
        return list(self._data.get("fan_speed") or [])

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


# Initial value and fallback on any failed status fetch
DEFAULT_STATUS = StatusSnapshot(
    {
        "host_connected": False,
        "printer_connected": False,
        "temperatures": (),
        "manual_control_enabled": False,
        "fan_speed": (0,),
    }
)


@binding.bindable_dataclass
class PrinterState:
    """Bindable mirror of the latest StatusSnapshot for UI elements."""

    host_connected: bool = False
    printer_connected: bool = False
    manual_control_enabled: bool = False
    temperatures: list = field(default_factory=list)
    fan_speed: list = field(default_factory=lambda: [0])
    last_update_ts: float = 0.0
    # Incremented on every publish, identical snapshots included
    update_count: int = 0

    def apply(self, snapshot: StatusSnapshot) -> None:
        """Copy a published snapshot into the bindable fields."""
        self.host_connected = snapshot.host_connected
        self.printer_connected = snapshot.printer_connected
        self.manual_control_enabled = snapshot.manual_control_enabled
        self.temperatures = snapshot.temperatures
        self.fan_speed = snapshot.fan_speed
        self.last_update_ts = time.time()
        self.update_count += 1


# Module-level singleton
printer_state = PrinterState()
