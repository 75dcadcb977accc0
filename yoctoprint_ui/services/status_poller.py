from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from yoctoprint_ui.common.logging_config import TRACE
from yoctoprint_ui.constants import STATUS_POLL_INTERVAL_S
from yoctoprint_ui.services.api_client import (
    ApiError,
    DecodeError,
    PrinterApiClient,
    client as default_client,
)
from yoctoprint_ui.state import DEFAULT_STATUS, StatusSnapshot

logger = logging.getLogger(__name__)

StatusCallback = Callable[[StatusSnapshot], None]


class StatusPoller:
    """
    Self-refreshing printer status value.

    Idle until the first subscriber (or start()), then polls ``GET status``
    forever: one request, publish, wait ``interval`` seconds, repeat. The wait
    starts after the request settles, so the regular chain never has two
    status requests in flight. Failures publish DEFAULT_STATUS and the loop
    carries on at the same cadence.

    Subscribers see every publish, identical snapshots included.
    """

    def __init__(
        self,
        api: PrinterApiClient | None = None,
        interval: float = STATUS_POLL_INTERVAL_S,
    ) -> None:
        self.api = api or default_client
        self.interval = interval
        self._value: StatusSnapshot = DEFAULT_STATUS
        self._subscribers: list[StatusCallback] = []
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        # Out-of-band refreshes requested by commands
        self._oob_tasks: set[asyncio.Task] = set()
        self._failing = False

    @property
    def value(self) -> StatusSnapshot:
        return self._value

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---------- Subscription ----------

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """
        Register ``callback`` and return a function that unregisters it.

        The first subscriber starts polling. Removing the last one stops it.
        Must be called from within the running event loop.
        """
        self._subscribers.append(callback)
        if not self.running:
            self.start()

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)
            if not self._subscribers and self.running:
                self._stop_event.set()
                task, self._task = self._task, None
                task.cancel()

        return _unsubscribe

    # ---------- Lifecycle ----------

    def start(self) -> StatusPoller:
        """
        Start polling (no-op if already running) and return the refresh handle.

        The returned handle is what commands take as ``refresh=``.
        """
        if self.running:
            return self
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        logger.info("Status polling started (%s)", self.api.api_url())
        return self

    async def stop(self) -> None:
        """
        Stop scheduling ticks.

        A status request already on the wire is left to finish; its result
        is discarded.
        """
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for t in list(self._oob_tasks):
            t.cancel()
        logger.info("Status polling stopped")

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self._refresh(stop_event)
            # Sleep, but wake immediately on stop
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)

    # ---------- Refresh ----------

    async def refresh(self) -> StatusSnapshot:
        """Fetch and publish status once, outside the regular cadence."""
        return await self._refresh(self._stop_event)

    def request_refresh(self) -> asyncio.Task | None:
        """
        Schedule one out-of-band refresh and return its task.

        Returns None while the poller is idle. The refresh may overlap a
        regular tick.
        """
        if not self.running:
            return None
        task = asyncio.create_task(self.refresh())
        self._oob_tasks.add(task)
        task.add_done_callback(self._oob_tasks.discard)
        return task

    async def _refresh(self, stop_event: asyncio.Event | None) -> StatusSnapshot:
        try:
            payload = await self.api.fetch_api("GET", "status")
            if not isinstance(payload, dict):
                raise DecodeError(
                    f"status: expected a JSON object, got {type(payload).__name__}"
                )
            snapshot = StatusSnapshot.from_response(payload)
            if self._failing:
                logger.info("Printer host reachable again")
            self._failing = False
        except ApiError as e:
            if not self._failing:
                logger.warning("Status refresh failed: %s", e)
            else:
                logger.debug("Status refresh failed: %s", e)
            self._failing = True
            snapshot = DEFAULT_STATUS

        # Stopped while the request was in flight: discard
        if stop_event is not None and stop_event.is_set():
            return self._value
        self._publish(snapshot)
        return snapshot

    def _publish(self, snapshot: StatusSnapshot) -> None:
        self._value = snapshot
        if logger.isEnabledFor(TRACE):
            logger.log(TRACE, "status -> %r", snapshot)
        for cb in list(self._subscribers):
            try:
                cb(snapshot)
            except Exception:
                logger.exception("Status subscriber %r failed", cb)
