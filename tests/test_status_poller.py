from __future__ import annotations

import asyncio
import logging

import pytest

from tests.utils.stub_host import PRINTER_STATUS
from tests.utils.wait import wait_until
from yoctoprint_ui.services.api_client import PrinterApiClient
from yoctoprint_ui.services.status_poller import StatusPoller
from yoctoprint_ui.state import DEFAULT_STATUS, PrinterState, StatusSnapshot

ENRICHED = {**PRINTER_STATUS, "host_connected": True}


class CountingClient(PrinterApiClient):
    """PrinterApiClient that counts fetch_api calls."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fetch_calls = 0

    async def fetch_api(self, method, path, body=None):
        self.fetch_calls += 1
        return await super().fetch_api(method, path, body)


@pytest.fixture
async def make_poller():
    """Build pollers and stop them all on teardown."""
    pollers: list[StatusPoller] = []

    def _make(api: PrinterApiClient, interval: float = 0.02) -> StatusPoller:
        p = StatusPoller(api, interval=interval)
        pollers.append(p)
        return p

    yield _make
    for p in pollers:
        await p.stop()


@pytest.mark.unit
async def test_idle_until_first_subscriber(stub_host, api, make_poller):
    host, _ = stub_host
    poller = make_poller(api)
    await asyncio.sleep(0.05)
    assert not poller.running
    assert host.status_calls == 0
    assert poller.value is DEFAULT_STATUS
    # Commands issued while idle don't trigger a refresh
    assert poller.request_refresh() is None

    values: list[StatusSnapshot] = []
    poller.subscribe(values.append)
    assert poller.running
    # First refresh happens without an initial delay
    await wait_until(lambda: len(values) >= 1, timeout=0.5)
    assert values[0] == ENRICHED


@pytest.mark.unit
@pytest.mark.parametrize("mode", ["malformed", "not_object", "bad_utf8"])
async def test_bad_payload_publishes_default(stub_host, api, make_poller, mode):
    host, _ = stub_host
    host.status_mode = mode
    values: list[StatusSnapshot] = []
    poller = make_poller(api)
    poller.subscribe(values.append)

    await wait_until(lambda: len(values) >= 2)
    assert all(v is DEFAULT_STATUS for v in values)
    assert poller.value is DEFAULT_STATUS
    assert not poller.value.host_connected


@pytest.mark.unit
async def test_unreachable_host_publishes_default(dead_api, make_poller):
    values: list[StatusSnapshot] = []
    poller = make_poller(dead_api)
    poller.subscribe(values.append)

    await wait_until(lambda: len(values) >= 2)
    assert all(v is DEFAULT_STATUS for v in values)


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"host_connected": False},
        {"host_connected": "nope", "temperatures": [20.0, 21.5]},
        {**PRINTER_STATUS, "position": {"x": 1.0}, "state": "CONNECTED"},
    ],
)
async def test_host_connected_is_forced_true(stub_host, api, make_poller, payload):
    host, _ = stub_host
    host.status_payload = payload
    values: list[StatusSnapshot] = []
    make_poller(api).subscribe(values.append)

    await wait_until(lambda: len(values) >= 1)
    assert values[0] == {**payload, "host_connected": True}
    assert values[0].host_connected is True


@pytest.mark.unit
async def test_error_status_with_json_body_is_published(stub_host, api, make_poller):
    host, _ = stub_host
    host.status_mode = "error_json"
    values: list[StatusSnapshot] = []
    make_poller(api).subscribe(values.append)
    await wait_until(lambda: len(values) >= 1)
    assert values[0] == ENRICHED


@pytest.mark.unit
async def test_single_flight_regular_ticks(stub_host, api, make_poller):
    host, _ = stub_host
    host.status_delay = 0.05
    make_poller(api, interval=0.001).subscribe(lambda _: None)

    await wait_until(lambda: host.status_calls >= 6)
    assert host.max_inflight == 1


@pytest.mark.unit
async def test_next_tick_waits_for_interval_after_settle(stub_host, api, make_poller):
    host, _ = stub_host
    host.status_delay = 0.1
    loop = asyncio.get_running_loop()
    stamps: list[float] = []
    make_poller(api, interval=0.1).subscribe(lambda _: stamps.append(loop.time()))

    await wait_until(lambda: len(stamps) >= 3)
    # Each publish is one request (0.1 s) plus one interval (0.1 s) after the previous
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(g >= 0.18 for g in gaps), gaps


@pytest.mark.unit
async def test_retries_forever_after_failures(unused_port, make_poller):
    api = CountingClient(host="127.0.0.1", port=unused_port)
    poller = make_poller(api, interval=0.01)
    try:
        values: list[StatusSnapshot] = []
        poller.subscribe(values.append)

        await wait_until(lambda: api.fetch_calls >= 8)
        assert poller.running
        assert len(values) >= 7
        assert all(v is DEFAULT_STATUS for v in values)
    finally:
        await poller.stop()
        await api.close()


@pytest.mark.unit
async def test_failure_streak_logs_warning_once(dead_api, make_poller, caplog):
    caplog.set_level(logging.DEBUG)
    values: list[StatusSnapshot] = []
    make_poller(dead_api, interval=0.01).subscribe(values.append)
    await wait_until(lambda: len(values) >= 4)

    failures = [r for r in caplog.records if "Status refresh failed" in r.getMessage()]
    assert [r.levelno for r in failures][:1] == [logging.WARNING]
    assert all(r.levelno == logging.DEBUG for r in failures[1:])


@pytest.mark.unit
async def test_command_triggers_one_extra_refresh(stub_host, api, make_poller):
    host, _ = stub_host
    poller = make_poller(api, interval=30.0)
    values: list[StatusSnapshot] = []
    poller.subscribe(values.append)
    handle = poller.start()
    assert handle is poller

    await wait_until(lambda: len(values) == 1)
    assert host.status_calls == 1

    await api.send_api_cmd("POST", "home", refresh=handle)
    await wait_until(lambda: len(values) == 2)
    await asyncio.sleep(0.1)
    assert host.status_calls == 2
    assert len(values) == 2

    # Without a handle nothing extra is fetched
    await api.send_api_cmd("POST", "home")
    await asyncio.sleep(0.1)
    assert host.status_calls == 2


@pytest.mark.unit
async def test_out_of_band_refresh_can_be_awaited(stub_host, api, make_poller):
    host, _ = stub_host
    poller = make_poller(api, interval=30.0)
    values: list[StatusSnapshot] = []
    poller.subscribe(values.append)
    await wait_until(lambda: len(values) == 1)

    host.status_payload = {**PRINTER_STATUS, "temperatures": [215.0]}
    task = poller.request_refresh()
    assert task is not None
    snapshot = await task
    assert snapshot.temperatures == [215.0]
    assert poller.value is snapshot


@pytest.mark.integration
async def test_fail_then_recover_scenario(stub_host, api, make_poller):
    host, _ = stub_host
    poller = make_poller(api, interval=0.05)
    values: list[StatusSnapshot] = []
    poller.subscribe(values.append)

    await wait_until(lambda: len(values) >= 1)
    assert values[0] == ENRICHED

    host.status_mode = "malformed"
    await wait_until(lambda: values[-1] is DEFAULT_STATUS)

    host.status_mode = "ok"
    await wait_until(lambda: values[-1] == ENRICHED)
    first_default = next(i for i, v in enumerate(values) if v is DEFAULT_STATUS)
    assert all(v == ENRICHED for v in values[:first_default])


@pytest.mark.unit
async def test_every_publish_reaches_every_subscriber(stub_host, api, make_poller):
    poller = make_poller(api, interval=0.01)
    state = PrinterState()
    a: list[StatusSnapshot] = []
    b: list[StatusSnapshot] = []
    poller.subscribe(a.append)
    poller.subscribe(b.append)
    poller.subscribe(state.apply)

    await wait_until(lambda: len(a) >= 4)
    await poller.stop()
    # Identical snapshots are not deduplicated
    assert len(a) == len(b) == state.update_count
    assert all(v == ENRICHED for v in a)
    assert state.host_connected and state.printer_connected
    assert state.temperatures == [200.1]


@pytest.mark.unit
async def test_failing_subscriber_does_not_block_others(stub_host, api, make_poller):
    poller = make_poller(api)
    received: list[StatusSnapshot] = []

    def broken(_snapshot):
        raise RuntimeError("render failed")

    poller.subscribe(broken)
    poller.subscribe(received.append)
    await wait_until(lambda: len(received) >= 2)
    assert poller.running


@pytest.mark.unit
async def test_stop_discards_inflight_result(stub_host, api, make_poller):
    host, _ = stub_host
    host.status_delay = 0.2
    poller = make_poller(api)
    values: list[StatusSnapshot] = []
    poller.subscribe(values.append)

    await wait_until(lambda: host.status_calls == 1)
    await poller.stop()
    assert not poller.running

    # The request finishes on the wire but is never published
    await wait_until(lambda: host.status_completed == 1)
    await asyncio.sleep(0.1)
    assert values == []
    assert poller.value is DEFAULT_STATUS
    assert host.status_calls == 1


@pytest.mark.unit
async def test_last_unsubscribe_stops_and_resubscribe_restarts(stub_host, api, make_poller):
    host, _ = stub_host
    poller = make_poller(api, interval=0.01)
    first: list[StatusSnapshot] = []
    unsubscribe = poller.subscribe(first.append)
    await wait_until(lambda: len(first) >= 2)

    unsubscribe()
    assert not poller.running
    await asyncio.sleep(0.05)
    calls = host.status_calls
    await asyncio.sleep(0.1)
    assert host.status_calls == calls

    second: list[StatusSnapshot] = []
    poller.subscribe(second.append)
    await wait_until(lambda: len(second) >= 2)
    assert poller.running


@pytest.mark.unit
async def test_start_is_idempotent(stub_host, api, make_poller):
    host, _ = stub_host
    poller = make_poller(api, interval=30.0)
    assert poller.start() is poller
    task = poller._task
    assert poller.start() is poller
    assert poller._task is task
    await wait_until(lambda: host.status_calls == 1)
    await asyncio.sleep(0.05)
    assert host.status_calls == 1


@pytest.mark.unit
async def test_undecodable_body_keeps_loop_alive(stub_host, api, make_poller):
    host, _ = stub_host
    host.status_mode = "bad_utf8"
    values: list[StatusSnapshot] = []
    poller = make_poller(api, interval=0.01)
    poller.subscribe(values.append)

    await wait_until(lambda: host.status_calls >= 3)
    assert poller.running
    assert values and all(v is DEFAULT_STATUS for v in values)

    host.status_mode = "ok"
    await wait_until(lambda: values[-1] == ENRICHED)
