from __future__ import annotations

import socket
from typing import TYPE_CHECKING

import pytest
from aiohttp.test_utils import TestServer

from tests.utils.stub_host import StubPrinterHost
from yoctoprint_ui.services.api_client import PrinterApiClient

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@pytest.fixture
async def stub_host() -> AsyncIterator[tuple[StubPrinterHost, TestServer]]:
    """
    Serve a StubPrinterHost on an ephemeral localhost port.
    Yields (host, server); the server is closed on teardown.
    """
    host = StubPrinterHost()
    server = TestServer(host.app(), host="127.0.0.1")
    await server.start_server()
    try:
        yield host, server
    finally:
        await server.close()


@pytest.fixture
async def api(stub_host) -> AsyncIterator[PrinterApiClient]:
    """PrinterApiClient pointed at the stub host."""
    _, server = stub_host
    client = PrinterApiClient(host="127.0.0.1", port=server.port)
    try:
        yield client
    finally:
        await client.close()


@pytest.fixture
def unused_port() -> int:
    """A localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
async def dead_api(unused_port) -> AsyncIterator[PrinterApiClient]:
    """PrinterApiClient pointed at a port that refuses connections."""
    client = PrinterApiClient(host="127.0.0.1", port=unused_port)
    try:
        yield client
    finally:
        await client.close()
