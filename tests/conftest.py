"""Shared fixtures for the ssdp_discovery_protocol tests."""

import asyncio
from typing import Any, List, Optional, Tuple

import pytest

import ssdp_discovery_protocol.discovery as discovery_module
from ssdp_discovery_protocol import (
    CaseInsensitiveDict,
    DescriptionFetcher,
    DescriptionFetchError,
    DeviceDescription,
    SsdpDiscovery,
    SsdpSocket,
    SsdpSocketError,
)


class FakeClock:
    """A controllable replacement for time.time()."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSsdpSocket(SsdpSocket):
    """An SsdpSocket that records what the engine does with it instead of touching the network."""

    instances: List["FakeSsdpSocket"] = []
    fail_start: bool = False

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.events: List[Tuple[str, Any]] = []
        self.started = False
        self.closed = False
        FakeSsdpSocket.instances.append(self)

    async def start(self, datagram_handler, error_handler) -> None:
        if FakeSsdpSocket.fail_start:
            raise SsdpSocketError("Unable to bind to SSDP port 1900: address in use")
        self.datagram_handler = datagram_handler
        self.error_handler = error_handler
        self.joined_addresses = list(self.interface_addresses)
        self.started = True

    @property
    def is_open(self) -> bool:
        return self.started and not self.closed

    def set_multicast_interface(self, interface_address: str) -> None:
        self.events.append(("interface", interface_address))

    def sendto(self, data: bytes, addr=None) -> None:
        if not self.is_open:
            raise SsdpSocketError("Cannot send on closed socket")
        self.events.append(("send", data))

    def deliver(self, data: bytes, addr: Tuple[str, int]) -> None:
        """Simulates the arrival of a datagram on the transport."""
        self.datagram_received(data, addr)

    def close(self) -> None:
        self.joined_addresses = []
        self.detach_handlers()
        self.closed = True


class StubDescriptionFetcher(DescriptionFetcher):
    """A DescriptionFetcher that returns a canned description without any HTTP."""

    def __init__(self, error: Optional[DescriptionFetchError] = None):
        super().__init__()
        self.urls: List[str] = []
        self.error = error
        self.gate: Optional[asyncio.Event] = None

    async def fetch(self, url: str) -> DeviceDescription:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return DeviceDescription(
            CaseInsensitiveDict({"Content-Type": "text/xml"}),
            "<root><device><friendlyName>Test Device</friendlyName></device></root>",
            {"device": {"friendlyName": "Test Device"}},
        )


@pytest.fixture(autouse=True)
def fake_socket(monkeypatch):
    """Replaces the engine's socket with FakeSsdpSocket and removes the M-SEARCH delays."""
    FakeSsdpSocket.instances = []
    FakeSsdpSocket.fail_start = False
    monkeypatch.setattr(discovery_module, "SsdpSocket", FakeSsdpSocket)
    monkeypatch.setattr(discovery_module, "MULTICAST_INTERFACE_SETTLE_TIME", 0.0)
    monkeypatch.setattr(discovery_module, "MSEARCH_REPEAT_INTERVAL", 0.0)
    return FakeSsdpSocket


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return StubDescriptionFetcher()


@pytest.fixture
def discovery(fetcher, clock):
    return SsdpDiscovery(description_fetcher=fetcher, interface_addresses=[], clock=clock)


async def wait_for_fetches(discovery: SsdpDiscovery) -> None:
    """Waits until all description fetches spawned by discovery have completed."""
    while discovery._fetch_tasks:
        await asyncio.gather(*list(discovery._fetch_tasks))
