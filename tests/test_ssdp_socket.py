"""Tests for the multicast UDP socket, with group membership changes intercepted."""

import asyncio
import errno
import socket

import pytest

from ssdp_discovery_protocol import SsdpSocket, SsdpSocketError


class MembershipRecorder:
    """Intercepts IP_ADD_MEMBERSHIP / IP_DROP_MEMBERSHIP so tests do not depend on the host's
    interfaces. Other socket options are passed through to the real socket."""

    def __init__(self, monkeypatch, fail_join=(), fail_drop=()):
        self.joined = []
        self.dropped = []
        self.fail_join = set(fail_join)
        self.fail_drop = set(fail_drop)
        original_setsockopt = socket.socket.setsockopt
        recorder = self

        def setsockopt(sock, level, optname, value, *args):
            if level == socket.IPPROTO_IP and optname in (socket.IP_ADD_MEMBERSHIP, socket.IP_DROP_MEMBERSHIP):
                interface_address = socket.inet_ntoa(value[4:8])
                if optname == socket.IP_ADD_MEMBERSHIP:
                    if interface_address in recorder.fail_join:
                        raise OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address")
                    recorder.joined.append(interface_address)
                else:
                    if interface_address in recorder.fail_drop:
                        raise OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address")
                    recorder.dropped.append(interface_address)
                return None
            return original_setsockopt(sock, level, optname, value, *args)

        monkeypatch.setattr(socket.socket, "setsockopt", setsockopt)


def ignore_datagram(data, addr):
    pass


def ignore_error(exc):
    pass


@pytest.mark.asyncio
async def test_join_failure_on_one_interface_is_skipped(monkeypatch):
    memberships = MembershipRecorder(monkeypatch, fail_join=["10.0.0.3"])
    ssdp_socket = SsdpSocket(["10.0.0.2", "10.0.0.3", "10.0.0.4"], multicast_port=0)
    await ssdp_socket.start(ignore_datagram, ignore_error)
    try:
        assert ssdp_socket.is_open
        assert ssdp_socket.joined_addresses == ["10.0.0.2", "10.0.0.4"]
        assert memberships.joined == ["10.0.0.2", "10.0.0.4"]
    finally:
        ssdp_socket.close()
    assert memberships.dropped == ["10.0.0.2", "10.0.0.4"]
    assert ssdp_socket.joined_addresses == []
    assert not ssdp_socket.is_open
    assert ssdp_socket.sock is None


@pytest.mark.asyncio
async def test_start_succeeds_when_no_interface_joins(monkeypatch):
    memberships = MembershipRecorder(monkeypatch, fail_join=["10.0.0.2"])
    ssdp_socket = SsdpSocket(["10.0.0.2"], multicast_port=0)
    await ssdp_socket.start(ignore_datagram, ignore_error)
    assert ssdp_socket.is_open
    assert ssdp_socket.joined_addresses == []
    ssdp_socket.close()
    assert memberships.dropped == []


@pytest.mark.asyncio
async def test_drop_failure_is_tolerated(monkeypatch):
    memberships = MembershipRecorder(monkeypatch, fail_drop=["10.0.0.2"])
    ssdp_socket = SsdpSocket(["10.0.0.2", "10.0.0.4"], multicast_port=0)
    await ssdp_socket.start(ignore_datagram, ignore_error)
    ssdp_socket.close()
    assert memberships.dropped == ["10.0.0.4"]
    assert ssdp_socket.joined_addresses == []
    assert not ssdp_socket.is_open


def test_close_before_start_is_harmless():
    ssdp_socket = SsdpSocket(["10.0.0.2"], multicast_port=0)
    ssdp_socket.close()
    ssdp_socket.close()
    assert not ssdp_socket.is_open
    assert ssdp_socket.sock is None


@pytest.mark.asyncio
async def test_close_is_idempotent_and_stops_sends(monkeypatch):
    MembershipRecorder(monkeypatch)
    ssdp_socket = SsdpSocket(["10.0.0.2"], multicast_port=0)
    await ssdp_socket.start(ignore_datagram, ignore_error)
    ssdp_socket.close()
    ssdp_socket.close()
    with pytest.raises(SsdpSocketError):
        ssdp_socket.sendto(b"hello", ("127.0.0.1", 9))
    with pytest.raises(SsdpSocketError):
        ssdp_socket.set_multicast_interface("10.0.0.2")


@pytest.mark.asyncio
async def test_second_start_is_rejected(monkeypatch):
    MembershipRecorder(monkeypatch)
    ssdp_socket = SsdpSocket([], multicast_port=0)
    await ssdp_socket.start(ignore_datagram, ignore_error)
    try:
        with pytest.raises(SsdpSocketError):
            await ssdp_socket.start(ignore_datagram, ignore_error)
    finally:
        ssdp_socket.close()


@pytest.mark.asyncio
async def test_bind_failure_raises_socket_error(monkeypatch):
    memberships = MembershipRecorder(monkeypatch)

    def fail_create_socket(self):
        raise OSError(errno.EADDRINUSE, "Address already in use")

    monkeypatch.setattr(SsdpSocket, "create_socket", fail_create_socket)
    ssdp_socket = SsdpSocket(["10.0.0.2"], multicast_port=0)
    with pytest.raises(SsdpSocketError, match="Unable to bind"):
        await ssdp_socket.start(ignore_datagram, ignore_error)
    assert not ssdp_socket.is_open
    assert memberships.joined == []


@pytest.mark.asyncio
async def test_datagrams_are_delivered_to_handler(monkeypatch):
    MembershipRecorder(monkeypatch)
    received = asyncio.Queue()

    def broken_then_recording(data, addr):
        received.put_nowait((data, addr))
        if data == b"first":
            raise RuntimeError("handler failed")

    ssdp_socket = SsdpSocket([], multicast_port=0)
    await ssdp_socket.start(broken_then_recording, ignore_error)
    port = ssdp_socket.sock.getsockname()[1]
    sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sender.sendto(b"first", ("127.0.0.1", port))
        sender.sendto(b"second", ("127.0.0.1", port))
        first = await asyncio.wait_for(received.get(), timeout=2.0)
        second = await asyncio.wait_for(received.get(), timeout=2.0)
    finally:
        sender.close()
        ssdp_socket.close()
    assert first[0] == b"first"
    assert second[0] == b"second"
    assert first[1][0] == "127.0.0.1"
