#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpSocket -- The UDP socket shared by an SSDP discovery session. It:

  1. Binds to the SSDP port on all addresses, with address reuse so that other SSDP
     software on the host can coexist.
  2. Joins the SSDP multicast group on each eligible local interface.
  3. Sends datagrams out of a selectable multicast interface.
  4. Delivers received datagrams and transport errors to callbacks on the event loop.

A single socket is used for all interfaces; the outgoing interface is switched with
IP_MULTICAST_IF before each burst of sends.
"""

from __future__ import annotations

import asyncio
import socket
import sys

from .internal_types import *
from .pkg_logging import logger
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT
from .exceptions import SsdpSocketError

SsdpDatagramHandler = Callable[[bytes, HostAndPort], None]
"""A callback for a received datagram: (raw_data, source_address)."""

SsdpErrorHandler = Callable[[Exception], None]
"""A callback for an error reported by the transport."""

class _SsdpSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and SsdpSocket."""

    ssdp_socket: SsdpSocket

    def __init__(self, ssdp_socket: SsdpSocket):
        self.ssdp_socket = ssdp_socket

    def connection_made(self, transport: asyncio.BaseTransport):
        """Called when a connection is made."""
        logger.debug(f"Connection made: {self.ssdp_socket}")

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        """Called when some datagram is received."""
        self.ssdp_socket.datagram_received(data, addr)

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        self.ssdp_socket.error_received(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        self.ssdp_socket.connection_lost(exc)

class SsdpSocket:
    """
    A UDP socket bound to the SSDP port and joined to the SSDP multicast group on a set of
    local interfaces.

    Usage:
        ssdp_socket = SsdpSocket(['192.168.1.10'])
        await ssdp_socket.start(on_datagram, on_error)
        try:
            ssdp_socket.set_multicast_interface('192.168.1.10')
            ssdp_socket.sendto(data)
        finally:
            ssdp_socket.close()
    """

    interface_addresses: List[str]
    """The local IPv4 addresses of the interfaces on which the multicast group is joined."""

    joined_addresses: List[str]
    """The subset of interface_addresses on which joining the multicast group succeeded."""

    multicast_address: str = SSDP_MULTICAST_ADDRESS
    """The multicast group address."""

    multicast_port: int = SSDP_PORT
    """The port to bind to and send to."""

    sock: Optional[socket.socket] = None
    """The low-level socket."""

    transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport wrapping sock."""

    datagram_handler: Optional[SsdpDatagramHandler] = None
    error_handler: Optional[SsdpErrorHandler] = None

    def __init__(
            self,
            interface_addresses: Iterable[str],
            multicast_address: str=SSDP_MULTICAST_ADDRESS,
            multicast_port: int=SSDP_PORT
          ) -> None:
        self.interface_addresses = list(interface_addresses)
        self.joined_addresses = []
        self.multicast_address = multicast_address
        self.multicast_port = multicast_port

    def __str__(self) -> str:
        return f"SsdpSocket({self.multicast_address}:{self.multicast_port} on {self.interface_addresses})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def is_open(self) -> bool:
        return self.transport is not None

    def create_socket(self) -> socket.socket:
        """Creates the UDP socket and binds it to the SSDP port on all addresses."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if sys.platform not in ( 'win32', 'cygwin' ) and hasattr(socket, 'SO_REUSEPORT'):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            # Multicast listeners MUST bind to 0.0.0.0:<port> to receive multicast packets
            sock.bind(('', self.multicast_port))
            sock.setblocking(False)
        except BaseException:
            sock.close()
            raise
        return sock

    def _membership_request(self, interface_address: str) -> bytes:
        return socket.inet_aton(self.multicast_address) + socket.inet_aton(interface_address)

    def add_memberships(self) -> None:
        """Joins the multicast group on each interface. A failure on one interface is logged and
           that interface is skipped; it does not prevent the others from being joined."""
        assert self.sock is not None
        for interface_address in self.interface_addresses:
            try:
                logger.debug(f"Joining multicast group {self.multicast_address} on {interface_address}")
                self.sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, self._membership_request(interface_address))
                self.joined_addresses.append(interface_address)
            except OSError as e:
                logger.warning(f"Unable to join multicast group {self.multicast_address} on {interface_address}: {e}")

    def drop_memberships(self) -> None:
        """Leaves the multicast group on each joined interface. Failures are logged and ignored."""
        if self.sock is None:
            return
        for interface_address in self.joined_addresses:
            try:
                self.sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, self._membership_request(interface_address))
            except OSError as e:
                logger.info(f"Unable to leave multicast group {self.multicast_address} on {interface_address}: {e}")
        self.joined_addresses = []

    async def start(self, datagram_handler: SsdpDatagramHandler, error_handler: SsdpErrorHandler) -> None:
        """Opens the socket, joins the multicast group and begins delivering datagrams to datagram_handler.

        Raises SsdpSocketError if the socket cannot be created or bound.
        """
        if self.sock is not None:
            raise SsdpSocketError(f"{self} is already started")
        loop = asyncio.get_running_loop()
        try:
            self.sock = self.create_socket()
        except OSError as e:
            raise SsdpSocketError(f"Unable to bind to SSDP port {self.multicast_port}: {e}") from e
        self.add_memberships()
        self.datagram_handler = datagram_handler
        self.error_handler = error_handler
        try:
            untyped_transport, protocol = await loop.create_datagram_endpoint(
                lambda: _SsdpSocketProtocol(self),
                sock=self.sock
              )
        except OSError as e:
            self.close()
            raise SsdpSocketError(f"Unable to create datagram endpoint for {self}: {e}") from e
        except BaseException:
            self.close()
            raise
        # Note: asyncio datagram transports do not inherit from asyncio.DatagramTransport, but they
        # implement the same interface.
        self.transport = untyped_transport # type: ignore[assignment]
        logger.debug(f"Created datagram endpoint for {self}. transport={self.transport}, protocol={protocol}")

    def set_multicast_interface(self, interface_address: str) -> None:
        """Selects the local interface that subsequent multicast sends go out of."""
        if self.sock is None:
            raise SsdpSocketError(f"{self} is not open")
        try:
            self.sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(interface_address))
        except OSError as e:
            raise SsdpSocketError(f"Unable to set multicast interface {interface_address}: {e}") from e

    def sendto(self, data: bytes, addr: Optional[HostAndPort]=None) -> None:
        """Sends a datagram. By default it is sent to the multicast group."""
        if addr is None:
            addr = (self.multicast_address, self.multicast_port)
        if self.transport is None or self.transport.is_closing():
            raise SsdpSocketError(f"Cannot send on closed {self}")
        logger.debug(f"Sending datagram via {self} to {addr}: {data!r}")
        self.transport.sendto(data, addr)

    def detach_handlers(self) -> None:
        self.datagram_handler = None
        self.error_handler = None

    def datagram_received(self, data: bytes, addr: HostAndPort) -> None:
        handler = self.datagram_handler
        if handler is None:
            return
        try:
            handler(data, addr)
        except Exception as e:
            logger.warning(f"Error handling datagram from {addr}, raw=[{data!r}]: {e}")

    def error_received(self, exc: Exception) -> None:
        logger.info(f"Error received from transport {self}: {exc}")
        handler = self.error_handler
        if handler is not None:
            handler(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        logger.debug(f"Connection to transport lost on {self}, exc={exc}")
        self.transport = None
        self.sock = None
        handler = self.error_handler
        if exc is not None and handler is not None:
            handler(exc)

    def close(self) -> None:
        """Leaves the multicast group and closes the socket. Safe to call more than once."""
        self.drop_memberships()
        self.detach_handlers()
        if self.transport is not None:
            # The transport owns the socket and closes it
            try:
                self.transport.close()
            except Exception as e:
                logger.error(f"Error closing transport on {self}: {e}")
            self.transport = None
            self.sock = None
        elif self.sock is not None:
            try:
                self.sock.close()
            except OSError as e:
                logger.error(f"Error closing socket on {self}: {e}")
            self.sock = None
