#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpDiscovery -- An SSDP discovery engine that can:

  1. Send M-SEARCH requests to the SSDP multicast address (239.255.255.250:1900) out of
     every eligible local interface
  2. Receive M-SEARCH responses and NOTIFY advertisements, and maintain a table of live
     devices keyed by USN
  3. Fetch the XML device description of each newly discovered device
  4. Expire devices whose advertisements are not refreshed within their max-age, and remove
     devices that announce ssdp:byebye
  5. Notify registered handlers of 'added', 'deleted', and 'error' events
"""

from __future__ import annotations

import asyncio
import re
import time
from enum import Enum
from urllib.parse import urlparse

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    DEFAULT_MX,
    MIN_MX,
    MAX_MX,
    DEFAULT_SEARCH_TARGET,
    DEFAULT_DISCOVER_WAIT,
    MIN_DISCOVER_WAIT,
    MAX_DISCOVER_WAIT,
    MSEARCH_REPEAT_COUNT,
    MSEARCH_REPEAT_INTERVAL,
    MULTICAST_INTERFACE_SETTLE_TIME,
    EXPIRATION_CHECK_INTERVAL,
  )
from .exceptions import (
    SsdpError,
    SsdpValidationError,
    SsdpConcurrencyError,
    SsdpSocketError,
    DescriptionFetchError,
  )
from .ssdp_headers import parse_ssdp_headers, get_max_age, build_msearch_datagram, STATEMENT_LINE_KEY
from .ssdp_socket import SsdpSocket
from .device_registry import SsdpDevice, DeviceRegistry
from .description_fetcher import DescriptionFetcher
from .util import get_multicast_interface_addresses

EVENT_ADDED = 'added'
"""Emitted with an SsdpDevice snapshot when a device is first discovered."""

EVENT_DELETED = 'deleted'
"""Emitted with an SsdpDevice snapshot when a device says byebye or expires."""

EVENT_ERROR = 'error'
"""Emitted with an exception when the socket reports an error during a discovery session."""

EVENT_NAMES = (EVENT_ADDED, EVENT_DELETED, EVENT_ERROR)

SsdpEventHandler = Callable[[Any], None]
"""A synchronous callback for a discovery event. Receives an SsdpDevice for 'added' and
   'deleted', or an Exception for 'error'."""

class DiscoveryState(Enum):
    """The lifecycle state of an SsdpDiscovery instance."""
    IDLE = 'idle'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'

def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)

def validate_search_params(mx: Any, st: Any) -> Tuple[int, str]:
    """Validates the MX and ST values of an M-SEARCH request.

    Raises SsdpValidationError unless mx is an integer between 1 and 120 and st is a string.
    """
    if not _is_integer(mx) or mx < MIN_MX or mx > MAX_MX:
        raise SsdpValidationError(f'The value of "mx" is invalid. It must be an integer between {MIN_MX} and {MAX_MX}: {mx!r}')
    if not isinstance(st, str):
        raise SsdpValidationError(f'The value of "st" is invalid. It must be a string: {st!r}')
    return (mx, st)

def validate_wait(wait: Any) -> int:
    """Raises SsdpValidationError unless wait is an integer between 1 and 120."""
    if not _is_integer(wait) or wait < MIN_DISCOVER_WAIT or wait > MAX_DISCOVER_WAIT:
        raise SsdpValidationError(
            f'The value of "wait" is invalid. It must be an integer between {MIN_DISCOVER_WAIT} and {MAX_DISCOVER_WAIT}: {wait!r}')
    return wait

def is_location_on_host(location: str, address: str) -> bool:
    """Returns True if the host of the description URL is the address the advertisement came from.
       Descriptions are only fetched for such devices, so that one host cannot make this host
       issue HTTP requests to another."""
    try:
        return urlparse(location).hostname == address
    except ValueError:
        return False

class SsdpDiscovery(AsyncContextManager['SsdpDiscovery']):
    """
    An SSDP discovery engine. Only one discovery session can be active on an instance at a time,
    but any number of independent instances can be created.

    Usage:
        discovery = SsdpDiscovery()
        discovery.add_event_handler('added', lambda device: print(f"Added: {device}"))
        discovery.add_event_handler('deleted', lambda device: print(f"Deleted: {device}"))
        async with discovery:
            await discovery.start_discovery(st='upnp:rootdevice')
            await asyncio.sleep(60)
        # Or simply:
        devices = await SsdpDiscovery().discover(wait=5)
    """

    registry: DeviceRegistry
    """The devices discovered by the current (or most recent) session."""

    description_fetcher: DescriptionFetcher
    """The fetcher used to retrieve device descriptions."""

    interface_addresses: Optional[List[str]] = None
    """The local interface addresses to multicast on. If None, eligible addresses are
       enumerated each time discovery starts."""

    multicast_address: str = SSDP_MULTICAST_ADDRESS
    multicast_port: int = SSDP_PORT

    expiration_check_interval: float = EXPIRATION_CHECK_INTERVAL
    """Seconds between sweeps for expired devices."""

    msearch_interval: Optional[float] = None
    """If not None, the M-SEARCH burst is repeated every msearch_interval seconds while running.
       By default it is sent once, when discovery starts."""

    mx: int = DEFAULT_MX
    """The MX value of the current (or most recent) session."""

    st: str = DEFAULT_SEARCH_TARGET
    """The search target of the current (or most recent) session."""

    active_interface_addresses: List[str]
    """The interface addresses in use by the current (or most recent) session."""

    _state: DiscoveryState = DiscoveryState.IDLE
    _clock: Callable[[], float]
    _socket: Optional[SsdpSocket] = None
    _expiration_task: Optional[asyncio.Task[None]] = None
    _msearch_task: Optional[asyncio.Task[None]] = None
    _fetch_tasks: Set[asyncio.Task[None]]
    _event_handlers: Dict[str, Dict[int, SsdpEventHandler]]
    _i_next_event_handler: int = 0

    _response_statement_re = re.compile(r'^HTTP/[\d.]+\s+200\s+OK')
    _notify_statement_re = re.compile(r'^NOTIFY')

    def __init__(
            self,
            description_fetcher: Optional[DescriptionFetcher]=None,
            interface_addresses: Optional[Iterable[str]]=None,
            multicast_address: str=SSDP_MULTICAST_ADDRESS,
            multicast_port: int=SSDP_PORT,
            clock: Callable[[], float]=time.time,
            expiration_check_interval: float=EXPIRATION_CHECK_INTERVAL,
            msearch_interval: Optional[float]=None,
          ) -> None:
        self.registry = DeviceRegistry()
        self.description_fetcher = DescriptionFetcher() if description_fetcher is None else description_fetcher
        self.interface_addresses = None if interface_addresses is None else list(interface_addresses)
        self.multicast_address = multicast_address
        self.multicast_port = multicast_port
        self._clock = clock
        self.expiration_check_interval = expiration_check_interval
        self.msearch_interval = msearch_interval
        self.active_interface_addresses = []
        self._fetch_tasks = set()
        self._event_handlers = { event: {} for event in EVENT_NAMES }

    @property
    def state(self) -> DiscoveryState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is DiscoveryState.RUNNING

    # ======================= Events

    def add_event_handler(self, event: str, handler: SsdpEventHandler) -> int:
        """Adds a handler for 'added', 'deleted', or 'error' events. Handlers are called synchronously,
           in the order they were added, immediately after the registry is updated. Returns an ID that
           can be passed to remove_event_handler()."""
        if event not in self._event_handlers:
            raise SsdpValidationError(f"Unknown event '{event}'; must be one of {EVENT_NAMES}")
        i = self._i_next_event_handler
        self._i_next_event_handler += 1
        self._event_handlers[event][i] = handler
        return i

    def remove_event_handler(self, i: int) -> None:
        """Removes a previously added event handler."""
        for handlers in self._event_handlers.values():
            if i in handlers:
                del handlers[i]
                return
        raise KeyError(i)

    def _emit(self, event: str, arg: Any) -> None:
        for handler in list(self._event_handlers[event].values()):
            try:
                # Every handler gets its own snapshot
                handler(arg.copy() if isinstance(arg, SsdpDevice) else arg)
            except Exception as e:
                logger.warning(f"Handler for '{event}' event raised exception: {e}")

    # ======================= Lifecycle

    async def start_discovery(self, mx: int=DEFAULT_MX, st: str=DEFAULT_SEARCH_TARGET) -> None:
        """Starts a discovery session: opens the SSDP socket, sends the M-SEARCH burst, and
           starts watching for advertisements and expirations until stop_discovery() is called.

           The device registry is cleared when a session starts.

           Raises:
               SsdpConcurrencyError: a session is already active.
               SsdpValidationError:  mx is not an integer between 1 and 120, or st is not a string.
               SsdpSocketError:      the socket could not be bound, or a send failed.
        """
        if self._state is not DiscoveryState.IDLE:
            raise SsdpConcurrencyError("The discovery process is already running")
        mx, st = validate_search_params(mx, st)
        self._state = DiscoveryState.STARTING
        ssdp_socket: Optional[SsdpSocket] = None
        try:
            self.mx = mx
            self.st = st
            self.registry.clear()
            if self.interface_addresses is None:
                self.active_interface_addresses = get_multicast_interface_addresses()
            else:
                self.active_interface_addresses = list(self.interface_addresses)
            logger.debug(f"Starting discovery: mx={mx}, st='{st}', interfaces={self.active_interface_addresses}")
            ssdp_socket = SsdpSocket(
                self.active_interface_addresses,
                multicast_address=self.multicast_address,
                multicast_port=self.multicast_port
              )
            self._socket = ssdp_socket
            await ssdp_socket.start(self.handle_datagram, self._on_socket_error)
            if self._socket is not ssdp_socket or self._state is not DiscoveryState.STARTING:
                # stop_discovery() was called while the socket was opening
                ssdp_socket.close()
                return
            self._state = DiscoveryState.RUNNING
            await self.search()
            # A stop (and possibly a new start) during the burst makes this session stale
            if self._socket is ssdp_socket and self._state is DiscoveryState.RUNNING:
                self._expiration_task = asyncio.create_task(self._run_expiration_task())
                if self.msearch_interval is not None and self.msearch_interval > 0.0:
                    self._msearch_task = asyncio.create_task(self._run_msearch_task())
        except BaseException:
            if ssdp_socket is None or self._socket is ssdp_socket:
                self._close_socket()
                self._state = DiscoveryState.IDLE
            else:
                ssdp_socket.close()
            raise

    async def stop_discovery(self) -> None:
        """Stops the active discovery session. Does nothing if no session is active.

           The device registry is left as it was; get_active_device_list() continues to return
           the devices known when the session stopped. Description fetches already in flight are
           not cancelled.
        """
        if self._state in (DiscoveryState.IDLE, DiscoveryState.STOPPING):
            return
        logger.debug("Stopping discovery")
        self._state = DiscoveryState.STOPPING
        try:
            for task in (self._msearch_task, self._expiration_task):
                if task is not None:
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
                    except Exception as e:
                        logger.warning(f"Exception while cancelling discovery task: {e}")
            self._msearch_task = None
            self._expiration_task = None
        finally:
            self._close_socket()
            self._state = DiscoveryState.IDLE

    def _close_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    async def discover(
            self,
            mx: int=DEFAULT_MX,
            st: str=DEFAULT_SEARCH_TARGET,
            wait: int=DEFAULT_DISCOVER_WAIT
          ) -> List[SsdpDevice]:
        """Runs a discovery session for wait seconds and returns the devices found.

           Raises:
               SsdpConcurrencyError: a session is already active.
               SsdpValidationError:  mx, st, or wait is invalid.
        """
        if self._state is not DiscoveryState.IDLE:
            raise SsdpConcurrencyError("The discovery process is already running")
        validate_wait(wait)
        await self.start_discovery(mx=mx, st=st)
        try:
            await asyncio.sleep(wait)
        finally:
            await self.stop_discovery()
        return self.get_active_device_list()

    def get_active_device_list(self) -> List[SsdpDevice]:
        """Returns copies of all known devices, in no particular order. Empty before any discovery
           has been run."""
        return self.registry.snapshot()

    async def __aenter__(self) -> SsdpDiscovery:
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.stop_discovery()
        return False

    # ======================= M-SEARCH

    async def search(self) -> None:
        """Sends the M-SEARCH burst out of each interface in turn: selects the interface, waits
           for the switch to settle, then sends the request several times. Repeating the request
           makes up for multicast datagrams that are lost on busy or multi-homed networks.

           Raises SsdpSocketError if a send fails.
        """
        ssdp_socket = self._socket
        if self._state is not DiscoveryState.RUNNING or ssdp_socket is None:
            raise SsdpError("Discovery is not running")
        data = build_msearch_datagram(self.st, self.mx, self.multicast_address, self.multicast_port)
        for interface_address in self.active_interface_addresses:
            if ssdp_socket is not self._socket:
                return
            logger.debug(f"Sending M-SEARCH for '{self.st}' from {interface_address}")
            ssdp_socket.set_multicast_interface(interface_address)
            await asyncio.sleep(MULTICAST_INTERFACE_SETTLE_TIME)
            for _ in range(MSEARCH_REPEAT_COUNT):
                if ssdp_socket is not self._socket:
                    return
                ssdp_socket.sendto(data)
                await asyncio.sleep(MSEARCH_REPEAT_INTERVAL)

    async def _run_msearch_task(self) -> None:
        assert self.msearch_interval is not None
        logger.debug(f"M-SEARCH task starting, searching every {self.msearch_interval} seconds")
        try:
            while self._state is DiscoveryState.RUNNING:
                await asyncio.sleep(self.msearch_interval)
                try:
                    await self.search()
                except SsdpSocketError as e:
                    self._emit(EVENT_ERROR, e)
        except asyncio.CancelledError:
            logger.debug("M-SEARCH task cancelled; exiting")
            raise
        logger.debug("M-SEARCH task exiting")

    # ======================= Receive

    def handle_datagram(self, data: bytes, addr: HostAndPort) -> None:
        """Processes one datagram received on the SSDP socket."""
        if self._state not in (DiscoveryState.STARTING, DiscoveryState.RUNNING):
            return
        text = data.decode('utf-8', errors='replace')
        if text.startswith('M-SEARCH'):
            # Our own request, looped back, or another host's search
            return
        headers = parse_ssdp_headers(text)
        if headers is None or 'USN' not in headers:
            return
        address = addr[0]
        usn = headers['USN']
        expire = self._clock() + get_max_age(headers)
        statement_line = headers[STATEMENT_LINE_KEY]
        logger.debug(f"Received SSDP message from {addr}: {headers}")

        if self._response_statement_re.match(statement_line):
            if usn not in self.registry:
                self._add_device(address, headers, expire)
        elif self._notify_statement_re.match(statement_line):
            nt = headers.get('NT')
            if not nt:
                return
            nts = headers.get('NTS')
            if nts == 'ssdp:alive' and nt == self.st:
                if not self.registry.refresh(usn, expire):
                    self._add_device(address, headers, expire)
            elif nts == 'ssdp:byebye':
                device = self.registry.get(usn)
                if device is not None:
                    self._emit(EVENT_DELETED, device)
                    self.registry.remove(usn)

    def _add_device(self, address: str, headers: SsdpHeaders, expire: float) -> None:
        device = SsdpDevice(address, headers, expire)
        self.registry.add(device)
        self._emit(EVENT_ADDED, device)
        location = device.location
        if location is None:
            logger.debug(f"No LOCATION header; not fetching description for {device}")
        elif not is_location_on_host(location, address):
            logger.info(f"Description URL {location} is not on advertising host {address}; not fetching description")
        else:
            task = asyncio.create_task(self._fetch_description(device, location))
            self._fetch_tasks.add(task)
            task.add_done_callback(self._fetch_tasks.discard)

    async def _fetch_description(self, device: SsdpDevice, location: str) -> None:
        try:
            description = await self.description_fetcher.fetch(location)
        except DescriptionFetchError as e:
            logger.debug(f"Unable to fetch description for {device}: {e}")
            return
        self.registry.set_description(device, description)

    def _on_socket_error(self, exc: Exception) -> None:
        error = SsdpSocketError(f"SSDP socket error: {exc}")
        error.__cause__ = exc
        self._emit(EVENT_ERROR, error)

    # ======================= Expiration

    def check_expiration(self) -> None:
        """Removes every device whose expiration time has passed, emitting 'deleted' for each."""
        for device in self.registry.get_expired(self._clock()):
            self._emit(EVENT_DELETED, device)
            self.registry.remove(device.usn)

    async def _run_expiration_task(self) -> None:
        logger.debug(f"Expiration task starting, checking every {self.expiration_check_interval} seconds")
        try:
            while True:
                self.check_expiration()
                await asyncio.sleep(self.expiration_check_interval)
        except asyncio.CancelledError:
            logger.debug("Expiration task cancelled; exiting")
            raise
