# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package ssdp_discovery_protocol implements a client for the Simple Service Discovery Protocol (SSDP).

SSDP is the UDP multicast discovery protocol defined by the UPnP Forum. Devices (media
renderers, media servers, routers, printers, smart TVs, etc.) answer M-SEARCH requests sent
to 239.255.255.250:1900 and periodically announce themselves with NOTIFY messages. Each
announcement carries a unique service name (USN), a lifetime (max-age), and the URL of an
XML document that describes the device.

This package discovers such devices on all local private IPv4 networks, keeps track of which
of them are still alive, and retrieves their XML descriptions.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict

from .exceptions import (
    SsdpError,
    SsdpValidationError,
    SsdpConcurrencyError,
    SsdpSocketError,
    DescriptionFetchError,
    DescriptionParseError,
  )

from .ssdp_headers import parse_ssdp_headers, get_max_age, build_msearch_datagram
from .description_parser import DescriptionParser, ElementTreeDescriptionParser
from .description_fetcher import DescriptionFetcher, DeviceDescription
from .device_registry import SsdpDevice, DeviceRegistry
from .ssdp_socket import SsdpSocket
from .discovery import (
    SsdpDiscovery,
    DiscoveryState,
    EVENT_ADDED,
    EVENT_DELETED,
    EVENT_ERROR,
  )
from .util import get_multicast_interface_addresses, CaseInsensitiveDict
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    DEFAULT_MX,
    DEFAULT_SEARCH_TARGET,
    DEFAULT_DISCOVER_WAIT,
  )

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict',
    'SsdpError', 'SsdpValidationError', 'SsdpConcurrencyError', 'SsdpSocketError',
    'DescriptionFetchError', 'DescriptionParseError',
    'parse_ssdp_headers', 'get_max_age', 'build_msearch_datagram',
    'DescriptionParser', 'ElementTreeDescriptionParser',
    'DescriptionFetcher', 'DeviceDescription',
    'SsdpDevice', 'DeviceRegistry',
    'SsdpSocket',
    'SsdpDiscovery', 'DiscoveryState',
    'EVENT_ADDED', 'EVENT_DELETED', 'EVENT_ERROR',
    'get_multicast_interface_addresses',
    'CaseInsensitiveDict',
    'SSDP_MULTICAST_ADDRESS', 'SSDP_PORT',
    'DEFAULT_MX', 'DEFAULT_SEARCH_TARGET', 'DEFAULT_DISCOVER_WAIT',
]
