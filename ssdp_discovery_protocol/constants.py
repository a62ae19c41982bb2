# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SSDP_MULTICAST_ADDRESS = "239.255.255.250"
"""The multicast address used by SSDP for UDP multicast."""

SSDP_PORT = 1900
"""The port number used by SSDP for UDP multicast."""

DEFAULT_MX = 3
"""The default MX header value (seconds) sent in M-SEARCH requests."""

MIN_MX = 1
MAX_MX = 120

DEFAULT_SEARCH_TARGET = "upnp:rootdevice"
"""The default ST header value sent in M-SEARCH requests."""

DEFAULT_MAX_AGE = 1800
"""The lifetime (in seconds) assumed for an advertisement without a usable CACHE-CONTROL header."""

DEFAULT_DISCOVER_WAIT = 5
"""The default number of seconds that discover() collects responses."""

MIN_DISCOVER_WAIT = 1
MAX_DISCOVER_WAIT = 120

MSEARCH_REPEAT_COUNT = 3
"""The number of times the M-SEARCH datagram is sent on each interface."""

MSEARCH_REPEAT_INTERVAL = 0.1
"""Seconds to wait after each M-SEARCH send."""

MULTICAST_INTERFACE_SETTLE_TIME = 0.2
"""Seconds to wait after switching the outgoing multicast interface before sending."""

EXPIRATION_CHECK_INTERVAL = 1.0
"""Seconds between sweeps of the device registry for expired devices."""

DESCRIPTION_FETCH_TIMEOUT = 1.0
"""Seconds before a device description HTTP request is aborted."""

DESCRIPTION_CACHE_TTL = 60.0
"""Seconds that a fetched device description (or fetch failure) is cached."""
