#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The table of devices discovered by SsdpDiscovery, keyed by USN.

Records held by the registry are never handed out directly; every read returns
a deep copy so that callers cannot modify the discovery engine's state.
"""

from __future__ import annotations

import copy

from .internal_types import *
from .pkg_logging import logger
from .description_fetcher import DeviceDescription
from .util import CaseInsensitiveDict

class SsdpDevice:
    """A device (or service) discovered through an M-SEARCH response or an ssdp:alive NOTIFY."""

    address: str
    """The source IP address of the advertisement"""

    headers: SsdpHeaders
    """The SSDP headers of the first advertisement seen, keyed by upper-cased name. The
       statement line (e.g., "HTTP/1.1 200 OK") is stored under the key '$'."""

    expire: float
    """The time (in seconds since the epoch) after which the device is considered gone
       unless another ssdp:alive advertisement is received."""

    dheaders: Optional[CaseInsensitiveDict[str]] = None
    """The HTTP response headers of the device description, once fetched."""

    description: Optional[Jsonable] = None
    """The parsed device description, once fetched. None if it has not been fetched
       or could not be parsed."""

    description_xml: Optional[str] = None
    """The raw device description XML, once fetched."""

    def __init__(self, address: str, headers: SsdpHeaders, expire: float) -> None:
        self.address = address
        self.headers = headers
        self.expire = expire

    @property
    def usn(self) -> str:
        return self.headers['USN']

    @property
    def location(self) -> Optional[str]:
        return self.headers.get('LOCATION')

    @property
    def has_description(self) -> bool:
        return self.description_xml is not None

    def set_description(self, description: DeviceDescription) -> None:
        self.dheaders = description.headers
        self.description = description.obj
        self.description_xml = description.xml

    def copy(self) -> SsdpDevice:
        """Returns an independent deep copy of this device record."""
        return copy.deepcopy(self)

    def to_jsonable(self) -> JsonableDict:
        """Returns the device as JSON-serializable data:
              {address, headers, expire, dheaders?, description?, descriptionXML?}
        """
        result: JsonableDict = {
            "address": self.address,
            "headers": dict(self.headers),
            "expire": self.expire,
        }
        if self.has_description:
            result["dheaders"] = None if self.dheaders is None else dict(self.dheaders)
            result["description"] = copy.deepcopy(self.description)
            result["descriptionXML"] = self.description_xml
        return result

    def __str__(self) -> str:
        return f"SsdpDevice(usn='{self.usn}', address={self.address}, expire={self.expire})"

    def __repr__(self) -> str:
        return str(self)

class DeviceRegistry:
    """In-memory table of SsdpDevice records keyed by USN, with at most one record per USN."""

    _devices: Dict[str, SsdpDevice]

    def __init__(self) -> None:
        self._devices = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, usn: object) -> bool:
        return usn in self._devices

    def get(self, usn: str) -> Optional[SsdpDevice]:
        """Returns the live record for usn, or None. For use by the discovery engine only;
           the record must not escape to callers without copying."""
        return self._devices.get(usn)

    def add(self, device: SsdpDevice) -> None:
        usn = device.usn
        assert usn not in self._devices
        self._devices[usn] = device
        logger.debug(f"Device added: {device}")

    def remove(self, usn: str) -> Optional[SsdpDevice]:
        """Removes and returns the record for usn, or None if there is no such record."""
        device = self._devices.pop(usn, None)
        if device is not None:
            logger.debug(f"Device removed: {device}")
        return device

    def refresh(self, usn: str, expire: float) -> bool:
        """Updates the expiration time of a known device. Returns False if usn is unknown."""
        device = self._devices.get(usn)
        if device is None:
            return False
        device.expire = expire
        return True

    def get_expired(self, now: float) -> List[SsdpDevice]:
        """Returns the live records whose expiration time is earlier than now."""
        return [ device for device in self._devices.values() if device.expire < now ]

    def set_description(self, device: SsdpDevice, description: DeviceDescription) -> bool:
        """Merges a fetched description into device, provided device is still the live record
           for its USN. A device that has expired, said byebye, or been replaced by a new discovery
           session is left alone. Returns True if the description was merged."""
        if self._devices.get(device.usn) is not device:
            logger.debug(f"Discarding description for device that is no longer registered: {device}")
            return False
        device.set_description(description)
        return True

    def snapshot(self) -> List[SsdpDevice]:
        """Returns deep copies of all records, in no particular order."""
        return [ device.copy() for device in self._devices.values() ]

    def clear(self) -> None:
        self._devices.clear()
