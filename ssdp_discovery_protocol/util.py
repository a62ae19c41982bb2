#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

import netifaces
import socket
from ipaddress import IPv4Address, IPv4Network

from .internal_types import *

from requests.structures import CaseInsensitiveDict

PRIVATE_IPV4_NETWORKS: List[IPv4Network] = [
    IPv4Network('10.0.0.0/8'),
    IPv4Network('172.16.0.0/12'),
    IPv4Network('192.168.0.0/16'),
]
"""The RFC 1918 private address blocks that SSDP multicast is restricted to."""

LINK_LOCAL_IPV4_NETWORK = IPv4Network('169.254.0.0/16')

def is_private_ipv4_address(ip_str: str) -> bool:
    """Returns True if ip_str is an IPv4 address inside one of the private ranges
       10.0.0.0/8, 172.16.0.0/12, or 192.168.0.0/16, and is neither loopback nor link-local."""
    try:
        addr = IPv4Address(ip_str)
    except ValueError:
        return False
    if addr.is_loopback or addr in LINK_LOCAL_IPV4_NETWORK:
        return False
    return any(addr in network for network in PRIVATE_IPV4_NETWORKS)

def get_multicast_interface_addresses_and_interfaces() -> List[Tuple[str, str]]:
    """Returns a list of Tuple[ip_address: str, interface_name: str] for the local IPv4 addresses
       that SSDP multicast should be sent and received on. Only private, non-loopback, non-link-local
       IPv4 addresses are included.

       Addresses on the default gateway interface precede all other addresses; otherwise
       interface enumeration order is preserved.
    """
    result_with_priority: List[Tuple[int, int, str, str]] = []
    _, default_gateway_ifname = get_default_ip_gateway(socket.AF_INET)
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        if netifaces.AF_INET in ifinfo:
            for addrinfo in ifinfo[netifaces.AF_INET]:
                ip_str = addrinfo.get('addr')
                if not isinstance(ip_str, str) or not is_private_ipv4_address(ip_str):
                    continue
                priority = 0 if ifname == default_gateway_ifname else 1
                result_with_priority.append((priority, len(result_with_priority), ip_str, ifname))
    return [ (ip, ifname) for _, _, ip, ifname in sorted(result_with_priority) ]

def get_multicast_interface_addresses() -> List[str]:
    """Returns a List[ip_address: str] of the local IPv4 addresses that SSDP multicast should
       be sent and received on. See get_multicast_interface_addresses_and_interfaces()."""
    return [ ip for ip, _ in get_multicast_interface_addresses_and_interfaces() ]

def get_default_ip_gateway(address_family: socket.AddressFamily | int=socket.AF_INET) -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IP gateway in the
       requested family, if any.
       returns (None, None) if there is no default gateway in the requested family."""
    assert int(address_family) in (int(socket.AF_INET), int(socket.AF_INET6))
    netiface_family = netifaces.AF_INET if int(address_family) == int(socket.AF_INET) else netifaces.AF_INET6
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netiface_family in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netiface_family][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)

if __name__ == "__main__":
    for ip, ifname in get_multicast_interface_addresses_and_interfaces():
        print(f"{ifname}: {ip}")
