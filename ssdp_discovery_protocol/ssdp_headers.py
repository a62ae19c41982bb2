#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Parsing and formatting of the HTTP-like text carried in SSDP datagrams.

SSDP messages consist of a statement line (e.g., "HTTP/1.1 200 OK" or "NOTIFY * HTTP/1.1")
followed by "NAME: value" header lines, each terminated by CRLF. Only the small fixed
surface needed for discovery is handled here; this is not a general HTTP parser.
"""

from __future__ import annotations

import re

from .internal_types import *
from .constants import DEFAULT_MAX_AGE, SSDP_MULTICAST_ADDRESS, SSDP_PORT

STATEMENT_LINE_KEY = '$'
"""The key under which the raw statement line is stored in a parsed header dict."""

_statement_re = re.compile(r'^(NOTIFY|HTTP)')
_header_line_re = re.compile(r'^([^:\s]+)\s*:\s*(.+)')
_max_age_re = re.compile(r'max-age=(\d+)')

def parse_ssdp_headers(text: str) -> Optional[SsdpHeaders]:
    """Parse the text of an SSDP response or NOTIFY message into a header dict.

    Header names are upper-cased. The statement line is stored verbatim under
    the key '$'. Lines that are not of the form "NAME: value" are skipped.

    Returns None if the statement line does not begin with "NOTIFY" or "HTTP".
    """
    lines = text.split('\r\n')
    first = lines[0]
    if not _statement_re.match(first):
        return None
    headers: SsdpHeaders = { STATEMENT_LINE_KEY: first }
    for line in lines[1:]:
        m = _header_line_re.match(line)
        if m:
            headers[m.group(1).upper()] = m.group(2)
    return headers

def get_max_age(headers: Mapping[str, str], default: int=DEFAULT_MAX_AGE) -> int:
    """Returns the max-age directive of the CACHE-CONTROL header, or default if there is none."""
    cache_control = headers.get('CACHE-CONTROL')
    if cache_control is None:
        return default
    m = _max_age_re.search(cache_control)
    if m is None:
        return default
    return int(m.group(1))

def encode_http_header(name: str, value: str) -> bytes:
    """Encodes a raw HTTP header name/value pair as a UTF-8 "NAME: value\r\n" line.

    The value is written exactly as given; no MIME encoding or line folding is applied,
    since SSDP peers compare values such as ST and NT literally.
    """
    return f"{name}: {value}\r\n".encode('utf-8')

def build_msearch_datagram(
        st: str,
        mx: int,
        multicast_address: str=SSDP_MULTICAST_ADDRESS,
        multicast_port: int=SSDP_PORT
      ) -> bytes:
    """Builds the raw M-SEARCH request datagram for a search target and MX value."""
    return (
        b'M-SEARCH * HTTP/1.1\r\n' +
        encode_http_header('HOST', f"{multicast_address}:{multicast_port}") +
        encode_http_header('ST', st) +
        encode_http_header('MAN', '"ssdp:discover"') +
        encode_http_header('MX', str(mx)) +
        b'\r\n'
      )
