#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Union, Any, Set, Tuple, Type, Callable, Awaitable, Deque,
    Iterable, Iterator, Mapping, MutableMapping, Sequence, AsyncIterator,
    AsyncIterable, AsyncContextManager, TYPE_CHECKING,
  )

from types import TracebackType

from typing_extensions import Self, Protocol, TypeAlias

Jsonable: TypeAlias = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A value that can be serialized to JSON"""

JsonableDict: TypeAlias = Dict[str, Jsonable]
"""A JSON-serializable dict"""

HostAndPort: TypeAlias = Tuple[str, int]
"""An (ip_address, port) tuple as used by socket addresses"""

SsdpHeaders: TypeAlias = Dict[str, str]
"""SSDP headers keyed by upper-cased header name, plus the statement line under key '$'"""
