#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
DescriptionFetcher -- Retrieves UPnP device description XML over HTTP.

  1. All fetch requests are serialized through a single FIFO queue, so at most one HTTP
     request is in flight at any time. Many UPnP responders are small embedded devices
     that do not cope well with concurrent requests.
  2. Each result (success or failure) is cached by URL for a short time, so devices that
     announce the same description URL many times (one USN per embedded device and service)
     cause a single HTTP request.
  3. The XML is converted to a structured object with an optional DescriptionParser.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import copy
import time
from collections import deque

import aiohttp

from .internal_types import *
from .pkg_logging import logger
from .constants import DESCRIPTION_FETCH_TIMEOUT, DESCRIPTION_CACHE_TTL
from .exceptions import DescriptionFetchError
from .description_parser import DescriptionParser, ElementTreeDescriptionParser
from .util import CaseInsensitiveDict

DEFAULT_DESCRIPTION_PARSER: DescriptionParser = ElementTreeDescriptionParser()

class DeviceDescription:
    """The result of a successful description fetch."""

    headers: CaseInsensitiveDict[str]
    """The HTTP response headers"""

    xml: str
    """The raw description XML text"""

    obj: Optional[Jsonable]
    """The description converted to a structured object, or None if no parser is
       available or the XML could not be parsed."""

    def __init__(self, headers: CaseInsensitiveDict[str], xml: str, obj: Optional[Jsonable]=None) -> None:
        self.headers = headers
        self.xml = xml
        self.obj = obj

    def copy(self) -> DeviceDescription:
        return copy.deepcopy(self)

    def __str__(self) -> str:
        return f"DeviceDescription(headers={dict(self.headers)}, xml=<{len(self.xml)} chars>, obj={self.obj!r})"

    def __repr__(self) -> str:
        return str(self)

class _CacheEntry:
    timestamp: float
    description: Optional[DeviceDescription] = None
    error: Optional[DescriptionFetchError] = None

    def __init__(
            self,
            timestamp: float,
            description: Optional[DeviceDescription]=None,
            error: Optional[DescriptionFetchError]=None
          ) -> None:
        assert (description is None) != (error is None)
        self.timestamp = timestamp
        self.description = description
        self.error = error

class DescriptionFetcher:
    """
    Fetches device descriptions through a serialized, cached request queue.

    Usage:
        fetcher = DescriptionFetcher()
        try:
            description = await fetcher.fetch("http://192.168.1.20:49152/description.xml")
            print(description.obj)
        except DescriptionFetchError as e:
            print(f"Fetch failed: {e}")
    """

    parser: Optional[DescriptionParser]
    """The parser used to convert the XML into an object. If None, DeviceDescription.obj is always None."""

    timeout: float
    """Seconds before an HTTP request is aborted."""

    cache_ttl: float
    """Seconds that a result is cached."""

    n_http_requests: int = 0
    """The number of HTTP requests that have been issued. Cache hits are not counted."""

    _clock: Callable[[], float]
    _queue: Deque[Tuple[str, Future[DeviceDescription]]]
    _cache: Dict[str, _CacheEntry]
    _queue_task: Optional[asyncio.Task[None]] = None

    def __init__(
            self,
            parser: Optional[DescriptionParser]=DEFAULT_DESCRIPTION_PARSER,
            timeout: float=DESCRIPTION_FETCH_TIMEOUT,
            cache_ttl: float=DESCRIPTION_CACHE_TTL,
            clock: Callable[[], float]=time.monotonic
          ) -> None:
        self.parser = parser
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._queue = deque()
        self._cache = {}

    @property
    def is_running(self) -> bool:
        """True while the request queue is being drained."""
        return self._queue_task is not None and not self._queue_task.done()

    async def fetch(self, url: str) -> DeviceDescription:
        """Fetches the device description at url.

        Raises DescriptionFetchError if the request fails, times out, or returns a status other than 200.
        A cached failure is raised again without a new request until it expires.
        """
        future: Future[DeviceDescription] = asyncio.get_running_loop().create_future()
        self._queue.append((url, future))
        if not self.is_running:
            self._queue_task = asyncio.create_task(self._run_queue())
        return await future

    def clear_cache(self) -> None:
        self._cache.clear()

    def _expire_cache(self) -> None:
        now = self._clock()
        for url in list(self._cache.keys()):
            if now - self._cache[url].timestamp > self.cache_ttl:
                del self._cache[url]

    async def _run_queue(self) -> None:
        while True:
            self._expire_cache()
            if len(self._queue) == 0:
                break
            url, future = self._queue.popleft()
            entry = self._cache.get(url)
            if entry is None:
                try:
                    description = await self._fetch_description(url)
                    entry = _CacheEntry(self._clock(), description=description)
                except DescriptionFetchError as e:
                    logger.debug(f"Description fetch failed for {url}: {e}")
                    entry = _CacheEntry(self._clock(), error=e)
                except Exception as e:
                    logger.warning(f"Unexpected exception fetching description {url}: {e}")
                    entry = _CacheEntry(self._clock(), error=DescriptionFetchError(f"url={url}, error={e}"))
                self._cache[url] = entry
            else:
                logger.debug(f"Description cache hit for {url}")
            if future.done():
                # The caller was cancelled while waiting
                continue
            if entry.error is not None:
                future.set_exception(DescriptionFetchError(*entry.error.args))
            else:
                assert entry.description is not None
                future.set_result(entry.description.copy())

    async def _fetch_description(self, url: str) -> DeviceDescription:
        headers, xml = await self._fetch_xml(url)
        obj: Optional[Jsonable] = None
        if self.parser is not None:
            try:
                obj = self.parser.parse(xml)
            except Exception as e:
                logger.warning(f"Description parser raised exception for {url}: {e}")
        return DeviceDescription(headers, xml, obj)

    async def _fetch_xml(self, url: str) -> Tuple[CaseInsensitiveDict[str], str]:
        """Issues the HTTP GET for url and returns (response_headers, body_text)."""
        self.n_http_requests += 1
        logger.debug(f"Fetching device description {url}")
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise DescriptionFetchError(f"HTTP RESPONSE ERROR: url={url}, statusCode={response.status}")
                    xml = await response.text(errors='replace')
                    headers: CaseInsensitiveDict[str] = CaseInsensitiveDict(response.headers.items())
        except asyncio.TimeoutError as e:
            raise DescriptionFetchError('TIMEOUT') from e
        except (aiohttp.ClientError, ValueError) as e:
            raise DescriptionFetchError(f"HTTP REQUEST ERROR: url={url}, error={e}") from e
        return (headers, xml)
