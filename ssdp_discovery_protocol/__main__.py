#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from signal import SIGINT, SIGTERM

from ssdp_discovery_protocol.internal_types import *

from ssdp_discovery_protocol import (
    __version__ as pkg_version,
    SsdpDiscovery,
    SsdpDevice,
    DescriptionFetcher,
    EVENT_ADDED,
    EVENT_DELETED,
    EVENT_ERROR,
    DEFAULT_MX,
    DEFAULT_SEARCH_TARGET,
    DEFAULT_DISCOVER_WAIT,
  )

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def device_summary(device: SsdpDevice, event: Optional[str]=None, include_xml: bool=False) -> JsonableDict:
    summary = device.to_jsonable()
    if not include_xml:
        summary.pop("descriptionXML", None)
    if event is not None:
        summary["event"] = event
    return summary

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def _get_bind_addresses(self) -> Optional[List[str]]:
        bind_addresses: Optional[List[str]] = self._args.bind_addresses
        if not bind_addresses is None and len(bind_addresses) == 0:
            bind_addresses = None
        return bind_addresses

    async def cmd_discover(self) -> int:
        include_xml: bool = self._args.include_xml
        discovery = SsdpDiscovery(interface_addresses=self._get_bind_addresses())
        devices = await discovery.discover(mx=self._args.mx, st=self._args.st, wait=self._args.wait)
        results: List[JsonableDict] = [ device_summary(device, include_xml=include_xml) for device in devices ]
        print(json.dumps(results, indent=2, sort_keys=True))
        return 0

    async def cmd_watch(self) -> int:
        include_xml: bool = self._args.include_xml
        duration: Optional[float] = self._args.duration

        def on_device(event: str) -> Callable[[SsdpDevice], None]:
            def handler(device: SsdpDevice) -> None:
                print(json.dumps(device_summary(device, event=event, include_xml=include_xml), indent=2, sort_keys=True))
                sys.stdout.flush()
            return handler

        def on_error(exc: Exception) -> None:
            print(f"ssdp: socket error: {exc}", file=sys.stderr)

        discovery = SsdpDiscovery(interface_addresses=self._get_bind_addresses())
        discovery.add_event_handler(EVENT_ADDED, on_device(EVENT_ADDED))
        discovery.add_event_handler(EVENT_DELETED, on_device(EVENT_DELETED))
        discovery.add_event_handler(EVENT_ERROR, on_error)

        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()
        def on_signal() -> None:
            logging.debug("Detected SIGINT/SIGTERM, stopping discovery")
            if not done.done():
                done.set_result(None)
        if not self._provide_traceback:
            for signal in (SIGINT, SIGTERM):
                loop.add_signal_handler(signal, on_signal)
        try:
            async with discovery:
                await discovery.start_discovery(mx=self._args.mx, st=self._args.st)
                try:
                    await asyncio.wait_for(done, timeout=duration)
                except asyncio.TimeoutError:
                    pass
        finally:
            if not self._provide_traceback:
                for signal in (SIGINT, SIGTERM):
                    loop.remove_signal_handler(signal)
        return 0

    async def cmd_describe(self) -> int:
        url: str = self._args.url
        fetcher = DescriptionFetcher(timeout=self._args.timeout)
        description = await fetcher.fetch(url)
        if self._args.raw:
            print(description.xml)
        else:
            print(json.dumps(description.obj, indent=2, sort_keys=True))
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the ssdp command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Discover UPnP devices on the local network with SSDP.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')

        def add_search_arguments(subparser: argparse.ArgumentParser) -> None:
            subparser.add_argument('--mx', type=int, default=DEFAULT_MX,
                                help=f'''The MX value of the M-SEARCH request, 1-120. Default: {DEFAULT_MX}''')
            subparser.add_argument('--st', default=DEFAULT_SEARCH_TARGET,
                                help=f'''The search target. Default: "{DEFAULT_SEARCH_TARGET}"''')
            subparser.add_argument('-b', '--bind', dest="bind_addresses", action='append', default=[],
                                help='''The local interface IP address to multicast on. May be repeated. Default: all local private IPv4 addresses.''')
            subparser.add_argument('--include-xml', dest="include_xml", action='store_true', default=False,
                                help='Include the raw description XML in the output. Default: False')

        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Search for devices and list those found")
        add_search_arguments(parser_discover)
        parser_discover.add_argument('--wait', type=int, default=DEFAULT_DISCOVER_WAIT,
                            help=f'''The number of seconds to collect responses, 1-120. Default: {DEFAULT_DISCOVER_WAIT}''')
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= watch

        parser_watch = subparsers.add_parser('watch', description="Search for devices and report them as they come and go")
        add_search_arguments(parser_watch)
        parser_watch.add_argument('--duration', type=float, default=None,
                            help='''The number of seconds to watch. Default: until interrupted''')
        parser_watch.set_defaults(func=self.cmd_watch)

        # ======================= describe

        parser_describe = subparsers.add_parser('describe', description="Fetch a device description")
        parser_describe.add_argument('url',
                            help='''The URL of the device description (the LOCATION header of an advertisement)''')
        parser_describe.add_argument('--timeout', type=float, default=5.0,
                            help='''The HTTP request timeout, in seconds. Default: 5.0''')
        parser_describe.add_argument('--raw', action='store_true', default=False,
                            help='Print the XML instead of the parsed description. Default: False')
        parser_describe.set_defaults(func=self.cmd_describe)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"ssdp: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"ssdp: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
