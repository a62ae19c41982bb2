"""Tests for the ssdp command-line tool."""

import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from ssdp_discovery_protocol import __version__
from ssdp_discovery_protocol.__main__ import arun


@pytest.mark.asyncio
async def test_version(capsys):
    assert await arun(["version"]) == 0
    assert capsys.readouterr().out.strip() == __version__


@pytest.mark.asyncio
async def test_no_command(capsys):
    assert await arun([]) == 1
    assert "A command is required" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_invalid_mx_is_an_error(capsys):
    assert await arun(["discover", "--mx", "0", "-b", "10.0.0.2"]) == 1
    assert '"mx" is invalid' in capsys.readouterr().err


@pytest.mark.asyncio
async def test_unknown_argument_is_an_error(capsys):
    assert await arun(["discover", "--frobnicate"]) == 2


@pytest.mark.asyncio
async def test_discover_prints_json(capsys, fake_socket):
    assert await arun(["discover", "--wait", "1", "-b", "10.0.0.2"]) == 0
    assert json.loads(capsys.readouterr().out) == []
    assert fake_socket.instances[-1].interface_addresses == ["10.0.0.2"]


@pytest.mark.asyncio
async def test_describe(capsys):
    async def handle(request):
        return web.Response(
            text="<root><device><friendlyName>Office</friendlyName></device></root>",
            content_type="text/xml",
          )

    app = web.Application()
    app.router.add_get("/desc.xml", handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        url = str(server.make_url("/desc.xml"))
        assert await arun(["describe", url]) == 0
        assert json.loads(capsys.readouterr().out) == {"device": {"friendlyName": "Office"}}
        assert await arun(["describe", "--raw", url]) == 0
        assert "<friendlyName>Office</friendlyName>" in capsys.readouterr().out
    finally:
        await server.close()
