"""Tests for the protocol bridge state machine."""

from __future__ import annotations

import json

import httpx
import pytest

from helpers import ControlPlane, request_json
from np_mcp_proxy.context import ProxyContext
from np_mcp_proxy.core.errors import INTERNAL_ERROR_CODE
from np_mcp_proxy.mcp.bridge import ParsedRequest, Rejected, parse_request


def _line(**message) -> str:
    return json.dumps(message)


# ---------------------------------------------------------------------------
# parse_request
# ---------------------------------------------------------------------------


class TestParseRequest:
    def test_valid(self):
        outcome = parse_request('{"jsonrpc":"2.0","id":1,"method":"ping"}')
        assert isinstance(outcome, ParsedRequest)
        assert outcome.id == 1
        assert outcome.method == "ping"
        assert not outcome.is_notification

    def test_invalid_json(self):
        outcome = parse_request("{not json")
        assert isinstance(outcome, Rejected)
        assert outcome.request_id is None
        assert "Invalid JSON format" in outcome.error.message

    def test_non_object(self):
        assert isinstance(parse_request("[1, 2]"), Rejected)

    def test_wrong_version_keeps_id(self):
        outcome = parse_request('{"jsonrpc":"1.0","id":5,"method":"ping"}')
        assert isinstance(outcome, Rejected)
        assert outcome.request_id == 5
        assert outcome.error.message == "Invalid JSON-RPC version"

    def test_missing_method(self):
        outcome = parse_request('{"jsonrpc":"2.0","id":"a"}')
        assert isinstance(outcome, Rejected)
        assert outcome.request_id == "a"
        assert outcome.error.message == "Missing method"

    def test_empty_method(self):
        assert isinstance(parse_request('{"jsonrpc":"2.0","id":1,"method":""}'), Rejected)

    def test_notification_without_id(self):
        outcome = parse_request('{"jsonrpc":"2.0","method":"tools/call"}')
        assert outcome.is_notification

    def test_notification_prefix_with_id(self):
        outcome = parse_request('{"jsonrpc":"2.0","id":3,"method":"notifications/initialized"}')
        assert outcome.is_notification

    def test_null_id_is_a_request(self):
        outcome = parse_request('{"jsonrpc":"2.0","id":null,"method":"ping"}')
        assert not outcome.is_notification


# ---------------------------------------------------------------------------
# Local methods
# ---------------------------------------------------------------------------


async def test_ping(context, control_plane: ControlPlane):
    response = await context.bridge.process('{"jsonrpc":"2.0","id":1,"method":"ping"}')
    assert response == {"jsonrpc": "2.0", "id": 1, "result": {}}
    assert control_plane.requests == []


async def test_initialize(context, control_plane: ControlPlane):
    response = await context.bridge.process(
        _line(jsonrpc="2.0", id=0, method="initialize", params={"protocolVersion": "2024-11-05"})
    )
    assert response["id"] == 0
    assert response["result"] == {
        "protocolVersion": context.settings.PROTOCOL_VERSION,
        "capabilities": {"tools": {}},
        "serverInfo": {"name": "Nullplatform MCP Proxy", "version": "1.0.0"},
    }
    assert control_plane.requests == []


async def test_initialize_uses_configured_versions(make_settings, control_plane: ControlPlane):
    settings = make_settings(PROTOCOL_VERSION="2025-03-26", PROXY_VERSION="2.1.0", PROXY_NAME="Fleet")
    async with ProxyContext.create(settings, http=control_plane.client()) as ctx:
        response = await ctx.bridge.process(_line(jsonrpc="2.0", id=1, method="initialize"))
    assert response["result"]["protocolVersion"] == "2025-03-26"
    assert response["result"]["serverInfo"] == {"name": "Fleet", "version": "2.1.0"}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "line",
    [
        '{"jsonrpc":"2.0","method":"notifications/initialized"}',
        '{"jsonrpc":"2.0","id":9,"method":"notifications/cancelled"}',
        '{"jsonrpc":"2.0","method":"tools/call","params":{}}',
    ],
)
async def test_notifications_get_no_response(context, control_plane: ControlPlane, line):
    assert await context.bridge.process(line) is None
    assert control_plane.requests == []


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


async def test_parse_error(context):
    response = await context.bridge.process("{oops")
    assert response["id"] is None
    assert response["error"]["code"] == INTERNAL_ERROR_CODE
    assert "Invalid JSON format" in response["error"]["message"]
    assert "result" not in response


async def test_invalid_version(context):
    response = await context.bridge.process('{"jsonrpc":"1.0","id":4,"method":"ping"}')
    assert response == {
        "jsonrpc": "2.0",
        "id": 4,
        "error": {"code": INTERNAL_ERROR_CODE, "message": "Invalid JSON-RPC version"},
    }


async def test_remote_http_error(context, control_plane: ControlPlane):
    control_plane.command_responses.append(httpx.Response(500, text="internal"))
    response = await context.bridge.process(_line(jsonrpc="2.0", id=2, method="tools/call", params={}))
    assert response["id"] == 2
    assert response["error"]["code"] == INTERNAL_ERROR_CODE
    assert "HTTP 500" in response["error"]["message"]


async def test_auth_error(context, control_plane: ControlPlane):
    control_plane.token_responses.append(httpx.Response(401, json={"message": "invalid apikey"}))
    response = await context.bridge.process(_line(jsonrpc="2.0", id=3, method="tools/list"))
    assert response["id"] == 3
    assert response["error"]["code"] == INTERNAL_ERROR_CODE
    assert "invalid apikey" in response["error"]["message"]


async def test_unexpected_exception_is_contained(context, monkeypatch):
    async def _explode(request):
        raise KeyError("surprise")

    monkeypatch.setattr(context.dispatcher, "execute", _explode)
    response = await context.bridge.process(_line(jsonrpc="2.0", id=8, method="tools/list"))
    assert response["id"] == 8
    assert response["error"]["code"] == INTERNAL_ERROR_CODE


# ---------------------------------------------------------------------------
# Forwarding
# ---------------------------------------------------------------------------


async def test_tools_call_end_to_end(context, control_plane: ControlPlane):
    control_plane.command_responses.append(httpx.Response(200, json={"result": {"ok": True}}))
    response = await context.bridge.process(
        _line(jsonrpc="2.0", id=2, method="tools/call", params={"name": "echo"})
    )
    assert response == {"jsonrpc": "2.0", "id": 2, "result": {"ok": True}}

    data = request_json(control_plane.command_requests[0])["command"]["data"]
    assert data == {"method": "tools/call", "params": {"name": "echo"}}


async def test_remote_jsonrpc_error_passes_through(context, control_plane: ControlPlane):
    error = {"code": -32601, "message": "Method not found"}
    control_plane.command_responses.append(httpx.Response(200, json={"result": {"error": error}}))
    response = await context.bridge.process(_line(jsonrpc="2.0", id="x", method="resources/list"))
    assert response == {"jsonrpc": "2.0", "id": "x", "error": error}


async def test_remote_jsonrpc_result_passes_through(context, control_plane: ControlPlane):
    control_plane.command_responses.append(
        httpx.Response(200, json={"result": {"jsonrpc": "2.0", "id": 1, "result": {"tools": []}}})
    )
    response = await context.bridge.process(_line(jsonrpc="2.0", id=5, method="tools/list"))
    assert response == {"jsonrpc": "2.0", "id": 5, "result": {"tools": []}}


async def test_remote_null_error_returns_result(context, control_plane: ControlPlane):
    control_plane.command_responses.append(
        httpx.Response(200, json={"result": {"result": {"ok": True}, "error": None}})
    )
    response = await context.bridge.process(_line(jsonrpc="2.0", id=7, method="tools/call"))
    assert response == {"jsonrpc": "2.0", "id": 7, "result": {"ok": True}}


async def test_remote_string_error_becomes_error_object(context, control_plane: ControlPlane):
    control_plane.command_responses.append(httpx.Response(200, json={"result": {"error": "boom"}}))
    response = await context.bridge.process(_line(jsonrpc="2.0", id=7, method="tools/call"))
    assert response == {
        "jsonrpc": "2.0",
        "id": 7,
        "error": {"code": INTERNAL_ERROR_CODE, "message": "boom"},
    }
