"""
Tests for the MCP tool boundary and the HTTP transport
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

import web_server
import whoop_mcp
from whoop_client import WhoopAPIError, WhoopConfig

API_KEY = "test-key"

TOOL_NAMES = {
    "whoop_get_overview", "whoop_get_sleep", "whoop_get_recovery", "whoop_get_strain",
    "whoop_get_healthspan", "whoop_get_body", "whoop_get_journal_insights",
    "whoop_get_calendar", "whoop_check_connection",
}


class BodyOnlyClient:
    config = WhoopConfig()

    async def get_body_measurements(self):
        return {"height_meter": 1.75, "weight_kilogram": 70.0, "max_heart_rate": 188}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(web_server, "API_SECRET_KEY", API_KEY)
    web_server.request_counts.clear()
    return TestClient(web_server.app)


def rpc(client, method, params=None, key=API_KEY):
    body = {"jsonrpc": "2.0", "id": 1, "method": method}
    if params is not None:
        body["params"] = params
    return client.post("/mcp", json=body, headers={"X-API-Key": key})


def test_run_report_turns_errors_into_text():
    async def failing():
        raise WhoopAPIError("WHOOP API 503: /developer/v2/recovery", 503)

    async def invalid():
        raise ValueError("days must be between 1 and 30, got 31")

    assert asyncio.run(whoop_mcp.run_report("t", failing())) == "Error: WHOOP API 503: /developer/v2/recovery"
    assert asyncio.run(whoop_mcp.run_report("t", invalid())) == "Error: days must be between 1 and 30, got 31"


def test_tool_rejects_bad_window(monkeypatch):
    monkeypatch.setattr(whoop_mcp, "get_client", lambda: BodyOnlyClient())
    text = asyncio.run(whoop_mcp.whoop_get_recovery(days=0))
    assert text.startswith("Error: days must be between 1 and 30")


def test_health_is_public(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "whoop-mcp"}
    assert response.headers["X-Frame-Options"] == "DENY"


def test_protected_endpoints_need_api_key(client):
    assert client.get("/tools").status_code == 401
    assert rpc(client, "tools/list", key="wrong").status_code == 401


def test_tools_endpoint_lists_all_tools(client):
    response = client.get("/tools", headers={"X-API-Key": API_KEY})
    assert response.status_code == 200
    assert {t["name"] for t in response.json()["tools"]} == TOOL_NAMES


def test_rpc_initialize(client):
    result = rpc(client, "initialize").json()["result"]
    assert result["serverInfo"]["name"] == "whoop-mcp"
    assert result["protocolVersion"] == web_server.PROTOCOL_VERSION


def test_rpc_tools_list_includes_input_schema(client):
    tools = rpc(client, "tools/list").json()["result"]["tools"]
    sleep = next(t for t in tools if t["name"] == "whoop_get_sleep")
    assert set(sleep["inputSchema"]["properties"]) == {"date", "days", "detail"}


def test_rpc_tools_call(client, monkeypatch):
    monkeypatch.setattr(whoop_mcp, "get_client", lambda: BodyOnlyClient())
    response = rpc(client, "tools/call", {"name": "whoop_get_body", "arguments": {}})

    assert response.status_code == 200
    text = response.json()["result"]["content"][0]["text"]
    assert "Height: 175cm" in text
    assert "Max heart rate: 188bpm" in text


def test_rpc_unknown_tool_and_method(client):
    assert rpc(client, "tools/call", {"name": "nope"}).json()["error"]["code"] == -32601
    assert rpc(client, "resources/list").json()["error"]["code"] == -32601


def test_rpc_invalid_json(client):
    response = client.post("/mcp", content=b"{not json", headers={"X-API-Key": API_KEY})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32700


def test_rpc_invalid_params(client):
    response = rpc(client, "tools/call", {"name": "whoop_get_body", "arguments": ["x"]})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32602


def test_rate_limit(client):
    web_server.request_counts["testclient"] = [time.time()] * web_server.RATE_LIMIT_REQUESTS
    response = client.get("/health")
    assert response.status_code == 429


def test_result_text_shapes():
    class Text:
        def __init__(self, text):
            self.text = text

    assert web_server.result_text([Text("a"), Text("b")]) == "a\nb"
    assert web_server.result_text(([Text("a")], {"result": "a"})) == "a"
    assert web_server.result_text(([], {"result": "b"})) == "b"
    assert web_server.result_text({"result": "c"}) == "c"
