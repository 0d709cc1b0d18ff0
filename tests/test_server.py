"""HTTP surface: health check, bearer gate, CORS and CLI."""

import json
from typing import Any, Dict, Optional

import httpx
import pytest
from mcp import types
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from odoo_helpdesk_mcp import server
from odoo_helpdesk_mcp.config import Settings
from odoo_helpdesk_mcp.odoo import OdooSessionManager
from odoo_helpdesk_mcp.server import BearerAuthMiddleware, create_app
from tests.conftest import FakeOdoo, make_record

SECRET = "s3cret"


async def ok(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def gated_app(token: str) -> TestClient:
    app = Starlette(
        routes=[
            Route("/", ok),
            Route("/mcp", ok, methods=["GET", "POST"]),
            Route("/messages/", ok, methods=["POST"]),
        ]
    )
    return TestClient(BearerAuthMiddleware(app, token=token))


class TestBearerAuthMiddleware:
    def test_missing_token_rejected(self) -> None:
        response = gated_app(SECRET).post("/mcp")
        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}

    def test_wrong_token_rejected(self) -> None:
        response = gated_app(SECRET).post("/mcp", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_bearer_header(self) -> None:
        response = gated_app(SECRET).post("/mcp", headers={"Authorization": f"Bearer {SECRET}"})
        assert response.status_code == 200

    def test_query_token(self) -> None:
        response = gated_app(SECRET).post(f"/messages/?session_id=abc&token={SECRET}")
        assert response.status_code == 200

    def test_disabled_without_secret(self) -> None:
        response = gated_app("").post("/mcp")
        assert response.status_code == 200

    def test_unprotected_path(self) -> None:
        response = gated_app(SECRET).get("/")
        assert response.status_code == 200

    def test_non_ascii_token_rejected(self) -> None:
        response = gated_app(SECRET).post("/mcp?token=%C3%A9")
        assert response.status_code == 401


class TestApp:
    @pytest.fixture
    def client(self) -> TestClient:
        settings = Settings(odoo_url="http://odoo.test", auth_token=SECRET)
        return TestClient(create_app(settings))

    def test_health_needs_no_auth(self, client: TestClient) -> None:
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "service": "odoo-helpdesk-mcp"}

    @pytest.mark.parametrize(
        ("method", "path"),
        [("POST", "/mcp"), ("POST", "/sse"), ("GET", "/sse"), ("POST", "/messages/?session_id=abc")],
    )
    def test_mcp_endpoints_require_token(self, client: TestClient, method: str, path: str) -> None:
        response = client.request(method, path)
        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}

    def test_cors_preflight(self, client: TestClient) -> None:
        response = client.options(
            "/mcp",
            headers={
                "Origin": "https://claude.ai",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization,content-type",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


MCP_HEADERS = {"Accept": "application/json, text/event-stream", "Content-Type": "application/json"}
AUTH_HEADERS = {**MCP_HEADERS, "Authorization": f"Bearer {SECRET}"}


def jsonrpc_message(response: httpx.Response) -> Dict[str, Any]:
    """Decode the JSON-RPC reply from a JSON or event-stream response."""
    if response.headers["content-type"].startswith("application/json"):
        return response.json()
    for line in response.text.splitlines():
        if line.startswith("data:"):
            return json.loads(line[len("data:"):])
    raise AssertionError(f"No JSON-RPC message in {response.text!r}")


def open_session(client: TestClient, path: str, headers: Dict[str, str]) -> Dict[str, str]:
    response = client.post(
        path,
        headers=headers,
        json={
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {
                "protocolVersion": types.LATEST_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "pytest", "version": "1.0"},
            },
        },
    )
    assert response.status_code == 200
    assert jsonrpc_message(response)["result"]["serverInfo"]["name"] == "odoo-helpdesk-mcp"

    session_headers = {
        **headers,
        "mcp-session-id": response.headers["mcp-session-id"],
        "mcp-protocol-version": types.LATEST_PROTOCOL_VERSION,
    }
    notified = client.post(
        path,
        headers=session_headers,
        json={"jsonrpc": "2.0", "method": "notifications/initialized"},
    )
    assert notified.status_code == 202
    return session_headers


def call_tool(client: TestClient, path: str, headers: Dict[str, str], name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    response = client.post(
        path,
        headers=headers,
        json={
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        },
    )
    assert response.status_code == 200
    return jsonrpc_message(response)


class TestStreamableTransport:
    @pytest.fixture
    def make_client(self, fake_odoo: FakeOdoo):
        def build(token: Optional[str] = SECRET) -> TestClient:
            settings = Settings(
                odoo_url="http://odoo.test",
                odoo_username="bot@example.com",
                odoo_password="secret",
                auth_token=token or "",
            )
            sessions = OdooSessionManager(settings, transport=httpx.MockTransport(fake_odoo.handle))
            return TestClient(create_app(settings, sessions))

        return build

    @pytest.mark.parametrize("path", ["/mcp", "/sse"])
    def test_authorized_tool_call(self, make_client, fake_odoo: FakeOdoo, path: str) -> None:
        fake_odoo.add(make_record(42, "Printer broken", "2024-01-01"))

        with make_client() as client:
            headers = open_session(client, path, AUTH_HEADERS)
            message = call_tool(client, path, headers, "helpdesk_get_ticket", {"id": 42})

        assert message["result"]["isError"] is False
        assert json.loads(message["result"]["content"][0]["text"])["name"] == "Printer broken"
        assert fake_odoo.logins == 1

    def test_unknown_tool_is_jsonrpc_error(self, make_client, fake_odoo: FakeOdoo) -> None:
        with make_client() as client:
            headers = open_session(client, "/mcp", AUTH_HEADERS)
            message = call_tool(client, "/mcp", headers, "helpdesk_delete_ticket", {"id": 1})

        assert "result" not in message
        assert message["error"]["code"] == types.INVALID_PARAMS
        assert message["error"]["message"] == "Unknown tool: helpdesk_delete_ticket"
        assert fake_odoo.requests == []

    def test_no_secret_accepts_unauthenticated_clients(self, make_client) -> None:
        with make_client(token=None) as client:
            headers = open_session(client, "/mcp", MCP_HEADERS)

        assert "mcp-session-id" in headers

    def test_secret_rejects_same_request(self, make_client) -> None:
        with make_client() as client:
            response = client.post("/mcp", headers=MCP_HEADERS, json={"jsonrpc": "2.0", "id": 1, "method": "ping"})

        assert response.status_code == 401


class TestMain:
    def test_cli_overrides_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        captured = {}

        def fake_run(app, host, port, log_level):
            captured.update(app=app, host=host, port=port, log_level=log_level)

        monkeypatch.setenv("PORT", "4000")
        monkeypatch.setenv("ODOO_URL", "http://odoo.test")
        monkeypatch.setattr(server.uvicorn, "run", fake_run)

        server.main(["--port", "5050", "--host", "127.0.0.1"])

        assert captured["port"] == 5050
        assert captured["host"] == "127.0.0.1"
        assert isinstance(captured["app"], Starlette)
