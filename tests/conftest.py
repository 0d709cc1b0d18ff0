"""Shared fixtures: an in-memory Odoo double behind httpx.MockTransport."""

import itertools
import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import pytest

from odoo_helpdesk_mcp.config import Settings
from odoo_helpdesk_mcp.odoo import OdooSessionManager
from odoo_helpdesk_mcp.server import HelpdeskMCP, build_server
from odoo_helpdesk_mcp.tools import HelpdeskTools

ODOO_URL = "http://odoo.test"
SESSION_ID = "sess-123"
TEAM_ID = 17


def make_record(ticket_id: int, name: str, created: str, **overrides: Any) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "id": ticket_id,
        "name": name,
        "stage_id": [25, "New"],
        "team_id": [TEAM_ID, "Customer Care"],
        "ticket_category": False,
        "partner_id": False,
        "email": False,
        "description": False,
        "create_date": created,
        "write_date": created,
        "message_ids": [],
    }
    record.update(overrides)
    return record


def _matches(record: Dict[str, Any], condition: List[Any]) -> bool:
    field, operator, value = condition
    actual = record.get(field)
    if isinstance(actual, list) and len(actual) == 2:
        actual = actual[0]
    if operator == "=":
        return actual == value
    if operator == "ilike":
        return bool(actual) and str(value).lower() in str(actual).lower()
    raise AssertionError(f"unsupported operator {operator}")


class FakeOdoo:
    """Minimal Odoo JSON-RPC backend recording every call it receives."""

    def __init__(self) -> None:
        self.records: Dict[int, Dict[str, Any]] = {}
        self.calls: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.logins = 0
        self.password = "secret"
        self.send_cookie = True
        self.fail_with: Optional[Dict[str, Any]] = None
        self.status_code = 200
        self._ids = itertools.count(100)
        self._message_ids = itertools.count(900)

    def add(self, record: Dict[str, Any]) -> None:
        self.records[record["id"]] = record

    @property
    def methods(self) -> List[str]:
        return [call["method"] for call in self.calls]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = json.loads(request.content)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="Service Unavailable")
        if request.url.path == "/web/session/authenticate":
            return self._authenticate(payload)
        if request.url.path == "/web/dataset/call_kw":
            return self._call_kw(request, payload)
        return httpx.Response(404, text="not found")

    def _reply(self, payload: Dict[str, Any], result: Any, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": payload["id"], "result": result},
            headers=headers,
        )

    def _error(self, payload: Dict[str, Any], message: str, code: int = 200, name: str = "odoo.exceptions.UserError") -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "jsonrpc": "2.0",
                "id": payload["id"],
                "error": {
                    "code": code,
                    "message": "Odoo Server Error",
                    "data": {"name": name, "message": message},
                },
            },
        )

    def _authenticate(self, payload: Dict[str, Any]) -> httpx.Response:
        self.logins += 1
        if payload["params"]["password"] != self.password:
            return self._error(payload, "Access Denied", name="odoo.exceptions.AccessDenied")
        headers = {"set-cookie": f"session_id={SESSION_ID}; Path=/; HttpOnly"} if self.send_cookie else {}
        return self._reply(payload, {"uid": 2}, headers)

    def _call_kw(self, request: httpx.Request, payload: Dict[str, Any]) -> httpx.Response:
        params = payload["params"]
        self.calls.append(params)
        if f"session_id={SESSION_ID}" not in request.headers.get("cookie", ""):
            return self._error(payload, "Session expired", code=100, name="odoo.http.SessionExpiredException")
        if self.fail_with is not None:
            return self._error(payload, **self.fail_with)

        method = params["method"]
        args = params["args"]
        kwargs = params["kwargs"]
        if method == "search_read":
            rows = [r for r in self.records.values() if all(_matches(r, c) for c in args[0])]
            assert kwargs["order"] == "create_date desc"
            rows.sort(key=lambda r: r["create_date"], reverse=True)
            offset = kwargs.get("offset", 0)
            rows = rows[offset:offset + kwargs.get("limit", 80)]
            return self._reply(payload, [{f: r.get(f, False) for f in kwargs["fields"]} for r in rows])
        if method == "read":
            rows = [self.records[i] for i in args[0] if i in self.records]
            return self._reply(payload, [{f: r.get(f, False) for f in kwargs["fields"]} for r in rows])
        if method == "create":
            new_id = next(self._ids)
            record = make_record(new_id, "", "2024-06-01 00:00:00")
            record.update(args[0])
            self.add(record)
            return self._reply(payload, new_id)
        if method == "write":
            for ticket_id in args[0]:
                self.records[ticket_id].update(args[1])
            return self._reply(payload, True)
        if method == "message_post":
            return self._reply(payload, next(self._message_ids))
        raise AssertionError(f"unexpected method {method}")


@pytest.fixture
def fake_odoo() -> FakeOdoo:
    return FakeOdoo()


@pytest.fixture
def transport(fake_odoo: FakeOdoo) -> httpx.MockTransport:
    return httpx.MockTransport(fake_odoo.handle)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        odoo_url=ODOO_URL,
        odoo_username="bot@example.com",
        odoo_password="secret",
        team_id=TEAM_ID,
    )


@pytest.fixture
async def sessions(settings: Settings, transport: httpx.MockTransport) -> AsyncIterator[OdooSessionManager]:
    manager = OdooSessionManager(settings, transport=transport)
    yield manager
    await manager.aclose()


@pytest.fixture
def tools(sessions: OdooSessionManager, settings: Settings) -> HelpdeskTools:
    return HelpdeskTools(sessions, settings)


@pytest.fixture
def mcp_server(settings: Settings, sessions: OdooSessionManager) -> HelpdeskMCP:
    return build_server(settings, sessions)
