"""
Odoo JSON-RPC client for the helpdesk module.

All backend traffic goes through two endpoints:

    /web/session/authenticate   login handshake, returns a session_id cookie
    /web/dataset/call_kw        generic ``model.method(*args, **kwargs)`` call

:class:`OdooClient` wraps one authenticated session. :class:`OdooSessionManager`
shares a single client between concurrent invocations and makes sure only one
login handshake is in flight at a time.
"""

import asyncio
import itertools
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import Settings
from .errors import AuthenticationError, RemoteCallError
from .models import Ticket

logger = logging.getLogger(__name__)

AUTHENTICATE_PATH = "/web/session/authenticate"
CALL_KW_PATH = "/web/dataset/call_kw"

TICKET_MODEL = "helpdesk.ticket"
TICKET_FIELDS = [
    "id",
    "name",
    "stage_id",
    "team_id",
    "ticket_category",
    "partner_id",
    "email",
    "description",
    "create_date",
    "write_date",
]
TICKET_DETAIL_FIELDS = TICKET_FIELDS + ["message_ids"]
TICKET_ORDER = "create_date desc"

_SESSION_COOKIE = re.compile(r"session_id=([^;]+)")


# ============================================================================
# Session Client
# ============================================================================

class OdooClient:
    """One authenticated Odoo session.

    Args:
        base_url: Odoo base URL (e.g., https://company.odoo.com)
        database: Database to log into, or None to let the domain decide
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        base_url: str,
        database: Optional[str] = None,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.database = database
        self._session_id: Optional[str] = None
        self._request_ids = itertools.count(1)
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @property
    def authenticated(self) -> bool:
        return self._session_id is not None

    @property
    def closed(self) -> bool:
        return self._http.is_closed

    async def __aenter__(self) -> "OdooClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _rpc(self, path: str, params: Dict[str, Any]) -> Tuple[Any, httpx.Response]:
        """POST a JSON-RPC ``call`` envelope and unwrap the result.

        Args:
            path: Endpoint path relative to the base URL
            params: The ``params`` member of the envelope

        Returns:
            tuple: (result member, raw response)

        Raises:
            RemoteCallError: On transport failure, non-200 status, invalid JSON,
                or an ``error`` member in the response body
        """
        payload = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": params,
            "id": next(self._request_ids),
        }

        try:
            response = await self._http.post(path, json=payload)
        except httpx.TimeoutException:
            raise RemoteCallError(
                "Request to Odoo timed out. The server may be slow or unavailable; "
                "please try again."
            )
        except httpx.HTTPError as e:
            raise RemoteCallError(f"Network error contacting Odoo: {e}")

        if response.status_code != 200:
            raise RemoteCallError(
                f"Odoo returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            raise RemoteCallError(
                f"Odoo returned a non-JSON response: {response.text[:200]}",
                status_code=response.status_code,
            )

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            data = error.get("data") or {}
            raise RemoteCallError(
                data.get("message") or error.get("message") or "Unknown Odoo error",
                status_code=response.status_code,
                remote_code=error.get("code"),
                remote_name=data.get("name"),
                data=data,
            )

        return (body.get("result") if isinstance(body, dict) else None), response

    async def authenticate(self, username: str, password: str) -> str:
        """Log in and keep the session cookie for later calls.

        Args:
            username: Odoo login
            password: Odoo password or API key

        Returns:
            str: The session id

        Raises:
            AuthenticationError: If Odoo rejects the login or sends no session cookie
            RemoteCallError: If Odoo cannot be reached
        """
        params: Dict[str, Any] = {"login": username, "password": password}
        if self.database:
            params["db"] = self.database

        try:
            _, response = await self._rpc(AUTHENTICATE_PATH, params)
        except RemoteCallError as e:
            # Only an error object in a 200 body is a rejected login
            if e.status_code != 200 or e.data is None:
                raise
            raise AuthenticationError(f"Odoo auth failed: {e.message}") from e

        session_id = None
        for header in response.headers.get_list("set-cookie"):
            match = _SESSION_COOKIE.search(header)
            if match:
                session_id = match.group(1)
                break
        if not session_id:
            raise AuthenticationError("Missing Odoo session cookie")

        self._session_id = session_id
        self._http.headers["Cookie"] = f"session_id={session_id}"
        logger.info("Authenticated to Odoo at %s as %s", self.base_url, username)
        return session_id

    async def call_kw(
        self,
        model: str,
        method: str,
        args: List[Any],
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Call ``model.method(*args, **kwargs)`` through ``/web/dataset/call_kw``."""
        if not self.authenticated:
            raise AuthenticationError("Odoo client is not authenticated")

        logger.debug("call_kw %s.%s", model, method)
        try:
            result, _ = await self._rpc(
                CALL_KW_PATH,
                {"model": model, "method": method, "args": args, "kwargs": kwargs or {}},
            )
        except RemoteCallError as e:
            logger.warning("Odoo call %s.%s failed: %s", model, method, e.message)
            raise
        return result

    # ========================================================================
    # Helpdesk helpers
    # ========================================================================

    async def list_tickets(
        self,
        limit: int = 20,
        offset: int = 0,
        domain: Optional[List[Any]] = None,
    ) -> List[Ticket]:
        """Search tickets, most recently created first."""
        records = await self.call_kw(
            TICKET_MODEL,
            "search_read",
            [list(domain or [])],
            {"fields": TICKET_FIELDS, "limit": limit, "offset": offset, "order": TICKET_ORDER},
        )
        return [_decode_ticket(record) for record in records or []]

    async def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        """Read one ticket; None when Odoo returns no row."""
        records = await self.call_kw(
            TICKET_MODEL,
            "read",
            [[ticket_id]],
            {"fields": TICKET_DETAIL_FIELDS},
        )
        if not records:
            return None
        return _decode_ticket(records[0])

    async def create_ticket(
        self,
        name: str,
        team_id: int,
        description: Optional[str] = None,
        email: Optional[str] = None,
        partner_id: Optional[int] = None,
        ticket_category: Optional[str] = None,
        stage_id: Optional[int] = None,
    ) -> int:
        """Create a ticket and return its id.

        Optional values that are empty are left out of the payload entirely so
        Odoo applies its own defaults instead of clearing the field.
        """
        vals: Dict[str, Any] = {"name": name, "team_id": team_id}
        optional = {
            "description": description,
            "email": email,
            "partner_id": partner_id,
            "ticket_category": ticket_category,
            "stage_id": stage_id,
        }
        vals.update({key: value for key, value in optional.items() if value})

        result = await self.call_kw(TICKET_MODEL, "create", [vals])
        if isinstance(result, list):
            result = result[0]
        return int(result)

    async def update_ticket(self, ticket_id: int, values: Dict[str, Any]) -> bool:
        vals = {key: value for key, value in values.items() if value is not None}
        result = await self.call_kw(TICKET_MODEL, "write", [[ticket_id], vals])
        return bool(result)

    async def add_comment(self, ticket_id: int, body_html: str) -> Any:
        """Post a customer-visible comment in the ticket's chatter."""
        return await self.call_kw(
            TICKET_MODEL,
            "message_post",
            [[ticket_id]],
            {
                "body": body_html,
                "message_type": "comment",
                "subtype_xmlid": "mail.mt_comment",
            },
        )


def _decode_ticket(record: Dict[str, Any]) -> Ticket:
    try:
        return Ticket.from_record(record)
    except (KeyError, TypeError, ValueError) as e:
        raise RemoteCallError(f"Unexpected ticket record from Odoo: {e}")


# ============================================================================
# Shared Session
# ============================================================================

class OdooSessionManager:
    """Lazily authenticated Odoo client shared across invocations.

    The first :meth:`acquire` performs the login; callers arriving while it is
    in flight wait on the lock and then reuse the same client.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: Optional[OdooClient] = None
        self._retired: List[OdooClient] = []
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Optional[OdooClient]:
        """The cached client, if a login has already succeeded."""
        return self._client

    def _new_client(self) -> OdooClient:
        return OdooClient(
            self._settings.odoo_url,
            self._settings.odoo_db,
            timeout=self._settings.odoo_timeout,
            transport=self._transport,
        )

    async def acquire(self) -> OdooClient:
        client = self._client
        if client is not None:
            return client

        async with self._lock:
            if self._client is not None:
                return self._client

            if not self._settings.has_credentials:
                raise AuthenticationError(
                    "Odoo credentials not configured. Please set ODOO_USERNAME and "
                    "ODOO_PASSWORD environment variables."
                )

            client = self._new_client()
            try:
                await client.authenticate(self._settings.odoo_username, self._settings.odoo_password)
            except BaseException:
                await client.aclose()
                raise
            self._client = client
            return client

    async def invalidate(self, client: OdooClient) -> None:
        """Forget ``client`` so the next acquire logs in again.

        Only the cached client is replaced; a client that was already swapped
        out leaves the fresh one alone. Other invocations may still hold the
        discarded client, so it stays open until :meth:`aclose`.
        """
        async with self._lock:
            if self._client is not client:
                return
            self._client = None
            self._retired.append(client)
        logger.info("Discarding expired Odoo session")

    async def aclose(self) -> None:
        async with self._lock:
            clients = self._retired + ([self._client] if self._client is not None else [])
            self._client = None
            self._retired = []
        for client in clients:
            await client.aclose()
