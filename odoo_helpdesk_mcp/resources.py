"""
Helpdesk tickets as browsable MCP resources.

Tickets are addressed as ``helpdesk://tickets/{ticketId}``. Listing returns the
most recent tickets of the configured team, completion suggests ticket ids, and
reading returns the record as JSON plus a plain-text summary.
"""

import json
import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from mcp import types

from .config import Settings
from .errors import InputValidationError, NotFoundError, ProtocolError, RemoteCallError
from .models import Ticket
from .odoo import OdooClient, OdooSessionManager

logger = logging.getLogger(__name__)

TICKET_URI_PREFIX = "helpdesk://tickets/"
TICKET_URI_TEMPLATE = TICKET_URI_PREFIX + "{ticketId}"
TICKET_ID_ARGUMENT = "ticketId"
RECENT_TICKET_LIMIT = 20
COMPLETION_LIMIT = 5

_TICKET_URI = re.compile(r"helpdesk://tickets/(?P<ticket_id>[^/?#]*)")
_TICKET_ID = re.compile(r"[0-9]+")


def ticket_uri(ticket_id: int) -> str:
    return f"{TICKET_URI_PREFIX}{ticket_id}"


def summarize_ticket(ticket: Ticket) -> str:
    """Render the one-line header and optional detail lines for a ticket.

    Args:
        ticket: Decoded ticket record

    Returns:
        str: ``Ticket #<id>: <name>`` followed by Stage, Category, Email,
        Created and Updated lines, each present only when the value is set
    """
    lines = [f"Ticket #{ticket.id}: {ticket.name}"]
    details = [
        ("Stage", ticket.stage_label),
        ("Category", ticket.category_label),
        ("Email", ticket.email),
        ("Created", ticket.create_date),
        ("Updated", ticket.write_date),
    ]
    lines.extend(f"{label}: {value}" for label, value in details if value)
    return "\n".join(lines)


def parse_ticket_uri(uri: str) -> int:
    """Extract the ticket id from a ticket resource URI.

    Raises:
        ProtocolError: If the URI is not a ticket resource
        InputValidationError: If the id is not a decimal integer
    """
    match = _TICKET_URI.fullmatch(uri)
    if not match:
        raise ProtocolError(f"Unknown resource: {uri}")
    raw = match.group("ticket_id")
    if not _TICKET_ID.fullmatch(raw):
        raise InputValidationError(f"Invalid ticket id: {raw}")
    return int(raw)


class TicketResources:
    """List, complete and read ticket resources."""

    def __init__(self, sessions: OdooSessionManager, settings: Settings) -> None:
        self._sessions = sessions
        self._settings = settings

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[OdooClient]:
        client = await self._sessions.acquire()
        try:
            yield client
        except RemoteCallError as e:
            if e.session_expired:
                await self._sessions.invalidate(client)
            raise

    def templates(self) -> List[types.ResourceTemplate]:
        return [
            types.ResourceTemplate(
                uriTemplate=TICKET_URI_TEMPLATE,
                name="tickets",
                title="Helpdesk Tickets",
                description="Browse recent helpdesk tickets and inspect individual ticket details.",
                mimeType="application/json",
            )
        ]

    async def list_resources(self) -> List[types.Resource]:
        async with self._client() as odoo:
            tickets = await odoo.list_tickets(
                limit=RECENT_TICKET_LIMIT,
                domain=[["team_id", "=", self._settings.team_id]],
            )
        return [
            types.Resource(
                uri=ticket_uri(ticket.id),
                name=f"Ticket #{ticket.id}",
                description=summarize_ticket(ticket),
                mimeType="application/json",
            )
            for ticket in tickets
        ]

    async def complete_ticket_id(self, value: Optional[str]) -> List[str]:
        """Suggest up to five ticket ids matching a partial id or name."""
        trimmed = (value or "").strip()
        domain = [["team_id", "=", self._settings.team_id]]
        if _TICKET_ID.fullmatch(trimmed):
            domain.append(["id", "=", int(trimmed)])
        elif trimmed:
            domain.append(["name", "ilike", trimmed])

        async with self._client() as odoo:
            tickets = await odoo.list_tickets(limit=COMPLETION_LIMIT, domain=domain)
        return [str(ticket.id) for ticket in tickets]

    async def read(self, uri: str) -> List[types.TextResourceContents]:
        """Read one ticket as JSON plus a ``#summary`` text part.

        Raises:
            ProtocolError: If the URI is not a ticket resource
            InputValidationError: If the ticket id is malformed
            NotFoundError: If the ticket does not exist
        """
        ticket_id = parse_ticket_uri(uri)

        async with self._client() as odoo:
            ticket = await odoo.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        return [
            types.TextResourceContents(
                uri=uri,
                mimeType="application/json",
                text=json.dumps(ticket.as_dict(), indent=2),
            ),
            types.TextResourceContents(
                uri=f"{uri}#summary",
                mimeType="text/plain",
                text=summarize_ticket(ticket),
            ),
        ]
