"""
Helpdesk tools exposed over MCP.

Every tool validates its arguments through the pydantic annotations on its
signature (FastMCP rejects bad input before the handler runs), translates
category and stage names to Odoo values, then talks to Odoo through the shared
session manager.
"""

import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncIterator, Dict, List, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations
from pydantic import Field

from .config import Settings
from .errors import HelpdeskError, InputValidationError, NotFoundError, RemoteCallError
from .mappings import CategoryName, StageName, require_category_code, stage_id_for
from .odoo import OdooClient, OdooSessionManager

logger = logging.getLogger(__name__)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

TicketId = Annotated[int, Field(description="Helpdesk ticket id", ge=1)]


def _read_only(title: str) -> ToolAnnotations:
    return ToolAnnotations(
        title=title,
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )


def _write(title: str, idempotent: bool = False) -> ToolAnnotations:
    return ToolAnnotations(
        title=title,
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=idempotent,
        openWorldHint=True,
    )


class HelpdeskTools:
    """The five helpdesk ticket tools.

    Args:
        sessions: Shared Odoo session manager
        settings: Server configuration (team id, stage ids)
    """

    def __init__(self, sessions: OdooSessionManager, settings: Settings) -> None:
        self._sessions = sessions
        self._settings = settings

    def register(self, mcp: FastMCP) -> None:
        mcp.add_tool(
            self.list_tickets,
            name="helpdesk_list_tickets",
            description=(
                "List recent helpdesk tickets, newest first. Optional filters by "
                "stage_id, category name, email, or a search on the ticket name."
            ),
            annotations=_read_only("List helpdesk tickets"),
        )
        mcp.add_tool(
            self.get_ticket,
            name="helpdesk_get_ticket",
            description="Get a single helpdesk ticket by id.",
            annotations=_read_only("Get helpdesk ticket"),
        )
        mcp.add_tool(
            self.create_ticket,
            name="helpdesk_create_ticket",
            description=(
                "Create a helpdesk ticket in the configured team. The category name "
                "must be one of the five official category names."
            ),
            annotations=_write("Create helpdesk ticket"),
        )
        mcp.add_tool(
            self.update_ticket,
            name="helpdesk_update_ticket",
            description=(
                "Update fields on a ticket: stage, category (by name), description, "
                "email or name. Omitted fields are left unchanged."
            ),
            annotations=_write("Update helpdesk ticket", idempotent=True),
        )
        mcp.add_tool(
            self.add_message,
            name="helpdesk_add_message",
            description="Add a comment to the chatter of a ticket (HTML allowed).",
            annotations=_write("Comment on helpdesk ticket"),
        )

    @asynccontextmanager
    async def _client(self, tool: str) -> AsyncIterator[OdooClient]:
        """Yield the shared Odoo client and turn failures into MCP tool errors."""
        client: Optional[OdooClient] = None
        try:
            client = await self._sessions.acquire()
            yield client
        except HelpdeskError as e:
            if isinstance(e, RemoteCallError) and e.session_expired and client is not None:
                await self._sessions.invalidate(client)
            logger.warning("%s failed (%s): %s", tool, e.code, e.message)
            raise ToolError(f"{e.code}: {e.message}") from e
        except ToolError:
            raise
        except Exception as e:
            logger.exception("Unexpected failure in %s", tool)
            raise ToolError(f"internal_error: unexpected failure in {tool}") from e

    def _stage_id(self, stage: str) -> int:
        return stage_id_for(stage, self._settings.stage_ids)

    @staticmethod
    def _category_code(name: str) -> str:
        try:
            return require_category_code(name)
        except InputValidationError as e:
            raise ToolError(f"{e.code}: {e.message}") from e

    async def list_tickets(
        self,
        limit: Annotated[int, Field(description="Maximum number of tickets to return", ge=1, le=100)] = 20,
        offset: Annotated[int, Field(description="Pagination offset", ge=0)] = 0,
        stage_id: Annotated[Optional[int], Field(description="Filter by Odoo stage id")] = None,
        category_name: Annotated[Optional[CategoryName], Field(description="Filter by category name")] = None,
        email: Annotated[Optional[str], Field(description="Filter by requester email (substring)")] = None,
        name_search: Annotated[Optional[str], Field(description="Search in the ticket name (substring)")] = None,
    ) -> Dict[str, Any]:
        """List tickets of the configured team, newest first."""
        domain: List[Any] = [["team_id", "=", self._settings.team_id]]
        if stage_id is not None:
            domain.append(["stage_id", "=", stage_id])
        if category_name:
            domain.append(["ticket_category", "=", self._category_code(category_name)])
        if email:
            domain.append(["email", "ilike", email])
        if name_search:
            domain.append(["name", "ilike", name_search])

        async with self._client("helpdesk_list_tickets") as odoo:
            tickets = await odoo.list_tickets(limit=limit, offset=offset, domain=domain)

        return {
            "count": len(tickets),
            "offset": offset,
            "tickets": [ticket.as_dict() for ticket in tickets],
        }

    async def get_ticket(self, id: TicketId) -> Dict[str, Any]:
        """Get one ticket by id."""
        async with self._client("helpdesk_get_ticket") as odoo:
            ticket = await odoo.get_ticket(id)
            if ticket is None:
                raise NotFoundError(f"Ticket {id} not found")
        return ticket.as_dict()

    async def create_ticket(
        self,
        name: Annotated[str, Field(description="Ticket title", min_length=1)],
        description: Annotated[Optional[str], Field(description="Ticket description (HTML allowed)")] = None,
        email: Annotated[Optional[str], Field(description="Requester email", pattern=EMAIL_PATTERN)] = None,
        partner_id: Annotated[Optional[int], Field(description="Customer (res.partner) id", ge=1)] = None,
        category_name: Annotated[Optional[CategoryName], Field(description="Category name")] = None,
        stage: Annotated[Optional[StageName], Field(description="Initial stage")] = None,
    ) -> Dict[str, Any]:
        """Create a ticket in the configured team."""
        ticket_category = self._category_code(category_name) if category_name else None
        stage_id = self._stage_id(stage) if stage else None

        async with self._client("helpdesk_create_ticket") as odoo:
            ticket_id = await odoo.create_ticket(
                name=name,
                team_id=self._settings.team_id,
                description=description,
                email=email,
                partner_id=partner_id,
                ticket_category=ticket_category,
                stage_id=stage_id,
            )

        logger.info("Created helpdesk ticket %s", ticket_id)
        return {"id": ticket_id}

    async def update_ticket(
        self,
        id: TicketId,
        stage: Annotated[Optional[StageName], Field(description="New stage")] = None,
        category_name: Annotated[Optional[CategoryName], Field(description="New category name")] = None,
        description: Annotated[Optional[str], Field(description="New description (HTML allowed)")] = None,
        email: Annotated[Optional[str], Field(description="New requester email", pattern=EMAIL_PATTERN)] = None,
        name: Annotated[Optional[str], Field(description="New ticket title", min_length=1)] = None,
    ) -> Dict[str, Any]:
        """Write the supplied fields to a ticket."""
        updates: Dict[str, Any] = {}
        if stage:
            updates["stage_id"] = self._stage_id(stage)
        if category_name:
            updates["ticket_category"] = self._category_code(category_name)
        if description is not None:
            updates["description"] = description
        if email is not None:
            updates["email"] = email
        if name is not None:
            updates["name"] = name

        async with self._client("helpdesk_update_ticket") as odoo:
            success = await odoo.update_ticket(id, updates)

        return {"id": id, "success": success}

    async def add_message(
        self,
        id: TicketId,
        bodyHtml: Annotated[str, Field(description="Comment body (HTML allowed)", min_length=1)],
    ) -> Dict[str, Any]:
        """Post a comment on a ticket."""
        async with self._client("helpdesk_add_message") as odoo:
            message_id = await odoo.add_comment(id, bodyHtml)
        return {"id": id, "message_id": message_id}
