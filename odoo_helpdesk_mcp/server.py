"""
Odoo Helpdesk MCP Server - Model Context Protocol server for Odoo Helpdesk.

Exposes helpdesk ticket tools and a browsable ticket resource collection over
HTTP:

    GET  /                health check (no auth)
    POST /mcp             streamable HTTP transport (also GET/DELETE)
    POST /sse             streamable HTTP transport, for clients configured with /sse
    GET  /sse             legacy SSE stream
    POST /messages/       legacy SSE message endpoint

When AUTH_TOKEN is set, the MCP endpoints require ``Authorization: Bearer
<token>`` or a ``?token=<token>`` query parameter.
"""

import argparse
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Sequence

import uvicorn
from mcp import types
from mcp.server.fastmcp import FastMCP
from mcp.shared.exceptions import McpError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.types import ASGIApp, Receive, Scope, Send

from .config import SERVICE_NAME, Settings
from .errors import AuthorizationError, HelpdeskError, ProtocolError
from .logging_config import VALID_LEVELS, configure_logging
from .odoo import OdooSessionManager
from .resources import TICKET_ID_ARGUMENT, TICKET_URI_TEMPLATE, TicketResources
from .tools import HelpdeskTools

logger = logging.getLogger(__name__)

SERVER_NAME = "odoo-helpdesk-mcp"
PROTECTED_PATHS = ("/mcp", "/sse", "/messages")


# ============================================================================
# MCP Server
# ============================================================================

class HelpdeskMCP(FastMCP):
    """FastMCP server with the ticket resource collection wired in.

    FastMCP only lists static resources and reads a single content part per
    URI, so listing, reading and completion of tickets are served here.
    """

    def __init__(self, sessions: OdooSessionManager, settings: Settings, **kwargs: Any) -> None:
        self.sessions = sessions
        self.ticket_resources = TicketResources(sessions, settings)
        super().__init__(SERVER_NAME, **kwargs)

    def _setup_handlers(self) -> None:
        super()._setup_handlers()
        self._call_tool_handler = self._mcp_server.request_handlers[types.CallToolRequest]
        self._mcp_server.request_handlers[types.CallToolRequest] = self._handle_call_tool
        self._mcp_server.request_handlers[types.ReadResourceRequest] = self._handle_read_resource
        self.completion()(self._handle_completion)

    @asynccontextmanager
    async def _resource_errors(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except HelpdeskError as e:
            logger.warning("%s failed (%s): %s", operation, e.code, e.message)
            raise McpError(e.to_error_data())
        except McpError:
            raise
        except Exception:
            logger.exception("Unexpected failure in %s", operation)
            raise McpError(types.ErrorData(code=types.INTERNAL_ERROR, message="Internal error"))

    async def list_resources(self) -> List[types.Resource]:
        resources = list(await super().list_resources())
        async with self._resource_errors("resources/list"):
            resources.extend(await self.ticket_resources.list_resources())
        return resources

    async def list_resource_templates(self) -> List[types.ResourceTemplate]:
        templates = list(await super().list_resource_templates())
        return templates + self.ticket_resources.templates()

    async def _handle_call_tool(self, req: types.CallToolRequest) -> types.ServerResult:
        """Reject unknown tool names with a JSON-RPC error before dispatch."""
        name = req.params.name
        if self._tool_manager.get_tool(name) is None:
            logger.warning("Call to unknown tool %r", name)
            raise McpError(ProtocolError(f"Unknown tool: {name}").to_error_data())
        return await self._call_tool_handler(req)

    async def _handle_read_resource(self, req: types.ReadResourceRequest) -> types.ServerResult:
        uri = str(req.params.uri)
        async with self._resource_errors("resources/read"):
            contents = await self.ticket_resources.read(uri)
        return types.ServerResult(types.ReadResourceResult(contents=contents))

    async def _handle_completion(
        self,
        ref: Any,
        argument: types.CompletionArgument,
        context: Optional[types.CompletionContext],
    ) -> Optional[types.Completion]:
        if not isinstance(ref, types.ResourceTemplateReference):
            return None
        if ref.uri != TICKET_URI_TEMPLATE or argument.name != TICKET_ID_ARGUMENT:
            return None
        async with self._resource_errors("completion/complete"):
            values = await self.ticket_resources.complete_ticket_id(argument.value)
        return types.Completion(values=values, total=len(values), hasMore=False)


def build_server(settings: Settings, sessions: Optional[OdooSessionManager] = None) -> HelpdeskMCP:
    """Create the MCP server with tools and resources registered.

    Args:
        settings: Server configuration
        sessions: Odoo session manager (one is created from settings if omitted)

    Returns:
        HelpdeskMCP: The configured server
    """
    if sessions is None:
        sessions = OdooSessionManager(settings)

    mcp = HelpdeskMCP(
        sessions,
        settings,
        instructions=(
            "Tools to list, read, create and update Odoo helpdesk tickets and to "
            "comment on them. Ticket resources are available at helpdesk://tickets/{ticketId}."
        ),
        host=settings.host,
        port=settings.port,
        streamable_http_path="/mcp",
        sse_path="/sse",
        message_path="/messages/",
    )
    HelpdeskTools(sessions, settings).register(mcp)
    return mcp


# ============================================================================
# HTTP Transport
# ============================================================================

def _matches(presented: str, expected: str) -> bool:
    return secrets.compare_digest(presented.encode(), expected.encode())


class BearerAuthMiddleware:
    """Reject MCP requests that do not carry the shared bearer secret.

    An empty token disables the check.
    """

    def __init__(self, app: ASGIApp, token: str = "", protected_paths: Sequence[str] = PROTECTED_PATHS) -> None:
        self.app = app
        self.token = token
        self.protected_paths = tuple(protected_paths)

    def _is_protected(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self.protected_paths)

    def _authorized(self, request: Request) -> bool:
        header = request.headers.get("authorization", "")
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer" and _matches(credentials.strip(), self.token):
            return True
        token = request.query_params.get("token")
        return token is not None and _matches(token, self.token)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or not self.token
            or scope["method"] == "OPTIONS"
            or not self._is_protected(scope["path"])
        ):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if self._authorized(request):
            await self.app(scope, receive, send)
            return

        logger.warning("Rejected unauthorized request to %s", scope["path"])
        response = JSONResponse(
            {"error": AuthorizationError.code},
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
        )
        await response(scope, receive, send)


class StreamableHTTPEndpoint:
    """ASGI endpoint forwarding to the server's streamable HTTP session manager."""

    def __init__(self, mcp: FastMCP) -> None:
        self.mcp = mcp

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.mcp.session_manager.handle_request(scope, receive, send)


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True, "service": SERVICE_NAME})


def create_app(settings: Settings, sessions: Optional[OdooSessionManager] = None) -> Starlette:
    """Build the Starlette application serving both MCP transports."""
    mcp = build_server(settings, sessions)

    # Builds the streamable HTTP session manager
    mcp.streamable_http_app()
    streamable = StreamableHTTPEndpoint(mcp)
    legacy_sse = mcp.sse_app()

    routes = [
        Route("/", endpoint=health, methods=["GET"]),
        Route("/mcp", endpoint=streamable, methods=["GET", "POST", "DELETE"]),
        Route("/sse", endpoint=streamable, methods=["POST"]),
        *legacy_sse.routes,
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with mcp.session_manager.run():
            logger.info("%s ready (auth %s)", SERVER_NAME, "enabled" if settings.auth_enabled else "disabled")
            try:
                yield
            finally:
                await mcp.sessions.aclose()

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["Mcp-Session-Id"],
        ),
        Middleware(BearerAuthMiddleware, token=settings.auth_token),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.mcp = mcp
    return app


# ============================================================================
# Server Entry Point
# ============================================================================

def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="odoo-helpdesk-mcp",
        description="MCP server exposing Odoo Helpdesk tickets over HTTP.",
        epilog=(
            "Configuration comes from the environment (or a .env file): ODOO_URL, "
            "ODOO_USERNAME, ODOO_PASSWORD, ODOO_DB, TEAM_ID, AUTH_TOKEN, PORT."
        ),
    )
    parser.add_argument("--host", help="Bind address (default: $HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Listening port (default: $PORT or 3000)")
    parser.add_argument("--log-level", help="Logging level (default: $LOG_LEVEL or INFO)")
    args = parser.parse_args(argv)

    configure_logging(args.log_level or "INFO")
    settings = Settings.from_env()

    overrides = {
        key: value
        for key, value in (("host", args.host), ("port", args.port), ("log_level", args.log_level))
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(settings.log_level)
    log_level = settings.log_level.upper() if settings.log_level.upper() in VALID_LEVELS else "INFO"

    logger.info("Listening on %s:%d (/mcp, legacy /sse)", settings.host, settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=log_level.lower())
