"""Error taxonomy shared by the Odoo client, tool handlers and transport."""

from typing import Any, Optional

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, ErrorData

# MCP's JSON-RPC code for an unknown resource
RESOURCE_NOT_FOUND = -32002


class HelpdeskError(Exception):
    """Base class for failures scoped to a single tool or resource invocation."""

    code = "internal_error"
    rpc_code = INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_error_data(self) -> ErrorData:
        return ErrorData(code=self.rpc_code, message=self.message, data={"code": self.code})


class InputValidationError(HelpdeskError):
    """Caller input is malformed, out of range, or names an unknown enum value."""

    code = "invalid_input"
    rpc_code = INVALID_PARAMS


class NotFoundError(HelpdeskError):
    """A point lookup returned no record."""

    code = "not_found"
    rpc_code = RESOURCE_NOT_FOUND


class AuthenticationError(HelpdeskError):
    """The Odoo login handshake failed or produced no session cookie."""

    code = "auth_failed"


class RemoteCallError(HelpdeskError):
    """Odoo rejected a call or could not be reached.

    Carries the backend's message verbatim, plus the HTTP status and the
    Odoo error code/name when they are known.
    """

    code = "remote_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        remote_code: Optional[int] = None,
        remote_name: Optional[str] = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.remote_code = remote_code
        self.remote_name = remote_name
        self.data = data

    @property
    def session_expired(self) -> bool:
        return self.remote_code == 100 or (self.remote_name or "").endswith("SessionExpiredException")


class AuthorizationError(HelpdeskError):
    """An inbound MCP request did not carry the configured bearer secret."""

    code = "unauthorized"
    rpc_code = INVALID_PARAMS


class ProtocolError(HelpdeskError):
    """An MCP request addressed something this server does not serve."""

    code = "protocol_error"
    rpc_code = INVALID_PARAMS
