"""
Process configuration for the Odoo Helpdesk MCP server.

Settings are read once from the environment (and an optional .env file) at
start-up and passed explicitly to the components that need them.

Environment Variables:
    HOST, PORT: Address the HTTP server binds to
    ODOO_URL: Base URL of the Odoo instance (e.g., https://company.odoo.com)
    ODOO_USERNAME, ODOO_PASSWORD: Odoo login used for every backend call
    ODOO_DB: Odoo database name (optional when the domain selects it)
    ODOO_TIMEOUT: Timeout in seconds for each backend request
    TEAM_ID: Helpdesk team all tickets belong to
    AUTH_TOKEN: Bearer secret MCP clients must present (empty disables the check)
    STAGE_NEW_ID, STAGE_IN_PROGRESS_ID, STAGE_WAITING_ID, STAGE_SOLVED_ID: Stage ids
    LOG_LEVEL: Logging level name
"""

import logging
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .mappings import DEFAULT_STAGE_IDS

logger = logging.getLogger(__name__)

SERVICE_NAME = "odoo-helpdesk-mcp"
DEFAULT_PORT = 3000
DEFAULT_TIMEOUT = 30.0
DEFAULT_TEAM_ID = 17

_STAGE_ENV_VARS = {
    "New": "STAGE_NEW_ID",
    "In Progress": "STAGE_IN_PROGRESS_ID",
    "Waiting on Customer": "STAGE_WAITING_ID",
    "Solved": "STAGE_SOLVED_ID",
}


class Settings(BaseModel):
    """Immutable server configuration."""
    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=DEFAULT_PORT, description="Listening port", ge=1, le=65535)
    odoo_url: str = Field(default="http://localhost:8069", description="Odoo base URL")
    odoo_username: str = Field(default="", description="Odoo login")
    odoo_password: str = Field(default="", description="Odoo password")
    odoo_db: Optional[str] = Field(default=None, description="Odoo database name")
    odoo_timeout: float = Field(default=DEFAULT_TIMEOUT, description="Backend request timeout", gt=0)
    team_id: int = Field(default=DEFAULT_TEAM_ID, description="Helpdesk team id")
    auth_token: str = Field(default="", description="Bearer secret for MCP clients")
    stage_ids: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_STAGE_IDS))
    log_level: str = Field(default="INFO")

    @property
    def has_credentials(self) -> bool:
        return bool(self.odoo_username and self.odoo_password)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_token)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from environment variables.

        Values from ``env_file`` (or a ``.env`` in the working directory) are
        loaded first without overriding variables that are already set.

        Args:
            env_file: Optional path to a dotenv file

        Returns:
            Settings: The resolved configuration
        """
        load_dotenv(env_file)

        stage_ids = {
            stage: _int_env(var, DEFAULT_STAGE_IDS[stage])
            for stage, var in _STAGE_ENV_VARS.items()
        }

        settings = cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_int_env("PORT", DEFAULT_PORT),
            odoo_url=os.getenv("ODOO_URL", "http://localhost:8069"),
            odoo_username=os.getenv("ODOO_USERNAME", ""),
            odoo_password=os.getenv("ODOO_PASSWORD", ""),
            odoo_db=os.getenv("ODOO_DB") or None,
            odoo_timeout=_float_env("ODOO_TIMEOUT", DEFAULT_TIMEOUT),
            team_id=_int_env("TEAM_ID", DEFAULT_TEAM_ID),
            auth_token=os.getenv("AUTH_TOKEN", ""),
            stage_ids=stage_ids,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

        # Credentials are only needed once a tool or resource is used.
        if not settings.has_credentials:
            logger.warning(
                "Odoo credentials not configured (ODOO_USERNAME/ODOO_PASSWORD); "
                "tool calls will fail until they are set."
            )
        if not settings.auth_enabled:
            logger.warning("AUTH_TOKEN not set; MCP endpoints accept unauthenticated clients.")

        return settings


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s: %r, using %d", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s: %r, using %s", name, raw, default)
        return default
