"""Model Context Protocol server for Odoo Helpdesk tickets."""

from .config import Settings
from .server import build_server, create_app, main

__version__ = "1.0.0"

__all__ = ["Settings", "build_server", "create_app", "main", "__version__"]
