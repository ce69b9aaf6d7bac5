"""HTTP serve layer for docserve."""

from .app import build_server, create_app, stop_server

__all__ = ["build_server", "create_app", "stop_server"]
