"""API routers for Kanban Core."""

from . import api_keys, docs, tickets, workspace

__all__ = ["api_keys", "docs", "tickets", "workspace"]
