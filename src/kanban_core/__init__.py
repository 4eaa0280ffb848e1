"""Kanban core: ticket lifecycle and authorization engine."""

__version__ = "1.0.0"
