"""MCP tool definitions for the kanban board.

Ticket ids accept either the UUID or the human-readable identifier (e.g. ``ENG-12``).
"""

from mcp.types import Tool

_TICKET_ID = {
    "type": "string",
    "description": "Ticket UUID or identifier such as ENG-12",
}


def get_tools() -> list[Tool]:
    """Get the list of all MCP tools exposed to agents."""
    return [
        # ============================================================================
        # Tickets
        # ============================================================================
        Tool(
            name="list_tickets",
            description="List tickets on the board in board order. "
                       "Common pattern: list_tickets(status='unclaimed') → claim_ticket() → work → complete_ticket().",
            inputSchema={
                "type": "object",
                "properties": {
                    "status": {
                        "type": "string",
                        "enum": ["unclaimed", "in_progress", "done"],
                        "description": "Filter by status"
                    },
                    "parent_id": {
                        "type": "string",
                        "description": "Only children of this ticket, or 'root' for top-level tickets"
                    },
                    "include_archived": {
                        "type": "boolean",
                        "description": "Include archived tickets (default: false)"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of tickets"
                    }
                }
            }
        ),
        Tool(
            name="get_ticket",
            description="Get a ticket with its full description. Errors: 404 (not found).",
            inputSchema={
                "type": "object",
                "properties": {"ticket_id": _TICKET_ID},
                "required": ["ticket_id"]
            }
        ),
        Tool(
            name="create_ticket",
            description="Create an unclaimed ticket, optionally as a subtask of another ticket.",
            inputSchema={
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Ticket title"},
                    "description": {"type": "string", "description": "Markdown description"},
                    "parent_id": {"type": "string", "description": "Parent ticket UUID"},
                    "doc_id": {"type": "string", "description": "Feature doc UUID to group the ticket under"}
                },
                "required": ["title"]
            }
        ),
        Tool(
            name="claim_ticket",
            description="Claim an unclaimed ticket for yourself and move it to in_progress. "
                       "Errors: 409 if someone else claimed it first (the current status is reported).",
            inputSchema={
                "type": "object",
                "properties": {"ticket_id": _TICKET_ID},
                "required": ["ticket_id"]
            }
        ),
        Tool(
            name="complete_ticket",
            description="Mark an in_progress ticket as done. Errors: 409 if it is not in progress.",
            inputSchema={
                "type": "object",
                "properties": {"ticket_id": _TICKET_ID},
                "required": ["ticket_id"]
            }
        ),
        Tool(
            name="update_ticket_status",
            description="Move a ticket to another status. Standard moves are unclaimed → in_progress "
                       "and in_progress → done. Any other move (reopening, skipping, moving back) "
                       "requires a reason.",
            inputSchema={
                "type": "object",
                "properties": {
                    "ticket_id": _TICKET_ID,
                    "status": {
                        "type": "string",
                        "enum": ["unclaimed", "in_progress", "done"],
                        "description": "Target status"
                    },
                    "reason": {
                        "type": "string",
                        "description": "Why this non-standard move is needed"
                    }
                },
                "required": ["ticket_id", "status"]
            }
        ),
        Tool(
            name="assign_ticket",
            description="Assign a ticket to yourself. An unclaimed ticket moves to in_progress.",
            inputSchema={
                "type": "object",
                "properties": {"ticket_id": _TICKET_ID},
                "required": ["ticket_id"]
            }
        ),
        Tool(
            name="unassign_ticket",
            description="Clear a ticket's owner without changing its status.",
            inputSchema={
                "type": "object",
                "properties": {"ticket_id": _TICKET_ID},
                "required": ["ticket_id"]
            }
        ),
        # ============================================================================
        # Comments & activity
        # ============================================================================
        Tool(
            name="add_comment",
            description="Add a comment to a ticket, e.g. progress notes or handoff context.",
            inputSchema={
                "type": "object",
                "properties": {
                    "ticket_id": _TICKET_ID,
                    "body": {"type": "string", "description": "Comment text"}
                },
                "required": ["ticket_id", "body"]
            }
        ),
        Tool(
            name="list_comments",
            description="List a ticket's comments in posting order.",
            inputSchema={
                "type": "object",
                "properties": {"ticket_id": _TICKET_ID},
                "required": ["ticket_id"]
            }
        ),
        Tool(
            name="get_activity",
            description="Get a ticket's audit trail, newest first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "ticket_id": _TICKET_ID,
                    "limit": {"type": "integer", "description": "Maximum number of events"}
                },
                "required": ["ticket_id"]
            }
        ),
        # ============================================================================
        # Docs
        # ============================================================================
        Tool(
            name="list_docs",
            description="List the workspace's feature docs with a short preview.",
            inputSchema={"type": "object", "properties": {}}
        ),
        Tool(
            name="get_doc",
            description="Get a feature doc with its full content.",
            inputSchema={
                "type": "object",
                "properties": {"doc_id": {"type": "string", "description": "Feature doc UUID"}},
                "required": ["doc_id"]
            }
        ),
        Tool(
            name="get_workspace_docs",
            description="Get the workspace-wide docs (conventions, setup notes) agents should follow.",
            inputSchema={"type": "object", "properties": {}}
        ),
    ]
