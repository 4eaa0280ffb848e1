"""MCP tool handlers.

All handlers follow a consistent pattern:
- Accept: arguments dict and an httpx.AsyncClient already carrying the API key
- Return: list[TextContent]
- Call ``raise_for_status`` so API errors reach the server's error rendering
"""
from typing import Optional
import logging

import httpx
from mcp.types import TextContent

from . import formatters

logger = logging.getLogger("kanban-mcp.handlers")


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def _ticket_path(arguments: dict, suffix: Optional[str] = None) -> str:
    path = f"/tickets/{arguments['ticket_id']}"
    return f"{path}/{suffix}" if suffix else path


# ============================================================================
# Ticket Handlers
# ============================================================================

async def handle_list_tickets(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    """List tickets, summary projection only."""
    params = {"fields": "summary"}
    if arguments.get("status"):
        params["status"] = arguments["status"]
    if arguments.get("parent_id"):
        params["parentId"] = arguments["parent_id"]
    if arguments.get("include_archived"):
        params["includeArchived"] = "true"
    if arguments.get("limit"):
        params["limit"] = arguments["limit"]

    response = await client.get("/tickets", params=params)
    response.raise_for_status()
    tickets = response.json()["tickets"]
    logger.info(f"Listed {len(tickets)} tickets")

    if not tickets:
        return _text("No tickets found.")
    lines = "\n".join(formatters.format_ticket_line(ticket) for ticket in tickets)
    return _text(f"Found {len(tickets)} tickets\n\n{lines}")


async def handle_get_ticket(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.get(_ticket_path(arguments))
    response.raise_for_status()
    return _text(formatters.format_ticket(response.json()))


async def handle_create_ticket(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    payload = {"title": arguments["title"]}
    for key, field in (("description", "description"), ("parent_id", "parentId"), ("doc_id", "docId")):
        if arguments.get(key) is not None:
            payload[field] = arguments[key]

    response = await client.post("/tickets", json=payload)
    response.raise_for_status()
    ticket = response.json()["ticket"]
    logger.info(f"Created ticket {ticket['identifier']} (ID: {ticket['id']})")
    return _text(f"Created ticket {ticket['identifier']}\n\n{formatters.format_ticket(ticket)}")


async def handle_claim_ticket(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    """Claim a ticket. A lost race comes back as a 409 with the current status."""
    response = await client.post(_ticket_path(arguments, "claim"))
    response.raise_for_status()
    ticket = response.json()["ticket"]
    logger.info(f"Claimed ticket {ticket['identifier']}")
    return _text(f"Claimed {ticket['identifier']}\n\n{formatters.format_ticket(ticket)}")


async def handle_complete_ticket(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.post(_ticket_path(arguments, "complete"))
    response.raise_for_status()
    ticket = response.json()["ticket"]
    logger.info(f"Completed ticket {ticket['identifier']}")
    return _text(f"Completed {ticket['identifier']}")


async def handle_update_ticket_status(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    """Change a ticket's status; non-standard moves need a reason."""
    payload = {"status": arguments["status"]}
    if arguments.get("reason"):
        payload["reason"] = arguments["reason"]

    response = await client.post(_ticket_path(arguments, "status"), json=payload)
    response.raise_for_status()
    ticket = response.json()["ticket"]
    logger.info(f"Moved ticket {ticket['identifier']} to {ticket['status']}")
    status = formatters.STATUS_LABELS.get(ticket["status"], ticket["status"])
    return _text(f"{ticket['identifier']} is now {status}")


async def handle_assign_ticket(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    # The server fills in the agent identity from the API key and session header
    response = await client.post(_ticket_path(arguments, "assign"), json={})
    response.raise_for_status()
    ticket = response.json()["ticket"]
    return _text(f"Assigned {ticket['identifier']} to {ticket.get('ownerDisplayName') or ticket['ownerId']}")


async def handle_unassign_ticket(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.post(_ticket_path(arguments, "unassign"))
    response.raise_for_status()
    ticket = response.json()["ticket"]
    return _text(f"Unassigned {ticket['identifier']}")


# ============================================================================
# Comment & Activity Handlers
# ============================================================================

async def handle_add_comment(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.post(_ticket_path(arguments, "comments"), json={"body": arguments["body"]})
    response.raise_for_status()
    comment = response.json()["comment"]
    logger.info(f"Added comment {comment['id']} to ticket {arguments['ticket_id']}")
    return _text(f"Comment added (ID: {comment['id']})")


async def handle_list_comments(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.get(_ticket_path(arguments, "comments"))
    response.raise_for_status()
    comments = response.json()["comments"]
    if not comments:
        return _text("No comments yet.")
    return _text("\n".join(formatters.format_comment(comment) for comment in comments))


async def handle_get_activity(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    params = {"limit": arguments["limit"]} if arguments.get("limit") else None
    response = await client.get(_ticket_path(arguments, "activity"), params=params)
    response.raise_for_status()
    events = response.json()["events"]
    if not events:
        return _text("No activity recorded.")
    return _text("\n".join(formatters.format_activity(event) for event in events))


# ============================================================================
# Doc Handlers
# ============================================================================

async def handle_list_docs(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.get("/docs")
    response.raise_for_status()
    docs = response.json()["docs"]
    if not docs:
        return _text("No feature docs.")
    return _text("\n".join(formatters.format_doc_line(doc) for doc in docs))


async def handle_get_doc(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.get(f"/docs/{arguments['doc_id']}")
    response.raise_for_status()
    return _text(formatters.format_doc(response.json()))


async def handle_get_workspace_docs(arguments: dict, client: httpx.AsyncClient) -> list[TextContent]:
    response = await client.get("/workspace/docs")
    response.raise_for_status()
    return _text(formatters.format_workspace_docs(response.json()))


HANDLERS = {
    "list_tickets": handle_list_tickets,
    "get_ticket": handle_get_ticket,
    "create_ticket": handle_create_ticket,
    "claim_ticket": handle_claim_ticket,
    "complete_ticket": handle_complete_ticket,
    "update_ticket_status": handle_update_ticket_status,
    "assign_ticket": handle_assign_ticket,
    "unassign_ticket": handle_unassign_ticket,
    "add_comment": handle_add_comment,
    "list_comments": handle_list_comments,
    "get_activity": handle_get_activity,
    "list_docs": handle_list_docs,
    "get_doc": handle_get_doc,
    "get_workspace_docs": handle_get_workspace_docs,
}
