"""Formatting functions for MCP responses.

Input dicts are API responses with camelCase keys.
"""
from typing import Optional

import httpx

STATUS_LABELS = {
    "unclaimed": "Unclaimed",
    "in_progress": "In Progress",
    "done": "Done",
}


def _owner(ticket: dict) -> str:
    if not ticket.get("ownerId"):
        return "unassigned"
    name = ticket.get("ownerDisplayName") or ticket["ownerId"]
    return f"{name} ({ticket.get('ownerType') or 'unknown'})"


def format_ticket_line(ticket: dict) -> str:
    """One-line ticket summary for lists."""
    children = ""
    if ticket.get("childCount"):
        children = f" [{ticket.get('childDoneCount', 0)}/{ticket['childCount']} subtasks done]"
    status = STATUS_LABELS.get(ticket["status"], ticket["status"])
    return f"- {ticket['identifier']} [{status}] {ticket['title']} ({_owner(ticket)}){children}"


def format_ticket(ticket: dict) -> str:
    """Format a ticket for display with its full description."""
    parent_info = f"\nParent: {ticket['parentId']}" if ticket.get("parentId") else ""
    doc_info = f"\nDoc: {ticket['docId']}" if ticket.get("docId") else ""
    archived_info = "\nArchived: yes" if ticket.get("archived") else ""
    children_info = ""
    if ticket.get("childCount"):
        children_info = f"\nSubtasks: {ticket.get('childDoneCount', 0)}/{ticket['childCount']} done"
    description = ticket.get("description") or "(no description)"

    return f"""**{ticket['identifier']}: {ticket['title']}**
ID: {ticket['id']}
Status: {STATUS_LABELS.get(ticket['status'], ticket['status'])}
Owner: {_owner(ticket)}{parent_info}{doc_info}{children_info}{archived_info}
Created: {ticket['createdAt']}
Updated: {ticket['updatedAt']}

{description}"""


def format_comment(comment: dict) -> str:
    author = comment.get("authorDisplayName") or comment["authorId"]
    return f"- {author} ({comment['authorType']}) at {comment['createdAt']}:\n  {comment['body']}"


def format_activity(event: dict) -> str:
    """Format one activity ledger entry."""
    actor = event.get("actorDisplayName") or event["actorId"]
    data = event.get("data") or {}
    details = ""
    if event["type"] == "ticket_status_changed":
        details = f": {data.get('from')} → {data.get('to')} ({data.get('transition')})"
        if data.get("reason"):
            details += f", reason: {data['reason']}"
    elif event["type"] == "ticket_assignment_changed":
        target = data.get("to")
        details = f": {target['ownerId']}" if target else ": unassigned"
    elif event["type"] == "ticket_updated" and data.get("fields"):
        details = f": {', '.join(data['fields'])}"
    return f"- {event['createdAt']} {event['type']} by {actor} ({event['actorType']}){details}"


def format_doc_line(doc: dict) -> str:
    archived = " (archived)" if doc.get("archived") else ""
    return f"- #{doc['number']} {doc['title']} [{doc['id']}]{archived}"


def format_doc(doc: dict) -> str:
    """Format a feature doc with its content."""
    parent_info = f"\nParent doc: {doc['parentDocId']}" if doc.get("parentDocId") else ""
    return f"""**#{doc['number']} {doc['title']}**
ID: {doc['id']}
Status: {STATUS_LABELS.get(doc['status'], doc['status'])}{parent_info}
Updated: {doc['updatedAt']}

{doc.get('content') or '(empty)'}"""


def format_workspace_docs(result: dict) -> str:
    docs = result.get("docs") or "(no workspace docs)"
    return f"**{result['name']}** workspace docs\n\n{docs}"


def format_api_error(response: httpx.Response) -> str:
    """
    Render an API error body as text.

    The API answers ``{"error": message, ...context}``; context such as
    ``currentStatus`` is appended so the agent can react to it.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    message: Optional[str] = None
    context = {}
    if isinstance(body, dict):
        message = body.get("error")
        context = {key: value for key, value in body.items() if key != "error"}
    if not message:
        message = response.text or response.reason_phrase

    text = f"Error ({response.status_code}): {message}"
    if "currentStatus" in context:
        text += f"\nCurrent status: {context.pop('currentStatus')}"
    for key, value in context.items():
        text += f"\n{key}: {value}"
    return text
