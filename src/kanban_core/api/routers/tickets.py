"""Ticket API endpoints: lifecycle, hierarchy, comments and activity."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import schemas, tickets as store
from ...access import Capability, get_ticket_in_workspace
from ...activity import list_ticket_activity
from ...database import get_db
from ...errors import ValidationError
from ...identity import ApiKeyPrincipal
from ...models import OwnerType, Ticket
from ..dependencies import WorkspaceContext, require

logger = logging.getLogger("kanban-core.api.tickets")

router = APIRouter(tags=["tickets"])

SUMMARY_FIELDS = "summary"


def _ticket_response(ticket: Ticket) -> schemas.TicketResponse:
    return schemas.TicketResponse.model_validate(ticket)


def _summary_response(ticket: Ticket) -> schemas.TicketSummaryResponse:
    return schemas.TicketSummaryResponse.model_validate(ticket)


def _clean_owner_string(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid {field}")
    return value.strip()


def _resolve_assignee(ctx: WorkspaceContext, payload: schemas.TicketAssign) -> tuple[str, OwnerType, Optional[str]]:
    """
    Work out who a ticket is being assigned to.

    Agents may only assign to their own server-resolved identity; any owner
    fields they send must match it. Humans may assign to anyone and default
    to themselves.
    """
    principal = ctx.principal
    fields = payload.model_fields_set

    if isinstance(principal, ApiKeyPrincipal):
        if "owner_type" in fields and payload.owner_type != OwnerType.AGENT.value:
            raise ValidationError("Invalid ownerType")
        if "owner_id" in fields:
            if _clean_owner_string(payload.owner_id, "ownerId") != principal.owner_id:
                raise ValidationError("ownerId must match server identity")
        if "owner_display_name" in fields:
            display_name = _clean_owner_string(payload.owner_display_name, "ownerDisplayName")
            if display_name != principal.owner_display_name:
                raise ValidationError("ownerDisplayName must match server identity")
        return principal.owner_id, OwnerType.AGENT, principal.owner_display_name

    owner_type = OwnerType.USER
    if "owner_type" in fields:
        try:
            owner_type = OwnerType(payload.owner_type)
        except ValueError:
            raise ValidationError("Invalid ownerType")

    if "owner_id" not in fields:
        return principal.user_id, owner_type, principal.display_name

    owner_id = _clean_owner_string(payload.owner_id, "ownerId")
    display_name = None
    if payload.owner_display_name is not None:
        display_name = _clean_owner_string(payload.owner_display_name, "ownerDisplayName")
    elif owner_id == principal.user_id:
        display_name = principal.display_name
    return owner_id, owner_type, display_name


def _caller_as_owner(ctx: WorkspaceContext) -> tuple[str, OwnerType, Optional[str]]:
    principal = ctx.principal
    if isinstance(principal, ApiKeyPrincipal):
        return principal.owner_id, OwnerType.AGENT, principal.owner_display_name
    return principal.user_id, OwnerType.USER, principal.display_name


# ============================================================================
# Collection
# ============================================================================


@router.get("/tickets", response_model=schemas.TicketListResponse)
def list_tickets(
    status: Optional[str] = Query(None, description="Filter by status"),
    parent_id: Optional[str] = Query(None, alias="parentId", description="Parent ticket id, or 'root'"),
    fields: Optional[str] = Query(None, description="'summary' omits descriptions"),
    include_archived: bool = Query(False, alias="includeArchived"),
    limit: Optional[int] = Query(None, ge=1),
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    """
    List tickets in board order.

    - **status**: unclaimed, in_progress or done
    - **parentId**: children of one ticket, or ``root`` for top-level tickets
    - **fields**: ``summary`` to omit descriptions
    - **includeArchived**: include archived tickets (default false)
    """
    if fields is not None and fields != SUMMARY_FIELDS:
        raise ValidationError("Invalid fields")

    rows = store.list_tickets(
        db,
        ctx.workspace_id,
        status=status,
        parent=parent_id,
        include_archived=include_archived,
        limit=limit,
    )
    render = _summary_response if fields == SUMMARY_FIELDS else _ticket_response
    return schemas.TicketListResponse(tickets=[render(ticket) for ticket in rows])


@router.post("/tickets", response_model=schemas.TicketEnvelope, status_code=201)
def create_ticket(
    payload: schemas.TicketCreate,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    """Create an unclaimed ticket, optionally under a parent ticket or feature doc."""
    ticket = store.create_ticket(
        db,
        ctx.workspace_id,
        title=payload.title,
        description=payload.description,
        parent_id=payload.parent_id,
        doc_id=payload.doc_id,
        order=payload.order,
        actor=ctx.actor,
    )
    return schemas.TicketEnvelope(ticket=_ticket_response(ticket))


# ============================================================================
# Single ticket
# ============================================================================


@router.get("/tickets/{ticket_id}", response_model=schemas.TicketResponse)
def get_ticket(
    ticket_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    """Get a ticket by UUID or identifier (e.g. ``ENG-12``)."""
    return _ticket_response(get_ticket_in_workspace(db, ctx.workspace_id, ticket_id))


@router.patch("/tickets/{ticket_id}", response_model=schemas.TicketEnvelope)
def update_ticket(
    ticket_id: str,
    payload: schemas.TicketUpdate,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    """Partially update title, description, parent, doc, archived flag or order."""
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    ticket = store.update_ticket(db, ticket, payload.model_dump(exclude_unset=True), actor=ctx.actor)
    return schemas.TicketEnvelope(ticket=_ticket_response(ticket))


@router.delete("/tickets/{ticket_id}", response_model=schemas.TicketDeleteResponse)
def delete_ticket(
    ticket_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    """Delete a ticket and its whole subtree."""
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    deleted = store.remove_ticket(db, ticket, actor=ctx.actor)
    return schemas.TicketDeleteResponse(deleted=deleted)


@router.get("/tickets/{ticket_id}/hierarchy", response_model=schemas.TicketHierarchyResponse)
def get_ticket_hierarchy(
    ticket_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    ancestors, children = store.get_ticket_hierarchy(db, ticket)
    return schemas.TicketHierarchyResponse(
        ticket=_ticket_response(ticket),
        ancestors=[_summary_response(t) for t in ancestors],
        children=[_summary_response(t) for t in children],
    )


@router.post("/tickets/{ticket_id}/reconcile", response_model=schemas.TicketEnvelope)
def reconcile_ticket(
    ticket_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    """Recompute the ticket's child counters from its live children."""
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    return schemas.TicketEnvelope(ticket=_ticket_response(store.reconcile_ticket_counts(db, ticket)))


# ============================================================================
# Lifecycle
# ============================================================================


@router.post("/tickets/{ticket_id}/claim", response_model=schemas.TicketActionResponse)
def claim_ticket(
    ticket_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    """
    Claim an unclaimed ticket for the caller.

    Exactly one of several concurrent claimants succeeds; the others get 409
    with ``currentStatus``.
    """
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    owner_id, owner_type, display_name = _caller_as_owner(ctx)
    ticket = store.claim_ticket(db, ticket, owner_id, owner_type, display_name, actor=ctx.actor)
    return schemas.TicketActionResponse(ticket=_ticket_response(ticket))


@router.post("/tickets/{ticket_id}/complete", response_model=schemas.TicketActionResponse)
def complete_ticket(
    ticket_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    ticket = store.complete_ticket(db, ticket, actor=ctx.actor)
    return schemas.TicketActionResponse(ticket=_ticket_response(ticket))


@router.post("/tickets/{ticket_id}/status", response_model=schemas.TicketEnvelope)
def update_ticket_status(
    ticket_id: str,
    payload: schemas.TicketStatusUpdate,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    """
    Move a ticket to another status, optionally repositioning it.

    Agents must give a ``reason`` for non-standard transitions.
    """
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    ticket = store.update_ticket_status(
        db,
        ticket,
        payload.status,
        is_agent_caller=ctx.is_agent,
        reason=payload.reason,
        order=payload.order,
        actor=ctx.actor,
    )
    return schemas.TicketEnvelope(ticket=_ticket_response(ticket))


@router.post("/tickets/{ticket_id}/assign", response_model=schemas.TicketEnvelope)
def assign_ticket(
    ticket_id: str,
    payload: Optional[schemas.TicketAssign] = None,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    owner_id, owner_type, display_name = _resolve_assignee(ctx, payload or schemas.TicketAssign())
    ticket = store.assign_ticket(db, ticket, owner_id, owner_type, display_name, actor=ctx.actor)
    return schemas.TicketEnvelope(ticket=_ticket_response(ticket))


@router.post("/tickets/{ticket_id}/unassign", response_model=schemas.TicketEnvelope)
def unassign_ticket(
    ticket_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    return schemas.TicketEnvelope(ticket=_ticket_response(store.unassign_ticket(db, ticket, actor=ctx.actor)))


# ============================================================================
# Comments & activity
# ============================================================================


@router.get("/tickets/{ticket_id}/comments", response_model=schemas.CommentListResponse)
def list_comments(
    ticket_id: str,
    limit: Optional[int] = Query(None, ge=1),
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    comments = store.list_comments(db, ticket.id, limit=limit)
    return schemas.CommentListResponse(
        comments=[schemas.CommentResponse.model_validate(comment) for comment in comments]
    )


@router.post("/tickets/{ticket_id}/comments", response_model=schemas.CommentEnvelope, status_code=201)
def add_comment(
    ticket_id: str,
    payload: schemas.CommentCreate,
    ctx: WorkspaceContext = Depends(require(Capability.TICKETS_WRITE)),
    db: Session = Depends(get_db),
):
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    body = payload.body if isinstance(payload.body, str) else None
    comment = store.add_comment(db, ticket, body, ctx.actor)
    return schemas.CommentEnvelope(comment=schemas.CommentResponse.model_validate(comment))


@router.get("/tickets/{ticket_id}/activity", response_model=schemas.ActivityListResponse)
def get_ticket_activity(
    ticket_id: str,
    limit: Optional[int] = Query(None, ge=1),
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    """Audit trail for a ticket, newest first."""
    ticket = get_ticket_in_workspace(db, ctx.workspace_id, ticket_id)
    events = list_ticket_activity(db, ticket.id, limit=limit)
    return schemas.ActivityListResponse(
        events=[schemas.ActivityResponse.model_validate(event) for event in events]
    )
