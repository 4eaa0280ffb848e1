"""Ticket store: lifecycle mutations, listing and comments.

Guarded transitions (claim, complete, status changes) are conditional UPDATE
statements evaluated by the database, so concurrent callers cannot both win.
Each public mutation commits exactly one transaction.
"""
import logging
from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from . import hierarchy
from .activity import Actor, log_ticket_activity
from .config import get_settings
from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    ActivityType,
    FeatureDoc,
    OwnerType,
    Ticket,
    TicketComment,
    TicketStatus,
    Workspace,
    epoch_ms,
    utcnow,
)
from .status_policy import TransitionClass, parse_status, validate_transition_for_actor

logger = logging.getLogger("kanban-core.tickets")

ROOT = "root"

UPDATABLE_FIELDS = ("title", "description", "parent_id", "doc_id", "archived", "order")


def _as_uuid(value, message: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(message)


def owner_snapshot(ticket: Ticket) -> Optional[dict[str, Any]]:
    """Owner fields as stored in activity payloads; None when unassigned."""
    if ticket.owner_id is None:
        return None
    return {
        "ownerId": ticket.owner_id,
        "ownerType": OwnerType(ticket.owner_type).value if ticket.owner_type else None,
        "ownerDisplayName": ticket.owner_display_name,
    }


def _next_ticket_number(db: Session, workspace_id: UUID) -> int:
    # Relative increment; the row lock serializes concurrent creators
    db.execute(
        update(Workspace)
        .where(Workspace.id == workspace_id)
        .values(ticket_counter=Workspace.ticket_counter + 1)
        .execution_options(synchronize_session=False)
    )
    number = db.query(Workspace.ticket_counter).filter(Workspace.id == workspace_id).scalar()
    if number is None:
        raise NotFoundError("Workspace not found")
    return number


def _default_order(db: Session, workspace_id: UUID, parent_id: Optional[UUID], now: datetime) -> float:
    last_order = db.query(func.max(Ticket.order)).filter(
        Ticket.workspace_id == workspace_id,
        Ticket.parent_id.is_(None) if parent_id is None else Ticket.parent_id == parent_id,
    ).scalar()
    if last_order is None:
        return epoch_ms(now)
    return last_order + get_settings().order_increment


def _load_parent(db: Session, workspace_id: UUID, parent_id) -> Ticket:
    parent_uuid = _as_uuid(parent_id, "Invalid parent ticket")
    parent = db.query(Ticket).filter(Ticket.id == parent_uuid).first()
    if parent is None or parent.workspace_id != workspace_id:
        raise ValidationError("Invalid parent ticket")
    return parent


def _load_doc(db: Session, workspace_id: UUID, doc_id) -> FeatureDoc:
    doc_uuid = _as_uuid(doc_id, "Invalid doc")
    doc = db.query(FeatureDoc).filter(FeatureDoc.id == doc_uuid).first()
    if doc is None or doc.workspace_id != workspace_id:
        raise ValidationError("Invalid doc")
    return doc


def _current_status(db: Session, ticket_id: UUID) -> TicketStatus:
    status = db.query(Ticket.status).filter(Ticket.id == ticket_id).scalar()
    if status is None:
        raise NotFoundError("Issue not found")
    return TicketStatus(status)


def _finish(db: Session, ticket: Ticket) -> Ticket:
    db.commit()
    db.refresh(ticket)
    return ticket


# ============================================================================
# Create / update
# ============================================================================


def create_ticket(
    db: Session,
    workspace_id: UUID,
    title: Optional[str],
    description: Optional[str] = None,
    parent_id=None,
    doc_id=None,
    order: Optional[float] = None,
    actor: Optional[Actor] = None,
) -> Ticket:
    """
    Create an unclaimed ticket.

    Args:
        db: Database session
        workspace_id: Owning workspace
        title: Required, trimmed
        description: Optional body text
        parent_id: Optional parent ticket in the same workspace
        doc_id: Optional feature doc in the same workspace
        order: Explicit sort key; defaults to after the last sibling
        actor: Who is creating the ticket

    Returns:
        The created Ticket

    Raises:
        ValidationError: Blank title, or parent/doc outside the workspace
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")

    parent = _load_parent(db, workspace_id, parent_id) if parent_id is not None else None
    doc = _load_doc(db, workspace_id, doc_id) if doc_id is not None else None

    now = utcnow()
    number = _next_ticket_number(db, workspace_id)
    if order is None:
        order = _default_order(db, workspace_id, parent.id if parent else None, now)

    ticket = Ticket(
        workspace_id=workspace_id,
        title=title,
        description=(description or "").strip(),
        number=number,
        parent_id=parent.id if parent else None,
        doc_id=doc.id if doc else None,
        order=order,
        archived=False,
        status=TicketStatus.UNCLAIMED,
        child_count=0,
        child_done_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(ticket)
    db.flush()

    if parent is not None:
        hierarchy.apply_counts_delta(db, parent.id, 1, 0)

    log_ticket_activity(
        db,
        workspace_id,
        ticket.id,
        ActivityType.TICKET_CREATED,
        data={"number": number, "parentId": str(parent.id) if parent else None},
        actor=actor,
    )
    _finish(db, ticket)
    logger.info(f"Created ticket {ticket.identifier} (ID: {ticket.id})")
    return ticket


def update_ticket(
    db: Session,
    ticket: Ticket,
    changes: dict[str, Any],
    actor: Optional[Actor] = None,
) -> Ticket:
    """
    Apply a partial update.

    Archiving a ticket does not archive its children. Parent changes are
    re-validated against the tree and both parents' counters are adjusted.

    Args:
        db: Database session
        ticket: Ticket to update
        changes: Subset of title, description, parent_id, doc_id, archived, order
        actor: Who is updating

    Returns:
        The updated Ticket
    """
    changed: dict[str, Any] = {}

    if "title" in changes:
        title = (changes["title"] or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if title != ticket.title:
            changed["title"] = title

    if "description" in changes:
        description = (changes["description"] or "").strip()
        if description != ticket.description:
            changed["description"] = description

    if "order" in changes and changes["order"] is not None:
        if float(changes["order"]) != ticket.order:
            changed["order"] = float(changes["order"])

    if "doc_id" in changes:
        doc_id = _load_doc(db, ticket.workspace_id, changes["doc_id"]).id if changes["doc_id"] is not None else None
        if doc_id != ticket.doc_id:
            changed["doc_id"] = doc_id

    new_parent_id = ticket.parent_id
    if "parent_id" in changes:
        if changes["parent_id"] is None:
            new_parent_id = None
        else:
            parent = _load_parent(db, ticket.workspace_id, changes["parent_id"])
            hierarchy.ensure_valid_parent(db, ticket, parent)
            new_parent_id = parent.id
        if new_parent_id != ticket.parent_id:
            changed["parent_id"] = new_parent_id

    new_archived = ticket.archived
    if "archived" in changes and changes["archived"] is not None:
        new_archived = bool(changes["archived"])
        if new_archived != ticket.archived:
            changed["archived"] = new_archived

    if not changed:
        return ticket

    before = hierarchy.counted_state(ticket.archived, ticket.status)
    after = hierarchy.counted_state(new_archived, ticket.status)
    if "parent_id" in changed:
        hierarchy.apply_counts_delta(db, ticket.parent_id, -before[0], -before[1])
        hierarchy.apply_counts_delta(db, new_parent_id, after[0], after[1])
    elif "archived" in changed:
        hierarchy.apply_state_change(db, ticket.parent_id, before, after)

    for field, value in changed.items():
        setattr(ticket, field, value)
    ticket.updated_at = utcnow()

    field_names = [_camel(field) for field in UPDATABLE_FIELDS if field in changed]
    log_ticket_activity(
        db,
        ticket.workspace_id,
        ticket.id,
        ActivityType.TICKET_UPDATED,
        data={"fields": field_names},
        actor=actor,
    )
    _finish(db, ticket)
    logger.info(f"Updated ticket {ticket.id}: {', '.join(field_names)}")
    return ticket


def _camel(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(part.title() for part in rest)


# ============================================================================
# Ownership
# ============================================================================


def assign_ticket(
    db: Session,
    ticket: Ticket,
    owner_id: str,
    owner_type: OwnerType,
    owner_display_name: Optional[str] = None,
    actor: Optional[Actor] = None,
) -> Ticket:
    """
    Set the ticket owner.

    An unclaimed ticket cannot carry an owner, so assigning one moves it to
    in_progress in the same statement (exactly like a claim).
    """
    owner_values = {
        "owner_id": owner_id,
        "owner_type": OwnerType(owner_type),
        "owner_display_name": owner_display_name,
        "updated_at": utcnow(),
    }
    ticket_id = ticket.id
    previous_owner = owner_snapshot(ticket)

    promoted = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.UNCLAIMED)
        .values(status=TicketStatus.IN_PROGRESS, **owner_values)
        .execution_options(synchronize_session=False)
    ).rowcount == 1
    if not promoted:
        result = db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status != TicketStatus.UNCLAIMED)
            .values(**owner_values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ConflictError(
                "Transition not allowed: issue status changed concurrently",
                current_status=_current_status(db, ticket_id).value,
            )

    if promoted:
        log_ticket_activity(
            db,
            ticket.workspace_id,
            ticket.id,
            ActivityType.TICKET_STATUS_CHANGED,
            data={
                "from": TicketStatus.UNCLAIMED.value,
                "to": TicketStatus.IN_PROGRESS.value,
                "transition": TransitionClass.STANDARD.value,
            },
            actor=actor,
        )
    log_ticket_activity(
        db,
        ticket.workspace_id,
        ticket.id,
        ActivityType.TICKET_ASSIGNMENT_CHANGED,
        data={
            "from": previous_owner,
            "to": {
                "ownerId": owner_id,
                "ownerType": OwnerType(owner_type).value,
                "ownerDisplayName": owner_display_name,
            },
        },
        actor=actor,
    )
    _finish(db, ticket)
    logger.info(f"Assigned ticket {ticket.id} to {owner_id}")
    return ticket


def unassign_ticket(db: Session, ticket: Ticket, actor: Optional[Actor] = None) -> Ticket:
    """Clear owner fields. Unassigning an unassigned ticket changes nothing."""
    previous_owner = owner_snapshot(ticket)
    if previous_owner is None and ticket.owner_type is None:
        return ticket

    db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id)
        .values(owner_id=None, owner_type=None, owner_display_name=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    log_ticket_activity(
        db,
        ticket.workspace_id,
        ticket.id,
        ActivityType.TICKET_ASSIGNMENT_CHANGED,
        data={"from": previous_owner, "to": None},
        actor=actor,
    )
    _finish(db, ticket)
    logger.info(f"Unassigned ticket {ticket.id}")
    return ticket


# ============================================================================
# Guarded transitions
# ============================================================================


def claim_ticket(
    db: Session,
    ticket: Ticket,
    owner_id: str,
    owner_type: OwnerType,
    owner_display_name: Optional[str] = None,
    actor: Optional[Actor] = None,
) -> Ticket:
    """
    Atomically move an unclaimed ticket to in_progress under a new owner.

    Raises:
        ConflictError: The ticket is no longer unclaimed; carries currentStatus
    """
    ticket_id = ticket.id
    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.UNCLAIMED)
        .values(
            status=TicketStatus.IN_PROGRESS,
            owner_id=owner_id,
            owner_type=OwnerType(owner_type),
            owner_display_name=owner_display_name,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        current = _current_status(db, ticket_id)
        logger.warning(f"Claim on ticket {ticket.id} lost: status is {current.value}")
        raise ConflictError("Issue is not available to claim", current_status=current.value)

    log_ticket_activity(
        db,
        ticket.workspace_id,
        ticket.id,
        ActivityType.TICKET_STATUS_CHANGED,
        data={
            "from": TicketStatus.UNCLAIMED.value,
            "to": TicketStatus.IN_PROGRESS.value,
            "transition": TransitionClass.STANDARD.value,
        },
        actor=actor,
    )
    log_ticket_activity(
        db,
        ticket.workspace_id,
        ticket.id,
        ActivityType.TICKET_ASSIGNMENT_CHANGED,
        data={
            "from": None,
            "to": {
                "ownerId": owner_id,
                "ownerType": OwnerType(owner_type).value,
                "ownerDisplayName": owner_display_name,
            },
        },
        actor=actor,
    )
    _finish(db, ticket)
    logger.info(f"Ticket {ticket.id} claimed by {owner_id}")
    return ticket


def complete_ticket(db: Session, ticket: Ticket, actor: Optional[Actor] = None) -> Ticket:
    """
    Atomically move an in_progress ticket to done, keeping its owner.

    Raises:
        ConflictError: The ticket is not in progress; carries currentStatus
    """
    ticket_id = ticket.id
    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.IN_PROGRESS)
        .values(status=TicketStatus.DONE, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        current = _current_status(db, ticket_id)
        logger.warning(f"Complete on ticket {ticket.id} rejected: status is {current.value}")
        raise ConflictError("Issue must be in progress to complete", current_status=current.value)

    parent_id, archived = db.query(Ticket.parent_id, Ticket.archived).filter(Ticket.id == ticket.id).one()
    if not archived:
        hierarchy.apply_counts_delta(db, parent_id, 0, 1)

    log_ticket_activity(
        db,
        ticket.workspace_id,
        ticket.id,
        ActivityType.TICKET_STATUS_CHANGED,
        data={
            "from": TicketStatus.IN_PROGRESS.value,
            "to": TicketStatus.DONE.value,
            "transition": TransitionClass.STANDARD.value,
        },
        actor=actor,
    )
    _finish(db, ticket)
    logger.info(f"Ticket {ticket.id} completed")
    return ticket


def update_ticket_status(
    db: Session,
    ticket: Ticket,
    status: Union[TicketStatus, str],
    is_agent_caller: bool,
    reason: Optional[str] = None,
    order: Optional[float] = None,
    actor: Optional[Actor] = None,
) -> Ticket:
    """
    Change status (and optionally order) under the transition policy.

    The write only applies if the status is still the one the policy was
    evaluated against; otherwise the caller gets a 409 with the current status.

    Raises:
        ValidationError: Unknown status
        StatusReasonRequiredError: Agent made a non-standard move without a reason
        ConflictError: Status changed concurrently
    """
    to_status = parse_status(status)
    ticket_id = ticket.id
    from_status = TicketStatus(ticket.status)
    transition, reason = validate_transition_for_actor(from_status, to_status, is_agent_caller, reason)

    status_changed = from_status != to_status
    order_changed = order is not None and float(order) != ticket.order
    if not status_changed and not order_changed:
        return ticket

    values: dict[str, Any] = {"updated_at": utcnow()}
    if order_changed:
        values["order"] = float(order)
    if status_changed:
        values["status"] = to_status
        if to_status == TicketStatus.UNCLAIMED:
            values.update(owner_id=None, owner_type=None, owner_display_name=None)

    previous_owner = owner_snapshot(ticket)
    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        current = _current_status(db, ticket_id)
        logger.warning(
            f"Blocked transition on ticket {ticket.id}: expected {from_status.value}, found {current.value}"
        )
        raise ConflictError(
            "Transition not allowed: issue status changed concurrently",
            current_status=current.value,
        )

    if status_changed:
        if not ticket.archived:
            done_before = from_status == TicketStatus.DONE
            done_after = to_status == TicketStatus.DONE
            if done_before != done_after:
                hierarchy.apply_counts_delta(db, ticket.parent_id, 0, 1 if done_after else -1)

        data: dict[str, Any] = {
            "from": from_status.value,
            "to": to_status.value,
            "transition": transition.value,
        }
        if reason:
            data["reason"] = reason
        if to_status == TicketStatus.UNCLAIMED and previous_owner is not None:
            data["clearedOwner"] = previous_owner
        log_ticket_activity(db, ticket.workspace_id, ticket.id, ActivityType.TICKET_STATUS_CHANGED, data=data, actor=actor)
    else:
        log_ticket_activity(
            db, ticket.workspace_id, ticket.id, ActivityType.TICKET_UPDATED, data={"fields": ["order"]}, actor=actor
        )

    _finish(db, ticket)
    logger.info(f"Ticket {ticket.id} status {from_status.value} → {to_status.value} ({transition.value})")
    return ticket


# ============================================================================
# Delete
# ============================================================================


def remove_ticket(db: Session, ticket: Ticket, actor: Optional[Actor] = None) -> int:
    """
    Delete a ticket together with its whole subtree, deepest tickets first.

    One ticket_deleted entry is logged for the root; descendants are logged
    individually only when ``log_cascaded_deletes`` is enabled.

    Returns:
        Number of tickets deleted
    """
    settings = get_settings()
    subtree = hierarchy.collect_subtree(db, ticket)
    ids = [node.id for node in subtree]
    descendants = [(node.id, node.number, node.title) for node in subtree[1:]]

    workspace_id = ticket.workspace_id
    root_id, root_number, root_title = ticket.id, ticket.number, ticket.title
    parent_id = ticket.parent_id
    before = hierarchy.counted_state(ticket.archived, ticket.status)

    db.query(TicketComment).filter(TicketComment.ticket_id.in_(ids)).delete(synchronize_session=False)
    # Every node follows its parent in the subtree, so reversed order removes children first
    for node_id in reversed(ids):
        db.query(Ticket).filter(Ticket.id == node_id).delete(synchronize_session=False)
    hierarchy.apply_counts_delta(db, parent_id, -before[0], -before[1])

    log_ticket_activity(
        db,
        workspace_id,
        root_id,
        ActivityType.TICKET_DELETED,
        data={"number": root_number, "title": root_title, "descendantCount": len(descendants)},
        actor=actor,
    )
    if settings.log_cascaded_deletes:
        for node_id, number, title in descendants:
            log_ticket_activity(
                db,
                workspace_id,
                node_id,
                ActivityType.TICKET_DELETED,
                data={"number": number, "title": title, "cascadedFrom": str(root_id)},
                actor=actor,
            )

    db.commit()
    logger.info(f"Deleted ticket {root_id} and {len(descendants)} descendant(s)")
    return len(ids)


# ============================================================================
# Queries
# ============================================================================


def list_tickets(
    db: Session,
    workspace_id: UUID,
    status: Optional[TicketStatus] = None,
    parent: Union[UUID, str, None] = None,
    include_archived: bool = False,
    limit: Optional[int] = None,
) -> list[Ticket]:
    """
    List tickets in board order.

    Args:
        db: Database session
        workspace_id: Workspace to list
        status: Optional status filter
        parent: A parent ticket id, ``"root"`` for top-level tickets, or None for all
        include_archived: Include archived tickets
        limit: Optional cap, bounded by ``max_list_limit``
    """
    query = db.query(Ticket).filter(Ticket.workspace_id == workspace_id)
    if status is not None:
        query = query.filter(Ticket.status == parse_status(status))
    if parent == ROOT:
        query = query.filter(Ticket.parent_id.is_(None))
    elif parent is not None:
        query = query.filter(Ticket.parent_id == _as_uuid(parent, "Invalid parentId"))
    if not include_archived:
        query = query.filter(Ticket.archived.is_(False))
    query = query.order_by(Ticket.order.asc(), Ticket.created_at.asc())
    if limit is not None:
        query = query.limit(min(limit, get_settings().max_list_limit))
    return query.all()


def get_ticket_hierarchy(db: Session, ticket: Ticket) -> tuple[list[Ticket], list[Ticket]]:
    """(ancestors root-first, children in board order)."""
    return hierarchy.get_ancestors(db, ticket), hierarchy.get_children(db, ticket.id)


def reconcile_ticket_counts(db: Session, ticket: Ticket) -> Ticket:
    """Recompute child counters from live children."""
    count, done = hierarchy.live_child_counts(db, ticket.id)
    if (count, done) != (ticket.child_count, ticket.child_done_count):
        logger.warning(
            f"Reconciled ticket {ticket.id} counters "
            f"({ticket.child_count}/{ticket.child_done_count} → {count}/{done})"
        )
        db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id)
            .values(child_count=count, child_done_count=done)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(ticket)
    return ticket


# ============================================================================
# Comments
# ============================================================================


def add_comment(db: Session, ticket: Ticket, body: Optional[str], actor: Actor) -> TicketComment:
    """
    Append a comment to a ticket.

    Raises:
        ValidationError: Body is blank
    """
    body = (body or "").strip()
    if not body:
        raise ValidationError("Comment body is required")

    comment = TicketComment(
        workspace_id=ticket.workspace_id,
        ticket_id=ticket.id,
        body=body,
        author_type=actor.type,
        author_id=actor.id,
        author_display_name=actor.display_name,
    )
    db.add(comment)
    db.flush()
    log_ticket_activity(
        db,
        ticket.workspace_id,
        ticket.id,
        ActivityType.TICKET_COMMENT_ADDED,
        data={"commentId": str(comment.id)},
        actor=actor,
    )
    db.commit()
    db.refresh(comment)
    logger.info(f"Added comment {comment.id} to ticket {ticket.id}")
    return comment


def list_comments(db: Session, ticket_id: UUID, limit: Optional[int] = None) -> list[TicketComment]:
    """Comments in posting order."""
    query = (
        db.query(TicketComment)
        .filter(TicketComment.ticket_id == ticket_id)
        .order_by(TicketComment.created_at.asc())
    )
    if limit is not None:
        query = query.limit(min(limit, get_settings().max_list_limit))
    return query.all()
