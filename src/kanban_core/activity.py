"""Ticket activity ledger.

Every ticket mutation appends exactly one entry (status changes made through
assignment may append two) inside the caller's transaction. Entries are never
updated or deleted; there is deliberately no API for it.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from .config import get_settings
from .identity import Principal
from .models import ActivityType, ActorType, TicketActivity

logger = logging.getLogger("kanban-core.activity")


@dataclass(frozen=True)
class Actor:
    """Who performed an action: a user, an agent, or the system itself."""

    type: ActorType
    id: str
    display_name: Optional[str] = None

    @classmethod
    def user(cls, user_id: str, display_name: Optional[str] = None) -> "Actor":
        return cls(ActorType.USER, user_id, display_name)

    @classmethod
    def agent(cls, owner_id: str, display_name: Optional[str] = None) -> "Actor":
        return cls(ActorType.AGENT, owner_id, display_name)

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorType.SYSTEM, "system", "System")


def actor_for_principal(principal: Principal) -> Actor:
    """Map an authenticated principal to the actor recorded in the ledger."""
    if principal.is_agent:
        return Actor.agent(principal.owner_id, principal.owner_display_name)
    return Actor.user(principal.user_id, principal.display_name)


def resolve_actor(actor: Optional[Actor] = None, principal: Optional[Principal] = None) -> Actor:
    """Explicit actor wins, then the ambient principal, then the system actor."""
    if actor is not None:
        return actor
    if principal is not None:
        return actor_for_principal(principal)
    return Actor.system()


def log_ticket_activity(
    db: Session,
    workspace_id: UUID,
    ticket_id: UUID,
    activity_type: ActivityType,
    data: Optional[dict[str, Any]] = None,
    actor: Optional[Actor] = None,
    principal: Optional[Principal] = None,
) -> TicketActivity:
    """
    Append an activity entry. The caller commits.

    Args:
        db: Database session
        workspace_id: Owning workspace
        ticket_id: Subject ticket (may already be deleted)
        activity_type: Kind of mutation
        data: JSON-serializable payload
        actor: Explicit actor, takes precedence
        principal: Ambient principal used when no actor is given

    Returns:
        The pending TicketActivity row
    """
    resolved = resolve_actor(actor, principal)
    entry = TicketActivity(
        workspace_id=workspace_id,
        ticket_id=ticket_id,
        type=activity_type,
        actor_type=resolved.type,
        actor_id=resolved.id,
        actor_display_name=resolved.display_name,
        data=data,
    )
    db.add(entry)
    db.flush()
    logger.debug(f"Logged {ActivityType(activity_type).value} for ticket {ticket_id} by {resolved.id}")
    return entry


def list_ticket_activity(db: Session, ticket_id: UUID, limit: Optional[int] = None) -> list[TicketActivity]:
    """Activity for a ticket, newest first."""
    settings = get_settings()
    limit = min(limit or settings.default_list_limit, settings.max_list_limit)
    return (
        db.query(TicketActivity)
        .filter(TicketActivity.ticket_id == ticket_id)
        .order_by(TicketActivity.created_at.desc(), TicketActivity.id.desc())
        .limit(limit)
        .all()
    )
