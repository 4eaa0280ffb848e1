"""Workspace access control.

Decides whether a principal may exercise a capability on a workspace and
loads workspace-scoped resources. Resources in other workspaces are reported
exactly like missing ones so their existence never leaks across tenants.
"""
import enum
import logging
import re
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from .errors import AuthorizationError, NotFoundError, ValidationError
from .identity import ApiKeyPrincipal, Principal
from .models import ApiKey, ApiKeyRole, FeatureDoc, MemberRole, Ticket, Workspace, WorkspaceMember

logger = logging.getLogger("kanban-core.access")

TICKET_NOT_FOUND = "Issue not found"
DOC_NOT_FOUND = "Doc not found"
API_KEY_NOT_FOUND = "API key not found"
WORKSPACE_NOT_FOUND = "Workspace not found"

_TICKET_IDENTIFIER = re.compile(r"^([A-Za-z]{2,5})-(\d+)$")


class Capability(str, enum.Enum):
    WORKSPACE_READ = "workspace.read"
    TICKETS_WRITE = "tickets.write"
    DOCS_WRITE = "docs.write"
    KEYS_MANAGE = "keys.manage"
    MEMBERS_MANAGE = "members.manage"
    WORKSPACE_ADMIN = "workspace.admin"
    WORKSPACE_DELETE = "workspace.delete"


# Capabilities that need an admin key or an owner/admin membership
ADMIN_CAPABILITIES = frozenset({
    Capability.KEYS_MANAGE,
    Capability.MEMBERS_MANAGE,
    Capability.WORKSPACE_ADMIN,
})

MANAGER_ROLES = frozenset({MemberRole.OWNER, MemberRole.ADMIN})


def parse_uuid(value, message: str) -> UUID:
    """Parse an id; malformed ids are indistinguishable from missing rows."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise NotFoundError(message)


def get_membership(db: Session, workspace_id: UUID, user_id: str) -> Optional[WorkspaceMember]:
    return db.query(WorkspaceMember).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == user_id,
    ).first()


def authorize(
    db: Session,
    principal: Principal,
    workspace_id: UUID,
    capability: Capability,
) -> Optional[WorkspaceMember]:
    """
    Check that ``principal`` may exercise ``capability`` on ``workspace_id``.

    Args:
        db: Database session
        principal: Authenticated caller
        workspace_id: Target workspace
        capability: Requested capability

    Returns:
        The caller's membership for session principals, None for API keys

    Raises:
        NotFoundError: Workspace unknown to the caller
        AuthorizationError: Known workspace, insufficient role
    """
    if isinstance(principal, ApiKeyPrincipal):
        if principal.workspace_id != workspace_id:
            logger.warning(f"API key {principal.api_key_id} denied access to workspace {workspace_id}")
            raise NotFoundError(WORKSPACE_NOT_FOUND)
        if capability == Capability.WORKSPACE_DELETE:
            raise AuthorizationError("API keys cannot delete workspaces")
        if capability in ADMIN_CAPABILITIES and not principal.is_admin:
            logger.warning(f"Agent key {principal.api_key_id} attempted {capability.value}")
            raise AuthorizationError("Admin API key required")
        return None

    membership = get_membership(db, workspace_id, principal.user_id)
    if membership is None:
        logger.warning(f"User {principal.user_id} is not a member of workspace {workspace_id}")
        raise NotFoundError(WORKSPACE_NOT_FOUND)

    role = MemberRole(membership.role)
    if capability == Capability.WORKSPACE_DELETE and role != MemberRole.OWNER:
        raise AuthorizationError("Only workspace owners can delete workspaces")
    if capability in ADMIN_CAPABILITIES and role not in MANAGER_ROLES:
        raise AuthorizationError("Insufficient workspace role")
    return membership


# ============================================================================
# Workspace-scoped lookups
# ============================================================================


def get_workspace(db: Session, workspace_id: UUID) -> Workspace:
    workspace = db.query(Workspace).filter(Workspace.id == workspace_id).first()
    if workspace is None:
        raise NotFoundError(WORKSPACE_NOT_FOUND)
    return workspace


def get_ticket_in_workspace(db: Session, workspace_id: UUID, ticket_ref) -> Ticket:
    """
    Load a ticket by UUID or by human-readable identifier (e.g. ``ENG-12``).

    Raises:
        NotFoundError: Missing, malformed, or owned by another workspace
    """
    ticket = None
    try:
        ticket_uuid = UUID(str(ticket_ref))
        ticket = db.query(Ticket).filter(Ticket.id == ticket_uuid).first()
    except ValueError:
        match = _TICKET_IDENTIFIER.match(str(ticket_ref).strip())
        if match:
            ticket = db.query(Ticket).join(Workspace, Ticket.workspace_id == Workspace.id).filter(
                Ticket.workspace_id == workspace_id,
                func.upper(Workspace.prefix) == match.group(1).upper(),
                Ticket.number == int(match.group(2)),
            ).first()

    if ticket is None or ticket.workspace_id != workspace_id:
        raise NotFoundError(TICKET_NOT_FOUND)
    return ticket


def get_doc_in_workspace(db: Session, workspace_id: UUID, doc_id) -> FeatureDoc:
    doc_uuid = parse_uuid(doc_id, DOC_NOT_FOUND)
    doc = db.query(FeatureDoc).filter(FeatureDoc.id == doc_uuid).first()
    if doc is None or doc.workspace_id != workspace_id:
        raise NotFoundError(DOC_NOT_FOUND)
    return doc


def get_api_key_in_workspace(db: Session, workspace_id: UUID, key_id) -> ApiKey:
    key_uuid = parse_uuid(key_id, API_KEY_NOT_FOUND)
    api_key = db.query(ApiKey).filter(ApiKey.id == key_uuid).first()
    if api_key is None or api_key.workspace_id != workspace_id:
        raise NotFoundError(API_KEY_NOT_FOUND)
    return api_key


# ============================================================================
# Self-protection for key management
# ============================================================================


def ensure_not_self_delete(principal: Principal, key_id: UUID) -> None:
    if isinstance(principal, ApiKeyPrincipal) and principal.api_key_id == key_id:
        raise ValidationError("Cannot delete the API key used for this request")


def ensure_not_self_demote(principal: Principal, key_id: UUID, new_role: ApiKeyRole) -> None:
    if (
        isinstance(principal, ApiKeyPrincipal)
        and principal.api_key_id == key_id
        and ApiKeyRole(new_role) != ApiKeyRole.ADMIN
    ):
        raise ValidationError("Cannot demote the API key used for this request")
