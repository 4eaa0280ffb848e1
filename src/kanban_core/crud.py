"""CRUD operations for workspaces, members, API keys, feature docs and profiles.

Ticket lifecycle lives in ``tickets``; this module covers everything around it.
"""
import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from . import hierarchy
from .config import get_settings
from .errors import NotFoundError, ValidationError
from .models import (
    ApiKey,
    ApiKeyRole,
    FeatureDoc,
    MemberRole,
    Ticket,
    TicketActivity,
    TicketComment,
    TicketStatus,
    UserProfile,
    Workspace,
    WorkspaceDocsVersion,
    WorkspaceMember,
    epoch_ms,
    utcnow,
)
from .prefix import generate_prefix, is_valid_prefix

logger = logging.getLogger("kanban-core.crud")

API_KEY_NAME_MAX_LENGTH = 100
DOC_PREVIEW_LENGTH = 160


def _limit(limit: Optional[int]) -> int:
    settings = get_settings()
    return min(limit or settings.default_list_limit, settings.max_list_limit)


# ============================================================================
# Workspaces
# ============================================================================


def create_workspace(db: Session, name: str, user_id: str, docs: Optional[str] = None) -> Workspace:
    """
    Create a workspace and make the creator its owner.

    Args:
        db: Database session
        name: Workspace name (trimmed, required)
        user_id: Creating user, becomes owner
        docs: Optional initial docs blob

    Returns:
        Created Workspace
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")

    workspace = Workspace(
        name=name,
        docs=docs,
        prefix=generate_prefix(name),
        ticket_counter=0,
        doc_counter=0,
        created_by=user_id,
    )
    db.add(workspace)
    db.flush()
    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user_id, role=MemberRole.OWNER))
    db.commit()
    db.refresh(workspace)
    logger.info(f"Created workspace '{workspace.name}' (ID: {workspace.id}, prefix: {workspace.prefix})")
    return workspace


def get_workspace(db: Session, workspace_id: UUID) -> Optional[Workspace]:
    return db.query(Workspace).filter(Workspace.id == workspace_id).first()


def list_workspaces_for_user(db: Session, user_id: str) -> list[tuple[Workspace, WorkspaceMember]]:
    """Workspaces the user belongs to, with the membership row."""
    return (
        db.query(Workspace, WorkspaceMember)
        .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .filter(WorkspaceMember.user_id == user_id)
        .order_by(Workspace.created_at.asc())
        .all()
    )


def update_workspace(
    db: Session,
    workspace: Workspace,
    actor,
    name: Optional[str] = None,
    docs: Optional[str] = None,
    prefix: Optional[str] = None,
) -> Workspace:
    """
    Update workspace name, docs blob or prefix.

    A docs change appends a WorkspaceDocsVersion attributed to ``actor``.
    """
    changed = False
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Invalid name")
        if name != workspace.name:
            workspace.name = name
            changed = True

    if prefix is not None:
        prefix = prefix.strip().upper()
        if not is_valid_prefix(prefix):
            raise ValidationError("Invalid prefix")
        if prefix != workspace.prefix:
            workspace.prefix = prefix
            changed = True

    if docs is not None and docs != workspace.docs:
        workspace.docs = docs
        changed = True
        db.add(WorkspaceDocsVersion(
            workspace_id=workspace.id,
            docs=docs,
            actor_type=actor.type,
            actor_id=actor.id,
            actor_display_name=actor.display_name,
        ))

    if not changed:
        return workspace

    workspace.updated_at = utcnow()
    db.commit()
    db.refresh(workspace)
    logger.info(f"Updated workspace {workspace.id}")
    return workspace


def list_docs_versions(db: Session, workspace_id: UUID, limit: Optional[int] = None) -> list[WorkspaceDocsVersion]:
    """Docs history, newest first."""
    return (
        db.query(WorkspaceDocsVersion)
        .filter(WorkspaceDocsVersion.workspace_id == workspace_id)
        .order_by(WorkspaceDocsVersion.created_at.desc())
        .limit(_limit(limit))
        .all()
    )


def delete_workspace(db: Session, workspace_id: UUID) -> None:
    """Delete a workspace and every row it owns."""
    for model in (
        TicketComment,
        TicketActivity,
        WorkspaceDocsVersion,
        ApiKey,
        WorkspaceMember,
    ):
        db.query(model).filter(model.workspace_id == workspace_id).delete(synchronize_session=False)

    # Break the tree and doc references before bulk deletion
    db.query(Ticket).filter(Ticket.workspace_id == workspace_id).update(
        {Ticket.parent_id: None, Ticket.doc_id: None}, synchronize_session=False
    )
    db.query(Ticket).filter(Ticket.workspace_id == workspace_id).delete(synchronize_session=False)
    db.query(FeatureDoc).filter(FeatureDoc.workspace_id == workspace_id).update(
        {FeatureDoc.parent_doc_id: None}, synchronize_session=False
    )
    db.query(FeatureDoc).filter(FeatureDoc.workspace_id == workspace_id).delete(synchronize_session=False)
    db.query(Workspace).filter(Workspace.id == workspace_id).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Deleted workspace {workspace_id} with all owned data")


def backfill_workspace(db: Session, workspace: Workspace) -> dict[str, int]:
    """
    Repair derived workspace state.

    Recomputes every ticket's child counters from live children, restores the
    prefix if it is invalid and advances the counters past every assigned number.

    Returns:
        Summary counts of repaired rows
    """
    tickets = db.query(Ticket).filter(Ticket.workspace_id == workspace.id).all()
    counts: dict[UUID, list[int]] = {}
    for ticket in tickets:
        if ticket.parent_id is None or ticket.archived:
            continue
        entry = counts.setdefault(ticket.parent_id, [0, 0])
        entry[0] += 1
        if TicketStatus(ticket.status) == TicketStatus.DONE:
            entry[1] += 1

    repaired = 0
    for ticket in tickets:
        count, done = counts.get(ticket.id, [0, 0])
        if ticket.child_count != count or ticket.child_done_count != done:
            ticket.child_count = count
            ticket.child_done_count = done
            repaired += 1

    counters_repaired = 0
    if not workspace.prefix or not is_valid_prefix(workspace.prefix):
        workspace.prefix = generate_prefix(workspace.name)
        counters_repaired += 1

    max_ticket = max((t.number for t in tickets), default=0)
    if workspace.ticket_counter < max_ticket:
        workspace.ticket_counter = max_ticket
        counters_repaired += 1

    max_doc = db.query(func.max(FeatureDoc.number)).filter(FeatureDoc.workspace_id == workspace.id).scalar() or 0
    if workspace.doc_counter < max_doc:
        workspace.doc_counter = max_doc
        counters_repaired += 1

    db.commit()
    logger.info(f"Backfilled workspace {workspace.id}: {repaired} ticket(s), {counters_repaired} workspace field(s)")
    return {"ticketsScanned": len(tickets), "ticketsRepaired": repaired, "workspaceFieldsRepaired": counters_repaired}


def reset_workspace_tickets(db: Session, workspace: Workspace) -> int:
    """
    Delete every ticket in a workspace and restart numbering at 1.

    Comments and activity belonging to the deleted tickets go with them.
    Feature docs, members and API keys are untouched.

    Returns:
        Number of tickets deleted
    """
    for model in (TicketComment, TicketActivity):
        db.query(model).filter(model.workspace_id == workspace.id).delete(synchronize_session=False)

    db.query(Ticket).filter(Ticket.workspace_id == workspace.id).update(
        {Ticket.parent_id: None}, synchronize_session=False
    )
    deleted = db.query(Ticket).filter(Ticket.workspace_id == workspace.id).delete(synchronize_session=False)

    workspace.ticket_counter = 0
    workspace.updated_at = utcnow()
    db.commit()
    db.refresh(workspace)
    logger.info(f"Reset workspace {workspace.id}: deleted {deleted} ticket(s), numbering restarts at 1")
    return deleted


# ============================================================================
# Members
# ============================================================================


def list_members(db: Session, workspace_id: UUID) -> list[WorkspaceMember]:
    return (
        db.query(WorkspaceMember)
        .filter(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.created_at.asc())
        .all()
    )


def get_member(db: Session, workspace_id: UUID, user_id: str) -> WorkspaceMember:
    member = db.query(WorkspaceMember).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == user_id,
    ).first()
    if member is None:
        raise NotFoundError("Membership not found")
    return member


def add_member(db: Session, workspace_id: UUID, user_id: str, role: MemberRole = MemberRole.MEMBER) -> WorkspaceMember:
    """
    Add a user to a workspace.

    Raises:
        ValidationError: User already a member
    """
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError("Invalid userId")
    existing = db.query(WorkspaceMember).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_id == user_id,
    ).first()
    if existing:
        raise ValidationError("User is already a member of this workspace")

    member = WorkspaceMember(workspace_id=workspace_id, user_id=user_id, role=MemberRole(role))
    db.add(member)
    db.commit()
    db.refresh(member)
    logger.info(f"Added {user_id} to workspace {workspace_id} as {MemberRole(role).value}")
    return member


def _owner_count(db: Session, workspace_id: UUID) -> int:
    return db.query(func.count(WorkspaceMember.id)).filter(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.role == MemberRole.OWNER,
    ).scalar()


def update_member_role(db: Session, workspace_id: UUID, user_id: str, role: MemberRole) -> WorkspaceMember:
    """
    Change a member's role, refusing to demote the last owner.

    Raises:
        NotFoundError: Not a member
        ValidationError: Would leave the workspace without an owner
    """
    member = get_member(db, workspace_id, user_id)
    role = MemberRole(role)
    if MemberRole(member.role) == MemberRole.OWNER and role != MemberRole.OWNER:
        if _owner_count(db, workspace_id) <= 1:
            raise ValidationError("Cannot demote the last owner of a workspace")
    member.role = role
    db.commit()
    db.refresh(member)
    logger.info(f"Set role of {user_id} in workspace {workspace_id} to {role.value}")
    return member


def remove_member(db: Session, workspace_id: UUID, user_id: str) -> None:
    """
    Remove a member, refusing to remove the last owner.

    Raises:
        NotFoundError: Not a member
        ValidationError: Would leave the workspace without an owner
    """
    member = get_member(db, workspace_id, user_id)
    if MemberRole(member.role) == MemberRole.OWNER and _owner_count(db, workspace_id) <= 1:
        raise ValidationError("Cannot remove the last owner of a workspace")
    db.delete(member)
    db.commit()
    logger.info(f"Removed {user_id} from workspace {workspace_id}")


# ============================================================================
# API keys
# ============================================================================


def list_api_keys(db: Session, workspace_id: UUID) -> list[ApiKey]:
    return (
        db.query(ApiKey)
        .filter(ApiKey.workspace_id == workspace_id)
        .order_by(ApiKey.created_at.asc())
        .all()
    )


def create_api_key(
    db: Session,
    workspace_id: UUID,
    name: Optional[str],
    key_hash: str,
    role: Optional[str] = None,
) -> ApiKey:
    """
    Store a new API key hash.

    Args:
        db: Database session
        workspace_id: Owning workspace
        name: Display name, 1-100 characters after trimming
        key_hash: SHA-256 hex digest of the generated secret
        role: "admin" or "agent" (default agent)

    Raises:
        ValidationError: Invalid name or role
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Invalid name")
    name = name.strip()
    if len(name) > API_KEY_NAME_MAX_LENGTH:
        raise ValidationError("Name too long")
    try:
        key_role = ApiKeyRole(role) if role is not None else ApiKeyRole.AGENT
    except ValueError:
        raise ValidationError("Invalid role")

    api_key = ApiKey(workspace_id=workspace_id, key_hash=key_hash, name=name, role=key_role)
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    logger.info(f"Created {key_role.value} API key '{name}' (ID: {api_key.id}) in workspace {workspace_id}")
    return api_key


def update_api_key_role(db: Session, api_key: ApiKey, role: str) -> ApiKey:
    try:
        api_key.role = ApiKeyRole(role)
    except ValueError:
        raise ValidationError("Invalid role")
    db.commit()
    db.refresh(api_key)
    logger.info(f"Set role of API key {api_key.id} to {ApiKeyRole(api_key.role).value}")
    return api_key


def delete_api_key(db: Session, api_key: ApiKey) -> None:
    key_id = api_key.id
    db.delete(api_key)
    db.commit()
    logger.info(f"Deleted API key {key_id}")


# ============================================================================
# Feature docs
# ============================================================================


def list_docs(db: Session, workspace_id: UUID, include_archived: bool = True) -> list[FeatureDoc]:
    query = db.query(FeatureDoc).filter(FeatureDoc.workspace_id == workspace_id)
    if not include_archived:
        query = query.filter(FeatureDoc.archived.is_(False))
    return query.order_by(FeatureDoc.order.asc(), FeatureDoc.created_at.asc()).all()


def _validate_parent_doc(db: Session, workspace_id: UUID, doc_id: Optional[UUID], parent_doc_id) -> UUID:
    try:
        parent_uuid = parent_doc_id if isinstance(parent_doc_id, UUID) else UUID(str(parent_doc_id))
    except ValueError:
        raise ValidationError("Invalid parent doc")
    if doc_id is not None and parent_uuid == doc_id:
        raise ValidationError("Feature doc cannot be its own parent")

    if doc_id is not None:
        hierarchy.lock_tree(db, workspace_id)
    parent = hierarchy.load_fresh(db, FeatureDoc, parent_uuid)
    if parent is None or parent.workspace_id != workspace_id:
        raise ValidationError("Invalid parent doc")

    # Walk upward so a doc is never moved beneath its own descendant
    max_depth = get_settings().max_tree_depth
    current, depth = parent, 0
    while doc_id is not None and current is not None and current.parent_doc_id is not None:
        if current.parent_doc_id == doc_id:
            raise ValidationError("Feature doc cannot be moved under its own descendant")
        depth += 1
        if depth >= max_depth:
            logger.warning(f"Maximum doc depth ({max_depth}) reached above doc {parent_uuid}")
            raise ValidationError("Feature doc hierarchy is too deep")
        current = hierarchy.load_fresh(db, FeatureDoc, current.parent_doc_id)
    return parent_uuid


def create_doc(
    db: Session,
    workspace_id: UUID,
    title: Optional[str],
    content: Optional[str] = None,
    parent_doc_id=None,
) -> FeatureDoc:
    """
    Create a feature doc numbered from the workspace doc counter.

    Raises:
        ValidationError: Blank title or invalid parent doc
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    parent_uuid = _validate_parent_doc(db, workspace_id, None, parent_doc_id) if parent_doc_id else None

    db.execute(
        update(Workspace)
        .where(Workspace.id == workspace_id)
        .values(doc_counter=Workspace.doc_counter + 1)
        .execution_options(synchronize_session=False)
    )
    number = db.query(Workspace.doc_counter).filter(Workspace.id == workspace_id).scalar()

    now = utcnow()
    doc = FeatureDoc(
        workspace_id=workspace_id,
        title=title,
        content=(content or "").strip(),
        number=number,
        status=TicketStatus.UNCLAIMED,
        order=epoch_ms(now),
        parent_doc_id=parent_uuid,
        archived=False,
        created_at=now,
        updated_at=now,
    )
    db.add(doc)
    db.commit()
    db.refresh(doc)
    logger.info(f"Created doc {doc.number} '{doc.title}' (ID: {doc.id})")
    return doc


def update_doc(db: Session, doc: FeatureDoc, changes: dict[str, Any]) -> FeatureDoc:
    """
    Partially update a doc. ``archived`` cascades to the doc's tickets.

    Raises:
        ValidationError: Nothing to update, or an invalid field
    """
    if not changes:
        raise ValidationError("At least one field is required")

    if "archived" in changes and changes["archived"] is not None:
        set_doc_archived(db, doc, bool(changes["archived"]), commit=False)

    if "title" in changes:
        title = (changes["title"] or "").strip()
        if not title:
            raise ValidationError("Title is required")
        doc.title = title
    if "content" in changes:
        doc.content = (changes["content"] or "").strip()
    if "status" in changes and changes["status"] is not None:
        try:
            doc.status = TicketStatus(changes["status"])
        except ValueError:
            raise ValidationError("Invalid status")
    if "order" in changes and changes["order"] is not None:
        doc.order = float(changes["order"])
    if "parent_doc_id" in changes:
        parent_doc_id = changes["parent_doc_id"]
        doc.parent_doc_id = (
            _validate_parent_doc(db, doc.workspace_id, doc.id, parent_doc_id) if parent_doc_id else None
        )

    doc.updated_at = utcnow()
    db.commit()
    db.refresh(doc)
    logger.info(f"Updated doc {doc.id}: {', '.join(sorted(changes))}")
    return doc


def set_doc_archived(db: Session, doc: FeatureDoc, archived: bool, commit: bool = True) -> FeatureDoc:
    """
    Archive or restore a doc together with every ticket grouped under it.

    Parent counters of affected tickets are adjusted so they keep counting
    live children only.
    """
    doc.archived = archived
    doc.updated_at = utcnow()

    tickets = db.query(Ticket).filter(
        Ticket.workspace_id == doc.workspace_id,
        Ticket.doc_id == doc.id,
        Ticket.archived.isnot(archived),
    ).all()
    for ticket in tickets:
        before = hierarchy.counted_state(ticket.archived, ticket.status)
        after = hierarchy.counted_state(archived, ticket.status)
        hierarchy.apply_state_change(db, ticket.parent_id, before, after)
        ticket.archived = archived
        ticket.updated_at = utcnow()

    if commit:
        db.commit()
        db.refresh(doc)
    logger.info(f"{'Archived' if archived else 'Restored'} doc {doc.id} and {len(tickets)} ticket(s)")
    return doc


def delete_doc(db: Session, doc: FeatureDoc) -> None:
    """Delete a doc; its tickets are ungrouped and its child docs become roots."""
    doc_id = doc.id
    db.query(Ticket).filter(Ticket.doc_id == doc_id).update({Ticket.doc_id: None}, synchronize_session=False)
    db.query(FeatureDoc).filter(FeatureDoc.parent_doc_id == doc_id).update(
        {FeatureDoc.parent_doc_id: None}, synchronize_session=False
    )
    db.delete(doc)
    db.commit()
    logger.info(f"Deleted doc {doc_id}")


def doc_preview(content: Optional[str]) -> str:
    return (content or "")[:DOC_PREVIEW_LENGTH]


# ============================================================================
# User profiles
# ============================================================================


def sync_user_profile(
    db: Session,
    user_id: str,
    email: str,
    name: Optional[str] = None,
    image: Optional[str] = None,
) -> UserProfile:
    """Upsert the cached profile for a user. Email is stored lower-cased."""
    email = email.strip().lower()
    if not email:
        raise ValidationError("Email is required")

    profile = db.query(UserProfile).filter(UserProfile.user_id == user_id).first()
    if profile is None:
        profile = UserProfile(user_id=user_id)
        db.add(profile)
    if (profile.email, profile.name, profile.image) != (email, name, image) or profile.last_synced_at is None:
        profile.email = email
        profile.name = name
        profile.image = image
        profile.last_synced_at = utcnow()
        db.commit()
    return profile


def get_user_profiles(db: Session, user_ids: list[str]) -> dict[str, UserProfile]:
    if not user_ids:
        return {}
    profiles = db.query(UserProfile).filter(UserProfile.user_id.in_(user_ids)).all()
    return {profile.user_id: profile for profile in profiles}
