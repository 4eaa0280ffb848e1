"""Workspace endpoints: settings, docs blob, members, lifecycle and the caller's identity."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import crud, schemas
from ...access import WORKSPACE_NOT_FOUND, Capability, authorize, parse_uuid
from ...database import get_db
from ...identity import ApiKeyPrincipal, Principal, SessionPrincipal
from ...models import Workspace, WorkspaceMember
from ..dependencies import WorkspaceContext, get_principal, get_session_principal, require

logger = logging.getLogger("kanban-core.api.workspace")

router = APIRouter(tags=["workspace"])


def _workspace_to_response(
    workspace: Workspace, membership: Optional[WorkspaceMember] = None
) -> schemas.WorkspaceResponse:
    response = schemas.WorkspaceResponse.model_validate(workspace)
    if membership is not None:
        response.role = membership.role
    return response


def _docs_response(workspace: Workspace) -> schemas.WorkspaceDocsResponse:
    return schemas.WorkspaceDocsResponse(
        workspace_id=workspace.id,
        name=workspace.name,
        docs=workspace.docs or None,
    )


def _members_to_response(db: Session, members: list[WorkspaceMember]) -> list[schemas.MemberResponse]:
    """Attach cached profile fields; members without a synced profile get nulls."""
    profiles = crud.get_user_profiles(db, [member.user_id for member in members])
    responses = []
    for member in members:
        profile = profiles.get(member.user_id)
        responses.append(schemas.MemberResponse(
            user_id=member.user_id,
            role=member.role,
            created_at=member.created_at,
            email=profile.email if profile else None,
            name=profile.name if profile else None,
            image=profile.image if profile else None,
        ))
    return responses


# ============================================================================
# Current workspace
# ============================================================================


@router.get("/workspace", response_model=schemas.WorkspaceResponse)
def get_workspace(ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ))):
    return _workspace_to_response(ctx.workspace, ctx.membership)


@router.patch("/workspace", response_model=schemas.WorkspaceResponse)
def update_workspace(
    payload: schemas.WorkspaceUpdate,
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_ADMIN)),
    db: Session = Depends(get_db),
):
    """
    Update workspace settings.

    - **name**: display name
    - **prefix**: 2-5 uppercase letters used in ticket identifiers
    - **docs**: workspace docs blob (recorded in docs history)
    """
    workspace = crud.update_workspace(
        db, ctx.workspace, ctx.actor, name=payload.name, docs=payload.docs, prefix=payload.prefix
    )
    return _workspace_to_response(workspace, ctx.membership)


@router.get("/workspace/docs", response_model=schemas.WorkspaceDocsResponse)
def get_workspace_docs(ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ))):
    return _docs_response(ctx.workspace)


@router.patch("/workspace/docs", response_model=schemas.WorkspaceDocsResponse)
def update_workspace_docs(
    payload: schemas.WorkspaceDocsUpdate,
    ctx: WorkspaceContext = Depends(require(Capability.DOCS_WRITE)),
    db: Session = Depends(get_db),
):
    """Replace the workspace docs blob; each change is kept in the docs history."""
    workspace = crud.update_workspace(db, ctx.workspace, ctx.actor, docs=payload.docs)
    return _docs_response(workspace)


@router.get("/workspace/docs/history", response_model=schemas.DocsVersionListResponse)
def get_workspace_docs_history(
    limit: Optional[int] = Query(None, ge=1),
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    versions = crud.list_docs_versions(db, ctx.workspace_id, limit=limit)
    return schemas.DocsVersionListResponse(
        versions=[schemas.DocsVersionResponse.model_validate(version) for version in versions]
    )


@router.post("/workspace/backfill", response_model=schemas.BackfillResponse)
def backfill_workspace(
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_ADMIN)),
    db: Session = Depends(get_db),
):
    """Recompute ticket child counters and repair workspace prefix and counters."""
    return schemas.BackfillResponse.model_validate(crud.backfill_workspace(db, ctx.workspace))


@router.post("/workspace/reset-tickets", response_model=schemas.TicketDeleteResponse)
def reset_workspace_tickets(
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_ADMIN)),
    db: Session = Depends(get_db),
):
    """Delete every ticket in the workspace and restart numbering at 1."""
    deleted = crud.reset_workspace_tickets(db, ctx.workspace)
    return schemas.TicketDeleteResponse(deleted=deleted)


# ============================================================================
# Members
# ============================================================================


@router.get("/workspace/members", response_model=schemas.MemberListResponse)
def list_members(
    ctx: WorkspaceContext = Depends(require(Capability.WORKSPACE_READ)),
    db: Session = Depends(get_db),
):
    members = crud.list_members(db, ctx.workspace_id)
    return schemas.MemberListResponse(members=_members_to_response(db, members))


@router.post("/workspace/members", response_model=schemas.MemberResponse, status_code=201)
def add_member(
    payload: schemas.MemberCreate,
    ctx: WorkspaceContext = Depends(require(Capability.MEMBERS_MANAGE)),
    db: Session = Depends(get_db),
):
    member = crud.add_member(db, ctx.workspace_id, payload.user_id, payload.role)
    return _members_to_response(db, [member])[0]


@router.patch("/workspace/members/{user_id}", response_model=schemas.MemberResponse)
def update_member(
    user_id: str,
    payload: schemas.MemberUpdate,
    ctx: WorkspaceContext = Depends(require(Capability.MEMBERS_MANAGE)),
    db: Session = Depends(get_db),
):
    """Change a member's role. The last owner cannot be demoted."""
    member = crud.update_member_role(db, ctx.workspace_id, user_id, payload.role)
    return _members_to_response(db, [member])[0]


@router.delete("/workspace/members/{user_id}", response_model=schemas.SuccessResponse)
def remove_member(
    user_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.MEMBERS_MANAGE)),
    db: Session = Depends(get_db),
):
    crud.remove_member(db, ctx.workspace_id, user_id)
    return schemas.SuccessResponse()


# ============================================================================
# Workspace lifecycle (human sessions)
# ============================================================================


@router.get("/workspaces", response_model=schemas.WorkspaceListResponse)
def list_workspaces(
    principal: SessionPrincipal = Depends(get_session_principal),
    db: Session = Depends(get_db),
):
    rows = crud.list_workspaces_for_user(db, principal.user_id)
    return schemas.WorkspaceListResponse(
        workspaces=[_workspace_to_response(workspace, member) for workspace, member in rows]
    )


@router.post("/workspaces", response_model=schemas.WorkspaceResponse, status_code=201)
def create_workspace(
    payload: schemas.WorkspaceCreate,
    principal: SessionPrincipal = Depends(get_session_principal),
    db: Session = Depends(get_db),
):
    """Create a workspace; the caller becomes its owner."""
    workspace = crud.create_workspace(db, payload.name, principal.user_id, docs=payload.docs)
    membership = crud.get_member(db, workspace.id, principal.user_id)
    return _workspace_to_response(workspace, membership)


@router.delete("/workspaces/{workspace_id}", response_model=schemas.SuccessResponse)
def delete_workspace(
    workspace_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Delete a workspace and everything in it. Owners only."""
    workspace_uuid = parse_uuid(workspace_id, WORKSPACE_NOT_FOUND)
    authorize(db, principal, workspace_uuid, Capability.WORKSPACE_DELETE)
    crud.delete_workspace(db, workspace_uuid)
    return schemas.SuccessResponse()


# ============================================================================
# Caller identity
# ============================================================================


@router.get("/me", response_model=schemas.PrincipalResponse)
def get_me(principal: Principal = Depends(get_principal)):
    """The caller as resolved from the request credentials."""
    if isinstance(principal, ApiKeyPrincipal):
        return schemas.PrincipalResponse(
            type="apiKey",
            workspace_id=principal.workspace_id,
            api_key_id=principal.api_key_id,
            key_name=principal.key_name,
            key_role=principal.key_role,
            owner_id=principal.owner_id,
            owner_type=principal.owner_type,
            owner_display_name=principal.owner_display_name,
        )
    return schemas.PrincipalResponse(
        type="session",
        user_id=principal.user_id,
        display_name=principal.display_name,
        email=principal.email,
    )
