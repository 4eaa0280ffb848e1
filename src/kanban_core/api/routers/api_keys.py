"""API key management endpoints (admin keys and workspace owners/admins only)."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import crud, schemas
from ...access import (
    API_KEY_NOT_FOUND,
    Capability,
    ensure_not_self_delete,
    ensure_not_self_demote,
    get_api_key_in_workspace,
    parse_uuid,
)
from ...database import get_db
from ...identity import generate_api_key, hash_api_key
from ..dependencies import WorkspaceContext, require

logger = logging.getLogger("kanban-core.api.api_keys")

router = APIRouter(tags=["api-keys"])


@router.get("/api-keys", response_model=schemas.ApiKeyListResponse)
def list_api_keys(
    ctx: WorkspaceContext = Depends(require(Capability.KEYS_MANAGE)),
    db: Session = Depends(get_db),
):
    keys = crud.list_api_keys(db, ctx.workspace_id)
    return schemas.ApiKeyListResponse(api_keys=[schemas.ApiKeyResponse.model_validate(key) for key in keys])


@router.post("/api-keys", response_model=schemas.ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    payload: schemas.ApiKeyCreate,
    ctx: WorkspaceContext = Depends(require(Capability.KEYS_MANAGE)),
    db: Session = Depends(get_db),
):
    """
    Create an API key.

    The plaintext secret is in this response only; the server keeps its hash.

    - **name**: 1-100 characters
    - **role**: ``agent`` (default) or ``admin``
    """
    secret = generate_api_key()
    api_key = crud.create_api_key(db, ctx.workspace_id, payload.name, hash_api_key(secret), role=payload.role)
    return schemas.ApiKeyCreatedResponse(api_key=schemas.ApiKeyResponse.model_validate(api_key), secret=secret)


@router.patch("/api-keys/{key_id}", response_model=schemas.ApiKeyEnvelope)
def update_api_key(
    key_id: str,
    payload: schemas.ApiKeyUpdate,
    ctx: WorkspaceContext = Depends(require(Capability.KEYS_MANAGE)),
    db: Session = Depends(get_db),
):
    """Change a key's role. The key used for the request cannot demote itself."""
    key_uuid = parse_uuid(key_id, API_KEY_NOT_FOUND)
    ensure_not_self_demote(ctx.principal, key_uuid, payload.role)
    api_key = get_api_key_in_workspace(db, ctx.workspace_id, key_uuid)
    api_key = crud.update_api_key_role(db, api_key, payload.role)
    return schemas.ApiKeyEnvelope(api_key=schemas.ApiKeyResponse.model_validate(api_key))


@router.delete("/api-keys/{key_id}", response_model=schemas.SuccessResponse)
def delete_api_key(
    key_id: str,
    ctx: WorkspaceContext = Depends(require(Capability.KEYS_MANAGE)),
    db: Session = Depends(get_db),
):
    key_uuid = parse_uuid(key_id, API_KEY_NOT_FOUND)
    ensure_not_self_delete(ctx.principal, key_uuid)
    crud.delete_api_key(db, get_api_key_in_workspace(db, ctx.workspace_id, key_uuid))
    return schemas.SuccessResponse()
