"""FastAPI dependencies for authentication and workspace scoping."""
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..access import WORKSPACE_NOT_FOUND, Capability, authorize, get_workspace, parse_uuid
from ..activity import Actor, actor_for_principal
from ..config import get_settings
from ..database import get_db
from ..errors import AuthenticationError, ValidationError
from ..identity import (
    ApiKeyPrincipal,
    Principal,
    SessionPrincipal,
    authenticate_api_key,
    resolve_session_principal,
)
from ..models import Workspace, WorkspaceMember

logger = logging.getLogger("kanban-core.auth")

API_KEY_HEADER = "X-API-Key"
AGENT_SESSION_HEADER = "X-Agent-Session-Id"
WORKSPACE_HEADER = "X-Workspace-Id"
WORKSPACE_QUERY_PARAM = "workspaceId"


@dataclass
class WorkspaceContext:
    """An authorized caller bound to one workspace for the current request."""

    principal: Principal
    workspace: Workspace
    membership: Optional[WorkspaceMember] = None

    @property
    def workspace_id(self) -> UUID:
        return self.workspace.id

    @property
    def is_agent(self) -> bool:
        return self.principal.is_agent

    @property
    def actor(self) -> Actor:
        return actor_for_principal(self.principal)


def get_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    """
    Resolve the caller from request headers.

    An ``X-API-Key`` header always selects the API-key path. Otherwise the
    identity forwarded by the upstream session layer is used, when enabled.

    Raises:
        AuthenticationError: No usable credential
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if api_key is not None:
        return authenticate_api_key(db, api_key, request.headers.get(AGENT_SESSION_HEADER))

    settings = get_settings()
    if settings.session_header_enabled:
        user_id = request.headers.get(settings.session_user_header)
        if user_id:
            return resolve_session_principal(
                db,
                user_id,
                email=request.headers.get(settings.session_email_header),
                name=request.headers.get(settings.session_name_header),
                image=request.headers.get(settings.session_image_header),
            )

    raise AuthenticationError("Missing X-API-Key header")


def get_session_principal(principal: Principal = Depends(get_principal)) -> SessionPrincipal:
    """Only human callers may manage workspaces themselves."""
    if not isinstance(principal, SessionPrincipal):
        raise AuthenticationError("User session required")
    return principal


def _requested_workspace(request: Request) -> Optional[str]:
    return request.headers.get(WORKSPACE_HEADER) or request.query_params.get(WORKSPACE_QUERY_PARAM)


def require(capability: Capability) -> Callable[..., WorkspaceContext]:
    """
    Build a dependency that authorizes ``capability`` on the request's workspace.

    API keys are bound to their own workspace; session callers name it with
    the ``X-Workspace-Id`` header or the ``workspaceId`` query parameter.
    """

    def dependency(
        request: Request,
        principal: Principal = Depends(get_principal),
        db: Session = Depends(get_db),
    ) -> WorkspaceContext:
        requested = _requested_workspace(request)
        if isinstance(principal, ApiKeyPrincipal):
            workspace_id = principal.workspace_id if requested is None else parse_uuid(requested, WORKSPACE_NOT_FOUND)
        else:
            if requested is None:
                raise ValidationError("workspaceId is required")
            workspace_id = parse_uuid(requested, WORKSPACE_NOT_FOUND)

        membership = authorize(db, principal, workspace_id, capability)
        return WorkspaceContext(
            principal=principal,
            workspace=get_workspace(db, workspace_id),
            membership=membership,
        )

    return dependency
