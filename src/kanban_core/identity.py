"""Identity resolution for the two caller classes.

- Agents and automation present a workspace-scoped API key (``X-API-Key``).
  An optional ``X-Agent-Session-Id`` distinguishes concurrent agent sessions
  sharing one key.
- Humans are authenticated upstream by the identity provider; the trusted
  proxy forwards the user id (and optional profile fields) in headers.
"""
import hashlib
import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from . import crud
from .config import get_settings
from .errors import AuthenticationError, ValidationError
from .models import ApiKey, ApiKeyRole, OwnerType

logger = logging.getLogger("kanban-core.identity")

AGENT_SESSION_ID_MAX_LENGTH = 128
AGENT_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]+$")

_BASE62 = string.ascii_letters + string.digits


@dataclass(frozen=True)
class ApiKeyPrincipal:
    """Caller authenticated by an API key, plus the agent identity it acts as."""

    workspace_id: UUID
    api_key_id: UUID
    key_name: str
    key_role: ApiKeyRole
    owner_id: str
    owner_display_name: str
    owner_type: OwnerType = OwnerType.AGENT

    @property
    def is_agent(self) -> bool:
        return True

    @property
    def is_admin(self) -> bool:
        return ApiKeyRole(self.key_role) == ApiKeyRole.ADMIN


@dataclass(frozen=True)
class SessionPrincipal:
    """Human caller authenticated by the upstream identity provider."""

    user_id: str
    display_name: str
    email: Optional[str] = None

    @property
    def is_agent(self) -> bool:
        return False


Principal = Union[ApiKeyPrincipal, SessionPrincipal]


# ============================================================================
# Key material
# ============================================================================


def generate_api_key() -> str:
    """Generate a new plaintext API key: configured prefix + random base62 characters."""
    settings = get_settings()
    body = "".join(secrets.choice(_BASE62) for _ in range(settings.api_key_length))
    return f"{settings.api_key_prefix}{body}"


def hash_api_key(secret: str) -> str:
    """SHA-256 hex digest of a plaintext key; the only form ever stored."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


# ============================================================================
# Resolution
# ============================================================================


def resolve_agent_identity(session_id: Optional[str], api_key: ApiKey) -> tuple[str, str]:
    """
    Derive the agent owner id and display name for an API-key caller.

    Args:
        session_id: Raw X-Agent-Session-Id header value, if any
        api_key: The authenticated key

    Returns:
        (owner_id, owner_display_name)

    Raises:
        ValidationError: Header present but malformed
    """
    trimmed = session_id.strip() if session_id else ""
    if trimmed:
        if len(trimmed) > AGENT_SESSION_ID_MAX_LENGTH or not AGENT_SESSION_ID_PATTERN.match(trimmed):
            raise ValidationError("Invalid X-Agent-Session-Id")
        return f"session:{trimmed}", trimmed
    return f"apikey:{api_key.id}", api_key.name


def authenticate_api_key(
    db: Session,
    raw_key: Optional[str],
    agent_session_id: Optional[str] = None,
) -> ApiKeyPrincipal:
    """
    Authenticate an ``X-API-Key`` header value.

    Raises:
        AuthenticationError: Missing, malformed or unknown key
        ValidationError: Malformed agent session id
    """
    if not raw_key:
        raise AuthenticationError("Missing X-API-Key header")

    if not raw_key.startswith(get_settings().api_key_prefix):
        raise AuthenticationError("Invalid API key format")

    api_key = db.query(ApiKey).filter(ApiKey.key_hash == hash_api_key(raw_key)).first()
    if api_key is None:
        logger.warning("Rejected request with unknown API key")
        raise AuthenticationError("Invalid API key")

    owner_id, owner_display_name = resolve_agent_identity(agent_session_id, api_key)
    return ApiKeyPrincipal(
        workspace_id=api_key.workspace_id,
        api_key_id=api_key.id,
        key_name=api_key.name,
        key_role=ApiKeyRole(api_key.role),
        owner_id=owner_id,
        owner_display_name=owner_display_name,
    )


def resolve_session_principal(
    db: Session,
    user_id: Optional[str],
    email: Optional[str] = None,
    name: Optional[str] = None,
    image: Optional[str] = None,
) -> SessionPrincipal:
    """
    Build a human principal from upstream identity headers.

    The profile cache is refreshed when the identity provider supplied an email.

    Raises:
        AuthenticationError: No user id was forwarded
    """
    user_id = user_id.strip() if user_id else ""
    if not user_id:
        raise AuthenticationError("Missing X-API-Key header")

    email = email.strip().lower() if email and email.strip() else None
    name = name.strip() if name and name.strip() else None

    if email:
        crud.sync_user_profile(db, user_id=user_id, email=email, name=name, image=image)

    return SessionPrincipal(user_id=user_id, display_name=name or email or user_id, email=email)
