"""Tests for API key authentication and agent identity resolution."""
import pytest

from kanban_core.errors import AuthenticationError, ValidationError
from kanban_core.identity import (
    authenticate_api_key,
    generate_api_key,
    hash_api_key,
    resolve_agent_identity,
    resolve_session_principal,
)
from kanban_core.models import ApiKeyRole, OwnerType, UserProfile


class TestKeyMaterial:
    def test_generated_key_format(self):
        key = generate_api_key()
        assert key.startswith("sk_")
        assert len(key) == 3 + 32
        assert key[3:].isalnum()

    def test_generated_keys_differ(self):
        assert generate_api_key() != generate_api_key()

    def test_hash_is_sha256_hex(self):
        digest = hash_api_key("sk_test")
        assert len(digest) == 64
        assert digest == hash_api_key("sk_test")
        assert digest != hash_api_key("sk_other")


class TestAgentIdentity:
    """Owner identity derived from the key and the optional session header."""

    def test_without_session_uses_key(self, agent_key):
        api_key, _ = agent_key
        owner_id, display_name = resolve_agent_identity(None, api_key)
        assert owner_id == f"apikey:{api_key.id}"
        assert display_name == "CI agent"

    def test_blank_session_uses_key(self, agent_key):
        api_key, _ = agent_key
        owner_id, _ = resolve_agent_identity("   ", api_key)
        assert owner_id == f"apikey:{api_key.id}"

    def test_session_id_is_trimmed(self, agent_key):
        api_key, _ = agent_key
        owner_id, display_name = resolve_agent_identity("  run-42.a:b  ", api_key)
        assert owner_id == "session:run-42.a:b"
        assert display_name == "run-42.a:b"

    def test_session_id_with_invalid_characters(self, agent_key):
        api_key, _ = agent_key
        with pytest.raises(ValidationError) as exc_info:
            resolve_agent_identity("bad id!", api_key)
        assert exc_info.value.message == "Invalid X-Agent-Session-Id"

    def test_session_id_too_long(self, agent_key):
        api_key, _ = agent_key
        with pytest.raises(ValidationError):
            resolve_agent_identity("a" * 129, api_key)


class TestAuthenticateApiKey:
    def test_valid_key(self, db, workspace, admin_key):
        api_key, secret = admin_key
        principal = authenticate_api_key(db, secret, "worker-1")

        assert principal.workspace_id == workspace.id
        assert principal.api_key_id == api_key.id
        assert principal.key_role == ApiKeyRole.ADMIN
        assert principal.is_admin
        assert principal.is_agent
        assert principal.owner_type == OwnerType.AGENT
        assert principal.owner_id == "session:worker-1"

    def test_missing_key(self, db):
        with pytest.raises(AuthenticationError) as exc_info:
            authenticate_api_key(db, None)
        assert exc_info.value.message == "Missing X-API-Key header"

    def test_wrong_prefix(self, db):
        with pytest.raises(AuthenticationError) as exc_info:
            authenticate_api_key(db, "pk_abcdef")
        assert exc_info.value.message == "Invalid API key format"

    def test_unknown_key(self, db, workspace):
        with pytest.raises(AuthenticationError) as exc_info:
            authenticate_api_key(db, "sk_doesnotexist")
        assert exc_info.value.message == "Invalid API key"


class TestSessionPrincipal:
    def test_display_name_falls_back(self, db):
        principal = resolve_session_principal(db, "user-1")
        assert principal.user_id == "user-1"
        assert principal.display_name == "user-1"
        assert not principal.is_agent

    def test_profile_is_synced_with_lowercased_email(self, db):
        principal = resolve_session_principal(db, "user-1", email=" Ada@Example.COM ", name="Ada")

        assert principal.display_name == "Ada"
        assert principal.email == "ada@example.com"
        profile = db.query(UserProfile).filter(UserProfile.user_id == "user-1").one()
        assert profile.email == "ada@example.com"
        assert profile.name == "Ada"

    def test_missing_user(self, db):
        with pytest.raises(AuthenticationError):
            resolve_session_principal(db, "  ")
