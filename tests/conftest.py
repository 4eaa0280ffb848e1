"""Shared fixtures: an in-memory database, the API client and authenticated callers."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kanban_core import crud
from kanban_core.activity import Actor
from kanban_core.api.main import app
from kanban_core.database import get_db
from kanban_core.identity import generate_api_key, hash_api_key
from kanban_core.models import ApiKeyRole, Base

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OWNER_ID = "user-owner"
MEMBER_ID = "user-member"


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db):
    """Open additional sessions on the same database, e.g. to simulate concurrent callers."""
    sessions = []

    def factory():
        session = TestingSessionLocal()
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def workspace(db):
    """Workspace "Engineering" (prefix ENG) owned by OWNER_ID."""
    return crud.create_workspace(db, "Engineering", OWNER_ID)


@pytest.fixture
def other_workspace(db):
    return crud.create_workspace(db, "Marketing", "user-elsewhere")


@pytest.fixture
def actor():
    return Actor.user(OWNER_ID, "Owner")


def issue_api_key(db, workspace, name="CI agent", role=ApiKeyRole.AGENT):
    """Create an API key and return (row, plaintext secret)."""
    secret = generate_api_key()
    api_key = crud.create_api_key(db, workspace.id, name, hash_api_key(secret), role=role.value)
    return api_key, secret


@pytest.fixture
def agent_key(db, workspace):
    return issue_api_key(db, workspace, "CI agent", ApiKeyRole.AGENT)


@pytest.fixture
def admin_key(db, workspace):
    return issue_api_key(db, workspace, "Admin bot", ApiKeyRole.ADMIN)


@pytest.fixture
def agent_headers(agent_key):
    return {"X-API-Key": agent_key[1]}


@pytest.fixture
def admin_headers(admin_key):
    return {"X-API-Key": admin_key[1]}


@pytest.fixture
def other_agent_headers(db, other_workspace):
    return {"X-API-Key": issue_api_key(db, other_workspace, "Outsider")[1]}


@pytest.fixture
def owner_headers(workspace):
    return {"X-Authenticated-User": OWNER_ID, "X-Workspace-Id": str(workspace.id)}


@pytest.fixture
def member_headers(db, workspace):
    crud.add_member(db, workspace.id, MEMBER_ID)
    return {"X-Authenticated-User": MEMBER_ID, "X-Workspace-Id": str(workspace.id)}
