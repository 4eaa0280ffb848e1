"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_ms(moment: datetime) -> float:
    """Milliseconds since the epoch for a naive UTC timestamp; the default sort key."""
    return moment.replace(tzinfo=timezone.utc).timestamp() * 1000


def _enum_column(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# ============================================================================
# Enums
# ============================================================================


class TicketStatus(str, enum.Enum):
    """Lifecycle status shared by tickets and feature docs."""

    UNCLAIMED = "unclaimed"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class OwnerType(str, enum.Enum):
    USER = "user"
    AGENT = "agent"


class ActorType(str, enum.Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class MemberRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class ApiKeyRole(str, enum.Enum):
    ADMIN = "admin"
    AGENT = "agent"


class ActivityType(str, enum.Enum):
    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    TICKET_STATUS_CHANGED = "ticket_status_changed"
    TICKET_ASSIGNMENT_CHANGED = "ticket_assignment_changed"
    TICKET_COMMENT_ADDED = "ticket_comment_added"
    TICKET_DELETED = "ticket_deleted"


# Portable column types (JSONB on PostgreSQL, JSON text elsewhere)
JSONType = JSON().with_variant(JSONB(), "postgresql")
ActivityIdType = BigInteger().with_variant(Integer(), "sqlite")


# ============================================================================
# Workspaces
# ============================================================================


class Workspace(Base):
    """
    Tenant boundary. Every ticket, doc, key, comment and activity belongs to one.

    Counters are only ever advanced with relative UPDATE statements so that
    concurrent creators never receive the same number.
    """

    __tablename__ = "workspaces"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    docs = Column(Text, nullable=True)
    prefix = Column(String(5), nullable=False)
    ticket_counter = Column(Integer, nullable=False, default=0)
    doc_counter = Column(Integer, nullable=False, default=0)
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("ticket_counter >= 0", name="ck_workspace_ticket_counter"),
        CheckConstraint("doc_counter >= 0", name="ck_workspace_doc_counter"),
    )

    def __repr__(self):
        return f"<Workspace(id={self.id}, name='{self.name}', prefix='{self.prefix}')>"


class WorkspaceMember(Base):
    """Membership of a session-authenticated user in a workspace."""

    __tablename__ = "workspace_members"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    role = Column(_enum_column(MemberRole, "member_role"), nullable=False, default=MemberRole.MEMBER)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
    )

    def __repr__(self):
        return f"<WorkspaceMember(workspace_id={self.workspace_id}, user_id='{self.user_id}', role={self.role})>"


class WorkspaceDocsVersion(Base):
    """Snapshot of the workspace docs blob, appended whenever it changes."""

    __tablename__ = "workspace_docs_versions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    docs = Column(Text, nullable=False, default="")
    actor_type = Column(_enum_column(ActorType, "actor_type"), nullable=False)
    actor_id = Column(String(255), nullable=False)
    actor_display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_workspace_docs_versions_workspace_created", "workspace_id", "created_at"),
    )


# ============================================================================
# API keys
# ============================================================================


class ApiKey(Base):
    """
    Workspace-scoped API key used by agents and automation.

    The plaintext secret is shown once at creation; only its SHA-256 hash is stored.
    """

    __tablename__ = "api_keys"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    key_hash = Column(String(64), nullable=False, unique=True, index=True)  # SHA-256 hex
    name = Column(String(100), nullable=False)
    role = Column(_enum_column(ApiKeyRole, "api_key_role"), nullable=False, default=ApiKeyRole.AGENT)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<ApiKey(id={self.id}, name='{self.name}', role={self.role})>"


# ============================================================================
# Feature docs
# ============================================================================


class FeatureDoc(Base):
    """Long-form planning document. Tickets may be grouped under one via doc_id."""

    __tablename__ = "feature_docs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    number = Column(Integer, nullable=False)
    status = Column(_enum_column(TicketStatus, "doc_status"), nullable=False, default=TicketStatus.UNCLAIMED)
    order = Column(Float, nullable=False)
    parent_doc_id = Column(Uuid, ForeignKey("feature_docs.id", ondelete="SET NULL"), nullable=True, index=True)
    archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("workspace_id", "number", name="uq_feature_doc_number"),
        CheckConstraint("parent_doc_id IS NULL OR parent_doc_id != id", name="ck_feature_doc_not_own_parent"),
    )

    def __repr__(self):
        return f"<FeatureDoc(id={self.id}, number={self.number}, title='{self.title}')>"


# ============================================================================
# Tickets
# ============================================================================


class Ticket(Base):
    """
    Unit of work on the board.

    child_count and child_done_count cover live (non-archived) immediate children only.
    An unclaimed ticket never carries owner fields.
    """

    __tablename__ = "tickets"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    doc_id = Column(Uuid, ForeignKey("feature_docs.id", ondelete="SET NULL"), nullable=True, index=True)
    number = Column(Integer, nullable=False)
    parent_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True, index=True)
    order = Column(Float, nullable=False)
    archived = Column(Boolean, nullable=False, default=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(_enum_column(TicketStatus, "ticket_status"), nullable=False, default=TicketStatus.UNCLAIMED)
    owner_id = Column(String(255), nullable=True)
    owner_type = Column(_enum_column(OwnerType, "owner_type"), nullable=True)
    owner_display_name = Column(String(255), nullable=True)
    child_count = Column(Integer, nullable=False, default=0)
    child_done_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    workspace = relationship("Workspace", lazy="joined")

    __table_args__ = (
        UniqueConstraint("workspace_id", "number", name="uq_ticket_number"),
        CheckConstraint("parent_id IS NULL OR parent_id != id", name="ck_ticket_not_own_parent"),
        CheckConstraint(
            "status != 'unclaimed' OR (owner_id IS NULL AND owner_type IS NULL AND owner_display_name IS NULL)",
            name="ck_ticket_unclaimed_has_no_owner",
        ),
        CheckConstraint("child_count >= 0 AND child_done_count >= 0", name="ck_ticket_child_counts"),
        Index("ix_tickets_workspace_status", "workspace_id", "status"),
    )

    @property
    def identifier(self) -> str:
        """Human-readable identifier such as ``ENG-42``."""
        return f"{self.workspace.prefix}-{self.number}"

    @property
    def has_children(self) -> bool:
        return self.child_count > 0

    def __repr__(self):
        return f"<Ticket(id={self.id}, number={self.number}, status={self.status})>"


class TicketComment(Base):
    """Immutable comment on a ticket."""

    __tablename__ = "ticket_comments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    ticket_id = Column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    body = Column(Text, nullable=False)
    author_type = Column(_enum_column(ActorType, "comment_author_type"), nullable=False)
    author_id = Column(String(255), nullable=False)
    author_display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class TicketActivity(Base):
    """
    Append-only audit entry.

    ticket_id is deliberately not a foreign key: the trail outlives deleted tickets.
    The integer id gives a total order for entries sharing a timestamp.
    """

    __tablename__ = "ticket_activities"

    id = Column(ActivityIdType, primary_key=True, autoincrement=True)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    ticket_id = Column(Uuid, nullable=False)
    type = Column(_enum_column(ActivityType, "activity_type"), nullable=False)
    actor_type = Column(_enum_column(ActorType, "activity_actor_type"), nullable=False)
    actor_id = Column(String(255), nullable=False)
    actor_display_name = Column(String(255), nullable=True)
    data = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_ticket_activities_ticket_created", "ticket_id", "created_at"),
    )

    def __repr__(self):
        return f"<TicketActivity(id={self.id}, type={self.type}, ticket_id={self.ticket_id})>"


# ============================================================================
# User profiles
# ============================================================================


class UserProfile(Base):
    """Read-side cache of identity-provider profile data. Never authoritative."""

    __tablename__ = "user_profiles"

    user_id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    name = Column(String(255), nullable=True)
    image = Column(String(1024), nullable=True)
    last_synced_at = Column(DateTime, nullable=False, default=utcnow)
