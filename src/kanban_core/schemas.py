"""Pydantic schemas for API request/response validation.

All payloads use camelCase keys on the wire. Timestamps are stored as naive
UTC and rendered with an explicit UTC offset.
"""
import math
from datetime import datetime, timezone
from typing import Annotated, Any, Optional, Union
from uuid import UUID

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .models import ActivityType, ActorType, ApiKeyRole, MemberRole, OwnerType, TicketStatus


def _finite(value):
    if value is not None and not math.isfinite(value):
        raise ValueError("order must be a finite number")
    return value


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Board position; NaN and Infinity are rejected before they reach a column.
Order = Annotated[Union[StrictInt, StrictFloat], AfterValidator(_finite)]

UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, readable from ORM objects."""

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# Tickets
# ============================================================================


class TicketCreate(CamelModel):
    """Schema for creating a ticket. Title presence is checked by the store."""

    title: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    parent_id: Optional[StrictStr] = None
    doc_id: Optional[StrictStr] = None
    order: Optional[Order] = None


class TicketUpdate(CamelModel):
    """Partial update; only fields present in the request body are applied."""

    title: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    parent_id: Optional[StrictStr] = None
    doc_id: Optional[StrictStr] = None
    archived: Optional[StrictBool] = None
    order: Optional[Order] = None


class TicketStatusUpdate(CamelModel):
    status: TicketStatus
    order: Optional[Order] = None
    reason: Optional[StrictStr] = None

    @field_validator("reason")
    @classmethod
    def reason_must_not_be_blank(cls, v):
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError("reason must not be blank")
        return v


class TicketAssign(CamelModel):
    """Owner fields are validated against the caller in the router."""

    owner_id: Any = None
    owner_type: Any = None
    owner_display_name: Any = None


class TicketSummaryResponse(CamelModel):
    """Ticket without its description, for list views."""

    id: UUID
    identifier: str
    title: str
    number: int
    status: TicketStatus
    owner_id: Optional[str] = None
    owner_type: Optional[OwnerType] = None
    owner_display_name: Optional[str] = None
    parent_id: Optional[UUID] = None
    doc_id: Optional[UUID] = None
    order: float
    archived: bool
    child_count: int
    child_done_count: int
    has_children: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime


class TicketResponse(TicketSummaryResponse):
    description: str


class TicketEnvelope(CamelModel):
    ticket: TicketResponse


class TicketActionResponse(CamelModel):
    success: bool = True
    ticket: TicketResponse


class TicketListResponse(CamelModel):
    tickets: list[Union[TicketResponse, TicketSummaryResponse]]


class TicketHierarchyResponse(CamelModel):
    ticket: TicketResponse
    ancestors: list[TicketSummaryResponse]
    children: list[TicketSummaryResponse]


class TicketDeleteResponse(CamelModel):
    success: bool = True
    deleted: int


# ============================================================================
# Comments & activity
# ============================================================================


class CommentCreate(CamelModel):
    body: Any = None


class CommentResponse(CamelModel):
    id: UUID
    ticket_id: UUID
    body: str
    author_type: ActorType
    author_id: str
    author_display_name: Optional[str] = None
    created_at: UtcDatetime


class CommentEnvelope(CamelModel):
    comment: CommentResponse


class CommentListResponse(CamelModel):
    comments: list[CommentResponse]


class ActivityResponse(CamelModel):
    id: int
    ticket_id: UUID
    type: ActivityType
    actor_type: ActorType
    actor_id: str
    actor_display_name: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    created_at: UtcDatetime


class ActivityListResponse(CamelModel):
    events: list[ActivityResponse]


# ============================================================================
# API keys
# ============================================================================


class ApiKeyCreate(CamelModel):
    name: Any = None
    role: Any = None


class ApiKeyUpdate(CamelModel):
    role: ApiKeyRole


class ApiKeyResponse(CamelModel):
    id: UUID
    name: str
    role: ApiKeyRole
    created_at: UtcDatetime


class ApiKeyListResponse(CamelModel):
    api_keys: list[ApiKeyResponse]


class ApiKeyCreatedResponse(CamelModel):
    """Returned once at creation; the secret is never retrievable again."""

    api_key: ApiKeyResponse
    secret: str


class ApiKeyEnvelope(CamelModel):
    api_key: ApiKeyResponse


# ============================================================================
# Feature docs
# ============================================================================


class DocCreate(CamelModel):
    title: Any = None
    content: Any = None
    parent_doc_id: Optional[StrictStr] = None


class DocUpdate(CamelModel):
    title: Optional[StrictStr] = None
    content: Optional[StrictStr] = None
    parent_doc_id: Optional[StrictStr] = None
    status: Optional[TicketStatus] = None
    order: Optional[Order] = None
    archived: Optional[StrictBool] = None


class DocResponse(CamelModel):
    id: UUID
    title: str
    content: str
    number: int
    status: TicketStatus
    order: float
    parent_doc_id: Optional[UUID] = None
    archived: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime


class DocSummaryResponse(CamelModel):
    id: UUID
    title: str
    preview: str
    number: int
    status: TicketStatus
    parent_doc_id: Optional[UUID] = None
    archived: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime


class DocListResponse(CamelModel):
    docs: list[DocSummaryResponse]


class DocCreatedResponse(CamelModel):
    success: bool = True
    id: UUID
    doc: DocResponse


class SuccessResponse(CamelModel):
    success: bool = True


# ============================================================================
# Workspaces
# ============================================================================


class WorkspaceCreate(CamelModel):
    name: Optional[StrictStr] = None
    docs: Optional[StrictStr] = None


class WorkspaceUpdate(CamelModel):
    name: Optional[StrictStr] = None
    docs: Optional[StrictStr] = None
    prefix: Optional[StrictStr] = None


class WorkspaceResponse(CamelModel):
    id: UUID
    name: str
    prefix: str
    ticket_counter: int
    doc_counter: int
    created_by: str
    created_at: UtcDatetime
    updated_at: UtcDatetime
    role: Optional[MemberRole] = None


class WorkspaceListResponse(CamelModel):
    workspaces: list[WorkspaceResponse]


class WorkspaceDocsUpdate(CamelModel):
    docs: StrictStr


class WorkspaceDocsResponse(CamelModel):
    workspace_id: UUID
    name: str
    docs: Optional[str] = None


class DocsVersionResponse(CamelModel):
    id: UUID
    workspace_id: UUID
    docs: str
    actor_type: ActorType
    actor_id: str
    actor_display_name: Optional[str] = None
    created_at: UtcDatetime


class DocsVersionListResponse(CamelModel):
    versions: list[DocsVersionResponse]


class BackfillResponse(CamelModel):
    tickets_scanned: int
    tickets_repaired: int
    workspace_fields_repaired: int


# ============================================================================
# Members & principal
# ============================================================================


class MemberCreate(CamelModel):
    user_id: StrictStr
    role: MemberRole = MemberRole.MEMBER


class MemberUpdate(CamelModel):
    role: MemberRole


class MemberResponse(CamelModel):
    user_id: str
    role: MemberRole
    created_at: UtcDatetime
    email: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None


class MemberListResponse(CamelModel):
    members: list[MemberResponse]


class PrincipalResponse(CamelModel):
    """The caller as resolved from request credentials."""

    type: str = Field(description="'apiKey' or 'session'")
    workspace_id: Optional[UUID] = None
    api_key_id: Optional[UUID] = None
    key_name: Optional[str] = None
    key_role: Optional[ApiKeyRole] = None
    owner_id: Optional[str] = None
    owner_type: Optional[OwnerType] = None
    owner_display_name: Optional[str] = None
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
