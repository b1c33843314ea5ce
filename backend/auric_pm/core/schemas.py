"""
Auric PM - Pydantic Schemas
===========================

Request and response schemas for the REST API and the MCP tool server.
Both surfaces speak camelCase JSON (``epicId``, ``sortOrder``, ...); Python
code uses the snake_case field names.
"""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from auric_pm.core.models import ItemType, TicketStatus


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Ticket Context
# ==========================================================================

class _ContextItemBase(BaseSchema):
    id: str
    value: str


class SnippetContextItem(_ContextItemBase):
    """Verbatim text or code attached to a ticket."""

    # "type" is what older project databases stored
    kind: Literal["snippet"] = Field(validation_alias=AliasChoices("kind", "type"))


class FileContextItem(_ContextItemBase):
    """Project-relative file reference attached to a ticket."""

    kind: Literal["file"] = Field(validation_alias=AliasChoices("kind", "type"))


ContextItem = Union[SnippetContextItem, FileContextItem]

context_items_adapter = TypeAdapter(list[ContextItem])


class ContextSnippetCreate(BaseSchema):
    """Schema for attaching a snippet."""

    value: str = Field(min_length=1)


class ContextFileCreate(BaseSchema):
    """Schema for attaching a file reference."""

    file_path: str = Field(min_length=1)


# ==========================================================================
# Epic Schemas
# ==========================================================================

class EpicCreate(BaseSchema):
    """Schema for creating an epic."""

    name: str = Field(min_length=1)
    description: Optional[str] = None


class EpicResponse(TimestampSchema):
    """Schema for epic in responses."""

    id: str
    name: str
    description: str
    sort_order: int


class EpicWithCountResponse(EpicResponse):
    """Epic annotated with its live ticket count."""

    ticket_count: int


# ==========================================================================
# Ticket Schemas
# ==========================================================================

class TicketCreate(BaseSchema):
    """Schema for creating a ticket."""

    epic_id: str
    name: str = Field(min_length=1)
    description: Optional[str] = None
    priority: Optional[str] = Field(None, min_length=1, max_length=32)


class TicketUpdate(BaseSchema):
    """Schema for updating a ticket (sparse)."""

    status: Optional[TicketStatus] = None
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    priority: Optional[str] = Field(None, min_length=1, max_length=32)
    needs_human_supervision: Optional[bool] = None
    working_directory: Optional[str] = None
    model_power: Optional[str] = Field(None, max_length=32)


class TicketResponse(TimestampSchema):
    """Schema for ticket in responses."""

    id: str
    epic_id: str
    name: str
    description: str
    status: TicketStatus
    sort_order: int
    context: list[ContextItem] = []
    status_updated_at: datetime
    working_directory: Optional[str] = None
    priority: str
    model_power: Optional[str] = None
    needs_human_supervision: bool


class EpicWithTicketsResponse(EpicResponse):
    """Epic with its tickets nested in sort order."""

    tickets: list[TicketResponse]


class CompleteTaskRequest(BaseSchema):
    """Schema for completing a ticket."""

    summary: Optional[str] = None


# ==========================================================================
# Dependency Schemas
# ==========================================================================

class DependencyCreate(BaseSchema):
    """Schema for creating a dependency (source depends on target)."""

    source_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    source_type: ItemType = ItemType.TICKET
    target_type: ItemType = ItemType.TICKET


class DependencyResponse(BaseSchema):
    """Schema for a raw dependency edge."""

    id: str
    source_type: str
    source_id: str
    target_type: str
    target_id: str


class DependencyInfo(DependencyResponse):
    """Dependency edge enriched with endpoint names and statuses."""

    source_name: str
    source_status: str
    target_name: str
    target_status: str


class DependencyCyclesResponse(BaseSchema):
    """Cycles found among ticket dependencies."""

    cycles: list[list[str]]


# ==========================================================================
# Status History Schemas
# ==========================================================================

class StatusHistoryResponse(BaseSchema):
    """Schema for a status history entry."""

    id: str
    ticket_id: str
    from_status: Optional[str]
    to_status: str
    changed_at: datetime
    source: str


# ==========================================================================
# Test Case Schemas
# ==========================================================================

class TestCaseCreate(BaseSchema):
    """Schema for creating a test case on a ticket."""

    __test__ = False

    title: str = Field(min_length=1)
    body: Optional[str] = None


class TestCaseResponse(TimestampSchema):
    """Schema for test case in responses."""

    __test__ = False

    id: str
    ticket_id: str
    title: str
    body: str
    sort_order: int


# ==========================================================================
# Snapshot Schemas
# ==========================================================================

class PMStateSnapshot(BaseSchema):
    """Full store contents, used for export and import."""

    epics: list[EpicResponse] = []
    tickets: list[TicketResponse] = []
    test_cases: list[TestCaseResponse] = []
    dependencies: list[DependencyResponse] = []


# ==========================================================================
# Common Response Schemas
# ==========================================================================

class MessageResponse(BaseSchema):
    """Generic message response."""

    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
