"""
Auric PM - Database Models
==========================

SQLAlchemy models for the project-management store.
Table and column names match the ``pm_*`` schema shared with the desktop
shell, so both sides can read the same project database.
"""

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from auric_pm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that survives SQLite's naive storage."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# ==========================================================================
# Enums
# ==========================================================================

class TicketStatus(str, enum.Enum):
    """Ticket lifecycle states. Any transition between them is accepted."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ARCHIVED = "archived"


class TicketPriority(str, enum.Enum):
    """Built-in priorities. Tickets may carry other strings; those rank last."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class ItemType(str, enum.Enum):
    """Dependency endpoint type."""
    TICKET = "ticket"
    EPIC = "epic"


class ContextKind(str, enum.Enum):
    """Kind of a ticket context item."""
    SNIPPET = "snippet"
    FILE = "file"


# Statuses that no longer block a dependent ticket
RESOLVED_STATUSES = (TicketStatus.DONE, TicketStatus.ARCHIVED)

# Scheduler ranking; anything not listed ranks after LOW
PRIORITY_RANK = {
    TicketPriority.CRITICAL.value: 0,
    TicketPriority.HIGH.value: 1,
    TicketPriority.NORMAL.value: 2,
    TicketPriority.LOW.value: 3,
}
UNRANKED_PRIORITY = 4


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# ==========================================================================
# Models
# ==========================================================================

class Epic(Base, TimestampMixin):
    """Named grouping container for tickets."""

    __tablename__ = "pm_epics"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        default="",
        nullable=False,
    )
    sort_order: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Epic {self.name[:50]}>"


class Ticket(Base, TimestampMixin):
    """
    Atomic unit of work.

    ``sort_order`` is assigned per epic at creation and breaks ties inside a
    priority band. ``status_updated_at`` moves only when ``status`` does.
    """

    __tablename__ = "pm_tickets"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    epic_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("pm_epics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        default="",
        nullable=False,
    )
    status: Mapped[TicketStatus] = mapped_column(
        Enum(
            TicketStatus,
            values_callable=_enum_values,
            native_enum=False,
            length=32,
            name="ticketstatus",
        ),
        default=TicketStatus.OPEN,
        nullable=False,
        index=True,
    )
    sort_order: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    context: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    status_updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )
    working_directory: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    priority: Mapped[str] = mapped_column(
        String(32),
        default=TicketPriority.NORMAL.value,
        nullable=False,
    )
    model_power: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
    )
    needs_human_supervision: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Ticket {self.name[:50]} [{self.status.value}]>"


class Dependency(Base):
    """
    Directed edge: ``source_id`` depends on ``target_id``.

    Endpoints are typed and carry no foreign keys; edges outlive deleted
    tickets and simply stop resolving.
    """

    __tablename__ = "pm_dependencies"
    __table_args__ = (
        UniqueConstraint("source_id", "target_id", name="uq_pm_dependencies_pair"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    source_type: Mapped[str] = mapped_column(
        String(16),
        default=ItemType.TICKET.value,
        nullable=False,
    )
    source_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    target_type: Mapped[str] = mapped_column(
        String(16),
        default=ItemType.TICKET.value,
        nullable=False,
    )
    target_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Dependency {self.source_id} -> {self.target_id}>"


class StatusHistoryEntry(Base):
    """Append-only record of one ticket status transition."""

    __tablename__ = "pm_status_history"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("pm_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
    )
    to_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    changed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )
    source: Mapped[str] = mapped_column(
        String(32),
        default="ui",
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StatusHistory {self.from_status} -> {self.to_status}>"


class TestCase(Base, TimestampMixin):
    """Test case attached to a ticket."""

    __tablename__ = "pm_test_cases"
    __test__ = False  # not a pytest class

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("pm_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    body: Mapped[str] = mapped_column(
        Text,
        default="",
        nullable=False,
    )
    sort_order: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<TestCase {self.title[:50]}>"
