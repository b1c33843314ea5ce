"""
Auric PM - Domain Errors
========================

Raised by the core services; the API and MCP layers translate them for
their callers. None of these are retried internally.
"""

from typing import Optional


class PMError(Exception):
    """Base class for project-management errors."""

    code = "PM_ERROR"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(PMError):
    """An operation referenced an epic, ticket or dependency that does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} not found: {item_id}")
        self.kind = kind
        self.item_id = item_id


class ForeignKeyViolationError(PMError):
    """A row was created against a parent that does not exist."""

    code = "FOREIGN_KEY_VIOLATION"

    def __init__(self, kind: str, parent_kind: str, parent_id: str):
        super().__init__(f"Cannot create {kind}: {parent_kind} {parent_id} does not exist")
        self.parent_kind = parent_kind
        self.parent_id = parent_id


class ClaimConflictError(PMError):
    """Another caller claimed the selected ticket first. Safe to retry."""

    code = "CLAIM_CONFLICT"

    def __init__(self, ticket_id: str):
        super().__init__(f"Ticket {ticket_id} was claimed by another caller")
        self.ticket_id = ticket_id


class DependencyCycleError(PMError):
    """An imported dependency set contains a cycle."""

    code = "DEPENDENCY_CYCLE"

    def __init__(self, cycle: list[str]):
        super().__init__("Cycle detected in dependencies", detail=" -> ".join(cycle))
        self.cycle = cycle
