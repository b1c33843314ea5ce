"""
Auric PM - Status History API
=============================
"""

from typing import Optional

from fastapi import APIRouter, Query

from auric_pm.api.deps import History
from auric_pm.core.schemas import StatusHistoryResponse

router = APIRouter(prefix="/pm/history", tags=["History"])


@router.get(
    "",
    response_model=list[StatusHistoryResponse],
    summary="List status history",
)
async def list_status_history(
    history: History,
    ticket_id: Optional[str] = Query(None, alias="ticketId", description="Filter by ticket"),
) -> list[StatusHistoryResponse]:
    """Status transitions, oldest first."""
    entries = await history.list(ticket_id)
    return [StatusHistoryResponse.model_validate(e) for e in entries]
