"""
Dispute endpoints.

WHAT: File, list and resolve disputes on a deal
WHY: In-progress deals need a way to escalate and settle disagreements
HOW: FastAPI router over the deal state machine and dispute resolver
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ....models.api_schemas import (
    DisputeActionResponse,
    DisputeListResponse,
    DisputeRequest,
    DisputeResolutionResponse,
    DisputeResponse,
    ResolveDisputeRequest,
)
from ....core.database import get_db
from ....services import deal_state_machine, dispute_resolver
from ....services.notifications import WebhookNotificationSink, build_notifier
from ..dependencies import get_agent_id, get_webhook_sink

router = APIRouter()


@router.post("/deals/{match_id}/dispute", response_model=DisputeActionResponse, status_code=201)
async def file_dispute(
    match_id: str,
    request: DisputeRequest,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """File a dispute against an in-progress deal."""
    with get_db() as db:
        result = deal_state_machine.open_dispute(db, match_id, agent_id, request.reason, build_notifier(db, webhook))
        return DisputeActionResponse(
            match_id=result.match_id,
            status=result.deal_status,
            outcome=result.outcome,
            message=result.message,
            dispute=DisputeResponse.model_validate(result.dispute),
        )


@router.get("/deals/{match_id}/disputes", response_model=DisputeListResponse)
async def list_disputes(match_id: str, agent_id: str = Depends(get_agent_id)):
    """All disputes on a deal, oldest first."""
    with get_db() as db:
        disputes = dispute_resolver.list_disputes(db, match_id, agent_id)
        return DisputeListResponse(
            match_id=match_id,
            disputes=[DisputeResponse.model_validate(d) for d in disputes],
        )


@router.post("/deals/{match_id}/dispute/resolve", response_model=DisputeResolutionResponse)
async def resolve_dispute(
    match_id: str,
    request: ResolveDisputeRequest,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """
    Resolve the open dispute.

    WHAT: Close the dispute and move the deal on
    WHY: A disputed deal stays frozen until someone settles it
    HOW: resolved_complete/resolved_split complete the deal, resolved_refund
         cancels it, dismissed returns it to in_progress
    """
    with get_db() as db:
        resolution = dispute_resolver.resolve_dispute(
            db, match_id, agent_id, request.resolution, build_notifier(db, webhook), note=request.note,
        )
        return DisputeResolutionResponse(
            dispute=DisputeResponse.model_validate(resolution.dispute),
            deal_status=resolution.deal_status,
        )
