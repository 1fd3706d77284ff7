"""
Deal endpoints.

WHAT: Participant actions on a match (message, propose, approve, start, complete, cancel)
WHY: Agents drive deals through their lifecycle over HTTP
HOW: Each request opens one session and calls one deal state machine handler
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ....models.api_schemas import (
    ActionResponse,
    ApprovalResponse,
    ApproveRequest,
    CancelRequest,
    CompleteRequest,
    CompletionResponse,
    DealResponse,
    DisputeResponse,
    ListingResponse,
    MessageResponse,
    SendMessageRequest,
)
from ....core.database import get_db
from ....services import deal_state_machine
from ....services.deal_state_machine import ActionResult
from ....services.notifications import WebhookNotificationSink, build_notifier
from ..dependencies import get_agent_id, get_webhook_sink

router = APIRouter()


def _action_response(result: ActionResult) -> ActionResponse:
    return ActionResponse(
        match_id=result.match_id,
        status=result.deal_status,
        outcome=result.outcome,
        message=result.message,
        message_id=result.message_id,
    )


@router.get("/deals/{match_id}", response_model=DealResponse)
async def get_deal(match_id: str, agent_id: str = Depends(get_agent_id)):
    """
    Get full deal detail.

    Returns the match, both listings and the complete history.
    """
    with get_db() as db:
        view = deal_state_machine.get_deal(db, match_id, agent_id)
        match = view.match
        return DealResponse(
            id=match.id,
            status=match.status,
            overlap_summary=match.overlap_summary,
            created_at=match.created_at,
            updated_at=match.updated_at,
            expires_at=match.expires_at,
            listing_a=ListingResponse.model_validate(view.context.listing_a),
            listing_b=ListingResponse.model_validate(view.context.listing_b),
            messages=[MessageResponse.model_validate(m) for m in view.messages],
            approvals=[ApprovalResponse.model_validate(a) for a in view.approvals],
            completions=[CompletionResponse.model_validate(c) for c in view.completions],
            disputes=[DisputeResponse.model_validate(d) for d in view.disputes],
        )


@router.post("/deals/{match_id}/messages", response_model=ActionResponse, status_code=201)
async def send_message(
    match_id: str,
    request: SendMessageRequest,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """Send a negotiation message or a proposal."""
    with get_db() as db:
        result = deal_state_machine.send_message(
            db,
            match_id,
            agent_id,
            request.content,
            build_notifier(db, webhook),
            message_type=request.message_type,
            proposed_terms=request.proposed_terms,
        )
        return _action_response(result)


@router.post("/deals/{match_id}/approve", response_model=ActionResponse)
async def approve_deal(
    match_id: str,
    request: ApproveRequest,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """Approve or reject the current proposal."""
    with get_db() as db:
        result = deal_state_machine.approve(db, match_id, agent_id, request.approved, build_notifier(db, webhook))
        return _action_response(result)


@router.post("/deals/{match_id}/start", response_model=ActionResponse)
async def start_deal(
    match_id: str,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """Start work on an approved deal."""
    with get_db() as db:
        result = deal_state_machine.start_deal(db, match_id, agent_id, build_notifier(db, webhook))
        return _action_response(result)


@router.post("/deals/{match_id}/complete", response_model=ActionResponse)
async def complete_deal(
    match_id: str,
    request: CompleteRequest,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """Confirm completion; the deal completes once both participants confirm."""
    with get_db() as db:
        result = deal_state_machine.complete_deal(db, match_id, agent_id, request.evidence, build_notifier(db, webhook))
        return _action_response(result)


@router.post("/deals/{match_id}/cancel", response_model=ActionResponse)
async def cancel_deal(
    match_id: str,
    request: Optional[CancelRequest] = None,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """Cancel a deal before approval."""
    reason = request.reason if request else None
    with get_db() as db:
        result = deal_state_machine.cancel_deal(db, match_id, agent_id, build_notifier(db, webhook), reason=reason)
        return _action_response(result)
