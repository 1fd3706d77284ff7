"""
Dispute resolution.

WHAT: Close the open dispute on a disputed deal and move the deal on
WHY: The disputed branch needs a way back to a terminal or working state
HOW: Map the resolution to a state machine action, stamp the dispute, transition
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session as DBSession

from ..core.config import settings
from ..core.models import Dispute, DealStatus, DisputeStatus
from .deal_state_machine import (
    DealAction, add_message, apply_transition, load_deal_for, next_status,
)
from .notifications import NotificationSink
from ..utils.exceptions import ValidationException, DisputeNotFoundException
from ..utils.logger import deal_logger, get_logger

logger = get_logger(__name__)

RESOLUTION_OUTCOMES: Dict[DisputeStatus, DealAction] = {
    DisputeStatus.RESOLVED_COMPLETE: DealAction.RESOLVE_COMPLETE,
    DisputeStatus.RESOLVED_REFUND: DealAction.RESOLVE_REFUND,
    DisputeStatus.RESOLVED_SPLIT: DealAction.RESOLVE_SPLIT,
    DisputeStatus.DISMISSED: DealAction.DISMISS_DISPUTE,
}


@dataclass
class DisputeResolution:
    dispute: Dispute
    deal_status: DealStatus


def _parse_resolution(resolution) -> DisputeStatus:
    try:
        parsed = DisputeStatus(resolution)
    except ValueError:
        parsed = None
    if parsed not in RESOLUTION_OUTCOMES:
        allowed = ", ".join(s.value for s in RESOLUTION_OUTCOMES)
        raise ValidationException(f"resolution must be one of: {allowed}")
    return parsed


def resolve_dispute(
    db: DBSession,
    match_id: str,
    agent_id: str,
    resolution: str,
    notifier: NotificationSink,
    note: Optional[str] = None,
) -> DisputeResolution:
    """
    Resolve the open dispute on a deal.

    Args:
        db: Database session
        match_id: Disputed deal
        agent_id: Resolving participant
        resolution: resolved_complete, resolved_refund, resolved_split or dismissed
        notifier: Sink receiving the dispute_resolved notification
        note: Optional resolution note, trimmed and capped

    Returns:
        DisputeResolution with the updated dispute and the deal's new status

    Raises:
        ValidationException: Unknown resolution
        InvalidDealStatusException: Deal is not disputed
        DisputeNotFoundException: No open dispute on the deal
    """
    outcome = _parse_resolution(resolution)
    if note is not None and not isinstance(note, str):
        raise ValidationException("note must be a string")
    note = (note or "").strip()[:settings.MAX_TEXT_LENGTH] or None

    ctx = load_deal_for(db, match_id, agent_id)
    action = RESOLUTION_OUTCOMES[outcome]
    next_status(match_id, DealStatus(ctx.match.status), action)

    dispute = db.query(Dispute).filter(
        Dispute.match_id == match_id, Dispute.status == DisputeStatus.OPEN
    ).first()
    if not dispute:
        raise DisputeNotFoundException(match_id)

    dispute.status = outcome
    dispute.resolved_by = agent_id
    dispute.resolved_at = datetime.utcnow()
    dispute.resolution_note = note
    db.flush()

    status = apply_transition(db, ctx, action, agent_id)

    content = f"Dispute resolved by {agent_id}: {outcome.value}"
    if note:
        content += f". Note: {note}"
    add_message(db, match_id, agent_id, content)
    notifier.notify(
        ctx.counterpart_of(agent_id), "dispute_resolved", match_id, agent_id,
        f"Dispute resolved: {outcome.value}",
    )

    deal_logger(logger, match_id).info(f"Dispute {dispute.id} resolved as {outcome.value} by {agent_id}")
    return DisputeResolution(dispute=dispute, deal_status=status)


def list_disputes(db: DBSession, match_id: str, agent_id: str) -> List[Dispute]:
    """All disputes on a deal, oldest first. Participants only."""
    load_deal_for(db, match_id, agent_id)
    return db.query(Dispute).filter_by(match_id=match_id).order_by(Dispute.created_at).all()
