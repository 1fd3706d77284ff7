"""
Deal state machine.

WHAT: Every Match status change, driven by participant actions
WHY: One transition table makes illegal transitions a single centralized check
HOW: TRANSITIONS maps (current status, action) -> next status; handlers consult it,
     apply their guards, write the status with a compare-and-set UPDATE, append a
     system message and notify the counterpart

States:
    matched -> negotiating -> proposed -> approved -> in_progress -> completed
    side branches: rejected, expired, cancelled, disputed
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm.attributes import set_committed_value

from ..core.config import settings
from ..core.models import (
    Listing, Match, Message, Approval, DealCompletion, Dispute,
    DealStatus, MessageType, DisputeStatus,
)
from .notifications import NotificationSink
from ..utils.exceptions import (
    ValidationException,
    DealNotFoundException,
    NotParticipantException,
    InvalidDealStatusException,
    DuplicateCompletionException,
    OpenDisputeExistsException,
)
from ..utils.logger import deal_logger, get_logger, log_transition

logger = get_logger(__name__)


class DealAction(str, enum.Enum):
    """Actions that can move a deal."""
    MESSAGE = "message"
    PROPOSE = "propose"
    APPROVE = "approve"
    REJECT = "reject"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    DISPUTE = "dispute"
    RESOLVE_COMPLETE = "resolve_complete"
    RESOLVE_REFUND = "resolve_refund"
    RESOLVE_SPLIT = "resolve_split"
    DISMISS_DISPUTE = "dismiss_dispute"
    EXPIRE = "expire"


TERMINAL_STATUSES = frozenset({
    DealStatus.REJECTED, DealStatus.EXPIRED, DealStatus.CANCELLED, DealStatus.COMPLETED,
})

# Messaging stays open after approval for post-deal coordination
MESSAGING_BLOCKED = frozenset({DealStatus.REJECTED, DealStatus.EXPIRED, DealStatus.CANCELLED})

PRE_APPROVAL_STATUSES = frozenset({DealStatus.MATCHED, DealStatus.NEGOTIATING, DealStatus.PROPOSED})


def _build_transitions() -> Dict[Tuple[DealStatus, DealAction], DealStatus]:
    table: Dict[Tuple[DealStatus, DealAction], DealStatus] = {}

    for status in DealStatus:
        if status not in MESSAGING_BLOCKED:
            table[(status, DealAction.MESSAGE)] = (
                DealStatus.NEGOTIATING if status is DealStatus.MATCHED else status
            )
            # A proposal reopens voting from wherever messaging is allowed
            table[(status, DealAction.PROPOSE)] = DealStatus.PROPOSED

    table[(DealStatus.PROPOSED, DealAction.APPROVE)] = DealStatus.APPROVED
    table[(DealStatus.PROPOSED, DealAction.REJECT)] = DealStatus.REJECTED
    table[(DealStatus.APPROVED, DealAction.START)] = DealStatus.IN_PROGRESS
    table[(DealStatus.IN_PROGRESS, DealAction.COMPLETE)] = DealStatus.COMPLETED
    table[(DealStatus.IN_PROGRESS, DealAction.DISPUTE)] = DealStatus.DISPUTED

    for status in PRE_APPROVAL_STATUSES:
        table[(status, DealAction.CANCEL)] = DealStatus.CANCELLED
        table[(status, DealAction.EXPIRE)] = DealStatus.EXPIRED

    table[(DealStatus.DISPUTED, DealAction.RESOLVE_COMPLETE)] = DealStatus.COMPLETED
    table[(DealStatus.DISPUTED, DealAction.RESOLVE_REFUND)] = DealStatus.CANCELLED
    table[(DealStatus.DISPUTED, DealAction.RESOLVE_SPLIT)] = DealStatus.COMPLETED
    table[(DealStatus.DISPUTED, DealAction.DISMISS_DISPUTE)] = DealStatus.IN_PROGRESS

    return table


TRANSITIONS: Dict[Tuple[DealStatus, DealAction], DealStatus] = _build_transitions()


def allowed_statuses(action: DealAction) -> Set[DealStatus]:
    """Statuses from which an action is permitted."""
    return {status for (status, act) in TRANSITIONS if act is action}


def next_status(match_id: str, current: DealStatus, action: DealAction) -> DealStatus:
    """
    Look up the target status for an action.

    Raises:
        InvalidDealStatusException: naming the current and the allowed statuses
    """
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidDealStatusException(
            match_id=match_id,
            action=action.value,
            current_status=current.value,
            allowed=[s.value for s in allowed_statuses(action)],
        )
    return target


# ========== Deal context ==========

@dataclass
class DealContext:
    """A match with both listings loaded."""
    match: Match
    listing_a: Listing
    listing_b: Listing

    @property
    def agent_ids(self) -> Set[str]:
        return {self.listing_a.agent_id, self.listing_b.agent_id}

    def is_participant(self, agent_id: str) -> bool:
        return agent_id in self.agent_ids

    def require_participant(self, agent_id: str) -> None:
        if not self.is_participant(agent_id):
            raise NotParticipantException(self.match.id, agent_id)

    def counterpart_of(self, agent_id: str) -> str:
        if agent_id == self.listing_a.agent_id:
            return self.listing_b.agent_id
        return self.listing_a.agent_id


@dataclass
class ActionResult:
    """Outcome of a deal action."""
    match_id: str
    deal_status: DealStatus
    outcome: str
    message: str
    message_id: Optional[int] = None
    dispute: Optional[Dispute] = None


def load_deal(db: DBSession, match_id: str) -> DealContext:
    """
    Load a match and its two listings.

    Raises:
        DealNotFoundException: If the match does not exist
    """
    match = db.query(Match).filter_by(id=match_id).first()
    if not match:
        raise DealNotFoundException(match_id)
    return DealContext(match=match, listing_a=match.listing_a, listing_b=match.listing_b)


def load_deal_for(db: DBSession, match_id: str, agent_id: str) -> DealContext:
    """Load a deal and require agent_id to be one of its participants."""
    ctx = load_deal(db, match_id)
    ctx.require_participant(agent_id)
    return ctx


@dataclass
class DealView:
    """A deal with its full history, read fresh from the store."""
    context: DealContext
    messages: List[Message]
    approvals: List[Approval]
    completions: List[DealCompletion]
    disputes: List[Dispute]

    @property
    def match(self) -> Match:
        return self.context.match


def get_deal(db: DBSession, match_id: str, agent_id: Optional[str] = None) -> DealView:
    """Deal detail view; participant check only when an agent id is given."""
    ctx = load_deal(db, match_id) if agent_id is None else load_deal_for(db, match_id, agent_id)
    return DealView(
        context=ctx,
        messages=db.query(Message).filter_by(match_id=match_id).order_by(Message.id).all(),
        approvals=db.query(Approval).filter_by(match_id=match_id).order_by(Approval.id).populate_existing().all(),
        completions=db.query(DealCompletion).filter_by(match_id=match_id).order_by(DealCompletion.id).all(),
        disputes=db.query(Dispute).filter_by(match_id=match_id).order_by(Dispute.created_at).all(),
    )


# ========== Shared writes ==========

def apply_transition(db: DBSession, ctx: DealContext, action: DealAction, actor: Optional[str]) -> DealStatus:
    """
    Move the match to the table's target status for action.

    The UPDATE is conditioned on the status read at load time, so a concurrent
    transition that got there first surfaces as a state conflict instead of
    being overwritten.
    """
    match = ctx.match
    current = DealStatus(match.status)
    target = next_status(match.id, current, action)
    if target == current:
        return current

    now = datetime.utcnow()
    result = db.connection().execute(
        update(Match)
        .where(Match.id == match.id, Match.status == current)
        .values(status=target, updated_at=now)
    )
    if result.rowcount != 1:
        db.refresh(match)
        raise InvalidDealStatusException(
            match_id=match.id,
            action=action.value,
            current_status=DealStatus(match.status).value,
            allowed=[s.value for s in allowed_statuses(action)],
        )
    set_committed_value(match, "status", target)
    set_committed_value(match, "updated_at", now)
    log_transition(logger, match.id, current.value, target.value, action.value, actor)
    return target


def add_message(
    db: DBSession,
    match_id: str,
    sender_agent_id: str,
    content: str,
    message_type: MessageType = MessageType.SYSTEM,
    proposed_terms: Optional[dict] = None,
) -> Message:
    message = Message(
        match_id=match_id,
        sender_agent_id=sender_agent_id,
        content=content,
        message_type=message_type,
        proposed_terms=proposed_terms,
    )
    db.add(message)
    db.flush()
    return message


def _require_text(value, field: str, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationException(f"{field} is required and must be a non-empty string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationException(f"{field} must be under {max_length} characters")
    return value


# ========== Handlers ==========

def send_message(
    db: DBSession,
    match_id: str,
    agent_id: str,
    content: str,
    notifier: NotificationSink,
    message_type: str = "negotiation",
    proposed_terms: Optional[dict] = None,
) -> ActionResult:
    """
    Append a negotiation or proposal message.

    Negotiation messages move a fresh match to negotiating. Proposals require
    proposed_terms, force the deal to proposed and clear earlier votes.
    """
    content = _require_text(content, "content")
    if message_type == "text":
        message_type = MessageType.NEGOTIATION.value
    try:
        msg_type = MessageType(message_type)
    except ValueError:
        raise ValidationException("message_type must be 'negotiation' or 'proposal'")
    if msg_type is MessageType.SYSTEM:
        raise ValidationException("system messages are reserved for deal transitions")
    if msg_type is MessageType.PROPOSAL and (not isinstance(proposed_terms, dict) or not proposed_terms):
        raise ValidationException("proposed_terms is required when message_type is 'proposal'")

    ctx = load_deal_for(db, match_id, agent_id)
    action = DealAction.PROPOSE if msg_type is MessageType.PROPOSAL else DealAction.MESSAGE
    # Validate before writing anything
    next_status(match_id, DealStatus(ctx.match.status), action)

    message = add_message(
        db, match_id, agent_id, content, msg_type,
        proposed_terms if msg_type is MessageType.PROPOSAL else None,
    )

    previous = DealStatus(ctx.match.status)
    if action is DealAction.PROPOSE:
        cleared = db.query(Approval).filter_by(match_id=match_id).delete(synchronize_session=False)
        if cleared:
            deal_logger(logger, match_id).info(f"Cleared {cleared} approvals for new proposal")
    status = apply_transition(db, ctx, action, agent_id)
    if status != previous:
        add_message(db, match_id, agent_id, f"Deal is now {status.value} ({previous.value} -> {status.value})")

    counterpart = ctx.counterpart_of(agent_id)
    if action is DealAction.PROPOSE:
        notifier.notify(counterpart, "deal_proposed", match_id, agent_id, f"Deal proposed by {agent_id}")
    else:
        notifier.notify(counterpart, "message_received", match_id, agent_id, f"New message from {agent_id}")

    return ActionResult(
        match_id=match_id,
        deal_status=status,
        outcome=status.value,
        message="Proposal sent." if action is DealAction.PROPOSE else "Message sent.",
        message_id=message.id,
    )


def approve(db: DBSession, match_id: str, agent_id: str, approved: bool, notifier: NotificationSink) -> ActionResult:
    """
    Record an approve/reject vote on a proposed deal.

    Any rejection rejects the deal for good; approval by both participants
    approves it; otherwise the vote is stored and the deal keeps waiting.
    """
    if not isinstance(approved, bool):
        raise ValidationException("approved must be a boolean")

    ctx = load_deal_for(db, match_id, agent_id)
    next_status(match_id, DealStatus(ctx.match.status), DealAction.APPROVE)

    now = datetime.utcnow()
    db.connection().execute(
        sqlite_insert(Approval)
        .values(match_id=match_id, agent_id=agent_id, approved=approved, created_at=now, updated_at=now)
        .on_conflict_do_update(
            index_elements=["match_id", "agent_id"],
            set_={"approved": approved, "updated_at": now},
        )
    )
    votes = db.query(Approval.agent_id, Approval.approved).filter(Approval.match_id == match_id).all()
    counterpart = ctx.counterpart_of(agent_id)

    if any(not vote.approved for vote in votes):
        status = apply_transition(db, ctx, DealAction.REJECT, agent_id)
        add_message(db, match_id, agent_id, f"Deal rejected by {agent_id}.")
        notifier.notify(counterpart, "deal_rejected", match_id, agent_id, f"Deal rejected by {agent_id}")
        return ActionResult(match_id=match_id, deal_status=status, outcome="rejected", message="Deal rejected.")

    approved_agents = {vote.agent_id for vote in votes if vote.approved}
    if ctx.agent_ids <= approved_agents:
        status = apply_transition(db, ctx, DealAction.APPROVE, agent_id)
        add_message(db, match_id, agent_id, "Deal approved. Both parties agreed.")
        for participant in ctx.agent_ids:
            notifier.notify(
                participant, "deal_approved", match_id, ctx.counterpart_of(participant),
                "Deal approved! Both parties agreed.",
            )
        return ActionResult(
            match_id=match_id, deal_status=status, outcome="approved",
            message="Both parties approved! Deal is finalized.",
        )

    deal_logger(logger, match_id).info(f"Approval recorded for {agent_id}, waiting for {counterpart}")
    return ActionResult(
        match_id=match_id, deal_status=DealStatus.PROPOSED, outcome="waiting",
        message="Your approval has been recorded. Waiting for the other party.",
    )


def start_deal(db: DBSession, match_id: str, agent_id: str, notifier: NotificationSink) -> ActionResult:
    """Move an approved deal to in_progress."""
    ctx = load_deal_for(db, match_id, agent_id)
    status = apply_transition(db, ctx, DealAction.START, agent_id)
    add_message(db, match_id, agent_id, f"Deal started by {agent_id}")
    notifier.notify(ctx.counterpart_of(agent_id), "deal_started", match_id, agent_id, f"Deal started by {agent_id}")
    return ActionResult(match_id=match_id, deal_status=status, outcome="in_progress", message="Deal is now in progress.")


def complete_deal(db: DBSession, match_id: str, agent_id: str, evidence: str, notifier: NotificationSink) -> ActionResult:
    """
    Record one participant's completion confirmation.

    The deal completes once both participants have confirmed. A second
    confirmation from the same agent is a conflict.
    """
    evidence = _require_text(evidence, "evidence", settings.MAX_TEXT_LENGTH)

    ctx = load_deal_for(db, match_id, agent_id)
    next_status(match_id, DealStatus(ctx.match.status), DealAction.COMPLETE)

    result = db.connection().execute(
        sqlite_insert(DealCompletion)
        .values(match_id=match_id, agent_id=agent_id, evidence=evidence, created_at=datetime.utcnow())
        .on_conflict_do_nothing(index_elements=["match_id", "agent_id"])
    )
    if result.rowcount != 1:
        raise DuplicateCompletionException(match_id, agent_id)

    confirmed = {row.agent_id for row in db.query(DealCompletion.agent_id).filter(DealCompletion.match_id == match_id)}
    counterpart = ctx.counterpart_of(agent_id)

    if ctx.agent_ids <= confirmed:
        status = apply_transition(db, ctx, DealAction.COMPLETE, agent_id)
        add_message(db, match_id, agent_id, "Deal completed! Both parties confirmed.")
        notifier.notify(counterpart, "deal_completed", match_id, agent_id, "Deal completed! Both parties confirmed.")
        notifier.notify(agent_id, "deal_completed", match_id, counterpart, "Deal completed! Both parties confirmed.")
        return ActionResult(
            match_id=match_id, deal_status=status, outcome="completed",
            message="Both parties confirmed! Deal is completed.",
        )

    notifier.notify(
        counterpart, "deal_completion_requested", match_id, agent_id,
        f"{agent_id} has confirmed deal completion. Please confirm too.",
    )
    deal_logger(logger, match_id).info(f"Completion confirmed by {agent_id}, waiting for {counterpart}")
    return ActionResult(
        match_id=match_id, deal_status=DealStatus.IN_PROGRESS, outcome="waiting",
        message="Your completion confirmed. Waiting for the other party.",
    )


def cancel_deal(
    db: DBSession,
    match_id: str,
    agent_id: str,
    notifier: NotificationSink,
    reason: Optional[str] = None,
) -> ActionResult:
    """Cancel a deal that has not been approved yet."""
    if reason is not None:
        if not isinstance(reason, str):
            raise ValidationException("reason must be a string")
        reason = reason.strip()[:settings.MAX_TEXT_LENGTH] or None

    ctx = load_deal_for(db, match_id, agent_id)
    status = apply_transition(db, ctx, DealAction.CANCEL, agent_id)

    content = f"Deal cancelled by {agent_id}."
    if reason:
        content += f" Reason: {reason}"
    add_message(db, match_id, agent_id, content)
    notifier.notify(ctx.counterpart_of(agent_id), "deal_cancelled", match_id, agent_id, content)
    return ActionResult(match_id=match_id, deal_status=status, outcome="cancelled", message="Deal has been cancelled.")


def _has_open_dispute(db: DBSession, match_id: str) -> bool:
    return db.query(Dispute.id).filter(
        Dispute.match_id == match_id, Dispute.status == DisputeStatus.OPEN
    ).first() is not None


def open_dispute(db: DBSession, match_id: str, agent_id: str, reason: str, notifier: NotificationSink) -> ActionResult:
    """File a dispute against an in-progress deal."""
    reason = _require_text(reason, "reason", settings.MAX_TEXT_LENGTH)

    ctx = load_deal_for(db, match_id, agent_id)
    next_status(match_id, DealStatus(ctx.match.status), DealAction.DISPUTE)

    if _has_open_dispute(db, match_id):
        raise OpenDisputeExistsException(match_id)

    dispute = Dispute(match_id=match_id, filed_by_agent_id=agent_id, reason=reason, status=DisputeStatus.OPEN)
    try:
        with db.begin_nested():
            db.add(dispute)
            db.flush()
    except IntegrityError as e:
        # Another filing won the one-open-dispute index after our check
        deal_logger(logger, match_id).warning(f"Dispute by {agent_id} lost to a concurrent filing")
        raise OpenDisputeExistsException(match_id) from e

    status = apply_transition(db, ctx, DealAction.DISPUTE, agent_id)
    add_message(db, match_id, agent_id, f"Dispute filed by {agent_id}: {reason}")
    notifier.notify(
        ctx.counterpart_of(agent_id), "deal_disputed", match_id, agent_id,
        f"{agent_id} has filed a dispute: {reason[:100]}",
    )
    return ActionResult(
        match_id=match_id, deal_status=status, outcome="disputed",
        message="Dispute filed. Deal is now in disputed status.", dispute=dispute,
    )

