"""
Expiry sweeper for stale deals.

WHAT: Expire pre-approval deals that sat untouched past a timeout
WHY: Abandoned negotiations should not stay open forever
HOW: Select stale matches oldest first, then expire each through the state machine
     so a deal that moved on concurrently is skipped rather than overwritten
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session as DBSession

from ..core.config import settings
from ..core.models import Match, DealStatus
from .deal_state_machine import (
    DealAction, DealContext, PRE_APPROVAL_STATUSES, add_message, apply_transition,
)
from .notifications import NotificationSink
from ..utils.exceptions import ValidationException, InvalidDealStatusException
from ..utils.logger import deal_logger, get_logger

logger = get_logger(__name__)

SYSTEM_SENDER = "system"


@dataclass
class ExpiryConfig:
    timeout_hours: int
    limit: int


@dataclass
class ExpiredDeal:
    """A stale deal as reported by preview and sweep."""
    id: str
    status: str
    created_at: datetime
    agent_a_id: str
    agent_b_id: str
    hours_stale: float


@dataclass
class SweepResult:
    expired_count: int
    expired_deals: List[ExpiredDeal]
    timeout_hours: int
    swept_at: datetime


@dataclass
class PreviewResult:
    stale_count: int
    stale_deals: List[ExpiredDeal] = field(default_factory=list)
    timeout_hours: int = 0


def _as_number(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationException(f"{name} must be a number")
    return value


def validate_expiry_config(timeout_hours=None, limit=None) -> ExpiryConfig:
    """
    Validate sweep parameters, applying defaults for missing values.

    Out-of-range values are rejected, not clamped.
    """
    t = settings.EXPIRY_DEFAULT_TIMEOUT_HOURS if timeout_hours is None else _as_number(timeout_hours, "timeout_hours")
    n = settings.EXPIRY_DEFAULT_LIMIT if limit is None else _as_number(limit, "limit")

    if t < settings.EXPIRY_MIN_TIMEOUT_HOURS or t > settings.EXPIRY_MAX_TIMEOUT_HOURS:
        raise ValidationException(
            f"timeout_hours must be between {settings.EXPIRY_MIN_TIMEOUT_HOURS} "
            f"and {settings.EXPIRY_MAX_TIMEOUT_HOURS}"
        )
    if n < 1 or n > settings.EXPIRY_MAX_LIMIT:
        raise ValidationException(f"limit must be between 1 and {settings.EXPIRY_MAX_LIMIT}")

    return ExpiryConfig(timeout_hours=int(math.floor(t)), limit=int(math.floor(n)))


def _select_stale(db: DBSession, config: ExpiryConfig, now: datetime) -> List[Match]:
    cutoff = now - timedelta(hours=config.timeout_hours)
    return (
        db.query(Match)
        .filter(Match.status.in_(sorted(PRE_APPROVAL_STATUSES)), Match.created_at < cutoff)
        .order_by(Match.created_at.asc(), Match.id.asc())
        .limit(config.limit)
        .all()
    )


def _describe(match: Match, now: datetime) -> ExpiredDeal:
    return ExpiredDeal(
        id=match.id,
        status=DealStatus(match.status).value,
        created_at=match.created_at,
        agent_a_id=match.listing_a.agent_id,
        agent_b_id=match.listing_b.agent_id,
        hours_stale=round((now - match.created_at).total_seconds() / 3600, 1),
    )


def preview(db: DBSession, timeout_hours=None, limit=None, now: Optional[datetime] = None) -> PreviewResult:
    """List the deals a sweep would expire, without changing anything."""
    config = validate_expiry_config(timeout_hours, limit)
    now = now or datetime.utcnow()
    stale = [_describe(match, now) for match in _select_stale(db, config, now)]
    return PreviewResult(stale_count=len(stale), stale_deals=stale, timeout_hours=config.timeout_hours)


def sweep(
    db: DBSession,
    timeout_hours,
    limit,
    notifier: NotificationSink,
    now: Optional[datetime] = None,
) -> SweepResult:
    """
    Expire stale pre-approval deals.

    Args:
        db: Database session
        timeout_hours: Age threshold in hours (default 168)
        limit: Maximum deals expired in one run (default 100)
        notifier: Sink receiving deal_expired notifications
        now: Reference time (defaults to utcnow)

    Returns:
        SweepResult listing each expired deal with its previous status
    """
    config = validate_expiry_config(timeout_hours, limit)
    now = now or datetime.utcnow()
    expired: List[ExpiredDeal] = []

    for match in _select_stale(db, config, now):
        described = _describe(match, now)
        ctx = DealContext(match=match, listing_a=match.listing_a, listing_b=match.listing_b)
        try:
            apply_transition(db, ctx, DealAction.EXPIRE, None)
        except InvalidDealStatusException:
            deal_logger(logger, match.id).info("Status changed during sweep, skipping")
            continue

        summary = (
            f"Deal auto-expired after {config.timeout_hours}h of inactivity (was {described.status})"
        )
        add_message(db, match.id, SYSTEM_SENDER, summary)
        notifier.notify(described.agent_a_id, "deal_expired", match.id, described.agent_b_id, summary)
        if described.agent_a_id != described.agent_b_id:
            notifier.notify(described.agent_b_id, "deal_expired", match.id, described.agent_a_id, summary)
        expired.append(described)

    logger.info(f"Expiry sweep expired {len(expired)} deals (timeout {config.timeout_hours}h)")
    return SweepResult(
        expired_count=len(expired),
        expired_deals=expired,
        timeout_hours=config.timeout_hours,
        swept_at=now,
    )
