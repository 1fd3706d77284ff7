"""
Match resolution for a single listing.

WHAT: Find every compatible counterpart listing and attach a Match to each pair
WHY: Only writer of new Match rows; repeated calls must never duplicate a pair
HOW: Score candidates, canonical pair key, INSERT ... ON CONFLICT DO NOTHING, read back
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Tuple
from uuid import uuid4

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session as DBSession

from ..core.config import settings
from ..core.models import Listing, Match, DealStatus
from ..models.listing import OverlapSummary
from .compatibility import score
from .notifications import NotificationSink
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class MatchResult:
    """One compatible counterpart for the resolved listing."""
    match_id: str
    counterpart: Listing
    overlap: OverlapSummary
    created: bool


def canonical_pair(listing_id: str, other_id: str) -> Tuple[str, str]:
    """Order a listing pair so the smaller id comes first."""
    return (listing_id, other_id) if listing_id < other_id else (other_id, listing_id)


def _find_candidates(db: DBSession, listing: Listing) -> List[Listing]:
    return (
        db.query(Listing)
        .filter(
            Listing.side == listing.side.opposite,
            Listing.category == listing.category,
            Listing.active.is_(True),
            Listing.id != listing.id,
            Listing.agent_id != listing.agent_id,
        )
        .all()
    )


def _get_or_create_match(db: DBSession, pair: Tuple[str, str], overlap: OverlapSummary) -> Tuple[Match, bool]:
    """
    Insert the pair's Match unless it already exists.

    The unique (listing_a_id, listing_b_id) constraint absorbs concurrent inserts:
    a losing insert affects zero rows and the winner's row is read back.
    """
    now = datetime.utcnow()
    stmt = (
        sqlite_insert(Match)
        .values(
            id=str(uuid4()),
            listing_a_id=pair[0],
            listing_b_id=pair[1],
            overlap_summary=overlap.model_dump(),
            status=DealStatus.MATCHED,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=settings.MATCH_EXPIRY_DAYS),
        )
        .on_conflict_do_nothing(index_elements=["listing_a_id", "listing_b_id"])
    )
    result = db.connection().execute(stmt)
    created = result.rowcount == 1

    match = db.query(Match).filter_by(listing_a_id=pair[0], listing_b_id=pair[1]).one()
    return match, created


def resolve(db: DBSession, listing_id: str, notifier: NotificationSink) -> List[MatchResult]:
    """
    Resolve all matches for a listing.

    Args:
        db: Database session
        listing_id: Listing to match
        notifier: Sink receiving new_match notifications

    Returns:
        MatchResult list sorted by score descending (empty for missing/inactive listings)
    """
    listing = db.query(Listing).filter_by(id=listing_id, active=True).first()
    if not listing:
        logger.info(f"Listing {listing_id} missing or inactive, no matches resolved")
        return []

    results: List[MatchResult] = []
    for candidate in _find_candidates(db, listing):
        overlap = score(listing, candidate)
        if overlap is None:
            continue

        match, created = _get_or_create_match(db, canonical_pair(listing.id, candidate.id), overlap)
        if created:
            logger.info(
                f"Created match {match.id} for listings {match.listing_a_id}/{match.listing_b_id} "
                f"(score {overlap.score})"
            )
            notifier.notify(
                candidate.agent_id, "new_match", match.id, listing.agent_id,
                f"New match found with {listing.agent_id} ({overlap.score}% compatibility)",
            )
            notifier.notify(
                listing.agent_id, "new_match", match.id, candidate.agent_id,
                f"New match found with {candidate.agent_id} ({overlap.score}% compatibility)",
            )

        results.append(MatchResult(match_id=match.id, counterpart=candidate, overlap=overlap, created=created))

    results.sort(key=lambda r: r.overlap.score, reverse=True)
    logger.info(f"Resolved {len(results)} matches for listing {listing_id}")
    return results
