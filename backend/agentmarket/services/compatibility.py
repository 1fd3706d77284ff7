"""
Compatibility scoring between two listings.

WHAT: Decide whether two listings can match and how well (0-100)
WHY: The match resolver only pairs listings this function accepts
HOW: Hard gates (side, category, skills, rate, remote) then a weighted score

Scoring Breakdown:
- Base (30): category and side match
- Skills (35): matching skills / smaller skill set, neutral 0.5 if either has none
- Rate (20): overlap width / union width, neutral 0.5 if either has no range
- Remote (5): remote preferences compatible
- Description (5): both listings carry a free-text description
"""

import math
from typing import Optional

from ..core.models import Listing
from ..models.listing import ListingParams, OverlapSummary, RateRange, parse_listing_params
from ..utils.logger import get_logger

logger = get_logger(__name__)

BASE_POINTS = 30.0
SKILL_POINTS = 35.0
RATE_POINTS = 20.0
REMOTE_BONUS = 5.0
DESCRIPTION_BONUS = 5.0
NEUTRAL_FACTOR = 0.5
MAX_SCORE = 100


def _params_of(listing: Listing) -> ListingParams:
    return parse_listing_params(listing.params)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def remote_compatible(a: ListingParams, b: ListingParams) -> bool:
    """Unspecified or hybrid preferences are compatible with anything."""
    if not a.remote or not b.remote:
        return True
    if a.remote == b.remote:
        return True
    return a.remote == "hybrid" or b.remote == "hybrid"


def rate_overlap(a: ListingParams, b: ListingParams) -> Optional[RateRange]:
    """Intersection of both rate ranges, None when either side has no full range."""
    if not (a.has_rate_range and b.has_rate_range):
        return None
    return RateRange(min=max(a.rate_min, b.rate_min), max=min(a.rate_max, b.rate_max))


def skill_coverage(a: ListingParams, b: ListingParams) -> float:
    smaller = min(len(a.skills), len(b.skills))
    if smaller == 0:
        return NEUTRAL_FACTOR
    return len(a.skills & b.skills) / smaller


def rate_tightness(a: ListingParams, b: ListingParams) -> float:
    overlap = rate_overlap(a, b)
    if overlap is None:
        return NEUTRAL_FACTOR
    union_width = max(a.rate_max, b.rate_max) - min(a.rate_min, b.rate_min)
    if union_width <= 0:
        return NEUTRAL_FACTOR
    return (overlap.max - overlap.min) / union_width


def score(a: Listing, b: Listing) -> Optional[OverlapSummary]:
    """
    Compute the overlap summary for two listings.

    Args:
        a: First listing
        b: Second listing

    Returns:
        OverlapSummary, or None when the listings cannot match
    """
    if a.side == b.side or a.category != b.category:
        return None
    if not a.active or not b.active:
        return None

    a_params = _params_of(a)
    b_params = _params_of(b)

    matching_skills = a_params.skills & b_params.skills
    if a_params.skills and b_params.skills and not matching_skills:
        return None

    overlap = rate_overlap(a_params, b_params)
    if overlap is not None and overlap.min > overlap.max:
        return None

    if not remote_compatible(a_params, b_params):
        return None

    points = BASE_POINTS
    points += SKILL_POINTS * skill_coverage(a_params, b_params)
    points += RATE_POINTS * rate_tightness(a_params, b_params)
    points += REMOTE_BONUS
    if (a.description or "").strip() and (b.description or "").strip():
        points += DESCRIPTION_BONUS

    total = min(MAX_SCORE, _round_half_up(points))
    logger.debug(f"Scored listings {a.id} / {b.id}: {total}")

    return OverlapSummary(
        matching_skills=sorted(matching_skills),
        rate_overlap=overlap,
        remote_compatible=True,
        score=total,
    )
