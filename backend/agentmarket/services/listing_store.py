"""
Listing store operations.

WHAT: Create, read and soft-delete listings
WHY: Keep the one-active-listing-per-(agent, side, category) invariant in one place
HOW: Deactivate the prior listing and insert the new one in the caller's transaction
"""

from dataclasses import dataclass
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from ..core.config import settings
from ..core.models import Listing, ListingSide
from ..models.listing import parse_listing_params
from ..utils.exceptions import (
    ValidationException,
    ForbiddenException,
    ListingNotFoundException,
    ActiveListingConflictException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ListingCreated:
    """Result of creating a listing."""
    listing: Listing
    replaced_listing_id: Optional[str] = None


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationException(f"{field} is required and must be a non-empty string")
    return value.strip()


def _active_listing(db: DBSession, agent_id: str, side: ListingSide, category: str) -> Optional[Listing]:
    return db.query(Listing).filter_by(agent_id=agent_id, side=side, category=category, active=True).first()


def create_listing(
    db: DBSession,
    agent_id: str,
    side: str,
    category: str,
    params: Any,
    description: Optional[str] = None,
) -> ListingCreated:
    """
    Create a listing, superseding the agent's active one for the same side and category.

    Args:
        db: Database session
        agent_id: Authenticated owner
        side: "offering" or "seeking"
        category: Market category
        params: Raw params mapping (validated here)
        description: Optional free text

    Returns:
        ListingCreated with the new row and the id of the listing it replaced
    """
    agent_id = _require_text(agent_id, "agent_id")
    category = _require_text(category, "category")
    try:
        listing_side = ListingSide(side)
    except ValueError:
        raise ValidationException("side must be 'offering' or 'seeking'")
    listing_params = parse_listing_params(params)
    if description is not None:
        if not isinstance(description, str):
            raise ValidationException("description must be a string")
        if len(description) > settings.MAX_TEXT_LENGTH:
            raise ValidationException(f"description must be under {settings.MAX_TEXT_LENGTH} characters")

    new_id = str(uuid4())
    # A concurrent publish can slip in after the lookup; supersede it on the retry
    for attempt in (1, 2):
        previous = _active_listing(db, agent_id, listing_side, category)
        try:
            with db.begin_nested():
                if previous:
                    previous.active = False
                    previous.superseded_by = new_id
                    # Deactivation must hit the partial unique index before the insert
                    db.flush()

                listing = Listing(
                    id=new_id,
                    agent_id=agent_id,
                    side=listing_side,
                    category=category,
                    params=listing_params.to_json(),
                    description=description,
                    active=True,
                )
                db.add(listing)
                db.flush()
            break
        except IntegrityError as e:
            if attempt == 2:
                raise ActiveListingConflictException(agent_id, listing_side.value, category) from e
            logger.warning(
                f"Concurrent publish for agent {agent_id} ({listing_side.value}/{category}), retrying supersession"
            )

    if previous:
        logger.info(f"Listing {new_id} supersedes {previous.id} for agent {agent_id} ({listing_side.value}/{category})")
    else:
        logger.info(f"Created listing {new_id} for agent {agent_id} ({listing_side.value}/{category})")

    return ListingCreated(listing=listing, replaced_listing_id=previous.id if previous else None)


def get_listing(db: DBSession, listing_id: str, active_only: bool = False) -> Listing:
    """
    Fetch a listing by id.

    Raises:
        ListingNotFoundException: If missing (or inactive when active_only)
    """
    query = db.query(Listing).filter_by(id=listing_id)
    if active_only:
        query = query.filter_by(active=True)
    listing = query.first()
    if not listing:
        raise ListingNotFoundException(listing_id)
    return listing


def deactivate_listing(db: DBSession, listing_id: str, agent_id: str) -> Listing:
    """
    Soft-delete a listing. Only the owner may deactivate it.

    Raises:
        ListingNotFoundException: If missing or already inactive
        ForbiddenException: If agent_id is not the owner
    """
    listing = get_listing(db, listing_id, active_only=True)
    if listing.agent_id != agent_id:
        raise ForbiddenException(
            f"Agent {agent_id} does not own listing {listing_id}",
            details={"listing_id": listing_id, "agent_id": agent_id},
        )
    listing.active = False
    db.flush()
    logger.info(f"Deactivated listing {listing_id} (agent {agent_id})")
    return listing
