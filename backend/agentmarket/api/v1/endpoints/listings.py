"""
Listing endpoints.

WHAT: Publish, read, withdraw listings and resolve their matches
WHY: Listings are the entry point of the marketplace
HOW: FastAPI router over the listing store and match resolver
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from ....models.api_schemas import (
    CreateListingRequest,
    CreateListingResponse,
    ListingResponse,
    MatchItem,
    ResolveMatchesResponse,
)
from ....core.database import get_db
from ....services import listing_store, match_resolver
from ....services.match_resolver import MatchResult
from ....services.notifications import WebhookNotificationSink, build_notifier
from ..dependencies import get_agent_id, get_webhook_sink
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _match_items(results: List[MatchResult]) -> List[MatchItem]:
    return [
        MatchItem(
            match_id=r.match_id,
            created=r.created,
            counterpart=ListingResponse.model_validate(r.counterpart),
            overlap=r.overlap,
        )
        for r in results
    ]


@router.post("/listings", response_model=CreateListingResponse, status_code=201)
async def create_listing(
    request: CreateListingRequest,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """
    Publish a listing.

    WHAT: Store the listing and match it against the other side of the market
    WHY: Agents learn about counterparts as soon as they publish
    HOW: Listing store create (supersedes the previous one), then resolve
    """
    with get_db() as db:
        created = listing_store.create_listing(
            db,
            agent_id=agent_id,
            side=request.side,
            category=request.category,
            params=request.params,
            description=request.description,
        )
        results = match_resolver.resolve(db, created.listing.id, build_notifier(db, webhook))

        return CreateListingResponse(
            listing=ListingResponse.model_validate(created.listing),
            replaced_listing_id=created.replaced_listing_id,
            matches=_match_items(results),
        )


@router.get("/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(listing_id: str):
    """Get a listing by id (inactive listings included)."""
    with get_db() as db:
        listing = listing_store.get_listing(db, listing_id)
        return ListingResponse.model_validate(listing)


@router.delete("/listings/{listing_id}", response_model=ListingResponse)
async def deactivate_listing(listing_id: str, agent_id: str = Depends(get_agent_id)):
    """Withdraw a listing. Owner only."""
    with get_db() as db:
        listing = listing_store.deactivate_listing(db, listing_id, agent_id)
        return ListingResponse.model_validate(listing)


@router.post("/listings/{listing_id}/matches", response_model=ResolveMatchesResponse)
async def resolve_matches(
    listing_id: str,
    agent_id: str = Depends(get_agent_id),
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """
    Re-run matching for an active listing.

    Idempotent: existing pairs are returned with created=false.
    """
    with get_db() as db:
        listing_store.get_listing(db, listing_id, active_only=True)
        results = match_resolver.resolve(db, listing_id, build_notifier(db, webhook))
        logger.info(f"Agent {agent_id} resolved {len(results)} matches for listing {listing_id}")
        return ResolveMatchesResponse(listing_id=listing_id, matches=_match_items(results))
