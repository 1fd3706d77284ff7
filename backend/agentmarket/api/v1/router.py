"""
API v1 router aggregation.

WHAT: Combine all v1 endpoint routers
WHY: Single place to register all API routes
HOW: Include routers from endpoints with prefixes
"""

from fastapi import APIRouter

from .endpoints import status, listings, expiry, deals, disputes, notifications

API_V1_PREFIX = "/api/v1"

# Create main v1 router
api_router = APIRouter()

api_router.include_router(
    status.router,
    prefix=API_V1_PREFIX,
    tags=["status"]
)

api_router.include_router(
    listings.router,
    prefix=API_V1_PREFIX,
    tags=["listings"]
)

# Registered before deals so /deals/expiry is not captured by /deals/{match_id}
api_router.include_router(
    expiry.router,
    prefix=API_V1_PREFIX,
    tags=["admin"]
)

api_router.include_router(
    deals.router,
    prefix=API_V1_PREFIX,
    tags=["deals"]
)

api_router.include_router(
    disputes.router,
    prefix=API_V1_PREFIX,
    tags=["disputes"]
)

api_router.include_router(
    notifications.router,
    prefix=API_V1_PREFIX,
    tags=["notifications"]
)
