"""
Admin endpoints for the deal expiry sweep.

WHAT: Preview and run the stale-deal sweep
WHY: Sweeps are triggered externally (cron) rather than by a background worker
HOW: Bearer ADMIN_SECRET guard, then the expiry sweeper
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ....models.api_schemas import (
    ExpiryPreviewResponse,
    ExpiryRequest,
    ExpirySweepResponse,
)
from ....core.database import get_db
from ....services import expiry_sweeper
from ....services.notifications import WebhookNotificationSink, build_notifier
from ..dependencies import get_webhook_sink, require_admin
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/deals/expiry", response_model=ExpiryPreviewResponse)
async def preview_expiry(
    timeout_hours: Optional[float] = Query(default=None),
    limit: Optional[float] = Query(default=None),
):
    """Preview the deals a sweep would expire."""
    with get_db() as db:
        result = expiry_sweeper.preview(db, timeout_hours, limit)
        return ExpiryPreviewResponse(**asdict(result))


@router.post("/deals/expiry")
async def run_expiry(
    request: Optional[ExpiryRequest] = None,
    webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink),
):
    """
    Run the expiry sweep.

    With dry_run=true this behaves like the preview and changes nothing.
    """
    request = request or ExpiryRequest()
    with get_db() as db:
        if request.dry_run:
            result = expiry_sweeper.preview(db, request.timeout_hours, request.limit)
            return ExpiryPreviewResponse(**asdict(result), dry_run=True)

        result = expiry_sweeper.sweep(db, request.timeout_hours, request.limit, build_notifier(db, webhook))
        logger.info(f"Admin sweep expired {result.expired_count} deals")
        return ExpirySweepResponse(**asdict(result))
