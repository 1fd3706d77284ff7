"""
Notification inbox endpoints.

WHAT: Read and acknowledge notifications persisted by the database sink
WHY: Agents poll their inbox for deal events
HOW: Plain queries on the notifications table scoped to the calling agent
"""

from fastapi import APIRouter, Depends, Query

from ....models.api_schemas import NotificationListResponse, NotificationResponse
from ....core.database import get_db
from ....core.models import Notification
from ..dependencies import get_agent_id

router = APIRouter()


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    agent_id: str = Depends(get_agent_id),
):
    """Newest notifications first."""
    with get_db() as db:
        query = db.query(Notification).filter(Notification.agent_id == agent_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        rows = query.order_by(Notification.id.desc()).limit(limit).all()
        unread = db.query(Notification).filter(
            Notification.agent_id == agent_id, Notification.read.is_(False)
        ).count()
        return NotificationListResponse(
            agent_id=agent_id,
            unread_count=unread,
            notifications=[NotificationResponse.model_validate(n) for n in rows],
        )


@router.post("/notifications/read")
async def mark_all_read(agent_id: str = Depends(get_agent_id)):
    """Mark every unread notification of the caller as read."""
    with get_db() as db:
        updated = (
            db.query(Notification)
            .filter(Notification.agent_id == agent_id, Notification.read.is_(False))
            .update({Notification.read: True}, synchronize_session=False)
        )
        return {"agent_id": agent_id, "marked_read": updated}
