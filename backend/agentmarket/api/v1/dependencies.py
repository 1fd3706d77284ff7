"""
Request dependencies shared by the v1 endpoints.

WHAT: Caller identity, admin guard and the webhook outbox
WHY: Authentication happens upstream; endpoints only need the agent id
HOW: FastAPI Header dependencies raising business exceptions; BackgroundTasks
     for post-commit webhook delivery
"""

import secrets
from typing import Optional

from fastapi import BackgroundTasks, Header

from ...core.config import settings
from ...services.notifications import WebhookNotificationSink, build_webhook_sink
from ...utils.exceptions import UnauthorizedException, AdminNotConfiguredException


def get_agent_id(x_agent_id: Optional[str] = Header(default=None)) -> str:
    """Authenticated agent id from the X-Agent-Id header."""
    if not x_agent_id or not x_agent_id.strip():
        raise UnauthorizedException("Missing X-Agent-Id header")
    return x_agent_id.strip()


def require_admin(authorization: Optional[str] = Header(default=None)) -> None:
    """Bearer token check against ADMIN_SECRET (503 when no secret is configured)."""
    if not settings.ADMIN_SECRET:
        raise AdminNotConfiguredException()
    expected = f"Bearer {settings.ADMIN_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise UnauthorizedException()


def get_webhook_sink(background_tasks: BackgroundTasks) -> Optional[WebhookNotificationSink]:
    """
    Request-scoped webhook outbox.

    Delivery is scheduled as a background task, so it runs after the response
    is sent (after get_db() has committed) and never when the request errors.
    """
    sink = build_webhook_sink()
    if sink is not None:
        background_tasks.add_task(sink.deliver)
    return sink
