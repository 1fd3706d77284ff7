"""
Notification sinks for deal transitions.

WHAT: Fire-and-forget delivery of transition notifications to agents
WHY: The engine emits notifications but must never fail or block on them
HOW: A small sink protocol with database, webhook and fan-out implementations;
     webhook payloads are queued and posted after the request commits
"""

from typing import List, Optional, Protocol, Sequence

import httpx
from sqlalchemy.orm import Session as DBSession

from ..core.config import settings
from ..core.models import Notification
from ..utils.logger import get_logger

logger = get_logger(__name__)

NOTIFICATION_TYPES = frozenset({
    "new_match",
    "message_received",
    "deal_proposed",
    "deal_approved",
    "deal_rejected",
    "deal_started",
    "deal_completed",
    "deal_completion_requested",
    "deal_cancelled",
    "deal_disputed",
    "dispute_resolved",
    "deal_expired",
})


class NotificationSink(Protocol):
    """Anything that can receive a notification."""

    def notify(
        self,
        agent_id: str,
        type: str,
        match_id: Optional[str],
        from_agent_id: Optional[str],
        summary: str,
    ) -> None:
        ...


class DatabaseNotificationSink:
    """
    Persist notifications in the caller's session.

    WHAT: Inbox rows committed together with the transition that caused them
    WHY: Agents poll their inbox for deal events
    HOW: Add a Notification row to the session; the request commits it
    """

    def __init__(self, db: DBSession):
        self.db = db

    def notify(self, agent_id, type, match_id, from_agent_id, summary):
        if type not in NOTIFICATION_TYPES:
            logger.warning(f"Dropping notification with unknown type {type!r} for {agent_id}")
            return
        self.db.add(Notification(
            agent_id=agent_id,
            type=type,
            match_id=match_id,
            from_agent_id=from_agent_id,
            summary=summary,
        ))
        logger.debug(f"Queued {type} notification for {agent_id} (match {match_id})")


class WebhookNotificationSink:
    """
    Queue notifications for a webhook URL and post them later.

    notify() only appends to the outbox so a transition never waits on the
    network. deliver() posts the outbox with an AsyncClient; the HTTP layer
    schedules it as a background task, which runs after the session commits
    and is dropped when the request fails. Delivery failures are logged and
    swallowed; nothing is retried.
    """

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client
        self.pending: List[dict] = []

    def notify(self, agent_id, type, match_id, from_agent_id, summary):
        self.pending.append({
            "agent_id": agent_id,
            "type": type,
            "match_id": match_id,
            "from_agent_id": from_agent_id,
            "summary": summary,
        })

    async def deliver(self) -> int:
        """Post every queued payload; returns how many were accepted."""
        payloads, self.pending = self.pending, []
        if not payloads:
            return 0

        if self._client is not None:
            delivered = await self._post_all(self._client, payloads)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                delivered = await self._post_all(client, payloads)

        if delivered < len(payloads):
            logger.warning(f"Webhook delivered {delivered}/{len(payloads)} notifications")
        else:
            logger.debug(f"Webhook delivered {delivered} notifications")
        return delivered

    async def _post_all(self, client: httpx.AsyncClient, payloads: List[dict]) -> int:
        delivered = 0
        for payload in payloads:
            try:
                response = await client.post(self.url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                delivered += 1
            except httpx.HTTPError as e:
                logger.warning(
                    f"Webhook delivery of {payload['type']} for {payload['agent_id']} failed: {e}"
                )
        return delivered


class FanoutNotificationSink:
    """Deliver each notification to several sinks in order."""

    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks = list(sinks)

    def notify(self, agent_id, type, match_id, from_agent_id, summary):
        for sink in self.sinks:
            sink.notify(agent_id, type, match_id, from_agent_id, summary)


def build_webhook_sink() -> Optional[WebhookNotificationSink]:
    """Webhook outbox from settings, or None when WEBHOOK_URL is unset."""
    if not settings.WEBHOOK_URL:
        return None
    return WebhookNotificationSink(settings.WEBHOOK_URL, timeout=settings.WEBHOOK_TIMEOUT)


def build_notifier(db: DBSession, webhook: Optional[WebhookNotificationSink] = None) -> NotificationSink:
    """
    Build the request-scoped notifier.

    Always persists to the database; adds the webhook outbox when one is given.
    The caller owns delivering the outbox once its transaction has committed.
    """
    sinks: List[NotificationSink] = [DatabaseNotificationSink(db)]
    if webhook is not None:
        sinks.append(webhook)
    if len(sinks) == 1:
        return sinks[0]
    return FanoutNotificationSink(sinks)
