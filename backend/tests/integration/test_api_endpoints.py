"""
Integration tests for the HTTP API.

WHAT: Drive listings, deals, disputes, notifications and the expiry admin over HTTP
WHY: Ensure API contract compliance end to end
HOW: FastAPI TestClient against the in-memory database
"""

import json
from datetime import datetime, timedelta
from typing import Optional

import httpx
import pytest
import respx
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from agentmarket.main import app
from agentmarket.core.config import settings
from agentmarket.core.database import Base, engine, get_db
from agentmarket.core.models import Match
from agentmarket.api.v1.dependencies import get_webhook_sink
from agentmarket.middleware.error_handler import register_exception_handlers
from agentmarket.services.notifications import WebhookNotificationSink
from agentmarket.utils.exceptions import InvalidDealStatusException

ADMIN_SECRET = "test-admin-secret"
WEBHOOK = "https://hooks.example.test/deals"


@pytest.fixture
def client():
    """Create FastAPI test client with fresh tables."""
    Base.metadata.create_all(bind=engine)
    yield TestClient(app)
    Base.metadata.drop_all(bind=engine)


def as_agent(agent_id):
    return {"X-Agent-Id": agent_id}


def publish(client, agent_id, side, **params):
    response = client.post(
        "/api/v1/listings",
        json={"side": side, "category": "dev", "params": params},
        headers=as_agent(agent_id),
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def deal(client):
    """alice offers, bob seeks; returns the match id."""
    publish(client, "alice", "offering", skills=["react", "ts"], rate_min=50, rate_max=70)
    body = publish(client, "bob", "seeking", skills=["react"], rate_min=40, rate_max=60)
    assert len(body["matches"]) == 1
    return body["matches"][0]["match_id"]


@pytest.mark.api
class TestListingEndpoints:

    def test_publish_listing_returns_matches(self, client):
        publish(client, "alice", "offering", skills=["react", "ts"], rate_min=50, rate_max=70)
        body = publish(client, "bob", "seeking", skills=["react"], rate_min=40, rate_max=60)

        assert body["listing"]["side"] == "seeking"
        assert body["replaced_listing_id"] is None
        match = body["matches"][0]
        assert match["created"] is True
        assert match["counterpart"]["agent_id"] == "alice"
        assert match["overlap"]["matching_skills"] == ["react"]
        assert match["overlap"]["score"] == 77

    def test_republish_supersedes(self, client):
        first = publish(client, "alice", "offering", skills=["react"])
        second = publish(client, "alice", "offering", skills=["vue"])

        assert second["replaced_listing_id"] == first["listing"]["id"]
        old = client.get(f"/api/v1/listings/{first['listing']['id']}").json()
        assert old["active"] is False
        assert old["superseded_by"] == second["listing"]["id"]

    def test_resolve_again_is_idempotent(self, client, deal):
        bob_listing = client.get(f"/api/v1/deals/{deal}", headers=as_agent("bob")).json()
        listing_id = next(
            l["id"] for l in (bob_listing["listing_a"], bob_listing["listing_b"]) if l["agent_id"] == "bob"
        )

        response = client.post(f"/api/v1/listings/{listing_id}/matches", headers=as_agent("bob"))

        assert response.status_code == 200
        matches = response.json()["matches"]
        assert [m["match_id"] for m in matches] == [deal]
        assert matches[0]["created"] is False

    def test_deactivate_listing(self, client):
        listing = publish(client, "alice", "offering")["listing"]

        forbidden = client.delete(f"/api/v1/listings/{listing['id']}", headers=as_agent("bob"))
        ok = client.delete(f"/api/v1/listings/{listing['id']}", headers=as_agent("alice"))
        again = client.delete(f"/api/v1/listings/{listing['id']}", headers=as_agent("alice"))

        assert forbidden.status_code == 403
        assert ok.status_code == 200
        assert ok.json()["active"] is False
        assert again.status_code == 404

    def test_missing_identity_is_unauthorized(self, client):
        response = client.post("/api/v1/listings", json={"side": "offering", "category": "dev"})

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_invalid_params(self, client):
        response = client.post(
            "/api/v1/listings",
            json={"side": "offering", "category": "dev", "params": {"rate_min": 90, "rate_max": 10}},
            headers=as_agent("alice"),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.api
class TestDealEndpoints:

    def test_full_lifecycle(self, client, deal):
        alice, bob = as_agent("alice"), as_agent("bob")

        r = client.post(f"/api/v1/deals/{deal}/messages", json={"content": "Hi"}, headers=alice)
        assert r.status_code == 201 and r.json()["status"] == "negotiating"

        r = client.post(
            f"/api/v1/deals/{deal}/messages",
            json={"content": "Offer", "message_type": "proposal", "proposed_terms": {"rate": 60}},
            headers=bob,
        )
        assert r.json()["status"] == "proposed"

        r = client.post(f"/api/v1/deals/{deal}/approve", json={"approved": True}, headers=alice)
        assert r.json()["outcome"] == "waiting"
        r = client.post(f"/api/v1/deals/{deal}/approve", json={"approved": True}, headers=bob)
        assert r.json()["status"] == "approved"

        r = client.post(f"/api/v1/deals/{deal}/start", headers=alice)
        assert r.json()["status"] == "in_progress"

        client.post(f"/api/v1/deals/{deal}/complete", json={"evidence": "Shipped"}, headers=alice)
        dup = client.post(f"/api/v1/deals/{deal}/complete", json={"evidence": "Shipped"}, headers=alice)
        assert dup.status_code == 409
        r = client.post(f"/api/v1/deals/{deal}/complete", json={"evidence": "Verified"}, headers=bob)
        assert r.json()["status"] == "completed"

        detail = client.get(f"/api/v1/deals/{deal}", headers=bob).json()
        assert detail["status"] == "completed"
        assert len(detail["approvals"]) == 2
        assert len(detail["completions"]) == 2
        assert detail["messages"][0]["content"] == "Hi"

    def test_wrong_status_is_400(self, client, deal):
        response = client.post(f"/api/v1/deals/{deal}/start", headers=as_agent("alice"))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "INVALID_DEAL_STATUS"
        assert body["details"]["allowed_statuses"] == ["approved"]

    def test_outsider_is_403(self, client, deal):
        response = client.get(f"/api/v1/deals/{deal}", headers=as_agent("mallory"))

        assert response.status_code == 403
        assert response.json()["error"] == "NOT_A_PARTICIPANT"

    def test_unknown_deal_is_404(self, client):
        response = client.get("/api/v1/deals/nope", headers=as_agent("alice"))
        assert response.status_code == 404

    def test_cancel_without_body(self, client, deal):
        response = client.post(f"/api/v1/deals/{deal}/cancel", headers=as_agent("bob"))

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_dispute_flow(self, client, deal):
        alice, bob = as_agent("alice"), as_agent("bob")
        client.post(
            f"/api/v1/deals/{deal}/messages",
            json={"content": "Offer", "message_type": "proposal", "proposed_terms": {"rate": 60}},
            headers=alice,
        )
        client.post(f"/api/v1/deals/{deal}/approve", json={"approved": True}, headers=alice)
        client.post(f"/api/v1/deals/{deal}/approve", json={"approved": True}, headers=bob)
        client.post(f"/api/v1/deals/{deal}/start", headers=alice)

        filed = client.post(f"/api/v1/deals/{deal}/dispute", json={"reason": "Late"}, headers=bob)
        assert filed.status_code == 201
        assert filed.json()["dispute"]["status"] == "open"

        resolved = client.post(
            f"/api/v1/deals/{deal}/dispute/resolve",
            json={"resolution": "resolved_refund", "note": "Refunded"},
            headers=alice,
        )
        assert resolved.status_code == 200
        assert resolved.json()["deal_status"] == "cancelled"

        listed = client.get(f"/api/v1/deals/{deal}/disputes", headers=bob).json()
        assert [d["status"] for d in listed["disputes"]] == ["resolved_refund"]


@pytest.mark.api
class TestNotificationEndpoints:

    def test_inbox_and_mark_read(self, client, deal):
        client.post(f"/api/v1/deals/{deal}/messages", json={"content": "Hi"}, headers=as_agent("alice"))

        inbox = client.get("/api/v1/notifications", headers=as_agent("bob")).json()
        assert [n["type"] for n in inbox["notifications"]] == ["message_received", "new_match"]
        assert inbox["unread_count"] == 2

        marked = client.post("/api/v1/notifications/read", headers=as_agent("bob")).json()
        assert marked["marked_read"] == 2
        unread = client.get("/api/v1/notifications?unread_only=true", headers=as_agent("bob")).json()
        assert unread["notifications"] == []


@pytest.mark.api
class TestWebhookDelivery:

    def test_delivered_after_response(self, client, deal, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_URL", WEBHOOK)

        with respx.mock(assert_all_called=False) as mock:
            route = mock.post(WEBHOOK).mock(return_value=httpx.Response(204))
            response = client.post(
                f"/api/v1/deals/{deal}/messages", json={"content": "Hi"}, headers=as_agent("alice"),
            )

        assert response.status_code == 201
        assert route.call_count == 1
        payload = json.loads(route.calls.last.request.content)
        assert payload["type"] == "message_received"
        assert payload["agent_id"] == "bob"

    def test_failed_request_announces_nothing(self, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_URL", WEBHOOK)
        app = FastAPI()
        register_exception_handlers(app)

        @app.post("/transition")
        async def transition(webhook: Optional[WebhookNotificationSink] = Depends(get_webhook_sink)):
            webhook.notify("bob", "deal_started", "m1", "alice", "Started")
            raise InvalidDealStatusException("m1", "start", "matched", ["approved"])

        with respx.mock(assert_all_called=False) as mock:
            route = mock.post(WEBHOOK).mock(return_value=httpx.Response(204))
            response = TestClient(app).post("/transition")

        assert response.status_code == 400
        assert not route.called


@pytest.mark.api
class TestExpiryEndpoints:

    def _age(self, match_id, days):
        with get_db() as db:
            match = db.query(Match).filter_by(id=match_id).one()
            match.created_at = datetime.utcnow() - timedelta(days=days)

    def test_not_configured_is_503(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_SECRET", "")

        response = client.get("/api/v1/deals/expiry")

        assert response.status_code == 503
        assert response.json()["error"] == "ADMIN_NOT_CONFIGURED"

    def test_wrong_token_is_401(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_SECRET", ADMIN_SECRET)

        response = client.post("/api/v1/deals/expiry", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 401

    def test_preview_dry_run_and_sweep(self, client, deal, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_SECRET", ADMIN_SECRET)
        admin = {"Authorization": f"Bearer {ADMIN_SECRET}"}
        self._age(deal, days=10)

        preview = client.get("/api/v1/deals/expiry?timeout_hours=168", headers=admin).json()
        assert preview["stale_count"] == 1

        dry = client.post("/api/v1/deals/expiry", json={"dry_run": True}, headers=admin).json()
        assert dry["dry_run"] is True
        assert dry["stale_deals"][0]["id"] == deal

        swept = client.post("/api/v1/deals/expiry", json={"timeout_hours": 168, "limit": 10}, headers=admin)
        assert swept.status_code == 200
        assert swept.json()["expired_count"] == 1
        assert swept.json()["expired_deals"][0]["status"] == "matched"

        detail = client.get(f"/api/v1/deals/{deal}", headers=as_agent("alice")).json()
        assert detail["status"] == "expired"

    def test_fractional_values_are_floored(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_SECRET", ADMIN_SECRET)
        admin = {"Authorization": f"Bearer {ADMIN_SECRET}"}

        dry = client.post(
            "/api/v1/deals/expiry", json={"timeout_hours": 24.9, "limit": 10.5, "dry_run": True}, headers=admin,
        )
        preview = client.get("/api/v1/deals/expiry?timeout_hours=24.9&limit=10.5", headers=admin)

        assert dry.status_code == 200
        assert dry.json()["timeout_hours"] == 24
        assert preview.status_code == 200
        assert preview.json()["timeout_hours"] == 24

    def test_out_of_range_timeout_is_400(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_SECRET", ADMIN_SECRET)

        response = client.post(
            "/api/v1/deals/expiry",
            json={"timeout_hours": 9000},
            headers={"Authorization": f"Bearer {ADMIN_SECRET}"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.api
def test_root_banner(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["api"] == "/api/v1"


@pytest.mark.api
def test_health(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
