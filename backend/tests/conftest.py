"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and shared fixtures
WHY: Enable test organization, filtering, and shared test utilities
HOW: Point the app at in-memory SQLite before import, define markers and fixtures
"""

import os
import tempfile
from datetime import datetime, timedelta

# Must be set before agentmarket.core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "agentmarket-tests", "app.log")
os.environ["WEBHOOK_URL"] = ""
os.environ["ADMIN_SECRET"] = ""

import pytest

from agentmarket.core.database import Base, engine, SessionLocal
from agentmarket.core.models import Match, DealStatus
from agentmarket.services import listing_store, match_resolver


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "api: HTTP tests through the FastAPI app"
    )


class RecordingNotifier:
    """Notification sink that keeps every call for assertions."""

    def __init__(self):
        self.events = []

    def notify(self, agent_id, type, match_id, from_agent_id, summary):
        self.events.append({
            "agent_id": agent_id,
            "type": type,
            "match_id": match_id,
            "from_agent_id": from_agent_id,
            "summary": summary,
        })

    def types_for(self, agent_id):
        return [e["type"] for e in self.events if e["agent_id"] == agent_id]

    def clear(self):
        self.events.clear()


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database for each test.

    WHAT: Setup and teardown test database
    WHY: Ensure test isolation
    HOW: Create all tables before the test, drop them after
    """
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_listing(db_session):
    """Factory creating listings through the listing store."""

    def _make(agent_id, side, category="dev", description=None, **params):
        return listing_store.create_listing(
            db_session, agent_id, side, category, params, description=description
        ).listing

    return _make


@pytest.fixture
def matched_deal(db_session, make_listing, notifier):
    """
    A fresh `matched` deal between alice (offering) and bob (seeking).

    Returns:
        (match_id, "alice", "bob")
    """
    make_listing("alice", "offering", skills=["react", "typescript"], rate_min=50, rate_max=70)
    bob = make_listing("bob", "seeking", skills=["react"], rate_min=40, rate_max=60)
    results = match_resolver.resolve(db_session, bob.id, notifier)
    assert len(results) == 1
    notifier.clear()
    return results[0].match_id, "alice", "bob"


def age_match(session, match_id, days=0, hours=0):
    """Backdate a match's created_at."""
    match = session.query(Match).filter_by(id=match_id).one()
    match.created_at = datetime.utcnow() - timedelta(days=days, hours=hours)
    session.flush()
    return match


def force_status(session, match_id, status: DealStatus):
    """Put a match directly into a status, bypassing the state machine."""
    match = session.query(Match).filter_by(id=match_id).one()
    match.status = status
    session.flush()
    return match
