"""
Integration tests for the expiry sweeper.

WHAT: Test stale selection, expiry, preview and config validation
WHY: The sweep must only ever touch stale pre-approval deals
HOW: Backdate matches in in-memory SQLite and sweep with a fixed clock
"""

from datetime import datetime, timedelta

import pytest

from agentmarket.core.models import DealStatus, Match, Message, MessageType
from agentmarket.services import expiry_sweeper, match_resolver
from agentmarket.services.expiry_sweeper import validate_expiry_config
from agentmarket.utils.exceptions import ValidationException

from conftest import age_match, force_status


def new_deal(db_session, make_listing, notifier, seller, buyer, category="dev"):
    make_listing(seller, "offering", category=category, skills=["python"])
    listing = make_listing(buyer, "seeking", category=category, skills=["python"])
    match_id = match_resolver.resolve(db_session, listing.id, notifier)[0].match_id
    notifier.clear()
    return match_id


def status_of(db_session, match_id):
    return db_session.query(Match).filter_by(id=match_id).one().status


@pytest.mark.integration
class TestSweep:

    def test_stale_negotiating_deal_expires(self, db_session, make_listing, notifier):
        old = new_deal(db_session, make_listing, notifier, "alice", "bob")
        fresh = new_deal(db_session, make_listing, notifier, "carol", "dave", category="design")
        force_status(db_session, old, DealStatus.NEGOTIATING)
        age_match(db_session, old, days=10)
        age_match(db_session, fresh, days=1)

        result = expiry_sweeper.sweep(db_session, 168, 100, notifier)

        assert result.expired_count == 1
        assert result.timeout_hours == 168
        expired = result.expired_deals[0]
        assert expired.id == old
        assert expired.status == "negotiating"
        assert {expired.agent_a_id, expired.agent_b_id} == {"alice", "bob"}
        assert expired.hours_stale >= 240
        assert status_of(db_session, old) == DealStatus.EXPIRED
        assert status_of(db_session, fresh) == DealStatus.MATCHED

    def test_both_parties_notified_and_system_message(self, db_session, make_listing, notifier):
        match_id = new_deal(db_session, make_listing, notifier, "alice", "bob")
        age_match(db_session, match_id, days=8)

        expiry_sweeper.sweep(db_session, None, None, notifier)

        assert notifier.types_for("alice") == ["deal_expired"]
        assert notifier.types_for("bob") == ["deal_expired"]
        message = db_session.query(Message).filter_by(match_id=match_id).one()
        assert message.message_type == MessageType.SYSTEM
        assert "168h" in message.content

    @pytest.mark.parametrize("status", [
        DealStatus.APPROVED, DealStatus.IN_PROGRESS, DealStatus.COMPLETED,
        DealStatus.REJECTED, DealStatus.CANCELLED, DealStatus.DISPUTED,
    ])
    def test_post_approval_deals_never_expire(self, db_session, make_listing, notifier, status):
        match_id = new_deal(db_session, make_listing, notifier, "alice", "bob")
        force_status(db_session, match_id, status)
        age_match(db_session, match_id, days=365)

        result = expiry_sweeper.sweep(db_session, 1, 500, notifier)

        assert result.expired_count == 0
        assert status_of(db_session, match_id) == status
        assert notifier.events == []

    def test_sweep_is_reentrant(self, db_session, make_listing, notifier):
        match_id = new_deal(db_session, make_listing, notifier, "alice", "bob")
        age_match(db_session, match_id, days=30)

        first = expiry_sweeper.sweep(db_session, 168, 100, notifier)
        second = expiry_sweeper.sweep(db_session, 168, 100, notifier)

        assert first.expired_count == 1
        assert second.expired_count == 0

    def test_limit_takes_oldest_first(self, db_session, make_listing, notifier):
        older = new_deal(db_session, make_listing, notifier, "alice", "bob")
        newer = new_deal(db_session, make_listing, notifier, "carol", "dave", category="design")
        age_match(db_session, older, days=20)
        age_match(db_session, newer, days=10)

        result = expiry_sweeper.sweep(db_session, 168, 1, notifier)

        assert [d.id for d in result.expired_deals] == [older]
        assert status_of(db_session, newer) == DealStatus.MATCHED

    def test_fixed_clock(self, db_session, make_listing, notifier):
        match_id = new_deal(db_session, make_listing, notifier, "alice", "bob")
        later = datetime.utcnow() + timedelta(hours=200)

        result = expiry_sweeper.sweep(db_session, 168, 100, notifier, now=later)

        assert [d.id for d in result.expired_deals] == [match_id]
        assert result.swept_at == later


@pytest.mark.integration
class TestPreview:

    def test_preview_does_not_mutate(self, db_session, make_listing, notifier):
        match_id = new_deal(db_session, make_listing, notifier, "alice", "bob")
        age_match(db_session, match_id, days=10)

        preview = expiry_sweeper.preview(db_session, 168, 100)

        assert preview.stale_count == 1
        assert preview.stale_deals[0].id == match_id
        assert status_of(db_session, match_id) == DealStatus.MATCHED
        assert notifier.events == []

    def test_preview_matches_sweep_selection(self, db_session, make_listing, notifier):
        match_id = new_deal(db_session, make_listing, notifier, "alice", "bob")
        age_match(db_session, match_id, days=10)

        preview = expiry_sweeper.preview(db_session, 168, 100)
        result = expiry_sweeper.sweep(db_session, 168, 100, notifier)

        assert [d.id for d in preview.stale_deals] == [d.id for d in result.expired_deals]


@pytest.mark.unit
class TestValidateExpiryConfig:

    def test_defaults(self):
        config = validate_expiry_config()
        assert config.timeout_hours == 168
        assert config.limit == 100

    def test_fractional_values_floored(self):
        config = validate_expiry_config(24.9, 10.5)
        assert config.timeout_hours == 24
        assert config.limit == 10

    @pytest.mark.parametrize("timeout_hours,limit", [
        (0, 10),
        (8761, 10),
        (24, 0),
        (24, 501),
        ("24", 10),
        (True, 10),
    ])
    def test_out_of_range_rejected(self, timeout_hours, limit):
        with pytest.raises(ValidationException):
            validate_expiry_config(timeout_hours, limit)
