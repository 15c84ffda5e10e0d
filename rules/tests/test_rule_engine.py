"""
Unit Tests for the Rule Engine

Tests cover:
1. Authorization order: inactive, cooldown, daily cap, monthly cap
2. Awards credit the ledger
3. Manual admin grants
4. Rule administration
"""

import threading
import pytest
from uuid import UUID

from ledger.errors import (
    CooldownActiveError,
    DailyCapExceededError,
    MonthlyCapExceededError,
    NotFoundError,
    RuleInactiveError,
    ValidationError,
)
from ledger.service import Ledger
from ledger.storage import MANUAL_GRANT_ACTION
from rules.rule_engine import Rule, RuleEngine, RuleKind


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
ADMIN_ID = UUID("99999999-9999-9999-9999-999999999999")


def build_engine(clock, *rules: Rule) -> RuleEngine:
    engine = RuleEngine(Ledger(clock=clock))
    for rule in rules:
        engine.save_rule(rule)
    return engine


class TestAuthorization:
    """Tests for the authorization checks."""

    def test_unknown_action_is_inactive(self, clock):
        """Test that an action without a rule is rejected."""
        engine = build_engine(clock)

        with pytest.raises(RuleInactiveError):
            engine.authorize(USER_ID, "share_product")

    def test_inactive_rule_rejected(self, clock):
        """Test that a switched-off rule is rejected."""
        engine = build_engine(clock, Rule(action="share_product", amount=5, is_active=False))

        with pytest.raises(RuleInactiveError):
            engine.authorize(USER_ID, "share_product")

    def test_daily_cap(self, clock):
        """Test that the third award of 20 against a cap of 50 fails."""
        engine = build_engine(clock, Rule(action="product_review", amount=20, max_per_day=50))

        engine.award(USER_ID, "product_review")
        engine.award(USER_ID, "product_review")
        with pytest.raises(DailyCapExceededError) as exc_info:
            engine.award(USER_ID, "product_review")

        assert exc_info.value.details["earned"] == 40
        assert engine.ledger.get_balance(USER_ID) == 40

    def test_daily_cap_resets_next_local_day(self, clock):
        """Test that the cap window follows the Sao Paulo calendar day."""
        engine = build_engine(clock, Rule(action="product_review", amount=20, max_per_day=40))
        engine.award(USER_ID, "product_review")
        engine.award(USER_ID, "product_review")

        # 02:30 UTC on the 11th is still the 10th in Sao Paulo
        clock.advance(hours=11, minutes=30)
        with pytest.raises(DailyCapExceededError):
            engine.award(USER_ID, "product_review")

        clock.advance(hours=1)
        engine.award(USER_ID, "product_review")
        assert engine.ledger.get_balance(USER_ID) == 60

    def test_monthly_cap(self, clock):
        """Test the monthly cap across several days."""
        engine = build_engine(clock, Rule(action="share_product", amount=30, max_per_day=30, max_per_month=60))
        engine.award(USER_ID, "share_product")
        clock.advance(days=1)
        engine.award(USER_ID, "share_product")
        clock.advance(days=1)

        with pytest.raises(MonthlyCapExceededError):
            engine.award(USER_ID, "share_product")

    def test_monthly_cap_resets_with_new_month(self, clock):
        """Test that a new calendar month reopens the monthly cap."""
        engine = build_engine(clock, Rule(action="share_product", amount=30, max_per_month=30))
        engine.award(USER_ID, "share_product")

        clock.advance(days=25)
        engine.award(USER_ID, "share_product")

        assert engine.ledger.get_balance(USER_ID) == 60

    def test_cooldown(self, clock):
        """Test that a cooldown blocks until it has elapsed."""
        engine = build_engine(clock, Rule(action="watch_video", amount=5, cooldown_minutes=10))
        engine.award(USER_ID, "watch_video")

        clock.advance(minutes=9)
        with pytest.raises(CooldownActiveError) as exc_info:
            engine.award(USER_ID, "watch_video")
        assert exc_info.value.details["retry_after_seconds"] == 60

        clock.advance(minutes=1)
        engine.award(USER_ID, "watch_video")
        assert engine.ledger.get_balance(USER_ID) == 10

    def test_cooldown_checked_before_caps(self, clock):
        """Test the check order when both cooldown and cap would fail."""
        engine = build_engine(clock, Rule(action="watch_video", amount=5, cooldown_minutes=10, max_per_day=5))
        engine.award(USER_ID, "watch_video")

        with pytest.raises(CooldownActiveError):
            engine.award(USER_ID, "watch_video")

    def test_authorize_does_not_mutate(self, clock):
        """Test that authorize alone never touches the ledger."""
        engine = build_engine(clock, Rule(action="product_review", amount=20))

        rule = engine.authorize(USER_ID, "product_review")

        assert rule.amount == 20
        assert engine.ledger.get_balance(USER_ID) == 0

    def test_concurrent_awards_respect_daily_cap(self, clock):
        """Test that racing awards cannot overshoot the cap."""
        engine = build_engine(clock, Rule(action="product_review", amount=20, max_per_day=100))
        rejected = []

        def award():
            try:
                engine.award(USER_ID, "product_review")
            except DailyCapExceededError:
                rejected.append(1)

        threads = [threading.Thread(target=award) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert engine.ledger.get_balance(USER_ID) == 100
        assert len(rejected) == 7


class TestAward:
    """Tests for crediting through rules."""

    def test_award_uses_rule_amount_and_description(self, clock):
        """Test the transaction written by an award."""
        engine = build_engine(clock, Rule(action="product_review", amount=15, description="Product review"))

        response = engine.award(USER_ID, "product_review", reference="review-1")

        assert response.transaction.amount == 15
        assert response.transaction.action == "product_review"
        assert response.transaction.description == "Product review"
        assert response.transaction.reference == "review-1"

    def test_standard_rule_rejects_custom_amount(self, clock):
        """Test that callers cannot override a fixed rule amount."""
        engine = build_engine(clock, Rule(action="product_review", amount=15))

        with pytest.raises(ValidationError):
            engine.award(USER_ID, "product_review", amount=1000)

        assert engine.ledger.get_balance(USER_ID) == 0


class TestManualGrant:
    """Tests for administrator-granted bonuses."""

    def test_manual_grant_has_no_caps(self, clock):
        """Test that repeated manual grants are never capped."""
        engine = build_engine(clock)

        for _ in range(5):
            engine.grant_manual(USER_ID, 1000, "Tournament prize", admin_id=ADMIN_ID)

        assert engine.ledger.get_balance(USER_ID) == 5000

    def test_manual_grant_records_admin(self, clock):
        """Test the audit fields of a manual grant."""
        engine = build_engine(clock)

        response = engine.grant_manual(USER_ID, 250, "Apology bonus", admin_id=ADMIN_ID)

        assert response.transaction.action == MANUAL_GRANT_ACTION
        assert response.transaction.reference == f"admin:{ADMIN_ID}"
        assert response.transaction.description == "Apology bonus"

    def test_manual_grant_requires_positive_amount(self, clock):
        """Test that a zero manual grant is rejected."""
        engine = build_engine(clock)

        with pytest.raises(ValidationError):
            engine.grant_manual(USER_ID, 0)

    def test_deactivated_manual_rule_blocks_grants(self, clock):
        """Test that the manual rule obeys its active flag like any other."""
        manual = Rule.manual(description="Bonus granted by an administrator")
        manual.is_active = False
        engine = build_engine(clock, manual)

        with pytest.raises(RuleInactiveError):
            engine.grant_manual(USER_ID, 100)


class TestRuleAdministration:
    """Tests for creating, listing and deleting rules."""

    def test_list_rules_sorted(self, clock):
        """Test that rules come back sorted by action."""
        engine = build_engine(
            clock,
            Rule(action="watch_video", amount=5),
            Rule(action="daily_visit", amount=5),
        )

        actions = [r.action for r in engine.list_rules()]

        assert actions == ["admin_manual", "daily_visit", "watch_video"]

    def test_update_rule(self, clock):
        """Test that saving again replaces the rule."""
        engine = build_engine(clock, Rule(action="product_review", amount=15))

        engine.save_rule(Rule(action="product_review", amount=25, max_per_day=100))

        rule = engine.get_rule("product_review")
        assert rule.amount == 25
        assert rule.max_per_day == 100

    def test_delete_rule(self, clock):
        """Test deleting a rule and deleting it again."""
        engine = build_engine(clock, Rule(action="product_review", amount=15))

        engine.delete_rule("product_review")

        with pytest.raises(NotFoundError):
            engine.get_rule("product_review")
        with pytest.raises(NotFoundError):
            engine.delete_rule("product_review")

    @pytest.mark.parametrize("rule", [
        Rule(action="", amount=5),
        Rule(action="x", amount=0),
        Rule(action="x", amount=-1),
        Rule(action="x", amount=5, max_per_day=0),
        Rule(action="x", amount=5, cooldown_minutes=-1),
        Rule(action="x", amount=0, max_per_day=10, kind=RuleKind.MANUAL),
    ])
    def test_invalid_rules_rejected(self, clock, rule):
        """Test rule validation."""
        engine = build_engine(clock)

        with pytest.raises(ValidationError):
            engine.save_rule(rule)

    def test_round_trip_through_storage(self):
        """Test that every field survives to_dict/from_dict."""
        rule = Rule(
            action="share_product", amount=10, max_per_day=30, max_per_month=300,
            cooldown_minutes=15, is_active=False, description="Share", kind=RuleKind.STANDARD,
        )

        assert Rule.from_dict(rule.to_dict()) == rule


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
