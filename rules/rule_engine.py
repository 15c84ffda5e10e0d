import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ledger.config import settings
from ledger.errors import (
    CooldownActiveError,
    DailyCapExceededError,
    MonthlyCapExceededError,
    NotFoundError,
    RuleInactiveError,
    RuleRejectedError,
    ValidationError,
)
from ledger.models import TransactionResponse
from ledger.service import Ledger
from ledger.storage import MANUAL_GRANT_ACTION

logger = logging.getLogger(__name__)


class RuleKind(str, Enum):
    STANDARD = "standard"
    # No caps, no cooldown, amount chosen by whoever grants it
    MANUAL = "manual"


@dataclass
class Rule:
    action: str
    amount: int
    max_per_day: Optional[int] = None
    max_per_month: Optional[int] = None
    cooldown_minutes: int = 0
    is_active: bool = True
    description: str = ""
    kind: RuleKind = RuleKind.STANDARD

    @classmethod
    def manual(cls, action: str = MANUAL_GRANT_ACTION, description: str = "") -> "Rule":
        return cls(action=action, amount=0, description=description, kind=RuleKind.MANUAL)

    @property
    def accepts_custom_amount(self) -> bool:
        return self.kind == RuleKind.MANUAL

    def validate(self) -> None:
        if not self.action or not self.action.strip():
            raise ValidationError("Rule action is required")
        if self.amount < 0:
            raise ValidationError("Rule amount cannot be negative")
        if self.kind == RuleKind.STANDARD and self.amount == 0:
            raise ValidationError("Standard rules must grant a positive amount")
        if self.cooldown_minutes < 0:
            raise ValidationError("Cooldown cannot be negative")
        for cap in (self.max_per_day, self.max_per_month):
            if cap is not None and cap <= 0:
                raise ValidationError("Caps must be positive when set")
        if self.kind == RuleKind.MANUAL and (
            self.max_per_day is not None or self.max_per_month is not None or self.cooldown_minutes
        ):
            raise ValidationError("Manual rules cannot carry caps or a cooldown")

    def to_dict(self) -> dict:
        return {
            "action": self.action, "amount": self.amount, "description": self.description,
            "max_per_day": self.max_per_day, "max_per_month": self.max_per_month,
            "cooldown_minutes": self.cooldown_minutes, "is_active": self.is_active,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Rule":
        return cls(
            action=data["action"], amount=data.get("amount", 0),
            max_per_day=data.get("max_per_day"), max_per_month=data.get("max_per_month"),
            cooldown_minutes=data.get("cooldown_minutes", 0), is_active=data.get("is_active", True),
            description=data.get("description", ""), kind=RuleKind(data.get("kind", RuleKind.STANDARD)),
        )


class RuleRequest(BaseModel):
    """Body for creating or replacing a rule; the action comes from the URL."""
    amount: int = Field(..., ge=0)
    max_per_day: Optional[int] = None
    max_per_month: Optional[int] = None
    cooldown_minutes: int = 0
    is_active: bool = True
    description: str = ""
    kind: RuleKind = RuleKind.STANDARD

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 20,
            "max_per_day": 50,
            "cooldown_minutes": 0,
            "description": "Product review"
        }
    })

    def to_rule(self, action: str) -> Rule:
        return Rule(action=action, **self.model_dump())


def start_of_day(moment: datetime) -> datetime:
    local = moment.astimezone(settings.tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


class RuleEngine:
    def __init__(self, ledger: Ledger, clock: Optional[Callable[[], datetime]] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.clock = clock or ledger.clock

    def authorize(self, user_id: UUID, action: str) -> Rule:
        data = self.storage.get_rule(action)
        if not data:
            raise RuleInactiveError(f"No rule configured for action '{action}'", {"action": action})
        rule = Rule.from_dict(data)
        if not rule.is_active:
            raise RuleInactiveError(f"Rule '{action}' is inactive", {"action": action})

        now = self.clock()

        if rule.cooldown_minutes:
            last = self.storage.last_action_at(user_id, action)
            if last is not None:
                ready_at = last + timedelta(minutes=rule.cooldown_minutes)
                if now < ready_at:
                    raise CooldownActiveError(
                        f"Action '{action}' is cooling down",
                        {"action": action, "retry_after_seconds": int((ready_at - now).total_seconds())},
                    )

        if rule.max_per_day is not None:
            earned_today = self.storage.sum_action_amount_since(user_id, action, start_of_day(now))
            if earned_today + rule.amount > rule.max_per_day:
                raise DailyCapExceededError(
                    f"Daily limit for '{action}' reached",
                    {"action": action, "earned": earned_today, "limit": rule.max_per_day},
                )

        if rule.max_per_month is not None:
            earned_month = self.storage.sum_action_amount_since(user_id, action, start_of_month(now))
            if earned_month + rule.amount > rule.max_per_month:
                raise MonthlyCapExceededError(
                    f"Monthly limit for '{action}' reached",
                    {"action": action, "earned": earned_month, "limit": rule.max_per_month},
                )

        return rule

    def award(
        self,
        user_id: UUID,
        action: str,
        amount: Optional[int] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> TransactionResponse:
        """Authorize ``action`` for the user and credit the rule's amount.

        Both steps share the account lock, so two concurrent awards cannot
        each pass the same cap.
        """
        self.ledger.ensure_enabled()
        with self.ledger.account_lock(user_id):
            try:
                rule = self.authorize(user_id, action)
            except RuleRejectedError as e:
                logger.info("Award of %s to user %s rejected: %s", action, user_id, e)
                raise

            if amount is not None and not rule.accepts_custom_amount:
                raise ValidationError(f"Rule '{action}' grants a fixed amount of {rule.amount}")
            granted = amount if amount is not None else rule.amount

            return self.ledger.earn(
                user_id=user_id,
                action=action,
                amount=granted,
                description=description or rule.description or action,
                reference=reference,
            )

    def grant_manual(
        self, user_id: UUID, amount: int, description: str = "Admin bonus", admin_id: Optional[UUID] = None
    ) -> TransactionResponse:
        reference = f"admin:{admin_id}" if admin_id else None
        return self.award(user_id, MANUAL_GRANT_ACTION, amount=amount, description=description, reference=reference)

    # Administration

    def save_rule(self, rule: Rule) -> Rule:
        rule.validate()
        self.storage.save_rule(rule.to_dict())
        logger.info("Saved rule %s (amount=%d, active=%s)", rule.action, rule.amount, rule.is_active)
        return rule

    def delete_rule(self, action: str) -> None:
        if not self.storage.delete_rule(action):
            raise NotFoundError(f"Rule '{action}' not found")
        logger.info("Deleted rule %s", action)

    def get_rule(self, action: str) -> Rule:
        data = self.storage.get_rule(action)
        if not data:
            raise NotFoundError(f"Rule '{action}' not found")
        return Rule.from_dict(data)

    def list_rules(self) -> list[Rule]:
        rules = [Rule.from_dict(r) for r in self.storage.list_rules()]
        rules.sort(key=lambda r: r.action)
        return rules
