"""
Daily streak bonus.

``amount_for_day`` is the pure progression curve. ``DailyBonusService``
tracks one claim per daily period (periods roll over at the configured reset
hour in the business timezone) and feeds the streak day into the curve.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from ledger.config import settings
from ledger.errors import CooldownActiveError, ValidationError
from ledger.models import TransactionResponse
from ledger.service import Ledger

logger = logging.getLogger(__name__)

DAILY_BONUS_ACTION = "daily_login"


class IncrementType(str, Enum):
    CALCULATED = "calculated"
    FIXED = "fixed"


class DailyBonusConfig(BaseModel):
    base_amount: int = Field(default=10, ge=1)
    max_amount: int = Field(default=100, ge=1)
    streak_days: int = Field(default=7, ge=1)
    increment_type: IncrementType = IncrementType.CALCULATED
    fixed_increment: int = Field(default=10, ge=0)

    @model_validator(mode="after")
    def check_range(self) -> "DailyBonusConfig":
        if self.max_amount < self.base_amount:
            raise ValueError("max_amount must be greater than or equal to base_amount")
        return self


class ProgressionStep(BaseModel):
    day: int
    amount: int


def amount_for_day(day: int, config: DailyBonusConfig) -> int:
    if day < 1:
        raise ValidationError(f"Streak day is 1-based, got {day}")

    position = (day - 1) % config.streak_days + 1

    if config.increment_type == IncrementType.FIXED:
        amount = min(config.base_amount + (position - 1) * config.fixed_increment, config.max_amount)
    elif config.streak_days > 1:
        step = Decimal(config.max_amount - config.base_amount) * (position - 1) / (config.streak_days - 1)
        amount = config.base_amount + int(step.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        amount = config.base_amount

    return max(amount, config.base_amount)


def progression(config: DailyBonusConfig) -> list[ProgressionStep]:
    return [
        ProgressionStep(day=day, amount=amount_for_day(day, config))
        for day in range(1, config.streak_days + 1)
    ]


class DailyBonusStatus(BaseModel):
    user_id: UUID
    can_claim: bool
    current_streak: int
    next_streak_day: int
    next_bonus_amount: int
    period_start: datetime
    next_reset: datetime
    last_claim: Optional[datetime] = None
    total_streak_days: int


class DailyBonusClaim(BaseModel):
    id: UUID
    user_id: UUID
    claimed_at: datetime
    period_start: datetime
    streak: int
    bonus_received: int


class ClaimResponse(BaseModel):
    claim: DailyBonusClaim
    transaction: TransactionResponse
    message: str


def period_start_for(moment: datetime) -> datetime:
    local = moment.astimezone(settings.tz)
    reset = local.replace(hour=settings.DAILY_RESET_HOUR, minute=0, second=0, microsecond=0)
    if local >= reset:
        return reset
    return reset - timedelta(days=1)


class DailyBonusService:
    def __init__(self, ledger: Ledger, clock: Optional[Callable[[], datetime]] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.clock = clock or ledger.clock

    def get_config(self) -> DailyBonusConfig:
        return DailyBonusConfig(**self.storage.get_daily_bonus_config())

    def save_config(self, config: DailyBonusConfig) -> DailyBonusConfig:
        self.storage.save_daily_bonus_config(config.model_dump(mode="json"))
        logger.info("Daily bonus config updated: %s", config.model_dump(mode="json"))
        return config

    def status(self, user_id: UUID) -> DailyBonusStatus:
        config = self.get_config()
        now = self.clock()
        period_start = period_start_for(now)
        last = self.storage.get_last_bonus_claim(user_id)

        claimed_this_period = bool(last) and last["period_start"] == period_start
        current_streak = self._live_streak(last, period_start)
        next_day = current_streak + 1

        return DailyBonusStatus(
            user_id=user_id,
            can_claim=not claimed_this_period,
            current_streak=current_streak,
            next_streak_day=next_day,
            next_bonus_amount=amount_for_day(next_day, config),
            period_start=period_start,
            next_reset=period_start + timedelta(days=1),
            last_claim=last["claimed_at"] if last else None,
            total_streak_days=config.streak_days,
        )

    def claim(self, user_id: UUID) -> ClaimResponse:
        self.ledger.ensure_enabled()
        config = self.get_config()

        with self.ledger.account_lock(user_id):
            now = self.clock()
            period_start = period_start_for(now)
            last = self.storage.get_last_bonus_claim(user_id)

            if last and last["period_start"] == period_start:
                next_reset = period_start + timedelta(days=1)
                raise CooldownActiveError(
                    "Daily bonus already claimed for this period",
                    {
                        "action": DAILY_BONUS_ACTION,
                        "retry_after_seconds": int((next_reset - now).total_seconds()),
                    },
                )

            streak = self._live_streak(last, period_start) + 1
            amount = amount_for_day(streak, config)

            claim_data = {
                "id": uuid4(),
                "user_id": user_id,
                "claimed_at": now,
                "period_start": period_start,
                "streak": streak,
                "bonus_received": amount,
            }
            claim = DailyBonusClaim(**claim_data)
            transaction = self.ledger.earn(
                user_id=user_id,
                action=DAILY_BONUS_ACTION,
                amount=amount,
                description=f"Daily Bonus - Streak {streak}",
                metadata={"streak": streak, "claim_id": str(claim.id)},
            )
            self.storage.record_bonus_claim(claim_data)

        logger.info("User %s claimed daily bonus: %d coins, streak %d", user_id, amount, streak)
        return ClaimResponse(
            claim=claim,
            transaction=transaction,
            message=f"Daily bonus claimed! +{amount} coins",
        )

    @staticmethod
    def _live_streak(last: Optional[dict], period_start: datetime) -> int:
        # A streak survives only if the last claim was this period or the one before
        if not last:
            return 0
        if last["period_start"] == period_start:
            return last["streak"]
        if last["period_start"] == period_start - timedelta(days=1):
            return last["streak"]
        return 0
