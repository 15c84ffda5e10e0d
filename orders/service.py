import logging
import re
import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional
from uuid import UUID

from ledger.config import settings
from ledger.errors import (
    AlreadyCompletedError,
    ConcurrencyConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from ledger.models import Posting, TransactionType
from ledger.service import Ledger

from .models import (
    OrderStatus,
    OrderItem,
    Order,
    OrderRewards,
    ProductRewardAttributes,
    ItemReward,
    ExpectedReward,
    ItemDiscount,
    CoinDiscountSplit,
    OrderVerification,
    CompleteOrderResponse,
)

logger = logging.getLogger(__name__)

ORDER_REWARD_ACTION = "order_reward"
ORDER_COIN_DISCOUNT_ACTION = "order_coin_discount"


def to_coins(amount: Decimal) -> int:
    coins = amount * settings.COINS_PER_CURRENCY_UNIT
    return int(coins.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def generate_order_code(length: Optional[int] = None) -> str:
    length = length or settings.ORDER_CODE_LENGTH
    return "".join(secrets.choice(string.digits) for _ in range(length))


def normalize_order_code(raw: Optional[str]) -> str:
    code = (raw or "").strip()
    if not code:
        raise ValidationError("Order code is required")
    if not re.fullmatch(rf"\d{{{settings.ORDER_CODE_LENGTH}}}", code):
        raise ValidationError(f"Order codes are {settings.ORDER_CODE_LENGTH} digits", {"code": code})
    return code


class OrderRewardEngine:
    """Order verification: cashback preview, coin discount split, completion.

    Orders move ``pending -> completed`` or ``pending -> expired`` and never
    leave a terminal state. Completion credits the buyer exactly once.
    """

    def __init__(
        self,
        ledger: Ledger,
        clock: Optional[Callable[[], datetime]] = None,
        default_coins: Optional[int] = None,
        code_factory: Optional[Callable[[], str]] = None,
    ):
        self.ledger = ledger
        self.storage = ledger.storage
        self.clock = clock or ledger.clock
        self.default_coins = settings.ORDER_DEFAULT_COINS if default_coins is None else default_coins
        self.code_factory = code_factory or generate_order_code

    # Product reward attributes

    def product_attributes(self, product_id: UUID) -> ProductRewardAttributes:
        data = self.storage.get_product_reward_attributes(product_id)
        if not data:
            logger.warning("No reward attributes for product %s, assuming 0%%", product_id)
            return ProductRewardAttributes()
        return ProductRewardAttributes(**data)

    def save_product_attributes(self, product_id: UUID, attributes: ProductRewardAttributes) -> ProductRewardAttributes:
        self.storage.save_product_reward_attributes(product_id, attributes.model_dump())
        logger.info(
            "Product %s rewards: cashback %s%%, discount %s%%",
            product_id, attributes.cashback_percentage, attributes.discount_percentage,
        )
        return attributes

    # Pure calculations

    def compute_expected_reward(self, items: list[OrderItem], default_coins: Optional[int] = None) -> ExpectedReward:
        base = self.default_coins if default_coins is None else default_coins
        per_item = []

        for item in items:
            pct = self.product_attributes(item.product_id).cashback_percentage
            cashback_amount = Decimal("0")
            cashback_coins = 0
            if pct > 0:
                cashback_amount = item.line_total * pct / 100
                cashback_coins = to_coins(cashback_amount)
            per_item.append(ItemReward(
                product_id=item.product_id,
                product_name=item.product_name,
                line_total=item.line_total,
                cashback_percentage=pct,
                cashback_amount=cashback_amount,
                cashback_coins=cashback_coins,
            ))

        cashback_total = sum(i.cashback_coins for i in per_item)
        return ExpectedReward(
            default_coins=base,
            cashback_coins=cashback_total,
            total_coins=base + cashback_total,
            per_item=per_item,
        )

    def compute_coin_discount_split(self, items: list[OrderItem], user_balance: int) -> CoinDiscountSplit:
        # List order decides who gets coins first when the balance runs short
        remaining = max(user_balance, 0)
        per_item = []
        total_discount = Decimal("0")
        total_coins_used = 0

        for item in items:
            pct = self.product_attributes(item.product_id).discount_percentage
            max_discount = Decimal("0")
            coins_needed = 0
            coins_used = 0
            discount_applied = Decimal("0")

            if pct > 0 and remaining > 0:
                max_discount = item.line_total * pct / 100
                coins_needed = to_coins(max_discount)
                coins_used = min(remaining, coins_needed)
                discount_applied = Decimal(coins_used) / settings.COINS_PER_CURRENCY_UNIT
                remaining -= coins_used
                total_coins_used += coins_used
                total_discount += discount_applied

            per_item.append(ItemDiscount(
                product_id=item.product_id,
                product_name=item.product_name,
                line_total=item.line_total,
                discount_percentage=pct,
                max_discount=max_discount,
                coins_needed=coins_needed,
                coins_used=coins_used,
                discount_applied=discount_applied,
            ))

        subtotal = sum((item.line_total for item in items), Decimal("0"))
        return CoinDiscountSplit(
            subtotal=subtotal,
            final_cash_amount=subtotal - total_discount,
            total_discount_amount=total_discount,
            total_coins_used=total_coins_used,
            per_item=per_item,
        )

    # Lifecycle

    def create_order(
        self, user_id: Optional[UUID], items: list[OrderItem], ttl: Optional[timedelta] = None
    ) -> Order:
        if not items:
            raise ValidationError("An order needs at least one item")

        now = self.clock()
        ttl = ttl or timedelta(hours=settings.ORDER_CODE_TTL_HOURS)
        total = sum((item.line_total for item in items), Decimal("0"))

        for attempt in range(1, settings.CODE_GENERATION_ATTEMPTS + 1):
            order = Order(
                code=self.code_factory(),
                user_id=user_id,
                items=items,
                total_amount=total,
                status=OrderStatus.PENDING,
                created_at=now,
                expires_at=now + ttl,
            )
            if self.storage.create_order(order.model_dump()):
                logger.info("Created order %s for user %s (total %s)", order.code, user_id, total)
                return order
            logger.warning("Order code collision on attempt %d, retrying", attempt)

        raise ConcurrencyConflictError(
            f"Could not generate a unique order code after {settings.CODE_GENERATION_ATTEMPTS} attempts"
        )

    def get_order(self, code: str) -> Order:
        value = normalize_order_code(code)
        data = self.storage.get_order_by_code(value)
        if not data:
            raise NotFoundError(f"Order {value} not found", {"code": value})
        return Order(**data)

    def verify_order(self, code: str) -> OrderVerification:
        order = self.get_order(code)
        effective = order.status
        if order.status == OrderStatus.PENDING and order.is_overdue(self.clock()):
            effective = OrderStatus.EXPIRED
        return OrderVerification(
            order=order,
            effective_status=effective,
            expected_reward=self.compute_expected_reward(order.items),
        )

    def complete(
        self, code: str, admin_id: Optional[UUID] = None, apply_coin_discount: bool = False
    ) -> CompleteOrderResponse:
        self.ledger.ensure_enabled()
        order = self.get_order(code)
        self._ensure_pending(order)

        if order.user_id is None:
            return self._complete_guest_order(order, admin_id)

        # Every status change of a buyer's order holds the buyer's account lock,
        # so the order stays pending between this check and the transition below
        with self.ledger.account_lock(order.user_id):
            order = self.get_order(order.code)
            self._ensure_pending(order)
            now = self.clock()
            self._expire_if_overdue(order, now)

            reward = self.compute_expected_reward(order.items)
            coins_used = 0
            discount = Decimal("0")
            if apply_coin_discount:
                split = self.compute_coin_discount_split(order.items, self.ledger.get_balance(order.user_id))
                coins_used = split.total_coins_used
                discount = split.total_discount_amount

            postings = []
            if coins_used:
                postings.append(Posting(
                    action=ORDER_COIN_DISCOUNT_ACTION,
                    type=TransactionType.SPENT,
                    amount=coins_used,
                    description=f"Coin discount on order {order.code}",
                    reference=order.code,
                ))
            if reward.total_coins:
                postings.append(Posting(
                    action=ORDER_REWARD_ACTION,
                    type=TransactionType.EARNED,
                    amount=reward.total_coins,
                    description=f"Reward for order {order.code}",
                    reference=order.code,
                    metadata={"cashback_coins": reward.cashback_coins, "default_coins": reward.default_coins},
                ))
            if postings:
                self.ledger.post(order.user_id, postings)

            rewards = OrderRewards(
                coins=reward.total_coins,
                default_coins=reward.default_coins,
                cashback_coins=reward.cashback_coins,
                coins_used=coins_used,
                discount_amount=discount,
            )
            updated = self._transition_completed(order.code, rewards, now, admin_id)
            balance_after = self.ledger.get_balance(order.user_id)

        logger.info(
            "Order %s completed by %s: +%d coins, -%d coins", order.code, admin_id, reward.total_coins, coins_used
        )
        return CompleteOrderResponse(
            order=updated,
            coins_awarded=reward.total_coins,
            coins_used=coins_used,
            balance_after=balance_after,
            message=f"Order completed, {reward.total_coins} UTI coins credited",
        )

    def expire_overdue(self) -> list[str]:
        now = self.clock()
        expired = []
        for data in self.storage.list_pending_orders():
            order = Order(**data)
            if not order.is_overdue(now):
                continue
            if order.user_id is None:
                changed = self.storage.set_order_expired(order.code, now)
            else:
                with self.ledger.account_lock(order.user_id):
                    changed = self.storage.set_order_expired(order.code, now)
            if changed is not None:
                expired.append(order.code)
        if expired:
            logger.info("Expired %d overdue orders", len(expired))
        return expired

    def list_user_orders(self, user_id: UUID) -> list[Order]:
        orders = [Order(**o) for o in self.storage.list_orders_by_user(user_id)]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    def _complete_guest_order(self, order: Order, admin_id: Optional[UUID]) -> CompleteOrderResponse:
        now = self.clock()
        self._expire_if_overdue(order, now)
        logger.warning("Order %s has no buyer account, completing without coins", order.code)
        rewards = OrderRewards(coins=0, default_coins=0, cashback_coins=0)
        updated = self._transition_completed(order.code, rewards, now, admin_id)
        return CompleteOrderResponse(order=updated, coins_awarded=0, coins_used=0, message="Order completed")

    def _expire_if_overdue(self, order: Order, now: datetime) -> None:
        if not order.is_overdue(now):
            return
        if self.storage.set_order_expired(order.code, now) is not None:
            logger.info("Order %s expired at %s", order.code, order.expires_at)
        raise ExpiredError(f"Order {order.code} expired", {"code": order.code, "expires_at": order.expires_at.isoformat()})

    def _transition_completed(
        self, code: str, rewards: OrderRewards, now: datetime, admin_id: Optional[UUID]
    ) -> Order:
        data = self.storage.set_order_completed(code, rewards.model_dump(), now, admin_id)
        if data is None:
            # Someone else moved the order first
            self._ensure_pending(self.get_order(code))
            raise ConcurrencyConflictError(f"Order {code} changed while completing", {"code": code})
        return Order(**data)

    @staticmethod
    def _ensure_pending(order: Order) -> None:
        if order.status == OrderStatus.COMPLETED:
            raise AlreadyCompletedError(
                f"Order {order.code} was already completed",
                {
                    "code": order.code,
                    "completed_at": order.completed_at.isoformat() if order.completed_at else None,
                    "coins": order.rewards_given.coins if order.rewards_given else None,
                },
            )
        if order.status == OrderStatus.EXPIRED:
            raise ExpiredError(f"Order {order.code} expired", {"code": order.code})
