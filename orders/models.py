from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, model_validator


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class OrderItem(BaseModel):
    product_id: UUID
    product_name: str
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)
    line_total: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def fill_line_total(self) -> "OrderItem":
        if self.line_total is None:
            self.line_total = self.unit_price * self.quantity
        return self


class ProductRewardAttributes(BaseModel):
    cashback_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class OrderRewards(BaseModel):
    coins: int
    default_coins: int
    cashback_coins: int
    coins_used: int = 0
    discount_amount: Decimal = Decimal("0")


class Order(BaseModel):
    code: str
    user_id: Optional[UUID] = None
    items: list[OrderItem]
    total_amount: Decimal
    status: OrderStatus
    created_at: datetime
    expires_at: datetime
    completed_at: Optional[datetime] = None
    completed_by: Optional[UUID] = None
    rewards_given: Optional[OrderRewards] = None

    model_config = ConfigDict(from_attributes=True)

    def is_overdue(self, now: datetime) -> bool:
        return now > self.expires_at


class ItemReward(BaseModel):
    product_id: UUID
    product_name: str
    line_total: Decimal
    cashback_percentage: Decimal
    cashback_amount: Decimal
    cashback_coins: int


class ExpectedReward(BaseModel):
    default_coins: int
    cashback_coins: int
    total_coins: int
    per_item: list[ItemReward]


class ItemDiscount(BaseModel):
    product_id: UUID
    product_name: str
    line_total: Decimal
    discount_percentage: Decimal
    max_discount: Decimal
    coins_needed: int
    coins_used: int
    discount_applied: Decimal


class CoinDiscountSplit(BaseModel):
    subtotal: Decimal
    final_cash_amount: Decimal
    total_discount_amount: Decimal
    total_coins_used: int
    per_item: list[ItemDiscount]


class CreateOrderRequest(BaseModel):
    user_id: Optional[UUID] = None
    items: list[OrderItem] = Field(..., min_length=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "items": [{
                "product_id": "33333333-3333-3333-3333-333333333333",
                "product_name": "Controle DualSense",
                "quantity": 1,
                "unit_price": 100.00
            }]
        }
    })


class CompleteOrderRequest(BaseModel):
    admin_id: Optional[UUID] = None
    apply_coin_discount: bool = False


class OrderVerification(BaseModel):
    order: Order
    effective_status: OrderStatus
    expected_reward: ExpectedReward


class CompleteOrderResponse(BaseModel):
    order: Order
    coins_awarded: int
    coins_used: int
    balance_after: Optional[int] = None
    message: str
