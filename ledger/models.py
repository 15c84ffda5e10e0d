from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class TransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"


class CoinAccount(BaseModel):
    user_id: UUID
    balance: int = 0
    total_earned: int = 0
    total_spent: int = 0
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def is_consistent(self) -> bool:
        return self.balance == self.total_earned - self.total_spent


class CoinTransaction(BaseModel):
    id: UUID
    user_id: UUID
    action: str
    type: TransactionType
    amount: int
    balance_after: int
    description: str
    reference: Optional[str] = None
    created_at: datetime
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class EarnRequest(BaseModel):
    action: str = Field(..., description="Rule action that grants the coins")
    amount: Optional[int] = Field(default=None, gt=0, description="Only honoured by manual rules")
    description: Optional[str] = None
    reference: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "action": "product_review",
            "description": "Review of order 1234"
        }
    })


class ManualGrantRequest(BaseModel):
    amount: int = Field(..., gt=0)
    description: str = Field(default="Admin bonus")
    admin_id: Optional[UUID] = None


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[CoinTransaction]
    total_count: int
    current_balance: int


class TransactionResponse(BaseModel):
    account: CoinAccount
    transaction: CoinTransaction
    message: str


class Posting(BaseModel):
    """One leg of a multi-step ledger update applied with ``Ledger.post``."""
    action: str
    type: TransactionType
    amount: int
    description: str
    reference: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
