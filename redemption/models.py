from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class CodeStatus(str, Enum):
    PENDING = "pending"
    REDEEMED = "redeemed"


class CatalogProductType(str, Enum):
    DISCOUNT = "discount"
    FREEBIE = "freebie"
    EXCLUSIVE_ACCESS = "exclusive_access"
    PHYSICAL_PRODUCT = "physical_product"


class CatalogProduct(BaseModel):
    id: UUID
    name: str
    cost: int = Field(..., gt=0)
    type: CatalogProductType
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RedemptionCode(BaseModel):
    code: str
    product_id: UUID
    user_id: UUID
    cost: int
    status: CodeStatus
    created_at: datetime
    redeemed_at: Optional[datetime] = None
    redeemed_by_admin: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)

    def can_redeem(self) -> bool:
        return self.status == CodeStatus.PENDING


class IssueCodeRequest(BaseModel):
    product_id: UUID
    user_id: UUID


class RedeemCodeRequest(BaseModel):
    admin_id: UUID


class CodeResponse(BaseModel):
    code: RedemptionCode
    balance_after: Optional[int] = None
    message: str
