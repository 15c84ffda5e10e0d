import logging
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from orders.models import (
    CreateOrderRequest, CompleteOrderRequest, Order, OrderVerification,
    CompleteOrderResponse, CoinDiscountSplit, ProductRewardAttributes,
)
from orders.service import OrderRewardEngine
from redemption.models import (
    CatalogProduct, IssueCodeRequest, RedeemCodeRequest, RedemptionCode, CodeResponse,
)
from redemption.service import RedemptionCodeManager
from rules.daily_bonus import (
    DailyBonusConfig, DailyBonusService, DailyBonusStatus, ClaimResponse, ProgressionStep, progression,
)
from rules.rule_engine import Rule, RuleEngine, RuleRequest

from .config import settings
from .errors import CoinEngineError, ErrorKind
from .models import (
    CoinAccount, EarnRequest, ManualGrantRequest, LedgerHistoryResponse, TransactionResponse,
)
from .service import Ledger
from .storage import InMemoryStorage

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_REDEEMED: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_COMPLETED: status.HTTP_409_CONFLICT,
    ErrorKind.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.INSUFFICIENT_BALANCE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.COOLDOWN_ACTIVE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.DAILY_CAP_EXCEEDED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.MONTHLY_CAP_EXCEEDED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.RULE_INACTIVE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.OUT_OF_STOCK: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.SYSTEM_DISABLED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class SystemSwitchRequest(BaseModel):
    enabled: bool


app = FastAPI(
    title="UTI Coins API",
    description="Loyalty coin ledger, earn rules, daily bonus, reward codes and order verification",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

storage = InMemoryStorage()
ledger = Ledger(storage)
rule_engine = RuleEngine(ledger)
daily_bonus_service = DailyBonusService(ledger)
code_manager = RedemptionCodeManager(ledger)
order_engine = OrderRewardEngine(ledger)


@app.exception_handler(CoinEngineError)
async def coin_engine_error_handler(request: Request, exc: CoinEngineError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind.value, exc.message)
    return JSONResponse(status_code=ERROR_STATUS[exc.kind], content=exc.to_dict())


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "uti-coins", "enabled": storage.is_system_enabled()}


@app.put("/system", tags=["System"])
def switch_system(request: SystemSwitchRequest):
    storage.set_system_enabled(request.enabled)
    logger.warning("UTI Coins system %s", "enabled" if request.enabled else "disabled")
    return {"enabled": request.enabled}


# Ledger

@app.get("/users/{user_id}/balance", response_model=CoinAccount, tags=["Ledger"])
def get_user_balance(user_id: UUID) -> CoinAccount:
    return ledger.get_account(user_id)


@app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Ledger"])
def get_user_ledger(user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
    return ledger.get_history(user_id, limit, offset)


@app.post("/users/{user_id}/earn", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED, tags=["Ledger"])
def earn_coins(user_id: UUID, request: EarnRequest) -> TransactionResponse:
    return rule_engine.award(user_id, request.action, request.amount, request.description, request.reference)


@app.post("/users/{user_id}/manual-grant", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED, tags=["Ledger"])
def manual_grant(user_id: UUID, request: ManualGrantRequest) -> TransactionResponse:
    return rule_engine.grant_manual(user_id, request.amount, request.description, request.admin_id)


# Rules

@app.get("/rules", response_model=list[Rule], tags=["Rules"])
def list_rules() -> list[Rule]:
    return rule_engine.list_rules()


@app.put("/rules/{action}", response_model=Rule, tags=["Rules"])
def save_rule(action: str, request: RuleRequest) -> Rule:
    return rule_engine.save_rule(request.to_rule(action))


@app.delete("/rules/{action}", status_code=status.HTTP_204_NO_CONTENT, tags=["Rules"])
def delete_rule(action: str) -> None:
    rule_engine.delete_rule(action)


# Daily bonus

@app.get("/daily-bonus/config", response_model=DailyBonusConfig, tags=["Daily bonus"])
def get_daily_bonus_config() -> DailyBonusConfig:
    return daily_bonus_service.get_config()


@app.put("/daily-bonus/config", response_model=DailyBonusConfig, tags=["Daily bonus"])
def save_daily_bonus_config(config: DailyBonusConfig) -> DailyBonusConfig:
    return daily_bonus_service.save_config(config)


@app.get("/daily-bonus/progression", response_model=list[ProgressionStep], tags=["Daily bonus"])
def get_daily_bonus_progression() -> list[ProgressionStep]:
    return progression(daily_bonus_service.get_config())


@app.get("/users/{user_id}/daily-bonus", response_model=DailyBonusStatus, tags=["Daily bonus"])
def get_daily_bonus_status(user_id: UUID) -> DailyBonusStatus:
    return daily_bonus_service.status(user_id)


@app.post("/users/{user_id}/daily-bonus/claim", response_model=ClaimResponse, tags=["Daily bonus"])
def claim_daily_bonus(user_id: UUID) -> ClaimResponse:
    return daily_bonus_service.claim(user_id)


# Reward catalog and redemption codes

@app.put("/catalog/{product_id}", response_model=CatalogProduct, tags=["Codes"])
def save_catalog_product(product_id: UUID, product: CatalogProduct) -> CatalogProduct:
    product.id = product_id
    return code_manager.save_product(product)


@app.post("/codes", response_model=CodeResponse, status_code=status.HTTP_201_CREATED, tags=["Codes"])
def issue_code(request: IssueCodeRequest) -> CodeResponse:
    return code_manager.issue(request.product_id, request.user_id)


@app.get("/codes/{code}", response_model=RedemptionCode, tags=["Codes"])
def verify_code(code: str) -> RedemptionCode:
    return code_manager.verify(code)


@app.post("/codes/{code}/redeem", response_model=CodeResponse, tags=["Codes"])
def redeem_code(code: str, request: RedeemCodeRequest) -> CodeResponse:
    return code_manager.redeem(code, request.admin_id)


@app.get("/users/{user_id}/codes", response_model=list[RedemptionCode], tags=["Codes"])
def list_user_codes(user_id: UUID) -> list[RedemptionCode]:
    return code_manager.list_user_codes(user_id)


# Orders

@app.put("/products/{product_id}/rewards", response_model=ProductRewardAttributes, tags=["Orders"])
def save_product_rewards(product_id: UUID, attributes: ProductRewardAttributes) -> ProductRewardAttributes:
    return order_engine.save_product_attributes(product_id, attributes)


@app.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED, tags=["Orders"])
def create_order(request: CreateOrderRequest) -> Order:
    return order_engine.create_order(request.user_id, request.items)


@app.get("/orders/{code}", response_model=OrderVerification, tags=["Orders"])
def verify_order(code: str) -> OrderVerification:
    return order_engine.verify_order(code)


@app.get("/orders/{code}/coin-split", response_model=CoinDiscountSplit, tags=["Orders"])
def get_coin_split(code: str) -> CoinDiscountSplit:
    order = order_engine.get_order(code)
    balance = ledger.get_balance(order.user_id) if order.user_id else 0
    return order_engine.compute_coin_discount_split(order.items, balance)


@app.post("/orders/{code}/complete", response_model=CompleteOrderResponse, tags=["Orders"])
def complete_order(code: str, request: CompleteOrderRequest) -> CompleteOrderResponse:
    return order_engine.complete(code, request.admin_id, request.apply_coin_discount)


@app.post("/orders/expire", tags=["Orders"])
def expire_orders():
    return {"expired": order_engine.expire_overdue()}


@app.get("/users/{user_id}/orders", response_model=list[Order], tags=["Orders"])
def list_user_orders(user_id: UUID) -> list[Order]:
    return order_engine.list_user_orders(user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
