import logging
import re
import secrets
import string
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from ledger.config import settings
from ledger.errors import (
    AlreadyRedeemedError,
    CoinEngineError,
    ConcurrencyConflictError,
    InsufficientBalanceError,
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from ledger.service import Ledger

from .models import CatalogProduct, CodeResponse, CodeStatus, RedemptionCode

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CATALOG_REDEMPTION_ACTION = "catalog_redemption"


def generate_code(length: Optional[int] = None) -> str:
    length = length or settings.REDEMPTION_CODE_LENGTH
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw: Optional[str]) -> str:
    code = (raw or "").strip().upper()
    if not code:
        raise ValidationError("Redemption code is required")
    if not re.fullmatch(rf"[A-Z0-9]{{{settings.REDEMPTION_CODE_LENGTH}}}", code):
        raise ValidationError(
            f"Redemption codes are {settings.REDEMPTION_CODE_LENGTH} letters or digits",
            {"code": code},
        )
    return code


class RedemptionCodeManager:
    """Reward catalog purchases and the one-time codes staff exchange for them.

    Coins leave the ledger when the code is issued. Redeeming a code later is
    a pure ``pending -> redeemed`` status change.
    """

    def __init__(
        self,
        ledger: Ledger,
        clock: Optional[Callable[[], datetime]] = None,
        code_factory: Optional[Callable[[], str]] = None,
    ):
        self.ledger = ledger
        self.storage = ledger.storage
        self.clock = clock or ledger.clock
        self.code_factory = code_factory or generate_code

    def issue(self, product_id: UUID, user_id: UUID) -> CodeResponse:
        self.ledger.ensure_enabled()
        product = self.get_product(product_id)
        if not product.is_active:
            raise ValidationError(f"Product '{product.name}' is not available", {"product_id": str(product_id)})

        with self.ledger.account_lock(user_id):
            balance = self.ledger.get_balance(user_id)
            if product.cost > balance:
                raise InsufficientBalanceError(
                    f"User has {balance} coins, '{product.name}' costs {product.cost}",
                    {"balance": balance, "required": product.cost},
                )

            if not self.storage.reserve_stock(product_id):
                raise OutOfStockError(f"Product '{product.name}' is out of stock", {"product_id": str(product_id)})

            record = None
            try:
                record = self._create_unique_code(product, user_id)
                tx = self.ledger.spend(
                    user_id=user_id,
                    amount=product.cost,
                    description=f"Redemption: {product.name}",
                    reference=record.code,
                    action=CATALOG_REDEMPTION_ACTION,
                    metadata={"product_id": str(product_id)},
                )
            except CoinEngineError:
                if record is not None:
                    self.storage.delete_code(record.code)
                    logger.warning("Voided unpaid code %s for user %s", record.code, user_id)
                self.storage.release_stock(product_id)
                raise

        logger.info("Issued code %s for product %s to user %s", record.code, product_id, user_id)
        return CodeResponse(
            code=record,
            balance_after=tx.account.balance,
            message="Redemption code issued",
        )

    def verify(self, code: str) -> RedemptionCode:
        value = normalize_code(code)
        data = self.storage.get_code_by_value(value)
        if not data:
            raise NotFoundError(f"Code {value} not found", {"code": value})
        return RedemptionCode(**data)

    def redeem(self, code: str, admin_id: UUID) -> CodeResponse:
        current = self.verify(code)
        if not current.can_redeem():
            raise self._already_redeemed(current)

        updated = self.storage.set_code_redeemed(current.code, admin_id, self.clock())
        if updated is None:
            # Lost the compare-and-swap to another operator
            raise self._already_redeemed(self.verify(current.code))

        logger.info("Code %s redeemed by admin %s", current.code, admin_id)
        return CodeResponse(code=RedemptionCode(**updated), message="Code marked as redeemed")

    def list_user_codes(self, user_id: UUID) -> list[RedemptionCode]:
        codes = [RedemptionCode(**c) for c in self.storage.list_codes_by_user(user_id)]
        codes.sort(key=lambda c: c.created_at, reverse=True)
        return codes

    # Catalog administration

    def save_product(self, product: CatalogProduct) -> CatalogProduct:
        self.storage.save_catalog_product(product.model_dump())
        logger.info("Saved catalog product %s (cost=%d, stock=%s)", product.id, product.cost, product.stock)
        return product

    def get_product(self, product_id: UUID) -> CatalogProduct:
        data = self.storage.get_catalog_product(product_id)
        if not data:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": str(product_id)})
        return CatalogProduct(**data)

    @staticmethod
    def _already_redeemed(stored: RedemptionCode) -> AlreadyRedeemedError:
        logger.info("Code %s was already redeemed by %s", stored.code, stored.redeemed_by_admin)
        return AlreadyRedeemedError(
            f"Code {stored.code} has already been redeemed",
            {
                "code": stored.code,
                "redeemed_at": stored.redeemed_at.isoformat() if stored.redeemed_at else None,
                "redeemed_by_admin": str(stored.redeemed_by_admin) if stored.redeemed_by_admin else None,
            },
        )

    def _create_unique_code(self, product: CatalogProduct, user_id: UUID) -> RedemptionCode:
        for attempt in range(1, settings.CODE_GENERATION_ATTEMPTS + 1):
            record = RedemptionCode(
                code=self.code_factory(),
                product_id=product.id,
                user_id=user_id,
                cost=product.cost,
                status=CodeStatus.PENDING,
                created_at=self.clock(),
            )
            if self.storage.create_code(record.model_dump()):
                return record
            logger.warning("Redemption code collision on attempt %d, retrying", attempt)

        raise ConcurrencyConflictError(
            f"Could not generate a unique code after {settings.CODE_GENERATION_ATTEMPTS} attempts"
        )
