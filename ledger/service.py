import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
from uuid import UUID, uuid4

from .errors import InsufficientBalanceError, SystemDisabledError, ValidationError
from .models import (
    TransactionType,
    CoinAccount,
    CoinTransaction,
    LedgerHistoryResponse,
    Posting,
    TransactionResponse,
)
from .storage import CoinStorage, InMemoryStorage

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ledger:
    """Coin balances plus the append-only history behind them.

    ``earn`` and ``spend`` are the only mutators. Each one appends its
    transaction and moves the account totals while holding the account lock,
    so ``balance == total_earned - total_spent`` holds between calls.
    """

    def __init__(self, storage: Optional[CoinStorage] = None, clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage or InMemoryStorage()
        self.clock = clock or utcnow

    @contextmanager
    def account_lock(self, user_id: UUID) -> Iterator[None]:
        with self.storage.account_lock(user_id):
            yield

    def ensure_enabled(self) -> None:
        if not self.storage.is_system_enabled():
            raise SystemDisabledError("UTI Coins system is currently disabled")

    def earn(
        self,
        user_id: UUID,
        action: str,
        amount: int,
        description: str,
        reference: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> TransactionResponse:
        self._validate_amount(amount)
        self.ensure_enabled()

        with self.storage.account_lock(user_id):
            current = self.get_account(user_id)
            response = self._apply(
                user_id=user_id,
                action=action,
                tx_type=TransactionType.EARNED,
                signed_amount=amount,
                balance_after=current.balance + amount,
                description=description,
                reference=reference,
                metadata=metadata,
            )

        logger.info("User %s earned %d coins for %s (ref=%s)", user_id, amount, action, reference)
        return response

    def spend(
        self,
        user_id: UUID,
        amount: int,
        description: str,
        reference: Optional[str] = None,
        action: str = "spend",
        metadata: Optional[dict] = None,
    ) -> TransactionResponse:
        self._validate_amount(amount)
        self.ensure_enabled()

        with self.storage.account_lock(user_id):
            current = self.get_account(user_id)
            if amount > current.balance:
                logger.info("User %s cannot spend %d coins, balance is %d", user_id, amount, current.balance)
                raise InsufficientBalanceError(
                    f"User has {current.balance} coins, needs {amount}",
                    {"balance": current.balance, "required": amount},
                )
            response = self._apply(
                user_id=user_id,
                action=action,
                tx_type=TransactionType.SPENT,
                signed_amount=-amount,
                balance_after=current.balance - amount,
                description=description,
                reference=reference,
                metadata=metadata,
            )

        logger.info("User %s spent %d coins on %s (ref=%s)", user_id, amount, action, reference)
        return response

    def post(self, user_id: UUID, postings: list[Posting]) -> list[TransactionResponse]:
        """Apply several earn/spend legs to one account as a single unit.

        Every leg is validated and the running balance is checked before the
        first one is written, so either all legs land or none do.
        """
        if not postings:
            raise ValidationError("At least one posting is required")
        for posting in postings:
            self._validate_amount(posting.amount)

        with self.storage.account_lock(user_id):
            self.ensure_enabled()
            balance = self.get_account(user_id).balance
            signed = []
            for posting in postings:
                amount = posting.amount if posting.type == TransactionType.EARNED else -posting.amount
                if balance + amount < 0:
                    raise InsufficientBalanceError(
                        f"User has {balance} coins, needs {posting.amount}",
                        {"balance": balance, "required": posting.amount},
                    )
                balance += amount
                signed.append(amount)

            responses = []
            for posting, amount in zip(postings, signed):
                current = self.get_account(user_id)
                responses.append(self._apply(
                    user_id=user_id,
                    action=posting.action,
                    tx_type=posting.type,
                    signed_amount=amount,
                    balance_after=current.balance + amount,
                    description=posting.description,
                    reference=posting.reference,
                    metadata=posting.metadata,
                ))

        logger.info(
            "Posted %d entries for user %s: %s",
            len(postings), user_id, ", ".join(f"{p.action} {a:+d}" for p, a in zip(postings, signed)),
        )
        return responses

    def get_account(self, user_id: UUID) -> CoinAccount:
        data = self.storage.get_account(user_id)
        if not data:
            return CoinAccount(user_id=user_id)
        return CoinAccount(**data)

    def get_balance(self, user_id: UUID) -> int:
        return self.get_account(user_id).balance

    def get_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")

        # Storage keeps append order; reversing first keeps same-instant entries newest first
        all_entries = [CoinTransaction(**t) for t in reversed(self.storage.list_transactions(user_id))]
        all_entries.sort(key=lambda t: t.created_at, reverse=True)

        return LedgerHistoryResponse(
            user_id=user_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            current_balance=self.get_balance(user_id),
        )

    def _apply(
        self,
        user_id: UUID,
        action: str,
        tx_type: TransactionType,
        signed_amount: int,
        balance_after: int,
        description: str,
        reference: Optional[str],
        metadata: Optional[dict],
    ) -> TransactionResponse:
        now = self.clock()
        tx_data = {
            "id": uuid4(),
            "user_id": user_id,
            "action": action,
            "type": tx_type,
            "amount": signed_amount,
            "balance_after": balance_after,
            "description": description,
            "reference": reference,
            "created_at": now,
            "metadata": metadata or {},
        }
        # Validate before touching storage
        transaction = CoinTransaction(**tx_data)

        earned = signed_amount if signed_amount > 0 else 0
        spent = -signed_amount if signed_amount < 0 else 0
        self.storage.append_transaction(tx_data)
        account_data = self.storage.update_account_totals(user_id, signed_amount, earned, spent, now)

        return TransactionResponse(
            account=CoinAccount(**account_data),
            transaction=transaction,
            message="Transaction recorded",
        )

    @staticmethod
    def _validate_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(f"Coin amount must be a positive integer, got {amount!r}")
