"""
UTI Coins Ledger

This module provides:
- Per-user coin accounts with append-only transaction history
- Earn and spend as the only balance mutators, serialized per account
- The error taxonomy shared by every coin engine component
- The storage contract and its in-memory implementation
"""

from .errors import CoinEngineError, ErrorKind
from .models import (
    TransactionType,
    CoinAccount,
    CoinTransaction,
    LedgerHistoryResponse,
    Posting,
    TransactionResponse,
)
from .service import Ledger
from .storage import CoinStorage, InMemoryStorage

__all__ = [
    "CoinEngineError",
    "ErrorKind",
    "TransactionType",
    "CoinAccount",
    "CoinTransaction",
    "LedgerHistoryResponse",
    "Posting",
    "TransactionResponse",
    "Ledger",
    "CoinStorage",
    "InMemoryStorage",
]
