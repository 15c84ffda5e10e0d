import threading
from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime
from typing import ContextManager, Iterator, Optional, Protocol
from uuid import UUID


MANUAL_GRANT_ACTION = "admin_manual"

DEFAULT_DAILY_BONUS_CONFIG = {
    "base_amount": 10,
    "max_amount": 100,
    "streak_days": 7,
    "increment_type": "calculated",
    "fixed_increment": 10,
}


class CoinStorage(Protocol):
    """Persistence contract the coin engine depends on.

    Every ``set_*`` transition is a compare-and-swap guarded by the current
    status and returns ``None`` when the guard no longer holds.
    """

    def account_lock(self, user_id: UUID) -> ContextManager[None]: ...

    def get_account(self, user_id: UUID) -> Optional[dict]: ...

    def append_transaction(self, tx: dict) -> None: ...

    def update_account_totals(
        self, user_id: UUID, balance_delta: int, earned_delta: int, spent_delta: int, at: datetime
    ) -> dict: ...

    def list_transactions(self, user_id: UUID) -> list[dict]: ...

    def sum_action_amount_since(self, user_id: UUID, action: str, since: datetime) -> int: ...

    def last_action_at(self, user_id: UUID, action: str) -> Optional[datetime]: ...

    def get_rule(self, action: str) -> Optional[dict]: ...

    def save_rule(self, rule: dict) -> None: ...

    def delete_rule(self, action: str) -> bool: ...

    def list_rules(self) -> list[dict]: ...

    def create_code(self, record: dict) -> bool: ...

    def get_code_by_value(self, code: str) -> Optional[dict]: ...

    def delete_code(self, code: str) -> bool: ...

    def set_code_redeemed(self, code: str, admin_id: UUID, at: datetime) -> Optional[dict]: ...

    def list_codes_by_user(self, user_id: UUID) -> list[dict]: ...

    def get_catalog_product(self, product_id: UUID) -> Optional[dict]: ...

    def save_catalog_product(self, product: dict) -> None: ...

    def reserve_stock(self, product_id: UUID) -> bool: ...

    def release_stock(self, product_id: UUID) -> None: ...

    def create_order(self, record: dict) -> bool: ...

    def get_order_by_code(self, code: str) -> Optional[dict]: ...

    def set_order_completed(
        self, code: str, rewards: dict, at: datetime, admin_id: Optional[UUID] = None
    ) -> Optional[dict]: ...

    def set_order_expired(self, code: str, at: datetime) -> Optional[dict]: ...

    def list_orders_by_user(self, user_id: UUID) -> list[dict]: ...

    def list_pending_orders(self) -> list[dict]: ...

    def get_product_reward_attributes(self, product_id: UUID) -> Optional[dict]: ...

    def save_product_reward_attributes(self, product_id: UUID, attributes: dict) -> None: ...

    def get_daily_bonus_config(self) -> dict: ...

    def save_daily_bonus_config(self, config: dict) -> None: ...

    def get_last_bonus_claim(self, user_id: UUID) -> Optional[dict]: ...

    def record_bonus_claim(self, claim: dict) -> None: ...

    def is_system_enabled(self) -> bool: ...

    def set_system_enabled(self, enabled: bool) -> None: ...


class InMemoryStorage:
    def __init__(self):
        self.accounts: dict[UUID, dict] = {}
        self.transactions: list[dict] = []
        self.rules: dict[str, dict] = {}
        self.codes: dict[str, dict] = {}
        self.catalog: dict[UUID, dict] = {}
        self.orders: dict[str, dict] = {}
        self.reward_attributes: dict[UUID, dict] = {}
        self.bonus_claims: list[dict] = []
        self.daily_bonus_config: dict = dict(DEFAULT_DAILY_BONUS_CONFIG)
        self.system_enabled = True

        # Guards every read-modify-write on the tables above
        self._write_lock = threading.Lock()
        self._account_locks: dict[UUID, threading.RLock] = {}
        self._account_locks_guard = threading.Lock()
        self._seed_data()

    def _seed_data(self):
        self.rules[MANUAL_GRANT_ACTION] = {
            "action": MANUAL_GRANT_ACTION,
            "amount": 0,
            "description": "Bonus granted by an administrator",
            "max_per_day": None,
            "max_per_month": None,
            "cooldown_minutes": 0,
            "is_active": True,
            "kind": "manual",
        }

    # Accounts and transactions

    @contextmanager
    def account_lock(self, user_id: UUID) -> Iterator[None]:
        with self._account_locks_guard:
            lock = self._account_locks.setdefault(user_id, threading.RLock())
        with lock:
            yield

    def get_account(self, user_id: UUID) -> Optional[dict]:
        with self._write_lock:
            account = self.accounts.get(user_id)
            return dict(account) if account else None

    def append_transaction(self, tx: dict) -> None:
        with self._write_lock:
            self.transactions.append(deepcopy(tx))

    def update_account_totals(
        self, user_id: UUID, balance_delta: int, earned_delta: int, spent_delta: int, at: datetime
    ) -> dict:
        with self._write_lock:
            account = self.accounts.setdefault(user_id, {
                "user_id": user_id, "balance": 0, "total_earned": 0,
                "total_spent": 0, "updated_at": None,
            })
            account["balance"] += balance_delta
            account["total_earned"] += earned_delta
            account["total_spent"] += spent_delta
            account["updated_at"] = at
            return dict(account)

    def list_transactions(self, user_id: UUID) -> list[dict]:
        with self._write_lock:
            return [deepcopy(t) for t in self.transactions if t["user_id"] == user_id]

    def sum_action_amount_since(self, user_id: UUID, action: str, since: datetime) -> int:
        with self._write_lock:
            return sum(
                t["amount"] for t in self.transactions
                if t["user_id"] == user_id and t["action"] == action and t["created_at"] >= since
            )

    def last_action_at(self, user_id: UUID, action: str) -> Optional[datetime]:
        with self._write_lock:
            stamps = [
                t["created_at"] for t in self.transactions
                if t["user_id"] == user_id and t["action"] == action
            ]
            return max(stamps) if stamps else None

    # Rules

    def get_rule(self, action: str) -> Optional[dict]:
        with self._write_lock:
            rule = self.rules.get(action)
            return dict(rule) if rule else None

    def save_rule(self, rule: dict) -> None:
        with self._write_lock:
            self.rules[rule["action"]] = dict(rule)

    def delete_rule(self, action: str) -> bool:
        with self._write_lock:
            return self.rules.pop(action, None) is not None

    def list_rules(self) -> list[dict]:
        with self._write_lock:
            return [dict(r) for r in self.rules.values()]

    # Redemption codes

    def create_code(self, record: dict) -> bool:
        with self._write_lock:
            if record["code"] in self.codes:
                return False
            self.codes[record["code"]] = dict(record)
            return True

    def get_code_by_value(self, code: str) -> Optional[dict]:
        with self._write_lock:
            record = self.codes.get(code)
            return dict(record) if record else None

    def delete_code(self, code: str) -> bool:
        with self._write_lock:
            return self.codes.pop(code, None) is not None

    def set_code_redeemed(self, code: str, admin_id: UUID, at: datetime) -> Optional[dict]:
        with self._write_lock:
            record = self.codes.get(code)
            if record is None or record["status"] != "pending":
                return None
            record["status"] = "redeemed"
            record["redeemed_at"] = at
            record["redeemed_by_admin"] = admin_id
            return dict(record)

    def list_codes_by_user(self, user_id: UUID) -> list[dict]:
        with self._write_lock:
            return [dict(c) for c in self.codes.values() if c["user_id"] == user_id]

    # Reward catalog

    def get_catalog_product(self, product_id: UUID) -> Optional[dict]:
        with self._write_lock:
            product = self.catalog.get(product_id)
            return dict(product) if product else None

    def save_catalog_product(self, product: dict) -> None:
        with self._write_lock:
            self.catalog[product["id"]] = dict(product)

    def reserve_stock(self, product_id: UUID) -> bool:
        with self._write_lock:
            product = self.catalog.get(product_id)
            if product is None:
                return False
            if product.get("stock") is None:
                return True
            if product["stock"] <= 0:
                return False
            product["stock"] -= 1
            return True

    def release_stock(self, product_id: UUID) -> None:
        with self._write_lock:
            product = self.catalog.get(product_id)
            if product is not None and product.get("stock") is not None:
                product["stock"] += 1

    # Orders

    def create_order(self, record: dict) -> bool:
        with self._write_lock:
            if record["code"] in self.orders:
                return False
            self.orders[record["code"]] = deepcopy(record)
            return True

    def get_order_by_code(self, code: str) -> Optional[dict]:
        with self._write_lock:
            order = self.orders.get(code)
            return deepcopy(order) if order else None

    def set_order_completed(
        self, code: str, rewards: dict, at: datetime, admin_id: Optional[UUID] = None
    ) -> Optional[dict]:
        with self._write_lock:
            order = self.orders.get(code)
            if order is None or order["status"] != "pending":
                return None
            order["status"] = "completed"
            order["completed_at"] = at
            order["completed_by"] = admin_id
            order["rewards_given"] = dict(rewards)
            return deepcopy(order)

    def set_order_expired(self, code: str, at: datetime) -> Optional[dict]:
        with self._write_lock:
            order = self.orders.get(code)
            if order is None or order["status"] != "pending":
                return None
            order["status"] = "expired"
            return deepcopy(order)

    def list_orders_by_user(self, user_id: UUID) -> list[dict]:
        with self._write_lock:
            return [deepcopy(o) for o in self.orders.values() if o.get("user_id") == user_id]

    def list_pending_orders(self) -> list[dict]:
        with self._write_lock:
            return [deepcopy(o) for o in self.orders.values() if o["status"] == "pending"]

    # Product reward attributes

    def get_product_reward_attributes(self, product_id: UUID) -> Optional[dict]:
        with self._write_lock:
            attributes = self.reward_attributes.get(product_id)
            return dict(attributes) if attributes else None

    def save_product_reward_attributes(self, product_id: UUID, attributes: dict) -> None:
        with self._write_lock:
            self.reward_attributes[product_id] = dict(attributes)

    # Daily bonus

    def get_daily_bonus_config(self) -> dict:
        with self._write_lock:
            return dict(self.daily_bonus_config)

    def save_daily_bonus_config(self, config: dict) -> None:
        with self._write_lock:
            self.daily_bonus_config = dict(config)

    def get_last_bonus_claim(self, user_id: UUID) -> Optional[dict]:
        with self._write_lock:
            claims = [c for c in self.bonus_claims if c["user_id"] == user_id]
            if not claims:
                return None
            return dict(max(claims, key=lambda c: c["claimed_at"]))

    def record_bonus_claim(self, claim: dict) -> None:
        with self._write_lock:
            self.bonus_claims.append(dict(claim))

    # System switch

    def is_system_enabled(self) -> bool:
        with self._write_lock:
            return self.system_enabled

    def set_system_enabled(self, enabled: bool) -> None:
        with self._write_lock:
            self.system_enabled = enabled
