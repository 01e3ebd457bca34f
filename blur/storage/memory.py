from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from blur.logging import get_logger
from blur.storage.errors import ConstraintViolation
from blur.storage.models import Account, Role


class MemoryStore:
    """In-process account store used for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        # Email and nickname indexes; updated under the same lock as accounts
        self._by_email: Dict[str, str] = {}
        self._by_nickname: Dict[str, str] = {}
        self._data_lock = threading.RLock()

    def create_account(
        self,
        email: str,
        nickname: str,
        password_hash: str,
        *,
        role: Role = Role.BASIC,
    ) -> Account:
        with self._data_lock:
            if email in self._by_email:
                raise ConstraintViolation("email already exists", {"field": "email"})
            if nickname in self._by_nickname:
                raise ConstraintViolation(
                    "nickname already exists", {"field": "nickname"}
                )
            account = Account.new(email, nickname, password_hash, role=role)
            self.accounts[account.id] = account
            self._by_email[email] = account.id
            self._by_nickname[nickname] = account.id
            return account

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._data_lock:
            return self.accounts.get(account_id)

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._data_lock:
            account_id = self._by_email.get(email)
            return self.accounts.get(account_id) if account_id else None

    def get_account_by_nickname(self, nickname: str) -> Optional[Account]:
        with self._data_lock:
            account_id = self._by_nickname.get(nickname)
            return self.accounts.get(account_id) if account_id else None

    def list_accounts(self, limit: int = 100) -> List[Account]:
        with self._data_lock:
            results = sorted(
                self.accounts.values(), key=lambda a: a.created_at, reverse=True
            )
            return results[:limit]

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            account.password_hash = password_hash
            account.updated_at = datetime.now(timezone.utc)
            return account

    def update_role(self, account_id: str, role: Role) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            account.role = role
            account.updated_at = datetime.now(timezone.utc)
            return account

    def verify_connection(self) -> None:
        return None
