from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from domain.errors import UsernameTakenError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisionedAccount:
    payment_address: str
    account_address: str
    account_chain_id: int


class AccountBackend(Protocol):
    def user_exists(self, username: str) -> bool: ...

    def create_payment_address(self, username: str) -> str: ...

    def create_smart_account(self, username: str, payment_address: str) -> ProvisionedAccount: ...


class InMemoryAccountBackend(AccountBackend):
    """Per-process account registry.

    Addresses are placeholders derived from a hash of the username; no keys are
    generated and nothing is sent to a chain.
    """

    def __init__(self, *, chain_id: int = 1) -> None:
        self.chain_id = chain_id
        self._accounts: dict[str, ProvisionedAccount] = {}
        self._lock = threading.Lock()

    def user_exists(self, username: str) -> bool:
        with self._lock:
            return username in self._accounts

    def create_payment_address(self, username: str) -> str:
        return self._derive_address("payment", username)

    def create_smart_account(self, username: str, payment_address: str) -> ProvisionedAccount:
        account = ProvisionedAccount(
            payment_address=payment_address,
            account_address=self._derive_address("account", username),
            account_chain_id=self.chain_id,
        )
        with self._lock:
            if username in self._accounts:
                raise UsernameTakenError("Username already exists")
            self._accounts[username] = account
        return account

    @staticmethod
    def _derive_address(kind: str, username: str) -> str:
        digest = hashlib.sha256(f"{kind}:{username}".encode("utf-8")).hexdigest()
        return f"0x{digest[:40]}"


class AccountService:
    def __init__(self, backend: AccountBackend) -> None:
        self.backend = backend

    def create_account(self, username: str | None) -> ProvisionedAccount:
        cleaned = (username or "").strip()
        if not cleaned:
            raise ValidationError("Username must be provided")

        if self.backend.user_exists(cleaned):
            raise UsernameTakenError("Username already exists")

        payment_address = self.backend.create_payment_address(cleaned)
        account = self.backend.create_smart_account(cleaned, payment_address)
        logger.info("Provisioned account %s for %s", account.account_address, cleaned)
        return account


__all__ = ["AccountBackend", "AccountService", "InMemoryAccountBackend", "ProvisionedAccount"]
