"""Credit ledger backed by a durable key-value store."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from ex_remover.errors import CreditStoreError, InsufficientCredits

logger = logging.getLogger(__name__)

BALANCE_KEY = "credits"
BONUS_FLAG_KEY = "one_time_bonus_applied"

DEFAULT_CREDITS = 3
BONUS_CREDITS = 3


class CreditStore(Protocol):
    """Durable string key-value storage for the ledger."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryCreditStore:
    """In-process store, used for tests and throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileCreditStore:
    """Store keyed by installation, kept as a small JSON file.

    Writes replace the file atomically. A file that exists but cannot be
    parsed raises CreditStoreError rather than reading as empty, so a damaged
    store never resets the balance or re-grants the bonus.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read credit store {self.path}: {e}")
            raise CreditStoreError(
                f"Credit store {self.path} is unreadable; fix or remove it to continue"
            ) from e
        if not isinstance(data, dict):
            logger.error(f"Malformed credit store: {self.path}")
            raise CreditStoreError(f"Credit store {self.path} does not hold a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = None

        try:
            with tempfile.NamedTemporaryFile(
                "w",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as handle:
                temp_path = handle.name
                json.dump(data, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
            temp_path = None
        finally:
            if temp_path:
                try:
                    os.unlink(temp_path)
                except OSError as e:
                    logger.warning(f"Failed to remove temp file {temp_path}: {e}")


def _parse_balance(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


class CreditLedger:
    """Integer credit balance with reserve/refund as the only mutations.

    The balance never goes negative: ``reserve`` checks before subtracting.
    Every mutation is written through to the store immediately.
    """

    def __init__(self, store: CreditStore, balance: int) -> None:
        if balance < 0:
            raise ValueError(f"Balance cannot be negative: {balance}")
        self.store = store
        self._balance = balance

    @classmethod
    def open(
        cls,
        store: CreditStore,
        default: int = DEFAULT_CREDITS,
        bonus: int = BONUS_CREDITS,
    ) -> "CreditLedger":
        """Load the ledger, granting the one-time bonus if it was never applied.

        Args:
            store: Durable key-value store
            default: Balance used when nothing valid is stored
            bonus: Credits granted exactly once per installation

        Returns:
            Initialized ledger
        """
        balance = _parse_balance(store.get(BALANCE_KEY))
        if balance is None:
            balance = default

        if not store.get(BONUS_FLAG_KEY):
            balance += bonus
            store.set(BALANCE_KEY, str(balance))
            store.set(BONUS_FLAG_KEY, "true")
            logger.info(f"Applied one-time bonus of {bonus} credits")
        else:
            # Rewrite so an invalid stored value is repaired
            store.set(BALANCE_KEY, str(balance))

        logger.debug(f"Credit ledger opened with balance {balance}")
        return cls(store, balance)

    @property
    def balance(self) -> int:
        return self._balance

    def can_afford(self, n: int) -> bool:
        return self._balance >= n

    def reserve(self, n: int) -> None:
        """Subtract ``n`` credits up front for work about to start.

        Raises:
            ValueError: If n is negative
            InsufficientCredits: If the balance is smaller than n
        """
        if n < 0:
            raise ValueError(f"Cannot reserve a negative amount: {n}")
        if self._balance < n:
            raise InsufficientCredits(needed=n, available=self._balance)
        self._balance -= n
        self._persist()
        logger.info(f"Reserved {n} credit(s), balance now {self._balance}")

    def refund(self, n: int = 1) -> None:
        """Return ``n`` credits for work that did not consume them."""
        if n < 0:
            raise ValueError(f"Cannot refund a negative amount: {n}")
        self._balance += n
        self._persist()
        logger.info(f"Refunded {n} credit(s), balance now {self._balance}")

    def _persist(self) -> None:
        try:
            self.store.set(BALANCE_KEY, str(self._balance))
        except (OSError, CreditStoreError) as e:
            logger.error(f"Failed to save credits: {e}")
