"""Ledger abstractions used by the lot matching engine."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable

from ..core.lots import SecurityLot
from ..core.models import Account, Security, TransactionDetail


class RepositoryError(RuntimeError):
    """Raised when the ledger encounters an unrecoverable error."""


class LedgerRepository(ABC):
    """Read/write surface of the ledger consumed by the lot matching engine."""

    # --- lifecycle -----------------------------------------------------
    def close(self) -> None:
        """Close any underlying resources (optional)."""

    # --- sales ---------------------------------------------------------
    @abstractmethod
    def find_security_sales_without_lots(
        self, security_name_prefix: str, sale_date: date
    ) -> list[TransactionDetail]:
        """Sales on ``sale_date`` of securities whose name starts with the prefix
        (case-insensitive) that have no lots yet."""

    @abstractmethod
    def get_sale(self, detail_id: int) -> TransactionDetail | None:
        """Fetch a sale detail by identifier."""

    @abstractmethod
    def list_sales_without_lots(self) -> list[TransactionDetail]:
        """Every sale detail whose shares are not fully covered by lots."""

    # --- purchases -----------------------------------------------------
    @abstractmethod
    def find_purchases_with_remaining_lots(
        self, account: Account, security: Security, purchase_date: date
    ) -> list[TransactionDetail]:
        """Purchases on ``purchase_date`` with shares not yet allocated to lots."""

    # --- lots ----------------------------------------------------------
    @abstractmethod
    def find_available_lots(self, sale: TransactionDetail) -> list[SecurityLot]:
        """Existing lots of ``sale`` plus empty lots for purchases it could use."""

    @abstractmethod
    def save_security_lots(self, lots: Iterable[SecurityLot]) -> None:
        """Persist non-empty lots and delete stored lots that were emptied."""

    # --- utility -------------------------------------------------------
    def __enter__(self) -> "LedgerRepository":  # pragma: no cover - convenience
        return self

    def __exit__(self, *exc_info: object) -> None:  # pragma: no cover - convenience
        self.close()


__all__ = ["LedgerRepository", "RepositoryError"]
