"""Security lots and share allocation strategies."""
from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum
from typing import Callable, Iterable, Optional

from .models import ZERO, Security, TransactionDetail

PRICE_SCALE = 6


class SecurityLot:
    """Links a purchase to a sale for ``sale_shares`` shares.

    ``sale_shares`` is expressed as of the sale date and ``purchase_shares``
    as of the purchase date; the two differ when splits occur in between.
    """

    __slots__ = ("_purchase", "sale", "_sale_shares", "purchase_shares", "id")

    def __init__(
        self,
        purchase: TransactionDetail | None,
        sale: TransactionDetail,
        sale_shares: Decimal | None = None,
        *,
        id: Optional[int] = None,
    ) -> None:
        self.id = id
        self.sale = sale
        self._purchase: TransactionDetail | None = None
        self._sale_shares: Decimal | None = sale_shares
        self.purchase_shares: Decimal | None = None
        sale.add_lot(self)
        self.purchase = purchase

    # ------------------------------------------------------------------
    @property
    def purchase(self) -> TransactionDetail | None:
        return self._purchase

    @purchase.setter
    def purchase(self, purchase: TransactionDetail | None) -> None:
        if self._purchase is not None:
            self._purchase.remove_lot(self)
        self._purchase = purchase
        if purchase is not None:
            if purchase.security is not self.sale.security:
                raise ValueError("Purchase and sale must be for the same security")
            self._sync_purchase_shares()
            purchase.add_lot(self)

    @property
    def sale_shares(self) -> Decimal | None:
        return self._sale_shares

    @sale_shares.setter
    def sale_shares(self, shares: Decimal | None) -> None:
        self._sale_shares = ZERO if shares is None else shares
        self._sync_purchase_shares()

    def _sync_purchase_shares(self) -> None:
        if self._purchase is not None and self._sale_shares is not None:
            self.purchase_shares = self._revert_splits(self._sale_shares)

    # ------------------------------------------------------------------
    @property
    def security(self) -> Security:
        return self.sale.security

    @property
    def purchase_date(self) -> date:
        return self._require_purchase().date

    @property
    def sale_date(self) -> date:
        return self.sale.date

    @property
    def is_empty(self) -> bool:
        return not self._sale_shares

    @property
    def total_purchase_shares(self) -> Decimal:
        return self._apply_splits(self._require_purchase().asset_quantity)

    @property
    def remaining_purchase_shares(self) -> Decimal:
        """Purchase shares still available to any lot, in sale-date terms."""

        return self._apply_splits(self._require_purchase().remaining_shares)

    @property
    def remaining_sale_shares(self) -> Decimal:
        return self.sale.unallocated_sale_shares

    @property
    def purchase_price(self) -> Decimal:
        """Cost per share of the purchase, adjusted for splits up to the sale."""

        purchase = self._require_purchase()
        shares = self.total_purchase_shares
        if shares == 0:
            return ZERO
        price = abs(purchase.amount) / shares
        return price.quantize(Decimal(1).scaleb(-PRICE_SCALE), rounding=ROUND_HALF_EVEN)

    def allocate_shares(self, max_shares: Decimal) -> Decimal:
        """Allocate up to ``max_shares`` of the remaining purchase shares.

        Returns the part of ``max_shares`` that could not be allocated.
        """

        taken = min(max_shares, self.remaining_purchase_shares)
        self.sale_shares = (self._sale_shares or ZERO) + taken
        return max_shares - taken

    def detach(self) -> None:
        """Unregister the lot from its purchase and sale."""

        if self._purchase is not None:
            self._purchase.remove_lot(self)
        self.sale.remove_lot(self)

    # ------------------------------------------------------------------
    def _require_purchase(self) -> TransactionDetail:
        if self._purchase is None:
            raise ValueError("Lot has no purchase assigned")
        return self._purchase

    def _apply_splits(self, shares: Decimal) -> Decimal:
        return self.security.apply_splits(shares, self.purchase_date, self.sale_date)

    def _revert_splits(self, shares: Decimal) -> Decimal:
        return self.security.revert_splits(shares, self.purchase_date, self.sale_date)

    def __repr__(self) -> str:
        return f"SecurityLot(purchase_shares={self.purchase_shares}, sale_shares={self._sale_shares})"


def _price_key(lot: SecurityLot) -> Decimal:
    return lot.purchase_price


def _date_key(lot: SecurityLot) -> date:
    return lot.purchase_date


class LotAllocationStrategy(Enum):
    """Orders candidate lots and greedily consumes their remaining shares."""

    FIRST_IN = "first_in"
    LAST_IN = "last_in"
    LOWEST_PRICE = "lowest_price"
    HIGHEST_PRICE = "highest_price"

    @classmethod
    def parse(cls, value: str) -> LotAllocationStrategy:
        normalised = (value or "").strip().lower().replace("-", "_")
        for strategy in cls:
            if strategy.value == normalised:
                return strategy
        raise ValueError(f"Unsupported lot allocation strategy: {value}")

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    def sort_lots(self, lots: Iterable[SecurityLot]) -> list[SecurityLot]:
        key, reverse = _ORDERINGS[self]
        return sorted(lots, key=key, reverse=reverse)

    def allocate_lots(self, lots: Iterable[SecurityLot], total_shares: Decimal) -> Decimal:
        """Allocate ``total_shares`` across ``lots``; return the unallocated remainder.

        Shares already allocated on the lots count towards the total.  Running
        out of lots is not an error, the caller decides what to do with a
        positive remainder.
        """

        lots = list(lots)
        remaining = total_shares - sum((lot.sale_shares or ZERO for lot in lots), ZERO)
        for lot in self.sort_lots(lots):
            if remaining <= 0:
                break
            if lot.remaining_purchase_shares > 0:
                remaining = lot.allocate_shares(remaining)
        return remaining


_ORDERINGS: dict[LotAllocationStrategy, tuple[Callable[[SecurityLot], object], bool]] = {
    LotAllocationStrategy.FIRST_IN: (_date_key, False),
    LotAllocationStrategy.LAST_IN: (_date_key, True),
    LotAllocationStrategy.LOWEST_PRICE: (_price_key, False),
    LotAllocationStrategy.HIGHEST_PRICE: (_price_key, True),
}


__all__ = ["PRICE_SCALE", "SecurityLot", "LotAllocationStrategy"]
