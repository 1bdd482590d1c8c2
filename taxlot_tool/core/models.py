"""Domain models for the tax lot tool."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from functools import reduce
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .lots import SecurityLot

DEFAULT_SHARE_SCALE = 6
ZERO = Decimal("0")
ONE = Decimal("1")


def _quantize(value: Decimal, scale: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_EVEN)


@dataclass(frozen=True, slots=True)
class SplitRatio:
    """Cumulative share multiplier, ``shares_in`` old shares become ``shares_out``."""

    shares_in: Decimal = ONE
    shares_out: Decimal = ONE

    def __post_init__(self) -> None:
        if self.shares_in <= 0 or self.shares_out <= 0:
            raise ValueError("Split ratio components must be positive")

    def multiply(self, other: SplitRatio) -> SplitRatio:
        return SplitRatio(self.shares_in * other.shares_in, self.shares_out * other.shares_out)

    def apply(self, shares: Decimal, scale: int) -> Decimal:
        """Convert a pre-split share count to its post-split equivalent."""

        return _quantize(shares * self.shares_out / self.shares_in, scale)

    def revert(self, shares: Decimal, scale: int) -> Decimal:
        """Convert a post-split share count back to pre-split terms."""

        return _quantize(shares * self.shares_in / self.shares_out, scale)

    def ratio_as_decimal(self, scale: int) -> Decimal:
        return _quantize(self.shares_out / self.shares_in, scale)

    @property
    def is_identity(self) -> bool:
        return self.shares_in == self.shares_out


@dataclass(slots=True)
class StockSplit:
    date: date
    split_ratio: SplitRatio = field(default_factory=SplitRatio)
    id: Optional[int] = None


@dataclass(eq=False, slots=True)
class Security:
    name: str
    scale: int = DEFAULT_SHARE_SCALE
    splits: list[StockSplit] = field(default_factory=list)
    id: Optional[int] = None

    def get_split_ratio(self, from_date: date | None, to_date: date | None) -> SplitRatio:
        """Fold the splits effective in ``[from_date, to_date]`` into one ratio.

        A ``None`` ``to_date`` leaves the range open ended.  Without a
        ``from_date`` no split applies.
        """

        if from_date is None:
            return SplitRatio()
        effective = [
            split.split_ratio
            for split in sorted(self.splits, key=lambda split: split.date)
            if split.date >= from_date and (to_date is None or split.date <= to_date)
        ]
        return reduce(SplitRatio.multiply, effective, SplitRatio())

    def apply_splits(self, shares: Decimal, from_date: date | None, to_date: date | None) -> Decimal:
        return self.get_split_ratio(from_date, to_date).apply(shares, self.scale)

    def revert_splits(self, shares: Decimal, from_date: date | None, to_date: date | None) -> Decimal:
        return self.get_split_ratio(from_date, to_date).revert(shares, self.scale)

    def __repr__(self) -> str:
        return f"Security({self.name!r})"


@dataclass(eq=False, slots=True)
class Account:
    name: str
    id: Optional[int] = None

    def __repr__(self) -> str:
        return f"Account({self.name!r})"


@dataclass(eq=False, slots=True)
class TransactionDetail:
    """One leg of a ledger transaction that moves shares of a security.

    ``allocated_shares`` holds purchase-date shares of a purchase already
    committed to persisted lots, ``sale_lot_shares`` the shares of a sale
    already covered by persisted lots.  Lots built in memory register
    themselves in ``lots``.
    """

    date: date
    account: Account
    security: Security
    amount: Decimal
    asset_quantity: Decimal
    allocated_shares: Decimal = ZERO
    sale_lot_shares: Decimal = ZERO
    id: Optional[int] = None
    lots: list["SecurityLot"] = field(default_factory=list, repr=False)

    @property
    def is_sale(self) -> bool:
        return self.asset_quantity < 0

    @property
    def shares(self) -> Decimal:
        return abs(self.asset_quantity)

    @property
    def remaining_shares(self) -> Decimal:
        """Purchase shares not yet committed to any lot (purchase-date terms)."""

        in_memory = sum(
            (lot.purchase_shares or ZERO for lot in self.lots if lot.purchase is self),
            ZERO,
        )
        return self.asset_quantity - self.allocated_shares - in_memory

    @property
    def unallocated_sale_shares(self) -> Decimal:
        in_memory = sum((lot.sale_shares or ZERO for lot in self.lots if lot.sale is self), ZERO)
        return self.shares - self.sale_lot_shares - in_memory

    def add_lot(self, lot: "SecurityLot") -> None:
        if not any(existing is lot for existing in self.lots):
            self.lots.append(lot)

    def remove_lot(self, lot: "SecurityLot") -> None:
        self.lots[:] = [existing for existing in self.lots if existing is not lot]


__all__ = [
    "DEFAULT_SHARE_SCALE",
    "SplitRatio",
    "StockSplit",
    "Security",
    "Account",
    "TransactionDetail",
]
