"""Matching of capital gains records to ledger sales and purchases."""
from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from typing import TYPE_CHECKING, Iterable, Iterator, Protocol, Sequence

from .capital_gain import CapitalGainRecord
from .lots import PRICE_SCALE, SecurityLot
from .models import ZERO, Account, Security, TransactionDetail

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..data.repo_base import LedgerRepository

logger = logging.getLogger(__name__)

# Broker exports round share counts, e.g. 16.000001 in the ledger is 16 in the report.
SHARES_TOLERANCE = Decimal("0.0005")
# Cost basis is rounded to cents, so a partial lot's per-share price drifts.
PRICE_TOLERANCE = Decimal("0.5")
# Allowed difference in summed sales price, per record.
AMOUNT_TOLERANCE = Decimal("0.005")
# Partial subsets visited for one sale before the search gives up.
MAX_SUBSET_STEPS = 200_000

SaleKey = tuple[str, date]
PurchaseKey = tuple[Account, Security, date]
PurchaseCache = dict[PurchaseKey, list[TransactionDetail]]


def is_match(value: Decimal, target: Decimal, tolerance: Decimal = SHARES_TOLERANCE) -> bool:
    return abs(value - target) <= tolerance


def find_subset(
    records: Sequence[CapitalGainRecord],
    shares: Decimal,
    amount: Decimal | None = None,
    max_steps: int = MAX_SUBSET_STEPS,
) -> list[CapitalGainRecord]:
    """Return the smallest group of ``records`` totalling ``shares``.

    When ``amount`` is given the group's summed sales price must match it as
    well.  Groups of the same size are tried in record order.  The search
    returns no group once it has visited ``max_steps`` partial groups.
    """

    steps = itertools.count(1)
    try:
        for size in range(1, len(records) + 1):
            for subset in _subsets(records, size, shares, steps, max_steps):
                if amount is None or is_match(
                    sum((record.sale_amount for record in subset), ZERO),
                    amount,
                    AMOUNT_TOLERANCE * len(subset),
                ):
                    return subset
    except _SearchLimitReached:
        logger.warning("Gave up matching %s shares after %d steps over %d records", shares, max_steps, len(records))
    return []


class _SearchLimitReached(Exception):
    pass


def _subsets(
    records: Sequence[CapitalGainRecord],
    size: int,
    target: Decimal,
    steps: Iterator[int],
    max_steps: int,
) -> Iterator[list[CapitalGainRecord]]:
    largest = max((record.shares for record in records), default=ZERO)

    def search(start: int, chosen: list[CapitalGainRecord], total: Decimal) -> Iterator[list[CapitalGainRecord]]:
        if next(steps) > max_steps:
            raise _SearchLimitReached
        needed = size - len(chosen)
        if needed == 0:
            if is_match(total, target):
                yield list(chosen)
            return
        if total > target + SHARES_TOLERANCE or total + needed * largest < target - SHARES_TOLERANCE:
            return
        for index in range(start, len(records) - needed + 1):
            chosen.append(records[index])
            yield from search(index + 1, chosen, total + records[index].shares)
            chosen.pop()

    yield from search(0, [], ZERO)


class AllocationDialog(Protocol):
    """Lets a user edit the lots of a sale; ``None`` means the edit was cancelled."""

    def show(self, sale: TransactionDetail, lots: list[SecurityLot]) -> list[SecurityLot] | None:
        ...


class SaleMatcher:
    """Assigns report records to ledger sales that have no lots yet."""

    def __init__(self, ledger: LedgerRepository) -> None:
        self.ledger = ledger
        self.record_lots: dict[CapitalGainRecord, SecurityLot] = {}

    def assign_sales(
        self, sale_map: dict[SaleKey, list[CapitalGainRecord]]
    ) -> dict[CapitalGainRecord, SecurityLot]:
        for (security_name, sale_date), records in sale_map.items():
            logger.debug("sales for %s on %s: %d records", security_name, sale_date, len(records))
            sales = self.ledger.find_security_sales_without_lots(security_name, sale_date)
            if not sales:
                logger.info("No unmatched sale of %s on %s", security_name, sale_date)
                continue
            pool = list(records)
            for sale in _zero_amounts_last(sales):
                self._create_lots(pool, sale)
        return self.record_lots

    def _create_lots(self, pool: list[CapitalGainRecord], sale: TransactionDetail) -> None:
        amount = None if sale.amount == 0 else sale.amount
        subset = find_subset(pool, sale.shares, amount)
        if not subset:
            logger.info("No records match sale of %s on %s", sale.security.name, sale.date)
            return
        for record in subset:
            shares = sale.shares if len(subset) == 1 else None
            self.record_lots[record] = SecurityLot(None, sale, shares)
            pool.remove(record)


def _zero_amounts_last(sales: Iterable[TransactionDetail]) -> list[TransactionDetail]:
    sales = list(sales)
    return [sale for sale in sales if sale.amount != 0] + [sale for sale in sales if sale.amount == 0]


class PurchaseMatcher:
    """Assigns ledger purchases to the lots created by :class:`SaleMatcher`."""

    def __init__(self, ledger: LedgerRepository, cache: PurchaseCache | None = None) -> None:
        self.ledger = ledger
        self.cache: PurchaseCache = {} if cache is None else cache
        self.sale_lots: list[SecurityLot] = []

    def assign_purchases(self, record_lots: dict[CapitalGainRecord, SecurityLot]) -> list[SecurityLot]:
        for key, entries in self._group_by_purchase(record_lots).items():
            purchases = self._purchases(key)
            entries.sort(key=lambda entry: entry[0].shares, reverse=True)
            for record, lot in entries:
                self._assign(record, lot, purchases)
        return self.sale_lots

    def _group_by_purchase(
        self, record_lots: dict[CapitalGainRecord, SecurityLot]
    ) -> dict[PurchaseKey, list[tuple[CapitalGainRecord, SecurityLot]]]:
        groups: dict[PurchaseKey, list[tuple[CapitalGainRecord, SecurityLot]]] = defaultdict(list)
        for record, lot in record_lots.items():
            key = (lot.sale.account, lot.security, record.purchase_date)
            groups[key].append((record, lot))
        return groups

    def _purchases(self, key: PurchaseKey) -> list[TransactionDetail]:
        if key not in self.cache:
            account, security, purchase_date = key
            self.cache[key] = list(
                self.ledger.find_purchases_with_remaining_lots(account, security, purchase_date)
            )
        return self.cache[key]

    def _assign(self, record: CapitalGainRecord, lot: SecurityLot, purchases: list[TransactionDetail]) -> None:
        security = lot.security
        shares = security.revert_splits(record.shares, record.purchase_date, record.sale_date)
        candidates = self._candidates(record, shares, purchases)
        purchase = _exact_match(candidates, shares) or _covering_match(candidates, shares)
        if purchase is None:
            logger.info("No purchase of %s on %s for %s shares", security.name, record.purchase_date, record.shares)
        else:
            candidates.remove(purchase)
            self._set_purchase(lot, record, purchase, shares)
        self._add_lot(lot)
        for other in candidates:
            if not any(existing.purchase is other for existing in lot.sale.lots):
                self._add_lot(SecurityLot(other, lot.sale, ZERO))

    def _candidates(
        self,
        record: CapitalGainRecord,
        shares: Decimal,
        purchases: list[TransactionDetail],
    ) -> list[TransactionDetail]:
        if len(purchases) == 1:
            return list(purchases)
        price = _record_price(record, shares)
        priced = [
            (purchase, _price_distance(price, purchase))
            for purchase in purchases
        ]
        matches = [entry for entry in priced if entry[1] <= PRICE_TOLERANCE]
        matches.sort(key=lambda entry: (entry[1], -entry[0].remaining_shares))
        return [purchase for purchase, _ in matches]

    def _set_purchase(
        self,
        lot: SecurityLot,
        record: CapitalGainRecord,
        purchase: TransactionDetail,
        shares: Decimal,
    ) -> None:
        remaining = purchase.remaining_shares
        lot.purchase = purchase
        if lot.sale_shares is None:
            if is_match(shares, remaining):
                shares = remaining
            lot.sale_shares = lot.security.apply_splits(shares, record.purchase_date, record.sale_date)
        logger.debug("Matched line %d to purchase on %s: %s shares", record.line_number, purchase.date, lot.sale_shares)

    def _add_lot(self, lot: SecurityLot) -> None:
        if not any(existing is lot for existing in self.sale_lots):
            self.sale_lots.append(lot)


def _record_price(record: CapitalGainRecord, shares: Decimal) -> Decimal | None:
    if record.cost_basis == 0 or shares == 0:
        return None
    return _quantize_price(abs(record.cost_basis) / shares)


def _price_distance(price: Decimal | None, purchase: TransactionDetail) -> Decimal:
    if price is None or purchase.amount == 0 or purchase.asset_quantity == 0:
        return ZERO
    return abs(_quantize_price(abs(purchase.amount) / purchase.asset_quantity) - price)


def _quantize_price(value: Decimal) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-PRICE_SCALE), rounding=ROUND_HALF_EVEN)


def _exact_match(purchases: list[TransactionDetail], shares: Decimal) -> TransactionDetail | None:
    for purchase in purchases:
        if is_match(purchase.remaining_shares, shares):
            return purchase
    return None


def _covering_match(purchases: list[TransactionDetail], shares: Decimal) -> TransactionDetail | None:
    for purchase in purchases:
        if purchase.remaining_shares + SHARES_TOLERANCE >= shares:
            return purchase
    return None


class LotValidator:
    """Filters a batch of lots down to the sales that are fully reconciled."""

    def __init__(self, dialog: AllocationDialog | None = None) -> None:
        self.dialog = dialog

    def validate_lots(self, lots: Iterable[SecurityLot]) -> list[SecurityLot]:
        accepted: list[SecurityLot] = []
        for sale, sale_lots in _group_by_sale(lots).items():
            if any(lot.purchase is None for lot in sale_lots):
                logger.info("Incomplete lots for sale of %s on %s", sale.security.name, sale.date)
                _detach(sale_lots)
                continue
            unallocated = sale.shares - sale.sale_lot_shares - _sale_shares(sale_lots)
            if unallocated != 0:
                if self.dialog is not None:
                    edited = self.dialog.show(sale, sale_lots)
                    if edited is None:
                        logger.info("Lot allocation cancelled, discarding %d lots", len(accepted) + len(sale_lots))
                        _detach(accepted)
                        _detach(sale_lots)
                        return []
                    sale_lots = list(edited)
                elif not is_match(unallocated, ZERO):
                    logger.info(
                        "Lots for sale of %s on %s leave %s shares unallocated",
                        sale.security.name,
                        sale.date,
                        unallocated,
                    )
                    _detach(sale_lots)
                    continue
            accepted.extend(sale_lots)
        return [lot for lot in self._check_purchases(accepted) if not lot.is_empty]

    def _check_purchases(self, lots: list[SecurityLot]) -> list[SecurityLot]:
        over_allocated = {
            id(lot.purchase): lot.purchase
            for lot in lots
            if lot.purchase is not None and lot.purchase.remaining_shares < -SHARES_TOLERANCE
        }
        if not over_allocated:
            return lots
        rejected_sales = {
            id(lot.sale)
            for lot in lots
            if lot.purchase is not None and id(lot.purchase) in over_allocated and not lot.is_empty
        }
        for purchase in over_allocated.values():
            logger.warning("Purchase of %s on %s is over allocated", purchase.security.name, purchase.date)
        rejected = [lot for lot in lots if id(lot.sale) in rejected_sales]
        _detach(rejected)
        return [lot for lot in lots if id(lot.sale) not in rejected_sales]


def _group_by_sale(lots: Iterable[SecurityLot]) -> dict[TransactionDetail, list[SecurityLot]]:
    groups: dict[TransactionDetail, list[SecurityLot]] = {}
    for lot in lots:
        groups.setdefault(lot.sale, []).append(lot)
    return groups


def _sale_shares(lots: Iterable[SecurityLot]) -> Decimal:
    return sum((lot.sale_shares or ZERO for lot in lots), ZERO)


def _detach(lots: Iterable[SecurityLot]) -> None:
    for lot in list(lots):
        lot.detach()


__all__ = [
    "SHARES_TOLERANCE",
    "PRICE_TOLERANCE",
    "AMOUNT_TOLERANCE",
    "MAX_SUBSET_STEPS",
    "PurchaseCache",
    "AllocationDialog",
    "SaleMatcher",
    "PurchaseMatcher",
    "LotValidator",
    "find_subset",
    "is_match",
]
