"""Services that reconcile sales with purchase lots through the ledger."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from .capital_gain import (
    DEFAULT_DATE_FORMAT,
    SOURCE_FORMAT,
    CapitalGainReader,
    CapitalGainRecord,
    ImportFailedError,
)
from .lots import LotAllocationStrategy, SecurityLot
from .matching import (
    SHARES_TOLERANCE,
    AllocationDialog,
    LotValidator,
    PurchaseCache,
    PurchaseMatcher,
    SaleKey,
    SaleMatcher,
)
from .models import TransactionDetail

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..data.repo_base import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ImportSummary:
    record_count: int
    matched_count: int
    lot_count: int

    @property
    def ignored_count(self) -> int:
        return self.record_count - self.matched_count


class CapitalGainImport:
    """Creates security lots from a capital gains report.

    Records are matched to sales that have no lots yet, then to purchases with
    unallocated shares.  Sales that cannot be fully matched are handed to the
    allocation dialog when one is configured, otherwise they are left for
    manual reconciliation.  All lots are saved with a single ledger call.
    """

    def __init__(
        self,
        ledger: LedgerRepository,
        dialog: AllocationDialog | None = None,
        *,
        date_format: str = DEFAULT_DATE_FORMAT,
    ) -> None:
        self.ledger = ledger
        self.dialog = dialog
        self.date_format = date_format

    def import_path(self, path: Path | str) -> ImportSummary:
        target = Path(path)
        try:
            fh = target.open("r", encoding="utf-8", newline="")
        except OSError as exc:
            raise ImportFailedError(SOURCE_FORMAT, 0) from exc
        with fh:
            return self.import_file(fh)

    def import_file(self, stream: TextIO) -> ImportSummary:
        records = self._read_records(stream)
        sale_map = _group_by_sale(records)

        purchase_cache: PurchaseCache = {}
        record_lots = SaleMatcher(self.ledger).assign_sales(sale_map)
        lots = PurchaseMatcher(self.ledger, purchase_cache).assign_purchases(record_lots)
        lots = LotValidator(self.dialog).validate_lots(lots)
        if lots:
            self.ledger.save_security_lots(lots)

        summary = ImportSummary(
            record_count=len(records),
            matched_count=len(record_lots),
            lot_count=len(lots),
        )
        logger.info(
            "Imported %d records: %d matched to sales, %d lots saved",
            summary.record_count,
            summary.matched_count,
            summary.lot_count,
        )
        return summary

    def _read_records(self, stream: TextIO) -> list[CapitalGainRecord]:
        reader = CapitalGainReader(stream, self.date_format)
        try:
            return list(reader.records())
        except (OSError, UnicodeDecodeError) as exc:
            raise ImportFailedError(SOURCE_FORMAT, reader.line_number) from exc


def _group_by_sale(records: list[CapitalGainRecord]) -> dict[SaleKey, list[CapitalGainRecord]]:
    sale_map: dict[SaleKey, list[CapitalGainRecord]] = {}
    for record in records:
        sale_map.setdefault((record.security_name, record.sale_date), []).append(record)
    return sale_map


class LotAllocationService:
    """Allocates the shares of a single sale outside of an import."""

    def __init__(self, ledger: LedgerRepository, dialog: AllocationDialog | None = None) -> None:
        self.ledger = ledger
        self.dialog = dialog

    def available_lots(self, sale: TransactionDetail) -> list[SecurityLot]:
        return list(self.ledger.find_available_lots(sale))

    def allocate(self, sale: TransactionDetail, strategy: LotAllocationStrategy) -> list[SecurityLot]:
        lots = self.available_lots(sale)
        remaining = strategy.allocate_lots(lots, sale.shares)
        if remaining > 0:
            logger.info(
                "%s left %s of %s shares unallocated for sale of %s on %s",
                strategy.label,
                remaining,
                sale.shares,
                sale.security.name,
                sale.date,
            )
        return lots

    def reconcile(
        self,
        sale: TransactionDetail,
        strategy: LotAllocationStrategy | None = None,
    ) -> list[SecurityLot]:
        """Allocate with ``strategy`` or the dialog and save the result.

        Returns the saved lots, or an empty list when the dialog was cancelled.
        """

        if strategy is not None:
            lots = self.allocate(sale, strategy)
        elif self.dialog is not None:
            edited = self.dialog.show(sale, self.available_lots(sale))
            if edited is None:
                logger.info("Lot allocation cancelled for sale of %s on %s", sale.security.name, sale.date)
                return []
            lots = list(edited)
        else:
            raise ValueError("A strategy or an allocation dialog is required")
        for lot in lots:
            if lot.purchase is not None and lot.purchase.remaining_shares < -SHARES_TOLERANCE:
                raise ValueError(f"Purchase of {lot.security.name} on {lot.purchase_date} is over allocated")
        self.ledger.save_security_lots(lots)
        return [lot for lot in lots if not lot.is_empty]


__all__ = ["ImportSummary", "CapitalGainImport", "LotAllocationService"]
