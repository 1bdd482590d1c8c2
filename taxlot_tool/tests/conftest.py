from __future__ import annotations

import datetime as dt
import itertools
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import pytest
from sqlalchemy import create_engine

from taxlot_tool.config import Config
from taxlot_tool.core.lots import SecurityLot
from taxlot_tool.core.models import Account, Security, StockSplit, SplitRatio, TransactionDetail
from taxlot_tool.data import models
from taxlot_tool.data.repo import Database
from taxlot_tool.data.repo_base import LedgerRepository

HEADER = "Acct\tSecurity\tShares\tBought\tSold\tSales Price\tCost Basis\tGain/Loss\n"


def d(value: str) -> dt.date:
    """Parse ``MM/DD/YYYY``."""

    return dt.datetime.strptime(value, "%m/%d/%Y").date()


def report(*rows: str) -> str:
    return HEADER + "".join(row + "\n" for row in rows)


class FakeLedger(LedgerRepository):
    """In-memory ledger that records the queries made against it."""

    def __init__(self) -> None:
        self.account = Account("Brokerage", id=1)
        self.details: list[TransactionDetail] = []
        self.sale_queries: list[tuple[str, dt.date]] = []
        self.purchase_queries: list[tuple[Account, Security, dt.date]] = []
        self.saved: list[list[SecurityLot]] = []
        self._security_ids = itertools.count(100)

    def security(self, name: str, *splits: tuple[str, str]) -> Security:
        return Security(
            name,
            splits=[StockSplit(d(date), SplitRatio(Decimal(1), Decimal(ratio))) for date, ratio in splits],
            id=next(self._security_ids),
        )

    def add(self, date: str, security: Security, amount: str, shares: str) -> TransactionDetail:
        detail = TransactionDetail(
            date=d(date),
            account=self.account,
            security=security,
            amount=Decimal(amount),
            asset_quantity=Decimal(shares),
            id=len(self.details) + 1,
        )
        self.details.append(detail)
        return detail

    # --- LedgerRepository ---------------------------------------------
    def find_security_sales_without_lots(self, security_name_prefix, sale_date):
        self.sale_queries.append((security_name_prefix, sale_date))
        prefix = security_name_prefix.lower()
        return [
            detail
            for detail in self.details
            if detail.is_sale
            and detail.date == sale_date
            and detail.security.name.lower().startswith(prefix)
            and detail.sale_lot_shares == 0
        ]

    def get_sale(self, detail_id):
        for detail in self.details:
            if detail.id == detail_id and detail.is_sale:
                return detail
        return None

    def list_sales_without_lots(self):
        return [detail for detail in self.details if detail.is_sale and detail.sale_lot_shares < detail.shares]

    def find_purchases_with_remaining_lots(self, account, security, purchase_date):
        self.purchase_queries.append((account, security, purchase_date))
        return [
            detail
            for detail in self.details
            if not detail.is_sale
            and detail.account is account
            and detail.security is security
            and detail.date == purchase_date
            and detail.asset_quantity > detail.allocated_shares
        ]

    def find_available_lots(self, sale):
        return [
            SecurityLot(detail, sale, Decimal(0))
            for detail in self.details
            if not detail.is_sale
            and detail.security is sale.security
            and detail.date <= sale.date
            and detail.asset_quantity > detail.allocated_shares
        ]

    def save_security_lots(self, lots: Iterable[SecurityLot]) -> None:
        self.saved.append(list(lots))

    # --- helpers --------------------------------------------------------
    @property
    def saved_lots(self) -> list[SecurityLot]:
        assert len(self.saved) == 1
        return self.saved[0]

    def queries_for(self, security: Security) -> int:
        return sum(1 for _, queried, _ in self.purchase_queries if queried is security)


def find_lot(lots, sale, sale_shares, purchase, purchase_shares) -> SecurityLot:
    for lot in lots:
        if (
            lot.sale is sale
            and lot.sale_shares == Decimal(sale_shares)
            and lot.purchase is purchase
            and lot.purchase_shares == Decimal(purchase_shares)
        ):
            return lot
    raise AssertionError(f"lot not found: {sale.security.name} {sale_shares} / {purchase_shares}")


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def cfg(tmp_path: Path) -> Config:
    config = Config()
    config.db_path = tmp_path / "ledger.db"
    return config


@pytest.fixture
def db(cfg: Config) -> Database:
    engine = create_engine("sqlite+pysqlite:///:memory:")
    models.Base.metadata.create_all(engine)
    return Database(engine)


@pytest.fixture
def session(db: Database):
    with db.session_scope() as session:
        yield session
