from __future__ import annotations

import datetime as dt
from contextlib import contextmanager
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Iterator

from sqlalchemy import and_, exists, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core import lots as domain_lots
from ..core import models as domain
from . import models
from .repo_base import LedgerRepository, RepositoryError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from sqlalchemy.engine import Engine
else:
    Engine = Any

ZERO = Decimal("0")


class Database:
    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self):
        models.Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _purchase_lot_shares():
    return (
        select(func.coalesce(func.sum(models.SecurityLot.purchase_shares), 0))
        .where(models.SecurityLot.purchase_detail_id == models.TransactionDetail.id)
        .correlate(models.TransactionDetail)
        .scalar_subquery()
    )


def _sale_lot_shares():
    return (
        select(func.coalesce(func.sum(models.SecurityLot.sale_shares), 0))
        .where(models.SecurityLot.sale_detail_id == models.TransactionDetail.id)
        .correlate(models.TransactionDetail)
        .scalar_subquery()
    )


class SQLLedgerRepository(LedgerRepository):
    """Ledger backed by a SQLAlchemy session.

    Accounts and securities are mapped to one domain object per row so that
    details loaded by different queries share them.  Details are mapped fresh
    on every query.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self._accounts: dict[int, domain.Account] = {}
        self._securities: dict[int, domain.Security] = {}

    # --- mapping -------------------------------------------------------
    def _account(self, row: models.Account) -> domain.Account:
        account = self._accounts.get(row.id)
        if account is None:
            account = self._accounts[row.id] = domain.Account(name=row.name, id=row.id)
        return account

    def _security(self, row: models.Security) -> domain.Security:
        security = self._securities.get(row.id)
        if security is None:
            security = self._securities[row.id] = domain.Security(
                name=row.name,
                scale=row.scale,
                splits=[
                    domain.StockSplit(
                        date=split.date,
                        split_ratio=domain.SplitRatio(split.shares_in, split.shares_out),
                        id=split.id,
                    )
                    for split in row.splits
                ],
                id=row.id,
            )
        return security

    def _detail(self, row: models.TransactionDetail) -> domain.TransactionDetail:
        return domain.TransactionDetail(
            date=row.date,
            account=self._account(row.account),
            security=self._security(row.security),
            amount=Decimal(row.amount),
            asset_quantity=Decimal(row.asset_quantity),
            allocated_shares=sum((Decimal(lot.purchase_shares) for lot in row.purchase_lots), ZERO),
            sale_lot_shares=sum((Decimal(lot.sale_shares) for lot in row.sale_lots), ZERO),
            id=row.id,
        )

    def _details(self, stmt) -> list[domain.TransactionDetail]:
        try:
            rows = self.session.scalars(stmt).unique().all()
        except SQLAlchemyError as exc:
            raise RepositoryError(str(exc)) from exc
        return [self._detail(row) for row in rows]

    # --- sales ---------------------------------------------------------
    def find_security_sales_without_lots(
        self, security_name_prefix: str, sale_date: dt.date
    ) -> list[domain.TransactionDetail]:
        Detail = models.TransactionDetail
        stmt = (
            select(Detail)
            .join(Detail.security)
            .where(
                func.lower(models.Security.name).like(security_name_prefix.lower() + "%"),
                Detail.date == sale_date,
                Detail.asset_quantity < 0,
                ~exists().where(models.SecurityLot.sale_detail_id == Detail.id),
            )
            .order_by(Detail.id)
        )
        return self._details(stmt)

    def get_sale(self, detail_id: int) -> domain.TransactionDetail | None:
        row = self.session.get(models.TransactionDetail, detail_id)
        if row is None or row.asset_quantity >= 0:
            return None
        return self._detail(row)

    def list_sales_without_lots(self) -> list[domain.TransactionDetail]:
        Detail = models.TransactionDetail
        stmt = (
            select(Detail)
            .where(Detail.asset_quantity < 0, -Detail.asset_quantity > _sale_lot_shares())
            .order_by(Detail.date, Detail.id)
        )
        return self._details(stmt)

    # --- purchases -----------------------------------------------------
    def find_purchases_with_remaining_lots(
        self, account: domain.Account, security: domain.Security, purchase_date: dt.date
    ) -> list[domain.TransactionDetail]:
        Detail = models.TransactionDetail
        stmt = (
            select(Detail)
            .where(
                Detail.account_id == account.id,
                Detail.security_id == security.id,
                Detail.date == purchase_date,
                Detail.asset_quantity > 0,
                Detail.asset_quantity > _purchase_lot_shares(),
            )
            .order_by(Detail.id)
        )
        return self._details(stmt)

    def _available_purchases(self, sale: domain.TransactionDetail) -> list[domain.TransactionDetail]:
        Detail = models.TransactionDetail
        stmt = (
            select(Detail)
            .where(
                Detail.account_id == sale.account.id,
                Detail.security_id == sale.security.id,
                Detail.date <= sale.date,
                Detail.asset_quantity > 0,
                Detail.asset_quantity > _purchase_lot_shares(),
            )
            .order_by(Detail.date, Detail.id)
        )
        return self._details(stmt)

    # --- lots ----------------------------------------------------------
    def find_available_lots(self, sale: domain.TransactionDetail) -> list[domain_lots.SecurityLot]:
        stmt = (
            select(models.SecurityLot)
            .where(models.SecurityLot.sale_detail_id == sale.id)
            .order_by(models.SecurityLot.id)
        )
        try:
            rows = list(self.session.scalars(stmt))
        except SQLAlchemyError as exc:
            raise RepositoryError(str(exc)) from exc

        for lot in list(sale.lots):
            lot.detach()
        # every stored lot of the sale is tracked in memory from here on
        sale.sale_lot_shares = ZERO
        lots: list[domain_lots.SecurityLot] = []
        purchases: dict[int, domain.TransactionDetail] = {}
        for row in rows:
            purchase = purchases.get(row.purchase_detail_id)
            if purchase is None:
                purchase = purchases[row.purchase_detail_id] = self._detail(row.purchase)
            purchase.allocated_shares -= Decimal(row.purchase_shares)
            lots.append(domain_lots.SecurityLot(purchase, sale, Decimal(row.sale_shares), id=row.id))

        for purchase in self._available_purchases(sale):
            if purchase.id not in purchases:
                purchases[purchase.id] = purchase
                lots.append(domain_lots.SecurityLot(purchase, sale, ZERO))
        return lots

    def save_security_lots(self, lots: Iterable[domain_lots.SecurityLot]) -> None:
        for lot in lots:
            if lot.id is not None:
                row = self.session.get(models.SecurityLot, lot.id)
                if row is None:
                    continue
                if lot.is_empty:
                    self.session.delete(row)
                else:
                    row.sale_shares = lot.sale_shares
                    row.purchase_shares = lot.purchase_shares
            elif not lot.is_empty:
                row = models.SecurityLot(
                    purchase_detail_id=lot.purchase.id,
                    sale_detail_id=lot.sale.id,
                    purchase_shares=lot.purchase_shares,
                    sale_shares=lot.sale_shares,
                )
                self.session.add(row)
                self.session.flush()
                lot.id = row.id
        self.session.flush()
        # reload lot collections of details on next access
        self.session.expire_all()

    # --- securities ----------------------------------------------------
    def get_security(self, name: str) -> domain.Security | None:
        row = self.session.scalars(
            select(models.Security).where(func.lower(models.Security.name) == name.lower())
        ).first()
        return self._security(row) if row is not None else None

    def add_stock_split(
        self, security_name: str, split_date: dt.date, ratio: domain.SplitRatio
    ) -> domain.StockSplit:
        row = self.session.scalars(
            select(models.Security).where(func.lower(models.Security.name) == security_name.lower())
        ).first()
        if row is None:
            raise RepositoryError(f"Unknown security: {security_name}")
        existing = self.session.scalars(
            select(models.StockSplit).where(
                and_(models.StockSplit.security_id == row.id, models.StockSplit.date == split_date)
            )
        ).first()
        if existing is None:
            existing = models.StockSplit(security_id=row.id, date=split_date)
            self.session.add(existing)
        existing.shares_in = ratio.shares_in
        existing.shares_out = ratio.shares_out
        self.session.flush()
        self.session.refresh(row)
        self._securities.pop(row.id, None)
        return domain.StockSplit(date=split_date, split_ratio=ratio, id=existing.id)


__all__ = ["Database", "SQLLedgerRepository"]
