from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    details: Mapped[list["TransactionDetail"]] = relationship(back_populates="account")


class Security(Base):
    __tablename__ = "securities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    symbol: Mapped[str | None] = mapped_column(String(16))
    scale: Mapped[int] = mapped_column(Integer, nullable=False, default=6)

    splits: Mapped[list["StockSplit"]] = relationship(
        back_populates="security", cascade="all, delete-orphan", order_by="StockSplit.date"
    )


class StockSplit(Base):
    __tablename__ = "stock_splits"
    __table_args__ = (UniqueConstraint("security_id", "date", name="stock_split_ak"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    security_id: Mapped[int] = mapped_column(ForeignKey("securities.id"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    shares_in: Mapped[Decimal] = mapped_column(Numeric(19, 6), nullable=False, default=Decimal("1"))
    shares_out: Mapped[Decimal] = mapped_column(Numeric(19, 6), nullable=False, default=Decimal("1"))

    security: Mapped[Security] = relationship(back_populates="splits")


class TransactionDetail(Base):
    __tablename__ = "transaction_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)
    security_id: Mapped[int] = mapped_column(ForeignKey("securities.id"), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 2), nullable=False)
    asset_quantity: Mapped[Decimal] = mapped_column(Numeric(19, 6), nullable=False)
    memo: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: dt.datetime.now(dt.timezone.utc), nullable=False
    )

    account: Mapped[Account] = relationship(back_populates="details")
    security: Mapped[Security] = relationship()
    purchase_lots: Mapped[list["SecurityLot"]] = relationship(
        back_populates="purchase", foreign_keys="SecurityLot.purchase_detail_id"
    )
    sale_lots: Mapped[list["SecurityLot"]] = relationship(
        back_populates="sale", foreign_keys="SecurityLot.sale_detail_id"
    )


class SecurityLot(Base):
    __tablename__ = "security_lots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    purchase_detail_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_details.id"), nullable=False, index=True
    )
    sale_detail_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_details.id"), nullable=False, index=True
    )
    purchase_shares: Mapped[Decimal] = mapped_column(Numeric(19, 6), nullable=False)
    sale_shares: Mapped[Decimal] = mapped_column(Numeric(19, 6), nullable=False)

    purchase: Mapped[TransactionDetail] = relationship(
        back_populates="purchase_lots", foreign_keys=[purchase_detail_id]
    )
    sale: Mapped[TransactionDetail] = relationship(
        back_populates="sale_lots", foreign_keys=[sale_detail_id]
    )
