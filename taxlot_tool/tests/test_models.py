from decimal import Decimal

import pytest

from conftest import d
from taxlot_tool.core.models import Account, Security, SplitRatio, StockSplit, TransactionDetail


def test_split_ratio_apply_and_revert():
    ratio = SplitRatio(Decimal(1), Decimal(2))
    assert ratio.apply(Decimal("8"), 6) == Decimal("16")
    assert ratio.revert(Decimal("16"), 6) == Decimal("8")
    assert ratio.ratio_as_decimal(2) == Decimal("2.00")


def test_split_ratio_rounds_half_even_to_scale():
    ratio = SplitRatio(Decimal(3), Decimal(1))
    assert ratio.apply(Decimal("10"), 6) == Decimal("3.333333")
    assert SplitRatio().apply(Decimal("0.0000025"), 6) == Decimal("0.000002")
    assert SplitRatio().apply(Decimal("0.0000035"), 6) == Decimal("0.000004")


def test_split_ratio_multiply_accumulates():
    combined = SplitRatio(Decimal(1), Decimal(2)).multiply(SplitRatio(Decimal(2), Decimal(3)))
    assert combined == SplitRatio(Decimal(2), Decimal(6))
    assert combined.apply(Decimal("10"), 6) == Decimal("30")


def test_split_ratio_rejects_non_positive():
    with pytest.raises(ValueError):
        SplitRatio(Decimal(0), Decimal(1))
    with pytest.raises(ValueError):
        SplitRatio(Decimal(1), Decimal(-2))


def test_default_split_ratio_is_identity():
    assert SplitRatio().is_identity
    assert SplitRatio().apply(Decimal("12.5"), 6) == Decimal("12.5")


def make_security() -> Security:
    return Security(
        "Acme",
        splits=[
            StockSplit(d("06/01/2002"), SplitRatio(Decimal(1), Decimal(2))),
            StockSplit(d("06/01/1995"), SplitRatio(Decimal(1), Decimal(3))),
        ],
    )


def test_split_ratio_folds_splits_in_range():
    security = make_security()
    assert security.get_split_ratio(d("01/20/1991"), d("02/28/2005")) == SplitRatio(Decimal(1), Decimal(6))
    assert security.get_split_ratio(d("01/20/2000"), d("02/28/2005")) == SplitRatio(Decimal(1), Decimal(2))
    assert security.get_split_ratio(d("01/20/1991"), d("01/01/2000")) == SplitRatio(Decimal(1), Decimal(3))


def test_split_range_is_inclusive():
    security = make_security()
    assert security.get_split_ratio(d("06/01/2002"), d("06/01/2002")) == SplitRatio(Decimal(1), Decimal(2))


def test_split_ratio_open_ended_and_missing_start():
    security = make_security()
    assert security.get_split_ratio(d("01/01/2000"), None) == SplitRatio(Decimal(1), Decimal(2))
    assert security.get_split_ratio(None, d("01/01/2010")).is_identity


def test_apply_and_revert_splits_use_security_scale():
    security = make_security()
    security.scale = 2
    assert security.apply_splits(Decimal("1.111"), d("01/01/1990"), None) == Decimal("6.67")
    assert security.revert_splits(Decimal("10"), d("01/01/1990"), None) == Decimal("1.67")


def test_transaction_detail_shares():
    security = Security("Acme")
    account = Account("Brokerage")
    sale = TransactionDetail(d("02/28/2005"), account, security, Decimal("100"), Decimal("-10"))
    purchase = TransactionDetail(
        d("01/20/2000"), account, security, Decimal("-50"), Decimal("10"), allocated_shares=Decimal("4")
    )
    assert sale.is_sale and sale.shares == Decimal("10")
    assert not purchase.is_sale
    assert purchase.remaining_shares == Decimal("6")
    assert sale.unallocated_sale_shares == Decimal("10")
