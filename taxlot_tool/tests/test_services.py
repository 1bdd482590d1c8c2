import io
from decimal import Decimal

import pytest
from rich.console import Console

from taxlot_tool.app.dialog import ConsoleAllocationDialog
from taxlot_tool.core.lots import LotAllocationStrategy
from taxlot_tool.core.services import LotAllocationService


def seed(ledger):
    security = ledger.security("ACME CORP")
    sale = ledger.add("06/30/2005", security, "500.00", "-25")
    old = ledger.add("01/20/2000", security, "-100.00", "10")
    new = ledger.add("01/20/2003", security, "-600.00", "30")
    ledger.add("01/20/2006", security, "-10.00", "10")
    return sale, old, new


def test_available_lots_cover_earlier_purchases(ledger):
    sale, old, new = seed(ledger)

    lots = LotAllocationService(ledger).available_lots(sale)

    assert [lot.purchase for lot in lots] == [old, new]
    assert all(lot.is_empty for lot in lots)


def test_allocate_with_strategy(ledger):
    sale, old, new = seed(ledger)

    lots = LotAllocationService(ledger).allocate(sale, LotAllocationStrategy.LAST_IN)

    assert [(lot.purchase, lot.sale_shares) for lot in lots] == [(old, Decimal("0")), (new, Decimal("25"))]
    assert ledger.saved == []


def test_reconcile_saves_strategy_allocation(ledger):
    sale, old, new = seed(ledger)

    saved = LotAllocationService(ledger).reconcile(sale, LotAllocationStrategy.FIRST_IN)

    assert [(lot.purchase, lot.sale_shares) for lot in saved] == [(old, Decimal("10")), (new, Decimal("15"))]
    assert len(ledger.saved) == 1
    assert sale.unallocated_sale_shares == Decimal("0")


def test_reconcile_with_dialog(ledger):
    sale, old, new = seed(ledger)

    class Dialog:
        def show(self, shown, lots):
            lots[1].sale_shares = Decimal("25")
            return lots

    saved = LotAllocationService(ledger, Dialog()).reconcile(sale)

    assert [(lot.purchase, lot.sale_shares) for lot in saved] == [(new, Decimal("25"))]
    # empty lots still reach the ledger
    assert len(ledger.saved[0]) == 2


def test_reconcile_cancelled_saves_nothing(ledger):
    sale, _, _ = seed(ledger)

    class Dialog:
        def show(self, shown, lots):
            return None

    assert LotAllocationService(ledger, Dialog()).reconcile(sale) == []
    assert ledger.saved == []


def test_reconcile_requires_strategy_or_dialog(ledger):
    sale, _, _ = seed(ledger)
    with pytest.raises(ValueError):
        LotAllocationService(ledger).reconcile(sale)


def test_reconcile_rejects_over_allocated_purchase(ledger):
    sale, old, _ = seed(ledger)

    class Dialog:
        def show(self, shown, lots):
            lots[0].sale_shares = Decimal("25")
            return lots

    with pytest.raises(ValueError, match="over allocated"):
        LotAllocationService(ledger, Dialog()).reconcile(sale)
    assert ledger.saved == []


def test_reconcile_with_console_dialog_keeps_purchase_limits(ledger):
    sale, old, new = seed(ledger)
    answers = iter(["set 1 25", "set 1 10", "set 2 15", "save"])
    dialog = ConsoleAllocationDialog(Console(file=io.StringIO()), ask=lambda prompt: next(answers))

    saved = LotAllocationService(ledger, dialog).reconcile(sale)

    assert [(lot.purchase, lot.sale_shares) for lot in saved] == [(old, Decimal("10")), (new, Decimal("15"))]
    assert old.remaining_shares == Decimal("0")
