"""Interactive lot allocation on the terminal."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from ..core.lots import LotAllocationStrategy, SecurityLot
from ..core.models import ZERO, TransactionDetail

HELP_TEXT = (
    "Commands: first_in, last_in, lowest_price, highest_price, "
    "set <row> <shares>, clear, save, cancel"
)


def lots_table(sale: TransactionDetail, lots: list[SecurityLot]) -> Table:
    table = Table(title=f"Sale of {sale.shares} {sale.security.name} on {sale.date.isoformat()}")
    table.add_column("#", justify="right")
    table.add_column("Purchased")
    table.add_column("Shares", justify="right")
    table.add_column("Available", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Allocated", justify="right")
    for index, lot in enumerate(lots, start=1):
        table.add_row(
            str(index),
            lot.purchase_date.isoformat(),
            f"{lot.total_purchase_shares}",
            f"{lot.remaining_purchase_shares}",
            f"{lot.purchase_price:.4f}",
            f"{lot.sale_shares or ZERO}",
        )
    return table


class ConsoleAllocationDialog:
    """Lets the user allocate the shares of a sale across candidate lots.

    ``ask`` reads one command line; it defaults to a Rich prompt and can be
    replaced for scripted input.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        ask: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.console = console or Console()
        self.ask = ask or (lambda prompt: Prompt.ask(prompt, console=self.console))

    def show(self, sale: TransactionDetail, lots: list[SecurityLot]) -> list[SecurityLot] | None:
        lots = [lot for lot in lots if lot.purchase is not None]
        previous = [lot.sale_shares for lot in lots]
        self.console.print(HELP_TEXT)
        while True:
            self.console.print(lots_table(sale, lots))
            allocated = sum((lot.sale_shares or ZERO for lot in lots), ZERO)
            unallocated = sale.shares - sale.sale_lot_shares - allocated
            self.console.print(f"Unallocated shares: {unallocated}")
            command = self.ask("Allocation").strip()
            if not command:
                continue
            name, *args = command.split()
            name = name.lower()
            if name == "cancel":
                for lot, shares in zip(lots, previous):
                    lot.sale_shares = shares
                return None
            if name == "save":
                if any(lot.remaining_purchase_shares < 0 for lot in lots):
                    self.console.print("[red]A purchase is allocated more shares than it has.[/red]")
                elif allocated == 0 or unallocated == 0:
                    return lots
                else:
                    self.console.print("[red]Allocate every share of the sale or none before saving.[/red]")
            elif name == "clear":
                for lot in lots:
                    lot.sale_shares = ZERO
            elif name == "set":
                self._set_shares(lots, args)
            else:
                try:
                    strategy = LotAllocationStrategy.parse(name)
                except ValueError:
                    self.console.print(f"[red]Unknown command: {name}[/red]")
                    continue
                for lot in lots:
                    lot.sale_shares = ZERO
                strategy.allocate_lots(lots, sale.shares - sale.sale_lot_shares)

    def _set_shares(self, lots: list[SecurityLot], args: list[str]) -> None:
        if len(args) != 2:
            self.console.print("[red]Usage: set <row> <shares>[/red]")
            return
        try:
            row = int(args[0])
            shares = Decimal(args[1])
        except (ValueError, InvalidOperation):
            self.console.print("[red]Row must be a number and shares a decimal.[/red]")
            return
        if not 1 <= row <= len(lots) or shares < 0:
            self.console.print("[red]No such row or negative shares.[/red]")
            return
        lot = lots[row - 1]
        previous = lot.sale_shares
        lot.sale_shares = shares
        if lot.remaining_purchase_shares < 0:
            lot.sale_shares = previous
            self.console.print("[red]Not enough shares left in that purchase.[/red]")


__all__ = ["ConsoleAllocationDialog", "lots_table"]
