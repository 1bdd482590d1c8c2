"""Command-line interface for the tax lot tool."""
from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config import Config, load_config
from ..core.capital_gain import CapitalGainError
from ..core.lots import LotAllocationStrategy
from ..core.models import SplitRatio
from ..core.services import CapitalGainImport, LotAllocationService
from ..data.init_db import ensure_db
from ..data.repo import Database, SQLLedgerRepository
from ..data.repo_base import RepositoryError
from ..logging_utils import configure_logging
from .dialog import ConsoleAllocationDialog, lots_table

console = Console()
app = typer.Typer(help="Tax Lot Tool")
splits_app = typer.Typer(help="Manage stock splits")
app.add_typer(splits_app, name="splits")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.toml"),
):
    cfg = load_config(config)
    configure_logging(cfg.log_level, cfg.config_dir / "logs")
    ctx.obj = {"cfg": cfg, "db": Database(ensure_db(cfg))}


def _parse_strategy(value: Optional[str], cfg: Config) -> LotAllocationStrategy:
    if value is None:
        return cfg.default_strategy
    try:
        return LotAllocationStrategy.parse(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command("init-db")
def init_db(ctx: typer.Context):
    cfg: Config = ctx.obj["cfg"]
    console.print(f"Database ready at {cfg.db_path}")


@app.command("import-gains")
def import_gains(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Tab separated capital gains report"),
    interactive: Optional[bool] = typer.Option(
        None, "--interactive/--no-interactive", help="Resolve partial matches in a dialog"
    ),
):
    cfg: Config = ctx.obj["cfg"]
    db: Database = ctx.obj["db"]
    use_dialog = cfg.interactive if interactive is None else interactive
    dialog = ConsoleAllocationDialog(console) if use_dialog else None
    try:
        with db.session_scope() as session:
            importer = CapitalGainImport(SQLLedgerRepository(session), dialog, date_format=cfg.date_format)
            summary = importer.import_path(file)
    except CapitalGainError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(
        f"Read {summary.record_count} records, matched {summary.matched_count}, "
        f"saved {summary.lot_count} lots"
    )


@app.command()
def sales(ctx: typer.Context):
    db: Database = ctx.obj["db"]
    with db.session_scope() as session:
        rows = SQLLedgerRepository(session).list_sales_without_lots()
        table = Table(title="Sales Without Lots")
        table.add_column("ID")
        table.add_column("Date")
        table.add_column("Account")
        table.add_column("Security")
        table.add_column("Shares", justify="right")
        table.add_column("Amount", justify="right")
        table.add_column("Unallocated", justify="right")
        for sale in rows:
            table.add_row(
                str(sale.id),
                sale.date.isoformat(),
                sale.account.name,
                sale.security.name,
                f"{sale.shares}",
                f"{sale.amount:.2f}",
                f"{sale.unallocated_sale_shares}",
            )
        console.print(table)


@app.command()
def lots(ctx: typer.Context, sale_id: int):
    db: Database = ctx.obj["db"]
    with db.session_scope() as session:
        ledger = SQLLedgerRepository(session)
        sale = ledger.get_sale(sale_id)
        if sale is None:
            raise typer.BadParameter("Sale not found")
        console.print(lots_table(sale, LotAllocationService(ledger).available_lots(sale)))


@app.command()
def allocate(
    ctx: typer.Context,
    sale_id: int,
    strategy: Optional[str] = typer.Option(
        None, "--strategy", help="first_in, last_in, lowest_price or highest_price"
    ),
    interactive: bool = typer.Option(False, "--interactive", help="Edit the allocation in a dialog"),
):
    cfg: Config = ctx.obj["cfg"]
    db: Database = ctx.obj["db"]
    chosen = None if interactive else _parse_strategy(strategy, cfg)
    with db.session_scope() as session:
        ledger = SQLLedgerRepository(session)
        sale = ledger.get_sale(sale_id)
        if sale is None:
            raise typer.BadParameter("Sale not found")
        service = LotAllocationService(ledger, ConsoleAllocationDialog(console))
        saved = service.reconcile(sale, chosen)
        if interactive and not saved:
            console.print("Allocation cancelled")
            return
        console.print(lots_table(sale, saved))
        console.print(f"Saved {len(saved)} lots for sale {sale_id}")


@splits_app.command("add")
def splits_add(
    ctx: typer.Context,
    security: str,
    date: str = typer.Argument(..., help="Split date (YYYY-MM-DD)"),
    shares_in: str = typer.Argument(..., help="Shares before the split"),
    shares_out: str = typer.Argument(..., help="Shares after the split"),
):
    db: Database = ctx.obj["db"]
    try:
        split_date = dt.date.fromisoformat(date)
        ratio = SplitRatio(Decimal(shares_in), Decimal(shares_out))
    except (ValueError, InvalidOperation) as exc:
        raise typer.BadParameter(str(exc) or "Invalid split") from exc
    try:
        with db.session_scope() as session:
            SQLLedgerRepository(session).add_stock_split(security, split_date, ratio)
    except RepositoryError as exc:
        raise typer.BadParameter(str(exc)) from exc
    console.print(f"Recorded {shares_in}:{shares_out} split of {security} on {split_date.isoformat()}")


@splits_app.command("list")
def splits_list(ctx: typer.Context, security: str):
    db: Database = ctx.obj["db"]
    with db.session_scope() as session:
        found = SQLLedgerRepository(session).get_security(security)
        if found is None:
            raise typer.BadParameter(f"Unknown security: {security}")
        table = Table(title=f"Splits of {found.name}")
        table.add_column("Date")
        table.add_column("Shares In", justify="right")
        table.add_column("Shares Out", justify="right")
        for split in found.splits:
            table.add_row(
                split.date.isoformat(),
                f"{split.split_ratio.shares_in}",
                f"{split.split_ratio.shares_out}",
            )
        console.print(table)


if __name__ == "__main__":
    app()
