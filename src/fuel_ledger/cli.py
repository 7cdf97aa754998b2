"""Command-line entry points for the fuel ledger reports.

All orchestration in this module is limited to argparse wiring, translating
arguments into calls on :mod:`fuel_ledger.core_logic`, and rendering the
resulting rows. Every command is read-only.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reports
from .constants import FuelType
from .snapshot import LedgerError, LoadState, NotReady

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_LEDGER_ERROR = 2
EXIT_MISSING_FILE = 3
EXIT_NOT_READY = 4


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Balances, stock levels, and reports for the fuel station ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upwards from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = register_commands(subparsers)
    return build_command_table(specs.values())


def register_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare every reporting sub-command."""
    specs = {
        "balance": _simple_spec(
            "balance",
            "Show one customer's outstanding balance.",
            run_balance,
            lambda parser: parser.add_argument("--customer-id", required=True),
        ),
        "supplier-balance": _simple_spec(
            "supplier-balance",
            "Show what is owed to one supplier.",
            run_supplier_balance,
            lambda parser: parser.add_argument("--supplier-id", required=True),
        ),
        "stock": _simple_spec(
            "stock",
            "Show current fuel stock levels.",
            run_stock,
            lambda parser: parser.add_argument(
                "--fuel-type",
                choices=[member.value for member in FuelType],
                default=None,
            ),
        ),
        "defaulters": _simple_spec(
            "defaulters",
            "List customers with an outstanding balance.",
            run_defaulters,
            _add_defaulter_arguments,
        ),
        "product-sales": _simple_spec(
            "product-sales",
            "Summarise volume and revenue per fuel type.",
            run_product_sales,
            add_period_arguments,
        ),
        "stock-movement": _simple_spec(
            "stock-movement",
            "Show purchased, sold, and returned volume per fuel type.",
            run_stock_movement,
            add_period_arguments,
        ),
        "profit-margin": _simple_spec(
            "profit-margin",
            "Show margin per fuel type from average sale and cost prices.",
            run_profit_margin,
            add_period_arguments,
        ),
        "statement": _simple_spec(
            "statement",
            "Show one customer's chronological ledger.",
            run_statement,
            _add_statement_arguments,
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    add_arguments: Callable[[argparse.ArgumentParser], object],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def parse_period_start(raw: str) -> datetime:
    """Parse an inclusive ISO start bound."""
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date: {raw}") from exc


def parse_period_end(raw: str) -> datetime:
    """Parse an inclusive ISO end bound; a bare date covers the whole day."""
    moment = parse_period_start(raw)
    if len(raw) == 10:
        moment = moment + timedelta(days=1) - timedelta(microseconds=1)
    return moment


def add_period_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from", dest="start", type=parse_period_start, default=None)
    parser.add_argument("--to", dest="end", type=parse_period_end, default=None)


def _add_defaulter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--area", default=None, help="Only list customers from this area.")
    add_period_arguments(parser)


def _add_statement_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    add_period_arguments(parser)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context and load every collection into its feed."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    core_logic.load_collections(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def format_amount(value: Decimal, places: int) -> str:
    quantum = Decimal(1).scaleb(-places)
    return f"{value.quantize(quantum):,}"


def render_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    """Lay out rows as left-aligned text columns."""
    materialised = [list(headers), *[list(row) for row in rows]]
    widths = [max(len(row[index]) for row in materialised) for index in range(len(headers))]
    lines = ["  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip() for row in materialised]
    return "\n".join(lines)


def report_not_ready(state: NotReady) -> int:
    pending = ", ".join(name.value for name in state.pending)
    log.warning("Report requested before collections finished loading: %s", pending)
    print(f"Still loading: {pending}")
    return EXIT_NOT_READY


def _emit(state: LoadState, render: Callable[[object], str]) -> int:
    if isinstance(state, NotReady):
        return report_not_ready(state)
    print(render(state.value))
    return EXIT_OK


def run_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    state = core_logic.customer_balance(context, args.customer_id)
    return _emit(state, lambda balance: f"{args.customer_id}: {format_amount(balance, places)}")


def run_supplier_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    state = core_logic.supplier_balance(context, args.supplier_id)
    return _emit(state, lambda balance: f"{args.supplier_id}: {format_amount(balance, places)}")


def run_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    fuel_types = [FuelType(args.fuel_type)] if args.fuel_type else list(FuelType)
    lines = []
    for fuel_type in fuel_types:
        state = core_logic.fuel_stock(context, fuel_type)
        if isinstance(state, NotReady):
            return report_not_ready(state)
        lines.append((fuel_type.value, format_amount(state.value, places)))
    print(render_table(("Fuel", "Stock"), lines))
    return EXIT_OK


def run_defaulters(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    state = core_logic.defaulters(context, area=args.area, start=args.start, end=args.end)

    def render(rows):
        if not rows:
            return "No customer defaulters found."
        return render_table(
            ("Customer", "Name", "Contact", "Area", "Balance"),
            [
                (row.customer_id, row.name, row.contact, row.area or "-", format_amount(row.balance, places))
                for row in rows
            ],
        )

    return _emit(state, render)


def run_product_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    state = core_logic.product_sales(context, start=args.start, end=args.end)

    def render(rows):
        totals = reports.product_sales_totals(rows)
        body = [
            (
                row.fuel_type.value,
                format_amount(row.total_quantity, places),
                format_amount(row.total_revenue, places),
                format_amount(row.avg_price_per_unit, places),
            )
            for row in rows
        ]
        body.append(("Total", format_amount(totals.total_quantity, places), format_amount(totals.total_revenue, places), ""))
        return render_table(("Fuel", "Volume", "Revenue", "Avg/Unit"), body)

    return _emit(state, render)


def run_stock_movement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    state = core_logic.stock_movement(context, start=args.start, end=args.end)

    def render(rows):
        return render_table(
            ("Fuel", "Purchased", "Sold", "Returned", "Current"),
            [
                (
                    row.fuel_type.value,
                    format_amount(row.total_purchased, places),
                    format_amount(row.total_sold, places),
                    format_amount(row.total_returned, places),
                    format_amount(row.current_stock, places),
                )
                for row in rows
            ],
        )

    return _emit(state, render)


def run_profit_margin(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    state = core_logic.profit_margin(context, start=args.start, end=args.end)

    def render(rows):
        totals = reports.profit_margin_totals(rows)
        body = [
            (
                row.fuel_type.value,
                format_amount(row.total_quantity_sold, places),
                format_amount(row.total_revenue, places),
                format_amount(row.total_cost, places),
                format_amount(row.margin, places),
                f"{format_amount(row.margin_percent, places)}%",
            )
            for row in rows
        ]
        body.append((
            "Total",
            "",
            format_amount(totals.total_revenue, places),
            format_amount(totals.total_cost, places),
            format_amount(totals.total_margin, places),
            "",
        ))
        return render_table(("Fuel", "Sold", "Revenue", "Cost", "Margin", "Margin %"), body)

    return _emit(state, render)


def run_statement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    places = context.settings.decimal_places
    state = core_logic.statement(context, args.customer_id, start=args.start, end=args.end)

    def render(entries):
        if not entries:
            return f"No ledger entries for customer {args.customer_id}."

        def cell(amount: Decimal) -> str:
            return format_amount(amount, places) if amount else "-"

        return render_table(
            ("Date", "Type", "Description", "Debit", "Credit", "Balance"),
            [
                (
                    entry.timestamp.isoformat(sep=" ", timespec="minutes"),
                    entry.kind,
                    entry.description,
                    cell(entry.debit),
                    cell(entry.credit),
                    format_amount(entry.balance, places),
                )
                for entry in entries
            ],
        )

    return _emit(state, render)


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, LedgerError):
        return EXIT_LEDGER_ERROR
    if isinstance(error, FileNotFoundError):
        return EXIT_MISSING_FILE
    return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
