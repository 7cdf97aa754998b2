"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import datetime
from decimal import Decimal

import pytest

from fuel_ledger import cli, core_logic, data_manager
from fuel_ledger.constants import CollectionName, FuelType
from fuel_ledger.snapshot import CollectionShapeError


COMMANDS = {
    "balance",
    "supplier-balance",
    "stock",
    "defaulters",
    "product-sales",
    "stock-movement",
    "profit-margin",
    "statement",
}


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return cli.build_parser()


@pytest.fixture
def context(tmp_path) -> core_logic.RuntimeContext:
    """A context whose feed is filled directly, without a workbook."""

    settings = data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        station_name="Test Station",
        schema_version="1.0.0",
    )
    return core_logic.build_context(settings, workbook=None)


@pytest.fixture
def loaded_context(context) -> core_logic.RuntimeContext:
    for name in CollectionName:
        context.feed.publish(name, (), loaded=True)
    return context


def _args(**overrides) -> argparse.Namespace:
    values = {"start": None, "end": None, "area": None, "fuel_type": None}
    values.update(overrides)
    return argparse.Namespace(**values)


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata(cli_parser):
    assert cli_parser.prog == "ledger-cli"
    assert "fuel station" in (cli_parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == COMMANDS


def test_stock_command_limits_fuel_choices(cli_parser):
    cli.configure_subcommands(cli_parser)

    args = cli_parser.parse_args(["stock", "--fuel-type", "Diesel"])
    assert args.fuel_type == "Diesel"

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["stock", "--fuel-type", "Kerosene"])


def test_period_options_parse_inclusive_bounds(cli_parser):
    cli.configure_subcommands(cli_parser)

    args = cli_parser.parse_args(["defaulters", "--area", "North", "--from", "2025-01-01", "--to", "2025-01-31"])

    assert args.area == "North"
    assert args.start == datetime(2025, 1, 1)
    assert args.end == datetime(2025, 1, 31, 23, 59, 59, 999999)


def test_period_options_reject_bad_dates(cli_parser):
    cli.configure_subcommands(cli_parser)

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["product-sales", "--from", "January"])


def test_parse_period_end_keeps_explicit_time():
    assert cli.parse_period_end("2025-01-31T12:30") == datetime(2025, 1, 31, 12, 30)


def test_statement_requires_customer(cli_parser):
    cli.configure_subcommands(cli_parser)

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["statement"])


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_build_command_table_detects_duplicate_commands():
    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


def test_dispatch_command_invokes_executor(loaded_context):
    called = {}

    def execute(context, args):
        called["context"] = context
        return 7

    table = {"alpha": cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), execute)}

    assert cli.dispatch_command(loaded_context, argparse.Namespace(command="alpha"), table) == 7
    assert called["context"] is loaded_context


def test_dispatch_command_handles_unknown_commands(loaded_context):
    with pytest.raises(KeyError):
        cli.dispatch_command(loaded_context, argparse.Namespace(command="unknown"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(loaded_context, argparse.Namespace(), {})


def test_load_runtime_context_loads_every_collection(config_file):
    context = cli.load_runtime_context(config_file)

    assert context.feed.generation() == (1,) * len(CollectionName)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, places, expected",
    [
        (Decimal("1234.5"), 2, "1,234.50"),
        (Decimal("1234567.891"), 1, "1,234,567.9"),
        (Decimal("-500"), 0, "-500"),
    ],
)
def test_format_amount_rounds_and_groups(value, places, expected):
    assert cli.format_amount(value, places) == expected


def test_render_table_aligns_columns():
    assert cli.render_table(("A", "Long"), [("xx", "1")]) == "A   Long\nxx  1"


# ---------------------------------------------------------------------------
# Command executors
# ---------------------------------------------------------------------------


def test_run_balance_prints_formatted_balance(loaded_context, make, capsys):
    loaded_context.feed.publish(CollectionName.SALES, [make.sale("5000", customer_id="A")])
    loaded_context.feed.publish(CollectionName.CASH_ADVANCES, [make.advance("A", "1000")])
    loaded_context.feed.publish(CollectionName.CUSTOMER_PAYMENTS, [make.payment("A", "3000")])

    assert cli.run_balance(loaded_context, _args(customer_id="A")) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "A: 3,000.00"


def test_run_balance_reports_pending_collections(context, capsys):
    assert cli.run_balance(context, _args(customer_id="A")) == cli.EXIT_NOT_READY
    assert capsys.readouterr().out.strip() == "Still loading: Sales, CashAdvances, CustomerPayments"


def test_run_supplier_balance_prints_amount_owed(loaded_context, make, capsys):
    loaded_context.feed.publish(CollectionName.PURCHASES, [make.purchase("100", cost="900")])
    loaded_context.feed.publish(CollectionName.SUPPLIER_PAYMENTS, [make.supplier_payment("SUP1", "400")])

    assert cli.run_supplier_balance(loaded_context, _args(supplier_id="SUP1")) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "SUP1: 500.00"


def test_run_stock_lists_each_fuel(loaded_context, make, capsys):
    loaded_context.feed.publish(CollectionName.PURCHASES, [make.purchase("10000")])
    loaded_context.feed.publish(CollectionName.SALES, [make.sale("0", volume="4000")])
    loaded_context.feed.publish(CollectionName.PURCHASE_RETURNS, [make.purchase_return("500")])

    assert cli.run_stock(loaded_context, _args()) == cli.EXIT_OK
    lines = capsys.readouterr().out.splitlines()

    assert lines[0].split() == ["Fuel", "Stock"]
    assert [line.split()[0] for line in lines[1:]] == [fuel.value for fuel in FuelType]
    assert "5,500.00" in lines[-1]

    assert cli.run_stock(loaded_context, _args(fuel_type="Premium")) == cli.EXIT_OK
    assert capsys.readouterr().out.splitlines()[1].split() == ["Premium", "0.00"]


def test_run_defaulters_prints_message_when_empty(loaded_context, capsys):
    assert cli.run_defaulters(loaded_context, _args()) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "No customer defaulters found."


def test_run_defaulters_lists_rows_by_balance(loaded_context, make, capsys):
    loaded_context.feed.publish(CollectionName.CUSTOMERS, [make.customer("A", area="North"), make.customer("B")])
    loaded_context.feed.publish(
        CollectionName.SALES,
        [make.sale("3000", customer_id="A"), make.sale("5000", customer_id="B")],
    )

    assert cli.run_defaulters(loaded_context, _args()) == cli.EXIT_OK
    lines = capsys.readouterr().out.splitlines()

    assert lines[1].startswith("B ")
    assert lines[1].endswith("5,000.00")
    assert " - " in lines[1]
    assert "North" in lines[2]


def test_run_product_sales_appends_totals(loaded_context, make, capsys):
    loaded_context.feed.publish(
        CollectionName.SALES,
        [make.sale("300", volume="100"), make.sale("80", volume="20", fuel_type=FuelType.PREMIUM)],
    )

    assert cli.run_product_sales(loaded_context, _args()) == cli.EXIT_OK
    lines = capsys.readouterr().out.splitlines()

    assert lines[-1].split() == ["Total", "120.00", "380.00"]


def test_run_stock_movement_prints_one_row_per_fuel(loaded_context, capsys):
    assert cli.run_stock_movement(loaded_context, _args()) == cli.EXIT_OK

    assert len(capsys.readouterr().out.splitlines()) == 1 + len(FuelType)


def test_run_profit_margin_shows_percentages(loaded_context, make, capsys):
    loaded_context.feed.publish(
        CollectionName.PURCHASES,
        [make.purchase("100", cost="200"), make.purchase("300", cost="900")],
    )
    loaded_context.feed.publish(CollectionName.SALES, [make.sale("500", volume="100"), make.sale("500", volume="100")])

    assert cli.run_profit_margin(loaded_context, _args()) == cli.EXIT_OK
    output = capsys.readouterr().out

    assert "45.00%" in output
    assert output.splitlines()[-1].split() == ["Total", "1,000.00", "550.00", "450.00"]


def test_run_statement_renders_running_balance(loaded_context, make, capsys):
    loaded_context.feed.publish(
        CollectionName.SALES,
        [make.sale("100", customer_id="A", volume="20", timestamp=datetime(2025, 1, 3, 9, 15))],
    )
    loaded_context.feed.publish(
        CollectionName.CUSTOMER_PAYMENTS,
        [make.payment("A", "40", timestamp=datetime(2025, 1, 4, 10, 0))],
    )

    assert cli.run_statement(loaded_context, _args(customer_id="A")) == cli.EXIT_OK
    lines = capsys.readouterr().out.splitlines()

    assert lines[1].startswith("2025-01-03 09:15")
    assert "20.00L of Diesel" in lines[1]
    assert lines[2].endswith("60.00")


def test_run_statement_prints_message_when_empty(loaded_context, capsys):
    assert cli.run_statement(loaded_context, _args(customer_id="Z")) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "No ledger entries for customer Z."


# ---------------------------------------------------------------------------
# Error handling and program entry point
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (CollectionShapeError("bad row"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_main_runs_command_against_config(config_file, capsys):
    exit_code = cli.main(["--config", str(config_file), "defaulters"])

    assert exit_code == 0
    assert "No customer defaulters found." in capsys.readouterr().out


def test_main_reports_missing_config(tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.ini"), "stock"]) == cli.EXIT_MISSING_FILE


def test_main_rejects_schema_mismatch(config_factory):
    bundle = config_factory(schema_version="0.1.0")

    assert cli.main(["--config", str(bundle.config_path), "stock"]) == cli.EXIT_ERROR


def test_main_surfaces_not_ready_state(monkeypatch, context):
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    assert cli.main(["balance", "--customer-id", "A"]) == cli.EXIT_NOT_READY
