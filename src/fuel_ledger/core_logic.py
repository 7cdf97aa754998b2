"""Orchestration layer for the fuel ledger.

This module wires configuration, the ledger workbook, and the snapshot feed
into a :class:`RuntimeContext`. Query helpers join the collections a report
depends on and return a load state, so callers always distinguish "still
loading" from a computed figure.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, ledger, log, reports
from .balance_service import BalanceQueryService
from .constants import EXPECTED_SCHEMA_VERSION, CollectionName, FuelType
from .snapshot import LoadState, SnapshotFeed, map_ready


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook, and the live snapshot feed."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    feed: SnapshotFeed
    balances: BalanceQueryService


def build_context(settings: data_manager.ConfigSettings, workbook: Workbook) -> RuntimeContext:
    """Assemble a context around an empty, not yet loaded feed."""

    feed = SnapshotFeed()
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        feed=feed,
        balances=BalanceQueryService(feed),
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Resolves ``config.ini``, parses the settings, and opens the workbook the
    settings point at. The returned context's feed is empty until
    :func:`load_collections` runs.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upwards from the current
            working directory.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_context(settings, workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before reading collections.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def load_collections(
    context: RuntimeContext,
    names: Iterable[CollectionName] = tuple(CollectionName),
) -> None:
    """Read each named sheet and publish it to the feed as loaded.

    Collections are published one at a time; watchers only see a ready state
    once every collection they depend on has arrived.
    """
    for name in names:
        records = data_manager.load_collection(context.workbook, name)
        context.feed.publish(name, records, loaded=True)
    log.info("Loaded collections into feed (generation %s)", context.feed.generation())


def record_entry(context: RuntimeContext, collection: CollectionName, record: object) -> None:
    """Append ``record`` to the workbook sheet and to the live feed.

    Raises:
        TypeError: If ``record`` does not belong to ``collection``.
    """
    data_manager.append_record(context.workbook, collection, record)
    context.feed.append(collection, record)
    log.info("Recorded %s in '%s'", type(record).__name__, collection.value)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def customer_balance(context: RuntimeContext, customer_id: str) -> LoadState[Decimal]:
    return context.balances.balance_of(customer_id)


def supplier_balance(context: RuntimeContext, supplier_id: str) -> LoadState[Decimal]:
    return context.balances.supplier_balance_of(supplier_id)


def fuel_stock(context: RuntimeContext, fuel_type: FuelType) -> LoadState[Decimal]:
    """Current stock of one fuel type, recomputed from the three flows."""
    state = context.feed.state(*reports.STOCK_MOVEMENT_COLLECTIONS)
    return map_ready(
        state,
        lambda snapshot: ledger.fuel_stock(
            fuel_type,
            snapshot.purchases,
            snapshot.sales,
            snapshot.purchase_returns,
        ),
    )


def defaulters(
    context: RuntimeContext,
    *,
    area: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> LoadState[List[reports.DefaulterRow]]:
    state = context.feed.state(*reports.DEFAULTER_COLLECTIONS)
    return map_ready(
        state,
        lambda snapshot: reports.build_defaulter_report(
            reports.snapshot_within_period(snapshot, start, end),
            area=area,
        ),
    )


def product_sales(
    context: RuntimeContext,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> LoadState[List[reports.ProductSalesRow]]:
    state = context.feed.state(*reports.PRODUCT_SALES_COLLECTIONS)
    return map_ready(
        state,
        lambda snapshot: reports.build_product_sales_report(reports.snapshot_within_period(snapshot, start, end)),
    )


def stock_movement(
    context: RuntimeContext,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> LoadState[List[reports.StockMovementRow]]:
    state = context.feed.state(*reports.STOCK_MOVEMENT_COLLECTIONS)
    return map_ready(
        state,
        lambda snapshot: reports.build_stock_movement_report(reports.snapshot_within_period(snapshot, start, end)),
    )


def profit_margin(
    context: RuntimeContext,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> LoadState[List[reports.ProfitMarginRow]]:
    state = context.feed.state(*reports.PROFIT_MARGIN_COLLECTIONS)
    return map_ready(
        state,
        lambda snapshot: reports.build_profit_margin_report(reports.snapshot_within_period(snapshot, start, end)),
    )


def statement(
    context: RuntimeContext,
    customer_id: str,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> LoadState[List[reports.StatementEntry]]:
    """Chronological ledger for one customer.

    With a period, earlier activity is carried in as an opening balance.
    """
    state = context.feed.state(*reports.STATEMENT_COLLECTIONS)

    def _build(snapshot):
        return reports.customer_statement(
            customer_id,
            snapshot.sales,
            snapshot.cash_advances,
            snapshot.customer_payments,
            start=start,
            end=end,
        )

    return map_ready(state, _build)
