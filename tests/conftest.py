"""Shared pytest fixtures and utilities for fuel ledger tests."""

from __future__ import annotations

import itertools
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fuel_ledger import constants, core_logic, data_manager  # noqa: E402
from fuel_ledger.constants import CollectionName, FuelType, PaymentMethod  # noqa: E402
from fuel_ledger.setup_excel import create_ledger_workbook  # noqa: E402
from fuel_ledger.snapshot import SnapshotFeed  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
BASE_TIME = datetime(2025, 3, 1, 8, 0, 0)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StationName = {station_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Reports]\n"
    "DecimalPlaces = {decimal_places}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    station_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an empty ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_ledger_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def ledger_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        station_name: str = "Test Station",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        decimal_places: int = 2,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                station_name=station_name,
                schema_version=schema_version,
                decimal_places=decimal_places,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            station_name=station_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


class RecordFactory:
    """Build valid records with sequential ids and timestamps.

    Each call advances the clock by one minute unless ``timestamp`` is given,
    so records built in order are also chronological.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._clock = itertools.count(0)

    def _next(self, prefix: str, timestamp: Optional[datetime]) -> tuple[str, datetime]:
        number = next(self._ids)
        minute = next(self._clock)
        return f"{prefix}{number}", timestamp or BASE_TIME + timedelta(minutes=minute)

    def customer(self, customer_id: str, name: str = "", *, area: Optional[str] = None) -> data_manager.Customer:
        return data_manager.Customer(
            customer_id=customer_id,
            name=name or f"Customer {customer_id}",
            contact="555-0100",
            area=area,
        )

    def supplier(self, supplier_id: str, name: str = "") -> data_manager.Supplier:
        return data_manager.Supplier(supplier_id=supplier_id, name=name or f"Supplier {supplier_id}", contact="555-0200")

    def sale(
        self,
        amount: str,
        *,
        volume: str = "10",
        fuel_type: FuelType = FuelType.DIESEL,
        customer_id: Optional[str] = None,
        payment_method: PaymentMethod = PaymentMethod.ON_CREDIT,
        timestamp: Optional[datetime] = None,
    ) -> data_manager.SaleTransaction:
        sale_id, moment = self._next("S", timestamp)
        return data_manager.SaleTransaction(
            sale_id=sale_id,
            timestamp=moment,
            fuel_type=fuel_type,
            volume=Decimal(volume),
            total_amount=Decimal(amount),
            payment_method=payment_method,
            customer_id=customer_id,
        )

    def purchase(
        self,
        volume: str,
        *,
        cost: str = "0",
        fuel_type: FuelType = FuelType.DIESEL,
        supplier_id: str = "SUP1",
        timestamp: Optional[datetime] = None,
    ) -> data_manager.Purchase:
        purchase_id, moment = self._next("P", timestamp)
        return data_manager.Purchase(
            purchase_id=purchase_id,
            timestamp=moment,
            supplier_id=supplier_id,
            supplier_name=f"Supplier {supplier_id}",
            fuel_type=fuel_type,
            volume=Decimal(volume),
            total_cost=Decimal(cost),
        )

    def purchase_return(
        self,
        volume: str,
        *,
        refund: str = "0",
        fuel_type: FuelType = FuelType.DIESEL,
        supplier_id: str = "SUP1",
        timestamp: Optional[datetime] = None,
    ) -> data_manager.PurchaseReturn:
        return_id, moment = self._next("R", timestamp)
        return data_manager.PurchaseReturn(
            return_id=return_id,
            timestamp=moment,
            supplier_id=supplier_id,
            supplier_name=f"Supplier {supplier_id}",
            fuel_type=fuel_type,
            volume=Decimal(volume),
            total_refund=Decimal(refund),
            reason="Contaminated",
        )

    def payment(
        self,
        customer_id: str,
        amount: str,
        *,
        timestamp: Optional[datetime] = None,
    ) -> data_manager.CustomerPayment:
        payment_id, moment = self._next("CP", timestamp)
        return data_manager.CustomerPayment(
            payment_id=payment_id,
            timestamp=moment,
            customer_id=customer_id,
            amount=Decimal(amount),
        )

    def advance(
        self,
        customer_id: str,
        amount: str,
        *,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> data_manager.CashAdvance:
        advance_id, moment = self._next("CA", timestamp)
        return data_manager.CashAdvance(
            advance_id=advance_id,
            timestamp=moment,
            customer_id=customer_id,
            amount=Decimal(amount),
            notes=notes,
        )

    def supplier_payment(
        self,
        supplier_id: str,
        amount: str,
        *,
        timestamp: Optional[datetime] = None,
    ) -> data_manager.SupplierPayment:
        payment_id, moment = self._next("SP", timestamp)
        return data_manager.SupplierPayment(
            payment_id=payment_id,
            timestamp=moment,
            supplier_id=supplier_id,
            amount=Decimal(amount),
        )


@pytest.fixture
def make() -> RecordFactory:
    """Return a fresh record factory."""

    return RecordFactory()


@pytest.fixture
def feed() -> SnapshotFeed:
    """Return an empty feed with nothing loaded."""

    return SnapshotFeed()


@pytest.fixture
def loaded_feed(feed: SnapshotFeed) -> SnapshotFeed:
    """Return a feed whose every collection is loaded and empty."""

    for name in CollectionName:
        feed.publish(name, (), loaded=True)
    return feed
