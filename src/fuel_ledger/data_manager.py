"""Data access layer for the fuel ledger.

This module provides the record types handed to the ledger engine and the
low-level helpers that read them from (and append them to) the ledger
workbook. Aggregation belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: streaming typed records in row order and appending new
   rows for a collection.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import CollectionName, FuelType, PaymentMethod


CONFIG_FILE_NAME = "config.ini"
DEFAULT_DECIMAL_PLACES = 2


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    station_name: str
    schema_version: str
    decimal_places: int = DEFAULT_DECIMAL_PLACES


@dataclass(frozen=True)
class Customer:
    """Identity of a credit customer. No balance is stored on it."""

    customer_id: str
    name: str
    contact: str
    area: Optional[str] = None


@dataclass(frozen=True)
class Supplier:
    """Identity of a fuel supplier."""

    supplier_id: str
    name: str
    contact: str


@dataclass(frozen=True)
class SaleTransaction:
    """A fuel sale. ``customer_id`` is ``None`` for walk-in sales."""

    sale_id: str
    timestamp: datetime
    fuel_type: FuelType
    volume: Decimal
    total_amount: Decimal
    payment_method: PaymentMethod
    customer_id: Optional[str] = None
    bank_account_id: Optional[str] = None


@dataclass(frozen=True)
class Purchase:
    """A delivery of fuel from a supplier."""

    purchase_id: str
    timestamp: datetime
    supplier_id: str
    supplier_name: str
    fuel_type: FuelType
    volume: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class PurchaseReturn:
    """Fuel sent back to a supplier."""

    return_id: str
    timestamp: datetime
    supplier_id: str
    supplier_name: str
    fuel_type: FuelType
    volume: Decimal
    total_refund: Decimal
    reason: str


@dataclass(frozen=True)
class CustomerPayment:
    """Money received from a customer against their balance."""

    payment_id: str
    timestamp: datetime
    customer_id: str
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH


@dataclass(frozen=True)
class CashAdvance:
    """Money lent to a customer."""

    advance_id: str
    timestamp: datetime
    customer_id: str
    amount: Decimal
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplierPayment:
    """Money paid to a supplier against purchases."""

    payment_id: str
    timestamp: datetime
    supplier_id: str
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH


RECORD_TYPES: Mapping[CollectionName, type] = {
    CollectionName.CUSTOMERS: Customer,
    CollectionName.SUPPLIERS: Supplier,
    CollectionName.SALES: SaleTransaction,
    CollectionName.PURCHASES: Purchase,
    CollectionName.PURCHASE_RETURNS: PurchaseReturn,
    CollectionName.CUSTOMER_PAYMENTS: CustomerPayment,
    CollectionName.CASH_ADVANCES: CashAdvance,
    CollectionName.SUPPLIER_PAYMENTS: SupplierPayment,
}


SHEET_COLUMNS: Mapping[CollectionName, Sequence[str]] = {
    CollectionName.CUSTOMERS: ["CustomerID", "Name", "Contact", "Area"],
    CollectionName.SUPPLIERS: ["SupplierID", "Name", "Contact"],
    CollectionName.SALES: [
        "SaleID",
        "Timestamp",
        "FuelType",
        "Volume",
        "TotalAmount",
        "PaymentMethod",
        "CustomerID",
        "BankAccountID",
    ],
    CollectionName.PURCHASES: [
        "PurchaseID",
        "Timestamp",
        "SupplierID",
        "SupplierName",
        "FuelType",
        "Volume",
        "TotalCost",
    ],
    CollectionName.PURCHASE_RETURNS: [
        "ReturnID",
        "Timestamp",
        "SupplierID",
        "SupplierName",
        "FuelType",
        "Volume",
        "TotalRefund",
        "Reason",
    ],
    CollectionName.CUSTOMER_PAYMENTS: ["PaymentID", "Timestamp", "CustomerID", "Amount", "PaymentMethod"],
    CollectionName.CASH_ADVANCES: ["AdvanceID", "Timestamp", "CustomerID", "Amount", "Notes"],
    CollectionName.SUPPLIER_PAYMENTS: ["PaymentID", "Timestamp", "SupplierID", "Amount", "PaymentMethod"],
}


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(inline_comment_prefixes=(";", "#"))
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are anchored to ``base_path`` (or the current
    working directory) and resolved. The optional ``[Reports] DecimalPlaces``
    entry only affects how the CLI renders figures.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory anchoring relative data file paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``DecimalPlaces`` is not a non-negative integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        station_name = parser.get("System", "StationName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    decimal_places = parser.getint("Reports", "DecimalPlaces", fallback=DEFAULT_DECIMAL_PLACES)
    if decimal_places < 0:
        raise ValueError(f"DecimalPlaces must be zero or positive, got {decimal_places}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        station_name=station_name,
        schema_version=schema_version,
        decimal_places=decimal_places,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_records(workbook: Workbook, collection: CollectionName) -> Iterable[object]:
    """Stream typed records from the worksheet backing ``collection``.

    Rows are yielded in sheet order, which is the collection's insertion
    order. The header row and fully empty rows are skipped.

    Args:
        workbook (Workbook): Workbook containing the collection sheet.
        collection (CollectionName): Collection to read.

    Yields:
        object: One record of ``RECORD_TYPES[collection]`` per populated row.
    """

    sheet = workbook[collection.value]
    deserialize = DESERIALIZERS[collection]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize(raw)


def load_collection(workbook: Workbook, collection: CollectionName) -> tuple:
    """Materialise a whole collection sheet as an immutable tuple."""

    records = tuple(iter_records(workbook, collection))
    log.debug("Read %d rows from sheet '%s'", len(records), collection.value)
    return records


def append_record(workbook: Workbook, collection: CollectionName, record: object) -> None:
    """Append a record to the worksheet backing ``collection``.

    Raises:
        TypeError: If ``record`` is not of the collection's record type.
    """

    expected = RECORD_TYPES[collection]
    if not isinstance(record, expected):
        raise TypeError(
            f"Cannot append {type(record).__name__} to '{collection.value}'; expected {expected.__name__}"
        )
    sheet = workbook[collection.value]
    sheet.append(SERIALIZERS[collection](record))


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_optional_str(raw: object) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw)
    return text if text else None


def _to_timestamp(raw: object) -> datetime:
    """Accept native worksheet datetimes or ISO-8601 strings."""

    if isinstance(raw, datetime):
        return raw
    if raw is None:
        raise ValueError("Record is missing its timestamp")
    return datetime.fromisoformat(str(raw))


def _format_timestamp(value: datetime) -> str:
    # Excel cannot hold timezone-aware datetimes, so timestamps are stored as text.
    return value.isoformat()


def _format_decimal(value: Decimal) -> str:
    # Numeric cells round-trip through float; text keeps every digit.
    return str(value)


def serialize_customer(record: Customer) -> list[object]:
    return [record.customer_id, record.name, record.contact, record.area]


def serialize_supplier(record: Supplier) -> list[object]:
    return [record.supplier_id, record.name, record.contact]


def serialize_sale(record: SaleTransaction) -> list[object]:
    """Convert a sale into the ``Sales`` column order.

    Enum members are written as their display values. Amounts and volumes are
    written as text so every :class:`~decimal.Decimal` digit survives a reload.
    """

    return [
        record.sale_id,
        _format_timestamp(record.timestamp),
        record.fuel_type.value,
        _format_decimal(record.volume),
        _format_decimal(record.total_amount),
        record.payment_method.value,
        record.customer_id,
        record.bank_account_id,
    ]


def serialize_purchase(record: Purchase) -> list[object]:
    return [
        record.purchase_id,
        _format_timestamp(record.timestamp),
        record.supplier_id,
        record.supplier_name,
        record.fuel_type.value,
        _format_decimal(record.volume),
        _format_decimal(record.total_cost),
    ]


def serialize_purchase_return(record: PurchaseReturn) -> list[object]:
    return [
        record.return_id,
        _format_timestamp(record.timestamp),
        record.supplier_id,
        record.supplier_name,
        record.fuel_type.value,
        _format_decimal(record.volume),
        _format_decimal(record.total_refund),
        record.reason,
    ]


def serialize_customer_payment(record: CustomerPayment) -> list[object]:
    return [
        record.payment_id,
        _format_timestamp(record.timestamp),
        record.customer_id,
        _format_decimal(record.amount),
        record.payment_method.value,
    ]


def serialize_cash_advance(record: CashAdvance) -> list[object]:
    return [
        record.advance_id,
        _format_timestamp(record.timestamp),
        record.customer_id,
        _format_decimal(record.amount),
        record.notes,
    ]


def serialize_supplier_payment(record: SupplierPayment) -> list[object]:
    return [
        record.payment_id,
        _format_timestamp(record.timestamp),
        record.supplier_id,
        _format_decimal(record.amount),
        record.payment_method.value,
    ]


def deserialize_customer(raw_row: Sequence[object]) -> Customer:
    """Convert a raw ``Customers`` row into a :class:`Customer`.

    Identifier and name fields are coerced to ``str`` so that numeric-looking
    ids typed into Excel do not surface as integers.
    """

    customer_id, name, contact, area = raw_row
    return Customer(
        customer_id=str(customer_id),
        name=str(name) if name is not None else "",
        contact=str(contact) if contact is not None else "",
        area=_to_optional_str(area),
    )


def deserialize_supplier(raw_row: Sequence[object]) -> Supplier:
    supplier_id, name, contact = raw_row
    return Supplier(
        supplier_id=str(supplier_id),
        name=str(name) if name is not None else "",
        contact=str(contact) if contact is not None else "",
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleTransaction:
    """Convert a raw ``Sales`` row into a :class:`SaleTransaction`.

    Blank customer cells become ``None``, which marks the sale as a walk-in.
    """

    (
        sale_id,
        timestamp,
        fuel_type,
        volume_raw,
        total_amount_raw,
        payment_method,
        customer_id,
        bank_account_id,
    ) = raw_row
    return SaleTransaction(
        sale_id=str(sale_id),
        timestamp=_to_timestamp(timestamp),
        fuel_type=FuelType(str(fuel_type)),
        volume=_to_decimal(volume_raw),
        total_amount=_to_decimal(total_amount_raw, "0.00"),
        payment_method=PaymentMethod(str(payment_method)) if payment_method is not None else PaymentMethod.CASH,
        customer_id=_to_optional_str(customer_id),
        bank_account_id=_to_optional_str(bank_account_id),
    )


def deserialize_purchase(raw_row: Sequence[object]) -> Purchase:
    purchase_id, timestamp, supplier_id, supplier_name, fuel_type, volume_raw, total_cost_raw = raw_row
    return Purchase(
        purchase_id=str(purchase_id),
        timestamp=_to_timestamp(timestamp),
        supplier_id=str(supplier_id),
        supplier_name=str(supplier_name) if supplier_name is not None else "",
        fuel_type=FuelType(str(fuel_type)),
        volume=_to_decimal(volume_raw),
        total_cost=_to_decimal(total_cost_raw, "0.00"),
    )


def deserialize_purchase_return(raw_row: Sequence[object]) -> PurchaseReturn:
    (
        return_id,
        timestamp,
        supplier_id,
        supplier_name,
        fuel_type,
        volume_raw,
        total_refund_raw,
        reason,
    ) = raw_row
    return PurchaseReturn(
        return_id=str(return_id),
        timestamp=_to_timestamp(timestamp),
        supplier_id=str(supplier_id),
        supplier_name=str(supplier_name) if supplier_name is not None else "",
        fuel_type=FuelType(str(fuel_type)),
        volume=_to_decimal(volume_raw),
        total_refund=_to_decimal(total_refund_raw, "0.00"),
        reason=str(reason) if reason is not None else "",
    )


def deserialize_customer_payment(raw_row: Sequence[object]) -> CustomerPayment:
    payment_id, timestamp, customer_id, amount_raw, payment_method = raw_row
    return CustomerPayment(
        payment_id=str(payment_id),
        timestamp=_to_timestamp(timestamp),
        customer_id=str(customer_id),
        amount=_to_decimal(amount_raw, "0.00"),
        payment_method=PaymentMethod(str(payment_method)) if payment_method is not None else PaymentMethod.CASH,
    )


def deserialize_cash_advance(raw_row: Sequence[object]) -> CashAdvance:
    advance_id, timestamp, customer_id, amount_raw, notes = raw_row
    return CashAdvance(
        advance_id=str(advance_id),
        timestamp=_to_timestamp(timestamp),
        customer_id=str(customer_id),
        amount=_to_decimal(amount_raw, "0.00"),
        notes=_to_optional_str(notes),
    )


def deserialize_supplier_payment(raw_row: Sequence[object]) -> SupplierPayment:
    payment_id, timestamp, supplier_id, amount_raw, payment_method = raw_row
    return SupplierPayment(
        payment_id=str(payment_id),
        timestamp=_to_timestamp(timestamp),
        supplier_id=str(supplier_id),
        amount=_to_decimal(amount_raw, "0.00"),
        payment_method=PaymentMethod(str(payment_method)) if payment_method is not None else PaymentMethod.CASH,
    )


SERIALIZERS: Dict[CollectionName, Callable[..., list[object]]] = {
    CollectionName.CUSTOMERS: serialize_customer,
    CollectionName.SUPPLIERS: serialize_supplier,
    CollectionName.SALES: serialize_sale,
    CollectionName.PURCHASES: serialize_purchase,
    CollectionName.PURCHASE_RETURNS: serialize_purchase_return,
    CollectionName.CUSTOMER_PAYMENTS: serialize_customer_payment,
    CollectionName.CASH_ADVANCES: serialize_cash_advance,
    CollectionName.SUPPLIER_PAYMENTS: serialize_supplier_payment,
}


DESERIALIZERS: Dict[CollectionName, Callable[[Sequence[object]], object]] = {
    CollectionName.CUSTOMERS: deserialize_customer,
    CollectionName.SUPPLIERS: deserialize_supplier,
    CollectionName.SALES: deserialize_sale,
    CollectionName.PURCHASES: deserialize_purchase,
    CollectionName.PURCHASE_RETURNS: deserialize_purchase_return,
    CollectionName.CUSTOMER_PAYMENTS: deserialize_customer_payment,
    CollectionName.CASH_ADVANCES: deserialize_cash_advance,
    CollectionName.SUPPLIER_PAYMENTS: deserialize_supplier_payment,
}
