"""Report generator built on top of the ledger engine.

Each report takes the record collections it needs as explicit arguments and
returns a fresh list of frozen rows. Nothing is cached here; point lookups
that need memoisation go through :mod:`fuel_ledger.balance_service`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

from . import ledger
from .constants import CollectionName, FuelType
from .data_manager import (
    CashAdvance,
    Customer,
    CustomerPayment,
    Purchase,
    PurchaseReturn,
    SaleTransaction,
)
from .snapshot import LedgerSnapshot


R = TypeVar("R")

ZERO = ledger.ZERO
HUNDRED = Decimal("100")

DEFAULTER_COLLECTIONS: Tuple[CollectionName, ...] = (
    CollectionName.CUSTOMERS,
    CollectionName.SALES,
    CollectionName.CASH_ADVANCES,
    CollectionName.CUSTOMER_PAYMENTS,
)
PRODUCT_SALES_COLLECTIONS: Tuple[CollectionName, ...] = (CollectionName.SALES,)
STOCK_MOVEMENT_COLLECTIONS: Tuple[CollectionName, ...] = (
    CollectionName.PURCHASES,
    CollectionName.SALES,
    CollectionName.PURCHASE_RETURNS,
)
PROFIT_MARGIN_COLLECTIONS: Tuple[CollectionName, ...] = (
    CollectionName.PURCHASES,
    CollectionName.SALES,
)
STATEMENT_COLLECTIONS: Tuple[CollectionName, ...] = (
    CollectionName.SALES,
    CollectionName.CASH_ADVANCES,
    CollectionName.CUSTOMER_PAYMENTS,
)
UNDATED_COLLECTIONS = frozenset({CollectionName.CUSTOMERS, CollectionName.SUPPLIERS})


@dataclass(frozen=True)
class DefaulterRow:
    customer_id: str
    name: str
    contact: str
    area: Optional[str]
    balance: Decimal


@dataclass(frozen=True)
class ProductSalesRow:
    fuel_type: FuelType
    total_quantity: Decimal
    total_revenue: Decimal
    avg_price_per_unit: Decimal


@dataclass(frozen=True)
class SalesTotals:
    total_quantity: Decimal
    total_revenue: Decimal


@dataclass(frozen=True)
class StockMovementRow:
    fuel_type: FuelType
    total_purchased: Decimal
    total_sold: Decimal
    total_returned: Decimal
    current_stock: Decimal


@dataclass(frozen=True)
class ProfitMarginRow:
    fuel_type: FuelType
    total_quantity_sold: Decimal
    total_revenue: Decimal
    avg_sale_price: Decimal
    avg_cost_price: Decimal
    total_cost: Decimal
    margin: Decimal
    margin_percent: Decimal


@dataclass(frozen=True)
class ProfitTotals:
    total_revenue: Decimal
    total_cost: Decimal
    total_margin: Decimal


@dataclass(frozen=True)
class StatementEntry:
    """One line of a customer statement with the balance after it."""

    entry_id: str
    timestamp: datetime
    kind: str
    description: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, treating a zero denominator as a zero result."""

    if denominator == ZERO:
        return ZERO
    return numerator / denominator


def within_period(
    records: Iterable[R],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Tuple[R, ...]:
    """Keep records whose ``timestamp`` falls in ``[start, end]``.

    Either bound may be omitted. Collection order is preserved. Bounds and
    timestamps may mix naive and timezone-aware values; see
    :func:`align_bound`.
    """

    return tuple(
        record for record in records
        if (start is None or record.timestamp >= align_bound(start, record.timestamp))
        and (end is None or record.timestamp <= align_bound(end, record.timestamp))
    )


def before_period(records: Iterable[R], start: Optional[datetime]) -> Tuple[R, ...]:
    """Keep records dated strictly before ``start`` (none when ``start`` is omitted)."""

    if start is None:
        return ()
    return tuple(record for record in records if record.timestamp < align_bound(start, record.timestamp))


def align_bound(bound: datetime, moment: datetime) -> datetime:
    """Make ``bound`` comparable with ``moment``.

    A naive bound is read as wall time in the record's zone. An aware bound
    compared with a naive record is converted to UTC and made naive, since
    naive workbook timestamps are taken as UTC.
    """

    if moment.tzinfo is not None and bound.tzinfo is None:
        return bound.replace(tzinfo=moment.tzinfo)
    if moment.tzinfo is None and bound.tzinfo is not None:
        return bound.astimezone(timezone.utc).replace(tzinfo=None)
    return bound


def snapshot_within_period(
    snapshot: LedgerSnapshot,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> LedgerSnapshot:
    """Restrict every timestamped collection of ``snapshot`` to a period.

    Customers and suppliers carry no timestamp and are kept whole.
    """

    if start is None and end is None:
        return snapshot
    collections = {}
    for name, records in snapshot.collections.items():
        if name in UNDATED_COLLECTIONS:
            collections[name] = records
        else:
            collections[name] = within_period(records, start, end)
    return LedgerSnapshot(collections=collections)


def defaulter_report(
    customers: Sequence[Customer],
    sales: Sequence[SaleTransaction],
    cash_advances: Sequence[CashAdvance],
    payments: Sequence[CustomerPayment],
    *,
    area: Optional[str] = None,
) -> List[DefaulterRow]:
    """List customers who owe money, largest balance first.

    Only balances strictly above zero are kept. Equal balances keep the
    customer collection order because :func:`sorted` is stable, which makes
    re-runs over unchanged input produce the same sequence. ``area`` restricts
    the list to customers registered in that area.
    """

    rows = []
    for customer in customers:
        if area is not None and customer.area != area:
            continue
        balance = ledger.customer_balance(customer.customer_id, sales, cash_advances, payments)
        if balance > ZERO:
            rows.append(
                DefaulterRow(
                    customer_id=customer.customer_id,
                    name=customer.name,
                    contact=customer.contact,
                    area=customer.area,
                    balance=balance,
                )
            )
    return sorted(rows, key=lambda row: row.balance, reverse=True)


def product_sales_report(
    sales: Sequence[SaleTransaction],
    fuel_types: Iterable[FuelType] = tuple(FuelType),
) -> List[ProductSalesRow]:
    """Volume, revenue, and average unit price per fuel type.

    Every requested fuel type gets a row, unsold grades included; their
    average price is zero.
    """

    rows = []
    for fuel_type in fuel_types:
        total_quantity = ledger.sold_volume(fuel_type, sales)
        total_revenue = ledger.sum_matching(
            sales,
            lambda sale: sale.fuel_type == fuel_type,
            lambda sale: sale.total_amount,
        )
        rows.append(
            ProductSalesRow(
                fuel_type=fuel_type,
                total_quantity=total_quantity,
                total_revenue=total_revenue,
                avg_price_per_unit=safe_ratio(total_revenue, total_quantity),
            )
        )
    return rows


def product_sales_totals(rows: Iterable[ProductSalesRow]) -> SalesTotals:
    total_quantity = ZERO
    total_revenue = ZERO
    for row in rows:
        total_quantity += row.total_quantity
        total_revenue += row.total_revenue
    return SalesTotals(total_quantity=total_quantity, total_revenue=total_revenue)


def stock_movement_report(
    purchases: Sequence[Purchase],
    sales: Sequence[SaleTransaction],
    returns: Sequence[PurchaseReturn],
) -> List[StockMovementRow]:
    """Flow totals per fuel type next to the current stock figure.

    ``current_stock`` comes straight from :func:`ledger.fuel_stock` rather than
    from the three flow columns, so a disagreement between them stays visible.
    """

    return [
        StockMovementRow(
            fuel_type=fuel_type,
            total_purchased=ledger.purchased_volume(fuel_type, purchases),
            total_sold=ledger.sold_volume(fuel_type, sales),
            total_returned=ledger.returned_volume(fuel_type, returns),
            current_stock=ledger.fuel_stock(fuel_type, purchases, sales, returns),
        )
        for fuel_type in FuelType
    ]


def average_cost_price(fuel_type: FuelType, purchases: Sequence[Purchase]) -> Decimal:
    """Volume-weighted purchase price of ``fuel_type``."""

    total_cost = ledger.sum_matching(
        purchases,
        lambda purchase: purchase.fuel_type == fuel_type,
        lambda purchase: purchase.total_cost,
    )
    return safe_ratio(total_cost, ledger.purchased_volume(fuel_type, purchases))


def profit_margin_report(
    purchases: Sequence[Purchase],
    sales: Sequence[SaleTransaction],
) -> List[ProfitMarginRow]:
    """Margin per fuel type from weighted average sale and cost prices.

    ``margin = (avg_sale_price - avg_cost_price) * total_quantity_sold`` and
    ``margin_percent`` is the margin as a share of revenue (zero when nothing
    was sold).
    """

    rows = []
    for sales_row in product_sales_report(sales):
        avg_cost = average_cost_price(sales_row.fuel_type, purchases)
        quantity = sales_row.total_quantity
        margin = (sales_row.avg_price_per_unit - avg_cost) * quantity
        rows.append(
            ProfitMarginRow(
                fuel_type=sales_row.fuel_type,
                total_quantity_sold=quantity,
                total_revenue=sales_row.total_revenue,
                avg_sale_price=sales_row.avg_price_per_unit,
                avg_cost_price=avg_cost,
                total_cost=avg_cost * quantity,
                margin=margin,
                margin_percent=safe_ratio(margin, sales_row.total_revenue) * HUNDRED,
            )
        )
    return rows


def profit_margin_totals(rows: Iterable[ProfitMarginRow]) -> ProfitTotals:
    total_revenue = ZERO
    total_cost = ZERO
    total_margin = ZERO
    for row in rows:
        total_revenue += row.total_revenue
        total_cost += row.total_cost
        total_margin += row.margin
    return ProfitTotals(total_revenue=total_revenue, total_cost=total_cost, total_margin=total_margin)


def customer_statement(
    customer_id: str,
    sales: Sequence[SaleTransaction],
    cash_advances: Sequence[CashAdvance],
    payments: Sequence[CustomerPayment],
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[StatementEntry]:
    """Chronological debit/credit history for one customer.

    Entries are ordered by timestamp. Entries sharing a timestamp keep the
    order sales, then payments, then advances, each in collection order.

    With ``start``, activity dated before it is folded into an "Opening
    Balance" entry, so the last running balance always equals
    :func:`ledger.customer_balance` over every record up to ``end``.
    """

    sales = [sale for sale in sales if sale.customer_id == customer_id]
    cash_advances = [advance for advance in cash_advances if advance.customer_id == customer_id]
    payments = [payment for payment in payments if payment.customer_id == customer_id]

    statement = []
    running = ZERO
    earlier_sales = before_period(sales, start)
    earlier_advances = before_period(cash_advances, start)
    earlier_payments = before_period(payments, start)
    if earlier_sales or earlier_advances or earlier_payments:
        running = ledger.customer_balance(customer_id, earlier_sales, earlier_advances, earlier_payments)
        statement.append(
            StatementEntry(
                entry_id="opening",
                timestamp=start,
                kind="Opening Balance",
                description="Balance brought forward",
                debit=ZERO,
                credit=ZERO,
                balance=running,
            )
        )

    entries = []
    for sale in within_period(sales, start, end):
        entries.append((
            f"sale-{sale.sale_id}",
            sale.timestamp,
            "Sale",
            f"{sale.volume:.2f}L of {sale.fuel_type.value}",
            sale.total_amount,
            ZERO,
        ))
    for payment in within_period(payments, start, end):
        entries.append((
            f"payment-{payment.payment_id}",
            payment.timestamp,
            "Payment",
            f"Payment Received ({payment.payment_method.value})",
            ZERO,
            payment.amount,
        ))
    for advance in within_period(cash_advances, start, end):
        entries.append((
            f"advance-{advance.advance_id}",
            advance.timestamp,
            "Cash Advance",
            f"Cash Advance ({advance.notes or 'No notes'})",
            advance.amount,
            ZERO,
        ))

    for entry_id, timestamp, kind, description, debit, credit in sorted(entries, key=lambda entry: entry[1]):
        running += debit - credit
        statement.append(
            StatementEntry(
                entry_id=entry_id,
                timestamp=timestamp,
                kind=kind,
                description=description,
                debit=debit,
                credit=credit,
                balance=running,
            )
        )
    return statement


def build_defaulter_report(snapshot: LedgerSnapshot, *, area: Optional[str] = None) -> List[DefaulterRow]:
    return defaulter_report(
        snapshot.customers,
        snapshot.sales,
        snapshot.cash_advances,
        snapshot.customer_payments,
        area=area,
    )


def build_product_sales_report(snapshot: LedgerSnapshot) -> List[ProductSalesRow]:
    return product_sales_report(snapshot.sales)


def build_stock_movement_report(snapshot: LedgerSnapshot) -> List[StockMovementRow]:
    return stock_movement_report(snapshot.purchases, snapshot.sales, snapshot.purchase_returns)


def build_profit_margin_report(snapshot: LedgerSnapshot) -> List[ProfitMarginRow]:
    return profit_margin_report(snapshot.purchases, snapshot.sales)
