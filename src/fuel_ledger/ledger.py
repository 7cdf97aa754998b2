"""Ledger engine: customer balances, supplier balances, and fuel stock.

Every figure here is recomputed from the record collections passed in. No
running counter is kept anywhere, so flow totals and current levels can never
drift apart. Sums walk each collection in its stored order so that repeated
calls over the same input produce identical ``Decimal`` results.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Dict, Iterable, Sequence, TypeVar

from .constants import FuelType
from .data_manager import (
    CashAdvance,
    Customer,
    CustomerPayment,
    Purchase,
    PurchaseReturn,
    SaleTransaction,
    SupplierPayment,
)


R = TypeVar("R")

ZERO = Decimal("0")


def sum_matching(
    records: Iterable[R],
    predicate: Callable[[R], bool],
    value: Callable[[R], Decimal],
) -> Decimal:
    """Sum ``value(record)`` over matching records in collection order."""

    total = ZERO
    for record in records:
        if predicate(record):
            total += value(record)
    return total


def customer_debits(
    customer_id: str,
    sales: Sequence[SaleTransaction],
    cash_advances: Sequence[CashAdvance],
) -> Decimal:
    """Credit sales plus cash advances charged to ``customer_id``."""

    sold = sum_matching(sales, lambda sale: sale.customer_id == customer_id, lambda sale: sale.total_amount)
    advanced = sum_matching(
        cash_advances,
        lambda advance: advance.customer_id == customer_id,
        lambda advance: advance.amount,
    )
    return sold + advanced


def customer_credits(customer_id: str, payments: Sequence[CustomerPayment]) -> Decimal:
    """Payments received from ``customer_id``."""

    return sum_matching(payments, lambda payment: payment.customer_id == customer_id, lambda payment: payment.amount)


def customer_balance(
    customer_id: str,
    sales: Sequence[SaleTransaction],
    cash_advances: Sequence[CashAdvance],
    payments: Sequence[CustomerPayment],
) -> Decimal:
    """Return what ``customer_id`` owes the station.

    ``balance = sales + cash advances - payments`` for records carrying the
    customer's id. Walk-in sales have no customer id and never contribute.
    Records whose customer is missing from the customer collection still count,
    since matching is on the foreign key alone. An id with no records yields
    ``Decimal("0")``.

    A positive result means the customer is in debt to the station.
    """

    return customer_debits(customer_id, sales, cash_advances) - customer_credits(customer_id, payments)


def customer_balances(
    customers: Sequence[Customer],
    sales: Sequence[SaleTransaction],
    cash_advances: Sequence[CashAdvance],
    payments: Sequence[CustomerPayment],
) -> Dict[str, Decimal]:
    """Map every customer id to its balance, in customer collection order."""

    return {
        customer.customer_id: customer_balance(customer.customer_id, sales, cash_advances, payments)
        for customer in customers
    }


def supplier_balance(
    supplier_id: str,
    purchases: Sequence[Purchase],
    supplier_payments: Sequence[SupplierPayment],
) -> Decimal:
    """Return what the station owes ``supplier_id``.

    Purchase cost minus payments made. Purchase returns are settled through
    their own refund and do not enter this figure.
    """

    bought = sum_matching(purchases, lambda purchase: purchase.supplier_id == supplier_id, lambda purchase: purchase.total_cost)
    paid = sum_matching(
        supplier_payments,
        lambda payment: payment.supplier_id == supplier_id,
        lambda payment: payment.amount,
    )
    return bought - paid


def purchased_volume(fuel_type: FuelType, purchases: Sequence[Purchase]) -> Decimal:
    return sum_matching(purchases, lambda purchase: purchase.fuel_type == fuel_type, lambda purchase: purchase.volume)


def sold_volume(fuel_type: FuelType, sales: Sequence[SaleTransaction]) -> Decimal:
    return sum_matching(sales, lambda sale: sale.fuel_type == fuel_type, lambda sale: sale.volume)


def returned_volume(fuel_type: FuelType, returns: Sequence[PurchaseReturn]) -> Decimal:
    return sum_matching(returns, lambda item: item.fuel_type == fuel_type, lambda item: item.volume)


def fuel_stock(
    fuel_type: FuelType,
    purchases: Sequence[Purchase],
    sales: Sequence[SaleTransaction],
    returns: Sequence[PurchaseReturn],
) -> Decimal:
    """Return the volume of ``fuel_type`` currently on hand.

    ``stock = purchased - sold - returned``. The result is not clamped: a
    negative figure means fuel was sold before its delivery was recorded and
    must be shown as such.
    """

    return (
        purchased_volume(fuel_type, purchases)
        - sold_volume(fuel_type, sales)
        - returned_volume(fuel_type, returns)
    )


def fuel_stock_levels(
    purchases: Sequence[Purchase],
    sales: Sequence[SaleTransaction],
    returns: Sequence[PurchaseReturn],
) -> Dict[FuelType, Decimal]:
    """Stock for every fuel type, zero-volume grades included."""

    return {fuel_type: fuel_stock(fuel_type, purchases, sales, returns) for fuel_type in FuelType}
