"""Enumerations shared across the fuel ledger modules.

Centralises the closed domain sets so every layer agrees on one spelling
for each fuel grade and collection name.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class FuelType(str, Enum):
    """Enumerate the fuel grades the station sells."""

    UNLEADED = "Unleaded"
    PREMIUM = "Premium"
    DIESEL = "Diesel"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms."""

    CASH = "Cash"
    CARD = "Card"
    MOBILE = "Mobile"
    ON_CREDIT = "On Credit"


class CollectionName(str, Enum):
    """Enumerate the record collections delivered by the data layer.

    The values double as worksheet names in the ledger workbook.
    """

    CUSTOMERS = "Customers"
    SUPPLIERS = "Suppliers"
    SALES = "Sales"
    PURCHASES = "Purchases"
    PURCHASE_RETURNS = "PurchaseReturns"
    CUSTOMER_PAYMENTS = "CustomerPayments"
    CASH_ADVANCES = "CashAdvances"
    SUPPLIER_PAYMENTS = "SupplierPayments"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "FuelType",
    "PaymentMethod",
    "CollectionName",
]
