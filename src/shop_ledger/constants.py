"""Enumerations and fixed values shared across the shop ledger modules.

The data layer, the ledger engine, the aggregation engine, and the CLI all
import their identifiers from here so that collection names, payment types,
and expense categories have a single source of truth.
"""

from __future__ import annotations

from enum import Enum


# Workbook layout version expected by every layer before writing.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Products whose stock is strictly below this value are flagged as low stock.
LOW_STOCK_THRESHOLD = 10

# Number of entries kept in the top-products ranking of a range report.
TOP_PRODUCTS_LIMIT = 10

DATE_FORMAT = "%Y-%m-%d"


class PaymentType(str, Enum):
    """Enumerate how a sale or purchase is settled."""

    CASH = "cash"
    CREDIT = "credit"


class ExpenseCategory(str, Enum):
    """Enumerate the fixed set of expense categories."""

    RENT = "Rent"
    ELECTRICITY = "Electricity"
    WATER = "Water"
    SALARIES = "Salaries"
    TRANSPORT = "Transport"
    MAINTENANCE = "Maintenance"
    ADVERTISING = "Advertising"
    OTHER = "Other"


class Collection(str, Enum):
    """Enumerate the entity collections; values double as backup keys."""

    PRODUCTS = "products"
    SALES = "sales"
    PURCHASES = "purchases"
    EXPENSES = "expenses"
    CUSTOMERS = "customers"
    CUSTOMER_PAYMENTS = "customerPayments"
    SUPPLIERS = "suppliers"
    SUPPLIER_PAYMENTS = "supplierPayments"


class SheetName(str, Enum):
    """Enumerate the workbook sheet titles managed by the data layer."""

    PRODUCTS = "Products"
    SALES = "Sales"
    PURCHASES = "Purchases"
    EXPENSES = "Expenses"
    CUSTOMERS = "Customers"
    CUSTOMER_PAYMENTS = "CustomerPayments"
    SUPPLIERS = "Suppliers"
    SUPPLIER_PAYMENTS = "SupplierPayments"


class ReportPeriod(str, Enum):
    """Enumerate the report presets offered to callers."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_THRESHOLD",
    "TOP_PRODUCTS_LIMIT",
    "DATE_FORMAT",
    "PaymentType",
    "ExpenseCategory",
    "Collection",
    "SheetName",
    "ReportPeriod",
]
