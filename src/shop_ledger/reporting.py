"""Aggregation engine for the shop ledger.

All functions here are read-only derivations over the collections exposed by
:mod:`core_logic`. Date filters compare canonical ``YYYY-MM-DD`` strings
directly; the ledger engine normalizes every stored date to that form.
Reductions over empty inputs always produce zero totals, never errors.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from . import core_logic, data_manager, log
from .constants import LOW_STOCK_THRESHOLD, TOP_PRODUCTS_LIMIT, ReportPeriod
from .data_manager import (
    CustomerPaymentRow,
    CustomerRow,
    ExpenseRow,
    PurchaseRow,
    SaleRow,
    SupplierPaymentRow,
    SupplierRow,
)


ZERO = Decimal("0")


@dataclass(frozen=True)
class Totals:
    """Monetary totals over a set of sales, purchases, and expenses.

    ``total_profit`` is the net figure: sale profit minus expenses.
    """

    total_sales: Decimal = ZERO
    total_purchases: Decimal = ZERO
    total_expenses: Decimal = ZERO
    gross_profit: Decimal = ZERO
    total_profit: Decimal = ZERO
    sales_count: int = 0
    purchases_count: int = 0


@dataclass(frozen=True)
class DailySummary:
    """Totals for a single calendar date."""

    date: str
    totals: Totals

    @property
    def total_sales(self) -> Decimal:
        return self.totals.total_sales

    @property
    def total_purchases(self) -> Decimal:
        return self.totals.total_purchases

    @property
    def total_expenses(self) -> Decimal:
        return self.totals.total_expenses

    @property
    def total_profit(self) -> Decimal:
        return self.totals.total_profit

    @property
    def sales_count(self) -> int:
        return self.totals.sales_count

    @property
    def purchases_count(self) -> int:
        return self.totals.purchases_count


@dataclass(frozen=True)
class TopProduct:
    """Sales of one product aggregated over a report period."""

    product_id: str
    name: str
    quantity: int
    total: Decimal
    profit: Decimal


@dataclass(frozen=True)
class RangeReport:
    """Everything needed to render a period report."""

    start_date: str
    end_date: str
    totals: Totals
    daily: List[DailySummary]
    top_products: List[TopProduct]
    sales: List[SaleRow] = field(default_factory=list)
    purchases: List[PurchaseRow] = field(default_factory=list)
    expenses: List[ExpenseRow] = field(default_factory=list)

    @property
    def net_profit(self) -> Decimal:
        return self.totals.total_profit


@dataclass(frozen=True)
class InventoryItem:
    """Stock position and valuation of one product."""

    product_id: str
    name: str
    unit: str
    stock: int
    buy_price: Decimal
    sell_price: Decimal
    value: Decimal
    low_stock: bool


@dataclass(frozen=True)
class InventorySnapshot:
    items: List[InventoryItem]
    total_value: Decimal
    low_stock_count: int

    @property
    def products_count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class DashboardStats:
    """Landing view figures: today, all time, and the inventory position."""

    today: DailySummary
    overall: Totals
    inventory: InventorySnapshot


@dataclass(frozen=True)
class DebtOverview:
    customers: List[CustomerRow]
    suppliers: List[SupplierRow]
    total_customer_debt: Decimal
    total_supplier_debt: Decimal


@dataclass(frozen=True)
class CustomerStatement:
    customer: CustomerRow
    sales: List[SaleRow]
    payments: List[CustomerPaymentRow]


@dataclass(frozen=True)
class SupplierStatement:
    supplier: SupplierRow
    purchases: List[PurchaseRow]
    payments: List[SupplierPaymentRow]


def summarize(
    sales: Sequence[SaleRow],
    purchases: Sequence[PurchaseRow],
    expenses: Sequence[ExpenseRow],
) -> Totals:
    """Reduce already-filtered logs into :class:`Totals`."""

    total_expenses = sum((expense.amount for expense in expenses), ZERO)
    gross_profit = sum((sale.profit for sale in sales), ZERO)
    return Totals(
        total_sales=sum((sale.total_price for sale in sales), ZERO),
        total_purchases=sum((purchase.total_price for purchase in purchases), ZERO),
        total_expenses=total_expenses,
        gross_profit=gross_profit,
        total_profit=gross_profit - total_expenses,
        sales_count=len(sales),
        purchases_count=len(purchases),
    )


def date_range(start_date: str, end_date: str) -> List[str]:
    """Return every calendar date from ``start_date`` to ``end_date`` inclusive.

    The list is empty when ``start_date`` falls after ``end_date``.

    Raises:
        ValueError: If either bound is not a valid date.
    """

    current = date.fromisoformat(data_manager.normalize_date(start_date))
    end = date.fromisoformat(data_manager.normalize_date(end_date))
    dates: List[str] = []
    while current <= end:
        dates.append(current.isoformat())
        current += timedelta(days=1)
    return dates


def _one_month_earlier(day: date) -> date:
    if day.month == 1:
        year, month = day.year - 1, 12
    else:
        year, month = day.year, day.month - 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def period_bounds(
    period: ReportPeriod | str,
    *,
    today: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> tuple[str, str]:
    """Resolve a report preset into an inclusive ``(start, end)`` date pair.

    ``daily`` covers today only, ``weekly`` the seven days before today plus
    today, ``monthly`` the same day one month earlier (clamped to the end of
    that month) through today, and ``custom`` the explicit bounds.

    Raises:
        ValueError: For an unknown preset, a malformed date, or a custom
            period without both bounds.
    """

    preset = ReportPeriod(period)
    anchor = date.fromisoformat(data_manager.normalize_date(today or core_logic.today_iso()))
    if preset is ReportPeriod.DAILY:
        start = anchor
    elif preset is ReportPeriod.WEEKLY:
        start = anchor - timedelta(days=7)
    elif preset is ReportPeriod.MONTHLY:
        start = _one_month_earlier(anchor)
    else:
        if not start_date or not end_date:
            raise ValueError("A custom period requires both a start and an end date")
        return data_manager.normalize_date(start_date), data_manager.normalize_date(end_date)
    return start.isoformat(), anchor.isoformat()


def daily_summary(context: core_logic.RuntimeContext, day: str) -> DailySummary:
    """Summarize the records whose ``date`` equals ``day`` exactly."""

    sales = [sale for sale in core_logic.list_sales(context) if sale.date == day]
    purchases = [purchase for purchase in core_logic.list_purchases(context) if purchase.date == day]
    expenses = [expense for expense in core_logic.list_expenses(context) if expense.date == day]
    return DailySummary(date=day, totals=summarize(sales, purchases, expenses))


def rank_top_products(sales: Iterable[SaleRow], *, limit: int = TOP_PRODUCTS_LIMIT) -> List[TopProduct]:
    """Group sales by product and rank them by revenue, highest first.

    Products keep the order in which they first appear when their revenue
    ties. The displayed name is the snapshot carried by the latest sale.
    """

    grouped: Dict[str, Dict[str, Any]] = {}
    for sale in sales:
        entry = grouped.setdefault(
            sale.product_id,
            {"name": sale.product_name, "quantity": 0, "total": ZERO, "profit": ZERO},
        )
        entry["name"] = sale.product_name
        entry["quantity"] += sale.quantity
        entry["total"] += sale.total_price
        entry["profit"] += sale.profit

    ranked = [
        TopProduct(
            product_id=product_id,
            name=entry["name"],
            quantity=entry["quantity"],
            total=entry["total"],
            profit=entry["profit"],
        )
        for product_id, entry in grouped.items()
    ]
    ranked.sort(key=lambda item: item.total, reverse=True)
    return ranked[:limit]


def range_report(context: core_logic.RuntimeContext, start_date: str, end_date: str) -> RangeReport:
    """Build the period report for ``start_date <= date <= end_date``.

    Args:
        context (core_logic.RuntimeContext): Runtime context to read from.
        start_date (str): Inclusive lower bound, ``YYYY-MM-DD``.
        end_date (str): Inclusive upper bound, ``YYYY-MM-DD``.

    Returns:
        RangeReport: Aggregate totals, one :class:`DailySummary` per calendar
            date in the range (including idle days), the top products by
            revenue, and the filtered records for detail listings.
    """

    start = data_manager.normalize_date(start_date)
    end = data_manager.normalize_date(end_date)

    sales = [sale for sale in core_logic.list_sales(context) if start <= sale.date <= end]
    purchases = [purchase for purchase in core_logic.list_purchases(context) if start <= purchase.date <= end]
    expenses = [expense for expense in core_logic.list_expenses(context) if start <= expense.date <= end]

    daily = [
        DailySummary(
            date=day,
            totals=summarize(
                [sale for sale in sales if sale.date == day],
                [purchase for purchase in purchases if purchase.date == day],
                [expense for expense in expenses if expense.date == day],
            ),
        )
        for day in date_range(start, end)
    ]

    report = RangeReport(
        start_date=start,
        end_date=end,
        totals=summarize(sales, purchases, expenses),
        daily=daily,
        top_products=rank_top_products(sales),
        sales=sales,
        purchases=purchases,
        expenses=expenses,
    )
    log.debug(
        "Built range report %s..%s (%d sales, %d purchases, %d expenses)",
        start,
        end,
        len(sales),
        len(purchases),
        len(expenses),
    )
    return report


def inventory_snapshot(context: core_logic.RuntimeContext) -> InventorySnapshot:
    """Value every product at ``stock * buy_price`` and flag low stock."""

    items = [
        InventoryItem(
            product_id=product.product_id,
            name=product.name,
            unit=product.unit,
            stock=product.stock,
            buy_price=product.buy_price,
            sell_price=product.sell_price,
            value=product.buy_price * product.stock,
            low_stock=product.stock < LOW_STOCK_THRESHOLD,
        )
        for product in core_logic.list_products(context)
    ]
    return InventorySnapshot(
        items=items,
        total_value=sum((item.value for item in items), ZERO),
        low_stock_count=sum(1 for item in items if item.low_stock),
    )


def dashboard_stats(context: core_logic.RuntimeContext, *, today: Optional[str] = None) -> DashboardStats:
    """Compose today's summary, all-time totals, and the inventory snapshot."""

    day = data_manager.normalize_date(today) if today else core_logic.today_iso()
    overall = summarize(
        core_logic.list_sales(context),
        core_logic.list_purchases(context),
        core_logic.list_expenses(context),
    )
    return DashboardStats(
        today=daily_summary(context, day),
        overall=overall,
        inventory=inventory_snapshot(context),
    )


def debt_overview(context: core_logic.RuntimeContext) -> DebtOverview:
    """List counterparties by balance, largest first, with per-side sums."""

    customers = sorted(core_logic.list_customers(context), key=lambda row: row.total_debt, reverse=True)
    suppliers = sorted(core_logic.list_suppliers(context), key=lambda row: row.total_debt, reverse=True)
    return DebtOverview(
        customers=customers,
        suppliers=suppliers,
        total_customer_debt=sum((row.total_debt for row in customers), ZERO),
        total_supplier_debt=sum((row.total_debt for row in suppliers), ZERO),
    )


def customer_statement(context: core_logic.RuntimeContext, customer_id: str) -> CustomerStatement:
    """Return a customer with every sale made to it and its payments.

    Raises:
        core_logic.MissingReferenceError: If the customer does not exist.
    """

    customer = core_logic.get_customer(context, customer_id)
    return CustomerStatement(
        customer=customer,
        sales=[sale for sale in core_logic.list_sales(context) if sale.customer_id == customer_id],
        payments=[payment for payment in core_logic.list_customer_payments(context) if payment.customer_id == customer_id],
    )


def supplier_statement(context: core_logic.RuntimeContext, supplier_id: str) -> SupplierStatement:
    """Return a supplier with every purchase made from it and its payments.

    Raises:
        core_logic.MissingReferenceError: If the supplier does not exist.
    """

    supplier = core_logic.get_supplier(context, supplier_id)
    return SupplierStatement(
        supplier=supplier,
        purchases=[purchase for purchase in core_logic.list_purchases(context) if purchase.supplier_id == supplier_id],
        payments=[payment for payment in core_logic.list_supplier_payments(context) if payment.supplier_id == supplier_id],
    )
