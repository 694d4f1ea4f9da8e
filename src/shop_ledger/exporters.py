"""PDF exports: the period accounting report and single-sale invoices.

Table content is assembled by :func:`build_report_sections` and
:func:`build_invoice`; the ``export_*`` functions only lay that content out
with reportlab.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, List, Optional, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas as pdf_canvas
from reportlab.platypus import Table, TableStyle

from . import log
from .data_manager import SaleRow, StorageFailure
from .reporting import InventorySnapshot, RangeReport


ROWS_PER_PAGE = 35
PAGE_MARGIN = 20 * mm
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ReportSection:
    """One titled table of the accounting report."""

    title: str
    header: List[str]
    rows: List[List[str]]


@dataclass(frozen=True)
class InvoiceDocument:
    shop_name: str
    date: str
    invoice_no: str
    customer_name: Optional[str]
    payment_type: str
    header: List[str]
    rows: List[List[str]]
    total: str


def format_money(value: Any) -> str:
    """Format a monetary value with exactly two decimals (``12.50``)."""

    return str(Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP))


def build_report_sections(report: RangeReport, inventory: InventorySnapshot, currency: str) -> List[ReportSection]:
    """Return the report tables in page order.

    The summary and inventory sections are always present; the detail
    sections only when the period holds matching records.
    """

    totals = report.totals
    sections = [
        ReportSection(
            title="Summary",
            header=["Item", "Amount"],
            rows=[
                [label, f"{format_money(amount)} {currency}"]
                for label, amount in (
                    ("Total Sales", totals.total_sales),
                    ("Total Purchases", totals.total_purchases),
                    ("Total Expenses", totals.total_expenses),
                    ("Gross Profit", totals.gross_profit),
                    ("Net Profit", totals.total_profit),
                )
            ],
        )
    ]

    if report.sales:
        sections.append(
            ReportSection(
                title="Sales Details",
                header=["Date", "Product", "Qty", "Price", "Total", "Profit"],
                rows=[
                    [
                        sale.date,
                        sale.product_name,
                        str(sale.quantity),
                        format_money(sale.unit_price),
                        format_money(sale.total_price),
                        format_money(sale.profit),
                    ]
                    for sale in report.sales
                ],
            )
        )

    if report.purchases:
        sections.append(
            ReportSection(
                title="Purchases Details",
                header=["Date", "Product", "Qty", "Price", "Total", "Supplier"],
                rows=[
                    [
                        purchase.date,
                        purchase.product_name,
                        str(purchase.quantity),
                        format_money(purchase.unit_price),
                        format_money(purchase.total_price),
                        purchase.supplier_name or "-",
                    ]
                    for purchase in report.purchases
                ],
            )
        )

    if report.expenses:
        sections.append(
            ReportSection(
                title="Expenses Details",
                header=["Date", "Description", "Category", "Amount"],
                rows=[
                    [expense.date, expense.description, expense.category, format_money(expense.amount)]
                    for expense in report.expenses
                ],
            )
        )

    inventory_rows = [
        [
            item.name,
            str(item.stock),
            item.unit,
            format_money(item.buy_price),
            format_money(item.sell_price),
            format_money(item.value),
        ]
        for item in inventory.items
    ]
    sections.append(
        ReportSection(
            title="Inventory Status",
            header=["Product", "Stock", "Unit", "Buy Price", "Sell Price", "Value"],
            rows=inventory_rows or [["No products", "", "", "", "", ""]],
        )
    )
    return sections


def build_invoice(sale: SaleRow, shop_name: str) -> InvoiceDocument:
    """Return the content of the invoice for ``sale``."""

    return InvoiceDocument(
        shop_name=shop_name,
        date=sale.date,
        invoice_no=sale.sale_id,
        customer_name=sale.customer_name,
        payment_type=sale.payment_type,
        header=["Product", "Qty", "Unit Price", "Total"],
        rows=[
            [
                sale.product_name,
                str(sale.quantity),
                format_money(sale.unit_price),
                format_money(sale.total_price),
            ]
        ],
        total=format_money(sale.total_price),
    )


def _chunks(rows: Sequence[List[str]], size: int) -> List[Sequence[List[str]]]:
    return [rows[index:index + size] for index in range(0, len(rows), size)] or [rows]


def _styled_table(header: List[str], rows: Sequence[List[str]]) -> Table:
    table = Table([header, *rows], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("GRID", (0, 0), (-1, -1), 0.5, colors.darkgray),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#d1e0ff")),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.darkblue),
                ("ALIGN", (0, 0), (-1, 0), "CENTER"),
            ]
        )
    )
    return table


def _draw_table(c: pdf_canvas.Canvas, table: Table, top: float) -> float:
    """Draw ``table`` with its top edge at ``top`` and return its bottom edge."""

    width, height = A4
    _, table_height = table.wrapOn(c, width - 2 * PAGE_MARGIN, height)
    table.drawOn(c, PAGE_MARGIN, top - table_height)
    return top - table_height


def _save(c: pdf_canvas.Canvas, path: Path) -> None:
    try:
        c.save()
    except OSError as exc:
        log.error("Writing PDF '%s' failed: %s", path, exc)
        raise StorageFailure(f"Unable to write PDF to {path}: {exc}") from exc


def _prepare(path: Path) -> Path:
    target = Path(path).expanduser().resolve()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageFailure(f"Unable to create directory {target.parent}: {exc}") from exc
    return target


def export_report_pdf(
    path: Path,
    report: RangeReport,
    inventory: InventorySnapshot,
    *,
    shop_name: str,
    currency: str,
) -> Path:
    """Render the accounting report for ``report`` into ``path``.

    Page one holds the title, the period, and the summary table. Every other
    section starts on a new page; tables longer than ``ROWS_PER_PAGE`` rows
    continue on further pages with their header repeated.

    Raises:
        StorageFailure: If the PDF cannot be written.
    """

    target = _prepare(path)
    width, height = A4
    c = pdf_canvas.Canvas(str(target), pagesize=A4)
    c.setTitle(f"{shop_name} - Accounting Report")

    sections = build_report_sections(report, inventory, currency)
    y = height - PAGE_MARGIN
    c.setFont("Helvetica-Bold", 16)
    c.drawCentredString(width / 2, y, "Accounting Report")
    y -= 18
    c.setFont("Helvetica", 10)
    c.drawCentredString(width / 2, y, shop_name)
    y -= 14
    c.drawCentredString(width / 2, y, f"Period: {report.start_date} to {report.end_date}")
    y -= 24

    for index, section in enumerate(sections):
        for part, rows in enumerate(_chunks(section.rows, ROWS_PER_PAGE)):
            if index > 0 or part > 0:
                c.showPage()
                y = height - PAGE_MARGIN
            c.setFont("Helvetica-Bold", 12)
            title = section.title if part == 0 else f"{section.title} (continued)"
            c.drawString(PAGE_MARGIN, y, title)
            _draw_table(c, _styled_table(section.header, rows), y - 8)

    c.showPage()
    _save(c, target)
    log.info("Exported report %s..%s to '%s'", report.start_date, report.end_date, target)
    return target


def export_invoice_pdf(path: Path, sale: SaleRow, *, shop_name: str, currency: str = "") -> Path:
    """Render a one-page invoice for ``sale`` into ``path``.

    Raises:
        StorageFailure: If the PDF cannot be written.
    """

    invoice = build_invoice(sale, shop_name)
    target = _prepare(path)
    width, height = A4
    c = pdf_canvas.Canvas(str(target), pagesize=A4)
    c.setTitle(f"Invoice {invoice.invoice_no}")

    y = height - PAGE_MARGIN
    c.setFont("Helvetica-Bold", 16)
    c.drawCentredString(width / 2, y, invoice.shop_name)
    y -= 22
    c.setFont("Helvetica", 10)
    c.drawString(PAGE_MARGIN, y, f"Date: {invoice.date}")
    c.drawRightString(width - PAGE_MARGIN, y, f"Invoice No: {invoice.invoice_no}")
    y -= 14
    if invoice.customer_name:
        c.drawString(PAGE_MARGIN, y, f"Customer: {invoice.customer_name}")
        y -= 14
    c.drawString(PAGE_MARGIN, y, f"Payment: {invoice.payment_type}")
    y -= 20

    bottom = _draw_table(c, _styled_table(invoice.header, invoice.rows), y)
    c.setFont("Helvetica-Bold", 11)
    c.drawRightString(width - PAGE_MARGIN, bottom - 20, f"Total: {invoice.total} {currency}".rstrip())

    c.showPage()
    _save(c, target)
    log.info("Exported invoice for sale '%s' to '%s'", sale.sale_id, target)
    return target
