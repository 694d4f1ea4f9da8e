"""Tests for the report and invoice PDF exports."""

from __future__ import annotations

from decimal import Decimal

import pytest

from shop_ledger import core_logic, exporters, reporting
from shop_ledger.constants import ExpenseCategory, PaymentType


@pytest.fixture
def shop(context):
    widget = core_logic.add_product(context, name="Widget", buy_price="10", sell_price="15", stock=100)
    customer = core_logic.add_customer(context, name="Ahmed")
    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            product_id=widget.product_id,
            quantity=2,
            unit_price="15",
            payment_type=PaymentType.CREDIT,
            customer_id=customer.customer_id,
            date="2025-01-02",
        ),
    )
    core_logic.record_purchase(
        context,
        core_logic.PurchaseCommand(product_id=widget.product_id, quantity=5, unit_price="10", date="2025-01-02"),
    )
    core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(
            description="Electric bill", amount="12.5", category=ExpenseCategory.ELECTRICITY, date="2025-01-02"
        ),
    )
    return context, sale


@pytest.mark.parametrize(
    ("value", "expected"),
    [(Decimal("75"), "75.00"), (Decimal("2.005"), "2.01"), ("3.1", "3.10"), (0, "0.00"), (Decimal("-20"), "-20.00")],
)
def test_format_money_uses_two_decimals(value, expected):
    assert exporters.format_money(value) == expected


def test_build_report_sections_lists_every_table(shop):
    context, _ = shop
    report = reporting.range_report(context, "2025-01-01", "2025-01-31")

    sections = exporters.build_report_sections(report, reporting.inventory_snapshot(context), "EGP")

    assert [section.title for section in sections] == [
        "Summary",
        "Sales Details",
        "Purchases Details",
        "Expenses Details",
        "Inventory Status",
    ]
    summary = sections[0]
    assert summary.header == ["Item", "Amount"]
    assert summary.rows == [
        ["Total Sales", "30.00 EGP"],
        ["Total Purchases", "50.00 EGP"],
        ["Total Expenses", "12.50 EGP"],
        ["Gross Profit", "10.00 EGP"],
        ["Net Profit", "-2.50 EGP"],
    ]
    assert sections[1].rows == [["2025-01-02", "Widget", "2", "15.00", "30.00", "10.00"]]
    assert sections[2].header[-1] == "Supplier"
    assert sections[2].rows[0][-1] == "-"
    assert sections[3].rows == [["2025-01-02", "Electric bill", "Electricity", "12.50"]]
    assert sections[4].rows == [["Widget", "103", "piece", "10.00", "15.00", "1030.00"]]


def test_build_report_sections_skips_empty_details(context):
    report = reporting.range_report(context, "2025-01-01", "2025-01-01")

    sections = exporters.build_report_sections(report, reporting.inventory_snapshot(context), "USD")

    assert [section.title for section in sections] == ["Summary", "Inventory Status"]
    assert sections[0].rows[0] == ["Total Sales", "0.00 USD"]
    assert sections[1].rows == [["No products", "", "", "", "", ""]]


def test_build_invoice_describes_sale(shop):
    _, sale = shop

    invoice = exporters.build_invoice(sale, "Corner Shop")

    assert invoice.shop_name == "Corner Shop"
    assert invoice.invoice_no == sale.sale_id
    assert invoice.customer_name == "Ahmed"
    assert invoice.payment_type == "credit"
    assert invoice.header == ["Product", "Qty", "Unit Price", "Total"]
    assert invoice.rows == [["Widget", "2", "15.00", "30.00"]]
    assert invoice.total == "30.00"


def test_export_report_pdf_writes_multi_page_document(context, tmp_path):
    widget = core_logic.add_product(context, name="Widget", buy_price="1", sell_price="2", stock=500)
    for _ in range(80):
        core_logic.record_sale(
            context,
            core_logic.SaleCommand(product_id=widget.product_id, quantity=1, unit_price="2", date="2025-01-05"),
        )
    report = reporting.range_report(context, "2025-01-01", "2025-01-31")

    target = exporters.export_report_pdf(
        tmp_path / "out" / "report.pdf",
        report,
        reporting.inventory_snapshot(context),
        shop_name="Corner Shop",
        currency="EGP",
    )

    assert target.exists()
    assert target.read_bytes().startswith(b"%PDF")


def test_export_invoice_pdf_writes_file(shop, tmp_path):
    _, sale = shop

    target = exporters.export_invoice_pdf(tmp_path / "invoice.pdf", sale, shop_name="Corner Shop", currency="EGP")

    assert target.read_bytes().startswith(b"%PDF")
