"""Unit tests verifying the ledger engine against an in-memory workbook."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from shop_ledger import constants, core_logic, data_manager
from shop_ledger.constants import Collection, ExpenseCategory, PaymentType


def _seed_product(context, *, name="Widget", buy_price="10", sell_price="15", stock=100):
    return core_logic.add_product(context, name=name, buy_price=buy_price, sell_price=sell_price, stock=stock)


def _sell(context, product, quantity=5, unit_price="15", **kwargs):
    return core_logic.record_sale(
        context,
        core_logic.SaleCommand(product_id=product.product_id, quantity=quantity, unit_price=unit_price, **kwargs),
    )


def _buy(context, product, quantity=10, unit_price="10", **kwargs):
    return core_logic.record_purchase(
        context,
        core_logic.PurchaseCommand(product_id=product.product_id, quantity=quantity, unit_price=unit_price, **kwargs),
    )


def _store_state(context):
    return {collection: data_manager.load_collection(context.workbook, collection) for collection in Collection}


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "shop.xlsx",
        shop_name="Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        currency="EGP",
        export_dir=tmp_path / "exports",
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_settings = replace(context.settings, schema_version="0.9")
    bad_context = core_logic.RuntimeContext(settings=bad_settings, workbook=context.workbook)
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_list_products_reuses_cache_between_calls(monkeypatch, context):
    """Collections are loaded once per context until a commit touches them."""

    rows = [
        data_manager.ProductRow("PRD1", "Cached", Decimal("1"), Decimal("2"), 5, "piece", "2025-01-01"),
    ]
    load_mock = Mock(return_value=rows)
    monkeypatch.setattr(data_manager, "load_collection", load_mock)

    first = core_logic.list_products(context)
    second = core_logic.list_products(context)

    assert first == second == rows
    load_mock.assert_called_once_with(context.workbook, Collection.PRODUCTS)


def test_get_product_reuses_cache_after_first_lookup(context):
    product = _seed_product(context)

    first = core_logic.get_product(context, product.product_id)
    second = core_logic.get_product(context, product.product_id)

    assert first is second


def test_get_product_missing_raises(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_product(context, "NOPE")


def test_commit_invalidates_touched_buckets(context):
    product = _seed_product(context)
    core_logic.list_sales(context)

    _sell(context, product)

    assert core_logic.get_product(context, product.product_id).stock == 95
    assert len(core_logic.list_sales(context)) == 1


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------


def test_add_product_records_creation_date(context, set_fixed_datetime):
    set_fixed_datetime(datetime(2025, 3, 7, 9, 30, tzinfo=UTC))

    product = _seed_product(context)

    assert product.product_id.startswith("PRD")
    assert product.created_at == "2025-03-07"
    assert product.buy_price == Decimal("10")
    assert core_logic.list_products(context) == [product]


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "   "},
        {"buy_price": "-1"},
        {"sell_price": "abc"},
        {"stock": "1.5"},
    ],
)
def test_add_product_rejects_invalid_fields(context, overrides):
    values = {"name": "Widget", "buy_price": "10", "sell_price": "15", "stock": 3}
    values.update(overrides)

    with pytest.raises(core_logic.InvalidInputError):
        core_logic.add_product(context, **values)

    assert core_logic.list_products(context) == []


def test_update_product_changes_only_supplied_fields(context):
    product = _seed_product(context)
    sale = _sell(context, product)

    updated = core_logic.update_product(context, product.product_id, name="Gadget", sell_price="18")

    assert updated.name == "Gadget"
    assert updated.sell_price == Decimal("18")
    assert updated.buy_price == product.buy_price
    assert updated.stock == 95
    assert core_logic.get_sale(context, sale.sale_id).product_name == "Widget"


def test_update_product_unknown_raises(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.update_product(context, "PRD-missing", name="X")


def test_delete_product_keeps_history(context):
    product = _seed_product(context)
    sale = _sell(context, product)

    core_logic.delete_product(context, product.product_id)

    assert core_logic.list_products(context) == []
    assert core_logic.list_sales(context) == [sale]


def test_add_customer_starts_with_zero_debt(context):
    customer = core_logic.add_customer(context, name="  Ahmed  ", phone="0100", address="")

    assert customer.name == "Ahmed"
    assert customer.total_debt == Decimal("0")
    assert customer.phone == "0100"
    assert customer.address is None


def test_add_supplier_requires_name(context):
    with pytest.raises(core_logic.InvalidInputError):
        core_logic.add_supplier(context, name="")


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def test_record_sale_updates_stock_and_snapshots_profit(context):
    """Buy 10 / sell 15, stock 100; selling 5 at 15 leaves 95 in stock and earns 25."""

    product = _seed_product(context)

    sale = _sell(context, product, quantity=5, unit_price="15")

    assert sale.total_price == Decimal("75")
    assert sale.profit == Decimal("25")
    assert sale.product_name == "Widget"
    assert sale.payment_type == PaymentType.CASH.value
    assert core_logic.get_product(context, product.product_id).stock == 95


def test_record_sale_profit_uses_buy_price_at_sale_time(context):
    product = _seed_product(context)
    first = _sell(context, product, quantity=1)
    core_logic.update_product(context, product.product_id, buy_price="12")

    second = _sell(context, product, quantity=1)

    assert first.profit == Decimal("5")
    assert second.profit == Decimal("3")


def test_record_sale_allows_negative_stock(context):
    product = _seed_product(context, stock=2)

    _sell(context, product, quantity=5)

    assert core_logic.get_product(context, product.product_id).stock == -3


def test_record_sale_on_credit_adds_customer_debt(context):
    """Credit sale of 2 at 15 raises the balance to 30; a payment of 50 leaves -20."""

    product = _seed_product(context)
    customer = core_logic.add_customer(context, name="Ahmed")

    sale = _sell(context, product, quantity=2, payment_type=PaymentType.CREDIT, customer_id=customer.customer_id)
    assert sale.customer_name == "Ahmed"
    assert core_logic.get_customer(context, customer.customer_id).total_debt == Decimal("30")

    core_logic.record_customer_payment(
        context, core_logic.CustomerPaymentCommand(customer_id=customer.customer_id, amount="50")
    )
    assert core_logic.get_customer(context, customer.customer_id).total_debt == Decimal("-20")


def test_record_sale_cash_with_customer_keeps_debt(context):
    product = _seed_product(context)
    customer = core_logic.add_customer(context, name="Mona")

    sale = _sell(context, product, payment_type="CASH", customer_id=customer.customer_id)

    assert sale.customer_id == customer.customer_id
    assert core_logic.get_customer(context, customer.customer_id).total_debt == Decimal("0")


def test_record_sale_credit_without_customer_is_rejected(context):
    product = _seed_product(context)
    before = _store_state(context)

    with pytest.raises(core_logic.InvalidInputError):
        _sell(context, product, payment_type=PaymentType.CREDIT)

    assert _store_state(context) == before


def test_record_sale_unknown_customer_is_rejected(context):
    product = _seed_product(context)

    with pytest.raises(core_logic.InvalidInputError):
        _sell(context, product, customer_id="CUS-missing")

    assert core_logic.list_sales(context) == []


def test_record_sale_unknown_product_raises_not_found(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.record_sale(context, core_logic.SaleCommand(product_id="PRD-x", quantity=1, unit_price="1"))


@pytest.mark.parametrize(
    ("quantity", "unit_price", "payment_type", "date"),
    [
        (0, "15", PaymentType.CASH, None),
        (-2, "15", PaymentType.CASH, None),
        ("1.5", "15", PaymentType.CASH, None),
        (1, "-1", PaymentType.CASH, None),
        (1, "15", "cheque", None),
        (1, "15", PaymentType.CASH, "07/03/2025"),
    ],
)
def test_record_sale_rejects_invalid_input(context, quantity, unit_price, payment_type, date):
    product = _seed_product(context)
    before = _store_state(context)

    with pytest.raises(core_logic.InvalidInputError):
        _sell(context, product, quantity=quantity, unit_price=unit_price, payment_type=payment_type, date=date)

    assert _store_state(context) == before


def test_record_sale_defaults_date_to_today(context, set_fixed_datetime):
    set_fixed_datetime(datetime(2025, 3, 7, 23, 59, tzinfo=UTC))
    product = _seed_product(context)

    assert _sell(context, product).date == "2025-03-07"
    assert _sell(context, product, date="2025-3-1").date == "2025-03-01"


def test_record_sale_write_failure_leaves_store_unchanged(context, monkeypatch):
    product = _seed_product(context)
    before = _store_state(context)
    original_save = data_manager.save_collection

    def _flaky_save(workbook, collection, records):
        if Collection(collection) is Collection.PRODUCTS and records and records[0].stock != 100:
            raise ValueError("sheet locked")
        original_save(workbook, collection, records)

    monkeypatch.setattr(data_manager, "save_collection", _flaky_save)

    with pytest.raises(core_logic.StorageFailure):
        _sell(context, product)

    monkeypatch.setattr(data_manager, "save_collection", original_save)
    assert _store_state(context) == before
    assert core_logic.get_product(context, product.product_id).stock == 100
    assert core_logic.list_sales(context) == []


def test_record_sale_rejects_control_characters_in_notes(context):
    product = _seed_product(context)
    before = _store_state(context)

    with pytest.raises(core_logic.InvalidInputError):
        _sell(context, product, notes="bad\x07note")

    assert _store_state(context) == before
    assert core_logic.list_sales(context) == []
    assert core_logic.get_product(context, product.product_id).stock == 100


def test_update_product_rejects_control_characters_in_name(context):
    first = _seed_product(context, name="Widget")
    second = _seed_product(context, name="Gadget")

    with pytest.raises(core_logic.InvalidInputError):
        core_logic.update_product(context, first.product_id, name="x\x01y")

    assert core_logic.list_products(context) == [first, second]


@pytest.mark.parametrize(
    "action",
    [
        lambda ctx, product: core_logic.add_product(ctx, name="Tea", buy_price="1", sell_price="2", unit="bo\x0bx"),
        lambda ctx, product: core_logic.add_customer(ctx, name="Ahmed", phone="01\x000"),
        lambda ctx, product: core_logic.add_supplier(ctx, name="Wholesale", address="Main\x1fStreet"),
        lambda ctx, product: _buy(ctx, product, supplier_name="Stall\x02"),
        lambda ctx, product: core_logic.record_expense(
            ctx, core_logic.ExpenseCommand(description="Fuel\x08", amount="5", category=ExpenseCategory.OTHER)
        ),
    ],
)
def test_free_text_with_control_characters_is_rejected(context, action):
    product = _seed_product(context)
    before = _store_state(context)

    with pytest.raises(core_logic.InvalidInputError):
        action(context, product)

    assert _store_state(context) == before


def test_net_stock_change_matches_remaining_sales(context):
    product = _seed_product(context, stock=100)
    sales = [_sell(context, product, quantity=quantity) for quantity in (3, 7, 1, 12, 5)]
    core_logic.delete_sale(context, sales[1].sale_id)
    sales.append(_sell(context, product, quantity=4))
    core_logic.delete_sale(context, sales[3].sale_id)
    core_logic.delete_sale(context, sales[5].sale_id)
    sales.append(_sell(context, product, quantity=2))

    remaining = core_logic.list_sales(context)

    assert [sale.quantity for sale in remaining] == [3, 1, 5, 2]
    assert core_logic.get_product(context, product.product_id).stock - 100 == -sum(
        sale.quantity for sale in remaining
    )


def test_delete_sale_reverses_stock_and_debt(context):
    product = _seed_product(context)
    customer = core_logic.add_customer(context, name="Ahmed")
    before = _store_state(context)
    sale = _sell(context, product, quantity=4, payment_type=PaymentType.CREDIT, customer_id=customer.customer_id)

    core_logic.delete_sale(context, sale.sale_id)

    assert _store_state(context) == before


def test_delete_sale_after_product_removed_only_deletes_sale(context):
    product = _seed_product(context)
    sale = _sell(context, product)
    core_logic.delete_product(context, product.product_id)

    core_logic.delete_sale(context, sale.sale_id)

    assert core_logic.list_sales(context) == []
    assert core_logic.list_products(context) == []


def test_delete_sale_after_customer_removed(context):
    product = _seed_product(context)
    customer = core_logic.add_customer(context, name="Ahmed")
    sale = _sell(context, product, quantity=1, payment_type=PaymentType.CREDIT, customer_id=customer.customer_id)
    core_logic.delete_customer(context, customer.customer_id)

    core_logic.delete_sale(context, sale.sale_id)

    assert core_logic.get_product(context, product.product_id).stock == 100
    assert core_logic.list_customers(context) == []


def test_delete_sale_unknown_raises(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.delete_sale(context, "SAL-missing")


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def test_record_purchase_on_credit_adds_stock_and_supplier_debt(context):
    product = _seed_product(context, stock=0)
    supplier = core_logic.add_supplier(context, name="Wholesale Co")

    purchase = _buy(
        context, product, quantity=20, unit_price="9.5", payment_type=PaymentType.CREDIT, supplier_id=supplier.supplier_id
    )

    assert purchase.total_price == Decimal("190.0")
    assert purchase.supplier_name == "Wholesale Co"
    assert core_logic.get_product(context, product.product_id).stock == 20
    assert core_logic.get_supplier(context, supplier.supplier_id).total_debt == Decimal("190")


def test_record_purchase_cash_accepts_free_text_supplier(context):
    product = _seed_product(context)

    purchase = _buy(context, product, supplier_name="Market stall")

    assert purchase.supplier_id is None
    assert purchase.supplier_name == "Market stall"


def test_record_purchase_credit_requires_supplier(context):
    product = _seed_product(context)

    with pytest.raises(core_logic.InvalidInputError):
        _buy(context, product, payment_type=PaymentType.CREDIT, supplier_name="Market stall")

    assert core_logic.get_product(context, product.product_id).stock == 100


def test_delete_purchase_round_trip(context):
    product = _seed_product(context)
    supplier = core_logic.add_supplier(context, name="Wholesale Co")
    before = _store_state(context)
    purchase = _buy(context, product, payment_type=PaymentType.CREDIT, supplier_id=supplier.supplier_id)

    core_logic.delete_purchase(context, purchase.purchase_id)

    assert _store_state(context) == before


def test_delete_purchase_may_drive_stock_negative(context):
    product = _seed_product(context, stock=0)
    purchase = _buy(context, product, quantity=10)
    _sell(context, product, quantity=8)

    core_logic.delete_purchase(context, purchase.purchase_id)

    assert core_logic.get_product(context, product.product_id).stock == -8


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def test_record_expense_touches_only_expenses(context):
    _seed_product(context)
    before = _store_state(context)

    expense = core_logic.record_expense(
        context, core_logic.ExpenseCommand(description="March rent", amount="500", category="rent", date="2025-03-01")
    )

    after = _store_state(context)
    assert expense.category == ExpenseCategory.RENT.value
    assert after[Collection.EXPENSES] == [expense]
    assert {key: value for key, value in after.items() if key is not Collection.EXPENSES} == {
        key: value for key, value in before.items() if key is not Collection.EXPENSES
    }


@pytest.mark.parametrize(
    ("description", "amount", "category"),
    [
        ("", "10", ExpenseCategory.OTHER),
        ("Fuel", "-1", ExpenseCategory.TRANSPORT),
        ("Fuel", "10", "Gifts"),
    ],
)
def test_record_expense_rejects_invalid_input(context, description, amount, category):
    with pytest.raises(core_logic.InvalidInputError):
        core_logic.record_expense(
            context, core_logic.ExpenseCommand(description=description, amount=amount, category=category)
        )


def test_delete_expense(context):
    expense = core_logic.record_expense(
        context, core_logic.ExpenseCommand(description="Bulbs", amount="20", category=ExpenseCategory.MAINTENANCE)
    )

    core_logic.delete_expense(context, expense.expense_id)

    assert core_logic.list_expenses(context) == []
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.delete_expense(context, expense.expense_id)


# ---------------------------------------------------------------------------
# Payments and counterparties
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("amount", ["0", "-5", None])
def test_customer_payment_requires_positive_amount(context, amount):
    customer = core_logic.add_customer(context, name="Ahmed")

    with pytest.raises(core_logic.InvalidInputError):
        core_logic.record_customer_payment(
            context, core_logic.CustomerPaymentCommand(customer_id=customer.customer_id, amount=amount)
        )

    assert core_logic.list_customer_payments(context) == []


def test_customer_payment_unknown_customer_raises_not_found(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.record_customer_payment(context, core_logic.CustomerPaymentCommand(customer_id="CUS-x", amount="5"))


def test_supplier_payment_lowers_balance(context):
    supplier = core_logic.add_supplier(context, name="Wholesale Co")

    payment = core_logic.record_supplier_payment(
        context, core_logic.SupplierPaymentCommand(supplier_id=supplier.supplier_id, amount="40", notes="advance")
    )

    assert payment.supplier_name == "Wholesale Co"
    assert payment.notes == "advance"
    assert core_logic.get_supplier(context, supplier.supplier_id).total_debt == Decimal("-40")


def test_delete_customer_removes_payments_but_keeps_sales(context):
    product = _seed_product(context)
    customer = core_logic.add_customer(context, name="Ahmed")
    other = core_logic.add_customer(context, name="Mona")
    sale = _sell(context, product, payment_type=PaymentType.CREDIT, customer_id=customer.customer_id)
    core_logic.record_customer_payment(context, core_logic.CustomerPaymentCommand(customer.customer_id, "10"))
    kept = core_logic.record_customer_payment(context, core_logic.CustomerPaymentCommand(other.customer_id, "5"))

    core_logic.delete_customer(context, customer.customer_id)

    assert core_logic.list_customers(context) == [replace(other, total_debt=Decimal("-5"))]
    assert core_logic.list_customer_payments(context) == [kept]
    assert core_logic.list_sales(context) == [sale]
    assert core_logic.get_product(context, product.product_id).stock == 95


def test_delete_supplier_removes_payments(context):
    supplier = core_logic.add_supplier(context, name="Wholesale Co")
    core_logic.record_supplier_payment(context, core_logic.SupplierPaymentCommand(supplier.supplier_id, "10"))

    core_logic.delete_supplier(context, supplier.supplier_id)

    assert core_logic.list_suppliers(context) == []
    assert core_logic.list_supplier_payments(context) == []
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.delete_supplier(context, supplier.supplier_id)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def test_persist_and_refresh_round_trip(runtime_context):
    product = _seed_product(runtime_context)
    _sell(runtime_context, product, quantity=3)

    core_logic.persist_context(runtime_context)
    reloaded = core_logic.refresh_context(runtime_context)

    assert reloaded is not runtime_context
    assert core_logic.get_product(reloaded, product.product_id).stock == 97
    assert core_logic.list_sales(reloaded)[0].total_price == Decimal("45")


def test_refresh_context_discards_unsaved_changes(runtime_context):
    _seed_product(runtime_context)

    reloaded = core_logic.refresh_context(runtime_context)

    assert core_logic.list_products(reloaded) == []
