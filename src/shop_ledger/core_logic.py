"""Ledger engine for the shop ledger.

Every balance-affecting operation passes through this module. Each operation
validates all of its preconditions first and only then writes the affected
collections (transaction log, product stock, counterparty debt) through a
single :func:`data_manager.replace_collections` call, so a rejected or failed
operation leaves no partial side effects behind.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, Collection, ExpenseCategory, PaymentType
from .data_manager import (
    CustomerPaymentRow,
    CustomerRow,
    ExpenseRow,
    ProductRow,
    PurchaseRow,
    SaleRow,
    StorageFailure,  # noqa: F401  re-exported for callers
    SupplierPaymentRow,
    SupplierRow,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, counterparty, or record is unknown."""


class InvalidInputError(BusinessRuleViolation, ValueError):
    """Raised when an argument breaks a constraint or a required field is absent."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the engine."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale."""

    product_id: str
    quantity: int
    unit_price: Decimal
    payment_type: PaymentType = PaymentType.CASH
    date: Optional[str] = None
    customer_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording a purchase."""

    product_id: str
    quantity: int
    unit_price: Decimal
    payment_type: PaymentType = PaymentType.CASH
    date: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for recording an expense."""

    description: str
    amount: Decimal
    category: ExpenseCategory
    date: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CustomerPaymentCommand:
    """User intent for recording money received from a customer."""

    customer_id: str
    amount: Decimal
    date: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplierPaymentCommand:
    """User intent for recording money paid to a supplier."""

    supplier_id: str
    amount: Decimal
    date: Optional[str] = None
    notes: Optional[str] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def today_iso() -> str:
    """Return today's date (UTC) in canonical ``YYYY-MM-DD`` form."""

    return _resolve_timestamp(None).date().isoformat()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The engine keeps one bucket per collection so repeated lookups do not
    re-scan worksheets. Buckets are plain dictionaries created on demand.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored so callers can invalidate without checking.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_collection_cache(context: RuntimeContext, collection: Collection) -> Dict[str, Any]:
    """Populate the cache bucket of ``collection`` on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` records in sheet order and a
            ``by_id`` lookup dictionary.
    """

    bucket = _get_cache_bucket(context, collection.value)
    if "all" not in bucket:
        records = data_manager.load_collection(context.workbook, collection)
        bucket["all"] = records
        bucket["by_id"] = {data_manager.record_key(record): record for record in records}
        log.debug("Populated %s cache with %d entries", collection.value, len(records))
    return bucket


def _commit(context: RuntimeContext, changes: Mapping[Collection, Sequence[Any]]) -> None:
    """Write every affected collection as one unit and refresh the caches.

    Raises:
        StorageFailure: If the data layer could not write; the workbook and
            the caches still reflect the state before the operation.
    """

    try:
        data_manager.replace_collections(context.workbook, changes)
    finally:
        _invalidate_cache(context, *(collection.value for collection in changes))


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the engine.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upwards from the
            current working directory.

    Returns:
        RuntimeContext: Context ready for ledger and reporting calls.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist the in-memory workbook to the configured data file.

    Raises:
        StorageFailure: If the save failed. The file on disk keeps its
            previous content; callers should :func:`refresh_context` to drop
            the unsaved changes.
    """
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def _list(context: RuntimeContext, collection: Collection) -> List[Any]:
    return list(_ensure_collection_cache(context, collection)["all"])


def list_products(context: RuntimeContext) -> List[ProductRow]:
    """Return every product in insertion order."""
    return _list(context, Collection.PRODUCTS)


def list_sales(context: RuntimeContext) -> List[SaleRow]:
    """Return the sales log in insertion order."""
    return _list(context, Collection.SALES)


def list_purchases(context: RuntimeContext) -> List[PurchaseRow]:
    """Return the purchases log in insertion order."""
    return _list(context, Collection.PURCHASES)


def list_expenses(context: RuntimeContext) -> List[ExpenseRow]:
    """Return the expenses log in insertion order."""
    return _list(context, Collection.EXPENSES)


def list_customers(context: RuntimeContext) -> List[CustomerRow]:
    return _list(context, Collection.CUSTOMERS)


def list_customer_payments(context: RuntimeContext) -> List[CustomerPaymentRow]:
    return _list(context, Collection.CUSTOMER_PAYMENTS)


def list_suppliers(context: RuntimeContext) -> List[SupplierRow]:
    return _list(context, Collection.SUPPLIERS)


def list_supplier_payments(context: RuntimeContext) -> List[SupplierPaymentRow]:
    return _list(context, Collection.SUPPLIER_PAYMENTS)


def _get(context: RuntimeContext, collection: Collection, record_id: Optional[str], label: str) -> Any:
    """Resolve a record by identifier or raise :class:`MissingReferenceError`."""

    cache = _ensure_collection_cache(context, collection)
    try:
        return cache["by_id"][record_id]
    except KeyError as exc:
        log.warning("%s lookup failed for id '%s'", label.capitalize(), record_id)
        raise MissingReferenceError(f"Unknown {label} id: {record_id}") from exc


def get_product(context: RuntimeContext, product_id: str) -> ProductRow:
    """Resolve a product by id, raising :class:`MissingReferenceError` when absent."""
    return _get(context, Collection.PRODUCTS, product_id, "product")


def get_sale(context: RuntimeContext, sale_id: str) -> SaleRow:
    """Resolve a sale by id, raising :class:`MissingReferenceError` when absent."""
    return _get(context, Collection.SALES, sale_id, "sale")


def get_purchase(context: RuntimeContext, purchase_id: str) -> PurchaseRow:
    return _get(context, Collection.PURCHASES, purchase_id, "purchase")


def get_expense(context: RuntimeContext, expense_id: str) -> ExpenseRow:
    return _get(context, Collection.EXPENSES, expense_id, "expense")


def get_customer(context: RuntimeContext, customer_id: str) -> CustomerRow:
    return _get(context, Collection.CUSTOMERS, customer_id, "customer")


def get_supplier(context: RuntimeContext, supplier_id: str) -> SupplierRow:
    return _get(context, Collection.SUPPLIERS, supplier_id, "supplier")


def _parse_decimal(value: Any, label: str) -> Decimal:
    if value is None or isinstance(value, bool):
        log.error("%s validation failed: %r", label.capitalize(), value)
        raise InvalidInputError(f"{label.capitalize()} is required")
    try:
        parsed = Decimal(str(value))
    except InvalidOperation as exc:
        log.error("%s validation failed: %r", label.capitalize(), value)
        raise InvalidInputError(f"{label.capitalize()} must be a number, got {value!r}") from exc
    if not parsed.is_finite():
        log.error("%s validation failed: %r", label.capitalize(), value)
        raise InvalidInputError(f"{label.capitalize()} must be a finite number")
    return parsed


def require_positive_quantity(quantity: Any) -> int:
    """Validate that a quantity is a whole number greater than zero.

    Args:
        quantity (Any): Quantity supplied by a command object.

    Returns:
        int: The validated quantity.

    Raises:
        InvalidInputError: If ``quantity`` is missing, fractional, zero, or
            negative.
    """
    parsed = _parse_decimal(quantity, "quantity")
    if parsed != parsed.to_integral_value():
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidInputError("Quantity must be a whole number")
    if parsed <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidInputError("Quantity must be greater than zero")
    return int(parsed)


def require_nonnegative_money(amount: Any, label: str = "amount") -> Decimal:
    """Validate that a monetary value is zero or positive.

    Raises:
        InvalidInputError: If ``amount`` is missing, not a number, or negative.
    """
    parsed = _parse_decimal(amount, label)
    if parsed < 0:
        log.error("Monetary value validation failed for %s: %s", label, amount)
        raise InvalidInputError(f"{label.capitalize()} must be zero or positive")
    return parsed


def require_positive_money(amount: Any, label: str = "amount") -> Decimal:
    """Validate that a monetary value is strictly positive.

    Raises:
        InvalidInputError: If ``amount`` is missing, not a number, zero, or
            negative.
    """
    parsed = _parse_decimal(amount, label)
    if parsed <= 0:
        log.error("Monetary value validation failed for %s: %s", label, amount)
        raise InvalidInputError(f"{label.capitalize()} must be greater than zero")
    return parsed


def _reject_control_characters(text: str, label: str) -> str:
    """Refuse control characters the workbook cannot store."""
    if ILLEGAL_CHARACTERS_RE.search(text):
        log.error("Field '%s' contains control characters: %r", label, text)
        raise InvalidInputError(f"{label.capitalize()} contains characters that cannot be stored")
    return text


def _require_text(value: Optional[str], label: str) -> str:
    text = (value or "").strip()
    if not text:
        log.error("Required field '%s' is empty", label)
        raise InvalidInputError(f"{label.capitalize()} is required")
    return _reject_control_characters(text, label)


def _optional_text(value: Optional[str], label: str = "text") -> Optional[str]:
    text = (value or "").strip()
    return _reject_control_characters(text, label) or None


def coerce_date(value: Any) -> str:
    """Return a canonical date, defaulting to today when ``value`` is empty."""
    if value is None or value == "":
        return today_iso()
    try:
        return data_manager.normalize_date(value)
    except ValueError as exc:
        log.error("Date validation failed: %r", value)
        raise InvalidInputError(f"Date must use the YYYY-MM-DD format, got {value!r}") from exc


def _coerce_payment_type(value: Any) -> PaymentType:
    if isinstance(value, str) and not isinstance(value, PaymentType):
        value = value.strip().lower()
    try:
        return PaymentType(value)
    except ValueError as exc:
        log.error("Unsupported payment type provided: %s", value)
        raise InvalidInputError(f"Unsupported payment type: {value}") from exc


def _coerce_category(value: Any) -> ExpenseCategory:
    if isinstance(value, ExpenseCategory):
        return value
    for category in ExpenseCategory:
        if isinstance(value, str) and value.strip().lower() == category.value.lower():
            return category
    log.error("Unsupported expense category provided: %s", value)
    raise InvalidInputError(f"Unsupported expense category: {value}")


def _resolve_counterparty(
    context: RuntimeContext,
    collection: Collection,
    record_id: Optional[str],
    *,
    required: bool,
    label: str,
) -> Any:
    """Resolve an optional customer/supplier reference of a transaction.

    A reference that is supplied but unknown, or absent while ``required``, is
    an input error rather than a lookup error: the transaction itself cannot be
    formed.
    """
    if not record_id:
        if required:
            log.error("Credit transaction submitted without a %s", label)
            raise InvalidInputError(f"Credit transactions require a {label}")
        return None
    record = _ensure_collection_cache(context, collection)["by_id"].get(record_id)
    if record is None:
        log.error("Transaction references unknown %s '%s'", label, record_id)
        raise InvalidInputError(f"Unknown {label} id: {record_id}")
    return record


def _replace_record(records: Sequence[Any], updated: Any) -> List[Any]:
    key = data_manager.record_key(updated)
    return [updated if data_manager.record_key(record) == key else record for record in records]


def _without(records: Sequence[Any], record_id: str) -> List[Any]:
    return [record for record in records if data_manager.record_key(record) != record_id]


def _stock_change(context: RuntimeContext, product_id: str, delta: int) -> Dict[Collection, List[ProductRow]]:
    """Return the products change applying ``delta``, or nothing if the product is gone."""
    product = _ensure_collection_cache(context, Collection.PRODUCTS)["by_id"].get(product_id)
    if product is None:
        log.info("Product '%s' no longer exists; stock adjustment of %+d skipped", product_id, delta)
        return {}
    updated = replace(product, stock=product.stock + delta)
    return {Collection.PRODUCTS: _replace_record(list_products(context), updated)}


def _debt_change(
    context: RuntimeContext,
    collection: Collection,
    record_id: Optional[str],
    delta: Decimal,
) -> Dict[Collection, List[Any]]:
    """Return the counterparty change applying ``delta`` to ``total_debt``.

    Balances are never clamped: a negative result records an overpayment.
    """
    if not record_id:
        return {}
    record = _ensure_collection_cache(context, collection)["by_id"].get(record_id)
    if record is None:
        log.info("Counterparty '%s' no longer exists; debt adjustment of %s skipped", record_id, delta)
        return {}
    updated = replace(record, total_debt=record.total_debt + delta)
    return {collection: _replace_record(_list(context, collection), updated)}


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    buy_price: Any,
    sell_price: Any,
    stock: Any = 0,
    unit: str = "piece",
) -> ProductRow:
    """Register a new product.

    Raises:
        InvalidInputError: If the name is empty, a price is negative, or the
            opening stock is not a whole number.
    """
    product_name = _require_text(name, "product name")
    buy = require_nonnegative_money(buy_price, "buy price")
    sell = require_nonnegative_money(sell_price, "sell price")
    opening_stock = _parse_decimal(stock, "stock")
    if opening_stock != opening_stock.to_integral_value():
        raise InvalidInputError("Stock must be a whole number")

    product = ProductRow(
        product_id=data_manager.generate_id("PRD"),
        name=product_name,
        buy_price=buy,
        sell_price=sell,
        stock=int(opening_stock),
        unit=_optional_text(unit, "unit") or "piece",
        created_at=today_iso(),
    )
    _commit(context, {Collection.PRODUCTS: [*list_products(context), product]})
    log.info("Added product '%s' (%s)", product.product_id, product.name)
    return product


def update_product(
    context: RuntimeContext,
    product_id: str,
    *,
    name: Optional[str] = None,
    buy_price: Any = None,
    sell_price: Any = None,
    stock: Any = None,
    unit: Optional[str] = None,
) -> ProductRow:
    """Edit selected fields of a product.

    Only the supplied fields change. Sales and purchases keep the product name
    they captured when they were recorded.

    Raises:
        MissingReferenceError: If the product does not exist.
        InvalidInputError: If a supplied value is invalid.
    """
    product = get_product(context, product_id)
    changes: Dict[str, Any] = {}
    if name is not None:
        changes["name"] = _require_text(name, "product name")
    if buy_price is not None:
        changes["buy_price"] = require_nonnegative_money(buy_price, "buy price")
    if sell_price is not None:
        changes["sell_price"] = require_nonnegative_money(sell_price, "sell price")
    if stock is not None:
        parsed = _parse_decimal(stock, "stock")
        if parsed != parsed.to_integral_value():
            raise InvalidInputError("Stock must be a whole number")
        changes["stock"] = int(parsed)
    if unit is not None:
        changes["unit"] = _require_text(unit, "unit")

    updated = replace(product, **changes)
    _commit(context, {Collection.PRODUCTS: _replace_record(list_products(context), updated)})
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(changes)) or "none")
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> ProductRow:
    """Remove a product without touching the sales and purchases that reference it."""
    product = get_product(context, product_id)
    _commit(context, {Collection.PRODUCTS: _without(list_products(context), product_id)})
    log.info("Deleted product '%s' (%s)", product_id, product.name)
    return product


def add_customer(
    context: RuntimeContext,
    *,
    name: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    notes: Optional[str] = None,
) -> CustomerRow:
    """Register a customer with a zero opening balance."""
    customer = CustomerRow(
        customer_id=data_manager.generate_id("CUS"),
        name=_require_text(name, "customer name"),
        total_debt=Decimal("0"),
        created_at=today_iso(),
        phone=_optional_text(phone, "phone"),
        address=_optional_text(address, "address"),
        notes=_optional_text(notes, "notes"),
    )
    _commit(context, {Collection.CUSTOMERS: [*list_customers(context), customer]})
    log.info("Added customer '%s' (%s)", customer.customer_id, customer.name)
    return customer


def add_supplier(
    context: RuntimeContext,
    *,
    name: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    notes: Optional[str] = None,
) -> SupplierRow:
    """Register a supplier with a zero opening balance."""
    supplier = SupplierRow(
        supplier_id=data_manager.generate_id("SUP"),
        name=_require_text(name, "supplier name"),
        total_debt=Decimal("0"),
        created_at=today_iso(),
        phone=_optional_text(phone, "phone"),
        address=_optional_text(address, "address"),
        notes=_optional_text(notes, "notes"),
    )
    _commit(context, {Collection.SUPPLIERS: [*list_suppliers(context), supplier]})
    log.info("Added supplier '%s' (%s)", supplier.supplier_id, supplier.name)
    return supplier


def delete_customer(context: RuntimeContext, customer_id: str) -> CustomerRow:
    """Remove a customer together with its payment records.

    Sales that referenced the customer are kept and still display the
    customer name captured at sale time. No stock or other balance changes.

    Raises:
        MissingReferenceError: If the customer does not exist.
    """
    customer = get_customer(context, customer_id)
    payments = [payment for payment in list_customer_payments(context) if payment.customer_id != customer_id]
    _commit(
        context,
        {
            Collection.CUSTOMERS: _without(list_customers(context), customer_id),
            Collection.CUSTOMER_PAYMENTS: payments,
        },
    )
    log.info("Deleted customer '%s' (%s) and its payments", customer_id, customer.name)
    return customer


def delete_supplier(context: RuntimeContext, supplier_id: str) -> SupplierRow:
    """Remove a supplier together with its payment records.

    Raises:
        MissingReferenceError: If the supplier does not exist.
    """
    supplier = get_supplier(context, supplier_id)
    payments = [payment for payment in list_supplier_payments(context) if payment.supplier_id != supplier_id]
    _commit(
        context,
        {
            Collection.SUPPLIERS: _without(list_suppliers(context), supplier_id),
            Collection.SUPPLIER_PAYMENTS: payments,
        },
    )
    log.info("Deleted supplier '%s' (%s) and its payments", supplier_id, supplier.name)
    return supplier


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleRow:
    """Validate and record a sale.

    The sale snapshots the current product name and buy price: ``total_price``
    is ``quantity * unit_price`` and ``profit`` is
    ``(unit_price - buy_price) * quantity``. Stock is decremented even when it
    drops below zero; oversells are surfaced by the inventory report, not
    blocked here. Credit sales add ``total_price`` to the customer's debt.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        SaleRow: The recorded sale.

    Raises:
        MissingReferenceError: If the product is unknown.
        InvalidInputError: If quantity, price, payment type, date, or the
            customer reference is invalid.
        StorageFailure: If the workbook could not be written.
    """
    product = get_product(context, command.product_id)
    quantity = require_positive_quantity(command.quantity)
    unit_price = require_nonnegative_money(command.unit_price, "unit price")
    payment_type = _coerce_payment_type(command.payment_type)
    sale_date = coerce_date(command.date)
    customer = _resolve_counterparty(
        context,
        Collection.CUSTOMERS,
        command.customer_id,
        required=payment_type is PaymentType.CREDIT,
        label="customer",
    )

    total_price = unit_price * quantity
    sale = SaleRow(
        sale_id=data_manager.generate_id("SAL"),
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        unit_price=unit_price,
        total_price=total_price,
        profit=(unit_price - product.buy_price) * quantity,
        date=sale_date,
        payment_type=payment_type.value,
        customer_id=customer.customer_id if customer else None,
        customer_name=customer.name if customer else None,
        notes=_optional_text(command.notes, "notes"),
    )

    changes: Dict[Collection, List[Any]] = {Collection.SALES: [*list_sales(context), sale]}
    changes.update(_stock_change(context, product.product_id, -quantity))
    if payment_type is PaymentType.CREDIT:
        changes.update(_debt_change(context, Collection.CUSTOMERS, sale.customer_id, total_price))
    _commit(context, changes)

    if product.stock - quantity < 0:
        log.warning("Product '%s' stock is now negative (%d)", product.product_id, product.stock - quantity)
    log.info(
        "Recorded sale '%s' for product '%s' (quantity=%d, total=%s, payment=%s)",
        sale.sale_id,
        product.product_id,
        quantity,
        total_price,
        payment_type.value,
    )
    return sale


def delete_sale(context: RuntimeContext, sale_id: str) -> SaleRow:
    """Delete a sale and reverse exactly the effects recording it produced.

    Stock is restored by the sold quantity unless the product has since been
    deleted. For credit sales the customer's debt is reduced by the sale total,
    without clamping, unless the customer has since been deleted.

    Raises:
        MissingReferenceError: If the sale does not exist.
        StorageFailure: If the workbook could not be written.
    """
    sale = get_sale(context, sale_id)
    changes: Dict[Collection, List[Any]] = {Collection.SALES: _without(list_sales(context), sale_id)}
    changes.update(_stock_change(context, sale.product_id, sale.quantity))
    if sale.payment_type == PaymentType.CREDIT.value:
        changes.update(_debt_change(context, Collection.CUSTOMERS, sale.customer_id, -sale.total_price))
    _commit(context, changes)
    log.info("Deleted sale '%s' and reversed its effects", sale_id)
    return sale


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> PurchaseRow:
    """Validate and record a purchase.

    Purchases increase stock by the bought quantity. Credit purchases add the
    purchase total to the supplier's debt and therefore require a known
    supplier. Cash purchases may instead carry a free-text supplier name.

    Raises:
        MissingReferenceError: If the product is unknown.
        InvalidInputError: If quantity, price, payment type, date, or the
            supplier reference is invalid.
        StorageFailure: If the workbook could not be written.
    """
    product = get_product(context, command.product_id)
    quantity = require_positive_quantity(command.quantity)
    unit_price = require_nonnegative_money(command.unit_price, "unit price")
    payment_type = _coerce_payment_type(command.payment_type)
    purchase_date = coerce_date(command.date)
    supplier = _resolve_counterparty(
        context,
        Collection.SUPPLIERS,
        command.supplier_id,
        required=payment_type is PaymentType.CREDIT,
        label="supplier",
    )

    total_price = unit_price * quantity
    purchase = PurchaseRow(
        purchase_id=data_manager.generate_id("PUR"),
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        unit_price=unit_price,
        total_price=total_price,
        date=purchase_date,
        payment_type=payment_type.value,
        supplier_id=supplier.supplier_id if supplier else None,
        supplier_name=supplier.name if supplier else _optional_text(command.supplier_name, "supplier name"),
        notes=_optional_text(command.notes, "notes"),
    )

    changes: Dict[Collection, List[Any]] = {Collection.PURCHASES: [*list_purchases(context), purchase]}
    changes.update(_stock_change(context, product.product_id, quantity))
    if payment_type is PaymentType.CREDIT:
        changes.update(_debt_change(context, Collection.SUPPLIERS, purchase.supplier_id, total_price))
    _commit(context, changes)
    log.info(
        "Recorded purchase '%s' for product '%s' (quantity=%d, total=%s, payment=%s)",
        purchase.purchase_id,
        product.product_id,
        quantity,
        total_price,
        payment_type.value,
    )
    return purchase


def delete_purchase(context: RuntimeContext, purchase_id: str) -> PurchaseRow:
    """Delete a purchase, removing its stock and reversing any supplier debt.

    Raises:
        MissingReferenceError: If the purchase does not exist.
        StorageFailure: If the workbook could not be written.
    """
    purchase = get_purchase(context, purchase_id)
    changes: Dict[Collection, List[Any]] = {Collection.PURCHASES: _without(list_purchases(context), purchase_id)}
    changes.update(_stock_change(context, purchase.product_id, -purchase.quantity))
    if purchase.payment_type == PaymentType.CREDIT.value:
        changes.update(_debt_change(context, Collection.SUPPLIERS, purchase.supplier_id, -purchase.total_price))
    _commit(context, changes)
    log.info("Deleted purchase '%s' and reversed its effects", purchase_id)
    return purchase


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> ExpenseRow:
    """Validate and record an expense. Expenses never touch stock or debt.

    Raises:
        InvalidInputError: If the description is empty, the amount is negative,
            the category is outside the fixed set, or the date is malformed.
    """
    description = _require_text(command.description, "description")
    amount = require_nonnegative_money(command.amount)
    category = _coerce_category(command.category)
    expense = ExpenseRow(
        expense_id=data_manager.generate_id("EXP"),
        description=description,
        amount=amount,
        category=category.value,
        date=coerce_date(command.date),
        notes=_optional_text(command.notes, "notes"),
    )
    _commit(context, {Collection.EXPENSES: [*list_expenses(context), expense]})
    log.info("Recorded expense '%s' (%s, amount=%s)", expense.expense_id, category.value, amount)
    return expense


def delete_expense(context: RuntimeContext, expense_id: str) -> ExpenseRow:
    """Delete an expense record."""
    expense = get_expense(context, expense_id)
    _commit(context, {Collection.EXPENSES: _without(list_expenses(context), expense_id)})
    log.info("Deleted expense '%s'", expense_id)
    return expense


def record_customer_payment(context: RuntimeContext, command: CustomerPaymentCommand) -> CustomerPaymentRow:
    """Record money received from a customer and lower its debt.

    The debt is reduced by the full amount even past zero; a negative balance
    means the shop owes the customer.

    Raises:
        MissingReferenceError: If the customer does not exist.
        InvalidInputError: If the amount is not strictly positive.
    """
    customer = get_customer(context, command.customer_id)
    amount = require_positive_money(command.amount)
    payment = CustomerPaymentRow(
        payment_id=data_manager.generate_id("CPY"),
        customer_id=customer.customer_id,
        customer_name=customer.name,
        amount=amount,
        date=coerce_date(command.date),
        notes=_optional_text(command.notes, "notes"),
    )
    changes: Dict[Collection, List[Any]] = {
        Collection.CUSTOMER_PAYMENTS: [*list_customer_payments(context), payment],
    }
    changes.update(_debt_change(context, Collection.CUSTOMERS, customer.customer_id, -amount))
    _commit(context, changes)
    log.info(
        "Recorded customer payment '%s' from '%s' (amount=%s, balance=%s)",
        payment.payment_id,
        customer.customer_id,
        amount,
        customer.total_debt - amount,
    )
    return payment


def record_supplier_payment(context: RuntimeContext, command: SupplierPaymentCommand) -> SupplierPaymentRow:
    """Record money paid to a supplier and lower what the shop owes it.

    Raises:
        MissingReferenceError: If the supplier does not exist.
        InvalidInputError: If the amount is not strictly positive.
    """
    supplier = get_supplier(context, command.supplier_id)
    amount = require_positive_money(command.amount)
    payment = SupplierPaymentRow(
        payment_id=data_manager.generate_id("SPY"),
        supplier_id=supplier.supplier_id,
        supplier_name=supplier.name,
        amount=amount,
        date=coerce_date(command.date),
        notes=_optional_text(command.notes, "notes"),
    )
    changes: Dict[Collection, List[Any]] = {
        Collection.SUPPLIER_PAYMENTS: [*list_supplier_payments(context), payment],
    }
    changes.update(_debt_change(context, Collection.SUPPLIERS, supplier.supplier_id, -amount))
    _commit(context, changes)
    log.info(
        "Recorded supplier payment '%s' to '%s' (amount=%s, balance=%s)",
        payment.payment_id,
        supplier.supplier_id,
        amount,
        supplier.total_debt - amount,
    )
    return payment
