"""Data access layer for the shop ledger.

This module provides low-level helpers that read from and write to the master
workbook. Every entity collection lives on its own worksheet whose first row
holds the column headers. Business rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: creating, opening, and atomically persisting the file.
3. Collection operations: loading a whole collection as typed records and
   replacing one or several collections in a single step.
4. Snapshot operations: exporting and importing every collection at once.
"""


from __future__ import annotations

import configparser
import os
import tempfile
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook import Workbook

from . import log
from .constants import DATE_FORMAT, Collection, SheetName


CONFIG_FILE_NAME = "config.ini"
DEFAULT_CURRENCY = "EGP"
DEFAULT_EXPORT_DIRECTORY = "exports"


class StorageFailure(RuntimeError):
    """Raised when the workbook cannot be written or persisted."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    currency: str
    export_dir: Path


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    unit: str
    created_at: str


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    profit: Decimal
    date: str
    payment_type: str
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    date: str
    payment_type: str
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    description: str
    amount: Decimal
    category: str
    date: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    name: str
    total_debt: Decimal
    created_at: str
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CustomerPaymentRow:
    """In-memory view of a row from the ``CustomerPayments`` sheet."""

    payment_id: str
    customer_id: str
    customer_name: str
    amount: Decimal
    date: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: str
    name: str
    total_debt: Decimal
    created_at: str
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplierPaymentRow:
    """In-memory view of a row from the ``SupplierPayments`` sheet."""

    payment_id: str
    supplier_id: str
    supplier_name: str
    amount: Decimal
    date: str
    notes: Optional[str] = None


def normalize_date(value: Any) -> str:
    """Return ``value`` as a zero-padded ``YYYY-MM-DD`` string.

    Range filters compare dates as plain strings, which is only correct for
    the canonical ISO form. Every date entering the store passes through here.

    Args:
        value (Any): A :class:`~datetime.date`, :class:`~datetime.datetime`,
            or a string such as ``"2025-3-7"`` or ``"2025-03-07"``.

    Returns:
        str: Canonical date string.

    Raises:
        ValueError: If ``value`` cannot be interpreted as a calendar date.
    """

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return datetime.strptime(value.strip(), DATE_FORMAT).date().isoformat()
    raise ValueError(f"Unsupported date value: {value!r}")


def _to_text(value: Any) -> str:
    if value is None:
        raise ValueError("Missing required text value")
    return str(value)


def _to_optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _to_money(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValueError(f"Invalid monetary value: {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid monetary value: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary value: {value!r}")
    return amount


def _to_quantity(value: Any) -> int:
    amount = _to_money(value)
    if amount != amount.to_integral_value():
        raise ValueError(f"Quantity must be a whole number: {value!r}")
    return int(amount)


@dataclass(frozen=True)
class Column:
    """Bind a worksheet header to a record attribute and its converter."""

    header: str
    attribute: str
    convert: Callable[[Any], Any]
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class CollectionSchema:
    """Describe how one collection maps onto a worksheet."""

    collection: Collection
    sheet_name: str
    row_type: type
    key: str
    columns: tuple[Column, ...]

    @property
    def headers(self) -> List[str]:
        return [column.header for column in self.columns]


def _id(attribute: str) -> Column:
    return Column("id", attribute, _to_text)


_TEXT = _to_text
_OPTIONAL = _to_optional_text
_MONEY = _to_money
_QUANTITY = _to_quantity
_DATE = normalize_date


SCHEMAS: Mapping[Collection, CollectionSchema] = {
    Collection.PRODUCTS: CollectionSchema(
        Collection.PRODUCTS,
        SheetName.PRODUCTS.value,
        ProductRow,
        "product_id",
        (
            _id("product_id"),
            Column("name", "name", _TEXT),
            Column("buyPrice", "buy_price", _MONEY),
            Column("sellPrice", "sell_price", _MONEY),
            Column("stock", "stock", _QUANTITY),
            Column("unit", "unit", _TEXT),
            Column("createdAt", "created_at", _DATE),
        ),
    ),
    Collection.SALES: CollectionSchema(
        Collection.SALES,
        SheetName.SALES.value,
        SaleRow,
        "sale_id",
        (
            _id("sale_id"),
            Column("productId", "product_id", _TEXT),
            Column("productName", "product_name", _TEXT),
            Column("quantity", "quantity", _QUANTITY),
            Column("unitPrice", "unit_price", _MONEY),
            Column("totalPrice", "total_price", _MONEY),
            Column("profit", "profit", _MONEY),
            Column("date", "date", _DATE),
            Column("paymentType", "payment_type", _TEXT),
            Column("customerId", "customer_id", _OPTIONAL),
            Column("customerName", "customer_name", _OPTIONAL),
            Column("notes", "notes", _OPTIONAL),
        ),
    ),
    Collection.PURCHASES: CollectionSchema(
        Collection.PURCHASES,
        SheetName.PURCHASES.value,
        PurchaseRow,
        "purchase_id",
        (
            _id("purchase_id"),
            Column("productId", "product_id", _TEXT),
            Column("productName", "product_name", _TEXT),
            Column("quantity", "quantity", _QUANTITY),
            Column("unitPrice", "unit_price", _MONEY),
            Column("totalPrice", "total_price", _MONEY),
            Column("date", "date", _DATE),
            Column("paymentType", "payment_type", _TEXT),
            Column("supplierId", "supplier_id", _OPTIONAL),
            # Older backups stored the free-text supplier label as ``supplier``.
            Column("supplierName", "supplier_name", _OPTIONAL, aliases=("supplier",)),
            Column("notes", "notes", _OPTIONAL),
        ),
    ),
    Collection.EXPENSES: CollectionSchema(
        Collection.EXPENSES,
        SheetName.EXPENSES.value,
        ExpenseRow,
        "expense_id",
        (
            _id("expense_id"),
            Column("description", "description", _TEXT),
            Column("amount", "amount", _MONEY),
            Column("category", "category", _TEXT),
            Column("date", "date", _DATE),
            Column("notes", "notes", _OPTIONAL),
        ),
    ),
    Collection.CUSTOMERS: CollectionSchema(
        Collection.CUSTOMERS,
        SheetName.CUSTOMERS.value,
        CustomerRow,
        "customer_id",
        (
            _id("customer_id"),
            Column("name", "name", _TEXT),
            Column("phone", "phone", _OPTIONAL),
            Column("address", "address", _OPTIONAL),
            Column("notes", "notes", _OPTIONAL),
            Column("totalDebt", "total_debt", _MONEY),
            Column("createdAt", "created_at", _DATE),
        ),
    ),
    Collection.CUSTOMER_PAYMENTS: CollectionSchema(
        Collection.CUSTOMER_PAYMENTS,
        SheetName.CUSTOMER_PAYMENTS.value,
        CustomerPaymentRow,
        "payment_id",
        (
            _id("payment_id"),
            Column("customerId", "customer_id", _TEXT),
            Column("customerName", "customer_name", _TEXT),
            Column("amount", "amount", _MONEY),
            Column("date", "date", _DATE),
            Column("notes", "notes", _OPTIONAL),
        ),
    ),
    Collection.SUPPLIERS: CollectionSchema(
        Collection.SUPPLIERS,
        SheetName.SUPPLIERS.value,
        SupplierRow,
        "supplier_id",
        (
            _id("supplier_id"),
            Column("name", "name", _TEXT),
            Column("phone", "phone", _OPTIONAL),
            Column("address", "address", _OPTIONAL),
            Column("notes", "notes", _OPTIONAL),
            Column("totalDebt", "total_debt", _MONEY),
            Column("createdAt", "created_at", _DATE),
        ),
    ),
    Collection.SUPPLIER_PAYMENTS: CollectionSchema(
        Collection.SUPPLIER_PAYMENTS,
        SheetName.SUPPLIER_PAYMENTS.value,
        SupplierPaymentRow,
        "payment_id",
        (
            _id("payment_id"),
            Column("supplierId", "supplier_id", _TEXT),
            Column("supplierName", "supplier_name", _TEXT),
            Column("amount", "amount", _MONEY),
            Column("date", "date", _DATE),
            Column("notes", "notes", _OPTIONAL),
        ),
    ),
}

_SCHEMAS_BY_TYPE: Mapping[type, CollectionSchema] = {
    schema.row_type: schema for schema in SCHEMAS.values()
}


def schema_for(collection: Collection | str) -> CollectionSchema:
    """Return the schema for a collection given as enum member or backup key."""

    return SCHEMAS[Collection(collection)]


def record_key(record: Any) -> str:
    """Return the primary identifier of any collection record."""

    schema = _SCHEMAS_BY_TYPE[type(record)]
    return getattr(record, schema.key)


def record_to_document(record: Any, *, include_empty: bool = True) -> Dict[str, Any]:
    """Convert a record dataclass into a header-keyed mapping.

    Args:
        record (Any): One of the ``*Row`` dataclasses defined in this module.
        include_empty (bool): When ``False`` optional fields holding ``None``
            are left out, which keeps backup documents compact.

    Returns:
        dict[str, Any]: Values keyed by their worksheet header in column
            order. Monetary values remain :class:`~decimal.Decimal` instances.
    """

    schema = _SCHEMAS_BY_TYPE[type(record)]
    document: Dict[str, Any] = {}
    for column in schema.columns:
        value = getattr(record, column.attribute)
        if value is None and not include_empty:
            continue
        document[column.header] = value
    return document


def record_from_document(collection: Collection | str, document: Mapping[str, Any]) -> Any:
    """Build a typed record from a header-keyed mapping.

    Worksheet rows and backup entries share the same field names, so this is
    the single conversion path for both. Numeric fields are normalized into
    :class:`~decimal.Decimal` or ``int`` and dates into canonical strings.

    Args:
        collection (Collection | str): Collection the mapping belongs to.
        document (Mapping[str, Any]): Raw values keyed by header name.

    Returns:
        Any: The ``*Row`` dataclass registered for ``collection``.

    Raises:
        ValueError: If a required value is missing or cannot be converted.
    """

    schema = schema_for(collection)
    values: Dict[str, Any] = {}
    for column in schema.columns:
        raw = document.get(column.header)
        for alias in column.aliases:
            if raw is None:
                raw = document.get(alias)
        try:
            values[column.attribute] = column.convert(raw)
        except ValueError as exc:
            raise ValueError(f"{schema.collection.value}.{column.header}: {exc}") from exc
    return schema.row_type(**values)


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate an opaque, sortable identifier for a new record.

    Args:
        prefix (str): Short designator of the collection (``"SAL"``, ...).
        when (datetime | None): Timestamp used for the sortable part. When
            ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{hex6}``.

    The random suffix keeps identifiers unique when several records are
    created within the same microsecond.
    """

    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:6].upper()}"


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
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for candidate_dir in (current, *current.parents):
        candidate = candidate_dir / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration data.
            Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _anchor(path: Path, base_path: Path) -> Path:
    if path.is_absolute():
        return path
    return (base_path / path).resolve()


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``ShopName`` and
    ``SchemaVersion``. ``[Defaults]`` is optional and may override the
    currency label and the export directory. Relative paths are anchored at
    ``base_path`` (the config file directory) or the working directory.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings with absolute paths.

    Raises:
        KeyError: If a required section or option is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency = parser.get("Defaults", "Currency", fallback=DEFAULT_CURRENCY)
    export_raw = parser.get("Defaults", "ExportDirectory", fallback=DEFAULT_EXPORT_DIRECTORY)

    if base_path is None:
        base_path = Path.cwd()

    return ConfigSettings(
        data_file=_anchor(Path(data_file_raw), base_path),
        shop_name=shop_name,
        schema_version=schema_version,
        currency=currency,
        export_dir=_anchor(Path(export_raw), base_path),
    )


def new_workbook() -> Workbook:
    """Return an in-memory workbook holding an empty sheet per collection."""

    workbook = openpyxl.Workbook()
    # Drop the default sheet openpyxl generates so ours come first.
    if workbook.active is not None and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)
    for collection in Collection:
        save_collection(workbook, collection, [])
    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook so readers never observe a half-written file.

    The workbook is first written to a temporary file in the destination
    directory, which is then renamed over ``destination``. A failure at any
    point leaves the previous file intact.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the workbook.

    Raises:
        StorageFailure: If the temporary file cannot be written or renamed.
    """

    dest = Path(destination).expanduser().resolve()
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
        os.close(handle)
    except OSError as exc:
        raise StorageFailure(f"Unable to prepare workbook save at {dest}: {exc}") from exc

    try:
        workbook.save(temp_name)
        os.replace(temp_name, dest)
    except (OSError, TypeError, ValueError) as exc:
        Path(temp_name).unlink(missing_ok=True)
        log.error("Saving workbook '%s' failed: %s", dest, exc)
        raise StorageFailure(f"Unable to save workbook to {dest}: {exc}") from exc


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def load_collection(workbook: Workbook, collection: Collection | str) -> List[Any]:
    """Load every record of a collection in sheet order.

    Columns are matched by header name. Header and completely empty rows are
    skipped. This call never raises for data problems: a missing sheet, an
    empty sheet, or a row that cannot be converted all yield an empty list
    (the latter is logged as an error).

    Args:
        workbook (Workbook): Workbook holding the collection sheets.
        collection (Collection | str): Collection to load.

    Returns:
        list[Any]: Typed records in insertion order.
    """

    schema = schema_for(collection)
    if schema.sheet_name not in workbook.sheetnames:
        return []

    rows = workbook[schema.sheet_name].iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return []

    records: List[Any] = []
    try:
        for raw in rows:
            if not any(cell is not None for cell in raw):
                continue
            document = {name: value for name, value in zip(header, raw) if name is not None}
            records.append(record_from_document(schema.collection, document))
    except (KeyError, TypeError, ValueError) as exc:
        log.error("Sheet '%s' is unreadable, treating it as empty: %s", schema.sheet_name, exc)
        return []
    return records


def save_collection(workbook: Workbook, collection: Collection | str, records: Sequence[Any]) -> None:
    """Replace the sheet of a collection with ``records``.

    The sheet is recreated at its previous position with a bold header row,
    then one row per record is written in the given order.

    Args:
        workbook (Workbook): Workbook whose sheet should be replaced.
        collection (Collection | str): Collection being written.
        records (Sequence[Any]): Records of the collection's row type.
    """

    schema = schema_for(collection)
    if schema.sheet_name in workbook.sheetnames:
        index = workbook.sheetnames.index(schema.sheet_name)
        workbook.remove(workbook[schema.sheet_name])
        sheet = workbook.create_sheet(title=schema.sheet_name, index=index)
    else:
        sheet = workbook.create_sheet(title=schema.sheet_name)

    bold_font = Font(bold=True)
    for column_index, header in enumerate(schema.headers, start=1):
        cell = sheet.cell(row=1, column=column_index, value=header)
        cell.font = bold_font

    for row_index, record in enumerate(records, start=2):
        document = record_to_document(record)
        for column_index, header in enumerate(schema.headers, start=1):
            value = document[header]
            cell = sheet.cell(row=row_index, column=column_index, value=value)
            if isinstance(value, str) and value.startswith("="):
                # Free text must never be evaluated as a formula.
                cell.data_type = "s"


def replace_collections(workbook: Workbook, changes: Mapping[Collection, Sequence[Any]]) -> None:
    """Replace several collections as one unit.

    Every affected collection is snapshotted first. If writing any of them
    fails, the collections already written are restored from the snapshot so
    that stock, debt, and transaction sheets never disagree.

    Args:
        workbook (Workbook): Workbook to mutate.
        changes (Mapping[Collection, Sequence[Any]]): New content per
            collection.

    Raises:
        StorageFailure: If a write failed; the workbook holds its prior state.
    """

    snapshot = {collection: load_collection(workbook, collection) for collection in changes}
    written: List[Collection] = []
    try:
        for collection, records in changes.items():
            written.append(collection)
            save_collection(workbook, collection, records)
    except (OSError, TypeError, ValueError, IllegalCharacterError) as exc:
        log.error(
            "Write to %s failed, rolling back %d collection(s): %s",
            Collection(written[-1]).value,
            len(written),
            exc,
        )
        for collection in written:
            save_collection(workbook, collection, snapshot[collection])
        raise StorageFailure(f"Unable to write collection '{Collection(written[-1]).value}': {exc}") from exc


def export_all(workbook: Workbook) -> Dict[Collection, List[Any]]:
    """Return every collection as one snapshot keyed by collection."""

    return {collection: load_collection(workbook, collection) for collection in Collection}


def import_all(workbook: Workbook, snapshot: Mapping[Collection, Sequence[Any]]) -> List[Collection]:
    """Overwrite the collections present in ``snapshot``.

    Collections missing from the snapshot are left untouched. The write goes
    through :func:`replace_collections`, so a failure restores every sheet.

    Args:
        workbook (Workbook): Workbook to overwrite.
        snapshot (Mapping[Collection, Sequence[Any]]): Typed records per
            collection.

    Returns:
        list[Collection]: Collections that were replaced, in canonical order.
    """

    changes = {collection: list(snapshot[collection]) for collection in Collection if collection in snapshot}
    replace_collections(workbook, changes)
    return list(changes)
