"""Data access layer for bizledger.

This module provides low-level helpers that read from and write to the master
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating, or
   deleting individual rows.

Nanosecond timestamps are stored as text. Spreadsheet numbers are doubles and
lose precision past ``2**53``.
"""


from __future__ import annotations

import configparser
import os
import tempfile
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import InvoiceStatus, PaidStockPolicy, SheetName


CONFIG_FILE_NAME = "config.ini"
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
EXPENSES_SHEET = SheetName.EXPENSES.value
INVOICES_SHEET = SheetName.INVOICES.value
INVOICE_LINES_SHEET = SheetName.INVOICE_LINES.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    CUSTOMERS_SHEET: [
        "CustomerID",
        "Name",
        "Email",
        "Phone",
        "Address",
        "CreatedAt",
    ],
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "Description",
        "Category",
        "Price",
        "StockQuantity",
    ],
    EXPENSES_SHEET: [
        "ExpenseID",
        "Date",
        "Category",
        "Description",
        "Amount",
    ],
    INVOICES_SHEET: [
        "InvoiceID",
        "CustomerID",
        "TotalAmount",
        "Status",
        "CreatedAt",
        "DueDate",
        "PaidAt",
    ],
    INVOICE_LINES_SHEET: [
        "InvoiceID",
        "LineNumber",
        "ProductID",
        "Name",
        "Description",
        "Price",
        "Quantity",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    paid_stock_policy: PaidStockPolicy = PaidStockPolicy.FIRST_ENTRY
    timezone: str = "UTC"
    currency_symbol: str = "₹"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    name: str
    email: str
    phone: str
    address: str
    created_at: int


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    description: str
    category: str
    price: int
    stock_quantity: int


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    date: int
    category: str
    description: str
    amount: int


@dataclass(frozen=True)
class LineItemRow:
    """Snapshot of a product as sold on an invoice."""

    product_id: str
    name: str
    description: str
    price: int
    quantity: int

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


@dataclass(frozen=True)
class InvoiceRow:
    """In-memory view of an invoice joined with its ``InvoiceLines`` rows."""

    invoice_id: str
    customer_id: str
    line_items: tuple[LineItemRow, ...]
    total_amount: int
    status: InvoiceStatus
    created_at: int
    due_date: int
    paid_at: Optional[int] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``. The first match that exists on disk wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Invoices]`` and ``[Reports]`` are
    optional and fall back to the dataclass defaults. Relative ``DataFile``
    entries are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional entry holds an unsupported value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    policy_raw = parser.get("Invoices", "PaidStockPolicy", fallback=PaidStockPolicy.FIRST_ENTRY.value)
    try:
        policy = PaidStockPolicy(policy_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported PaidStockPolicy: {policy_raw}") from exc

    timezone = parser.get("Reports", "Timezone", fallback="UTC").strip()
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {timezone}") from exc
    currency_symbol = parser.get("Reports", "CurrencySymbol", fallback="₹").strip()

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        paid_stock_policy=policy,
        timezone=timezone,
        currency_symbol=currency_symbol,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: Workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        KeyError: If one of the expected sheets is missing.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    validate_sheets(wb)
    return wb


def validate_sheets(workbook: Workbook) -> None:
    """Ensure every sheet in :data:`SHEET_COLUMNS` is present."""

    missing = [name for name in SHEET_COLUMNS if name not in workbook.sheetnames]
    if missing:
        raise KeyError(f"Workbook is missing sheets: {', '.join(missing)}")


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook atomically at ``destination``.

    The workbook is first written to a temporary file beside the destination
    and then moved over it, so readers never observe a half-written file.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        workbook.save(tmp_path)
        os.replace(tmp_path, dest)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    """Iterate over customer records stored on the ``Customers`` worksheet."""

    for raw in _iter_sheet_rows(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The iterator skips the header row and any fully empty rows. Each remaining
    row is converted into a :class:`ProductRow` via
    :func:`deserialize_product`.
    """

    for raw in _iter_sheet_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_expenses(workbook: Workbook) -> Iterable[ExpenseRow]:
    for raw in _iter_sheet_rows(workbook, EXPENSES_SHEET):
        yield deserialize_expense(raw)


def iter_invoices(workbook: Workbook) -> Iterable[InvoiceRow]:
    """Stream invoices joined with their line items.

    Line rows are grouped by ``InvoiceID`` and ordered by ``LineNumber`` so
    every invoice comes back with the exact line sequence it was created
    with. Lines whose invoice header is missing are ignored.

    Args:
        workbook (Workbook): Workbook containing both invoice sheets.

    Yields:
        InvoiceRow: Invoice header with its ordered line item snapshot.
    """

    lines: Dict[str, List[tuple[int, LineItemRow]]] = defaultdict(list)
    for raw in _iter_sheet_rows(workbook, INVOICE_LINES_SHEET):
        invoice_id, line_number, line = deserialize_line_item(raw)
        lines[invoice_id].append((line_number, line))

    for raw in _iter_sheet_rows(workbook, INVOICES_SHEET):
        invoice_id = str(raw[0])
        ordered = tuple(line for _, line in sorted(lines.get(invoice_id, []), key=lambda pair: pair[0]))
        yield deserialize_invoice(raw, ordered)


def append_customer(workbook: Workbook, record: CustomerRow) -> None:
    workbook[CUSTOMERS_SHEET].append(serialize_customer(record))


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_expense(workbook: Workbook, record: ExpenseRow) -> None:
    workbook[EXPENSES_SHEET].append(serialize_expense(record))


def append_invoice(workbook: Workbook, record: InvoiceRow) -> None:
    """Append an invoice header and one ``InvoiceLines`` row per line item.

    Args:
        workbook (Workbook): Workbook containing both invoice sheets.
        record (InvoiceRow): Invoice to persist.
    """

    workbook[INVOICES_SHEET].append(serialize_invoice(record))
    lines_sheet = workbook[INVOICE_LINES_SHEET]
    for line_number, line in enumerate(record.line_items, start=1):
        lines_sheet.append(serialize_line_item(record.invoice_id, line_number, line))


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[Any, int]:
    headers = list(workbook[sheet_name][1])
    return {cell.value: idx + 1 for idx, cell in enumerate(headers)}


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: Mapping[str, Any],
) -> None:
    """Update selected columns for an existing row.

    The function locates the row whose ``key_column`` matches ``key_value``,
    validates that every requested field exists in the header row, and then
    writes the provided values. Columns that are not mentioned stay untouched.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Worksheet to modify.
        key_column (str): Header title of the identifier column.
        key_value (str): Identifier of the row to update.
        field_values (Mapping[str, Any]): Column names mapped to new values.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    header_map = _header_map(workbook, sheet_name)
    unknown = [field for field in field_values if field not in header_map]
    if unknown:
        raise KeyError(f"Unknown {sheet_name} field: {', '.join(unknown)}")

    sheet = workbook[sheet_name]
    for field, value in field_values.items():
        sheet.cell(row=row_index, column=header_map[field], value=value)


def update_customer(workbook: Workbook, customer_id: str, *, field_values: Mapping[str, Any]) -> None:
    update_row(workbook, CUSTOMERS_SHEET, "CustomerID", customer_id, field_values=field_values)


def update_product(workbook: Workbook, product_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns for an existing product, e.g. ``StockQuantity``."""

    update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values=field_values)


def update_expense(workbook: Workbook, expense_id: str, *, field_values: Mapping[str, Any]) -> None:
    update_row(workbook, EXPENSES_SHEET, "ExpenseID", expense_id, field_values=field_values)


def update_invoice(workbook: Workbook, invoice_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Update header columns of an invoice. Line items are never rewritten."""

    update_row(workbook, INVOICES_SHEET, "InvoiceID", invoice_id, field_values=field_values)


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the row whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If no row matches.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def delete_customer(workbook: Workbook, customer_id: str) -> None:
    delete_row(workbook, CUSTOMERS_SHEET, "CustomerID", customer_id)


def delete_product(workbook: Workbook, product_id: str) -> None:
    delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)


def delete_expense(workbook: Workbook, expense_id: str) -> None:
    delete_row(workbook, EXPENSES_SHEET, "ExpenseID", expense_id)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title of the column storing the lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def _to_int(raw: object, default: int = 0) -> int:
    if raw is None or raw == "":
        return default
    return int(Decimal(str(raw)))


def _to_optional_int(raw: object) -> Optional[int]:
    if raw is None or raw == "":
        return None
    return _to_int(raw)


def _to_text(raw: object) -> str:
    return "" if raw is None else str(raw)


def serialize_customer(record: CustomerRow) -> list[object]:
    return [
        record.customer_id,
        record.name,
        record.email,
        record.phone,
        record.address,
        str(record.created_at),
    ]


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering.

    Returns:
        list[object]: ``[ProductID, Name, Description, Category, Price,
        StockQuantity]``.
    """

    return [
        record.product_id,
        record.name,
        record.description,
        record.category,
        record.price,
        record.stock_quantity,
    ]


def serialize_expense(record: ExpenseRow) -> list[object]:
    return [
        record.expense_id,
        str(record.date),
        record.category,
        record.description,
        record.amount,
    ]


def serialize_invoice(record: InvoiceRow) -> list[object]:
    return [
        record.invoice_id,
        record.customer_id,
        record.total_amount,
        record.status.value,
        str(record.created_at),
        str(record.due_date),
        str(record.paid_at) if record.paid_at is not None else None,
    ]


def serialize_line_item(invoice_id: str, line_number: int, record: LineItemRow) -> list[object]:
    return [
        invoice_id,
        line_number,
        record.product_id,
        record.name,
        record.description,
        record.price,
        record.quantity,
    ]


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    customer_id, name, email, phone, address, created_at = raw_row[:6]
    return CustomerRow(
        customer_id=str(customer_id),
        name=_to_text(name),
        email=_to_text(email),
        phone=_to_text(phone),
        address=_to_text(address),
        created_at=_to_int(created_at),
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifiers are coerced to ``str`` to avoid surprises caused by Excel
    interpreting numeric-looking ids, and blank numeric cells become zero.
    """

    product_id, name, description, category, price, stock_quantity = raw_row[:6]
    return ProductRow(
        product_id=str(product_id),
        name=_to_text(name),
        description=_to_text(description),
        category=_to_text(category),
        price=_to_int(price),
        stock_quantity=_to_int(stock_quantity),
    )


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    expense_id, date, category, description, amount = raw_row[:5]
    return ExpenseRow(
        expense_id=str(expense_id),
        date=_to_int(date),
        category=_to_text(category),
        description=_to_text(description),
        amount=_to_int(amount),
    )


def deserialize_line_item(raw_row: Sequence[object]) -> tuple[str, int, LineItemRow]:
    """Convert an ``InvoiceLines`` row into ``(invoice_id, line_number, line)``."""

    invoice_id, line_number, product_id, name, description, price, quantity = raw_row[:7]
    line = LineItemRow(
        product_id=_to_text(product_id),
        name=_to_text(name),
        description=_to_text(description),
        price=_to_int(price),
        quantity=_to_int(quantity),
    )
    return str(invoice_id), _to_int(line_number), line


def deserialize_invoice(raw_row: Sequence[object], line_items: tuple[LineItemRow, ...]) -> InvoiceRow:
    """Convert an ``Invoices`` row plus its lines into an :class:`InvoiceRow`.

    Raises:
        ValueError: If the stored status is not a known :class:`InvoiceStatus`.
    """

    invoice_id, customer_id, total_amount, status, created_at, due_date, paid_at = raw_row[:7]
    try:
        parsed_status = InvoiceStatus(_to_text(status).strip().lower())
    except ValueError:
        log.error("Invoice '%s' carries unknown status '%s'", invoice_id, status)
        raise
    return InvoiceRow(
        invoice_id=str(invoice_id),
        customer_id=_to_text(customer_id),
        line_items=line_items,
        total_amount=_to_int(total_amount),
        status=parsed_status,
        created_at=_to_int(created_at),
        due_date=_to_int(due_date),
        paid_at=_to_optional_int(paid_at),
    )
