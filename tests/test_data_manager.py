"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from pathlib import Path

import openpyxl
import pytest
from openpyxl.workbook import Workbook as OpenpyxlWorkbook

from bizledger import constants, data_manager
from bizledger.constants import InvoiceStatus, PaidStockPolicy

NANOS = 1_710_460_800_000_000_123


def _line(product_id: str = "P1", *, price: int = 250, quantity: int = 2) -> data_manager.LineItemRow:
    return data_manager.LineItemRow(product_id, f"Item {product_id}", "", price, quantity)


def _invoice(invoice_id: str = "I1", *, lines=None, paid_at=None) -> data_manager.InvoiceRow:
    line_items = tuple(lines or (_line(),))
    return data_manager.InvoiceRow(
        invoice_id=invoice_id,
        customer_id="C1",
        line_items=line_items,
        total_amount=sum(line.line_total for line in line_items),
        status=InvoiceStatus.DRAFT,
        created_at=NANOS,
        due_date=NANOS + 1,
        paid_at=paid_at,
    )


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile=master_workbook.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_path


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    parser = data_manager.read_config(config_file)
    assert parser.get("System", "BusinessName") == "Test Shop"
    assert parser.get("Invoices", "PaidStockPolicy") == "first_entry"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True, policy="every_paid_write", timezone="Asia/Kolkata")
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == bundle.workbook_path.resolve()
    assert settings.business_name == "Test Shop"
    assert settings.paid_stock_policy is PaidStockPolicy.EVERY_PAID_WRITE
    assert settings.tz.key == "Asia/Kolkata"


def test_parse_settings_applies_optional_defaults(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=data.xlsx\nBusinessName=Shop\nSchemaVersion=1.0.0\n")
    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.paid_stock_policy is PaidStockPolicy.FIRST_ENTRY
    assert settings.timezone == "UTC"
    assert settings.currency_symbol == "₹"


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


@pytest.mark.parametrize(
    "extra",
    ["[Invoices]\nPaidStockPolicy=sometimes\n", "[Reports]\nTimezone=Mars/Olympus\n"],
)
def test_parse_settings_rejects_unsupported_values(tmp_path, extra):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=data.xlsx\nBusinessName=Shop\nSchemaVersion=1.0.0\n" + extra)
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert set(data_manager.SHEET_COLUMNS) <= set(workbook.sheetnames)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_open_workbook_missing_sheet_raises(master_workbook_path):
    """Workbooks lacking a managed sheet are rejected."""

    workbook = openpyxl.load_workbook(master_workbook_path)
    workbook.remove(workbook[constants.SheetName.INVOICE_LINES.value])
    workbook.save(master_workbook_path)

    with pytest.raises(KeyError):
        data_manager.open_workbook(master_workbook_path)


def test_save_workbook_replaces_file_without_leftovers(master_workbook_path):
    """save_workbook should persist changes and leave no temporary files behind."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, data_manager.ProductRow("P100", "Chips", "", "Snacks", 250, 4))
    data_manager.save_workbook(workbook, master_workbook_path)

    reloaded = data_manager.open_workbook(master_workbook_path)
    assert [row.product_id for row in data_manager.iter_products(reloaded)] == ["P100"]
    assert sorted(path.name for path in master_workbook_path.parent.iterdir()) == [master_workbook_path.name]


def test_save_workbook_failure_keeps_original(master_workbook_path, monkeypatch):
    """A failed write must not clobber the existing workbook."""

    original_bytes = master_workbook_path.read_bytes()
    workbook = data_manager.open_workbook(master_workbook_path)

    def _boom(path):
        raise OSError("disk full")

    monkeypatch.setattr(workbook, "save", _boom)
    with pytest.raises(OSError):
        data_manager.save_workbook(workbook, master_workbook_path)

    assert master_workbook_path.read_bytes() == original_bytes
    assert sorted(path.name for path in master_workbook_path.parent.iterdir()) == [master_workbook_path.name]


def test_refresh_workbook_discards_unsaved_changes(master_workbook_path):
    original = data_manager.open_workbook(master_workbook_path)
    data_manager.append_customer(
        original, data_manager.CustomerRow("C1", "Asha", "asha@example.com", "", "", NANOS)
    )

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    assert list(data_manager.iter_customers(refreshed)) == []


def test_customer_round_trip_keeps_nanosecond_precision(master_workbook_path):
    """Timestamps beyond 2**53 survive the spreadsheet unchanged."""

    record = data_manager.CustomerRow("C1", "Asha", "asha@example.com", "555-0100", "1 Main St", NANOS)
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_customer(workbook, record)
    data_manager.save_workbook(workbook, master_workbook_path)

    rows = list(data_manager.iter_customers(data_manager.open_workbook(master_workbook_path)))
    assert rows == [record]


def test_iter_invoices_joins_lines_in_order(master_workbook_path):
    """Invoices come back with their line items in creation order."""

    lines = (_line("P2", price=100, quantity=1), _line("P1", price=250, quantity=3), _line("P2", quantity=1))
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_invoice(workbook, _invoice("I1", lines=lines))
    data_manager.append_invoice(workbook, _invoice("I2"))
    data_manager.save_workbook(workbook, master_workbook_path)

    invoices = list(data_manager.iter_invoices(data_manager.open_workbook(master_workbook_path)))
    assert [invoice.invoice_id for invoice in invoices] == ["I1", "I2"]
    assert invoices[0].line_items == lines
    assert invoices[0].paid_at is None
    assert invoices[1].line_items == (_line(),)


def test_iter_skips_blank_rows(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    sheet = workbook[constants.SheetName.EXPENSES.value]
    sheet.append([None, None, None, None, None])
    data_manager.append_expense(workbook, data_manager.ExpenseRow("E1", NANOS, "Rent", "", 50000))

    assert [row.expense_id for row in data_manager.iter_expenses(workbook)] == ["E1"]


def test_update_product_modifies_selected_columns(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, data_manager.ProductRow("P500", "Old", "desc", "Cat", 100, 9))

    data_manager.update_product(workbook, "P500", field_values={"Name": "New", "StockQuantity": 3})

    [row] = list(data_manager.iter_products(workbook))
    assert row == data_manager.ProductRow("P500", "New", "desc", "Cat", 100, 3)


def test_update_product_missing_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.update_product(workbook, "NOPE", field_values={"Name": "X"})


def test_update_row_rejects_unknown_column(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, data_manager.ProductRow("P1", "A", "", "", 100, 1))
    with pytest.raises(KeyError):
        data_manager.update_product(workbook, "P1", field_values={"SellPrice": 5})


def test_update_invoice_sets_status_and_paid_at(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_invoice(workbook, _invoice("I1"))

    data_manager.update_invoice(workbook, "I1", field_values={"Status": "paid", "PaidAt": str(NANOS + 5)})

    [invoice] = list(data_manager.iter_invoices(workbook))
    assert invoice.status is InvoiceStatus.PAID
    assert invoice.paid_at == NANOS + 5


def test_delete_row_removes_only_matching_record(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    for expense_id in ("E1", "E2", "E3"):
        data_manager.append_expense(workbook, data_manager.ExpenseRow(expense_id, NANOS, "Rent", "", 100))

    data_manager.delete_expense(workbook, "E2")

    assert [row.expense_id for row in data_manager.iter_expenses(workbook)] == ["E1", "E3"]


def test_delete_row_missing_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.delete_customer(workbook, "missing")


def test_locate_row_returns_row_index(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, data_manager.ProductRow("P600", "Snack", "", "", 200, 1))

    assert data_manager.locate_row(workbook, constants.SheetName.PRODUCTS.value, "ProductID", "P600") == 2
    assert data_manager.locate_row(workbook, constants.SheetName.PRODUCTS.value, "ProductID", "NOPE") is None


def test_locate_row_unknown_column_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, constants.SheetName.PRODUCTS.value, "SKU", "P1")


def test_serialize_invoice_stores_timestamps_as_text():
    """Large integers are written as text to dodge float rounding."""

    row = data_manager.serialize_invoice(_invoice("I1", paid_at=NANOS))
    assert row == ["I1", "C1", 500, "draft", str(NANOS), str(NANOS + 1), str(NANOS)]


def test_deserialize_product_coerces_blank_numbers():
    record = data_manager.deserialize_product([101, "Bar", None, None, "275", None])
    assert record == data_manager.ProductRow("101", "Bar", "", "", 275, 0)


def test_deserialize_invoice_rejects_unknown_status():
    with pytest.raises(ValueError):
        data_manager.deserialize_invoice(["I1", "C1", 100, "void", "1", "2", None], ())


def test_line_total_multiplies_price_and_quantity():
    assert _line(price=333, quantity=3).line_total == 999
