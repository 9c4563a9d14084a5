"""Record store client backed by the master workbook.

The store exposes request/response style operations per entity kind. Every
mutating call is a single transaction: its writes are staged on the in-memory
workbook and persisted with one atomic save. When anything fails the workbook
is reloaded from disk so no staged write survives, and the caller receives a
:class:`StoreOperationFailed`.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Iterator, List, Mapping, Optional, TypeVar

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import InvoiceStatus

RowT = TypeVar("RowT")


class StoreError(Exception):
    """Base class for record store failures."""


class StoreUnavailable(StoreError):
    """Raised when no workbook session is established."""


class StoreOperationFailed(StoreError):
    """Raised when the store rejects or fails to persist a mutation."""


class RecordStore:
    """Workbook-backed persistence for customers, products, expenses, invoices."""

    def __init__(self, data_file: Path) -> None:
        self._data_file = Path(data_file).expanduser().resolve()
        self._workbook: Optional[Workbook] = None

    @property
    def data_file(self) -> Path:
        return self._data_file

    @property
    def connected(self) -> bool:
        return self._workbook is not None

    def connect(self) -> "RecordStore":
        """Open the workbook, establishing the store session.

        Raises:
            StoreUnavailable: If the workbook is missing or malformed.
        """

        try:
            self._workbook = data_manager.open_workbook(self._data_file)
        except (FileNotFoundError, KeyError, OSError) as exc:
            log.error("Record store unavailable at '%s': %s", self._data_file, exc)
            raise StoreUnavailable(str(exc)) from exc
        log.info("Connected record store '%s'", self._data_file)
        return self

    def close(self) -> None:
        self._workbook = None

    def _require_workbook(self) -> Workbook:
        if self._workbook is None:
            raise StoreUnavailable("Record store session is not established")
        return self._workbook

    @contextmanager
    def _transaction(self, description: str) -> Iterator[Workbook]:
        """Stage writes for one store call and persist them atomically.

        Raises:
            StoreUnavailable: If no session is open.
            StoreOperationFailed: If staging or saving fails. Staged writes
                are discarded by reloading the workbook from disk.
        """

        workbook = self._require_workbook()
        try:
            yield workbook
            data_manager.save_workbook(workbook, self._data_file)
        except StoreError:
            self._rollback()
            raise
        except (KeyError, ValueError, OSError) as exc:
            log.error("Store operation '%s' failed: %s", description, exc)
            self._rollback()
            raise StoreOperationFailed(f"{description} failed: {exc}") from exc
        except Exception:
            log.exception("Unexpected error during store operation '%s'", description)
            self._rollback()
            raise

    def _rollback(self) -> None:
        try:
            self._workbook = data_manager.refresh_workbook(self._data_file)
        except (FileNotFoundError, KeyError, OSError) as exc:
            log.error("Unable to reload workbook after failure: %s", exc)
            self._workbook = None

    def _find(self, rows: Callable[[Workbook], Any], key: Callable[[RowT], str], record_id: str) -> Optional[RowT]:
        for row in rows(self._require_workbook()):
            if key(row) == record_id:
                return row
        return None

    def _check_replay(self, existing: Optional[RowT], incoming: RowT, record_id: str) -> bool:
        """Return ``True`` when a create is a retry of an identical record."""

        if existing is None:
            return False
        if asdict(existing) == asdict(incoming):
            log.info("Ignoring replayed create for id '%s'", record_id)
            return True
        raise StoreOperationFailed(f"Identifier already in use: {record_id}")

    # Customers -------------------------------------------------------------

    def create_customer(self, record: data_manager.CustomerRow) -> str:
        existing = self.get_customer(record.customer_id)
        if self._check_replay(existing, record, record.customer_id):
            return record.customer_id
        with self._transaction("create customer") as workbook:
            data_manager.append_customer(workbook, record)
        return record.customer_id

    def update_customer(self, customer_id: str, *, name: str, email: str, phone: str, address: str) -> str:
        with self._transaction("update customer") as workbook:
            data_manager.update_customer(
                workbook,
                customer_id,
                field_values={"Name": name, "Email": email, "Phone": phone, "Address": address},
            )
        return customer_id

    def delete_customer(self, customer_id: str) -> str:
        with self._transaction("delete customer") as workbook:
            data_manager.delete_customer(workbook, customer_id)
        return customer_id

    def get_customer(self, customer_id: str) -> Optional[data_manager.CustomerRow]:
        return self._find(data_manager.iter_customers, lambda row: row.customer_id, customer_id)

    def list_customers(self) -> List[data_manager.CustomerRow]:
        return list(data_manager.iter_customers(self._require_workbook()))

    # Products --------------------------------------------------------------

    def create_product(self, record: data_manager.ProductRow) -> str:
        existing = self.get_product(record.product_id)
        if self._check_replay(existing, record, record.product_id):
            return record.product_id
        with self._transaction("create product") as workbook:
            data_manager.append_product(workbook, record)
        return record.product_id

    def update_product(
        self,
        product_id: str,
        *,
        name: str,
        description: str,
        price: int,
        stock_quantity: int,
        category: str,
    ) -> str:
        with self._transaction("update product") as workbook:
            data_manager.update_product(
                workbook,
                product_id,
                field_values={
                    "Name": name,
                    "Description": description,
                    "Price": price,
                    "StockQuantity": stock_quantity,
                    "Category": category,
                },
            )
        return product_id

    def delete_product(self, product_id: str) -> str:
        with self._transaction("delete product") as workbook:
            data_manager.delete_product(workbook, product_id)
        return product_id

    def get_product(self, product_id: str) -> Optional[data_manager.ProductRow]:
        return self._find(data_manager.iter_products, lambda row: row.product_id, product_id)

    def list_products(self) -> List[data_manager.ProductRow]:
        return list(data_manager.iter_products(self._require_workbook()))

    # Expenses --------------------------------------------------------------

    def create_expense(self, record: data_manager.ExpenseRow) -> str:
        existing = self.get_expense(record.expense_id)
        if self._check_replay(existing, record, record.expense_id):
            return record.expense_id
        with self._transaction("create expense") as workbook:
            data_manager.append_expense(workbook, record)
        return record.expense_id

    def update_expense(self, expense_id: str, *, category: str, amount: int, description: str, date: int) -> str:
        with self._transaction("update expense") as workbook:
            data_manager.update_expense(
                workbook,
                expense_id,
                field_values={
                    "Category": category,
                    "Amount": amount,
                    "Description": description,
                    "Date": str(date),
                },
            )
        return expense_id

    def delete_expense(self, expense_id: str) -> str:
        with self._transaction("delete expense") as workbook:
            data_manager.delete_expense(workbook, expense_id)
        return expense_id

    def get_expense(self, expense_id: str) -> Optional[data_manager.ExpenseRow]:
        return self._find(data_manager.iter_expenses, lambda row: row.expense_id, expense_id)

    def list_expenses(self) -> List[data_manager.ExpenseRow]:
        return list(data_manager.iter_expenses(self._require_workbook()))

    # Invoices --------------------------------------------------------------

    def create_invoice(
        self,
        record: data_manager.InvoiceRow,
        *,
        stock_levels: Optional[Mapping[str, int]] = None,
    ) -> str:
        """Insert an invoice and, in the same transaction, set product stock.

        Args:
            record (InvoiceRow): Invoice with its line item snapshot.
            stock_levels (Mapping[str, int] | None): New ``StockQuantity``
                per product id, written atomically with the insert.

        Returns:
            str: The invoice identifier.
        """

        existing = self.get_invoice(record.invoice_id)
        if self._check_replay(existing, record, record.invoice_id):
            return record.invoice_id
        with self._transaction("create invoice") as workbook:
            data_manager.append_invoice(workbook, record)
            self._write_stock_levels(workbook, stock_levels)
        return record.invoice_id

    def update_invoice_status(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        *,
        paid_at: Optional[int] = None,
        stock_levels: Optional[Mapping[str, int]] = None,
    ) -> str:
        """Write an invoice status together with any stock level changes.

        The status, ``PaidAt`` and every product stock cell are persisted by
        one save, or none of them are.
        """

        with self._transaction("update invoice status") as workbook:
            data_manager.update_invoice(
                workbook,
                invoice_id,
                field_values={
                    "Status": InvoiceStatus(status).value,
                    "PaidAt": str(paid_at) if paid_at is not None else None,
                },
            )
            self._write_stock_levels(workbook, stock_levels)
        return invoice_id

    def get_invoice(self, invoice_id: str) -> Optional[data_manager.InvoiceRow]:
        return self._find(data_manager.iter_invoices, lambda row: row.invoice_id, invoice_id)

    def list_invoices(self) -> List[data_manager.InvoiceRow]:
        return list(data_manager.iter_invoices(self._require_workbook()))

    @staticmethod
    def _write_stock_levels(workbook: Workbook, stock_levels: Optional[Mapping[str, int]]) -> None:
        for product_id, quantity in (stock_levels or {}).items():
            data_manager.update_product(workbook, product_id, field_values={"StockQuantity": quantity})

