"""Enumerations and constants shared across bizledger modules.

Centralises domain identifiers so that the data access layer, the record
store, the business logic layer, and the reports can rely on a single source
of truth.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Products strictly below this stock level count as low stock.
LOW_STOCK_THRESHOLD = 5

TOP_PRODUCTS_LIMIT = 5
RECENT_INVOICES_LIMIT = 5

MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


class InvoiceStatus(str, Enum):
    """Enumerate the lifecycle states of an invoice.

    Any status may move to any other status; only entering ``PAID`` carries a
    side effect on product stock.
    """

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


UNPAID_STATUSES: frozenset[InvoiceStatus] = frozenset(
    {InvoiceStatus.SENT, InvoiceStatus.OVERDUE}
)


class PaidStockPolicy(str, Enum):
    """Control when the paid-entry stock decrement fires."""

    FIRST_ENTRY = "first_entry"
    EVERY_PAID_WRITE = "every_paid_write"


class EntityKind(str, Enum):
    """Enumerate the record collections kept by the store and projection."""

    CUSTOMER = "customer"
    PRODUCT = "product"
    EXPENSE = "expense"
    INVOICE = "invoice"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    CUSTOMERS = "Customers"
    PRODUCTS = "Products"
    EXPENSES = "Expenses"
    INVOICES = "Invoices"
    INVOICE_LINES = "InvoiceLines"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_THRESHOLD",
    "TOP_PRODUCTS_LIMIT",
    "RECENT_INVOICES_LIMIT",
    "MONTHS",
    "InvoiceStatus",
    "UNPAID_STATUSES",
    "PaidStockPolicy",
    "EntityKind",
    "SheetName",
]
