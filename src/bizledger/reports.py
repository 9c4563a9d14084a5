"""Aggregation engine for dashboard and report figures.

Every function here is pure: it takes snapshots of the collections and
recomputes its result from scratch. Amounts stay in integer cents; turning
them into display strings is left to :mod:`bizledger.codec`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence, Union

from . import codec, log
from .constants import (
    LOW_STOCK_THRESHOLD,
    MONTHS,
    RECENT_INVOICES_LIMIT,
    TOP_PRODUCTS_LIMIT,
    UNPAID_STATUSES,
    InvoiceStatus,
)
from .data_manager import CustomerRow, ExpenseRow, InvoiceRow, ProductRow
from .projection import Snapshot


@dataclass(frozen=True)
class MonthlyAmount:
    month: str
    amount: int


@dataclass(frozen=True)
class ProductSales:
    """Aggregated sales of one product across paid invoices."""

    product_id: str
    name: str
    quantity: int
    revenue: int


@dataclass(frozen=True)
class MonthSummary:
    year: int
    month: int
    revenue: int
    expenses: int

    @property
    def profit(self) -> int:
        return self.revenue - self.expenses


@dataclass(frozen=True)
class CustomerSummary:
    customer: CustomerRow
    invoices: tuple[InvoiceRow, ...]
    total_paid: int


@dataclass(frozen=True)
class DashboardMetrics:
    """Headline figures shown on the dashboard."""

    total_revenue: int
    active_customers: int
    low_stock_products: int
    unpaid_invoices: int
    current_month_profit: int
    monthly_revenue: tuple[MonthlyAmount, ...] = ()
    top_products: tuple[ProductSales, ...] = ()
    recent_invoices: tuple[InvoiceRow, ...] = field(default_factory=tuple)


def _paid(invoices: Iterable[InvoiceRow]) -> Iterable[InvoiceRow]:
    return (invoice for invoice in invoices if invoice.status is InvoiceStatus.PAID)


def _in_month(nanos: int, year: int, month: int, tz: tzinfo) -> bool:
    day = codec.nanoseconds_to_date(nanos, tz)
    return day.year == year and day.month == month


def total_revenue(invoices: Iterable[InvoiceRow]) -> int:
    return sum(invoice.total_amount for invoice in _paid(invoices))


def low_stock_count(products: Iterable[ProductRow], threshold: int = LOW_STOCK_THRESHOLD) -> int:
    return sum(1 for product in products if product.stock_quantity < threshold)


def unpaid_count(invoices: Iterable[InvoiceRow]) -> int:
    """Count invoices that are sent or overdue. Drafts are not unpaid."""

    return sum(1 for invoice in invoices if invoice.status in UNPAID_STATUSES)


def active_customer_count(customers: Sequence[CustomerRow]) -> int:
    return len(customers)


def monthly_revenue(invoices: Iterable[InvoiceRow], year: int, tz: tzinfo = UTC) -> List[MonthlyAmount]:
    """Return the paid revenue of each month of ``year``.

    Invoices are attributed to the month of their ``created_at``, not the
    month they were paid in. The result always has twelve entries, January
    first, with zero for months without paid invoices.

    Args:
        invoices (Iterable[InvoiceRow]): Invoices to aggregate.
        year (int): Calendar year of interest.
        tz (tzinfo): Timezone used to place timestamps in months.

    Returns:
        list[MonthlyAmount]: One entry per month label in :data:`MONTHS`.
    """

    totals = [0] * 12
    for invoice in _paid(invoices):
        day = codec.nanoseconds_to_date(invoice.created_at, tz)
        if day.year == year:
            totals[day.month - 1] += invoice.total_amount
    return [MonthlyAmount(month=label, amount=amount) for label, amount in zip(MONTHS, totals)]


def top_products(invoices: Iterable[InvoiceRow], limit: int = TOP_PRODUCTS_LIMIT) -> List[ProductSales]:
    """Rank products by quantity sold on paid invoices.

    Line items are grouped by product id. The displayed name is the first
    snapshot name seen for that id. Ties on quantity are broken by product id
    so the ranking does not depend on input order.
    """

    names: Dict[str, str] = {}
    quantities: Dict[str, int] = {}
    revenues: Dict[str, int] = {}
    for invoice in _paid(invoices):
        for line in invoice.line_items:
            names.setdefault(line.product_id, line.name)
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
            revenues[line.product_id] = revenues.get(line.product_id, 0) + line.line_total

    ranked = sorted(quantities, key=lambda product_id: (-quantities[product_id], product_id))
    return [
        ProductSales(
            product_id=product_id,
            name=names[product_id],
            quantity=quantities[product_id],
            revenue=revenues[product_id],
        )
        for product_id in ranked[:limit]
    ]


def month_summary(
    invoices: Iterable[InvoiceRow],
    expenses: Iterable[ExpenseRow],
    year: int,
    month: int,
    tz: tzinfo = UTC,
) -> MonthSummary:
    """Compute revenue, expenses, and profit for one calendar month.

    Raises:
        ValueError: If ``month`` is outside 1..12.
    """

    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    revenue = sum(
        invoice.total_amount for invoice in _paid(invoices) if _in_month(invoice.created_at, year, month, tz)
    )
    spent = sum(expense.amount for expense in expenses if _in_month(expense.date, year, month, tz))
    log.debug("Month summary %04d-%02d: revenue=%s expenses=%s", year, month, revenue, spent)
    return MonthSummary(year=year, month=month, revenue=revenue, expenses=spent)


def current_month_profit(
    invoices: Iterable[InvoiceRow],
    expenses: Iterable[ExpenseRow],
    *,
    now: Optional[int] = None,
    tz: tzinfo = UTC,
) -> int:
    """Return revenue minus expenses for the month containing ``now``."""

    today = codec.nanoseconds_to_date(now if now is not None else codec.now_nanoseconds(), tz)
    return month_summary(invoices, expenses, today.year, today.month, tz).profit


def expense_breakdown(
    expenses: Iterable[ExpenseRow],
    year: int,
    month: int,
    tz: tzinfo = UTC,
) -> List[tuple[str, int]]:
    """Sum expenses per category for one month, largest first.

    Equal amounts are ordered by category name.
    """

    totals: Dict[str, int] = {}
    for expense in expenses:
        if _in_month(expense.date, year, month, tz):
            totals[expense.category] = totals.get(expense.category, 0) + expense.amount
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def recent_invoices(invoices: Iterable[InvoiceRow], limit: int = RECENT_INVOICES_LIMIT) -> List[InvoiceRow]:
    return sorted(invoices, key=lambda invoice: (-invoice.created_at, invoice.invoice_id))[:limit]


def available_years(
    invoices: Iterable[InvoiceRow],
    expenses: Iterable[ExpenseRow] = (),
    *,
    now: Optional[int] = None,
    tz: tzinfo = UTC,
) -> List[int]:
    """List the years that have invoices or expenses, newest first.

    The current year is always included so an empty ledger still offers one
    year to report on.
    """

    current = codec.nanoseconds_to_date(now if now is not None else codec.now_nanoseconds(), tz).year
    years = {current}
    years.update(codec.nanoseconds_to_date(invoice.created_at, tz).year for invoice in invoices)
    years.update(codec.nanoseconds_to_date(expense.date, tz).year for expense in expenses)
    return sorted(years, reverse=True)


def customer_summary(customer: CustomerRow, invoices: Iterable[InvoiceRow]) -> CustomerSummary:
    own = tuple(invoice for invoice in invoices if invoice.customer_id == customer.customer_id)
    return CustomerSummary(customer=customer, invoices=own, total_paid=total_revenue(own))


def search_customers(customers: Iterable[CustomerRow], term: str) -> List[CustomerRow]:
    """Case-insensitive substring match on name or email."""

    needle = term.strip().lower()
    return [
        customer
        for customer in customers
        if needle in customer.name.lower() or needle in customer.email.lower()
    ]


def search_products(products: Iterable[ProductRow], term: str) -> List[ProductRow]:
    """Case-insensitive substring match on name or category."""

    needle = term.strip().lower()
    return [
        product
        for product in products
        if needle in product.name.lower() or needle in product.category.lower()
    ]


def filter_invoices_by_status(
    invoices: Iterable[InvoiceRow],
    status: Optional[Union[InvoiceStatus, str]] = None,
) -> List[InvoiceRow]:
    """Return invoices in ``status``; ``None`` or ``"all"`` keeps every invoice."""

    if status is None or status == "all":
        return list(invoices)
    wanted = InvoiceStatus(status)
    return [invoice for invoice in invoices if invoice.status is wanted]


def build_dashboard(
    snapshot: Snapshot,
    *,
    year: Optional[int] = None,
    now: Optional[int] = None,
    tz: tzinfo = UTC,
) -> DashboardMetrics:
    """Compute every dashboard figure from one projection snapshot.

    Args:
        snapshot (Snapshot): Collections to aggregate.
        year (int | None): Year of the revenue series; defaults to the year
            containing ``now``.
        now (int | None): Reference timestamp for "current" month and year.
        tz (tzinfo): Timezone for calendar attribution.

    Returns:
        DashboardMetrics: Headline metrics plus series and rankings.
    """

    moment = now if now is not None else codec.now_nanoseconds()
    series_year = year if year is not None else codec.nanoseconds_to_date(moment, tz).year
    metrics = DashboardMetrics(
        total_revenue=total_revenue(snapshot.invoices),
        active_customers=active_customer_count(snapshot.customers),
        low_stock_products=low_stock_count(snapshot.products),
        unpaid_invoices=unpaid_count(snapshot.invoices),
        current_month_profit=current_month_profit(snapshot.invoices, snapshot.expenses, now=moment, tz=tz),
        monthly_revenue=tuple(monthly_revenue(snapshot.invoices, series_year, tz)),
        top_products=tuple(top_products(snapshot.invoices)),
        recent_invoices=tuple(recent_invoices(snapshot.invoices)),
    )
    log.debug(
        "Dashboard computed: revenue=%s customers=%s low_stock=%s unpaid=%s",
        metrics.total_revenue,
        metrics.active_customers,
        metrics.low_stock_products,
        metrics.unpaid_invoices,
    )
    return metrics
