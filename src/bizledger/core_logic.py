"""Business logic layer for bizledger.

This module validates user intent, drives the record store, and keeps the
local projection in step with confirmed store results. It also owns the
invoice lifecycle: status changes are permissive (any status may follow any
other) but entering ``paid`` decrements product stock, and that side effect is
planned by :func:`plan_status_transition` and written atomically with the
status itself.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from . import codec, data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, EntityKind, InvoiceStatus, PaidStockPolicy
from .projection import Projection
from .record_store import RecordStore

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced customer, product, expense, or invoice is unknown."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when user input fails validation before reaching the store."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the record store, and the projection."""

    settings: data_manager.ConfigSettings
    store: RecordStore
    projection: Projection = field(default_factory=Projection, compare=False)


@dataclass(frozen=True)
class CreateCustomerCommand:
    """User intent for registering a customer."""

    name: str
    email: str
    phone: str = ""
    address: str = ""
    customer_id: Optional[str] = None
    created_at: Optional[int] = None


@dataclass(frozen=True)
class UpdateCustomerCommand:
    customer_id: str
    name: str
    email: str
    phone: str = ""
    address: str = ""


@dataclass(frozen=True)
class AddProductCommand:
    """User intent for adding a product. ``price`` is in cents."""

    name: str
    price: int
    stock_quantity: int
    description: str = ""
    category: str = ""
    product_id: Optional[str] = None


@dataclass(frozen=True)
class UpdateProductCommand:
    product_id: str
    name: str
    price: int
    stock_quantity: int
    description: str = ""
    category: str = ""


@dataclass(frozen=True)
class AddExpenseCommand:
    """User intent for recording an expense. ``date`` is in nanoseconds."""

    category: str
    amount: int
    date: Optional[int]
    description: str = ""
    expense_id: Optional[str] = None


@dataclass(frozen=True)
class UpdateExpenseCommand:
    expense_id: str
    category: str
    amount: int
    date: Optional[int]
    description: str = ""


@dataclass(frozen=True)
class CreateInvoiceCommand:
    """User intent for issuing an invoice.

    ``total_amount`` may be omitted, in which case it is computed from the
    line items. When supplied it must match that sum. ``invoice_id`` and
    ``created_at`` let a caller retry a create without inserting twice.
    """

    customer_id: str
    line_items: Sequence[data_manager.LineItemRow]
    due_date: Optional[int]
    status: Union[InvoiceStatus, str] = InvoiceStatus.DRAFT
    total_amount: Optional[int] = None
    invoice_id: Optional[str] = None
    created_at: Optional[int] = None


@dataclass(frozen=True)
class StatusTransition:
    """Outcome of planning an invoice status change.

    Attributes:
        invoice: The invoice as it will look after the change.
        previous_status: Status before the change.
        paid_entry: Whether the paid-entry stock decrement fires.
        stock_levels: New stock quantity per product id.
        skipped_products: Line item product ids with no stored product.
    """

    invoice: data_manager.InvoiceRow
    previous_status: InvoiceStatus
    paid_entry: bool
    stock_levels: Mapping[str, int] = field(default_factory=dict)
    skipped_products: tuple[str, ...] = ()

    @property
    def new_status(self) -> InvoiceStatus:
        return self.invoice.status


def _resolve_timestamp(candidate: Optional[int]) -> int:
    return candidate if candidate is not None else codec.now_nanoseconds()


def _resolve_id(candidate: Optional[str]) -> str:
    return candidate if candidate else codec.generate_id()


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration, connect the record store, and hydrate a projection.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context ready for the service functions below.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        StoreUnavailable: If the workbook cannot be opened.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = RecordStore(settings.data_file).connect()
    projection = Projection()
    projection.hydrate(store)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store, projection=projection)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reconnect to the workbook and rebuild the projection from disk.

    The previous projection is detached so pending completions addressed to
    it are dropped, and the previous store session is closed.
    """
    context.projection.detach()
    context.store.close()
    store = RecordStore(context.settings.data_file).connect()
    projection = Projection()
    projection.hydrate(store)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store, projection=projection)


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


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def require_text(value: Optional[str], field_name: str) -> str:
    """Return ``value`` stripped, or raise when it is blank."""
    text = (value or "").strip()
    if not text:
        log.error("Validation failed: %s is required", field_name)
        raise ValidationError(f"{field_name} is required")
    return text


def require_valid_email(email: Optional[str]) -> str:
    address = require_text(email, "Email")
    if not EMAIL_PATTERN.match(address):
        log.error("Validation failed: invalid email '%s'", address)
        raise ValidationError("Invalid email address")
    return address


def require_positive_money(amount: int, field_name: str = "Amount") -> None:
    """Validate that a monetary value in cents is strictly positive.

    Raises:
        ValidationError: If ``amount`` is zero or negative.
    """
    if amount <= 0:
        log.error("%s validation failed: %s", field_name, amount)
        raise ValidationError(f"{field_name} must be greater than 0")


def require_nonnegative_quantity(quantity: int) -> None:
    if quantity < 0:
        log.error("Stock quantity validation failed: %s", quantity)
        raise ValidationError("Stock quantity must be 0 or more")


def require_positive_quantity(quantity: int) -> None:
    """Validate that a line item quantity is at least one.

    Raises:
        ValidationError: If ``quantity`` is below one.
    """
    if quantity < 1:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be at least 1")


def require_date(value: Optional[int], field_name: str) -> int:
    if value is None:
        log.error("Validation failed: %s is required", field_name)
        raise ValidationError(f"{field_name} is required")
    return value


def parse_status(value: Union[InvoiceStatus, str]) -> InvoiceStatus:
    try:
        return InvoiceStatus(value)
    except ValueError as exc:
        log.error("Unsupported invoice status: %s", value)
        raise ValidationError(f"Unsupported invoice status: {value}") from exc


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def create_customer(context: RuntimeContext, command: CreateCustomerCommand) -> data_manager.CustomerRow:
    """Validate and persist a new customer.

    Returns:
        data_manager.CustomerRow: The stored customer.

    Raises:
        ValidationError: If the name is blank or the email is malformed.
        StoreError: If the store is unavailable or rejects the insert.
    """
    record = data_manager.CustomerRow(
        customer_id=_resolve_id(command.customer_id),
        name=require_text(command.name, "Name"),
        email=require_valid_email(command.email),
        phone=command.phone.strip(),
        address=command.address.strip(),
        created_at=_resolve_timestamp(command.created_at),
    )
    context.store.create_customer(record)
    context.projection.upsert(EntityKind.CUSTOMER, record)
    log.info("Created customer '%s' (%s)", record.customer_id, record.name)
    return record


def update_customer(context: RuntimeContext, command: UpdateCustomerCommand) -> data_manager.CustomerRow:
    existing = get_customer(context, command.customer_id)
    updated = replace(
        existing,
        name=require_text(command.name, "Name"),
        email=require_valid_email(command.email),
        phone=command.phone.strip(),
        address=command.address.strip(),
    )
    context.store.update_customer(
        updated.customer_id,
        name=updated.name,
        email=updated.email,
        phone=updated.phone,
        address=updated.address,
    )
    context.projection.upsert(EntityKind.CUSTOMER, updated)
    log.info("Updated customer '%s'", updated.customer_id)
    return updated


def delete_customer(context: RuntimeContext, customer_id: str) -> str:
    """Delete a customer. Their invoices are left untouched."""
    get_customer(context, customer_id)
    context.store.delete_customer(customer_id)
    context.projection.remove(EntityKind.CUSTOMER, customer_id)
    log.info("Deleted customer '%s'", customer_id)
    return customer_id


def get_customer(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    """Resolve a customer by id from the store.

    Raises:
        MissingReferenceError: If the store holds no such customer.
    """
    customer = context.store.get_customer(customer_id)
    if customer is None:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}")
    return customer


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return context.projection.values(EntityKind.CUSTOMER)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def add_product(context: RuntimeContext, command: AddProductCommand) -> data_manager.ProductRow:
    """Validate and persist a new product.

    Raises:
        ValidationError: If the name is blank, the price is not positive, or
            the stock quantity is negative.
    """
    require_positive_money(command.price, "Price")
    require_nonnegative_quantity(command.stock_quantity)
    record = data_manager.ProductRow(
        product_id=_resolve_id(command.product_id),
        name=require_text(command.name, "Name"),
        description=command.description.strip(),
        category=command.category.strip(),
        price=command.price,
        stock_quantity=command.stock_quantity,
    )
    context.store.create_product(record)
    context.projection.upsert(EntityKind.PRODUCT, record)
    log.info(
        "Added product '%s' (%s, price=%s, stock=%s)",
        record.product_id,
        record.name,
        record.price,
        record.stock_quantity,
    )
    return record


def update_product(context: RuntimeContext, command: UpdateProductCommand) -> data_manager.ProductRow:
    """Replace the editable fields of a product.

    Existing invoices keep their line item snapshots.
    """
    existing = get_product(context, command.product_id)
    require_positive_money(command.price, "Price")
    require_nonnegative_quantity(command.stock_quantity)
    updated = replace(
        existing,
        name=require_text(command.name, "Name"),
        description=command.description.strip(),
        category=command.category.strip(),
        price=command.price,
        stock_quantity=command.stock_quantity,
    )
    context.store.update_product(
        updated.product_id,
        name=updated.name,
        description=updated.description,
        price=updated.price,
        stock_quantity=updated.stock_quantity,
        category=updated.category,
    )
    context.projection.upsert(EntityKind.PRODUCT, updated)
    log.info("Updated product '%s'", updated.product_id)
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> str:
    get_product(context, product_id)
    context.store.delete_product(product_id)
    context.projection.remove(EntityKind.PRODUCT, product_id)
    log.info("Deleted product '%s'", product_id)
    return product_id


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by id from the store.

    Raises:
        MissingReferenceError: If the store holds no such product.
    """
    product = context.store.get_product(product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return product


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    return context.projection.values(EntityKind.PRODUCT)


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def add_expense(context: RuntimeContext, command: AddExpenseCommand) -> data_manager.ExpenseRow:
    require_positive_money(command.amount)
    record = data_manager.ExpenseRow(
        expense_id=_resolve_id(command.expense_id),
        date=require_date(command.date, "Date"),
        category=require_text(command.category, "Category"),
        description=command.description.strip(),
        amount=command.amount,
    )
    context.store.create_expense(record)
    context.projection.upsert(EntityKind.EXPENSE, record)
    log.info("Added expense '%s' (%s, amount=%s)", record.expense_id, record.category, record.amount)
    return record


def update_expense(context: RuntimeContext, command: UpdateExpenseCommand) -> data_manager.ExpenseRow:
    existing = get_expense(context, command.expense_id)
    require_positive_money(command.amount)
    updated = replace(
        existing,
        date=require_date(command.date, "Date"),
        category=require_text(command.category, "Category"),
        description=command.description.strip(),
        amount=command.amount,
    )
    context.store.update_expense(
        updated.expense_id,
        category=updated.category,
        amount=updated.amount,
        description=updated.description,
        date=updated.date,
    )
    context.projection.upsert(EntityKind.EXPENSE, updated)
    log.info("Updated expense '%s'", updated.expense_id)
    return updated


def delete_expense(context: RuntimeContext, expense_id: str) -> str:
    get_expense(context, expense_id)
    context.store.delete_expense(expense_id)
    context.projection.remove(EntityKind.EXPENSE, expense_id)
    log.info("Deleted expense '%s'", expense_id)
    return expense_id


def get_expense(context: RuntimeContext, expense_id: str) -> data_manager.ExpenseRow:
    expense = context.store.get_expense(expense_id)
    if expense is None:
        log.warning("Expense lookup failed for id '%s'", expense_id)
        raise MissingReferenceError(f"Unknown expense id: {expense_id}")
    return expense


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    return context.projection.values(EntityKind.EXPENSE)


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def build_line_item(context: RuntimeContext, product_id: str, quantity: int) -> data_manager.LineItemRow:
    """Snapshot the current name, description, and price of a product.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        ValidationError: If ``quantity`` is below one.
    """
    require_positive_quantity(quantity)
    product = get_product(context, product_id)
    return data_manager.LineItemRow(
        product_id=product.product_id,
        name=product.name,
        description=product.description,
        price=product.price,
        quantity=quantity,
    )


def invoice_line_total(line_items: Sequence[data_manager.LineItemRow]) -> int:
    return sum(line.line_total for line in line_items)


def compute_stock_levels(
    line_items: Sequence[data_manager.LineItemRow],
    products: Mapping[str, data_manager.ProductRow],
) -> tuple[Dict[str, int], tuple[str, ...]]:
    """Compute post-sale stock for every product referenced by ``line_items``.

    Quantities of repeated products accumulate and each result is floored at
    zero.

    Args:
        line_items (Sequence[LineItemRow]): Invoice lines being fulfilled.
        products (Mapping[str, ProductRow]): Current products keyed by id.

    Returns:
        tuple[dict[str, int], tuple[str, ...]]: New stock per product id, and
            the ids of line items whose product no longer exists.
    """
    sold: Dict[str, int] = {}
    skipped: List[str] = []
    for line in line_items:
        if line.product_id not in products:
            if line.product_id not in skipped:
                skipped.append(line.product_id)
            continue
        sold[line.product_id] = sold.get(line.product_id, 0) + line.quantity

    levels = {
        product_id: max(products[product_id].stock_quantity - quantity, 0)
        for product_id, quantity in sold.items()
    }
    return levels, tuple(skipped)


def fires_paid_entry(
    invoice: data_manager.InvoiceRow,
    new_status: InvoiceStatus,
    policy: PaidStockPolicy,
) -> bool:
    """Decide whether moving ``invoice`` to ``new_status`` decrements stock.

    ``FIRST_ENTRY`` fires only the first time an invoice becomes paid, which
    ``paid_at`` records. ``EVERY_PAID_WRITE`` fires on every write of
    ``paid``, paid to paid included.
    """
    if new_status is not InvoiceStatus.PAID:
        return False
    if policy is PaidStockPolicy.EVERY_PAID_WRITE:
        return True
    return invoice.paid_at is None


def plan_status_transition(
    invoice: data_manager.InvoiceRow,
    new_status: InvoiceStatus,
    products: Mapping[str, data_manager.ProductRow],
    *,
    policy: PaidStockPolicy,
    now: int,
) -> StatusTransition:
    """Plan a status change without touching the store.

    Args:
        invoice (InvoiceRow): Invoice in its current state.
        new_status (InvoiceStatus): Requested status; any status is allowed.
        products (Mapping[str, ProductRow]): Current products keyed by id.
        policy (PaidStockPolicy): When the paid-entry decrement fires.
        now (int): Timestamp used for ``paid_at`` on first payment.

    Returns:
        StatusTransition: The resulting invoice and stock levels.
    """
    paid_entry = fires_paid_entry(invoice, new_status, policy)
    stock_levels: Dict[str, int] = {}
    skipped: tuple[str, ...] = ()
    if paid_entry:
        stock_levels, skipped = compute_stock_levels(invoice.line_items, products)

    paid_at = invoice.paid_at
    if new_status is InvoiceStatus.PAID and paid_at is None:
        paid_at = now

    return StatusTransition(
        invoice=replace(invoice, status=new_status, paid_at=paid_at),
        previous_status=invoice.status,
        paid_entry=paid_entry,
        stock_levels=stock_levels,
        skipped_products=skipped,
    )


def _load_products(context: RuntimeContext, line_items: Sequence[data_manager.LineItemRow]) -> Dict[str, data_manager.ProductRow]:
    products: Dict[str, data_manager.ProductRow] = {}
    for line in line_items:
        if line.product_id in products:
            continue
        product = context.store.get_product(line.product_id)
        if product is not None:
            products[line.product_id] = product
    return products


def _project_stock_levels(
    context: RuntimeContext,
    products: Mapping[str, data_manager.ProductRow],
    stock_levels: Mapping[str, int],
) -> None:
    for product_id, quantity in stock_levels.items():
        context.projection.upsert(EntityKind.PRODUCT, replace(products[product_id], stock_quantity=quantity))


def create_invoice(context: RuntimeContext, command: CreateInvoiceCommand) -> data_manager.InvoiceRow:
    """Validate and persist an invoice, applying the paid-entry side effect.

    The line items are stored as given; they are a snapshot and never track
    later product edits. When the initial status is ``paid`` the stock
    decrement is written in the same store call as the invoice. A retried
    create whose record the store already holds is not written again, so its
    stock effect applies once.

    Args:
        context (RuntimeContext): Runtime context.
        command (CreateInvoiceCommand): Invoice request.

    Returns:
        data_manager.InvoiceRow: The stored invoice.

    Raises:
        ValidationError: If required fields are missing, line items are empty
            or invalid, or the total does not match the line items.
        MissingReferenceError: If a line item references an unknown product.
        StoreError: If the store is unavailable or rejects the insert.
    """
    customer_id = require_text(command.customer_id, "Customer")
    due_date = require_date(command.due_date, "Due date")
    status = parse_status(command.status)
    line_items = tuple(command.line_items)
    if not line_items:
        log.error("Invoice validation failed: no line items")
        raise ValidationError("Add at least one line item")
    for line in line_items:
        require_text(line.product_id, "Line item product")
        require_positive_quantity(line.quantity)
        if line.price < 0:
            log.error("Line item price validation failed: %s", line.price)
            raise ValidationError("Line item price must be zero or positive")

    products = _load_products(context, line_items)
    missing = sorted({line.product_id for line in line_items} - set(products))
    if missing:
        log.warning("Invoice references unknown products: %s", ", ".join(missing))
        raise MissingReferenceError(f"Unknown product id: {', '.join(missing)}")

    computed_total = invoice_line_total(line_items)
    total_amount = computed_total if command.total_amount is None else command.total_amount
    if total_amount != computed_total:
        log.error("Invoice total %s does not match line items (%s)", total_amount, computed_total)
        raise ValidationError(
            f"Total amount {total_amount} does not match line items total {computed_total}"
        )

    created_at = _resolve_timestamp(command.created_at)
    record = data_manager.InvoiceRow(
        invoice_id=_resolve_id(command.invoice_id),
        customer_id=customer_id,
        line_items=line_items,
        total_amount=total_amount,
        status=status,
        created_at=created_at,
        due_date=due_date,
        paid_at=created_at if status is InvoiceStatus.PAID else None,
    )
    if context.store.get_invoice(record.invoice_id) == record:
        # Replayed create: the store already holds this invoice and its stock effect.
        log.info("Invoice '%s' already stored; skipping replayed create", record.invoice_id)
        context.projection.upsert(EntityKind.INVOICE, record)
        for product in products.values():
            context.projection.upsert(EntityKind.PRODUCT, product)
        return record

    stock_levels: Dict[str, int] = {}
    if status is InvoiceStatus.PAID:
        stock_levels, _ = compute_stock_levels(line_items, products)

    context.store.create_invoice(record, stock_levels=stock_levels)
    context.projection.upsert(EntityKind.INVOICE, record)
    _project_stock_levels(context, products, stock_levels)
    log.info(
        "Created invoice '%s' for customer '%s' (status=%s, total=%s, lines=%d)",
        record.invoice_id,
        record.customer_id,
        record.status.value,
        record.total_amount,
        len(record.line_items),
    )
    return record


def get_invoice(context: RuntimeContext, invoice_id: str) -> data_manager.InvoiceRow:
    """Resolve an invoice by id from the store.

    Raises:
        MissingReferenceError: If the store holds no such invoice.
    """
    invoice = context.store.get_invoice(invoice_id)
    if invoice is None:
        log.warning("Invoice lookup failed for id '%s'", invoice_id)
        raise MissingReferenceError(f"Unknown invoice id: {invoice_id}")
    return invoice


def list_invoices(context: RuntimeContext) -> List[data_manager.InvoiceRow]:
    return context.projection.values(EntityKind.INVOICE)


def transition_invoice_status(
    context: RuntimeContext,
    invoice_id: str,
    new_status: Union[InvoiceStatus, str],
    *,
    now: Optional[int] = None,
) -> StatusTransition:
    """Move an invoice to ``new_status`` and apply the paid-entry side effect.

    Any status may follow any other. Entering ``paid`` decrements the stock
    of every referenced product by the line quantities, floored at zero,
    according to the configured :class:`PaidStockPolicy`. Leaving ``paid``
    never restocks. The status, ``paid_at``, and stock writes form a single
    store call, and the projection is updated only after it succeeds.

    Args:
        context (RuntimeContext): Runtime context.
        invoice_id (str): Invoice to update.
        new_status (InvoiceStatus | str): Requested status.
        now (int | None): Override for the payment timestamp.

    Returns:
        StatusTransition: What changed, including the updated invoice.

    Raises:
        ValidationError: If ``new_status`` is not a known status.
        MissingReferenceError: If the invoice is unknown.
        StoreError: If the store is unavailable or the write fails.
    """
    status = parse_status(new_status)
    invoice = get_invoice(context, invoice_id)
    products = _load_products(context, invoice.line_items)
    transition = plan_status_transition(
        invoice,
        status,
        products,
        policy=context.settings.paid_stock_policy,
        now=_resolve_timestamp(now),
    )
    for product_id in transition.skipped_products:
        log.warning(
            "Invoice '%s' references missing product '%s'; stock left unchanged",
            invoice_id,
            product_id,
        )

    context.store.update_invoice_status(
        invoice_id,
        status,
        paid_at=transition.invoice.paid_at,
        stock_levels=transition.stock_levels,
    )
    context.projection.upsert(EntityKind.INVOICE, transition.invoice)
    _project_stock_levels(context, products, transition.stock_levels)
    log.info(
        "Invoice '%s' status %s -> %s (stock decremented: %s)",
        invoice_id,
        transition.previous_status.value,
        status.value,
        "yes" if transition.paid_entry else "no",
    )
    return transition
