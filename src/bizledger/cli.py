"""Command-line entry points for bizledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Monetary arguments are given as display amounts
(``12.50``) and dates as ``YYYY-MM-DD``; both are converted by the codec.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import codec, core_logic, data_manager, log, reports, setup_excel
from .constants import InvoiceStatus
from .record_store import StoreError

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    Commands with ``needs_context`` unset run before any workbook is opened
    and receive ``None`` as their context.
    """

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int]
    needs_context: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bizledger",
        description="Manage customers, products, invoices, and expenses.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    init_spec = register_init_command()
    init_spec.register(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values(), init_spec])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int],
    arguments: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
    *,
    needs_context: bool = True,
) -> CommandSpec:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=execute,
        needs_context=needs_context,
    )


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands."""
    specs = {
        "add-customer": register_add_customer_command(),
        "update-customer": register_update_customer_command(),
        "delete-customer": register_delete_command("customer", run_delete_customer),
        "add-product": register_add_product_command(),
        "update-product": register_update_product_command(),
        "delete-product": register_delete_command("product", run_delete_product),
        "add-expense": register_add_expense_command(),
        "update-expense": register_update_expense_command(),
        "delete-expense": register_delete_command("expense", run_delete_expense),
        "create-invoice": register_create_invoice_command(),
        "set-status": register_set_status_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "customers": register_customers_command(),
        "products": register_products_command(),
        "invoices": register_invoices_command(),
        "expenses": _simple_spec("expenses", "List expenses.", run_list_expenses),
        "dashboard": _simple_spec("dashboard", "Display headline metrics.", run_dashboard),
        "revenue": register_revenue_command(),
        "top-products": _simple_spec("top-products", "Rank products by quantity sold.", run_top_products),
        "month-summary": register_month_command(
            "month-summary", "Display revenue, expenses, and profit for a month.", run_month_summary
        ),
        "expense-breakdown": register_month_command(
            "expense-breakdown", "Display expenses per category for a month.", run_expense_breakdown
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_init_command() -> CommandSpec:
    """Register ``init``, which creates the workbook named in config.ini."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--force", action="store_true", help="Overwrite an existing workbook.")

    return _simple_spec(
        "init",
        "Create an empty master workbook.",
        run_init,
        arguments,
        needs_context=False,
    )


def _customer_arguments(parser: argparse.ArgumentParser, *, with_id: bool) -> None:
    parser.add_argument("--customer-id", required=with_id, default=None)
    parser.add_argument("--name", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--phone", default="")
    parser.add_argument("--address", default="")


def register_add_customer_command() -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    return _simple_spec(
        "add-customer",
        "Register a new customer.",
        run_add_customer,
        lambda parser: _customer_arguments(parser, with_id=False),
    )


def register_update_customer_command() -> CommandSpec:
    return _simple_spec(
        "update-customer",
        "Replace a customer's contact details.",
        run_update_customer,
        lambda parser: _customer_arguments(parser, with_id=True),
    )


def _product_arguments(parser: argparse.ArgumentParser, *, with_id: bool) -> None:
    parser.add_argument("--product-id", required=with_id, default=None)
    parser.add_argument("--name", required=True)
    parser.add_argument("--price", required=True, help="Unit price, e.g. 10.00")
    parser.add_argument("--stock", required=True, type=int)
    parser.add_argument("--description", default="")
    parser.add_argument("--category", default="")


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    return _simple_spec(
        "add-product",
        "Register a new product.",
        run_add_product,
        lambda parser: _product_arguments(parser, with_id=False),
    )


def register_update_product_command() -> CommandSpec:
    return _simple_spec(
        "update-product",
        "Replace a product's details and stock level.",
        run_update_product,
        lambda parser: _product_arguments(parser, with_id=True),
    )


def _expense_arguments(parser: argparse.ArgumentParser, *, with_id: bool) -> None:
    parser.add_argument("--expense-id", required=with_id, default=None)
    parser.add_argument("--category", required=True)
    parser.add_argument("--amount", required=True, help="Amount, e.g. 500.00")
    parser.add_argument("--date", required=True, help="YYYY-MM-DD")
    parser.add_argument("--description", default="")


def register_add_expense_command() -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    return _simple_spec(
        "add-expense",
        "Record an expense.",
        run_add_expense,
        lambda parser: _expense_arguments(parser, with_id=False),
    )


def register_update_expense_command() -> CommandSpec:
    return _simple_spec(
        "update-expense",
        "Replace an expense's details.",
        run_update_expense,
        lambda parser: _expense_arguments(parser, with_id=True),
    )


def register_delete_command(
    kind: str,
    execute: Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int],
) -> CommandSpec:
    """Register ``delete-<kind>`` taking a single ``--<kind>-id``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(f"--{kind}-id", dest="entity_id", required=True)

    return _simple_spec(f"delete-{kind}", f"Delete a {kind}.", execute, arguments)


def register_create_invoice_command() -> CommandSpec:
    """Register the parser and executor for ``create-invoice``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--invoice-id", default=None)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            metavar="PRODUCT_ID:QUANTITY",
            help="Line item; repeat for several items.",
        )
        parser.add_argument("--due-date", required=True, help="YYYY-MM-DD")
        parser.add_argument(
            "--status",
            choices=[member.value for member in InvoiceStatus],
            default=InvoiceStatus.DRAFT.value,
        )
        parser.add_argument("--total", default=None, help="Expected total; computed when omitted.")

    return _simple_spec("create-invoice", "Issue an invoice.", run_create_invoice, arguments)


def register_set_status_command() -> CommandSpec:
    """Register the parser and executor for ``set-status``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--invoice-id", required=True)
        parser.add_argument("--status", choices=[member.value for member in InvoiceStatus], required=True)

    return _simple_spec("set-status", "Change an invoice's status.", run_set_status, arguments)


def register_customers_command() -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None, help="Filter by name or email.")

    return _simple_spec("customers", "List customers.", run_list_customers, arguments)


def register_products_command() -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None, help="Filter by name or category.")

    return _simple_spec("products", "List products.", run_list_products, arguments)


def register_invoices_command() -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--status",
            choices=["all", *[member.value for member in InvoiceStatus]],
            default="all",
        )
        parser.add_argument("--customer-id", default=None)

    return _simple_spec("invoices", "List invoices.", run_list_invoices, arguments)


def register_revenue_command() -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--year", type=int, default=None)

    return _simple_spec("revenue", "Display monthly paid revenue for a year.", run_revenue, arguments)


def register_month_command(
    name: str,
    help_text: str,
    execute: Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int],
) -> CommandSpec:
    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--year", type=int, required=True)
        parser.add_argument("--month", type=int, required=True, choices=range(1, 13))

    return _simple_spec(name, help_text, execute, arguments)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: Optional[core_logic.RuntimeContext],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def _date_arg(context: core_logic.RuntimeContext, raw: str) -> int:
    return codec.date_to_nanoseconds(raw, context.settings.tz)


def parse_item(raw: str) -> tuple[str, int]:
    """Split ``PRODUCT_ID:QUANTITY`` into its parts.

    Raises:
        ValueError: If the separator is missing or the quantity is not an
            integer.
    """
    product_id, separator, quantity = raw.rpartition(":")
    if not separator or not product_id:
        raise ValueError(f"Line item must look like PRODUCT_ID:QUANTITY, got {raw!r}")
    return product_id, int(quantity)


def translate_add_customer(args: argparse.Namespace) -> core_logic.CreateCustomerCommand:
    return core_logic.CreateCustomerCommand(
        customer_id=args.customer_id,
        name=args.name,
        email=args.email,
        phone=args.phone,
        address=args.address,
    )


def translate_update_customer(args: argparse.Namespace) -> core_logic.UpdateCustomerCommand:
    return core_logic.UpdateCustomerCommand(
        customer_id=args.customer_id,
        name=args.name,
        email=args.email,
        phone=args.phone,
        address=args.address,
    )


def translate_add_product(args: argparse.Namespace) -> core_logic.AddProductCommand:
    """Translate CLI args into an add-product command object."""
    return core_logic.AddProductCommand(
        product_id=args.product_id,
        name=args.name,
        price=codec.decimal_to_cents(args.price),
        stock_quantity=args.stock,
        description=args.description,
        category=args.category,
    )


def translate_update_product(args: argparse.Namespace) -> core_logic.UpdateProductCommand:
    return core_logic.UpdateProductCommand(
        product_id=args.product_id,
        name=args.name,
        price=codec.decimal_to_cents(args.price),
        stock_quantity=args.stock,
        description=args.description,
        category=args.category,
    )


def translate_add_expense(
    context: core_logic.RuntimeContext, args: argparse.Namespace
) -> core_logic.AddExpenseCommand:
    return core_logic.AddExpenseCommand(
        expense_id=args.expense_id,
        category=args.category,
        amount=codec.decimal_to_cents(args.amount),
        date=_date_arg(context, args.date),
        description=args.description,
    )


def translate_update_expense(
    context: core_logic.RuntimeContext, args: argparse.Namespace
) -> core_logic.UpdateExpenseCommand:
    return core_logic.UpdateExpenseCommand(
        expense_id=args.expense_id,
        category=args.category,
        amount=codec.decimal_to_cents(args.amount),
        date=_date_arg(context, args.date),
        description=args.description,
    )


def translate_create_invoice(
    context: core_logic.RuntimeContext, args: argparse.Namespace
) -> core_logic.CreateInvoiceCommand:
    """Translate CLI args into an invoice command, snapshotting line items."""
    line_items = tuple(
        core_logic.build_line_item(context, product_id, quantity)
        for product_id, quantity in map(parse_item, args.items)
    )
    return core_logic.CreateInvoiceCommand(
        invoice_id=args.invoice_id,
        customer_id=args.customer_id,
        line_items=line_items,
        due_date=_date_arg(context, args.due_date),
        status=InvoiceStatus(args.status),
        total_amount=codec.decimal_to_cents(args.total) if args.total is not None else None,
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _money(context: core_logic.RuntimeContext, cents: int) -> str:
    return codec.format_currency(cents, context.settings.currency_symbol)


def _day(context: core_logic.RuntimeContext, nanos: int) -> str:
    return codec.format_date(nanos, context.settings.tz)


def run_init(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Create the workbook named by the configuration file."""
    config_path = data_manager.find_config_file(getattr(args, "config", None))
    output = setup_excel.run_from_config(Path(config_path), overwrite=args.force)
    print(f"Created master workbook at '{output}'")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.create_customer(context, translate_add_customer(args))
    print(customer.customer_id)
    return 0


def run_update_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_customer(context, translate_update_customer(args))
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_customer(context, args.entity_id)
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, translate_add_product(args))
    print(product.product_id)
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_product(context, translate_update_product(args))
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, args.entity_id)
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = core_logic.add_expense(context, translate_add_expense(context, args))
    print(expense.expense_id)
    return 0


def run_update_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_expense(context, translate_update_expense(context, args))
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_expense(context, args.entity_id)
    return 0


def run_create_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice creation workflow via the BLL."""
    invoice = core_logic.create_invoice(context, translate_create_invoice(context, args))
    print(f"{invoice.invoice_id} {invoice.status.value} {_money(context, invoice.total_amount)}")
    return 0


def run_set_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a status transition via the BLL."""
    transition = core_logic.transition_invoice_status(context, args.invoice_id, args.status)
    print(f"{args.invoice_id}: {transition.previous_status.value} -> {transition.new_status.value}")
    for product_id, quantity in transition.stock_levels.items():
        print(f"  stock {product_id}: {quantity}")
    return 0


def run_list_customers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customers = core_logic.list_customers(context)
    if args.search:
        customers = reports.search_customers(customers, args.search)
    for customer in customers:
        print(f"{customer.customer_id}\t{customer.name}\t{customer.email}\t{customer.phone}")
    return 0


def run_list_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    products = core_logic.list_products(context)
    if args.search:
        products = reports.search_products(products, args.search)
    for product in products:
        print(
            f"{product.product_id}\t{product.name}\t{product.category}\t"
            f"{_money(context, product.price)}\t{product.stock_quantity}"
        )
    return 0


def run_list_invoices(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    invoices = reports.filter_invoices_by_status(core_logic.list_invoices(context), args.status)
    if args.customer_id:
        customer = core_logic.get_customer(context, args.customer_id)
        summary = reports.customer_summary(customer, invoices)
        invoices = list(summary.invoices)
        print(f"{customer.name}: {len(invoices)} invoices, paid {_money(context, summary.total_paid)}")
    for invoice in invoices:
        print(
            f"{invoice.invoice_id}\t{invoice.customer_id}\t{invoice.status.value}\t"
            f"{_money(context, invoice.total_amount)}\t{_day(context, invoice.created_at)}\t"
            f"due {_day(context, invoice.due_date)}"
        )
    return 0


def run_list_expenses(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for expense in core_logic.list_expenses(context):
        print(
            f"{expense.expense_id}\t{_day(context, expense.date)}\t{expense.category}\t"
            f"{_money(context, expense.amount)}\t{expense.description}"
        )
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the headline dashboard metrics."""
    metrics = reports.build_dashboard(context.projection.snapshot(), tz=context.settings.tz)
    print(context.settings.business_name)
    print(f"Total revenue:        {_money(context, metrics.total_revenue)}")
    print(f"Active customers:     {metrics.active_customers}")
    print(f"Low stock products:   {metrics.low_stock_products}")
    print(f"Unpaid invoices:      {metrics.unpaid_invoices}")
    print(f"Profit this month:    {_money(context, metrics.current_month_profit)}")
    for invoice in metrics.recent_invoices:
        print(f"  {invoice.invoice_id}\t{invoice.status.value}\t{_money(context, invoice.total_amount)}")
    return 0


def run_revenue(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    invoices = core_logic.list_invoices(context)
    tz = context.settings.tz
    year = args.year if args.year is not None else reports.available_years(invoices, tz=tz)[0]
    series = reports.monthly_revenue(invoices, year, tz)
    for entry in series:
        print(f"{entry.month:<10} {_money(context, entry.amount)}")
    print(f"{'Total ' + str(year):<10} {_money(context, sum(entry.amount for entry in series))}")
    return 0


def run_top_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for rank, sales in enumerate(reports.top_products(core_logic.list_invoices(context)), start=1):
        print(f"{rank}. {sales.name}\t{sales.quantity}\t{_money(context, sales.revenue)}")
    return 0


def run_month_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = reports.month_summary(
        core_logic.list_invoices(context),
        core_logic.list_expenses(context),
        args.year,
        args.month,
        context.settings.tz,
    )
    print(f"Revenue:  {_money(context, summary.revenue)}")
    print(f"Expenses: {_money(context, summary.expenses)}")
    print(f"Profit:   {_money(context, summary.profit)}")
    return 0


def run_expense_breakdown(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    breakdown = reports.expense_breakdown(
        core_logic.list_expenses(context), args.year, args.month, context.settings.tz
    )
    for category, amount in breakdown:
        print(f"{category:<20} {_money(context, amount)}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, StoreError):
        log.error("Store operation failed: %s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context: Optional[core_logic.RuntimeContext] = None
    try:
        if command_table[args.command].needs_context:
            context = load_runtime_context(getattr(args, "config", None))
            core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
    finally:
        if context is not None:
            context.store.close()
