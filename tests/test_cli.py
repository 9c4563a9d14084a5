"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from pathlib import Path

import pytest

from bizledger import cli, core_logic
from bizledger.record_store import StoreOperationFailed, StoreUnavailable

WRITE_COMMANDS = {
    "add-customer",
    "update-customer",
    "delete-customer",
    "add-product",
    "update-product",
    "delete-product",
    "add-expense",
    "update-expense",
    "delete-expense",
    "create-invoice",
    "set-status",
}

READ_COMMANDS = {
    "customers",
    "products",
    "invoices",
    "expenses",
    "dashboard",
    "revenue",
    "top-products",
    "month-summary",
    "expense-breakdown",
}


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "bizledger"


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire write, read, and init commands."""

    command_table = cli.configure_subcommands(cli_parser)
    expected = WRITE_COMMANDS | READ_COMMANDS | {"init"}
    assert set(command_table) == expected
    assert _registered_choices(cli_parser) == expected
    assert command_table["init"].needs_context is False


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) for spec in specs.values())
    assert WRITE_COMMANDS <= set(subparsers_action.choices)


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    assert READ_COMMANDS <= set(subparsers_action.choices)


def test_create_invoice_command_accepts_repeated_items():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_create_invoice_command()
    spec.register(subparsers)

    namespace = parser.parse_args(
        [
            "create-invoice",
            "--customer-id",
            "C1",
            "--item",
            "P1:2",
            "--item",
            "P2:1",
            "--due-date",
            "2024-04-01",
        ]
    )

    assert namespace.items == ["P1:2", "P2:1"]
    assert namespace.status == "draft"
    assert namespace.total is None


def test_set_status_command_rejects_unknown_status(capsys):
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    cli.register_set_status_command().register(subparsers)

    with pytest.raises(SystemExit):
        parser.parse_args(["set-status", "--invoice-id", "I1", "--status", "void"])


def test_delete_commands_share_entity_id_argument():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    cli.register_delete_command("expense", cli.run_delete_expense).register(subparsers)

    namespace = parser.parse_args(["delete-expense", "--expense-id", "E1"])
    assert namespace.entity_id == "E1"


# ---------------------------------------------------------------------------
# Dispatch and translation
# ---------------------------------------------------------------------------


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_calls_executor(command_spec_iterable):
    calls = []
    spec = cli.CommandSpec("alpha", "help", lambda subparsers: None, lambda ctx, args: calls.append(args) or 0)
    args = argparse.Namespace(command="alpha")

    assert cli.dispatch_command(None, args, {"alpha": spec}) == 0
    assert calls == [args]


def test_dispatch_command_unknown_raises(command_spec_iterable):
    with pytest.raises(KeyError):
        cli.dispatch_command(None, argparse.Namespace(command="omega"), cli.build_command_table(command_spec_iterable))


@pytest.mark.parametrize(("raw", "expected"), [("P1:2", ("P1", 2)), ("ns:P1:10", ("ns:P1", 10))])
def test_parse_item_splits_on_last_colon(raw, expected):
    assert cli.parse_item(raw) == expected


@pytest.mark.parametrize("raw", ["P1", ":3", "P1:x"])
def test_parse_item_rejects_malformed_values(raw):
    with pytest.raises(ValueError):
        cli.parse_item(raw)


def test_translate_add_product_converts_price_to_cents():
    args = argparse.Namespace(
        product_id=None, name="Pen", price="12.345", stock=4, description="", category="Office"
    )
    command = cli.translate_add_product(args)
    assert command.price == 1235
    assert command.stock_quantity == 4


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (core_logic.ValidationError("bad"), 2),
        (core_logic.MissingReferenceError("missing"), 2),
        (FileNotFoundError("config.ini"), 3),
        (StoreUnavailable("closed"), 4),
        (StoreOperationFailed("rejected"), 4),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


# ---------------------------------------------------------------------------
# End-to-end through main
# ---------------------------------------------------------------------------


def test_main_init_creates_workbook(tmp_path: Path):
    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = shop.xlsx\nBusinessName = Shop\nSchemaVersion = 1.0.0\n",
        encoding="utf-8",
    )

    assert cli.main(["--config", str(config_path), "init"]) == 0
    assert (tmp_path / "shop.xlsx").exists()
    assert cli.main(["--config", str(config_path), "init"]) == 1


def test_main_records_and_reports(config_file: Path, capsys):
    """Commands persist through the workbook between separate invocations."""

    base = ["--config", str(config_file)]
    assert cli.main([*base, "add-product", "--product-id", "P1", "--name", "Pen", "--price", "10.00", "--stock", "10"]) == 0
    assert cli.main([*base, "add-customer", "--customer-id", "C1", "--name", "Asha", "--email", "asha@example.com"]) == 0
    assert (
        cli.main(
            [*base, "create-invoice", "--invoice-id", "I1", "--customer-id", "C1", "--item", "P1:4", "--due-date", "2024-04-01"]
        )
        == 0
    )
    assert cli.main([*base, "set-status", "--invoice-id", "I1", "--status", "paid"]) == 0
    capsys.readouterr()

    assert cli.main([*base, "products"]) == 0
    output = capsys.readouterr().out
    assert "P1\tPen" in output
    assert output.rstrip().endswith("\t6")


def test_main_returns_validation_exit_code(config_file: Path):
    code = cli.main(
        ["--config", str(config_file), "add-customer", "--name", "Asha", "--email", "not-an-email"]
    )
    assert code == 2


def test_main_missing_config_returns_file_error(tmp_path: Path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "customers"]) == 3


def test_main_missing_workbook_returns_store_error(tmp_path: Path):
    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = absent.xlsx\nBusinessName = Shop\nSchemaVersion = 1.0.0\n",
        encoding="utf-8",
    )
    assert cli.main(["--config", str(config_path), "dashboard"]) == 4


def test_main_revenue_prints_year_total(config_file: Path, capsys):
    base = ["--config", str(config_file)]
    assert cli.main([*base, "add-product", "--product-id", "P1", "--name", "Pen", "--price", "10.00", "--stock", "10"]) == 0
    assert (
        cli.main(
            [
                *base,
                "create-invoice",
                "--invoice-id",
                "I1",
                "--customer-id",
                "C1",
                "--item",
                "P1:4",
                "--due-date",
                "2024-04-01",
                "--status",
                "paid",
            ]
        )
        == 0
    )
    capsys.readouterr()

    assert cli.main([*base, "revenue"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()

    assert len(lines) == 13
    assert lines[-1].startswith("Total ")
    assert lines[-1].endswith("₹40.00")
