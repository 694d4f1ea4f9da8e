"""Command-line entry points for the shop ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the ledger
engine, and printing the results. Keeping the CLI thin ensures the same
parser configuration can be reused by tests, scripts, or any alternative
front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import backup, core_logic, exporters, log, reporting
from .constants import ExpenseCategory, PaymentType, ReportPeriod


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-ledger",
        description="Command-line tools for the shop ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the current directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and purchases."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_command("delete-product", "product", run_delete_product),
        "add-customer": register_add_party_command("add-customer", "customer", run_add_customer),
        "delete-customer": register_delete_command("delete-customer", "customer", run_delete_customer),
        "add-supplier": register_add_party_command("add-supplier", "supplier", run_add_supplier),
        "delete-supplier": register_delete_command("delete-supplier", "supplier", run_delete_supplier),
        "sale": register_sale_command(subparsers),
        "delete-sale": register_delete_command("delete-sale", "sale", run_delete_sale),
        "purchase": register_purchase_command(subparsers),
        "delete-purchase": register_delete_command("delete-purchase", "purchase", run_delete_purchase),
        "expense": register_expense_command(subparsers),
        "delete-expense": register_delete_command("delete-expense", "expense", run_delete_expense),
        "pay-customer": register_payment_command("pay-customer", "customer", run_pay_customer),
        "pay-supplier": register_payment_command("pay-supplier", "supplier", run_pay_supplier),
        "restore": register_restore_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and exports."""
    specs = {
        "daily": register_daily_command(subparsers),
        "report": register_report_command(subparsers),
        "inventory": register_inventory_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "debts": register_debts_command(subparsers),
        "backup": register_backup_command(subparsers),
        "export-report": register_export_report_command(subparsers),
        "invoice": register_invoice_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_date_and_notes(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--date", default=None, help="YYYY-MM-DD (default: today).")
    parser.add_argument("--notes", dest="notes", default=None)


def _add_period_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--period",
        choices=[member.value for member in ReportPeriod],
        default=ReportPeriod.DAILY.value,
    )
    parser.add_argument("--start", default=None, help="Start date for a custom period.")
    parser.add_argument("--end", default=None, help="End date for a custom period.")


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--buy-price", required=True)
        parser.add_argument("--sell-price", required=True)
        parser.add_argument("--stock", default="0")
        parser.add_argument("--unit", default="piece")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product, mutates=True)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Edit the name, prices, stock, or unit of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--buy-price", default=None)
        parser.add_argument("--sell-price", default=None)
        parser.add_argument("--stock", default=None)
        parser.add_argument("--unit", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product, mutates=True)


def register_add_party_command(
    name: str,
    label: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register ``add-customer`` or ``add-supplier``."""
    help_text = f"Register a new {label}."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--address", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=True)


def register_delete_command(
    name: str,
    label: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register a ``delete-*`` command taking a single ``--<label>-id``."""
    help_text = f"Delete a {label} by id."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(f"--{label}-id", dest="record_id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--unit-price", default=None, help="Defaults to the product's sell price.")
        parser.add_argument(
            "--payment-type",
            choices=[member.value for member in PaymentType],
            default=PaymentType.CASH.value,
        )
        parser.add_argument("--customer-id", default=None)
        _add_date_and_notes(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a purchase transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--unit-price", default=None, help="Defaults to the product's buy price.")
        parser.add_argument(
            "--payment-type",
            choices=[member.value for member in PaymentType],
            default=PaymentType.CASH.value,
        )
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--supplier-name", default=None, help="Free-text supplier for cash purchases.")
        _add_date_and_notes(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase, mutates=True)


def register_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expense``."""
    name = "expense"
    help_text = "Record an operating expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in ExpenseCategory],
            default=ExpenseCategory.OTHER.value,
        )
        _add_date_and_notes(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expense, mutates=True)


def register_payment_command(
    name: str,
    label: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register ``pay-customer`` or ``pay-supplier``."""
    help_text = f"Record a payment settling {label} debt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(f"--{label}-id", dest="party_id", required=True)
        parser.add_argument("--amount", required=True)
        _add_date_and_notes(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=True)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""
    name = "restore"
    help_text = "Replace collections with the content of a JSON backup."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restore, mutates=True)


def register_daily_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``daily``."""
    name = "daily"
    help_text = "Display the totals of a single day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", default=None, help="YYYY-MM-DD (default: today).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_daily_report)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display totals, the per-day breakdown, and top products of a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_period_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_range_report)


def register_inventory_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``inventory``."""
    name = "inventory"
    help_text = "Display stock levels and inventory value."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_inventory_report)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display today's figures, all-time totals, and stock alerts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_debts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``debts``."""
    name = "debts"
    help_text = "Display outstanding balances, or the statement of one counterparty."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        group = parser.add_mutually_exclusive_group()
        group.add_argument("--customer-id", default=None)
        group.add_argument("--supplier-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_debts_report)


def register_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backup``."""
    name = "backup"
    help_text = "Export every collection to a JSON backup file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_backup)


def register_export_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-report``."""
    name = "export-report"
    help_text = "Write the accounting report of a period as PDF."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_period_arguments(parser)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_report)


def register_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoice``."""
    name = "invoice"
    help_text = "Write the invoice of a sale as PDF."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoice)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
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


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_sale(args: argparse.Namespace, default_price: Any = None) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        product_id=args.product_id,
        quantity=args.quantity,
        unit_price=args.unit_price if args.unit_price is not None else default_price,
        payment_type=PaymentType(args.payment_type),
        date=args.date,
        customer_id=args.customer_id,
        notes=args.notes,
    )


def translate_purchase(args: argparse.Namespace, default_price: Any = None) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        product_id=args.product_id,
        quantity=args.quantity,
        unit_price=args.unit_price if args.unit_price is not None else default_price,
        payment_type=PaymentType(args.payment_type),
        date=args.date,
        supplier_id=args.supplier_id,
        supplier_name=args.supplier_name,
        notes=args.notes,
    )


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    return core_logic.ExpenseCommand(
        description=args.description,
        amount=args.amount,
        category=ExpenseCategory(args.category),
        date=args.date,
        notes=args.notes,
    )


def translate_customer_payment(args: argparse.Namespace) -> core_logic.CustomerPaymentCommand:
    return core_logic.CustomerPaymentCommand(
        customer_id=args.party_id,
        amount=args.amount,
        date=args.date,
        notes=args.notes,
    )


def translate_supplier_payment(args: argparse.Namespace) -> core_logic.SupplierPaymentCommand:
    return core_logic.SupplierPaymentCommand(
        supplier_id=args.party_id,
        amount=args.amount,
        date=args.date,
        notes=args.notes,
    )


def translate_period(args: argparse.Namespace) -> tuple[str, str]:
    """Resolve ``--period``/``--start``/``--end`` into inclusive bounds."""
    try:
        return reporting.period_bounds(args.period, start_date=args.start, end_date=args.end)
    except ValueError as exc:
        raise core_logic.InvalidInputError(str(exc)) from exc


def _money(context: core_logic.RuntimeContext, amount: Any) -> str:
    return f"{exporters.format_money(amount)} {context.settings.currency}"


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the ledger engine."""
    product = core_logic.add_product(
        context,
        name=args.name,
        buy_price=args.buy_price,
        sell_price=args.sell_price,
        stock=args.stock,
        unit=args.unit,
    )
    print(f"Added product {product.product_id} ({product.name})")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the ledger engine."""
    product = core_logic.update_product(
        context,
        args.product_id,
        name=args.name,
        buy_price=args.buy_price,
        sell_price=args.sell_price,
        stock=args.stock,
        unit=args.unit,
    )
    print(f"Updated product {product.product_id} ({product.name})")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.delete_product(context, args.record_id)
    print(f"Deleted product {product.product_id}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.add_customer(
        context, name=args.name, phone=args.phone, address=args.address, notes=args.notes
    )
    print(f"Added customer {customer.customer_id} ({customer.name})")
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.delete_customer(context, args.record_id)
    print(f"Deleted customer {customer.customer_id} and its payments")
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.add_supplier(
        context, name=args.name, phone=args.phone, address=args.address, notes=args.notes
    )
    print(f"Added supplier {supplier.supplier_id} ({supplier.name})")
    return 0


def run_delete_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.delete_supplier(context, args.record_id)
    print(f"Deleted supplier {supplier.supplier_id} and its payments")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the ledger engine."""
    default_price = None
    if args.unit_price is None:
        default_price = core_logic.get_product(context, args.product_id).sell_price
    sale = core_logic.record_sale(context, translate_sale(args, default_price))
    print(f"Recorded sale {sale.sale_id}: {sale.quantity} x {sale.product_name} = {_money(context, sale.total_price)}")
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.delete_sale(context, args.record_id)
    print(f"Deleted sale {sale.sale_id}")
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the ledger engine."""
    default_price = None
    if args.unit_price is None:
        default_price = core_logic.get_product(context, args.product_id).buy_price
    purchase = core_logic.record_purchase(context, translate_purchase(args, default_price))
    print(
        f"Recorded purchase {purchase.purchase_id}: {purchase.quantity} x {purchase.product_name}"
        f" = {_money(context, purchase.total_price)}"
    )
    return 0


def run_delete_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    purchase = core_logic.delete_purchase(context, args.record_id)
    print(f"Deleted purchase {purchase.purchase_id}")
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expense workflow via the ledger engine."""
    expense = core_logic.record_expense(context, translate_expense(args))
    print(f"Recorded expense {expense.expense_id}: {expense.description} = {_money(context, expense.amount)}")
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = core_logic.delete_expense(context, args.record_id)
    print(f"Deleted expense {expense.expense_id}")
    return 0


def run_pay_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer payment workflow via the ledger engine."""
    payment = core_logic.record_customer_payment(context, translate_customer_payment(args))
    balance = core_logic.get_customer(context, payment.customer_id).total_debt
    print(f"Recorded payment {payment.payment_id} from {payment.customer_name}; balance {_money(context, balance)}")
    return 0


def run_pay_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the supplier payment workflow via the ledger engine."""
    payment = core_logic.record_supplier_payment(context, translate_supplier_payment(args))
    balance = core_logic.get_supplier(context, payment.supplier_id).total_debt
    print(f"Recorded payment {payment.payment_id} to {payment.supplier_name}; balance {_money(context, balance)}")
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restore workflow via the backup gateway."""
    restored = backup.restore_backup(context, args.file)
    print(f"Restored {len(restored)} collection(s): {', '.join(item.value for item in restored) or 'none'}")
    return 0


def _print_totals(context: core_logic.RuntimeContext, totals: reporting.Totals) -> None:
    print(f"  Sales:      {_money(context, totals.total_sales)} ({totals.sales_count})")
    print(f"  Purchases:  {_money(context, totals.total_purchases)} ({totals.purchases_count})")
    print(f"  Expenses:   {_money(context, totals.total_expenses)}")
    print(f"  Net profit: {_money(context, totals.total_profit)}")


def run_daily_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily summary workflow."""
    day = core_logic.coerce_date(args.date)
    summary = reporting.daily_summary(context, day)
    print(f"Daily summary for {summary.date}")
    _print_totals(context, summary.totals)
    return 0


def run_range_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the period report workflow."""
    start, end = translate_period(args)
    report = reporting.range_report(context, start, end)
    print(f"Report {report.start_date} to {report.end_date}")
    _print_totals(context, report.totals)
    print("Per day:")
    for day in report.daily:
        print(
            f"  {day.date}  sales {exporters.format_money(day.total_sales)}"
            f"  purchases {exporters.format_money(day.total_purchases)}"
            f"  expenses {exporters.format_money(day.total_expenses)}"
            f"  profit {exporters.format_money(day.total_profit)}"
        )
    if report.top_products:
        print("Top products:")
        for rank, item in enumerate(report.top_products, start=1):
            print(f"  {rank:>2}. {item.name}  qty {item.quantity}  {_money(context, item.total)}")
    return 0


def run_inventory_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    snapshot = reporting.inventory_snapshot(context)
    if not snapshot.items:
        print("No products")
    for item in snapshot.items:
        flag = "  LOW" if item.low_stock else ""
        print(f"{item.product_id}  {item.name}  {item.stock} {item.unit}  value {_money(context, item.value)}{flag}")
    print(f"Inventory value: {_money(context, snapshot.total_value)} ({snapshot.low_stock_count} low stock)")
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the dashboard workflow."""
    stats = reporting.dashboard_stats(context)
    print(f"Today ({stats.today.date})")
    _print_totals(context, stats.today.totals)
    print("All time")
    _print_totals(context, stats.overall)
    print(
        f"Products: {stats.inventory.products_count}  low stock: {stats.inventory.low_stock_count}"
        f"  inventory value: {_money(context, stats.inventory.total_value)}"
    )
    return 0


def run_debts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the outstanding debts reporting workflow."""
    if args.customer_id:
        statement = reporting.customer_statement(context, args.customer_id)
        print(f"{statement.customer.name}: balance {_money(context, statement.customer.total_debt)}")
        for sale in statement.sales:
            print(f"  {sale.date}  sale {sale.sale_id}  {sale.payment_type}  {_money(context, sale.total_price)}")
        for payment in statement.payments:
            print(f"  {payment.date}  payment {payment.payment_id}  {_money(context, payment.amount)}")
        return 0
    if args.supplier_id:
        statement = reporting.supplier_statement(context, args.supplier_id)
        print(f"{statement.supplier.name}: balance {_money(context, statement.supplier.total_debt)}")
        for purchase in statement.purchases:
            print(
                f"  {purchase.date}  purchase {purchase.purchase_id}  {purchase.payment_type}"
                f"  {_money(context, purchase.total_price)}"
            )
        for payment in statement.payments:
            print(f"  {payment.date}  payment {payment.payment_id}  {_money(context, payment.amount)}")
        return 0

    overview = reporting.debt_overview(context)
    print(f"Customers owe: {_money(context, overview.total_customer_debt)}")
    for customer in overview.customers:
        print(f"  {customer.customer_id}  {customer.name}  {_money(context, customer.total_debt)}")
    print(f"Owed to suppliers: {_money(context, overview.total_supplier_debt)}")
    for supplier in overview.suppliers:
        print(f"  {supplier.supplier_id}  {supplier.name}  {_money(context, supplier.total_debt)}")
    return 0


def run_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the backup export workflow."""
    target = backup.export_backup(context, args.output)
    print(f"Backup written to {target}")
    return 0


def run_export_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the PDF report workflow."""
    start, end = translate_period(args)
    report = reporting.range_report(context, start, end)
    target = args.output or context.settings.export_dir / f"report-{start}-to-{end}.pdf"
    exporters.export_report_pdf(
        target,
        report,
        reporting.inventory_snapshot(context),
        shop_name=context.settings.shop_name,
        currency=context.settings.currency,
    )
    print(f"Report written to {target}")
    return 0


def run_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice workflow."""
    sale = core_logic.get_sale(context, args.sale_id)
    target = args.output or context.settings.export_dir / f"invoice-{sale.sale_id}.pdf"
    exporters.export_invoice_pdf(
        target, sale, shop_name=context.settings.shop_name, currency=context.settings.currency
    )
    print(f"Invoice written to {target}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.MissingReferenceError):
        return 4
    if isinstance(error, core_logic.BusinessRuleViolation):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    if isinstance(error, core_logic.StorageFailure):
        return 5
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = command_table[args.command]
        if spec.mutates:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


def run() -> None:  # pragma: no cover - console script shim
    sys.exit(main())
