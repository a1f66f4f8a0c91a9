"""Command-line entry points for the Shop Tracker toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into business-layer calls and printing their results.
Keeping the CLI thin ensures the same parser configuration can be reused by
tests, scripts, or any alternative front-end that wants to expose the package
capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence
import sys

from . import core_logic, exporter, log, reports
from .constants import Role
from .data_manager import ProductRow, PurchaseRow, SalesTransactionRow, UserRow


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_RULE_VIOLATION = 2
EXIT_MISSING_FILE = 3
EXIT_NOT_SAVED = 4


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, core_logic.Actor, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-tracker",
        description="Command-line tools for the Shop Tracker workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the current directory by default).",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="Username to act as (defaults to [Defaults] DefaultUser).",
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
        "remove-product": register_remove_product_command(subparsers),
        "add-user": register_add_user_command(subparsers),
        "update-user": register_update_user_command(subparsers),
        "remove-user": register_remove_user_command(subparsers),
        "sale": register_sale_command(subparsers),
        "purchase": register_purchase_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "users": register_users_command(subparsers),
        "sales": register_sales_command(subparsers),
        "purchases": register_purchases_command(subparsers),
        "pnl": register_pnl_command(subparsers),
        "best-sellers": register_best_sellers_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_iso_date(text: str) -> date:
    """argparse ``type`` for ``YYYY-MM-DD`` values."""
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date '{text}', expected YYYY-MM-DD") from exc


def parse_sale_item(text: str) -> core_logic.SaleLineRequest:
    """argparse ``type`` for ``PRODUCT_ID:QUANTITY`` sale lines."""
    product_id, separator, quantity = text.rpartition(":")
    if not separator or not product_id.strip():
        raise argparse.ArgumentTypeError(f"invalid item '{text}', expected PRODUCT_ID:QUANTITY")
    try:
        return core_logic.SaleLineRequest(product_id=product_id.strip(), quantity=int(quantity))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid quantity in '{text}'") from exc


def _add_report_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", type=parse_iso_date, required=True, help="First day (YYYY-MM-DD).")
    parser.add_argument("--end", type=parse_iso_date, required=True, help="Last day (YYYY-MM-DD).")
    parser.add_argument(
        "--span-days",
        type=int,
        default=None,
        help="Days per breakdown period (defaults to [Reports] DefaultSpanDays).",
    )
    parser.add_argument(
        "--export",
        type=Path,
        default=None,
        help="Also write the report records to a .csv or .xlsx file.",
    )


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--cost-price", required=True)
        parser.add_argument("--selling-price", required=True)
        parser.add_argument("--stock", type=int, default=0, help="Opening stock quantity.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change the name, category or prices of an existing product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--cost-price", default=None)
        parser.add_argument("--selling-price", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_remove_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-product``."""
    name = "remove-product"
    help_text = "Remove a product that has no stock left."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_product)


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Register a new shop user."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--username", required=True)
        parser.add_argument("--display-name", default=None)
        parser.add_argument(
            "--role",
            choices=[member.value for member in Role],
            default=Role.STAFF.value,
        )
        parser.add_argument("--inactive", action="store_true", help="Create the user as inactive.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_user)


def register_update_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-user``."""
    name = "update-user"
    help_text = "Change the display name, role or active flag of another user."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--username", required=True)
        parser.add_argument("--display-name", default=None)
        parser.add_argument("--role", choices=[member.value for member in Role], default=None)
        status = parser.add_mutually_exclusive_group()
        status.add_argument("--activate", dest="is_active", action="store_const", const=True)
        status.add_argument("--deactivate", dest="is_active", action="store_const", const=False)
        parser.set_defaults(command=name, is_active=None)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_user)


def register_remove_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-user``."""
    name = "remove-user"
    help_text = "Delete another user's account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--username", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_user)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a multi-line sale transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_sale_item,
            required=True,
            metavar="PRODUCT_ID:QTY",
            help="Line item; repeat for every product sold.",
        )
        parser.add_argument("--payment-method", default="Cash")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record stock received from a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--cost-price", required=True)
        parser.add_argument("--supplier", default="")
        parser.add_argument("--date", type=parse_iso_date, default=None, help="Purchase date (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_users_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``users``."""
    name = "users"
    help_text = "List shop users."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--all", action="store_true", help="Include inactive users.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_user_list)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Display the sales history."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=parse_iso_date, default=None)
        parser.add_argument("--end", type=parse_iso_date, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_history)


def register_purchases_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchases``."""
    name = "purchases"
    help_text = "Display the purchase history."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase_history)


def register_pnl_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pnl``."""
    name = "pnl"
    help_text = "Display revenue, cost and profit per period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_report_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pnl_report)


def register_best_sellers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``best-sellers``."""
    name = "best-sellers"
    help_text = "Display the top selling products per period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_report_arguments(parser)
        parser.add_argument(
            "--top",
            type=int,
            default=None,
            help="Products per ranking (defaults to [Reports] DefaultTopN).",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_best_sellers_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    actor: core_logic.Actor,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, actor, args)


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


def report_outcome(result: core_logic.OperationResult[Any], describe: Callable[[Any], str]) -> int:
    """Print the result value and map a persistence warning onto its exit code.

    Raises:
        BusinessRuleViolation: The error carried by a failed result.
    """
    value = result.unwrap()
    print(describe(value))
    if result.warning is not None:
        log.warning("%s", result.warning)
        return EXIT_NOT_SAVED
    return EXIT_OK


def format_product(product: ProductRow) -> str:
    return (
        f"{product.product_id:<10} {product.name:<30} {product.category:<15} "
        f"{product.cost_price:>10.2f} {product.selling_price:>10.2f} {product.stock_quantity:>8}"
    )


def format_sale(sale: SalesTransactionRow) -> str:
    moment = sale.timestamp.isoformat(timespec="seconds") if sale.timestamp is not None else "-"
    items = ", ".join(f"{line.product_id} x{line.quantity}" for line in sale.lines)
    return (
        f"{sale.transaction_id:<24} {moment:<25} {sale.payment_method:<10} "
        f"{sale.total_revenue:>10.2f}  {items}"
    )


def format_purchase(purchase: PurchaseRow) -> str:
    received = purchase.purchase_date.isoformat() if purchase.purchase_date is not None else "-"
    return (
        f"{purchase.purchase_id:<24} {received:<10} {purchase.product_id:<10} "
        f"{purchase.quantity:>6} @ {purchase.cost_price:.2f}  {purchase.supplier_name}"
    )


def format_user(user: UserRow) -> str:
    status = "active" if user.is_active else "inactive"
    return f"{user.username:<16} {user.display_name:<24} {user.role:<12} {status}"


def translate_add_product(args: argparse.Namespace) -> ProductRow:
    """Translate CLI args into the desired new product row."""
    return ProductRow(
        product_id=args.product_id,
        name=args.name,
        category=args.category,
        cost_price=core_logic.to_money(args.cost_price),
        selling_price=core_logic.to_money(args.selling_price),
        stock_quantity=args.stock,
    )


def translate_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> ProductRow:
    """Merge the supplied options over the stored product.

    Raises:
        ProductNotFound: If ``--product-id`` is unknown.
    """
    current = core_logic.get_product(context, args.product_id)
    return ProductRow(
        product_id=current.product_id,
        name=args.name if args.name is not None else current.name,
        category=args.category if args.category is not None else current.category,
        cost_price=(
            core_logic.to_money(args.cost_price) if args.cost_price is not None else current.cost_price
        ),
        selling_price=(
            core_logic.to_money(args.selling_price)
            if args.selling_price is not None
            else current.selling_price
        ),
        stock_quantity=current.stock_quantity,
    )


def run_add_product(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = translate_add_product(args)
    result = core_logic.upsert_product(context, actor, product, is_new=True)
    return report_outcome(result, lambda stored: f"Added product {stored.product_id} ({stored.stock_quantity} in stock)")


def run_update_product(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    product = translate_update_product(context, args)
    result = core_logic.upsert_product(context, actor, product, is_new=False)
    return report_outcome(result, lambda stored: f"Updated product {stored.product_id}")


def run_remove_product(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the remove-product workflow in the BLL."""
    result = core_logic.remove_product(context, actor, args.product_id)
    return report_outcome(result, lambda removed: f"Removed product {removed.product_id}")


def run_add_user(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the add-user workflow in the BLL."""
    result = core_logic.add_user(
        context,
        actor,
        args.username,
        args.display_name or args.username,
        args.role,
        is_active=not args.inactive,
    )
    return report_outcome(result, lambda user: f"Added user {user.username} ({user.role})")


def run_update_user(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the update-user workflow in the BLL."""
    result = core_logic.update_user(
        context,
        actor,
        args.username,
        display_name=args.display_name,
        role=args.role,
        is_active=args.is_active,
    )
    return report_outcome(result, lambda user: f"Updated user {format_user(user)}")


def run_remove_user(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the remove-user workflow in the BLL."""
    result = core_logic.remove_user(context, actor, args.username)
    return report_outcome(result, lambda user: f"Removed user {user.username}")


def run_sale(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    result = core_logic.record_sale(context, actor, args.items, args.payment_method)
    return report_outcome(
        result,
        lambda sale: f"Recorded sale {sale.transaction_id}: total {sale.total_revenue:.2f}",
    )


def run_purchase(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    result = core_logic.record_purchase(
        context,
        actor,
        args.product_id,
        args.quantity,
        args.cost_price,
        args.supplier,
        purchase_date=args.date,
    )
    return report_outcome(
        result,
        lambda purchase: f"Recorded purchase {purchase.purchase_id}: {purchase.quantity} x {purchase.product_id}",
    )


def run_stock_report(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Print every product with its current stock."""
    products = core_logic.list_products(context)
    if not products:
        print("No products recorded.")
        return EXIT_OK
    for product in products:
        print(format_product(product))
    return EXIT_OK


def run_user_list(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Print shop users, active ones only unless ``--all`` is given."""
    users = core_logic.list_users(context, include_inactive=args.all)
    if not users:
        print("No users recorded.")
        return EXIT_OK
    for user in users:
        print(format_user(user))
    return EXIT_OK


def run_sales_history(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Print committed sales, optionally restricted to a date range."""
    sales = core_logic.list_sales(context)
    if args.start is not None or args.end is not None:
        sales = reports.sales_in_range(sales, args.start or date.min, args.end or date.max)
    if not sales:
        print("No sales recorded.")
        return EXIT_OK
    for sale in sales:
        print(format_sale(sale))
    return EXIT_OK


def run_purchase_history(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Print every recorded purchase."""
    purchases = core_logic.list_purchases(context)
    if not purchases:
        print("No purchases recorded.")
        return EXIT_OK
    for purchase in purchases:
        print(format_purchase(purchase))
    return EXIT_OK


def _export_if_requested(report: exporter.Report, destination: Optional[Path]) -> None:
    if destination is not None:
        written = exporter.write_report(report, destination)
        print(f"Report exported to {written}")


def run_pnl_report(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the profit/loss reporting workflow."""
    span_days = args.span_days if args.span_days is not None else context.settings.default_span_days
    report = reports.generate_profit_loss_report(context, actor, args.start, args.end, span_days).unwrap()
    print(exporter.render_profit_loss_text(report))
    _export_if_requested(report, args.export)
    return EXIT_OK


def run_best_sellers_report(context: core_logic.RuntimeContext, actor: core_logic.Actor, args: argparse.Namespace) -> int:
    """Execute the best-seller reporting workflow."""
    span_days = args.span_days if args.span_days is not None else context.settings.default_span_days
    top_n = args.top if args.top is not None else context.settings.default_top_n
    report = reports.generate_best_selling_report(context, actor, args.start, args.end, span_days, top_n).unwrap()
    print(exporter.render_best_selling_text(report))
    _export_if_requested(report, args.export)
    return EXIT_OK


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.BusinessRuleViolation):
        return EXIT_RULE_VIOLATION
    if isinstance(error, FileNotFoundError):
        return EXIT_MISSING_FILE
    return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        actor = core_logic.resolve_actor(context, args.user or context.settings.default_username)
        return dispatch_command(context, actor, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
