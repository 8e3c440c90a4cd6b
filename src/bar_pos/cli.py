"""Command-line entry points for the Bar POS toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front-end that wants to expose
the package capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log
from .constants import DeliveryType, OrderBucket, PaymentMethod
from .data_manager import LineItem, workbook_lock

ItemSpec = Tuple[str, int]

# Commands whose success is persisted back to the workbook.
WRITE_COMMANDS = frozenset(
    {
        "add-product",
        "purchase",
        "delete-purchase",
        "sale",
        "cancel-sale",
        "open-tab",
        "add-to-tab",
        "close-tab",
        "add-order",
        "deliver-order",
        "finalize-order",
        "cancel-order",
    }
)


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bar-pos",
        description="Command-line tools for the Bar POS workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
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
    """Declare mutating CLI commands such as sales, purchases, tabs, and orders."""
    specs = {
        "add-product": register_add_product_command(),
        "purchase": register_purchase_command(),
        "delete-purchase": register_delete_purchase_command(),
        "sale": register_sale_command(),
        "cancel-sale": register_cancel_sale_command(),
        "open-tab": register_open_tab_command(),
        "add-to-tab": register_add_to_tab_command(),
        "close-tab": register_close_tab_command(),
        "add-order": register_add_order_command(),
        "deliver-order": register_order_transition_command(
            "deliver-order", "Mark a pending order as delivered and take its stock.", run_deliver_order
        ),
        "finalize-order": register_finalize_order_command(),
        "cancel-order": register_order_transition_command(
            "cancel-order", "Cancel a pending or delivered order.", run_cancel_order
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(),
        "report": register_report_command(),
        "sales": register_sales_command(),
        "tabs": register_tabs_command(),
        "orders": register_orders_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_item_spec(raw: str) -> ItemSpec:
    """Parse ``PRODUCT_ID:QTY`` (``QTY`` defaults to 1) for ``--item``."""
    product_id, _, quantity_raw = raw.partition(":")
    product_id = product_id.strip()
    if not product_id:
        raise argparse.ArgumentTypeError(f"Invalid item '{raw}': missing product id")
    try:
        quantity = int(quantity_raw) if quantity_raw.strip() else 1
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid item '{raw}': quantity must be an integer") from exc
    if quantity <= 0:
        raise argparse.ArgumentTypeError(f"Invalid item '{raw}': quantity must be positive")
    return product_id, quantity


def parse_decimal(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {raw}") from exc


def _add_item_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        type=parse_item_spec,
        required=True,
        metavar="PRODUCT_ID:QTY",
        help="Cart line priced from the catalog; repeat for several products.",
    )


def _payment_choices() -> List[str]:
    return [member.value for member in PaymentMethod]


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--title", required=True)
        parser.add_argument("--sell-price", type=parse_decimal, required=True)
        parser.add_argument("--buy-price", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--stock", type=int, default=0, help="Opening stock level.")
        parser.add_argument("--color", default=None)
        parser.add_argument("--url-image", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_purchase_command() -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a stock intake for a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--amount", type=int, required=True)
        parser.add_argument("--unity-value", type=parse_decimal, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_delete_purchase_command() -> CommandSpec:
    name = "delete-purchase"
    help_text = "Delete a purchase and remove its units from stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--purchase-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_purchase)


def register_sale_command() -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a counter sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_item_argument(parser)
        parser.add_argument("--payment-method", choices=_payment_choices(), required=True)
        parser.add_argument(
            "--total",
            type=parse_decimal,
            default=None,
            help="Charged total; defaults to the sum of the items.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_cancel_sale_command() -> CommandSpec:
    name = "cancel-sale"
    help_text = "Cancel a sale and return its units to stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel_sale)


def register_open_tab_command() -> CommandSpec:
    """Register the parser and executor for ``open-tab``."""
    name = "open-tab"
    help_text = "Open a tab for a customer, reserving stock for its items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-name", required=True)
        _add_item_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_open_tab)


def register_add_to_tab_command() -> CommandSpec:
    name = "add-to-tab"
    help_text = "Add items to an open tab."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--comanda-id", required=True)
        _add_item_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_to_tab)


def register_close_tab_command() -> CommandSpec:
    name = "close-tab"
    help_text = "Close an open tab, optionally recording the settling sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--comanda-id", required=True)
        parser.add_argument("--payment-method", choices=_payment_choices(), default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_close_tab)


def register_add_order_command() -> CommandSpec:
    """Register the parser and executor for ``add-order``."""
    name = "add-order"
    help_text = "Schedule a pickup or delivery order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-name", required=True)
        _add_item_argument(parser)
        parser.add_argument(
            "--scheduled-date",
            type=datetime.fromisoformat,
            required=True,
            help="ISO-8601 date or datetime; naive values are UTC.",
        )
        parser.add_argument(
            "--delivery-type",
            choices=[member.value for member in DeliveryType],
            default=DeliveryType.PICKUP.value,
        )
        parser.add_argument("--shipping-cost", type=parse_decimal, default=Decimal("0"))
        parser.add_argument("--address", default=None)
        parser.add_argument("--phone", dest="customer_phone", default=None)
        parser.add_argument("--observations", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_order)


def register_order_transition_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register a command that only needs ``--order-id``."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_finalize_order_command() -> CommandSpec:
    name = "finalize-order"
    help_text = "Collect payment for a delivered order and record its sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.add_argument("--payment-method", choices=_payment_choices(), required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_finalize_order)


def register_stock_command() -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def _add_range_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", default=None, help="ISO date or datetime (default: today).")
    parser.add_argument("--end", default=None, help="ISO date or datetime (default: end of --start day).")


def register_report_command() -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display revenue, cost, profit, and margin for a date range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_range_arguments(parser)
        parser.add_argument("--product-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def register_sales_command() -> CommandSpec:
    name = "sales"
    help_text = "List sales within a date range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_range_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_listing)


def register_tabs_command() -> CommandSpec:
    name = "tabs"
    help_text = "List open tabs."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_tabs_listing)


def register_orders_command() -> CommandSpec:
    name = "orders"
    help_text = "List active orders."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--bucket",
            choices=[member.value for member in OrderBucket],
            default=OrderBucket.ALL.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_orders_listing)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


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


def resolve_items(context: core_logic.RuntimeContext, specs: Iterable[ItemSpec]) -> List[LineItem]:
    """Price ``(product_id, quantity)`` pairs from the current catalog."""
    return [core_logic.build_line_item(context, product_id, quantity) for product_id, quantity in specs]


def resolve_range(start_raw: Optional[str], end_raw: Optional[str]) -> Tuple[datetime, datetime]:
    """Turn ``--start``/``--end`` into an inclusive UTC range.

    A bare date for ``--end`` covers that whole day. Without ``--end`` the
    range ends with the ``--start`` day; without either it covers today.
    """
    if start_raw:
        start = datetime.fromisoformat(start_raw)
    else:
        start = datetime.combine(datetime.now(UTC).date(), time.min)
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)

    if end_raw:
        end = datetime.fromisoformat(end_raw)
        if len(end_raw) == 10:
            end = end + timedelta(days=1) - timedelta(microseconds=1)
    else:
        end = datetime.combine(start.date(), time.max)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)
    return start, end


def translate_add_product(args: argparse.Namespace) -> Mapping[str, object]:
    """Translate CLI args into an add-product request."""
    return {
        "title": args.title,
        "sell_price": args.sell_price,
        "buy_price": args.buy_price,
        "stock": args.stock,
        "url_image": args.url_image,
        "color": args.color,
    }


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    return core_logic.PurchaseCommand(
        product_id=args.product_id,
        amount=args.amount,
        unity_value=args.unity_value,
    )


def translate_sale(args: argparse.Namespace, items: Sequence[LineItem]) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        items=items,
        total=args.total,
        payment_method=PaymentMethod(args.payment_method),
    )


def translate_open_tab(args: argparse.Namespace, items: Sequence[LineItem]) -> core_logic.ComandaCommand:
    return core_logic.ComandaCommand(customer_name=args.customer_name, items=items)


def translate_add_order(args: argparse.Namespace, items: Sequence[LineItem]) -> core_logic.OrderCommand:
    """Translate CLI args into an order command object."""
    return core_logic.OrderCommand(
        customer_name=args.customer_name,
        items=items,
        scheduled_date=args.scheduled_date,
        delivery_type=DeliveryType(args.delivery_type),
        shipping_cost=args.shipping_cost,
        customer_phone=args.customer_phone,
        address=args.address,
        observations=args.observations,
    )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, **translate_add_product(args))
    print(f"Registered product {product.product_id} ({product.title})")
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    purchase = core_logic.add_purchase(context, translate_purchase(args))
    print(f"Recorded purchase {purchase.purchase_id}")
    return 0


def run_delete_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_purchase(context, args.purchase_id)
    print(f"Deleted purchase {args.purchase_id}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    command = translate_sale(args, resolve_items(context, args.items))
    sale = core_logic.process_sale(context, command)
    print(f"Recorded sale {sale.sale_id} (total {sale.total})")
    return 0


def run_cancel_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.cancel_sale(context, args.sale_id)
    print(f"Sale {sale.sale_id} is {sale.status}")
    return 0


def run_open_tab(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = translate_open_tab(args, resolve_items(context, args.items))
    comanda = core_logic.open_comanda(context, command)
    print(f"Opened tab {comanda.comanda_id} for {comanda.customer_name} (total {comanda.total})")
    return 0


def run_add_to_tab(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    comanda = core_logic.add_items_to_comanda(context, args.comanda_id, resolve_items(context, args.items))
    print(f"Tab {comanda.comanda_id} total is now {comanda.total}")
    return 0


def run_close_tab(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    comanda = core_logic.close_comanda(context, args.comanda_id, args.payment_method)
    suffix = f" settled by sale {comanda.sale_id}" if comanda.sale_id else ""
    print(f"Closed tab {comanda.comanda_id}{suffix}")
    return 0


def run_add_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = core_logic.add_order(context, translate_add_order(args, resolve_items(context, args.items)))
    print(f"Scheduled order {order.order_id} (total {order.total})")
    return 0


def run_deliver_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = core_logic.mark_as_delivered(context, args.order_id)
    print(f"Order {order.order_id} is {order.status}")
    return 0


def run_finalize_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = core_logic.get_order(context, args.order_id)
    order = core_logic.finalize_order(context, order, args.payment_method)
    print(f"Order {order.order_id} finished as sale {order.sale_id}")
    return 0


def run_cancel_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    order = core_logic.cancel_order(context, args.order_id)
    print(f"Order {order.order_id} is {order.status}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    for product in core_logic.list_products(context):
        print(f"{product.product_id}\t{product.title}\t{product.stock}")
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit reporting workflow."""
    start, end = resolve_range(args.start, args.end)
    report = core_logic.compute_report(context, start, end, args.product_id)
    print(f"Period:  {start.isoformat()} .. {end.isoformat()}")
    print(f"Sales:   {report.sales_count}")
    print(f"Revenue: {report.revenue:.2f}")
    print(f"Cost:    {report.cost:.2f}")
    print(f"Profit:  {report.profit:.2f}")
    print(f"Margin:  {report.margin:.2f}%")
    return 0


def run_sales_listing(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    start, end = resolve_range(args.start, args.end)
    for sale in core_logic.list_sales_between(context, start, end):
        stamp = sale.date.isoformat() if sale.date else "-"
        print(f"{sale.sale_id}\t{stamp}\t{sale.sale_type}\t{sale.status}\t{sale.total}")
    return 0


def run_tabs_listing(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for comanda in core_logic.list_open_comandas(context):
        print(f"{comanda.comanda_id}\t{comanda.customer_name}\t{comanda.total}")
    return 0


def run_orders_listing(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for order in core_logic.list_active_orders(context, args.bucket):
        scheduled = order.scheduled_date.isoformat() if order.scheduled_date else "-"
        print(f"{order.order_id}\t{order.customer_name}\t{order.status}\t{scheduled}\t{order.total}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution.

    Write commands hold the workbook lock from reload to save, so concurrent
    invocations against one workbook run one after another.
    """
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        if args.command not in WRITE_COMMANDS:
            return dispatch_command(context, args, command_table)
        settings = context.settings
        with workbook_lock(settings.data_file, timeout=settings.lock_timeout):
            context = core_logic.refresh_context(context)
            exit_code = dispatch_command(context, args, command_table)
            if exit_code == 0:
                persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
