"""Command-line entry points for the shop ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Every business operation commits its own unit of work, so the CLI never
saves the workbook itself.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, debts, exchange, incentives, ledger, log, purchases, reversal, settlement
from .catalog import CatalogReference, add_catalog_item
from .constants import CatalogKind, CompanyPaymentMode, Currency, DiscountType, EntryCurrency
from .exchange import ZERO, CurrencyAmounts

CURRENCY_CHOICES = [member.value for member in Currency]
ENTRY_CURRENCY_CHOICES = [member.value for member in EntryCurrency]
DISCOUNT_CHOICES = [member.value for member in DiscountType]


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
        prog="shop-ledger",
        description="Command-line tools for the shop ledger workbook.",
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
    """Declare mutating CLI commands such as sales, payments, and returns."""
    specs = {
        "add-item": register_add_item_command(subparsers),
        "set-rate": register_set_rate_command(subparsers),
        "opening-balance": register_opening_balance_command(subparsers),
        "sale": register_sale_command(subparsers),
        "add-customer-debt": register_add_customer_debt_command(subparsers),
        "add-company-debt": register_add_company_debt_command(subparsers),
        "add-loan": register_add_loan_command(subparsers),
        "pay-customer-debt": register_pay_customer_debt_command(subparsers),
        "pay-company-debt": register_pay_company_debt_command(subparsers),
        "pay-company-total": register_pay_company_total_command(subparsers),
        "pay-loan": register_pay_loan_command(subparsers),
        "return-sale": register_return_sale_command(subparsers),
        "return-sale-item": register_return_sale_item_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "return-purchase": register_return_purchase_command(subparsers),
        "return-purchase-item": register_return_purchase_item_command(subparsers),
        "add-incentive": register_add_incentive_command(subparsers),
        "remove-incentive": register_remove_incentive_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as balances and the log."""
    specs = {
        "balance": register_balance_command(subparsers),
        "rate": register_rate_command(subparsers),
        "profit": register_profit_command(subparsers),
        "log": register_log_command(subparsers),
        "incentives": register_incentives_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_payment_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--usd", default="0", help="Amount paid in USD.")
    parser.add_argument("--lc", default="0", help="Amount paid in local currency.")


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Register a product or accessory in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in CatalogKind], required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--buying-price", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--currency", choices=CURRENCY_CHOICES, required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item)


def register_set_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-rate``."""
    name = "set-rate"
    help_text = "Store the exchange rate and its inverse."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--rate", required=True)
        parser.add_argument("--from", dest="from_currency", choices=CURRENCY_CHOICES, default=Currency.USD.value)
        parser.add_argument("--to", dest="to_currency", choices=CURRENCY_CHOICES, default=Currency.LC.value)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_rate)


def register_opening_balance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``opening-balance``."""
    name = "opening-balance"
    help_text = "Put starting cash into the balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_payment_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_opening_balance)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            help="KIND:ID:QTY:PRICE[:DISCOUNT_PERCENT], repeatable.",
        )
        parser.add_argument("--total", required=True)
        parser.add_argument("--currency", choices=CURRENCY_CHOICES, required=True)
        parser.add_argument("--debt", action="store_true", help="Sell on credit.")
        parser.add_argument("--customer", default=None)
        parser.add_argument("--discount-type", choices=DISCOUNT_CHOICES, default=None)
        parser.add_argument("--discount-value", default=None)
        parser.add_argument("--paid-usd", default=None)
        parser.add_argument("--paid-lc", default=None)
        parser.add_argument("--change-usd", default="0")
        parser.add_argument("--change-lc", default="0")
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_add_customer_debt_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer-debt``."""
    name = "add-customer-debt"
    help_text = "Record money a customer owes the shop."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--currency", choices=CURRENCY_CHOICES, required=True)
        parser.add_argument("--sale-id", type=int, default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer_debt)


def register_add_company_debt_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-company-debt``."""
    name = "add-company-debt"
    help_text = "Record money the shop owes a company."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--company", required=True)
        parser.add_argument("--currency", choices=ENTRY_CURRENCY_CHOICES, required=True)
        parser.add_argument("--amount", default="0")
        parser.add_argument("--usd-amount", default="0")
        parser.add_argument("--lc-amount", default="0")
        parser.add_argument("--discount-type", choices=DISCOUNT_CHOICES, default=None)
        parser.add_argument("--discount-value", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_company_debt)


def register_add_loan_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-loan``."""
    name = "add-loan"
    help_text = "Record a personal loan."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--person", required=True)
        _add_payment_arguments(parser)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_loan)


def register_pay_customer_debt_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-customer-debt``."""
    name = "pay-customer-debt"
    help_text = "Record a payment received from a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--debt-id", type=int, required=True)
        _add_payment_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_customer_debt)


def register_pay_company_debt_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-company-debt``."""
    name = "pay-company-debt"
    help_text = "Record a payment made against one company debt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--debt-id", type=int, required=True)
        _add_payment_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_company_debt)


def register_pay_company_total_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-company-total``."""
    name = "pay-company-total"
    help_text = "Spread one payment across all open debts of a company."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--company", required=True)
        _add_payment_arguments(parser)
        parser.add_argument(
            "--mode",
            choices=[member.value for member in CompanyPaymentMode],
            default=CompanyPaymentMode.ANY.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_company_total)


def register_pay_loan_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-loan``."""
    name = "pay-loan"
    help_text = "Record a personal loan repayment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--loan-id", type=int, required=True)
        _add_payment_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_loan)


def register_return_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return-sale``."""
    name = "return-sale"
    help_text = "Return a whole sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return_sale)


def register_return_sale_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return-sale-item``."""
    name = "return-sale-item"
    help_text = "Return some or all units of one sale line."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", type=int, required=True)
        parser.add_argument("--item-id", type=int, required=True)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--refund-usd", default=None)
        parser.add_argument("--refund-lc", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return_sale_item)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record stock bought from a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier", required=True)
        parser.add_argument("--currency", choices=ENTRY_CURRENCY_CHOICES, required=True)
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            required=True,
            help="KIND:ID:QTY:UNIT_PRICE, repeatable.",
        )
        parser.add_argument("--paid-usd", default="0", help="USD paid on a MULTI purchase.")
        parser.add_argument("--paid-lc", default="0", help="Local currency paid on a MULTI purchase.")
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_return_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return-purchase``."""
    name = "return-purchase"
    help_text = "Send a whole purchase back to the supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return_purchase)


def register_return_purchase_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return-purchase-item``."""
    name = "return-purchase-item"
    help_text = "Send some or all units of one purchase line back."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", type=int, required=True)
        parser.add_argument("--item-id", type=int, required=True)
        parser.add_argument("--quantity", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return_purchase_item)


def register_add_incentive_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-incentive``."""
    name = "add-incentive"
    help_text = "Record an incentive received from a company."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--company", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--currency", choices=CURRENCY_CHOICES, default=Currency.LC.value)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_incentive)


def register_remove_incentive_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-incentive``."""
    name = "remove-incentive"
    help_text = "Delete an incentive and take it back out of the balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--incentive-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_incentive)


def register_balance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``balance``."""
    name = "balance"
    help_text = "Display the current USD and local currency balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_balance_report)


def register_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rate``."""
    name = "rate"
    help_text = "Display the exchange rate in effect."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rate_report)


def register_profit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``profit``."""
    name = "profit"
    help_text = "Display the cumulative realized profit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_profit_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the transaction log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=None, help="Show only the most recent entries.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_incentives_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``incentives``."""
    name = "incentives"
    help_text = "List recorded incentives and their totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--company", default=None, help="Only show companies matching this text.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_incentives_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


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


def parse_decimal(raw: Optional[str], label: str) -> Decimal:
    """Parse a decimal argument, reporting bad input as a validation error."""
    try:
        return Decimal(str(raw).strip())
    except InvalidOperation:
        raise core_logic.ValidationError(f"{label} is not a number: {raw!r}") from None


def _optional_decimal(raw: Optional[str], label: str) -> Optional[Decimal]:
    return None if raw is None else parse_decimal(raw, label)


def _payment_amounts(args: argparse.Namespace) -> CurrencyAmounts:
    return CurrencyAmounts(usd=parse_decimal(args.usd, "USD amount"), lc=parse_decimal(args.lc, "LC amount"))


def parse_sale_line(text: str) -> settlement.SaleLine:
    """Parse ``KIND:ID:QTY:PRICE[:DISCOUNT_PERCENT]`` into a sale line."""
    parts = text.split(":")
    if len(parts) not in (4, 5):
        raise core_logic.ValidationError(f"Sale item must be KIND:ID:QTY:PRICE[:DISCOUNT]: {text!r}")
    ref = CatalogReference.parse(f"{parts[0]}:{parts[1]}")
    try:
        quantity = int(parts[2])
    except ValueError:
        raise core_logic.ValidationError(f"Quantity is not a whole number: {parts[2]!r}") from None
    return settlement.SaleLine(
        catalog_ref=ref,
        quantity=quantity,
        unit_selling_price=parse_decimal(parts[3], "Price"),
        discount_percent=parse_decimal(parts[4], "Discount") if len(parts) == 5 else ZERO,
    )


def parse_purchase_line(text: str) -> purchases.PurchaseLine:
    """Parse ``KIND:ID:QTY:UNIT_PRICE`` into a purchase line."""
    parts = text.split(":")
    if len(parts) != 4:
        raise core_logic.ValidationError(f"Purchase line must be KIND:ID:QTY:UNIT_PRICE: {text!r}")
    ref = CatalogReference.parse(f"{parts[0]}:{parts[1]}")
    try:
        quantity = int(parts[2])
    except ValueError:
        raise core_logic.ValidationError(f"Quantity is not a whole number: {parts[2]!r}") from None
    return purchases.PurchaseLine(catalog_ref=ref, quantity=quantity, unit_price=parse_decimal(parts[3], "Unit price"))


def translate_sale(args: argparse.Namespace) -> settlement.SaleCommand:
    """Translate CLI args into a sale command object."""
    discount = None
    if args.discount_type is not None:
        discount = settlement.SaleDiscount(
            discount_type=DiscountType(args.discount_type),
            discount_value=parse_decimal(args.discount_value or "0", "Discount value"),
        )
    payment = None
    if args.paid_usd is not None or args.paid_lc is not None:
        payment = settlement.MultiCurrencyPayment(
            usd_amount=parse_decimal(args.paid_usd or "0", "USD paid"),
            lc_amount=parse_decimal(args.paid_lc or "0", "LC paid"),
            change_given_usd=parse_decimal(args.change_usd, "USD change"),
            change_given_lc=parse_decimal(args.change_lc, "LC change"),
        )
    return settlement.SaleCommand(
        items=[parse_sale_line(text) for text in args.items],
        total=parse_decimal(args.total, "Total"),
        currency=Currency(args.currency),
        is_debt=bool(args.debt),
        customer_name=args.customer,
        discount=discount,
        payment=payment,
        description=args.notes,
    )


def translate_company_debt(args: argparse.Namespace) -> debts.CompanyDebtCommand:
    """Translate CLI args into a company debt command object."""
    discount = None
    if args.discount_type is not None:
        discount = debts.DebtDiscount(
            discount_type=DiscountType(args.discount_type),
            discount_value=parse_decimal(args.discount_value or "0", "Discount value"),
        )
    return debts.CompanyDebtCommand(
        company_name=args.company,
        currency=EntryCurrency(args.currency),
        amount=parse_decimal(args.amount, "Amount"),
        usd_amount=parse_decimal(args.usd_amount, "USD amount"),
        lc_amount=parse_decimal(args.lc_amount, "LC amount"),
        description=args.notes,
        discount=discount,
    )


def translate_debt_payment(args: argparse.Namespace) -> debts.DebtPaymentCommand:
    """Translate CLI args into a debt payment command object."""
    amounts = _payment_amounts(args)
    return debts.DebtPaymentCommand(payment_usd=amounts.usd, payment_lc=amounts.lc)


def translate_purchase(args: argparse.Namespace) -> purchases.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return purchases.PurchaseCommand(
        supplier=args.supplier,
        currency=EntryCurrency(args.currency),
        lines=[parse_purchase_line(text) for text in args.lines],
        multi_currency_usd=parse_decimal(args.paid_usd, "USD paid"),
        multi_currency_lc=parse_decimal(args.paid_lc, "LC paid"),
        description=args.notes,
    )


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow."""
    row = add_catalog_item(
        context,
        CatalogKind(args.kind),
        name=args.name,
        buying_price=parse_decimal(args.buying_price, "Buying price"),
        price=parse_decimal(args.price, "Price"),
        currency=Currency(args.currency),
        stock=args.stock,
    )
    print(f"Added {args.kind}:{row.id} {row.name}")
    return 0


def run_set_rate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the set-rate workflow."""
    snapshot = exchange.set_rate(context, args.from_currency, args.to_currency, parse_decimal(args.rate, "Rate"))
    print(f"1 {Currency.USD.value} = {snapshot.usd_to_lc} {Currency.LC.value}")
    return 0


def run_opening_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the opening-balance workflow."""
    entry = ledger.record_opening_balance(context, _payment_amounts(args))
    print(f"Balance: {entry.balance.usd} USD, {entry.balance.lc} {Currency.LC.value}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow."""
    result = settlement.commit_sale(context, translate_sale(args))
    suffix = f", debt #{result.debt.id}" if result.debt is not None else ""
    print(f"Sale #{result.sale.id}: {result.sale.total} {result.sale.currency}{suffix}")
    return 0


def run_add_customer_debt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer-debt workflow."""
    debt = debts.create_customer_debt(
        context,
        debts.CustomerDebtCommand(
            customer_name=args.customer,
            amount=parse_decimal(args.amount, "Amount"),
            currency=Currency(args.currency),
            description=args.notes,
            sale_ref=args.sale_id,
        ),
    )
    print(f"Customer debt #{debt.id}: {debt.amount} {debt.currency}")
    return 0


def run_add_company_debt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-company-debt workflow."""
    debt = debts.create_company_debt(context, translate_company_debt(args))
    print(f"Company debt #{debt.id}: {debt.company_name} ({debt.currency})")
    return 0


def run_add_loan(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-loan workflow."""
    amounts = _payment_amounts(args)
    loan = debts.create_personal_loan(
        context,
        debts.PersonalLoanCommand(
            person_name=args.person,
            usd_amount=amounts.usd,
            lc_amount=amounts.lc,
            description=args.notes,
        ),
    )
    print(f"Personal loan #{loan.id}: {loan.usd_amount} USD, {loan.lc_amount} {Currency.LC.value}")
    return 0


def _print_payment(result: debts.DebtPaymentResult) -> None:
    state = "paid" if result.fully_paid else "partial"
    print(
        f"Debt #{result.debt.id} {state}: applied {result.applied.usd} USD / {result.applied.lc} "
        f"{Currency.LC.value}, remaining {result.remaining.usd} USD / {result.remaining.lc} {Currency.LC.value}"
    )
    if result.has_overpayment:
        print(f"Unapplied: {result.remaining_payment.usd} USD / {result.remaining_payment.lc} {Currency.LC.value}")


def run_pay_customer_debt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the pay-customer-debt workflow."""
    _print_payment(debts.pay_customer_debt(context, args.debt_id, translate_debt_payment(args)))
    return 0


def run_pay_company_debt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the pay-company-debt workflow."""
    _print_payment(debts.pay_company_debt(context, args.debt_id, translate_debt_payment(args)))
    return 0


def run_pay_company_total(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the pay-company-total workflow."""
    result = debts.pay_company_debts_total(
        context,
        args.company,
        _payment_amounts(args),
        CompanyPaymentMode(args.mode),
    )
    print(f"Settled: {result.settled_debt_ids or '-'}; partial: {result.partial_debt_ids or '-'}")
    if result.has_overpayment:
        print(f"Unapplied: {result.remaining_payment.usd} USD / {result.remaining_payment.lc} {Currency.LC.value}")
    return 0


def run_pay_loan(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the pay-loan workflow."""
    _print_payment(debts.pay_personal_loan(context, args.loan_id, translate_debt_payment(args)))
    return 0


def run_return_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return-sale workflow."""
    result = reversal.return_sale(context, args.sale_id)
    print(f"Returned sale #{result.sale.id}: refund {result.refund.usd} USD / {result.refund.lc} {Currency.LC.value}")
    return 0


def run_return_sale_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return-sale-item workflow."""
    refund = None
    if args.refund_usd is not None or args.refund_lc is not None:
        refund = CurrencyAmounts(
            usd=parse_decimal(args.refund_usd or "0", "USD refund"),
            lc=parse_decimal(args.refund_lc or "0", "LC refund"),
        )
    result = reversal.return_sale_item(context, args.sale_id, args.item_id, args.quantity, refund)
    print(
        f"Returned {result.quantity} from sale #{result.sale_id}: refund {result.refund.usd} USD / "
        f"{result.refund.lc} {Currency.LC.value}"
    )
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow."""
    result = purchases.record_purchase(context, translate_purchase(args))
    print(f"Purchase #{result.entry.id}: paid {result.paid.usd} USD / {result.paid.lc} {Currency.LC.value}")
    return 0


def run_return_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return-purchase workflow."""
    result = purchases.return_buying_history_entry(context, args.entry_id)
    print(f"Returned purchase #{result.entry_id}: refund {result.refund.usd} USD / {result.refund.lc} {Currency.LC.value}")
    return 0


def run_return_purchase_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return-purchase-item workflow."""
    result = purchases.return_buying_history_item(context, args.entry_id, args.item_id, args.quantity)
    print(f"Returned from purchase #{result.entry_id}: refund {result.refund.usd} USD / {result.refund.lc} {Currency.LC.value}")
    return 0


def run_add_incentive(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-incentive workflow."""
    row = incentives.add_incentive(
        context,
        incentives.IncentiveCommand(
            company_name=args.company,
            amount=parse_decimal(args.amount, "amount"),
            currency=Currency(args.currency),
            description=args.description,
        ),
    )
    print(f"Incentive #{row.id}: {row.amount} {row.currency} from {row.company_name}")
    return 0


def run_remove_incentive(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the remove-incentive workflow."""
    row = incentives.remove_incentive(context, args.incentive_id)
    print(f"Removed incentive #{row.id}: {row.amount} {row.currency}")
    return 0


def run_balance_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the balance reporting workflow."""
    balance = ledger.get_balance(context)
    print(f"USD: {balance.usd}")
    print(f"{Currency.LC.value}: {balance.lc}")
    return 0


def run_rate_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the exchange rate reporting workflow."""
    rate = exchange.get_rate(context, Currency.USD, Currency.LC)
    print(f"1 {Currency.USD.value} = {rate} {Currency.LC.value}")
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit reporting workflow."""
    totals = ledger.get_profit_totals(context)
    print(f"Profit USD: {totals.usd}")
    print(f"Profit {Currency.LC.value}: {totals.lc}")
    return 0


def format_log_rows(rows: Sequence[object]) -> List[str]:
    """Render transaction log rows as aligned text lines."""
    return [
        f"{row.id:>5}  {row.created_at:<32}  {row.type:<30}  {row.amount_usd:>14}  {row.amount_lc:>16}  {row.description or ''}"
        for row in rows
    ]


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction log reporting workflow."""
    rows = ledger.list_transactions(context)
    if args.limit is not None:
        rows = rows[-args.limit:] if args.limit > 0 else []
    for line in format_log_rows(rows):
        print(line)
    return 0


def run_incentives_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the incentive reporting workflow."""
    for row in incentives.list_incentives(context, args.company):
        print(f"{row.id:>5}  {row.created_at:<32}  {row.company_name:<24}  {row.amount:>14} {row.currency}")
    totals = incentives.incentive_totals(context)
    print(f"Total USD: {totals.usd}")
    print(f"Total {Currency.LC.value}: {totals.lc}")
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


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
