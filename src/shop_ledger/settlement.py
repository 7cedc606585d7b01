"""Sale settlement.

:func:`commit_sale` turns a basket into a ``Sales`` row with its
``SaleItems``, takes the stock out of the catalog, and either credits the
balances and profit counters or opens a customer debt when the sale is on
credit. The exchange rate in effect is frozen onto the sale so every later
reversal reproduces the same figures.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from . import catalog, core_logic, data_manager, exchange, ledger, log
from .catalog import CatalogReference
from .constants import Currency, DiscountType, ReferenceType, SheetName, TransactionType
from .core_logic import RuntimeContext, ValidationError, quantize_money
from .exchange import ZERO, CurrencyAmounts, RateSnapshot

SALES_SHEET = SheetName.SALES.value
SALE_ITEMS_SHEET = SheetName.SALE_ITEMS.value
CUSTOMER_DEBTS_SHEET = SheetName.CUSTOMER_DEBTS.value

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class SaleLine:
    """One basket line: what is sold, how many, and at which unit price."""

    catalog_ref: CatalogReference
    quantity: int
    unit_selling_price: Decimal
    discount_percent: Decimal = ZERO


@dataclass(frozen=True)
class SaleDiscount:
    """Whole-sale discount descriptor; the caller's total already reflects it."""

    discount_type: DiscountType
    discount_value: Decimal


@dataclass(frozen=True)
class MultiCurrencyPayment:
    """Cash tendered in both currencies, with any change handed back.

    ``net_balance_usd``/``net_balance_lc`` override the computed net when the
    till already knows what stays in the drawer.
    """

    usd_amount: Decimal = ZERO
    lc_amount: Decimal = ZERO
    net_balance_usd: Optional[Decimal] = None
    net_balance_lc: Optional[Decimal] = None
    change_given_usd: Decimal = ZERO
    change_given_lc: Decimal = ZERO

    def net_amounts(self) -> CurrencyAmounts:
        usd = self.net_balance_usd if self.net_balance_usd is not None else self.usd_amount - self.change_given_usd
        lc = self.net_balance_lc if self.net_balance_lc is not None else self.lc_amount - self.change_given_lc
        return CurrencyAmounts(usd=usd, lc=lc).quantized()


@dataclass(frozen=True)
class SaleCommand:
    """User intent for committing a sale."""

    items: Sequence[SaleLine]
    total: Decimal
    currency: Currency
    is_debt: bool = False
    customer_name: Optional[str] = None
    discount: Optional[SaleDiscount] = None
    payment: Optional[MultiCurrencyPayment] = None
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SaleResult:
    """Rows written by :func:`commit_sale` and the profit it produced."""

    sale: data_manager.SaleRow
    items: List[data_manager.SaleItemRow] = field(default_factory=list)
    debt: Optional[data_manager.CustomerDebtRow] = None
    profit: Decimal = ZERO
    profit_currency: Currency = Currency.USD


def sale_rates(sale: data_manager.SaleRow) -> RateSnapshot:
    """Return the rate snapshot frozen on ``sale``."""

    return RateSnapshot(usd_to_lc=sale.exchange_rate_usd_to_lc, lc_to_usd=sale.exchange_rate_lc_to_usd)


def cost_in_sale_currency(
    unit_buying_price: Decimal,
    item_currency: str,
    sale_currency: str,
    rates: RateSnapshot,
) -> Decimal:
    """Express a unit cost in the sale currency, rounded to money precision."""

    if Currency(item_currency) is Currency(sale_currency):
        return quantize_money(unit_buying_price)
    return quantize_money(rates.convert(unit_buying_price, item_currency, sale_currency))


def line_profit(unit_selling_price: Decimal, unit_cost: Decimal, quantity: int) -> Decimal:
    return quantize_money((unit_selling_price - unit_cost) * quantity)


def derive_line_profit(sale: data_manager.SaleRow, item: data_manager.SaleItemRow, quantity: int) -> Decimal:
    """Re-derive a line's profit for ``quantity`` units from frozen values only."""

    cost = cost_in_sale_currency(item.unit_buying_price, item.catalog_item_currency, sale.currency, sale_rates(sale))
    return line_profit(item.unit_selling_price, cost, quantity)


def profit_attribution(sale: data_manager.SaleRow, amount_in_sale_currency: Decimal) -> Tuple[Currency, Decimal]:
    """Return the counter currency and amount a sale's profit is booked in.

    Profit of a sale paid in both currencies is accounted in USD, converted
    with the sale's frozen rate.
    """

    currency = Currency(sale.currency)
    if sale.is_multi_currency and currency is not Currency.USD:
        return Currency.USD, quantize_money(sale_rates(sale).convert(amount_in_sale_currency, currency, Currency.USD))
    return currency, quantize_money(amount_in_sale_currency)


def realize_sale_profit(
    context: RuntimeContext,
    sale: data_manager.SaleRow,
    amount_in_sale_currency: Decimal,
) -> Tuple[Currency, Decimal]:
    """Add a sale's profit (negative to reverse it) to the running counters."""

    currency, amount = profit_attribution(sale, amount_in_sale_currency)
    if amount != ZERO:
        ledger.add_profit(context, currency, amount)
    return currency, amount


def sale_items(context: RuntimeContext, sale_id: int) -> List[data_manager.SaleItemRow]:
    """Return the lines of ``sale_id`` in insertion order."""

    return [row for row in core_logic.list_rows(context, SALE_ITEMS_SHEET) if row.sale_id == sale_id]


def linked_customer_debt(context: RuntimeContext, sale_id: int) -> Optional[data_manager.CustomerDebtRow]:
    """Return the customer debt opened for ``sale_id``, if any."""

    for row in core_logic.list_rows(context, CUSTOMER_DEBTS_SHEET):
        if row.sale_ref == sale_id:
            return row
    return None


def get_sale(context: RuntimeContext, sale_id: int) -> data_manager.SaleRow:
    """Return the ``Sales`` row for ``sale_id``.

    Raises:
        NotFoundError: If the sale does not exist.
    """

    return core_logic.get_row(context, SALES_SHEET, sale_id, label="Sale")


def _validate(command: SaleCommand) -> Currency:
    if not command.items:
        log.error("Sale rejected: no items")
        raise ValidationError("A sale needs at least one item")
    currency = core_logic.require_currency(command.currency)
    core_logic.require_positive_money(command.total, label="Sale total")
    for line in command.items:
        if not isinstance(line.catalog_ref, CatalogReference):
            raise ValidationError("Every sale line needs a catalog reference")
        core_logic.require_positive_quantity(line.quantity)
        core_logic.require_nonnegative_money(line.unit_selling_price, label="Selling price")
        if not ZERO <= line.discount_percent <= HUNDRED:
            raise ValidationError("Item discount percent must be between 0 and 100")
    if command.is_debt and not (command.customer_name and command.customer_name.strip()):
        raise ValidationError("A credit sale needs a customer name")
    if command.discount is not None:
        try:
            DiscountType(command.discount.discount_type)
        except ValueError:
            raise ValidationError(f"Unknown discount type: {command.discount.discount_type}") from None
        core_logic.require_nonnegative_money(command.discount.discount_value, label="Discount value")
    if command.payment is not None:
        payment = command.payment
        for label, amount in (
            ("USD payment", payment.usd_amount),
            ("LC payment", payment.lc_amount),
            ("USD change", payment.change_given_usd),
            ("LC change", payment.change_given_lc),
        ):
            core_logic.require_nonnegative_money(amount, label=label)
    return currency


def _check_stock(context: RuntimeContext, lines: Sequence[SaleLine]) -> dict:
    """Look up every referenced item and verify the combined quantity is on hand."""

    required: "OrderedDict[CatalogReference, int]" = OrderedDict()
    for line in lines:
        required[line.catalog_ref] = required.get(line.catalog_ref, 0) + int(line.quantity)

    items = {}
    for ref, quantity in required.items():
        item = catalog.get_item(context, ref)
        if item.stock < quantity:
            log.warning("Sale rejected: %s has %s in stock, %s required", ref, item.stock, quantity)
            raise core_logic.InsufficientStockError(f"{item.name} ({ref})", item.stock, quantity)
        items[ref] = item
    return items


def _global_ratio(command: SaleCommand) -> Decimal:
    if command.discount is None:
        return Decimal("1")
    subtotal = sum(
        (line.unit_selling_price * (1 - line.discount_percent / HUNDRED) * line.quantity for line in command.items),
        ZERO,
    )
    if subtotal <= ZERO:
        return Decimal("1")
    return command.total / subtotal


def final_unit_price(unit_selling_price: Decimal, discount_percent: Decimal, ratio: Decimal) -> Decimal:
    """Apply the item's percent discount, then the whole-sale ratio."""

    return quantize_money(unit_selling_price * (1 - discount_percent / HUNDRED) * ratio)


def commit_sale(context: RuntimeContext, command: SaleCommand) -> SaleResult:
    """Validate and settle a sale as one atomic unit of work.

    Stock is taken out for every line whether or not the sale is on credit.
    A cash sale credits the balances with the money actually kept and adds
    its profit to the running counter. A credit sale opens a customer debt
    instead and leaves balances and profit untouched until the debt is paid.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        SaleResult: The persisted sale, its lines, the debt for a credit sale,
            and the profit booked for it.

    Raises:
        ValidationError: If the basket, total, currency, or payment is
            malformed.
        NotFoundError: If a referenced catalog item does not exist.
        InsufficientStockError: If any item has fewer units than required.
    """
    currency = _validate(command)
    moment = core_logic.resolve_timestamp(command.timestamp)
    created_at = core_logic.format_timestamp(moment)
    total = quantize_money(command.total)

    with core_logic.unit_of_work(context, "commit_sale"):
        rates = exchange.resolve_rate_snapshot(context)
        items = _check_stock(context, command.items)
        for line in command.items:
            catalog.decrement_stock(context, line.catalog_ref, line.quantity)

        is_multi_currency = False
        paid = CurrencyAmounts.of(currency, total)
        if command.payment is not None:
            net = command.payment.net_amounts()
            paid = net
            is_multi_currency = command.payment.usd_amount > ZERO and command.payment.lc_amount > ZERO

        sale = core_logic.insert_row(
            context,
            SALES_SHEET,
            created_at=created_at,
            total=total,
            currency=currency.value,
            customer_name=command.customer_name.strip() if command.customer_name else None,
            is_debt=bool(command.is_debt),
            is_multi_currency=is_multi_currency,
            paid_usd=ZERO if command.is_debt else paid.usd,
            paid_lc=ZERO if command.is_debt else paid.lc,
            exchange_rate_usd_to_lc=rates.usd_to_lc,
            exchange_rate_lc_to_usd=rates.lc_to_usd,
            discount_type=DiscountType(command.discount.discount_type).value if command.discount else None,
            discount_value=command.discount.discount_value if command.discount else None,
        )

        ratio = _global_ratio(command)
        written: List[data_manager.SaleItemRow] = []
        profit_in_sale_currency = ZERO
        for line in command.items:
            item = items[line.catalog_ref]
            unit_price = final_unit_price(line.unit_selling_price, line.discount_percent, ratio)
            cost = cost_in_sale_currency(item.buying_price, item.currency, currency.value, rates)
            profit = line_profit(unit_price, cost, line.quantity)
            profit_in_sale_currency += profit
            written.append(
                core_logic.insert_row(
                    context,
                    SALE_ITEMS_SHEET,
                    sale_id=sale.id,
                    catalog_kind=line.catalog_ref.kind.value,
                    catalog_id=line.catalog_ref.item_id,
                    name=item.name,
                    quantity=int(line.quantity),
                    unit_selling_price=unit_price,
                    unit_buying_price=item.buying_price,
                    currency=currency.value,
                    catalog_item_currency=item.currency,
                    discount_percent=line.discount_percent,
                    original_selling_price=quantize_money(line.unit_selling_price),
                    profit_in_sale_currency=profit,
                    buying_price_in_sale_currency=cost,
                )
            )

        debt = None
        profit_currency, profit_amount = profit_attribution(sale, profit_in_sale_currency)
        if command.is_debt:
            debt = core_logic.insert_row(
                context,
                CUSTOMER_DEBTS_SHEET,
                customer_name=sale.customer_name,
                amount=total,
                currency=currency.value,
                description=command.description or f"Sale #{sale.id}",
                sale_ref=sale.id,
                created_at=created_at,
                paid_at=None,
                payment_usd_amount=ZERO,
                payment_lc_amount=ZERO,
                payment_currency_used=None,
                payment_exchange_rate_usd_to_lc=None,
                payment_exchange_rate_lc_to_usd=None,
            )
        else:
            ledger.apply_delta(
                context,
                paid,
                transaction_type=TransactionType.SALE,
                description=command.description or f"Sale #{sale.id}",
                reference_id=sale.id,
                reference_type=ReferenceType.SALE,
                timestamp=moment,
            )
            realize_sale_profit(context, sale, profit_in_sale_currency)

    log.info(
        "Committed sale %s (%s lines, total=%s %s, debt=%s, profit=%s %s)",
        sale.id,
        len(written),
        total,
        currency.value,
        bool(command.is_debt),
        profit_amount,
        profit_currency.value,
    )
    return SaleResult(
        sale=sale,
        items=written,
        debt=debt,
        profit=profit_amount,
        profit_currency=profit_currency,
    )
