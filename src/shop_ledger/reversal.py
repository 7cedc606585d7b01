"""Reversal engine for sales and individual sale lines.

Returns only ever read values frozen on the rows being reversed: paid
amounts, unit prices, catalog currencies, and the sale's exchange rate
snapshot. Current catalog prices and the live rate are never consulted, so a
return exactly undoes what the sale did.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from . import catalog, core_logic, data_manager, debts, ledger, log, settlement
from .allocation import is_settled
from .catalog import CatalogReference
from .constants import Currency, DebtType, ReferenceType, TransactionType
from .core_logic import NotFoundError, RuntimeContext, ValidationError, quantize_money
from .exchange import ZERO, CurrencyAmounts


@dataclass(frozen=True)
class SaleReturn:
    """Outcome of returning a whole sale."""

    sale: data_manager.SaleRow
    items: List[data_manager.SaleItemRow] = field(default_factory=list)
    refund: CurrencyAmounts = CurrencyAmounts()
    profit_reversed: Decimal = ZERO
    profit_currency: Currency = Currency.USD
    skipped_items: List[CatalogReference] = field(default_factory=list)


@dataclass(frozen=True)
class SaleItemReturn:
    """Outcome of returning part or all of one sale line.

    ``sale`` and ``item`` are ``None`` once they have been deleted.
    """

    sale_id: int
    item_id: int
    quantity: int
    return_value: Decimal
    refund: CurrencyAmounts = CurrencyAmounts()
    profit_reversed: Decimal = ZERO
    profit_currency: Currency = Currency.USD
    sale: Optional[data_manager.SaleRow] = None
    item: Optional[data_manager.SaleItemRow] = None
    debt: Optional[data_manager.CustomerDebtRow] = None


def _line_reference(item: data_manager.SaleItemRow) -> CatalogReference:
    return CatalogReference(item.catalog_kind, item.catalog_id)


def _restock(context: RuntimeContext, item: data_manager.SaleItemRow, quantity: int) -> bool:
    """Put returned units back on the shelf; ``False`` when the item is gone."""

    ref = _line_reference(item)
    if catalog.find_item(context, ref) is None:
        log.warning("Catalog item %s no longer exists; skipping restock of sale line %s", ref, item.id)
        return False
    catalog.restore_stock(context, ref, quantity)
    catalog.reactivate_if_archived(context, ref)
    return True


def _profit_realized(sale: data_manager.SaleRow, debt: Optional[data_manager.CustomerDebtRow]) -> bool:
    if not sale.is_debt:
        return True
    return debt is not None and debt.paid_at is not None


def _sale_refund(sale: data_manager.SaleRow, debt: Optional[data_manager.CustomerDebtRow]) -> CurrencyAmounts:
    """Money that entered the drawer because of ``sale``."""

    if sale.is_debt:
        if debt is None:
            return CurrencyAmounts()
        if debt.paid_at is None:
            return CurrencyAmounts(usd=debt.payment_usd_amount, lc=debt.payment_lc_amount)
        # Settled debts copied their payments onto the sale; line returns shrink that copy.
        return CurrencyAmounts(usd=sale.paid_usd, lc=sale.paid_lc)
    paid = CurrencyAmounts(usd=sale.paid_usd, lc=sale.paid_lc)
    if paid.is_zero():
        return CurrencyAmounts.of(sale.currency, sale.total)
    return paid


def _delete_debt(context: RuntimeContext, debt: data_manager.CustomerDebtRow) -> None:
    # Payment rows go first so a reused debt id never inherits them.
    for payment in debts.debt_payments(context, DebtType.CUSTOMER, debt.id):
        core_logic.delete_row(context, debts.DEBT_PAYMENTS_SHEET, payment.id)
    core_logic.delete_row(context, debts.CUSTOMER_DEBTS_SHEET, debt.id)


def _record(
    context: RuntimeContext,
    delta: CurrencyAmounts,
    *,
    transaction_type: TransactionType,
    description: str,
    sale_id: int,
    moment: datetime,
) -> None:
    entry = dict(
        transaction_type=transaction_type,
        description=description,
        reference_id=sale_id,
        reference_type=ReferenceType.SALE,
        timestamp=moment,
    )
    if delta.is_zero():
        ledger.log_transaction(context, amounts=delta, **entry)
    else:
        ledger.apply_delta(context, delta, **entry)


def return_sale(context: RuntimeContext, sale_id: int, *, timestamp: Optional[datetime] = None) -> SaleReturn:
    """Undo a sale completely.

    Stock is put back for every line and archived catalog items are
    reactivated. A cash sale takes its recorded paid amounts back out of the
    balances (rows without a paid split fall back to the total in the sale
    currency). A credit sale takes back whatever its debt has received so far.
    Profit already booked for the sale is reversed from the frozen line
    values. Lines, the linked debt, and the sale are then deleted.

    Args:
        context (RuntimeContext): Runtime state.
        sale_id (int): Sale to return.
        timestamp (datetime | None): Event time; defaults to now.

    Returns:
        SaleReturn: The deleted rows, the refund, and the reversed profit.

    Raises:
        NotFoundError: If the sale does not exist.
    """

    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, "return_sale"):
        sale = settlement.get_sale(context, sale_id)
        items = settlement.sale_items(context, sale.id)
        debt = settlement.linked_customer_debt(context, sale.id)

        skipped: List[CatalogReference] = []
        for item in items:
            if not _restock(context, item, item.quantity):
                skipped.append(_line_reference(item))

        refund = _sale_refund(sale, debt).quantized()

        profit_currency, profit_amount = settlement.profit_attribution(sale, ZERO)
        if _profit_realized(sale, debt):
            profit = sum((settlement.derive_line_profit(sale, item, item.quantity) for item in items), ZERO)
            profit_currency, profit_amount = settlement.realize_sale_profit(context, sale, -profit)

        for item in items:
            core_logic.delete_row(context, settlement.SALE_ITEMS_SHEET, item.id)
        if debt is not None:
            _delete_debt(context, debt)
        core_logic.delete_row(context, settlement.SALES_SHEET, sale.id)

        _record(
            context,
            -refund,
            transaction_type=TransactionType.SALE_RETURN,
            description=f"Sale return #{sale.id}",
            sale_id=sale.id,
            moment=moment,
        )

    log.info(
        "Returned sale %s (%s lines, refund usd=%s lc=%s, profit %s %s)",
        sale.id,
        len(items),
        refund.usd,
        refund.lc,
        profit_amount,
        profit_currency.value,
    )
    return SaleReturn(
        sale=sale,
        items=items,
        refund=refund,
        profit_reversed=-profit_amount,
        profit_currency=profit_currency,
        skipped_items=skipped,
    )


def _line_refund(sale: data_manager.SaleRow, return_value: Decimal, override: Optional[CurrencyAmounts]) -> CurrencyAmounts:
    if override is not None:
        core_logic.require_nonnegative_money(override.usd, label="USD refund")
        core_logic.require_nonnegative_money(override.lc, label="LC refund")
        return override.quantized()
    paid = CurrencyAmounts(usd=sale.paid_usd, lc=sale.paid_lc)
    # Any money taken in the other currency means the drawer holds a split.
    if paid.get(Currency(sale.currency).other) != ZERO and sale.total > ZERO:
        return paid.scaled(min(Decimal("1"), return_value / sale.total))
    return CurrencyAmounts.of(sale.currency, return_value)


def _shrink_debt(
    context: RuntimeContext,
    debt: data_manager.CustomerDebtRow,
    return_value: Decimal,
    moment: datetime,
) -> data_manager.CustomerDebtRow:
    """Lower an open debt by ``return_value``; mark it paid once nothing is owed."""

    new_amount = max(ZERO, quantize_money(debt.amount - return_value))
    updated = core_logic.update_row(context, debts.CUSTOMER_DEBTS_SHEET, debt.id, amount=new_amount)
    remaining = debts.remaining_balance(context, DebtType.CUSTOMER, updated)
    if is_settled(remaining, debts.tolerance_for(context, DebtType.CUSTOMER)):
        updated = core_logic.update_row(
            context,
            debts.CUSTOMER_DEBTS_SHEET,
            debt.id,
            paid_at=core_logic.format_timestamp(moment),
        )
        log.info("Customer debt %s closed by a returned line", debt.id)
    return updated


def return_sale_item(
    context: RuntimeContext,
    sale_id: int,
    item_id: int,
    quantity: Optional[int] = None,
    refund: Optional[CurrencyAmounts] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> SaleItemReturn:
    """Return ``quantity`` units of one sale line (the whole line by default).

    The returned value is ``unit_selling_price * quantity`` in the sale
    currency. When any of the recorded paid split is in the other currency
    the refund is that share of the split; otherwise it is the returned
    value in the sale currency. ``refund`` overrides the computed amounts.
    Only the returned units' profit is reversed, and only when the sale's
    profit was booked.

    A credit sale whose debt is still open gets no refund: the debt amount is
    lowered instead and the debt is closed once nothing remains owed. Any
    money the customer already paid beyond the new amount is not refunded.

    When the last line goes, the sale and its debt are deleted and whatever
    an open debt had received is refunded; otherwise the sale total and paid
    split shrink accordingly.

    Args:
        context (RuntimeContext): Runtime state.
        sale_id (int): Sale owning the line.
        item_id (int): Line to return.
        quantity (int | None): Units to return; capped at the line quantity.
        refund (CurrencyAmounts | None): Custom refund amounts.
        timestamp (datetime | None): Event time; defaults to now.

    Returns:
        SaleItemReturn: What was returned, refunded, and left behind.

    Raises:
        NotFoundError: If the sale or line does not exist.
        ValidationError: If the quantity is not positive, or a refund is given
            for a sale whose debt is still open.
    """

    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, "return_sale_item"):
        sale = settlement.get_sale(context, sale_id)
        item = core_logic.find_row(context, settlement.SALE_ITEMS_SHEET, item_id)
        if item is None or item.sale_id != sale.id:
            log.warning("Sale line %s not found on sale %s", item_id, sale.id)
            raise NotFoundError(f"Sale item {item_id} not found on sale {sale.id}")

        returned = item.quantity if quantity is None else min(core_logic.require_positive_quantity(quantity), item.quantity)
        _restock(context, item, returned)
        return_value = quantize_money(item.unit_selling_price * returned)

        debt = settlement.linked_customer_debt(context, sale.id) if sale.is_debt else None
        open_debt = debt is not None and debt.paid_at is None
        profit_realized = _profit_realized(sale, debt)

        if open_debt:
            if refund is not None:
                raise ValidationError("A refund cannot be given on a sale whose debt is still open")
            amounts = CurrencyAmounts()
        elif sale.is_debt and debt is None:
            amounts = CurrencyAmounts()
        else:
            amounts = _line_refund(sale, return_value, refund)

        profit_currency, profit_amount = settlement.profit_attribution(sale, ZERO)
        if profit_realized:
            line_part = settlement.derive_line_profit(sale, item, returned)
            profit_currency, profit_amount = settlement.realize_sale_profit(context, sale, -line_part)

        left = item.quantity - returned
        updated_item: Optional[data_manager.SaleItemRow] = None
        if left <= 0:
            core_logic.delete_row(context, settlement.SALE_ITEMS_SHEET, item.id)
        else:
            updated_item = core_logic.update_row(
                context,
                settlement.SALE_ITEMS_SHEET,
                item.id,
                quantity=left,
                profit_in_sale_currency=settlement.derive_line_profit(sale, item, left),
            )

        updated_sale: Optional[data_manager.SaleRow] = None
        if not settlement.sale_items(context, sale.id):
            if open_debt:
                # An open debt leaves with the sale; whatever it received goes back.
                amounts = CurrencyAmounts(usd=debt.payment_usd_amount, lc=debt.payment_lc_amount).quantized()
            if debt is not None:
                _delete_debt(context, debt)
                debt = None
            core_logic.delete_row(context, settlement.SALES_SHEET, sale.id)
            log.info("Sale %s deleted after its last line was returned", sale.id)
        else:
            changes = {"total": max(ZERO, quantize_money(sale.total - return_value))}
            if not open_debt:
                paid = CurrencyAmounts(usd=sale.paid_usd, lc=sale.paid_lc) - amounts
                changes.update(paid_usd=paid.usd, paid_lc=paid.lc)
            updated_sale = core_logic.update_row(context, settlement.SALES_SHEET, sale.id, **changes)
            if open_debt:
                debt = _shrink_debt(context, debt, return_value, moment)
                if debt.paid_at is not None:
                    debts.settle_originating_sale(context, debt)
                    updated_sale = settlement.get_sale(context, sale.id)

        _record(
            context,
            -amounts,
            transaction_type=TransactionType.SALE_ITEM_RETURN,
            description=f"Sale item return #{sale.id}: {item.name} x{returned}",
            sale_id=sale.id,
            moment=moment,
        )

    log.info(
        "Returned %s x %s from sale %s (value=%s %s, refund usd=%s lc=%s)",
        returned,
        item.name,
        sale.id,
        return_value,
        sale.currency,
        amounts.usd,
        amounts.lc,
    )
    return SaleItemReturn(
        sale_id=sale.id,
        item_id=item.id,
        quantity=returned,
        return_value=return_value,
        refund=amounts,
        profit_reversed=-profit_amount,
        profit_currency=profit_currency,
        sale=updated_sale,
        item=updated_item,
        debt=debt,
    )
