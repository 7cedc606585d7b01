"""Inbound purchases (buying history) and their reversal.

A purchase brings stock in and money out. Entries priced in one currency pay
their total in that currency; ``MULTI`` entries are priced in USD and record
the split actually paid in each currency, which is what a return refunds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from . import catalog, core_logic, data_manager, ledger, log
from .catalog import CatalogReference
from .constants import Currency, EntryCurrency, ReferenceType, SheetName, TransactionType
from .core_logic import NotFoundError, RuntimeContext, ValidationError, quantize_money
from .exchange import ZERO, CurrencyAmounts

BUYING_HISTORY_SHEET = SheetName.BUYING_HISTORY.value
BUYING_HISTORY_ITEMS_SHEET = SheetName.BUYING_HISTORY_ITEMS.value


@dataclass(frozen=True)
class PurchaseLine:
    """One line of a purchase: what came in, how many, and the unit cost."""

    catalog_ref: CatalogReference
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording stock bought from a supplier.

    ``multi_currency_usd``/``multi_currency_lc`` are only read for ``MULTI``
    entries, whose lines are priced in USD.
    """

    supplier: str
    currency: EntryCurrency
    lines: Sequence[PurchaseLine]
    multi_currency_usd: Decimal = ZERO
    multi_currency_lc: Decimal = ZERO
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseResult:
    entry: data_manager.BuyingHistoryRow
    items: List[data_manager.BuyingHistoryItemRow] = field(default_factory=list)
    paid: CurrencyAmounts = CurrencyAmounts()


@dataclass(frozen=True)
class PurchaseReturn:
    """Outcome of returning a purchase or part of one.

    ``entry`` is ``None`` once the entry has been deleted.
    """

    entry_id: int
    refund: CurrencyAmounts
    returned_value: Decimal
    entry: Optional[data_manager.BuyingHistoryRow] = None


def get_entry(context: RuntimeContext, entry_id: int) -> data_manager.BuyingHistoryRow:
    """Return a buying history entry.

    Raises:
        NotFoundError: If the entry does not exist.
    """

    return core_logic.get_row(context, BUYING_HISTORY_SHEET, entry_id, label="Buying history entry")


def entry_items(context: RuntimeContext, entry_id: int) -> List[data_manager.BuyingHistoryItemRow]:
    """Return the lines of a buying history entry in insertion order."""

    return [row for row in core_logic.list_rows(context, BUYING_HISTORY_ITEMS_SHEET) if row.entry_id == entry_id]


def _entry_split(entry: data_manager.BuyingHistoryRow) -> CurrencyAmounts:
    if entry.currency == EntryCurrency.MULTI.value:
        return CurrencyAmounts(usd=entry.multi_currency_usd, lc=entry.multi_currency_lc)
    return CurrencyAmounts.of(entry.currency, entry.total_price)


def _line_currency(currency: EntryCurrency) -> str:
    return Currency.USD.value if currency is EntryCurrency.MULTI else currency.value


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> PurchaseResult:
    """Record a purchase, add its stock, and pay for it out of the balances.

    Raises:
        ValidationError: If the supplier is blank, there are no lines, a
            quantity or price is invalid, or a ``MULTI`` split is empty.
        NotFoundError: If a line references an unknown catalog item.
    """

    if not command.supplier or not command.supplier.strip():
        raise ValidationError("Supplier is required")
    if not command.lines:
        log.error("Purchase rejected: no lines")
        raise ValidationError("A purchase needs at least one line")
    try:
        currency = EntryCurrency(command.currency)
    except ValueError:
        raise ValidationError(f"Unsupported currency: {command.currency}") from None
    for line in command.lines:
        core_logic.require_positive_quantity(line.quantity)
        core_logic.require_nonnegative_money(line.unit_price, label="Unit price")

    total = quantize_money(sum((line.unit_price * line.quantity for line in command.lines), ZERO))
    if currency is EntryCurrency.MULTI:
        core_logic.require_nonnegative_money(command.multi_currency_usd, label="USD paid")
        core_logic.require_nonnegative_money(command.multi_currency_lc, label="LC paid")
        paid = CurrencyAmounts(usd=command.multi_currency_usd, lc=command.multi_currency_lc).quantized()
        if paid.is_zero():
            raise ValidationError("A MULTI purchase needs a USD or LC payment")
    else:
        paid = CurrencyAmounts.of(currency.value, total)

    moment = core_logic.resolve_timestamp(command.timestamp)
    line_currency = _line_currency(currency)
    with core_logic.unit_of_work(context, "record_purchase"):
        entry = core_logic.insert_row(
            context,
            BUYING_HISTORY_SHEET,
            supplier=command.supplier.strip(),
            created_at=core_logic.format_timestamp(moment),
            currency=currency.value,
            total_price=total,
            multi_currency_usd=paid.usd if currency is EntryCurrency.MULTI else ZERO,
            multi_currency_lc=paid.lc if currency is EntryCurrency.MULTI else ZERO,
            description=command.description,
        )
        items = []
        for line in command.lines:
            item = catalog.get_item(context, line.catalog_ref)
            catalog.restore_stock(context, line.catalog_ref, line.quantity)
            catalog.reactivate_if_archived(context, line.catalog_ref)
            items.append(
                core_logic.insert_row(
                    context,
                    BUYING_HISTORY_ITEMS_SHEET,
                    entry_id=entry.id,
                    catalog_kind=line.catalog_ref.kind.value,
                    catalog_id=line.catalog_ref.item_id,
                    item_name=item.name,
                    quantity=int(line.quantity),
                    unit_price=quantize_money(line.unit_price),
                    currency=line_currency,
                    total_price=quantize_money(line.unit_price * line.quantity),
                )
            )
        ledger.debit(
            context,
            paid,
            transaction_type=TransactionType.PURCHASE,
            description=f"Purchase from {entry.supplier}" + (f" - {command.description}" if command.description else ""),
            reference_id=entry.id,
            reference_type=ReferenceType.BUYING_HISTORY,
            timestamp=moment,
        )

    log.info("Recorded purchase %s from '%s' (%s lines, usd=%s lc=%s)", entry.id, entry.supplier, len(items), paid.usd, paid.lc)
    return PurchaseResult(entry=entry, items=items, paid=paid)


def _take_back(context: RuntimeContext, item: data_manager.BuyingHistoryItemRow, quantity: int) -> None:
    ref = CatalogReference(item.catalog_kind, item.catalog_id)
    if catalog.find_item(context, ref) is None:
        log.warning("Catalog item %s no longer exists; skipping stock removal for purchase line %s", ref, item.id)
        return
    catalog.decrement_stock(context, ref, quantity)


def _refund(context: RuntimeContext, entry_id: int, refund: CurrencyAmounts, description: str, moment: datetime) -> None:
    ledger.credit(
        context,
        refund,
        transaction_type=TransactionType.BUYING_HISTORY_RETURN,
        description=description,
        reference_id=entry_id,
        reference_type=ReferenceType.BUYING_HISTORY,
        timestamp=moment,
    )


def return_buying_history_entry(
    context: RuntimeContext,
    entry_id: int,
    *,
    timestamp: Optional[datetime] = None,
) -> PurchaseReturn:
    """Send a whole purchase back to the supplier.

    The stock that came in is removed again, the amounts paid are credited
    back in their original currencies, and the entry and its lines are
    deleted.

    Raises:
        NotFoundError: If the entry does not exist.
        InsufficientStockError: If some of the purchased units were already
            sold.
    """

    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, "return_buying_history_entry"):
        entry = get_entry(context, entry_id)
        items = entry_items(context, entry.id)
        for item in items:
            _take_back(context, item, item.quantity)
        refund = _entry_split(entry).quantized()
        for item in items:
            core_logic.delete_row(context, BUYING_HISTORY_ITEMS_SHEET, item.id)
        core_logic.delete_row(context, BUYING_HISTORY_SHEET, entry.id)
        _refund(context, entry.id, refund, f"Buying history return: {entry.description or entry.supplier}", moment)

    log.info("Returned purchase %s (refund usd=%s lc=%s)", entry.id, refund.usd, refund.lc)
    return PurchaseReturn(entry_id=entry.id, refund=refund, returned_value=entry.total_price)


def return_buying_history_item(
    context: RuntimeContext,
    entry_id: int,
    item_id: int,
    quantity: Optional[int] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> PurchaseReturn:
    """Send ``quantity`` units of one purchase line back (the whole line by default).

    Single-currency entries refund ``unit_price * quantity``. ``MULTI``
    entries refund the same share of the recorded paid split; the last
    return of an entry refunds whatever is left of the split. Totals shrink
    with each partial return and the entry is deleted with its last line.

    Raises:
        NotFoundError: If the entry or the line does not exist.
        ValidationError: If the quantity is not positive.
        InsufficientStockError: If the units were already sold.
    """

    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, "return_buying_history_item"):
        entry = get_entry(context, entry_id)
        item = core_logic.find_row(context, BUYING_HISTORY_ITEMS_SHEET, item_id)
        if item is None or item.entry_id != entry.id:
            log.warning("Purchase line %s not found on entry %s", item_id, entry.id)
            raise NotFoundError(f"Item {item_id} not found in buying history entry {entry.id}")

        returned = item.quantity if quantity is None else min(core_logic.require_positive_quantity(quantity), item.quantity)
        _take_back(context, item, returned)
        returned_value = quantize_money(item.unit_price * returned)

        left = item.quantity - returned
        if left <= 0:
            core_logic.delete_row(context, BUYING_HISTORY_ITEMS_SHEET, item.id)
        else:
            core_logic.update_row(
                context,
                BUYING_HISTORY_ITEMS_SHEET,
                item.id,
                quantity=left,
                total_price=quantize_money(item.unit_price * left),
            )

        split = _entry_split(entry)
        remaining_items = entry_items(context, entry.id)
        if not remaining_items:
            refund = split.quantized()
        elif entry.currency == EntryCurrency.MULTI.value:
            ratio = returned_value / entry.total_price if entry.total_price > ZERO else Decimal("0")
            refund = split.scaled(min(Decimal("1"), ratio))
        else:
            refund = CurrencyAmounts.of(entry.currency, returned_value)

        updated: Optional[data_manager.BuyingHistoryRow] = None
        if not remaining_items:
            core_logic.delete_row(context, BUYING_HISTORY_SHEET, entry.id)
        else:
            left_split = split - refund
            updated = core_logic.update_row(
                context,
                BUYING_HISTORY_SHEET,
                entry.id,
                total_price=quantize_money(sum((row.total_price for row in remaining_items), ZERO)),
                multi_currency_usd=left_split.usd if entry.currency == EntryCurrency.MULTI.value else ZERO,
                multi_currency_lc=left_split.lc if entry.currency == EntryCurrency.MULTI.value else ZERO,
            )

        _refund(
            context,
            entry.id,
            refund,
            f"Buying history item return: {item.item_name} (qty: {returned})",
            moment,
        )

    log.info(
        "Returned %s x %s from purchase %s (refund usd=%s lc=%s)",
        returned,
        item.item_name,
        entry.id,
        refund.usd,
        refund.lc,
    )
    return PurchaseReturn(entry_id=entry.id, refund=refund, returned_value=returned_value, entry=updated)


def list_entries(context: RuntimeContext) -> List[data_manager.BuyingHistoryRow]:
    """Return every buying history entry, oldest first."""

    return core_logic.list_rows(context, BUYING_HISTORY_SHEET)
