"""Balance ledger, transaction log, and cumulative profit counters.

The two shop balances live in a singleton row of the ``Balances`` sheet and
change only through :func:`apply_delta`, which also appends the matching
``TransactionLog`` entry. Keeping both writes in one place means the
balances always equal the sum of the logged amounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from . import core_logic, data_manager, log
from .constants import BALANCE_ROW_ID, Currency, ReferenceType, SettingKey, SheetName, TransactionType
from .core_logic import RuntimeContext
from .exchange import ZERO, CurrencyAmounts

BALANCES_SHEET = SheetName.BALANCES.value
TRANSACTION_LOG_SHEET = SheetName.TRANSACTION_LOG.value

_PROFIT_KEYS = {
    Currency.USD: SettingKey.TOTAL_PROFIT_USD.value,
    Currency.LC: SettingKey.TOTAL_PROFIT_LC.value,
}


@dataclass(frozen=True)
class LedgerEntry:
    """Outcome of one balance mutation."""

    balance: CurrencyAmounts
    transaction: data_manager.TransactionLogRow


def _balance_row(context: RuntimeContext) -> data_manager.BalanceRow:
    row = core_logic.find_row(context, BALANCES_SHEET, BALANCE_ROW_ID)
    if row is None:
        log.warning("Balances row missing; creating it with zero balances")
        row = core_logic.insert_row(context, BALANCES_SHEET, usd=ZERO, lc=ZERO, last_updated=None)
    return row


def get_balance(context: RuntimeContext) -> CurrencyAmounts:
    """Return the current USD and LC balances."""

    row = _balance_row(context)
    return CurrencyAmounts(usd=row.usd, lc=row.lc)


def log_transaction(
    context: RuntimeContext,
    transaction_type: TransactionType,
    amounts: CurrencyAmounts,
    *,
    description: str,
    reference_id: Optional[int] = None,
    reference_type: Optional[ReferenceType] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionLogRow:
    """Append one entry to the transaction log without touching balances.

    Only zero-amount summary entries should be written this way; anything that
    moves money goes through :func:`apply_delta`.

    Raises:
        ValueError: If ``amounts`` is not zero.
    """

    if not amounts.is_zero():
        raise ValueError("Money-moving entries must be written through apply_delta")
    return _append_entry(
        context,
        transaction_type,
        amounts,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type,
        timestamp=timestamp,
    )


def _append_entry(
    context: RuntimeContext,
    transaction_type: TransactionType,
    amounts: CurrencyAmounts,
    *,
    description: str,
    reference_id: Optional[int],
    reference_type: Optional[ReferenceType],
    timestamp: Optional[datetime],
) -> data_manager.TransactionLogRow:
    moment = core_logic.resolve_timestamp(timestamp)
    return core_logic.insert_row(
        context,
        TRANSACTION_LOG_SHEET,
        type=TransactionType(transaction_type).value,
        amount_usd=amounts.usd,
        amount_lc=amounts.lc,
        description=description,
        reference_id=reference_id,
        reference_type=ReferenceType(reference_type).value if reference_type is not None else None,
        created_at=core_logic.format_timestamp(moment),
    )


def apply_delta(
    context: RuntimeContext,
    delta: CurrencyAmounts,
    *,
    transaction_type: TransactionType,
    description: str,
    reference_id: Optional[int] = None,
    reference_type: Optional[ReferenceType] = None,
    timestamp: Optional[datetime] = None,
) -> LedgerEntry:
    """Apply a signed change to both balances and log it.

    Positive components are money entering the shop, negative components are
    money leaving it. Amounts are rounded to the stored precision before they
    are applied, and the balance row and log entry are written inside one unit
    of work.

    Args:
        context (RuntimeContext): Runtime state.
        delta (CurrencyAmounts): Signed change per currency.
        transaction_type (TransactionType): Tag written to the log.
        description (str): Human readable summary.
        reference_id (int | None): Id of the entity that caused the change.
        reference_type (ReferenceType | None): Kind of that entity.
        timestamp (datetime | None): Event time; defaults to now.

    Returns:
        LedgerEntry: New balances and the appended log row.
    """

    delta = delta.quantized()
    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, f"ledger:{TransactionType(transaction_type).value}"):
        row = _balance_row(context)
        updated = CurrencyAmounts(usd=row.usd, lc=row.lc) + delta
        core_logic.update_row(
            context,
            BALANCES_SHEET,
            row.id,
            usd=updated.usd,
            lc=updated.lc,
            last_updated=core_logic.format_timestamp(moment),
        )
        entry = _append_entry(
            context,
            transaction_type,
            delta,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
            timestamp=moment,
        )

    log.info(
        "Ledger %s: usd %+f lc %+f (balance usd=%s lc=%s)",
        entry.type,
        delta.usd,
        delta.lc,
        updated.usd,
        updated.lc,
    )
    return LedgerEntry(balance=updated, transaction=entry)


def credit(context: RuntimeContext, amounts: CurrencyAmounts, **entry: Any) -> LedgerEntry:
    """Add non-negative ``amounts`` to the balances."""

    core_logic.require_nonnegative_money(amounts.usd, label="USD credit")
    core_logic.require_nonnegative_money(amounts.lc, label="LC credit")
    return apply_delta(context, amounts, **entry)


def debit(context: RuntimeContext, amounts: CurrencyAmounts, **entry: Any) -> LedgerEntry:
    """Subtract non-negative ``amounts`` from the balances."""

    core_logic.require_nonnegative_money(amounts.usd, label="USD debit")
    core_logic.require_nonnegative_money(amounts.lc, label="LC debit")
    return apply_delta(context, -amounts, **entry)


def record_opening_balance(
    context: RuntimeContext,
    amounts: CurrencyAmounts,
    *,
    description: str = "Opening balance",
    timestamp: Optional[datetime] = None,
) -> LedgerEntry:
    """Put starting cash into the drawer through the log."""

    return credit(
        context,
        amounts,
        transaction_type=TransactionType.OPENING_BALANCE,
        description=description,
        reference_type=ReferenceType.BALANCE,
        timestamp=timestamp,
    )


def list_transactions(
    context: RuntimeContext,
    *,
    reference_type: Optional[ReferenceType] = None,
    reference_id: Optional[int] = None,
) -> List[data_manager.TransactionLogRow]:
    """Return the transaction log in append order, optionally filtered."""

    rows = core_logic.list_rows(context, TRANSACTION_LOG_SHEET)
    if reference_type is not None:
        rows = [row for row in rows if row.reference_type == ReferenceType(reference_type).value]
    if reference_id is not None:
        rows = [row for row in rows if row.reference_id == reference_id]
    return rows


def summarize_transaction_log(context: RuntimeContext) -> CurrencyAmounts:
    """Sum the signed amounts of every log entry per currency."""

    total = CurrencyAmounts()
    for row in core_logic.list_rows(context, TRANSACTION_LOG_SHEET):
        total = total + CurrencyAmounts(usd=row.amount_usd, lc=row.amount_lc)
    return total


def get_counter(context: RuntimeContext, name: str) -> Decimal:
    """Return a numeric counter from the settings store (zero when unset)."""

    raw = core_logic.read_setting(context, name)
    if raw is None or str(raw).strip() == "":
        return ZERO
    try:
        return Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Setting '{name}' is not numeric: {raw!r}") from exc


def set_counter(context: RuntimeContext, name: str, value: Decimal) -> None:
    """Store a numeric counter in the settings store."""

    core_logic.write_setting(context, name, format(core_logic.quantize_money(value), "f"))


def get_profit_totals(context: RuntimeContext) -> CurrencyAmounts:
    """Return the cumulative realized profit per currency."""

    return CurrencyAmounts(
        usd=get_counter(context, _PROFIT_KEYS[Currency.USD]),
        lc=get_counter(context, _PROFIT_KEYS[Currency.LC]),
    )


def add_profit(context: RuntimeContext, currency: Any, amount: Decimal) -> Decimal:
    """Add ``amount`` (possibly negative) to the profit counter of ``currency``.

    Returns:
        Decimal: The new counter value.
    """

    currency = core_logic.require_currency(currency)
    key = _PROFIT_KEYS[currency]
    with core_logic.unit_of_work(context, "add_profit"):
        updated = core_logic.quantize_money(get_counter(context, key) + amount)
        set_counter(context, key, updated)
    log.info("Profit %s %+f (total %s)", currency.value, amount, updated)
    return updated
