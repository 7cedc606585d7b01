"""Tests for the balance ledger, transaction log, and profit counters."""

from __future__ import annotations

from decimal import Decimal

import pytest

from shop_ledger import core_logic, ledger
from shop_ledger.constants import ReferenceType, TransactionType
from shop_ledger.exchange import CurrencyAmounts


def test_new_workbook_starts_with_zero_balances(runtime_context):
    """The bootstrap balance row should read as zero in both currencies."""

    assert ledger.get_balance(runtime_context) == CurrencyAmounts()
    assert ledger.list_transactions(runtime_context) == []


def test_opening_balance_credits_and_logs(runtime_context, reload_context, moments):
    """Opening cash should flow through the log like any other movement."""

    entry = ledger.record_opening_balance(
        runtime_context,
        CurrencyAmounts(usd=Decimal("500"), lc=Decimal("720000")),
        timestamp=moments(0),
    )

    assert entry.balance == CurrencyAmounts(usd=Decimal("500"), lc=Decimal("720000"))
    assert entry.transaction.type == TransactionType.OPENING_BALANCE.value
    assert entry.transaction.reference_type == ReferenceType.BALANCE.value
    reloaded = reload_context()
    assert ledger.get_balance(reloaded) == entry.balance
    (logged,) = ledger.list_transactions(reloaded)
    assert logged.created_at == moments(0).isoformat()


def test_debit_records_negative_amounts(runtime_context):
    """Debits should lower the balance and log negative amounts."""

    ledger.record_opening_balance(runtime_context, CurrencyAmounts(usd=Decimal("100")))
    entry = ledger.debit(
        runtime_context,
        CurrencyAmounts(usd=Decimal("30.5")),
        transaction_type=TransactionType.PURCHASE,
        description="Stock",
        reference_id=1,
        reference_type=ReferenceType.BUYING_HISTORY,
    )

    assert entry.balance.usd == Decimal("69.5")
    assert entry.transaction.amount_usd == Decimal("-30.5")
    assert entry.transaction.reference_id == 1


def test_credit_and_debit_reject_negative_amounts(runtime_context):
    """Signed amounts belong to apply_delta, not credit/debit."""

    with pytest.raises(core_logic.ValidationError):
        ledger.credit(
            runtime_context,
            CurrencyAmounts(usd=Decimal("-1")),
            transaction_type=TransactionType.SALE,
            description="bad",
        )
    with pytest.raises(core_logic.ValidationError):
        ledger.debit(
            runtime_context,
            CurrencyAmounts(lc=Decimal("-1")),
            transaction_type=TransactionType.PURCHASE,
            description="bad",
        )


def test_balances_may_go_negative(runtime_context):
    """Paying out more than the drawer holds is allowed."""

    entry = ledger.apply_delta(
        runtime_context,
        CurrencyAmounts(lc=Decimal("-5000")),
        transaction_type=TransactionType.COMPANY_DEBT_PAYMENT_FINAL,
        description="Supplier",
    )

    assert entry.balance.lc == Decimal("-5000")


def test_apply_delta_rounds_to_stored_precision(runtime_context):
    """Deltas are quantized before they touch the balances."""

    entry = ledger.apply_delta(
        runtime_context,
        CurrencyAmounts(usd=Decimal("1.234567")),
        transaction_type=TransactionType.SALE,
        description="Rounded",
    )

    assert entry.transaction.amount_usd == Decimal("1.2346")
    assert entry.balance.usd == Decimal("1.2346")


def test_log_transaction_refuses_money(runtime_context):
    """Only zero-amount summary entries may bypass the balances."""

    with pytest.raises(ValueError):
        ledger.log_transaction(
            runtime_context,
            TransactionType.COMPANY_DEBT_TOTAL_PAYMENT,
            CurrencyAmounts(usd=Decimal("1")),
            description="bad",
        )

    with core_logic.unit_of_work(runtime_context, "summary"):
        row = ledger.log_transaction(
            runtime_context,
            TransactionType.COMPANY_DEBT_TOTAL_PAYMENT,
            CurrencyAmounts(),
            description="Summary",
            reference_type=ReferenceType.COMPANY,
        )
    assert row.amount_usd == Decimal("0")
    assert ledger.get_balance(runtime_context) == CurrencyAmounts()


def test_balance_equals_sum_of_log(runtime_context, reload_context):
    """After any sequence of movements the balance equals the log total."""

    ledger.record_opening_balance(runtime_context, CurrencyAmounts(usd=Decimal("10"), lc=Decimal("1000")))
    ledger.credit(
        runtime_context,
        CurrencyAmounts(lc=Decimal("250")),
        transaction_type=TransactionType.SALE,
        description="Sale",
    )
    ledger.debit(
        runtime_context,
        CurrencyAmounts(usd=Decimal("4.25"), lc=Decimal("100")),
        transaction_type=TransactionType.PURCHASE,
        description="Purchase",
    )

    reloaded = reload_context()
    assert ledger.get_balance(reloaded) == ledger.summarize_transaction_log(reloaded)
    assert ledger.get_balance(reloaded) == CurrencyAmounts(usd=Decimal("5.75"), lc=Decimal("1150"))


def test_list_transactions_filters_by_reference(runtime_context):
    """Filtering by reference should only return matching entries."""

    for reference_id in (1, 2):
        ledger.credit(
            runtime_context,
            CurrencyAmounts(usd=Decimal("1")),
            transaction_type=TransactionType.SALE,
            description=f"Sale #{reference_id}",
            reference_id=reference_id,
            reference_type=ReferenceType.SALE,
        )

    rows = ledger.list_transactions(runtime_context, reference_type=ReferenceType.SALE, reference_id=2)

    assert [row.description for row in rows] == ["Sale #2"]


def test_profit_counters_accumulate_per_currency(runtime_context, reload_context):
    """Profit counters should add signed amounts and persist."""

    assert ledger.get_profit_totals(runtime_context) == CurrencyAmounts()

    ledger.add_profit(runtime_context, "USD", Decimal("30.5556"))
    ledger.add_profit(runtime_context, "IQD", Decimal("50"))
    total = ledger.add_profit(runtime_context, "USD", Decimal("-10"))

    assert total == Decimal("20.5556")
    assert ledger.get_profit_totals(reload_context()) == CurrencyAmounts(
        usd=Decimal("20.5556"), lc=Decimal("50")
    )


def test_get_counter_rejects_non_numeric_values(runtime_context):
    """Corrupted counters should raise instead of reading as zero."""

    core_logic.write_setting(runtime_context, "total_profit_usd", "lots")

    with pytest.raises(ValueError):
        ledger.get_counter(runtime_context, "total_profit_usd")
