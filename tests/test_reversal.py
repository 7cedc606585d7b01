"""Tests for returning whole sales and individual sale lines."""

from __future__ import annotations

from decimal import Decimal

import pytest

from shop_ledger import catalog, core_logic, debts, ledger, reversal, settlement
from shop_ledger.constants import Currency, DebtType, TransactionType
from shop_ledger.debts import DebtPaymentCommand
from shop_ledger.exchange import CurrencyAmounts
from shop_ledger.settlement import MultiCurrencyPayment, SaleCommand, SaleLine


def _sale(context, ref, *, price="50", quantity=2, currency="USD", **extra):
    return settlement.commit_sale(
        context,
        SaleCommand(
            items=[SaleLine(ref, quantity, Decimal(price))],
            total=Decimal(price) * quantity,
            currency=currency,
            **extra,
        ),
    )


def _usd_item(make_item, **overrides):
    values = {"buying_price": "30", "price": "50", "currency": "USD", "stock": 5}
    values.update(overrides)
    return make_item(**values)


# ---------------------------------------------------------------------------
# Whole sale returns
# ---------------------------------------------------------------------------


def test_return_cash_sale_undoes_everything(runtime_context, reload_context, make_item):
    """Stock, balance, and profit go back to where they were."""

    ref = make_item(buying_price="100", price="150", currency="IQD", stock=5)
    sold = _sale(runtime_context, ref, price="150", currency="IQD")

    result = reversal.return_sale(runtime_context, sold.sale.id)

    assert result.refund == CurrencyAmounts(lc=Decimal("300"))
    assert result.profit_reversed == Decimal("100")
    assert result.profit_currency is Currency.LC
    reloaded = reload_context()
    assert catalog.get_item(reloaded, ref).stock == 5
    assert ledger.get_balance(reloaded) == CurrencyAmounts()
    assert ledger.get_balance(reloaded) == ledger.summarize_transaction_log(reloaded)
    assert ledger.get_profit_totals(reloaded) == CurrencyAmounts()
    assert core_logic.list_rows(reloaded, settlement.SALES_SHEET) == []
    assert core_logic.list_rows(reloaded, settlement.SALE_ITEMS_SHEET) == []
    assert ledger.list_transactions(reloaded)[-1].type == TransactionType.SALE_RETURN.value


def test_return_unpaid_credit_sale_deletes_debt(runtime_context, reload_context, make_item):
    """An unpaid credit sale returns stock and drops its debt without a refund."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref, is_debt=True, customer_name="Ali")

    result = reversal.return_sale(runtime_context, sold.sale.id)

    assert result.refund.is_zero()
    reloaded = reload_context()
    assert catalog.get_item(reloaded, ref).stock == 5
    assert debts.list_debts(reloaded, DebtType.CUSTOMER, include_paid=True) == []
    assert ledger.get_balance(reloaded) == CurrencyAmounts()
    (entry,) = ledger.list_transactions(reloaded)
    assert entry.type == TransactionType.SALE_RETURN.value
    assert (entry.amount_usd, entry.amount_lc) == (Decimal("0"), Decimal("0"))


def test_return_partially_paid_credit_sale_refunds_payments(runtime_context, make_item):
    """Whatever the customer already paid is handed back."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref, is_debt=True, customer_name="Ali")
    debts.pay_customer_debt(runtime_context, sold.debt.id, DebtPaymentCommand(payment_usd=Decimal("40")))

    result = reversal.return_sale(runtime_context, sold.sale.id)

    assert result.refund == CurrencyAmounts(usd=Decimal("40"))
    assert ledger.get_balance(runtime_context) == CurrencyAmounts()
    assert core_logic.list_rows(runtime_context, debts.DEBT_PAYMENTS_SHEET) == []


def test_return_settled_credit_sale_reverses_profit(runtime_context, make_item):
    """Profit realized when the debt was settled is taken back."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref, is_debt=True, customer_name="Ali")
    debts.pay_customer_debt(runtime_context, sold.debt.id, DebtPaymentCommand(payment_usd=Decimal("100")))
    assert ledger.get_profit_totals(runtime_context) == CurrencyAmounts(usd=Decimal("40"))

    result = reversal.return_sale(runtime_context, sold.sale.id)

    assert result.refund == CurrencyAmounts(usd=Decimal("100"))
    assert ledger.get_profit_totals(runtime_context) == CurrencyAmounts()
    assert ledger.get_balance(runtime_context) == CurrencyAmounts()


def test_return_skips_missing_catalog_items(runtime_context, make_item):
    """Lines whose catalog item was removed are not restocked."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref)
    with core_logic.unit_of_work(runtime_context, "remove item"):
        core_logic.delete_row(runtime_context, ref.sheet_name, ref.item_id)

    result = reversal.return_sale(runtime_context, sold.sale.id)

    assert result.skipped_items == [ref]
    assert result.refund == CurrencyAmounts(usd=Decimal("100"))


def test_return_reactivates_archived_items(runtime_context, make_item):
    """Returning stock to an archived item brings it back."""

    ref = _usd_item(make_item, stock=2)
    sold = _sale(runtime_context, ref)
    with core_logic.unit_of_work(runtime_context, "archive"):
        core_logic.update_row(runtime_context, ref.sheet_name, ref.item_id, archived=True)

    reversal.return_sale(runtime_context, sold.sale.id)

    item = catalog.get_item(runtime_context, ref)
    assert item.archived is False
    assert item.stock == 2


def test_return_unknown_sale_raises(runtime_context):
    """Returning a sale that does not exist raises NotFoundError."""

    with pytest.raises(core_logic.NotFoundError):
        reversal.return_sale(runtime_context, 404)


# ---------------------------------------------------------------------------
# Sale line returns
# ---------------------------------------------------------------------------


def test_partial_line_return_shrinks_sale(runtime_context, reload_context, make_item):
    """Returning one of two units at 50 USD refunds 50 and keeps one unit."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref)
    (line,) = sold.items

    result = reversal.return_sale_item(runtime_context, sold.sale.id, line.id, 1)

    assert result.return_value == Decimal("50")
    assert result.refund == CurrencyAmounts(usd=Decimal("50"))
    assert result.profit_reversed == Decimal("20")
    reloaded = reload_context()
    sale = settlement.get_sale(reloaded, sold.sale.id)
    assert sale.total == Decimal("50")
    assert sale.paid_usd == Decimal("50")
    (remaining,) = settlement.sale_items(reloaded, sold.sale.id)
    assert remaining.quantity == 1
    assert remaining.profit_in_sale_currency == Decimal("20")
    assert catalog.get_item(reloaded, ref).stock == 4
    assert ledger.get_profit_totals(reloaded) == CurrencyAmounts(usd=Decimal("20"))
    assert ledger.get_balance(reloaded) == CurrencyAmounts(usd=Decimal("50"))


def test_quantity_is_capped_and_last_line_deletes_sale(runtime_context, make_item):
    """Returning more than the line holds returns the whole line."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref)
    (line,) = sold.items

    result = reversal.return_sale_item(runtime_context, sold.sale.id, line.id, 10)

    assert result.quantity == 2
    assert result.sale is None
    assert result.item is None
    assert core_logic.find_row(runtime_context, settlement.SALES_SHEET, sold.sale.id) is None
    assert catalog.get_item(runtime_context, ref).stock == 5


def test_last_line_of_partly_paid_credit_sale_refunds_payments(runtime_context, reload_context, make_item):
    """Money already collected on the debt goes back when the sale disappears."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref, is_debt=True, customer_name="Ali")
    debts.pay_customer_debt(runtime_context, sold.debt.id, DebtPaymentCommand(payment_usd=Decimal("40")))
    (line,) = sold.items

    result = reversal.return_sale_item(runtime_context, sold.sale.id, line.id)

    assert result.refund == CurrencyAmounts(usd=Decimal("40"))
    assert result.sale is None
    assert result.debt is None
    reloaded = reload_context()
    assert core_logic.list_rows(reloaded, settlement.SALES_SHEET) == []
    assert core_logic.list_rows(reloaded, debts.CUSTOMER_DEBTS_SHEET) == []
    assert core_logic.list_rows(reloaded, debts.DEBT_PAYMENTS_SHEET) == []
    assert ledger.get_balance(reloaded) == CurrencyAmounts()
    assert ledger.get_balance(reloaded) == ledger.summarize_transaction_log(reloaded)
    assert catalog.get_item(reloaded, ref).stock == 5


def test_open_debt_line_return_lowers_debt(runtime_context, make_item):
    """An open credit sale shrinks its debt instead of refunding."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref, is_debt=True, customer_name="Ali")
    (line,) = sold.items

    result = reversal.return_sale_item(runtime_context, sold.sale.id, line.id, 1)

    assert result.refund.is_zero()
    assert result.debt.amount == Decimal("50")
    assert result.debt.paid_at is None
    assert result.sale.total == Decimal("50")
    assert ledger.get_balance(runtime_context) == CurrencyAmounts()
    assert ledger.get_profit_totals(runtime_context) == CurrencyAmounts()


def test_line_return_can_settle_partially_paid_debt(runtime_context, make_item):
    """When the shrunk debt is covered by past payments the sale settles."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref, is_debt=True, customer_name="Ali")
    debts.pay_customer_debt(runtime_context, sold.debt.id, DebtPaymentCommand(payment_usd=Decimal("50")))
    (line,) = sold.items

    result = reversal.return_sale_item(runtime_context, sold.sale.id, line.id, 1)

    assert result.debt.paid_at is not None
    assert result.sale.paid_usd == Decimal("50")
    assert ledger.get_profit_totals(runtime_context) == CurrencyAmounts(usd=Decimal("20"))
    assert ledger.get_balance(runtime_context) == CurrencyAmounts(usd=Decimal("50"))


def test_multi_currency_line_return_is_pro_rated(runtime_context, make_item):
    """Half the sale value refunds half of each paid currency."""

    ref = _usd_item(make_item)
    payment = MultiCurrencyPayment(usd_amount=Decimal("50"), lc_amount=Decimal("72000"))
    sold = _sale(runtime_context, ref, payment=payment)
    (line,) = sold.items

    result = reversal.return_sale_item(runtime_context, sold.sale.id, line.id, 1)

    assert result.refund == CurrencyAmounts(usd=Decimal("25"), lc=Decimal("36000"))
    assert (result.sale.paid_usd, result.sale.paid_lc) == (Decimal("25"), Decimal("36000"))
    assert ledger.get_balance(runtime_context) == CurrencyAmounts(usd=Decimal("25"), lc=Decimal("36000"))
    assert ledger.get_balance(runtime_context) == ledger.summarize_transaction_log(runtime_context)

    last = reversal.return_sale_item(runtime_context, sold.sale.id, line.id)

    assert last.refund == CurrencyAmounts(usd=Decimal("25"), lc=Decimal("36000"))
    assert ledger.get_balance(runtime_context) == CurrencyAmounts()
    assert ledger.get_balance(runtime_context) == ledger.summarize_transaction_log(runtime_context)


def test_line_return_refunds_in_currency_actually_paid(runtime_context, reload_context, make_item):
    """An LC sale paid only in USD gives USD back."""

    ref = make_item(buying_price="100000", price="144000", currency="IQD", stock=5)
    payment = MultiCurrencyPayment(usd_amount=Decimal("200"))
    sold = _sale(runtime_context, ref, price="144000", currency="IQD", payment=payment)
    (line,) = sold.items

    result = reversal.return_sale_item(runtime_context, sold.sale.id, line.id, 1)

    assert result.refund == CurrencyAmounts(usd=Decimal("100"))
    assert (result.sale.paid_usd, result.sale.paid_lc) == (Decimal("100"), Decimal("0"))
    reloaded = reload_context()
    assert ledger.get_balance(reloaded) == CurrencyAmounts(usd=Decimal("100"))
    assert ledger.get_balance(reloaded) == ledger.summarize_transaction_log(reloaded)


def test_custom_refund_overrides_computed_amounts(runtime_context, make_item):
    """A caller-supplied refund is paid out as given."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref)
    (line,) = sold.items

    result = reversal.return_sale_item(
        runtime_context, sold.sale.id, line.id, 1, refund=CurrencyAmounts(lc=Decimal("72000"))
    )

    assert result.refund == CurrencyAmounts(lc=Decimal("72000"))
    assert ledger.get_balance(runtime_context) == CurrencyAmounts(usd=Decimal("100"), lc=Decimal("-72000"))


def test_refund_on_open_debt_is_rejected(runtime_context, reload_context, make_item):
    """Nothing changes when a refund is requested on an open credit sale."""

    ref = _usd_item(make_item)
    sold = _sale(runtime_context, ref, is_debt=True, customer_name="Ali")
    (line,) = sold.items

    with pytest.raises(core_logic.ValidationError):
        reversal.return_sale_item(
            runtime_context, sold.sale.id, line.id, 1, refund=CurrencyAmounts(usd=Decimal("10"))
        )

    reloaded = reload_context()
    assert catalog.get_item(reloaded, ref).stock == 3
    assert settlement.sale_items(reloaded, sold.sale.id)[0].quantity == 2


def test_line_from_another_sale_is_not_found(runtime_context, make_item):
    """Lines are only returned through the sale that owns them."""

    ref = _usd_item(make_item)
    first = _sale(runtime_context, ref, quantity=1)
    second = _sale(runtime_context, ref, quantity=1)

    with pytest.raises(core_logic.NotFoundError):
        reversal.return_sale_item(runtime_context, first.sale.id, second.items[0].id)
