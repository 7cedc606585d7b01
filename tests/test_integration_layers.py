"""Integration tests describing end-to-end shop ledger workflows.

These flows drive several business modules against one real workbook and
check the bookkeeping properties that must hold across them: balances agree
with the transaction log, stock and profit are conserved by returns, and a
failed operation leaves nothing behind.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from shop_ledger import catalog, cli, core_logic, debts, exchange, incentives, ledger, purchases, reversal, settlement
from shop_ledger.constants import Currency, DebtType, DiscountType, EntryCurrency
from shop_ledger.debts import CompanyDebtCommand, CustomerDebtCommand, DebtPaymentCommand
from shop_ledger.exchange import CurrencyAmounts
from shop_ledger.incentives import IncentiveCommand
from shop_ledger.purchases import PurchaseCommand, PurchaseLine
from shop_ledger.settlement import SaleCommand, SaleDiscount, SaleLine


def _assert_balance_matches_log(context: core_logic.RuntimeContext) -> None:
    assert ledger.get_balance(context) == ledger.summarize_transaction_log(context)


# ---------------------------------------------------------------------------
# Concrete scenarios
# ---------------------------------------------------------------------------


def test_lc_cash_sale_flow(runtime_context, reload_context, make_item):
    """Buying at 100 LC and selling at 150 LC stores 50 LC profit and adds 150 LC."""

    ref = make_item(buying_price="100", price="150", currency="IQD")
    before = ledger.get_balance(runtime_context)

    settlement.commit_sale(
        runtime_context,
        SaleCommand(items=[SaleLine(ref, 1, Decimal("150"))], total=Decimal("150"), currency=Currency.LC),
    )

    context = reload_context()
    (line,) = core_logic.list_rows(context, settlement.SALE_ITEMS_SHEET)
    assert line.profit_in_sale_currency == Decimal("50")
    assert ledger.get_balance(context) - before == CurrencyAmounts(lc=Decimal("150"))
    _assert_balance_matches_log(context)


def test_usd_sale_of_lc_costed_item_flow(runtime_context, reload_context, make_item):
    """An LC cost is divided by the 1440 rate before profit is taken."""

    ref = make_item(buying_price="72000", price="100", currency="IQD")

    result = settlement.commit_sale(
        runtime_context,
        SaleCommand(items=[SaleLine(ref, 1, Decimal("100"))], total=Decimal("100"), currency=Currency.USD),
    )

    assert result.profit == Decimal("100") - Decimal("72000") / Decimal("1440")
    assert ledger.get_profit_totals(reload_context()) == CurrencyAmounts(usd=Decimal("50"))


def test_company_debt_paid_entirely_in_lc_flow(runtime_context, reload_context):
    """A 100 USD company debt is closed by 144000 LC at 1440."""

    ledger.record_opening_balance(runtime_context, CurrencyAmounts(usd=Decimal("500"), lc=Decimal("200000")))
    debt = debts.create_company_debt(
        runtime_context,
        CompanyDebtCommand(company_name="Acme", currency=EntryCurrency.USD, amount=Decimal("100")),
    )

    result = debts.pay_company_debt(runtime_context, debt.id, DebtPaymentCommand(payment_lc=Decimal("144000")))

    assert result.fully_paid is True
    context = reload_context()
    assert debts.get_debt(context, DebtType.COMPANY, debt.id).paid_at is not None
    assert ledger.get_balance(context) == CurrencyAmounts(usd=Decimal("500"), lc=Decimal("56000"))
    _assert_balance_matches_log(context)


def test_partial_sale_item_return_flow(runtime_context, reload_context, make_item):
    """Returning one of two 50 USD units lowers the total by 50 and restocks one."""

    ref = make_item(buying_price="30", price="50", currency="USD", stock=5)
    sold = settlement.commit_sale(
        runtime_context,
        SaleCommand(items=[SaleLine(ref, 2, Decimal("50"))], total=Decimal("100"), currency=Currency.USD),
    )

    reversal.return_sale_item(runtime_context, sold.sale.id, sold.items[0].id, 1)

    context = reload_context()
    assert settlement.get_sale(context, sold.sale.id).total == Decimal("50")
    assert catalog.get_item(context, ref).stock == 4
    assert settlement.sale_items(context, sold.sale.id)[0].quantity == 1
    _assert_balance_matches_log(context)


# ---------------------------------------------------------------------------
# Bookkeeping properties
# ---------------------------------------------------------------------------


def test_sale_and_full_return_conserve_everything_flow(runtime_context, reload_context, make_item):
    """A cash sale followed by its full return restores stock, balances, and profit."""

    phone = make_item(buying_price="72000", price="100", currency="IQD", stock=4)
    cable = make_item(kind="accessory", name="Cable", buying_price="5", price="15", currency="USD", stock=10)
    ledger.record_opening_balance(runtime_context, CurrencyAmounts(usd=Decimal("20"), lc=Decimal("10000")))
    opening = ledger.get_balance(runtime_context)

    sold = settlement.commit_sale(
        runtime_context,
        SaleCommand(
            items=[SaleLine(phone, 1, Decimal("100")), SaleLine(cable, 2, Decimal("15"))],
            total=Decimal("130"),
            currency=Currency.USD,
            payment=settlement.MultiCurrencyPayment(usd_amount=Decimal("40"), lc_amount=Decimal("129600")),
        ),
    )
    assert sold.profit == Decimal("70")
    assert sum((line.profit_in_sale_currency for line in sold.items), Decimal("0")) == sold.profit

    returned = reversal.return_sale(runtime_context, sold.sale.id)

    context = reload_context()
    assert returned.profit_reversed == sold.profit
    assert catalog.get_item(context, phone).stock == 4
    assert catalog.get_item(context, cable).stock == 10
    assert ledger.get_balance(context) == opening
    assert ledger.get_profit_totals(context) == CurrencyAmounts()
    _assert_balance_matches_log(context)


def test_credit_sale_survives_rate_drift_flow(runtime_context, reload_context, make_item):
    """Payments keep the rate they were made at even after the rate changes."""

    ref = make_item(buying_price="60", price="100", currency="USD")
    sold = settlement.commit_sale(
        runtime_context,
        SaleCommand(
            items=[SaleLine(ref, 1, Decimal("100"))],
            total=Decimal("100"),
            currency=Currency.USD,
            is_debt=True,
            customer_name="Ali",
        ),
    )

    first = debts.pay_customer_debt(runtime_context, sold.debt.id, DebtPaymentCommand(payment_lc=Decimal("72000")))
    assert first.fully_paid is False
    assert first.remaining.usd == Decimal("50")

    # A new rate must not change what the earlier LC payment was worth.
    exchange.set_rate(runtime_context, Currency.USD, Currency.LC, Decimal("1500"))
    assert debts.remaining_balance(runtime_context, DebtType.CUSTOMER, first.debt).usd == Decimal("50")

    second = debts.pay_customer_debt(runtime_context, sold.debt.id, DebtPaymentCommand())
    assert second.fully_paid is True
    assert second.debt.payment_lc_amount >= first.debt.payment_lc_amount
    assert second.debt.payment_usd_amount >= first.debt.payment_usd_amount
    paid_at = second.debt.paid_at

    with pytest.raises(core_logic.ValidationError):
        debts.pay_customer_debt(runtime_context, sold.debt.id, DebtPaymentCommand(payment_usd=Decimal("1")))

    context = reload_context()
    assert debts.get_debt(context, DebtType.CUSTOMER, sold.debt.id).paid_at == paid_at
    sale = settlement.get_sale(context, sold.sale.id)
    assert sale.is_multi_currency is True
    assert (sale.paid_usd, sale.paid_lc) == (Decimal("50"), Decimal("72000"))
    assert ledger.get_profit_totals(context) == CurrencyAmounts(usd=Decimal("40"))
    assert ledger.get_balance(context) == CurrencyAmounts(usd=Decimal("50"), lc=Decimal("72000"))
    _assert_balance_matches_log(context)


@pytest.mark.parametrize(
    "paid_lc, expected_usd",
    [
        ("36000", "75"),
        ("72000", "50"),
        ("144000", "0"),
        ("200000", "0"),
    ],
)
def test_lc_payment_on_usd_debt_leaves_expected_remainder(runtime_context, paid_lc, expected_usd):
    """Paying a USD debt in LC leaves max(0, A - paid / R) open."""

    debt = debts.create_customer_debt(
        runtime_context,
        CustomerDebtCommand(customer_name="Sara", amount=Decimal("100"), currency=Currency.USD),
    )

    result = debts.pay_customer_debt(runtime_context, debt.id, DebtPaymentCommand(payment_lc=Decimal(paid_lc)))

    assert result.remaining.usd == Decimal(expected_usd)
    assert result.fully_paid is (Decimal(expected_usd) == 0)


def test_zero_discounts_leave_prices_untouched(runtime_context, make_item):
    """A 0% whole-sale discount and 0% item discount change nothing."""

    ref = make_item(buying_price="100", price="150")

    result = settlement.commit_sale(
        runtime_context,
        SaleCommand(
            items=[SaleLine(ref, 2, Decimal("150"), discount_percent=Decimal("0"))],
            total=Decimal("300"),
            currency=Currency.LC,
            discount=SaleDiscount(DiscountType.PERCENTAGE, Decimal("0")),
        ),
    )

    (line,) = result.items
    assert line.unit_selling_price == line.original_selling_price == Decimal("150")


def test_failed_operation_leaves_workbook_untouched(runtime_context, reload_context, make_item):
    """A purchase that fails halfway writes nothing to disk or memory."""

    ref = make_item(buying_price="30", price="50", currency="USD", stock=2)
    ledger.record_opening_balance(runtime_context, CurrencyAmounts(usd=Decimal("100")))
    data_file = runtime_context.settings.data_file
    saved = data_file.read_bytes()

    # The first line restocks before the unknown second line aborts the unit.
    command = PurchaseCommand(
        supplier="Wholesale",
        currency=EntryCurrency.USD,
        lines=[PurchaseLine(ref, 3, Decimal("30")), PurchaseLine(catalog.CatalogReference.product(99), 1, Decimal("1"))],
    )
    with pytest.raises(core_logic.NotFoundError):
        purchases.record_purchase(runtime_context, command)

    assert data_file.read_bytes() == saved
    for context in (runtime_context, reload_context()):
        assert catalog.get_item(context, ref).stock == 2
        assert purchases.list_entries(context) == []
        assert ledger.get_balance(context) == CurrencyAmounts(usd=Decimal("100"))
        assert len(ledger.list_transactions(context)) == 1


def test_mixed_activity_keeps_balance_equal_to_log(runtime_context, reload_context, make_item):
    """Balances always equal the sum of logged movements."""

    ref = make_item(buying_price="30", price="50", currency="USD", stock=0)
    ledger.record_opening_balance(runtime_context, CurrencyAmounts(usd=Decimal("1000"), lc=Decimal("1000000")))
    bought = purchases.record_purchase(
        runtime_context,
        PurchaseCommand(supplier="Wholesale", currency=EntryCurrency.USD, lines=[PurchaseLine(ref, 6, Decimal("30"))]),
    )
    cash = settlement.commit_sale(
        runtime_context,
        SaleCommand(items=[SaleLine(ref, 2, Decimal("50"))], total=Decimal("100"), currency=Currency.USD),
    )
    credit = settlement.commit_sale(
        runtime_context,
        SaleCommand(
            items=[SaleLine(ref, 2, Decimal("50"))],
            total=Decimal("100"),
            currency=Currency.USD,
            is_debt=True,
            customer_name="Ali",
        ),
    )
    debts.pay_customer_debt(runtime_context, credit.debt.id, DebtPaymentCommand(payment_lc=Decimal("144000")))
    company = debts.create_company_debt(
        runtime_context,
        CompanyDebtCommand(company_name="Acme", currency=EntryCurrency.LC, amount=Decimal("50000")),
    )
    debts.pay_company_debt(runtime_context, company.id, DebtPaymentCommand(payment_usd=Decimal("20")))
    reversal.return_sale_item(runtime_context, cash.sale.id, cash.items[0].id, 1)
    purchases.return_buying_history_item(runtime_context, bought.entry.id, bought.items[0].id, 1)
    bonus = incentives.add_incentive(runtime_context, IncentiveCommand(company_name="Acme", amount=Decimal("75"), currency=Currency.USD))
    incentives.update_incentive(runtime_context, bonus.id, amount=Decimal("108000"), currency=Currency.LC)
    incentives.add_incentive(runtime_context, IncentiveCommand(company_name="Acme", amount=Decimal("10")))

    context = reload_context()
    _assert_balance_matches_log(context)
    # 6 bought, 4 sold, 1 returned by a customer, 1 sent back to the supplier.
    assert catalog.get_item(context, ref).stock == 2


def test_cli_credit_sale_and_payment_flow(config_factory, monkeypatch, capsys):
    """Drive a credit sale and its payment through the CLI from the config folder."""

    bundle = config_factory()
    monkeypatch.chdir(bundle.directory)

    assert cli.main(["add-item", "--kind", "product", "--name", "Phone", "--buying-price", "60", "--price", "100", "--currency", "USD", "--stock", "2"]) == 0
    assert cli.main(["sale", "--item", "product:1:1:100", "--total", "100", "--currency", "USD", "--debt", "--customer", "Ali"]) == 0
    assert cli.main(["pay-customer-debt", "--debt-id", "1", "--lc", "144000"]) == 0
    assert cli.main(["pay-customer-debt", "--debt-id", "1", "--usd", "5"]) == 2

    out = capsys.readouterr().out
    assert "debt #1" in out
    assert "Debt #1 paid" in out

    context = core_logic.load_runtime_context(bundle.config_path)
    assert ledger.get_balance(context) == CurrencyAmounts(lc=Decimal("144000"))
    assert ledger.get_profit_totals(context) == CurrencyAmounts(usd=Decimal("40"))
