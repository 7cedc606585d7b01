"""Tests for the exchange rate service and currency value types."""

from __future__ import annotations

from decimal import Decimal

import pytest

from shop_ledger import core_logic, exchange
from shop_ledger.constants import Currency, SettingKey
from shop_ledger.exchange import CurrencyAmounts, RateSnapshot


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


def test_currency_amounts_arithmetic():
    """Pairs should add, subtract, and negate per component."""

    a = CurrencyAmounts(usd=Decimal("10"), lc=Decimal("1440"))
    b = CurrencyAmounts.of("IQD", Decimal("440"))

    assert a + b == CurrencyAmounts(usd=Decimal("10"), lc=Decimal("1880"))
    assert a - b == CurrencyAmounts(usd=Decimal("10"), lc=Decimal("1000"))
    assert -a == CurrencyAmounts(usd=Decimal("-10"), lc=Decimal("-1440"))
    assert a.get(Currency.LC) == Decimal("1440")
    assert a.only("USD") == CurrencyAmounts(usd=Decimal("10"))
    assert CurrencyAmounts().is_zero()


def test_currency_amounts_scaled_rounds_each_component():
    """Scaling keeps four decimals per component."""

    amounts = CurrencyAmounts(usd=Decimal("10"), lc=Decimal("100"))

    assert amounts.scaled(Decimal("1") / Decimal("3")) == CurrencyAmounts(
        usd=Decimal("3.3333"), lc=Decimal("33.3333")
    )


def test_rate_snapshot_divides_lc_by_usd_rate():
    """LC converts to USD by dividing by the USD->LC rate."""

    snapshot = RateSnapshot.from_usd_to_lc(Decimal("1440"))

    assert snapshot.convert(Decimal("144000"), "IQD", "USD") == Decimal("100")
    assert snapshot.convert(Decimal("50"), Currency.USD, Currency.LC) == Decimal("72000")
    assert snapshot.convert(Decimal("7"), "USD", "USD") == Decimal("7")
    assert snapshot.lc_to_usd == Decimal("0.000694444444")


def test_rate_snapshot_total_in_combines_both_components():
    """total_in should express a mixed payment in one currency."""

    snapshot = RateSnapshot.from_usd_to_lc(Decimal("1440"))
    paid = CurrencyAmounts(usd=Decimal("50"), lc=Decimal("72000"))

    assert snapshot.total_in(paid, "USD") == Decimal("100")
    assert snapshot.total_in(paid, "IQD") == Decimal("144000")


# ---------------------------------------------------------------------------
# Rate store
# ---------------------------------------------------------------------------


def test_get_rate_falls_back_to_configured_default(runtime_context):
    """An empty settings store should yield the configured default."""

    assert exchange.get_rate(runtime_context, "USD", "IQD") == Decimal("1440")
    assert exchange.get_rate(runtime_context, "IQD", "USD") == Decimal("0.000694444444")
    assert exchange.get_rate(runtime_context, "USD", "USD") == Decimal("1")


def test_set_rate_writes_both_directions(runtime_context, reload_context):
    """Writing a rate should persist its inverse alongside it."""

    snapshot = exchange.set_rate(runtime_context, "USD", "IQD", Decimal("1500"))

    assert snapshot.usd_to_lc == Decimal("1500")
    reloaded = reload_context()
    assert core_logic.read_setting(reloaded, SettingKey.EXCHANGE_USD_LC.value) == "1500"
    assert core_logic.read_setting(reloaded, SettingKey.EXCHANGE_LC_USD.value) == "0.000666666667"
    assert exchange.get_rate(reloaded, "IQD", "USD") == Decimal("0.000666666667")


def test_set_rate_accepts_lc_to_usd_direction(runtime_context):
    """Setting the LC->USD rate should derive the USD->LC rate."""

    snapshot = exchange.set_rate(runtime_context, Currency.LC, Currency.USD, Decimal("0.0005"))

    assert snapshot.usd_to_lc == Decimal("2000")
    assert exchange.get_rate(runtime_context, "USD", "IQD") == Decimal("2000")


def test_get_rate_uses_inverse_when_direct_missing(runtime_context):
    """A lone reverse-direction entry should be inverted on read."""

    with core_logic.unit_of_work(runtime_context, "seed"):
        core_logic.write_setting(runtime_context, SettingKey.EXCHANGE_LC_USD.value, "0.0008")

    assert exchange.get_rate(runtime_context, "USD", "IQD") == Decimal("1250")


@pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1")])
def test_set_rate_rejects_non_positive_rates(runtime_context, rate):
    """Zero or negative rates must be refused."""

    with pytest.raises(core_logic.ValidationError):
        exchange.set_rate(runtime_context, "USD", "IQD", rate)


def test_set_rate_rejects_same_currency(runtime_context):
    """A rate between a currency and itself is meaningless."""

    with pytest.raises(core_logic.ValidationError):
        exchange.set_rate(runtime_context, "USD", "USD", Decimal("1"))


def test_get_rate_rejects_unknown_currency(runtime_context):
    """Unsupported codes should raise ValidationError."""

    with pytest.raises(core_logic.ValidationError):
        exchange.get_rate(runtime_context, "EUR", "USD")


def test_resolve_rate_snapshot_persists_default(runtime_context, reload_context):
    """The first snapshot request should store the default rate."""

    snapshot = exchange.resolve_rate_snapshot(runtime_context)

    assert snapshot == RateSnapshot.from_usd_to_lc(Decimal("1440"))
    reloaded = reload_context()
    assert core_logic.read_setting(reloaded, SettingKey.EXCHANGE_USD_LC.value) == "1440"


def test_resolve_rate_snapshot_reads_stored_rate(runtime_context):
    """Later snapshots should reflect the stored rate."""

    exchange.set_rate(runtime_context, "USD", "IQD", Decimal("1480"))

    snapshot = exchange.resolve_rate_snapshot(runtime_context)

    assert snapshot.usd_to_lc == Decimal("1480")
