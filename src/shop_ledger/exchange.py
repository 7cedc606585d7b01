"""Exchange rate service and the currency value types shared by the engine.

Rates live in the settings store as one entry per direction. Writing a rate
always writes its inverse as well, so ``rate(A, B) == 1 / rate(B, A)`` holds
for every stored pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from . import core_logic, log
from .constants import Currency, SettingKey
from .core_logic import RuntimeContext, quantize_money, quantize_rate

ZERO = Decimal("0")

_RATE_KEYS = {
    (Currency.USD, Currency.LC): SettingKey.EXCHANGE_USD_LC.value,
    (Currency.LC, Currency.USD): SettingKey.EXCHANGE_LC_USD.value,
}


@dataclass(frozen=True)
class CurrencyAmounts:
    """A pair of amounts, one per currency."""

    usd: Decimal = ZERO
    lc: Decimal = ZERO

    @classmethod
    def of(cls, currency: Any, amount: Decimal) -> "CurrencyAmounts":
        if Currency(currency) is Currency.USD:
            return cls(usd=amount, lc=ZERO)
        return cls(usd=ZERO, lc=amount)

    def get(self, currency: Any) -> Decimal:
        return self.usd if Currency(currency) is Currency.USD else self.lc

    def only(self, currency: Any) -> "CurrencyAmounts":
        """Keep the ``currency`` component and zero the other one."""

        return CurrencyAmounts.of(currency, self.get(currency))

    def quantized(self) -> "CurrencyAmounts":
        return CurrencyAmounts(usd=quantize_money(self.usd), lc=quantize_money(self.lc))

    def is_zero(self) -> bool:
        return self.usd == ZERO and self.lc == ZERO

    def __add__(self, other: "CurrencyAmounts") -> "CurrencyAmounts":
        return CurrencyAmounts(usd=self.usd + other.usd, lc=self.lc + other.lc)

    def __sub__(self, other: "CurrencyAmounts") -> "CurrencyAmounts":
        return CurrencyAmounts(usd=self.usd - other.usd, lc=self.lc - other.lc)

    def __neg__(self) -> "CurrencyAmounts":
        return CurrencyAmounts(usd=-self.usd, lc=-self.lc)

    def scaled(self, ratio: Decimal) -> "CurrencyAmounts":
        return CurrencyAmounts(usd=quantize_money(self.usd * ratio), lc=quantize_money(self.lc * ratio))


@dataclass(frozen=True)
class RateSnapshot:
    """USD/LC rate pair frozen at the moment money changed hands.

    ``usd_to_lc`` is the authoritative figure: LC amounts are converted to USD
    by dividing by it, so ``144000 LC`` at ``1440`` is exactly ``100 USD``.
    """

    usd_to_lc: Decimal
    lc_to_usd: Decimal

    @classmethod
    def from_usd_to_lc(cls, rate: Decimal) -> "RateSnapshot":
        rate = Decimal(rate)
        return cls(usd_to_lc=rate, lc_to_usd=quantize_rate(Decimal("1") / rate))

    def convert(self, amount: Decimal, source: Any, target: Any) -> Decimal:
        """Convert ``amount`` from ``source`` to ``target`` without rounding."""

        source = Currency(source)
        target = Currency(target)
        if source is target:
            return amount
        if source is Currency.USD:
            return amount * self.usd_to_lc
        return amount / self.usd_to_lc

    def total_in(self, amounts: CurrencyAmounts, currency: Any) -> Decimal:
        """Express both components of ``amounts`` in ``currency``."""

        currency = Currency(currency)
        return amounts.get(currency) + self.convert(amounts.get(currency.other), currency.other, currency)


def _rate_text(rate: Decimal) -> str:
    return format(rate.normalize(), "f")


def _read_rate(context: RuntimeContext, source: Currency, target: Currency) -> Optional[Decimal]:
    raw = core_logic.read_setting(context, _RATE_KEYS[(source, target)])
    if raw is None or str(raw).strip() == "":
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        log.warning("Ignoring malformed %s->%s rate: %r", source.value, target.value, raw)
        return None
    return value if value > 0 else None


def get_rate(context: RuntimeContext, from_currency: Any, to_currency: Any) -> Decimal:
    """Return the rate that converts ``from_currency`` into ``to_currency``.

    Resolution order is the direct stored rate, then the inverse of the
    reverse-direction rate, then the configured default. A missing rate never
    raises.

    Args:
        context (RuntimeContext): Runtime state providing the settings store.
        from_currency (Currency | str): Source currency.
        to_currency (Currency | str): Target currency.

    Returns:
        Decimal: Units of ``to_currency`` per unit of ``from_currency``.

    Raises:
        ValidationError: If either currency is unsupported.
    """

    source = core_logic.require_currency(from_currency)
    target = core_logic.require_currency(to_currency)
    if source is target:
        return Decimal("1")

    direct = _read_rate(context, source, target)
    if direct is not None:
        return direct

    inverse = _read_rate(context, target, source)
    if inverse is not None:
        return quantize_rate(Decimal("1") / inverse)

    default = context.settings.default_exchange_rate
    log.debug("No stored %s->%s rate; using default %s", source.value, target.value, default)
    if source is Currency.USD:
        return default
    return quantize_rate(Decimal("1") / default)


def set_rate(context: RuntimeContext, from_currency: Any, to_currency: Any, rate: Decimal) -> RateSnapshot:
    """Store ``rate`` and its inverse in one atomic step.

    Args:
        context (RuntimeContext): Runtime state providing the settings store.
        from_currency (Currency | str): Source currency of ``rate``.
        to_currency (Currency | str): Target currency of ``rate``.
        rate (Decimal): Units of ``to_currency`` per unit of ``from_currency``.

    Returns:
        RateSnapshot: The USD/LC pair now in effect.

    Raises:
        ValidationError: If the currencies are equal or unsupported, or the
            rate is not positive.
    """

    source = core_logic.require_currency(from_currency)
    target = core_logic.require_currency(to_currency)
    if source is target:
        raise core_logic.ValidationError("An exchange rate needs two different currencies")
    rate = core_logic.require_positive_money(Decimal(rate), label="Exchange rate")

    if source is Currency.USD:
        snapshot = RateSnapshot.from_usd_to_lc(quantize_rate(rate))
    else:
        snapshot = RateSnapshot(usd_to_lc=quantize_rate(Decimal("1") / rate), lc_to_usd=quantize_rate(rate))

    with core_logic.unit_of_work(context, "set_rate"):
        core_logic.write_setting(context, _RATE_KEYS[(Currency.USD, Currency.LC)], _rate_text(snapshot.usd_to_lc))
        core_logic.write_setting(context, _RATE_KEYS[(Currency.LC, Currency.USD)], _rate_text(snapshot.lc_to_usd))

    log.info("Exchange rate set: 1 USD = %s %s", snapshot.usd_to_lc, Currency.LC.value)
    return snapshot


def resolve_rate_snapshot(context: RuntimeContext) -> RateSnapshot:
    """Return the current USD/LC pair, persisting the default when unset.

    Callers that freeze a rate onto a row use this so the stored snapshot is
    always backed by a configured rate.
    """

    stored_direct = _read_rate(context, Currency.USD, Currency.LC)
    stored_inverse = _read_rate(context, Currency.LC, Currency.USD)
    if stored_direct is None and stored_inverse is None:
        log.info("Initializing exchange rate to default %s", context.settings.default_exchange_rate)
        return set_rate(context, Currency.USD, Currency.LC, context.settings.default_exchange_rate)

    return RateSnapshot(
        usd_to_lc=get_rate(context, Currency.USD, Currency.LC),
        lc_to_usd=get_rate(context, Currency.LC, Currency.USD),
    )
