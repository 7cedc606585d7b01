"""Currency allocator shared by customer debts, company debts, and loans.

A payment arrives as a USD amount and an LC amount. :func:`allocate` applies
each pool to the open balance in its own currency first, then converts what
is left of either pool to cover whatever is still open in the other
currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from . import data_manager
from .constants import Currency
from .core_logic import quantize_money
from .exchange import ZERO, CurrencyAmounts, RateSnapshot


@dataclass(frozen=True)
class Allocation:
    """Result of applying one payment to one open balance.

    Attributes:
        applied: Payment consumed, in the currencies it was paid in.
        leftover: Payment not consumed.
        remaining: Open balance after the payment.
    """

    applied: CurrencyAmounts
    leftover: CurrencyAmounts
    remaining: CurrencyAmounts


@dataclass(frozen=True)
class Tolerance:
    """Largest residual per currency still treated as fully paid."""

    usd: Decimal
    lc: Decimal


def _cover_from_other(
    open_amount: Decimal,
    pool: Decimal,
    open_currency: Currency,
    rates: RateSnapshot,
) -> tuple[Decimal, Decimal]:
    """Return ``(pool_used, open_covered)`` for a cross-currency overflow."""

    if open_amount <= ZERO or pool <= ZERO:
        return ZERO, ZERO
    pool_currency = open_currency.other
    needed = quantize_money(rates.convert(open_amount, open_currency, pool_currency))
    used = min(pool, needed)
    if used >= needed:
        return used, open_amount
    covered = min(open_amount, quantize_money(rates.convert(used, pool_currency, open_currency)))
    return used, covered


def allocate(remaining: CurrencyAmounts, payment: CurrencyAmounts, rates: RateSnapshot) -> Allocation:
    """Apply ``payment`` to ``remaining`` using ``rates`` for any conversion.

    Same-currency amounts are applied first. A pool with money left over then
    covers the other currency's open amount at the snapshot rate; paying a
    USD balance of ``A`` with ``L`` local currency at rate ``R`` leaves
    ``max(0, A - L / R)`` open. Every figure is rounded to money precision.

    Args:
        remaining (CurrencyAmounts): Open balance per currency.
        payment (CurrencyAmounts): Money offered per currency.
        rates (RateSnapshot): Rate pair in effect for this payment.

    Returns:
        Allocation: Applied and unapplied payment plus the new open balance.
    """

    open_usd = quantize_money(max(remaining.usd, ZERO))
    open_lc = quantize_money(max(remaining.lc, ZERO))
    pool_usd = quantize_money(max(payment.usd, ZERO))
    pool_lc = quantize_money(max(payment.lc, ZERO))

    applied_usd = min(pool_usd, open_usd)
    applied_lc = min(pool_lc, open_lc)
    pool_usd -= applied_usd
    pool_lc -= applied_lc
    open_usd -= applied_usd
    open_lc -= applied_lc

    used, covered = _cover_from_other(open_usd, pool_lc, Currency.USD, rates)
    pool_lc -= used
    applied_lc += used
    open_usd -= covered

    used, covered = _cover_from_other(open_lc, pool_usd, Currency.LC, rates)
    pool_usd -= used
    applied_usd += used
    open_lc -= covered

    return Allocation(
        applied=CurrencyAmounts(usd=applied_usd, lc=applied_lc),
        leftover=CurrencyAmounts(usd=pool_usd, lc=pool_lc),
        remaining=CurrencyAmounts(usd=open_usd, lc=open_lc),
    )


def replay_remaining(
    principal: CurrencyAmounts,
    payments: Iterable[data_manager.DebtPaymentRow],
) -> CurrencyAmounts:
    """Recompute what is still open on a debt from its payment history.

    Each recorded payment is re-applied in order with the rate frozen on that
    payment, so later rate changes never move an already settled amount.
    """

    remaining = principal.quantized()
    for payment in payments:
        rates = RateSnapshot(usd_to_lc=payment.rate_usd_to_lc, lc_to_usd=payment.rate_lc_to_usd)
        remaining = allocate(
            remaining,
            CurrencyAmounts(usd=payment.payment_usd, lc=payment.payment_lc),
            rates,
        ).remaining
    return remaining


def is_settled(remaining: CurrencyAmounts, tolerance: Tolerance) -> bool:
    """Return whether both open amounts are within ``tolerance``."""

    return remaining.usd <= tolerance.usd and remaining.lc <= tolerance.lc
