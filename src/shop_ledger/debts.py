"""Debt accrual and payment allocation.

Three debt families share one payment path:

* customer debts (money owed to the shop, usually from a credit sale),
* company debts (money the shop owes a supplier, possibly split across both
  currencies as a ``MULTI`` debt),
* personal loans (money lent out, always tracked in both currencies).

Every payment is recorded as an immutable ``DebtPayments`` row carrying the
rate used for it. What is still open on a debt is always recomputed by
replaying that history, never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from . import core_logic, data_manager, exchange, ledger, log, settlement
from .allocation import Allocation, Tolerance, allocate, is_settled, replay_remaining
from .constants import (
    CompanyPaymentMode,
    Currency,
    DebtType,
    DiscountType,
    EntryCurrency,
    ReferenceType,
    SheetName,
    TransactionType,
)
from .core_logic import NotFoundError, OverpaymentError, RuntimeContext, ValidationError, quantize_money
from .exchange import ZERO, CurrencyAmounts, RateSnapshot

CUSTOMER_DEBTS_SHEET = SheetName.CUSTOMER_DEBTS.value
COMPANY_DEBTS_SHEET = SheetName.COMPANY_DEBTS.value
PERSONAL_LOANS_SHEET = SheetName.PERSONAL_LOANS.value
DEBT_PAYMENTS_SHEET = SheetName.DEBT_PAYMENTS.value

_SHEETS = {
    DebtType.CUSTOMER: CUSTOMER_DEBTS_SHEET,
    DebtType.COMPANY: COMPANY_DEBTS_SHEET,
    DebtType.PERSONAL: PERSONAL_LOANS_SHEET,
}

_REFERENCE_TYPES = {
    DebtType.CUSTOMER: ReferenceType.CUSTOMER_DEBT,
    DebtType.COMPANY: ReferenceType.COMPANY_DEBT,
    DebtType.PERSONAL: ReferenceType.PERSONAL_LOAN,
}

_TRANSACTION_TYPES = {
    DebtType.CUSTOMER: (TransactionType.CUSTOMER_DEBT_PAYMENT_FINAL, TransactionType.CUSTOMER_DEBT_PAYMENT_PARTIAL),
    DebtType.COMPANY: (TransactionType.COMPANY_DEBT_PAYMENT_FINAL, TransactionType.COMPANY_DEBT_PAYMENT_PARTIAL),
    DebtType.PERSONAL: (TransactionType.PERSONAL_LOAN_PAYMENT_FINAL, TransactionType.PERSONAL_LOAN_PAYMENT_PARTIAL),
}


@dataclass(frozen=True)
class CustomerDebtCommand:
    """User intent for recording money a customer owes the shop."""

    customer_name: str
    amount: Decimal
    currency: Currency
    description: Optional[str] = None
    sale_ref: Optional[int] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class DebtDiscount:
    """Discount granted by a supplier on a company debt.

    Fixed discounts on ``MULTI`` debts are expressed in USD.
    """

    discount_type: DiscountType
    discount_value: Decimal


@dataclass(frozen=True)
class CompanyDebtCommand:
    """User intent for recording money the shop owes a company."""

    company_name: str
    currency: EntryCurrency
    amount: Decimal = ZERO
    usd_amount: Decimal = ZERO
    lc_amount: Decimal = ZERO
    description: Optional[str] = None
    discount: Optional[DebtDiscount] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PersonalLoanCommand:
    """User intent for recording money lent to a person."""

    person_name: str
    usd_amount: Decimal = ZERO
    lc_amount: Decimal = ZERO
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class DebtPaymentCommand:
    """Money offered against one debt; all zero means "pay what is open"."""

    payment_usd: Decimal = ZERO
    payment_lc: Decimal = ZERO
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class DebtPaymentResult:
    """Outcome of one payment against one debt."""

    debt: Any
    payment: data_manager.DebtPaymentRow
    applied: CurrencyAmounts
    remaining: CurrencyAmounts
    remaining_payment: CurrencyAmounts
    fully_paid: bool

    @property
    def has_overpayment(self) -> bool:
        return not self.remaining_payment.is_zero()


@dataclass(frozen=True)
class TotalPaymentResult:
    """Outcome of paying every open debt of one company at once."""

    company_name: str
    mode: CompanyPaymentMode
    payments: List[DebtPaymentResult] = field(default_factory=list)
    settled_debt_ids: List[int] = field(default_factory=list)
    partial_debt_ids: List[int] = field(default_factory=list)
    applied: CurrencyAmounts = CurrencyAmounts()
    remaining_payment: CurrencyAmounts = CurrencyAmounts()

    @property
    def has_overpayment(self) -> bool:
        return not self.remaining_payment.is_zero()


def tolerance_for(context: RuntimeContext, debt_type: DebtType) -> Tolerance:
    """Return the residual treated as fully paid for ``debt_type``."""

    settings = context.settings
    if DebtType(debt_type) is DebtType.COMPANY:
        return Tolerance(usd=settings.usd_tolerance, lc=settings.company_lc_tolerance)
    return Tolerance(usd=settings.usd_tolerance, lc=settings.lc_tolerance)


def get_debt(context: RuntimeContext, debt_type: DebtType, debt_id: int) -> Any:
    """Return the row of a customer debt, company debt, or personal loan.

    Raises:
        NotFoundError: If the identifier is unknown.
    """

    debt_type = DebtType(debt_type)
    label = "Personal loan" if debt_type is DebtType.PERSONAL else f"{debt_type.value.capitalize()} debt"
    return core_logic.get_row(context, _SHEETS[debt_type], debt_id, label=label)


def list_debts(context: RuntimeContext, debt_type: DebtType, *, include_paid: bool = False) -> List[Any]:
    """Return the debts of one family, open ones only unless asked otherwise."""

    rows = core_logic.list_rows(context, _SHEETS[DebtType(debt_type)])
    if include_paid:
        return rows
    return [row for row in rows if row.paid_at is None]


def debt_payments(context: RuntimeContext, debt_type: DebtType, debt_id: int) -> List[data_manager.DebtPaymentRow]:
    """Return the payment history of one debt, oldest first."""

    debt_type = DebtType(debt_type)
    rows = [
        row
        for row in core_logic.list_rows(context, DEBT_PAYMENTS_SHEET)
        if row.debt_type == debt_type.value and row.debt_id == debt_id
    ]
    return sorted(rows, key=lambda row: row.id)


def principal_of(debt_type: DebtType, debt: Any) -> CurrencyAmounts:
    """Return the amount originally owed on ``debt`` per currency."""

    debt_type = DebtType(debt_type)
    if debt_type is DebtType.PERSONAL:
        return CurrencyAmounts(usd=debt.usd_amount, lc=debt.lc_amount)
    if debt_type is DebtType.COMPANY and debt.currency == EntryCurrency.MULTI.value:
        return CurrencyAmounts(usd=debt.usd_amount, lc=debt.lc_amount)
    return CurrencyAmounts.of(debt.currency, debt.amount)


def remaining_balance(context: RuntimeContext, debt_type: DebtType, debt: Any) -> CurrencyAmounts:
    """Replay the payment history of ``debt`` and return what is still open."""

    return replay_remaining(principal_of(debt_type, debt), debt_payments(context, debt_type, debt.id))


def _currency_used(amounts: CurrencyAmounts) -> str:
    if amounts.usd > ZERO and amounts.lc > ZERO:
        return EntryCurrency.MULTI.value
    if amounts.lc > ZERO:
        return EntryCurrency.LC.value
    return EntryCurrency.USD.value


def _require_payment(command: DebtPaymentCommand) -> CurrencyAmounts:
    core_logic.require_nonnegative_money(command.payment_usd, label="USD payment")
    core_logic.require_nonnegative_money(command.payment_lc, label="LC payment")
    return CurrencyAmounts(usd=command.payment_usd, lc=command.payment_lc).quantized()


def _require_open(debt_type: DebtType, debt: Any) -> None:
    if debt.paid_at is not None:
        log.warning("Payment rejected: %s debt %s is already paid", debt_type.value, debt.id)
        raise ValidationError(f"{debt_type.value.capitalize()} debt {debt.id} is already paid")


def _record_payment(
    context: RuntimeContext,
    debt_type: DebtType,
    debt: Any,
    allocation: Allocation,
    rates: RateSnapshot,
    moment: datetime,
    *,
    received: Optional[CurrencyAmounts] = None,
) -> DebtPaymentResult:
    """Write the history row, the debt's cumulative fields, and the ledger entry.

    ``received`` is the money that actually changed hands when it differs
    from the applied amounts (personal loans book everything they receive).
    """

    money = received if received is not None else allocation.applied
    paid_at = core_logic.format_timestamp(moment)
    payment_row = core_logic.insert_row(
        context,
        DEBT_PAYMENTS_SHEET,
        debt_type=debt_type.value,
        debt_id=debt.id,
        payment_usd=money.usd,
        payment_lc=money.lc,
        currency_used=_currency_used(money),
        rate_usd_to_lc=rates.usd_to_lc,
        rate_lc_to_usd=rates.lc_to_usd,
        paid_at=paid_at,
    )

    fully_paid = is_settled(allocation.remaining, tolerance_for(context, debt_type))
    cumulative = CurrencyAmounts(
        usd=debt.payment_usd_amount + money.usd,
        lc=debt.payment_lc_amount + money.lc,
    )
    changes = {
        "payment_usd_amount": cumulative.usd,
        "payment_lc_amount": cumulative.lc,
        "payment_exchange_rate_usd_to_lc": rates.usd_to_lc,
        "payment_exchange_rate_lc_to_usd": rates.lc_to_usd,
    }
    if debt_type is not DebtType.PERSONAL:
        changes["payment_currency_used"] = _currency_used(cumulative)
    if fully_paid and debt.paid_at is None:
        changes["paid_at"] = paid_at
    updated = core_logic.update_row(context, _SHEETS[debt_type], debt.id, **changes)

    final_type, partial_type = _TRANSACTION_TYPES[debt_type]
    entry = dict(
        transaction_type=final_type if fully_paid else partial_type,
        description=_describe_payment(debt_type, updated, fully_paid),
        reference_id=debt.id,
        reference_type=_REFERENCE_TYPES[debt_type],
        timestamp=moment,
    )
    if debt_type is DebtType.COMPANY:
        ledger.debit(context, money, **entry)
    else:
        ledger.credit(context, money, **entry)

    log.info(
        "%s debt %s payment usd=%s lc=%s at %s (remaining usd=%s lc=%s, paid=%s)",
        debt_type.value.capitalize(),
        debt.id,
        money.usd,
        money.lc,
        rates.usd_to_lc,
        allocation.remaining.usd,
        allocation.remaining.lc,
        fully_paid,
    )
    return DebtPaymentResult(
        debt=updated,
        payment=payment_row,
        applied=allocation.applied,
        remaining=allocation.remaining,
        remaining_payment=allocation.leftover,
        fully_paid=fully_paid,
    )


def _describe_payment(debt_type: DebtType, debt: Any, fully_paid: bool) -> str:
    state = "final" if fully_paid else "partial"
    if debt_type is DebtType.CUSTOMER:
        who = debt.customer_name
    elif debt_type is DebtType.COMPANY:
        who = debt.company_name
    else:
        who = debt.person_name
    detail = f" - {debt.description}" if debt.description else ""
    return f"{debt_type.value.capitalize()} debt payment ({state}): {who}{detail}"


def create_customer_debt(context: RuntimeContext, command: CustomerDebtCommand) -> data_manager.CustomerDebtRow:
    """Record money a customer owes the shop.

    Balances are not touched; they move when the debt is paid.

    Raises:
        ValidationError: If the name is blank, the amount is not positive, or
            the currency is unsupported.
        NotFoundError: If ``sale_ref`` names an unknown sale.
    """

    if not command.customer_name or not command.customer_name.strip():
        raise ValidationError("Customer name is required")
    currency = core_logic.require_currency(command.currency)
    core_logic.require_positive_money(command.amount, label="Debt amount")

    with core_logic.unit_of_work(context, "create_customer_debt"):
        if command.sale_ref is not None:
            settlement.get_sale(context, command.sale_ref)
        debt = core_logic.insert_row(
            context,
            CUSTOMER_DEBTS_SHEET,
            customer_name=command.customer_name.strip(),
            amount=quantize_money(command.amount),
            currency=currency.value,
            description=command.description,
            sale_ref=command.sale_ref,
            created_at=core_logic.format_timestamp(core_logic.resolve_timestamp(command.timestamp)),
            paid_at=None,
            payment_usd_amount=ZERO,
            payment_lc_amount=ZERO,
            payment_currency_used=None,
            payment_exchange_rate_usd_to_lc=None,
            payment_exchange_rate_lc_to_usd=None,
        )
    log.info("Created customer debt %s for '%s' (%s %s)", debt.id, debt.customer_name, debt.amount, debt.currency)
    return debt


def apply_debt_discount(
    amounts: CurrencyAmounts,
    discount: Optional[DebtDiscount],
    rates: RateSnapshot,
) -> CurrencyAmounts:
    """Reduce a company debt's amounts by ``discount``.

    Percentage discounts scale both components. A fixed discount is taken
    from the USD component first; whatever is left of it is converted at
    ``rates`` and taken from the LC component. Results never go negative.
    """

    if discount is None or discount.discount_value <= ZERO:
        return amounts
    discount_type = DiscountType(discount.discount_type)
    if discount_type is DiscountType.PERCENTAGE:
        if discount.discount_value > Decimal("100"):
            raise ValidationError("Percentage discount cannot exceed 100")
        return amounts.scaled(1 - discount.discount_value / Decimal("100"))

    value = discount.discount_value
    if amounts.usd > ZERO or amounts.lc == ZERO:
        usd_cut = min(amounts.usd, value)
        spill = value - usd_cut
    else:
        usd_cut = ZERO
        spill = value
    lc_cut = min(amounts.lc, quantize_money(rates.convert(spill, Currency.USD, Currency.LC))) if amounts.lc > ZERO else ZERO
    return CurrencyAmounts(usd=amounts.usd - usd_cut, lc=amounts.lc - lc_cut).quantized()


def create_company_debt(context: RuntimeContext, command: CompanyDebtCommand) -> data_manager.CompanyDebtRow:
    """Record money the shop owes a company, after any supplier discount.

    Single-currency debts use ``amount``; ``MULTI`` debts use ``usd_amount``
    and ``lc_amount`` and store ``amount`` as zero. A fixed discount on a
    single-currency debt is expressed in that currency.

    Raises:
        ValidationError: If the name is blank, amounts are negative or all
            zero, or the currency tag is unknown.
    """

    if not command.company_name or not command.company_name.strip():
        raise ValidationError("Company name is required")
    try:
        currency = EntryCurrency(command.currency)
    except ValueError:
        raise ValidationError(f"Unsupported currency: {command.currency}") from None

    if currency is EntryCurrency.MULTI:
        core_logic.require_nonnegative_money(command.usd_amount, label="USD amount")
        core_logic.require_nonnegative_money(command.lc_amount, label="LC amount")
        amounts = CurrencyAmounts(usd=command.usd_amount, lc=command.lc_amount).quantized()
        if amounts.is_zero():
            raise ValidationError("A MULTI company debt needs a USD or LC amount")
    else:
        core_logic.require_positive_money(command.amount, label="Debt amount")
        amounts = CurrencyAmounts.of(currency.value, quantize_money(command.amount))

    with core_logic.unit_of_work(context, "create_company_debt"):
        discounted = amounts
        if command.discount is not None:
            core_logic.require_nonnegative_money(command.discount.discount_value, label="Discount value")
            if currency is EntryCurrency.MULTI:
                rates = RateSnapshot.from_usd_to_lc(exchange.get_rate(context, Currency.USD, Currency.LC))
                discounted = apply_debt_discount(amounts, command.discount, rates)
            else:
                discounted = _discount_single(amounts.get(currency.value), currency.value, command.discount)

        debt = core_logic.insert_row(
            context,
            COMPANY_DEBTS_SHEET,
            company_name=command.company_name.strip(),
            amount=ZERO if currency is EntryCurrency.MULTI else discounted.get(currency.value),
            currency=currency.value,
            usd_amount=discounted.usd if currency is EntryCurrency.MULTI else ZERO,
            lc_amount=discounted.lc if currency is EntryCurrency.MULTI else ZERO,
            description=command.description,
            discount_type=DiscountType(command.discount.discount_type).value if command.discount else None,
            discount_value=command.discount.discount_value if command.discount else None,
            created_at=core_logic.format_timestamp(core_logic.resolve_timestamp(command.timestamp)),
            paid_at=None,
            payment_usd_amount=ZERO,
            payment_lc_amount=ZERO,
            payment_currency_used=None,
            payment_exchange_rate_usd_to_lc=None,
            payment_exchange_rate_lc_to_usd=None,
        )
    log.info(
        "Created company debt %s for '%s' (%s: amount=%s usd=%s lc=%s)",
        debt.id,
        debt.company_name,
        debt.currency,
        debt.amount,
        debt.usd_amount,
        debt.lc_amount,
    )
    return debt


def _discount_single(amount: Decimal, currency: str, discount: DebtDiscount) -> CurrencyAmounts:
    # Fixed values on single-currency debts are in the debt's own currency.
    if discount.discount_value <= ZERO:
        return CurrencyAmounts.of(currency, amount)
    if DiscountType(discount.discount_type) is DiscountType.PERCENTAGE:
        if discount.discount_value > Decimal("100"):
            raise ValidationError("Percentage discount cannot exceed 100")
        reduced = amount * (1 - discount.discount_value / Decimal("100"))
    else:
        reduced = max(ZERO, amount - discount.discount_value)
    return CurrencyAmounts.of(currency, quantize_money(reduced))


def create_personal_loan(context: RuntimeContext, command: PersonalLoanCommand) -> data_manager.PersonalLoanRow:
    """Record a loan handed out to a person in one or both currencies.

    Raises:
        ValidationError: If the name is blank or the amounts are negative or
            both zero.
    """

    if not command.person_name or not command.person_name.strip():
        raise ValidationError("Person name is required")
    core_logic.require_nonnegative_money(command.usd_amount, label="USD amount")
    core_logic.require_nonnegative_money(command.lc_amount, label="LC amount")
    amounts = CurrencyAmounts(usd=command.usd_amount, lc=command.lc_amount).quantized()
    if amounts.is_zero():
        raise ValidationError("A personal loan needs a USD or LC amount")

    with core_logic.unit_of_work(context, "create_personal_loan"):
        loan = core_logic.insert_row(
            context,
            PERSONAL_LOANS_SHEET,
            person_name=command.person_name.strip(),
            usd_amount=amounts.usd,
            lc_amount=amounts.lc,
            description=command.description,
            created_at=core_logic.format_timestamp(core_logic.resolve_timestamp(command.timestamp)),
            paid_at=None,
            payment_usd_amount=ZERO,
            payment_lc_amount=ZERO,
            payment_exchange_rate_usd_to_lc=None,
            payment_exchange_rate_lc_to_usd=None,
        )
    log.info("Created personal loan %s for '%s' (usd=%s lc=%s)", loan.id, loan.person_name, loan.usd_amount, loan.lc_amount)
    return loan


def _default_payment(debt_type: DebtType, debt: Any, remaining: CurrencyAmounts) -> CurrencyAmounts:
    if debt_type is DebtType.CUSTOMER:
        return remaining.only(debt.currency)
    if debt_type is DebtType.COMPANY and debt.currency != EntryCurrency.MULTI.value:
        return remaining.only(debt.currency)
    return remaining


def _pay_single_debt(
    context: RuntimeContext,
    debt_type: DebtType,
    debt_id: int,
    command: DebtPaymentCommand,
) -> DebtPaymentResult:
    payment = _require_payment(command)
    moment = core_logic.resolve_timestamp(command.timestamp)
    debt = get_debt(context, debt_type, debt_id)
    _require_open(debt_type, debt)

    rates = exchange.resolve_rate_snapshot(context)
    remaining = remaining_balance(context, debt_type, debt)
    if payment.is_zero():
        payment = _default_payment(debt_type, debt, remaining)

    allocation = allocate(remaining, payment, rates)
    if allocation.applied.is_zero():
        raise ValidationError(f"Payment does not reduce {debt_type.value} debt {debt.id}")
    return _record_payment(context, debt_type, debt, allocation, rates, moment)


def settle_originating_sale(context: RuntimeContext, debt: data_manager.CustomerDebtRow) -> None:
    """Copy a settled debt's payments onto its sale and realize the sale's profit."""

    if debt.sale_ref is None:
        return
    sale = core_logic.find_row(context, settlement.SALES_SHEET, debt.sale_ref)
    if sale is None:
        log.warning("Customer debt %s points at missing sale %s", debt.id, debt.sale_ref)
        return

    paid = CurrencyAmounts(usd=debt.payment_usd_amount, lc=debt.payment_lc_amount)
    sale_currency = Currency(sale.currency)
    is_multi_currency = paid.get(sale_currency.other) > ZERO
    updated = core_logic.update_row(
        context,
        settlement.SALES_SHEET,
        sale.id,
        paid_usd=paid.usd,
        paid_lc=paid.lc,
        is_multi_currency=is_multi_currency,
        currency=sale_currency.value,
    )
    profit = sum((item.profit_in_sale_currency for item in settlement.sale_items(context, sale.id)), ZERO)
    currency, amount = settlement.realize_sale_profit(context, updated, profit)
    log.info("Sale %s settled through debt %s; realized profit %s %s", sale.id, debt.id, amount, currency.value)


def pay_customer_debt(context: RuntimeContext, debt_id: int, command: DebtPaymentCommand) -> DebtPaymentResult:
    """Apply a payment received from a customer.

    The payment is applied in its own currency first and then across
    currencies at the current rate. Balances are credited with the applied
    amounts. When the debt is settled its payments are copied onto the
    originating sale and the sale's profit is realized.

    Args:
        context (RuntimeContext): Runtime state.
        debt_id (int): Customer debt to pay.
        command (DebtPaymentCommand): Amounts offered; all zero pays what is
            open in the debt's currency.

    Returns:
        DebtPaymentResult: Updated debt, history row, and any unapplied money.

    Raises:
        NotFoundError: If the debt does not exist.
        ValidationError: If the debt is already paid or the amounts are
            negative.
    """

    with core_logic.unit_of_work(context, "pay_customer_debt"):
        result = _pay_single_debt(context, DebtType.CUSTOMER, debt_id, command)
        if result.fully_paid:
            settle_originating_sale(context, result.debt)
    return result


def pay_company_debt(context: RuntimeContext, debt_id: int, command: DebtPaymentCommand) -> DebtPaymentResult:
    """Apply a payment the shop makes against one company debt.

    Balances are debited with the applied amounts. Company debts count as
    settled within the coarser company LC tolerance.

    Raises:
        NotFoundError: If the debt does not exist.
        ValidationError: If the debt is already paid or the amounts are
            negative.
    """

    with core_logic.unit_of_work(context, "pay_company_debt"):
        return _pay_single_debt(context, DebtType.COMPANY, debt_id, command)


def _restrict(remaining: CurrencyAmounts, mode: CompanyPaymentMode) -> CurrencyAmounts:
    if mode is CompanyPaymentMode.FORCE_USD:
        return remaining.only(Currency.USD)
    if mode is CompanyPaymentMode.FORCE_LC:
        return remaining.only(Currency.LC)
    return remaining


def _eligible(debt: data_manager.CompanyDebtRow, mode: CompanyPaymentMode) -> bool:
    if mode is CompanyPaymentMode.FORCE_USD:
        return debt.currency in (EntryCurrency.USD.value, EntryCurrency.MULTI.value)
    if mode is CompanyPaymentMode.FORCE_LC:
        return debt.currency in (EntryCurrency.LC.value, EntryCurrency.MULTI.value)
    return True


def open_company_debts(context: RuntimeContext, company_name: str) -> List[data_manager.CompanyDebtRow]:
    """Return a company's open debts, oldest first."""

    rows = [row for row in list_debts(context, DebtType.COMPANY) if row.company_name == company_name]
    return sorted(rows, key=lambda row: (row.created_at, row.id))


def pay_company_debts_total(
    context: RuntimeContext,
    company_name: str,
    payment: CurrencyAmounts,
    mode: CompanyPaymentMode = CompanyPaymentMode.ANY,
    *,
    timestamp: Optional[datetime] = None,
) -> TotalPaymentResult:
    """Spread one payment across all open debts of a company, oldest first.

    Each debt takes what it can from the matching currency pool, then from the
    converted leftover of the other pool. The walk stops once both pools are
    empty. ``FORCE_USD`` only pays USD and the USD part of ``MULTI`` debts
    with USD money; ``FORCE_LC`` is the mirror image. Every debt touched gets
    its own history row and ledger entry, and the batch adds one summary log
    entry.

    Args:
        context (RuntimeContext): Runtime state.
        company_name (str): Company whose debts are paid.
        payment (CurrencyAmounts): Money offered.
        mode (CompanyPaymentMode): Allocation variant.
        timestamp (datetime | None): Payment time; defaults to now.

    Returns:
        TotalPaymentResult: Per-debt outcomes, settled and partial ids, and the
            unapplied payment.

    Raises:
        ValidationError: If the payment is negative, empty, or uses the wrong
            currency for a forced mode.
        NotFoundError: If the company has no open debts the mode can pay.
    """

    mode = CompanyPaymentMode(mode)
    core_logic.require_nonnegative_money(payment.usd, label="USD payment")
    core_logic.require_nonnegative_money(payment.lc, label="LC payment")
    pool = payment.quantized()
    if pool.is_zero():
        raise ValidationError("A total payment needs a USD or LC amount")
    if mode is CompanyPaymentMode.FORCE_USD and pool.lc > ZERO:
        raise ValidationError("A USD-only payment cannot include local currency")
    if mode is CompanyPaymentMode.FORCE_LC and pool.usd > ZERO:
        raise ValidationError("An LC-only payment cannot include US dollars")

    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, "pay_company_debts_total"):
        candidates = [debt for debt in open_company_debts(context, company_name) if _eligible(debt, mode)]
        if not candidates:
            log.warning("No open debts for company '%s' (mode=%s)", company_name, mode.value)
            raise NotFoundError(f"No open debts for company '{company_name}'")

        rates = exchange.resolve_rate_snapshot(context)
        results: List[DebtPaymentResult] = []
        for debt in candidates:
            if pool.is_zero():
                break
            full_remaining = remaining_balance(context, DebtType.COMPANY, debt)
            target = _restrict(full_remaining, mode)
            if target.is_zero():
                continue
            partial = allocate(target, pool, rates)
            if partial.applied.is_zero():
                continue
            pool = partial.leftover
            allocation = Allocation(
                applied=partial.applied,
                leftover=partial.leftover,
                remaining=partial.remaining + (full_remaining - target),
            )
            results.append(_record_payment(context, DebtType.COMPANY, debt, allocation, rates, moment))

        applied = sum((result.applied for result in results), CurrencyAmounts())
        settled = [result.debt.id for result in results if result.fully_paid]
        partial_ids = [result.debt.id for result in results if not result.fully_paid]
        ledger.log_transaction(
            context,
            TransactionType.COMPANY_DEBT_TOTAL_PAYMENT,
            CurrencyAmounts(),
            description=(
                f"Total payment to {company_name} ({mode.value}): usd={applied.usd} lc={applied.lc}, "
                f"settled={len(settled)}, partial={len(partial_ids)}"
            ),
            reference_type=ReferenceType.COMPANY,
            timestamp=moment,
        )

    log.info(
        "Total payment to '%s' (%s): settled %s, partial %s, leftover usd=%s lc=%s",
        company_name,
        mode.value,
        settled,
        partial_ids,
        pool.usd,
        pool.lc,
    )
    return TotalPaymentResult(
        company_name=company_name,
        mode=mode,
        payments=results,
        settled_debt_ids=settled,
        partial_debt_ids=partial_ids,
        applied=applied,
        remaining_payment=pool,
    )


def pay_personal_loan(context: RuntimeContext, loan_id: int, command: DebtPaymentCommand) -> DebtPaymentResult:
    """Apply a repayment of a personal loan.

    The payment is rejected outright when its USD value exceeds the USD value
    of what is still open. Balances are credited with exactly the money
    received.

    Raises:
        NotFoundError: If the loan does not exist.
        ValidationError: If the loan is already paid or amounts are negative.
        OverpaymentError: If the payment is worth more than the open balance.
    """

    payment = _require_payment(command)
    moment = core_logic.resolve_timestamp(command.timestamp)
    with core_logic.unit_of_work(context, "pay_personal_loan"):
        loan = get_debt(context, DebtType.PERSONAL, loan_id)
        _require_open(DebtType.PERSONAL, loan)
        rates = exchange.resolve_rate_snapshot(context)
        remaining = remaining_balance(context, DebtType.PERSONAL, loan)
        if payment.is_zero():
            payment = remaining

        offered_usd = rates.total_in(payment, Currency.USD)
        open_usd = rates.total_in(remaining, Currency.USD)
        if offered_usd > open_usd + context.settings.usd_tolerance:
            log.warning(
                "Loan %s payment worth %s USD exceeds remaining %s USD",
                loan.id,
                quantize_money(offered_usd),
                quantize_money(open_usd),
            )
            raise OverpaymentError(
                f"Payment worth {quantize_money(offered_usd)} USD exceeds the "
                f"{quantize_money(open_usd)} USD still open on loan {loan.id}"
            )

        allocation = allocate(remaining, payment, rates)
        if allocation.applied.is_zero():
            raise ValidationError(f"Payment does not reduce personal loan {loan.id}")
        return _record_payment(context, DebtType.PERSONAL, loan, allocation, rates, moment, received=payment)


def total_open_debts(context: RuntimeContext, debt_type: DebtType) -> CurrencyAmounts:
    """Sum what is still open across every debt of one family."""

    total = CurrencyAmounts()
    for debt in list_debts(context, debt_type):
        total = total + remaining_balance(context, debt_type, debt)
    return total


def describe_open_debts(context: RuntimeContext) -> Sequence[Tuple[str, CurrencyAmounts]]:
    """Return ``(family, open amounts)`` pairs for reporting."""

    return [(debt_type.value, total_open_debts(context, debt_type)) for debt_type in DebtType]
