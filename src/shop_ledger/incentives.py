"""Company incentives: money a supplier hands the shop outside of a sale.

Every incentive moves the balance in its own currency and leaves a matching
transaction log entry, so removing or amending one is an exact counter-entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from . import core_logic, data_manager, ledger, log
from .constants import Currency, ReferenceType, SheetName, TransactionType
from .core_logic import RuntimeContext, ValidationError, quantize_money
from .exchange import CurrencyAmounts

INCENTIVES_SHEET = SheetName.INCENTIVES.value


@dataclass(frozen=True)
class IncentiveCommand:
    """User intent for recording an incentive received from a company."""

    company_name: str
    amount: Decimal
    currency: Currency = Currency.LC
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


def _require_company(company_name: Optional[str]) -> str:
    if not company_name or not company_name.strip():
        log.error("Incentive rejected: no company name")
        raise ValidationError("Company name is required")
    return company_name.strip()


def _amounts(row: data_manager.IncentiveRow) -> CurrencyAmounts:
    return CurrencyAmounts.of(row.currency, row.amount)


def get_incentive(context: RuntimeContext, incentive_id: int) -> data_manager.IncentiveRow:
    """Return an incentive.

    Raises:
        NotFoundError: If the incentive does not exist.
    """

    return core_logic.get_row(context, INCENTIVES_SHEET, incentive_id, label="Incentive")


def add_incentive(context: RuntimeContext, command: IncentiveCommand) -> data_manager.IncentiveRow:
    """Record an incentive and credit it to the balance.

    Args:
        context (RuntimeContext): Runtime state.
        command (IncentiveCommand): Company, amount, and currency received.

    Returns:
        IncentiveRow: The persisted incentive.

    Raises:
        ValidationError: If the company name is blank, the amount is not
            positive, or the currency is unsupported.
    """

    company_name = _require_company(command.company_name)
    currency = core_logic.require_currency(command.currency)
    amount = quantize_money(core_logic.require_positive_money(Decimal(command.amount), label="Incentive amount"))
    moment = core_logic.resolve_timestamp(command.timestamp)

    with core_logic.unit_of_work(context, "add_incentive"):
        row = core_logic.insert_row(
            context,
            INCENTIVES_SHEET,
            company_name=company_name,
            amount=amount,
            currency=currency.value,
            description=command.description,
            created_at=core_logic.format_timestamp(moment),
        )
        ledger.credit(
            context,
            _amounts(row),
            transaction_type=TransactionType.INCENTIVE,
            description=f"Incentive from {company_name}" + (f" - {command.description}" if command.description else ""),
            reference_id=row.id,
            reference_type=ReferenceType.INCENTIVE,
            timestamp=moment,
        )

    log.info("Recorded incentive %s from '%s': %s %s", row.id, company_name, amount, currency.value)
    return row


def remove_incentive(
    context: RuntimeContext,
    incentive_id: int,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.IncentiveRow:
    """Delete an incentive and take its amount back out of the balance.

    Raises:
        NotFoundError: If the incentive does not exist.
    """

    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, "remove_incentive"):
        row = get_incentive(context, incentive_id)
        core_logic.delete_row(context, INCENTIVES_SHEET, row.id)
        ledger.debit(
            context,
            _amounts(row),
            transaction_type=TransactionType.INCENTIVE_REMOVAL,
            description=f"Incentive removed: {row.company_name}",
            reference_id=row.id,
            reference_type=ReferenceType.INCENTIVE,
            timestamp=moment,
        )

    log.info("Removed incentive %s (%s %s)", row.id, row.amount, row.currency)
    return row


def update_incentive(
    context: RuntimeContext,
    incentive_id: int,
    *,
    company_name: Optional[str] = None,
    amount: Optional[Decimal] = None,
    currency: Optional[Currency] = None,
    description: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.IncentiveRow:
    """Amend an incentive; omitted fields keep their recorded value.

    The balance moves by the difference between the new and the old amounts.
    A change of currency takes the old amount out of its currency and puts
    the new amount into the other one.

    Raises:
        NotFoundError: If the incentive does not exist.
        ValidationError: If a new company name is blank, a new amount is not
            positive, or a new currency is unsupported.
    """

    moment = core_logic.resolve_timestamp(timestamp)
    with core_logic.unit_of_work(context, "update_incentive"):
        current = get_incentive(context, incentive_id)
        changes = {}
        if company_name is not None:
            changes["company_name"] = _require_company(company_name)
        if amount is not None:
            changes["amount"] = quantize_money(core_logic.require_positive_money(Decimal(amount), label="Incentive amount"))
        if currency is not None:
            changes["currency"] = core_logic.require_currency(currency).value
        if description is not None:
            changes["description"] = description

        updated = core_logic.update_row(context, INCENTIVES_SHEET, current.id, **changes) if changes else current
        delta = _amounts(updated) - _amounts(current)
        entry = dict(
            transaction_type=TransactionType.INCENTIVE_UPDATE,
            description=f"Incentive updated: {updated.company_name}",
            reference_id=updated.id,
            reference_type=ReferenceType.INCENTIVE,
            timestamp=moment,
        )
        if delta.is_zero():
            ledger.log_transaction(context, amounts=delta, **entry)
        else:
            ledger.apply_delta(context, delta, **entry)

    log.info("Updated incentive %s (delta usd=%s lc=%s)", updated.id, delta.usd, delta.lc)
    return updated


def list_incentives(context: RuntimeContext, company_name: Optional[str] = None) -> List[data_manager.IncentiveRow]:
    """Return incentives newest first, optionally filtered by company name."""

    rows = core_logic.list_rows(context, INCENTIVES_SHEET)
    if company_name:
        needle = company_name.strip().lower()
        rows = [row for row in rows if needle in row.company_name.lower()]
    return sorted(rows, key=lambda row: (row.created_at, row.id), reverse=True)


def incentive_totals(context: RuntimeContext) -> CurrencyAmounts:
    """Sum every recorded incentive per currency."""

    return sum((_amounts(row) for row in core_logic.list_rows(context, INCENTIVES_SHEET)), CurrencyAmounts()).quantized()
