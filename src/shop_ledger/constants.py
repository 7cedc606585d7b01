"""Enumerations shared across the shop ledger modules.

Centralises domain constants so that the data access layer, the settlement
engine, and the command-line front end rely on a single source of truth for
sheet names, currency codes, and transaction tags.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Local currency units per US dollar used until a rate is configured.
DEFAULT_EXCHANGE_RATE = Decimal("1440")

DEFAULT_USD_TOLERANCE = Decimal("0.01")
DEFAULT_LC_TOLERANCE = Decimal("1")
DEFAULT_COMPANY_LC_TOLERANCE = Decimal("250")

MONEY_QUANTUM = Decimal("0.0001")
RATE_QUANTUM = Decimal("0.000000000001")

BALANCE_ROW_ID = 1


class Currency(str, Enum):
    """Enumerate the two currencies the shop trades in."""

    USD = "USD"
    LC = "IQD"

    @property
    def other(self) -> "Currency":
        return Currency.LC if self is Currency.USD else Currency.USD


class EntryCurrency(str, Enum):
    """Currency tags for rows that may be split across both currencies."""

    USD = "USD"
    LC = "IQD"
    MULTI = "MULTI"


class CatalogKind(str, Enum):
    """Enumerate the catalog sheets a sale line may reference."""

    PRODUCT = "product"
    ACCESSORY = "accessory"


class DebtType(str, Enum):
    """Enumerate the debt families tracked by the payment history."""

    CUSTOMER = "customer"
    COMPANY = "company"
    PERSONAL = "personal"


class DiscountType(str, Enum):
    """Enumerate discount descriptors accepted on sales and company debts."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CompanyPaymentMode(str, Enum):
    """Enumerate the allocation variants for paying a company in total."""

    ANY = "any"
    FORCE_USD = "usd"
    FORCE_LC = "lc"


class TransactionType(str, Enum):
    """Enumerate the canonical transaction types recorded in the ledger."""

    OPENING_BALANCE = "opening_balance"
    SALE = "sale"
    SALE_RETURN = "sale_return"
    SALE_ITEM_RETURN = "sale_item_return"
    CUSTOMER_DEBT_PAYMENT_FINAL = "customer_debt_payment_final"
    CUSTOMER_DEBT_PAYMENT_PARTIAL = "customer_debt_payment_partial"
    COMPANY_DEBT_PAYMENT_FINAL = "company_debt_payment_final"
    COMPANY_DEBT_PAYMENT_PARTIAL = "company_debt_payment_partial"
    COMPANY_DEBT_TOTAL_PAYMENT = "company_debt_total_payment"
    PERSONAL_LOAN_PAYMENT_FINAL = "personal_loan_payment_final"
    PERSONAL_LOAN_PAYMENT_PARTIAL = "personal_loan_payment_partial"
    PURCHASE = "purchase"
    BUYING_HISTORY_RETURN = "buying_history_return"
    INCENTIVE = "incentive"
    INCENTIVE_REMOVAL = "incentive_removal"
    INCENTIVE_UPDATE = "incentive_update"


class ReferenceType(str, Enum):
    """Enumerate the entity kinds a transaction log entry may point at."""

    SALE = "sale"
    CUSTOMER_DEBT = "customer_debt"
    COMPANY_DEBT = "company_debt"
    COMPANY = "company"
    PERSONAL_LOAN = "personal_loan"
    BUYING_HISTORY = "buying_history"
    INCENTIVE = "incentive"
    BALANCE = "balance"


class SettingKey(str, Enum):
    """Keys stored in the ``Settings`` sheet."""

    EXCHANGE_USD_LC = "exchange_USD_IQD"
    EXCHANGE_LC_USD = "exchange_IQD_USD"
    TOTAL_PROFIT_USD = "total_profit_usd"
    TOTAL_PROFIT_LC = "total_profit_lc"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    BALANCES = "Balances"
    SETTINGS = "Settings"
    PRODUCTS = "Products"
    ACCESSORIES = "Accessories"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"
    CUSTOMER_DEBTS = "CustomerDebts"
    COMPANY_DEBTS = "CompanyDebts"
    PERSONAL_LOANS = "PersonalLoans"
    DEBT_PAYMENTS = "DebtPayments"
    TRANSACTION_LOG = "TransactionLog"
    BUYING_HISTORY = "BuyingHistory"
    BUYING_HISTORY_ITEMS = "BuyingHistoryItems"
    INCENTIVES = "Incentives"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_EXCHANGE_RATE",
    "DEFAULT_USD_TOLERANCE",
    "DEFAULT_LC_TOLERANCE",
    "DEFAULT_COMPANY_LC_TOLERANCE",
    "MONEY_QUANTUM",
    "RATE_QUANTUM",
    "BALANCE_ROW_ID",
    "Currency",
    "EntryCurrency",
    "CatalogKind",
    "DebtType",
    "DiscountType",
    "CompanyPaymentMode",
    "TransactionType",
    "ReferenceType",
    "SettingKey",
    "SheetName",
]
