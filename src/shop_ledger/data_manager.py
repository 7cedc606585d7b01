"""Data access layer for the shop ledger.

This module provides low-level helpers that read from and write to the master
``.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading typed rows and appending, updating, or deleting
   individual rows. Every sheet is described by a frozen dataclass whose field
   order matches the worksheet columns and whose field names are the header
   titles.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_COMPANY_LC_TOLERANCE,
    DEFAULT_EXCHANGE_RATE,
    DEFAULT_LC_TOLERANCE,
    DEFAULT_USD_TOLERANCE,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
SETTINGS_SHEET = SheetName.SETTINGS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_exchange_rate: Decimal = DEFAULT_EXCHANGE_RATE
    usd_tolerance: Decimal = DEFAULT_USD_TOLERANCE
    lc_tolerance: Decimal = DEFAULT_LC_TOLERANCE
    company_lc_tolerance: Decimal = DEFAULT_COMPANY_LC_TOLERANCE


@dataclass(frozen=True)
class BalanceRow:
    """Singleton row of the ``Balances`` sheet."""

    id: int
    usd: Decimal
    lc: Decimal
    last_updated: Optional[str]


@dataclass(frozen=True)
class SettingRow:
    """Key/value row of the ``Settings`` sheet."""

    key: str
    value: Optional[str]


@dataclass(frozen=True)
class CatalogItemRow:
    """Row shared by the ``Products`` and ``Accessories`` sheets."""

    id: int
    name: str
    stock: int
    buying_price: Decimal
    price: Decimal
    currency: str
    archived: bool


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    id: int
    created_at: str
    total: Decimal
    currency: str
    customer_name: Optional[str]
    is_debt: bool
    is_multi_currency: bool
    paid_usd: Decimal
    paid_lc: Decimal
    exchange_rate_usd_to_lc: Decimal
    exchange_rate_lc_to_usd: Decimal
    discount_type: Optional[str]
    discount_value: Optional[Decimal]


@dataclass(frozen=True)
class SaleItemRow:
    """In-memory view of a row from the ``SaleItems`` sheet."""

    id: int
    sale_id: int
    catalog_kind: str
    catalog_id: int
    name: str
    quantity: int
    unit_selling_price: Decimal
    unit_buying_price: Decimal
    currency: str
    catalog_item_currency: str
    discount_percent: Decimal
    original_selling_price: Decimal
    profit_in_sale_currency: Decimal
    buying_price_in_sale_currency: Decimal


@dataclass(frozen=True)
class CustomerDebtRow:
    """In-memory view of a row from the ``CustomerDebts`` sheet."""

    id: int
    customer_name: str
    amount: Decimal
    currency: str
    description: Optional[str]
    sale_ref: Optional[int]
    created_at: str
    paid_at: Optional[str]
    payment_usd_amount: Decimal
    payment_lc_amount: Decimal
    payment_currency_used: Optional[str]
    payment_exchange_rate_usd_to_lc: Optional[Decimal]
    payment_exchange_rate_lc_to_usd: Optional[Decimal]


@dataclass(frozen=True)
class CompanyDebtRow:
    """In-memory view of a row from the ``CompanyDebts`` sheet."""

    id: int
    company_name: str
    amount: Decimal
    currency: str
    usd_amount: Decimal
    lc_amount: Decimal
    description: Optional[str]
    discount_type: Optional[str]
    discount_value: Optional[Decimal]
    created_at: str
    paid_at: Optional[str]
    payment_usd_amount: Decimal
    payment_lc_amount: Decimal
    payment_currency_used: Optional[str]
    payment_exchange_rate_usd_to_lc: Optional[Decimal]
    payment_exchange_rate_lc_to_usd: Optional[Decimal]


@dataclass(frozen=True)
class PersonalLoanRow:
    """In-memory view of a row from the ``PersonalLoans`` sheet."""

    id: int
    person_name: str
    usd_amount: Decimal
    lc_amount: Decimal
    description: Optional[str]
    created_at: str
    paid_at: Optional[str]
    payment_usd_amount: Decimal
    payment_lc_amount: Decimal
    payment_exchange_rate_usd_to_lc: Optional[Decimal]
    payment_exchange_rate_lc_to_usd: Optional[Decimal]


@dataclass(frozen=True)
class DebtPaymentRow:
    """Append-only payment history row from the ``DebtPayments`` sheet."""

    id: int
    debt_type: str
    debt_id: int
    payment_usd: Decimal
    payment_lc: Decimal
    currency_used: str
    rate_usd_to_lc: Decimal
    rate_lc_to_usd: Decimal
    paid_at: str


@dataclass(frozen=True)
class TransactionLogRow:
    """In-memory view of a row from the ``TransactionLog`` sheet."""

    id: int
    type: str
    amount_usd: Decimal
    amount_lc: Decimal
    description: Optional[str]
    reference_id: Optional[int]
    reference_type: Optional[str]
    created_at: str


@dataclass(frozen=True)
class BuyingHistoryRow:
    """In-memory view of a row from the ``BuyingHistory`` sheet."""

    id: int
    supplier: str
    created_at: str
    currency: str
    total_price: Decimal
    multi_currency_usd: Decimal
    multi_currency_lc: Decimal
    description: Optional[str]


@dataclass(frozen=True)
class BuyingHistoryItemRow:
    """In-memory view of a row from the ``BuyingHistoryItems`` sheet."""

    id: int
    entry_id: int
    catalog_kind: str
    catalog_id: int
    item_name: str
    quantity: int
    unit_price: Decimal
    currency: str
    total_price: Decimal


@dataclass(frozen=True)
class IncentiveRow:
    """In-memory view of a row from the ``Incentives`` sheet."""

    id: int
    company_name: str
    amount: Decimal
    currency: str
    description: Optional[str]
    created_at: str


SHEET_ROW_TYPES: dict[str, type] = {
    SheetName.BALANCES.value: BalanceRow,
    SheetName.SETTINGS.value: SettingRow,
    SheetName.PRODUCTS.value: CatalogItemRow,
    SheetName.ACCESSORIES.value: CatalogItemRow,
    SheetName.SALES.value: SaleRow,
    SheetName.SALE_ITEMS.value: SaleItemRow,
    SheetName.CUSTOMER_DEBTS.value: CustomerDebtRow,
    SheetName.COMPANY_DEBTS.value: CompanyDebtRow,
    SheetName.PERSONAL_LOANS.value: PersonalLoanRow,
    SheetName.DEBT_PAYMENTS.value: DebtPaymentRow,
    SheetName.TRANSACTION_LOG.value: TransactionLogRow,
    SheetName.BUYING_HISTORY.value: BuyingHistoryRow,
    SheetName.BUYING_HISTORY_ITEMS.value: BuyingHistoryItemRow,
    SheetName.INCENTIVES.value: IncentiveRow,
}


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME`` and returns the first match.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _read_decimal_option(
    parser: configparser.ConfigParser,
    section: str,
    option: str,
    fallback: Decimal,
) -> Decimal:
    raw = parser.get(section, option, fallback=None)
    if raw is None or not raw.strip():
        return fallback
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid number for [{section}] {option}: {raw!r}") from exc
    if value < 0:
        raise ValueError(f"[{section}] {option} must not be negative")
    return value


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. The ``[Currency]`` and
    ``[Tolerances]`` sections are optional and fall back to the constants in
    :mod:`shop_ledger.constants`. Relative ``DataFile`` entries are expanded
    against ``base_path`` (or the current working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional numeric entry cannot be parsed or the
            default exchange rate is not positive.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    default_rate = _read_decimal_option(parser, "Currency", "DefaultExchangeRate", DEFAULT_EXCHANGE_RATE)
    if default_rate <= 0:
        raise ValueError("[Currency] DefaultExchangeRate must be greater than zero")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_exchange_rate=default_rate,
        usd_tolerance=_read_decimal_option(parser, "Tolerances", "UsdTolerance", DEFAULT_USD_TOLERANCE),
        lc_tolerance=_read_decimal_option(parser, "Tolerances", "LcTolerance", DEFAULT_LC_TOLERANCE),
        company_lc_tolerance=_read_decimal_option(
            parser, "Tolerances", "CompanyLcTolerance", DEFAULT_COMPANY_LC_TOLERANCE
        ),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def sheet_columns(sheet_name: str) -> list[str]:
    """Return the header titles of ``sheet_name`` in worksheet order."""

    return [item.name for item in fields(SHEET_ROW_TYPES[sheet_name])]


def _header_map(workbook: Workbook, sheet_name: str) -> dict[Any, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Any]:
    """Iterate over the typed records stored on ``sheet_name``.

    Header and fully empty rows are skipped. Each remaining row is converted
    with :func:`deserialize_row` into the dataclass registered for the sheet
    in :data:`SHEET_ROW_TYPES`.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Worksheet to read.

    Yields:
        object: One structured row for each meaningful record in the sheet.
    """

    row_type = SHEET_ROW_TYPES[sheet_name]
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_row(row_type, raw)


def append_row(workbook: Workbook, sheet_name: str, record: Any) -> None:
    """Append a typed record to ``sheet_name`` in worksheet column order.

    Args:
        workbook (Workbook): Workbook whose sheet should be modified.
        sheet_name (str): Destination worksheet.
        record (object): Dataclass instance of the sheet's row type.

    Raises:
        TypeError: If ``record`` is not an instance of the sheet's row type.
    """

    row_type = SHEET_ROW_TYPES[sheet_name]
    if not isinstance(record, row_type):
        raise TypeError(f"{sheet_name} expects {row_type.__name__}, got {type(record).__name__}")
    workbook[sheet_name].append(serialize_row(record))


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_value: Any,
    *,
    field_values: dict[str, Any],
    key_column: str = "id",
) -> None:
    """Update selected columns for an existing row.

    The function locates the row whose ``key_column`` matches ``key_value``,
    validates that each requested field exists in the header row, and then
    writes the provided values into the corresponding cells. Only the
    specified fields are modified.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Worksheet holding the row.
        key_value (Any): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.
        key_column (str): Header of the lookup column. Defaults to ``id``.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)

    for field_name, value in field_values.items():
        if field_name not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field_name}")
        sheet.cell(row=row_index, column=header_map[field_name], value=_cell_value(value))


def delete_row(workbook: Workbook, sheet_name: str, key_value: Any, *, key_column: str = "id") -> None:
    """Remove the row whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If no such row exists.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: Any) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Integer identifiers are compared after numeric normalisation because the
    workbook hands back whole numbers that were saved as floats.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (Any): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    target = _cell_value(key_value)

    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1] if len(row) >= key_col_index else None
        if cell_value is None:
            continue
        if isinstance(target, int) and not isinstance(target, bool):
            try:
                if int(cell_value) == target:
                    return row_idx
            except (TypeError, ValueError):
                continue
        elif cell_value == target:
            return row_idx

    return None


def next_row_id(workbook: Workbook, sheet_name: str) -> int:
    """Return ``max(id) + 1`` for ``sheet_name`` (``1`` for an empty sheet)."""

    highest = 0
    for record in iter_rows(workbook, sheet_name):
        highest = max(highest, record.id)
    return highest + 1


def read_setting(workbook: Workbook, key: str) -> Optional[str]:
    """Return the raw text stored under ``key`` in the ``Settings`` sheet."""

    for record in iter_rows(workbook, SETTINGS_SHEET):
        if record.key == key:
            return record.value
    return None


def write_setting(workbook: Workbook, key: str, value: str) -> None:
    """Insert or overwrite ``key`` in the ``Settings`` sheet."""

    if locate_row(workbook, SETTINGS_SHEET, "key", key) is None:
        append_row(workbook, SETTINGS_SHEET, SettingRow(key=key, value=value))
        log.debug("Created setting '%s'", key)
    else:
        update_row(workbook, SETTINGS_SHEET, key, field_values={"value": value}, key_column="key")


def _cell_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def serialize_row(record: Any) -> list[object]:
    """Convert a row dataclass into the worksheet column ordering.

    Enumerations are stored by value so the sheet only ever holds plain text,
    numbers, and booleans. :class:`~decimal.Decimal` values are kept as-is.

    Args:
        record (object): Structured row data to transform.

    Returns:
        list[object]: Values ordered to match the sheet's header row.
    """

    return [_cell_value(getattr(record, item.name)) for item in fields(record)]


def _to_decimal(raw: object) -> Decimal:
    return Decimal(str(raw))


def _to_int(raw: object) -> int:
    return int(Decimal(str(raw)))


def _to_bool(raw: object) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes"}
    return bool(raw)


def _to_text(raw: object) -> str:
    return str(raw)


_COERCERS: dict[str, Callable[[object], Any]] = {
    "Decimal": _to_decimal,
    "int": _to_int,
    "bool": _to_bool,
    "str": _to_text,
}

_BLANK_DEFAULTS: dict[str, Any] = {
    "Decimal": Decimal("0"),
    "int": 0,
    "bool": False,
    "str": "",
}


def deserialize_row(row_type: type, raw_row: Sequence[object]) -> Any:
    """Convert a raw worksheet row into an instance of ``row_type``.

    Values are coerced according to the field annotations: numeric fields
    become :class:`~decimal.Decimal` or ``int`` (Excel hands back floats),
    ``Optional`` fields stay ``None`` when the cell is blank, and required
    fields fall back to a neutral value (zero, ``False`` or an empty string).

    Args:
        row_type (type): Dataclass describing the sheet.
        raw_row (Sequence[object]): Raw cell values in worksheet order.

    Returns:
        object: Dataclass populated with normalized values.
    """

    values: dict[str, Any] = {}
    for index, item in enumerate(fields(row_type)):
        annotation = str(item.type)
        optional = annotation.startswith("Optional[")
        base = annotation[len("Optional["):-1] if optional else annotation
        raw = raw_row[index] if index < len(raw_row) else None
        if raw is None or (isinstance(raw, str) and raw == "" and base != "str"):
            values[item.name] = None if optional else _BLANK_DEFAULTS[base]
        else:
            values[item.name] = _COERCERS[base](raw)
    return row_type(**values)
