"""Business logic foundation for the shop ledger.

This module owns the runtime context shared by every operation, the typed
error hierarchy, the atomic unit of work that wraps each mutating call, and
the cached row access helpers the settlement, debt, and reversal modules
build upon. All workbook I/O goes through :mod:`shop_ledger.data_manager`.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, MONEY_QUANTUM, RATE_QUANTUM, Currency


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised for malformed input such as empty items or negative amounts."""


class NotFoundError(BusinessRuleViolation, LookupError):
    """Raised when a referenced catalog item, sale, debt, or loan is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a catalog item holds fewer units than an operation needs."""

    def __init__(self, item: str, available: int, required: int) -> None:
        super().__init__(
            f"Insufficient stock for {item}: available {available}, required {required}"
        )
        self.item = item
        self.available = available
        self.required = required


class OverpaymentError(BusinessRuleViolation):
    """Raised when a payment exceeds what remains open on a personal loan."""


@dataclass
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL.

    ``workbook`` is swapped for a freshly loaded copy when a unit of work
    rolls back, which is why the context itself is mutable.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _depth: int = field(default=0, repr=False, compare=False)


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp the way every sheet stores it (ISO 8601)."""

    return moment.isoformat()


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary amount to the precision stored in the workbook."""

    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    """Round an exchange rate to the precision stored in the workbook."""

    return Decimal(value).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are keyed by sheet name and hold the parsed rows of that sheet so
    repeated lookups inside one operation do not re-scan the workbook.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping used to cache one sheet.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Args:
        context (RuntimeContext): Active runtime context whose cache should be
            pruned.
        *names (str): Bucket identifiers to remove. Missing buckets are
            ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_rows_cache(context: RuntimeContext, sheet_name: str) -> Dict[str, Any]:
    """Populate the cache bucket for ``sheet_name`` on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` rows in sheet order and a
            ``by_id`` lookup dictionary.
    """

    bucket = _get_cache_bucket(context, sheet_name)
    if "all" not in bucket:
        all_rows = list(data_manager.iter_rows(context.workbook, sheet_name))
        bucket["all"] = all_rows
        bucket["by_id"] = {row.id: row for row in all_rows if hasattr(row, "id")}
        log.debug("Populated %s cache with %d entries", sheet_name, len(all_rows))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Fully populated context ready for operations.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Args:
        context (RuntimeContext): Runtime context whose settings should be
            reused.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


@contextmanager
def unit_of_work(context: RuntimeContext, label: str) -> Iterator[RuntimeContext]:
    """Run a block of workbook mutations as one atomic operation.

    The outermost unit saves the workbook when the block completes. When the
    block raises, the in-memory workbook is replaced with the last saved copy
    from disk, caches are dropped, and the exception propagates unchanged.
    Nested units join the outermost one, so helpers can open their own unit
    whether they are called directly or from a larger operation.

    Args:
        context (RuntimeContext): Context whose workbook is being mutated.
        label (str): Operation name used in log messages.

    Yields:
        RuntimeContext: The same context, for convenience.
    """

    outermost = context._depth == 0
    context._depth += 1
    try:
        yield context
    except Exception:
        context._depth -= 1
        if outermost:
            log.warning("Rolling back '%s'; reloading '%s'", label, context.settings.data_file)
            context.workbook = data_manager.refresh_workbook(context.settings.data_file)
            context._cache.clear()
        raise
    context._depth -= 1
    if outermost:
        persist_context(context)
        log.debug("Committed '%s'", label)


def list_rows(context: RuntimeContext, sheet_name: str) -> List[Any]:
    """Return a copy of the cached rows of ``sheet_name`` in sheet order."""

    return list(_ensure_rows_cache(context, sheet_name)["all"])


def find_row(context: RuntimeContext, sheet_name: str, row_id: int) -> Optional[Any]:
    """Return the row with ``row_id`` or ``None`` when it does not exist."""

    return _ensure_rows_cache(context, sheet_name)["by_id"].get(row_id)


def get_row(context: RuntimeContext, sheet_name: str, row_id: int, *, label: Optional[str] = None) -> Any:
    """Return the row with ``row_id`` from ``sheet_name``.

    Raises:
        NotFoundError: If the identifier is unknown.
    """

    row = find_row(context, sheet_name, row_id)
    if row is None:
        description = label or sheet_name
        log.warning("Lookup failed for %s id %s", description, row_id)
        raise NotFoundError(f"{description} not found: {row_id}")
    return row


def insert_row(context: RuntimeContext, sheet_name: str, **values: Any) -> Any:
    """Append a new row to ``sheet_name`` and return it with its assigned id.

    The identifier is allocated as ``max(id) + 1``. Keyword arguments supply
    every other column of the sheet's row type.
    """

    row_type = data_manager.SHEET_ROW_TYPES[sheet_name]
    new_id = data_manager.next_row_id(context.workbook, sheet_name)
    record = row_type(id=new_id, **values)
    data_manager.append_row(context.workbook, sheet_name, record)
    _invalidate_cache(context, sheet_name)
    return record


def update_row(context: RuntimeContext, sheet_name: str, row_id: int, **changes: Any) -> Any:
    """Write ``changes`` into an existing row and return the updated record.

    Raises:
        NotFoundError: If the identifier is unknown.
    """

    current = get_row(context, sheet_name, row_id)
    data_manager.update_row(context.workbook, sheet_name, row_id, field_values=changes)
    _invalidate_cache(context, sheet_name)
    return replace(current, **changes)


def delete_row(context: RuntimeContext, sheet_name: str, row_id: int) -> None:
    """Delete the row with ``row_id`` from ``sheet_name``.

    Raises:
        NotFoundError: If the identifier is unknown.
    """

    get_row(context, sheet_name, row_id)
    data_manager.delete_row(context.workbook, sheet_name, row_id)
    _invalidate_cache(context, sheet_name)


def read_setting(context: RuntimeContext, key: str) -> Optional[str]:
    """Return the raw text stored for ``key`` in the settings store."""

    return data_manager.read_setting(context.workbook, key)


def write_setting(context: RuntimeContext, key: str, value: str) -> None:
    """Store ``value`` under ``key`` in the settings store."""

    data_manager.write_setting(context.workbook, key, value)
    _invalidate_cache(context, data_manager.SETTINGS_SHEET)


def require_currency(currency: Any) -> Currency:
    """Coerce ``currency`` into :class:`Currency`.

    Raises:
        ValidationError: If the value names neither supported currency.
    """
    try:
        return Currency(currency)
    except ValueError:
        log.error("Unsupported currency: %s", currency)
        raise ValidationError(f"Unsupported currency: {currency}") from None


def require_positive_quantity(quantity: Any) -> int:
    """Validate that a quantity is a strictly positive whole number.

    Returns:
        int: The quantity as an ``int``.

    Raises:
        ValidationError: If ``quantity`` is not a number, or is zero, negative,
            or fractional.
    """
    try:
        whole = int(quantity)
        valid = not isinstance(quantity, bool) and whole == quantity and whole > 0
    except (TypeError, ValueError, ArithmeticError):
        valid = False
    if not valid:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")
    return whole


def require_positive_money(amount: Decimal, *, label: str = "Amount") -> Decimal:
    """Validate that a monetary value is strictly positive."""
    if amount <= Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be greater than zero")
    return amount


def require_nonnegative_money(amount: Decimal, *, label: str = "Amount") -> Decimal:
    """Validate that a monetary value is zero or positive."""
    if amount < Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")
    return amount
