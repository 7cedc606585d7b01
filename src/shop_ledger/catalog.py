"""Catalog contract consumed by the settlement and reversal engines.

Products and accessories live on separate sheets with the same columns. A
:class:`CatalogReference` names one row on either sheet so callers never
branch on the kind themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

from . import core_logic, data_manager, log
from .constants import CatalogKind, SheetName
from .core_logic import InsufficientStockError, RuntimeContext

_SHEETS = {
    CatalogKind.PRODUCT: SheetName.PRODUCTS.value,
    CatalogKind.ACCESSORY: SheetName.ACCESSORIES.value,
}


@dataclass(frozen=True)
class CatalogReference:
    """Tagged reference to a product or accessory row."""

    kind: CatalogKind
    item_id: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", CatalogKind(self.kind))
        object.__setattr__(self, "item_id", int(self.item_id))

    @classmethod
    def product(cls, item_id: int) -> "CatalogReference":
        return cls(CatalogKind.PRODUCT, int(item_id))

    @classmethod
    def accessory(cls, item_id: int) -> "CatalogReference":
        return cls(CatalogKind.ACCESSORY, int(item_id))

    @classmethod
    def parse(cls, text: str) -> "CatalogReference":
        """Build a reference from ``"product:12"`` or ``"accessory:3"``."""

        kind, _, raw_id = text.partition(":")
        try:
            return cls(CatalogKind(kind.strip().lower()), int(raw_id))
        except ValueError:
            raise core_logic.ValidationError(f"Invalid catalog reference: {text!r}") from None

    @property
    def sheet_name(self) -> str:
        return _SHEETS[self.kind]

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.item_id}"


def find_item(context: RuntimeContext, ref: CatalogReference) -> Optional[data_manager.CatalogItemRow]:
    """Return the catalog row for ``ref`` or ``None`` when it is missing."""

    return core_logic.find_row(context, ref.sheet_name, ref.item_id)


def get_item(context: RuntimeContext, ref: CatalogReference) -> data_manager.CatalogItemRow:
    """Return the catalog row for ``ref``.

    Raises:
        NotFoundError: If the product or accessory does not exist.
    """

    return core_logic.get_row(context, ref.sheet_name, ref.item_id, label=f"Catalog item {ref}")


def list_items(
    context: RuntimeContext,
    kind: CatalogKind,
    *,
    include_archived: bool = False,
) -> List[data_manager.CatalogItemRow]:
    """Return the rows of one catalog sheet, hiding archived rows by default."""

    rows = core_logic.list_rows(context, _SHEETS[CatalogKind(kind)])
    if include_archived:
        return rows
    return [row for row in rows if not row.archived]


def decrement_stock(context: RuntimeContext, ref: CatalogReference, quantity: int) -> data_manager.CatalogItemRow:
    """Take ``quantity`` units out of stock.

    Raises:
        NotFoundError: If the item does not exist.
        InsufficientStockError: If fewer than ``quantity`` units are on hand.
    """

    quantity = core_logic.require_positive_quantity(quantity)
    item = get_item(context, ref)
    if item.stock < quantity:
        log.warning("Insufficient stock for %s: available %s, required %s", ref, item.stock, quantity)
        raise InsufficientStockError(f"{item.name} ({ref})", item.stock, quantity)
    return core_logic.update_row(context, ref.sheet_name, ref.item_id, stock=item.stock - quantity)


def restore_stock(context: RuntimeContext, ref: CatalogReference, quantity: int) -> data_manager.CatalogItemRow:
    """Put ``quantity`` units back into stock."""

    quantity = core_logic.require_positive_quantity(quantity)
    item = get_item(context, ref)
    return core_logic.update_row(context, ref.sheet_name, ref.item_id, stock=item.stock + quantity)


def reactivate_if_archived(context: RuntimeContext, ref: CatalogReference) -> bool:
    """Clear the archived flag of ``ref``; return whether it was set."""

    item = get_item(context, ref)
    if not item.archived:
        return False
    core_logic.update_row(context, ref.sheet_name, ref.item_id, archived=False)
    log.info("Reactivated archived catalog item %s", ref)
    return True


def add_catalog_item(
    context: RuntimeContext,
    kind: Any,
    *,
    name: str,
    buying_price: Decimal,
    price: Decimal,
    currency: Any,
    stock: int = 0,
) -> data_manager.CatalogItemRow:
    """Register a product or accessory and return the stored row.

    Raises:
        ValidationError: If the name is blank, a price is negative, the stock is
            negative, or the currency is unsupported.
    """

    kind = CatalogKind(kind)
    if not name or not name.strip():
        raise core_logic.ValidationError("Catalog item name is required")
    core_logic.require_nonnegative_money(buying_price, label="Buying price")
    core_logic.require_nonnegative_money(price, label="Selling price")
    currency = core_logic.require_currency(currency)
    if int(stock) != stock or stock < 0:
        raise core_logic.ValidationError("Stock must be a whole number of zero or more")

    with core_logic.unit_of_work(context, "add_catalog_item"):
        row = core_logic.insert_row(
            context,
            _SHEETS[kind],
            name=name.strip(),
            stock=int(stock),
            buying_price=core_logic.quantize_money(buying_price),
            price=core_logic.quantize_money(price),
            currency=currency.value,
            archived=False,
        )
    log.info("Added %s %s '%s' (stock=%s)", kind.value, row.id, row.name, row.stock)
    return row
