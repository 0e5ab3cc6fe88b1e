"""Inventory ledger: the only writer of ``InventoryItem.AvailableQty``.

Reservations and releases are single conditional UPDATE statements, so the
"check availability, then decrement" step is decided by the store row by row
and two concurrent writers can never both take the last units. Callers run
these inside their own transaction; nothing here commits.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from models.rental_models import InventoryItem, Rental, RentalItem
from services.audit_service import log_audit
from services.errors import InsufficientStock, LedgerCorruption, UnknownItem, ValidationError

LEDGER_LOGGER = logging.getLogger("rental_management.ledger")


def _load_fresh(db: Session, item_id: str) -> InventoryItem:
    item = db.get(InventoryItem, item_id, populate_existing=True)
    if not item:
        raise UnknownItem(item_id)
    return item


def _require_positive(quantity: int) -> int:
    value = int(quantity)
    if value <= 0:
        raise ValidationError(f"Quantity must be greater than zero, got {quantity}.")
    return value


def held_by_rentals(db: Session, item_id: str) -> int:
    """Units of ``item_id`` on lines of rentals that have not been released."""
    held = db.execute(
        select(func.coalesce(func.sum(RentalItem.Quantity), 0))
        .join(Rental, Rental.RentalID == RentalItem.RentalID)
        .where(RentalItem.ItemID == item_id)
        .where(Rental.InventoryReleasedAt.is_(None))
    ).scalar()
    return int(held or 0)


def get_available_qty(db: Session, item_id: str) -> int:
    return int(_load_fresh(db, item_id).AvailableQty)


def reserve(db: Session, item_id: str, quantity: int) -> InventoryItem:
    quantity = _require_positive(quantity)
    result = db.execute(
        update(InventoryItem)
        .where(InventoryItem.ItemID == item_id)
        .where(InventoryItem.AvailableQty >= quantity)
        .values(AvailableQty=InventoryItem.AvailableQty - quantity, UpdatedAt=datetime.now())
        .execution_options(synchronize_session=False)
    )
    item = _load_fresh(db, item_id)
    if result.rowcount != 1:
        raise InsufficientStock(item.ItemID, item.Name, quantity, int(item.AvailableQty))
    LEDGER_LOGGER.debug("Reserved item=%s qty=%s available=%s", item_id, quantity, item.AvailableQty)
    return item


def release(db: Session, item_id: str, quantity: int) -> InventoryItem:
    quantity = _require_positive(quantity)
    result = db.execute(
        update(InventoryItem)
        .where(InventoryItem.ItemID == item_id)
        .where(InventoryItem.AvailableQty + quantity <= InventoryItem.Quantity)
        .values(AvailableQty=InventoryItem.AvailableQty + quantity, UpdatedAt=datetime.now())
        .execution_options(synchronize_session=False)
    )
    item = _load_fresh(db, item_id)
    if result.rowcount != 1:
        raise LedgerCorruption(
            f"Release of {quantity} for item {item_id} exceeds total stock "
            f"(available={item.AvailableQty}, quantity={item.Quantity}).",
            itemID=item_id,
            requested=quantity,
        )
    LEDGER_LOGGER.debug("Released item=%s qty=%s available=%s", item_id, quantity, item.AvailableQty)
    return item


def adjust_stock(
    db: Session,
    item_id: str,
    *,
    quantity: int | None = None,
    available_qty: int | None = None,
    reason: str,
    actor_id: str | None = None,
) -> InventoryItem:
    """Administrative stock-level correction, kept apart from allocation.

    A new ``quantity`` moves ``AvailableQty`` by the same delta so units held
    by rentals stay held. An explicit ``available_qty`` is an override: it may
    take units out of circulation but never hand out units that unreleased
    rentals still hold, so ``AvailableQty <= Quantity - rented``. The row is
    locked for the rest of the transaction so a concurrent reservation cannot
    interleave.
    """
    item = db.get(InventoryItem, item_id, populate_existing=True, with_for_update=True)
    if not item:
        raise UnknownItem(item_id)
    if quantity is None and available_qty is None:
        return item

    old_quantity = int(item.Quantity)
    old_available = int(item.AvailableQty)
    held = old_quantity - old_available

    new_quantity = old_quantity if quantity is None else int(quantity)
    if new_quantity < 0:
        raise ValidationError("quantity must be zero or greater.")

    if available_qty is None:
        if new_quantity < held:
            raise ValidationError(
                f"quantity {new_quantity} is below the {held} units currently held by rentals.",
                itemID=item_id,
                held=held,
            )
        new_available = new_quantity - held
    else:
        new_available = int(available_qty)
        if new_available < 0 or new_available > new_quantity:
            raise ValidationError(
                f"availableQty must be between 0 and {new_quantity}.",
                itemID=item_id,
            )

    if new_quantity == old_quantity and new_available == old_available:
        return item

    rented = held_by_rentals(db, item_id)
    if new_available > new_quantity - rented:
        raise ValidationError(
            f"availableQty {new_available} would release units held by open rentals "
            f"(quantity={new_quantity}, rented={rented}).",
            itemID=item_id,
            rented=rented,
        )

    item.Quantity = new_quantity
    item.AvailableQty = new_available
    item.UpdatedAt = datetime.now()
    details = (
        f"quantity {old_quantity}->{new_quantity}; availableQty {old_available}->{new_available}; "
        f"reason={reason}"
    )
    log_audit(db, "InventoryItem", item_id, "StockAdjustment", details, user_id=actor_id)
    LEDGER_LOGGER.warning("Stock adjusted item=%s actor=%s %s", item_id, actor_id, details)
    return item
