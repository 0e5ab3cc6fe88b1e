from __future__ import annotations

import logging
import time
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Rental, RentalItem
from services import inventory_ledger
from services.errors import IllegalTransition, TransientStoreError, UnknownRental, ValidationError
from services.payment_service import paid_to_date, rental_balance

RENTAL_LOGGER = logging.getLogger("rental_management.rentals")

INITIAL_STATES = {"PENDING", "ACTIVE"}
TERMINAL_STATES = {"COMPLETED", "CANCELLED"}
STATE_TRANSITIONS = {
    "PENDING": {"ACTIVE", "CANCELLED"},
    "ACTIVE": {"COMPLETED", "CANCELLED"},
    "COMPLETED": set(),
    "CANCELLED": set(),
}
# Release on these statuses only happens when the caller asks for it.
RELEASABLE_STATES = TERMINAL_STATES


def generate_rental_number(db: Session, prefix: str = "RNT") -> str:
    token = (prefix or "RNT").upper()
    base = f"{token}-{int(time.time() * 1000)}"
    taken = set(
        db.execute(
            select(Rental.RentalNumber).where(Rental.RentalNumber.like(f"{base}%"))
        ).scalars().all()
    )
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def load_rental(db: Session, rental_id: str) -> Rental:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.RentalItems).selectinload(RentalItem.Item))
        .options(selectinload(Rental.Payments))
        .options(selectinload(Rental.Customer))
        .where(Rental.RentalID == rental_id)
        .execution_options(populate_existing=True)
    )
    rental = db.execute(stmt).scalars().first()
    if not rental:
        raise UnknownRental(rental_id)
    return rental


def _normalize_state(raw: str | None) -> str:
    return (raw or "").strip().upper()


def validate_initial_state(raw: str | None) -> str:
    state = _normalize_state(raw or "PENDING")
    if state not in INITIAL_STATES:
        raise ValidationError("Initial status must be PENDING or ACTIVE.", status=state)
    return state


def build_line_item(position: int, item_id: str, quantity: int, price_per_unit: Decimal) -> RentalItem:
    quantity = int(quantity)
    if quantity <= 0:
        raise ValidationError(f"Line {position + 1}: quantity must be greater than zero.")
    price = Decimal(price_per_unit)
    if price < 0:
        raise ValidationError(f"Line {position + 1}: pricePerUnit must not be negative.")
    return RentalItem(
        ItemID=item_id,
        Position=position,
        Quantity=quantity,
        PricePerUnit=price,
        Subtotal=price * quantity,
    )


def recalc_total_amount(rental: Rental) -> Decimal:
    total = sum((Decimal(line.Subtotal) for line in rental.RentalItems), Decimal("0"))
    rental.TotalAmount = total
    return total


def reserve_rental_items(db: Session, rental: Rental) -> None:
    for line in rental.RentalItems:
        inventory_ledger.reserve(db, line.ItemID, line.Quantity)


def release_rental_inventory(db: Session, rental: Rental) -> bool:
    """Hand every line of ``rental`` back to the ledger, at most once.

    The release marker is claimed with a compare-and-swap so two concurrent
    callers cannot both release. Returns False when it was already released.
    """
    released_at = datetime.now()
    result = db.execute(
        update(Rental)
        .where(Rental.RentalID == rental.RentalID)
        .where(Rental.InventoryReleasedAt.is_(None))
        .values(InventoryReleasedAt=released_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    rental.InventoryReleasedAt = released_at
    for line in rental.RentalItems:
        inventory_ledger.release(db, line.ItemID, line.Quantity)
    RENTAL_LOGGER.info("Released inventory rental=%s lines=%s", rental.RentalNumber, len(rental.RentalItems))
    return True


def transition_state(db: Session, rental: Rental, target_state: str) -> bool:
    current = _normalize_state(rental.Status)
    target = _normalize_state(target_state)
    if target not in STATE_TRANSITIONS:
        raise ValidationError(f"Unknown rental status: {target_state}")
    if target == current:
        return False
    if target not in STATE_TRANSITIONS.get(current, set()):
        raise IllegalTransition(current, target)

    now = datetime.now()
    result = db.execute(
        update(Rental)
        .where(Rental.RentalID == rental.RentalID)
        .where(Rental.Status == current)
        .values(Status=target, UpdatedAt=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise TransientStoreError(
            f"Rental {rental.RentalNumber} changed status concurrently; retry.",
            rentalID=rental.RentalID,
        )
    rental.Status = target
    rental.UpdatedAt = now
    return True


def serialize_rental_item(line: RentalItem) -> dict:
    return {
        "rentalItemID": line.RentalItemID,
        "rentalID": line.RentalID,
        "itemID": line.ItemID,
        "quantity": line.Quantity,
        "pricePerUnit": line.PricePerUnit,
        "subtotal": line.Subtotal,
        "item": {
            "itemID": line.Item.ItemID,
            "name": line.Item.Name,
            "category": line.Item.Category,
        } if line.Item else None,
    }


def serialize_rental(rental: Rental, include_payments: bool = True) -> dict:
    payload = {
        "rentalID": rental.RentalID,
        "rentalNumber": rental.RentalNumber,
        "customerID": rental.CustomerID,
        "customer": {
            "customerID": rental.Customer.CustomerID,
            "name": rental.Customer.Name,
            "phone": rental.Customer.Phone,
        } if rental.Customer else None,
        "startDate": rental.StartDate,
        "endDate": rental.EndDate,
        "returnDate": rental.ReturnDate,
        "totalAmount": rental.TotalAmount,
        "deposit": rental.Deposit,
        "status": rental.Status,
        "notes": rental.Notes,
        "createdByID": rental.CreatedByID,
        "inventoryReleased": rental.InventoryReleasedAt is not None,
        "inventoryReleasedAt": rental.InventoryReleasedAt,
        "createdAt": rental.CreatedAt,
        "updatedAt": rental.UpdatedAt,
        "rentalItems": [serialize_rental_item(line) for line in rental.RentalItems],
    }
    if include_payments:
        payload["paidToDate"] = paid_to_date(rental.Payments)
        payload["balance"] = rental_balance(rental)
        payload["paymentCount"] = len(rental.Payments)
    return payload
