"""Allocation coordinator: the write façade over rentals and the ledger.

Each public operation is one unit of work. It either commits every row it
touched or rolls all of them back, so a rental is never left with some lines
reserved and others not. Store lock timeouts and lost compare-and-swap races
are retried a bounded number of times before surfacing.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from models.rental_models import Customer, InventoryItem, Rental, RentalItem
from schemas.rentals import CreateRentalDto, UpdateRentalDto
from services.audit_service import log_audit
from services.errors import (
    LedgerCorruption,
    NotFound,
    ReferencedByRental,
    RentalHasPayments,
    TransientStoreError,
    UnknownCustomer,
    UnknownItem,
    ValidationError,
)
from services.rental_service import (
    RELEASABLE_STATES,
    build_line_item,
    generate_rental_number,
    load_rental,
    recalc_total_amount,
    release_rental_inventory,
    reserve_rental_items,
    transition_state,
    validate_initial_state,
)

ALLOCATION_LOGGER = logging.getLogger("rental_management.allocation")

TRANSIENT_RETRIES = int(os.environ.get("RENTAL_TRANSIENT_RETRIES") or "3")
TRANSIENT_BACKOFF_SECONDS = float(os.environ.get("RENTAL_TRANSIENT_BACKOFF_SECONDS") or "0.05")
CENT = Decimal("0.01")

T = TypeVar("T")


def run_unit_of_work(
    db: Session,
    work: Callable[[], T],
    *,
    operation: str,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    max_attempts = max(1, attempts if attempts is not None else TRANSIENT_RETRIES)
    delay = TRANSIENT_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
    attempt = 0
    while True:
        attempt += 1
        try:
            result = work()
            db.commit()
            return result
        except LedgerCorruption as exc:
            db.rollback()
            ALLOCATION_LOGGER.critical("Ledger integrity fault op=%s detail=%s", operation, exc.message)
            raise
        except (TransientStoreError, OperationalError) as exc:
            db.rollback()
            if attempt >= max_attempts:
                ALLOCATION_LOGGER.error("Giving up op=%s attempts=%s error=%s", operation, attempt, exc)
                if isinstance(exc, TransientStoreError):
                    raise
                raise TransientStoreError(f"{operation} could not complete: the store is busy, retry later.") from exc
            ALLOCATION_LOGGER.warning(
                "Transient store error op=%s attempt=%s/%s error=%s", operation, attempt, max_attempts, exc
            )
            time.sleep(delay * (2 ** (attempt - 1)))
        except Exception:
            db.rollback()
            raise


def _flush_or_transient(db: Session, reason: str) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        raise TransientStoreError(reason) from exc


def create_rental(db: Session, payload: CreateRentalDto, creator_id: str | None = None) -> Rental:
    def _create() -> Rental:
        if payload.endDate < payload.startDate:
            raise ValidationError("endDate must be on or after startDate.")
        if not payload.items:
            raise ValidationError("No rental items supplied.")
        initial_status = validate_initial_state(payload.status)

        customer = db.get(Customer, payload.customerID)
        if not customer:
            raise UnknownCustomer(payload.customerID)

        now = datetime.now()
        rental = Rental(
            RentalNumber=generate_rental_number(db),
            CustomerID=customer.CustomerID,
            StartDate=payload.startDate,
            EndDate=payload.endDate,
            Deposit=payload.deposit,
            Status=initial_status,
            Notes=payload.notes,
            CreatedByID=creator_id,
            CreatedAt=now,
            UpdatedAt=now,
        )

        for position, line in enumerate(payload.items):
            item = db.get(InventoryItem, line.itemID)
            if not item:
                raise UnknownItem(line.itemID)
            price = line.pricePerUnit if line.pricePerUnit is not None else Decimal(item.PricePerDay or 0)
            rental_item = build_line_item(position, item.ItemID, line.quantity, price)
            if line.subtotal is not None and Decimal(line.subtotal).quantize(CENT) != rental_item.Subtotal.quantize(CENT):
                raise ValidationError(
                    f"Line {position + 1}: subtotal {line.subtotal} does not match quantity x pricePerUnit "
                    f"({rental_item.Subtotal}).",
                    itemID=item.ItemID,
                )
            rental.RentalItems.append(rental_item)

        recalc_total_amount(rental)
        reserve_rental_items(db, rental)

        db.add(rental)
        _flush_or_transient(db, f"Rental number {rental.RentalNumber} collided; retry.")
        log_audit(
            db,
            "Rental",
            rental.RentalID,
            "CreateRental",
            f"Created {rental.RentalNumber} with status {initial_status}; lines={len(rental.RentalItems)}",
            user_id=creator_id,
        )
        return rental

    rental = run_unit_of_work(db, _create, operation="create_rental")
    ALLOCATION_LOGGER.info(
        "Rental created number=%s customer=%s total=%s", rental.RentalNumber, rental.CustomerID, rental.TotalAmount
    )
    return rental


def update_rental_status(
    db: Session,
    rental_id: str,
    payload: UpdateRentalDto,
    actor_id: str | None = None,
) -> Rental:
    provided = payload.model_fields_set

    def _update() -> Rental:
        rental = load_rental(db, rental_id)
        previous = rental.Status
        if payload.status is not None:
            transition_state(db, rental, payload.status)

        if "returnDate" in provided:
            rental.ReturnDate = payload.returnDate
        if "notes" in provided:
            rental.Notes = payload.notes

        released = False
        if payload.returnItems:
            if rental.Status not in RELEASABLE_STATES:
                raise ValidationError(
                    "returnItems is only accepted when the rental is COMPLETED or CANCELLED.",
                    status=rental.Status,
                )
            released = release_rental_inventory(db, rental)

        rental.UpdatedAt = datetime.now()
        log_audit(
            db,
            "Rental",
            rental.RentalID,
            "UpdateRental",
            f"status {previous}->{rental.Status}; returnItems={payload.returnItems}; released={released}",
            user_id=actor_id,
        )
        return rental

    rental = run_unit_of_work(db, _update, operation="update_rental_status")
    ALLOCATION_LOGGER.info("Rental updated number=%s status=%s", rental.RentalNumber, rental.Status)
    return rental


def delete_rental(db: Session, rental_id: str, actor_id: str | None = None) -> None:
    def _delete() -> str:
        rental = load_rental(db, rental_id)
        if rental.Payments:
            raise RentalHasPayments(
                "Cannot delete rental with existing payments. Cancel it instead.",
                rentalID=rental.RentalID,
                paymentCount=len(rental.Payments),
            )
        release_rental_inventory(db, rental)
        number = rental.RentalNumber
        db.delete(rental)
        _flush_or_transient(db, f"Rental {number} gained references while deleting; retry.")
        log_audit(db, "Rental", rental_id, "DeleteRental", f"Deleted {number}", user_id=actor_id)
        return number

    number = run_unit_of_work(db, _delete, operation="delete_rental")
    ALLOCATION_LOGGER.info("Rental deleted number=%s", number)


def delete_customer(db: Session, customer_id: str, actor_id: str | None = None) -> None:
    def _delete() -> None:
        customer = db.get(Customer, customer_id)
        if not customer:
            raise NotFound("Customer", customer_id)
        rental_count = db.execute(
            select(func.count(Rental.RentalID)).where(Rental.CustomerID == customer_id)
        ).scalar()
        if rental_count:
            raise ReferencedByRental(
                "Cannot delete customer with existing rentals.",
                customerID=customer_id,
                rentalCount=int(rental_count),
            )
        db.delete(customer)
        _flush_or_transient(db, f"Customer {customer_id} gained a rental while deleting; retry.")
        log_audit(db, "Customer", customer_id, "DeleteCustomer", customer.Name, user_id=actor_id)

    run_unit_of_work(db, _delete, operation="delete_customer")


def delete_inventory_item(db: Session, item_id: str, actor_id: str | None = None) -> None:
    def _delete() -> None:
        item = db.get(InventoryItem, item_id)
        if not item:
            raise NotFound("Item", item_id)
        usage_count = db.execute(
            select(func.count(RentalItem.RentalItemID)).where(RentalItem.ItemID == item_id)
        ).scalar()
        if usage_count:
            raise ReferencedByRental(
                "Cannot delete item that has been used in rentals.",
                itemID=item_id,
                usageCount=int(usage_count),
            )
        db.delete(item)
        _flush_or_transient(db, f"Item {item_id} gained a rental line while deleting; retry.")
        log_audit(db, "InventoryItem", item_id, "DeleteItem", item.Name, user_id=actor_id)

    run_unit_of_work(db, _delete, operation="delete_inventory_item")

