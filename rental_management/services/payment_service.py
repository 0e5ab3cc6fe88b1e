from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import PAYMENT_STATUSES, Payment, Rental
from services.audit_service import log_audit
from services.errors import UnknownRental, ValidationError

PAYMENT_LOGGER = logging.getLogger("rental_management.payments")

RECOGNIZED_PAYMENT_STATUS = "PAID"
OUTSTANDING_RENTAL_STATES = ("PENDING", "ACTIVE")
ZERO = Decimal("0")


def paid_to_date(payments: Iterable[Payment]) -> Decimal:
    return sum(
        (Decimal(payment.Amount) for payment in payments if payment.PaymentStatus == RECOGNIZED_PAYMENT_STATUS),
        ZERO,
    )


def rental_balance(rental: Rental) -> Decimal:
    # Negative means the customer overpaid; that is reported, not rejected.
    return Decimal(rental.TotalAmount or 0) - paid_to_date(rental.Payments)


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def finance_summary(db: Session, now: datetime | None = None) -> dict:
    now = now or datetime.now()

    total_revenue = db.execute(
        select(func.coalesce(func.sum(Payment.Amount), 0))
        .where(Payment.PaymentStatus == RECOGNIZED_PAYMENT_STATUS)
    ).scalar()

    monthly_revenue = db.execute(
        select(func.coalesce(func.sum(Payment.Amount), 0))
        .where(Payment.PaymentStatus == RECOGNIZED_PAYMENT_STATUS)
        .where(Payment.CreatedAt >= _month_start(now))
    ).scalar()

    outstanding = db.execute(
        select(Rental)
        .options(selectinload(Rental.Payments))
        .where(Rental.Status.in_(OUTSTANDING_RENTAL_STATES))
    ).scalars().all()
    pending_amount = sum((rental_balance(rental) for rental in outstanding), ZERO)

    active_count = db.execute(
        select(func.count(Rental.RentalID)).where(Rental.Status == "ACTIVE")
    ).scalar()

    return {
        "totalRevenue": Decimal(total_revenue or 0),
        "pendingAmount": pending_amount,
        "activeRentalsCount": int(active_count or 0),
        "monthlyRevenue": Decimal(monthly_revenue or 0),
    }


def record_payment(
    db: Session,
    *,
    rental_id: str,
    amount: Decimal,
    method: str,
    status: str | None = None,
    transaction_id: str | None = None,
    notes: str | None = None,
    recorder_id: str | None = None,
) -> Payment:
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("amount must be greater than zero.")
    if not (method or "").strip():
        raise ValidationError("paymentMethod is required.")
    payment_status = (status or RECOGNIZED_PAYMENT_STATUS).strip().upper()
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status: {status}")
    rental = db.get(Rental, rental_id)
    if not rental:
        raise UnknownRental(rental_id)

    payment = Payment(
        RentalID=rental.RentalID,
        Amount=amount,
        PaymentMethod=method.strip(),
        PaymentStatus=payment_status,
        TransactionID=transaction_id,
        Notes=notes,
        RecordedByID=recorder_id,
        CreatedAt=datetime.now(),
    )
    db.add(payment)
    db.flush()
    log_audit(
        db,
        "Payment",
        payment.PaymentID,
        "RecordPayment",
        f"rental={rental.RentalNumber} amount={amount} status={payment.PaymentStatus}",
        user_id=recorder_id,
    )
    PAYMENT_LOGGER.info(
        "Payment recorded rental=%s amount=%s status=%s", rental.RentalNumber, amount, payment.PaymentStatus
    )
    return payment


def serialize_payment(payment: Payment) -> dict:
    rental = payment.Rental
    return {
        "paymentID": payment.PaymentID,
        "rentalID": payment.RentalID,
        "amount": payment.Amount,
        "paymentMethod": payment.PaymentMethod,
        "paymentStatus": payment.PaymentStatus,
        "transactionID": payment.TransactionID,
        "notes": payment.Notes,
        "recordedByID": payment.RecordedByID,
        "createdAt": payment.CreatedAt,
        "rental": {
            "rentalID": rental.RentalID,
            "rentalNumber": rental.RentalNumber,
            "customerID": rental.CustomerID,
            "customerName": rental.Customer.Name if rental.Customer else None,
        } if rental else None,
    }
