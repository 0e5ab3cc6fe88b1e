#!/usr/bin/env python3
"""Load demo inventory, customers and one settled rental into a database."""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from sqlalchemy import select

from models.rental_models import Customer, InventoryItem
from schemas.rentals import CreateRentalDto, UpdateRentalDto
from services.allocation_service import create_rental, run_unit_of_work, update_rental_status
from services.payment_service import record_payment


DEMO_ITEMS = [
    {
        "Name": "White Event Canopy 10x10",
        "Category": "CANOPY",
        "Description": "Large white canopy for outdoor events",
        "Quantity": 10,
        "PricePerDay": Decimal("50.00"),
        "PricePerWeek": Decimal("300.00"),
    },
    {
        "Name": "Folding Chair",
        "Category": "CHAIR",
        "Description": "Standard folding chair",
        "Quantity": 100,
        "PricePerDay": Decimal("2.50"),
        "PricePerWeek": Decimal("15.00"),
    },
    {
        "Name": "Round Banquet Table",
        "Category": "TABLE",
        "Description": "60-inch round table",
        "Quantity": 20,
        "PricePerDay": Decimal("15.00"),
        "PricePerWeek": Decimal("90.00"),
    },
    {
        "Name": "LED String Lights",
        "Category": "DECORATION",
        "Description": "Warm white LED string lights, 50ft",
        "Quantity": 15,
        "PricePerDay": Decimal("10.00"),
        "PricePerWeek": Decimal("50.00"),
    },
]

DEMO_CUSTOMERS = [
    {"Name": "John Doe", "Email": "john@example.com", "Phone": "+1234567890", "Address": "123 Main St, City, State 12345"},
    {"Name": "Jane Smith", "Email": "jane@example.com", "Phone": "+0987654321", "Address": "456 Oak Ave, Town, State 54321"},
]

# (item name, quantity) for the sample wedding rental: 100 + 125 + 90 = 315.
DEMO_RENTAL_LINES = [
    ("White Event Canopy 10x10", 2),
    ("Folding Chair", 50),
    ("Round Banquet Table", 6),
]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed RentalManagement with demo data.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_DB_URL env var.",
    )
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first.")
    parser.add_argument("--skip-rental", action="store_true", help="Only load items and customers.")
    parser.add_argument("--user-id", default="seed", help="Recorded as creator of the sample rental and payment.")
    return parser


def seed_catalog(db, now: datetime) -> tuple[dict, dict]:
    """Insert demo items and customers that are not present yet, matched by name."""
    items = {}
    for values in DEMO_ITEMS:
        item = db.execute(select(InventoryItem).where(InventoryItem.Name == values["Name"])).scalars().first()
        if not item:
            item = InventoryItem(AvailableQty=values["Quantity"], Status="AVAILABLE", CreatedAt=now, UpdatedAt=now, **values)
            db.add(item)
        items[values["Name"]] = item

    customers = {}
    for values in DEMO_CUSTOMERS:
        customer = db.execute(select(Customer).where(Customer.Name == values["Name"])).scalars().first()
        if not customer:
            customer = Customer(CreatedAt=now, UpdatedAt=now, **values)
            db.add(customer)
        customers[values["Name"]] = customer

    db.commit()
    return items, customers


def seed_rental(db, items: dict, customer, user_id: str):
    """Book, return and settle the sample rental through the allocation path."""
    payload = CreateRentalDto(
        customerID=customer.CustomerID,
        startDate=datetime(2024, 3, 1),
        endDate=datetime(2024, 3, 3),
        deposit=Decimal("50.00"),
        status="ACTIVE",
        notes="Wedding event",
        items=[{"itemId": items[name].ItemID, "quantity": quantity} for name, quantity in DEMO_RENTAL_LINES],
    )
    rental = create_rental(db, payload, creator_id=user_id)
    update_rental_status(db, rental.RentalID, UpdateRentalDto(status="COMPLETED", returnItems=True), actor_id=user_id)
    run_unit_of_work(
        db,
        lambda: record_payment(
            db,
            rental_id=rental.RentalID,
            amount=rental.TotalAmount,
            method="Cash",
            recorder_id=user_id,
        ),
        operation="seed_payment",
    )
    return rental


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    if not args.db_url:
        parser.error("Missing DB URL. Set RENTAL_DB_URL or pass --db-url.")

    # db.session binds its engine to RENTAL_DB_URL at import time.
    os.environ["RENTAL_DB_URL"] = args.db_url
    from db.session import SessionLocalRental, create_tables, engine_rental

    if args.create_tables:
        create_tables(engine_rental)

    with SessionLocalRental() as db:
        items, customers = seed_catalog(db, datetime.now())
        print(f"OK items={len(items)} customers={len(customers)}")
        if args.skip_rental:
            return 0
        rental = seed_rental(db, items, customers["John Doe"], args.user_id)
        print(f"OK rental={rental.RentalNumber} total={rental.TotalAmount} status=COMPLETED paid={rental.TotalAmount}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
