import tempfile
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from db.session import build_engine, build_session_factory, create_tables
from models.rental_models import Customer, InventoryItem
from schemas.rentals import CreateRentalDto


class TempDatabase:
    """A throwaway SQLite file database with the full schema."""

    def __init__(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.url = f"sqlite+pysqlite:///{Path(self._tmpdir.name) / 'rentals.db'}"
        self.engine = build_engine(self.url)
        create_tables(self.engine)
        self.SessionLocal = build_session_factory(self.engine)

    def session(self):
        return self.SessionLocal()

    def close(self):
        self.engine.dispose()
        self._tmpdir.cleanup()


def add_customer(db, name="John Doe", phone="+1234567890", email=None) -> Customer:
    customer = Customer(Name=name, Phone=phone, Email=email, CreatedAt=datetime.now(), UpdatedAt=datetime.now())
    db.add(customer)
    db.commit()
    return customer


def add_item(db, name="White Event Canopy 10x10", quantity=10, price="50.00", category="CANOPY") -> InventoryItem:
    item = InventoryItem(
        Name=name,
        Category=category,
        Quantity=quantity,
        AvailableQty=quantity,
        PricePerDay=Decimal(price),
        Status="AVAILABLE",
        CreatedAt=datetime.now(),
        UpdatedAt=datetime.now(),
    )
    db.add(item)
    db.commit()
    return item


def rental_payload(customer_id, lines, status=None, **extra) -> CreateRentalDto:
    """``lines`` is a list of ``(item_id, quantity)`` or ``(item_id, quantity, price)``."""
    items = []
    for line in lines:
        entry = {"itemId": line[0], "quantity": line[1]}
        if len(line) > 2:
            entry["pricePerUnit"] = line[2]
        items.append(entry)
    data = {
        "customerId": customer_id,
        "startDate": "2024-03-01T00:00:00",
        "endDate": "2024-03-03T00:00:00",
        "items": items,
    }
    if status:
        data["status"] = status
    data.update(extra)
    return CreateRentalDto.model_validate(data)


def available_qty(database: TempDatabase, item_id: str) -> int:
    with database.session() as db:
        return int(db.get(InventoryItem, item_id).AvailableQty)
