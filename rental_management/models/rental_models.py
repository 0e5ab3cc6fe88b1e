import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


ITEM_CATEGORIES = ("CANOPY", "CHAIR", "TABLE", "DECORATION", "OTHER")
ITEM_STATUSES = ("AVAILABLE", "RENTED", "MAINTENANCE", "DAMAGED")
RENTAL_STATUSES = ("PENDING", "ACTIVE", "COMPLETED", "CANCELLED")
PAYMENT_STATUSES = ("PENDING", "PAID", "PARTIAL", "REFUNDED")


def _new_id() -> str:
    return str(uuid.uuid4())


class InventoryItem(Base):
    __tablename__ = "InventoryItems"

    ItemID = Column(String(36), primary_key=True, default=_new_id)
    Name = Column(String(255), nullable=False)
    Category = Column(String(20), nullable=False, default="OTHER")
    Description = Column(Text)
    Quantity = Column(Integer, nullable=False, default=0)
    AvailableQty = Column(Integer, nullable=False, default=0)
    PricePerDay = Column(Numeric(10, 2), nullable=False, default=0)
    PricePerWeek = Column(Numeric(10, 2))
    Status = Column(String(20), nullable=False, default="AVAILABLE")
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    RentalItems = relationship("RentalItem", back_populates="Item")


class Customer(Base):
    __tablename__ = "Customers"

    CustomerID = Column(String(36), primary_key=True, default=_new_id)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255))
    Phone = Column(String(50), nullable=False)
    Address = Column(String(500))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Customer")


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(String(36), primary_key=True, default=_new_id)
    RentalNumber = Column(String(50), nullable=False, unique=True)
    CustomerID = Column(String(36), ForeignKey("Customers.CustomerID"), nullable=False, index=True)
    StartDate = Column(DateTime, nullable=False)
    EndDate = Column(DateTime, nullable=False)
    ReturnDate = Column(DateTime)
    TotalAmount = Column(Numeric(10, 2), nullable=False, default=0)
    Deposit = Column(Numeric(10, 2), nullable=False, default=0)
    Status = Column(String(20), nullable=False, default="PENDING")
    Notes = Column(String(1000))
    CreatedByID = Column(String(64))
    # Set once the rental's lines have been handed back to the ledger.
    InventoryReleasedAt = Column(DateTime)
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Customer = relationship("Customer", back_populates="Rentals")
    RentalItems = relationship(
        "RentalItem",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="RentalItem.Position",
    )
    Payments = relationship("Payment", back_populates="Rental", order_by="Payment.CreatedAt")


class RentalItem(Base):
    __tablename__ = "RentalItems"

    RentalItemID = Column(String(36), primary_key=True, default=_new_id)
    RentalID = Column(String(36), ForeignKey("Rentals.RentalID", ondelete="CASCADE"), nullable=False, index=True)
    ItemID = Column(String(36), ForeignKey("InventoryItems.ItemID"), nullable=False, index=True)
    Position = Column(Integer, nullable=False, default=0)
    Quantity = Column(Integer, nullable=False)
    PricePerUnit = Column(Numeric(10, 2), nullable=False)
    Subtotal = Column(Numeric(10, 2), nullable=False)

    Rental = relationship("Rental", back_populates="RentalItems")
    Item = relationship("InventoryItem", back_populates="RentalItems")


class Payment(Base):
    __tablename__ = "Payments"

    PaymentID = Column(String(36), primary_key=True, default=_new_id)
    RentalID = Column(String(36), ForeignKey("Rentals.RentalID"), nullable=False, index=True)
    Amount = Column(Numeric(10, 2), nullable=False)
    PaymentMethod = Column(String(50), nullable=False)
    PaymentStatus = Column(String(20), nullable=False, default="PAID")
    TransactionID = Column(String(255))
    Notes = Column(String(1000))
    RecordedByID = Column(String(64))
    CreatedAt = Column(DateTime, server_default=func.now())

    Rental = relationship("Rental", back_populates="Payments")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True, autoincrement=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(String(36), nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(String(64))
    CreatedAt = Column(DateTime, server_default=func.now())
