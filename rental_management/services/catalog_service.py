from __future__ import annotations

from models.rental_models import Customer, InventoryItem

CUSTOMER_FIELD_MAP = {
    "name": "Name",
    "email": "Email",
    "phone": "Phone",
    "address": "Address",
}

# Quantity and AvailableQty move only through the ledger.
ITEM_FIELD_MAP = {
    "name": "Name",
    "category": "Category",
    "description": "Description",
    "pricePerDay": "PricePerDay",
    "pricePerWeek": "PricePerWeek",
    "status": "Status",
}


def map_customer_field(field: str) -> str:
    return CUSTOMER_FIELD_MAP[field]


def map_item_field(field: str) -> str | None:
    return ITEM_FIELD_MAP.get(field)


def serialize_customer(customer: Customer) -> dict:
    return {
        "customerID": customer.CustomerID,
        "name": customer.Name,
        "email": customer.Email,
        "phone": customer.Phone,
        "address": customer.Address,
        "createdAt": customer.CreatedAt,
        "updatedAt": customer.UpdatedAt,
    }


def serialize_item(item: InventoryItem) -> dict:
    quantity = int(item.Quantity or 0)
    available = int(item.AvailableQty or 0)
    return {
        "itemID": item.ItemID,
        "name": item.Name,
        "category": item.Category,
        "description": item.Description,
        "quantity": quantity,
        "availableQty": available,
        "heldQty": quantity - available,
        "pricePerDay": item.PricePerDay,
        "pricePerWeek": item.PricePerWeek,
        "status": item.Status,
        "createdAt": item.CreatedAt,
        "updatedAt": item.UpdatedAt,
    }
