from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ItemCategory = Literal["CANOPY", "CHAIR", "TABLE", "DECORATION", "OTHER"]
ItemStatus = Literal["AVAILABLE", "RENTED", "MAINTENANCE", "DAMAGED"]


class InventoryItemCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    category: ItemCategory = "OTHER"
    description: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    pricePerDay: Decimal = Field(default=Decimal("0"), ge=0)
    pricePerWeek: Optional[Decimal] = Field(default=None, ge=0)
    status: ItemStatus = "AVAILABLE"


class InventoryItemUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[ItemCategory] = None
    description: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    availableQty: Optional[int] = Field(default=None, ge=0)
    pricePerDay: Optional[Decimal] = Field(default=None, ge=0)
    pricePerWeek: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[ItemStatus] = None

    @field_validator("name", "category", "pricePerDay", "status", mode="before")
    @classmethod
    def _not_null(cls, v):
        # Optional means "leave unchanged"; these columns cannot be cleared.
        if v is None:
            raise ValueError("field cannot be null")
        return v


class StockAdjustmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    quantity: Optional[int] = Field(default=None, ge=0)
    availableQty: Optional[int] = Field(default=None, ge=0)
    reason: str = Field(min_length=1)
