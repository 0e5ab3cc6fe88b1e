from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Stored timestamps are naive UTC; offsets are folded in.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class CreateRentalItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemID: str = Field(alias="itemId")
    quantity: int = Field(gt=0)
    pricePerUnit: Optional[Decimal] = Field(default=None, ge=0)
    subtotal: Optional[Decimal] = Field(default=None, ge=0)


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: str = Field(alias="customerId")
    startDate: datetime
    endDate: datetime
    deposit: Decimal = Field(default=Decimal("0"), ge=0)
    status: Optional[Literal["PENDING", "ACTIVE"]] = None
    notes: Optional[str] = None
    items: List[CreateRentalItemDto] = []

    @field_validator("startDate", "endDate")
    @classmethod
    def _dates(cls, v: datetime) -> datetime:
        return _naive_utc(v)


class UpdateRentalDto(BaseModel):
    # Everything else on a rental is fixed once created.
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    status: Optional[Literal["PENDING", "ACTIVE", "COMPLETED", "CANCELLED"]] = None
    returnDate: Optional[datetime] = None
    notes: Optional[str] = None
    returnItems: bool = False

    @field_validator("returnDate")
    @classmethod
    def _return_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(v)
