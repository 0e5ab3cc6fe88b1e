from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreatePaymentDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalID: str = Field(alias="rentalId")
    amount: Decimal = Field(gt=0)
    paymentMethod: str = Field(min_length=1)
    paymentStatus: Literal["PENDING", "PAID", "PARTIAL", "REFUNDED"] = "PAID"
    transactionID: Optional[str] = Field(default=None, alias="transactionId")
    notes: Optional[str] = None
