from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CustomerUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: str = Field(min_length=1)
    address: Optional[str] = None
