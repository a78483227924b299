from datetime import datetime
from pydantic import BaseModel, Field

class ProductCreate(BaseModel):
    name: str
    category: str | None = None
    unit_of_measure: str | None = None
    price_per_unit: float = Field(gt=0)
    quantity_available: int = Field(ge=0)
    status: str = "available"

class ProductResponse(BaseModel):
    id: int
    name: str
    category: str | None
    unit_of_measure: str | None
    price_per_unit: float
    quantity_available: int
    status: str
    updated_at: datetime | None

    class Config:
        from_attributes = True
