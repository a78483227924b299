from datetime import date, datetime
from pydantic import BaseModel, Field

from services.payment_service.schemas import PaymentSummary

class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    # Informational only; the line is charged at the product's current price
    price_per_unit: float | None = None

class OrderCreate(BaseModel):
    items: list[OrderItemCreate] = []
    delivery_address: str | None = None
    delivery_date: date | None = None
    payment_method: str = "M-Pesa"
    notes: str | None = None
    # When present (and paying by M-Pesa) checkout also sends the STK push
    phone: str | None = None

class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    quantity_ordered: int
    price_per_unit: float
    subtotal: float

    class Config:
        from_attributes = True

class OrderResponse(BaseModel):
    id: int
    buyer_id: int
    order_date: datetime | None
    total_amount: float
    delivery_address: str
    delivery_date: date | None
    status: str
    payment_status: str
    payment_method: str
    notes: str | None
    items: list[OrderItemResponse] = []

    class Config:
        from_attributes = True

class OrderSummary(BaseModel):
    id: int
    order_date: datetime | None
    total_amount: float
    status: str
    payment_status: str
    payment_method: str
    item_count: int

class OrderDetail(OrderResponse):
    reservation_expires_at: datetime | None = None
    reservation_released: bool | None = None
    payment: PaymentSummary | None = None
