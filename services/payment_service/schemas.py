from pydantic import BaseModel

class StkPushRequest(BaseModel):
    # Field names follow the web client's camelCase body
    phone: str | int | None = None
    amount: float | None = None
    orderId: int | None = None
    accountReference: str | None = None
    transactionDesc: str | None = None

class PaymentSummary(BaseModel):
    payment_id: int
    payment_status: str
    transaction_reference: str | None
    mpesa_transaction_id: str | None
    amount: float | None

    class Config:
        from_attributes = True
