from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from shared.config.database import Base
from services.product_service.models import utcnow

class Payment(Base):
    __tablename__ = "payments"

    payment_id = Column(Integer, primary_key=True, index=True)
    # NULL for fallback rows recorded from callbacks nobody was waiting for
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    amount = Column(Float, nullable=True)
    payment_method = Column(String, nullable=False, default="M-Pesa")
    payment_status = Column(String, nullable=False, default="pending") # pending, completed, failed
    transaction_reference = Column(String, nullable=True, index=True) # Daraja CheckoutRequestID
    mpesa_transaction_id = Column(String, nullable=True) # MpesaReceiptNumber, success only
    phone_number = Column(String, nullable=True)
    result_code = Column(Integer, nullable=True)
    result_desc = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    payment_date = Column(DateTime(timezone=True), nullable=True)
