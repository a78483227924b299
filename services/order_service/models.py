from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from shared.config.database import Base
from services.product_service.models import utcnow

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    order_date = Column(DateTime(timezone=True), default=utcnow)
    total_amount = Column(Float, nullable=False) # calculated at creation
    delivery_address = Column(String, nullable=False)
    delivery_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="pending") # pending, confirmed, cancelled, completed
    payment_status = Column(String, nullable=False, default="pending") # pending, paid, failed
    payment_method = Column(String, nullable=False, default="M-Pesa")
    notes = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", lazy="selectin", order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity_ordered = Column(Integer, nullable=False)
    price_per_unit = Column(Float, nullable=False)
    subtotal = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")
