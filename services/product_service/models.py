from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Float, Integer, String, CheckConstraint
from shared.config.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity_available >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    unit_of_measure = Column(String, nullable=True)
    price_per_unit = Column(Float, nullable=False)
    quantity_available = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="available") # available, sold_out, withdrawn
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
