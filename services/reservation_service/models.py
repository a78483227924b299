from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, false
from shared.config.database import Base
from services.product_service.models import utcnow

class OrderReservation(Base):
    """Temporary hold on the stock of one order.

    `released` only ever moves from False to True. Whoever flips it decides
    whether stock goes back on the shelf (failure, expiry, cancellation) or
    stays sold (successful payment).
    """
    __tablename__ = "order_reservations"

    reservation_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    released = Column(Boolean, nullable=False, default=False, server_default=false())
