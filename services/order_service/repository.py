from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from .models import Order, OrderItem

class OrderRepository:
    @staticmethod
    async def add_order(db: AsyncSession, order: Order):
        """Stage the order and its items and assign ids. The caller commits."""
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int, buyer_id: int | None = None):
        stmt = select(Order).where(Order.id == order_id)
        if buyer_id is not None:
            stmt = stmt.where(Order.buyer_id == buyer_id)
        result = await db.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def list_for_buyer(db: AsyncSession, buyer_id: int):
        result = await db.execute(
            select(Order, func.count(OrderItem.id))
            .outerjoin(OrderItem, OrderItem.order_id == Order.id)
            .where(Order.buyer_id == buyer_id)
            .group_by(Order.id)
            .order_by(Order.order_date.desc(), Order.id.desc())
        )
        return result.all()

    @staticmethod
    async def mark_cancelled(db: AsyncSession, order_id: int) -> bool:
        """Cancel an order that is still pending and unpaid. Returns False if it no longer is."""
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == "pending", Order.payment_status == "pending")
            .values(status="cancelled", payment_status="failed")
            .returning(Order.id)
        )
        cancelled = result.first() is not None
        await db.commit()
        return cancelled
