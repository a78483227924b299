from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from .models import Payment

class PaymentRepository:
    @staticmethod
    async def create_payment(db: AsyncSession, payment: Payment):
        db.add(payment)
        await db.commit()
        await db.refresh(payment)
        return payment

    @staticmethod
    async def get_by_reference(db: AsyncSession, transaction_reference: str):
        result = await db.execute(
            select(Payment)
            .where(Payment.transaction_reference == transaction_reference)
            .order_by(Payment.payment_id)
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    async def latest_for_order(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.payment_id.desc())
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    async def settle_pending(db: AsyncSession, payment_id: int, **values) -> bool:
        """Move a payment out of 'pending'. False when it was already settled. Does not commit."""
        result = await db.execute(
            update(Payment)
            .where(Payment.payment_id == payment_id, Payment.payment_status == "pending")
            .values(**values)
            .returning(Payment.payment_id)
        )
        return result.first() is not None
