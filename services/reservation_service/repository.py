from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from .models import OrderReservation

class ReservationRepository:
    """Queries over order_reservations. None of these commit; callers own the transaction."""

    @staticmethod
    async def create_reservation(db: AsyncSession, reservation: OrderReservation):
        db.add(reservation)
        await db.flush()
        return reservation

    @staticmethod
    async def get_for_order(db: AsyncSession, order_id: int):
        result = await db.execute(select(OrderReservation).where(OrderReservation.order_id == order_id))
        return result.scalars().first()

    @staticmethod
    async def find_expired(db: AsyncSession, now):
        # Inclusive: a hold expiring exactly now is already expired
        result = await db.execute(
            select(OrderReservation.reservation_id, OrderReservation.order_id)
            .where(OrderReservation.expires_at <= now, OrderReservation.released.is_(False))
            .order_by(OrderReservation.expires_at)
        )
        return result.all()

    @staticmethod
    async def claim_release(db: AsyncSession, order_id: int) -> int | None:
        """Flip `released` false -> true in one statement.

        Returns the reservation id when this call did the flip, None when there is no
        reservation or somebody else already released it. Only the winner may touch stock.
        """
        result = await db.execute(
            update(OrderReservation)
            .where(OrderReservation.order_id == order_id, OrderReservation.released.is_(False))
            .values(released=True)
            .returning(OrderReservation.reservation_id)
        )
        return result.scalar_one_or_none()
