import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.observability import market_reservations_released_total, market_stock_restore_failures_total
from services.order_service.models import Order, OrderItem
from services.product_service.repository import ProductRepository
from .repository import ReservationRepository

logger = structlog.get_logger(__name__)


class ReservationService:

    @staticmethod
    async def restore_order_stock(db: AsyncSession, order_id: int) -> int:
        """Put every item of the order back on the shelf. Returns how many lines were restored.

        Each increment runs in its own SAVEPOINT: a product that cannot be updated is
        logged and skipped, the rest are still restored.
        """
        result = await db.execute(
            select(OrderItem.product_id, OrderItem.quantity_ordered).where(OrderItem.order_id == order_id)
        )
        restored = 0
        for product_id, quantity in result.all():
            try:
                async with db.begin_nested():
                    if not await ProductRepository.restore_stock(db, product_id, quantity):
                        raise LookupError(f"product {product_id} no longer exists")
                restored += 1
            except (SQLAlchemyError, LookupError) as e:
                market_stock_restore_failures_total.inc()
                logger.error(
                    "stock_restore_failed",
                    order_id=order_id,
                    product_id=product_id,
                    quantity=quantity,
                    error=str(e),
                )
        return restored

    @staticmethod
    async def release(db: AsyncSession, order_id: int, reason: str, guard_payment_pending: bool = False) -> bool:
        """Release the order's reservation, restore its stock and cancel the order.

        Claim, stock restoration and order cancellation commit together. Returns False
        without committing when the reservation is missing or already released, so a
        second caller can never restore the same stock twice.

        With guard_payment_pending the order is only cancelled while its payment is still
        pending; a payment confirmed in the meantime keeps the order alive.
        """
        reservation_id = await ReservationRepository.claim_release(db, order_id)
        if reservation_id is None:
            logger.info("reservation_already_released", order_id=order_id, reason=reason)
            return False

        restored = await ReservationService.restore_order_stock(db, order_id)

        stmt = update(Order).where(Order.id == order_id)
        if guard_payment_pending:
            stmt = stmt.where(Order.payment_status == "pending")
        await db.execute(stmt.values(status="cancelled", payment_status="failed"))

        await db.commit()

        market_reservations_released_total.labels(reason=reason).inc()
        logger.info(
            "reservation_released",
            order_id=order_id,
            reservation_id=reservation_id,
            reason=reason,
            lines_restored=restored,
        )
        return True
