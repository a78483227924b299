from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from services.product_service.models import utcnow
from services.product_service.repository import ProductRepository
from services.payment_service.repository import PaymentRepository
from services.payment_service.schemas import PaymentSummary
from services.reservation_service.models import OrderReservation
from services.reservation_service.repository import ReservationRepository
from services.reservation_service.service import ReservationService
from .exceptions import (
    InsufficientStockError,
    OrderError,
    OrderNotCancellableError,
    OrderNotFoundError,
    ProductNotFoundError,
    ReceiptNotAvailableError,
)
from .models import Order, OrderItem
from .repository import OrderRepository
from .schemas import OrderCreate, OrderDetail, OrderSummary

logger = structlog.get_logger(__name__)


class OrderService:
    @staticmethod
    def validate(data: OrderCreate):
        if not data.items:
            raise OrderError("Order must contain at least one item")
        if not data.delivery_address or not data.delivery_address.strip():
            raise OrderError("Delivery address is required")

    @staticmethod
    async def place_order(db: AsyncSession, buyer_id: int, data: OrderCreate) -> Order:
        """Create the order, its items and its reservation, and take the stock.

        All-or-nothing: if any line cannot be reserved nothing is written.
        """
        OrderService.validate(data)

        products = await ProductRepository.get_products_by_ids(db, {item.product_id for item in data.items})
        lines = []
        for item in data.items:
            product = products.get(item.product_id)
            if product is None:
                raise ProductNotFoundError(f"Product {item.product_id} not found")
            if product.status != "available":
                raise OrderError(f"Product {item.product_id} is not available")
            if product.quantity_available < item.quantity:
                raise InsufficientStockError(f"Insufficient quantity for product {item.product_id}")
            lines.append(
                OrderItem(
                    product_id=product.id,
                    quantity_ordered=item.quantity,
                    price_per_unit=product.price_per_unit,
                    subtotal=round(product.price_per_unit * item.quantity, 2),
                )
            )

        order = Order(
            buyer_id=buyer_id,
            total_amount=round(sum(line.subtotal for line in lines), 2),
            delivery_address=data.delivery_address.strip(),
            delivery_date=data.delivery_date,
            status="pending",
            payment_status="pending",
            payment_method=data.payment_method or "M-Pesa",
            notes=data.notes,
            items=lines,
        )

        try:
            await OrderRepository.add_order(db, order)
            for line in lines:
                # A concurrent checkout may have taken the stock since the read above
                if not await ProductRepository.reserve_stock(db, line.product_id, line.quantity_ordered):
                    raise InsufficientStockError(f"Insufficient quantity for product {line.product_id}")
            await ReservationRepository.create_reservation(
                db,
                OrderReservation(
                    order_id=order.id,
                    expires_at=utcnow() + timedelta(minutes=settings.RESERVATION_TTL_MINUTES),
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "order_reserved",
            order_id=order.id,
            buyer_id=buyer_id,
            total_amount=order.total_amount,
            lines=len(lines),
        )
        return order

    @staticmethod
    async def get_order(db: AsyncSession, buyer_id: int, order_id: int) -> OrderDetail:
        order = await OrderRepository.get_order(db, order_id, buyer_id)
        if not order:
            raise OrderNotFoundError("Order not found")

        detail = OrderDetail.model_validate(order)
        reservation = await ReservationRepository.get_for_order(db, order_id)
        if reservation is not None:
            detail.reservation_expires_at = reservation.expires_at
            detail.reservation_released = reservation.released
        payment = await PaymentRepository.latest_for_order(db, order_id)
        if payment is not None:
            detail.payment = PaymentSummary.model_validate(payment)
        return detail

    @staticmethod
    async def list_orders(db: AsyncSession, buyer_id: int) -> list[OrderSummary]:
        rows = await OrderRepository.list_for_buyer(db, buyer_id)
        return [
            OrderSummary(
                id=order.id,
                order_date=order.order_date,
                total_amount=order.total_amount,
                status=order.status,
                payment_status=order.payment_status,
                payment_method=order.payment_method,
                item_count=item_count,
            )
            for order, item_count in rows
        ]

    @staticmethod
    async def cancel_order(db: AsyncSession, buyer_id: int, order_id: int):
        order = await OrderRepository.get_order(db, order_id, buyer_id)
        if not order:
            raise OrderNotFoundError("Order not found")
        if order.status != "pending" or order.payment_status == "paid":
            raise OrderNotCancellableError("Only pending orders can be cancelled")

        released = await ReservationService.release(
            db, order_id, reason="buyer_cancelled", guard_payment_pending=True
        )
        if released:
            return
        # No live reservation: the stock was never held, or a callback or the sweeper got there first
        if not await OrderRepository.mark_cancelled(db, order_id):
            raise OrderNotCancellableError("Only pending orders can be cancelled")
        logger.warning("order_cancelled_without_reservation", order_id=order_id)

    @staticmethod
    async def build_receipt(db: AsyncSession, buyer_id: int, order_id: int) -> dict:
        order = await OrderRepository.get_order(db, order_id, buyer_id)
        if not order:
            raise OrderNotFoundError("Order not found")
        if order.payment_status != "paid":
            raise ReceiptNotAvailableError("Receipt is only available once the order is paid")

        payment = await PaymentRepository.latest_for_order(db, order_id)
        products = await ProductRepository.get_products_by_ids(db, {item.product_id for item in order.items})
        return {
            "order_id": order.id,
            "buyer_id": order.buyer_id,
            "order_date": order.order_date,
            "delivery_address": order.delivery_address,
            "payment_method": order.payment_method,
            "mpesa_receipt": payment.mpesa_transaction_id if payment else None,
            "total_amount": order.total_amount,
            "items": [
                {
                    "product_id": item.product_id,
                    "name": products[item.product_id].name if item.product_id in products else None,
                    "quantity": item.quantity_ordered,
                    "price_per_unit": item.price_per_unit,
                    "subtotal": item.subtotal,
                }
                for item in order.items
            ],
        }
