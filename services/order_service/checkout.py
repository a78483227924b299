"""
Checkout orchestration: reserve the cart, then ask M-Pesa to collect.

Steps run in order and stop at the first failure:
  1. validate the phone and the Daraja settings (nothing written yet)
  2. create order + items + reservation and take the stock (one transaction)
  3. send exactly one STK push and record the pending payment

A provider failure at step 3 does not undo step 2. The reservation simply
expires and the sweeper puts the stock back.
"""
import time
from dataclasses import dataclass

import structlog
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from shared.observability import market_checkout_duration_seconds, market_checkout_total
from services.payment_service.exceptions import MpesaProviderError
from services.payment_service.gateway import MpesaGateway
from services.payment_service.service import PaymentService
from .models import Order
from .schemas import OrderCreate
from .service import OrderService

logger = structlog.get_logger(__name__)


def pays_by_mpesa(data: OrderCreate) -> bool:
    return bool(data.phone) and data.payment_method.replace("-", "").replace(" ", "").lower() == "mpesa"


@dataclass
class CheckoutResult:
    order: Order
    stk_response: dict | None = None

    @property
    def tracking(self) -> dict | None:
        if self.stk_response is None:
            return None
        return {
            "checkout_request_id": self.stk_response.get("CheckoutRequestID")
            or self.stk_response.get("checkoutRequestID"),
            "merchant_request_id": self.stk_response.get("MerchantRequestID"),
            "customer_message": self.stk_response.get("CustomerMessage"),
        }


class CheckoutPaymentError(Exception):
    """The order is reserved but Daraja rejected the push."""

    def __init__(self, order: Order, error: MpesaProviderError):
        super().__init__(error.message)
        self.order = order
        self.error = error


class CheckoutService:
    @staticmethod
    async def checkout(db: AsyncSession, gateway: MpesaGateway, buyer_id: int, data: OrderCreate) -> CheckoutResult:
        started = time.perf_counter()
        try:
            return await CheckoutService._checkout(db, gateway, buyer_id, data)
        finally:
            market_checkout_duration_seconds.observe(time.perf_counter() - started)

    @staticmethod
    async def _checkout(db: AsyncSession, gateway: MpesaGateway, buyer_id: int, data: OrderCreate) -> CheckoutResult:
        push = pays_by_mpesa(data)
        try:
            OrderService.validate(data)
            if push:
                PaymentService.validate_phone(data.phone)
                gateway.require_config()
            order = await OrderService.place_order(db, buyer_id, data)
        except Exception:
            market_checkout_total.labels(status="rejected").inc()
            raise

        if not push:
            market_checkout_total.labels(status="reserved").inc()
            return CheckoutResult(order=order)

        try:
            stk_response = await PaymentService.initiate_stk_push(
                db, gateway, phone=data.phone, amount=order.total_amount, order_id=order.id
            )
        except MpesaProviderError as e:
            market_checkout_total.labels(status="provider_error").inc()
            logger.warning(
                "checkout_payment_not_started",
                order_id=order.id,
                status_code=e.status_code,
            )
            raise CheckoutPaymentError(order, e) from e

        # a failed pending-payment insert rolls the session back and expires the order
        if inspect(order).expired_attributes:
            await db.refresh(order)
        market_checkout_total.labels(status="initiated").inc()
        return CheckoutResult(order=order, stk_response=stk_response)
