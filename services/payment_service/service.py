import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.observability import market_stk_push_total
from services.order_service.models import Order
from .exceptions import InvalidPhoneError, MpesaProviderError, OrderNotPayableError, INVALID_PHONE_MESSAGE
from .gateway import MpesaGateway
from .models import Payment
from .phone import normalize_phone
from .repository import PaymentRepository

logger = structlog.get_logger(__name__)


class PaymentService:
    @staticmethod
    def validate_phone(phone) -> str:
        normalized = normalize_phone(phone)
        if not normalized:
            raise InvalidPhoneError(INVALID_PHONE_MESSAGE)
        return normalized

    @staticmethod
    async def ensure_payable(db: AsyncSession, order_id: int):
        """Refuse a push for an order that is no longer waiting for money.

        Unknown order ids are not checked.
        """
        order = await db.get(Order, order_id)
        if order is not None and (order.status == "cancelled" or order.payment_status != "pending"):
            raise OrderNotPayableError("Order is not awaiting payment")

    @staticmethod
    async def initiate_stk_push(
        db: AsyncSession,
        gateway: MpesaGateway,
        phone,
        amount: float,
        order_id: int,
        account_reference: str | None = None,
        transaction_desc: str | None = None,
    ) -> dict:
        """Ring the buyer's phone and remember the CheckoutRequestID against the order.

        Order of failure: bad phone (InvalidPhoneError), missing settings (MpesaConfigError),
        then Daraja itself (MpesaProviderError). Failing to store the pending payment after
        Daraja accepted the push is logged only; the push cannot be taken back.
        """
        normalized = PaymentService.validate_phone(phone)
        payload = gateway.build_stk_payload(
            normalized, amount, order_id,
            account_reference=account_reference,
            transaction_desc=transaction_desc,
        )

        try:
            body = await gateway.initiate_push(payload)
        except MpesaProviderError as e:
            market_stk_push_total.labels(status="rejected").inc()
            logger.error(
                "stk_push_failed",
                order_id=order_id,
                status_code=e.status_code,
                details=e.details,
            )
            raise

        market_stk_push_total.labels(status="accepted").inc()
        checkout_request_id = body.get("CheckoutRequestID") or body.get("checkoutRequestID")

        try:
            await PaymentRepository.create_payment(
                db,
                Payment(
                    order_id=order_id,
                    amount=amount,
                    payment_method="M-Pesa",
                    payment_status="pending",
                    transaction_reference=checkout_request_id,
                    phone_number=normalized,
                ),
            )
        except SQLAlchemyError:
            await db.rollback()
            logger.exception(
                "pending_payment_record_failed",
                order_id=order_id,
                checkout_request_id=checkout_request_id,
            )

        return body
