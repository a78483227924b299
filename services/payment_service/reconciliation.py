"""
Applies Daraja's asynchronous STK result callbacks to payments, orders and stock.

The payment row's transaction_reference (Daraja's CheckoutRequestID) is the
correlation key. A payment leaves 'pending' exactly once; replays of the same
callback are acknowledged and change nothing.
"""
import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.observability import (
    market_late_payment_total,
    market_unmatched_payment_total,
)
from services.order_service.models import Order
from services.product_service.models import utcnow
from services.reservation_service.repository import ReservationRepository
from services.reservation_service.service import ReservationService
from .models import Payment
from .repository import PaymentRepository

logger = structlog.get_logger(__name__)


def parse_callback_metadata(stk_callback: dict) -> dict:
    """Flatten CallbackMetadata.Item into {Name: Value}.

    Daraja (and its sandbox clones) are inconsistent about 'Item'/'Items' and
    'Name'/'name', 'Value'/'value', so all spellings are accepted.
    """
    container = stk_callback.get("CallbackMetadata") or {}
    items = container.get("Item") or container.get("Items") or []
    metadata = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("Name") or item.get("name")
        value = item["Value"] if "Value" in item else item.get("value")
        if name:
            metadata[name] = value
    return metadata


def _result_code(raw) -> int | None:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class ReconciliationService:

    @staticmethod
    async def handle_callback(db: AsyncSession, payload) -> str:
        """Apply one callback body. Returns the outcome used for metrics and logs:
        success, failed, unmatched, duplicate or ignored.
        """
        body = payload.get("Body") if isinstance(payload, dict) else None
        stk_callback = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(stk_callback, dict):
            logger.warning("mpesa_callback_without_stk_callback")
            return "ignored"

        checkout_request_id = stk_callback.get("CheckoutRequestID")
        result_code = _result_code(stk_callback.get("ResultCode"))
        result_desc = stk_callback.get("ResultDesc")

        log = logger.bind(checkout_request_id=checkout_request_id, result_code=result_code)
        log.info("mpesa_callback_received", result_desc=result_desc)

        if not checkout_request_id:
            log.warning("mpesa_callback_without_checkout_request_id")
            return "ignored"

        if result_code == 0:
            return await ReconciliationService.apply_success(
                db, checkout_request_id, parse_callback_metadata(stk_callback), result_desc
            )
        return await ReconciliationService.apply_failure(db, checkout_request_id, result_code, result_desc)

    @staticmethod
    async def apply_success(db: AsyncSession, checkout_request_id: str, metadata: dict, result_desc=None) -> str:
        log = logger.bind(checkout_request_id=checkout_request_id)
        receipt = metadata.get("MpesaReceiptNumber") or metadata.get("Receipt")
        amount = metadata.get("Amount")
        phone = metadata.get("PhoneNumber") or metadata.get("phoneNumber")

        payment = await PaymentRepository.get_by_reference(db, checkout_request_id)
        if payment is None:
            # Money arrived for a push nobody recorded; keep it for manual reconciliation
            await PaymentRepository.create_payment(
                db,
                Payment(
                    order_id=None,
                    amount=amount,
                    payment_method="M-Pesa",
                    payment_status="completed",
                    transaction_reference=checkout_request_id,
                    mpesa_transaction_id=receipt,
                    phone_number=str(phone) if phone is not None else None,
                    result_code=0,
                    result_desc=result_desc,
                    payment_date=utcnow(),
                ),
            )
            market_unmatched_payment_total.inc()
            log.warning(
                "mpesa_payment_unmatched",
                mpesa_receipt=receipt,
                amount=amount,
                phone=phone,
                transaction_date=metadata.get("TransactionDate"),
            )
            return "unmatched"

        payment_id, order_id = payment.payment_id, payment.order_id
        settled = await PaymentRepository.settle_pending(
            db,
            payment_id,
            payment_status="completed",
            mpesa_transaction_id=receipt,
            result_code=0,
            result_desc=result_desc,
            payment_date=utcnow(),
        )
        if not settled:
            await db.rollback()
            log.info("mpesa_callback_duplicate", payment_id=payment_id)
            return "duplicate"

        if order_id is not None:
            # The sale is final: the hold becomes committed stock, nothing goes back on the shelf
            claimed = await ReservationRepository.claim_release(db, order_id)
            await db.execute(update(Order).where(Order.id == order_id).values(payment_status="paid"))
            if claimed is None:
                reservation = await ReservationRepository.get_for_order(db, order_id)
                order = await db.get(Order, order_id)
                if reservation is not None and order is not None and order.status == "cancelled":
                    market_late_payment_total.inc()
                    log.warning("mpesa_payment_for_cancelled_order", order_id=order_id, mpesa_receipt=receipt)

        await db.commit()
        log.info("mpesa_payment_completed", order_id=order_id, mpesa_receipt=receipt)
        return "success"

    @staticmethod
    async def apply_failure(db: AsyncSession, checkout_request_id: str, result_code, result_desc=None) -> str:
        log = logger.bind(checkout_request_id=checkout_request_id, result_code=result_code)

        payment = await PaymentRepository.get_by_reference(db, checkout_request_id)
        if payment is None:
            log.warning("mpesa_failure_unmatched", result_desc=result_desc)
            return "ignored"

        payment_id, order_id = payment.payment_id, payment.order_id
        settled = await PaymentRepository.settle_pending(
            db,
            payment_id,
            payment_status="failed",
            result_code=result_code,
            result_desc=result_desc,
        )
        if not settled:
            await db.rollback()
            log.info("mpesa_callback_duplicate", payment_id=payment_id)
            return "duplicate"

        released = False
        if order_id is not None:
            # Commits the payment update together with the release when it wins the claim
            released = await ReservationService.release(db, order_id, reason="payment_failed")
        if not released:
            await db.commit()

        log.warning(
            "mpesa_payment_failed",
            order_id=order_id,
            result_desc=result_desc,
            reservation_released=released,
        )
        return "failed"
