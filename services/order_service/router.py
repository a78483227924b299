from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.config.database import get_db
from shared.security import get_current_buyer
from services.payment_service.exceptions import InvalidPhoneError, MpesaConfigError
from services.payment_service.gateway import MpesaGateway, get_mpesa_gateway
from .checkout import CheckoutPaymentError, CheckoutService
from .exceptions import (
    OrderError,
    OrderNotFoundError,
    ProductNotFoundError,
    ReceiptNotAvailableError,
)
from .receipts import send_purchase_receipt
from .schemas import OrderCreate, OrderResponse
from .service import OrderService

logger = structlog.get_logger(__name__)

# Every buyer route needs a buyer token
router = APIRouter(prefix="/api/buyer", tags=["Buyer Orders"], dependencies=[Depends(get_current_buyer)])


def _failure(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"success": False, "message": message, **extra}))


@router.post("/orders", status_code=status.HTTP_201_CREATED)
async def place_order(
    data: OrderCreate,
    buyer_id: int = Depends(get_current_buyer),
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_mpesa_gateway),
):
    try:
        result = await CheckoutService.checkout(db, gateway, buyer_id, data)
    except ProductNotFoundError as e:
        return _failure(404, str(e))
    except (OrderError, InvalidPhoneError) as e:
        return _failure(400, str(e))
    except MpesaConfigError as e:
        logger.error("mpesa_misconfigured", error=str(e))
        return _failure(500, str(e))
    except CheckoutPaymentError as e:
        return _failure(
            e.error.status_code,
            e.error.message,
            details=e.error.details,
            order=OrderResponse.model_validate(e.order),
        )

    return jsonable_encoder({
        "success": True,
        "message": "Payment request sent to your phone" if result.stk_response else "Order placed successfully",
        "order": OrderResponse.model_validate(result.order),
        "payment": result.tracking,
    })


@router.get("/orders")
async def list_orders(buyer_id: int = Depends(get_current_buyer), db: AsyncSession = Depends(get_db)):
    orders = await OrderService.list_orders(db, buyer_id)
    return jsonable_encoder({"success": True, "orders": orders, "count": len(orders)})


@router.get("/orders/{order_id}")
async def get_order(order_id: int, buyer_id: int = Depends(get_current_buyer), db: AsyncSession = Depends(get_db)):
    """Polled by the web client after an STK push until payment_status leaves 'pending'."""
    try:
        order = await OrderService.get_order(db, buyer_id, order_id)
    except OrderNotFoundError as e:
        return _failure(404, str(e))
    return jsonable_encoder({"success": True, "order": order})


@router.put("/orders/{order_id}/cancel")
async def cancel_order(order_id: int, buyer_id: int = Depends(get_current_buyer), db: AsyncSession = Depends(get_db)):
    try:
        await OrderService.cancel_order(db, buyer_id, order_id)
    except OrderNotFoundError as e:
        return _failure(404, str(e))
    except OrderError as e:
        return _failure(400, str(e))
    return {"success": True, "message": "Order cancelled successfully"}


@router.post("/orders/{order_id}/receipt", status_code=status.HTTP_202_ACCEPTED)
async def send_receipt(
    order_id: int,
    background_tasks: BackgroundTasks,
    buyer_id: int = Depends(get_current_buyer),
    db: AsyncSession = Depends(get_db),
):
    try:
        receipt = await OrderService.build_receipt(db, buyer_id, order_id)
    except OrderNotFoundError as e:
        return _failure(404, str(e))
    except ReceiptNotAvailableError as e:
        return _failure(409, str(e))

    background_tasks.add_task(send_purchase_receipt, receipt)
    return jsonable_encoder({"success": True, "message": "Receipt will be sent shortly", "receipt": receipt})
