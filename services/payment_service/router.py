from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.config import settings
from shared.config.database import get_db
from shared.observability import market_mpesa_callback_total
from shared.security import limiter

from .exceptions import InvalidPhoneError, MpesaConfigError, MpesaError, MpesaProviderError, OrderNotPayableError
from .gateway import MpesaGateway, get_mpesa_gateway
from .reconciliation import ReconciliationService
from .schemas import StkPushRequest
from .service import PaymentService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/mpesa", tags=["M-Pesa"])


def _failure(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@router.get("/token")
async def get_token(gateway: MpesaGateway = Depends(get_mpesa_gateway)):
    """Fetch a Daraja OAuth token. Used to smoke-test credentials."""
    try:
        token = await gateway.get_access_token()
    except MpesaError as e:
        logger.error("mpesa_token_failed", error=str(e))
        return _failure(500, str(e))
    return {"success": True, "token": token}


@router.post("/stkpush")
@limiter.limit(settings.STK_PUSH_RATE_LIMIT)
async def stk_push(
    request: Request,
    payload: StkPushRequest,
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_mpesa_gateway),
):
    if payload.phone in (None, "") or not payload.amount or not payload.orderId:
        return _failure(400, "phone, amount and orderId are required")

    try:
        await PaymentService.ensure_payable(db, payload.orderId)
        data = await PaymentService.initiate_stk_push(
            db,
            gateway,
            phone=payload.phone,
            amount=payload.amount,
            order_id=payload.orderId,
            account_reference=payload.accountReference,
            transaction_desc=payload.transactionDesc,
        )
    except InvalidPhoneError as e:
        return _failure(400, str(e))
    except OrderNotPayableError as e:
        return _failure(409, str(e))
    except MpesaConfigError as e:
        logger.error("mpesa_misconfigured", error=str(e))
        return _failure(500, str(e))
    except MpesaProviderError as e:
        return _failure(e.status_code, e.message, details=e.details)

    return {"success": True, "data": data}


@router.post("/callback")
async def mpesa_callback(request: Request, db: AsyncSession = Depends(get_db)):
    """Daraja result webhook.

    Always answers 200, otherwise Daraja keeps redelivering. Anything that goes
    wrong is logged and counted, never returned to the provider.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    try:
        outcome = await ReconciliationService.handle_callback(db, payload)
    except Exception:
        await db.rollback()
        market_mpesa_callback_total.labels(result="error").inc()
        logger.exception("mpesa_callback_error")
        return JSONResponse(status_code=status.HTTP_200_OK, content={"success": False})

    market_mpesa_callback_total.labels(result=outcome).inc()
    return {"success": True}
