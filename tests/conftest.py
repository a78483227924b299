import os

os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-testing-only"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["TRACING_ENABLED"] = "false"
os.environ["RESERVATION_SWEEPER_ENABLED"] = "false"
os.environ["MPESA_ENV"] = "sandbox"
os.environ["MPESA_CONSUMER_KEY"] = "test-mpesa-consumer-key"
os.environ["MPESA_CONSUMER_SECRET"] = "test-mpesa-consumer-secret"
os.environ["MPESA_SHORTCODE"] = "174379"
os.environ["MPESA_PASSKEY"] = "test-passkey"
os.environ["MPESA_CALLBACK_URL"] = "https://market.example/api/mpesa/callback"

import json

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from main import app
from shared.config.database import Base, get_db
from shared.security import create_access_token, limiter
from services.payment_service.gateway import MpesaGateway, get_mpesa_gateway
from services.payment_service.models import Payment
from services.product_service.models import Product
from services.reservation_service.models import OrderReservation

BUYER_ID = 7


class FakeDaraja:
    """Stands in for the Daraja API behind httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.token_status = 200
        self.stk_status = 200
        self.stk_error = {"requestId": "err-1", "errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid Amount"}
        self._seq = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/v1/generate":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"errorMessage": "Invalid Credentials"})
            return httpx.Response(200, json={"access_token": "daraja-token", "expires_in": "3599"})
        if request.url.path == "/mpesa/stkpush/v1/processrequest":
            if self.stk_status != 200:
                return httpx.Response(self.stk_status, json=self.stk_error)
            self._seq += 1
            return httpx.Response(200, json={
                "MerchantRequestID": f"29115-3462-{self._seq}",
                "CheckoutRequestID": f"ws_CO_{self._seq:04d}",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            })
        return httpx.Response(404)

    @property
    def pushes(self) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.url.path == "/mpesa/stkpush/v1/processrequest"
        ]


def stk_callback(checkout_request_id, result_code=0, receipt="QWE123ABC", amount=300, phone=254712345678,
                 result_desc=None, lowercase=False):
    callback = {
        "MerchantRequestID": "29115-3462-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc or (
            "The service request is processed successfully." if result_code == 0 else "Request cancelled by user"
        ),
    }
    if result_code == 0:
        name, value = ("name", "value") if lowercase else ("Name", "Value")
        callback["CallbackMetadata"] = {"Item": [
            {name: "Amount", value: amount},
            {name: "MpesaReceiptNumber", value: receipt},
            {name: "TransactionDate", value: 20261018101530},
            {name: "PhoneNumber", value: phone},
        ]}
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def daraja():
    return FakeDaraja()


@pytest.fixture
def gateway(daraja):
    return MpesaGateway(transport=httpx.MockTransport(daraja.handler))


@pytest.fixture
async def client(session_factory, gateway):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mpesa_gateway] = lambda: gateway
    limiter.enabled = False
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
def buyer_headers():
    token = create_access_token({"sub": str(BUYER_ID), "role": "buyer", "buyer_id": BUYER_ID})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_product(session_factory):
    async def _make(quantity=10, price=100.0, name="Sukuma wiki", status="available"):
        async with session_factory() as session:
            product = Product(name=name, price_per_unit=price, quantity_available=quantity, status=status)
            session.add(product)
            await session.commit()
            return product.id
    return _make


@pytest.fixture
def fetch(session_factory):
    """Read a row through a fresh session so the result reflects committed state."""
    async def _fetch(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)
    return _fetch


@pytest.fixture
def reservation_of(session_factory):
    from sqlalchemy import select

    async def _get(order_id):
        async with session_factory() as session:
            result = await session.execute(select(OrderReservation).where(OrderReservation.order_id == order_id))
            return result.scalars().first()
    return _get


@pytest.fixture
def payments_for(session_factory):
    from sqlalchemy import select

    async def _get(reference):
        async with session_factory() as session:
            result = await session.execute(select(Payment).where(Payment.transaction_reference == reference))
            return result.scalars().all()
    return _get


@pytest.fixture
def checkout(client, buyer_headers):
    async def _checkout(product_id, quantity=3, phone="0712345678", **extra):
        body = {
            "items": [{"product_id": product_id, "quantity": quantity}],
            "delivery_address": "Kiambu Road, Nairobi",
            "phone": phone,
            **extra,
        }
        return await client.post("/api/buyer/orders", json=body, headers=buyer_headers)
    return _checkout


@pytest.fixture
def failing_payment_insert(monkeypatch):
    """Make the pending Payment insert fail after Daraja has accepted the push."""
    from sqlalchemy.exc import OperationalError
    from services.payment_service.repository import PaymentRepository

    async def _create_payment(db, payment):
        db.add(payment)
        await db.flush()
        raise OperationalError("INSERT INTO payments", {}, Exception("database is locked"))

    monkeypatch.setattr(PaymentRepository, "create_payment", staticmethod(_create_payment))
