import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from services.order_service.models import Order, OrderItem
from services.product_service.models import Product, utcnow
from services.reservation_service.models import OrderReservation
from services.reservation_service.service import ReservationService
from services.reservation_service.sweeper import ReservationSweeper, release_expired_reservations


@pytest.fixture
def reserved_order(session_factory):
    """Insert an order holding `quantity` units of a product, reservation expiring at `expires_at`."""
    async def _make(product_id, quantity, expires_at, payment_status="pending"):
        async with session_factory() as db:
            order = Order(
                buyer_id=7,
                total_amount=100.0 * quantity,
                delivery_address="Machakos",
                payment_status=payment_status,
                items=[OrderItem(product_id=product_id, quantity_ordered=quantity, price_per_unit=100.0, subtotal=100.0 * quantity)],
            )
            db.add(order)
            await db.flush()
            db.add(OrderReservation(order_id=order.id, expires_at=expires_at))
            await db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(quantity_available=Product.quantity_available - quantity)
            )
            await db.commit()
            return order.id
    return _make


async def test_expiry_comparison_is_inclusive(session_factory, make_product, reserved_order, fetch):
    product_id = await make_product(quantity=10)
    now = utcnow().replace(microsecond=0)
    order_id = await reserved_order(product_id, 4, expires_at=now)

    async with session_factory() as db:
        assert await release_expired_reservations(db, now=now - timedelta(seconds=1)) == []
        assert await release_expired_reservations(db, now=now) == [order_id]

    assert (await fetch(Product, product_id)).quantity_available == 10


async def test_second_sweep_is_a_no_op(session_factory, make_product, reserved_order, fetch):
    product_id = await make_product(quantity=10)
    await reserved_order(product_id, 4, expires_at=utcnow() - timedelta(minutes=1))

    async with session_factory() as db:
        assert len(await release_expired_reservations(db)) == 1
        assert await release_expired_reservations(db) == []

    assert (await fetch(Product, product_id)).quantity_available == 10


async def test_paid_order_is_not_cancelled_by_sweep(session_factory, make_product, reserved_order, fetch):
    product_id = await make_product(quantity=10)
    order_id = await reserved_order(product_id, 2, expires_at=utcnow() - timedelta(minutes=1), payment_status="paid")

    async with session_factory() as db:
        await release_expired_reservations(db)

    order = await fetch(Order, order_id)
    assert order.status == "pending"
    assert order.payment_status == "paid"


async def test_release_only_happens_once(session_factory, make_product, reserved_order, fetch):
    product_id = await make_product(quantity=10)
    order_id = await reserved_order(product_id, 5, expires_at=utcnow() + timedelta(minutes=10))

    async with session_factory() as db:
        assert await ReservationService.release(db, order_id, reason="buyer_cancelled") is True
        assert await ReservationService.release(db, order_id, reason="payment_failed") is False
        assert await release_expired_reservations(db, now=utcnow() + timedelta(hours=1)) == []

    assert (await fetch(Product, product_id)).quantity_available == 10


async def test_missing_product_does_not_block_other_lines(session_factory, make_product, fetch):
    product_id = await make_product(quantity=10)
    async with session_factory() as db:
        order = Order(
            buyer_id=7,
            total_amount=300.0,
            delivery_address="Kisumu",
            items=[
                OrderItem(product_id=424242, quantity_ordered=1, price_per_unit=100.0, subtotal=100.0),
                OrderItem(product_id=product_id, quantity_ordered=2, price_per_unit=100.0, subtotal=200.0),
            ],
        )
        db.add(order)
        await db.flush()
        db.add(OrderReservation(order_id=order.id, expires_at=utcnow() - timedelta(minutes=1)))
        await db.commit()

        assert await release_expired_reservations(db) == [order.id]

    assert (await fetch(Product, product_id)).quantity_available == 12
    assert (await fetch(Order, order.id)).status == "cancelled"


async def test_one_failing_reservation_does_not_halt_the_tick(monkeypatch, session_factory, make_product, reserved_order, fetch):
    product_id = await make_product(quantity=10)
    expired = utcnow() - timedelta(minutes=1)
    broken = await reserved_order(product_id, 1, expires_at=expired)
    healthy = await reserved_order(product_id, 2, expires_at=expired)

    real_release = ReservationService.release

    async def flaky_release(db, order_id, reason, guard_payment_pending=False):
        if order_id == broken:
            raise RuntimeError("lock timeout")
        return await real_release(db, order_id, reason, guard_payment_pending)

    monkeypatch.setattr(ReservationService, "release", flaky_release)

    async with session_factory() as db:
        assert await release_expired_reservations(db) == [healthy]

    # The broken one is still held and will be retried next tick
    assert (await fetch(Product, product_id)).quantity_available == 9
    assert (await fetch(Order, broken)).status == "pending"


async def test_start_and_stop_are_idempotent(session_factory):
    sweeper = ReservationSweeper(session_factory, interval_seconds=3600)

    await sweeper.stop()
    assert sweeper.running is False

    sweeper.start()
    task = sweeper._task
    sweeper.start()
    assert sweeper._task is task
    assert sweeper.running is True

    await sweeper.stop()
    await sweeper.stop()
    assert sweeper.running is False
    assert task.cancelled()


async def test_running_sweeper_releases_on_its_interval(session_factory, make_product, reserved_order, fetch):
    product_id = await make_product(quantity=10)
    await reserved_order(product_id, 3, expires_at=utcnow() - timedelta(minutes=1))
    swept = asyncio.Event()

    class ObservedSweeper(ReservationSweeper):
        async def run_once(self, now=None):
            released = await super().run_once(now)
            if released:
                swept.set()
            return released

    sweeper = ObservedSweeper(session_factory, interval_seconds=0.01)
    sweeper.start()
    try:
        await asyncio.wait_for(swept.wait(), timeout=5)
    finally:
        await sweeper.stop()

    assert (await fetch(Product, product_id)).quantity_available == 10
