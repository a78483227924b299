import asyncio
import contextlib

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import AsyncSessionLocal
from services.product_service.models import utcnow
from .repository import ReservationRepository
from .service import ReservationService

logger = structlog.get_logger(__name__)


async def release_expired_reservations(db: AsyncSession, now=None) -> list[int]:
    """One sweep: release every unreleased reservation whose expires_at <= now.

    Returns the ids of the orders that were released. A reservation that fails is
    rolled back and logged; the sweep carries on with the next one.
    """
    now = now or utcnow()
    expired = await ReservationRepository.find_expired(db, now)
    if not expired:
        return []

    released = []
    for reservation_id, order_id in expired:
        try:
            if await ReservationService.release(db, order_id, reason="expired", guard_payment_pending=True):
                released.append(order_id)
        except Exception:
            await db.rollback()
            logger.exception("reservation_release_failed", order_id=order_id, reservation_id=reservation_id)
    return released


class ReservationSweeper:
    """Background task releasing expired reservations on a fixed interval."""

    def __init__(self, session_factory=AsyncSessionLocal, interval_seconds: float | None = None):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.RESERVATION_SWEEP_INTERVAL_SECONDS
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="reservation-sweeper")
        logger.info("reservation_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self):
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("reservation_sweeper_stopped")

    async def run_once(self, now=None) -> list[int]:
        async with self.session_factory() as db:
            released = await release_expired_reservations(db, now)
        if released:
            logger.info("reservation_sweep_completed", released_orders=released)
        return released

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("reservation_sweep_failed")


reservation_sweeper = ReservationSweeper()
