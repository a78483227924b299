from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.config import settings
from shared.config.database import engine, Base
from shared.observability import setup_observability
from shared.security import limiter

# IMPORTANT: import models so they register with Base
from services.product_service import models as product_models
from services.order_service import models as order_models
from services.reservation_service import models as reservation_models
from services.payment_service import models as payment_models

from services.product_service.router import router as product_router
from services.order_service.router import router as order_router
from services.payment_service.router import router as mpesa_router
from services.reservation_service.sweeper import reservation_sweeper

app = FastAPI(title="Kilimo Market", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(app, "kilimo_market")

# --- SECURITY SETUP ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(product_router)
app.include_router(order_router)
app.include_router(mpesa_router)


@app.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "kilimo_market", "status": "running"}


@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.RESERVATION_SWEEPER_ENABLED:
        reservation_sweeper.start()


@app.on_event("shutdown")
async def shutdown_event():
    await reservation_sweeper.stop()
