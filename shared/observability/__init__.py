from .setup import setup_observability
from .metrics import (
    market_checkout_total,
    market_checkout_duration_seconds,
    market_stk_push_total,
    market_mpesa_callback_total,
    market_unmatched_payment_total,
    market_late_payment_total,
    market_reservations_released_total,
    market_stock_restore_failures_total,
)
