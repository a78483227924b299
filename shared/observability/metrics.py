from prometheus_client import Counter, Histogram

# Business Metrics
market_checkout_total = Counter(
    "market_checkout_total",
    "Total checkouts processed",
    ["status"] # Labels: 'initiated', 'reserved', 'rejected', 'provider_error'
)

market_checkout_duration_seconds = Histogram(
    "market_checkout_duration_seconds",
    "Checkout duration in seconds"
)

market_stk_push_total = Counter(
    "market_stk_push_total",
    "STK push requests sent to M-Pesa",
    ["status"] # Labels: 'accepted', 'rejected'
)

market_mpesa_callback_total = Counter(
    "market_mpesa_callback_total",
    "M-Pesa result callbacks received",
    ["result"] # Labels: 'success', 'failed', 'unmatched', 'duplicate', 'ignored', 'error'
)

# Alert on this one: money arrived that no pending payment row was waiting for
market_unmatched_payment_total = Counter(
    "market_unmatched_payment_total",
    "Successful M-Pesa payments recorded without a matching order"
)

market_late_payment_total = Counter(
    "market_late_payment_total",
    "Successful M-Pesa payments for orders that were already cancelled"
)

market_reservations_released_total = Counter(
    "market_reservations_released_total",
    "Inventory reservations released back to stock",
    ["reason"] # Labels: 'payment_failed', 'expired', 'buyer_cancelled'
)

market_stock_restore_failures_total = Counter(
    "market_stock_restore_failures_total",
    "Product stock increments that failed while releasing a reservation"
)
