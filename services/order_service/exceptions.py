class OrderError(ValueError):
    """Checkout request that cannot be honoured as sent (400)."""


class InsufficientStockError(OrderError):
    pass


class ProductNotFoundError(LookupError):
    pass


class OrderNotFoundError(LookupError):
    pass


class OrderNotCancellableError(OrderError):
    pass


class ReceiptNotAvailableError(Exception):
    """Receipt requested before the order was paid (409)."""
