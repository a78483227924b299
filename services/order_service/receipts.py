import structlog

logger = structlog.get_logger(__name__)


async def send_purchase_receipt(receipt: dict):
    """Hand the receipt to the notification channel.

    Runs as a background task after the response has gone out, so a failure
    here never reaches the buyer.
    """
    logger.info(
        "purchase_receipt_dispatched",
        order_id=receipt["order_id"],
        buyer_id=receipt["buyer_id"],
        mpesa_receipt=receipt.get("mpesa_receipt"),
        total_amount=receipt["total_amount"],
        lines=len(receipt["items"]),
    )
