"""
Daraja (M-Pesa) adapter: OAuth token, STK push payload and the push request itself.

Settings are read from the environment on every call, so a missing credential is
reported per request as MpesaConfigError before anything goes over the wire.
Provider failures surface as MpesaProviderError carrying Daraja's status and body.
"""
import base64
import math
from datetime import datetime, timezone

import httpx
import structlog

from shared.config.settings import MpesaConfig
from .exceptions import MpesaConfigError, MpesaProviderError

logger = structlog.get_logger(__name__)


def mpesa_timestamp(now: datetime | None = None) -> str:
    """YYYYMMDDHHMMSS, taken in UTC."""
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def _response_details(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text or None


class MpesaGateway:

    def __init__(self, config: MpesaConfig | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self._config = config
        self._transport = transport

    @property
    def config(self) -> MpesaConfig:
        return self._config or MpesaConfig.from_env()

    def require_credentials(self) -> MpesaConfig:
        config = self.config
        if not config.consumer_key or not config.consumer_secret:
            raise MpesaConfigError("MPESA_CONSUMER_KEY and MPESA_CONSUMER_SECRET must be set in environment")
        return config

    def require_config(self) -> MpesaConfig:
        config = self.require_credentials()
        if not config.shortcode or not config.passkey:
            raise MpesaConfigError("MPESA_SHORTCODE and MPESA_PASSKEY must be set")
        return config

    def _client(self, config: MpesaConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=config.timeout_seconds, transport=self._transport)

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> dict:
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MpesaProviderError(
                f"M-Pesa request failed with status code {e.response.status_code}",
                status_code=e.response.status_code,
                details=_response_details(e.response),
            ) from e
        except httpx.RequestError as e:
            raise MpesaProviderError(f"M-Pesa unreachable: {e}") from e

        body = _response_details(response)
        if not isinstance(body, dict):
            raise MpesaProviderError("Unexpected response from M-Pesa", status_code=502, details=body)
        return body

    async def get_access_token(self) -> str:
        config = self.require_credentials()
        async with self._client(config) as client:
            body = await self._send(
                client, "GET", config.oauth_url, auth=(config.consumer_key, config.consumer_secret)
            )
        token = body.get("access_token")
        if not token:
            raise MpesaProviderError("M-Pesa returned no access token", status_code=502, details=body)
        return token

    def build_stk_payload(
        self,
        phone: str,
        amount: float,
        order_id,
        account_reference: str | None = None,
        transaction_desc: str | None = None,
        now: datetime | None = None,
    ) -> dict:
        """CustomerPayBillOnline request body. `phone` must already be normalised."""
        config = self.require_config()
        timestamp = mpesa_timestamp(now)
        return {
            "BusinessShortCode": config.shortcode,
            "Password": stk_password(config.shortcode, config.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            # Daraja only takes whole shillings
            "Amount": math.ceil(float(amount)),
            "PartyA": phone,
            "PartyB": config.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": config.callback_url,
            "AccountReference": account_reference or str(order_id),
            "TransactionDesc": transaction_desc or f"Payment for order {order_id}",
        }

    async def initiate_push(self, payload: dict) -> dict:
        """Send one STK push. No retries: a second push would ring the phone again."""
        config = self.require_config()
        token = await self.get_access_token()
        async with self._client(config) as client:
            body = await self._send(
                client, "POST", config.stkpush_url,
                json=payload, headers={"Authorization": f"Bearer {token}"},
            )
        logger.info(
            "stk_push_accepted",
            checkout_request_id=body.get("CheckoutRequestID"),
            account_reference=payload.get("AccountReference"),
        )
        return body


def get_mpesa_gateway() -> MpesaGateway:
    return MpesaGateway()
