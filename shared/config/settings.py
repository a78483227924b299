import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Reservation flow
RESERVATION_TTL_MINUTES = int(os.getenv("RESERVATION_TTL_MINUTES", "15"))
RESERVATION_SWEEP_INTERVAL_SECONDS = float(os.getenv("RESERVATION_SWEEP_INTERVAL_SECONDS", "60"))
RESERVATION_SWEEPER_ENABLED = _env_bool("RESERVATION_SWEEPER_ENABLED", True)

STK_PUSH_RATE_LIMIT = os.getenv("STK_PUSH_RATE_LIMIT", "10/minute")

TRACING_ENABLED = _env_bool("TRACING_ENABLED", True)


# Daraja endpoints depending on environment
DARAJA_URLS = {
    "sandbox": {
        "oauth": "https://sandbox.safaricom.co.ke/oauth/v1/generate?grant_type=client_credentials",
        "stkpush": "https://sandbox.safaricom.co.ke/mpesa/stkpush/v1/processrequest",
    },
    "production": {
        "oauth": "https://api.safaricom.co.ke/oauth/v1/generate?grant_type=client_credentials",
        "stkpush": "https://api.safaricom.co.ke/mpesa/stkpush/v1/processrequest",
    },
}


@dataclass(frozen=True)
class MpesaConfig:
    """Snapshot of the M-Pesa settings, read from the environment on every request."""

    env: str
    consumer_key: str | None
    consumer_secret: str | None
    shortcode: str | None
    passkey: str | None
    callback_url: str
    timeout_seconds: float

    @property
    def oauth_url(self) -> str:
        return DARAJA_URLS[self.env]["oauth"]

    @property
    def stkpush_url(self) -> str:
        return DARAJA_URLS[self.env]["stkpush"]

    @classmethod
    def from_env(cls) -> "MpesaConfig":
        env = os.getenv("MPESA_ENV", "sandbox").lower()
        if env not in DARAJA_URLS:
            env = "sandbox"
        frontend_url = os.getenv("FRONTEND_URL", FRONTEND_URL)
        return cls(
            env=env,
            consumer_key=os.getenv("MPESA_CONSUMER_KEY") or None,
            consumer_secret=os.getenv("MPESA_CONSUMER_SECRET") or None,
            shortcode=os.getenv("MPESA_SHORTCODE") or None,
            passkey=os.getenv("MPESA_PASSKEY") or None,
            callback_url=os.getenv("MPESA_CALLBACK_URL") or f"{frontend_url}/api/mpesa/callback",
            timeout_seconds=float(os.getenv("MPESA_TIMEOUT_SECONDS", "30")),
        )
