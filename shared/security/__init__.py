from .jwt_handler import create_access_token, verify_access_token
from .dependencies import get_current_buyer, verify_internal_api_key, verify_api_key
from .rate_limiter import limiter, user_id_or_ip

__all__ = [
    "create_access_token",
    "verify_access_token",
    "verify_api_key",
    "get_current_buyer",
    "verify_internal_api_key",
    "limiter",
    "user_id_or_ip"
]
