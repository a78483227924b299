from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from .jwt_handler import verify_access_token, buyer_id_from

def user_id_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    STK pushes ring the customer's phone, so they are throttled per buyer when a
    token is present and per client IP otherwise.
    """
    auth_header = request.headers.get("Authorization")

    if auth_header and auth_header.startswith("Bearer "):
        payload = verify_access_token(auth_header.split(" ", 1)[1])
        if payload:
            buyer_id = buyer_id_from(payload)
            if buyer_id is not None:
                return f"buyer:{buyer_id}"

    return f"ip:{get_remote_address(request)}"

limiter = Limiter(key_func=user_id_or_ip)
