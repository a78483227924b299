import os
import secrets
import warnings

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader
from .jwt_handler import verify_access_token, active_role, buyer_id_from

_INTERNAL_API_KEY: str = os.getenv("INTERNAL_API_KEY", "")

if not _INTERNAL_API_KEY:
    warnings.warn(
        "INTERNAL_API_KEY is not set. Using an insecure default. "
        "Set this env var in production!",
        stacklevel=2,
    )
    _INTERNAL_API_KEY = "insecure-default-change-me"

INTERNAL_API_KEY: str = _INTERNAL_API_KEY

# Expected header format (Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)

# Catalogue seeding and other back-office calls
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


def verify_api_key(provided_key: str | None) -> bool:
    """Constant-time comparison against INTERNAL_API_KEY."""
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), str(INTERNAL_API_KEY))


async def get_current_buyer(request: Request, token: str = Depends(oauth2_scheme)) -> int:
    """Validates the bearer JWT and returns the buyer id it was issued for."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if active_role(payload) != "buyer":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Buyer access required")

    buyer_id = buyer_id_from(payload)
    if buyer_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token carries no buyer id")

    # Rate limiting keys off this
    request.state.user_id = str(buyer_id)
    return buyer_id


async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header"
        )
    return True
