import os
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt

SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not SECRET_KEY:
    raise ValueError("FATAL ERROR: JWT_SECRET_KEY is not set in the environment!")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Creates a JWT access token with a UTC expiration.

    The marketplace login issues tokens shaped like
    ``{"sub": "<user id>", "role": "buyer", "buyer_id": 7}``.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def verify_access_token(token: str) -> dict | None:
    """Decodes and verifies the JWT. Returns payload if valid, None if invalid/expired."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

def active_role(payload: dict) -> str | None:
    # Dual-role accounts switch between buyer and farmer through active_role
    return payload.get("active_role") or payload.get("role") or payload.get("userType")

def buyer_id_from(payload: dict) -> int | None:
    raw = payload.get("buyer_id") or payload.get("buyerId") or payload.get("sub")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
