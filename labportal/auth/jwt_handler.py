import logging
from datetime import datetime, timedelta, timezone

import jwt
from pydantic import BaseModel

from labportal.core import config

logger = logging.getLogger(__name__)


class TokenClaims(BaseModel):
    sub: str
    userId: str
    rgno: int
    role: str
    iat: int
    exp: int


def create_access_token(user_id: int | str, rgno: int, role: str, expires_days: int | None = None) -> str:
    expire_days = expires_days if expires_days is not None else config.JWT_EXPIRES_DAYS
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + timedelta(days=expire_days)
    payload = {
        "sub": str(user_id),
        "userId": str(user_id),
        "rgno": rgno,
        "role": role,
        "iat": int(issued_at.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={"require": ["sub", "iat", "exp"]},
    )


def verify_token(token: str | None) -> TokenClaims | None:
    """Return the token's claims, or None if it is malformed, tampered or expired."""
    if not token:
        return None
    try:
        payload = decode_access_token(token)
        return TokenClaims.model_validate(payload)
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except (jwt.InvalidTokenError, ValueError):
        logger.info("Rejected invalid token")
        return None
