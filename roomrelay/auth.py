"""
Session tokens handed out by /user/identify and checked on WebSocket upgrade
"""
import time
from typing import Optional

import jwt

from . import config

ALGORITHM = "HS256"
ISSUER = "roomrelay"


def mint_session_token(identity: str, name: str, ttl: Optional[int] = None) -> str:
    """
    Mint a signed session token for a caller

    Args:
        identity: Stable user identifier
        name: Display name shown to other participants
        ttl: Lifetime in seconds (defaults to ROOMRELAY_SESSION_TTL)

    Returns:
        JWT token string
    """
    now = int(time.time())
    payload = {
        "iss": ISSUER,
        "sub": identity,
        "name": name,
        "nbf": now - 5,  # Not before (with 5s clock skew tolerance)
        "exp": now + (ttl if ttl is not None else config.SESSION_TTL),
    }
    return jwt.encode(payload, config.SESSION_SECRET, algorithm=ALGORITHM)


def read_session_token(token: Optional[str]) -> Optional[dict]:
    """Return the token claims, or None when it is missing, forged or expired"""
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            config.SESSION_SECRET,
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            options={"require": ["sub", "exp"]},
        )
    except jwt.InvalidTokenError:
        return None
    return claims


def is_default_secret() -> bool:
    """True while the development signing key is in use"""
    return config.SESSION_SECRET == config.DEV_SECRET
