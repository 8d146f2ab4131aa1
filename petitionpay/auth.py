"""Admin bearer tokens.

Tokens are HS256 JWTs carrying the admin's display name and code. They are
minted by /api/login and checked by `verify` on every protected route, so
every endpoint reports the same failure reasons:

    token_missing  (401)  no header, wrong scheme, nothing after "Bearer"
    token_expired  (403)  signature fine, `exp` in the past
    token_invalid  (403)  anything else jwt refuses, or no adminName claim
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from loguru import logger

from .errors import AuthError
from .helpers import utc_now


ALGORITHM = "HS256"


@dataclass(frozen=True)
class Actor:
    name: str
    admin_code: str = ""
    claims: Dict[str, Any] = field(default_factory=dict, compare=False)


def issue_token(name: str, admin_code: str, secret: str,
                ttl_hours: float = 8.0) -> str:
    now = utc_now()
    payload = {
        "adminName": name,
        "adminCode": admin_code,
        "iat": now,
        "exp": now + timedelta(hours=ttl_hours),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def _missing(message: str) -> AuthError:
    return AuthError(message, status_code=401, reason="token_missing",
                     headers={"WWW-Authenticate": "Bearer"})


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise _missing(
            "Access Denied: No token provided or token format is incorrect."
        )
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise _missing("Access Denied: Token missing after Bearer.")
    return token


def verify(authorization: Optional[str], secret: str) -> Actor:
    token = bearer_token(authorization)
    try:
        claims = jwt.decode(
            token, secret, algorithms=[ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("rejected expired admin token")
        raise AuthError("Access Denied: Token expired.", status_code=403,
                        reason="token_expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"rejected admin token: {type(e).__name__}")
        raise AuthError("Access Denied: Invalid token.", status_code=403,
                        reason="token_invalid")

    name = claims.get("adminName")
    if not isinstance(name, str) or not name.strip():
        raise AuthError("Access Denied: Invalid token.", status_code=403,
                        reason="token_invalid")
    return Actor(name=name, admin_code=str(claims.get("adminCode") or ""),
                 claims=claims)
