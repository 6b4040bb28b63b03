"""Wallet session tokens and request guards."""

from __future__ import annotations

import hmac
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import Header, Request

from healthquest import game_config as config
from healthquest.errors import AuthError


def issue_token(wallet: str, session_id: str, now: datetime | None = None) -> str:
    issued = now or datetime.now(UTC)
    payload = {
        "walletAddress": wallet,
        "sid": session_id,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(days=config.TOKEN_EXPIRY_DAYS)).timestamp()),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("token expired") from None
    except jwt.InvalidTokenError:
        raise AuthError("invalid token") from None


def require_wallet(request: Request, authorization: str = Header(default="")) -> str:
    """Resolve the bearer token to a wallet whose session is still current."""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError()
    claims = decode_token(token.strip())
    wallet = claims.get("walletAddress")
    if not isinstance(wallet, str) or not wallet:
        raise AuthError("invalid token")
    store = request.app.state.store
    if not store.session_matches(wallet, claims.get("sid")):
        raise AuthError("session has ended; connect again")
    return wallet


def require_admin(x_admin_key: str = Header(default="")) -> None:
    if not config.ADMIN_API_KEY:
        raise PermissionError("admin api key is not configured")
    if not hmac.compare_digest(x_admin_key.strip(), config.ADMIN_API_KEY):
        raise PermissionError("invalid admin key")


def assert_wallet(auth_wallet: str, wallet: str) -> None:
    if auth_wallet != wallet:
        raise PermissionError("access denied")
