"""Request authentication for Shopify webhooks and embedded admin calls."""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import Header, HTTPException, status
from jose import JWTError, jwt

from .subscriptions import get_engine_config

logger = logging.getLogger("subscriptions")

SESSION_TOKEN_ALGORITHM = "HS256"


def sign_webhook_body(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_hmac(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time check of the ``X-Shopify-Hmac-Sha256`` header."""
    if not signature:
        return False
    expected = sign_webhook_body(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def decode_session_token(token: str, *, secret: str, audience: str = "") -> Dict[str, Any]:
    options = {"verify_aud": bool(audience)}
    return jwt.decode(
        token,
        secret,
        algorithms=[SESSION_TOKEN_ALGORITHM],
        audience=audience or None,
        options=options,
    )


def require_admin_session(authorization: Optional[str] = Header(None)) -> Optional[Dict[str, Any]]:
    """FastAPI dependency validating the App Bridge bearer token."""
    config = get_engine_config()
    if not config.verifies_requests:
        return None
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    token = authorization.split(" ", 1)[1].strip()
    try:
        return decode_session_token(token, secret=config.shopify_api_secret, audience=config.shopify_api_key)
    except JWTError as exc:
        logger.info("Rejected admin session token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token") from exc


__all__ = [
    "SESSION_TOKEN_ALGORITHM",
    "decode_session_token",
    "require_admin_session",
    "sign_webhook_body",
    "verify_webhook_hmac",
]
