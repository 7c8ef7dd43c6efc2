# auth.py
"""
Bearer-token authentication.

Tokens are HS256 JWTs signed by the identity provider with a shared secret.
Signature and expiry are always verified; the `sub` claim is the user id.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, g, request

logger = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "Unauthorized: Invalid or missing authentication token"


class AuthError(Exception):
    def __init__(self, message: str = UNAUTHORIZED_MESSAGE, reason: str = "invalid_token"):
        super().__init__(message)
        self.message = message
        self.reason = reason


def _settings():
    return current_app.config["SETTINGS"]


def decode_token(token: str, settings, purpose: Optional[str] = None) -> dict:
    """Verify signature + expiry (+ audience, + purpose) and return the claims."""
    options = {"require": ["exp", "sub"]}
    kwargs = {"algorithms": [settings.JWT_ALGORITHM], "options": options}
    if settings.JWT_AUDIENCE and purpose is None:
        kwargs["audience"] = settings.JWT_AUDIENCE
    else:
        options["verify_aud"] = False
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, **kwargs)
    except jwt.ExpiredSignatureError:
        raise AuthError(reason="expired") from None
    except jwt.InvalidTokenError as e:
        logger.info("Rejected token: %s", e)
        raise AuthError() from None

    if claims.get("purpose") != purpose:
        raise AuthError(reason="wrong_purpose")
    if not str(claims.get("sub") or "").strip():
        raise AuthError(reason="missing_subject")
    return claims


def authenticate(req=None) -> str:
    """Return the verified user id for a request, or raise AuthError."""
    req = req or request
    header = req.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        raise AuthError(reason="missing_token")
    token = header[len("Bearer "):].strip()
    if not token:
        raise AuthError(reason="missing_token")
    return str(decode_token(token, _settings())["sub"])


def require_user(func):
    """Authenticate before the view runs; the user id lands on g.user_id."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        if request.method == "OPTIONS":
            return func(*args, **kwargs)
        g.user_id = authenticate(request)
        return func(*args, **kwargs)

    return wrapper


def issue_token(settings, subject: str, ttl_seconds: int, purpose: Optional[str] = None, **claims) -> str:
    """Sign a token with the shared secret (used for password-reset links and tests)."""
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + timedelta(seconds=ttl_seconds), **claims}
    if purpose:
        payload["purpose"] = purpose
    elif settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
