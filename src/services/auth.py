"""Firebase ID-token verification."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from firebase_admin import auth as fb_auth
from loguru import logger


class Authenticator:
    def __init__(self, app: Any = None) -> None:
        self.app = app

    def verify(self, token: str) -> Dict[str, Any]:
        return fb_auth.verify_id_token(token, app=self.app)


def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def authenticate(authenticator: Authenticator, request: Request) -> Dict[str, Any]:
    """Decoded token for the request, or HTTP 401."""
    token = bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized: No token provided")
    try:
        return authenticator.verify(token)
    except Exception as exc:
        logger.warning("token verification failed: {}", exc)
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid token")


def try_authenticate(authenticator: Authenticator, request: Request) -> Optional[Dict[str, Any]]:
    """Like authenticate() but anonymous/invalid callers just get None."""
    token = bearer_token(request)
    if not token:
        return None
    try:
        return authenticator.verify(token)
    except Exception as exc:
        logger.warning("ignoring unverifiable bearer token: {}", exc)
        return None
