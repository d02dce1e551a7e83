"""
verify.py
---------
Purpose:
    JWT verification using Supabase JWKS (ES256), plus the admin and cron
    guards used by the ingest routes.

Notes:
    - Fetches JWKS from Supabase and caches keys.
    - Provides `auth_dependency` for signed-in routes and `require_admin`
      for admin-only routes.
    - `require_cron_secret` checks the shared secret sent by the scheduler.
"""

import hmac

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings

SUPABASE_AUDIENCE = "authenticated"
ADMIN_ROLE = "admin"

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer()
_cron_security = HTTPBearer(auto_error=False)


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],  # Supabase now uses ES256
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
        return decoded
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


def has_role(claims: dict, role: str) -> bool:
    """Role lives in app_metadata (set server-side); user_metadata is not trusted."""
    app_metadata = claims.get("app_metadata") or {}
    roles = app_metadata.get("roles") or []
    return app_metadata.get("role") == role or role in roles


def require_admin(claims: dict = Depends(auth_dependency)) -> dict:
    if not has_role(claims, ADMIN_ROLE):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return claims


def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(_cron_security),
) -> None:
    expected = settings.CRON_SECRET
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Cron endpoint is not configured"
        )
    if credentials is None or not hmac.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
