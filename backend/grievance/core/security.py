"""
Identity collaborator boundary: Cognito JWT verification + current-user lookup.

The lifecycle engine trusts the actor this module resolves and only performs
its own role checks on top (see grievance.core.rbac).

Development (DEV_SKIP_AUTH=true):
  - Send X-Dev-User-ID: <cognito_user_id> to act as that user.
  - Without the header the first active admin is used.

Staging / production:
  - Bearer token must be a Cognito access_token signed by a key in the pool's
    JWKS.  The JWKS is fetched lazily and cached for JWKS_CACHE_TTL seconds;
    a stale copy is served if Cognito is unreachable.
"""
import logging
import time
from contextvars import ContextVar
from typing import Any

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwk, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.core.config import get_settings
from grievance.core.db import get_db

logger = logging.getLogger(__name__)
settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)

# Set per request by the dev-auth middleware in grievance.main
_dev_cognito_sub: ContextVar[str | None] = ContextVar("_dev_cognito_sub", default=None)


def set_dev_cognito_sub(cognito_sub: str | None) -> None:
    _dev_cognito_sub.set(cognito_sub)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _cognito_issuer() -> str:
    return (
        f"https://cognito-idp.{settings.aws_region}.amazonaws.com/"
        f"{settings.cognito_user_pool_id}"
    )


# ---------------------------------------------------------------------------
# JWKS cache
# ---------------------------------------------------------------------------
_jwks_cache: dict[str, Any] = {}  # kid → JWK
_jwks_fetched_at: float = 0.0


async def _get_jwks() -> dict[str, Any]:
    """Return the {kid: jwk} mapping for the configured user pool."""
    global _jwks_cache, _jwks_fetched_at

    now = time.monotonic()
    if _jwks_cache and (now - _jwks_fetched_at) < settings.jwks_cache_ttl:
        return _jwks_cache

    if not settings.cognito_configured:
        return {}

    jwks_url = f"{_cognito_issuer()}/.well-known/jwks.json"
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(jwks_url)
            resp.raise_for_status()
            keys = resp.json().get("keys", [])
    except Exception as exc:
        logger.error("Failed to fetch Cognito JWKS: %s", exc)
        if _jwks_cache:
            return _jwks_cache
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        ) from exc

    _jwks_cache = {k["kid"]: k for k in keys}
    _jwks_fetched_at = now
    logger.info("Fetched %d keys from Cognito JWKS", len(_jwks_cache))
    return _jwks_cache


def _verify_cognito_jwt(token: str, jwks: dict[str, Any]) -> dict[str, Any]:
    """
    Decode and verify a Cognito access_token.
    Raises HTTPException(401) on any failure.
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise _unauthorized("Invalid token header") from exc

    kid = header.get("kid")
    if kid not in jwks:
        raise _unauthorized("Token key not found")

    try:
        claims = jwt.decode(
            token,
            jwk.construct(jwks[kid]),
            algorithms=["RS256"],
            options={"verify_aud": False},  # access tokens carry client_id, not aud
        )
    except ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except JWTError as exc:
        raise _unauthorized("Token verification failed") from exc

    if claims.get("iss") != _cognito_issuer():
        raise _unauthorized("Invalid token issuer")
    if claims.get("token_use") != "access":
        raise _unauthorized("Expected access token")
    return claims


async def _dev_user(db: AsyncSession):
    from grievance.models.user import User

    cognito_sub = _dev_cognito_sub.get()
    query = select(User).where(User.is_active.is_(True))
    if cognito_sub:
        query = select(User).where(User.cognito_user_id == cognito_sub)
    else:
        query = query.where(User.role == "admin").limit(1)
    result = await db.execute(query)
    user = result.scalars().first()
    if user is None:
        raise _unauthorized(
            "Dev auth: no matching user found. "
            "Set X-Dev-User-ID header or create an admin user first."
        )
    return user


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """FastAPI dependency: the authenticated User row."""
    from grievance.models.user import User

    if settings.auth_disabled:
        return await _dev_user(db)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not settings.cognito_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured on this server",
        )

    claims = _verify_cognito_jwt(token, await _get_jwks())
    result = await db.execute(select(User).where(User.cognito_user_id == claims.get("sub")))
    user = result.scalars().first()
    if not user or not user.is_active:
        raise _unauthorized("User not found or inactive")
    return user
