"""
JWT verification for the API.

Two signing setups are supported:
- HS256 with a shared ``JWT_SECRET`` (default; tokens issued by our own auth service)
- RS256 with public keys from ``JWT_JWKS_URL`` (external identity provider)

Usage:
    from app.jwt_auth import verify_access_token

    payload = verify_access_token(token)
    user_id = payload["sub"]
"""

import logging
import time
from functools import lru_cache
from typing import Any

import httpx
import jwt
from fastapi import status

from .core.config import get_settings
from .core.responses import ApiError, ErrorCodes

logger = logging.getLogger(__name__)


def _unauthorized(message: str) -> ApiError:
    return ApiError(
        status.HTTP_401_UNAUTHORIZED,
        ErrorCodes.INVALID_TOKEN,
        message,
        headers={"WWW-Authenticate": "Bearer"},
    )


@lru_cache(maxsize=1)
def fetch_jwks(url: str) -> dict:
    """
    Fetch the identity provider's JWKS document.

    Cached per URL to avoid a network round trip on every request.
    """
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(url, headers={"User-Agent": "Souq-Backend/1.0"})
            response.raise_for_status()
            logger.info(f"Fetched JWKS from {url}")
            return response.json()
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch JWKS from {url}: {e}")
        raise ApiError(
            status.HTTP_502_BAD_GATEWAY,
            ErrorCodes.INTERNAL_ERROR,
            "Unable to fetch signing keys",
        ) from e


def _signing_key_from_jwks(token: str, jwks_url: str):
    kid = jwt.get_unverified_header(token).get("kid")
    if not kid:
        raise _unauthorized("Token header missing key ID (kid)")

    for key in fetch_jwks(jwks_url).get("keys", []):
        if key.get("kid") == kid:
            return jwt.PyJWK.from_dict(key).key

    raise _unauthorized(f"No matching key found for kid: {kid}")


def verify_access_token(token: str) -> dict[str, Any]:
    """
    Verify a bearer token and return its payload.

    Raises:
        ApiError 401: If the token is malformed, expired or wrongly signed
    """
    settings = get_settings()

    try:
        if settings.jwt_jwks_url:
            key = _signing_key_from_jwks(token, settings.jwt_jwks_url)
            algorithms = ["RS256"]
        else:
            if not settings.jwt_secret:
                logger.error("JWT_SECRET is not configured; rejecting bearer token")
                raise _unauthorized("Token verification is not configured")
            key = settings.jwt_secret
            algorithms = [settings.jwt_algorithm]

        decoded = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            issuer=settings.jwt_issuer or None,
            options={"require": ["sub"], "verify_iss": bool(settings.jwt_issuer)},
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token verification failed: token has expired")
        raise _unauthorized("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token verification failed: {e}")
        raise _unauthorized("Invalid token") from e

    logger.debug(f"Token verified for user: {decoded.get('sub')}")
    return decoded


def create_access_token(user_id: str, expires_in: int = 3600, **claims: Any) -> str:
    """Issue an HS256 token signed with ``JWT_SECRET`` (dev tooling and tests)."""
    settings = get_settings()
    if not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET must be set to issue tokens")

    now = int(time.time())
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in, **claims}
    if settings.jwt_issuer:
        payload.setdefault("iss", settings.jwt_issuer)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
