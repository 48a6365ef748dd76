"""
Bearer token authentication for the upload API.

Access tokens are HS256 JWTs minted by the login service with issuer
``tubely-access`` and the user id as subject. This module only validates
them; ``make_jwt`` exists for the CLI and tests.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from fastapi import Request
from jose import JWTError, jwt

from api.errors import UnauthenticatedError
from config import ApiConfig, TRUSTED_PROXIES

# Security event logger - separate from regular application logging
security_logger = logging.getLogger("security.auth")

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_ISSUER = "tubely-access"
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _get_request_context(request: Optional[Request]) -> dict:
    """
    Extract security-relevant context from request for logging.

    The X-Forwarded-For header is only trusted if the direct client IP is in
    TRUSTED_PROXIES to prevent header spoofing attacks.
    """
    if request is None:
        return {
            "ip_address": "unknown",
            "direct_ip": "unknown",
            "forwarded_for": None,
            "user_agent": "unknown",
        }

    direct_ip = request.client.host if request.client else "unknown"

    forwarded_for_header = request.headers.get("x-forwarded-for")
    forwarded_for_ip = None
    if forwarded_for_header:
        forwarded_for_ip = forwarded_for_header.split(",")[0].strip()

    if forwarded_for_ip and direct_ip in TRUSTED_PROXIES:
        effective_ip = forwarded_for_ip
    else:
        effective_ip = direct_ip

    return {
        "ip_address": effective_ip,
        "direct_ip": direct_ip,
        "forwarded_for": forwarded_for_ip,
        "user_agent": request.headers.get("user-agent", "unknown"),
    }


def get_bearer_token(headers: Mapping[str, str]) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        UnauthenticatedError: If the header is missing, uses another scheme,
            or carries an empty token
    """
    authorization = headers.get("authorization")
    if not authorization:
        raise UnauthenticatedError("Couldn't find JWT")

    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise UnauthenticatedError("Couldn't find JWT")
    return token


def validate_jwt(token: str, secret: str) -> str:
    """
    Validate an access token and return the user id it was issued to.

    Checks the signature, expiry, and issuer. An empty secret rejects every
    token rather than accepting unsigned ones.

    Raises:
        UnauthenticatedError: If the token is invalid for any reason
    """
    if not secret:
        raise UnauthenticatedError("Couldn't validate JWT")

    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], issuer=JWT_ISSUER)
    except JWTError as e:
        raise UnauthenticatedError("Couldn't validate JWT") from e

    user_id = claims.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise UnauthenticatedError("Couldn't validate JWT")
    return user_id


def make_jwt(user_id: str, secret: str, expires_in: timedelta = DEFAULT_TOKEN_LIFETIME) -> str:
    """Mint an access token for ``user_id`` signed with ``secret``."""
    now = datetime.now(timezone.utc)
    payload = {
        "iss": JWT_ISSUER,
        "sub": user_id,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def authenticate_request(request: Request, cfg: ApiConfig) -> str:
    """
    Authenticate a request by its bearer token.

    Returns the user id on success. Failures are logged to the security
    logger before UnauthenticatedError propagates.
    """
    ctx = _get_request_context(request)

    try:
        token = get_bearer_token(request.headers)
    except UnauthenticatedError:
        security_logger.warning(
            "Authentication failed: missing bearer token",
            extra={
                "event": "auth_failure",
                "reason": "missing_token",
                "path": request.url.path,
                **ctx,
            },
        )
        raise

    try:
        user_id = validate_jwt(token, cfg.jwt_secret)
    except UnauthenticatedError:
        security_logger.warning(
            "Authentication failed: invalid token",
            extra={
                "event": "auth_failure",
                "reason": "invalid_token" if cfg.jwt_secret else "secret_not_configured",
                "path": request.url.path,
                **ctx,
            },
        )
        raise

    logger.debug(f"Authenticated user {user_id} for {request.url.path}")
    return user_id
