"""
Operator Session Module
=======================

Handles creation and verification of operator session JWTs, and the
require_operator dependency guarding the /api routes.

After the OIDC callback the session JWT is stored in an HttpOnly cookie;
API clients may also send it as an Authorization: Bearer header.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from ..config import Settings
from ..context import AppContext, get_context

logger = logging.getLogger(__name__)


SESSION_ISSUER = "vid-issuing-tool"

# Operator used for every request when REQUIRE_AUTH is disabled
DEVELOPMENT_OPERATOR: Dict[str, Any] = {
    "sub": "development-operator",
    "email": "developer@localhost",
    "name": "Development Operator",
    "development": True,
}


class JWTSessionError(Exception):
    """Base exception for JWT session errors"""
    pass


# =============================================================================
# Token Creation
# =============================================================================

def create_session_jwt(claims: Dict[str, Any], settings: Settings) -> str:
    """
    Create a session JWT with the provided claims.

    Args:
        claims: Must contain 'sub' and 'email'; 'name' is carried along
        settings: Signing secret, algorithm and lifetime

    Returns:
        Encoded JWT string

    Raises:
        JWTSessionError: If required claims are missing
    """
    payload = claims.copy()

    now = datetime.now(timezone.utc)
    payload.update({
        "iat": now,
        "exp": now + timedelta(minutes=settings.SESSION_JWT_EXPIRY_MINUTES),
        "iss": SESSION_ISSUER,
        "sid": payload.get("sid") or uuid.uuid4().hex,
    })

    if not payload.get("sub"):
        raise JWTSessionError("Missing required claim: 'sub' (subject/user ID)")
    if not payload.get("email"):
        raise JWTSessionError("Missing required claim: 'email'")

    token = jwt.encode(payload, settings.SESSION_JWT_SECRET, algorithm=settings.SESSION_JWT_ALGORITHM)

    logger.debug(
        f"Created session JWT for operator {payload.get('email')}",
        extra={
            "user_id": payload.get("sub"),
            "expires_in_minutes": settings.SESSION_JWT_EXPIRY_MINUTES
        }
    )
    return token


def create_session_jwt_from_id_token(
    id_token_claims: Dict[str, Any],
    email: str,
    settings: Settings,
) -> str:
    """Session JWT for an operator whose ID token was just verified."""
    session_claims = {
        "sub": id_token_claims.get("oid") or id_token_claims.get("sub"),
        "email": email,
        "name": id_token_claims.get("name", ""),
        "preferred_username": id_token_claims.get("preferred_username", email),
    }
    return create_session_jwt(session_claims, settings)


# =============================================================================
# Token Verification
# =============================================================================

def verify_session_jwt(token: str, settings: Settings) -> Dict[str, Any]:
    """
    Verify and decode a session JWT.

    Returns:
        Dictionary containing the decoded claims

    Raises:
        HTTPException: 401 for missing, expired or invalid tokens
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No authentication token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        decoded = jwt.decode(
            token,
            settings.SESSION_JWT_SECRET,
            algorithms=[settings.SESSION_JWT_ALGORITHM],
            issuer=SESSION_ISSUER,
            options={"require": ["exp", "iat", "iss", "sub", "email"]},
        )
    except ExpiredSignatureError:
        logger.warning("Session JWT expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InvalidTokenError as e:
        logger.warning(f"Invalid session JWT: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return decoded


def extract_token_from_header(authorization: Optional[str]) -> str:
    """
    Extract Bearer token from Authorization header.

    Raises:
        HTTPException: If header is missing or not 'Bearer <token>'
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return parts[1]


def session_token_from_request(request: Request, settings: Settings) -> Optional[str]:
    """Session JWT from the cookie, else from the Authorization header."""
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if token:
        return token

    authorization = request.headers.get("Authorization")
    if authorization:
        return extract_token_from_header(authorization)

    return None


def session_id_from_request(request: Request, settings: Settings) -> Optional[str]:
    """The 'sid' claim of a valid session presented with the request, if any."""
    try:
        token = session_token_from_request(request, settings)
        if not token:
            return None
        claims = jwt.decode(
            token,
            settings.SESSION_JWT_SECRET,
            algorithms=[settings.SESSION_JWT_ALGORITHM],
            issuer=SESSION_ISSUER,
        )
    except (HTTPException, InvalidTokenError):
        return None
    return claims.get("sid")


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_optional_operator(
    request: Request,
    context: AppContext = Depends(get_context),
) -> Optional[Dict[str, Any]]:
    """Operator claims when a valid session is present, None otherwise."""
    try:
        token = session_token_from_request(request, context.settings)
        if not token:
            return None
        return verify_session_jwt(token, context.settings)
    except HTTPException:
        return None


async def require_operator(
    request: Request,
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    """
    Dependency guarding operator routes.

    Usage in routes:
        @router.get("/stats")
        async def stats(operator: dict = Depends(require_operator)):
            ...

    Raises:
        HTTPException: 401 if no valid session is presented
    """
    settings = context.settings
    if not settings.REQUIRE_AUTH:
        logger.warning(
            "Authentication disabled, serving request as development operator",
            extra={"path": request.url.path}
        )
        return dict(DEVELOPMENT_OPERATOR)

    token = session_token_from_request(request, settings)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return verify_session_jwt(token, settings)


__all__ = [
    "SESSION_ISSUER",
    "DEVELOPMENT_OPERATOR",
    "JWTSessionError",
    "create_session_jwt",
    "create_session_jwt_from_id_token",
    "verify_session_jwt",
    "extract_token_from_header",
    "session_token_from_request",
    "session_id_from_request",
    "get_optional_operator",
    "require_operator",
]
