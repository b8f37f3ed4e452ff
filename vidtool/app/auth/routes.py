"""
Authentication routes for operator sign-in with Microsoft Entra ID.

This module implements the OIDC authorization code flow with PKCE. The
state, nonce and code verifier travel in the signed Starlette session
cookie; the resulting operator session JWT is set as an HttpOnly cookie.
"""

import base64
import hashlib
import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from jose import JWTError

from ..config import Settings, is_domain_allowed
from ..context import AppContext, get_context
from ..errors import ConfigurationError
from .session import (
    create_session_jwt_from_id_token,
    get_optional_operator,
)
from .utils import (
    extract_email_from_claims,
    get_user_display_name,
    validate_nonce,
    verify_id_token,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)

OIDC_SCOPE = "openid profile email"
SESSION_KEYS = ("oauth_state", "oauth_nonce", "code_verifier")


# =============================================================================
# PKCE Helper Functions
# =============================================================================

def generate_code_verifier() -> str:
    """Base64-URL-encoded random PKCE verifier (43 characters)."""
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).decode("utf-8").rstrip("=")


def generate_code_challenge(verifier: str) -> str:
    """S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def _error_redirect(error: str, details: Optional[str] = None) -> RedirectResponse:
    params = {"error": error}
    if details:
        params["details"] = details
    return RedirectResponse(url=f"/?{urlencode(params)}", status_code=302)


def _clear_oidc_state(request: Request) -> None:
    for key in SESSION_KEYS:
        request.session.pop(key, None)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login")
async def login(request: Request, context: AppContext = Depends(get_context)):
    """
    Start the OIDC flow.

    Browsers are redirected to the Entra ID authorize endpoint; callers
    that only accept JSON get {"authUrl": ...} instead.
    """
    settings = context.settings
    if not settings.has_service_credentials:
        raise ConfigurationError("Authentication not configured")

    state = secrets.token_urlsafe(32)
    nonce = secrets.token_urlsafe(32)
    code_verifier = generate_code_verifier()

    request.session["oauth_state"] = state
    request.session["oauth_nonce"] = nonce
    request.session["code_verifier"] = code_verifier

    params = {
        "client_id": settings.AZURE_CLIENT_ID,
        "response_type": "code",
        "redirect_uri": settings.AZURE_REDIRECT_URI,
        "response_mode": "query",
        "scope": OIDC_SCOPE,
        "state": state,
        "nonce": nonce,
        "code_challenge": generate_code_challenge(code_verifier),
        "code_challenge_method": "S256",
    }
    authorization_url = f"{settings.azure_authority}/oauth2/v2.0/authorize?{urlencode(params)}"

    accept = request.headers.get("accept", "")
    if "application/json" in accept and "text/html" not in accept:
        return {"authUrl": authorization_url}

    logger.info("Redirecting operator to Entra ID sign-in")
    return RedirectResponse(url=authorization_url, status_code=302)


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Entra ID"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
    context: AppContext = Depends(get_context),
):
    """
    Complete the OIDC flow.

    Every failure redirects to /?error=...&details=...; success sets the
    session cookie and redirects to /?success=authenticated.
    """
    settings = context.settings

    if error:
        logger.warning(f"Entra ID returned an error: {error}", extra={"error_description": error_description})
        return _error_redirect(error, error_description)

    if not code:
        return _error_redirect("no_code")

    expected_state = request.session.get("oauth_state")
    if not expected_state or state != expected_state:
        logger.warning("OIDC state mismatch")
        return _error_redirect("invalid_state", "Invalid state parameter or expired session")

    code_verifier = request.session.get("code_verifier")
    nonce = request.session.get("oauth_nonce")
    _clear_oidc_state(request)

    try:
        token_response = await _exchange_code_for_tokens(
            context.client,
            settings,
            code=code,
            code_verifier=code_verifier,
        )
        claims = await verify_id_token(token_response["id_token"], settings, context.jwks)
    except (httpx.HTTPError, JWTError, ValueError) as e:
        logger.error(f"Operator sign-in failed: {e}")
        return _error_redirect("auth_failed", str(e))

    if not validate_nonce(claims, nonce):
        return _error_redirect("invalid_nonce", "Nonce mismatch. Please try again.")

    email = extract_email_from_claims(claims)
    if not email:
        return _error_redirect("no_email", "Unable to retrieve email address from your account")

    if not is_domain_allowed(email, settings):
        logger.warning("Operator domain not allowed", extra={"user_email": email})
        return _error_redirect("domain_not_allowed", f"{email.split('@')[-1]} is not an allowed domain")

    session_token = create_session_jwt_from_id_token(claims, email, settings)

    logger.info(
        f"Operator signed in: {get_user_display_name(claims)}",
        extra={"user_email": email}
    )

    response = RedirectResponse(url="/?success=authenticated", status_code=302)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session_token,
        max_age=settings.SESSION_JWT_EXPIRY_MINUTES * 60,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return response


async def _exchange_code_for_tokens(
    client: httpx.AsyncClient,
    settings: Settings,
    code: str,
    code_verifier: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Exchange an authorization code for tokens.

    Raises:
        httpx.HTTPError: If token exchange fails
        ValueError: If response has no id_token
    """
    payload = {
        "client_id": settings.AZURE_CLIENT_ID,
        "client_secret": settings.AZURE_CLIENT_SECRET,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.AZURE_REDIRECT_URI,
        "scope": OIDC_SCOPE,
    }
    if code_verifier:
        payload["code_verifier"] = code_verifier

    response = await client.post(
        settings.token_endpoint,
        data=payload,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
    )

    if not response.is_success:
        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        error_msg = error_data.get("error_description") or error_data.get("error") or "Token exchange failed"
        raise httpx.HTTPError(f"Token exchange failed: {error_msg}")

    token_data = response.json()
    if "id_token" not in token_data:
        raise ValueError("Token response missing id_token")

    return token_data


# =============================================================================
# Logout / Status
# =============================================================================

@auth_router.get("/logout")
async def logout(
    request: Request,
    operator: Optional[Dict[str, Any]] = Depends(get_optional_operator),
    context: AppContext = Depends(get_context),
):
    settings = context.settings
    request.session.clear()

    if operator and settings.has_service_credentials:
        params = urlencode({"post_logout_redirect_uri": settings.post_logout_redirect})
        target = f"{settings.azure_authority}/oauth2/v2.0/logout?{params}"
        logger.info("Operator signed out", extra={"user_email": operator.get("email")})
    else:
        target = "/?logged_out=true"

    response = RedirectResponse(url=target, status_code=302)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return response


@auth_router.get("/status")
async def auth_status(
    operator: Optional[Dict[str, Any]] = Depends(get_optional_operator),
    context: AppContext = Depends(get_context),
) -> JSONResponse:
    if operator:
        user = {
            "id": operator.get("sub"),
            "email": operator.get("email"),
            "name": operator.get("name"),
        }
        return JSONResponse({"authenticated": True, "user": user})

    return JSONResponse({
        "authenticated": False,
        "user": None,
        "authRequired": context.settings.REQUIRE_AUTH,
    })
