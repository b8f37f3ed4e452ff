"""
Authentication utilities for OIDC token verification and JWKS management.

This module handles:
- Fetching and caching Entra ID JWKS (JSON Web Key Set)
- Verifying ID tokens returned to the operator sign-in callback
- Extracting operator identity from token claims
"""

import time
from typing import Any, Callable, Dict, Optional

import httpx
from jose import JWTError, jwk, jwt

from ..config import Settings


# =============================================================================
# JWKS Cache
# =============================================================================

class JwksCache:
    """
    Tenant signing keys, cached for JWKS_CACHE_SECONDS.

    A token signed with an unknown key forces one refresh before failing, so
    key rotation is picked up without waiting for the cache to expire.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self._client = client
        self._clock = clock
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0

    @property
    def jwks_uri(self) -> str:
        return f"{self._settings.azure_authority}/discovery/v2.0/keys"

    async def fetch(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Return the JWKS document, fetching it when stale.

        Raises:
            httpx.HTTPError: If JWKS endpoint is unreachable
            ValueError: If response is invalid
        """
        now = self._clock()
        ttl = self._settings.JWKS_CACHE_SECONDS

        if not force_refresh and self._jwks and (now - self._fetched_at) < ttl:
            return self._jwks

        response = await self._client.get(self.jwks_uri, timeout=10.0)
        response.raise_for_status()

        jwks_data = response.json()
        if "keys" not in jwks_data:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._fetched_at = now
        return jwks_data


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Find the JWKS key matching the token's kid.

    Raises:
        JWTError: If token header is malformed or has no kid
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise JWTError(f"Failed to decode token header: {e}")

    kid = unverified_header.get("kid")
    if not kid:
        raise JWTError("Token header missing 'kid' (Key ID)")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key

    return None


async def verify_id_token(id_token: str, settings: Settings, jwks_cache: JwksCache) -> Dict[str, Any]:
    """
    Verify and decode an ID token issued by Entra ID.

    Checks signature, audience (our client ID), expiry with 10 seconds of
    leeway, and that the issuer is our tenant.

    Returns:
        Dictionary of verified token claims

    Raises:
        JWTError: If token is invalid, expired, or signature doesn't match
        ValueError: If issuer or tenant is wrong
        httpx.HTTPError: If JWKS endpoint is unreachable
    """
    jwks = await jwks_cache.fetch()

    signing_key = get_signing_key(id_token, jwks)
    if not signing_key:
        jwks = await jwks_cache.fetch(force_refresh=True)
        signing_key = get_signing_key(id_token, jwks)

        if not signing_key:
            raise JWTError(
                "Unable to find matching signing key in JWKS. "
                "Token may be from a different tenant or keys may have rotated."
            )

    try:
        public_key = jwk.construct(signing_key)
    except Exception as e:
        raise JWTError(f"Failed to construct public key from JWK: {e}")

    try:
        claims = jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=["RS256"],
            audience=settings.AZURE_CLIENT_ID,
            options={
                "verify_at_hash": False,
                "leeway": 10,
            }
        )
    except jwt.ExpiredSignatureError:
        raise JWTError("ID token has expired")
    except jwt.JWTClaimsError as e:
        raise JWTError(f"Invalid token claims: {e}")

    issuer = claims.get("iss", "")
    if not issuer.startswith("https://login.microsoftonline.com/"):
        raise ValueError(
            f"Invalid issuer: {issuer}. "
            "Token must be issued by Microsoft Entra ID"
        )

    if not settings.AZURE_TENANT_ID or settings.AZURE_TENANT_ID not in issuer:
        raise ValueError(
            f"Token issued by wrong tenant. Expected {settings.AZURE_TENANT_ID}"
        )

    return claims


def extract_email_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    """
    Extract the operator's e-mail from ID token claims.

    Entra ID may carry it as preferred_username, upn, email or unique_name
    depending on the tenant configuration.
    """
    for claim_name in ["preferred_username", "upn", "email", "unique_name"]:
        email = claims.get(claim_name)
        if email and "@" in email:
            return email.lower().strip()

    return None


def get_user_display_name(claims: Dict[str, Any]) -> str:
    name = claims.get("name") or claims.get("given_name")
    if name:
        return name

    email = extract_email_from_claims(claims)
    if email:
        return email.split("@")[0].title()

    return "User"


def validate_nonce(claims: Dict[str, Any], expected_nonce: Optional[str]) -> bool:
    """Nonce must match when either side has one."""
    token_nonce = claims.get("nonce")

    if not token_nonce and not expected_nonce:
        return True

    if token_nonce and expected_nonce:
        return token_nonce == expected_nonce

    return False
