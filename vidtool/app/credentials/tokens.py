"""
Token Provider

Client-credentials token acquisition against the Entra ID token endpoint.

No caching: each call authenticates again, and callers needing the admin API,
the request service or Graph ask for that scope explicitly.
"""

import logging
from typing import Optional

import httpx

from ..config import Settings
from ..errors import ConfigurationError, UpstreamAuthError

logger = logging.getLogger(__name__)


class TokenProvider:
    """Exchanges the tool's service credentials for scoped bearer tokens."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self._settings = settings
        self._client = client

    async def acquire_token(self, scope: Optional[str] = None) -> str:
        """
        Acquire an app-only access token.

        Args:
            scope: Resource scope; defaults to the Verified ID admin API scope

        Returns:
            Bearer token string

        Raises:
            ConfigurationError: If service credentials are absent or placeholders
            UpstreamAuthError: If the token endpoint is unreachable or refuses
        """
        settings = self._settings
        if not settings.has_service_credentials:
            raise ConfigurationError(
                "Application not properly configured: service credentials are missing"
            )

        scope = scope or settings.VERIFIABLE_CREDENTIALS_API_SCOPE
        logger.info(f"Requesting access token with scope: {scope}")

        payload = {
            "client_id": settings.AZURE_CLIENT_ID,
            "client_secret": settings.AZURE_CLIENT_SECRET,
            "scope": scope,
            "grant_type": "client_credentials",
        }

        try:
            response = await self._client.post(
                settings.token_endpoint,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.error(f"Token endpoint unreachable: {e}", extra={"scope": scope})
            raise UpstreamAuthError("Unable to obtain access token", details=str(e)) from e

        if not response.is_success:
            error_data = _json_or_empty(response)
            error_msg = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"HTTP {response.status_code}"
            )
            logger.error(
                f"Token request rejected: {error_msg}",
                extra={"scope": scope, "status_code": response.status_code}
            )
            raise UpstreamAuthError("Unable to obtain access token", details=error_data or error_msg)

        token = _json_or_empty(response).get("access_token")
        if not token:
            raise UpstreamAuthError("Token response missing access_token")

        return token


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
