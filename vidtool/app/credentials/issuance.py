"""
Issuance Orchestrator

Submits issuance requests to the Verified ID request service and records the
accepted ones in the request store.

Attempt sequence (sequential, stops at the first success):

    1. primary endpoint, with PIN
    2. primary endpoint, without PIN      (only if 1 failed with a PIN problem)
    3. alternate endpoint, with PIN       (only if 1 failed with HTTP 404)
    4. alternate endpoint, without PIN    (only if 3 failed with a PIN problem)

Any other failure ends the sequence with UpstreamIssuanceError. Contracts
configured with pin=false skip the "with PIN" attempts.

A failure counts as a PIN problem when the provider error text mentions
"pin" or "not supported", the structured error target names the pin field,
or the status is 400.
"""

import logging
import secrets
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from ..config import Settings
from ..errors import ConfigurationError, UpstreamIssuanceError
from ..models import IssuanceRecord, IssuanceStatus
from .contracts import ContractRegistry, PayloadContext
from .qr import render_qr_data_uri
from .store import RequestStore
from .tokens import TokenProvider

logger = logging.getLogger(__name__)


PIN_LENGTH = 4
PRIMARY_PATH = "/verifiableCredentials/createIssuanceRequest"
ALTERNATE_PATH = "/createIssuanceRequest"


def generate_pin(length: int = PIN_LENGTH) -> Dict[str, Any]:
    """Random numeric PIN challenge in the request service format."""
    value = str(secrets.randbelow(10 ** length)).zfill(length)
    return {"value": value, "length": length}


# ============================================================================
# Attempt Errors
# ============================================================================

class IssuanceAttemptError(Exception):
    """A single POST to the request service failed."""

    def __init__(
        self,
        url: str,
        status_code: Optional[int],
        message: str,
        body: Any = None,
        target: Optional[str] = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.message = message
        self.body = body
        self.target = target

    @classmethod
    def from_response(cls, url: str, response: httpx.Response) -> "IssuanceAttemptError":
        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        message = ""
        target = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            message = error.get("message") or ""
            inner = error.get("innererror")
            if isinstance(inner, dict):
                target = inner.get("target")
                if inner.get("message"):
                    message = f"{message} {inner['message']}".strip()
        if not message:
            message = response.reason_phrase or f"HTTP {response.status_code}"

        return cls(url, response.status_code, message, body, target)

    @property
    def endpoint_missing(self) -> bool:
        return self.status_code == 404


def is_pin_related(error: IssuanceAttemptError) -> bool:
    text = (error.message or "").lower()
    if "pin" in text or "not supported" in text:
        return True
    if error.target and "pin" in error.target.lower():
        return True
    return error.status_code == 400


class _EndpointNotFound(Exception):
    def __init__(self, attempt: IssuanceAttemptError):
        super().__init__(attempt.message)
        self.attempt = attempt


def _to_upstream_error(error: IssuanceAttemptError) -> UpstreamIssuanceError:
    return UpstreamIssuanceError(
        "Error issuing credential",
        details=error.body if error.body is not None else error.message,
        upstream_status=error.status_code,
        url=error.url,
    )


# ============================================================================
# Result
# ============================================================================

class IssuanceResult:
    """Normalized outcome of a successful issuance."""

    def __init__(
        self,
        request_id: str,
        deep_link: Optional[str],
        qr_image: Optional[str],
        expiry: Optional[int],
        pin_used: Optional[str],
        response: Dict[str, Any],
    ):
        self.request_id = request_id
        self.deep_link = deep_link
        self.qr_image = qr_image
        self.expiry = expiry
        self.pin_used = pin_used
        self.response = response

    @property
    def message(self) -> str:
        if self.pin_used:
            return (
                f"Credential issued successfully. Use PIN: {self.pin_used}. "
                "Scan the QR code with Microsoft Authenticator."
            )
        return "Credential issued successfully. Scan the QR code with Microsoft Authenticator."


# ============================================================================
# Service
# ============================================================================

class IssuanceService:
    """Drives the attempt sequence and records accepted requests."""

    def __init__(
        self,
        settings: Settings,
        token_provider: TokenProvider,
        registry: ContractRegistry,
        store: RequestStore,
        client: httpx.AsyncClient,
        qr_renderer: Callable[[str], str] = render_qr_data_uri,
        pin_factory: Callable[[], Dict[str, Any]] = generate_pin,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._settings = settings
        self._token_provider = token_provider
        self._registry = registry
        self._store = store
        self._client = client
        self._qr_renderer = qr_renderer
        self._pin_factory = pin_factory
        self._id_factory = id_factory

    @property
    def primary_url(self) -> str:
        return f"{self._settings.REQUEST_SERVICE_URL.rstrip('/')}{PRIMARY_PATH}"

    @property
    def alternate_url(self) -> str:
        return f"{self._settings.REQUEST_SERVICE_URL.rstrip('/')}{ALTERNATE_PATH}"

    async def issue(
        self,
        credential_type: str,
        user_id: str,
        user_email: Optional[str] = None,
        claims: Optional[Dict[str, Any]] = None,
    ) -> IssuanceResult:
        """
        Issue a credential to a directory user.

        Args:
            credential_type: Contract identifier
            user_id: Directory object ID of the subject
            user_email: Subject e-mail address
            claims: Operator-supplied claims; logged only, the contract table
                decides what is sent

        Returns:
            IssuanceResult with deep link, QR image, expiry and PIN (if used)

        Raises:
            ConfigurationError: Service credentials or issuer authority missing
            UpstreamAuthError: Token acquisition failed
            UpstreamIssuanceError: The request service refused the issuance
        """
        settings = self._settings
        if not settings.ISSUER_AUTHORITY:
            raise ConfigurationError(
                "Application not properly configured: ISSUER_AUTHORITY is missing",
                required=["ISSUER_AUTHORITY"],
            )

        request_id = self._id_factory()
        token = await self._token_provider.acquire_token(settings.REQUEST_SERVICE_API_SCOPE)

        context = PayloadContext.from_settings(
            settings,
            request_id=request_id,
            user_id=user_id,
            credential_type=credential_type,
            user_email=user_email,
        )
        payload = self._registry.build_payload(credential_type, context)
        strategy = self._registry.resolve(credential_type)
        pin = self._pin_factory() if strategy.pin_allowed else None

        if claims:
            logger.debug(
                "Operator-supplied claims are not forwarded",
                extra={"request_id": request_id, "claim_names": sorted(claims)}
            )

        try:
            data, pin_used = await self._submit(
                self.primary_url, payload, pin, token, fallback_on_missing=True
            )
        except _EndpointNotFound as missing:
            logger.warning(
                f"Primary issuance endpoint not found, trying alternate: {self.alternate_url}",
                extra={"request_id": request_id, "status_code": missing.attempt.status_code}
            )
            data, pin_used = await self._submit(
                self.alternate_url, payload, pin, token, fallback_on_missing=False
            )

        deep_link = data.get("url")
        qr_image = self._qr_renderer(deep_link) if deep_link else None

        record = IssuanceRecord(
            requestId=request_id,
            credentialType=credential_type,
            userId=user_id,
            userEmail=user_email,
            status=IssuanceStatus.PENDING,
            issuanceResponse=data,
            pinUsed=pin_used is not None,
        )
        await self._store.put(request_id, record)

        logger.info(
            "Issuance request accepted",
            extra={
                "request_id": request_id,
                "credential_type": credential_type,
                "user_id": user_id,
                "pin_used": pin_used is not None,
            }
        )

        return IssuanceResult(
            request_id=request_id,
            deep_link=deep_link,
            qr_image=qr_image,
            expiry=data.get("expiry"),
            pin_used=pin_used,
            response=data,
        )

    async def _submit(
        self,
        url: str,
        payload: Dict[str, Any],
        pin: Optional[Dict[str, Any]],
        token: str,
        fallback_on_missing: bool,
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        """
        Run the with-PIN / without-PIN pair against one endpoint.

        Raises:
            _EndpointNotFound: First attempt got 404 and fallback is allowed
            UpstreamIssuanceError: Any other terminal failure
        """
        body = {**payload, "pin": pin} if pin else payload

        try:
            data = await self._post(url, body, token)
            logger.info(f"Issuance accepted {'with' if pin else 'without'} PIN at {url}")
            return data, (pin["value"] if pin else None)
        except IssuanceAttemptError as first:
            if pin and is_pin_related(first):
                logger.info(
                    f"PIN rejected at {url}, retrying without PIN",
                    extra={"status_code": first.status_code, "upstream_message": first.message}
                )
            elif first.endpoint_missing and fallback_on_missing:
                raise _EndpointNotFound(first) from first
            else:
                logger.error(
                    "Request service error",
                    extra={
                        "status_code": first.status_code,
                        "upstream_message": first.message,
                        "url": url,
                    }
                )
                raise _to_upstream_error(first) from first

        try:
            data = await self._post(url, payload, token)
        except IssuanceAttemptError as second:
            logger.error(
                "Request service error after dropping PIN",
                extra={
                    "status_code": second.status_code,
                    "upstream_message": second.message,
                    "url": url,
                }
            )
            raise _to_upstream_error(second) from second

        logger.info(f"Issuance accepted without PIN at {url}")
        return data, None

    async def _post(self, url: str, body: Dict[str, Any], token: str) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                url,
                json=body,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                timeout=self._settings.UPSTREAM_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise IssuanceAttemptError(url, None, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise IssuanceAttemptError.from_response(url, response)

        try:
            data = response.json()
        except ValueError as e:
            raise IssuanceAttemptError(url, response.status_code, "Invalid JSON from request service") from e

        return data if isinstance(data, dict) else {}
