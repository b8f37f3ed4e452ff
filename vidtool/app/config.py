"""
Configuration module for the VID Issuing Tool.

This module uses Pydantic Settings to load and validate environment variables
for Entra ID authentication, the Verified ID admin and request service APIs,
Microsoft Graph, operator sessions and in-memory retention windows.

Environment variables are loaded from .env file or system environment.
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Values shipped in the sample .env; treated the same as a missing value
PLACEHOLDER_VALUES = {
    "your-client-id-here",
    "your-client-secret-here",
    "your-tenant-id-here",
}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Service credentials are optional at load time so the tool can start and
    report its own misconfiguration; operations that need them raise
    ConfigurationError instead.
    """

    # =========================================================================
    # Azure AD / Entra ID Configuration
    # =========================================================================

    AZURE_TENANT_ID: Optional[str] = Field(
        None,
        description="Entra ID tenant ID (GUID format)",
    )

    AZURE_CLIENT_ID: Optional[str] = Field(
        None,
        description="Application (client) ID of the tool's app registration",
    )

    AZURE_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret used for client-credentials and code exchange",
    )

    AZURE_REDIRECT_URI: str = Field(
        default="http://localhost:3000/auth/callback",
        description="OIDC redirect URI registered in Entra ID",
        min_length=1,
    )

    POST_LOGOUT_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Where Entra ID sends the browser after sign-out (defaults to BASE_URL)",
    )

    ALLOWED_DOMAINS: Optional[str] = Field(
        None,
        description="Comma-separated operator e-mail domains (empty allows every tenant user)",
    )

    # =========================================================================
    # Operator Session Configuration
    # =========================================================================

    REQUIRE_AUTH: bool = Field(
        default=True,
        description="Require a signed-in operator for /api routes",
    )

    SESSION_SECRET: str = Field(
        default="default-secret-vid-issuing-tool",
        description="Secret for the signed cookie holding OIDC state, nonce and PKCE verifier",
        min_length=16,
    )

    SESSION_JWT_SECRET: str = Field(
        default="change-me-in-production-vid-issuing-tool",
        description="Secret key for signing operator session JWTs",
        min_length=32,
    )

    SESSION_JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384, or HS512)",
    )

    SESSION_JWT_EXPIRY_MINUTES: int = Field(
        default=1440,
        description="Operator session lifetime in minutes",
        ge=5,
        le=1440,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="vid_session",
        description="Cookie carrying the operator session JWT",
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=False,
        description="Mark session cookies Secure (enable behind HTTPS)",
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache Entra ID JWKS keys in seconds",
        ge=300,
        le=86400,
    )

    # =========================================================================
    # Verified ID Configuration
    # =========================================================================

    ISSUER_AUTHORITY: Optional[str] = Field(
        None,
        description="Decentralized identifier of the issuing authority (did:web:...)",
    )

    VERIFIABLE_CREDENTIALS_ENDPOINT: str = Field(
        default="https://verifiedid.did.msidentity.com/v1.0/verifiableCredentials",
        description="Verified ID admin API base URL (authorities and contracts)",
    )

    VERIFIABLE_CREDENTIALS_API_SCOPE: str = Field(
        default="6a8b4b39-c021-437c-b060-5a14a3fd65f3/.default",
        description="Token scope for the Verified ID admin API",
    )

    REQUEST_SERVICE_URL: str = Field(
        default="https://verifiedid.did.msidentity.com/v1.0",
        description="Verified ID request service base URL",
    )

    REQUEST_SERVICE_API_SCOPE: str = Field(
        default="3db474b9-6a0c-4840-96ac-1fceb342124f/.default",
        description="Token scope for the Verified ID request service",
    )

    MANIFEST_URL_TEMPLATE: str = Field(
        default=(
            "https://verifiedid.did.msidentity.com/v1.0/tenants/{tenant_id}"
            "/verifiableCredentials/contracts/{contract_id}/manifest"
        ),
        description="Contract manifest URL with {tenant_id} and {contract_id} placeholders",
    )

    REGISTRATION_CLIENT_NAME: str = Field(
        default="VID Issuing Tool Admin",
        description="Client name shown in the wallet during issuance",
    )

    CALLBACK_API_KEY: Optional[str] = Field(
        None,
        description="Value sent back by the request service in the callback 'api-key' header",
    )

    CALLBACK_REQUIRE_API_KEY: bool = Field(
        default=False,
        description="Reject callbacks whose 'api-key' header does not match CALLBACK_API_KEY",
    )

    CONTRACT_STRATEGIES: Optional[str] = Field(
        None,
        description="Inline JSON contract table replacing the built-in one",
    )

    CONTRACT_STRATEGIES_FILE: Optional[Path] = Field(
        None,
        description="Path to a JSON contract table replacing the built-in one",
    )

    # =========================================================================
    # Microsoft Graph Configuration
    # =========================================================================

    GRAPH_API_URL: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph base URL",
    )

    GRAPH_API_SCOPE: str = Field(
        default="https://graph.microsoft.com/.default",
        description="Token scope for directory queries",
    )

    # =========================================================================
    # Runtime Configuration
    # =========================================================================

    BASE_URL: str = Field(
        default="http://localhost:3000",
        description="Public base URL of this tool (used to build the issuance callback URL)",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (defaults to BASE_URL)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    ENVIRONMENT: str = Field(
        default="production",
        description="development, production or test",
    )

    REQUEST_TTL_SECONDS: int = Field(
        default=600,
        description="Retention window of issuance request records",
        ge=1,
    )

    STORE_SWEEP_INTERVAL_SECONDS: int = Field(
        default=60,
        description="Interval of the background sweep removing expired request records",
        ge=1,
    )

    LOG_BUFFER_TTL_SECONDS: int = Field(
        default=7200,
        description="Retention window of captured log entries",
        ge=1,
    )

    LOG_BUFFER_MAX_ENTRIES: int = Field(
        default=1000,
        description="Maximum number of captured log entries",
        ge=1,
    )

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout applied to calls to Entra ID, Verified ID and Graph",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def has_service_credentials(self) -> bool:
        """True when tenant, client ID and secret are set to real values."""
        return all(
            value and value.strip() and value.strip() not in PLACEHOLDER_VALUES
            for value in (self.AZURE_TENANT_ID, self.AZURE_CLIENT_ID, self.AZURE_CLIENT_SECRET)
        )

    @property
    def azure_authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.AZURE_TENANT_ID}"

    @property
    def token_endpoint(self) -> str:
        return f"{self.azure_authority}/oauth2/v2.0/token"

    @property
    def callback_url(self) -> str:
        return f"{self.BASE_URL.rstrip('/')}/api/credentials/callback"

    @property
    def post_logout_redirect(self) -> str:
        return self.POST_LOGOUT_REDIRECT_URI or self.BASE_URL

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def allowed_domains_list(self) -> List[str]:
        """
        Parse and return ALLOWED_DOMAINS as a clean list.

        Returns:
            List of lowercase domain strings, empty when unrestricted.
        """
        if not self.ALLOWED_DOMAINS:
            return []

        return [
            domain.strip().lower()
            for domain in self.ALLOWED_DOMAINS.split(",")
            if domain.strip()
        ]

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return [self.BASE_URL.rstrip("/")]

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    def manifest_url(self, contract_id: str) -> str:
        return self.MANIFEST_URL_TEMPLATE.format(
            tenant_id=self.AZURE_TENANT_ID,
            contract_id=contract_id,
        )

    def load_contract_table(self) -> Optional[Dict[str, Any]]:
        """
        Return the configured contract table, if any.

        CONTRACT_STRATEGIES takes precedence over CONTRACT_STRATEGIES_FILE.

        Raises:
            ValueError: If the configured JSON is malformed or not an object
        """
        raw: Optional[str] = None
        if self.CONTRACT_STRATEGIES and self.CONTRACT_STRATEGIES.strip():
            raw = self.CONTRACT_STRATEGIES
        elif self.CONTRACT_STRATEGIES_FILE:
            raw = self.CONTRACT_STRATEGIES_FILE.read_text(encoding="utf-8")

        if raw is None:
            return None

        table = json.loads(raw)
        if not isinstance(table, dict):
            raise ValueError("Contract table must be a JSON object keyed by contract ID")
        return table

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SESSION_JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("development", "production", "test"):
            raise ValueError(
                f"ENVIRONMENT must be development, production or test, got: {v}"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return v

    @field_validator("AZURE_TENANT_ID", "AZURE_CLIENT_ID")
    @classmethod
    def validate_guid_format(cls, v: Optional[str]) -> Optional[str]:
        """
        Validate that Entra IDs are in GUID format.

        Empty values and the sample placeholders are let through so that the
        configuration report can flag them.

        Raises:
            ValueError: If a real value is not a valid GUID
        """
        if v is None or not v.strip() or v.strip() in PLACEHOLDER_VALUES:
            return v

        guid_pattern = re.compile(
            r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
            re.IGNORECASE
        )

        if not guid_pattern.match(v.strip()):
            raise ValueError(
                f"Invalid GUID format: {v}. "
                "Expected format: xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"
            )

        return v.strip().lower()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so that the environment is read once per process.

    Returns:
        Settings instance with all configuration loaded and validated.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def is_domain_allowed(email: str, settings: Settings) -> bool:
    """
    Check if an operator e-mail belongs to an allowed domain.

    Every domain is allowed when ALLOWED_DOMAINS is empty.
    """
    if not email or "@" not in email:
        return False

    allowed = settings.allowed_domains_list
    if not allowed:
        return True

    domain = email.split("@")[-1].lower().strip()
    return domain in allowed


def _configured(value: Optional[str]) -> bool:
    return bool(value and value.strip() and value.strip() not in PLACEHOLDER_VALUES)


def validate_configuration(settings: Settings) -> Dict[str, Any]:
    """
    Validate configuration settings and return a status report.

    Returns:
        Dictionary with per-key status, errors, warnings and overall flag.

    Example:
        >>> report = validate_configuration(get_settings())
        >>> if not report["allConfigured"]:
        ...     print(report["errors"])
    """
    checks = {
        "tenantId": _configured(settings.AZURE_TENANT_ID),
        "clientId": _configured(settings.AZURE_CLIENT_ID),
        "clientSecret": _configured(settings.AZURE_CLIENT_SECRET),
        "issuerAuthority": _configured(settings.ISSUER_AUTHORITY),
        "verifiableCredentialsEndpoint": _configured(settings.VERIFIABLE_CREDENTIALS_ENDPOINT),
        "requestServiceUrl": _configured(settings.REQUEST_SERVICE_URL),
    }

    errors = []
    warnings = []

    if not settings.has_service_credentials:
        errors.append(
            "AZURE_TENANT_ID, AZURE_CLIENT_ID and AZURE_CLIENT_SECRET must be configured"
        )

    if not checks["issuerAuthority"]:
        errors.append("ISSUER_AUTHORITY is not configured (issuance requests will be rejected)")

    if settings.SESSION_JWT_SECRET == Settings.model_fields["SESSION_JWT_SECRET"].default:
        warnings.append("SESSION_JWT_SECRET uses the built-in default")

    if not settings.REQUIRE_AUTH:
        warnings.append("REQUIRE_AUTH is disabled; /api routes accept anonymous callers")

    if settings.CALLBACK_REQUIRE_API_KEY and not settings.CALLBACK_API_KEY:
        errors.append("CALLBACK_REQUIRE_API_KEY is set but CALLBACK_API_KEY is empty")

    if "localhost" in settings.BASE_URL or "127.0.0.1" in settings.BASE_URL:
        warnings.append("BASE_URL points to localhost; the request service cannot reach the callback")

    all_configured = all(checks.values())

    return {
        "configuration": {
            key: "configured" if ok else "missing"
            for key, ok in checks.items()
        },
        "allConfigured": all_configured,
        "status": "Configuration complete" if all_configured else "Incomplete configuration",
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }
