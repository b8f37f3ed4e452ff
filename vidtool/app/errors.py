"""
Error taxonomy surfaced to API callers.

Each error carries the HTTP status the exception handlers in main.py answer
with, a human-readable message and whatever upstream detail was available.
"""

from typing import Any, Dict, List, Optional


class VidToolError(Exception):
    """Base exception for errors returned to API callers"""

    status_code: int = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationError(VidToolError):
    """Service credentials or required settings are missing."""

    status_code = 500

    def __init__(self, message: str, required: Optional[List[str]] = None):
        super().__init__(message)
        self.required = required or ["AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "AZURE_TENANT_ID"]

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["troubleshooting"] = {
            "requiredConfig": self.required,
            "configFile": ".env file in project root",
        }
        return body


class UpstreamAuthError(VidToolError):
    """The Entra ID token endpoint rejected or failed the request."""

    status_code = 502


class UpstreamIssuanceError(VidToolError):
    """The request service refused the issuance after the fallback sequence."""

    status_code = 502

    def __init__(
        self,
        message: str,
        details: Any = None,
        upstream_status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, details)
        self.upstream_status = upstream_status
        self.url = url

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["upstreamStatus"] = self.upstream_status
        return body


class UpstreamDirectoryError(VidToolError):
    """An admin API or Microsoft Graph query failed."""

    status_code = 502


class DirectoryPermissionError(UpstreamDirectoryError):
    """Graph refused the query for lack of application permissions."""

    status_code = 403

    REQUIRED_PERMISSIONS = [
        "User.Read.All (Application)",
        "Directory.Read.All (Application)",
    ]

    def __init__(self, client_id: Optional[str], details: Any = None):
        super().__init__(
            "Microsoft Graph API permissions required",
            details,
        )
        self.client_id = client_id

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["message"] = (
            "Please grant admin consent for User.Read.All and Directory.Read.All "
            "permissions in your App Registration."
        )
        body["permissionsHelp"] = {
            "required": self.REQUIRED_PERMISSIONS,
            "grantConsentUrl": (
                "https://portal.azure.com/#view/Microsoft_AAD_RegisteredApps/"
                f"ApplicationMenuBlade/~/CallAnAPI/appId/{self.client_id}/isMSAApp~/false"
            ),
        }
        return body


class NotFoundError(VidToolError):
    """Unknown or expired request identifier."""

    status_code = 404


__all__ = [
    "VidToolError",
    "ConfigurationError",
    "UpstreamAuthError",
    "UpstreamIssuanceError",
    "UpstreamDirectoryError",
    "DirectoryPermissionError",
    "NotFoundError",
]
