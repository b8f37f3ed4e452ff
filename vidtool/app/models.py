"""
Data Models Module

This module defines Pydantic models for request/response validation
and the issuance tracking record kept in the request store.

Models are organized by functional area:
- Issuance tracking (status enum, stored request record)
- Credential issuance API (issue request/response, callback, status)
- Contract catalog (credential types offered for issuance)
- Directory users
- Admin (cleanup)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Provider status code meaning the wallet fetched the issuance request
REQUEST_RETRIEVED = "request_retrieved"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Issuance Tracking
# ============================================================================

class IssuanceStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class IssuanceRecord(BaseModel):
    """
    Tracking record for a single issuance request.

    Created pending when the request service accepts the issuance and
    resolved at most once by the provider callback.
    """

    requestId: str = Field(..., description="Generated request identifier (store key)")
    credentialType: str = Field(..., description="Contract identifier being issued")
    userId: str = Field(..., description="Directory object ID of the subject")
    userEmail: Optional[str] = Field(None, description="Subject e-mail address")
    status: IssuanceStatus = Field(default=IssuanceStatus.PENDING, description="Tracking status")
    createdAt: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    completedAt: Optional[datetime] = Field(None, description="Set on terminal transition")
    issuanceResponse: Optional[Dict[str, Any]] = Field(
        None, description="Request service response (url, expiry, ...)"
    )
    callbackData: Optional[Dict[str, Any]] = Field(None, description="Raw callback payload")
    pinUsed: bool = Field(default=False, description="Whether the issuance carries a PIN challenge")

    @property
    def is_terminal(self) -> bool:
        return self.status != IssuanceStatus.PENDING

    def resolve(
        self,
        code: Optional[str],
        payload: Dict[str, Any],
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Apply a provider callback.

        Args:
            code: Provider request status code
            payload: Full raw callback body
            at: Transition timestamp (defaults to now)

        Returns:
            False when the record was already terminal and nothing changed.
        """
        if self.is_terminal:
            return False

        self.status = (
            IssuanceStatus.COMPLETED if code == REQUEST_RETRIEVED else IssuanceStatus.ERROR
        )
        self.callbackData = payload
        self.completedAt = at or utcnow()
        return True

    def summary(self) -> Dict[str, Any]:
        return {
            "requestId": self.requestId,
            "credentialType": self.credentialType,
            "userId": self.userId,
            "status": self.status.value,
            "createdAt": self.createdAt.isoformat(),
            "completedAt": self.completedAt.isoformat() if self.completedAt else None,
        }


# ============================================================================
# Issuance API Models
# ============================================================================

class IssueCredentialRequest(BaseModel):
    """Operator request to issue a credential to a directory user."""

    credentialType: str = Field(..., description="Contract identifier", min_length=1)
    userId: str = Field(..., description="Directory object ID of the subject", min_length=1)
    userEmail: Optional[str] = Field(None, description="Subject e-mail address")
    claims: Optional[Dict[str, Any]] = Field(
        None, description="Operator-supplied claims (recorded, not sent upstream)"
    )

    @field_validator("credentialType", "userId")
    @classmethod
    def strip_identifier(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Identifier cannot be empty or only whitespace")
        return v


class IssueCredentialResponse(BaseModel):
    success: bool = True
    requestId: str
    qrCodeUrl: Optional[str] = Field(None, description="QR code as a PNG data URI")
    deepLink: Optional[str] = Field(None, description="Wallet deep link")
    expiry: Optional[int] = Field(None, description="Request expiry (epoch seconds)")
    pin: Optional[str] = Field(None, description="PIN the holder must type, when used")
    message: str


class IssuanceCallback(BaseModel):
    """Request service callback; unknown provider fields are kept."""

    model_config = ConfigDict(extra="allow")

    state: Optional[str] = None
    code: Optional[str] = None
    requestId: Optional[str] = None

    @property
    def correlation_id(self) -> Optional[str]:
        return self.state or self.requestId


class CallbackAck(BaseModel):
    status: str = "received"


class IssuanceStatusResponse(BaseModel):
    success: bool = True
    status: IssuanceStatus
    request: IssuanceRecord


# ============================================================================
# Contract Catalog Models
# ============================================================================

class ContractClaim(BaseModel):
    claim: Optional[str] = None
    label: Optional[str] = None
    type: Optional[str] = None
    required: bool = False


class CardStyling(BaseModel):
    backgroundColor: str = "#0066CC"
    textColor: str = "#FFFFFF"
    title: Optional[str] = None
    description: Optional[str] = None
    logo: Optional[Dict[str, Any]] = None


class CredentialType(BaseModel):
    """Issuable contract as presented to the operator."""

    id: str
    name: Optional[str] = None
    displayName: Optional[str] = None
    description: str
    type: List[str] = Field(default_factory=lambda: ["VerifiableCredential"])
    issuer: Optional[str] = None
    status: Optional[str] = None
    styling: CardStyling
    claims: List[ContractClaim] = Field(default_factory=list)


# ============================================================================
# Directory Models
# ============================================================================

class DirectoryUser(BaseModel):
    id: str
    displayName: Optional[str] = None
    email: Optional[str] = None
    userPrincipalName: Optional[str] = None
    jobTitle: Optional[str] = None
    department: Optional[str] = None
    userType: Optional[str] = None
    officeLocation: Optional[str] = None
    mobilePhone: Optional[str] = None
    businessPhones: Optional[List[str]] = None
    createdDateTime: Optional[str] = None


class UserSearchFilters(BaseModel):
    displayName: Optional[str] = None
    department: Optional[str] = None
    jobTitle: Optional[str] = None


class UserSearchRequest(BaseModel):
    filters: Optional[UserSearchFilters] = None
    top: int = Field(default=20, ge=1, le=999)
    skip: int = Field(default=0, ge=0)


# ============================================================================
# Admin Models
# ============================================================================

class CleanupRequest(BaseModel):
    olderThanHours: float = Field(default=24, ge=0, allow_inf_nan=False, description="Age threshold in hours")


class CleanupResponse(BaseModel):
    success: bool = True
    message: str
    deletedCount: int
