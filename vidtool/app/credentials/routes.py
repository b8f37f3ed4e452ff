"""
Credential Routes
=================

Endpoints:
----------
- GET  /list:                Credential types available for issuance
- POST /issue:               Issue a credential to a directory user
- POST /callback:            Request service callback (no operator session)
- GET  /status/{requestId}:  Tracking record of an issuance request
"""

import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from ..auth.session import require_operator
from ..context import AppContext, get_context
from ..errors import NotFoundError
from ..models import (
    CallbackAck,
    IssuanceCallback,
    IssuanceStatusResponse,
    IssueCredentialRequest,
    IssueCredentialResponse,
)
from .callbacks import handle_callback

logger = logging.getLogger(__name__)

credentials_router = APIRouter()


@credentials_router.get("/list")
async def list_credentials(
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    credentials = await context.catalog.list_credential_types()
    return {
        "success": True,
        "credentials": [c.model_dump() for c in credentials],
        "message": f"{len(credentials)} credential types available for issuance",
    }


@credentials_router.post("/issue", response_model=IssueCredentialResponse)
async def issue_credential(
    issue_request: IssueCredentialRequest,
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> IssueCredentialResponse:
    """
    Issue a credential and return what the holder needs to claim it.

    The tracking record is stored before this returns, so the callback and
    status endpoints can find it immediately.
    """
    logger.info(
        f"Issuing credential {issue_request.credentialType} for user {issue_request.userId}",
        extra={"operator_email": operator.get("email")}
    )

    result = await context.issuance.issue(
        credential_type=issue_request.credentialType,
        user_id=issue_request.userId,
        user_email=issue_request.userEmail,
        claims=issue_request.claims,
    )

    return IssueCredentialResponse(
        requestId=result.request_id,
        qrCodeUrl=result.qr_image,
        deepLink=result.deep_link,
        expiry=result.expiry,
        pin=result.pin_used,
        message=result.message,
    )


@credentials_router.post("/callback", response_model=CallbackAck)
async def issuance_callback(
    callback: IssuanceCallback,
    api_key: Optional[str] = Header(None, alias="api-key"),
    context: AppContext = Depends(get_context),
) -> CallbackAck:
    """
    Receive a request service callback.

    Always acknowledged, including for unknown or expired requests, unless
    the api-key check is enabled and fails.
    """
    settings = context.settings
    if settings.CALLBACK_REQUIRE_API_KEY:
        expected = settings.CALLBACK_API_KEY or ""
        if not api_key or not expected or not secrets.compare_digest(api_key, expected):
            logger.warning("Callback rejected: api-key mismatch", extra={"state": callback.state})
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid callback api-key"
            )

    await handle_callback(context.store, callback)
    return CallbackAck()


@credentials_router.get("/status/{request_id}", response_model=IssuanceStatusResponse)
async def issuance_status(
    request_id: str,
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> IssuanceStatusResponse:
    record = await context.store.get(request_id)
    if record is None:
        raise NotFoundError("Request not found or expired")

    return IssuanceStatusResponse(status=record.status, request=record)
