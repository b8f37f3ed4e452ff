"""
Admin Routes
============

Endpoints:
----------
- GET    /stats:         Request counts by status and recent activity
- GET    /logs:          Request records, filterable by status and contract
- POST   /cleanup:       Delete records older than a threshold
- GET    /test-config:   Configuration report
- GET    /troubleshoot:  Store status, recent errors, process snapshot
- GET    /console-logs:  Captured log entries
- DELETE /console-logs:  Clear captured log entries
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..auth.session import require_operator
from ..config import validate_configuration
from ..context import AppContext, get_context
from ..models import CleanupRequest, CleanupResponse, IssuanceStatus, utcnow
from . import stats

logger = logging.getLogger(__name__)

admin_router = APIRouter()

# Level names accepted from operators, mapped to logging level names
LEVEL_ALIASES = {"warn": "warning", "fatal": "critical"}


@admin_router.get("/stats")
async def get_stats(
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    records = await context.store.list_all()
    return {"success": True, "stats": stats.summarize(records)}


@admin_router.get("/logs")
async def get_logs(
    limit: int = Query(50, ge=0, le=1000),
    status: Optional[IssuanceStatus] = Query(None),
    credential_type: Optional[str] = Query(None, alias="credentialType"),
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    records = await context.store.list_all()
    return {
        "success": True,
        "logs": stats.filter_records(
            records,
            status=status,
            credential_type=credential_type,
            limit=limit,
            include_response=context.settings.is_development,
        ),
    }


@admin_router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    cleanup_request: Optional[CleanupRequest] = Body(None),
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> CleanupResponse:
    cleanup_request = cleanup_request or CleanupRequest()
    try:
        cutoff = utcnow() - timedelta(hours=cleanup_request.olderThanHours)
    except OverflowError:
        # Threshold reaches past the earliest representable date; nothing is that old
        cutoff = datetime.min.replace(tzinfo=timezone.utc)

    deleted = await context.store.delete_older_than(cutoff)

    logger.info(
        f"Cleanup removed {deleted} records",
        extra={"older_than_hours": cleanup_request.olderThanHours, "operator_email": operator.get("email")}
    )
    return CleanupResponse(message=f"{deleted} entries deleted", deletedCount=deleted)


@admin_router.get("/test-config")
async def test_config(
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    return {"success": True, **validate_configuration(context.settings)}


@admin_router.get("/troubleshoot")
async def get_troubleshoot(
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    records = await context.store.list_all()
    keys = await context.store.keys()
    return {
        "success": True,
        "troubleshoot": stats.troubleshoot(records, keys, context.uptime_seconds),
    }


@admin_router.get("/console-logs")
async def get_console_logs(
    level: Optional[str] = Query(None, description="info, warning, error, debug"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    since: Optional[datetime] = Query(None, description="ISO 8601 timestamp"),
    limit: Optional[int] = Query(None, ge=0),
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    if level:
        level = LEVEL_ALIASES.get(level.lower(), level.lower())

    entries = context.log_buffer.entries(
        level=level,
        session_id=session_id,
        since=since,
        limit=limit,
    )
    return {"success": True, "logs": entries, "count": len(entries)}


@admin_router.delete("/console-logs")
async def clear_console_logs(
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    context.log_buffer.clear()
    return {"success": True, "message": "Console logs cleared"}
