"""
Statistics and troubleshooting views over the request store.

Pure functions of the records passed in; nothing here keeps state.
"""

import os
import platform
import sys
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from ..models import IssuanceRecord, IssuanceStatus

RECENT_ACTIVITY_LIMIT = 10
RECENT_ERRORS_LIMIT = 5
CACHE_KEYS_LIMIT = 10


def newest_first(records: Iterable[IssuanceRecord]) -> List[IssuanceRecord]:
    return sorted(records, key=lambda r: r.createdAt, reverse=True)


def summarize(records: Iterable[IssuanceRecord]) -> Dict[str, Any]:
    """Counts by status plus the most recent requests."""
    records = newest_first(records)
    counts = Counter(r.status for r in records)

    return {
        "totalRequests": len(records),
        "completedRequests": counts[IssuanceStatus.COMPLETED],
        "pendingRequests": counts[IssuanceStatus.PENDING],
        "errorRequests": counts[IssuanceStatus.ERROR],
        "recentActivity": [r.summary() for r in records[:RECENT_ACTIVITY_LIMIT]],
    }


def filter_records(
    records: Iterable[IssuanceRecord],
    status: Optional[IssuanceStatus] = None,
    credential_type: Optional[str] = None,
    limit: int = 50,
    include_response: bool = False,
) -> List[Dict[str, Any]]:
    """Record listing for the admin logs view, newest first."""
    selected = [
        r for r in newest_first(records)
        if (status is None or r.status == status)
        and (credential_type is None or r.credentialType == credential_type)
    ]

    exclude = None if include_response else {"issuanceResponse"}
    return [r.model_dump(mode="json", exclude=exclude) for r in selected[:max(limit, 0)]]


def _upstream_error(record: IssuanceRecord) -> Any:
    response = record.issuanceResponse or {}
    return response.get("error") or "Unknown error"


def environment_snapshot(uptime_seconds: float) -> Dict[str, Any]:
    return {
        "pythonVersion": platform.python_version(),
        "implementation": platform.python_implementation(),
        "platform": sys.platform,
        "pid": os.getpid(),
        "uptime": round(uptime_seconds, 3),
    }


def troubleshoot(
    records: Iterable[IssuanceRecord],
    keys: List[str],
    uptime_seconds: float,
) -> Dict[str, Any]:
    """Store status, latest errors and a process snapshot."""
    records = newest_first(records)
    errors = [r for r in records if r.status == IssuanceStatus.ERROR]

    return {
        "cacheStatus": {
            "totalEntries": len(records),
            "errorEntries": len(errors),
            "cacheKeys": keys[:CACHE_KEYS_LIMIT],
        },
        "recentErrors": [
            {
                "requestId": r.requestId,
                "credentialType": r.credentialType,
                "createdAt": r.createdAt.isoformat(),
                "callbackData": r.callbackData,
                "error": _upstream_error(r),
            }
            for r in errors[:RECENT_ERRORS_LIMIT]
        ],
        "environment": environment_snapshot(uptime_seconds),
    }
