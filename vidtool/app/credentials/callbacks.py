"""Correlates request service callbacks with stored issuance records."""

import logging
from typing import Optional

from ..models import IssuanceCallback, IssuanceRecord
from .store import RequestStore

logger = logging.getLogger(__name__)


async def handle_callback(store: RequestStore, callback: IssuanceCallback) -> Optional[IssuanceRecord]:
    """
    Apply a provider callback to the matching record.

    Unknown, expired and already-resolved requests are acknowledged without
    touching the store.

    Returns:
        The updated record, or None when nothing changed.
    """
    request_id = callback.correlation_id
    payload = callback.model_dump(mode="json")

    if not request_id:
        logger.warning("Callback without state or requestId ignored", extra={"code": callback.code})
        return None

    record = await store.get(request_id)
    if record is None:
        logger.info(
            "Callback for unknown or expired request",
            extra={"request_id": request_id, "code": callback.code}
        )
        return None

    if not record.resolve(callback.code, payload):
        logger.info(
            "Callback for request already resolved, ignoring",
            extra={"request_id": request_id, "code": callback.code, "status": record.status.value}
        )
        return None

    await store.put(request_id, record)

    logger.info(
        f"Issuance callback received for state: {request_id}",
        extra={"request_id": request_id, "code": callback.code, "status": record.status.value}
    )
    return record
