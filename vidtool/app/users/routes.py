"""
Directory user endpoints.

- GET  /list?search&top
- POST /search
- GET  /{user_id}
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..auth.session import require_operator
from ..context import AppContext, get_context
from ..models import UserSearchRequest

logger = logging.getLogger(__name__)

users_router = APIRouter()


@users_router.get("/list")
async def list_users(
    search: Optional[str] = Query(None, description="Prefix of display name, UPN or mail"),
    top: int = Query(50, ge=1, le=999),
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    search = search.strip() if search else None
    return await context.directory.list_users(search=search or None, top=top)


@users_router.post("/search")
async def search_users(
    search_request: UserSearchRequest,
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    return await context.directory.search_users(
        filters=search_request.filters,
        top=search_request.top,
        skip=search_request.skip,
    )


@users_router.get("/{user_id}")
async def get_user(
    user_id: str,
    operator: Dict[str, Any] = Depends(require_operator),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    user = await context.directory.get_user(user_id)
    return {"success": True, "user": user.model_dump()}
