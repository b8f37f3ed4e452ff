"""
Directory Client

Microsoft Graph user queries used to pick the subject of an issuance.

Only enabled member accounts are requested; conference rooms, service
accounts and entries without a mail address or display name are removed
client-side because Graph cannot express those conditions in $filter.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from ..config import Settings
from ..errors import DirectoryPermissionError, NotFoundError, UpstreamDirectoryError
from ..models import DirectoryUser, UserSearchFilters
from ..credentials.tokens import TokenProvider

logger = logging.getLogger(__name__)


BASE_FILTER = "userType eq 'Member' and accountEnabled eq true"
USER_SELECT = "id,displayName,userPrincipalName,mail,jobTitle,department,userType,accountEnabled"

ROOM_MARKERS = ("room", "conf", "meeting", "salle", "conference")
SERVICE_UPN_PREFIXES = ("svc-", "service", "admin")
SERVICE_UPN_MARKERS = ("noreply", "no-reply")
SERVICE_NAME_MARKERS = ("service", "system", "sync", "admin", "test", "mailbox")


def escape_odata(value: str) -> str:
    """Quote-escape a value for use inside an OData string literal."""
    return value.replace("'", "''")


def is_issuable_user(user: Dict[str, Any]) -> bool:
    """True for enabled members that look like a person with a mailbox."""
    display_name = (user.get("displayName") or "").lower()
    upn = (user.get("userPrincipalName") or "").lower()

    if any(marker in display_name for marker in ROOM_MARKERS):
        return False

    if upn.startswith(SERVICE_UPN_PREFIXES) or any(m in upn for m in SERVICE_UPN_MARKERS):
        return False
    if any(marker in display_name for marker in SERVICE_NAME_MARKERS):
        return False

    return bool(
        user.get("mail")
        and user.get("userType") == "Member"
        and user.get("accountEnabled")
        and user.get("displayName")
        and not display_name.startswith("__")
    )


def to_directory_user(user: Dict[str, Any]) -> DirectoryUser:
    return DirectoryUser(
        id=user["id"],
        displayName=user.get("displayName"),
        email=user.get("mail") or user.get("userPrincipalName"),
        userPrincipalName=user.get("userPrincipalName"),
        jobTitle=user.get("jobTitle"),
        department=user.get("department"),
        userType=user.get("userType"),
        officeLocation=user.get("officeLocation"),
        mobilePhone=user.get("mobilePhone"),
        businessPhones=user.get("businessPhones"),
        createdDateTime=user.get("createdDateTime"),
    )


def search_filter(search: Optional[str]) -> str:
    if not search:
        return BASE_FILTER

    term = escape_odata(search)
    return (
        f"({BASE_FILTER}) and (startswith(displayName,'{term}') "
        f"or startswith(userPrincipalName,'{term}') or startswith(mail,'{term}'))"
    )


def filters_to_odata(filters: Optional[UserSearchFilters]) -> str:
    clauses = [BASE_FILTER]
    if filters:
        if filters.displayName:
            clauses.append(f"startswith(displayName,'{escape_odata(filters.displayName)}')")
        if filters.department:
            clauses.append(f"department eq '{escape_odata(filters.department)}'")
        if filters.jobTitle:
            clauses.append(f"startswith(jobTitle,'{escape_odata(filters.jobTitle)}')")
    return " and ".join(clauses)


class DirectoryClient:
    """Graph user queries with the tool's service identity."""

    def __init__(self, settings: Settings, token_provider: TokenProvider, client: httpx.AsyncClient):
        self._settings = settings
        self._token_provider = token_provider
        self._client = client

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = await self._token_provider.acquire_token(self._settings.GRAPH_API_SCOPE)
        url = f"{self._settings.GRAPH_API_URL.rstrip('/')}{path}"

        try:
            response = await self._client.get(
                url,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                timeout=self._settings.UPSTREAM_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.error(f"Graph request failed: {e}", extra={"path": path})
            raise UpstreamDirectoryError("Error retrieving users", details=str(e)) from e

        if response.is_success:
            return response.json()

        try:
            details: Any = response.json()
        except ValueError:
            details = response.text

        if response.status_code in (400, 403):
            logger.error(
                "Graph API permissions issue detected",
                extra={"status_code": response.status_code, "path": path}
            )
            raise DirectoryPermissionError(self._settings.AZURE_CLIENT_ID, details)

        if response.status_code == 404:
            raise NotFoundError("User not found", details)

        logger.error("Graph request rejected", extra={"status_code": response.status_code, "path": path})
        raise UpstreamDirectoryError("Error retrieving users", details=details)

    async def _query(self, odata_filter: str, top: int, skip: int = 0) -> Tuple[List[DirectoryUser], int]:
        params: Dict[str, Any] = {
            "$top": top,
            "$select": USER_SELECT,
            "$filter": odata_filter,
        }
        if skip:
            params["$skip"] = skip

        data = await self._get("/users", params)
        raw_users = data.get("value") or []
        users = [to_directory_user(u) for u in raw_users if is_issuable_user(u)]
        return users, len(raw_users) - len(users)

    async def list_users(self, search: Optional[str] = None, top: int = 50) -> Dict[str, Any]:
        """
        List issuable users, optionally by display name / UPN / mail prefix.

        Raises:
            DirectoryPermissionError: Graph refused for lack of permissions
            UpstreamDirectoryError: Any other Graph failure
        """
        users, filtered_out = await self._query(search_filter(search), top)
        return _user_page(users, filtered_out)

    async def search_users(
        self,
        filters: Optional[UserSearchFilters] = None,
        top: int = 20,
        skip: int = 0,
    ) -> Dict[str, Any]:
        users, filtered_out = await self._query(filters_to_odata(filters), top, skip)
        return _user_page(users, filtered_out)

    async def get_user(self, user_id: str) -> DirectoryUser:
        data = await self._get(f"/users/{quote(user_id, safe='')}")
        return to_directory_user(data)


def _user_page(users: List[DirectoryUser], filtered_out: int) -> Dict[str, Any]:
    return {
        "success": True,
        "users": [u.model_dump(exclude_none=True) for u in users],
        "totalCount": len(users),
        "message": (
            f"Filtered out {filtered_out} service accounts/conference rooms"
            if filtered_out else None
        ),
    }
