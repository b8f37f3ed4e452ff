"""
Contract Catalog

Lists the credential types an operator can issue by walking the Verified ID
admin API: every authority in the tenant, then every contract of each
authority.
"""

import logging
from typing import Any, Dict, List

import httpx

from ..config import Settings
from ..errors import UpstreamDirectoryError
from ..models import CardStyling, ContractClaim, CredentialType
from .tokens import TokenProvider

logger = logging.getLogger(__name__)


def extract_claims_from_contract(contract: Dict[str, Any]) -> List[ContractClaim]:
    """Claims declared on the contract's first display."""
    displays = contract.get("displays") or []
    if not displays:
        return []

    return [
        ContractClaim(
            claim=info.get("claim"),
            label=info.get("label"),
            type=info.get("type"),
            required=False,
        )
        for info in displays[0].get("claims") or []
    ]


def card_styling(contract: Dict[str, Any]) -> CardStyling:
    displays = contract.get("displays") or []
    card = displays[0].get("card") if displays else None
    name = contract.get("name")

    if not card:
        return CardStyling(title=name, description=f"Verifiable credential: {name}")

    return CardStyling(
        backgroundColor=card.get("backgroundColor") or "#0066CC",
        textColor=card.get("textColor") or "#FFFFFF",
        title=card.get("title"),
        description=card.get("description"),
        logo=card.get("logo"),
    )


def to_credential_type(contract: Dict[str, Any], authority: Dict[str, Any]) -> CredentialType:
    rules = contract.get("rules") or {}
    vc_type = (rules.get("vc") or {}).get("type") or ["VerifiableCredential"]
    authority_name = authority.get("name")

    return CredentialType(
        id=contract["id"],
        name=contract.get("name"),
        displayName=contract.get("name"),
        description=f"Verifiable credential managed by authority: {authority_name}",
        type=vc_type,
        issuer=authority_name,
        status=contract.get("status"),
        styling=card_styling(contract),
        claims=extract_claims_from_contract(contract),
    )


class ContractCatalog:
    """Read-only view of the tenant's Verified ID contracts."""

    def __init__(self, settings: Settings, token_provider: TokenProvider, client: httpx.AsyncClient):
        self._settings = settings
        self._token_provider = token_provider
        self._client = client

    async def _get(self, path: str, token: str) -> List[Dict[str, Any]]:
        url = f"{self._settings.VERIFIABLE_CREDENTIALS_ENDPOINT.rstrip('/')}{path}"
        response = await self._client.get(
            url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=self._settings.UPSTREAM_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return response.json().get("value") or []

    async def list_credential_types(self) -> List[CredentialType]:
        """
        Return every contract of every authority as a credential type.

        A failing authority is logged and skipped; failing to list the
        authorities themselves raises UpstreamDirectoryError.
        """
        token = await self._token_provider.acquire_token(self._settings.VERIFIABLE_CREDENTIALS_API_SCOPE)

        try:
            authorities = await self._get("/authorities", token)
        except httpx.HTTPStatusError as e:
            logger.error(
                "Failed to list authorities",
                extra={"status_code": e.response.status_code}
            )
            raise UpstreamDirectoryError(
                "Failed to retrieve credentials list", details=_error_body(e.response)
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to list authorities: {e}")
            raise UpstreamDirectoryError("Failed to retrieve credentials list", details=str(e)) from e

        logger.info(f"Found {len(authorities)} authorities in tenant")

        credentials: List[CredentialType] = []
        for authority in authorities:
            try:
                contracts = await self._get(f"/authorities/{authority['id']}/contracts", token)
            except (httpx.HTTPError, ValueError) as e:
                logger.error(
                    f"Error fetching contracts for authority {authority.get('id')}: {e}",
                    extra={"authority_id": authority.get("id")}
                )
                continue

            logger.info(f"Authority \"{authority.get('name')}\" has {len(contracts)} contracts")
            credentials.extend(to_credential_type(contract, authority) for contract in contracts)

        logger.info(f"Retrieved {len(credentials)} credential types")
        return credentials


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
