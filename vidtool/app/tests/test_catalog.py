"""
Unit Tests for the Contract Catalog
===================================

Tests for vidtool/app/credentials/catalog.py

Run tests:
----------
    pytest vidtool/app/tests/test_catalog.py -v
"""

import httpx
import pytest

from vidtool.app.credentials.catalog import ContractCatalog, card_styling, to_credential_type
from vidtool.app.credentials.tokens import TokenProvider
from vidtool.app.errors import UpstreamDirectoryError
from vidtool.app.tests.upstream import ADMIN_API


AUTHORITY = {"id": "auth-1", "name": "Contoso Issuer", "didModel": {"did": "did:web:contoso.example"}}

CONTRACT = {
    "id": "contract-1",
    "name": "Verified Employee",
    "status": "Enabled",
    "rules": {"vc": {"type": ["VerifiedEmployee"]}},
    "displays": [{
        "card": {
            "title": "Verified Employee",
            "backgroundColor": "#000000",
            "textColor": "#ffffff",
            "description": "Employee card",
            "logo": {"uri": "https://contoso.example/logo.png"},
        },
        "claims": [
            {"claim": "vc.credentialSubject.givenName", "label": "Name", "type": "String"},
        ],
    }],
}


@pytest.fixture
def catalog(settings, http_client, upstream):
    upstream.token()
    return ContractCatalog(settings, TokenProvider(settings, http_client), http_client)


class TestMapping:

    def test_to_credential_type(self):
        credential = to_credential_type(CONTRACT, AUTHORITY)

        assert credential.id == "contract-1"
        assert credential.displayName == "Verified Employee"
        assert credential.issuer == "Contoso Issuer"
        assert credential.description == "Verifiable credential managed by authority: Contoso Issuer"
        assert credential.type == ["VerifiedEmployee"]
        assert credential.styling.backgroundColor == "#000000"
        assert credential.claims[0].claim == "vc.credentialSubject.givenName"
        assert credential.claims[0].required is False

    def test_defaults_without_display(self):
        credential = to_credential_type({"id": "c-2", "name": "Bare"}, AUTHORITY)

        assert credential.type == ["VerifiableCredential"]
        assert credential.claims == []
        assert credential.styling.backgroundColor == "#0066CC"
        assert credential.styling.description == "Verifiable credential: Bare"

    def test_card_styling_fills_missing_colors(self):
        styling = card_styling({"displays": [{"card": {"title": "T"}}]})

        assert styling.title == "T"
        assert styling.textColor == "#FFFFFF"


class TestListCredentialTypes:

    @pytest.mark.asyncio
    async def test_walks_every_authority(self, catalog, upstream):
        upstream.add("GET", f"{ADMIN_API}/authorities/auth-1/contracts", httpx.Response(200, json={"value": [CONTRACT]}))
        upstream.add("GET", f"{ADMIN_API}/authorities/auth-2/contracts", httpx.Response(200, json={"value": []}))
        upstream.add("GET", f"{ADMIN_API}/authorities", httpx.Response(200, json={
            "value": [AUTHORITY, {"id": "auth-2", "name": "Empty"}],
        }))

        credentials = await catalog.list_credential_types()

        assert [c.id for c in credentials] == ["contract-1"]
        assert upstream.calls("GET", ADMIN_API)[0].headers["Authorization"] == "Bearer upstream-token"

    @pytest.mark.asyncio
    async def test_failing_authority_is_skipped(self, catalog, upstream):
        upstream.add("GET", f"{ADMIN_API}/authorities/auth-1/contracts", httpx.Response(200, json={"value": [CONTRACT]}))
        upstream.add("GET", f"{ADMIN_API}/authorities/auth-2/contracts", httpx.Response(500, json={"error": "boom"}))
        upstream.add("GET", f"{ADMIN_API}/authorities", httpx.Response(200, json={
            "value": [AUTHORITY, {"id": "auth-2", "name": "Broken"}],
        }))

        credentials = await catalog.list_credential_types()

        assert [c.id for c in credentials] == ["contract-1"]

    @pytest.mark.asyncio
    async def test_authority_listing_failure_raises(self, catalog, upstream):
        upstream.add("GET", f"{ADMIN_API}/authorities", httpx.Response(403, json={"error": {"code": "Forbidden"}}))

        with pytest.raises(UpstreamDirectoryError) as exc_info:
            await catalog.list_credential_types()

        assert exc_info.value.message == "Failed to retrieve credentials list"
        assert exc_info.value.details == {"error": {"code": "Forbidden"}}

    @pytest.mark.asyncio
    async def test_authority_with_unreadable_body_is_skipped(self, catalog, upstream):
        upstream.add("GET", f"{ADMIN_API}/authorities/auth-1/contracts", httpx.Response(200, json={"value": [CONTRACT]}))
        upstream.add("GET", f"{ADMIN_API}/authorities/auth-2/contracts", httpx.Response(200, text="<html>gateway</html>"))
        upstream.add("GET", f"{ADMIN_API}/authorities", httpx.Response(200, json={
            "value": [AUTHORITY, {"id": "auth-2", "name": "Garbled"}],
        }))

        credentials = await catalog.list_credential_types()

        assert [c.id for c in credentials] == ["contract-1"]

    @pytest.mark.asyncio
    async def test_unreadable_authority_listing_raises(self, catalog, upstream):
        upstream.add("GET", f"{ADMIN_API}/authorities", httpx.Response(200, text="not json"))

        with pytest.raises(UpstreamDirectoryError) as exc_info:
            await catalog.list_credential_types()

        assert exc_info.value.message == "Failed to retrieve credentials list"
