"""
Integration Tests for the Credential Routes
===========================================

Tests for vidtool/app/credentials/routes.py through the FastAPI app.

Test Coverage:
--------------
1. Operator session required on list / issue / status
2. Issue -> status pending -> callback -> status completed
3. Callback acknowledged for unknown requests
4. Callback api-key check
5. Error bodies for upstream and configuration failures

Run tests:
----------
    pytest vidtool/app/tests/test_credentials_routes.py -v
"""

import httpx
import pytest

from vidtool.app.tests.upstream import (
    ADMIN_API,
    PRIMARY_URL,
    app_client,
    issuance_error,
    issuance_success,
    make_settings,
)


CONTRACT_ID = "cf556239-b075-168d-f093-a3b1a388ae20"
ISSUE_BODY = {"credentialType": CONTRACT_ID, "userId": "user-1", "userEmail": "user@example.com"}


class TestOperatorRequired:

    @pytest.mark.parametrize("method, path", [
        ("GET", "/api/credentials/list"),
        ("POST", "/api/credentials/issue"),
        ("GET", "/api/credentials/status/req-1"),
    ])
    def test_requires_session(self, client, method, path):
        response = client.request(method, path, json=ISSUE_BODY)

        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"

    def test_invalid_bearer_token(self, client):
        response = client.get("/api/credentials/status/req-1", headers={"Authorization": "Bearer junk"})

        assert response.status_code == 401

    def test_session_cookie_accepted(self, client, operator_token, settings):
        client.cookies.set(settings.SESSION_COOKIE_NAME, operator_token)

        response = client.get("/api/credentials/status/req-1")

        assert response.status_code == 404


class TestIssuanceLifecycle:

    def test_issue_then_callback_completes(self, client, upstream, auth_headers):
        upstream.token()
        upstream.add("POST", PRIMARY_URL, issuance_success("openid-vc://wallet"))

        response = client.post("/api/credentials/issue", json=ISSUE_BODY, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["deepLink"] == "openid-vc://wallet"
        assert data["qrCodeUrl"].startswith("data:image/png;base64,")
        assert data["expiry"] == 1767225600
        assert len(data["pin"]) == 4
        assert f"Use PIN: {data['pin']}" in data["message"]
        request_id = data["requestId"]

        status = client.get(f"/api/credentials/status/{request_id}", headers=auth_headers).json()
        assert status["status"] == "pending"
        assert status["request"]["pinUsed"] is True

        ack = client.post("/api/credentials/callback", json={
            "requestId": "upstream-req",
            "requestStatus": "request_retrieved",
            "code": "request_retrieved",
            "state": request_id,
        })
        assert ack.status_code == 200
        assert ack.json() == {"status": "received"}

        status = client.get(f"/api/credentials/status/{request_id}", headers=auth_headers).json()
        assert status["status"] == "completed"
        assert status["request"]["completedAt"] is not None
        assert status["request"]["callbackData"]["requestStatus"] == "request_retrieved"

    def test_unknown_status_is_404(self, client, auth_headers):
        response = client.get("/api/credentials/status/unknown", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Request not found or expired"}

    def test_callback_for_unknown_request_is_acknowledged(self, client, context):
        response = client.post("/api/credentials/callback", json={"state": "ghost", "code": "request_retrieved"})

        assert response.status_code == 200
        assert len(context.store) == 0

    def test_upstream_refusal_returns_502(self, client, upstream, auth_headers):
        upstream.token()
        upstream.add("POST", PRIMARY_URL, issuance_error(500, "Contract is disabled"))

        response = client.post("/api/credentials/issue", json=ISSUE_BODY, headers=auth_headers)

        assert response.status_code == 502
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Error issuing credential"
        assert body["upstreamStatus"] == 500

    def test_blank_identifiers_rejected(self, client, auth_headers):
        response = client.post(
            "/api/credentials/issue",
            json={"credentialType": "  ", "userId": "user-1"},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_missing_credentials_returns_troubleshooting(self, upstream, auth_headers):
        settings = make_settings(AZURE_CLIENT_SECRET=None)

        with app_client(settings, upstream) as client:
            response = client.post("/api/credentials/issue", json=ISSUE_BODY, headers=auth_headers)

        assert response.status_code == 500
        body = response.json()
        assert "AZURE_CLIENT_SECRET" in body["troubleshooting"]["requiredConfig"]
        assert upstream.requests == []


class TestCallbackApiKey:

    @pytest.fixture
    def guarded(self, upstream):
        settings = make_settings(CALLBACK_API_KEY="callback-secret", CALLBACK_REQUIRE_API_KEY=True)
        with app_client(settings, upstream) as client:
            yield client

    def test_matching_key_accepted(self, guarded):
        response = guarded.post(
            "/api/credentials/callback",
            json={"state": "req-1", "code": "request_retrieved"},
            headers={"api-key": "callback-secret"},
        )

        assert response.status_code == 200

    @pytest.mark.parametrize("headers", [{}, {"api-key": "wrong"}])
    def test_missing_or_wrong_key_rejected(self, guarded, headers):
        response = guarded.post(
            "/api/credentials/callback",
            json={"state": "req-1", "code": "request_retrieved"},
            headers=headers,
        )

        assert response.status_code == 401

    def test_key_ignored_when_check_disabled(self, client):
        response = client.post(
            "/api/credentials/callback",
            json={"state": "req-1", "code": "request_retrieved"},
            headers={"api-key": "anything"},
        )

        assert response.status_code == 200


class TestCatalogRoute:

    def test_list(self, client, upstream, auth_headers):
        upstream.token()
        upstream.add("GET", f"{ADMIN_API}/authorities/auth-1/contracts", httpx.Response(200, json={
            "value": [{"id": "contract-1", "name": "Verified Employee"}],
        }))
        upstream.add("GET", f"{ADMIN_API}/authorities", httpx.Response(200, json={
            "value": [{"id": "auth-1", "name": "Contoso"}],
        }))

        response = client.get("/api/credentials/list", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["credentials"][0]["id"] == "contract-1"
        assert body["message"] == "1 credential types available for issuance"

    def test_development_operator_when_auth_disabled(self, upstream):
        settings = make_settings(REQUIRE_AUTH=False)
        upstream.token()
        upstream.add("GET", f"{ADMIN_API}/authorities", httpx.Response(200, json={"value": []}))

        with app_client(settings, upstream) as client:
            response = client.get("/api/credentials/list")

        assert response.status_code == 200
        assert response.json()["credentials"] == []
