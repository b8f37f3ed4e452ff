"""
Unit Tests for the Issuance Orchestrator
========================================

Tests for vidtool/app/credentials/issuance.py

Test Coverage:
--------------
1. Success with PIN on the primary endpoint
2. PIN rejected -> retry without PIN on the same endpoint
3. 404 on primary -> alternate endpoint, with then without PIN
4. Other failures stop immediately with UpstreamIssuanceError
5. Exactly one store write, only after success
6. Contracts configured without PIN
7. Failure classification helpers

Run tests:
----------
    pytest vidtool/app/tests/test_issuance.py -v
"""

import httpx
import pytest

from vidtool.app.credentials.contracts import ContractRegistry
from vidtool.app.credentials.issuance import (
    IssuanceAttemptError,
    IssuanceService,
    generate_pin,
    is_pin_related,
)
from vidtool.app.credentials.store import RequestStore
from vidtool.app.credentials.tokens import TokenProvider
from vidtool.app.errors import ConfigurationError, UpstreamAuthError, UpstreamIssuanceError
from vidtool.app.models import IssuanceStatus
from vidtool.app.tests.upstream import (
    ALTERNATE_URL,
    PRIMARY_URL,
    TOKEN_URL,
    issuance_error,
    issuance_success,
    json_body,
    make_settings,
)


ATTESTATION_CONTRACT = "cf556239-b075-168d-f093-a3b1a388ae20"
FIXED_PIN = {"value": "4821", "length": 4}


class RecordingStore(RequestStore):
    def __init__(self):
        super().__init__(ttl_seconds=600)
        self.put_calls = 0

    async def put(self, request_id, record):
        self.put_calls += 1
        await super().put(request_id, record)


@pytest.fixture
def store():
    return RecordingStore()


def build_service(settings, http_client, store, registry=None):
    return IssuanceService(
        settings=settings,
        token_provider=TokenProvider(settings, http_client),
        registry=registry or ContractRegistry(),
        store=store,
        client=http_client,
        qr_renderer=lambda url: f"data:image/png;base64,QR({url})",
        pin_factory=lambda: dict(FIXED_PIN),
        id_factory=lambda: "req-fixed",
    )


@pytest.fixture
def service(settings, http_client, store, upstream):
    upstream.token()
    return build_service(settings, http_client, store)


def issuance_posts(upstream):
    return [r for r in upstream.requests if str(r.url) in (PRIMARY_URL, ALTERNATE_URL)]


# ============================================================================
# Attempt Sequence
# ============================================================================

class TestAttemptSequence:

    @pytest.mark.asyncio
    async def test_success_with_pin_on_primary(self, service, upstream, store):
        upstream.add("POST", PRIMARY_URL, issuance_success("openid-vc://deep-link"))

        result = await service.issue(ATTESTATION_CONTRACT, "user-1", "user@example.com")

        assert result.request_id == "req-fixed"
        assert result.pin_used == "4821"
        assert result.deep_link == "openid-vc://deep-link"
        assert result.qr_image == "data:image/png;base64,QR(openid-vc://deep-link)"
        assert result.expiry == 1767225600
        assert "Use PIN: 4821" in result.message

        posts = issuance_posts(upstream)
        assert len(posts) == 1
        assert json_body(posts[0])["pin"] == FIXED_PIN
        assert posts[0].headers["Authorization"] == "Bearer upstream-token"

    @pytest.mark.asyncio
    async def test_pin_not_supported_retries_without_pin(self, service, upstream):
        upstream.add(
            "POST", PRIMARY_URL,
            issuance_error(400, "PIN not supported for this contract"),
            issuance_success(),
        )

        result = await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert result.pin_used is None
        assert "Use PIN" not in result.message
        posts = issuance_posts(upstream)
        assert [str(p.url) for p in posts] == [PRIMARY_URL, PRIMARY_URL]
        assert "pin" in json_body(posts[0])
        assert "pin" not in json_body(posts[1])

    @pytest.mark.asyncio
    async def test_pin_message_with_other_status_still_retries(self, service, upstream):
        upstream.add(
            "POST", PRIMARY_URL,
            issuance_error(422, "The pin field is invalid"),
            issuance_success(),
        )

        result = await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert result.pin_used is None
        assert len(issuance_posts(upstream)) == 2

    @pytest.mark.asyncio
    async def test_retry_without_pin_failing_propagates(self, service, upstream, store):
        upstream.add(
            "POST", PRIMARY_URL,
            issuance_error(400, "PIN not supported"),
            issuance_error(500, "Internal failure"),
        )

        with pytest.raises(UpstreamIssuanceError) as exc_info:
            await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert exc_info.value.upstream_status == 500
        assert exc_info.value.url == PRIMARY_URL
        assert len(issuance_posts(upstream)) == 2
        assert store.put_calls == 0

    @pytest.mark.asyncio
    async def test_404_falls_back_to_alternate_endpoint(self, service, upstream):
        upstream.add("POST", PRIMARY_URL, issuance_error(404, "Resource not found", code="notFound"))
        upstream.add("POST", ALTERNATE_URL, issuance_success())

        result = await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert result.pin_used == "4821"
        posts = issuance_posts(upstream)
        assert [str(p.url) for p in posts] == [PRIMARY_URL, ALTERNATE_URL]
        assert json_body(posts[1])["pin"] == FIXED_PIN

    @pytest.mark.asyncio
    async def test_alternate_endpoint_drops_pin_on_pin_error(self, service, upstream):
        upstream.add("POST", PRIMARY_URL, issuance_error(404, "Resource not found"))
        upstream.add(
            "POST", ALTERNATE_URL,
            issuance_error(400, "Bad request"),
            issuance_success(),
        )

        result = await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert result.pin_used is None
        posts = issuance_posts(upstream)
        assert [str(p.url) for p in posts] == [PRIMARY_URL, ALTERNATE_URL, ALTERNATE_URL]
        assert "pin" not in json_body(posts[2])

    @pytest.mark.asyncio
    async def test_404_on_alternate_endpoint_is_terminal(self, service, upstream):
        upstream.add("POST", PRIMARY_URL, issuance_error(404, "Resource not found"))
        upstream.add("POST", ALTERNATE_URL, issuance_error(404, "Resource not found"))

        with pytest.raises(UpstreamIssuanceError) as exc_info:
            await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert exc_info.value.upstream_status == 404
        assert exc_info.value.url == ALTERNATE_URL
        assert len(issuance_posts(upstream)) == 2

    @pytest.mark.asyncio
    async def test_404_after_pin_retry_is_terminal(self, service, upstream):
        upstream.add(
            "POST", PRIMARY_URL,
            issuance_error(400, "PIN not supported"),
            issuance_error(404, "Resource not found"),
        )

        with pytest.raises(UpstreamIssuanceError):
            await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert upstream.calls("POST", ALTERNATE_URL) == []

    @pytest.mark.asyncio
    async def test_other_failure_stops_immediately(self, service, upstream, store):
        upstream.add("POST", PRIMARY_URL, issuance_error(500, "Service unavailable"))

        with pytest.raises(UpstreamIssuanceError) as exc_info:
            await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert exc_info.value.upstream_status == 500
        assert exc_info.value.details["error"]["message"] == "Service unavailable"
        assert len(issuance_posts(upstream)) == 1
        assert store.put_calls == 0

    @pytest.mark.asyncio
    async def test_network_error_is_other_failure(self, service, upstream):
        upstream.add("POST", PRIMARY_URL, httpx.ReadTimeout("timed out"))

        with pytest.raises(UpstreamIssuanceError) as exc_info:
            await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert exc_info.value.upstream_status is None
        assert len(issuance_posts(upstream)) == 1


# ============================================================================
# Store Interaction
# ============================================================================

class TestRecording:

    @pytest.mark.asyncio
    async def test_single_pending_record_after_fallbacks(self, service, upstream, store):
        upstream.add("POST", PRIMARY_URL, issuance_error(404, "Resource not found"))
        upstream.add(
            "POST", ALTERNATE_URL,
            issuance_error(400, "PIN not supported"),
            issuance_success(),
        )

        result = await service.issue(ATTESTATION_CONTRACT, "user-1", "user@example.com")

        assert store.put_calls == 1
        records = await store.list_all()
        assert len(records) == 1
        record = records[0]
        assert record.requestId == result.request_id
        assert record.status == IssuanceStatus.PENDING
        assert record.userEmail == "user@example.com"
        assert record.pinUsed is False
        assert record.completedAt is None
        assert record.issuanceResponse["url"] == result.deep_link

    @pytest.mark.asyncio
    async def test_callback_state_is_request_id(self, service, upstream):
        upstream.add("POST", PRIMARY_URL, issuance_success())

        await service.issue(ATTESTATION_CONTRACT, "user-1")

        body = json_body(issuance_posts(upstream)[0])
        assert body["callback"]["state"] == "req-fixed"

    @pytest.mark.asyncio
    async def test_operator_claims_not_forwarded(self, service, upstream):
        upstream.add("POST", PRIMARY_URL, issuance_success())

        await service.issue(ATTESTATION_CONTRACT, "user-1", claims={"given_name": "Injected"})

        assert "claims" not in json_body(issuance_posts(upstream)[0])

    @pytest.mark.asyncio
    async def test_no_qr_without_deep_link(self, service, upstream):
        upstream.add("POST", PRIMARY_URL, httpx.Response(201, json={"requestId": "x"}))

        result = await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert result.deep_link is None
        assert result.qr_image is None


# ============================================================================
# Configuration
# ============================================================================

class TestConfiguration:

    @pytest.mark.asyncio
    async def test_contract_without_pin_skips_pin_attempt(self, settings, http_client, store, upstream):
        upstream.token()
        upstream.add("POST", PRIMARY_URL, issuance_success())
        registry = ContractRegistry.from_table({"contract-np": {"mode": "attestation", "pin": False}})
        service = build_service(settings, http_client, store, registry)

        result = await service.issue("contract-np", "user-1")

        assert result.pin_used is None
        posts = issuance_posts(upstream)
        assert len(posts) == 1
        assert "pin" not in json_body(posts[0])

    @pytest.mark.asyncio
    async def test_missing_issuer_authority(self, http_client, store, upstream):
        service = build_service(make_settings(ISSUER_AUTHORITY=None), http_client, store)

        with pytest.raises(ConfigurationError):
            await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_token_failure_propagates(self, settings, http_client, store, upstream):
        upstream.add("POST", TOKEN_URL, httpx.Response(400, json={"error": "invalid_scope"}))
        service = build_service(settings, http_client, store)

        with pytest.raises(UpstreamAuthError):
            await service.issue(ATTESTATION_CONTRACT, "user-1")

        assert issuance_posts(upstream) == []


# ============================================================================
# Helpers
# ============================================================================

class TestHelpers:

    def test_generate_pin(self):
        for _ in range(50):
            pin = generate_pin()
            assert pin["length"] == 4
            assert len(pin["value"]) == 4
            assert pin["value"].isdigit()

    @pytest.mark.parametrize("status_code, message, target, expected", [
        (400, "Something else", None, True),
        (422, "PIN length invalid", None, True),
        (500, "Feature not supported", None, True),
        (422, "Invalid field", "pin.value", True),
        (500, "Internal error", None, False),
        (404, "Resource not found", None, False),
        (None, "connection reset", None, False),
    ])
    def test_is_pin_related(self, status_code, message, target, expected):
        error = IssuanceAttemptError(PRIMARY_URL, status_code, message, target=target)

        assert is_pin_related(error) is expected

    def test_error_message_from_response_body(self):
        response = httpx.Response(400, json={
            "error": {
                "code": "badOrMissingField",
                "message": "Request has invalid field.",
                "innererror": {"code": "badOrMissingField", "message": "pin: length", "target": "pin"},
            }
        })

        error = IssuanceAttemptError.from_response(PRIMARY_URL, response)

        assert error.status_code == 400
        assert error.message == "Request has invalid field. pin: length"
        assert error.target == "pin"

    def test_error_message_from_plain_text(self):
        error = IssuanceAttemptError.from_response(PRIMARY_URL, httpx.Response(503, text="upstream down"))

        assert error.body == "upstream down"
        assert error.message == "Service Unavailable"
