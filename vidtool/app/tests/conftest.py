"""Shared fixtures: settings, stubbed upstreams, application and operator session."""

from typing import Dict

import httpx
import pytest
from fastapi.testclient import TestClient

from vidtool.app.auth.session import create_session_jwt
from vidtool.app.config import Settings
from vidtool.app.context import AppContext
from vidtool.app.logbuffer import LogBuffer
from vidtool.app.main import create_app
from vidtool.app.tests.upstream import UpstreamStub, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def http_client(upstream: UpstreamStub) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def context(settings: Settings, http_client: httpx.AsyncClient) -> AppContext:
    return AppContext.build(settings, client=http_client, log_buffer=LogBuffer())


@pytest.fixture
def app(context: AppContext):
    return create_app(context=context)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def operator_token(settings: Settings) -> str:
    return create_session_jwt(
        {"sub": "operator-1", "email": "operator@example.com", "name": "Operator"},
        settings,
    )


@pytest.fixture
def auth_headers(operator_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {operator_token}"}
