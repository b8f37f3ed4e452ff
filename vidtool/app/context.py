"""
Application Context

Holds every long-lived collaborator of the service. One instance is built
per application by create_app() and attached to app.state.context; route
handlers receive it through the get_context dependency.
"""

import time
from typing import Optional

import httpx
from fastapi import HTTPException, Request, status

from .auth.utils import JwksCache
from .config import Settings
from .credentials.catalog import ContractCatalog
from .credentials.contracts import ContractRegistry
from .credentials.issuance import IssuanceService
from .credentials.store import RequestStore
from .credentials.tokens import TokenProvider
from .logbuffer import LogBuffer
from .users.directory import DirectoryClient


class AppContext:
    """Settings, shared HTTP client, stores and services of one application."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        store: RequestStore,
        log_buffer: LogBuffer,
        jwks: JwksCache,
        token_provider: TokenProvider,
        registry: ContractRegistry,
        issuance: IssuanceService,
        directory: DirectoryClient,
        catalog: ContractCatalog,
        started_at: Optional[float] = None,
    ):
        self.settings = settings
        self.client = client
        self.store = store
        self.log_buffer = log_buffer
        self.jwks = jwks
        self.token_provider = token_provider
        self.registry = registry
        self.issuance = issuance
        self.directory = directory
        self.catalog = catalog
        self.started_at = started_at if started_at is not None else time.time()

    @classmethod
    def build(
        cls,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        log_buffer: Optional[LogBuffer] = None,
    ) -> "AppContext":
        """
        Wire the default collaborators from settings.

        Raises:
            ValueError: If the configured contract table is malformed
        """
        client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.UPSTREAM_TIMEOUT_SECONDS, connect=10.0)
        )
        store = RequestStore(ttl_seconds=settings.REQUEST_TTL_SECONDS)
        tokens = TokenProvider(settings, client)
        registry = ContractRegistry.from_settings(settings)

        return cls(
            settings=settings,
            client=client,
            store=store,
            log_buffer=log_buffer or LogBuffer(
                max_entries=settings.LOG_BUFFER_MAX_ENTRIES,
                ttl_seconds=settings.LOG_BUFFER_TTL_SECONDS,
            ),
            jwks=JwksCache(settings, client),
            token_provider=tokens,
            registry=registry,
            issuance=IssuanceService(settings, tokens, registry, store, client),
            directory=DirectoryClient(settings, tokens, client),
            catalog=ContractCatalog(settings, tokens, client),
        )

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at

    async def aclose(self) -> None:
        await self.client.aclose()


def get_context(request: Request) -> AppContext:
    """Dependency returning the application context."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application context not initialized"
        )
    return context
