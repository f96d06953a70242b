"""Shared runtime singletons for the web app and CLI entrypoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from config import Settings, get_settings
from marketplace import (
    AssetDownloader,
    CredentialManager,
    MarketplaceApi,
    MarketplaceOAuth,
    PublishCoordinator,
    RemoteClient,
    SalesReconciler,
)
from orchestrator import BackgroundTaskRegistry, PipelineOrchestrator
from storage import BaseStateStore, InMemoryStateStore


@dataclass
class PipelineRuntime:
    """Wired components for one process."""

    settings: Settings
    store: BaseStateStore
    oauth: MarketplaceOAuth
    credentials: CredentialManager
    client: RemoteClient
    api: MarketplaceApi
    tasks: BackgroundTaskRegistry
    orchestrator: PipelineOrchestrator
    # OAuth state -> PKCE code verifier for connect flows in progress
    pending_auth: Dict[str, str] = field(default_factory=dict)

    async def aclose(self) -> None:
        await self.tasks.cancel_all()
        await self.client.close()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    store: Optional[BaseStateStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **collaborators,
) -> PipelineRuntime:
    """
    Wire store, marketplace access and orchestrator.

    ``collaborators`` are passed to PipelineOrchestrator (researcher,
    generator, quality_gate, serializer, blob_store, ...).
    """
    settings = settings or get_settings()
    store = store or InMemoryStateStore()
    oauth = MarketplaceOAuth(settings, transport=transport)
    credentials = CredentialManager(store, oauth, settings)
    client = RemoteClient(credentials, settings, transport=transport)
    api = MarketplaceApi(client, settings)
    tasks = BackgroundTaskRegistry()
    orchestrator = PipelineOrchestrator(
        store,
        publisher=PublishCoordinator(api, store, AssetDownloader(settings, transport=transport), settings),
        reconciler=SalesReconciler(api, store, settings),
        tasks=tasks,
        settings=settings,
        **collaborators,
    )
    return PipelineRuntime(
        settings=settings,
        store=store,
        oauth=oauth,
        credentials=credentials,
        client=client,
        api=api,
        tasks=tasks,
        orchestrator=orchestrator,
    )


_RUNTIME: Optional[PipelineRuntime] = None


def configure_runtime(runtime: PipelineRuntime) -> PipelineRuntime:
    global _RUNTIME
    _RUNTIME = runtime
    return runtime


def get_runtime() -> PipelineRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME


def get_orchestrator() -> PipelineOrchestrator:
    return get_runtime().orchestrator
