from __future__ import annotations

from typing import Optional

from .chroma.client import ChromaDocumentStore
from .config import Settings, load_settings
from .gemini.client import GeminiEmbeddingService
from .http import HttpTransport
from .local.store import LocalCollections
from .retry import RetryExecutor, RetryPolicy
from .timeouts import TimeoutConfig


def _timeouts(settings: Settings) -> TimeoutConfig:
    return TimeoutConfig(
        connect_seconds=settings.connection_timeout_ms / 1000.0,
        request_seconds=settings.request_timeout_ms / 1000.0,
    )


def build_retry(settings: Settings) -> RetryExecutor:
    return RetryExecutor(RetryPolicy.from_settings(settings))


def build_document_store(settings: Optional[Settings] = None, retry: Optional[RetryExecutor] = None) -> ChromaDocumentStore:
    settings = settings or load_settings()
    transport = HttpTransport(
        settings.chroma_url,
        timeouts=_timeouts(settings),
        pool_size=settings.pool_max_size,
        idle_timeout=settings.pool_idle_timeout_seconds,
    )
    return ChromaDocumentStore(transport, retry or build_retry(settings))


def build_embedding_service(settings: Optional[Settings] = None, retry: Optional[RetryExecutor] = None) -> GeminiEmbeddingService:
    settings = settings or load_settings()
    transport = HttpTransport(
        settings.gemini_url,
        timeouts=_timeouts(settings),
        pool_size=settings.pool_max_size,
        idle_timeout=settings.pool_idle_timeout_seconds,
        headers={"x-goog-api-key": settings.google_api_key},
    )
    return GeminiEmbeddingService(
        transport,
        retry or build_retry(settings),
        model=settings.embed_model,
        batch_size=settings.embed_batch_size,
        request_interval=settings.embed_request_interval_ms / 1000.0,
        dimension=settings.embed_dimension,
        task_type=settings.embed_task_type,
    )


def build_fallback_collections(settings: Optional[Settings] = None) -> LocalCollections:
    settings = settings or load_settings()
    return LocalCollections(settings.vector_store_dir)
