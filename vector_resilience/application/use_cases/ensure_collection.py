from __future__ import annotations

from typing import Optional

from ..dto import EnsureCollectionRequest
from ...domain.interfaces import DocumentStore
from ...domain.models import CollectionStatus
from ...infrastructure.local.store import LocalCollections
from ...infrastructure.logging import get_logger

logger = get_logger("vector_resilience.use_cases.ensure_collection")


class EnsureCollectionUseCase:
    """Use-case: make sure the collection exists on whichever store is active."""

    def __init__(self, store: DocumentStore, fallback: LocalCollections) -> None:
        self._store = store
        self._fallback = fallback

    def execute(self, req: EnsureCollectionRequest) -> Optional[CollectionStatus]:
        """
        Creates the collection on the remote store, treating "already exists" as success.

        When the remote store does not answer its heartbeat the local fallback
        collection is opened instead.

        Args:
            req: Collection name and optional creation metadata.

        Returns:
            The remote CollectionStatus, or None when the fallback store is in use.
        """
        if not self._store.health_check():
            logger.warning("Document store unreachable; using local collection '%s'", req.collection)
            self._fallback.get(req.collection)
            return None
        return self._store.create_collection(req.collection, req.metadata)
