from __future__ import annotations

from typing import Dict

from ..dto import IndexDocumentsRequest, IndexResponse
from ...domain.errors import RetriesExhausted
from ...domain.interfaces import DocumentStore, EmbeddingService
from ...domain.models import Document, validate_metadata
from ...infrastructure.local.store import LocalCollections
from ...infrastructure.logging import get_logger

logger = get_logger("vector_resilience.use_cases.index_documents")


def fallback_payload(doc: Document) -> Dict[str, object]:
    """Metadata stored next to a vector in the local store; enough to rebuild the Document."""
    return {"content": doc.content, "metadata": validate_metadata(doc.metadata, f"document {doc.id!r}")}


class IndexDocumentsUseCase:
    """Use-case: embed documents and store them remotely, or locally when the remote store is down."""

    def __init__(self, embeddings: EmbeddingService, store: DocumentStore, fallback: LocalCollections) -> None:
        self._emb = embeddings
        self._store = store
        self._fallback = fallback

    def execute(self, req: IndexDocumentsRequest) -> IndexResponse:
        docs = list(req.documents or [])
        if not docs:
            return IndexResponse(target="remote", count=0)
        vecs = self._emb.embed_texts([d.content for d in docs])

        if self._store.health_check():
            try:
                self._store.add_documents(req.collection, docs, vecs)
                return IndexResponse(target="remote", count=len(docs))
            except RetriesExhausted as e:
                logger.warning("Collection API unavailable (%s); writing to local store", e)
        else:
            logger.warning("Document store unreachable; writing %d documents to local store", len(docs))

        local = self._fallback.get(req.collection)
        for doc, vec in zip(docs, vecs):
            local.upsert(doc.id, vec.values, fallback_payload(doc))
        return IndexResponse(target="fallback", count=len(docs))
