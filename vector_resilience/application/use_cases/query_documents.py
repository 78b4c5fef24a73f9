from __future__ import annotations

from typing import Dict, List, Optional

from ..dto import QueryRequest
from ...domain.errors import RetriesExhausted, ValidationFailure
from ...domain.interfaces import DocumentStore, EmbeddingService
from ...domain.models import Document, Embedding, QueryMatch, SearchHit
from ...infrastructure.local.store import LocalCollections
from ...infrastructure.logging import get_logger

logger = get_logger("vector_resilience.use_cases.query_documents")


def _matches_where(metadata: Dict[str, object], where: Optional[Dict[str, object]]) -> bool:
    if not where:
        return True
    for key, expected in where.items():
        if key.startswith("$") or isinstance(expected, dict):
            raise ValidationFailure(f"Local fallback only supports equality filters, got {key!r}")
        if metadata.get(key) != expected:
            return False
    return True


def _to_match(hit: SearchHit) -> QueryMatch:
    meta = hit.metadata.get("metadata")
    doc = Document(
        id=hit.id,
        content=str(hit.metadata.get("content", "")),
        metadata=dict(meta) if isinstance(meta, dict) else {},
    )
    # Cosine distance, the same metric remote collections are created with.
    return QueryMatch(id=hit.id, distance=1.0 - hit.score, document=doc)


class QueryDocumentsUseCase:
    """Use-case: embed query string and search the active store."""

    def __init__(self, embeddings: EmbeddingService, store: DocumentStore, fallback: LocalCollections) -> None:
        self._emb = embeddings
        self._store = store
        self._fallback = fallback

    def execute(self, req: QueryRequest) -> List[QueryMatch]:
        if req.k <= 0:
            raise ValidationFailure(f"k must be positive, got {req.k}")
        vec = self._emb.embed_text(req.query)
        if self._store.health_check():
            try:
                return self._store.query(req.collection, [vec], req.k, req.where)[0]
            except RetriesExhausted as e:
                logger.warning("Collection API unavailable (%s); searching local store", e)
        else:
            logger.warning("Document store unreachable; searching local store")
        return self._search_local(req, vec)

    def _search_local(self, req: QueryRequest, vec: Embedding) -> List[QueryMatch]:
        local = self._fallback.get(req.collection)
        size = len(local)
        if size == 0:
            return []
        if not req.where:
            return [_to_match(h) for h in local.search(vec.values, req.k)]
        hits = local.search(vec.values, size)
        out = []
        for h in hits:
            meta = h.metadata.get("metadata")
            if _matches_where(meta if isinstance(meta, dict) else {}, req.where):
                out.append(_to_match(h))
                if len(out) == req.k:
                    break
        return out
