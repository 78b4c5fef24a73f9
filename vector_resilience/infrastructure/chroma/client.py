from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence

from ...domain.errors import (
    AlreadyExists,
    DimensionMismatch,
    SerializationFailure,
    ValidationFailure,
    VectorResilienceError,
)
from ...domain.interfaces import DocumentStore
from ...domain.models import (
    CollectionInfo,
    CollectionStatus,
    Document,
    Embedding,
    QueryMatch,
    validate_metadata,
)
from ..http import HttpTransport
from ..logging import get_logger
from ..retry import RetryExecutor

logger = get_logger("vector_resilience.chroma")

API = "api/v2"
DEFAULT_COLLECTION_METADATA: Dict[str, object] = {"hnsw:space": "cosine"}


def _expect(cond: bool, what: str) -> None:
    if not cond:
        raise SerializationFailure(f"Unexpected response shape: {what}")


def _first_or_empty(data: Dict[str, Any], key: str, n_queries: int) -> List[Any]:
    """Per-query lists for optional parallel arrays (None when not included)."""
    value = data.get(key)
    if value is None:
        return [None] * n_queries
    _expect(isinstance(value, list) and len(value) == n_queries, f"'{key}' must have one list per query")
    return value


def _embedding_values(embeddings: Sequence[Embedding]) -> List[List[float]]:
    return [list(e.values) for e in embeddings]


class ChromaDocumentStore(DocumentStore):
    """Document-store adapter for the Chroma REST API (v2 paths).

    Every call runs through the shared RetryExecutor; the transport may be
    shared with other clients talking to the same host.
    """

    def __init__(self, transport: HttpTransport, retry: Optional[RetryExecutor] = None) -> None:
        self._http = transport
        self._retry = retry or RetryExecutor()
        self._dims: Dict[str, int] = {}
        self._dims_lock = threading.Lock()
        self.last_heartbeat: Optional[int] = None

    def _call(self, name: str, method: str, path: str, json: Any = None) -> Any:
        return self._retry.run(lambda: self._http.request(method, path, json=json, what=name), name)

    # --- Dimension bookkeeping ---
    def collection_dimension(self, collection: str) -> Optional[int]:
        """Dimension established for a collection in this process, if known."""
        with self._dims_lock:
            return self._dims.get(collection)

    def _remember_dimension(self, collection: str, dim: Optional[int]) -> None:
        if dim is None:
            return
        with self._dims_lock:
            self._dims.setdefault(collection, dim)

    def _check_dimensions(self, collection: str, embeddings: Sequence[Embedding], context: str) -> Optional[int]:
        expected = self.collection_dimension(collection)
        for i, emb in enumerate(embeddings):
            if len(emb.values) != emb.dim:
                raise ValidationFailure(f"{context} {i} declares dim={emb.dim} but has {len(emb.values)} values")
            if expected is None:
                expected = emb.dim
            elif emb.dim != expected:
                raise DimensionMismatch(expected, emb.dim, f"{context} {i}").at_index(i)
        return expected

    # --- Heartbeat ---
    def heartbeat(self) -> int:
        """Return the store's heartbeat timestamp."""
        data = self._call("heartbeat", "GET", f"{API}/heartbeat")
        _expect(isinstance(data, dict) and len(data) > 0, "heartbeat body must be an object")
        value = next(iter(data.values()))
        _expect(isinstance(value, int) and not isinstance(value, bool), "heartbeat must be an integer")
        self.last_heartbeat = value
        return value

    def health_check(self) -> bool:
        try:
            self.heartbeat()
        except VectorResilienceError as e:
            logger.warning("Chroma health check failed: %s", e)
            return False
        logger.debug("Chroma health check passed")
        return True

    # --- Collections ---
    def create_collection(self, name: str, metadata: Optional[Dict[str, object]] = None) -> CollectionStatus:
        if not name or not name.strip():
            raise ValidationFailure("Collection name cannot be empty")
        body = {"name": name, "metadata": dict(metadata or DEFAULT_COLLECTION_METADATA)}
        try:
            data = self._call("create_collection", "POST", f"{API}/collections", json=body)
        except AlreadyExists:
            logger.info("Collection '%s' already exists", name)
            return CollectionStatus.ALREADY_EXISTS
        if isinstance(data, dict):
            self._remember_dimension(name, data.get("dimension"))
        logger.info("Created collection '%s'", name)
        return CollectionStatus.CREATED

    def get_collection(self, name: str) -> CollectionInfo:
        data = self._call("get_collection", "GET", f"{API}/collections/{name}")
        info = self._parse_collection(data)
        self._remember_dimension(name, info.dimension)
        return info

    def list_collections(self) -> List[str]:
        data = self._call("list_collections", "GET", f"{API}/collections")
        _expect(isinstance(data, list), "collection list must be an array")
        return [self._parse_collection(it).name for it in data]

    def delete_collection(self, name: str) -> None:
        self._call("delete_collection", "DELETE", f"{API}/collections/{name}")
        with self._dims_lock:
            self._dims.pop(name, None)
        logger.info("Deleted collection '%s'", name)

    @staticmethod
    def _parse_collection(data: Any) -> CollectionInfo:
        _expect(isinstance(data, dict) and isinstance(data.get("name"), str), "collection must have a name")
        dim = data.get("dimension")
        _expect(dim is None or (isinstance(dim, int) and not isinstance(dim, bool)), "dimension must be an integer")
        return CollectionInfo(
            name=data["name"],
            id=str(data["id"]) if data.get("id") is not None else None,
            metadata=data.get("metadata") or {},
            dimension=dim,
        )

    # --- Documents ---
    def _document_body(
        self, collection: str, documents: Sequence[Document], embeddings: Sequence[Embedding]
    ) -> Dict[str, Any]:
        if len(documents) != len(embeddings):
            raise ValidationFailure(
                f"Got {len(documents)} documents but {len(embeddings)} embeddings"
            )
        ids = [d.id for d in documents]
        if any(not i for i in ids):
            raise ValidationFailure("Document ids cannot be empty")
        if len(set(ids)) != len(ids):
            raise ValidationFailure("Document ids must be unique within one call")
        self._check_dimensions(collection, embeddings, "embedding")
        return {
            "ids": ids,
            "embeddings": _embedding_values(embeddings),
            "metadatas": [validate_metadata(d.metadata, f"document {d.id!r}") for d in documents],
            "documents": [d.content for d in documents],
        }

    def add_documents(self, collection: str, documents: Sequence[Document], embeddings: Sequence[Embedding]) -> None:
        body = self._document_body(collection, documents, embeddings)
        if not body["ids"]:
            return
        self._call("add_documents", "POST", f"{API}/collections/{collection}/add", json=body)
        self._remember_dimension(collection, embeddings[0].dim)
        logger.info("Added %d documents to '%s'", len(documents), collection)

    def update_documents(self, collection: str, documents: Sequence[Document], embeddings: Sequence[Embedding]) -> None:
        body = self._document_body(collection, documents, embeddings)
        if not body["ids"]:
            return
        self._call("update_documents", "POST", f"{API}/collections/{collection}/update", json=body)
        self._remember_dimension(collection, embeddings[0].dim)
        logger.info("Updated %d documents in '%s'", len(documents), collection)

    def get_documents(
        self,
        collection: str,
        ids: Optional[Sequence[str]] = None,
        where: Optional[Dict[str, object]] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        if limit is not None and limit <= 0:
            raise ValidationFailure(f"limit must be positive, got {limit}")
        body: Dict[str, Any] = {"include": ["documents", "metadatas"]}
        if ids is not None:
            body["ids"] = list(ids)
        if where:
            body["where"] = where
        if limit is not None:
            body["limit"] = limit
        data = self._call("get_documents", "POST", f"{API}/collections/{collection}/get", json=body)
        _expect(isinstance(data, dict) and isinstance(data.get("ids"), list), "get response needs 'ids'")
        out_ids = data["ids"]
        docs = data.get("documents") or [None] * len(out_ids)
        metas = data.get("metadatas") or [None] * len(out_ids)
        _expect(len(docs) == len(out_ids) and len(metas) == len(out_ids), "get arrays must be parallel")
        return [
            Document(id=str(i), content=d or "", metadata=dict(m or {}))
            for i, d, m in zip(out_ids, docs, metas)
        ]

    def delete_documents(self, collection: str, ids: Sequence[str]) -> None:
        if not ids:
            raise ValidationFailure("No document ids given to delete")
        self._call("delete_documents", "POST", f"{API}/collections/{collection}/delete", json={"ids": list(ids)})
        logger.info("Deleted %d documents from '%s'", len(ids), collection)

    def count(self, collection: str) -> int:
        data = self._call("count", "GET", f"{API}/collections/{collection}/count")
        _expect(isinstance(data, int) and not isinstance(data, bool), "count must be an integer")
        return data

    # --- Query ---
    def query(
        self,
        collection: str,
        query_embeddings: Sequence[Embedding],
        k: int,
        where: Optional[Dict[str, object]] = None,
    ) -> List[List[QueryMatch]]:
        if k <= 0:
            raise ValidationFailure(f"k must be positive, got {k}")
        if not query_embeddings:
            raise ValidationFailure("At least one query embedding is required")
        self._check_dimensions(collection, query_embeddings, "query embedding")
        body: Dict[str, Any] = {
            "query_embeddings": _embedding_values(query_embeddings),
            "n_results": k,
            "include": ["documents", "metadatas", "distances"],
        }
        if where:
            body["where"] = where
        data = self._call("query", "POST", f"{API}/collections/{collection}/query", json=body)
        results = self._parse_query(data, len(query_embeddings), k)
        logger.debug("Query on '%s' returned %s results", collection, [len(r) for r in results])
        return results

    @staticmethod
    def _parse_query(data: Any, n_queries: int, k: int) -> List[List[QueryMatch]]:
        _expect(isinstance(data, dict), "query body must be an object")
        ids = data.get("ids")
        _expect(isinstance(ids, list) and len(ids) == n_queries, "'ids' must have one list per query")
        distances = _first_or_empty(data, "distances", n_queries)
        documents = _first_or_empty(data, "documents", n_queries)
        metadatas = _first_or_empty(data, "metadatas", n_queries)

        out: List[List[QueryMatch]] = []
        for q in range(n_queries):
            q_ids = ids[q]
            _expect(isinstance(q_ids, list), "per-query ids must be a list")
            n = len(q_ids)
            q_dist = distances[q] if distances[q] is not None or n else []
            _expect(isinstance(q_dist, list) and len(q_dist) == n, "'distances' must parallel 'ids'")
            q_docs = documents[q] if documents[q] is not None else [None] * n
            q_meta = metadatas[q] if metadatas[q] is not None else [None] * n
            _expect(len(q_docs) == n and len(q_meta) == n, "'documents'/'metadatas' must parallel 'ids'")
            matches = []
            for i in range(n):
                dist = q_dist[i]
                _expect(isinstance(dist, (int, float)) and not isinstance(dist, bool), "distance must be numeric")
                doc = None
                if q_docs[i] is not None or q_meta[i] is not None:
                    doc = Document(id=str(q_ids[i]), content=q_docs[i] or "", metadata=dict(q_meta[i] or {}))
                matches.append(QueryMatch(id=str(q_ids[i]), distance=float(dist), document=doc))
            # sorted() is stable: equal distances keep server order.
            out.append(sorted(matches, key=lambda m: m.distance)[:k])
        return out
