from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence

from .models import (
    CollectionInfo,
    CollectionStatus,
    Document,
    Embedding,
    QueryMatch,
    SearchHit,
)


class EmbeddingService(ABC):
    """Port for embedding provider (e.g., Gemini)."""

    @abstractmethod
    def embed_texts(self, texts: Sequence[str]) -> List[Embedding]:
        """Embed texts into vectors, one per input and in input order.

        Raises:
            VectorResilienceError: The whole call fails; no partial result.
        """
        raise NotImplementedError

    def embed_text(self, text: str) -> Embedding:
        return self.embed_texts([text])[0]

    @abstractmethod
    def get_dimension(self) -> int:
        """Return embedding dimension, probing provider if needed."""
        raise NotImplementedError


class DocumentStore(ABC):
    """Port for the remote document store (e.g., Chroma)."""

    @abstractmethod
    def health_check(self) -> bool:
        """True when the store answers its heartbeat."""
        raise NotImplementedError

    @abstractmethod
    def create_collection(self, name: str, metadata: Optional[Dict[str, object]] = None) -> CollectionStatus:
        raise NotImplementedError

    @abstractmethod
    def add_documents(self, collection: str, documents: Sequence[Document], embeddings: Sequence[Embedding]) -> None:
        raise NotImplementedError

    @abstractmethod
    def query(
        self,
        collection: str,
        query_embeddings: Sequence[Embedding],
        k: int,
        where: Optional[Dict[str, object]] = None,
    ) -> List[List[QueryMatch]]:
        """Return up to ``k`` matches per query embedding."""
        raise NotImplementedError

    @abstractmethod
    def get_collection(self, name: str) -> CollectionInfo:
        raise NotImplementedError


class VectorIndex(ABC):
    """Port for the local (id, vector, metadata) store used as a fallback."""

    @abstractmethod
    def upsert(self, id: str, embedding: Sequence[float], metadata: Optional[Mapping[str, object]] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def search(self, query_embedding: Sequence[float], k: int) -> List[SearchHit]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, id: str) -> bool:
        raise NotImplementedError
