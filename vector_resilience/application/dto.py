from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from ..domain.models import Document


@dataclass(frozen=True)
class EnsureCollectionRequest:
    collection: str
    metadata: Optional[Dict[str, object]] = None


@dataclass(frozen=True)
class IndexDocumentsRequest:
    collection: str
    documents: List[Document]


@dataclass(frozen=True)
class QueryRequest:
    collection: str
    query: str
    k: int = 5
    where: Optional[Dict[str, object]] = None


@dataclass(frozen=True)
class IndexResponse:
    """Where the documents went: "remote" or "fallback"."""
    target: str
    count: int
