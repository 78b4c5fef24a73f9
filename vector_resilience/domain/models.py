from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Union

from .errors import ValidationFailure, VectorResilienceError

Scalar = Union[str, int, float, bool]


def validate_metadata(meta: Optional[Mapping[str, object]], owner: str = "document") -> Dict[str, Scalar]:
    """Return a plain dict copy of ``meta``, rejecting non-scalar values."""
    out: Dict[str, Scalar] = {}
    for key, value in (meta or {}).items():
        if not isinstance(key, str):
            raise ValidationFailure(f"{owner} metadata key {key!r} is not a string")
        if not isinstance(value, (str, int, float, bool)):
            raise ValidationFailure(
                f"{owner} metadata value for {key!r} must be a scalar, got {type(value).__name__}"
            )
        out[key] = value
    return out


@dataclass(frozen=True)
class Document:
    """A document stored in a collection.

    Fields:
        id: Unique within its collection.
        content: Raw text the embedding was produced from.
        metadata: Flat mapping of scalar values.
    """
    id: str
    content: str
    metadata: Dict[str, Scalar] = field(default_factory=dict)


@dataclass(frozen=True)
class Embedding:
    """Embedding vector with explicit dimension.

    Fields:
        values: The numeric embedding.
        dim: Dimension; checked against the model/collection by the clients.
    """
    values: List[float]
    dim: int

    @classmethod
    def of(cls, values) -> "Embedding":
        vals = [float(x) for x in values]
        return cls(values=vals, dim=len(vals))


@dataclass(frozen=True)
class CollectionInfo:
    """Collection description returned by the document store."""
    name: str
    id: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict)
    dimension: Optional[int] = None


class CollectionStatus(str, Enum):
    """Outcome of ``create_collection``; both values mean the collection is usable."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class QueryMatch:
    """Nearest-neighbour match from a collection query.

    Fields:
        id: Document ID.
        distance: Store-defined distance; lower is closer.
        document: Snapshot of the stored document, when returned.
    """
    id: str
    distance: float
    document: Optional[Document] = None


@dataclass(frozen=True)
class SearchHit:
    """Match returned by the local fallback store (higher score is closer)."""
    id: str
    score: float
    metadata: Dict[str, object]


@dataclass
class RetryContext:
    """Per-call retry bookkeeping; lives for one logical operation."""
    operation: str
    attempts: int = 0
    elapsed_backoff: float = 0.0
    last_error: Optional[VectorResilienceError] = None
