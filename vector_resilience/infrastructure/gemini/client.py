from __future__ import annotations

import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from ...domain.errors import (
    DimensionMismatch,
    SerializationFailure,
    ValidationFailure,
    VectorResilienceError,
)
from ...domain.interfaces import EmbeddingService
from ...domain.models import Embedding
from ..http import HttpTransport
from ..logging import get_logger
from ..retry import RetryExecutor

logger = get_logger("vector_resilience.gemini")

DEFAULT_MODEL = "models/gemini-embedding-exp-03-07"


def _parse_values(data: Any) -> List[float]:
    emb = data.get("embedding") if isinstance(data, dict) else None
    values = emb.get("values") if isinstance(emb, dict) else None
    if not isinstance(values, list) or not values:
        raise SerializationFailure("Invalid embedding response format: missing 'embedding.values'")
    out: List[float] = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            raise SerializationFailure(f"Invalid embedding response format: non-numeric value {v!r}")
        out.append(float(v))
    return out


class GeminiEmbeddingService(EmbeddingService):
    """Embedding adapter for the Gemini ``:embedContent`` endpoint.

    The endpoint embeds one text per request, so a batch is issued as one call
    per text with a fixed minimum interval between consecutive calls.
    """

    def __init__(
        self,
        transport: HttpTransport,
        retry: Optional[RetryExecutor] = None,
        model: str = DEFAULT_MODEL,
        batch_size: int = 10,
        request_interval: float = 0.1,
        dimension: Optional[int] = None,
        task_type: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValidationFailure(f"batch_size must be >= 1, got {batch_size}")
        if request_interval < 0:
            raise ValidationFailure(f"request_interval cannot be negative, got {request_interval}")
        if dimension is not None and dimension < 1:
            raise ValidationFailure(f"dimension must be >= 1, got {dimension}")
        self._http = transport
        self._retry = retry or RetryExecutor()
        self.model = model if model.startswith("models/") else f"models/{model}"
        self.batch_size = batch_size
        self.request_interval = request_interval
        self.task_type = task_type
        self._sleep = sleep
        self._clock = clock
        self._dimension = dimension
        self._dim_lock = threading.Lock()
        self._pace_lock = threading.Lock()
        self._next_slot: Optional[float] = None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _pace(self) -> None:
        """Wait until this caller's reserved send slot; the lock is released before sleeping."""
        with self._pace_lock:
            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + self.request_interval
        wait = slot - now
        if wait > 0:
            self._sleep(wait)

    def _check_dimension(self, values: List[float]) -> None:
        with self._dim_lock:
            if self._dimension is None:
                self._dimension = len(values)
                logger.info("Embedding dimension for %s inferred as %d", self.model, self._dimension)
                return
            expected = self._dimension
        if len(values) != expected:
            raise DimensionMismatch(expected, len(values), "embedding response")

    def _request_body(self, text: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {"content": {"parts": [{"text": text}]}}
        if self.task_type:
            body["taskType"] = self.task_type
        return body

    def _embed_once(self, text: str) -> List[float]:
        self._pace()
        data = self._http.request(
            "POST", f"{self.model}:embedContent", json=self._request_body(text), what="embed_content"
        )
        return _parse_values(data)

    def _embed_one(self, text: str) -> Embedding:
        values = self._retry.run(lambda: self._embed_once(text), "embed_content")
        self._check_dimension(values)
        return Embedding(values=values, dim=len(values))

    def embed_texts(self, texts: Sequence[str]) -> List[Embedding]:
        if isinstance(texts, str):
            raise ValidationFailure("embed_texts expects a sequence of texts, not a single string")
        if not texts:
            return []
        for i, t in enumerate(texts):
            if not isinstance(t, str) or not t.strip():
                raise ValidationFailure("Cannot embed empty or non-string text").at_index(i)

        logger.info("Generating embeddings for %d texts", len(texts))
        out: List[Embedding] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            logger.debug("Embedding batch %d-%d", start, start + len(batch) - 1)
            for offset, text in enumerate(batch):
                try:
                    out.append(self._embed_one(text))
                except VectorResilienceError as e:
                    logger.error("Embedding failed at index %d: %s", start + offset, e)
                    e.at_index(start + offset)
                    raise
        logger.info("Successfully generated %d embeddings", len(out))
        return out

    def get_dimension(self) -> int:
        if self._dimension is not None:
            return self._dimension
        return self.embed_text("dimension probe").dim
