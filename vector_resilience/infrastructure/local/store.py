"""
Local fallback vector store.

Entries are (id, embedding, metadata) tuples kept in insertion order and
searched by brute-force cosine similarity, O(n*d) per query. State is
persisted as a JSON Lines log, one record per mutation:

    {"op": "upsert", "id": "...", "embedding": [...], "metadata": {...}}
    {"op": "delete", "id": "..."}

The log is replayed on start-up; any unreadable record is fatal.
"""

from __future__ import annotations

import copy
import json
import math
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from ...domain.errors import StoreCorruption, ValidationFailure
from ...domain.interfaces import VectorIndex
from ...domain.models import SearchHit
from ..logging import get_logger
from .rwlock import ReadWriteLock

logger = get_logger("vector_resilience.local")


@dataclass(frozen=True)
class _Entry:
    id: str
    values: List[float]
    norm: float
    metadata: Dict[str, object]


def _as_vector(embedding: Sequence[float], what: str) -> List[float]:
    values = getattr(embedding, "values", embedding)
    try:
        vec = [float(x) for x in values]
    except (TypeError, ValueError) as e:
        raise ValidationFailure(f"{what} must be a sequence of numbers: {e}") from e
    if not vec:
        raise ValidationFailure(f"{what} cannot be empty")
    if not all(math.isfinite(x) for x in vec):
        raise ValidationFailure(f"{what} contains non-finite values")
    return vec


def _norm(vec: Sequence[float], what: str) -> float:
    n = math.sqrt(sum(x * x for x in vec))
    if n == 0.0:
        raise ValidationFailure(f"{what} has zero norm; cosine similarity is undefined")
    return n


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); both vectors must be non-zero and equally long."""
    if len(a) != len(b):
        raise ValidationFailure(f"Vector lengths differ: {len(a)} vs {len(b)}")
    return sum(x * y for x, y in zip(a, b)) / (_norm(a, "vector") * _norm(b, "vector"))


class LocalVectorStore(VectorIndex):
    """In-process vector store with optional append-only persistence.

    Args:
        path: JSON Lines log file; None keeps everything in memory.
        fsync: Force each appended record to disk.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, fsync: bool = True) -> None:
        self.path = Path(path) if path is not None else None
        self._fsync = fsync
        self._lock = ReadWriteLock()
        self._entries: Dict[str, _Entry] = {}
        if self.path is not None:
            self._replay()

    # --- Persistence ---
    def _replay(self) -> None:
        if self.path is None or not self.path.exists():
            return
        raw = self.path.read_bytes()
        if raw and not raw.endswith(b"\n"):
            raise StoreCorruption(f"{self.path}: last record is truncated (partial write)")
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StoreCorruption(f"{self.path}: not valid UTF-8: {e}") from e
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                rec = json.loads(line)
                self._apply(rec)
            except (ValueError, TypeError, KeyError, ValidationFailure) as e:
                raise StoreCorruption(f"{self.path}:{lineno}: unreadable record: {e}") from e
        logger.info("Loaded %d vectors from %s", len(self._entries), self.path)

    def _apply(self, rec: Mapping[str, object]) -> None:
        if not isinstance(rec, dict):
            raise TypeError("record is not an object")
        op = rec["op"]
        rid = rec["id"]
        if not isinstance(rid, str):
            raise TypeError("id is not a string")
        if op == "upsert":
            meta = rec.get("metadata") or {}
            if not isinstance(meta, dict):
                raise TypeError("metadata is not an object")
            vec = _as_vector(rec["embedding"], "embedding")
            self._entries[rid] = _Entry(rid, vec, _norm(vec, "embedding"), dict(meta))
        elif op == "delete":
            self._entries.pop(rid, None)
        else:
            raise ValueError(f"unknown op {op!r}")

    @staticmethod
    def _encode(rec: Mapping[str, object]) -> str:
        try:
            return json.dumps(rec, separators=(",", ":"), allow_nan=False) + "\n"
        except (TypeError, ValueError) as e:
            raise ValidationFailure(f"record for {rec.get('id')!r} is not JSON serializable: {e}") from e

    def _append(self, line: str) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()
            if self._fsync:
                os.fsync(fh.fileno())

    def compact(self) -> None:
        """Rewrite the log so it holds one upsert record per live entry."""
        if self.path is None:
            return
        with self._lock.write():
            tmp = self.path.with_name(self.path.name + ".tmp")
            with open(tmp, "w", encoding="utf-8") as fh:
                for e in self._entries.values():
                    fh.write(self._encode({"op": "upsert", "id": e.id, "embedding": e.values, "metadata": e.metadata}))
                fh.flush()
                if self._fsync:
                    os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        logger.info("Compacted %s to %d records", self.path, len(self))

    # --- Mutations ---
    def upsert(self, id: str, embedding: Sequence[float], metadata: Optional[Mapping[str, object]] = None) -> None:
        if not isinstance(id, str) or not id:
            raise ValidationFailure("Entry id must be a non-empty string")
        vec = _as_vector(embedding, f"embedding for {id!r}")
        line = self._encode({"op": "upsert", "id": id, "embedding": vec, "metadata": dict(metadata or {})})
        # Memory holds exactly what a replay of the log would produce.
        entry = _Entry(id, vec, _norm(vec, f"embedding for {id!r}"), json.loads(line)["metadata"])
        with self._lock.write():
            previous = self._entries.get(id)
            self._entries[id] = entry
            try:
                self._append(line)
            except OSError:
                if previous is None:
                    del self._entries[id]
                else:
                    self._entries[id] = previous
                raise

    def delete(self, id: str) -> bool:
        line = self._encode({"op": "delete", "id": id})
        with self._lock.write():
            if id not in self._entries:
                return False
            snapshot = dict(self._entries)
            del self._entries[id]
            try:
                self._append(line)
            except OSError:
                # Restore the snapshot so the entry keeps its insertion position.
                self._entries = snapshot
                raise
            return True

    # --- Reads ---
    def search(self, query_embedding: Sequence[float], k: int) -> List[SearchHit]:
        """
        Top-k entries by descending cosine similarity, ties in insertion order.

        Raises:
            ValidationFailure: k <= 0, zero-norm query, or a stored entry of a different length.
        """
        if k <= 0:
            raise ValidationFailure(f"k must be positive, got {k}")
        q = _as_vector(query_embedding, "query embedding")
        q_norm = _norm(q, "query embedding")
        scored = []
        with self._lock.read():
            for order, e in enumerate(self._entries.values()):
                if len(e.values) != len(q):
                    raise ValidationFailure(
                        f"query embedding has dimension {len(q)} but entry {e.id!r} has {len(e.values)}"
                    )
                score = sum(x * y for x, y in zip(q, e.values)) / (q_norm * e.norm)
                scored.append((-score, order, e))
        scored.sort(key=lambda t: (t[0], t[1]))
        return [SearchHit(id=e.id, score=-neg, metadata=copy.deepcopy(e.metadata)) for neg, _, e in scored[:k]]

    def get(self, id: str) -> Optional[SearchHit]:
        """Return the stored entry with score 1.0, or None."""
        with self._lock.read():
            e = self._entries.get(id)
        if e is None:
            return None
        return SearchHit(id=e.id, score=1.0, metadata=copy.deepcopy(e.metadata))

    def ids(self) -> List[str]:
        with self._lock.read():
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, id: object) -> bool:
        with self._lock.read():
            return id in self._entries


class LocalCollections:
    """One LocalVectorStore per collection, logs kept as ``<directory>/<name>.jsonl``.

    A None directory keeps every collection in memory.
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None, fsync: bool = True) -> None:
        self.directory = Path(directory) if directory is not None else None
        self._fsync = fsync
        self._stores: Dict[str, LocalVectorStore] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> LocalVectorStore:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValidationFailure(f"Invalid collection name for the local store: {name!r}")
        with self._lock:
            store = self._stores.get(name)
            if store is None:
                path = self.directory / f"{name}.jsonl" if self.directory is not None else None
                store = LocalVectorStore(path, fsync=self._fsync)
                self._stores[name] = store
            return store

    def names(self) -> List[str]:
        with self._lock:
            known = set(self._stores)
        if self.directory is not None and self.directory.is_dir():
            known.update(p.stem for p in self.directory.glob("*.jsonl"))
        return sorted(known)
