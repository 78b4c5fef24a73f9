from __future__ import annotations

import contextlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional


def parse_dotenv(dotenv_path: Path) -> Dict[str, str]:
    """Parse a simple .env file (KEY=VALUE per line, '#' comments)."""
    env: Dict[str, str] = {}
    if dotenv_path.exists():
        with contextlib.suppress(OSError):
            for raw in dotenv_path.read_text(encoding="utf-8", errors="ignore").splitlines():
                s = raw.strip()
                if not s or s.startswith("#") or "=" not in s:
                    continue
                k, v = s.split("=", 1)
                k = k.strip()
                v = v.strip().strip('"').strip("'")
                if k:
                    env[k] = v
    return env


def env_get(name: str) -> Optional[str]:
    """Get environment value from process env, falling back to .env in CWD."""
    v = os.getenv(name)
    if v is not None and v.strip():
        return v.strip()
    v2 = parse_dotenv(Path(".env")).get(name)
    return v2.strip() if v2 is not None and v2.strip() else None


def env_str(name: str, default: str) -> str:
    return env_get(name) or default


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name, str(default)))
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(env_str(name, str(default)))
    except ValueError:
        return default


def chroma_url() -> str:
    return env_str("CHROMA_HOST", "http://localhost:8000").rstrip("/")


def gemini_url() -> str:
    return env_str("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta").rstrip("/")


def google_api_key() -> str:
    return env_str("GOOGLE_API_KEY", "")


def embed_model() -> str:
    return env_str("EMBED_MODEL", "models/gemini-embedding-exp-03-07")


def embed_dimension() -> Optional[int]:
    """Expected embedding length; None means infer it from the first response."""
    raw = env_get("EMBED_DIMENSION")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def embed_batch_size() -> int:
    """
    Texts per batch. Kept small because the provider embeds one text per request;
    defaults to 10 when EMBED_BATCH_SIZE is not set or invalid.
    """
    return env_int("EMBED_BATCH_SIZE", 10)


def embed_request_interval_ms() -> float:
    return env_float("EMBED_REQUEST_INTERVAL_MS", 100.0)


def embed_task_type() -> Optional[str]:
    return env_get("EMBED_TASK_TYPE")


def max_retries() -> int:
    """Maximum attempts per remote call, first try included."""
    return env_int("MAX_RETRIES", 3)


def retry_delay_ms() -> float:
    return env_float("RETRY_DELAY_MS", 1000.0)


def max_retry_delay_ms() -> float:
    return env_float("MAX_RETRY_DELAY_MS", 30000.0)


def connection_timeout_ms() -> float:
    return env_float("CONNECTION_TIMEOUT_MS", 30000.0)


def request_timeout_ms() -> float:
    return env_float("REQUEST_TIMEOUT_MS", 60000.0)


def pool_max_size() -> int:
    return env_int("POOL_MAX_SIZE", 10)


def pool_idle_timeout_seconds() -> float:
    return env_float("POOL_IDLE_TIMEOUT_S", 90.0)


def vector_store_dir() -> Path:
    return Path(env_str("VECTOR_STORE_DIR", ".vector_store")).expanduser()


def collection_name() -> str:
    return env_str("COLLECTION_NAME", "documents")


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one process; pass it to the factory functions."""
    chroma_url: str
    gemini_url: str
    google_api_key: str
    embed_model: str
    embed_dimension: Optional[int]
    embed_batch_size: int
    embed_request_interval_ms: float
    embed_task_type: Optional[str]
    max_attempts: int
    retry_delay_ms: float
    max_retry_delay_ms: float
    connection_timeout_ms: float
    request_timeout_ms: float
    pool_max_size: int
    pool_idle_timeout_seconds: float
    vector_store_dir: Path
    collection_name: str


def load_settings() -> Settings:
    return Settings(
        chroma_url=chroma_url(),
        gemini_url=gemini_url(),
        google_api_key=google_api_key(),
        embed_model=embed_model(),
        embed_dimension=embed_dimension(),
        embed_batch_size=embed_batch_size(),
        embed_request_interval_ms=embed_request_interval_ms(),
        embed_task_type=embed_task_type(),
        max_attempts=max_retries(),
        retry_delay_ms=retry_delay_ms(),
        max_retry_delay_ms=max_retry_delay_ms(),
        connection_timeout_ms=connection_timeout_ms(),
        request_timeout_ms=request_timeout_ms(),
        pool_max_size=pool_max_size(),
        pool_idle_timeout_seconds=pool_idle_timeout_seconds(),
        vector_store_dir=vector_store_dir(),
        collection_name=collection_name(),
    )
