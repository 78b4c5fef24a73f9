"""
Pytest configuration and fixtures for vector_resilience tests.

Provides mocked remote services, canned HTTP responses and a retry executor
that never really sleeps.
"""

import json
import os
from unittest.mock import Mock
import pytest

from vector_resilience.domain.models import CollectionStatus, Document, Embedding
from vector_resilience.infrastructure.retry import RetryExecutor, RetryPolicy


def make_response(status=200, payload=None, text=None):
    """Build a requests.Response-like mock."""
    resp = Mock()
    resp.status_code = status
    if text is None:
        text = "" if payload is None else json.dumps(payload)
    resp.text = text
    resp.content = text.encode("utf-8")
    if payload is not None:
        resp.json.return_value = payload
    else:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
    return resp


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def sleeps():
    """Records every delay passed to the injected sleep function."""
    return []


@pytest.fixture
def retry_executor(sleeps):
    """Three attempts, 1s base delay, sleeping into the ``sleeps`` list."""
    return RetryExecutor(RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0), sleep=sleeps.append)


@pytest.fixture
def mock_transport():
    """Mock HttpTransport; set ``request.return_value`` / ``side_effect`` per test."""
    return Mock()


@pytest.fixture
def mock_embedding_service():
    """Mock embedding service returning 4-dimensional vectors."""
    mock = Mock()
    mock.get_dimension.return_value = 4
    mock.embed_texts.side_effect = lambda texts: [Embedding.of([1.0, float(i), 0.0, 0.0]) for i, _ in enumerate(texts)]
    mock.embed_text.side_effect = lambda text: Embedding.of([1.0, 0.0, 0.0, 0.0])
    return mock


@pytest.fixture
def mock_document_store():
    """Mock document store that is healthy and accepts everything."""
    mock = Mock()
    mock.health_check.return_value = True
    mock.create_collection.return_value = CollectionStatus.CREATED
    mock.add_documents.return_value = None
    mock.query.return_value = [[]]
    return mock


@pytest.fixture
def sample_documents():
    return [
        Document(id="rust", content="Rust is a systems programming language", metadata={"source": "docs"}),
        Document(id="chroma", content="ChromaDB is a vector database", metadata={"source": "docs"}),
        Document(id="gemini", content="Gemini models provide embeddings", metadata={"source": "blog"}),
    ]


@pytest.fixture
def clean_environment():
    """Clean environment variables for testing."""
    env_vars_to_clean = [
        'CHROMA_HOST',
        'GEMINI_API_BASE',
        'GOOGLE_API_KEY',
        'EMBED_MODEL',
        'EMBED_DIMENSION',
        'EMBED_BATCH_SIZE',
        'MAX_RETRIES',
        'RETRY_DELAY_MS',
        'REQUEST_TIMEOUT_MS',
        'CONNECTION_TIMEOUT_MS',
        'VECTOR_STORE_DIR',
    ]

    original_env = {}
    for var in env_vars_to_clean:
        if var in os.environ:
            original_env[var] = os.environ[var]
            del os.environ[var]

    yield

    for var, value in original_env.items():
        os.environ[var] = value


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
