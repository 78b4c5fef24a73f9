"""
Unit tests for environment-based configuration and client wiring.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import patch
import pytest

from vector_resilience.infrastructure import config
from vector_resilience.infrastructure.config import env_get, load_settings, parse_dotenv
from vector_resilience.infrastructure.factory import (
    build_document_store,
    build_embedding_service,
    build_fallback_collections,
)
from vector_resilience.infrastructure.retry import RetryPolicy
from vector_resilience.infrastructure.timeouts import get_timeout_config


class TestDotenvParsing:
    """Test .env file parsing functionality."""

    def test_parse_simple_dotenv(self):
        """Test parsing basic KEY=VALUE pairs, comments and quotes."""
        content = """
# Comment line
CHROMA_HOST=http://chroma:8000
EMBED_MODEL="models/text-embedding-004"
GOOGLE_API_KEY='secret'
invalid line without equals
=MISSING_KEY
"""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.env', delete=False) as f:
            f.write(content)
            temp_path = Path(f.name)

        try:
            assert parse_dotenv(temp_path) == {
                'CHROMA_HOST': 'http://chroma:8000',
                'EMBED_MODEL': 'models/text-embedding-004',
                'GOOGLE_API_KEY': 'secret',
            }
        finally:
            temp_path.unlink()

    def test_parse_nonexistent_file(self):
        """Test parsing nonexistent file returns empty dict."""
        assert parse_dotenv(Path("/nonexistent/path/.env")) == {}


class TestEnvironmentGet:
    """Test environment variable retrieval with .env fallback."""

    @patch.dict(os.environ, {'TEST_VAR': 'from_env'})
    def test_env_get_from_process_env(self):
        with patch('vector_resilience.infrastructure.config.parse_dotenv') as mock_parse:
            mock_parse.return_value = {'TEST_VAR': 'from_dotenv'}
            assert env_get('TEST_VAR') == 'from_env'

    @patch.dict(os.environ, {}, clear=True)
    def test_env_get_from_dotenv_fallback(self):
        with patch('vector_resilience.infrastructure.config.parse_dotenv') as mock_parse:
            mock_parse.return_value = {'TEST_VAR': 'from_dotenv'}
            assert env_get('TEST_VAR') == 'from_dotenv'

    @patch.dict(os.environ, {'EMPTY_VAR': '   '})
    def test_env_get_whitespace_is_missing(self):
        with patch('vector_resilience.infrastructure.config.parse_dotenv', return_value={}):
            assert env_get('EMPTY_VAR') is None


@pytest.mark.usefixtures("clean_environment")
class TestSettings:
    """Test defaults and overrides of the resolved settings."""

    def test_defaults(self):
        with patch('vector_resilience.infrastructure.config.parse_dotenv', return_value={}):
            s = load_settings()
        assert s.chroma_url == "http://localhost:8000"
        assert s.embed_model == "models/gemini-embedding-exp-03-07"
        assert s.embed_dimension is None
        assert s.embed_batch_size == 10
        assert s.max_attempts == 3
        assert s.retry_delay_ms == 1000.0
        assert s.connection_timeout_ms == 30000.0
        assert s.request_timeout_ms == 60000.0

    @patch.dict(os.environ, {
        'CHROMA_HOST': 'http://chroma:9000/',
        'MAX_RETRIES': '5',
        'EMBED_DIMENSION': '768',
        'EMBED_BATCH_SIZE': 'lots',
        'REQUEST_TIMEOUT_MS': '1500',
    })
    def test_overrides_and_invalid_numbers(self):
        with patch('vector_resilience.infrastructure.config.parse_dotenv', return_value={}):
            s = load_settings()
            timeouts = get_timeout_config()
        assert s.chroma_url == "http://chroma:9000"
        assert s.max_attempts == 5
        assert s.embed_dimension == 768
        assert s.embed_batch_size == 10
        assert timeouts.request_seconds == 1.5
        assert RetryPolicy.from_settings(s).max_attempts == 5


@pytest.mark.usefixtures("clean_environment")
class TestFactory:
    """Test clients are wired from settings without touching the network."""

    def _settings(self, tmp_path, **overrides):
        with patch.object(config, 'parse_dotenv', return_value={}):
            s = load_settings()
        values = dict(s.__dict__, vector_store_dir=tmp_path, google_api_key="k-123", **overrides)
        return config.Settings(**values)

    def test_document_store_wiring(self, tmp_path):
        store = build_document_store(self._settings(tmp_path, pool_max_size=4))
        assert store._http.base_url == "http://localhost:8000"
        assert store._http.pool_size == 4
        assert store._http.timeouts.as_requests_timeout() == (30.0, 60.0)
        assert store._retry.policy.max_attempts == 3

    def test_embedding_service_wiring(self, tmp_path):
        svc = build_embedding_service(self._settings(tmp_path, embed_dimension=3072, embed_request_interval_ms=250.0))
        assert svc.dimension == 3072
        assert svc.request_interval == 0.25
        assert svc._http._headers == {"x-goog-api-key": "k-123"}

    def test_fallback_collections_wiring(self, tmp_path):
        cols = build_fallback_collections(self._settings(tmp_path))
        assert cols.directory == tmp_path
