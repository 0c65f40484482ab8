"""
Tests for the embedding layer
=============================

- EmbeddingConfig env handling and validation
- SentenceTransformerProvider prefixes (model stubbed, no download)
- RemoteEmbeddingProvider payload and response handling (session mocked)
- EmbeddingGenerator fault mapping and dimension checks
"""

from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from ragcore.storage.retriever.errors import DimensionMismatch, EmbeddingUnavailable
from ragcore.storage.vectors.embeddings import (
    EmbeddingConfig,
    EmbeddingGenerator,
    RemoteEmbeddingProvider,
    SentenceTransformerProvider,
)


# ============================================================================
# Helpers
# ============================================================================

def _mock_session(status=200, payload=None, text=""):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload or {})
    response.text = AsyncMock(return_value=text)

    request = MagicMock()
    request.__aenter__ = AsyncMock(return_value=response)
    request.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.post = MagicMock(return_value=request)
    session.close = AsyncMock()
    return session


# ============================================================================
# EmbeddingConfig
# ============================================================================

class TestEmbeddingConfig:
    """Test EmbeddingConfig."""

    def test_defaults(self, monkeypatch):
        for key in ("EMBEDDING_PROVIDER", "EMBEDDING_MODEL", "EMBEDDING_DIMENSION"):
            monkeypatch.delenv(key, raising=False)
        config = EmbeddingConfig()
        assert config.provider == "local"
        assert config.model_name == "intfloat/multilingual-e5-base"
        assert config.expected_dimension is None

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_PROVIDER", "remote")
        monkeypatch.setenv("EMBEDDING_DIMENSION", "1536")
        config = EmbeddingConfig()
        assert config.provider == "remote"
        assert config.expected_dimension == 1536

    def test_invalid_provider(self):
        with pytest.raises(ValueError, match="provider must be"):
            EmbeddingConfig(provider="cloud")

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError, match="max_concurrency must be"):
            EmbeddingConfig(max_concurrency=0)

    def test_from_config_selects_provider(self):
        remote = EmbeddingGenerator.from_config(EmbeddingConfig(provider="remote", model_name="nomic"))
        local = EmbeddingGenerator.from_config(EmbeddingConfig(provider="local"))
        assert isinstance(remote.provider, RemoteEmbeddingProvider)
        assert remote.model_name == "nomic"
        assert isinstance(local.provider, SentenceTransformerProvider)
        assert not local.provider.is_loaded


# ============================================================================
# Providers
# ============================================================================

class TestSentenceTransformerProvider:
    """Test the local provider with a stubbed model."""

    def test_e5_prefixes(self):
        provider = SentenceTransformerProvider("intfloat/multilingual-e5-base")
        assert provider._prefixed(["x"], is_query=True) == ["query: x"]
        assert provider._prefixed(["x"], is_query=False) == ["passage: x"]

    def test_prefixes_disabled(self):
        provider = SentenceTransformerProvider("all-MiniLM-L6-v2", use_e5_prefixes=False)
        assert provider._prefixed(["x"], is_query=True) == ["x"]

    @pytest.mark.asyncio
    async def test_embed_uses_loaded_model(self):
        provider = SentenceTransformerProvider("intfloat/multilingual-e5-base")
        provider._model = MagicMock()
        provider._model.encode.return_value = np.array([[0.1, 0.2]])

        vectors = await provider.embed(["deload week"], is_query=True)

        assert vectors == [[0.1, 0.2]]
        args, kwargs = provider._model.encode.call_args
        assert args[0] == ["query: deload week"]
        assert kwargs["normalize_embeddings"] is True

    def test_encode_empty(self):
        assert SentenceTransformerProvider("m").encode_batch([]) == []


class TestRemoteEmbeddingProvider:
    """Test the HTTP provider with a mocked aiohttp session."""

    def test_payload_and_headers(self):
        provider = RemoteEmbeddingProvider("http://embed:11434/", "nomic", api_key="k")
        assert provider.base_url == "http://embed:11434"
        assert provider.build_payload(["a"]) == {"model": "nomic", "input": ["a"]}
        assert provider._headers()["Authorization"] == "Bearer k"

    def test_extract_embeddings_requires_vectors(self):
        with pytest.raises(ValueError, match="does not contain valid embeddings"):
            RemoteEmbeddingProvider.extract_embeddings({"error": "model not found"})

    @pytest.mark.asyncio
    async def test_embed_posts_batch(self):
        provider = RemoteEmbeddingProvider("http://embed:11434", "nomic")
        provider.session = _mock_session(payload={"embeddings": [[0.1, 0.2], [0.3, 0.4]]})

        vectors = await provider.embed(["a", "b"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        url = provider.session.post.call_args.args[0]
        assert url == "http://embed:11434/api/embed"
        assert provider.session.post.call_args.kwargs["json"]["input"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_embed_http_error(self):
        provider = RemoteEmbeddingProvider("http://embed:11434", "nomic")
        provider.session = _mock_session(status=503, text="overloaded")

        with pytest.raises(RuntimeError, match="Embedding API error: 503"):
            await provider.embed(["a"])

    @pytest.mark.asyncio
    async def test_close(self):
        provider = RemoteEmbeddingProvider("http://embed:11434", "nomic")
        session = _mock_session()
        provider.session = session
        await provider.close()
        session.close.assert_awaited_once()


# ============================================================================
# EmbeddingGenerator
# ============================================================================

class TestEmbeddingGenerator:
    """Test validation and fault mapping."""

    @pytest.mark.asyncio
    async def test_embed_query(self, generator, fake_provider):
        vector = await generator.embed_query("What is a deload week?")

        assert vector.model == "fake-embed"
        assert vector.dimension == 5
        assert fake_provider.calls[-1][1] is True

    @pytest.mark.asyncio
    async def test_embed_documents(self, generator, fake_provider):
        vectors = await generator.embed_documents(["deload", "squat"])
        assert len(vectors) == 2
        assert fake_provider.calls[-1][1] is False

    @pytest.mark.asyncio
    async def test_embed_documents_empty(self, generator, fake_provider):
        assert await generator.embed_documents([]) == []
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, generator):
        with pytest.raises(ValueError, match="empty text"):
            await generator.embed_query("   ")

    @pytest.mark.asyncio
    async def test_provider_failure_is_unavailable(self, generator, fake_provider):
        fake_provider.fail = True
        with pytest.raises(EmbeddingUnavailable, match="Embedding provider failed"):
            await generator.embed_query("deload")

    @pytest.mark.asyncio
    async def test_count_mismatch_is_unavailable(self):
        provider = MagicMock()
        provider.model_name = "broken"
        provider.embed = AsyncMock(return_value=[[0.1]])
        generator = EmbeddingGenerator(provider)

        with pytest.raises(EmbeddingUnavailable, match="returned 1 vectors for 2 texts"):
            await generator.embed_documents(["a", "b"])

    @pytest.mark.asyncio
    async def test_invalid_vector_is_unavailable(self):
        provider = MagicMock()
        provider.model_name = "broken"
        provider.embed = AsyncMock(return_value=[[float("nan")]])
        generator = EmbeddingGenerator(provider)

        with pytest.raises(EmbeddingUnavailable, match="invalid vector"):
            await generator.embed_query("deload")

    @pytest.mark.asyncio
    async def test_expected_dimension(self, fake_provider):
        generator = EmbeddingGenerator(fake_provider, expected_dimension=768)

        with pytest.raises(DimensionMismatch) as exc_info:
            await generator.embed_query("deload")

        assert exc_info.value.expected == 768
        assert exc_info.value.actual == 5

    @pytest.mark.asyncio
    async def test_min_interval_spaces_calls(self, fake_provider):
        generator = EmbeddingGenerator(fake_provider, min_interval_s=10.0)

        with patch("ragcore.storage.vectors.embeddings.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await generator.embed_query("deload")
            await generator.embed_query("week")

        sleep.assert_awaited_once()
        assert 0 < sleep.await_args.args[0] <= 10.0
