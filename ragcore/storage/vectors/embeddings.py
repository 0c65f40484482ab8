"""
Embedding Generator
===================

Turns chunk text and queries into EmbeddingVectors through an external
embedding model.

Providers:
- SentenceTransformerProvider: local sentence-transformers model (E5 family
  by default), lazy loaded on first use, run in a thread pool
- RemoteEmbeddingProvider: HTTP embedding endpoint (``/api/embed`` style)
  through aiohttp

The EmbeddingGenerator wraps a provider and adds:
- a concurrency limit and a minimum spacing between provider calls, so
  offline backfill jobs cannot starve the request path
- dimension validation against the configured model dimension
- a single failure type: any provider error becomes EmbeddingUnavailable

E5 prefixes:
    E5 models expect "query: <text>" for queries and "passage: <text>" for
    documents. The local provider adds them; remote providers receive the
    raw text.
"""

import asyncio
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import structlog

from ragcore.models.knowledge import EmbeddingVector
from ragcore.storage.retriever.errors import DimensionMismatch, EmbeddingUnavailable

log = structlog.get_logger()


def _get_env_str(key: str, default: str) -> str:
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _get_env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


@dataclass
class EmbeddingConfig:
    """
    Embedding settings.

    Environment Variables:
        EMBEDDING_PROVIDER: "local" (sentence-transformers) or "remote" (HTTP)
        EMBEDDING_MODEL: Model name
        EMBEDDING_DEVICE: Device for local models (cpu, cuda); auto when empty
        EMBEDDING_BATCH_SIZE: Texts per provider call
        EMBEDDING_BASE_URL: Base URL of the remote endpoint
        EMBEDDING_API_KEY: Bearer token for the remote endpoint
        EMBEDDING_DIMENSION: Expected output dimension (0 = not checked)
        EMBEDDING_MAX_CONCURRENCY: Concurrent provider calls
        EMBEDDING_MIN_INTERVAL_S: Minimum seconds between provider calls
        EMBEDDING_TIMEOUT_S: HTTP timeout of the remote provider
    """
    provider: str = field(default_factory=lambda: _get_env_str("EMBEDDING_PROVIDER", "local"))
    model_name: str = field(
        default_factory=lambda: _get_env_str("EMBEDDING_MODEL", "intfloat/multilingual-e5-base")
    )
    device: Optional[str] = field(default_factory=lambda: _get_env_str("EMBEDDING_DEVICE", "") or None)
    batch_size: int = field(default_factory=lambda: _get_env_int("EMBEDDING_BATCH_SIZE", 10))
    base_url: str = field(default_factory=lambda: _get_env_str("EMBEDDING_BASE_URL", "http://localhost:11434"))
    api_key: Optional[str] = field(default_factory=lambda: _get_env_str("EMBEDDING_API_KEY", "") or None)
    expected_dimension: Optional[int] = field(
        default_factory=lambda: _get_env_int("EMBEDDING_DIMENSION", 0) or None
    )
    max_concurrency: int = field(default_factory=lambda: _get_env_int("EMBEDDING_MAX_CONCURRENCY", 4))
    min_interval_s: float = field(default_factory=lambda: _get_env_float("EMBEDDING_MIN_INTERVAL_S", 0.0))
    timeout_s: float = field(default_factory=lambda: _get_env_float("EMBEDDING_TIMEOUT_S", 30.0))

    def __post_init__(self):
        if self.provider not in ("local", "remote"):
            raise ValueError(f"provider must be 'local' or 'remote', got {self.provider}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.min_interval_s < 0:
            raise ValueError(f"min_interval_s must be >= 0, got {self.min_interval_s}")


class EmbeddingProvider(ABC):
    """An external embedding model."""

    model_name: str

    @abstractmethod
    async def embed(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        """Embed ``texts``, returning one vector per text in input order."""

    async def close(self):
        """Release provider resources."""


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Local sentence-transformers model.

    Usage:
        provider = SentenceTransformerProvider("intfloat/multilingual-e5-base")
        vectors = await provider.embed(["Deload weeks reduce volume"])
    """

    def __init__(
        self,
        model_name: str,
        device: Optional[str] = None,
        batch_size: int = 32,
        normalize_embeddings: bool = True,
        use_e5_prefixes: bool = True,
    ):
        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self.normalize_embeddings = normalize_embeddings
        self.use_e5_prefixes = use_e5_prefixes
        self._model = None
        self._lock = Lock()

        log.info(
            f"SentenceTransformerProvider configured - model={model_name}, "
            f"device={device or 'auto'}, batch_size={batch_size}"
        )

    def _load_model(self):
        """Load the model on first use (downloads it if not cached)."""
        if self._model is None:
            with self._lock:
                if self._model is None:
                    log.info(f"Loading embedding model: {self.model_name} on device: {self.device or 'auto'}")
                    try:
                        from sentence_transformers import SentenceTransformer

                        self._model = SentenceTransformer(self.model_name, device=self.device)
                    except Exception as e:
                        log.error(f"Failed to load model: {e}")
                        raise RuntimeError(f"Failed to load embedding model: {e}") from e
                    log.info(
                        f"Model loaded. Embedding dimension: "
                        f"{self._model.get_sentence_embedding_dimension()}"
                    )
        return self._model

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def _prefixed(self, texts: Sequence[str], is_query: bool) -> List[str]:
        if not self.use_e5_prefixes:
            return list(texts)
        prefix = "query: " if is_query else "passage: "
        return [f"{prefix}{text}" for text in texts]

    def encode_batch(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        if not texts:
            return []

        model = self._load_model()
        embeddings = model.encode(
            self._prefixed(texts, is_query),
            batch_size=self.batch_size,
            normalize_embeddings=self.normalize_embeddings,
            show_progress_bar=False,
            convert_to_numpy=True,
        )
        return embeddings.tolist()

    async def embed(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.encode_batch(texts, is_query))

    def __repr__(self) -> str:
        return (
            f"SentenceTransformerProvider("
            f"model={self.model_name}, "
            f"device={self.device}, "
            f"loaded={self.is_loaded})"
        )


class RemoteEmbeddingProvider(EmbeddingProvider):
    """
    HTTP embedding endpoint.

    Request:  POST {base_url}/api/embed  {"model": "...", "input": [...]}
    Response: {"embeddings": [[...], [...]]}
    """

    def __init__(
        self,
        base_url: str,
        model_name: str,
        api_key: Optional[str] = None,
        timeout_s: float = 30.0,
        endpoint: str = "/api/embed",
    ):
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.endpoint = endpoint
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            )
        return self.session

    async def close(self):
        """Close the aiohttp session."""
        if self.session and not self.session.closed:
            await self.session.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_payload(self, texts: Sequence[str]) -> Dict[str, Any]:
        return {"model": self.model_name, "input": list(texts)}

    @staticmethod
    def extract_embeddings(data: Dict[str, Any]) -> List[List[float]]:
        embeddings = data.get("embeddings")
        if not embeddings or not embeddings[0]:
            raise ValueError(
                f"Embedding response does not contain valid embeddings. "
                f"Response keys: {list(data.keys())}"
            )
        return embeddings

    async def embed(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        if not texts:
            return []

        session = await self._get_session()
        async with session.post(
            f"{self.base_url}{self.endpoint}",
            json=self.build_payload(texts),
            headers=self._headers(),
        ) as response:
            if response.status != 200:
                error_text = await response.text()
                log.error(f"Embedding API error {response.status}: {error_text[:200]}")
                raise RuntimeError(f"Embedding API error: {response.status}")
            data = await response.json()

        return self.extract_embeddings(data)


class EmbeddingGenerator:
    """
    Rate-limited, validating front of an EmbeddingProvider.

    Usage:
        generator = EmbeddingGenerator.from_config(EmbeddingConfig())
        query_vector = await generator.embed_query("What is a deload week?")
        chunk_vectors = await generator.embed_documents(texts)

    Raises EmbeddingUnavailable for any provider failure.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        max_concurrency: int = 4,
        min_interval_s: float = 0.0,
        expected_dimension: Optional[int] = None,
    ):
        self.provider = provider
        self.min_interval_s = min_interval_s
        self.expected_dimension = expected_dimension
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._interval_lock = asyncio.Lock()
        self._last_call = 0.0

    @classmethod
    def from_config(cls, config: Optional[EmbeddingConfig] = None) -> "EmbeddingGenerator":
        config = config or EmbeddingConfig()
        if config.provider == "remote":
            provider = RemoteEmbeddingProvider(
                base_url=config.base_url,
                model_name=config.model_name,
                api_key=config.api_key,
                timeout_s=config.timeout_s,
            )
        else:
            provider = SentenceTransformerProvider(
                model_name=config.model_name,
                device=config.device,
                batch_size=config.batch_size,
            )
        return cls(
            provider,
            max_concurrency=config.max_concurrency,
            min_interval_s=config.min_interval_s,
            expected_dimension=config.expected_dimension,
        )

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    async def _wait_for_slot(self):
        if self.min_interval_s <= 0:
            return
        async with self._interval_lock:
            elapsed = time.monotonic() - self._last_call
            if elapsed < self.min_interval_s:
                await asyncio.sleep(self.min_interval_s - elapsed)
            self._last_call = time.monotonic()

    async def _embed(self, texts: Sequence[str], is_query: bool) -> List[EmbeddingVector]:
        for text in texts:
            if not text or not text.strip():
                raise ValueError("Cannot embed empty text")

        async with self._semaphore:
            await self._wait_for_slot()
            try:
                raw = await self.provider.embed(texts, is_query=is_query)
            except Exception as e:
                log.warning(f"Embedding provider {self.model_name} failed: {e}")
                raise EmbeddingUnavailable(f"Embedding provider failed: {e}") from e

        if len(raw) != len(texts):
            raise EmbeddingUnavailable(
                f"Embedding provider returned {len(raw)} vectors for {len(texts)} texts"
            )

        try:
            vectors = [EmbeddingVector.of(values, model=self.model_name) for values in raw]
        except ValueError as e:
            raise EmbeddingUnavailable(f"Embedding provider returned an invalid vector: {e}") from e

        if self.expected_dimension is not None:
            for vector in vectors:
                if vector.dimension != self.expected_dimension:
                    raise DimensionMismatch(self.expected_dimension, vector.dimension)

        return vectors

    async def embed_query(self, text: str) -> EmbeddingVector:
        """Embed a query on the request path."""
        vectors = await self._embed([text], is_query=True)
        return vectors[0]

    async def embed_documents(self, texts: Sequence[str]) -> List[EmbeddingVector]:
        """Embed chunk texts (backfill path)."""
        if not texts:
            return []
        log.debug(f"Embedding {len(texts)} documents with {self.model_name}")
        return await self._embed(texts, is_query=False)

    async def close(self):
        await self.provider.close()

    def __repr__(self) -> str:
        return f"EmbeddingGenerator(provider={self.provider!r}, expected_dim={self.expected_dimension})"
