"""Embedding generation with caching and multiple provider support."""

import hashlib
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Union

import requests
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from .errors import EmbeddingProviderError
from .models import Provenance

logger = logging.getLogger(__name__)

# Embedding models Ollama can serve that we recognise during detection
OLLAMA_EMBED_MODELS = ("nomic-embed", "mxbai-embed", "all-minilm")


@dataclass
class EmbeddingResult:
    """Vectors generated for a batch of texts."""
    vectors: List[List[float]]
    model: str
    dimensions: int
    provider: str


class EmbeddingCache:
    """
    LRU cache for embeddings to avoid redundant API calls.

    Safe to share between threads; queries embed from worker threads.
    """

    def __init__(self, maxsize: int = 1000):
        self._cache: Dict[str, List[float]] = {}
        self._maxsize = maxsize
        self._access_order: List[str] = []
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def _hash_text(self, text: str, model: str) -> str:
        """Create a hash key for text + model combination."""
        return hashlib.sha256(f"{model}:{text}".encode()).hexdigest()[:16]

    def get(self, text: str, model: str) -> Optional[List[float]]:
        """Get cached embedding if exists."""
        key = self._hash_text(text, model)
        with self._lock:
            if key in self._cache:
                self._hits += 1
                # Move to end (most recently used)
                self._access_order.remove(key)
                self._access_order.append(key)
                return self._cache[key]
            self._misses += 1
            return None

    def set(self, text: str, model: str, embedding: List[float]) -> None:
        """Cache an embedding."""
        key = self._hash_text(text, model)
        with self._lock:
            if key not in self._cache:
                # Evict oldest if at capacity
                if len(self._cache) >= self._maxsize:
                    oldest = self._access_order.pop(0)
                    del self._cache[oldest]
                self._access_order.append(key)
            self._cache[key] = embedding

    def stats(self) -> Dict[str, float]:
        """Return cache statistics."""
        with self._lock:
            hits, misses, size = self._hits, self._misses, len(self._cache)
        total = hits + misses
        return {
            "hits": hits,
            "misses": misses,
            "hit_rate": hits / total if total > 0 else 0,
            "size": size,
            "maxsize": self._maxsize,
        }

    def clear(self) -> None:
        """Clear the cache."""
        with self._lock:
            self._cache.clear()
            self._access_order.clear()
            self._hits = 0
            self._misses = 0


# Global cache instance
_embedding_cache = EmbeddingCache(maxsize=1000)


def get_cache() -> EmbeddingCache:
    """Get the global embedding cache."""
    return _embedding_cache


class BaseEmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Subclasses implement `_embed_batch` and `dimension`; everything else
    (caching, batching, error wrapping, provenance) lives here.
    """

    name: str = "base"
    default_model: str = ""
    batch_size: int = 32

    def __init__(self, model: Optional[str] = None, use_cache: bool = True):
        self.model = model or self.default_model
        self.use_cache = use_cache

    @abstractmethod
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a batch of texts (provider-specific)."""
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return embedding dimension for this model."""
        pass

    def _cache_key_model(self) -> str:
        return f"{self.name}/{self.model}"

    def embed(self, texts: Union[str, List[str]]) -> List[List[float]]:
        """
        Generate embeddings with caching.

        Args:
            texts: Single text or list of texts

        Returns:
            List of embedding vectors
        """
        if isinstance(texts, str):
            texts = [texts]

        if not self.use_cache:
            return self._embed_batch(texts)

        cache = get_cache()
        cache_model = self._cache_key_model()
        results: List[Optional[List[float]]] = [None] * len(texts)
        texts_to_embed: List[Tuple[int, str]] = []

        # Check cache first
        for i, text in enumerate(texts):
            cached = cache.get(text, cache_model)
            if cached is not None:
                results[i] = cached
            else:
                texts_to_embed.append((i, text))

        # Embed uncached texts
        if texts_to_embed:
            indices, uncached_texts = zip(*texts_to_embed)
            new_embeddings = self._embed_batch(list(uncached_texts))
            if len(new_embeddings) != len(uncached_texts):
                raise EmbeddingProviderError(
                    f"{self.name} returned {len(new_embeddings)} vectors for {len(uncached_texts)} texts"
                )

            for idx, text, embedding in zip(indices, uncached_texts, new_embeddings):
                cache.set(text, cache_model, embedding)
                results[idx] = embedding

        return results  # type: ignore

    def generate(self, texts: List[str]) -> EmbeddingResult:
        """
        Embed many texts in provider-sized batches.

        Raises:
            EmbeddingProviderError: If any batch fails
        """
        logger.debug(f"Generating {len(texts)} embeddings with {self.name}")
        vectors: List[List[float]] = []
        try:
            for start in range(0, len(texts), self.batch_size):
                vectors.extend(self.embed(texts[start:start + self.batch_size]))
        except EmbeddingProviderError:
            raise
        except Exception as e:
            raise EmbeddingProviderError(f"{self.name} embedding failed: {e}") from e

        return EmbeddingResult(
            vectors=vectors,
            model=self.model,
            dimensions=len(vectors[0]) if vectors else self.dimension,
            provider=self.name,
        )

    def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        return self.generate([text]).vectors[0]

    def provenance(self) -> Provenance:
        """Identity stamped on vector indexes built with this provider."""
        return Provenance(
            provider=self.name,
            model=self.model,
            dimensions=self.dimension,
            created_at=datetime.now(timezone.utc).isoformat(),
        )


class OllamaEmbedding(BaseEmbeddingProvider):
    """
    Ollama embedding provider (local HTTP server).

    Example:
        >>> embedder = OllamaEmbedding("nomic-embed-text")
        >>> embeddings = embedder.embed(["Hello world"])
    """

    name = "ollama"
    default_model = "nomic-embed-text"
    batch_size = 50

    MODEL_DIMENSIONS = {
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
    }

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: str = "http://localhost:11434",
        use_cache: bool = True,
        timeout: float = 60.0,
    ):
        super().__init__(model, use_cache)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> int:
        if self._dimension is not None:
            return self._dimension
        return self.MODEL_DIMENSIONS.get(self.model, 768)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings via the Ollama /api/embed endpoint."""
        response = requests.post(
            f"{self.base_url}/api/embed",
            json={"model": self.model, "input": texts},
            timeout=self.timeout,
        )
        response.raise_for_status()
        embeddings = response.json()["embeddings"]
        if embeddings:
            self._dimension = len(embeddings[0])
        return embeddings


class OpenAIEmbedding(BaseEmbeddingProvider):
    """OpenAI embedding provider with retries and caching."""

    name = "openai"
    default_model = "text-embedding-3-small"
    batch_size = 100

    # Known dimensions for OpenAI models
    MODEL_DIMENSIONS = {
        "text-embedding-3-large": 3072,
        "text-embedding-3-small": 1536,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, model: Optional[str] = None, openai_api_key: Optional[str] = None, use_cache: bool = True):
        super().__init__(model, use_cache)
        self.api_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass openai_api_key parameter."
            )
        self.client = OpenAI(api_key=self.api_key)

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model, 1536)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings via OpenAI API."""
        response = self.client.embeddings.create(
            model=self.model,
            input=texts,
        )

        # Sort by index to ensure correct order
        embeddings = sorted(response.data, key=lambda x: x.index)
        return [emb.embedding for emb in embeddings]


class HuggingFaceEmbedding(BaseEmbeddingProvider):
    """
    HuggingFace sentence-transformers embedding provider (local, free).

    Requires the `huggingface` extra (sentence-transformers).

    Note: HuggingFace token is optional but recommended for private models
    and to avoid rate limits. Set HF_TOKEN environment variable.
    """

    name = "huggingface"
    default_model = "all-MiniLM-L6-v2"
    batch_size = 32

    # Known dimensions for common models
    MODEL_DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "sentence-transformers/all-MiniLM-L6-v2": 384,
        "all-MiniLM-L12-v2": 384,
        "all-mpnet-base-v2": 768,
        "BAAI/bge-small-en-v1.5": 384,
        "BAAI/bge-base-en-v1.5": 768,
        "BAAI/bge-large-en-v1.5": 1024,
    }

    def __init__(
        self,
        model: Optional[str] = None,
        hf_token: Optional[str] = None,
        use_cache: bool = True,
    ):
        super().__init__(model, use_cache)
        self.hf_token = hf_token or os.environ.get("HF_TOKEN")
        self._model = None
        self._dimension: Optional[int] = None

    def _load_model(self):
        """Lazy-load the model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise EmbeddingProviderError(
                    "sentence-transformers not installed. "
                    "Run: pip install 'contextsearch[huggingface]'"
                ) from e
            logger.info(f"Loading embedding model: {self.model}")
            self._model = SentenceTransformer(self.model, token=self.hf_token)
            self._dimension = self._model.get_sentence_embedding_dimension()
        return self._model

    @property
    def dimension(self) -> int:
        if self._dimension is not None:
            return self._dimension
        if self.model in self.MODEL_DIMENSIONS:
            return self.MODEL_DIMENSIONS[self.model]
        self._load_model()
        return self._dimension or 384

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate normalized embeddings using sentence-transformers."""
        model = self._load_model()
        embeddings = model.encode(texts, convert_to_numpy=True, normalize_embeddings=True)
        return embeddings.tolist()


class JinaEmbedding(BaseEmbeddingProvider):
    """
    Jina AI embedding provider (API-based).

    Requires: JINA_API_KEY environment variable
    """

    name = "jina"
    default_model = "jina-embeddings-v3"
    batch_size = 100

    API_URL = "https://api.jina.ai/v1/embeddings"

    MODEL_DIMENSIONS = {
        "jina-embeddings-v3": 1024,
        "jina-embeddings-v2-base-en": 768,
        "jina-embeddings-v2-small-en": 512,
    }

    def __init__(
        self,
        model: Optional[str] = None,
        jina_api_key: Optional[str] = None,
        use_cache: bool = True,
        task: Optional[str] = None,
    ):
        super().__init__(model, use_cache)
        self.api_key = jina_api_key or os.environ.get("JINA_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Jina API key required. Set JINA_API_KEY environment variable "
                "or pass jina_api_key parameter."
            )
        self.task = task

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self.model, 1024)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
    )
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings via Jina AI API."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        payload = {
            "model": self.model,
            "input": texts,
        }
        if self.task:
            payload["task"] = self.task

        response = requests.post(self.API_URL, headers=headers, json=payload, timeout=60)
        response.raise_for_status()

        data = response.json()
        return [item["embedding"] for item in data["data"]]


# ============ Provider Detection ============

def is_ollama_available(base_url: str = "http://localhost:11434", timeout: float = 2.0) -> bool:
    """Check whether Ollama is running with an embedding model pulled."""
    try:
        response = requests.get(f"{base_url.rstrip('/')}/api/tags", timeout=timeout)
        if not response.ok:
            return False
        models = response.json().get("models") or []
    except (requests.RequestException, ValueError):
        return False
    return any(
        any(marker in m.get("name", "") for marker in OLLAMA_EMBED_MODELS)
        for m in models
    )


def detect_provider(ollama_base_url: str = "http://localhost:11434") -> str:
    """
    Detect the best available embedding provider.

    Priority: Ollama -> OpenAI -> HuggingFace (local fallback).
    """
    if is_ollama_available(ollama_base_url):
        logger.debug("Detected Ollama with embedding model")
        return "ollama"

    if os.environ.get("OPENAI_API_KEY"):
        logger.debug("Detected OpenAI API key")
        return "openai"

    logger.debug("Using sentence-transformers embeddings (fallback)")
    return "huggingface"


# ============ Provider Factory ============

def create_embedding_provider(
    provider: str = "auto",
    model: Optional[str] = None,
    **kwargs
) -> BaseEmbeddingProvider:
    """
    Factory function to create embedding providers.

    Args:
        provider: Provider name ('auto', 'ollama', 'openai', 'huggingface', 'jina')
        model: Model name (uses provider default if not specified)
        **kwargs: Additional provider-specific arguments

    Returns:
        Configured embedding provider

    Example:
        >>> embedder = create_embedding_provider("ollama")
        >>> embedder = create_embedding_provider("openai", "text-embedding-3-small")
    """
    provider = provider.lower()

    if provider == "auto":
        provider = detect_provider(kwargs.get("base_url", "http://localhost:11434"))
        logger.info(f"Using embedding provider: {provider}")

    if provider == "ollama":
        return OllamaEmbedding(model, **kwargs)

    kwargs.pop("base_url", None)

    if provider == "openai":
        return OpenAIEmbedding(model, **kwargs)

    elif provider in ("huggingface", "hf", "sentence-transformers"):
        return HuggingFaceEmbedding(model, **kwargs)

    elif provider in ("jina", "jina-ai"):
        return JinaEmbedding(model, **kwargs)

    else:
        raise ValueError(
            f"Unknown provider: {provider}. "
            f"Supported: 'auto', 'ollama', 'openai', 'huggingface', 'jina'"
        )
