from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import requests

from conftest import FakeEmbedding
from contextsearch.embeddings import (
    EmbeddingCache,
    HuggingFaceEmbedding,
    JinaEmbedding,
    OllamaEmbedding,
    OpenAIEmbedding,
    create_embedding_provider,
    detect_provider,
    get_cache,
    is_ollama_available,
)
from contextsearch.errors import EmbeddingProviderError


class TestEmbeddingCache:
    """LRU cache behaviour."""

    def test_hit_and_miss_counts(self):
        cache = EmbeddingCache(maxsize=10)
        assert cache.get("text", "m") is None
        cache.set("text", "m", [1.0])

        assert cache.get("text", "m") == [1.0]
        assert cache.get("text", "other-model") is None
        stats = cache.stats()
        assert (stats["hits"], stats["misses"], stats["size"]) == (1, 2, 1)

    def test_evicts_least_recently_used(self):
        cache = EmbeddingCache(maxsize=2)
        cache.set("a", "m", [1.0])
        cache.set("b", "m", [2.0])
        cache.get("a", "m")
        cache.set("c", "m", [3.0])

        assert cache.get("b", "m") is None
        assert cache.get("a", "m") == [1.0]
        assert cache.get("c", "m") == [3.0]

    def test_clear(self):
        cache = EmbeddingCache()
        cache.set("a", "m", [1.0])
        cache.clear()
        assert cache.stats()["size"] == 0
        assert cache.stats()["hit_rate"] == 0

    def test_shared_between_threads(self):
        cache = EmbeddingCache(maxsize=4)
        keys = [f"text-{i}" for i in range(8)]

        def worker(offset):
            for i in range(5000):
                key = keys[(i + offset) % len(keys)]
                if cache.get(key, "m") is None:
                    cache.set(key, "m", [float(i)])

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(worker, range(8)))

        stats = cache.stats()
        assert stats["size"] <= 4
        assert stats["hits"] + stats["misses"] == 8 * 5000


class TestBaseProvider:
    """Shared batching, caching and error handling."""

    def test_generate_batches_by_batch_size(self, fake_embedder):
        result = fake_embedder.generate([f"text {i}" for i in range(10)])

        assert len(result.vectors) == 10
        assert [len(call) for call in fake_embedder.calls] == [4, 4, 2]
        assert (result.provider, result.model, result.dimensions) == ("fake", "fake-hash-16", 16)

    def test_generate_is_deterministic(self, fake_embedder):
        first = fake_embedder.generate(["same text"]).vectors
        second = fake_embedder.generate(["same text"]).vectors
        assert first == second

    def test_cache_avoids_repeat_calls(self):
        embedder = FakeEmbedding(use_cache=True)
        embedder.embed(["a", "b"])
        embedder.embed(["b", "c"])

        assert embedder.calls == [["a", "b"], ["c"]]
        assert get_cache().stats()["hits"] == 1

    def test_cache_keyed_by_provider_and_model(self):
        FakeEmbedding(use_cache=True).embed("shared")
        other = FakeEmbedding(model="other-model", use_cache=True)
        other.embed("shared")
        assert other.calls == [["shared"]]

    def test_failure_wrapped(self, fake_embedder):
        fake_embedder.fail = True
        with pytest.raises(EmbeddingProviderError, match="provider offline"):
            fake_embedder.generate(["text"])

    def test_wrong_vector_count_rejected(self):
        embedder = FakeEmbedding(use_cache=True)
        embedder._embed_batch = lambda texts: []
        with pytest.raises(EmbeddingProviderError):
            embedder.generate(["a", "b"])

    def test_embed_query(self, fake_embedder):
        vector = fake_embedder.embed_query("hello world")
        assert len(vector) == 16
        assert vector[0] == 1.0

    def test_provenance(self, fake_embedder):
        provenance = fake_embedder.provenance()
        assert (provenance.provider, provenance.model, provenance.dimensions) == ("fake", "fake-hash-16", 16)
        assert provenance.created_at


class TestOllama:
    """Ollama HTTP provider."""

    def test_embed_batch_posts_to_embed_endpoint(self):
        response = Mock()
        response.json.return_value = {"embeddings": [[0.1, 0.2, 0.3]]}
        response.raise_for_status.return_value = None

        embedder = OllamaEmbedding(base_url="http://ollama:11434/", use_cache=False)
        with patch("contextsearch.embeddings.requests.post", return_value=response) as post:
            vectors = embedder.embed(["hello"])

        assert vectors == [[0.1, 0.2, 0.3]]
        post.assert_called_once()
        assert post.call_args.args[0] == "http://ollama:11434/api/embed"
        assert post.call_args.kwargs["json"] == {"model": "nomic-embed-text", "input": ["hello"]}
        assert embedder.dimension == 3

    def test_defaults(self):
        embedder = OllamaEmbedding()
        assert (embedder.model, embedder.dimension, embedder.batch_size) == ("nomic-embed-text", 768, 50)


class TestOpenAI:
    """OpenAI provider."""

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="OpenAI API key required"):
            OpenAIEmbedding()

    def test_results_reordered_by_index(self):
        embedder = OpenAIEmbedding(openai_api_key="sk-test", use_cache=False)
        embedder.client = Mock()
        embedder.client.embeddings.create.return_value = SimpleNamespace(data=[
            SimpleNamespace(index=1, embedding=[2.0]),
            SimpleNamespace(index=0, embedding=[1.0]),
        ])

        assert embedder.embed(["first", "second"]) == [[1.0], [2.0]]
        assert (embedder.model, embedder.dimension, embedder.batch_size) == ("text-embedding-3-small", 1536, 100)


class TestOtherProviders:
    """HuggingFace and Jina defaults."""

    def test_huggingface_defaults_without_loading_model(self):
        embedder = HuggingFaceEmbedding()
        assert (embedder.model, embedder.dimension, embedder.batch_size) == ("all-MiniLM-L6-v2", 384, 32)
        assert embedder._model is None

    def test_jina_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("JINA_API_KEY", raising=False)
        with pytest.raises(ValueError):
            JinaEmbedding()

    def test_jina_defaults(self):
        embedder = JinaEmbedding(jina_api_key="jina-test")
        assert (embedder.model, embedder.dimension) == ("jina-embeddings-v3", 1024)


class TestDetection:
    """Provider auto-detection."""

    def _tags_response(self, names):
        response = Mock()
        response.ok = True
        response.json.return_value = {"models": [{"name": n} for n in names]}
        return response

    def test_ollama_with_embedding_model(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        with patch("contextsearch.embeddings.requests.get", return_value=self._tags_response(["nomic-embed-text:latest"])) as get:
            assert detect_provider() == "ollama"
        assert get.call_args.kwargs["timeout"] == 2.0

    def test_ollama_without_embedding_model_falls_through(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        with patch("contextsearch.embeddings.requests.get", return_value=self._tags_response(["llama3:8b"])):
            assert detect_provider() == "openai"

    def test_ollama_unreachable(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with patch("contextsearch.embeddings.requests.get", side_effect=requests.ConnectionError("refused")):
            assert not is_ollama_available()
            assert detect_provider() == "huggingface"


class TestFactory:
    """create_embedding_provider."""

    def test_named_providers(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert isinstance(create_embedding_provider("ollama"), OllamaEmbedding)
        assert isinstance(create_embedding_provider("OpenAI"), OpenAIEmbedding)
        assert isinstance(create_embedding_provider("hf"), HuggingFaceEmbedding)

    def test_model_override(self):
        embedder = create_embedding_provider("ollama", "mxbai-embed-large", base_url="http://h:1")
        assert embedder.model == "mxbai-embed-large"
        assert embedder.dimension == 1024
        assert embedder.base_url == "http://h:1"

    def test_auto_uses_detection(self):
        with patch("contextsearch.embeddings.detect_provider", return_value="huggingface"):
            assert isinstance(create_embedding_provider("auto", base_url="http://h:1"), HuggingFaceEmbedding)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_embedding_provider("word2vec")
