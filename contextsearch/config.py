"""Configuration models for the contextsearch engine."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class EmbeddingConfig:
    """Configuration for embedding providers."""

    provider: str = "auto"  # 'auto', 'ollama', 'openai', 'huggingface', 'jina'
    model: Optional[str] = None  # Uses provider default if None
    api_key: Optional[str] = None  # Uses env var if None
    ollama_base_url: str = "http://localhost:11434"
    use_cache: bool = True


@dataclass
class SearchConfig:
    """Configuration for indexing and hybrid search."""

    # Storage layout
    context_dir: str = ".context"
    packages_dir: str = "packages"
    index_file: str = "search-index.db"
    vector_dir: str = "vectors.usearch"

    # Reciprocal Rank Fusion
    rrf_k: int = 60
    fulltext_weight: float = 0.4
    vector_weight: float = 0.6  # favor semantic results to reduce keyword noise

    # Query settings
    default_limit: int = 10
    fetch_multiplier: int = 2  # candidates fetched per source = limit * multiplier

    # Post-fusion boosts
    path_keyword_boost: float = 1.15
    index_document_boost: float = 1.25

    # Chunking settings (characters)
    min_chunk_size: int = 100
    target_chunk_size: int = 500
    namespace_chunk_ids: bool = False

    # USearch HNSW parameters
    metric: str = "l2sq"  # 'l2sq', 'cos', 'ip'
    dtype: str = "f32"
    connectivity: int = 32
    expansion_add: int = 128
    expansion_search: int = 64

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)

    def __post_init__(self):
        for name in ("fulltext_weight", "vector_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if isinstance(self.rrf_k, bool) or not isinstance(self.rrf_k, int) or self.rrf_k <= 0:
            raise ValueError(f"rrf_k must be a positive integer, got {self.rrf_k!r}")
        if self.fetch_multiplier < 1:
            raise ValueError("fetch_multiplier must be >= 1")
        if self.default_limit < 1:
            raise ValueError("default_limit must be >= 1")
        if self.min_chunk_size > self.target_chunk_size:
            raise ValueError("min_chunk_size must not exceed target_chunk_size")

    def index_path(self, context_dir: Optional[str] = None) -> Path:
        return Path(context_dir or self.context_dir) / self.index_file

    def vector_path(self, context_dir: Optional[str] = None) -> Path:
        return Path(context_dir or self.context_dir) / self.vector_dir

    def package_path(self, alias: str, context_dir: Optional[str] = None) -> Path:
        return Path(context_dir or self.context_dir) / self.packages_dir / alias
