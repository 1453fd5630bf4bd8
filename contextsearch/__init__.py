"""
contextsearch: Hybrid retrieval over local documentation packages

Indexes markdown documentation packages and answers queries with:
- SQLite FTS5 full-text search (BM25 with weighted fields)
- USearch HNSW vector search over chunk embeddings
- Hybrid search fusing both with weighted Reciprocal Rank Fusion

Key Features:
- Heading-aware markdown chunking with frontmatter metadata
- Package and tag filters
- Path keyword and README/index document boosts
- Multiple embedding providers (Ollama, OpenAI, HuggingFace, Jina AI)
- Provenance checks between query embeddings and the vector index
- Immutable index snapshots swapped atomically on rebuild
- LRU cache for embedding queries
- REST API (FastAPI) and CLI

References:
- Reciprocal Rank Fusion: https://plg.uwaterloo.ca/~gvcormac/cormacksigir09-rrf.pdf
- USearch: https://github.com/unum-cloud/usearch
"""

__version__ = "1.0.0"

from .config import EmbeddingConfig, SearchConfig
from .errors import (
    ContextSearchError,
    DocumentParseError,
    EmbeddingProviderError,
    EmptyCorpusError,
    IndexLoadError,
    IndexNotReadyError,
    ProvenanceMismatchError,
    VectorSearchUnavailableError,
)
from .models import (
    Chunk,
    ChunkMetadata,
    FusionResult,
    FusionSources,
    IndexedVector,
    IndexState,
    Provenance,
    RankedResult,
    SearchMode,
    SourceDocument,
)
from .chunking import chunk_document, chunk_documents
from .loaders import load_package, parse_markdown
from .embeddings import (
    BaseEmbeddingProvider,
    EmbeddingResult,
    HuggingFaceEmbedding,
    JinaEmbedding,
    OllamaEmbedding,
    OpenAIEmbedding,
    create_embedding_provider,
    detect_provider,
    get_cache,
)
from .storage import LexicalIndex
from .index import VectorIndex
from .fusion import RRFOptions, fuse_and_rank, normalize_scores, reciprocal_rank_fusion
from .search import IndexSnapshot, SearchEngine, SearchOutcome
from .indexer import (
    IndexBuildResult,
    build_search_index,
    open_search_engine,
    rebuild_search_engine,
)

__all__ = [
    # Core
    "SearchConfig",
    "EmbeddingConfig",
    "SearchEngine",
    "SearchOutcome",
    "IndexSnapshot",
    "build_search_index",
    "open_search_engine",
    "rebuild_search_engine",
    "IndexBuildResult",
    # Models
    "Chunk",
    "ChunkMetadata",
    "SourceDocument",
    "IndexedVector",
    "Provenance",
    "RankedResult",
    "FusionResult",
    "FusionSources",
    "IndexState",
    "SearchMode",
    # Loaders & Chunking
    "load_package",
    "parse_markdown",
    "chunk_document",
    "chunk_documents",
    # Embeddings
    "BaseEmbeddingProvider",
    "EmbeddingResult",
    "OllamaEmbedding",
    "OpenAIEmbedding",
    "HuggingFaceEmbedding",
    "JinaEmbedding",
    "create_embedding_provider",
    "detect_provider",
    "get_cache",
    # Components
    "LexicalIndex",
    "VectorIndex",
    # Fusion
    "RRFOptions",
    "reciprocal_rank_fusion",
    "normalize_scores",
    "fuse_and_rank",
    # Errors
    "ContextSearchError",
    "IndexNotReadyError",
    "IndexLoadError",
    "VectorSearchUnavailableError",
    "ProvenanceMismatchError",
    "EmbeddingProviderError",
    "DocumentParseError",
    "EmptyCorpusError",
]
