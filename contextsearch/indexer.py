"""Index build pipeline: load packages, chunk, build and persist both indexes."""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .chunking import chunk_documents
from .config import EmbeddingConfig, SearchConfig
from .embeddings import BaseEmbeddingProvider, EmbeddingResult, create_embedding_provider
from .errors import EmptyCorpusError, IndexLoadError
from .index import VectorIndex
from .loaders import load_package
from .models import Chunk, IndexedVector, Provenance
from .search import IndexSnapshot, SearchEngine
from .storage import LexicalIndex

logger = logging.getLogger(__name__)


@dataclass
class IndexBuildResult:
    """Summary of an index build."""
    chunk_count: int
    file_count: int
    packages: List[str] = field(default_factory=list)
    index_path: Optional[str] = None
    vector_index_path: Optional[str] = None
    embedding_provider: Optional[str] = None
    embedding_model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_count": self.chunk_count,
            "file_count": self.file_count,
            "packages": self.packages,
            "index_path": self.index_path,
            "vector_index_path": self.vector_index_path,
            "embedding_provider": self.embedding_provider,
            "embedding_model": self.embedding_model,
        }


def _provider_kwargs(provider: str, embedding: EmbeddingConfig) -> Dict[str, Any]:
    """Constructor arguments for `provider` taken from the embedding config."""
    kwargs: Dict[str, Any] = {"use_cache": embedding.use_cache}
    if provider in ("auto", "ollama"):
        kwargs["base_url"] = embedding.ollama_base_url
    if embedding.api_key:
        if provider == "openai":
            kwargs["openai_api_key"] = embedding.api_key
        elif provider in ("jina", "jina-ai"):
            kwargs["jina_api_key"] = embedding.api_key
        elif provider in ("huggingface", "hf", "sentence-transformers"):
            kwargs["hf_token"] = embedding.api_key
    return kwargs


def create_configured_provider(
    embedding: EmbeddingConfig,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> BaseEmbeddingProvider:
    """Create an embedding provider from config, optionally overriding provider/model."""
    name = (provider or embedding.provider).lower()
    return create_embedding_provider(
        name,
        model if model is not None else embedding.model,
        **_provider_kwargs(name, embedding),
    )


def discover_packages(context_dir: Union[str, Path], config: Optional[SearchConfig] = None) -> List[str]:
    """List package aliases present under `<context_dir>/<packages_dir>`."""
    config = config or SearchConfig()
    packages_root = Path(context_dir) / config.packages_dir
    if not packages_root.is_dir():
        return []
    return sorted(
        p.name for p in packages_root.iterdir()
        if p.is_dir() and not p.name.startswith(".")
    )


def _collect_chunks(
    context_dir: Path,
    packages: Sequence[str],
    config: SearchConfig,
) -> Tuple[List[Chunk], int, List[str]]:
    chunks: List[Chunk] = []
    file_count = 0
    indexed_packages: List[str] = []

    for alias in packages:
        package_path = config.package_path(alias, str(context_dir))
        if not package_path.is_dir():
            logger.warning(f"Package directory not found, skipping: {package_path}")
            continue

        documents = load_package(package_path, alias, context_dir)
        package_chunks = chunk_documents(
            documents,
            alias,
            min_chunk_size=config.min_chunk_size,
            target_chunk_size=config.target_chunk_size,
            namespace_ids=config.namespace_chunk_ids,
        )
        if not package_chunks:
            logger.warning(f"Package {alias} produced no chunks, skipping")
            continue

        logger.debug(f"Package {alias}: {len(documents)} files, {len(package_chunks)} chunks")
        file_count += len(documents)
        chunks.extend(package_chunks)
        indexed_packages.append(alias)

    return chunks, file_count, indexed_packages


def _build_vectors(
    chunks: Sequence[Chunk],
    result: EmbeddingResult,
    target: Path,
    config: SearchConfig,
) -> VectorIndex:
    provenance = Provenance(
        provider=result.provider,
        model=result.model,
        dimensions=result.dimensions,
        created_at=datetime.now(timezone.utc).isoformat(),
    )
    records = [IndexedVector.from_chunk(c, v) for c, v in zip(chunks, result.vectors)]
    return VectorIndex.build(
        target,
        records,
        provenance,
        metric=config.metric,
        dtype=config.dtype,
        connectivity=config.connectivity,
        expansion_add=config.expansion_add,
        expansion_search=config.expansion_search,
    )


def _build(
    context_dir: Union[str, Path],
    packages: Optional[Sequence[str]],
    config: SearchConfig,
    semantic: bool,
    embedder: Optional[BaseEmbeddingProvider],
) -> Tuple[IndexBuildResult, IndexSnapshot, Optional[BaseEmbeddingProvider]]:
    root = Path(context_dir)
    aliases = list(packages) if packages is not None else discover_packages(root, config)

    chunks, file_count, indexed_packages = _collect_chunks(root, aliases, config)
    if not chunks:
        raise EmptyCorpusError(
            f"No content to index in {root} (packages: {', '.join(aliases) or 'none'})"
        )

    lexical = LexicalIndex.build(chunks)

    # Embed before touching disk so a provider failure leaves the previous indexes paired
    embeddings: Optional[EmbeddingResult] = None
    if semantic:
        if embedder is None:
            embedder = create_configured_provider(config.embedding)
        logger.info(f"Generating embeddings for {len(chunks)} chunks with {embedder.name}/{embedder.model}")
        embeddings = embedder.generate([c.content for c in chunks])

    index_path = lexical.save(config.index_path(str(root)))
    logger.info(f"Indexed {len(chunks)} chunks from {file_count} files into {index_path}")

    result = IndexBuildResult(
        chunk_count=len(chunks),
        file_count=file_count,
        packages=indexed_packages,
        index_path=str(index_path),
    )

    vector_path = config.vector_path(str(root))
    vector: Optional[VectorIndex] = None
    if embeddings is not None:
        try:
            vector = _build_vectors(chunks, embeddings, vector_path, config)
        except Exception:
            # Vectors from a previous build no longer match the saved chunks
            shutil.rmtree(vector_path, ignore_errors=True)
            raise
        provenance = vector.metadata()
        result.vector_index_path = str(vector_path)
        result.embedding_provider = provenance.provider
        result.embedding_model = provenance.model
        logger.info(f"Vector index built with {len(vector)} vectors ({provenance.provider}/{provenance.model})")
    elif vector_path.exists():
        # Vectors from a previous build no longer match the new chunks
        shutil.rmtree(vector_path)
        logger.info(f"Removed stale vector index at {vector_path}")

    return result, IndexSnapshot(lexical=lexical, vector=vector), embedder


def build_search_index(
    context_dir: Union[str, Path],
    packages: Optional[Sequence[str]] = None,
    config: Optional[SearchConfig] = None,
    semantic: bool = False,
    embedder: Optional[BaseEmbeddingProvider] = None,
) -> IndexBuildResult:
    """
    Build and persist the search index for a set of packages.

    Args:
        context_dir: Corpus root holding `packages/<alias>` directories
        packages: Package aliases to index (defaults to every package present)
        config: Search configuration
        semantic: Also build the vector index
        embedder: Provider for semantic indexing (created from config if omitted)

    Returns:
        Build summary

    Raises:
        EmptyCorpusError: If no package produced any chunk
        EmbeddingProviderError: If embedding generation fails
    """
    result, _, _ = _build(context_dir, packages, config or SearchConfig(), semantic, embedder)
    return result


def load_snapshot(context_dir: Union[str, Path], config: Optional[SearchConfig] = None) -> IndexSnapshot:
    """Restore the persisted indexes of `context_dir`."""
    config = config or SearchConfig()
    index_path = config.index_path(str(context_dir))
    if not index_path.is_file():
        raise IndexLoadError(f"No search index at {index_path}. Build the index first.")

    lexical = LexicalIndex.load(index_path)
    vector = VectorIndex.open(config.vector_path(str(context_dir)))
    logger.info(
        f"Loaded search index: {len(lexical)} chunks"
        + (f", {len(vector)} vectors" if vector is not None else "")
    )
    return IndexSnapshot(lexical=lexical, vector=vector)


def _embedder_for(vector: Optional[VectorIndex], config: SearchConfig) -> Optional[BaseEmbeddingProvider]:
    """Create the provider that built `vector`, or None when unavailable."""
    if vector is None:
        return None
    provenance = vector.metadata()
    try:
        return create_configured_provider(config.embedding, provenance.provider, provenance.model)
    except ValueError as e:
        logger.warning(f"Embedding provider {provenance.provider} unavailable, semantic search disabled: {e}")
        return None


def open_search_engine(
    context_dir: Optional[Union[str, Path]] = None,
    config: Optional[SearchConfig] = None,
    embedder: Optional[BaseEmbeddingProvider] = None,
) -> SearchEngine:
    """
    Open a search engine over a previously built index.

    When no embedder is given and a vector index exists, the provider
    recorded in the vector index's provenance is created.

    Raises:
        IndexLoadError: If the lexical index is missing or corrupt
    """
    config = config or SearchConfig()
    root = context_dir if context_dir is not None else config.context_dir
    snapshot = load_snapshot(root, config)
    if embedder is None:
        embedder = _embedder_for(snapshot.vector, config)
    return SearchEngine(snapshot, embedder=embedder, config=config)


def rebuild_search_engine(
    engine: SearchEngine,
    context_dir: Union[str, Path],
    packages: Optional[Sequence[str]] = None,
    semantic: bool = False,
) -> IndexBuildResult:
    """
    Rebuild the indexes and swap them into a running engine.

    Rebuilds on the same engine run one at a time; queries keep using the
    old snapshot until the swap.
    """
    with engine.rebuild_lock:
        embedder = engine.embedder if semantic else None
        result, snapshot, embedder = _build(context_dir, packages, engine.config, semantic, embedder)
        if semantic:
            engine.embedder = embedder
        engine.swap(snapshot)
    return result
