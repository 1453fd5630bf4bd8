"""Query orchestration over the lexical and vector indexes (fulltext, semantic, hybrid)."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .config import SearchConfig
from .embeddings import BaseEmbeddingProvider, get_cache
from .errors import EmbeddingProviderError, ProvenanceMismatchError, VectorSearchUnavailableError
from .fusion import BoostOptions, RRFOptions, fuse_and_rank
from .index import VectorIndex
from .models import FusionResult, RankedResult, SearchMode
from .storage import LexicalIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexSnapshot:
    """The pair of indexes a query runs against; replaced whole on rebuild."""
    lexical: LexicalIndex
    vector: Optional[VectorIndex] = None


@dataclass
class SearchOutcome:
    """Results of one query plus the mode that actually produced them."""
    mode: SearchMode
    results: List[Union[FusionResult, RankedResult]] = field(default_factory=list)
    requested_mode: Optional[SearchMode] = None

    @property
    def degraded(self) -> bool:
        return self.requested_mode is not None and self.requested_mode is not self.mode


class SearchEngine:
    """Runs fulltext, semantic and hybrid queries against an index snapshot."""

    def __init__(
        self,
        snapshot: IndexSnapshot,
        embedder: Optional[BaseEmbeddingProvider] = None,
        config: Optional[SearchConfig] = None,
    ):
        self.config = config or SearchConfig()
        self.embedder = embedder
        self._snapshot = snapshot
        self.rebuild_lock = threading.RLock()
        self.rrf_options = RRFOptions.from_config(self.config)
        self.boost_options = BoostOptions.from_config(self.config)

    # ============ Snapshot management ============

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def swap(self, snapshot: IndexSnapshot) -> IndexSnapshot:
        """
        Atomically replace the active snapshot.

        Queries already running keep the snapshot they started with.

        Returns:
            The previous snapshot
        """
        with self.rebuild_lock:
            previous = self._snapshot
            self._snapshot = snapshot
        logger.info(
            f"Search index swapped: {len(snapshot.lexical)} chunks, "
            f"vector index {'present' if snapshot.vector is not None else 'absent'}"
        )
        return previous

    @property
    def has_vector_search(self) -> bool:
        vector = self._snapshot.vector
        return vector is not None and vector.is_ready

    # ============ Queries ============

    def _resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValueError(f"limit must be a positive integer, got {limit!r}")
        return limit

    def _resolve_mode(self, mode: Optional[Union[str, SearchMode]], snapshot: IndexSnapshot) -> SearchMode:
        if mode is None:
            has_vector = snapshot.vector is not None and snapshot.vector.is_ready
            return SearchMode.HYBRID if has_vector else SearchMode.FULLTEXT
        return SearchMode(mode)

    def _check_vector_available(self, snapshot: IndexSnapshot) -> VectorIndex:
        """Return the usable vector index or raise VectorSearchUnavailableError."""
        vector = snapshot.vector
        if vector is None or not vector.is_ready:
            raise VectorSearchUnavailableError(
                "No vector index available. Rebuild the index with semantic search enabled."
            )
        if self.embedder is None:
            raise VectorSearchUnavailableError("No embedding provider configured for semantic search")

        provenance = vector.metadata()
        if (self.embedder.name, self.embedder.model) != (provenance.provider, provenance.model):
            raise ProvenanceMismatchError(
                f"Vector index was built with {provenance.provider}/{provenance.model}, "
                f"but the query embedder is {self.embedder.name}/{self.embedder.model}"
            )
        return vector

    async def _embed_query(self, query: str) -> List[float]:
        try:
            return await asyncio.to_thread(self.embedder.embed_query, query)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            raise EmbeddingProviderError(f"Query embedding failed: {e}") from e

    def _filter_by_tags(
        self,
        lexical: LexicalIndex,
        results: List[RankedResult],
        tags: Optional[Sequence[str]],
    ) -> List[RankedResult]:
        if not tags or not results:
            return results
        allowed = lexical.ids_with_tags([r.id for r in results], tags)
        return [r for r in results if r.id in allowed]

    async def query(
        self,
        query: str,
        mode: Optional[Union[str, SearchMode]] = None,
        packages: Optional[Sequence[str]] = None,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> SearchOutcome:
        """
        Run one query and report which mode served it.

        Args:
            query: Free-text query
            mode: 'fulltext', 'semantic' or 'hybrid'; defaults to hybrid when a
                vector index is present, else fulltext
            packages: Restrict results to these packages
            tags: Restrict results to chunks carrying all of these tags
            limit: Maximum results (defaults to config.default_limit)

        Raises:
            VectorSearchUnavailableError: semantic mode without a usable vector index
            EmbeddingProviderError: the query embedding could not be generated
            IndexNotReadyError: the lexical index is not ready
            ValueError: unknown mode or non-positive limit
        """
        snapshot = self._snapshot
        limit = self._resolve_limit(limit)
        requested = self._resolve_mode(mode, snapshot)
        lexical = snapshot.lexical
        fetch_limit = limit * self.config.fetch_multiplier

        if requested is SearchMode.FULLTEXT:
            results = await asyncio.to_thread(
                lexical.search, query, packages=packages, tags=tags, limit=limit
            )
            return SearchOutcome(SearchMode.FULLTEXT, results, requested)

        if requested is SearchMode.SEMANTIC:
            vector = self._check_vector_available(snapshot)
            embedding = await self._embed_query(query)
            hits = await asyncio.to_thread(vector.search, embedding, fetch_limit, packages=packages)
            hits = self._filter_by_tags(lexical, hits, tags)
            return SearchOutcome(SearchMode.SEMANTIC, hits[:limit], requested)

        try:
            vector = self._check_vector_available(snapshot)
        except VectorSearchUnavailableError as e:
            logger.warning(f"Hybrid search degraded to fulltext: {e}")
            results = await asyncio.to_thread(
                lexical.search, query, packages=packages, tags=tags, limit=limit
            )
            return SearchOutcome(SearchMode.FULLTEXT, results, requested)

        # The lexical branch does not need the embedding, so start it first
        fulltext_task = asyncio.create_task(asyncio.to_thread(
            lexical.search, query, packages=packages, tags=tags, limit=fetch_limit
        ))
        try:
            embedding = await self._embed_query(query)
            vector_hits = await asyncio.to_thread(vector.search, embedding, fetch_limit, packages=packages)
            fulltext_hits = await fulltext_task
        except BaseException:
            fulltext_task.cancel()
            raise

        vector_hits = self._filter_by_tags(lexical, vector_hits, tags)
        logger.debug(
            f"Hybrid query {query!r}: {len(fulltext_hits)} fulltext, {len(vector_hits)} vector candidates"
        )
        fused = fuse_and_rank(query, fulltext_hits, vector_hits, limit, self.rrf_options, self.boost_options)
        return SearchOutcome(SearchMode.HYBRID, fused, requested)

    async def hybrid_search(
        self,
        query: str,
        mode: Optional[Union[str, SearchMode]] = None,
        packages: Optional[Sequence[str]] = None,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Union[FusionResult, RankedResult]]:
        """
        Search the corpus.

        Returns FusionResult objects in hybrid mode and RankedResult objects
        in fulltext and semantic modes. See `query` for arguments and errors.
        """
        outcome = await self.query(query, mode=mode, packages=packages, tags=tags, limit=limit)
        return outcome.results

    def search(
        self,
        query: str,
        packages: Optional[Sequence[str]] = None,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[RankedResult]:
        """Synchronous keyword search against the current lexical index."""
        return self._snapshot.lexical.search(
            query, packages=packages, tags=tags, limit=self._resolve_limit(limit)
        )

    # ============ Introspection ============

    def stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        snapshot = self._snapshot
        lexical = snapshot.lexical
        stats: Dict[str, Any] = {
            "lexical": {
                "state": lexical.state.value,
                "chunk_count": len(lexical),
                "packages": lexical.packages,
                "version": (lexical.metadata or {}).get("version"),
                "created_at": (lexical.metadata or {}).get("created_at"),
            },
            "vector": None,
            "embedding_provider": None,
            "embedding_cache": get_cache().stats(),
        }

        if snapshot.vector is not None:
            provenance = snapshot.vector.metadata()
            stats["vector"] = {
                "state": snapshot.vector.state.value,
                "vector_count": len(snapshot.vector),
                "provider": provenance.provider,
                "model": provenance.model,
                "dimensions": provenance.dimensions,
                "created_at": provenance.created_at,
            }

        if self.embedder is not None:
            stats["embedding_provider"] = {"name": self.embedder.name, "model": self.embedder.model}

        return stats
