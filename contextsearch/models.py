"""Data models for the contextsearch retrieval engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class SearchMode(str, Enum):
    """Which retrieval sources a query consults."""
    FULLTEXT = "fulltext"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class IndexState(str, Enum):
    """Lifecycle of an index handle.

    Built handles go EMPTY -> BUILDING -> READY, restored handles go
    NOT_LOADED -> READY | LOAD_FAILED. Only READY handles answer queries.
    """
    EMPTY = "empty"
    BUILDING = "building"
    NOT_LOADED = "not_loaded"
    READY = "ready"
    LOAD_FAILED = "load_failed"


@dataclass(frozen=True)
class ChunkMetadata:
    """Document-level metadata copied onto every chunk of that document."""
    title: str
    summary: Optional[str] = None
    type: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Chunk:
    """An atomic, independently retrievable fragment of a document."""
    id: str
    content: str
    path: str
    package: str
    headings: List[str]
    metadata: ChunkMetadata


@dataclass
class SourceDocument:
    """A parsed document as handed to the chunker.

    `path` is relative to the corpus root and is the document's stable identity.
    """
    path: str
    body: str
    title: Optional[str] = None
    summary: Optional[str] = None
    type: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Provenance:
    """Identity of the embedding provider that produced a vector index."""
    provider: str
    model: str
    dimensions: int
    created_at: Optional[str] = None

    def matches(self, other: "Provenance") -> bool:
        """True when vectors from `other` are comparable with ours."""
        return (
            self.provider == other.provider
            and self.model == other.model
            and self.dimensions == other.dimensions
        )


@dataclass
class IndexedVector:
    """One embedding record, derived 1:1 from a chunk."""
    chunk_id: str
    embedding: List[float]
    path: str
    package: str
    title: str
    content: str = ""

    @classmethod
    def from_chunk(cls, chunk: Chunk, embedding: List[float]) -> "IndexedVector":
        return cls(
            chunk_id=chunk.id,
            embedding=list(embedding),
            path=chunk.path,
            package=chunk.package,
            title=chunk.metadata.title,
            content=chunk.content,
        )


@dataclass
class RankedResult:
    """A hit from a single source. `score` is that source's native score."""
    id: str
    content: str
    path: str
    package: str
    title: str
    score: float
    headings: List[str] = field(default_factory=list)


@dataclass
class FusionSources:
    """1-based rank a document held in each contributing source."""
    fulltext: Optional[int] = None
    vector: Optional[int] = None

    def to_dict(self) -> dict:
        out = {}
        if self.fulltext is not None:
            out["fulltext"] = self.fulltext
        if self.vector is not None:
            out["vector"] = self.vector
        return out


@dataclass
class FusionResult:
    """A cross-source result after fusion, boosting and normalization."""
    id: str
    content: str
    path: str
    package: str
    title: str
    score: float
    sources: FusionSources = field(default_factory=FusionSources)

    @classmethod
    def from_ranked(cls, result: RankedResult, score: float) -> "FusionResult":
        return cls(
            id=result.id,
            content=result.content,
            path=result.path,
            package=result.package,
            title=result.title,
            score=score,
        )
