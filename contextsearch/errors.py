"""Exception hierarchy for contextsearch."""


class ContextSearchError(Exception):
    """Base class for all contextsearch errors."""


class IndexNotReadyError(ContextSearchError):
    """A query was issued against an index that is not built or loaded."""


class IndexLoadError(ContextSearchError):
    """A persisted index artifact could not be restored."""


class VectorSearchUnavailableError(ContextSearchError):
    """Semantic search was requested but no usable vector index exists."""


class ProvenanceMismatchError(VectorSearchUnavailableError):
    """The query embedding does not come from the provider that built the index."""


class EmbeddingProviderError(ContextSearchError):
    """The embedding provider failed to produce vectors."""


class DocumentParseError(ContextSearchError):
    """A single document could not be parsed or chunked."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path
        self.reason = reason


class EmptyCorpusError(ContextSearchError):
    """An index build produced no chunks at all."""
