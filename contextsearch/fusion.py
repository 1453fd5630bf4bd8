"""Weighted Reciprocal Rank Fusion, post-fusion boosts and score normalization."""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

from .models import FusionResult, FusionSources, RankedResult

# Words carrying no signal about which document is wanted
STOP_WORDS = frozenset({
    "what", "is", "the", "a", "an", "how", "do", "does", "are", "was", "were",
    "been", "being", "have", "has", "had", "having", "who", "which", "where",
    "when", "why", "can", "could", "would", "should", "of", "on", "in", "to",
    "for", "with", "by", "from", "at", "about",
})

# Documents that introduce a package
INDEX_DOCUMENT_SUFFIXES = ("readme.md", "index.md")


@dataclass(frozen=True)
class RRFOptions:
    """Weights and smoothing constant for Reciprocal Rank Fusion."""
    k: int = 60
    fulltext_weight: float = 0.4
    vector_weight: float = 0.6

    def __post_init__(self):
        if isinstance(self.k, bool) or not isinstance(self.k, int) or self.k <= 0:
            raise ValueError(f"k must be a positive integer, got {self.k!r}")
        for name in ("fulltext_weight", "vector_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

    @classmethod
    def from_config(cls, config) -> "RRFOptions":
        return cls(
            k=config.rrf_k,
            fulltext_weight=config.fulltext_weight,
            vector_weight=config.vector_weight,
        )


@dataclass(frozen=True)
class BoostOptions:
    """Score multipliers applied after fusion."""
    path_keyword_boost: float = 1.15
    index_document_boost: float = 1.25

    @classmethod
    def from_config(cls, config) -> "BoostOptions":
        return cls(
            path_keyword_boost=config.path_keyword_boost,
            index_document_boost=config.index_document_boost,
        )


def reciprocal_rank_fusion(
    fulltext: Sequence[RankedResult],
    vector: Sequence[RankedResult],
    options: Optional[RRFOptions] = None,
) -> List[FusionResult]:
    """
    Combine two ranked lists with weighted RRF.

    score(doc) = sum over sources containing doc of w_s / (k + rank_s(doc)),
    ranks 1-based. Only rank positions matter, never the source scores.

    Args:
        fulltext: Lexical hits, best first
        vector: Vector hits, best first
        options: Weights and k (defaults: k=60, 0.4 fulltext, 0.6 vector)

    Returns:
        Fused results sorted by score descending, then id
    """
    options = options or RRFOptions()
    fused: Dict[str, FusionResult] = {}

    for source, results, weight in (
        ("fulltext", fulltext, options.fulltext_weight),
        ("vector", vector, options.vector_weight),
    ):
        for rank, result in enumerate(results, start=1):
            entry = fused.get(result.id)
            if entry is None:
                entry = FusionResult.from_ranked(result, 0.0)
                fused[result.id] = entry
            elif getattr(entry.sources, source) is not None:
                # Keep the best rank if a source repeats a document
                continue
            setattr(entry.sources, source, rank)
            entry.score += weight / (options.k + rank)

    return sort_results(list(fused.values()))


def extract_query_keywords(query: str) -> List[str]:
    """Lowercased query terms longer than two characters, minus stop words."""
    return [
        word for word in (query or "").lower().split()
        if len(word) > 2 and word not in STOP_WORDS
    ]


def apply_boosts(
    results: Sequence[FusionResult],
    query: str,
    boosts: Optional[BoostOptions] = None,
) -> List[FusionResult]:
    """
    Multiply scores for path keyword matches and package index documents.

    Each query keyword found in the lowercased path multiplies the score by
    `path_keyword_boost`; a path ending in readme.md or index.md multiplies it
    by `index_document_boost`. Input order is kept.
    """
    boosts = boosts or BoostOptions()
    keywords = extract_query_keywords(query)

    boosted = []
    for result in results:
        path = result.path.lower()
        score = result.score
        for keyword in keywords:
            if keyword in path:
                score *= boosts.path_keyword_boost
        if path.endswith(INDEX_DOCUMENT_SUFFIXES):
            score *= boosts.index_document_boost
        boosted.append(replace(result, score=score))
    return boosted


def sort_results(results: Sequence[FusionResult]) -> List[FusionResult]:
    """Order by score descending; equal scores fall back to id ascending."""
    return sorted(results, key=lambda r: (-r.score, r.id))


def normalize_scores(results: Sequence[FusionResult]) -> List[FusionResult]:
    """Divide every score by the maximum so the best result scores 1.0.

    Inputs whose maximum score is not positive are returned unchanged.
    """
    if not results:
        return []
    max_score = max(r.score for r in results)
    if max_score <= 0:
        return list(results)
    return [replace(r, score=r.score / max_score) for r in results]


def fuse_and_rank(
    query: str,
    fulltext: Sequence[RankedResult],
    vector: Sequence[RankedResult],
    limit: int,
    options: Optional[RRFOptions] = None,
    boosts: Optional[BoostOptions] = None,
) -> List[FusionResult]:
    """Fuse, boost, re-sort, normalize, then truncate to `limit`."""
    fused = reciprocal_rank_fusion(fulltext, vector, options)
    boosted = sort_results(apply_boosts(fused, query, boosts))
    return normalize_scores(boosted)[:max(limit, 0)]
