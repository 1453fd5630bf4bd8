"""Vector index management using USearch HNSW, persisted as a directory."""

import json
import logging
import shutil
import tempfile
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Union

import numpy as np
from usearch.index import Index as USearchIndex

from .errors import EmptyCorpusError, IndexLoadError, IndexNotReadyError, ProvenanceMismatchError
from .models import IndexedVector, IndexState, Provenance, RankedResult

logger = logging.getLogger(__name__)

INDEX_FILE = "index.usearch"
RECORDS_FILE = "records.jsonl"
METADATA_FILE = "vector-metadata.json"

METRICS = ("cos", "ip", "l2sq")


class VectorIndex:
    """Nearest-neighbour index over chunk embeddings with provenance."""

    def __init__(
        self,
        path: Union[str, Path],
        index: USearchIndex,
        records: List[Dict[str, str]],
        provenance: Provenance,
    ):
        self.path = Path(path)
        self.index = index
        self.records = records
        self.provenance = provenance
        self.state = IndexState.READY
        self._lock = threading.RLock()

    # ============ Lifecycle ============

    @staticmethod
    def exists(path: Union[str, Path]) -> bool:
        """Check whether a vector index directory exists at `path`."""
        root = Path(path)
        return (root / INDEX_FILE).is_file() and (root / METADATA_FILE).is_file()

    @classmethod
    def open(cls, path: Union[str, Path]) -> Optional["VectorIndex"]:
        """
        Open a persisted vector index.

        Returns:
            The index, or None when no index exists at `path`

        Raises:
            IndexLoadError: If the directory exists but cannot be read
        """
        root = Path(path)
        if not cls.exists(root):
            logger.debug(f"No vector index found at {root}")
            return None

        try:
            stored = json.loads((root / METADATA_FILE).read_text(encoding="utf-8"))
            provenance = Provenance(**stored["embedding"])
            records = _read_records(root / RECORDS_FILE)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise IndexLoadError(f"Failed to read vector index metadata at {root}: {e}") from e

        index = USearchIndex.restore(str(root / INDEX_FILE), view=False)
        if index is None:
            raise IndexLoadError(f"Invalid vector index file: {root / INDEX_FILE}")
        if len(index) != len(records):
            raise IndexLoadError(
                f"Vector index has {len(index)} vectors but {len(records)} records"
            )

        logger.debug(f"Loaded vector index ({provenance.provider}/{provenance.model}, {len(records)} vectors)")
        return cls(root, index, records, provenance)

    @classmethod
    def build(
        cls,
        path: Union[str, Path],
        records: Sequence[IndexedVector],
        provenance: Provenance,
        *,
        metric: str = "l2sq",
        dtype: str = "f32",
        connectivity: int = 32,
        expansion_add: int = 128,
        expansion_search: int = 64,
    ) -> "VectorIndex":
        """
        Build and persist a new vector index, replacing any previous one.

        The index is written to a sibling temporary directory first and moved
        into place once complete.

        Args:
            path: Target directory
            records: One embedding record per chunk
            provenance: Provider identity shared by all embeddings
        """
        if not records:
            raise EmptyCorpusError("No vectors to index")

        for record in records:
            if len(record.embedding) != provenance.dimensions:
                raise ValueError(
                    f"Embedding for {record.chunk_id} has {len(record.embedding)} dimensions, "
                    f"expected {provenance.dimensions}"
                )

        if metric not in METRICS:
            raise ValueError(f"Unsupported metric: {metric}. Supported: {', '.join(METRICS)}")

        index = USearchIndex(
            ndim=provenance.dimensions,
            metric=metric,
            dtype=dtype,
            connectivity=connectivity,
            expansion_add=expansion_add,
            expansion_search=expansion_search,
        )
        keys = np.arange(len(records), dtype=np.uint64)
        vectors = np.array([r.embedding for r in records], dtype=np.float32)
        index.add(keys, vectors)

        stored_records = [
            {
                "chunk_id": r.chunk_id,
                "path": r.path,
                "package": r.package,
                "title": r.title,
                "content": r.content,
            }
            for r in records
        ]
        stored_metadata = {
            "embedding": asdict(provenance),
            "chunk_count": len(records),
            "index": {
                "metric": metric,
                "dtype": dtype,
                "connectivity": connectivity,
                "expansion_add": expansion_add,
                "expansion_search": expansion_search,
            },
        }

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{target.name}-", dir=target.parent))
        try:
            index.save(str(staging / INDEX_FILE))
            with open(staging / RECORDS_FILE, "w", encoding="utf-8") as f:
                for record in stored_records:
                    f.write(json.dumps(record) + "\n")
            (staging / METADATA_FILE).write_text(json.dumps(stored_metadata, indent=2), encoding="utf-8")

            if target.exists():
                shutil.rmtree(target)
            staging.rename(target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.debug(f"Created vector index with {len(records)} vectors at {target}")
        return cls(target, index, stored_records, provenance)

    # ============ Queries ============

    def metadata(self) -> Optional[Provenance]:
        """Provenance of the embeddings held by this index."""
        return self.provenance

    @property
    def is_ready(self) -> bool:
        return self.state is IndexState.READY

    def __len__(self) -> int:
        return len(self.records)

    def search(
        self,
        query_vector: Sequence[float],
        limit: int = 10,
        *,
        packages: Optional[Sequence[str]] = None,
    ) -> List[RankedResult]:
        """
        Nearest-neighbour search.

        Distances become similarities via 1 / (1 + distance), so closer
        neighbours score higher and all scores are positive.

        Args:
            query_vector: Embedding from the provider recorded in provenance
            limit: Maximum number of hits
            packages: Keep only hits from these packages

        Returns:
            Hits best first
        """
        if self.state is not IndexState.READY:
            raise IndexNotReadyError(f"Vector index is not ready (state: {self.state.value})")
        if len(query_vector) != self.provenance.dimensions:
            raise ProvenanceMismatchError(
                f"Query embedding has {len(query_vector)} dimensions, index expects "
                f"{self.provenance.dimensions} ({self.provenance.provider}/{self.provenance.model})"
            )
        if limit <= 0 or not self.records:
            return []

        query = np.array(query_vector, dtype=np.float32)
        allowed = set(packages) if packages else None
        total = len(self.records)
        fetch_k = min(limit * 3 if allowed else limit, total)
        while True:
            results = self._collect(query, fetch_k, limit, allowed)
            # Widen until the filter leaves enough hits or every vector was seen
            if len(results) >= limit or fetch_k >= total:
                return results
            fetch_k = min(fetch_k * 2, total)

    def _collect(
        self,
        query: np.ndarray,
        fetch_k: int,
        limit: int,
        allowed: Optional[Set[str]],
    ) -> List[RankedResult]:
        with self._lock:
            matches = self.index.search(query, fetch_k)

        results = []
        for key, raw_distance in zip(matches.keys, matches.distances):
            record = self.records[int(key)]
            if allowed is not None and record["package"] not in allowed:
                continue

            distance = max(0.0, float(raw_distance))
            results.append(RankedResult(
                id=record["chunk_id"],
                content=record["content"],
                path=record["path"],
                package=record["package"],
                title=record["title"],
                score=1.0 / (1.0 + distance),
            ))

            if len(results) >= limit:
                break

        return results


def _read_records(path: Path) -> List[Dict[str, str]]:
    records = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                records.append(json.loads(line))
    return records
