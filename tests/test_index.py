import json

import pytest

from contextsearch.errors import EmptyCorpusError, IndexLoadError, IndexNotReadyError, ProvenanceMismatchError
from contextsearch.index import INDEX_FILE, METADATA_FILE, RECORDS_FILE, VectorIndex
from contextsearch.models import IndexedVector, IndexState, Provenance

PROVENANCE = Provenance(provider="fake", model="fake-4", dimensions=4, created_at="2026-01-01T00:00:00+00:00")


def record(chunk_id: str, embedding, package: str = "pkg") -> IndexedVector:
    return IndexedVector(
        chunk_id=chunk_id,
        embedding=list(embedding),
        path=chunk_id.split("#")[0],
        package=package,
        title=chunk_id.upper(),
        content=f"content of {chunk_id}",
    )


@pytest.fixture
def records():
    return [
        record("a.md#0", [1.0, 0.0, 0.0, 0.0], package="alpha"),
        record("b.md#0", [0.0, 1.0, 0.0, 0.0], package="beta"),
        record("c.md#0", [0.9, 0.1, 0.0, 0.0], package="beta"),
        record("d.md#0", [0.0, 0.0, 1.0, 0.0], package="alpha"),
    ]


@pytest.fixture
def vector_index(tmp_path, records):
    return VectorIndex.build(tmp_path / "vectors.usearch", records, PROVENANCE)


class TestBuild:
    """Building and persisting vector indexes."""

    def test_build_writes_directory(self, tmp_path, vector_index):
        root = tmp_path / "vectors.usearch"

        assert VectorIndex.exists(root)
        assert (root / INDEX_FILE).is_file()
        assert (root / RECORDS_FILE).is_file()
        stored = json.loads((root / METADATA_FILE).read_text())
        assert stored["embedding"]["provider"] == "fake"
        assert stored["embedding"]["dimensions"] == 4
        assert stored["chunk_count"] == 4
        assert vector_index.state is IndexState.READY
        assert len(vector_index) == 4

    def test_no_staging_directories_left(self, tmp_path, vector_index):
        assert [p.name for p in tmp_path.iterdir()] == ["vectors.usearch"]

    def test_rebuild_replaces_previous(self, tmp_path, vector_index, records):
        rebuilt = VectorIndex.build(tmp_path / "vectors.usearch", records[:2], PROVENANCE)
        assert len(rebuilt) == 2
        assert len(VectorIndex.open(tmp_path / "vectors.usearch")) == 2

    def test_empty_records_rejected(self, tmp_path):
        with pytest.raises(EmptyCorpusError):
            VectorIndex.build(tmp_path / "v", [], PROVENANCE)

    def test_dimension_mismatch_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            VectorIndex.build(tmp_path / "v", [record("x#0", [1.0, 2.0])], PROVENANCE)

    def test_unknown_metric_rejected(self, tmp_path, records):
        with pytest.raises(ValueError, match="Unsupported metric"):
            VectorIndex.build(tmp_path / "v", records, PROVENANCE, metric="hamming")


class TestSearch:
    """Nearest-neighbour queries."""

    def test_nearest_first(self, vector_index):
        results = vector_index.search([1.0, 0.0, 0.0, 0.0], limit=2)

        assert [r.id for r in results] == ["a.md#0", "c.md#0"]
        assert results[0].score == pytest.approx(1.0)
        assert results[0].score > results[1].score > 0
        assert results[0].content == "content of a.md#0"
        assert results[0].title == "A.MD#0"

    def test_score_from_squared_distance(self, vector_index):
        [result] = vector_index.search([0.0, 0.0, 2.0, 0.0], limit=1)
        # d.md is at squared L2 distance 1.0
        assert result.id == "d.md#0"
        assert result.score == pytest.approx(0.5)

    def test_package_filter(self, vector_index):
        results = vector_index.search([1.0, 0.0, 0.0, 0.0], limit=2, packages=["beta"])
        assert [r.id for r in results] == ["c.md#0", "b.md#0"]

    def test_package_filter_widens_past_other_packages(self, tmp_path):
        crowd = [record(f"big{i}.md#0", [1.0, 0.01 * i, 0.0, 0.0], package="big") for i in range(12)]
        lone = record("small.md#0", [0.0, 0.0, 0.0, 1.0], package="small")
        index = VectorIndex.build(tmp_path / "vectors.usearch", crowd + [lone], PROVENANCE)

        results = index.search([1.0, 0.0, 0.0, 0.0], limit=1, packages=["small"])
        assert [r.id for r in results] == ["small.md#0"]

    def test_limit_zero(self, vector_index):
        assert vector_index.search([1.0, 0.0, 0.0, 0.0], limit=0) == []

    def test_query_dimension_mismatch(self, vector_index):
        with pytest.raises(ProvenanceMismatchError):
            vector_index.search([1.0, 0.0], limit=1)

    def test_not_ready(self, vector_index):
        vector_index.state = IndexState.LOAD_FAILED
        with pytest.raises(IndexNotReadyError):
            vector_index.search([1.0, 0.0, 0.0, 0.0])


class TestOpen:
    """Reopening persisted indexes."""

    def test_missing_returns_none(self, tmp_path):
        assert not VectorIndex.exists(tmp_path / "nothing")
        assert VectorIndex.open(tmp_path / "nothing") is None

    def test_round_trip(self, tmp_path, vector_index):
        reopened = VectorIndex.open(tmp_path / "vectors.usearch")
        query = [0.2, 0.8, 0.0, 0.0]

        assert reopened.metadata() == PROVENANCE
        assert reopened.search(query, limit=4) == vector_index.search(query, limit=4)

    def test_corrupt_metadata(self, tmp_path, vector_index):
        (tmp_path / "vectors.usearch" / METADATA_FILE).write_text("{not json")
        with pytest.raises(IndexLoadError):
            VectorIndex.open(tmp_path / "vectors.usearch")

    def test_record_count_mismatch(self, tmp_path, vector_index):
        records_path = tmp_path / "vectors.usearch" / RECORDS_FILE
        lines = records_path.read_text().splitlines()
        records_path.write_text("\n".join(lines[:2]) + "\n")
        with pytest.raises(IndexLoadError):
            VectorIndex.open(tmp_path / "vectors.usearch")
