import pytest

from conftest import make_chunk
from contextsearch.errors import IndexLoadError, IndexNotReadyError
from contextsearch.models import IndexState
from contextsearch.storage import LexicalIndex, build_match_expression


class TestMatchExpression:
    """Free text to FTS5 MATCH syntax."""

    def test_tokens_quoted_and_ored(self):
        assert build_match_expression("Install Plugins") == '"install" OR "plugins"'

    def test_syntax_characters_neutralized(self):
        assert build_match_expression('foo* AND "bar" (baz) -qux') == (
            '"foo" OR "and" OR "bar" OR "baz" OR "qux"'
        )

    def test_duplicates_removed(self):
        assert build_match_expression("plugin plugin Plugin") == '"plugin"'

    def test_no_tokens(self):
        assert build_match_expression("  ?!  ") is None
        assert build_match_expression("") is None


class TestBuildAndSearch:
    """Keyword search over built indexes."""

    def test_build_ready(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)

        assert index.state is IndexState.READY
        assert len(index) == 3
        assert index.packages == ["core", "extras"]
        assert index.metadata["version"] == "1.0.0"

    def test_search_ranks_matching_chunks(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        results = index.search("plugin entry point")

        assert results[0].id == "plugins.md#0"
        assert results[0].score > 0
        assert results[0].title == "Plugins"
        assert results[0].headings == ["Plugins"]

    def test_porter_stemming(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        ids = [r.id for r in index.search("installing")]
        assert "install.md#0" in ids

    def test_title_weighted_above_content(self):
        chunks = [
            make_chunk("a.md#0", "Details about caching layers and eviction.", title="Routing"),
            make_chunk("b.md#0", "Routing maps paths to handlers.", title="Caching"),
        ]
        index = LexicalIndex.build(chunks)

        assert index.search("routing")[0].id == "a.md#0"

    def test_summary_is_searchable(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        assert [r.id for r in index.search("writing")] == ["plugins.md#0"]

    def test_package_filter(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        results = index.search("install plugin settings", packages=["core"])

        assert results
        assert {r.package for r in results} == {"core"}

    def test_tag_filter_requires_all_tags(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)

        assert {r.id for r in index.search("plugin settings pip", tags=["reference"])} == {
            "config.md#0", "plugins.md#0"
        }
        assert [r.id for r in index.search("plugin settings pip", tags=["setup", "reference"])] == ["config.md#0"]

    def test_limit(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        assert len(index.search("the a plugin settings install", limit=1)) == 1
        assert index.search("plugin", limit=0) == []

    def test_no_match(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        assert index.search("kubernetes") == []
        assert index.search("???") == []

    def test_duplicate_ids_rejected(self):
        chunks = [make_chunk("same.md#0", "first"), make_chunk("same.md#0", "second")]
        with pytest.raises(ValueError, match="Duplicate chunk id"):
            LexicalIndex.build(chunks)

    def test_ids_with_tags(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        ids = ["install.md#0", "config.md#0", "plugins.md#0"]

        assert index.ids_with_tags(ids, ["setup"]) == {"install.md#0", "config.md#0"}
        assert index.ids_with_tags(ids, []) == set(ids)
        assert index.ids_with_tags([], ["setup"]) == set()


class TestNotReady:
    """Queries outside the READY state fail loudly."""

    def test_empty_index_rejects_queries(self):
        index = LexicalIndex()
        assert index.state is IndexState.EMPTY
        with pytest.raises(IndexNotReadyError):
            index.search("anything")

    def test_closed_index_rejects_queries(self, sample_chunks):
        index = LexicalIndex.build(sample_chunks)
        index.close()
        with pytest.raises(IndexNotReadyError):
            index.search("plugin")


class TestPersistence:
    """Serialize and restore round trips."""

    def test_bytes_round_trip_preserves_results(self, sample_chunks):
        original = LexicalIndex.build(sample_chunks)
        restored = LexicalIndex.from_bytes(original.to_bytes())

        assert restored.state is IndexState.READY
        assert len(restored) == len(original)
        for query in ["plugin", "settings file", "install pip", "default option"]:
            assert restored.search(query) == original.search(query)
        assert restored.search("plugin", tags=["reference"]) == original.search("plugin", tags=["reference"])

    def test_file_round_trip(self, sample_chunks, tmp_path):
        path = LexicalIndex.build(sample_chunks).save(tmp_path / "nested" / "search-index.db")

        assert path.is_file()
        assert not path.with_name(path.name + ".tmp").exists()
        restored = LexicalIndex.load(path)
        assert restored.search("plugin")[0].id == "plugins.md#0"

    def test_corrupt_bytes_fail_to_load(self):
        index = LexicalIndex(state=IndexState.NOT_LOADED)
        with pytest.raises(IndexLoadError):
            index.restore(b"definitely not a sqlite database")
        assert index.state is IndexState.LOAD_FAILED
        with pytest.raises(IndexNotReadyError):
            index.search("anything")

    def test_missing_file(self, tmp_path):
        with pytest.raises(IndexLoadError):
            LexicalIndex.load(tmp_path / "missing.db")
