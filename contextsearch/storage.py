"""SQLite FTS5 lexical index over chunks, persisted as a single blob."""

import json
import logging
import re
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from .errors import IndexLoadError, IndexNotReadyError
from .models import Chunk, IndexState, RankedResult

logger = logging.getLogger(__name__)

INDEX_VERSION = "1.0.0"

# bm25() column weights, in chunks_fts column order
FIELD_WEIGHTS = {
    "content": 1.0,
    "title": 2.0,
    "summary": 1.0,
    "headings": 1.5,
}

HEADING_SEPARATOR = " > "

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_match_expression(query: str) -> Optional[str]:
    """Turn free text into a safe FTS5 MATCH expression.

    Every token is wrapped in double quotes so FTS5 syntax characters in the
    query cannot cause errors; tokens are OR-ed so any term can match and
    bm25 ranks documents matching more terms higher.
    """
    tokens = [t.lower() for t in _TOKEN_RE.findall(query or "")]
    if not tokens:
        return None
    seen = []
    for token in tokens:
        if token not in seen:
            seen.append(token)
    return " OR ".join('"' + t.replace('"', '""') + '"' for t in seen)


class LexicalIndex:
    """Keyword index over chunk text fields with package/tag filters."""

    def __init__(self, state: IndexState = IndexState.EMPTY):
        self.conn: Optional[sqlite3.Connection] = None
        self.state = state
        self.metadata: Optional[Dict[str, Any]] = None
        self._lock = threading.RLock()

    # ============ Build ============

    @classmethod
    def build(cls, chunks: Sequence[Chunk]) -> "LexicalIndex":
        """Bulk-load chunks into a new in-memory index."""
        index = cls()
        index.state = IndexState.BUILDING
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        _init_db(conn)

        cursor = conn.cursor()
        for chunk in chunks:
            try:
                index._insert_chunk(cursor, chunk)
            except sqlite3.IntegrityError as e:
                conn.close()
                index.state = IndexState.EMPTY
                raise ValueError(
                    f"Duplicate chunk id {chunk.id!r}; namespace ids by package when merging corpora"
                ) from e

        packages = sorted({c.package for c in chunks})
        metadata = {
            "version": INDEX_VERSION,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "chunk_count": len(chunks),
            "packages": packages,
        }
        cursor.execute(
            "INSERT INTO index_meta(key, value) VALUES ('metadata', ?)",
            (json.dumps(metadata),),
        )
        conn.commit()

        index.conn = conn
        index.metadata = metadata
        index.state = IndexState.READY
        logger.debug(f"Lexical index built with {len(chunks)} chunks")
        return index

    @staticmethod
    def _insert_chunk(cursor: sqlite3.Cursor, chunk: Chunk) -> None:
        cursor.execute(
            """
            INSERT INTO chunks (
                id, content, path, package, title, summary, type,
                headings_json, tags_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.id,
                chunk.content,
                chunk.path,
                chunk.package,
                chunk.metadata.title,
                chunk.metadata.summary or "",
                chunk.metadata.type or "",
                json.dumps(list(chunk.headings)),
                json.dumps(list(chunk.metadata.tags)),
            ),
        )
        rowid = cursor.lastrowid
        cursor.execute(
            "INSERT INTO chunks_fts(rowid, content, title, summary, headings) VALUES (?, ?, ?, ?, ?)",
            (
                rowid,
                chunk.content,
                chunk.metadata.title,
                chunk.metadata.summary or "",
                HEADING_SEPARATOR.join(chunk.headings),
            ),
        )
        cursor.executemany(
            "INSERT OR IGNORE INTO chunk_tags(chunk_rowid, tag) VALUES (?, ?)",
            [(rowid, tag) for tag in chunk.metadata.tags],
        )

    # ============ Persistence ============

    def to_bytes(self) -> bytes:
        """Serialize the whole index database to bytes."""
        self._require_ready()
        with self._lock:
            return self.conn.serialize()

    def restore(self, data: bytes) -> None:
        """Load a serialized index into this handle (NOT_LOADED -> READY | LOAD_FAILED)."""
        self.state = IndexState.NOT_LOADED
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.deserialize(data)
            row = conn.execute("SELECT value FROM index_meta WHERE key = 'metadata'").fetchone()
            if row is None:
                raise IndexLoadError("Index artifact has no metadata")
            metadata = json.loads(row["value"])
            conn.execute("SELECT rowid FROM chunks_fts LIMIT 1").fetchall()
        except (sqlite3.Error, ValueError, TypeError) as e:
            conn.close()
            self.state = IndexState.LOAD_FAILED
            raise IndexLoadError(f"Failed to restore lexical index: {e}") from e
        except IndexLoadError:
            conn.close()
            self.state = IndexState.LOAD_FAILED
            raise

        with self._lock:
            self.conn = conn
            self.metadata = metadata
            self.state = IndexState.READY
        logger.debug(f"Lexical index restored: {metadata.get('chunk_count', 0)} chunks")

    @classmethod
    def from_bytes(cls, data: bytes) -> "LexicalIndex":
        index = cls(state=IndexState.NOT_LOADED)
        index.restore(data)
        return index

    def save(self, path: Union[str, Path]) -> Path:
        """Write the serialized index to `path`, replacing any previous file."""
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = out_path.with_name(out_path.name + ".tmp")
        tmp_path.write_bytes(self.to_bytes())
        tmp_path.replace(out_path)
        logger.debug(f"Saved lexical index to {out_path}")
        return out_path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "LexicalIndex":
        in_path = Path(path)
        try:
            data = in_path.read_bytes()
        except OSError as e:
            raise IndexLoadError(f"Cannot read lexical index {in_path}: {e}") from e
        return cls.from_bytes(data)

    # ============ Queries ============

    @property
    def is_ready(self) -> bool:
        return self.state is IndexState.READY

    @property
    def packages(self) -> List[str]:
        return list((self.metadata or {}).get("packages", []))

    def __len__(self) -> int:
        return int((self.metadata or {}).get("chunk_count", 0))

    def _require_ready(self) -> None:
        if self.state is not IndexState.READY or self.conn is None:
            raise IndexNotReadyError(
                f"Lexical index is not ready (state: {self.state.value}). Build or load it first."
            )

    def search(
        self,
        query: str,
        *,
        packages: Optional[Sequence[str]] = None,
        tags: Optional[Sequence[str]] = None,
        limit: int = 10,
    ) -> List[RankedResult]:
        """
        Relevance-ranked keyword search.

        Args:
            query: Free-text query
            packages: Keep only chunks from these packages
            tags: Keep only chunks carrying all of these tags
            limit: Maximum number of hits

        Returns:
            Hits best first; `score` is the positive bm25 relevance
        """
        self._require_ready()
        match = build_match_expression(query)
        if match is None or limit <= 0:
            return []

        weights = ", ".join(str(w) for w in FIELD_WEIGHTS.values())
        sql = f"""
            SELECT c.*, bm25(chunks_fts, {weights}) AS rank
            FROM chunks_fts
            JOIN chunks c ON c.pk = chunks_fts.rowid
            WHERE chunks_fts MATCH ?
        """
        params: List[Any] = [match]

        if packages:
            sql += f" AND c.package IN ({', '.join('?' for _ in packages)})"
            params.extend(packages)

        if tags:
            unique_tags = sorted(set(tags))
            sql += f"""
                AND (
                    SELECT COUNT(*) FROM chunk_tags t
                    WHERE t.chunk_rowid = c.pk
                    AND t.tag IN ({', '.join('?' for _ in unique_tags)})
                ) = ?
            """
            params.extend(unique_tags)
            params.append(len(unique_tags))

        sql += " ORDER BY rank, c.id LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()

        return [
            RankedResult(
                id=row["id"],
                content=row["content"],
                path=row["path"],
                package=row["package"],
                title=row["title"],
                score=-float(row["rank"]),
                headings=json.loads(row["headings_json"]),
            )
            for row in rows
        ]

    def ids_with_tags(self, ids: Sequence[str], tags: Sequence[str]) -> Set[str]:
        """Subset of `ids` whose chunks carry every tag in `tags`."""
        self._require_ready()
        unique_ids = list(dict.fromkeys(ids))
        unique_tags = sorted(set(tags))
        if not unique_ids:
            return set()
        if not unique_tags:
            return set(unique_ids)

        sql = f"""
            SELECT c.id FROM chunks c
            WHERE c.id IN ({', '.join('?' for _ in unique_ids)})
            AND (
                SELECT COUNT(*) FROM chunk_tags t
                WHERE t.chunk_rowid = c.pk
                AND t.tag IN ({', '.join('?' for _ in unique_tags)})
            ) = ?
        """
        with self._lock:
            rows = self.conn.execute(sql, [*unique_ids, *unique_tags, len(unique_tags)]).fetchall()
        return {row["id"] for row in rows}

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
            self.state = IndexState.EMPTY


def _init_db(conn: sqlite3.Connection) -> None:
    """Create the index schema."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE chunks (
            pk INTEGER PRIMARY KEY,
            id TEXT NOT NULL UNIQUE,
            content TEXT NOT NULL,
            path TEXT NOT NULL,
            package TEXT NOT NULL,
            title TEXT NOT NULL,
            summary TEXT,
            type TEXT,
            headings_json TEXT NOT NULL,
            tags_json TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX idx_chunks_package ON chunks(package)")

    cursor.execute("""
        CREATE TABLE chunk_tags (
            chunk_rowid INTEGER NOT NULL,
            tag TEXT NOT NULL,
            PRIMARY KEY (chunk_rowid, tag)
        )
    """)

    cursor.execute("""
        CREATE VIRTUAL TABLE chunks_fts USING fts5(
            content,
            title,
            summary,
            headings,
            tokenize = 'porter unicode61'
        )
    """)

    cursor.execute("CREATE TABLE index_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
    conn.commit()
