"""Markdown chunking: split documents into heading-aware searchable chunks."""

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, List, Optional

from .errors import DocumentParseError
from .models import Chunk, ChunkMetadata, SourceDocument

logger = logging.getLogger(__name__)

# Target chunk size in characters (fits small local embedding models)
TARGET_CHUNK_SIZE = 500

# Minimum chunk size to avoid tiny fragments
MIN_CHUNK_SIZE = 100

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_H1_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\n+")


@dataclass
class _Section:
    headings: List[str]
    content: str


def _parse_heading(line: str) -> Optional[tuple]:
    """Return (level, text) for a markdown ATX heading line."""
    match = _HEADING_RE.match(line)
    if not match:
        return None
    return len(match.group(1)), match.group(2).strip()


def extract_title(title: Optional[str], body: str, path: str) -> str:
    """Resolve a document title: explicit title, first H1, then the filename."""
    if isinstance(title, str) and title.strip():
        return title.strip()

    h1 = _H1_RE.search(body)
    if h1:
        return h1.group(1).strip()

    stem = PurePosixPath(path).stem
    # kebab-case / snake_case -> Title Case
    spaced = re.sub(r"[-_]", " ", stem)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)


def _split_by_h2_sections(body: str, title: str, min_size: int) -> List[_Section]:
    lines = body.split("\n")
    sections: List[_Section] = []

    current_headings = [title]
    current_lines: List[str] = []
    h1_seen = False
    h2_seen = False

    def flush() -> None:
        if not current_lines:
            return
        content = "\n".join(current_lines).strip()
        if len(content) >= min_size:
            sections.append(_Section(list(current_headings), content))

    for line in lines:
        heading = _parse_heading(line)
        if heading:
            level, text = heading

            # The first H1 is the document title itself
            if level == 1 and not h1_seen:
                h1_seen = True
                continue

            if level == 2:
                flush()
                h2_seen = True
                current_headings = [title, text]
                current_lines = []
                continue

            if level >= 3 and len(current_headings) >= 2:
                current_headings = [current_headings[0], current_headings[1], text]

        current_lines.append(line)

    flush()

    whole = body.strip()
    if not sections and not h2_seen and len(whole) >= min_size:
        sections.append(_Section([title], whole))

    return sections


def _split_large_section(section: _Section, target_size: int, min_size: int) -> List[_Section]:
    """Re-split an oversized section on paragraph boundaries."""
    if len(section.content) <= target_size:
        return [section]

    paragraphs = _PARAGRAPH_SPLIT_RE.split(section.content)
    pieces: List[_Section] = []
    current = ""

    for para in paragraphs:
        if len(current) + len(para) + 2 > target_size:
            if len(current.strip()) >= min_size:
                pieces.append(_Section(section.headings, current.strip()))
            current = para
        else:
            current += ("\n\n" if current else "") + para

    if len(current.strip()) >= min_size:
        pieces.append(_Section(section.headings, current.strip()))

    # A single oversized paragraph stays whole
    return pieces or [section]


def chunk_document(
    document: SourceDocument,
    package: str,
    *,
    min_chunk_size: int = MIN_CHUNK_SIZE,
    target_chunk_size: int = TARGET_CHUNK_SIZE,
    namespace_ids: bool = False,
) -> List[Chunk]:
    """
    Split one parsed document into chunks.

    Sections are opened by H2 headings; H3+ headings only refine the heading
    path. Sections above `target_chunk_size` are re-split by paragraphs, and
    fragments below `min_chunk_size` are dropped.

    Args:
        document: Parsed document (frontmatter fields plus markdown body)
        package: Identifier of the collection the document belongs to
        min_chunk_size: Minimum characters for a chunk to be kept
        target_chunk_size: Size above which sections are re-split
        namespace_ids: Prefix chunk ids with the package name

    Returns:
        Chunks in document order, ids "<path>#<n>"
    """
    if not isinstance(document.body, str):
        raise DocumentParseError(document.path, "document body is not text")

    body = document.body.replace("\r\n", "\n")
    title = extract_title(document.title, body, document.path)
    tags = [t for t in (document.tags or []) if isinstance(t, str)]
    metadata = ChunkMetadata(
        title=title,
        summary=document.summary,
        type=document.type,
        tags=tags,
    )

    sections = []
    for section in _split_by_h2_sections(body, title, min_chunk_size):
        sections.extend(_split_large_section(section, target_chunk_size, min_chunk_size))

    id_prefix = f"{package}/{document.path}" if namespace_ids else document.path
    return [
        Chunk(
            id=f"{id_prefix}#{index}",
            content=section.content,
            path=document.path,
            package=package,
            headings=list(section.headings),
            metadata=metadata,
        )
        for index, section in enumerate(sections)
    ]


def chunk_documents(
    documents: Iterable[SourceDocument],
    package: str,
    **kwargs,
) -> List[Chunk]:
    """Chunk many documents, skipping (and logging) any that fail."""
    chunks: List[Chunk] = []
    for document in documents:
        try:
            doc_chunks = chunk_document(document, package, **kwargs)
        except (DocumentParseError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping {getattr(document, 'path', '?')}: {e}")
            continue
        logger.debug(f"Chunked {document.path}: {len(doc_chunks)} chunks")
        chunks.extend(doc_chunks)
    return chunks
