"""Load markdown documentation packages and parse their frontmatter."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml
from langchain_community.document_loaders import DirectoryLoader, TextLoader
from langchain_core.documents import Document as LCDocument

from .errors import DocumentParseError
from .models import SourceDocument

logger = logging.getLogger(__name__)

DOC_SUFFIXES = (".md", ".mdx")

# Extensions match in any case (README.MD, Guide.Md)
DOC_PATTERNS = ("**/*.[mM][dD]", "**/*.[mM][dD][xX]")

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def split_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a leading YAML frontmatter block from the markdown body."""
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    data = yaml.safe_load(match.group(1))
    return (data if isinstance(data, dict) else {}), text[match.end():]


def parse_markdown(text: str, path: str) -> SourceDocument:
    """
    Parse a markdown file's text into a SourceDocument.

    Args:
        text: Raw file contents
        path: Path relative to the corpus root (POSIX separators)

    Raises:
        DocumentParseError: If the frontmatter is not valid YAML
    """
    try:
        frontmatter, body = split_frontmatter(text)
    except yaml.YAMLError as e:
        raise DocumentParseError(path, f"invalid frontmatter: {e}") from e

    title = frontmatter.get("title")
    summary = frontmatter.get("summary", frontmatter.get("description"))
    doc_type = frontmatter.get("type")
    raw_tags = frontmatter.get("tags")
    tags = [t for t in raw_tags if isinstance(t, str)] if isinstance(raw_tags, list) else []

    return SourceDocument(
        path=path,
        body=body,
        title=title if isinstance(title, str) else None,
        summary=summary if isinstance(summary, str) else None,
        type=doc_type if isinstance(doc_type, str) else None,
        tags=tags,
    )


def _relative_posix(source: str, base: Path) -> str:
    try:
        return Path(os.path.relpath(source, base)).as_posix()
    except ValueError:
        return Path(source).as_posix()


def load_package(
    package_path: Union[str, Path],
    package: str,
    context_dir: Union[str, Path],
) -> List[SourceDocument]:
    """
    Load every markdown document of one package.

    Hidden directories and node_modules are skipped. Files that cannot be
    parsed are logged and skipped rather than aborting the load.

    Args:
        package_path: Directory holding the package's files
        package: Package alias (used only for logging)
        context_dir: Corpus root; document paths are made relative to it

    Returns:
        Parsed documents sorted by path
    """
    root = Path(package_path)
    if not root.is_dir():
        logger.debug(f"Package path does not exist: {root}")
        return []

    lc_docs: List[LCDocument] = []
    for pattern in DOC_PATTERNS:
        lc_docs.extend(
            DirectoryLoader(
                str(root),
                glob=pattern,
                recursive=True,
                exclude=["**/node_modules/**"],
                loader_cls=TextLoader,
                loader_kwargs={"encoding": "utf-8"},
                silent_errors=True,
            ).load()
        )

    documents: List[SourceDocument] = []
    base = Path(context_dir)
    seen = set()
    for d in lc_docs:
        source = d.metadata.get("source", "")
        if source in seen or Path(source).suffix.lower() not in DOC_SUFFIXES:
            continue
        seen.add(source)
        if "node_modules" in Path(source).relative_to(root).parts:
            continue
        rel_path = _relative_posix(source, base)
        try:
            documents.append(parse_markdown(d.page_content or "", rel_path))
        except DocumentParseError as e:
            logger.warning(f"[{package}] {e}")

    documents.sort(key=lambda doc: doc.path)
    logger.debug(f"Loaded {len(documents)} documents from package {package}")
    return documents
