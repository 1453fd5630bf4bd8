"""
Pytest configuration for the contextsearch test suite.

Provides:
- a deterministic hashing embedding provider (no network)
- a small on-disk documentation corpus with two packages
- hand-built chunks for index tests
"""
import hashlib
import re
from pathlib import Path
from typing import List

import pytest

from contextsearch.config import SearchConfig
from contextsearch.embeddings import BaseEmbeddingProvider, get_cache
from contextsearch.models import Chunk, ChunkMetadata


class FakeEmbedding(BaseEmbeddingProvider):
    """Bag-of-words embeddings hashed into a small fixed dimension."""

    name = "fake"
    default_model = "fake-hash-16"
    batch_size = 4

    def __init__(self, model=None, use_cache: bool = False, dim: int = 16):
        super().__init__(model, use_cache)
        self.dim = dim
        self.calls: List[List[str]] = []
        self.fail = False

    @property
    def dimension(self) -> int:
        return self.dim

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise ConnectionError("provider offline")
        vectors = []
        for text in texts:
            vector = [0.0] * self.dim
            vector[0] = 1.0
            for token in re.findall(r"\w+", text.lower()):
                slot = int(hashlib.md5(token.encode()).hexdigest(), 16) % (self.dim - 1) + 1
                vector[slot] += 1.0
            vectors.append(vector)
        return vectors


GUIDE_README = """---
title: Guide Overview
summary: Introduction to the guide package
tags: [intro, overview]
---
# Guide Overview

This guide explains how to install, configure and deploy the sample application.
It is written for developers who are new to the project and want a quick tour.
"""

GUIDE_AUTH = """---
title: Authentication
type: guide
tags: [security, auth]
---
# Authentication

## Configuring tokens

Authentication uses signed tokens. Configure the token secret in the settings file
and rotate it regularly so that leaked tokens expire quickly.

## Session storage

Sessions are stored in the database by default. Switch to the cache backend when
you need faster lookups across many application servers.
"""

API_ENDPOINTS = """---
title: Endpoints
tags: [reference]
---
## Listing users

The users endpoint returns a paginated list of accounts. Pass the page parameter
to move through results and the size parameter to change the page length.

## Deleting users

Deleting a user removes the account and revokes every active session token.
The operation cannot be undone, so confirm with the caller before calling it.
"""

CORPUS_FILES = {
    "packages/guide/README.md": GUIDE_README,
    "packages/guide/docs/authentication.md": GUIDE_AUTH,
    "packages/api/reference/endpoints.md": API_ENDPOINTS,
}


@pytest.fixture(autouse=True)
def clear_embedding_cache():
    """Keep the global embedding cache from leaking between tests."""
    get_cache().clear()
    yield
    get_cache().clear()


@pytest.fixture
def fake_embedder():
    return FakeEmbedding()


@pytest.fixture
def context_dir(tmp_path) -> Path:
    """A corpus root with `guide` and `api` packages."""
    root = tmp_path / ".context"
    for rel_path, text in CORPUS_FILES.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def config(context_dir) -> SearchConfig:
    return SearchConfig(context_dir=str(context_dir))


def make_chunk(
    chunk_id: str,
    content: str,
    package: str = "docs",
    title: str = "Doc",
    tags=None,
    path=None,
    summary=None,
) -> Chunk:
    return Chunk(
        id=chunk_id,
        content=content,
        path=path or chunk_id.split("#")[0],
        package=package,
        headings=[title],
        metadata=ChunkMetadata(title=title, summary=summary, tags=list(tags or [])),
    )


@pytest.fixture
def sample_chunks() -> List[Chunk]:
    return [
        make_chunk(
            "install.md#0",
            "Install the package with pip and verify the installation by importing it.",
            package="core",
            title="Installation",
            tags=["setup"],
        ),
        make_chunk(
            "config.md#0",
            "Configuration lives in a settings file. Every option has a sensible default.",
            package="core",
            title="Configuration",
            tags=["setup", "reference"],
        ),
        make_chunk(
            "plugins.md#0",
            "Plugins extend the command line. Register a plugin through an entry point.",
            package="extras",
            title="Plugins",
            tags=["reference"],
            summary="Writing and installing plugins",
        ),
    ]
