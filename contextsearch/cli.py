"""CLI for the contextsearch engine."""

import argparse
import asyncio
import json
import logging
import os
import sys

from . import __version__
from .config import EmbeddingConfig, SearchConfig
from .errors import ContextSearchError, VectorSearchUnavailableError
from .models import FusionResult

# Set USER_AGENT to suppress langchain warning
if not os.environ.get("USER_AGENT"):
    os.environ["USER_AGENT"] = f"contextsearch/{__version__}"


def _config(args: argparse.Namespace) -> SearchConfig:
    return SearchConfig(
        context_dir=args.context_dir,
        embedding=EmbeddingConfig(
            provider=getattr(args, "provider", None) or "auto",
            model=getattr(args, "model", None),
        ),
    )


def index(args: argparse.Namespace) -> None:
    """Build the search index."""
    from .indexer import build_search_index

    config = _config(args)
    result = build_search_index(
        config.context_dir,
        packages=args.package or None,
        config=config,
        semantic=args.semantic,
    )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return

    print(f"Indexed {result.chunk_count} chunks from {result.file_count} files")
    print(f"  Packages: {', '.join(result.packages)}")
    print(f"  Index: {result.index_path}")
    if result.vector_index_path:
        print(f"  Vectors: {result.vector_index_path} ({result.embedding_provider}/{result.embedding_model})")


def search(args: argparse.Namespace) -> None:
    """Search the index."""
    from .indexer import open_search_engine

    config = _config(args)
    engine = open_search_engine(config.context_dir, config)
    outcome = asyncio.run(engine.query(
        args.query,
        mode=args.mode,
        packages=args.package or None,
        tags=args.tag or None,
        limit=args.limit,
    ))

    if args.json:
        print(json.dumps({
            "query": args.query,
            "mode": outcome.mode.value,
            "results": [
                {
                    "id": r.id,
                    "path": r.path,
                    "package": r.package,
                    "title": r.title,
                    "score": r.score,
                    "content": r.content,
                    **({"sources": r.sources.to_dict()} if isinstance(r, FusionResult) else {}),
                }
                for r in outcome.results
            ],
        }, indent=2))
        return

    if not outcome.results:
        print("No results.")
        return

    print(f"=== {outcome.mode.value} search: {args.query} ===")
    for i, r in enumerate(outcome.results, 1):
        snippet = " ".join(r.content.split())[:100]
        print(f"{i}. [{r.score:.3f}] {r.title} ({r.package}: {r.path})")
        print(f"   {snippet}...")


def stats(args: argparse.Namespace) -> None:
    """Show index statistics."""
    from .indexer import open_search_engine

    config = _config(args)
    engine = open_search_engine(config.context_dir, config)
    print(json.dumps(engine.stats(), indent=2))


def serve(args: argparse.Namespace) -> None:
    """Start the REST API server."""
    try:
        import uvicorn
        from .api import create_app
    except ImportError:
        print("Error: API dependencies not installed.")
        print("  Run: pip install 'contextsearch[api]'")
        sys.exit(1)

    config = _config(args)
    app = create_app(config.context_dir, config)

    print(f"Starting contextsearch API server on http://{args.host}:{args.port}")
    print(f"  Context: {config.context_dir}")
    print(f"  Docs: http://{args.host}:{args.port}/docs\n")

    uvicorn.run(app, host=args.host, port=args.port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contextsearch",
        description="contextsearch - Hybrid search over documentation packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  contextsearch index --semantic         Build fulltext and vector indexes
  contextsearch search "configure auth"  Search (hybrid when vectors exist)
  contextsearch stats                    Show index statistics
  contextsearch serve                    Start REST API server

Environment variables:
  OPENAI_API_KEY       Enables OpenAI embeddings
  HF_TOKEN             Optional for HuggingFace models
  JINA_API_KEY         Required for Jina AI embeddings
  CONTEXTSEARCH_DEBUG  Set to 'true' for debug logging
"""
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--context-dir", type=str, default=".context",
        help="Corpus root holding packages/ and the indexes (default: .context)"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Index command
    index_parser = subparsers.add_parser("index", help="Build the search index")
    index_parser.add_argument(
        "-p", "--package", action="append", help="Package alias to index (repeatable, default: all)"
    )
    index_parser.add_argument(
        "--semantic", action="store_true", help="Also build the vector index"
    )
    index_parser.add_argument(
        "--provider", type=str, default="auto",
        choices=["auto", "ollama", "openai", "huggingface", "jina"],
        help="Embedding provider (default: auto-detect)"
    )
    index_parser.add_argument(
        "--model", type=str, help="Embedding model (default: provider default)"
    )
    index_parser.add_argument("--json", action="store_true", help="Print the build summary as JSON")
    index_parser.set_defaults(func=index)

    # Search command
    search_parser = subparsers.add_parser("search", help="Search the index")
    search_parser.add_argument("query", type=str, help="Search query")
    search_parser.add_argument(
        "-m", "--mode", type=str, choices=["fulltext", "semantic", "hybrid"],
        help="Search mode (default: hybrid when a vector index exists)"
    )
    search_parser.add_argument(
        "-p", "--package", action="append", help="Restrict to a package (repeatable)"
    )
    search_parser.add_argument(
        "-t", "--tag", action="append", help="Require a tag (repeatable)"
    )
    search_parser.add_argument(
        "-n", "--limit", type=int, default=None, help="Number of results (default: 10)"
    )
    search_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    search_parser.set_defaults(func=search)

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show index statistics")
    stats_parser.set_defaults(func=stats)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start REST API server")
    serve_parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind (default: 8000)"
    )
    serve_parser.set_defaults(func=serve)

    return parser


def main(argv=None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    debug = args.verbose or os.environ.get("CONTEXTSEARCH_DEBUG", "").lower() == "true"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        args.func(args)
    except VectorSearchUnavailableError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (ContextSearchError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
