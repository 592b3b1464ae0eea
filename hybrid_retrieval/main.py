"""Command-line entry point for running hybrid searches over JSON collections."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config.settings import get_storage_config
from .services.hybrid_search import HybridSearchEngine
from .services.parameter_store import JsonParameterStore
from .utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def load_collections_file(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """Load collections from a JSON file or a directory of ``<collection>.json`` files.

    A single file must hold an object mapping collection names to lists of
    document records.

    Raises:
        ValueError: If the content does not have the expected shape
    """
    if path.is_dir():
        data = {}
        for file_path in sorted(path.glob("*.json")):
            with open(file_path, "r", encoding="utf-8") as f:
                records = json.load(f)
            if not isinstance(records, list):
                raise ValueError(f"{file_path} must contain a list of documents")
            data[file_path.stem] = records
        return data

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object mapping collection names to documents")
    return data


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="hybrid-retrieval",
        description="Hybrid vector + BM25 retrieval with fusion, reranking and confidence scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --data collections.json "ما هي متطلبات ترخيص مصنع"
  %(prog)s --data data/ --top-k 5 --strategy COMPLEX "اشتراطات النشاط"
  %(prog)s --data data/ --entities '{"governorate": "القاهرة"}' "كم عدد المناطق الصناعية"
        """
    )

    parser.add_argument("query", nargs="?", help="Query text to search for")

    parser.add_argument(
        "--data", "-d",
        type=Path,
        required=True,
        help="JSON file mapping collection names to documents, or a directory of <collection>.json files"
    )

    parser.add_argument("--top-k", "-k", type=int, help="Maximum number of results")

    parser.add_argument(
        "--strategy", "-s",
        choices=["SIMPLE", "COMPLEX", "STATISTICAL", "COMPARISON", "SEQUENTIAL", "DEEP", "DEFAULT"],
        help="Force a retrieval strategy instead of selecting one"
    )

    parser.add_argument("--intent", help="Pre-classified intent type (e.g. ACTIVITY, LOCATION)")
    parser.add_argument("--entities", help="Pre-extracted entities as a JSON object")
    parser.add_argument("--context", action="append", default=[], help="Previous message (repeatable)")
    parser.add_argument("--query-vector", help="Query embedding as a JSON array")

    parser.add_argument(
        "--parameters", "-p",
        type=Path,
        help="Learned parameters file (default: storage.parameters_path)"
    )

    parser.add_argument("--metrics", action="store_true", help="Print engine and learning metrics after the search")

    # Logging options
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (overrides configuration)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (equivalent to --log-level DEBUG)"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output (equivalent to --log-level ERROR)"
    )

    return parser


def _log_level(args: argparse.Namespace) -> Optional[str]:
    if args.verbose:
        return "DEBUG"
    if args.quiet:
        return "ERROR"
    return args.log_level


async def run_query(args: argparse.Namespace) -> Dict[str, Any]:
    parameters_path = args.parameters or get_storage_config().get("parameters_path")
    engine = HybridSearchEngine(parameter_store=JsonParameterStore(parameters_path))

    counts = engine.load_collections(load_collections_file(args.data))
    logger.info(f"Loaded collections: {counts}")

    options: Dict[str, Any] = {}
    if args.top_k:
        options["top_k"] = args.top_k
    if args.strategy:
        options["strategy"] = args.strategy

    response = await engine.search(
        args.query,
        options,
        intent=args.intent,
        entities=json.loads(args.entities) if args.entities else None,
        context=list(args.context) or None,
        query_vector=json.loads(args.query_vector) if args.query_vector else None
    )

    output = response.to_dict()
    if args.metrics:
        output["metrics"] = engine.get_metrics()
    engine.save_parameters()
    return output


def main() -> int:
    """
    Main entry point with CLI argument parsing.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = create_argument_parser()
    args = parser.parse_args()

    if not args.query:
        parser.error("a query is required")

    setup_logging(level=_log_level(args))

    try:
        output = asyncio.run(run_query(args))
    except KeyboardInterrupt:
        print("\nSearch interrupted by user", file=sys.stderr)
        return 130
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception("Search failed")
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(output, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
