"""
MedRoute Command-Line Interface

Operational access to the context engine without the HTTP API.

Usage:
    medroute status
    medroute ingest [DOCUMENT_ID]
    medroute search "chest pain shortness of breath"
    medroute list [--type protocol]
    medroute clear
    medroute analyze "sudden chest pain" --appointment-type "ER referral"
"""

import argparse
import asyncio
import logging
import sys

from medroute.config import Settings
from medroute.container import ServiceContainer, build_container
from medroute.core.errors import ConfigurationError
from medroute.core.models import DocumentType, TriageClassification

logger = logging.getLogger(__name__)


async def cmd_status(container: ServiceContainer, args: argparse.Namespace) -> int:
    status = await container.retrieval.get_index_status()
    print("Index status")
    print("=" * 60)
    print(f"Total documents:   {status.total_documents}")
    print(f"Indexed documents: {status.indexed_documents}")
    print(f"Total chunks:      {status.total_chunks}")
    print(f"Last indexed:      {status.last_indexed or 'never'}")
    return 0


async def cmd_ingest(container: ServiceContainer, args: argparse.Namespace) -> int:
    if args.document_id:
        success = await container.retrieval.ingest_document(args.document_id)
        print(f"{args.document_id}: {'indexed' if success else 'FAILED'}")
        return 0 if success else 1

    report = await container.retrieval.ingest_all()
    print(f"Ingestion complete: {report.success} succeeded, {report.failed} failed")
    return 0 if report.failed == 0 else 1


async def cmd_search(container: ServiceContainer, args: argparse.Namespace) -> int:
    context = await container.retrieval.get_context(
        args.query, max_results=args.limit, threshold=args.threshold
    )
    print(context.summary)
    print()
    for i, result in enumerate(context.results, 1):
        print(f"[{i}] {result.document_title} ({result.document_type}, {result.source})")
        print(f"    similarity={result.similarity:.3f} chunk={result.chunk_index}")
        print(f"    {result.content[:200]}")
    return 0


async def cmd_list(container: ServiceContainer, args: argparse.Namespace) -> int:
    if args.type:
        documents = await container.document_store.get_by_type(DocumentType(args.type))
    else:
        documents = await container.document_store.list_active()

    for doc in documents:
        print(f"{doc.id}  [{doc.document_type.value}]  {doc.title}  ({doc.source})")
    print(f"\n{len(documents)} active documents")
    return 0


async def cmd_clear(container: ServiceContainer, args: argparse.Namespace) -> int:
    removed = await container.retrieval.clear_index()
    print(f"Cleared index: {removed} chunks deleted")
    return 0


async def cmd_analyze(container: ServiceContainer, args: argparse.Namespace) -> int:
    result = await container.improvement.perform_enhanced_analysis(
        args.text, TriageClassification(appointment_type=args.appointment_type)
    )
    print(f"Knowledge gaps ({len(result.gaps)}):")
    for gap in result.gaps:
        print(f"  - [{gap.priority.value}] {gap.gap_type.value}: {gap.description}")
    print(f"\nDiscovered resources ({len(result.discovered_resources)}):")
    for resource in result.discovered_resources:
        flag = "eligible" if resource.eligible else "skipped"
        print(
            f"  - {resource.title} ({resource.quality.value}, "
            f"relevance={resource.relevance:.2f}, {flag})"
        )
    print(f"\nAuto-ingested: {result.ingested_count}")
    print("\nRecommendations:")
    for recommendation in result.learning_recommendations:
        print(f"  - {recommendation}")
    return 0


COMMANDS = {
    "status": cmd_status,
    "ingest": cmd_ingest,
    "search": cmd_search,
    "list": cmd_list,
    "clear": cmd_clear,
    "analyze": cmd_analyze,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="medroute", description="MedRoute context engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show index status")

    ingest = subparsers.add_parser("ingest", help="Ingest one or all documents")
    ingest.add_argument("document_id", nargs="?", help="Document id (default: all)")

    search = subparsers.add_parser("search", help="Search the corpus")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=5)
    search.add_argument("--threshold", type=float, default=None)

    list_cmd = subparsers.add_parser("list", help="List active documents")
    list_cmd.add_argument("--type", choices=[t.value for t in DocumentType])

    subparsers.add_parser("clear", help="Delete every indexed chunk")

    analyze = subparsers.add_parser("analyze", help="Run a continuous-improvement analysis")
    analyze.add_argument("text")
    analyze.add_argument(
        "--appointment-type",
        default="GP",
        choices=["ER referral", "specialist", "mental health", "physio", "GP"],
    )
    return parser


async def _run(args: argparse.Namespace) -> int:
    container = await build_container(Settings.from_env())
    try:
        return await COMMANDS[args.command](container, args)
    finally:
        await container.aclose()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
