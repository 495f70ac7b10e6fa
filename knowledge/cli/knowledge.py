"""Command-line interface for the knowledge pipeline.

Usage::

    python -m knowledge.cli ingest-file --tenant acme --file handbook.pdf
    python -m knowledge.cli ingest-url --tenant acme --url https://example.com/faq
    python -m knowledge.cli ingest-text --tenant acme --name "Refunds" --text "..."
    python -m knowledge.cli add-faq --tenant acme --question "..." --answer "..."
    python -m knowledge.cli search --tenant acme "What is the refund policy?"
    python -m knowledge.cli hybrid-search --tenant acme "refund window" --keyword-weight 0.3
    python -m knowledge.cli stats --tenant acme
    python -m knowledge.cli reprocess-faqs --tenant acme
    python -m knowledge.cli migrate --tenant acme --source-id <id>

Every command builds the services from Settings (environment and ``.env``),
prints a summary and exits 0 on success, 1 on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from knowledge.config.loader import load_config
from knowledge.config.settings import Settings
from knowledge.main import KnowledgeServices, build_knowledge_services
from knowledge.models.chunking import CHUNKING_PRESETS
from knowledge.models.ingestion import ProcessingOptions, ProcessingProgress, ProcessingResult
from knowledge.models.knowledge import FaqItem, KnowledgeSource, SourceType
from knowledge.models.rag import RagContext, RerankModel, SearchOptions
from knowledge.services.ingestion.ingestion_service import new_id
from knowledge.services.retrieval.context_builder import build_context_string
from knowledge.utils.errors import KnowledgeError
from knowledge.utils.logging import configure_logging


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_progress(progress: ProcessingProgress) -> None:
    print(f"  [{progress.stage.value:<10}] {progress.progress:>3}%  {progress.message}")


def _print_result(result: ProcessingResult) -> int:
    if not result.success:
        print(f"\nIngestion failed: {result.error}", file=sys.stderr)
        return 1
    print("\nIngestion complete:")
    print(f"  Chunks created: {result.chunks_created}")
    print(f"  Total tokens:   {result.total_tokens}")
    print(f"  Time:           {result.processing_time_ms / 1000:.2f}s")
    print(f"  Vector store:   {result.vector_store}")
    print(f"  Source ID:      {result.source_id}")
    return 0


def _print_context(context: RagContext, show_context: bool) -> None:
    print(f"Results: {len(context.chunks)} chunks, {len(context.faqs)} FAQs "
          f"({context.search_time_ms:.0f} ms)")
    if context.expanded_queries:
        print(f"Expanded queries: {'; '.join(context.expanded_queries)}")
    if context.degraded_stages:
        print(f"Degraded stages: {', '.join(context.degraded_stages)}")
    print()
    if show_context:
        print(build_context_string(context))
        return
    for faq in context.faqs:
        print(f"  FAQ  {faq.score:.3f}  {faq.question}")
    for chunk in context.chunks:
        name = chunk.source_name or chunk.source_id
        preview = " ".join(chunk.content.split())[:100]
        print(f"  {chunk.score:.3f}  {name} #{chunk.chunk_index}  {preview}")


def _processing_options(args: argparse.Namespace) -> ProcessingOptions:
    return ProcessingOptions(
        chunking_preset=args.preset,
        on_progress=None if args.quiet else _print_progress,
    )


def _search_options(args: argparse.Namespace, config: dict) -> SearchOptions:
    retrieval = config.get("retrieval", {})
    return SearchOptions(
        limit=args.limit or retrieval.get("limit", 5),
        min_score=(
            args.min_score
            if args.min_score is not None
            else retrieval.get("chunk_score_threshold", 0.7)
        ),
        sources=args.source or None,
        categories=args.category or None,
        rerank=not args.no_rerank,
        expand_query=not args.no_expand,
        max_expansions=retrieval.get("max_expansions", 3),
        rerank_top_n=retrieval.get("rerank_top_n", 10),
        rerank_model=RerankModel(args.rerank_model),
    )


async def _create_source(
    services: KnowledgeServices,
    args: argparse.Namespace,
    name: str,
    source_type: SourceType,
) -> KnowledgeSource:
    return await services.repository.create_source(
        KnowledgeSource(
            id=new_id(),
            tenant_id=args.tenant,
            name=name,
            description=args.description,
            source_type=source_type,
            category=args.category_name,
        )
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_ingest_file(args: argparse.Namespace, services: KnowledgeServices) -> int:
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1
    mime_type = args.mime_type or mimetypes.guess_type(path.name)[0]
    source = await _create_source(services, args, args.name or path.name, SourceType.FILE)
    print(f"Ingesting file: {path} ({mime_type or 'unknown type'})")
    result = await services.ingestion.process_file(
        source.id, path.read_bytes(), mime_type, path.name, _processing_options(args)
    )
    return _print_result(result)


async def _handle_ingest_url(args: argparse.Namespace, services: KnowledgeServices) -> int:
    source = await _create_source(services, args, args.name or args.url, SourceType.URL)
    print(f"Ingesting URL: {args.url}")
    result = await services.ingestion.process_url(source.id, args.url, _processing_options(args))
    return _print_result(result)


async def _handle_ingest_text(args: argparse.Namespace, services: KnowledgeServices) -> int:
    text = args.text if args.text is not None else sys.stdin.read()
    source = await _create_source(services, args, args.name, SourceType.TEXT)
    print(f"Ingesting text: {args.name} ({len(text)} chars)")
    result = await services.ingestion.process_text(source.id, text, _processing_options(args))
    return _print_result(result)


async def _handle_add_faq(args: argparse.Namespace, services: KnowledgeServices) -> int:
    faq = await services.repository.create_faq(
        FaqItem(
            id=new_id(),
            tenant_id=args.tenant,
            question=args.question,
            answer=args.answer,
            category=args.category_name,
            priority=args.priority,
        )
    )
    result = await services.ingestion.process_faq(faq.id)
    if not result.success:
        print(f"FAQ {faq.id} saved but not embedded: {result.error}", file=sys.stderr)
        return 1
    print(f"FAQ indexed: {faq.id}")
    return 0


async def _handle_search(
    args: argparse.Namespace, services: KnowledgeServices, config: dict
) -> int:
    options = _search_options(args, config)
    if args.command == "hybrid-search":
        weight = (
            args.keyword_weight
            if args.keyword_weight is not None
            else config.get("retrieval", {}).get("hybrid_keyword_weight", 0.3)
        )
        context = await services.rag.hybrid_search(args.query, args.tenant, options, weight)
    else:
        context = await services.rag.search(args.query, args.tenant, options)
    _print_context(context, args.context)
    return 0


async def _handle_stats(args: argparse.Namespace, services: KnowledgeServices) -> int:
    stats = await services.rag.get_knowledge_stats(args.tenant)
    print(f"Knowledge base statistics ({args.tenant})")
    print("=" * 40)
    print(f"  Total sources:    {stats.total_sources}")
    print(f"  Indexed sources:  {stats.indexed_sources}")
    print(f"  Total chunks:     {stats.total_chunks}")
    print(f"  Total FAQs:       {stats.total_faqs}")
    if stats.sources_by_type:
        print("\n  Sources by type:")
        for src_type, count in sorted(stats.sources_by_type.items()):
            print(f"    {src_type:<15} {count}")
    return 0


async def _handle_reprocess_faqs(args: argparse.Namespace, services: KnowledgeServices) -> int:
    def report(progress: int, message: str) -> None:
        if not args.quiet:
            print(f"  {progress:>3}%  {message}")

    summary = await services.ingestion.reprocess_faqs(args.tenant, report)
    print(f"\nFAQs processed: {summary.processed}, failed: {summary.failed}")
    return 0 if summary.failed == 0 else 1


async def _handle_migrate(args: argparse.Namespace, services: KnowledgeServices) -> int:
    result = await services.ingestion.migrate_to_vector_store(args.source_id, args.tenant)
    print(f"Migrated: {result.migrated}, errors: {result.errors}")
    return 0 if result.errors == 0 else 1


async def _run(args: argparse.Namespace, app_settings: Settings, config: dict) -> int:
    services = build_knowledge_services(app_settings)
    try:
        await services.repository.initialize()
        if args.command == "ingest-file":
            return await _handle_ingest_file(args, services)
        if args.command == "ingest-url":
            return await _handle_ingest_url(args, services)
        if args.command == "ingest-text":
            return await _handle_ingest_text(args, services)
        if args.command == "add-faq":
            return await _handle_add_faq(args, services)
        if args.command in ("search", "hybrid-search"):
            return await _handle_search(args, services, config)
        if args.command == "stats":
            return await _handle_stats(args, services)
        if args.command == "reprocess-faqs":
            return await _handle_reprocess_faqs(args, services)
        if args.command == "migrate":
            return await _handle_migrate(args, services)
        return 1
    except KnowledgeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await services.aclose()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", help="Display name of the new source")
    parser.add_argument("--description", help="Optional source description")
    parser.add_argument(
        "--category", dest="category_name", help="Category used by search filters"
    )
    parser.add_argument(
        "--preset",
        choices=sorted(CHUNKING_PRESETS),
        help="Chunking preset (default from settings)",
    )
    parser.add_argument("--quiet", action="store_true", help="Hide progress output")


def _add_search_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("query", help="Search query")
    parser.add_argument("--limit", type=int, help="Maximum chunks to return")
    parser.add_argument("--min-score", type=float, help="Similarity threshold (0-1)")
    parser.add_argument("--source", action="append", help="Restrict to a source id")
    parser.add_argument("--category", action="append", help="Restrict to a category")
    parser.add_argument("--no-rerank", action="store_true", help="Skip reranking")
    parser.add_argument("--no-expand", action="store_true", help="Skip query expansion")
    parser.add_argument(
        "--rerank-model",
        choices=[m.value for m in RerankModel],
        default=RerankModel.CROSS_ENCODER.value,
    )
    parser.add_argument(
        "--context", action="store_true", help="Print the prompt-ready context string"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowledge",
        description="Ingest documents into and search the knowledge base.",
    )
    parser.add_argument("--config", default="config/config.yaml", help="YAML config path")
    subparsers = parser.add_subparsers(dest="command")

    def command(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--tenant", required=True, help="Tenant id")
        return sub

    file_parser = command("ingest-file", "Ingest a PDF, DOCX, HTML, Markdown or text file")
    file_parser.add_argument("--file", required=True, help="Path to the document")
    file_parser.add_argument("--mime-type", help="Override the guessed MIME type")
    _add_source_arguments(file_parser)

    url_parser = command("ingest-url", "Fetch and ingest a web page")
    url_parser.add_argument("--url", required=True, help="Page URL")
    _add_source_arguments(url_parser)

    text_parser = command("ingest-text", "Ingest raw text (from --text or stdin)")
    text_parser.add_argument("--text", help="Text to ingest; read from stdin when omitted")
    _add_source_arguments(text_parser)
    text_parser.set_defaults(name="Pasted text")

    faq_parser = command("add-faq", "Store and embed an FAQ")
    faq_parser.add_argument("--question", required=True)
    faq_parser.add_argument("--answer", required=True)
    faq_parser.add_argument("--category", dest="category_name")
    faq_parser.add_argument("--priority", type=int, default=0)

    _add_search_arguments(command("search", "Semantic search"))
    hybrid_parser = command("hybrid-search", "Semantic search blended with keyword matches")
    _add_search_arguments(hybrid_parser)
    hybrid_parser.add_argument("--keyword-weight", type=float, help="Keyword share (0-1)")

    command("stats", "Show knowledge base statistics")

    reprocess_parser = command("reprocess-faqs", "Re-embed every FAQ of the tenant")
    reprocess_parser.add_argument("--quiet", action="store_true")

    migrate_parser = command("migrate", "Copy fallback chunks into the vector store")
    migrate_parser.add_argument("--source-id", required=True)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, build services, dispatch."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=app_settings.app_env == "production",
    )
    try:
        config = load_config(args.config, app_settings)
    except KnowledgeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    exit_code = asyncio.run(_run(args, app_settings, config))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
