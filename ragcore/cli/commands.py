"""Argparse subcommands driving the :class:`IngestionOrchestrator`.

Usage::

    python -m ragcore.cli ingest --all
    python -m ragcore.cli ingest guides/fund_setup.md --force
    python -m ragcore.cli retrieve "fund rollforward settings" --max-chunks 5
    python -m ragcore.cli validate --source guides/fund_setup.md
    python -m ragcore.cli jobs --status failed
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from ragcore.config.settings import Settings
from ragcore.models.ingestion import IngestionJob, IngestionResult, JobStatus
from ragcore.models.quality import ValidationReport
from ragcore.models.retrieval import ChunkFilter, StrategyName
from ragcore.pipeline.orchestrator import IngestionOrchestrator
from ragcore.utils.errors import RagCoreError


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_result(result: IngestionResult) -> None:
    print(f"{result.source_id}: {result.status.value} (v{result.version}, {result.elapsed_seconds:.2f}s)")
    print(f"  Chunks created:       {result.chunks_created}")
    print(f"  Embeddings generated: {result.embeddings_generated}")
    if result.embedding_failures:
        print(f"  Embeddings missing:   {len(result.embedding_failures)}")
    if result.quality_report is not None:
        report = result.quality_report
        print(f"  Quality:              {report.overall_score:.1f} ({report.grade.value})")
    for cause in result.causes:
        print(f"  Cause [{cause.component.value}] {cause.error_type}: {cause.message}")
    if result.status in (JobStatus.FAILED, JobStatus.PARTIAL):
        print(f"  Retryable:            {'yes' if result.retryable else 'no'}")


def _print_report(report: ValidationReport) -> None:
    print(f"Validation of {report.scope}: {report.overall_score:.1f}/100 ({report.grade.value})")
    print(f"  Chunks: {report.total_chunks}")
    for category, score in report.category_scores.items():
        print(f"    {category.value:<14} {score:.2f}")
    if report.violations:
        print(f"\n  Violations ({len(report.violations)}):")
        for violation in report.violations:
            print(f"    [{violation.severity.value}] {violation.message} -> {violation.remediation.value}")


def _print_job(job: IngestionJob) -> None:
    finished = job.finished_at.isoformat(timespec="seconds") if job.finished_at else "-"
    print(
        f"{job.job_id}  {job.status.value:<10} {job.source_id:<40} "
        f"{job.started_at.isoformat(timespec='seconds')}  {finished}"
    )


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, orchestrator: IngestionOrchestrator) -> int:
    source_ids = list(args.sources)
    if args.all:
        source_ids.extend(await orchestrator.list_available_sources())
    if not source_ids:
        print("Nothing to ingest: pass source IDs or --all.", file=sys.stderr)
        return 1

    results = await orchestrator.ingest_batch(source_ids, force=args.force)
    for result in results:
        _print_result(result)
    return 1 if any(r.status is JobStatus.FAILED for r in results) else 0


async def _handle_repair(args: argparse.Namespace, orchestrator: IngestionOrchestrator) -> int:
    result = await orchestrator.repair_embeddings(args.source)
    _print_result(result)
    return 1 if result.status is JobStatus.FAILED else 0


async def _handle_retrieve(args: argparse.Namespace, orchestrator: IngestionOrchestrator) -> int:
    config = orchestrator.retrieval_config
    update: dict = {}
    if args.max_chunks:
        update["max_retrieved_chunks"] = args.max_chunks
    if args.strategy:
        update["retrieval_strategy"] = StrategyName(args.strategy)
    if args.source:
        update["filters"] = ChunkFilter(source_ids=args.source)
    if update:
        config = config.model_copy(update=update)

    result = await orchestrator.retrieve_context(args.query, config)
    if args.json:
        print(result.model_dump_json(indent=2, exclude={"items": {"__all__": {"chunk": {"embeddings"}}}}))
        return 0

    print(f"Query: {result.query}")
    print(f"  Kind: {result.query_kind.value} | Strategy: {result.strategy.value} | {result.elapsed_ms:.1f} ms")
    if result.system_query:
        print("  System query: retrieval bypassed.")
        return 0
    for position, item in enumerate(result.items, start=1):
        chunk = item.chunk
        preview = " ".join(chunk.content.split()[:30])
        print(
            f"\n{position:>2}. [{item.relevance_score:.3f}] {chunk.source_id} "
            f"#{chunk.sequence_order} ({chunk.scale_type.value}, {item.expansion_reason.value})"
        )
        print(f"    {preview}...")
    return 0


async def _handle_validate(args: argparse.Namespace, orchestrator: IngestionOrchestrator) -> int:
    report = await orchestrator.validate(args.source)
    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        _print_report(report)
    return 0


async def _handle_jobs(args: argparse.Namespace, orchestrator: IngestionOrchestrator) -> int:
    if args.job_id:
        job = await orchestrator.get_job(args.job_id)
        if job is None:
            print(f"Unknown job: {args.job_id}", file=sys.stderr)
            return 1
        print(job.model_dump_json(indent=2))
        return 0

    status = JobStatus(args.status) if args.status else None
    jobs = await orchestrator.list_jobs(status=status, source_id=args.source, limit=args.limit)
    if not jobs:
        print("No jobs found.")
    for job in jobs:
        _print_job(job)
    return 0


async def _handle_delete(args: argparse.Namespace, orchestrator: IngestionOrchestrator) -> int:
    if not args.yes:
        confirm = input(f"  Delete source '{args.source}' and all its chunks? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 0
    deleted = await orchestrator.delete_source(args.source)
    print(f"Deleted {deleted} chunks of {args.source}.")
    return 0


async def _handle_stats(args: argparse.Namespace, orchestrator: IngestionOrchestrator) -> int:
    print(json.dumps(await orchestrator.get_stats(), indent=2, default=str))
    return 0


_HANDLERS = {
    "ingest": _handle_ingest,
    "repair": _handle_repair,
    "retrieve": _handle_retrieve,
    "validate": _handle_validate,
    "jobs": _handle_jobs,
    "delete": _handle_delete,
    "stats": _handle_stats,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m ragcore.cli",
        description="Ingest documents into, and retrieve context from, the ragcore knowledge base.",
    )
    parser.add_argument("--config", default="config/config.yaml", help="Path to the YAML config")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ingest = subparsers.add_parser("ingest", help="Ingest source documents")
    ingest.add_argument("sources", nargs="*", help="Source IDs relative to the documents directory")
    ingest.add_argument("--all", action="store_true", help="Ingest every document the loader can find")
    ingest.add_argument("--force", action="store_true", help="Re-ingest even if unchanged")

    repair = subparsers.add_parser("repair", help="Re-embed chunks with missing embeddings")
    repair.add_argument("source", help="Source ID")

    retrieve = subparsers.add_parser("retrieve", help="Retrieve context for a query")
    retrieve.add_argument("query", help="Query text")
    retrieve.add_argument("--max-chunks", type=int, dest="max_chunks", help="Primary results to return")
    retrieve.add_argument(
        "--strategy",
        choices=[s.value for s in StrategyName],
        help="Force a retrieval strategy",
    )
    retrieve.add_argument("--source", action="append", help="Restrict to a source (repeatable)")
    retrieve.add_argument("--json", action="store_true", help="Print the raw result as JSON")

    validate = subparsers.add_parser("validate", help="Grade stored chunk quality")
    validate.add_argument("--source", help="Source ID; omit for the whole corpus")
    validate.add_argument("--json", action="store_true", help="Print the raw report as JSON")

    jobs = subparsers.add_parser("jobs", help="List ingestion jobs")
    jobs.add_argument("--status", choices=[s.value for s in JobStatus], help="Filter by status")
    jobs.add_argument("--source", help="Filter by source ID")
    jobs.add_argument("--limit", type=int, default=20, help="Maximum jobs to list (default: 20)")
    jobs.add_argument("--job-id", dest="job_id", help="Show one job in full")

    delete = subparsers.add_parser("delete", help="Delete a source and its chunks")
    delete.add_argument("source", help="Source ID")
    delete.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    subparsers.add_parser("stats", help="Show pipeline statistics")
    return parser


async def run(args: argparse.Namespace, app_settings: Settings) -> int:
    from ragcore.config.loader import load_config
    from ragcore.main import build_orchestrator

    config = load_config(args.config, settings=app_settings)
    orchestrator = build_orchestrator(app_settings, config)
    async with orchestrator:
        return await _HANDLERS[args.command](args, orchestrator)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    from ragcore.main import setup_logging

    setup_logging(app_settings)
    try:
        exit_code = asyncio.run(run(args, app_settings))
    except RagCoreError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
