#!/usr/bin/env python3
"""
CLI for Bible Importer - Fills the verse store from public Bible sources.

Usage:
    bible-import run                           # Import every pending chapter
    bible-import run --max-units 200           # Bounded batch
    bible-import run --translations KJV,ASV    # Only these translations
    bible-import coverage                      # Completeness report
    bible-import gaps                          # Chapters still missing or suspect
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import ArgumentError

from .canon import BibleStructure, default_structure
from .config import ConfigError, ImportConfig, parse_list
from .coverage import CoverageAuditor
from .models import BatchResult, ImportOutcome
from .normalizer import TextNormalizer
from .orchestrator import FetchOrchestrator
from .rate_limit import RateLimiter
from .scheduler import BatchScheduler, ProgressTracker
from .sources import build_sources
from .store import PersistenceGateway, StoreUnavailableError

EXIT_OK = 0
EXIT_STORE_UNAVAILABLE = 1
EXIT_USAGE = 2


# =============================================================================
# Pipeline Wiring
# =============================================================================

@dataclass
class Pipeline:
    store: PersistenceGateway
    orchestrator: FetchOrchestrator
    auditor: CoverageAuditor
    scheduler: BatchScheduler


def build_store(config: ImportConfig) -> PersistenceGateway:
    store = PersistenceGateway(config.database_url, batch_size=config.batch_size_rows)
    store.create_schema()
    return store


def build_pipeline(
    config: ImportConfig,
    store: Optional[PersistenceGateway] = None,
    sources=None,
    structure: Optional[BibleStructure] = None,
) -> Pipeline:
    """Wire sources, limiter, normalizer, store and scheduler from a config."""
    structure = structure or default_structure()
    store = store or build_store(config)
    if sources is None:
        sources = build_sources(
            config.source_order,
            structure=structure,
            timeout=config.request_timeout,
            pool_size=config.max_workers,
        )

    orchestrator = FetchOrchestrator(
        sources=sources,
        limiter=RateLimiter(config.pacing),
        store=store,
        normalizer=TextNormalizer.from_file(config.keywords_file),
        structure=structure,
        max_retries=config.max_retries,
    )
    auditor = CoverageAuditor(store, config.translations, structure=structure)
    scheduler = BatchScheduler(
        orchestrator,
        auditor,
        max_workers=config.max_workers,
        on_outcome=print_progress,
    )
    return Pipeline(store=store, orchestrator=orchestrator, auditor=auditor, scheduler=scheduler)


# =============================================================================
# Console Output
# =============================================================================

def print_progress(outcome: ImportOutcome, progress: ProgressTracker):
    stats = progress.get_stats()
    done = stats["completed"] + stats["gapped"]
    pct = done / stats["total"] * 100 if stats["total"] else 100.0
    elapsed_str = time.strftime("%H:%M:%S", time.gmtime(stats["elapsed"]))
    remaining_str = time.strftime("%H:%M:%S", time.gmtime(stats["remaining"]))
    marker = "⚠" if outcome.gapped else "📖"

    print(
        f"\r[{done:,}/{stats['total']:,}] "
        f"{pct:.1f}% | "
        f"⏱ {elapsed_str} elapsed | "
        f"~{remaining_str} remaining | "
        f"{marker} {str(outcome.unit):<30}",
        end="",
        flush=True
    )


def print_batch_summary(result: BatchResult):
    print("\n")
    print("=" * 60)
    if result.cancelled:
        print("⏸ Batch stopped early")
    else:
        print("✅ Batch complete!")
    print(f"   Units processed: {result.processed:,}")
    print(f"   Persisted: {result.persisted:,}")
    print(f"   Gaps: {result.gapped:,}")
    if result.skipped:
        print(f"   Skipped: {result.skipped:,}")
    if result.flagged:
        print(f"   Flagged for review: {result.flagged:,}")
    print(f"   Rows inserted: {result.inserted:,} ({result.conflicted:,} already present)")
    print(f"   Units left for next run: {result.remaining:,}")
    print(f"   Time: {time.strftime('%H:%M:%S', time.gmtime(result.elapsed))}")
    print(f"   Full coverage: {result.coverage_percent:.2f}%")
    print("=" * 60)

    for unit in result.gaps[:20]:
        print(f"   ❌ {unit}")
    if len(result.gaps) > 20:
        print(f"   ... and {len(result.gaps) - 20} more (see `bible-import gaps`)")


# =============================================================================
# Commands
# =============================================================================

def cmd_run(config: ImportConfig) -> int:
    print("📖 Bible Importer")
    print("=" * 60)
    print(f"Translations: {', '.join(config.translations)}")
    print(f"Sources: {' -> '.join(config.source_order)}")
    print(f"Workers: {config.max_workers}")
    print(f"Store: {config.database_url}")
    if config.max_batch_units is not None:
        print(f"Unit budget: {config.max_batch_units:,}")
    if config.max_batch_seconds is not None:
        print(f"Time budget: {config.max_batch_seconds:.0f}s")
    print("=" * 60)

    pipeline = build_pipeline(config)
    try:
        try:
            result = pipeline.scheduler.run_batch(
                max_units=config.max_batch_units,
                max_seconds=config.max_batch_seconds,
            )
        except KeyboardInterrupt:
            print("\n⏸ Interrupted, committed chapters are kept")
            return EXIT_OK
        print_batch_summary(result)
        return EXIT_OK
    finally:
        pipeline.store.dispose()


def cmd_coverage(config: ImportConfig) -> int:
    store = build_store(config)
    try:
        report = CoverageAuditor(store, config.translations).report()
    finally:
        store.dispose()

    print("📊 Coverage")
    print("=" * 60)
    for entry in report.translations:
        print(f"   {entry.translation:<6} {entry.imported:>7,}/{entry.expected:,} ({entry.ratio * 100:.2f}%)")
    print("-" * 60)
    print(
        f"   All of {', '.join(config.translations)}: "
        f"{report.full_coverage_references:,}/{report.total_references:,} "
        f"({report.full_coverage_ratio * 100:.2f}%)"
    )
    print("✅ Complete" if report.complete else "⏳ Incomplete")
    print("=" * 60)
    return EXIT_OK


def cmd_gaps(config: ImportConfig) -> int:
    store = build_store(config)
    try:
        entries = CoverageAuditor(store, config.translations).gap_report()
    finally:
        store.dispose()

    if not entries:
        print("✅ No gaps recorded")
        return EXIT_OK

    print(f"❌ {len(entries):,} chapters missing or suspect")
    print("=" * 60)
    for entry in entries:
        flags = " [flagged]" if entry.flagged else ""
        print(f"   {str(entry.unit):<28} {entry.stored:>3}/{entry.expected:<3} {entry.status or '-'}{flags}")
        if entry.error:
            print(f"      {entry.error}")
    return EXIT_OK


COMMANDS = {
    "run": cmd_run,
    "coverage": cmd_coverage,
    "gaps": cmd_gaps,
}


# =============================================================================
# CLI Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--database-url",
        type=str,
        help="SQLAlchemy URL of the verse store (default: BIBLE_IMPORT_DATABASE_URL or sqlite:///bible.db)"
    )
    common.add_argument(
        "--translations", "-t",
        type=str,
        help="Comma-separated translation codes (default: KJV,ASV,WEB)"
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging"
    )

    parser = argparse.ArgumentParser(
        prog="bible-import",
        description="Import Bible translations into a verse store and track completeness."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", parents=[common], help="Import pending chapters")
    run.add_argument(
        "--max-units", "-n",
        type=int,
        help="Stop after this many chapters"
    )
    run.add_argument(
        "--max-seconds", "-s",
        type=float,
        help="Stop after this many seconds"
    )
    run.add_argument(
        "--workers", "-w",
        type=int,
        help="Number of parallel workers (default: 4)"
    )
    run.add_argument(
        "--sources",
        type=str,
        help="Comma-separated source fallback order (default: scrollmapper,bible-api,bolls)"
    )

    subparsers.add_parser("coverage", parents=[common], help="Show coverage per translation")
    subparsers.add_parser("gaps", parents=[common], help="List missing, gapped and flagged chapters")
    return parser


def apply_args(config: ImportConfig, args: argparse.Namespace) -> ImportConfig:
    """CLI flags override environment values."""
    if args.database_url:
        config.database_url = args.database_url
    if args.translations:
        config.translations = parse_list(args.translations, upper=True)
    if getattr(args, "max_units", None) is not None:
        config.max_batch_units = args.max_units
    if getattr(args, "max_seconds", None) is not None:
        config.max_batch_seconds = args.max_seconds
    if getattr(args, "workers", None) is not None:
        config.max_workers = args.workers
    if getattr(args, "sources", None):
        config.source_order = parse_list(args.sources)
    return config.validate()


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = apply_args(ImportConfig.from_env(), args)
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        return COMMANDS[args.command](config)
    except StoreUnavailableError as e:
        print(f"\n❌ Verse store unavailable: {e}", file=sys.stderr)
        return EXIT_STORE_UNAVAILABLE
    except (ArgumentError, ValueError) as e:
        # unsupported database dialect or malformed URL
        print(f"❌ {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
