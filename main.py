#!/usr/bin/env python3
"""ScanLedger - Scanned document registry and renaming assistant."""

import argparse
import sys
from typing import List, Optional

from scanledger import ScanLedger, __version__
from models import create_llm
from workflows import (
    AnalysisCache,
    DocumentRegistry,
    LedgerService,
    LedgerError,
    MergeEngine,
    OperationResult,
    PageRasterizer,
    PipelineOrchestrator,
    propose,
)


def build_service() -> LedgerService:
    """Construct and load the registry, cache, pipeline and facade.

    Uses ScanLedger class variables for configuration, so call
    ScanLedger.configure() first.
    """
    registry = DocumentRegistry(ScanLedger.state_dir, backup_count=ScanLedger.backup_count)
    registry.load()
    cache = AnalysisCache(ScanLedger.state_dir, backup_count=ScanLedger.backup_count)
    cache.load()

    orchestrator = PipelineOrchestrator(
        registry,
        cache,
        llm_factory=lambda: create_llm(ScanLedger.llm_provider_name, log=ScanLedger.print_right),
        rasterizer=PageRasterizer(),
        scan_batch_size=ScanLedger.scan_batch_size,
    )
    merge_engine = MergeEngine(registry)
    return LedgerService(registry, cache, orchestrator, merge_engine, ScanLedger.folders)


def print_records(service: LedgerService) -> None:
    """Print every record with its proposed name."""
    records = service.list_records()
    for record in records:
        record.display(ScanLedger.print_right)
        proposal = propose(record)
        if proposal != record.current_path:
            ScanLedger.print_right(f"Proposed: {proposal}")
        ScanLedger.print_right("")
    counts = service.counts()
    ScanLedger.print_right(
        f"{counts['total']} record(s): {counts['new']} new, {counts['analyzed']} analyzed, "
        f"{counts['bad']} bad, {counts['renamed']} renamed"
    )


def report(result: OperationResult) -> bool:
    color = "green" if result.success else "red"
    ScanLedger.print_right(f"[{color}]{result.message}[/{color}]")
    return result.success


def run_actions(service: LedgerService, args: argparse.Namespace) -> bool:
    """Run the actions requested on the command line, in pipeline order.

    Returns:
        False if any action failed
    """
    ok = True
    if args.clear:
        ok &= report(service.clear())
    if args.clear_cache:
        ok &= report(service.clear_cache())
    if args.purge_pdf_cache is not None:
        ok &= report(service.purge_cache(args.purge_pdf_cache or None))
    if args.remove_missing:
        ok &= report(service.remove_missing())
    if args.remove_renamed:
        ok &= report(service.remove_renamed())
    if args.remove_not_analyzed:
        ok &= report(service.remove_not_analyzed())
    if args.reset_bad:
        ok &= report(service.reset_bad())
    if args.scan:
        ok &= report(service.scan())
    if args.analyze:
        ok &= report(service.analyze_all(force=args.force))
    if args.merge:
        ok &= report(service.merge(args.merge))
    if args.rename:
        ok &= report(service.rename_all())
    if args.list:
        print_records(service)
    if args.cache_stats:
        stats = service.cache_stats()
        ScanLedger.print_right(f"Analysis cache: {stats['count']} entries, "
                               f"last updated {stats['lastUpdatedAt'] or 'never'}")
    return ok


def has_actions(args: argparse.Namespace) -> bool:
    return any([
        args.scan, args.analyze, args.rename, args.merge, args.list, args.reset_bad,
        args.remove_renamed, args.remove_not_analyzed, args.remove_missing, args.clear,
        args.cache_stats, args.clear_cache, args.purge_pdf_cache is not None,
    ])


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scanned document registry and renaming assistant")
    parser.add_argument("--version", action="version", version=f"ScanLedger {__version__}")
    parser.add_argument("--folders", type=str,
                        help="Comma-separated folders to scan (overrides FOLDERS)")
    parser.add_argument("--state-dir", type=str,
                        help="Directory for state and cache files (overrides STATE_DIR)")
    parser.add_argument("--scan", action="store_true",
                        help="Scan folders for new documents")
    parser.add_argument("--analyze", action="store_true",
                        help="Analyze all new and bad documents")
    parser.add_argument("--force", action="store_true",
                        help="Skip the analysis cache (use with --analyze)")
    parser.add_argument("--rename", action="store_true",
                        help="Rename analyzed documents to their proposed names")
    parser.add_argument("--merge", nargs="+", metavar="ID",
                        help="Merge image records into one PDF, in the given order")
    parser.add_argument("--list", action="store_true",
                        help="List all records with proposed names")
    parser.add_argument("--reset-bad", action="store_true",
                        help="Reset bad records to new")
    parser.add_argument("--remove-renamed", action="store_true",
                        help="Remove renamed records from state")
    parser.add_argument("--remove-not-analyzed", action="store_true",
                        help="Remove new and bad records from state")
    parser.add_argument("--remove-missing", action="store_true",
                        help="Remove records whose file no longer exists")
    parser.add_argument("--clear", action="store_true",
                        help="Remove all records from state")
    parser.add_argument("--cache-stats", action="store_true",
                        help="Show analysis cache statistics")
    parser.add_argument("--clear-cache", action="store_true",
                        help="Remove all analysis cache entries")
    parser.add_argument("--purge-pdf-cache", nargs="?", const="", metavar="DATE",
                        help="Remove cached PDF analyses, only those after DATE if given")
    parser.add_argument("--cli", action="store_true",
                        help="Use CLI output instead of TextUI (default is TextUI)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    ScanLedger.configure(args)

    if args.cli:
        try:
            service = build_service()
        except LedgerError as e:
            print(f"Error: {e}")
            return 1
        ScanLedger.print_right(f"Using LLM provider: {ScanLedger.llm_provider_name}")
        ScanLedger.print_right(f"Folders: {', '.join(ScanLedger.folders)}")
        if not has_actions(args):
            print_records(service)
            return 0
        return 0 if run_actions(service, args) else 1

    from textui import run_app

    # Build before starting the TUI so load errors show on the terminal
    try:
        service = build_service()
    except LedgerError as e:
        print(f"Error: {e}")
        return 1

    process_func = None
    if has_actions(args):
        def process_func() -> None:
            run_actions(service, args)

    run_app(service, process_func=process_func)
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
