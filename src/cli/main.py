"""Genvault CLI entry points.

This module exposes commands for release discovery and ingestion.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from cli.runs_command import add_runs_command, run_runs_command
from core.config import GenvaultConfig
from core.errors import GenvaultConfigError, GenvaultDependencyError, GenvaultError
from core.types import IngestOptions
from ingest.orchestrator import IngestProgress
from store.ingest_sdk import GenvaultClient

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_PARTIAL = 3


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(
        prog="genvault", description="Sequence release ingestion CLI"
    )
    parser.add_argument("--data-root", help="Override GENVAULT_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_discover_command(subparsers)
    _add_ingest_command(subparsers)
    add_runs_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Genvault CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code: 0 success, 1 failure, 2 usage or configuration
        error, 3 partial success.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        with _build_client(args.data_root) as client:
            if args.command == "discover":
                return _run_discover_command(client, args)
            if args.command == "ingest":
                return _run_ingest_command(client, args)
            if args.command == "runs":
                return run_runs_command(client, args)
    except (GenvaultConfigError, GenvaultDependencyError) as error:
        print(f"error: {error}", file=sys.stderr)
        return EXIT_USAGE
    except GenvaultError as error:
        print(f"error: {error}", file=sys.stderr)
        return EXIT_FAILURE
    parser.error(f"Unsupported command: {args.command}")
    return EXIT_USAGE


def _build_client(data_root: str | None) -> GenvaultClient:
    """Build SDK client with optional data-root override.

    Args:
        data_root: Optional override path.

    Returns:
        Configured SDK client.
    """
    config = GenvaultConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return GenvaultClient(config)


def _run_discover_command(client: GenvaultClient, args: argparse.Namespace) -> int:
    """Handle discover command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    result = client.discover(args.source)
    new_identities = {partition.identity for partition in result.new}
    partitions = result.available if args.all else result.new
    for partition in partitions:
        status = "new" if partition.identity in new_identities else "ingested"
        print(
            f"{partition.partition_key}\t"
            f"{partition.release_version}\t"
            f"{partition.category or '-'}\t"
            f"{status}\t"
            f"{partition.remote_location}"
        )
    print(f"available={len(result.available)} new={len(result.new)}")
    return EXIT_SUCCESS


def _run_ingest_command(client: GenvaultClient, args: argparse.Namespace) -> int:
    """Handle ingest command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code reflecting the aggregate outcome.
    """
    options = IngestOptions(
        source_name=args.source,
        partition_keys=tuple(args.partition or ()),
        include_ingested=args.include_ingested,
        record_limit=args.record_limit,
        concurrency=args.concurrency,
    )
    report = client.ingest(options, progress_callback=_print_progress)
    for line in report.summary_lines():
        print(line)
    if report.is_complete_success:
        return EXIT_SUCCESS
    if report.is_total_failure:
        return EXIT_FAILURE
    return EXIT_PARTIAL


def _print_progress(progress: IngestProgress) -> None:
    print(f"progress={progress.completed}/{progress.total}", file=sys.stderr)


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{value}'") from error
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {parsed}")
    return parsed


def _add_discover_command(subparsers: Any) -> None:
    """Register discover subcommand."""
    parser = subparsers.add_parser("discover", help="List partitions published by a source")
    parser.add_argument("--source", required=True, help="Configured source name")
    parser.add_argument(
        "--all",
        action="store_true",
        help="List every published partition, not only the ones not yet ingested",
    )


def _add_ingest_command(subparsers: Any) -> None:
    """Register ingest subcommand."""
    parser = subparsers.add_parser("ingest", help="Ingest new partitions of a source")
    parser.add_argument("--source", required=True, help="Configured source name")
    parser.add_argument(
        "--partition",
        action="append",
        help="Partition file name to ingest; repeat for several",
    )
    parser.add_argument(
        "--include-ingested",
        action="store_true",
        help="Re-ingest partitions that already have a successful run",
    )
    parser.add_argument(
        "--record-limit",
        type=_positive_int,
        help="Stop each partition after this many records",
    )
    parser.add_argument(
        "--concurrency",
        type=_positive_int,
        help="Override GENVAULT_CONCURRENCY for this command",
    )
