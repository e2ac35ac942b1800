"""Run history command wiring for Genvault CLI."""

from __future__ import annotations

import argparse
from datetime import datetime, timezone
from typing import Any

from store.ingest_sdk import GenvaultClient


def add_runs_command(subparsers: Any) -> None:
    """Register runs subcommand."""
    parser = subparsers.add_parser("runs", help="List recorded ingestion runs")
    parser.add_argument("--source", help="Only runs of this source")
    parser.add_argument("--partition", help="Only runs of this partition file")
    parser.add_argument(
        "--since",
        type=parse_timestamp,
        help="Only runs started at or after this ISO timestamp (UTC if no offset)",
    )
    parser.add_argument(
        "--until",
        type=parse_timestamp,
        help="Only runs started before this ISO timestamp (UTC if no offset)",
    )


def run_runs_command(client: GenvaultClient, args: argparse.Namespace) -> int:
    """Print matching runs, one per line."""
    runs = client.list_runs(
        source_name=args.source,
        partition_key=args.partition,
        started_after=args.since,
        started_before=args.until,
    )
    for run in runs:
        print(
            f"{run.run_id}\t"
            f"{run.source_name}\t"
            f"{run.identity}\t"
            f"{run.state}\t"
            f"{run.cause or '-'}\t"
            f"stored={run.records_stored}\t"
            f"updated={run.records_updated}\t"
            f"failed={run.records_failed}\t"
            f"{run.started_at.isoformat()}"
        )
    print(f"runs={len(runs)}")
    return 0


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp argument, assuming UTC when naive."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(
            f"invalid timestamp '{value}'; use ISO-8601 such as 2024-06-01T00:00:00"
        ) from error
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
