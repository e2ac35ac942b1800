"""Unit tests for the persistent ingestion run registry."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from core.errors import GenvaultStoreError
from core.types import ReleasePartition
from ingest.run_types import IngestionRun, InvalidStateTransitionError
from store.run_registry import IngestionRunRegistry
from tests.store_harness import build_partition, build_store_harness

_T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _start(
    registry: IngestionRunRegistry,
    partition: ReleasePartition,
    started_at: datetime | None = None,
) -> IngestionRun:
    return registry.start_run(registry.pending_run(partition, started_at=started_at))


def test_start_run_persists_pending_run(tmp_path: Path) -> None:
    """A started run is stored as pending with a UTC start time."""
    registry = build_store_harness(tmp_path).registry

    run = _start(registry, build_partition("/mirror/gbphg1.seq.gz"), started_at=_T0)

    loaded = registry.load_run(run.run_id)
    assert loaded.state == "pending"
    assert loaded.identity == "gbphg1.seq.gz@262"
    assert loaded.started_at == _T0


def test_transition_updates_stored_state(tmp_path: Path) -> None:
    """Valid transitions are persisted immediately."""
    registry = build_store_harness(tmp_path).registry
    run = _start(registry, build_partition("/mirror/gbphg1.seq.gz"))

    moved = registry.transition(run, "discovering")

    assert moved.state == "discovering"
    assert registry.load_run(run.run_id).state == "discovering"


def test_transition_rejects_invalid_edge(tmp_path: Path) -> None:
    """The registry refuses edges the state machine forbids."""
    registry = build_store_harness(tmp_path).registry
    run = _start(registry, build_partition("/mirror/gbphg1.seq.gz"))

    with pytest.raises(InvalidStateTransitionError):
        registry.transition(run, "finalizing")

    assert registry.load_run(run.run_id).state == "pending"


def test_transition_of_unregistered_run_fails(tmp_path: Path) -> None:
    """Transitions need a stored run."""
    registry = build_store_harness(tmp_path).registry
    run = _start(registry, build_partition("/mirror/gbphg1.seq.gz"))

    with pytest.raises(GenvaultStoreError):
        registry.transition(replace(run, run_id="missing"), "discovering")


def test_load_run_raises_for_unknown_id(tmp_path: Path) -> None:
    """Unknown run IDs are reported with a next step."""
    registry = build_store_harness(tmp_path).registry

    with pytest.raises(GenvaultStoreError) as error_info:
        registry.load_run("missing")

    assert "genvault runs" in str(error_info.value)


def test_list_runs_filters_by_partition_and_time(tmp_path: Path) -> None:
    """Runs can be narrowed by partition and start-time window."""
    registry = build_store_harness(tmp_path).registry
    first = _start(registry, build_partition("/m/gbphg1.seq.gz"), started_at=_T0)
    second = _start(
        registry,
        build_partition("/m/gbphg2.seq.gz", partition_key="gbphg2.seq.gz"),
        started_at=_T0 + timedelta(hours=1),
    )
    _start(registry, build_partition("/m/gbphg1.seq.gz"), started_at=_T0 + timedelta(hours=2))

    by_partition = registry.list_runs(partition_key="gbphg2.seq.gz")
    in_window = registry.list_runs(
        started_after=_T0,
        started_before=(_T0 + timedelta(hours=2)).replace(tzinfo=None),
    )

    assert [run.run_id for run in by_partition] == [second.run_id]
    assert [run.run_id for run in in_window] == [first.run_id, second.run_id]
    assert len(registry.list_runs(source_name="uniprot")) == 0


def test_ingested_identities_counts_succeeded_and_partial_runs(tmp_path: Path) -> None:
    """Only succeeded and partially failed runs mark a partition ingested."""
    registry = build_store_harness(tmp_path).registry
    outcomes = {
        "gbphg1.seq.gz": "succeeded",
        "gbphg2.seq.gz": "partially_failed",
        "gbphg3.seq.gz": "failed",
    }
    for partition_key, state in outcomes.items():
        partition = build_partition(f"/m/{partition_key}", partition_key=partition_key)
        run = _start(registry, partition)
        registry.save_run(replace(run, state=state))  # type: ignore[arg-type]

    identities = registry.ingested_identities("genbank")

    assert identities == {"gbphg1.seq.gz@262", "gbphg2.seq.gz@262"}
    assert registry.ingested_identities("uniprot") == set()


def test_save_run_overwrites_counts(tmp_path: Path) -> None:
    """Saving a terminal run replaces the stored counters and errors."""
    registry = build_store_harness(tmp_path).registry
    run = _start(registry, build_partition("/mirror/gbphg1.seq.gz"), started_at=_T0)

    registry.save_run(
        replace(
            run,
            state="failed",
            cause="timeout",
            records_stored=7,
            errors=("timeout: budget exceeded",),
            finished_at=_T0 + timedelta(minutes=5),
        )
    )

    loaded = registry.load_run(run.run_id)
    assert (loaded.state, loaded.cause, loaded.records_stored) == ("failed", "timeout", 7)
    assert loaded.errors == ("timeout: budget exceeded",)
    assert loaded.finished_at == _T0 + timedelta(minutes=5)


def test_pending_run_is_not_persisted_until_started(tmp_path: Path) -> None:
    """Building a pending run writes nothing."""
    registry = build_store_harness(tmp_path).registry

    run = registry.pending_run(build_partition("/mirror/gbphg1.seq.gz"), started_at=_T0)

    assert run.state == "pending"
    assert registry.list_runs() == []


def test_start_run_rejects_non_pending_run(tmp_path: Path) -> None:
    """Only pending runs can be registered."""
    registry = build_store_harness(tmp_path).registry
    run = registry.pending_run(build_partition("/mirror/gbphg1.seq.gz"))

    with pytest.raises(InvalidStateTransitionError):
        registry.start_run(replace(run, state="retrieving"))

    assert registry.list_runs() == []
