"""Digest-based deduplication against the reference table.

This module maps content digests to StorageReferences. New digests are
inserted in bulk under a savepoint; when a concurrent writer already holds
a digest the uniqueness constraint rejects the insert and the digest is
resolved to the existing reference instead. Blobs are uploaded only for
references this writer created.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.errors import StorageConstraintError
from core.logging_config import get_logger
from core.types import ParsedRecord, StorageReference
from store.blob_store import BlobStore, build_blob_key
from store.models import StorageReferenceRow
from store.record_payload import render_fasta

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class DigestResolution:
    """References for one chunk's digests.

    Attributes:
        references: Digest to reference for every digest in the chunk.
        created_digests: Digests whose reference this call inserted.
        bytes_uploaded: Blob bytes written for created references.
    """

    references: Mapping[str, StorageReference]
    created_digests: frozenset[str]
    bytes_uploaded: int


class Deduplicator:
    """Resolves record digests to write-once storage references."""

    def __init__(self, blob_store: BlobStore) -> None:
        self._blob_store = blob_store

    def find_reference(self, session: Session, digest: str) -> StorageReference | None:
        """Return the reference stored for one digest, if any."""
        return self.lookup(session, [digest]).get(digest)

    def lookup(self, session: Session, digests: Sequence[str]) -> dict[str, StorageReference]:
        """Return existing references for digests with one query."""
        if not digests:
            return {}
        rows = session.scalars(
            select(StorageReferenceRow).where(StorageReferenceRow.digest.in_(list(digests)))
        )
        return {row.digest: _to_reference(row) for row in rows}

    def resolve(self, session: Session, records: Sequence[ParsedRecord]) -> DigestResolution:
        """Ensure a reference exists for every record digest.

        Args:
            session: Session inside the caller's file transaction.
            records: Records of one chunk.

        Returns:
            Reference mapping plus the digests created by this call.

        Raises:
            StorageConstraintError: If a digest cannot be inserted or found.
            GenvaultStoreError: If a blob upload fails.
        """
        first_records: dict[str, ParsedRecord] = {}
        for record in records:
            first_records.setdefault(record.digest, record)
        references = self.lookup(session, list(first_records))
        missing_digests = [digest for digest in first_records if digest not in references]
        if not missing_digests:
            return DigestResolution(references, frozenset(), 0)
        payloads = {digest: render_fasta(first_records[digest]) for digest in missing_digests}
        rows = [
            {
                "digest": digest,
                "blob_key": build_blob_key(digest),
                "byte_size": len(payloads[digest]),
                "sequence_length": first_records[digest].sequence_length,
            }
            for digest in missing_digests
        ]
        created_digests = self._insert_references(session, rows)
        bytes_uploaded = 0
        for digest in missing_digests:
            if digest in created_digests:
                self._blob_store.put(build_blob_key(digest), payloads[digest])
                bytes_uploaded += len(payloads[digest])
        references.update(self.lookup(session, missing_digests))
        unresolved = [digest for digest in missing_digests if digest not in references]
        if unresolved:
            raise StorageConstraintError(
                f"Storage references for {len(unresolved)} digests could not be created "
                f"(first: {unresolved[0]}). Inspect storage_references constraints and rerun."
            )
        return DigestResolution(references, frozenset(created_digests), bytes_uploaded)

    def _insert_references(self, session: Session, rows: list[dict[str, object]]) -> set[str]:
        """Insert reference rows, converting digest conflicts into links.

        Returns:
            Digests inserted by this call.
        """
        try:
            with session.begin_nested():
                session.execute(insert(StorageReferenceRow), rows)
            return {str(row["digest"]) for row in rows}
        except IntegrityError:
            _LOGGER.info("digest_conflict_detected", digest_count=len(rows))
        created_digests: set[str] = set()
        for row in rows:
            try:
                with session.begin_nested():
                    session.execute(insert(StorageReferenceRow), [row])
            except IntegrityError:
                _LOGGER.debug("digest_claimed_by_other_writer", digest=row["digest"])
                continue
            created_digests.add(str(row["digest"]))
        return created_digests


def _to_reference(row: StorageReferenceRow) -> StorageReference:
    return StorageReference(
        reference_id=row.id,
        digest=row.digest,
        blob_key=row.blob_key,
        byte_size=row.byte_size,
    )
