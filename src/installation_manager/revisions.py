# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Revision Store

Single responsibility: Log and retrieve installation revisions
(append-only, hash-chained JSONL)

Every record names its parent and carries a digest over its own content,
so the log can be checked end to end on load. Records are never rewritten
or deleted.
"""

import hashlib
import json
import fcntl
import logging
import os
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .exceptions import (
    ConcurrentWriteError,
    EmptyHistoryError,
    NotFoundError,
    StoreCorruptedError,
)
from .locking import InstallationLock
from .models import HistoryResult, Revision, RevisionKind

logger = logging.getLogger(__name__)


def revision_digest(
    parent: Optional[str],
    timestamp: datetime,
    kind: RevisionKind,
    artifacts: Dict[str, str],
    summary: str
) -> str:
    """Content digest of a revision (hex SHA-256)"""
    payload = json.dumps(
        {
            "parent": parent,
            "timestamp": timestamp.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "kind": kind.value,
            "artifacts": artifacts,
            "summary": summary,
        },
        sort_keys=True,
        separators=(",", ":")
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def format_revision_id(sequence: int, digest: str) -> str:
    return f"{sequence:06d}-{digest[:12]}"


class RevisionStore:
    """Manages the installation revision log"""

    def __init__(self, log_file: Path, lock: InstallationLock):
        """
        Initialize revision store.

        Args:
            log_file: Path to revisions.jsonl
            lock: Installation lock shared with the staging committer
        """
        self.log_file = Path(log_file)
        self.lock = lock

    def _load(self) -> List[Revision]:
        """
        Read and verify the whole log.

        Raises:
            StoreCorruptedError: If any line is unreadable or breaks the chain
        """
        if not self.log_file.exists():
            return []

        revisions: List[Revision] = []
        path = str(self.log_file)
        try:
            with open(self.log_file, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            raise StoreCorruptedError(path, f"unreadable: {e}") from e

        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            if not line.endswith("\n"):
                raise StoreCorruptedError(path, "truncated record", line=lineno)
            try:
                revision = Revision(**json.loads(line))
            except (json.JSONDecodeError, TypeError, ValidationError) as e:
                raise StoreCorruptedError(path, f"invalid record: {e}", line=lineno) from e

            expected_parent = revisions[-1].id if revisions else None
            if revision.parent != expected_parent:
                raise StoreCorruptedError(
                    path, f"broken chain: parent {revision.parent}, expected {expected_parent}", line=lineno
                )
            if revision.sequence != len(revisions) + 1:
                raise StoreCorruptedError(path, f"unexpected sequence {revision.sequence}", line=lineno)

            digest = revision_digest(
                revision.parent, revision.timestamp, revision.kind, revision.artifacts, revision.summary
            )
            if revision.id != format_revision_id(revision.sequence, digest):
                raise StoreCorruptedError(path, f"digest mismatch for {revision.id}", line=lineno)

            revisions.append(revision)

        return revisions

    def prepare(
        self,
        artifacts: Dict[str, str],
        kind: RevisionKind,
        summary: str = ""
    ) -> Revision:
        """
        Build the revision that would follow the current head.

        Nothing is written; pass the result to commit().

        Args:
            artifacts: Resulting artifact set (name -> version)
            kind: Operation producing the revision
            summary: Short human-readable description

        Returns:
            Uncommitted revision
        """
        revisions = self._load()
        parent = revisions[-1].id if revisions else None
        sequence = len(revisions) + 1
        timestamp = datetime.now(UTC)
        if revisions and timestamp <= revisions[-1].timestamp:
            # Keep timestamps strictly increasing even on a coarse clock
            timestamp = revisions[-1].timestamp + timedelta(microseconds=1)

        artifacts = dict(sorted(artifacts.items()))
        digest = revision_digest(parent, timestamp, kind, artifacts, summary)
        return Revision(
            id=format_revision_id(sequence, digest),
            sequence=sequence,
            parent=parent,
            timestamp=timestamp,
            kind=kind,
            artifacts=artifacts,
            summary=summary
        )

    def commit(self, revision: Revision) -> Revision:
        """
        Append a prepared revision to the log.

        Raises:
            ConcurrentWriteError: If the installation lock is held elsewhere
                or the head moved since prepare()
            StoreCorruptedError: If the existing log is unreadable
        """
        with self.lock:
            revisions = self._load()
            head = revisions[-1].id if revisions else None
            if revision.parent != head:
                raise ConcurrentWriteError(
                    "revision history",
                    details={"expected_parent": revision.parent, "head": head}
                )

            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            line = revision.model_dump_json() + "\n"
            with open(self.log_file, "a", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)

        logger.info(f"Recorded revision {revision.id} ({revision.kind.value}, {len(revision.artifacts)} artifacts)")
        return revision

    def append(
        self,
        artifacts: Dict[str, str],
        kind: RevisionKind = RevisionKind.UPDATE,
        summary: str = ""
    ) -> Revision:
        """
        Create and persist a new revision on top of the current head.

        Returns:
            The committed revision
        """
        with self.lock:
            return self.commit(self.prepare(artifacts, kind, summary))

    def history(self, limit: Optional[int] = None) -> List[HistoryResult]:
        """
        List revisions, most recent first.

        Args:
            limit: Maximum number of entries to return

        Returns:
            List of history entries
        """
        revisions = self._load()
        entries = [r.to_history() for r in reversed(revisions)]
        return entries[:limit] if limit is not None else entries

    def get(self, revision_id: str) -> Revision:
        """
        Get a specific revision by ID.

        Raises:
            NotFoundError: If the id is absent
        """
        for revision in self._load():
            if revision.id == revision_id:
                return revision
        raise NotFoundError("Revision", revision_id)

    def current(self) -> Revision:
        """
        Get the head revision.

        Raises:
            EmptyHistoryError: If no install record exists yet
        """
        revisions = self._load()
        if not revisions:
            raise EmptyHistoryError(str(self.log_file))
        return revisions[-1]

    def is_empty(self) -> bool:
        return not self._load()

    def __len__(self) -> int:
        return len(self._load())

    def read_raw(self) -> bytes:
        """Verified log content, for snapshots and staged copies"""
        self._load()
        return self.log_file.read_bytes() if self.log_file.exists() else b""
