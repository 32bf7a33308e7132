# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Staging Committer

Single responsibility: Materialize a resolved change set into a target
directory and record the resulting revision, or leave nothing behind.

Artifacts are assembled in a private work directory next to the target.
Once everything is fetched and verified, the work directory is renamed
onto the target and the revision is committed with no suspension point
in between, so cancellation can only land before the publish (full
rollback) or after the commit (success).
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from .channels import ChannelRegistry
from .exceptions import (
    ConcurrentWriteError,
    ConflictError,
    InstallationManagerError,
    InvalidTargetError,
    RepositoryUnavailableError,
    VerificationError,
)
from .failover import RepositoryFailoverManager
from .locking import InstallationLock
from .logging import log_event
from .manifest import ARTIFACTS_DIR, MANIFEST_FILE, load_manifest, save_manifest
from .models import (
    ArtifactDescriptor,
    InstallationManifest,
    ManifestEntry,
    Repository,
    Revision,
    RevisionKind,
)
from .repositories import RepositoryClient, SIGNATURE_SUFFIX
from .resolver import DownloadCandidate, Resolution
from .revisions import RevisionStore
from .signing import ArtifactVerifier

logger = logging.getLogger(__name__)

REVISIONS_FILE = "revisions.jsonl"
CHANNELS_FILE = "channels.yaml"

INSTALLED_SOURCE = "installation"


class StagingCommitter:
    """Stages update and revert results into target directories"""

    def __init__(
        self,
        installation_root: Path,
        metadata_dir: str,
        revision_store: RevisionStore,
        channel_registry: ChannelRegistry,
        client: RepositoryClient,
        failover: RepositoryFailoverManager,
        lock: InstallationLock,
        verifier: Optional[ArtifactVerifier] = None
    ):
        """
        Initialize staging committer.

        Args:
            installation_root: Root of the running installation
            metadata_dir: Name of the metadata directory inside an installation
            revision_store: Store the new revision is committed to
            channel_registry: Registry copied into the staged metadata
            client: Repository client used to download artifacts
            failover: Retry and circuit breaker manager for downloads
            lock: Installation lock held for the whole operation
            verifier: Checksum and signature verifier
        """
        self.installation_root = Path(installation_root)
        self.metadata_dir = metadata_dir
        self.revision_store = revision_store
        self.channel_registry = channel_registry
        self.client = client
        self.failover = failover
        self.lock = lock
        self.verifier = verifier or ArtifactVerifier()

    def validate_target(self, target_dir: Path) -> Path:
        """
        Check that a directory can receive a staged installation.

        Returns:
            Absolute target path

        Raises:
            InvalidTargetError: If the target is unsafe or not writable
        """
        target = Path(target_dir).resolve()
        root = self.installation_root.resolve()

        if target == root or target in root.parents:
            raise InvalidTargetError(str(target), "is the installation root or one of its ancestors")

        if target.exists():
            if not target.is_dir():
                raise InvalidTargetError(str(target), "exists and is not a directory")
            if not os.access(target, os.W_OK):
                raise InvalidTargetError(str(target), "directory is not writable")

        parent = target.parent
        if not parent.is_dir():
            raise InvalidTargetError(str(target), f"parent directory does not exist: {parent}")
        if not os.access(parent, os.W_OK):
            raise InvalidTargetError(str(target), f"parent directory is not writable: {parent}")

        return target

    async def stage(
        self,
        target_dir: Path,
        resolution: Resolution,
        kind: RevisionKind,
        allow_conflicts: bool = False,
        summary: Optional[str] = None
    ) -> str:
        """
        Materialize a resolution into target_dir and commit its revision.

        Args:
            target_dir: Directory that receives the staged installation
            resolution: Result of ResolutionEngine.plan()
            kind: Revision kind to record
            allow_conflicts: Apply the winning version of conflicting entries
            summary: Revision summary (derived from the resolution if omitted)

        Returns:
            Id of the committed revision

        Raises:
            InvalidTargetError: If the target cannot be staged into
            ConflictError: If the resolution has conflicts and they are not allowed
            ConcurrentWriteError: If another writer holds the installation
            RepositoryUnavailableError: If an artifact cannot be fetched and verified
        """
        target = self.validate_target(target_dir)

        if resolution.conflicts and not allow_conflicts:
            raise ConflictError(resolution.conflicts)

        if summary is None:
            summary = self._summarize(resolution, kind)

        with self.lock:
            work = Path(tempfile.mkdtemp(prefix=f".{target.name}.staging-", dir=target.parent))
            published = False
            try:
                manifest = await self._materialize(work, resolution)

                revision = self.revision_store.prepare(resolution.target, kind, summary)
                if revision.parent != resolution.base.id:
                    raise ConcurrentWriteError(
                        "revision history",
                        details={"resolved_from": resolution.base.id, "head": revision.parent}
                    )

                manifest.revision = revision.id
                self._write_metadata(work, manifest, revision)

                # No await from here on
                self._publish_and_commit(work, target, revision)
                published = True
            finally:
                if not published:
                    shutil.rmtree(work, ignore_errors=True)
                    log_event(
                        logger, "staging_rolled_back", level="WARNING",
                        target=str(target), base_revision=resolution.base.id
                    )

        log_event(
            logger, "revision_staged",
            revision=revision.id, kind=kind.value, target=str(target), changes=len(resolution.changes)
        )
        return revision.id

    def _summarize(self, resolution: Resolution, kind: RevisionKind) -> str:
        if kind == RevisionKind.REVERT and resolution.revision:
            return f"revert to {resolution.revision}"
        changed = ", ".join(c.name for c in resolution.changes)
        return f"{kind.value}: {changed}" if changed else kind.value

    def _installed_artifacts(self) -> Dict[str, ManifestEntry]:
        manifest_file = self.installation_root / self.metadata_dir / MANIFEST_FILE
        try:
            return load_manifest(manifest_file).artifacts
        except InstallationManagerError as e:
            logger.warning(f"Ignoring installed artifacts, manifest unreadable: {e}")
            return {}

    async def _materialize(self, work: Path, resolution: Resolution) -> InstallationManifest:
        installed = self._installed_artifacts()
        entries: Dict[str, ManifestEntry] = {}

        for name in sorted(resolution.target):
            version = resolution.target[name]
            entries[name] = await self._fetch_artifact(
                work,
                name,
                version,
                installed.get(name),
                resolution.candidates.get(name, [])
            )

        return InstallationManifest(artifacts=entries)

    async def _fetch_artifact(
        self,
        work: Path,
        name: str,
        version: str,
        installed: Optional[ManifestEntry],
        candidates: List[DownloadCandidate]
    ) -> ManifestEntry:
        """
        Place one verified artifact file into the work directory.

        Raises:
            RepositoryUnavailableError: If no candidate yields a verified copy
        """
        label = f"{name}@{version}"
        artifact_dir = work / ARTIFACTS_DIR / name
        artifact_dir.mkdir(parents=True, exist_ok=True)
        attempted = []
        last_error = ""

        if installed is not None and installed.version == version:
            attempted.append(INSTALLED_SOURCE)
            source = self.installation_root / installed.path
            dest = artifact_dir / source.name
            try:
                shutil.copyfile(source, dest)
                sha256 = self.verifier.verify(label, dest, installed.sha256)
                logger.debug(f"Reused installed copy of {label}")
                return ManifestEntry(version=version, path=dest.relative_to(work).as_posix(), sha256=sha256)
            except (OSError, VerificationError) as e:
                last_error = str(e)
                logger.warning(f"Installed copy of {label} not usable: {e}")
                dest.unlink(missing_ok=True)

        if not candidates:
            raise RepositoryUnavailableError(label, attempted, last_error or "no repository offers this version")

        descriptors = {c.repository.id: c.descriptor for c in candidates}
        repository, sha256 = await self.failover.execute_with_failover(
            self._download_verified,
            [c.repository for c in candidates],
            label,
            skip_errors=(VerificationError,),
            descriptors=descriptors,
            artifact_dir=artifact_dir
        )
        dest = artifact_dir / descriptors[repository.id].filename
        logger.info(f"Fetched {label} from {repository.id}")
        return ManifestEntry(version=version, path=dest.relative_to(work).as_posix(), sha256=sha256)

    async def _download_verified(
        self,
        repository: Repository,
        descriptors: Dict[str, ArtifactDescriptor],
        artifact_dir: Path
    ) -> str:
        """
        Download one artifact (and its signature for gpgcheck repositories)
        and verify it. A rejected copy is removed before the error propagates.
        """
        descriptor = descriptors[repository.id]
        label = f"{descriptor.name}@{descriptor.version}"
        dest = artifact_dir / descriptor.filename
        signature = dest.with_name(dest.name + SIGNATURE_SUFFIX) if repository.gpgcheck else None
        try:
            await self.client.download(repository, location=descriptor.location, dest=dest)
            if signature is not None:
                await self.client.download(
                    repository, location=descriptor.location + SIGNATURE_SUFFIX, dest=signature
                )
            return self.verifier.verify(label, dest, descriptor.sha256, signature)
        except Exception:
            dest.unlink(missing_ok=True)
            raise
        finally:
            if signature is not None:
                signature.unlink(missing_ok=True)

    def _write_metadata(self, work: Path, manifest: InstallationManifest, revision: Revision):
        metadata = work / self.metadata_dir
        metadata.mkdir(parents=True, exist_ok=True)

        save_manifest(metadata / MANIFEST_FILE, manifest)
        (metadata / CHANNELS_FILE).write_bytes(self.channel_registry.read_raw())
        (metadata / REVISIONS_FILE).write_bytes(
            self.revision_store.read_raw() + (revision.model_dump_json() + "\n").encode("utf-8")
        )

    def _publish_and_commit(self, work: Path, target: Path, revision: Revision):
        """
        Move the work directory onto the target, then commit the revision.

        Any failure restores the previous target before re-raising.
        """
        backup = None
        if target.exists():
            backup = target.parent / f".{target.name}.replaced-{revision.id}"
            target.rename(backup)

        try:
            work.rename(target)
        except OSError:
            if backup is not None:
                backup.rename(target)
            raise

        try:
            self.revision_store.commit(revision)
        except (InstallationManagerError, OSError) as e:
            log_event(
                logger, "commit_failed", level="ERROR",
                revision=revision.id, target=str(target), error=str(e)
            )
            target.rename(work)
            if backup is not None:
                backup.rename(target)
            raise

        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)
