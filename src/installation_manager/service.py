# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Installation Manager - Modular Composition

Composes focused modules into the installation management API.
Each module does one thing well, following Unix philosophy.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .channels import ChannelRegistry
from .config import Config, load_config
from .exceptions import HistoryExistsError
from .failover import FailoverConfig, RepositoryFailoverManager
from .locking import InstallationLock
from .logging import configure_logging
from .manifest import MANIFEST_FILE, load_manifest, save_manifest
from .models import (
    ArtifactChange,
    Channel,
    Direction,
    HistoryResult,
    InstallationChanges,
    Repository,
    Revision,
    RevisionKind,
)
from .repositories import IndexCache, RepositoryClient
from .resolver import ResolutionEngine, classify
from .revisions import RevisionStore
from .signing import ArtifactVerifier
from .snapshot import SnapshotArchiver, ZipSnapshotArchiver, snapshot_path
from .staging import CHANNELS_FILE, REVISIONS_FILE, StagingCommitter
from .strategies import parse_version

logger = logging.getLogger(__name__)

CACHE_DIR = "cache"
INSTALLATION_LOCK_FILE = "installation.lock"
CHANNELS_LOCK_FILE = "channels.lock"


class InstallationManager:
    """
    Installation management service (modular composition).

    Composes:
    - RevisionStore: Revision history
    - ChannelRegistry: Channel subscriptions
    - ResolutionEngine: Update/revert change sets
    - StagingCommitter: Stage and commit change sets
    - SnapshotArchiver: Metadata export
    """

    def __init__(
        self,
        installation_root: str,
        config: Optional[Config] = None,
        client: Optional[RepositoryClient] = None,
        archiver: Optional[SnapshotArchiver] = None,
        verifier: Optional[ArtifactVerifier] = None
    ):
        """
        Initialize Installation Manager.

        Args:
            installation_root: Root directory of the managed installation
            config: Configuration (defaults when omitted)
            client: Repository client (file:// and http(s):// by default)
            archiver: Snapshot archiver (zip by default)
            verifier: Artifact verifier (uses the configured GPG keyring by default)
        """
        self.installation_root = Path(installation_root)
        self.config = config or Config()

        # File paths
        self.metadata_path = self.config.metadata_path(self.installation_root)
        self.revisions_file = self.metadata_path / REVISIONS_FILE
        self.channels_file = self.metadata_path / CHANNELS_FILE
        self.manifest_file = self.metadata_path / MANIFEST_FILE

        self.installation_lock = InstallationLock(self.metadata_path / INSTALLATION_LOCK_FILE)
        self.channels_lock = InstallationLock(self.metadata_path / CHANNELS_LOCK_FILE, resource="channels")

        # Initialize modular components
        self.revision_store = RevisionStore(self.revisions_file, self.installation_lock)
        self.channel_registry = ChannelRegistry(self.channels_file, self.channels_lock)
        self.client = client or RepositoryClient(timeout=self.config.timeout, base_dir=self.installation_root)
        self.failover = RepositoryFailoverManager(FailoverConfig.from_config(self.config))
        self.index_cache = IndexCache(self.metadata_path / CACHE_DIR)

        self.resolver = ResolutionEngine(
            self.revision_store,
            self.channel_registry,
            self.client,
            self.failover,
            cache=self.index_cache,
            default_strategy=self.config.default_strategy,
            max_parallel_queries=self.config.max_parallel_queries
        )
        self.committer = StagingCommitter(
            self.installation_root,
            self.config.metadata_dir,
            self.revision_store,
            self.channel_registry,
            self.client,
            self.failover,
            self.installation_lock,
            verifier=verifier or ArtifactVerifier(self.config.gpg_keyring)
        )
        self.archiver = archiver or ZipSnapshotArchiver()

        logger.info(
            f"InstallationManager initialized for {self.installation_root} "
            f"with {len(self.channel_registry)} channels"
        )

    @classmethod
    def from_config(cls, installation_root: str, config_path: Optional[str] = None, **kwargs) -> "InstallationManager":
        """Load configuration from YAML, configure logging, then build the manager"""
        config = load_config(config_path)
        configure_logging(config)
        return cls(installation_root, config=config, **kwargs)

    # =========================================================================
    # History
    # =========================================================================

    def history(self) -> List[HistoryResult]:
        """Revisions, newest first"""
        return self.revision_store.history()

    def current_revision(self) -> Revision:
        return self.revision_store.current()

    def revision_details(self, revision: str) -> InstallationChanges:
        """
        Changes between a revision and the current head.

        Raises:
            NotFoundError: If the revision is unknown
        """
        source = self.revision_store.get(revision)
        head = self.revision_store.current()
        return InstallationChanges(
            from_revision=source.id,
            to_revision=head.id,
            changes=classify(source.artifacts, head.artifacts)
        )

    def record_installation(
        self,
        artifacts: Optional[Dict[str, str]] = None,
        summary: str = "initial installation"
    ) -> Revision:
        """
        Record the first revision of an installation.

        Args:
            artifacts: Installed artifact set; read from the manifest when omitted
            summary: Revision summary

        Raises:
            HistoryExistsError: If history already exists
            InvalidVersionError: If a version cannot be parsed
            ConcurrentWriteError: If another writer holds the installation
        """
        with self.installation_lock:
            if not self.revision_store.is_empty():
                raise HistoryExistsError(self.revision_store.current().id)

            manifest = load_manifest(self.manifest_file)
            if artifacts is None:
                artifacts = manifest.artifact_set()
            for version in artifacts.values():
                parse_version(version)

            revision = self.revision_store.append(artifacts, RevisionKind.INSTALL, summary)

            if manifest.artifacts:
                manifest.revision = revision.id
                save_manifest(self.manifest_file, manifest)

        return revision

    # =========================================================================
    # Updates and reverts
    # =========================================================================

    async def find_updates(self, repositories: Optional[List[Repository]] = None) -> List[ArtifactChange]:
        """
        Dry run of the update path. Conflicts are reported as entries.

        Args:
            repositories: Explicit repositories; None or empty means all subscribed channels
        """
        return await self.resolver.resolve(Direction.UPDATE, repositories)

    async def prepare_update(
        self,
        target_dir: str,
        repositories: Optional[List[Repository]] = None,
        allow_conflicts: Optional[bool] = None
    ) -> Optional[str]:
        """
        Stage the latest resolvable update into target_dir.

        Args:
            target_dir: Directory receiving the staged installation
            repositories: Explicit repositories; None or empty means all subscribed channels
            allow_conflicts: Apply winning versions of conflicting entries
                (configuration default when omitted)

        Returns:
            Id of the new revision, or None when there is nothing to update
        """
        self.committer.validate_target(Path(target_dir))
        if allow_conflicts is None:
            allow_conflicts = self.config.allow_conflicts

        with self.installation_lock:
            resolution = await self.resolver.plan(Direction.UPDATE, repositories)
            if resolution.is_empty:
                logger.info(f"No updates available for {resolution.base.id}")
                return None
            return await self.committer.stage(
                Path(target_dir), resolution, RevisionKind.UPDATE, allow_conflicts=allow_conflicts
            )

    async def prepare_revert(
        self,
        revision: str,
        target_dir: str,
        repositories: Optional[List[Repository]] = None,
        allow_conflicts: Optional[bool] = None
    ) -> Optional[str]:
        """
        Stage the artifact set of a previous revision into target_dir.

        Returns:
            Id of the new revision, or None when the revision matches the current set

        Raises:
            NotFoundError: If the revision is unknown
        """
        self.committer.validate_target(Path(target_dir))
        if allow_conflicts is None:
            allow_conflicts = self.config.allow_conflicts

        with self.installation_lock:
            resolution = await self.resolver.plan(Direction.REVERT, repositories, revision=revision)
            if resolution.is_empty:
                logger.info(f"Revision {revision} matches the current artifact set, nothing to revert")
                return None
            return await self.committer.stage(
                Path(target_dir), resolution, RevisionKind.REVERT, allow_conflicts=allow_conflicts
            )

    # =========================================================================
    # Channels
    # =========================================================================

    def list_channels(self) -> List[Channel]:
        self.channel_registry.reload()
        return self.channel_registry.list()

    def add_channel(self, channel: Channel):
        self.channel_registry.add(channel)

    def remove_channel(self, name: str):
        self.channel_registry.remove(name)

    def change_channel(self, name: str, new_channel: Channel):
        self.channel_registry.replace(name, new_channel)

    # =========================================================================
    # Snapshots and health
    # =========================================================================

    def create_snapshot(self, target_path: str) -> Path:
        """
        Archive the revision log, channel file and manifest.

        Args:
            target_path: Archive path, or a directory to place a timestamped archive in

        Returns:
            Path of the written archive
        """
        destination = snapshot_path(
            Path(target_path), self.config.snapshot_prefix, self.archiver.extension, datetime.now()
        )
        files = {
            REVISIONS_FILE: self.revision_store.read_raw(),
            CHANNELS_FILE: self.channel_registry.read_raw(),
        }
        if self.manifest_file.exists():
            files[MANIFEST_FILE] = self.manifest_file.read_bytes()
        return self.archiver.archive(files, destination)

    def repository_health(self) -> Dict[str, Dict[str, Any]]:
        """Health of every repository queried so far"""
        return self.failover.get_health_summary()
