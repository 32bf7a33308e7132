# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Resolution Engine

Single responsibility: Compute the ordered artifact change set between the
current revision and an update or revert target.

The engine keeps no state between calls. Each result depends only on the
current revision, the channel set, the repositories and the direction.
Repository indexes are fetched concurrently but merged in precedence order,
so the outcome does not depend on which query finishes first.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .channels import ChannelRegistry
from .exceptions import RepositoryUnavailableError
from .failover import CircuitOpenError, RepositoryFailoverManager, REPOSITORY_ERRORS
from .models import (
    ArtifactChange,
    ArtifactDescriptor,
    ChangeStatus,
    Direction,
    Repository,
    Revision,
)
from .repositories import IndexCache, RepositoryClient, RepositoryIndex
from .revisions import RevisionStore
from .strategies import compare_versions, get_strategy, is_compatible, is_valid_version, parse_version

logger = logging.getLogger(__name__)

EXPLICIT_SOURCE = "repositories"


class IndexState:
    LIVE = "live"
    CACHED = "cached"
    UNAVAILABLE = "unavailable"


@dataclass
class SourceLevel:
    """One precedence level: a channel, or the explicit repository list"""
    repositories: List[Repository]
    strategy: str
    channel: Optional[str] = None

    @property
    def label(self) -> str:
        return self.channel or EXPLICIT_SOURCE


@dataclass
class IndexResult:
    repository: Repository
    state: str
    index: Optional[RepositoryIndex] = None
    error: Optional[str] = None


@dataclass
class DownloadCandidate:
    repository: Repository
    descriptor: ArtifactDescriptor


@dataclass
class Resolution:
    """Change set plus everything staging needs to materialize it"""
    direction: Direction
    base: Revision
    target: Dict[str, str]
    changes: List[ArtifactChange]
    candidates: Dict[str, List[DownloadCandidate]] = field(default_factory=dict)
    revision: Optional[str] = None

    @property
    def conflicts(self) -> List[ArtifactChange]:
        return [c for c in self.changes if c.is_conflict]

    @property
    def is_empty(self) -> bool:
        return not self.changes


def _change_status(current: str, target: str) -> Optional[ChangeStatus]:
    result = compare_versions(target, current)
    if result > 0:
        return ChangeStatus.UPDATED
    if result < 0:
        return ChangeStatus.DOWNGRADED
    return None


def classify(current: Dict[str, str], target: Dict[str, str]) -> List[ArtifactChange]:
    """
    Classify the differences between two artifact sets, ordered by artifact name.

    Returns:
        Empty list when both sets are identical
    """
    changes = []
    for name in sorted(set(current) | set(target)):
        cur = current.get(name)
        tgt = target.get(name)
        if cur is None:
            changes.append(ArtifactChange(name=name, to_version=tgt, status=ChangeStatus.ADDED))
        elif tgt is None:
            changes.append(ArtifactChange(name=name, from_version=cur, status=ChangeStatus.REMOVED))
        else:
            status = _change_status(cur, tgt)
            if status is not None:
                changes.append(ArtifactChange(name=name, from_version=cur, to_version=tgt, status=status))
    return changes


def find_descriptor(index: RepositoryIndex, name: str, version: str) -> Optional[ArtifactDescriptor]:
    """Exact version match first, then an equal version spelled differently"""
    versions = index.get(name, {})
    if version in versions:
        return versions[version]
    wanted = parse_version(version)
    for raw, descriptor in versions.items():
        if is_valid_version(raw) and parse_version(raw) == wanted:
            return descriptor
    return None


class ResolutionEngine:
    """Resolves update and revert change sets"""

    def __init__(
        self,
        revision_store: RevisionStore,
        channel_registry: ChannelRegistry,
        client: RepositoryClient,
        failover: RepositoryFailoverManager,
        cache: Optional[IndexCache] = None,
        default_strategy: str = "latest",
        max_parallel_queries: int = 4
    ):
        """
        Initialize resolution engine.

        Args:
            revision_store: Source of the current and historical revisions (read-only)
            channel_registry: Source of channel subscriptions (read-only)
            client: Repository client used for index queries
            failover: Retry and circuit breaker manager
            cache: Optional index cache used when a repository is unreachable
            default_strategy: Strategy applied to explicit repository lists
            max_parallel_queries: Upper bound on concurrent repository queries
        """
        self.revision_store = revision_store
        self.channel_registry = channel_registry
        self.client = client
        self.failover = failover
        self.cache = cache
        self.default_strategy = default_strategy
        self.max_parallel_queries = max_parallel_queries

    def source_levels(self, repositories: Optional[List[Repository]] = None) -> List[SourceLevel]:
        """Precedence levels: the explicit list if non-empty, else channels in registry order"""
        if repositories:
            return [SourceLevel(repositories=list(repositories), strategy=self.default_strategy)]
        return [
            SourceLevel(repositories=channel.repositories, strategy=channel.resolution_strategy,
                        channel=channel.name)
            for channel in self.channel_registry.list()
        ]

    async def _query_repository(self, repository: Repository, semaphore: asyncio.Semaphore) -> IndexResult:
        async with semaphore:
            try:
                index = await self.failover.execute_with_retry(
                    self.client.fetch_index, repository, "fetch_index"
                )
            except (CircuitOpenError, asyncio.TimeoutError, *REPOSITORY_ERRORS) as e:
                cached = self.cache.load(repository) if self.cache else None
                if cached is not None:
                    logger.warning(f"Repository {repository.id} unreachable, using cached index: {e}")
                    return IndexResult(repository, IndexState.CACHED, cached, str(e))
                logger.warning(f"Repository {repository.id} unreachable and no cached index: {e}")
                return IndexResult(repository, IndexState.UNAVAILABLE, None, str(e))

        if self.cache:
            try:
                self.cache.store(repository, index)
            except OSError as e:
                logger.warning(f"Failed to cache index of {repository.id}: {e}")
        return IndexResult(repository, IndexState.LIVE, index)

    async def query_indexes(self, levels: List[SourceLevel]) -> Dict[str, IndexResult]:
        """
        Fetch the index of every distinct repository, one task per repository.

        Returns:
            Results keyed by repository id (never raises for unreachable repositories)
        """
        repositories: Dict[str, Repository] = {}
        for level in levels:
            for repository in level.repositories:
                repositories.setdefault(repository.id, repository)

        if not repositories:
            return {}

        semaphore = asyncio.Semaphore(self.max_parallel_queries)
        results = await asyncio.gather(
            *(self._query_repository(r, semaphore) for r in repositories.values())
        )
        return {result.repository.id: result for result in results}

    def _offered_versions(self, level: SourceLevel, name: str, indexes: Dict[str, IndexResult]) -> List[str]:
        offered: List[str] = []
        for repository in level.repositories:
            result = indexes.get(repository.id)
            if result is None or result.index is None:
                continue
            for version in result.index.get(name, {}):
                if version in offered:
                    continue
                if not is_valid_version(version):
                    logger.warning(f"Ignoring unparsable version {name}@{version} offered by {repository.id}")
                    continue
                offered.append(version)
        return offered

    def _resolve_update(
        self,
        current: Dict[str, str],
        levels: List[SourceLevel],
        indexes: Dict[str, IndexResult]
    ):
        target: Dict[str, str] = {}
        changes: List[ArtifactChange] = []

        unavailable = []
        for level in levels:
            for repository in level.repositories:
                result = indexes.get(repository.id)
                if result and result.state == IndexState.UNAVAILABLE and repository.id not in unavailable:
                    unavailable.append(repository.id)

        for name in sorted(current):
            cur = current[name]
            resolved = []
            for level in levels:
                offered = self._offered_versions(level, name, indexes)
                if not offered:
                    continue
                chosen = get_strategy(level.strategy)(cur, offered)
                if chosen is not None:
                    resolved.append((level, chosen))

            if not resolved:
                if unavailable:
                    reasons = [indexes[r].error for r in unavailable if indexes[r].error]
                    raise RepositoryUnavailableError(name, unavailable, reasons[-1] if reasons else "")
                changes.append(ArtifactChange(name=name, from_version=cur, status=ChangeStatus.REMOVED))
                continue

            winner, version = resolved[0]
            if compare_versions(version, cur) == 0:
                # Already on the winning version
                target[name] = cur
                continue
            target[name] = version

            incompatible = {
                level.label: v for level, v in resolved[1:]
                if not is_compatible(v, version)
            }
            if incompatible:
                logger.warning(
                    f"Channel conflict for {name}: {winner.label} offers {version}, "
                    f"incompatible offers {incompatible}"
                )
                changes.append(ArtifactChange(
                    name=name,
                    from_version=cur,
                    to_version=version,
                    status=ChangeStatus.CONFLICT,
                    channel=winner.channel,
                    candidates={winner.label: version, **incompatible}
                ))
                continue

            status = _change_status(cur, version)
            if status is not None:
                changes.append(ArtifactChange(
                    name=name, from_version=cur, to_version=version, status=status, channel=winner.channel
                ))

        return target, changes

    def _download_candidates(
        self,
        target: Dict[str, str],
        levels: List[SourceLevel],
        indexes: Dict[str, IndexResult]
    ) -> Dict[str, List[DownloadCandidate]]:
        candidates: Dict[str, List[DownloadCandidate]] = {}
        for name, version in target.items():
            seen = set()
            ordered = []
            for level in levels:
                for repository in level.repositories:
                    result = indexes.get(repository.id)
                    if repository.id in seen or result is None or result.index is None:
                        continue
                    descriptor = find_descriptor(result.index, name, version)
                    if descriptor is not None:
                        seen.add(repository.id)
                        ordered.append(DownloadCandidate(repository, descriptor))
            candidates[name] = ordered
        return candidates

    async def plan(
        self,
        direction: Direction,
        repositories: Optional[List[Repository]] = None,
        revision: Optional[str] = None,
        fetch_candidates: bool = True
    ) -> Resolution:
        """
        Compute a resolution.

        Args:
            direction: UPDATE or REVERT
            repositories: Explicit repositories; None or empty means all subscribed channels
            revision: Target revision id (REVERT only)
            fetch_candidates: Also collect download candidates for staging

        Raises:
            EmptyHistoryError: If there is no current revision
            NotFoundError: If the revert target is unknown
            RepositoryUnavailableError: If an update cannot reach any viable source
            InvalidVersionError: If a current artifact version cannot be ordered
            StoreCorruptedError: If the channel file is unreadable
        """
        base = self.revision_store.current()
        if not repositories:
            self.channel_registry.reload()
        levels = self.source_levels(repositories)

        if direction == Direction.UPDATE:
            if not levels and base.artifacts:
                raise RepositoryUnavailableError(None, [], "no channels subscribed and no repositories given")
            indexes = await self.query_indexes(levels)
            target, changes = self._resolve_update(base.artifacts, levels, indexes)
        elif direction == Direction.REVERT:
            if revision is None:
                raise ValueError("REVERT requires a target revision")
            target = dict(self.revision_store.get(revision).artifacts)
            changes = classify(base.artifacts, target)
            indexes = await self.query_indexes(levels) if fetch_candidates and target else {}
        else:
            raise ValueError(f"Unknown direction: {direction}")

        candidates = self._download_candidates(target, levels, indexes) if fetch_candidates else {}

        logger.info(
            f"Resolved {direction.value} from {base.id}: {len(changes)} changes"
            + (f" ({len([c for c in changes if c.is_conflict])} conflicts)" if changes else "")
        )
        return Resolution(
            direction=direction,
            base=base,
            target=target,
            changes=changes,
            candidates=candidates,
            revision=revision
        )

    async def resolve(
        self,
        direction: Direction,
        repositories: Optional[List[Repository]] = None,
        revision: Optional[str] = None
    ) -> List[ArtifactChange]:
        """Ordered change list for an update or a revert"""
        resolution = await self.plan(direction, repositories, revision, fetch_candidates=False)
        return resolution.changes
