# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Installation Data Models

Defines data structures for revisions, channels, repositories, artifact
changes and the installation manifest.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RevisionKind(str, Enum):
    """Operation that produced a revision"""
    INSTALL = "install"
    UPDATE = "update"
    REVERT = "revert"


class ChangeStatus(str, Enum):
    """Classification of a single artifact change"""
    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"
    DOWNGRADED = "downgraded"
    CONFLICT = "conflict"


class Direction(str, Enum):
    """Resolution direction"""
    UPDATE = "update"
    REVERT = "revert"


class ResolutionStrategy(str, Enum):
    """Built-in channel resolution strategies"""
    LATEST = "latest"
    MINOR = "minor"
    MICRO = "micro"
    PINNED = "pinned"


class Repository(BaseModel):
    """
    Addressable source of artifact versions.

    Supports local file:// directories and remote http(s):// repositories.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    url: str
    gpgcheck: bool = False
    gpgkey: Optional[str] = None

    @field_validator("id", "url")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Repository id and url cannot be empty")
        return v.strip()


class Channel(BaseModel):
    """Named subscription to repositories plus a resolution strategy"""
    name: str
    repositories: List[Repository] = Field(default_factory=list)
    resolution_strategy: str = ResolutionStrategy.LATEST.value

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Channel name cannot be empty")
        return v.strip()

    @field_validator("resolution_strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        from .strategies import available_strategies

        if v not in available_strategies():
            raise ValueError(
                f"Unknown resolution strategy '{v}'. Available: {available_strategies()}"
            )
        return v


class Revision(BaseModel):
    """Immutable snapshot of the installed artifact set"""
    model_config = ConfigDict(frozen=True)

    id: str
    sequence: int
    parent: Optional[str] = None
    timestamp: datetime
    kind: RevisionKind
    artifacts: Dict[str, str] = Field(default_factory=dict)
    summary: str = ""

    def to_history(self) -> "HistoryResult":
        """Lightweight projection used for listing"""
        return HistoryResult(
            id=self.id,
            timestamp=self.timestamp,
            kind=self.kind,
            summary=self.summary
        )


class HistoryResult(BaseModel):
    """History entry without the artifact set"""
    id: str
    timestamp: datetime
    kind: RevisionKind
    summary: str = ""


class ArtifactChange(BaseModel):
    """Difference for a single artifact between two artifact sets"""
    name: str
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    status: ChangeStatus
    channel: Optional[str] = None
    candidates: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_conflict(self) -> bool:
        return self.status == ChangeStatus.CONFLICT

    def __str__(self) -> str:
        return f"{self.name}: {self.from_version} -> {self.to_version} ({self.status.value})"


class InstallationChanges(BaseModel):
    """Delta between two revisions"""
    from_revision: str
    to_revision: str
    changes: List[ArtifactChange] = Field(default_factory=list)


class ArtifactDescriptor(BaseModel):
    """One downloadable artifact version advertised by a repository"""
    name: str
    version: str
    location: str  # Relative to the repository URL
    sha256: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.location.rsplit("/", 1)[-1]


class ManifestEntry(BaseModel):
    """Artifact file present in an installation directory"""
    version: str
    path: str  # Relative to the installation root
    sha256: Optional[str] = None


class InstallationManifest(BaseModel):
    """Artifact files of an installation directory"""
    artifacts: Dict[str, ManifestEntry] = Field(default_factory=dict)
    revision: Optional[str] = None

    def artifact_set(self) -> Dict[str, str]:
        return {name: entry.version for name, entry in self.artifacts.items()}
