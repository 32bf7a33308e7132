# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Installation Manager Exceptions

All exceptions inherit from InstallationManagerError so callers can handle
every failure kind of a boundary operation with a single except clause.
"""

from typing import Any, Dict, List, Optional


class InstallationManagerError(Exception):
    """Base exception for all installation manager errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize installation manager error.

        Args:
            message: Human-readable error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for machine-readable reporting."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class NotFoundError(InstallationManagerError):
    """Revision, channel or strategy not found."""

    def __init__(self, resource: str, identifier: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Revision", "Channel")
            identifier: Resource identifier
            details: Additional error details
        """
        super().__init__(f"{resource} not found: {identifier}", details=details)
        self.resource = resource
        self.identifier = identifier


class EmptyHistoryError(NotFoundError):
    """No install record has been written yet."""

    def __init__(self, log_file: str):
        super().__init__("Revision", "current (history is empty)", details={"log_file": log_file})


class HistoryExistsError(InstallationManagerError):
    """The first install record was already written."""

    def __init__(self, head: str):
        super().__init__(
            f"Installation history already exists (head: {head})",
            details={"head": head}
        )
        self.head = head


class DuplicateChannelError(InstallationManagerError):
    """A channel with the same name is already subscribed."""

    def __init__(self, name: str):
        super().__init__(f"Channel already exists: {name}", details={"channel": name})
        self.name = name


class InvalidTargetError(InstallationManagerError):
    """Target directory is unwritable or unsafe to stage into."""

    def __init__(self, target: str, reason: str):
        super().__init__(
            f"Invalid target directory {target}: {reason}",
            details={"target": target, "reason": reason}
        )
        self.target = target
        self.reason = reason


class ConcurrentWriteError(InstallationManagerError):
    """Another mutation of the same installation is in progress."""

    def __init__(self, resource: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Another operation is already modifying {resource}", details=details)
        self.resource = resource


class RepositoryUnavailableError(InstallationManagerError):
    """No viable repository for a required artifact."""

    def __init__(self, artifact: Optional[str], repositories: List[str], reason: str = ""):
        """
        Initialize repository unavailable error.

        Args:
            artifact: Artifact that could not be resolved or fetched (None if all failed)
            repositories: Repository ids that were attempted
            reason: Last underlying failure
        """
        subject = f"artifact {artifact}" if artifact else "resolution"
        message = f"No repository available for {subject}. Attempted: {repositories}"
        if reason:
            message = f"{message}. Last error: {reason}"
        super().__init__(
            message,
            details={"artifact": artifact, "repositories": repositories, "reason": reason}
        )
        self.artifact = artifact
        self.repositories = repositories


class StoreCorruptedError(InstallationManagerError):
    """Installation metadata is unreadable or inconsistent."""

    def __init__(self, path: str, reason: str, line: Optional[int] = None):
        location = f"{path}:{line}" if line is not None else path
        super().__init__(
            f"Installation metadata corrupted at {location}: {reason}",
            details={"path": path, "line": line, "reason": reason}
        )
        self.path = path
        self.line = line


class ConflictError(InstallationManagerError):
    """Unresolved cross-channel version conflicts block a commit."""

    def __init__(self, conflicts: List[Any]):
        names = [c.name for c in conflicts]
        super().__init__(
            f"Unresolved channel conflicts for: {', '.join(names)}",
            details={"conflicts": [c.model_dump(mode="json") for c in conflicts]}
        )
        self.conflicts = conflicts


class ConfigurationError(InstallationManagerError):
    """Configuration error."""

    def __init__(self, message: str, config_file: Optional[str] = None):
        super().__init__(message, details={"config_file": config_file})
        self.config_file = config_file


class VerificationError(InstallationManagerError):
    """A fetched artifact failed checksum or signature verification."""

    def __init__(self, artifact: str, reason: str):
        super().__init__(f"Verification failed for {artifact}: {reason}", details={"artifact": artifact})
        self.artifact = artifact
        self.reason = reason


class InvalidVersionError(InstallationManagerError, ValueError):
    """An artifact version cannot be parsed or ordered."""

    def __init__(self, version: str):
        super().__init__(f"Invalid version format: '{version}'", details={"version": version})
        self.version = version
