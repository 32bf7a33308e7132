# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Server Installation Manager

Revision-tracked update and revert of a server installation driven by
channel subscriptions.
"""

from .config import Config, load_config
from .exceptions import (
    ConcurrentWriteError,
    ConfigurationError,
    ConflictError,
    DuplicateChannelError,
    EmptyHistoryError,
    HistoryExistsError,
    InstallationManagerError,
    InvalidTargetError,
    InvalidVersionError,
    NotFoundError,
    RepositoryUnavailableError,
    StoreCorruptedError,
)
from .models import (
    ArtifactChange,
    ChangeStatus,
    Channel,
    Direction,
    HistoryResult,
    InstallationChanges,
    Repository,
    ResolutionStrategy,
    Revision,
    RevisionKind,
)
from .service import InstallationManager
from .strategies import register_strategy

__version__ = "1.0.0"

__all__ = [
    "InstallationManager",
    "Config",
    "load_config",
    "register_strategy",
    "ArtifactChange",
    "ChangeStatus",
    "Channel",
    "Direction",
    "HistoryResult",
    "InstallationChanges",
    "Repository",
    "ResolutionStrategy",
    "Revision",
    "RevisionKind",
    "InstallationManagerError",
    "NotFoundError",
    "EmptyHistoryError",
    "HistoryExistsError",
    "DuplicateChannelError",
    "InvalidTargetError",
    "InvalidVersionError",
    "ConcurrentWriteError",
    "RepositoryUnavailableError",
    "StoreCorruptedError",
    "ConflictError",
    "ConfigurationError",
]
