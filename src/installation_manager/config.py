# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Installation Manager Configuration - Single source of truth.
YAML is king. Env vars ONLY for secrets.

- ALL configuration in plain text (YAML)
- NO hidden state - everything inspectable via `cat`, `grep`
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import ConfigurationError
from .models import ResolutionStrategy


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable installation manager configuration.
    All values from YAML. No hidden state.
    """

    # -- Installation --
    metadata_dir: str = ".installation"

    # -- Resolution --
    default_strategy: str = ResolutionStrategy.LATEST.value
    max_parallel_queries: int = 4
    allow_conflicts: bool = False

    # -- Repositories --
    timeout: float = 30.0
    max_retries: int = 2
    retry_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_retry_delay: float = 30.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_time: int = 300
    gpg_keyring: Optional[str] = None

    # -- Snapshot --
    snapshot_prefix: str = "im-snapshot"

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None

    def metadata_path(self, installation_root: Path) -> Path:
        """Metadata directory of an installation"""
        return Path(installation_root) / self.metadata_dir


# =============================================================================
# SECRETS - The ONLY thing from environment variables
# =============================================================================

def get_repository_token() -> Optional[str]:
    """Repository credentials cannot be in version control."""
    return os.getenv("INSTALLATION_MANAGER_REPOSITORY_TOKEN")


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if no path is given or the file doesn't exist.

    Raises:
        ConfigurationError: If the file is not valid YAML or holds invalid values
    """
    if path is None or not Path(path).exists():
        return Config()

    try:
        with open(path) as f:
            y = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config: {e}", config_file=str(path)) from e

    if not isinstance(y, dict):
        raise ConfigurationError("Config root must be a mapping", config_file=str(path))

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default: Any = None) -> Any:
        for k in keys:
            if not isinstance(d, dict) or k not in d:
                return default
            d = d[k]
        return d

    defaults = Config()
    try:
        config = Config(
            # Installation
            metadata_dir=get(y, "installation", "metadata_dir", default=defaults.metadata_dir),

            # Resolution
            default_strategy=get(y, "resolution", "default_strategy", default=defaults.default_strategy),
            max_parallel_queries=int(get(y, "resolution", "max_parallel_queries",
                                         default=defaults.max_parallel_queries)),
            allow_conflicts=bool(get(y, "resolution", "allow_conflicts", default=defaults.allow_conflicts)),

            # Repositories
            timeout=float(get(y, "repositories", "timeout", default=defaults.timeout)),
            max_retries=int(get(y, "repositories", "max_retries", default=defaults.max_retries)),
            retry_delay=float(get(y, "repositories", "retry_delay", default=defaults.retry_delay)),
            backoff_multiplier=float(get(y, "repositories", "backoff_multiplier",
                                         default=defaults.backoff_multiplier)),
            max_retry_delay=float(get(y, "repositories", "max_retry_delay", default=defaults.max_retry_delay)),
            circuit_breaker_threshold=int(get(y, "repositories", "circuit_breaker_threshold",
                                              default=defaults.circuit_breaker_threshold)),
            circuit_breaker_reset_time=int(get(y, "repositories", "circuit_breaker_reset_time",
                                               default=defaults.circuit_breaker_reset_time)),
            gpg_keyring=get(y, "repositories", "gpg_keyring", default=defaults.gpg_keyring),

            # Snapshot
            snapshot_prefix=get(y, "snapshot", "prefix", default=defaults.snapshot_prefix),

            # Logging
            log_level=str(get(y, "logging", "level", default=defaults.log_level)).upper(),
            log_format=get(y, "logging", "format", default=defaults.log_format),
            log_file=get(y, "logging", "file", default=defaults.log_file),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}", config_file=str(path)) from e

    _validate(config, str(path))
    return config


def _validate(config: Config, path: str):
    from .strategies import available_strategies

    if config.default_strategy not in available_strategies():
        raise ConfigurationError(
            f"Unknown default_strategy '{config.default_strategy}'. "
            f"Available: {available_strategies()}",
            config_file=path
        )
    if config.max_parallel_queries < 1:
        raise ConfigurationError("max_parallel_queries must be at least 1", config_file=path)
    if config.max_retries < 0:
        raise ConfigurationError("max_retries cannot be negative", config_file=path)
    if config.log_format not in ("json", "text"):
        raise ConfigurationError(f"log_format must be 'json' or 'text', got '{config.log_format}'",
                                 config_file=path)
