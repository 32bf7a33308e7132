# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Version Ordering and Resolution Strategies

Single responsibility: Order artifact versions and pick the version a
channel offers for an artifact.

A strategy is a plain function ``(current, available) -> version | None``.
Built-in strategies are registered at import time; additional strategies
can be added with register_strategy() and selected by name in channel
configuration.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from packaging import version

from .exceptions import InvalidVersionError, NotFoundError
from .models import ResolutionStrategy

logger = logging.getLogger(__name__)

StrategyFunc = Callable[[Optional[str], Iterable[str]], Optional[str]]

# (advertised spelling, parsed version)
Offered = Tuple[str, version.Version]

_STRATEGIES: Dict[str, StrategyFunc] = {}


def parse_version(value: str) -> version.Version:
    """
    Parse an artifact version.

    Raises:
        InvalidVersionError: If the version is not a valid release identifier
    """
    try:
        return version.parse(value)
    except version.InvalidVersion as e:
        raise InvalidVersionError(value) from e


def is_valid_version(value: str) -> bool:
    try:
        parse_version(value)
    except InvalidVersionError:
        return False
    return True


def compare_versions(version1: str, version2: str) -> int:
    """
    Compare two artifact versions

    Returns:
        -1 if version1 < version2
         0 if version1 == version2
         1 if version1 > version2
    """
    v1 = parse_version(version1)
    v2 = parse_version(version2)

    if v1 < v2:
        return -1
    elif v1 > v2:
        return 1
    return 0


def is_compatible(version1: str, version2: str) -> bool:
    """Whether two versions belong to the same major release stream"""
    return parse_version(version1).major == parse_version(version2).major


def _parse_offered(available: Iterable[str]) -> List[Offered]:
    offered = []
    for raw in available:
        try:
            offered.append((raw, parse_version(raw)))
        except InvalidVersionError:
            logger.warning(f"Ignoring offered version that cannot be ordered: '{raw}'")
    return offered


def _candidates(current: Optional[str], available: Iterable[str]) -> List[Offered]:
    allow_pre = current is not None and parse_version(current).is_prerelease
    return [o for o in _parse_offered(available) if allow_pre or not o[1].is_prerelease]


def _highest(candidates: List[Offered]) -> Optional[str]:
    if not candidates:
        return None
    # First advertised spelling of the highest version
    return max(candidates, key=lambda o: o[1])[0]


def latest(current: Optional[str], available: Iterable[str]) -> Optional[str]:
    """Highest offered version"""
    return _highest(_candidates(current, available))


def minor(current: Optional[str], available: Iterable[str]) -> Optional[str]:
    """Highest version within the current major release"""
    if current is None:
        return latest(current, available)
    major = parse_version(current).major
    return _highest([o for o in _candidates(current, available) if o[1].major == major])


def micro(current: Optional[str], available: Iterable[str]) -> Optional[str]:
    """Highest version within the current major.minor stream"""
    if current is None:
        return latest(current, available)
    cur = parse_version(current)
    return _highest([
        o for o in _candidates(current, available)
        if (o[1].major, o[1].minor) == (cur.major, cur.minor)
    ])


def pinned(current: Optional[str], available: Iterable[str]) -> Optional[str]:
    """Keep the current version while the channel still offers it"""
    if current is None:
        return latest(current, available)
    cur = parse_version(current)
    for raw, parsed in _parse_offered(available):
        if parsed == cur:
            return raw
    return None


def register_strategy(name: str, func: StrategyFunc):
    """
    Register a resolution strategy under a configuration name.

    Args:
        name: Name used in channel configuration
        func: Strategy function
    """
    if name in _STRATEGIES:
        logger.warning(f"Replacing resolution strategy: {name}")
    _STRATEGIES[name] = func


def get_strategy(name: str) -> StrategyFunc:
    """
    Look up a registered strategy.

    Raises:
        NotFoundError: If no strategy is registered under this name
    """
    try:
        return _STRATEGIES[name]
    except KeyError:
        raise NotFoundError("Resolution strategy", name)


def available_strategies() -> List[str]:
    return sorted(_STRATEGIES)


register_strategy(ResolutionStrategy.LATEST.value, latest)
register_strategy(ResolutionStrategy.MINOR.value, minor)
register_strategy(ResolutionStrategy.MICRO.value, micro)
register_strategy(ResolutionStrategy.PINNED.value, pinned)
