# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Installation Lock

Single responsibility: Single-writer exclusivity for one installation.

Acquisition never waits. A second writer gets ConcurrentWriteError right
away instead of queuing behind the first one. The lock is re-entrant for
its current owner (same thread and asyncio task) and exclusive across
processes through fcntl.flock on a lock file.
"""

import asyncio
import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Tuple

from .exceptions import ConcurrentWriteError

logger = logging.getLogger(__name__)


def _owner_token() -> Tuple[int, Optional[int]]:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    return (threading.get_ident(), id(task) if task is not None else None)


class InstallationLock:
    """Non-blocking, owner re-entrant file lock"""

    def __init__(self, lock_file: Path, resource: str = "installation"):
        """
        Initialize lock.

        Args:
            lock_file: Path of the lock file (created on first acquire)
            resource: Name used in error messages
        """
        self.lock_file = Path(lock_file)
        self.resource = resource
        self._guard = threading.Lock()
        self._owner: Optional[Tuple[int, Optional[int]]] = None
        self._depth = 0
        self._fd: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._depth > 0

    def owned(self) -> bool:
        """Whether the caller currently holds this lock"""
        return self._depth > 0 and self._owner == _owner_token()

    def acquire(self):
        """
        Acquire the lock or fail immediately.

        Raises:
            ConcurrentWriteError: If another owner holds the lock
        """
        token = _owner_token()
        with self._guard:
            if self._depth > 0:
                if self._owner == token:
                    self._depth += 1
                    return
                raise ConcurrentWriteError(self.resource, details={"lock_file": str(self.lock_file)})

            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_file, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                logger.warning(f"Lock busy (held by another process): {self.lock_file}")
                raise ConcurrentWriteError(self.resource, details={"lock_file": str(self.lock_file)})

            self._fd = fd
            self._owner = token
            self._depth = 1
            logger.debug(f"Acquired lock: {self.lock_file}")

    def release(self):
        with self._guard:
            if self._depth == 0:
                raise RuntimeError(f"Lock not held: {self.lock_file}")
            self._depth -= 1
            if self._depth > 0:
                return

            fd, self._fd = self._fd, None
            self._owner = None
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
            logger.debug(f"Released lock: {self.lock_file}")

    def __enter__(self) -> "InstallationLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> bool:
        self.release()
        return False
