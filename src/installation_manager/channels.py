# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Channel Registry

Single responsibility: Load, persist and mutate channel subscriptions
from channels.yaml

Registration order is preserved on disk because it decides resolution
precedence.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from .exceptions import DuplicateChannelError, NotFoundError, StoreCorruptedError
from .locking import InstallationLock
from .models import Channel, Repository

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Ordered, single-writer collection of channel subscriptions"""

    def __init__(self, channels_file: Path, lock: InstallationLock):
        """
        Initialize channel registry.

        Args:
            channels_file: Path to channels.yaml
            lock: Single-writer lock for registry mutations
        """
        self.channels_file = Path(channels_file)
        self.lock = lock
        self._channels: List[Channel] = self._load()

    def _load(self) -> List[Channel]:
        """
        Load channels from disk.

        Raises:
            StoreCorruptedError: If the file is not a valid channel list
        """
        if not self.channels_file.exists():
            return []

        path = str(self.channels_file)
        try:
            data = yaml.safe_load(self.channels_file.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise StoreCorruptedError(path, f"invalid YAML: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("channels", []), list):
            raise StoreCorruptedError(path, "expected a 'channels' list")

        channels = []
        for index, entry in enumerate(data.get("channels", [])):
            try:
                channels.append(Channel(**entry))
            except (TypeError, ValidationError) as e:
                raise StoreCorruptedError(path, f"invalid channel #{index}: {e}") from e

        names = [c.name for c in channels]
        if len(names) != len(set(names)):
            raise StoreCorruptedError(path, "duplicate channel names")

        logger.debug(f"Loaded {len(channels)} channels from {path}")
        return channels

    def _save(self, channels: List[Channel]):
        """Write channels to disk atomically, then publish them in memory"""
        self.channels_file.parent.mkdir(parents=True, exist_ok=True)
        data = {"channels": [c.model_dump(mode="json") for c in channels]}
        temp_file = self.channels_file.parent / f".{self.channels_file.name}.tmp"

        with open(temp_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
            f.flush()
            os.fsync(f.fileno())

        temp_file.rename(self.channels_file)
        self._channels = channels

        logger.info(f"Saved {len(channels)} channels to {self.channels_file}")

    def reload(self):
        """Re-read the channel file (picks up changes by other processes)"""
        self._channels = self._load()

    def list(self) -> List[Channel]:
        """Channels in registration order"""
        return [c.model_copy(deep=True) for c in self._channels]

    def _index(self, name: str) -> Optional[int]:
        for i, channel in enumerate(self._channels):
            if channel.name == name:
                return i
        return None

    def get(self, name: str) -> Channel:
        """
        Raises:
            NotFoundError: If no channel has this name
        """
        index = self._index(name)
        if index is None:
            raise NotFoundError("Channel", name)
        return self._channels[index].model_copy(deep=True)

    def add(self, channel: Channel):
        """
        Subscribe to a new channel.

        Raises:
            DuplicateChannelError: If the name is already present
            ConcurrentWriteError: If another mutation is in progress
        """
        with self.lock:
            self.reload()
            if self._index(channel.name) is not None:
                raise DuplicateChannelError(channel.name)
            self._save(self._channels + [channel.model_copy(deep=True)])
        logger.info(f"Added channel: {channel.name} ({len(channel.repositories)} repositories)")

    def remove(self, name: str):
        """
        Unsubscribe from a channel.

        Raises:
            NotFoundError: If no channel has this name
            ConcurrentWriteError: If another mutation is in progress
        """
        with self.lock:
            self.reload()
            index = self._index(name)
            if index is None:
                raise NotFoundError("Channel", name)
            self._save(self._channels[:index] + self._channels[index + 1:])
        logger.info(f"Removed channel: {name}")

    def replace(self, name: str, new_channel: Channel):
        """
        Replace a channel in place (rename and update at once).

        Raises:
            NotFoundError: If no channel has this name
            DuplicateChannelError: If new_channel.name collides with a different channel
            ConcurrentWriteError: If another mutation is in progress
        """
        with self.lock:
            self.reload()
            index = self._index(name)
            if index is None:
                raise NotFoundError("Channel", name)
            collision = self._index(new_channel.name)
            if collision is not None and collision != index:
                raise DuplicateChannelError(new_channel.name)

            channels = list(self._channels)
            channels[index] = new_channel.model_copy(deep=True)
            self._save(channels)

        if name != new_channel.name:
            logger.info(f"Renamed channel: {name} -> {new_channel.name}")
        else:
            logger.info(f"Updated channel: {name}")

    def repositories(self) -> List[Repository]:
        """Repositories of all channels in registry order, de-duplicated by id"""
        seen = set()
        repositories = []
        for channel in self._channels:
            for repository in channel.repositories:
                if repository.id not in seen:
                    seen.add(repository.id)
                    repositories.append(repository)
        return repositories

    def read_raw(self) -> bytes:
        """Channel file content, for snapshots and staged copies"""
        return self.channels_file.read_bytes() if self.channels_file.exists() else b""

    def __len__(self) -> int:
        return len(self._channels)
