# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Snapshot Export

Packs the installation metadata (revision log, channel file, manifest)
into a single archive an operator can keep or ship elsewhere.
"""

import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)


class SnapshotArchiver:
    """Base class for snapshot archive formats"""

    extension = ""

    def archive(self, files: Dict[str, bytes], destination: Path) -> Path:
        """
        Write the given files into an archive.

        Args:
            files: Archive member name -> content
            destination: Archive file path

        Returns:
            Path of the written archive
        """
        raise NotImplementedError


class ZipSnapshotArchiver(SnapshotArchiver):
    """Deflate-compressed zip archive"""

    extension = ".zip"

    def archive(self, files: Dict[str, bytes], destination: Path) -> Path:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_file = destination.parent / f".{destination.name}.tmp"

        try:
            with zipfile.ZipFile(temp_file, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for name in sorted(files):
                    zf.writestr(name, files[name])
            temp_file.rename(destination)
        finally:
            temp_file.unlink(missing_ok=True)

        logger.info(f"Wrote snapshot {destination} ({len(files)} files)")
        return destination


def snapshot_path(target: Path, prefix: str, extension: str, now: datetime) -> Path:
    """Directory targets get a timestamped archive name inside them"""
    target = Path(target)
    if target.is_dir():
        return target / f"{prefix}-{now.strftime('%Y%m%d-%H%M%S')}{extension}"
    return target
