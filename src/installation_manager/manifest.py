# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Installation manifest (manifest.yaml) load/save."""

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from .exceptions import StoreCorruptedError
from .models import InstallationManifest

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.yaml"
ARTIFACTS_DIR = "artifacts"


def load_manifest(path: Path) -> InstallationManifest:
    """
    Read a manifest. A missing file is an empty manifest.

    Raises:
        StoreCorruptedError: If the file exists but cannot be parsed
    """
    if not path.exists():
        return InstallationManifest()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return InstallationManifest(**data)
    except (yaml.YAMLError, TypeError, ValidationError) as e:
        raise StoreCorruptedError(str(path), f"invalid manifest: {e}") from e


def save_manifest(path: Path, manifest: InstallationManifest):
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.parent / f".{path.name}.tmp"
    with open(temp_file, "w", encoding="utf-8") as f:
        yaml.safe_dump(manifest.model_dump(mode="json"), f, sort_keys=True)
        f.flush()
        os.fsync(f.fileno())
    temp_file.rename(path)
    logger.debug(f"Wrote manifest with {len(manifest.artifacts)} artifacts to {path}")
