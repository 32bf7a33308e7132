# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures and Utilities

Provides pytest fixtures for throwaway installations and local file://
repositories built on disk.
"""

import hashlib
import json
import os
import sys
from pathlib import Path
from typing import Dict, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from installation_manager.config import Config
from installation_manager.manifest import load_manifest, save_manifest
from installation_manager.models import InstallationManifest, ManifestEntry, Repository, Revision
from installation_manager.service import InstallationManager


# ============================================================================
# Helpers
# ============================================================================

def artifact_content(name: str, version: str, origin: str = "") -> bytes:
    """Deterministic file content for an artifact version"""
    return f"{name}:{version}{origin}".encode()


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def publish(repo_dir: Path, name: str, version: str, content: Optional[bytes] = None) -> Path:
    """Place an artifact file into a scanned file:// repository layout"""
    path = repo_dir / name / version / f"{name}-{version}.jar"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content if content is not None else artifact_content(name, version))
    return path


def write_index(repo_dir: Path, artifacts: Dict[str, Dict[str, dict]]):
    """Write an explicit index.json into a repository directory"""
    repo_dir.mkdir(parents=True, exist_ok=True)
    (repo_dir / "index.json").write_text(json.dumps({"artifacts": artifacts}))


def file_repo(repo_id: str, repo_dir: Path, **kwargs) -> Repository:
    return Repository(id=repo_id, url=repo_dir.as_uri(), **kwargs)


def seed_installation(manager: InstallationManager, artifacts: Dict[str, str]) -> Revision:
    """Write installed artifact files plus manifest, then record the first revision"""
    entries = {}
    for name, version in artifacts.items():
        relative = f"artifacts/{name}/{name}-{version}.jar"
        path = manager.installation_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        data = artifact_content(name, version)
        path.write_bytes(data)
        entries[name] = ManifestEntry(version=version, path=relative, sha256=sha256_of(data))

    save_manifest(manager.manifest_file, InstallationManifest(artifacts=entries))
    return manager.record_installation()


def staged_artifacts(target: Path, metadata_dir: str = ".installation") -> Dict[str, str]:
    """Artifact set recorded in a staged directory's manifest"""
    return load_manifest(target / metadata_dir / "manifest.yaml").artifact_set()


def leftovers(directory: Path):
    """Work or backup directories left behind by staging"""
    return [p.name for p in directory.iterdir() if ".staging-" in p.name or ".replaced-" in p.name]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def config():
    """Configuration without retry delays"""
    return Config(max_retries=0, retry_delay=0.0, timeout=5.0)


@pytest.fixture
def installation_root(tmp_path):
    root = tmp_path / "server"
    root.mkdir()
    return root


@pytest.fixture
def repo_dir(tmp_path):
    directory = tmp_path / "repo"
    directory.mkdir()
    return directory


@pytest.fixture
def manager(installation_root, config):
    return InstallationManager(str(installation_root), config=config)
