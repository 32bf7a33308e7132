# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Repository Client

Single responsibility: Read repository indexes and download artifact files.

Supports both HTTP and local file:// repositories (YUM-style).

Repository layout:
    <url>/index.json                      optional explicit index
    <url>/<name>/<version>/<file>         artifact files (scanned when no index)
    <url>/<location>.asc                  optional detached GPG signature

index.json format:
    {"artifacts": {"<name>": {"<version>": {"location": "...", "sha256": "..."}}}}
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import unquote, urlparse

import httpx

from .config import get_repository_token
from .models import ArtifactDescriptor, Repository

logger = logging.getLogger(__name__)

# name -> version -> descriptor
RepositoryIndex = Dict[str, Dict[str, ArtifactDescriptor]]

INDEX_FILE = "index.json"
SIGNATURE_SUFFIX = ".asc"


def parse_index(data: dict) -> RepositoryIndex:
    """
    Build a repository index from its JSON form.

    Raises:
        ValueError: If the document is not a valid index
    """
    if not isinstance(data, dict) or not isinstance(data.get("artifacts"), dict):
        raise ValueError("Repository index must contain an 'artifacts' mapping")

    index: RepositoryIndex = {}
    for name, versions in data["artifacts"].items():
        if not isinstance(versions, dict):
            raise ValueError(f"Invalid versions for artifact {name}")
        index[name] = {}
        for version, entry in versions.items():
            entry = entry or {}
            if not isinstance(entry, dict):
                raise ValueError(f"Invalid entry for {name} {version}")
            index[name][version] = ArtifactDescriptor(
                name=name,
                version=version,
                location=entry.get("location", f"{name}/{version}/{name}-{version}.jar"),
                sha256=entry.get("sha256")
            )
    return index


def dump_index(index: RepositoryIndex) -> dict:
    return {
        "artifacts": {
            name: {
                version: {"location": d.location, "sha256": d.sha256}
                for version, d in versions.items()
            }
            for name, versions in index.items()
        }
    }


def local_path(url: str, base_dir: Optional[Path] = None) -> Path:
    """
    Filesystem path of a file:// repository.

    Supports both absolute paths (file:///absolute/path) and
    relative paths (file://./relative/path) resolved from base_dir.
    """
    raw = url[len("file://"):] if url.startswith("file://") else url
    if raw.startswith("./") or raw.startswith("../"):
        return ((base_dir or Path.cwd()) / raw).resolve()
    return Path(unquote(urlparse(url).path) if url.startswith("file://") else raw)


class RepositoryClient:
    """Reads indexes and downloads artifacts from file:// and http(s):// repositories"""

    def __init__(
        self,
        timeout: float = 30.0,
        base_dir: Optional[Path] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize repository client.

        Args:
            timeout: HTTP timeout in seconds
            base_dir: Base directory for relative file:// URLs
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self.base_dir = base_dir
        self.transport = transport

    def _http_client(self) -> httpx.AsyncClient:
        headers = {}
        token = get_repository_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
            follow_redirects=True
        )

    async def fetch_index(self, repository: Repository) -> RepositoryIndex:
        """
        Fetch the artifact index of a repository.

        Raises:
            OSError: If a local repository is not accessible
            httpx.HTTPError: If a remote repository request fails
            ValueError: If the index is malformed
        """
        if repository.url.startswith("file://"):
            return self._scan_local_directory(repository)

        async with self._http_client() as client:
            response = await client.get(f"{repository.url.rstrip('/')}/{INDEX_FILE}")
            response.raise_for_status()
            return parse_index(response.json())

    def _scan_local_directory(self, repository: Repository) -> RepositoryIndex:
        """
        Index a local directory (like createrepo for YUM).

        Uses index.json when present, otherwise treats every file under
        <name>/<version>/ as that artifact version.
        """
        directory = local_path(repository.url, self.base_dir)
        if not directory.is_dir():
            raise FileNotFoundError(f"Local repository not accessible: {directory}")

        index_file = directory / INDEX_FILE
        if index_file.exists():
            return parse_index(json.loads(index_file.read_text(encoding="utf-8")))

        index: RepositoryIndex = {}
        for artifact_dir in sorted(p for p in directory.iterdir() if p.is_dir()):
            for version_dir in sorted(p for p in artifact_dir.iterdir() if p.is_dir()):
                files = sorted(
                    f for f in version_dir.iterdir()
                    if f.is_file() and not f.name.endswith(SIGNATURE_SUFFIX)
                )
                if not files:
                    continue
                if len(files) > 1:
                    logger.warning(f"Multiple files in {version_dir}, using {files[0].name}")
                index.setdefault(artifact_dir.name, {})[version_dir.name] = ArtifactDescriptor(
                    name=artifact_dir.name,
                    version=version_dir.name,
                    location=files[0].relative_to(directory).as_posix()
                )

        logger.debug(f"Scanned {len(index)} artifacts in {directory}")
        return index

    async def download(self, repository: Repository, location: str, dest: Path) -> Path:
        """
        Download a repository file to dest.

        Args:
            repository: Source repository
            location: File location relative to the repository URL
            dest: Destination file path

        Raises:
            OSError: If a local file is missing or unreadable
            httpx.HTTPError: If a remote download fails
        """
        dest.parent.mkdir(parents=True, exist_ok=True)

        if repository.url.startswith("file://"):
            source = local_path(repository.url, self.base_dir) / location
            with open(source, "rb") as src, open(dest, "wb") as out:
                while chunk := src.read(1024 * 1024):
                    out.write(chunk)
            return dest

        url = f"{repository.url.rstrip('/')}/{location}"
        async with self._http_client() as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(dest, "wb") as out:
                    async for chunk in response.aiter_bytes(chunk_size=65536):
                        out.write(chunk)
        return dest


class IndexCache:
    """
    Last successfully fetched index per repository.

    Used as the cached resolution when a repository is unreachable.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    def _file(self, repository: Repository) -> Path:
        safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in repository.id)
        return self.cache_dir / f"index-{safe_id}.json"

    def store(self, repository: Repository, index: RepositoryIndex):
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        cache_file = self._file(repository)
        temp_file = cache_file.parent / f".{cache_file.name}.tmp"
        data = {"url": repository.url, **dump_index(index)}
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        temp_file.rename(cache_file)

    def load(self, repository: Repository) -> Optional[RepositoryIndex]:
        """Cached index, or None when absent, stale (URL changed) or unreadable"""
        cache_file = self._file(repository)
        if not cache_file.exists():
            return None
        try:
            data = json.loads(cache_file.read_text(encoding="utf-8"))
            if data.get("url") != repository.url:
                return None
            return parse_index(data)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable index cache {cache_file}: {e}")
            return None
