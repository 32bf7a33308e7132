# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Artifact Verification

Checks fetched artifacts against the checksum advertised by their
repository and, for repositories with gpgcheck enabled, against a
YUM-style detached GPG signature using python-gnupg.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional, Tuple

import gnupg

from .exceptions import VerificationError

logger = logging.getLogger(__name__)


class GPGNotFoundError(Exception):
    """Raised when GPG executable is not found on the system"""
    pass


def file_sha256(path: Path) -> str:
    """Hex SHA-256 of a file"""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(1024 * 1024):
            digest.update(chunk)
    return digest.hexdigest()


def _get_gpg_instance(keyring_dir: Optional[str] = None) -> gnupg.GPG:
    """
    Get GPG instance with optional custom keyring directory.

    Raises:
        GPGNotFoundError: If GPG executable is not found
    """
    try:
        if keyring_dir:
            Path(keyring_dir).mkdir(parents=True, exist_ok=True)
            return gnupg.GPG(gnupghome=keyring_dir)
        return gnupg.GPG()
    except (OSError, ValueError) as e:
        raise GPGNotFoundError(f"GPG is not available: {e}") from e


def verify_signature(
    filepath: Path,
    signature_path: Path,
    keyring_dir: Optional[str] = None
) -> Tuple[bool, str]:
    """
    Verifies a detached GPG signature against a file.

    Args:
        filepath: Path to the signed file
        signature_path: Path to the .asc signature file
        keyring_dir: Optional custom keyring directory

    Returns:
        (is_valid, error_message): error_message is empty string if valid.

    Raises:
        GPGNotFoundError: If GPG is not installed
        FileNotFoundError: If file or signature doesn't exist
    """
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")
    if not signature_path.exists():
        raise FileNotFoundError(f"Signature file not found: {signature_path}")

    gpg = _get_gpg_instance(keyring_dir)
    with open(signature_path, "rb") as sig_file:
        verified = gpg.verify_file(sig_file, str(filepath))

    if verified.valid:
        return (True, "")

    error_parts = []
    if verified.status == "signature bad":
        error_parts.append("Signature does not match file content")
    elif verified.status == "no public key":
        error_parts.append(f"Public key not found: {verified.key_id}")
    elif verified.status:
        error_parts.append(f"Verification failed: {verified.status}")

    return (False, ". ".join(error_parts) if error_parts else "Signature verification failed")


class ArtifactVerifier:
    """Verifies artifact files before they are placed into a staged installation"""

    def __init__(self, keyring_dir: Optional[str] = None):
        self.keyring_dir = keyring_dir

    def verify(
        self,
        artifact: str,
        path: Path,
        sha256: Optional[str] = None,
        signature_path: Optional[Path] = None
    ) -> str:
        """
        Verify a file.

        Args:
            artifact: Artifact label for messages (name@version)
            path: File to verify
            sha256: Expected checksum, when known
            signature_path: Detached signature to check, when required

        Returns:
            The file's SHA-256

        Raises:
            VerificationError: If the checksum or signature does not match
        """
        actual = file_sha256(path)
        if sha256 and actual != sha256.lower():
            raise VerificationError(artifact, f"checksum mismatch (expected {sha256}, got {actual})")

        if signature_path is not None:
            try:
                valid, error = verify_signature(path, signature_path, self.keyring_dir)
            except (GPGNotFoundError, FileNotFoundError) as e:
                raise VerificationError(artifact, str(e)) from e
            if not valid:
                raise VerificationError(artifact, error)
            logger.debug(f"Signature verified for {artifact}")

        return actual
