# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for artifact verification

GPG is mocked; checksum verification runs for real.
"""

import hashlib
from unittest.mock import Mock, patch

import pytest

from installation_manager.exceptions import VerificationError
from installation_manager.signing import ArtifactVerifier, file_sha256, verify_signature


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "core-1.0.jar"
    path.write_bytes(b"artifact bytes")
    return path


@pytest.fixture
def signature(tmp_path):
    path = tmp_path / "core-1.0.jar.asc"
    path.write_text("-----BEGIN PGP SIGNATURE-----")
    return path


class TestChecksum:
    """Test SHA-256 verification"""

    def test_file_sha256(self, artifact):
        assert file_sha256(artifact) == hashlib.sha256(b"artifact bytes").hexdigest()

    def test_matching_checksum(self, artifact):
        expected = hashlib.sha256(b"artifact bytes").hexdigest()
        assert ArtifactVerifier().verify("core@1.0", artifact, expected.upper()) == expected

    def test_mismatch(self, artifact):
        with pytest.raises(VerificationError) as exc_info:
            ArtifactVerifier().verify("core@1.0", artifact, "0" * 64)
        assert "checksum mismatch" in exc_info.value.reason


class TestSignature:
    """Test detached GPG signature verification"""

    def test_bad_signature_reported(self, artifact, signature):
        gpg = Mock()
        gpg.verify_file.return_value = Mock(valid=False, status="signature bad", key_id=None)

        with patch("installation_manager.signing.gnupg.GPG", return_value=gpg):
            valid, error = verify_signature(artifact, signature)

        assert valid is False
        assert error == "Signature does not match file content"

    def test_missing_public_key_reported(self, artifact, signature):
        gpg = Mock()
        gpg.verify_file.return_value = Mock(valid=False, status="no public key", key_id="ABC123")

        with patch("installation_manager.signing.gnupg.GPG", return_value=gpg):
            valid, error = verify_signature(artifact, signature)

        assert valid is False
        assert "ABC123" in error

    def test_missing_signature_file(self, artifact, tmp_path):
        with pytest.raises(FileNotFoundError):
            verify_signature(artifact, tmp_path / "missing.asc")

    def test_verifier_rejects_invalid_signature(self, artifact, signature):
        with patch("installation_manager.signing.verify_signature", return_value=(False, "bad")):
            with pytest.raises(VerificationError):
                ArtifactVerifier().verify("core@1.0", artifact, signature_path=signature)

    def test_verifier_accepts_valid_signature(self, artifact, signature):
        with patch("installation_manager.signing.verify_signature", return_value=(True, "")) as verify:
            ArtifactVerifier(keyring_dir="/keys").verify("core@1.0", artifact, signature_path=signature)

        verify.assert_called_once_with(artifact, signature, "/keys")
