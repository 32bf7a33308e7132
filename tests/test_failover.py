# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for RepositoryFailoverManager

Tests retry with backoff, circuit breaking and ordered failover.
"""

import asyncio

import pytest

from installation_manager.exceptions import RepositoryUnavailableError, VerificationError
from installation_manager.failover import (
    CircuitOpenError,
    FailoverConfig,
    RepositoryFailoverManager,
    RepositoryHealth,
)
from installation_manager.models import Repository


@pytest.fixture
def primary():
    return Repository(id="primary", url="https://primary.example.com")


@pytest.fixture
def mirror():
    return Repository(id="mirror", url="https://mirror.example.com")


def flaky(failures: int, result="ok"):
    """Operation failing with OSError a given number of times"""
    calls = {"count": 0}

    async def operation(repository):
        calls["count"] += 1
        if calls["count"] <= failures:
            raise OSError(f"{repository.id} unreachable")
        return result

    return operation, calls


class TestExecuteWithRetry:
    """Test single-repository retries"""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, primary):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=2, retry_delay=0.0))
        operation, calls = flaky(2)

        assert await manager.execute_with_retry(operation, primary, "fetch_index") == "ok"
        assert calls["count"] == 3
        assert manager.get_repository_health("primary").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self, primary):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=1, retry_delay=0.0))
        operation, calls = flaky(5)

        with pytest.raises(OSError):
            await manager.execute_with_retry(operation, primary, "fetch_index")

        assert calls["count"] == 2
        health = manager.get_repository_health("primary")
        assert health.consecutive_failures == 1
        assert health.status == RepositoryHealth.DEGRADED

    @pytest.mark.asyncio
    async def test_timeout(self, primary):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=0, timeout=0.01))

        async def slow(repository):
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await manager.execute_with_retry(slow, primary, "fetch_index")

    @pytest.mark.asyncio
    async def test_circuit_opens_after_threshold(self, primary):
        """Should stop calling a repository once its breaker is open"""
        manager = RepositoryFailoverManager(
            FailoverConfig(max_retries=0, retry_delay=0.0, circuit_breaker_threshold=2)
        )
        operation, calls = flaky(10)

        for _ in range(2):
            with pytest.raises(OSError):
                await manager.execute_with_retry(operation, primary, "fetch_index")

        with pytest.raises(CircuitOpenError):
            await manager.execute_with_retry(operation, primary, "fetch_index")
        assert calls["count"] == 2
        assert manager.get_health_summary()["primary"]["circuit_breaker_open"] is True


class TestExecuteWithFailover:
    """Test ordered failover"""

    @pytest.mark.asyncio
    async def test_falls_back_to_next_repository(self, primary, mirror):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=0, retry_delay=0.0))

        async def operation(repository):
            if repository.id == "primary":
                raise OSError("down")
            return repository.id

        repository, result = await manager.execute_with_failover(operation, [primary, mirror], "download")

        assert repository == mirror
        assert result == "mirror"

    @pytest.mark.asyncio
    async def test_all_fail(self, primary, mirror):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=0, retry_delay=0.0))
        operation, _ = flaky(10)

        with pytest.raises(RepositoryUnavailableError) as exc_info:
            await manager.execute_with_failover(operation, [primary, mirror], "A@1.1")

        assert exc_info.value.artifact == "A@1.1"
        assert exc_info.value.repositories == ["primary", "mirror"]
        assert "mirror unreachable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_no_repositories(self):
        manager = RepositoryFailoverManager()
        operation, _ = flaky(0)

        with pytest.raises(RepositoryUnavailableError) as exc_info:
            await manager.execute_with_failover(operation, [], "A@1.1")
        assert exc_info.value.repositories == []

    @pytest.mark.asyncio
    async def test_skip_errors_fail_over_without_retry(self, primary, mirror):
        """Should move on at once when a repository's copy is rejected"""
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=3, retry_delay=0.0))
        calls = []

        async def operation(repository):
            calls.append(repository.id)
            if repository.id == "primary":
                raise VerificationError("A@1.1", "checksum mismatch")
            return "ok"

        repository, _ = await manager.execute_with_failover(
            operation, [primary, mirror], "A@1.1", skip_errors=(VerificationError,)
        )

        assert repository == mirror
        assert calls == ["primary", "mirror"]
        assert manager.get_repository_health("primary").failure_count == 1

    @pytest.mark.asyncio
    async def test_unlisted_errors_propagate(self, primary, mirror):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=0, retry_delay=0.0))

        async def operation(repository):
            raise VerificationError("A@1.1", "checksum mismatch")

        with pytest.raises(VerificationError):
            await manager.execute_with_failover(operation, [primary, mirror], "A@1.1")


class TestMalformedContent:
    """Test errors that are not worth retrying"""

    @pytest.mark.asyncio
    async def test_malformed_content_not_retried(self, primary):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=3, retry_delay=0.0))
        calls = {"count": 0}

        async def operation(repository):
            calls["count"] += 1
            raise ValueError("Repository index must contain an 'artifacts' mapping")

        with pytest.raises(ValueError):
            await manager.execute_with_retry(operation, primary, "fetch_index")

        assert calls["count"] == 1
        assert manager.get_repository_health("primary").failure_count == 1

    @pytest.mark.asyncio
    async def test_malformed_content_fails_over(self, primary, mirror):
        manager = RepositoryFailoverManager(FailoverConfig(max_retries=3, retry_delay=0.0))

        async def operation(repository):
            if repository.id == "primary":
                raise ValueError("not JSON")
            return "ok"

        repository, result = await manager.execute_with_failover(operation, [primary, mirror], "fetch_index")

        assert repository == mirror
        assert result == "ok"
