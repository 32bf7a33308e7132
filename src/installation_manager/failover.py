# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Repository Failover Manager

Single responsibility: Handle repository retries, health tracking and
circuit breaking
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

import httpx

from .exceptions import RepositoryUnavailableError
from .models import Repository

logger = logging.getLogger(__name__)

# Failures worth retrying
TRANSIENT_ERRORS = (httpx.HTTPError, OSError)

# Malformed repository content; retrying cannot help
MALFORMED_ERRORS = (ValueError,)

REPOSITORY_ERRORS = TRANSIENT_ERRORS + MALFORMED_ERRORS


class RepositoryHealth(Enum):
    """Repository health status"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILING = "failing"
    UNAVAILABLE = "unavailable"


@dataclass
class HealthMetrics:
    """Repository health metrics"""
    status: RepositoryHealth = RepositoryHealth.HEALTHY
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    failure_count: int = 0
    response_times: List[float] = field(default_factory=list)
    error_messages: List[str] = field(default_factory=list)
    consecutive_failures: int = 0

    @property
    def avg_response_time(self) -> float:
        """Average response time over last 10 requests"""
        if not self.response_times:
            return 0.0
        return sum(self.response_times[-10:]) / len(self.response_times[-10:])

    @property
    def is_available(self) -> bool:
        return self.status in [RepositoryHealth.HEALTHY, RepositoryHealth.DEGRADED]

    def record_success(self, response_time: float):
        self.last_success = datetime.now(UTC)
        self.consecutive_failures = 0
        self.response_times.append(response_time)

        # Keep only last 20 response times
        if len(self.response_times) > 20:
            self.response_times = self.response_times[-20:]

        if self.avg_response_time < 2.0:
            self.status = RepositoryHealth.HEALTHY
        elif self.avg_response_time < 10.0:
            self.status = RepositoryHealth.DEGRADED
        else:
            self.status = RepositoryHealth.FAILING

    def record_failure(self, error_msg: str):
        self.last_failure = datetime.now(UTC)
        self.failure_count += 1
        self.consecutive_failures += 1
        self.error_messages.append(f"{datetime.now(UTC).isoformat()}: {error_msg}")

        # Keep only last 10 error messages
        if len(self.error_messages) > 10:
            self.error_messages = self.error_messages[-10:]

        if self.consecutive_failures >= 5:
            self.status = RepositoryHealth.UNAVAILABLE
        elif self.consecutive_failures >= 3:
            self.status = RepositoryHealth.FAILING
        elif self.consecutive_failures >= 1:
            self.status = RepositoryHealth.DEGRADED


@dataclass
class FailoverConfig:
    """Failover configuration settings"""
    max_retries: int = 2
    retry_delay: float = 1.0
    max_retry_delay: float = 30.0
    backoff_multiplier: float = 2.0
    timeout: float = 30.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_time: int = 300

    @classmethod
    def from_config(cls, config) -> "FailoverConfig":
        return cls(
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            max_retry_delay=config.max_retry_delay,
            backoff_multiplier=config.backoff_multiplier,
            timeout=config.timeout,
            circuit_breaker_threshold=config.circuit_breaker_threshold,
            circuit_breaker_reset_time=config.circuit_breaker_reset_time,
        )


class CircuitOpenError(Exception):
    """Repository skipped because its circuit breaker is open"""

    def __init__(self, repository_id: str):
        super().__init__(f"Circuit breaker open for repository: {repository_id}")
        self.repository_id = repository_id


class RepositoryFailoverManager:
    """
    Manages repository retries with health monitoring and circuit breaker pattern.

    Features:
    - Automatic retry with exponential backoff
    - Health monitoring and circuit breaker
    - Ordered failover across candidate repositories
    """

    def __init__(self, config: Optional[FailoverConfig] = None):
        self.config = config or FailoverConfig()
        self.health_metrics: Dict[str, HealthMetrics] = {}
        self.circuit_breakers: Dict[str, datetime] = {}

        logger.debug(
            f"Repository failover initialized - "
            f"max_retries={self.config.max_retries}, "
            f"timeout={self.config.timeout}s, "
            f"circuit_breaker_threshold={self.config.circuit_breaker_threshold}"
        )

    def get_repository_health(self, repository_id: str) -> HealthMetrics:
        if repository_id not in self.health_metrics:
            self.health_metrics[repository_id] = HealthMetrics()
        return self.health_metrics[repository_id]

    def is_circuit_breaker_open(self, repository_id: str) -> bool:
        if repository_id not in self.circuit_breakers:
            return False

        breaker_time = self.circuit_breakers[repository_id]
        reset_time = breaker_time + timedelta(seconds=self.config.circuit_breaker_reset_time)

        if datetime.now(UTC) > reset_time:
            del self.circuit_breakers[repository_id]
            health = self.get_repository_health(repository_id)
            health.consecutive_failures = 0
            health.status = RepositoryHealth.DEGRADED
            logger.info(f"Circuit breaker reset for repository: {repository_id}")
            return False

        return True

    def open_circuit_breaker(self, repository_id: str):
        self.circuit_breakers[repository_id] = datetime.now(UTC)
        self.get_repository_health(repository_id).status = RepositoryHealth.UNAVAILABLE
        logger.warning(f"Circuit breaker opened for repository: {repository_id}")

    def _record_failure(self, repository: Repository, error_msg: str):
        health = self.get_repository_health(repository.id)
        health.record_failure(error_msg)
        if health.consecutive_failures >= self.config.circuit_breaker_threshold:
            self.open_circuit_breaker(repository.id)

    async def execute_with_retry(
        self,
        operation: Callable[..., Awaitable[Any]],
        repository: Repository,
        operation_name: str,
        **kwargs
    ) -> Any:
        """
        Execute operation with retry logic on a single repository.

        Args:
            operation: Async function called as operation(repository, **kwargs)
            repository: Repository to use
            operation_name: Operation name for logging
            **kwargs: Arguments to pass to operation

        Returns:
            Operation result

        Raises:
            CircuitOpenError: If the repository's circuit breaker is open
            ValueError: At once, if the repository returned malformed content
            Exception: The last failure once all retries are exhausted
        """
        if self.is_circuit_breaker_open(repository.id):
            raise CircuitOpenError(repository.id)

        last_error: Optional[BaseException] = None
        delay = self.config.retry_delay
        health = self.get_repository_health(repository.id)

        for attempt in range(self.config.max_retries + 1):
            try:
                if attempt > 0:
                    logger.info(
                        f"Retry attempt {attempt}/{self.config.max_retries} "
                        f"for {operation_name} on {repository.id} after {delay}s"
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * self.config.backoff_multiplier, self.config.max_retry_delay)

                start_time = time.monotonic()
                result = await asyncio.wait_for(
                    operation(repository, **kwargs),
                    timeout=self.config.timeout
                )
                health.record_success(time.monotonic() - start_time)

                if attempt > 0:
                    logger.info(f"Retry successful for {operation_name} on {repository.id}")
                return result

            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(
                    f"{operation_name} timeout on repository '{repository.id}' "
                    f"({repository.url}) after {self.config.timeout}s"
                )
            except TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(
                    f"{operation_name} failed on repository '{repository.id}' "
                    f"({repository.url}): {e}. Error type: {type(e).__name__}"
                )
            except MALFORMED_ERRORS as e:
                self._record_failure(repository, str(e))
                logger.error(f"{operation_name} on {repository.id} returned malformed content: {e}")
                raise

        self._record_failure(repository, str(last_error))
        logger.error(f"All retries failed for {operation_name} on {repository.id}: {last_error}")
        raise last_error

    async def execute_with_failover(
        self,
        operation: Callable[..., Awaitable[Any]],
        repositories: List[Repository],
        operation_name: str,
        skip_errors: Tuple[Type[BaseException], ...] = (),
        **kwargs
    ) -> Tuple[Repository, Any]:
        """
        Execute operation against repositories in the given order until one succeeds.

        Args:
            operation: Async function called as operation(repository, **kwargs)
            repositories: Candidate repositories in precedence order
            operation_name: Subject of the operation, used for logging and errors
            skip_errors: Further errors that move on to the next repository
                without retrying (counted as repository failures)
            **kwargs: Arguments to pass to operation

        Returns:
            (repository, result) of the first success

        Raises:
            RepositoryUnavailableError: If every repository fails
        """
        last_error: Optional[BaseException] = None
        attempted = []

        for repository in repositories:
            attempted.append(repository.id)
            try:
                result = await self.execute_with_retry(operation, repository, operation_name, **kwargs)
                return repository, result
            except CircuitOpenError as e:
                logger.debug(f"Skipping {repository.id}: circuit breaker open")
                last_error = e
            except (asyncio.TimeoutError, *REPOSITORY_ERRORS) as e:
                last_error = e
            except skip_errors as e:
                self._record_failure(repository, str(e))
                logger.warning(f"{operation_name} rejected from {repository.id}: {e}")
                last_error = e

            if len(attempted) < len(repositories):
                logger.info(f"Failing over {operation_name} from {repository.id}")

        logger.error(f"All repositories failed for {operation_name}. Attempted: {attempted}")
        reason = str(last_error) if last_error is not None else "no repositories given"
        raise RepositoryUnavailableError(operation_name, attempted, reason)

    def get_health_summary(self) -> Dict[str, Dict[str, Any]]:
        """Health summary for all repositories seen so far"""
        summary = {}

        for repository_id, health in self.health_metrics.items():
            is_circuit_open = self.is_circuit_breaker_open(repository_id)

            summary[repository_id] = {
                "status": health.status.value,
                "is_available": health.is_available and not is_circuit_open,
                "circuit_breaker_open": is_circuit_open,
                "last_success": health.last_success.isoformat() if health.last_success else None,
                "last_failure": health.last_failure.isoformat() if health.last_failure else None,
                "failure_count": health.failure_count,
                "consecutive_failures": health.consecutive_failures,
                "avg_response_time": round(health.avg_response_time, 2),
                "recent_errors": health.error_messages[-3:]
            }

        return summary
