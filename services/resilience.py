"""
Resilience Layer
================
Circuit breakers, retry with exponential backoff and fallback substitution
for every call that leaves the process (search index, language oracle,
booking store, payment gateway).

Usage:
    breaker = registry.get("search")
    flights = await breaker.call(
        lambda: index.search(...),
        fallback=lambda: local_index.search(...),
    )

`operation` is always a zero-argument callable returning an awaitable, so a
retry can build a fresh coroutine for every attempt.
"""

import asyncio
import inspect
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from services.exceptions import (
    PASS_THROUGH_ERRORS,
    CircuitOpenError,
    ExternalServiceError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-based)."""
        delay = self.base_delay * (2 ** attempt) + random.uniform(0, self.jitter)
        return min(delay, self.max_delay)


async def retry_with_backoff(
    operation: Operation,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Run `operation`, retrying up to `max_retries` times on failure.

    The wait before retry n is min(base_delay * 2^n + U(0, jitter), max_delay).
    Caller errors (validation, not found, auth, rate limit) are raised at once.
    The last error is re-raised when the retries are exhausted.
    """
    policy = RetryPolicy(max_retries, base_delay, max_delay, jitter)
    attempt = 0
    while True:
        try:
            return await operation()
        except PASS_THROUGH_ERRORS:
            raise
        except Exception as e:
            if attempt >= policy.max_retries:
                logger.error(f"[Retry] Giving up after {attempt + 1} attempts: {e}")
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"[Retry] Attempt {attempt + 1}/{policy.max_retries + 1} failed ({e}), "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)
            attempt += 1


class CircuitBreaker:
    """
    Per-collaborator circuit breaker.

    CLOSED    calls pass through; consecutive failures are counted.
    OPEN      calls short-circuit to the fallback (or CircuitOpenError)
              until `recovery_timeout` seconds have passed since the last
              failure.
    HALF_OPEN exactly one trial call is let through; success closes the
              circuit, failure re-opens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        call_timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.call_timeout = call_timeout
        self.retry_policy = retry_policy
        self._clock = clock
        self._sleep = sleep

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.last_failure_at: Optional[datetime] = None
        self._trial_in_flight = False

    # ----------------------------------------
    # STATE TRANSITIONS
    # ----------------------------------------

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self.state:
            return
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(f"[CircuitBreaker:{self.name}] {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _allow_request(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0.0)
            if elapsed < self.recovery_timeout:
                return False
            self._transition(CircuitState.HALF_OPEN)

        # HALF_OPEN: a single trial call at a time
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def _on_success(self) -> None:
        self.failure_count = 0
        self._transition(CircuitState.CLOSED)

    def _on_failure(self, error: Exception) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        self.last_failure_at = datetime.now(timezone.utc)
        logger.error(
            f"[CircuitBreaker:{self.name}] Failure {self.failure_count}/"
            f"{self.failure_threshold}: {error}"
        )
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    # ----------------------------------------
    # CALLS
    # ----------------------------------------

    async def _attempt_once(self, operation: Operation) -> Any:
        if self.call_timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                self.name, f"{self.name} timed out after {self.call_timeout}s"
            ) from e

    async def _execute(self, operation: Operation) -> Any:
        if self.retry_policy is None:
            return await self._attempt_once(operation)
        policy = self.retry_policy
        return await retry_with_backoff(
            lambda: self._attempt_once(operation),
            max_retries=policy.max_retries,
            base_delay=policy.base_delay,
            max_delay=policy.max_delay,
            jitter=policy.jitter,
            sleep=self._sleep,
        )

    @staticmethod
    async def _run_fallback(fallback: Callable[[], Any]) -> Any:
        result = fallback()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def call(self, operation: Operation, fallback: Optional[Callable[[], Any]] = None) -> Any:
        """
        Run `operation` under the breaker.

        When the circuit is open, or the operation fails and a fallback is
        supplied, the fallback's result is returned instead. Without a
        fallback an open circuit raises CircuitOpenError and a failure
        re-raises the original error. Caller errors never count as
        breaker failures.
        """
        if not self._allow_request():
            logger.warning(f"[CircuitBreaker:{self.name}] Open, short-circuiting call")
            if fallback is not None:
                return await self._run_fallback(fallback)
            raise CircuitOpenError(self.name)

        trial = self.state == CircuitState.HALF_OPEN
        try:
            result = await self._execute(operation)
        except PASS_THROUGH_ERRORS as e:
            # The collaborator answered; the request itself was rejected
            if fallback is not None:
                logger.warning(f"[CircuitBreaker:{self.name}] Request rejected ({e.code}), using fallback")
                return await self._run_fallback(fallback)
            raise
        except Exception as e:
            self._on_failure(e)
            if fallback is not None:
                logger.warning(f"[CircuitBreaker:{self.name}] Using fallback after error: {e}")
                return await self._run_fallback(fallback)
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        self._on_success()
        return result

    def reset(self) -> None:
        logger.info(f"[CircuitBreaker:{self.name}] Manual reset")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        self.last_failure_at = None
        self._trial_in_flight = False

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
        }


class CircuitBreakerRegistry:
    """One breaker per protected collaborator, created at process start."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        self._breakers[breaker.name] = breaker
        return breaker

    def create(self, name: str, **kwargs) -> CircuitBreaker:
        return self.register(CircuitBreaker(name, **kwargs))

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            raise NotFoundError("Circuit breaker", f"Circuit breaker '{name}' not found")
        return breaker

    def states(self) -> List[Dict[str, Any]]:
        return [b.snapshot() for b in self._breakers.values()]

    def reset(self, name: str) -> Dict[str, Any]:
        breaker = self.get(name)
        breaker.reset()
        return breaker.snapshot()

    def __contains__(self, name: str) -> bool:
        return name in self._breakers
