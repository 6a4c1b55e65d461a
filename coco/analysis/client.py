"""
Analysis client: resilient dispatch of AnalysisRequests.

Per request:
  - fail fast while the circuit breaker is open (no network attempt)
  - wait for one of K concurrency slots (FIFO)
  - up to `max_attempts` attempts, each bounded by `timeout`
  - transient failures back off exponentially with jitter; fatal ones stop
  - always return an AnalysisResponse; failures carry an Error insight

The backend is anything with `async analyze(request) -> list[Insight]` that
raises TransientAnalysisError / FatalAnalysisError.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, Protocol

from coco.analysis.breaker import CircuitBreaker
from coco.errors import (
    AnalysisError, CircuitOpenError, FatalAnalysisError, TransientAnalysisError,
)
from coco.models.event import AnalysisRequest, AnalysisResponse
from coco.models.insight import Insight, InsightKind, Severity

logger = logging.getLogger(__name__)

BACKOFF_CAP = 8.0       # seconds
JITTER_RATIO = 0.25     # up to +25% of the nominal delay


class AnalysisBackend(Protocol):
    async def analyze(self, request: AnalysisRequest) -> list[Insight]: ...


class AnalysisClient:
    def __init__(
        self,
        backend: AnalysisBackend,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        max_concurrency: int = 2,
        breaker: Optional[CircuitBreaker] = None,
        rng: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.breaker = breaker or CircuitBreaker(threshold=5, cooldown=30.0)
        self._slots = asyncio.Semaphore(max_concurrency)
        self._rng = rng
        self._sleep = sleep
        self._clock = clock
        self.outstanding = 0
        self.peak_outstanding = 0
        self.network_attempts = 0

    @classmethod
    def from_settings(cls, settings, backend: AnalysisBackend) -> "AnalysisClient":
        return cls(
            backend,
            timeout=settings.request_timeout_ms / 1000,
            max_attempts=settings.max_attempts,
            backoff_base=settings.backoff_base_ms / 1000,
            max_concurrency=settings.max_concurrency,
            breaker=CircuitBreaker(
                threshold=settings.breaker_threshold,
                cooldown=settings.breaker_cooldown_ms / 1000,
            ),
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the `attempt`-th failed attempt (1-based)."""
        nominal = min(BACKOFF_CAP, self.backoff_base * (2 ** (attempt - 1)))
        return nominal + nominal * JITTER_RATIO * self._rng()

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        started = self._clock()

        if self.breaker.is_open():
            return self._failure(request, started, CircuitOpenError(self.breaker.retry_in()), 0)

        async with self._slots:
            self.outstanding += 1
            self.peak_outstanding = max(self.peak_outstanding, self.outstanding)
            try:
                return await self._guarded(request, started)
            finally:
                self.outstanding -= 1

    async def _guarded(self, request: AnalysisRequest, started: float) -> AnalysisResponse:
        try:
            self.breaker.before_call()
        except CircuitOpenError as exc:
            return self._failure(request, started, exc, 0)

        attempt = 0
        while True:
            attempt += 1
            try:
                insights = await self._attempt(request)
            except FatalAnalysisError as exc:
                logger.error("Analysis of %s failed permanently: %s", request.path, exc)
                self.breaker.record_failure()
                return self._failure(request, started, exc, attempt)
            except TransientAnalysisError as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "Analysis of %s failed after %d attempts: %s",
                        request.path, attempt, exc,
                    )
                    self.breaker.record_failure()
                    return self._failure(request, started, exc, attempt)

                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Analysis attempt %d/%d for %s failed (%s), retrying in %.2fs",
                    attempt, self.max_attempts, request.path, exc, delay,
                )
                await self._sleep(delay)
                continue

            self.breaker.record_success()
            return AnalysisResponse(
                request_id=request.request_id,
                path=request.path,
                insights=[i if i.path else i.model_copy(update={"path": request.path}) for i in insights],
                latency_ms=self._elapsed_ms(started),
                success=True,
                attempts=attempt,
            )

    async def _attempt(self, request: AnalysisRequest) -> list[Insight]:
        self.network_attempts += 1
        try:
            return await asyncio.wait_for(self._backend.analyze(request), self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransientAnalysisError(
                f"timed out after {self.timeout:.1f}s", path=request.path
            ) from exc
        except AnalysisError:
            raise
        except Exception as exc:
            # unclassified backend failures are retried
            raise TransientAnalysisError(str(exc) or type(exc).__name__, path=request.path) from exc

    def _failure(
        self, request: AnalysisRequest, started: float, error: AnalysisError, attempts: int
    ) -> AnalysisResponse:
        if isinstance(error, CircuitOpenError):
            message = str(error).capitalize()
        else:
            message = f"Analysis failed: {error}"
        return AnalysisResponse(
            request_id=request.request_id,
            path=request.path,
            insights=[Insight(
                kind=InsightKind.ERROR,
                message=message,
                severity=Severity.ERROR,
                confidence=1.0,
                path=request.path,
            )],
            latency_ms=self._elapsed_ms(started),
            success=False,
            attempts=attempts,
        )

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)
