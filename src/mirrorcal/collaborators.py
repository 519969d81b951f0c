"""
External collaborator interfaces.

- MotorCommandApi: async device commands with typed failures (errors.CommandError)
- DetectionBackend: analyzes a frame region, answers DetectionRequests
- DetectionChannel: request/response correlation by monotonically increasing id
- RetryPolicy: one explicit policy for retries and backoff
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Literal, Protocol, Sequence, TypeVar

from .detection import FULL_FRAME, DetectorParams, Region
from .errors import CommandError, DetectionTimeoutError
from .types import BlobKeypoint, MotorRef, Resolution, ShapeMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# ============================================================================
# Device commands
# ============================================================================


class MotorCommandApi(Protocol):
    """
    Device-command collaborator.

    Implementations raise AckTimeoutError, CompletionTimeoutError or
    DeviceError (all CommandError) on failure and own their timeouts.
    """

    async def home_all(self, controllers: Sequence[str]) -> None: ...

    async def move_motor(self, motor: MotorRef, position_steps: int) -> None: ...


# ============================================================================
# Detection
# ============================================================================


DetectionKind = Literal["blobs", "shape"]


@dataclass(frozen=True, slots=True)
class DetectionRequest:
    request_id: int
    kind: DetectionKind
    region: Region = FULL_FRAME
    params: DetectorParams = DetectorParams()


@dataclass(frozen=True, slots=True)
class DetectionResponse:
    """
    Answer to a DetectionRequest.
    "Not detected" is an empty blobs tuple or a None shape.
    """

    request_id: int
    resolution: Resolution
    blobs: tuple[BlobKeypoint, ...] = ()
    shape: ShapeMetrics | None = None


class DetectionBackend(Protocol):
    async def analyze(self, request: DetectionRequest) -> DetectionResponse: ...


class DetectionChannel:
    """
    Correlates detection requests and responses by request id.

    Every request gets a channel-wide, monotonically increasing id. Requests
    belong to a DetectionSession; closing the session (run aborted or
    superseded) discards its pending requests, and responses that arrive for
    them later are dropped.
    """

    def __init__(self, backend: DetectionBackend):
        self._backend = backend
        self._ids = itertools.count(1)
        self._pending: dict[int, tuple[DetectionSession, asyncio.Future]] = {}
        self._tasks: set[asyncio.Task] = set()

    def session(self) -> DetectionSession:
        return DetectionSession(self)

    def next_request_id(self) -> int:
        return next(self._ids)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def deliver(self, response: DetectionResponse) -> bool:
        """
        Route a response to its waiting request.

        Returns:
            False if the response was discarded (unknown, stale or closed session)
        """
        entry = self._pending.pop(response.request_id, None)
        if entry is None:
            logger.debug("Discarding detection response %d (no pending request)", response.request_id)
            return False
        session, future = entry
        if session.closed or future.done():
            logger.debug("Discarding detection response %d (session closed)", response.request_id)
            return False
        future.set_result(response)
        return True

    async def _dispatch(self, request: DetectionRequest) -> None:
        try:
            response = await self._backend.analyze(request)
        except Exception as exc:
            entry = self._pending.pop(request.request_id, None)
            if entry is not None and not entry[1].done():
                entry[1].set_exception(exc)
            return
        self.deliver(response)

    async def _submit(
        self,
        session: DetectionSession,
        kind: DetectionKind,
        region: Region,
        params: DetectorParams,
        timeout_s: float,
    ) -> DetectionResponse | None:
        if session.closed:
            return None
        request = DetectionRequest(self.next_request_id(), kind, region, params)
        future = asyncio.get_running_loop().create_future()
        self._pending[request.request_id] = (session, future)
        session._ids.add(request.request_id)

        task = asyncio.create_task(self._dispatch(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        try:
            return await asyncio.wait_for(future, timeout_s)
        except asyncio.TimeoutError:
            raise DetectionTimeoutError(request.request_id, timeout_s) from None
        finally:
            self._pending.pop(request.request_id, None)
            session._ids.discard(request.request_id)

    def _close(self, session: DetectionSession) -> int:
        discarded = 0
        for request_id in list(session._ids):
            entry = self._pending.pop(request_id, None)
            if entry is not None and not entry[1].done():
                entry[1].set_result(None)
                discarded += 1
        session._ids.clear()
        return discarded


class DetectionSession:
    """Requests issued on behalf of one calibration or alignment run."""

    def __init__(self, channel: DetectionChannel):
        self._channel = channel
        self._ids: set[int] = set()
        self.closed = False

    async def detect_blobs(
        self,
        region: Region = FULL_FRAME,
        params: DetectorParams = DetectorParams(),
        timeout_s: float = 1.5,
    ) -> DetectionResponse | None:
        """Returns None if the session was closed while waiting."""
        return await self._channel._submit(self, "blobs", region, params, timeout_s)

    async def measure_shape(
        self,
        region: Region = FULL_FRAME,
        params: DetectorParams = DetectorParams(),
        timeout_s: float = 1.5,
    ) -> ShapeMetrics | None:
        response = await self._channel._submit(self, "shape", region, params, timeout_s)
        return response.shape if response is not None else None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        discarded = self._channel._close(self)
        if discarded:
            logger.info("Discarded %d pending detection request(s)", discarded)


# ============================================================================
# Retry policy
# ============================================================================


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry/backoff policy shared by every retrying call site.

    Attempt n (0-based) waits backoff_s * backoff_multiplier**n before the
    next attempt. Only command failures whose reason is listed are retried.
    """

    max_attempts: int = 5
    backoff_s: float = 0.15
    backoff_multiplier: float = 1.0
    retryable_reasons: frozenset[str] = frozenset({"ack-timeout"})

    def delay_for(self, attempt: int) -> float:
        return self.backoff_s * (self.backoff_multiplier ** attempt)

    def is_retryable(self, error: CommandError) -> bool:
        return error.reason in self.retryable_reasons


async def call_with_retry(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    description: str = "command",
) -> T:
    """
    Run a device command, retrying retryable CommandErrors.

    Raises:
        CommandError: Non-retryable failure, or the last failure once the
            attempts are exhausted
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except CommandError as exc:
            attempt += 1
            if not policy.is_retryable(exc) or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt - 1)
            logger.warning("%s failed (%s), retry %d/%d in %.2fs",
                           description, exc.reason, attempt, policy.max_attempts - 1, delay)
            await asyncio.sleep(delay)


# ============================================================================
# Scatter / gather
# ============================================================================


@dataclass(frozen=True, slots=True)
class GatherOutcome:
    succeeded: list
    failed: list  # (item, exception) pairs


async def scatter_gather(
    items: Iterable[T],
    operation: Callable[[T], Awaitable[R]],
) -> GatherOutcome:
    """
    Issue operation(item) for all items concurrently, then partition results.

    A failure on one item never cancels or invalidates the others.

    Returns:
        GatherOutcome with (item, result) successes and (item, exception) failures
    """
    items = list(items)
    results = await asyncio.gather(*(operation(item) for item in items), return_exceptions=True)
    succeeded = []
    failed = []
    for item, result in zip(items, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            failed.append((item, result))
        else:
            succeeded.append((item, result))
    return GatherOutcome(succeeded=succeeded, failed=failed)
