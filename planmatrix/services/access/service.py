"""
Resolution Service

Drives one feature resolution per request and publishes the outcome to
any number of subscribers.

Per request:
    Idle -> Fetching (refresh requested or cache holds the default)
         |  ReadingCache
         -> Resolving -> Published

A new request cancels the one still in flight. Each request that runs to
completion publishes exactly one ResolutionResult (rows or error).
"""

import asyncio
from collections import deque
from dataclasses import dataclass

from planmatrix.common.config import ConfigDocument, FeatureRow, Selection
from planmatrix.common.exceptions import ResolutionError, SubscriptionClosed
from planmatrix.common.logging_setup import get_service_logger, log_resolution
from planmatrix.services.config.repository import ConfigRepository

from .resolver import resolve

logger = get_service_logger("access")

# Results buffered per subscriber before the oldest are dropped
DEFAULT_BUFFER_CAPACITY = 100


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one request: rows on success, error on failure"""
    selection: Selection
    rows: tuple[FeatureRow, ...] | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> list[FeatureRow]:
        """Rows, or raise the failure"""
        if self.error is not None:
            raise self.error
        return list(self.rows or ())


class ResultSubscription:
    """
    Bounded buffer of published results for one subscriber.

    Publishing never blocks: once the buffer holds `capacity` results the
    oldest one is discarded. Iterate with `async for` or call get().
    """

    def __init__(self, capacity: int = DEFAULT_BUFFER_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._buffer: deque[ResolutionResult] = deque(maxlen=capacity)
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        """Number of buffered results"""
        return len(self._buffer)

    def push(self, result: ResolutionResult) -> None:
        if self._closed:
            return
        if len(self._buffer) == self._buffer.maxlen:
            self.dropped += 1
        self._buffer.append(result)
        self._ready.set()

    async def get(self) -> ResolutionResult:
        """
        Wait for the next result.

        Raises:
            SubscriptionClosed: closed and nothing left in the buffer
        """
        while not self._buffer:
            if self._closed:
                raise SubscriptionClosed()
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    def close(self) -> None:
        """Stop receiving; buffered results can still be drained"""
        self._closed = True
        self._ready.set()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ResolutionResult:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration


class ResolutionService:
    """
    Asynchronous feature resolution with result multicast.

    Holds a single request slot: starting a request cancels the previous
    one. Services sharing a repository are independent of each other.
    """

    def __init__(
        self,
        repository: ConfigRepository,
        buffer_capacity: int = DEFAULT_BUFFER_CAPACITY,
    ):
        self.repository = repository
        self.buffer_capacity = buffer_capacity
        self._subscriptions: list[ResultSubscription] = []
        self._current: asyncio.Task | None = None
        self._request_seq = 0

    def subscribe(self, capacity: int | None = None) -> ResultSubscription:
        """Receive results published from now on"""
        subscription = ResultSubscription(capacity or self.buffer_capacity)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: ResultSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        subscription.close()

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    def request(self, selection: Selection, refresh: bool = False) -> asyncio.Task:
        """
        Start resolving a selection, superseding any request in flight.

        Args:
            selection: Acting role, target role and plan
            refresh: Force a network fetch before resolving

        Returns:
            Task yielding the published ResolutionResult
        """
        self.cancel()

        self._request_seq += 1
        request_id = self._request_seq

        logger.debug(
            f"Request {request_id}: {selection} (refresh={refresh})",
            extra={"request_id": request_id, "refresh": refresh},
        )

        self._current = asyncio.create_task(
            self._run(request_id, selection, refresh),
            name=f"resolve-{request_id}",
        )
        return self._current

    def cancel(self) -> None:
        """Cancel the request in flight, if any"""
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self._current = None

    async def close(self) -> None:
        """Cancel pending work and close all subscriptions"""
        task = self._current
        self.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()

    async def _load_document(self, refresh: bool) -> ConfigDocument:
        if refresh or await self.repository.is_default():
            return await self.repository.fetch_and_persist()
        return await self.repository.get()

    async def _run(
        self,
        request_id: int,
        selection: Selection,
        refresh: bool,
    ) -> ResolutionResult:
        try:
            document = await self._load_document(refresh)
            rows = resolve(document, selection)
            result = ResolutionResult(selection, rows=tuple(rows))

            log_resolution(
                logger,
                selection.acting.value,
                selection.target.value,
                selection.plan.value,
                allowed=[r.feature.value for r in rows if r.allowed],
                denied=[r.feature.value for r in rows if not r.allowed],
            )

        except asyncio.CancelledError:
            logger.debug(f"Request {request_id} cancelled")
            raise

        except Exception as e:
            logger.error(
                f"Request {request_id} failed: {e}",
                exc_info=True,
                extra={"request_id": request_id},
            )
            error = ResolutionError(str(e), selection=selection)
            error.__cause__ = e
            result = ResolutionResult(selection, error=error)

        self._publish(result)
        return result

    def _publish(self, result: ResolutionResult) -> None:
        for subscription in list(self._subscriptions):
            subscription.push(result)
