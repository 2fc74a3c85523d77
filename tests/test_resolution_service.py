"""
Tests for ResolutionService.

Covers:
  - Fetch-vs-cache decision per request
  - Superseded requests are cancelled and publish nothing
  - Failures published as ResolutionError
  - Multicast to subscribers, bounded buffers, late subscribers
  - Independence of services sharing a repository
"""

from __future__ import annotations

import asyncio
import dataclasses

import pytest
import pytest_asyncio

from planmatrix.common.config import (
    ConfigDocument,
    Feature,
    FeatureRow,
    PlanId,
    Role,
    Selection,
)
from planmatrix.common.exceptions import ResolutionError, SubscriptionClosed
from planmatrix.services.access.service import (
    ResolutionResult,
    ResolutionService,
    ResultSubscription,
)
from planmatrix.services.config.cache import ConfigCache
from planmatrix.services.config.repository import ConfigRepository
from tests.helpers import EXPECTED_DOCUMENT, FakeSync

PARENT_SELF_FREE = Selection(Role.PARENT, Role.SELF, PlanId.FREE)
PARENT_SELF_BASIC = Selection(Role.PARENT, Role.SELF, PlanId.BASIC)


class BlockingSync(FakeSync):
    """FakeSync whose fetch waits until released."""

    def __init__(self, document: ConfigDocument):
        super().__init__(document=document)
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False

    async def fetch_config(self) -> ConfigDocument:
        self.calls += 1
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return self.document


class BrokenCache(ConfigCache):
    """Cache whose reads fail unexpectedly."""

    def read(self) -> ConfigDocument:
        raise RuntimeError("disk on fire")


@pytest.fixture
def sync() -> FakeSync:
    return FakeSync(document=EXPECTED_DOCUMENT)


@pytest.fixture
def repository(cache: ConfigCache, sync: FakeSync) -> ConfigRepository:
    return ConfigRepository(sync=sync, cache=cache)


@pytest_asyncio.fixture
async def service(repository: ConfigRepository):
    svc = ResolutionService(repository)
    yield svc
    await svc.close()


# ---------------------------------------------------------------------------
# Fetch vs cache
# ---------------------------------------------------------------------------


class TestDocumentSource:
    @pytest.mark.asyncio
    async def test_default_cache_triggers_fetch(self, service: ResolutionService, sync: FakeSync) -> None:
        result = await service.request(PARENT_SELF_FREE)

        assert sync.calls == 1
        assert result.unwrap() == [FeatureRow(Feature.CALLS, True)]

    @pytest.mark.asyncio
    async def test_populated_cache_skips_fetch(
        self, cache: ConfigCache, service: ResolutionService, sync: FakeSync
    ) -> None:
        cache.save(EXPECTED_DOCUMENT)

        result = await service.request(PARENT_SELF_BASIC)

        assert sync.calls == 0
        assert result.unwrap() == [
            FeatureRow(Feature.CALLS, True),
            FeatureRow(Feature.SCREEN_TIME, True),
        ]

    @pytest.mark.asyncio
    async def test_refresh_forces_fetch(
        self, cache: ConfigCache, service: ResolutionService, sync: FakeSync
    ) -> None:
        stale = dataclasses.replace(EXPECTED_DOCUMENT, version=0, plans={})
        cache.save(stale)

        result = await service.request(PARENT_SELF_FREE, refresh=True)

        assert sync.calls == 1
        assert result.unwrap() == [FeatureRow(Feature.CALLS, True)]
        assert cache.load() == EXPECTED_DOCUMENT

    @pytest.mark.asyncio
    async def test_failing_fetch_resolves_against_default(
        self, failing_repository: ConfigRepository
    ) -> None:
        service = ResolutionService(failing_repository)

        result = await service.request(Selection(Role.CHILD, Role.PARENT, PlanId.PREMIUM))

        assert result.ok
        assert result.unwrap() == [FeatureRow(Feature.CALLS, False)]
        await service.close()


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class TestPublishing:
    @pytest.mark.asyncio
    async def test_every_subscriber_receives_result(self, service: ResolutionService) -> None:
        first = service.subscribe()
        second = service.subscribe()

        await service.request(PARENT_SELF_FREE)

        for subscription in (first, second):
            result = await subscription.get()
            assert result.selection == PARENT_SELF_FREE
            assert result.rows == (FeatureRow(Feature.CALLS, True),)

    @pytest.mark.asyncio
    async def test_one_result_per_request(self, service: ResolutionService) -> None:
        subscription = service.subscribe()

        await service.request(PARENT_SELF_FREE)
        await service.request(PARENT_SELF_BASIC)

        assert subscription.pending() == 2
        assert (await subscription.get()).selection == PARENT_SELF_FREE
        assert (await subscription.get()).selection == PARENT_SELF_BASIC

    @pytest.mark.asyncio
    async def test_late_subscriber_sees_only_new_results(self, service: ResolutionService) -> None:
        await service.request(PARENT_SELF_FREE)
        late = service.subscribe()

        assert late.pending() == 0
        await service.request(PARENT_SELF_BASIC)
        assert (await late.get()).selection == PARENT_SELF_BASIC

    @pytest.mark.asyncio
    async def test_failure_published_as_resolution_error(self, tmp_path) -> None:
        repository = ConfigRepository(
            sync=FakeSync(document=EXPECTED_DOCUMENT),
            cache=BrokenCache(tmp_path / "plans_config.json"),
        )
        service = ResolutionService(repository)
        subscription = service.subscribe()

        await service.request(PARENT_SELF_FREE)
        result = await subscription.get()

        assert not result.ok
        assert isinstance(result.error, ResolutionError)
        assert result.error.selection == PARENT_SELF_FREE
        assert isinstance(result.error.__cause__, RuntimeError)
        with pytest.raises(ResolutionError):
            result.unwrap()
        await service.close()

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, service: ResolutionService) -> None:
        subscription = service.subscribe()
        service.unsubscribe(subscription)

        await service.request(PARENT_SELF_FREE)

        assert subscription.closed
        assert subscription.pending() == 0

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self, service: ResolutionService) -> None:
        subscription = service.subscribe()
        await service.request(PARENT_SELF_FREE)
        await service.close()

        received = [result async for result in subscription]

        assert len(received) == 1
        with pytest.raises(SubscriptionClosed):
            await subscription.get()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestSupersede:
    @pytest.mark.asyncio
    async def test_new_request_cancels_in_flight(self, cache: ConfigCache) -> None:
        blocking = BlockingSync(EXPECTED_DOCUMENT)
        service = ResolutionService(ConfigRepository(sync=blocking, cache=cache))
        subscription = service.subscribe()

        first = service.request(PARENT_SELF_FREE, refresh=True)
        await blocking.started.wait()
        assert service.in_flight

        blocking.release.set()
        second = service.request(PARENT_SELF_BASIC)
        result = await second

        with pytest.raises(asyncio.CancelledError):
            await first
        assert first.cancelled()
        assert blocking.cancelled
        assert result.selection == PARENT_SELF_BASIC
        assert subscription.pending() == 1
        assert (await subscription.get()).selection == PARENT_SELF_BASIC
        await service.close()

    @pytest.mark.asyncio
    async def test_cancel_publishes_nothing(self, cache: ConfigCache) -> None:
        blocking = BlockingSync(EXPECTED_DOCUMENT)
        service = ResolutionService(ConfigRepository(sync=blocking, cache=cache))
        subscription = service.subscribe()

        task = service.request(PARENT_SELF_FREE)
        await blocking.started.wait()
        service.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not service.in_flight
        assert subscription.pending() == 0
        assert cache.exists() is False
        await service.close()

    @pytest.mark.asyncio
    async def test_services_cancel_independently(self, cache: ConfigCache) -> None:
        blocking = BlockingSync(EXPECTED_DOCUMENT)
        repository = ConfigRepository(sync=blocking, cache=cache)
        left = ResolutionService(repository)
        right = ResolutionService(repository)

        left_task = left.request(PARENT_SELF_FREE)
        right_task = right.request(PARENT_SELF_BASIC)
        await blocking.started.wait()

        left.cancel()
        blocking.release.set()

        result = await right_task
        assert result.selection == PARENT_SELF_BASIC
        with pytest.raises(asyncio.CancelledError):
            await left_task
        await left.close()
        await right.close()


# ---------------------------------------------------------------------------
# Subscription buffer
# ---------------------------------------------------------------------------


class TestResultSubscription:
    def _result(self, allowed: bool) -> ResolutionResult:
        return ResolutionResult(PARENT_SELF_FREE, rows=(FeatureRow(Feature.CALLS, allowed),))

    @pytest.mark.asyncio
    async def test_overflow_drops_oldest(self) -> None:
        subscription = ResultSubscription(capacity=2)
        results = [self._result(n % 2 == 0) for n in (1, 2, 3)]
        for result in results:
            subscription.push(result)

        assert subscription.dropped == 1
        assert await subscription.get() is results[1]
        assert await subscription.get() is results[2]

    @pytest.mark.asyncio
    async def test_get_waits_for_push(self) -> None:
        subscription = ResultSubscription()
        waiter = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        assert not waiter.done()

        result = self._result(True)
        subscription.push(result)
        assert await waiter is result

    @pytest.mark.asyncio
    async def test_close_wakes_waiter(self) -> None:
        subscription = ResultSubscription()
        waiter = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)

        subscription.close()
        with pytest.raises(SubscriptionClosed):
            await waiter

    def test_push_after_close_ignored(self) -> None:
        subscription = ResultSubscription()
        subscription.close()
        subscription.push(self._result(True))
        assert subscription.pending() == 0

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ResultSubscription(capacity=0)

    @pytest.mark.asyncio
    async def test_service_overflow(self, failing_repository: ConfigRepository) -> None:
        service = ResolutionService(failing_repository, buffer_capacity=3)
        subscription = service.subscribe()

        for _ in range(5):
            await service.request(PARENT_SELF_FREE)

        assert subscription.pending() == 3
        assert subscription.dropped == 2
        await service.close()
