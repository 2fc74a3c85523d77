"""Shared fixtures for planmatrix tests."""

from __future__ import annotations

import pytest

from planmatrix.common.exceptions import FetchError
from planmatrix.services.config.cache import ConfigCache
from planmatrix.services.config.repository import ConfigRepository
from tests.helpers import CONFIG_URL, FakeSync


@pytest.fixture
def cache(tmp_path) -> ConfigCache:
    return ConfigCache(tmp_path / "plans_config.json")


@pytest.fixture
def failing_sync() -> FakeSync:
    return FakeSync(error=FetchError("Network error", url=CONFIG_URL))


@pytest.fixture
def failing_repository(cache, failing_sync) -> ConfigRepository:
    return ConfigRepository(sync=failing_sync, cache=cache)
