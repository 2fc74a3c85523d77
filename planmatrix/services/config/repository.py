"""
Configuration Repository

Single source of truth between the remote plans matrix and the local cache.

Fallback chain for fetch_and_persist():
- remote success            -> persist and return
- remote failure + cache    -> return cache unchanged
- remote failure + no cache -> return built-in default (not persisted)
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

import httpx

from planmatrix.common.config import DEFAULT_CONFIG_DOCUMENT, ConfigDocument
from planmatrix.common.exceptions import StoreError, SyncError
from planmatrix.common.logging_setup import get_service_logger, log_config_loaded

from .cache import ConfigCache
from .sync import ConfigSync

logger = get_service_logger("config.repository")

T = TypeVar("T")


async def _run_to_completion(coro: Awaitable[T]) -> T:
    """
    Await a worker-thread write, finishing it even if the caller is cancelled.

    The thread cannot be interrupted, so the caller keeps holding the write
    lock until the write has landed, then re-raises CancelledError.
    """
    task = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        while not task.done():
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                continue
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Write failed after cancellation: {task.exception()}")
        raise


class ConfigRepository:
    """
    Fetch-or-serve-cached access to the plans matrix.

    All mutation of the persisted document goes through this class.
    Writes are serialized by one asyncio.Lock; disk I/O runs in a worker
    thread so the event loop is never blocked.
    """

    def __init__(self, sync: ConfigSync, cache: ConfigCache):
        self.sync = sync
        self.cache = cache
        self._write_lock = asyncio.Lock()

        # Diagnostics for the last fetch attempt
        self.last_error: Exception | None = None
        self.last_fetch_at: datetime | None = None

    async def fetch_and_persist(self) -> ConfigDocument:
        """
        Fetch from the network and update the local cache.

        Never raises for network, decode or storage failures.

        Returns:
            The fresh document, else the cached one, else the default
        """
        self.last_fetch_at = datetime.now(timezone.utc)

        try:
            fresh = await self.sync.fetch_config()
        except (SyncError, httpx.HTTPError) as e:
            self.last_error = e
            logger.warning(
                f"Remote fetch failed, serving cached config: {e}",
                extra={"error_type": type(e).__name__},
            )
            return await self._read_or_default()

        self.last_error = None

        try:
            await self._save(fresh)
        except StoreError as e:
            # Fresh document is still valid for this caller
            self.last_error = e
            logger.error(f"Fetched config could not be persisted: {e}")

        log_config_loaded(logger, "network", fresh.version, fresh.generated_at)
        return fresh

    async def _save(self, document: ConfigDocument) -> None:
        async with self._write_lock:
            await _run_to_completion(asyncio.to_thread(self.cache.save, document))

    async def _read_or_default(self) -> ConfigDocument:
        cached = await asyncio.to_thread(self.cache.load)
        if cached is None:
            logger.info("No cached config available, using built-in default")
            return DEFAULT_CONFIG_DOCUMENT

        log_config_loaded(logger, "cache", cached.version, cached.generated_at)
        return cached

    async def get(self) -> ConfigDocument:
        """
        Current persisted document. No network activity.

        Returns:
            Cached document, or the default if nothing usable is stored
        """
        return await asyncio.to_thread(self.cache.read)

    async def set(self, document: ConfigDocument) -> None:
        """
        Replace the persisted document.

        Raises:
            StoreError: the cache could not be written
        """
        await self._save(document)

    async def update(
        self,
        transform: Callable[[ConfigDocument], ConfigDocument],
    ) -> ConfigDocument:
        """
        Atomically read, transform and persist the document.

        Concurrent updates are serialized; each transform sees the result
        of the previous one.

        Args:
            transform: Pure function returning the replacement document

        Returns:
            The persisted document

        Raises:
            StoreError: the cache could not be written
        """
        async with self._write_lock:
            current = await asyncio.to_thread(self.cache.read)
            updated = transform(current)
            if not isinstance(updated, ConfigDocument):
                raise TypeError(
                    f"transform must return ConfigDocument, got {type(updated).__name__}"
                )
            await _run_to_completion(asyncio.to_thread(self.cache.save, updated))

        logger.debug(
            f"Config updated: {current.version} → {updated.version}",
            extra={"old_version": current.version, "new_version": updated.version},
        )
        return updated

    async def clear(self) -> None:
        """Remove the persisted document; get() then returns the default"""
        async with self._write_lock:
            await _run_to_completion(asyncio.to_thread(self.cache.clear))

    async def is_default(self) -> bool:
        """True if the persisted document equals the built-in default"""
        return (await self.get()) == DEFAULT_CONFIG_DOCUMENT

    async def close(self) -> None:
        await self.sync.close()
