"""
Config Service - Long-running Host

Responsible for:
- Refreshing the plans matrix from the remote endpoint periodically
- Serving cached configuration while offline
- Exposing health, manual sync and feature resolution over HTTP
"""

import asyncio
import signal
from datetime import datetime, timezone

from aiohttp import web

from planmatrix.common.config import PlanId, Role, Selection
from planmatrix.common.logging_setup import get_service_logger, set_log_level
from planmatrix.common.settings import Settings, load_settings
from planmatrix.services.access.service import ResolutionService

from .cache import ConfigCache
from .repository import ConfigRepository
from .sync import ConfigSync

logger = get_service_logger("config")


class ConfigService:
    """
    Config Service host process.

    Keeps the local cache fresh with a periodic sync and answers
    feature-visibility queries from whatever document is cached.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        repository: ConfigRepository | None = None,
    ):
        self.settings = settings or load_settings()

        self.repository = repository or ConfigRepository(
            sync=ConfigSync(
                config_url=self.settings.config_url,
                timeout=self.settings.request_timeout_s,
            ),
            cache=ConfigCache(self.settings.cache_path),
        )

        self._start_time = datetime.now(timezone.utc)
        self._current_version: int | None = None

        # Health server
        self._health_app: web.Application | None = None
        self._health_runner: web.AppRunner | None = None

        # State
        self._running = False
        self._sync_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the config service and block until shutdown"""
        logger.info("Starting Config Service")

        self._running = True

        # Initial sync; falls back to cache/default when offline
        await self._sync_config()

        await self._start_health_server()

        self._sync_task = asyncio.create_task(self._sync_loop())

        logger.info(
            f"Config Service started (endpoint: {self.settings.config_url})",
            extra={"config_url": self.settings.config_url},
        )

        self._setup_signal_handlers()

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the config service"""
        logger.info("Stopping Config Service")

        self._running = False

        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass

        await self._stop_health_server()
        await self.repository.close()

        logger.info("Config Service stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def _sync_loop(self) -> None:
        """Periodic config sync loop"""
        while self._running:
            await asyncio.sleep(self.settings.sync_interval_s)

            try:
                await self._sync_config()
            except Exception as e:
                logger.error(f"Error in sync loop: {e}", exc_info=True)

    async def _sync_config(self) -> bool:
        """
        Sync configuration from the remote endpoint.

        Returns:
            True if the active version changed
        """
        document = await self.repository.fetch_and_persist()

        old_version = self._current_version
        self._current_version = document.version

        if old_version != document.version:
            logger.info(
                f"Config version: {old_version} → {document.version}",
                extra={"old_version": old_version, "new_version": document.version},
            )
            return True

        logger.debug("Config synced (no version change)")
        return False

    async def force_sync(self) -> bool:
        """Force immediate config sync (for API trigger)"""
        return await self._sync_config()

    def create_app(self) -> web.Application:
        """Build the HTTP application (health, sync, features)"""
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_post("/sync", self._sync_handler)
        app.router.add_get("/features", self._features_handler)
        return app

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        self._health_app = self.create_app()

        self._health_runner = web.AppRunner(self._health_app)
        await self._health_runner.setup()

        site = web.TCPSite(
            self._health_runner,
            self.settings.health_host,
            self.settings.health_port,
        )
        await site.start()

        logger.info(f"Health server started on port {self.settings.health_port}")

    async def _stop_health_server(self) -> None:
        """Stop the health check HTTP server"""
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        last_error = self.repository.last_error
        last_fetch_at = self.repository.last_fetch_at

        return web.json_response({
            "status": "healthy" if self._running else "unhealthy",
            "service": "config",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "config_version": self._current_version,
            "using_default": await self.repository.is_default(),
            "last_fetch_at": last_fetch_at.isoformat() if last_fetch_at else None,
            "last_error": str(last_error) if last_error else None,
        })

    async def _sync_handler(self, request: web.Request) -> web.Response:
        """Handle force sync requests"""
        changed = await self.force_sync()

        return web.json_response({
            "success": self.repository.last_error is None,
            "changed": changed,
            "config_version": self._current_version,
        })

    async def _features_handler(self, request: web.Request) -> web.Response:
        """Resolve features for ?acting=&target=&plan=[&refresh=true]"""
        query = request.query
        missing = [name for name in ("acting", "target", "plan") if name not in query]
        if missing:
            return web.json_response(
                {"error": f"Missing query parameters: {', '.join(missing)}"},
                status=400,
            )

        selection = Selection(
            acting=Role(query["acting"]),
            target=Role(query["target"]),
            plan=PlanId(query["plan"]),
        )
        refresh = query.get("refresh", "false").lower() in ("1", "true", "yes")

        # One resolution service per HTTP request
        resolution = ResolutionService(self.repository)
        result = await resolution.request(selection, refresh=refresh)

        if not result.ok:
            return web.json_response({"error": str(result.error)}, status=500)

        return web.json_response({
            "acting": selection.acting.value,
            "target": selection.target.value,
            "plan": selection.plan.value,
            "features": [
                {"feature": row.feature.value, "allowed": row.allowed}
                for row in result.rows
            ],
        })


async def main(settings: Settings | None = None) -> None:
    """Main entry point"""
    settings = settings or load_settings()
    set_log_level(settings.log_level)

    service = ConfigService(settings)

    try:
        await service.start()
    finally:
        await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
