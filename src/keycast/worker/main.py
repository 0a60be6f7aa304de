"""keycast worker entry point.

This module provides the Orchestrator that:
- Decides once at startup whether an issuance is owed (catch-up)
- Runs the issuance and reclamation loops concurrently
- Isolates faults per tick so one loop never takes down the other
- Handles graceful shutdown via SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, NoReturn

from keycast.core.settings import get_settings
from keycast.db import create_engine_from_settings, create_session_factory
from keycast.db.migrate import upgrade_to_head
from keycast.services.broadcast import BroadcastConfig, TelegramBroadcastClient
from keycast.services.key_store import AccessKeyStore, RecordStoreError
from keycast.services.lifecycle import AccessKeyLifecycleService
from keycast.services.messages import MessageConfig, MessageRenderer
from keycast.services.provisioning import ProvisioningClient, ProvisioningConfig
from keycast.worker.scheduler import PeriodicTask, run_periodic_task

if TYPE_CHECKING:
    from keycast.core.config import Settings
    from keycast.db.models.servers import Server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Request URLs carry the bot token and management secrets
NOISY_LOGGERS = ("httpx", "httpcore")


@dataclass
class OrchestratorConfig:
    """Cadence of the orchestrator.

    Attributes:
        issuance_interval: Seconds between issuance ticks.
        reclamation_interval: Seconds between reclamation ticks.
        reclaim_on_start: Run the first reclamation immediately at startup.
        shutdown_timeout: Seconds to wait for in-flight ticks on shutdown.
    """

    issuance_interval: float = 24 * 3600
    reclamation_interval: float = 5 * 3600
    reclaim_on_start: bool = True
    shutdown_timeout: float = 200.0

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorConfig:
        """Create config from application settings."""
        return cls(
            issuance_interval=settings.schedule.issuance_interval_seconds,
            reclamation_interval=settings.schedule.reclamation_interval_seconds,
            shutdown_timeout=settings.schedule.shutdown_timeout_seconds,
        )


class Orchestrator:
    """Runs the issuance and reclamation loops for the life of the process.

    The server inventory is captured once by the caller and passed in; it
    is never re-read.

    Example:
        orchestrator = Orchestrator(service, servers, OrchestratorConfig())
        task = asyncio.create_task(orchestrator.start())
        ...
        await orchestrator.stop()
        await task
    """

    def __init__(
        self,
        service: AccessKeyLifecycleService,
        servers: Sequence[Server],
        config: OrchestratorConfig,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            service: Lifecycle service executing single cycles.
            servers: Eligible servers captured at startup.
            config: Loop intervals and shutdown behavior.
        """
        self.config = config
        self._service = service
        self._servers = tuple(servers)
        self._shutdown_event = asyncio.Event()

    @property
    def servers(self) -> tuple[Server, ...]:
        """Eligible servers captured at startup."""
        return self._servers

    async def start(self) -> None:
        """Run catch-up, then both loops until stop() is called.

        Returns only after both loops have exited.
        """
        logger.info(
            "Orchestrator starting: servers=%d, issuance_interval=%ss, reclamation_interval=%ss",
            len(self._servers),
            self.config.issuance_interval,
            self.config.reclamation_interval,
        )

        interval = timedelta(seconds=self.config.issuance_interval)
        if await self._service.is_catch_up_due(interval):
            logger.info("Issuing catch-up access key")
            await self._run_issuance()

        issuance = PeriodicTask(
            name="issuance",
            interval=self.config.issuance_interval,
            action=self._run_issuance,
        )
        reclamation = PeriodicTask(
            name="reclamation",
            interval=self.config.reclamation_interval,
            action=self._run_reclamation,
            run_immediately=self.config.reclaim_on_start,
        )

        issuance_ticks, reclamation_ticks = await asyncio.gather(
            run_periodic_task(issuance, self._shutdown_event),
            run_periodic_task(reclamation, self._shutdown_event),
        )
        logger.info(
            "Orchestrator stopped: issuance_ticks=%d, reclamation_ticks=%d",
            issuance_ticks,
            reclamation_ticks,
        )

    async def stop(self) -> None:
        """Request graceful shutdown of both loops."""
        logger.info("Orchestrator shutdown requested")
        self._shutdown_event.set()

    async def _run_issuance(self) -> None:
        try:
            await self._service.issue(self._servers)
        except Exception as e:
            logger.exception("Error in issuance cycle: %s", e)

    async def _run_reclamation(self) -> None:
        try:
            await self._service.reclaim_expired()
        except Exception as e:
            logger.exception("Error in reclamation cycle: %s", e)


def configure_logging(level: str) -> None:
    """Set up root logging and mute transport loggers that would leak secrets."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextlib.asynccontextmanager
async def open_lifecycle(
    settings: Settings,
) -> AsyncIterator[tuple[AccessKeyLifecycleService, AccessKeyStore]]:
    """Wire the lifecycle service and its collaborators from settings.

    Owns the database engine and both HTTP clients; all are closed on exit.

    Args:
        settings: Application settings.

    Yields:
        The lifecycle service and the record store it uses.
    """
    engine = create_engine_from_settings(settings.database)
    try:
        store = AccessKeyStore(create_session_factory(engine))
        provisioning_config = ProvisioningConfig.from_settings(settings.provisioning)
        broadcast_config = BroadcastConfig.from_settings(settings.telegram)
        async with (
            ProvisioningClient(provisioning_config) as provisioning,
            TelegramBroadcastClient(broadcast_config) as broadcast,
        ):
            service = AccessKeyLifecycleService(
                store=store,
                provisioning=provisioning,
                broadcast=broadcast,
                renderer=MessageRenderer(MessageConfig.from_settings(settings.message)),
                channel_id=settings.telegram.channel_id,
                key_validity=timedelta(hours=settings.schedule.key_validity_hours),
                call_timeout=settings.schedule.call_timeout_seconds,
            )
            yield service, store
    finally:
        await engine.dispose()


# Global shutdown event and its loop for signal handlers
_shutdown_event: asyncio.Event | None = None
_shutdown_loop: asyncio.AbstractEventLoop | None = None


def _handle_shutdown(signum: int, _frame: object) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None and _shutdown_loop is not None:
        # Set the event in a thread-safe manner
        _shutdown_loop.call_soon_threadsafe(_shutdown_event.set)


async def _async_main(settings: Settings, shutdown_event: asyncio.Event) -> int:
    """Async entry point for the worker.

    Args:
        settings: Application settings.
        shutdown_event: Event to signal shutdown request.

    Returns:
        Process exit code.
    """
    async with open_lifecycle(settings) as (service, store):
        try:
            servers = await store.list_eligible_servers()
        except RecordStoreError as e:
            logger.critical("Cannot load server inventory: %s", e)
            return 1

        if not servers:
            logger.critical("No eligible servers in inventory, refusing to start")
            return 1

        config = OrchestratorConfig.from_settings(settings)
        orchestrator = Orchestrator(service, servers, config)
        orchestrator_task = asyncio.create_task(orchestrator.start())
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        await asyncio.wait(
            {orchestrator_task, shutdown_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        shutdown_task.cancel()

        # Request graceful shutdown and let in-flight ticks finish
        await orchestrator.stop()
        try:
            await asyncio.wait_for(orchestrator_task, timeout=config.shutdown_timeout)
        except TimeoutError:
            logger.warning("Orchestrator did not stop within timeout, forcing shutdown")
            return 1

    return 0


def run() -> NoReturn:
    """Run the worker process.

    This is the main entry point for the worker. It:
    - Sets up logging
    - Loads and validates configuration
    - Applies migrations when auto_migrate is enabled
    - Registers signal handlers for graceful shutdown
    - Runs the orchestrator until a shutdown signal arrives
    """
    configure_logging("INFO")
    settings = get_settings()
    configure_logging(settings.log_level)

    if settings.database.auto_migrate:
        try:
            upgrade_to_head(str(settings.database.url))
        except Exception as e:
            logger.critical("Database migration failed: %s", e)
            sys.exit(1)

    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info("keycast worker starting: version=%s", settings.app_version)

    async def _run_with_event() -> int:
        """Create event loop context and run main."""
        global _shutdown_event, _shutdown_loop
        _shutdown_loop = asyncio.get_running_loop()
        _shutdown_event = asyncio.Event()
        return await _async_main(settings, _shutdown_event)

    try:
        exit_code = asyncio.run(_run_with_event())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
        exit_code = 0
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("keycast worker shutdown complete")
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
