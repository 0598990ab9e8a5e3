from dotenv import load_dotenv

import asyncio
import uvicorn
from datetime import datetime
from typing import Callable, Optional

from fiber.logging_utils import get_logger

from interfaces.protocols import ChainStatusProvider
from interfaces.types import utc_now
from monitor.api_routes import MonitorAPI
from monitor.background_tasks import BackgroundTasks
from monitor.chain_client import create_chain_client
from monitor.config import Config
from monitor.document_storage import DocumentStorage
from monitor.engine import CycleSummary, EpochMonitorEngine, MonitorCheckpoint
from monitor.phrase_store import PhraseStore
from monitor.views import ReadViews
from service import __version__

logger = get_logger(__name__)


class UptimeMonitorService:
    def __init__(
        self,
        config: Optional[Config] = None,
        storage: Optional[DocumentStorage] = None,
        chain: Optional[ChainStatusProvider] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the monitor service"""
        load_dotenv()

        self.config = config or Config()
        self.storage = storage or DocumentStorage(db_path=self.config.STORAGE_DB_PATH)
        self.phrase_store = PhraseStore(self.storage)
        self.chain = chain or create_chain_client(self.config)

        self.engine = EpochMonitorEngine(self.chain, self.phrase_store, clock=clock)
        self.views = ReadViews(self.phrase_store, self.chain, clock=clock)
        self.clock = clock

        # Reset on restart; the engine then takes the first-run path
        self.checkpoint = MonitorCheckpoint()
        self._cycle_lock = asyncio.Lock()

        self.background_tasks = BackgroundTasks(service=self)
        self.api = MonitorAPI(service=self)
        self.app = self.api.app

        self.server: Optional[uvicorn.Server] = None
        self.server_task: Optional[asyncio.Task] = None
        self.loop_task: Optional[asyncio.Task] = None

    async def run_monitor_cycle(self) -> CycleSummary:
        """Run one engine cycle unless another one is in progress."""
        if self._cycle_lock.locked():
            logger.warning("[run-monitor] Cycle already running, trigger skipped")
            return CycleSummary(
                success=False,
                timestamp=self.clock(),
                message="Monitor cycle already running",
            )

        async with self._cycle_lock:
            result = await self.engine.run_cycle(self.checkpoint)
            self.checkpoint = result.checkpoint
        return result.summary

    async def start(self) -> None:
        """Start the HTTP server and, when enabled, the monitor loop"""
        try:
            if self.config.MONITOR_LOOP_ENABLED:
                self.loop_task = asyncio.create_task(
                    self.background_tasks.monitor_loop(
                        self.config.MONITOR_CADENCE_SECONDS
                    )
                )
            else:
                logger.info("Monitor loop disabled, cycles run via /api/run-monitor")

            config = uvicorn.Config(
                self.app,
                host=self.config.SERVICE_HOST,
                port=self.config.SERVICE_PORT,
                lifespan="on",
            )
            self.server = uvicorn.Server(config)
            self.server_task = asyncio.create_task(self.server.serve())

        except Exception as e:
            logger.error(f"Failed to start monitor service: {str(e)}")
            raise

    async def stop(self) -> None:
        """Cleanup service resources and shutdown gracefully.

        Stops:
        - The monitor loop
        - The HTTP server
        - Chain and storage connections
        """
        if self.loop_task:
            self.loop_task.cancel()
            try:
                await self.loop_task
            except asyncio.CancelledError:
                pass
            self.loop_task = None

        if self.server:
            self.server.should_exit = True
        if self.server_task:
            await self.server_task
            self.server_task = None

        await self.chain.close()
        await self.storage.close()

    def healthcheck(self):
        try:
            return {
                "status": "ok",
                "version": __version__,
                "chain_backend": str(self.config.CHAIN_BACKEND),
                "storage_backend": (
                    "postgresql" if self.storage.postgres_enabled else "sqlite"
                ),
                "storage_connected": self.storage.check_status(),
                "monitor_loop_enabled": self.config.MONITOR_LOOP_ENABLED,
                "last_known_network_epoch": self.checkpoint.last_known_network_epoch,
                "last_known_phrase_number": self.checkpoint.last_known_phrase_number,
            }
        except Exception as e:
            logger.error(f"Failed to get service info: {str(e)}")
            return None
