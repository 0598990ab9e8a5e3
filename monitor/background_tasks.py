import asyncio
from fiber.logging_utils import get_logger

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from service.uptime_service import UptimeMonitorService

logger = get_logger(__name__)


class BackgroundTasks:
    def __init__(self, service: "UptimeMonitorService"):
        """
        Initialize the BackgroundTasks with the service they drive.

        :param service: The monitor service whose cycles the loop triggers.
        """
        self.service = service

    async def monitor_loop(self, cadence_seconds) -> None:
        """Background task to run one monitor cycle per cadence"""
        if cadence_seconds <= 0:
            cadence_seconds = 60
            logger.warning("Invalid monitor cadence, using default: 60 seconds")

        while True:
            try:
                summary = await self.service.run_monitor_cycle()
                if not summary.success:
                    logger.warning(f"Monitor cycle did not complete: {summary.message}")
                await asyncio.sleep(cadence_seconds)
            except asyncio.CancelledError:
                logger.info("Monitor loop cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in monitor loop: {str(e)}")
                retry_delay = max(30, cadence_seconds / 2)
                await asyncio.sleep(retry_delay)
