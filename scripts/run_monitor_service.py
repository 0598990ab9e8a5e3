import asyncio
import signal
from service.uptime_service import UptimeMonitorService
from fiber.logging_utils import get_logger

logger = get_logger(__name__)


async def main():
    service = UptimeMonitorService()
    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"🛑 Received signal {signum}, stopping monitor loop and API server...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info(
            f"🚀 Starting uptime monitor on port {service.config.SERVICE_PORT} "
            f"against {service.config.CHAIN_RPC_URL}..."
        )
        await service.start()

        # Exit on a signal or when uvicorn stops on its own
        shutdown_wait = asyncio.create_task(shutdown_event.wait())
        await asyncio.wait(
            [shutdown_wait, service.server_task], return_when=asyncio.FIRST_COMPLETED
        )
        shutdown_wait.cancel()

    except Exception as e:
        logger.error(f"❌ Error during monitor operation: {e}")
        shutdown_event.set()
    finally:
        logger.info("🛑 Shutting down uptime monitor...")
        try:
            await service.stop()
            logger.info("✅ Uptime monitor shutdown complete")
        except Exception as e:
            logger.error(f"❌ Error during shutdown: {e}")


if __name__ == "__main__":
    asyncio.run(main())
