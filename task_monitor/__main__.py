"""
Run the retention scheduler as a standalone process.

Usage:
    python -m task_monitor
"""
import asyncio
import logging
import signal

from task_monitor.core.config import settings
from task_monitor.core.logging_config import configure_logging
from task_monitor.main import ServiceContainer

logger = logging.getLogger(__name__)


async def run() -> None:
    container = ServiceContainer.from_settings(settings)
    await container.startup()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on Windows event loops
            logger.debug(f"Cannot install handler for {sig.name}")

    if not container.retention_scheduler.running:
        logger.info("Retention scheduler is not running; nothing to do")
        stop_event.set()

    try:
        await stop_event.wait()
    finally:
        await container.shutdown()


if __name__ == "__main__":
    configure_logging(settings)
    asyncio.run(run())
