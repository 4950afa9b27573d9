"""Standalone workflow event consumer process.

    python -m flowrelay.worker

Runs until SIGINT/SIGTERM, then stops the consumer and disconnects the
broker before exiting.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from dotenv import load_dotenv

from .config import Settings, get_settings
from .events import BrokerClient, WorkflowEventConsumer
from .log import configure_logging

logger = logging.getLogger(__name__)


async def run_worker(settings: Settings, stop_event: asyncio.Event | None = None) -> None:
    stop_event = stop_event or asyncio.Event()
    broker = BrokerClient(settings) if settings.broker_enabled else None
    consumer = WorkflowEventConsumer(broker, heartbeat_interval=settings.consumer_heartbeat_seconds)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass  # no signal support on this platform / thread

    await consumer.start()
    try:
        await stop_event.wait()
        logger.info("Shutting down workflow event consumer")
    finally:
        await consumer.stop()
        if broker is not None:
            await broker.disconnect()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def main() -> None:
    load_dotenv()
    settings = get_settings()
    configure_logging(settings.log_level)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
