import asyncio
import logging
import signal

from docpersist.core.config import settings
from docpersist.core.db import init_models, engine as db_engine
from docpersist.core.factory import build_cache, build_queue, build_snapshot_service, build_worker
from docpersist.core.logging import configure_logging
from docpersist.infrastructure.sync.engine import PycrdtSyncEngine

logger = logging.getLogger(__name__)


async def run() -> None:
    """Запуск пула обработчиков до получения SIGINT/SIGTERM"""
    await init_models()
    cache = build_cache(settings)
    queue = build_queue(settings)
    service = build_snapshot_service(settings, PycrdtSyncEngine(), cache)
    worker = build_worker(settings, queue, service)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await worker.start()
    try:
        await stop.wait()
        logger.info("Shutdown signal received, closing worker...")
    finally:
        await worker.stop()
        await queue.close()
        await cache.close()
        await db_engine.dispose()


def main() -> None:
    configure_logging(settings.log_level)
    asyncio.run(run())


if __name__ == "__main__":
    main()
