"""Run processing workers: python -m assetvault.workers"""
import asyncio
import logging
import signal

from assetvault.infra.s3_storage import S3StorageAdapter
from assetvault.lib.config import settings
from assetvault.lib.database import create_engine, create_session_factory
from assetvault.lib.logging_config import configure_logging
from assetvault.services.storage_service import StorageService
from assetvault.workers.media import MediaProcessor
from assetvault.workers.pool import WorkerPool

logger = logging.getLogger("assetvault.workers")


async def main() -> None:
    configure_logging(settings.log_level)

    engine = create_engine(settings.database_url)
    storage = StorageService(S3StorageAdapter(settings), settings)
    pool = WorkerPool(
        create_session_factory(engine),
        storage=storage,
        settings=settings,
        media=MediaProcessor(),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pool.stop)

    try:
        await pool.run()
    finally:
        await engine.dispose()
        logger.info("Workers shut down")


if __name__ == "__main__":
    asyncio.run(main())
