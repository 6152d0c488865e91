import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from docpersist.api.router import api_router
from docpersist.core.config import settings
from docpersist.core.db import init_models, engine as db_engine
from docpersist.core.factory import (
    build_cache, build_queue, build_engine, build_snapshot_service, build_lifecycle_handler
)
from docpersist.core.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    await init_models()

    cache = build_cache(settings)
    queue = build_queue(settings) if settings.async_snapshots else None
    sync_engine = build_engine(settings, cache)
    service = build_snapshot_service(settings, sync_engine, cache)

    app.state.lifecycle = build_lifecycle_handler(settings, sync_engine, service, queue)
    logger.info(
        f"Persistence started: redis={settings.redis_url}, "
        f"mode={'queued' if settings.async_snapshots else 'direct'}, "
        f"snapshot interval={settings.snapshot_interval_ms}ms"
    )

    try:
        yield
    finally:
        app.state.lifecycle.registry.release_all()
        if queue is not None:
            await queue.close()
        await cache.close()
        await db_engine.dispose()


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="DocPersist",
        description="Сохранение состояния совместно редактируемых документов",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None
    )
    app.include_router(api_router)
    return app


app = create_app()
