from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assetvault.lib.config import Settings, settings as default_settings
from assetvault.lib.database import create_engine, create_session_factory
from assetvault.lib.errors import AssetServiceError
from assetvault.lib.logging_config import configure_logging
from assetvault.features.health.routes import router as health_router
from assetvault.features.assets.routes import router as assets_router
from assetvault.features.jobs.routes import router as jobs_router
from assetvault.services.storage_service import StorageService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[StorageService] = None,
) -> FastAPI:
    """
    Build the API app.

    The engine, session factory and storage gateway are created at startup
    and kept on app.state; tests pass their own settings and storage.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        engine = create_engine(settings.database_url)
        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
        if storage is not None:
            app.state.storage = storage
        else:
            from assetvault.infra.s3_storage import S3StorageAdapter
            app.state.storage = StorageService(S3StorageAdapter(settings), settings)
        logger.info("Asset Vault API started")
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title="Asset Vault API",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AssetServiceError)
    async def asset_service_error_handler(request: Request, exc: AssetServiceError):
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    app.include_router(health_router, prefix="/api", tags=["Health"])
    app.include_router(assets_router, prefix="/api", tags=["Assets"])
    app.include_router(jobs_router, prefix="/api", tags=["Jobs"])

    @app.get("/")
    async def root():
        return {"message": "Asset Vault API", "docs": "/docs"}

    return app


app = create_app()
