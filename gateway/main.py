import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from module_service.crud import purge_stale_temporary_files
from module_service.routes import build_router as build_module_router
from quiz_service.routes import build_router as build_quiz_router
from shared.config import Settings, settings as default_settings
from shared.database import Base, make_engine, make_session_factory, utcnow
from shared.errors import register_error_handlers
from . import middleware
from .proxy import build_auth_router

import quiz_service.models  # noqa: F401  (registers quiz and module tables)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("gateway")

SERVICE_NAME = "Learning Hub API"
VERSION = "1.0.0"


def purge_once(SessionLocal, settings: Settings) -> int:
    cutoff = utcnow() - timedelta(hours=settings.temp_file_ttl_hours)
    db = SessionLocal()
    try:
        return purge_stale_temporary_files(db, cutoff, settings.upload_dir)
    finally:
        db.close()


async def _purge_loop(SessionLocal, settings: Settings) -> None:
    while True:
        await asyncio.sleep(settings.temp_file_purge_interval)
        try:
            purge_once(SessionLocal, settings)
        except Exception:
            logger.exception("Temporary file purge failed")


def create_app(settings: Settings | None = None, SessionLocal=None) -> FastAPI:
    settings = settings or default_settings
    if SessionLocal is None:
        SessionLocal = make_session_factory(make_engine(settings.database_url))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=SessionLocal.kw["bind"])
        os.makedirs(settings.upload_dir, exist_ok=True)
        purge_once(SessionLocal, settings)
        task = asyncio.create_task(_purge_loop(SessionLocal, settings))
        try:
            yield
        finally:
            task.cancel()

    app = FastAPI(title=SERVICE_NAME, version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.SessionLocal = SessionLocal

    # CORS stays outermost: auth rejections carry CORS headers too
    app.middleware("http")(middleware.auth_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.get("/health", operation_id="health_check", tags=["Health"])
    async def health_check():
        return {"status": "healthy", "service": "learning-hub"}

    @app.get("/", operation_id="root", tags=["Root"])
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    app.include_router(build_auth_router(settings), prefix="/api")
    app.include_router(build_module_router(SessionLocal, settings), prefix="/api")
    app.include_router(build_quiz_router(SessionLocal, settings), prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=default_settings.port)
