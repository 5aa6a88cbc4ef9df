import asyncio
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import CORS_ALLOWED_ORIGINS, EXPIRY_SWEEP_SECONDS
from database import make_engine
from logger import get_logger
from routers import dataset_router, upload_router
from services.errors import IngestionError
from services.image_url_service import Fetcher, fetch_image
from services.lifecycle_service import expire_overdue
from services.record_store import RecordStore, SqlRecordStore
from services.staging_store import StagingStore, build_staging_store

logger = get_logger("chunk_ingest")


async def _sweep_expired(app: FastAPI, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(expire_overdue, app.state.record_store)
        except Exception:
            logger.exception("Expiry sweep failed")


def create_app(
    staging_store: Optional[StagingStore] = None,
    record_store: Optional[RecordStore] = None,
    image_fetcher: Fetcher = fetch_image,
    sweep_interval: float = EXPIRY_SWEEP_SECONDS,
) -> FastAPI:
    app = FastAPI(
        title="Chunked Dataset Ingestion API",
        description="Chunked uploads of datasets and images with bounded, inspectable previews.",
        version="0.1.0",
    )
    app.state.staging_store = staging_store
    app.state.record_store = record_store
    app.state.image_fetcher = image_fetcher
    app.state.sweeper = None

    @app.on_event("startup")
    async def on_startup():
        if app.state.staging_store is None:
            app.state.staging_store = build_staging_store()
        if app.state.record_store is None:
            logger.info("Initializing database...")
            store = SqlRecordStore(make_engine())
            store.create_schema()
            app.state.record_store = store
            logger.info("Database initialized.")
        if sweep_interval > 0:
            app.state.sweeper = asyncio.create_task(_sweep_expired(app, sweep_interval))

    @app.on_event("shutdown")
    async def on_shutdown():
        if app.state.sweeper is not None:
            app.state.sweeper.cancel()

    @app.exception_handler(IngestionError)
    async def ingestion_error_handler(request: Request, exc: IngestionError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, **exc.extra})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(upload_router.router)
    app.include_router(dataset_router.router)

    @app.get("/")
    async def root():
        return {"message": "Chunked ingestion API is running"}

    return app


app = create_app()
