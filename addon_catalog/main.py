import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from addon_catalog import database
from addon_catalog.metrics import metrics
from addon_catalog.migrations import run_startup_migrations
from addon_catalog.routes_packages import get_content_store, icons_router, router as packages_router
from addon_catalog.settings import settings

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Addon Catalog",
    version="1.0.0",
    description="Add-on package ingestion, storage and download accounting",
    openapi_tags=[
        {"name": "packages", "description": "Upload, update, delete and download add-on packages"},
    ],
)


# Global JSON fallback so crashes never return an empty body
@app.exception_handler(Exception)
async def unhandled(request: Request, exc: Exception):
    logger.exception("UNHANDLED %s %s", request.method, request.url.path)
    return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=500)


app.include_router(packages_router)
app.include_router(icons_router)


@app.on_event("startup")
async def startup():
    """Prepare storage directories, migrate the schema and seed categories"""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if database.engine is None:
        database.init_engine()

    get_content_store().initialize()
    report = await run_startup_migrations(database.engine)
    logger.info(
        "Startup complete: schema %s, %d categories seeded, data %s",
        report.schema_applied or "up to date",
        report.categories_seeded,
        report.data_applied or "up to date",
    )


@app.on_event("shutdown")
async def shutdown():
    await database.dispose_engine()


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics-lite")
async def get_metrics():
    """Simple metrics endpoint for monitoring"""
    return metrics.get_metrics()
