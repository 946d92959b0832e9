"""
Canonical Catalog Backend
FastAPI application: catalog search, canonical product detail and supplier bundles
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env", override=False)

from database import init_db, get_session, check_db_health
from dependencies import init_catalog_state
from exceptions import CatalogError
from observability import setup_logging, metrics_registry
from observability.middleware import ObservabilityMiddleware
from observability.sentry_config import capture_exception, init_sentry
from routes.catalog import router as catalog_router

setup_logging()
init_sentry()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    init_catalog_state(app.state)
    logger.info(
        f"[Startup] Catalog ready (remote configured: {app.state.ssactivewear_client.config.is_configured})"
    )
    yield
    app.state.catalog_cache.close()
    logger.info("[Shutdown] Catalog cache closed")


app = FastAPI(
    title="Canonical Catalog Backend",
    description="Canonical product identity, ranked search and supplier aggregation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(catalog_router)


class HealthResponse(BaseModel):
    status: str
    version: str


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
        capture_exception(exc, tags={"path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return {
        "status": "healthy",
        "version": "0.1.0",
    }


@app.get("/health/ready")
async def readiness_check(session: AsyncSession = Depends(get_session)):
    """Readiness check. Returns 503 when the database is unavailable."""
    checks = {}
    try:
        await session.exec(select(1))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:100]}"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "degraded",
            "checks": checks,
            "pool": await check_db_health(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)
