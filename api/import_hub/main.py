# import_hub/main.py
# Import Hub - landed cost & weighted-average stock for importations
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm.exc import StaleDataError

from import_hub.settings import settings
from import_hub.database import init_db, close_db, check_db_health
from import_hub.routers.shipments import router as shipments_router
from import_hub.routers.products import router as products_router
from import_hub.routers.suppliers import router as suppliers_router
from import_hub.routers.tax_config import router as tax_config_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from import_hub.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    logger.info("Database connected")
    yield
    await close_db()
    logger.info("Database disconnected")

# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Import Hub API",
    version=VERSION,
    description="Importations: landed cost allocation and weighted-average stock costing",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(shipments_router)
app.include_router(products_router)
app.include_router(suppliers_router)
app.include_router(tax_config_router)

# ---------------------------------------------------------
# Lost optimistic-concurrency race (may surface at commit, after the handler)
# ---------------------------------------------------------
@app.exception_handler(StaleDataError)
async def _stale(request: Request, exc: StaleDataError):
    logger.warning(f"Concurrent update rejected on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": "Record was modified concurrently, retry the request"})

# ---------------------------------------------------------
# Endpoints
# ---------------------------------------------------------
@app.get("/health")
async def health():
    """Health check endpoint with database status."""
    result = {
        "status": "ok",
        "version": VERSION,
        "local_currency": settings.LOCAL_CURRENCY,
        "foreign_currency": settings.FOREIGN_CURRENCY,
    }
    db_health = await check_db_health()
    result["database"] = db_health
    if db_health.get("status") != "healthy":
        result["status"] = "degraded"
    return result
