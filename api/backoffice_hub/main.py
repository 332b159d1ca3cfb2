# backoffice_hub/main.py
# Backoffice Hub - purchase orders, expiry batches, inventory receiving
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice_hub.settings import settings
from backoffice_hub.database import init_db, close_db, check_db_health
from backoffice_hub.routers.purchase_orders import router as purchase_orders_router
from backoffice_hub.routers.expiry import router as expiry_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from backoffice_hub.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    logger.info("Database ready")
    yield
    await close_db()
    logger.info("Database closed")

# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Backoffice Hub API",
    version="1.0.0",
    description="Purchase orders, expiry batch ledger and stock receiving",
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
    expose_headers=["Content-Disposition"],
)

app.include_router(purchase_orders_router)
app.include_router(expiry_router)


@app.get("/health")
async def health():
    return await check_db_health()
