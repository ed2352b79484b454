from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from invoice_sync.database.database import sync_engine, Base

# Import routers
from invoice_sync.modules.sales.router import router as sales_router
from invoice_sync.modules.integrations.registry import load_integrations_from_settings

# Import models for table creation
import invoice_sync.modules.sales.models

from invoice_sync.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Invoice Sync API",
    description="Đồng bộ đơn hàng bán lẻ sang Fast (salesOrder / salesInvoice / salesReturn)",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sales_router)


@app.get("/")
async def read_root():
    return {
        "message": "Invoice Sync API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Invoice Sync API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Allowed order types: {settings.ALLOWED_ORDER_TYPES}")

    # Create database tables (only for development - use migrations in production)
    if settings.ENVIRONMENT == "development":
        Base.metadata.create_all(bind=sync_engine)

    load_integrations_from_settings()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Invoice Sync API shutting down...")
