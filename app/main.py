from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import sync_engine, Base

# Import audit sinks
from app.common.audit import register_sink, unregister_sink, log_sink
from app.modules.logs.tasks import celery_sink

# Import routers
from app.modules.suppliers.router import suppliers_router
from app.modules.products.router import product_router
from app.modules.purchases.router import purchases_router
from app.modules.taxes.router import taxes_router, purchase_taxes_router
from app.modules.payables.router import payables_router
from app.modules.payments.router import payments_router
from app.modules.inventory.router import stock_router, movements_router

# Import models for table creation
import app.modules.logs.models
import app.modules.suppliers.models
import app.modules.products.models
import app.modules.purchases.models
import app.modules.taxes.models
import app.modules.payables.models
import app.modules.payments.models
import app.modules.inventory.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def audit_sink():
    return celery_sink if settings.AUDIT_ASYNC else log_sink


# FastAPI app
app = FastAPI(
    title="Compras360 API",
    description="Compras, stock y cuentas por pagar a proveedores",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

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
app.include_router(suppliers_router)
app.include_router(product_router)
app.include_router(purchases_router)
app.include_router(purchase_taxes_router)
app.include_router(taxes_router)
app.include_router(payables_router)
app.include_router(payments_router)
app.include_router(movements_router)
app.include_router(stock_router)

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def read_root():
    return {
        "message": "Compras360 API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Compras360 API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    register_sink(audit_sink())
    if settings.AUDIT_ASYNC:
        logger.info("Auditoría enviada a la cola de Celery")


@app.on_event("shutdown")
async def shutdown_event():
    unregister_sink(audit_sink())
    logger.info("Compras360 API shutting down...")
