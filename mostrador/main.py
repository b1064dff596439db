from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from mostrador.database.database import engine, Base

# Import middleware and error handlers
from mostrador.common.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from mostrador.core.exceptions import register_exception_handlers

# Import routers
from mostrador.modules.sales.router import sales_router, refunds_router
from mostrador.modules.pos.routers import cash_registers_router, cash_movements_router
from mostrador.modules.clients.router import clients_router
from mostrador.modules.inventory.router import inventory_router
from mostrador.modules.purchases.router import purchases_router

# Import models for table creation
import mostrador.modules.products.models
import mostrador.modules.clients.models
import mostrador.modules.pos.models
import mostrador.modules.sales.models
import mostrador.modules.purchases.models

from mostrador.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Mostrador API",
    description="Núcleo transaccional de punto de venta: ventas, devoluciones, caja, inventario y cuenta corriente",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestContextMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(sales_router, prefix="/api/v1")
app.include_router(refunds_router, prefix="/api/v1")
app.include_router(cash_registers_router, prefix="/api/v1")
app.include_router(cash_movements_router, prefix="/api/v1")
app.include_router(clients_router, prefix="/api/v1")
app.include_router(inventory_router, prefix="/api/v1")
app.include_router(purchases_router, prefix="/api/v1")

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=engine)


@app.get("/")
async def read_root():
    return {
        "message": "Mostrador API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Mostrador API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Stock oversell policy: {settings.STOCK_OVERSELL_POLICY}")
    logger.info(f"Refund amount policy: {settings.REFUND_AMOUNT_POLICY}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Mostrador API shutting down...")
