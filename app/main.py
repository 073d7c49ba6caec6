"""Main FastAPI application."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.cron import routes as cron_routes
from app.middleware import setup_rate_limiting
from app.sync import routes as sync_routes
from app.webhooks import routes as webhook_routes
from app.xero import routes as xero_routes

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await webhook_routes.webhook_queue.start()
    yield
    await webhook_routes.webhook_queue.stop()


# Create FastAPI app
app = FastAPI(
    title="Ninja Xero Sync API",
    description="Mirrors Invoice Ninja invoices, payments and clients into Xero",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)

# Include routers
app.include_router(xero_routes.router, prefix=f"{settings.API_V1_PREFIX}/xero", tags=["Xero"])
app.include_router(sync_routes.router, prefix=f"{settings.API_V1_PREFIX}/sync", tags=["Sync"])
app.include_router(webhook_routes.router, prefix=f"{settings.API_V1_PREFIX}/webhooks", tags=["Webhooks"])
app.include_router(cron_routes.router, prefix=f"{settings.API_V1_PREFIX}/cron", tags=["Cron"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Ninja Xero Sync API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
