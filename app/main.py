"""
FastAPI application entry point.
Initializes the FastAPI app, configures logging, and includes POS webhook routes.
"""

import structlog
from fastapi import FastAPI

from app.integrations.registry import normalizer_registry
from app.routers import pos_webhooks
from app.utils.logger import configure_logging

# Configure logging first
configure_logging()
logger = structlog.get_logger()

app = FastAPI(
    title="POS Meal Lifecycle Service",
    description="Ingests Toast, Square and Clover webhooks and drives reservation meal lifecycle",
    version="1.0.0",
)

app.include_router(pos_webhooks.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info("POS Meal Lifecycle Service started")

    loaded_vendors = normalizer_registry.list_available()
    logger.info(
        "POS normalizers loaded",
        vendors=loaded_vendors,
        count=len(loaded_vendors),
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event."""
    logger.info("POS Meal Lifecycle Service shutting down")
    await pos_webhooks.shutdown_pos_event_service()


@app.get("/")
async def root():
    """Root endpoint - also serves as a simple health check."""
    return {
        "status": "healthy",
        "service": "POS Meal Lifecycle Service",
        "version": "1.0.0",
        "vendors": normalizer_registry.list_available(),
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "vendors": normalizer_registry.list_available(),
    }


@app.get("/healthz")
async def healthz():
    """Alternative health check endpoint (Kubernetes-style)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
