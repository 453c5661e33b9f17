"""
FastAPI application entry point for the Practice Risk Engine API.

Configures logging, manages the database pool lifecycle and mounts the churn
and anomaly routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from risk_engine import __version__
from risk_engine.api import api_router
from risk_engine.core.database import init_db, close_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown.

    On startup the connection pool is created; pure endpoints such as
    anomaly detection still work when the database is unavailable, so a
    failure is logged rather than raised.
    """
    logger.info("Practice Risk Engine API starting")
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")

    yield

    logger.info("Practice Risk Engine API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Practice Risk Engine API",
    version=__version__,
    description=(
        "Churn risk scoring and business-metric anomaly detection. "
        "Provides endpoints for assessments, outcome validation, retention "
        "efforts, anomaly lifecycle and reports."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Practice Risk Engine API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "risk_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
