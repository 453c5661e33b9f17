"""
Risk engine API package initialization.

This package contains FastAPI router modules for the risk engine:
- churn: Churn risk assessments, outcomes, retention efforts, reports
- anomalies: Anomaly detection, lifecycle and statistics
"""

from fastapi import APIRouter

from risk_engine.api.churn import router as churn_router
from risk_engine.api.anomalies import router as anomalies_router

# Create main API router
api_router = APIRouter()

api_router.include_router(churn_router, prefix="/churn", tags=["churn"])
api_router.include_router(anomalies_router, prefix="/anomalies", tags=["anomalies"])

__all__ = [
    "api_router",
    "churn_router",
    "anomalies_router",
]
