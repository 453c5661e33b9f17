"""
FastAPI router module for business-metric anomalies.

Key Endpoints:
- POST /anomalies/detect                  - Test a value against its history
- GET  /anomalies/active                  - new / acknowledged / investigating
- GET  /anomalies/statistics              - Counts and rates over a window
- GET  /anomalies/{anomaly_id}            - One anomaly
- POST /anomalies/{anomaly_id}/acknowledge
- POST /anomalies/{anomaly_id}/investigate
- POST /anomalies/{anomaly_id}/notes
- POST /anomalies/{anomaly_id}/resolve
- POST /anomalies/{anomaly_id}/false-positive

Lifecycle moves that go backwards or leave a terminal status return 409.
Empty or non-finite series return 422.
"""

import logging
from datetime import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, HTTPException, Query

from risk_engine.core.dependencies import RiskEngineServiceDep
from risk_engine.core.exceptions import RiskEngineError
from risk_engine.models.schemas import (
    AcknowledgeRequest,
    AnomalyDetectionRequest,
    AnomalyRecord,
    AnomalyResolveRequest,
    AnomalyStatisticsReport,
    FalsePositiveRequest,
    InvestigationNoteCreate,
)


logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT: int = 50
MAX_LIST_LIMIT: int = 200

router = APIRouter()


def _engine_error(e: RiskEngineError) -> HTTPException:
    logger.warning(f"Anomaly request rejected ({e.status_code}): {e.message}")
    return HTTPException(status_code=e.status_code, detail=e.message)


# =============================================================================
# Detection
# =============================================================================


@router.post("/detect", response_model=dict)
async def detect_anomaly(request: AnomalyDetectionRequest, service: RiskEngineServiceDep) -> dict:
    """
    Run the requested detection method and store the anomaly when found.

    Example Response:
        {"isAnomaly": true, "anomaly": {"id": "...", "severity": "high", ...}}
        {"isAnomaly": false, "anomaly": null}
    """
    try:
        record = await service.detect_anomaly(request)
        return {"isAnomaly": record is not None, "anomaly": record}
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error detecting anomaly in {request.metricName}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to run anomaly detection")


@router.get("/active", response_model=List[AnomalyRecord])
async def list_active_anomalies(
    service: RiskEngineServiceDep,
    limit: Annotated[int, Query(ge=1, le=MAX_LIST_LIMIT)] = DEFAULT_LIST_LIMIT,
) -> List[AnomalyRecord]:
    try:
        return await service.list_active_anomalies(limit)
    except Exception as e:
        logger.error(f"Error listing active anomalies: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list anomalies")


@router.get("/statistics", response_model=AnomalyStatisticsReport)
async def get_anomaly_statistics(
    service: RiskEngineServiceDep,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> AnomalyStatisticsReport:
    try:
        return await service.get_anomaly_statistics(start, end)
    except Exception as e:
        logger.error(f"Error computing anomaly statistics: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to compute anomaly statistics")


@router.get("/{anomaly_id}", response_model=AnomalyRecord)
async def get_anomaly(anomaly_id: str, service: RiskEngineServiceDep) -> AnomalyRecord:
    try:
        return await service.get_anomaly(anomaly_id)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error fetching anomaly {anomaly_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch anomaly")


# =============================================================================
# Lifecycle
# =============================================================================


@router.post("/{anomaly_id}/acknowledge", response_model=AnomalyRecord)
async def acknowledge_anomaly(
    anomaly_id: str,
    request: AcknowledgeRequest,
    service: RiskEngineServiceDep,
) -> AnomalyRecord:
    try:
        return await service.acknowledge_anomaly(anomaly_id, request.userId)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error acknowledging anomaly {anomaly_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to acknowledge anomaly")


@router.post("/{anomaly_id}/investigate", response_model=AnomalyRecord)
async def investigate_anomaly(anomaly_id: str, service: RiskEngineServiceDep) -> AnomalyRecord:
    try:
        return await service.investigate_anomaly(anomaly_id)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error starting investigation of {anomaly_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to start investigation")


@router.post("/{anomaly_id}/notes", response_model=AnomalyRecord)
async def add_anomaly_note(
    anomaly_id: str,
    request: InvestigationNoteCreate,
    service: RiskEngineServiceDep,
) -> AnomalyRecord:
    try:
        return await service.add_anomaly_note(anomaly_id, request.note, request.addedBy)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error adding note to {anomaly_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to add note")


@router.post("/{anomaly_id}/resolve", response_model=AnomalyRecord)
async def resolve_anomaly(
    anomaly_id: str,
    request: AnomalyResolveRequest,
    service: RiskEngineServiceDep,
) -> AnomalyRecord:
    try:
        return await service.resolve_anomaly(anomaly_id, request.resolution, request.rootCause, request.resolvedBy)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error resolving anomaly {anomaly_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to resolve anomaly")


@router.post("/{anomaly_id}/false-positive", response_model=AnomalyRecord)
async def mark_false_positive(
    anomaly_id: str,
    request: FalsePositiveRequest,
    service: RiskEngineServiceDep,
) -> AnomalyRecord:
    try:
        return await service.mark_false_positive(anomaly_id, request.reason)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error marking {anomaly_id} as false positive: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to mark anomaly as false positive")
