"""
FastAPI router module for churn risk assessments.

Thin HTTP wrapper over RiskEngineService. All scoring happens in the service
layer; this module only maps requests to service calls and engine errors to
HTTP status codes.

Key Endpoints:
- GET  /churn/entities/{entity_id}            - Assessment for one entity (7-day cache)
- GET  /churn/entities/{entity_id}/history    - Past assessments with score trend
- POST /churn/batch                           - Assess many entities
- GET  /churn/at-risk                         - Latest High/Critical assessments
- GET  /churn/dashboard                       - Summary over a window
- GET  /churn/accuracy                        - Confusion matrix over a window
- GET  /churn/assessments/{assessment_id}     - Stored assessment by id
- POST /churn/assessments/{assessment_id}/outcome            - Record ground truth
- POST /churn/assessments/{assessment_id}/retention-efforts  - Log an effort

Error mapping:
- EntityNotFoundError / AssessmentNotFoundError -> 404
- InsufficientDataError / InvalidNumericInputError -> 422
- Anything unexpected -> logged with traceback, 500
"""

import logging
from datetime import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, HTTPException, Query

from risk_engine.core.dependencies import RiskEngineServiceDep
from risk_engine.core.exceptions import RiskEngineError
from risk_engine.models.enums import RiskLevel
from risk_engine.models.schemas import (
    AccuracyDelta,
    AccuracyReport,
    BatchAssessmentRequest,
    BatchAssessmentResult,
    ChurnDashboard,
    ChurnOutcome,
    EntityRiskHistory,
    RetentionEffortCreate,
    RiskAssessment,
)


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT: int = 50
MAX_LIST_LIMIT: int = 200
MAX_BATCH_SIZE: int = 500


# =============================================================================
# Router Definition
# =============================================================================

router = APIRouter()


def _engine_error(e: RiskEngineError) -> HTTPException:
    if e.status_code >= 500:
        logger.error(f"Engine error: {e.message}", exc_info=True)
    else:
        logger.warning(f"Request rejected ({e.status_code}): {e.message}")
    return HTTPException(status_code=e.status_code, detail=e.message)


# =============================================================================
# Entity Assessments
# =============================================================================


@router.get("/entities/{entity_id}", response_model=dict)
async def get_churn_assessment(
    entity_id: str,
    service: RiskEngineServiceDep,
    refresh: Annotated[bool, Query(description="Ignore a cached assessment")] = False,
) -> dict:
    """
    Return the churn assessment for an entity, computing one when no
    assessment exists inside the cache window.

    Example Response:
        {
            "cached": false,
            "assessment": {"id": "...", "score": 82, "level": "Critical", ...}
        }
    """
    try:
        assessment, cached = await service.compute_risk_assessment(entity_id, force_refresh=refresh)
        return {"cached": cached, "assessment": assessment}
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error computing assessment for {entity_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to compute churn assessment")


@router.get("/entities/{entity_id}/history", response_model=EntityRiskHistory)
async def get_entity_history(
    entity_id: str,
    service: RiskEngineServiceDep,
    limit: Annotated[int, Query(ge=1, le=MAX_LIST_LIMIT)] = 10,
) -> EntityRiskHistory:
    try:
        return await service.get_entity_history(entity_id, limit)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error fetching history for {entity_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch assessment history")


@router.post("/batch", response_model=BatchAssessmentResult)
async def batch_assess(
    request: BatchAssessmentRequest,
    service: RiskEngineServiceDep,
) -> BatchAssessmentResult:
    """
    Assess a list of entities. Per-entity failures are reported in `errors`
    and never fail the whole request.
    """
    if not request.entityIds:
        raise HTTPException(status_code=400, detail="entityIds must not be empty")

    if len(request.entityIds) > MAX_BATCH_SIZE:
        raise HTTPException(status_code=400, detail=f"At most {MAX_BATCH_SIZE} entities per batch")

    try:
        return await service.batch_compute(request.entityIds, request.riskLevelFilter)
    except Exception as e:
        logger.error(f"Error running batch assessment: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to run batch assessment")


# =============================================================================
# Listings & Reports
# =============================================================================


@router.get("/at-risk", response_model=List[RiskAssessment])
async def get_entities_at_risk(
    service: RiskEngineServiceDep,
    level: Annotated[Optional[RiskLevel], Query(description="Defaults to High and Critical")] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIST_LIMIT)] = DEFAULT_LIST_LIMIT,
) -> List[RiskAssessment]:
    try:
        return await service.get_entities_at_risk(level, limit)
    except Exception as e:
        logger.error(f"Error listing at-risk entities: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list at-risk entities")


@router.get("/dashboard", response_model=ChurnDashboard)
async def get_dashboard(
    service: RiskEngineServiceDep,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> ChurnDashboard:
    try:
        return await service.get_dashboard(start, end)
    except Exception as e:
        logger.error(f"Error building churn dashboard: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to build churn dashboard")


@router.get("/accuracy", response_model=AccuracyReport)
async def get_model_accuracy(
    service: RiskEngineServiceDep,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> AccuracyReport:
    try:
        return await service.get_model_accuracy(start, end)
    except Exception as e:
        logger.error(f"Error computing model accuracy: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to compute model accuracy")


# =============================================================================
# Stored Assessments
# =============================================================================


@router.get("/assessments/{assessment_id}", response_model=RiskAssessment)
async def get_assessment(assessment_id: str, service: RiskEngineServiceDep) -> RiskAssessment:
    try:
        return await service.get_assessment(assessment_id)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error fetching assessment {assessment_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch assessment")


@router.post("/assessments/{assessment_id}/outcome", response_model=AccuracyDelta)
async def record_outcome(
    assessment_id: str,
    outcome: ChurnOutcome,
    service: RiskEngineServiceDep,
) -> AccuracyDelta:
    """
    Record whether the entity actually churned.

    Returns the model accuracy before and after this outcome is counted.
    """
    try:
        return await service.record_outcome(assessment_id, outcome)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error recording outcome for {assessment_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record outcome")


@router.post("/assessments/{assessment_id}/retention-efforts", response_model=RiskAssessment)
async def add_retention_effort(
    assessment_id: str,
    effort: RetentionEffortCreate,
    service: RiskEngineServiceDep,
) -> RiskAssessment:
    try:
        return await service.add_retention_effort(assessment_id, effort)
    except RiskEngineError as e:
        raise _engine_error(e)
    except Exception as e:
        logger.error(f"Error logging retention effort for {assessment_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to log retention effort")
