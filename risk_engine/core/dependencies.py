"""
FastAPI dependency injection module for the Practice Risk Engine.

Routers never build services or read configuration themselves; they receive
them through the dependencies below, which tests and alternative deployments
can replace with app.dependency_overrides.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- get_risk_engine_service: Returns the RiskEngineService wired to the
  PostgreSQL repository
- RiskEngineServiceDep: Annotated alias for endpoints

Usage Examples:
    @router.get("/churn/{entity_id}")
    async def get_churn_assessment(
        entity_id: str,
        service: RiskEngineServiceDep,
    ) -> RiskAssessment:
        assessment, _ = await service.compute_risk_assessment(entity_id)
        return assessment

    # In tests
    app.dependency_overrides[get_risk_engine_service] = lambda: RiskEngineService(repository=fake_repo)
"""

from typing import Annotated

from fastapi import Depends

from risk_engine.core.config import Settings, get_settings
from risk_engine.services.assessment_service import RiskEngineService


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so FastAPI's dependency override
    mechanism can swap configuration in tests.
    """
    return get_settings()


# =============================================================================
# Service Dependency
# =============================================================================

def get_risk_engine_service(
    settings: Annotated[Settings, Depends(get_settings_dependency)],
) -> RiskEngineService:
    """
    Build the engine service for a request.

    The service is cheap to construct; the connection pool and the scoring
    configuration are process-wide singletons underneath it.
    """
    return RiskEngineService(settings=settings)


# =============================================================================
# Type Alias for Dependency Injection
# =============================================================================

# Usage: async def endpoint(service: RiskEngineServiceDep)
RiskEngineServiceDep = Annotated[RiskEngineService, Depends(get_risk_engine_service)]
