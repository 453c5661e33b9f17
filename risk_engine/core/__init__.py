"""
Core infrastructure package for the Practice Risk Engine.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg
- The engine error hierarchy

This module re-exports key components from submodules for convenient
importing:

    from risk_engine.core import get_settings, get_db_pool, RiskEngineError

FastAPI dependencies live in risk_engine.core.dependencies and are not
re-exported here, since they import the service layer.

Components Re-exported:
    Settings: Pydantic settings class with all configuration parameters
    get_settings: Function returning the cached Settings singleton
    init_db / close_db / get_db_pool: Connection pool lifecycle
    RiskEngineError and subclasses: Engine errors with HTTP status codes
"""

# =============================================================================
# Re-exports from risk_engine.core.config
# =============================================================================
from risk_engine.core.config import Settings, get_settings

# =============================================================================
# Re-exports from risk_engine.core.database
# =============================================================================
from risk_engine.core.database import init_db, close_db, get_db_pool

# =============================================================================
# Re-exports from risk_engine.core.exceptions
# =============================================================================
from risk_engine.core.exceptions import (
    RiskEngineError,
    EntityNotFoundError,
    InsufficientDataError,
    InvalidNumericInputError,
    AssessmentNotFoundError,
    AnomalyNotFoundError,
    InvalidStatusTransitionError,
)


__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Database pool lifecycle (from database.py)
    'init_db',
    'close_db',
    'get_db_pool',
    # Errors (from exceptions.py)
    'RiskEngineError',
    'EntityNotFoundError',
    'InsufficientDataError',
    'InvalidNumericInputError',
    'AssessmentNotFoundError',
    'AnomalyNotFoundError',
    'InvalidStatusTransitionError',
]
