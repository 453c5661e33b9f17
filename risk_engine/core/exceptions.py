"""
Engine error hierarchy.

Every error raised by the scoring, detection and validation services derives
from RiskEngineError so the API layer can translate them into HTTP responses
in one place. Divide-by-zero situations (zero std-dev, zero previous value,
zero category weight) are handled locally and never raise.
"""

from typing import Optional


class RiskEngineError(Exception):
    """Base class for all engine errors."""

    status_code: int = 500

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id


class EntityNotFoundError(RiskEngineError):
    """Unknown entity id. Surfaced to the caller, never retried."""

    status_code = 404


class InsufficientDataError(RiskEngineError):
    """The entity has no historical events to extract features from."""

    status_code = 422


class InvalidNumericInputError(RiskEngineError):
    """NaN, infinite, negative or otherwise malformed numeric input."""

    status_code = 422


class AssessmentNotFoundError(RiskEngineError):
    status_code = 404


class AnomalyNotFoundError(RiskEngineError):
    status_code = 404


class InvalidStatusTransitionError(RiskEngineError):
    """An anomaly status change that would move backwards or leave a terminal state."""

    status_code = 409
