"""
Risk Engine Services Module

Business logic for the Practice Risk Engine. The scoring components are pure
functions over snapshots; only the repository touches the database and only
RiskEngineService combines the two.

Services:
- feature_extraction: Event history -> frozen FeatureSet (pandas/numpy)
- risk_scoring: FeatureSet -> 0-100 churn score and risk level
- anomaly_detection: z-score / IQR / percentage-change tests and severity
- indicators: Red flags, protective factors, retention strategy, anomaly context
- outcome_validation: Prediction accuracy, confusion matrix, anomaly lifecycle
- scoring_config: Weights, ladders and thresholds as configuration
- repository: asyncpg persistence
- assessment_service: RiskEngineService (cache, batch, reports)

All services are designed to be consumed by the API layer (risk_engine/api/).
"""

# =============================================================================
# Feature Extraction
# =============================================================================

from risk_engine.services.feature_extraction import (
    extract_features,
    validate_history,
)

# =============================================================================
# Risk Scoring
# =============================================================================

from risk_engine.services.risk_scoring import (
    RiskScore,
    score_features,
    classify_risk_level,
    compute_confidence,
)

# =============================================================================
# Anomaly Detection
# =============================================================================

from risk_engine.services.anomaly_detection import (
    DetectionResult,
    detect_anomaly,
    detect_with_zscore,
    detect_with_iqr,
    detect_with_percentage_change,
    score_severity,
)

# =============================================================================
# Indicators & Recommendations
# =============================================================================

from risk_engine.services.indicators import (
    ANOMALY_CONTEXT,
    anomaly_context,
    generate_retention_strategy,
    identify_protective_factors,
    identify_red_flags,
)

# =============================================================================
# Outcome Validation
# =============================================================================

from risk_engine.services.outcome_validation import (
    apply_outcome,
    compute_accuracy_report,
    compute_anomaly_statistics,
    is_prediction_accurate,
)

# =============================================================================
# Configuration
# =============================================================================

from risk_engine.services.scoring_config import (
    AnomalyConfig,
    RiskModelConfig,
    get_anomaly_config,
    get_risk_model_config,
    load_anomaly_config,
    load_risk_model_config,
)

# =============================================================================
# Orchestration
# =============================================================================

from risk_engine.services.repository import AssessmentRepository
from risk_engine.services.assessment_service import RiskEngineService, build_risk_assessment


__all__ = [
    # Feature extraction
    "extract_features",
    "validate_history",
    # Risk scoring
    "RiskScore",
    "score_features",
    "classify_risk_level",
    "compute_confidence",
    # Anomaly detection
    "DetectionResult",
    "detect_anomaly",
    "detect_with_zscore",
    "detect_with_iqr",
    "detect_with_percentage_change",
    "score_severity",
    # Indicators
    "ANOMALY_CONTEXT",
    "anomaly_context",
    "generate_retention_strategy",
    "identify_protective_factors",
    "identify_red_flags",
    # Outcome validation
    "apply_outcome",
    "compute_accuracy_report",
    "compute_anomaly_statistics",
    "is_prediction_accurate",
    # Configuration
    "AnomalyConfig",
    "RiskModelConfig",
    "get_anomaly_config",
    "get_risk_model_config",
    "load_anomaly_config",
    "load_risk_model_config",
    # Orchestration
    "AssessmentRepository",
    "RiskEngineService",
    "build_risk_assessment",
]
