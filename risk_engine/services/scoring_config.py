"""
Scoring Configuration

Weights, threshold ladders and level cut-offs for the churn risk scorer and
the anomaly severity scorer. Every number the scorers use lives here as
configuration data so it can be tuned without touching scoring code.

Defaults reproduce the production heuristics exactly:
- Category weights: engagement 35, appointment behavior 20, payment behavior 15,
  communication 15, relationship 10, treatment compliance 5 (sum 100)
- Risk levels: >= 75 Critical, >= 50 High, >= 25 Medium, else Low
- Severity levels: >= 80 critical, >= 60 high, >= 40 medium, else low

Overrides:
    A JSON file named by the RISK_MODEL_CONFIG_PATH setting may carry
    "risk_model" and/or "anomaly" objects. Keys left out keep their defaults.

    {
        "risk_model": {"weights": {"engagement": 40, "competitive": 0}},
        "anomaly": {"high_impact_points": 35}
    }

All config models are frozen; a loaded config is shared by every request.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from risk_engine.core.config import get_settings
from risk_engine.models.enums import AnomalySeverity, AnomalyType, EngagementTrend, RiskLevel


logger = logging.getLogger(__name__)


# =============================================================================
# Threshold Ladders
# =============================================================================


class LadderRung(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float
    fraction: float = Field(..., ge=0.0)


class ThresholdLadder(BaseModel):
    """
    Ordered list of (threshold, fraction) rungs; the first rung that matches
    wins, otherwise `default` applies.

    comparison "gt" matches value > threshold (rungs listed high to low),
    comparison "lt" matches value < threshold (rungs listed low to high).
    """
    model_config = ConfigDict(frozen=True)

    comparison: Literal["gt", "lt"] = "gt"
    rungs: Tuple[LadderRung, ...] = ()
    default: float = Field(default=0.0, ge=0.0)

    def fraction_for(self, value: float) -> float:
        for rung in self.rungs:
            if self.comparison == "gt" and value > rung.threshold:
                return rung.fraction
            if self.comparison == "lt" and value < rung.threshold:
                return rung.fraction
        return self.default


def _ladder(comparison: str, rungs: List[Tuple[float, float]], default: float = 0.0) -> ThresholdLadder:
    return ThresholdLadder(
        comparison=comparison,
        rungs=tuple(LadderRung(threshold=t, fraction=f) for t, f in rungs),
        default=default,
    )


# =============================================================================
# Churn Risk Model
# =============================================================================


class CategoryWeights(BaseModel):
    """
    Maximum nominal points per feature category.

    temporal and competitive are extracted but carry no weight by default.
    A category with weight 0 is excluded from the normalisation denominator.
    """
    model_config = ConfigDict(frozen=True)

    engagement: float = Field(default=35.0, ge=0.0)
    appointment_behavior: float = Field(default=20.0, ge=0.0)
    payment_behavior: float = Field(default=15.0, ge=0.0)
    communication: float = Field(default=15.0, ge=0.0)
    relationship: float = Field(default=10.0, ge=0.0)
    treatment_compliance: float = Field(default=5.0, ge=0.0)
    temporal: float = Field(default=0.0, ge=0.0)
    competitive: float = Field(default=0.0, ge=0.0)


class EngagementLadders(BaseModel):
    model_config = ConfigDict(frozen=True)

    days_since_last_event: ThresholdLadder = _ladder(
        "gt", [(120, 1.0), (90, 0.8), (60, 0.5), (30, 0.3)], default=0.1
    )
    trend_modifiers: Dict[EngagementTrend, float] = Field(
        default_factory=lambda: {
            EngagementTrend.INACTIVE: 0.5,
            EngagementTrend.DECLINING: 0.3,
            EngagementTrend.STABLE: 0.1,
            EngagementTrend.INCREASING: 0.0,
        }
    )


class AppointmentBehaviorLadders(BaseModel):
    model_config = ConfigDict(frozen=True)

    cancellation_rate: ThresholdLadder = _ladder("gt", [(30, 0.6), (20, 0.4), (10, 0.2)])
    no_show_rate: ThresholdLadder = _ladder("gt", [(20, 0.4), (10, 0.2)])


class PaymentBehaviorLadders(BaseModel):
    model_config = ConfigDict(frozen=True)

    outstanding_balance: ThresholdLadder = _ladder("gt", [(500, 0.7), (200, 0.4), (0, 0.2)])
    declined_payments: ThresholdLadder = _ladder("gt", [(3, 0.3), (1, 0.15)])


class CommunicationLadders(BaseModel):
    model_config = ConfigDict(frozen=True)

    # applied to mean(email, sms) response rate
    response_rate: ThresholdLadder = _ladder("lt", [(20, 0.8), (40, 0.5), (60, 0.3)])
    unsubscribed_modifier: float = Field(default=0.2, ge=0.0)


class RelationshipLadders(BaseModel):
    model_config = ConfigDict(frozen=True)

    counterpart_changes: ThresholdLadder = _ladder("gt", [(3, 0.7), (1, 0.4)])


class TreatmentLadders(BaseModel):
    model_config = ConfigDict(frozen=True)

    compliance: ThresholdLadder = _ladder("lt", [(30, 0.8), (50, 0.5), (70, 0.3)])
    missing_compliance_value: float = 50.0


class RiskLevelThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    critical: float = 75.0
    high: float = 50.0
    medium: float = 25.0

    def level_for(self, score: float) -> RiskLevel:
        if score >= self.critical:
            return RiskLevel.CRITICAL
        if score >= self.high:
            return RiskLevel.HIGH
        if score >= self.medium:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW


class RiskModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    weights: CategoryWeights = Field(default_factory=CategoryWeights)
    engagement: EngagementLadders = Field(default_factory=EngagementLadders)
    appointment_behavior: AppointmentBehaviorLadders = Field(default_factory=AppointmentBehaviorLadders)
    payment_behavior: PaymentBehaviorLadders = Field(default_factory=PaymentBehaviorLadders)
    communication: CommunicationLadders = Field(default_factory=CommunicationLadders)
    relationship: RelationshipLadders = Field(default_factory=RelationshipLadders)
    treatment_compliance: TreatmentLadders = Field(default_factory=TreatmentLadders)
    levels: RiskLevelThresholds = Field(default_factory=RiskLevelThresholds)
    base_confidence: float = Field(default=75.0)


# =============================================================================
# Anomaly Severity Model
# =============================================================================


HIGH_IMPACT_TYPES: Tuple[AnomalyType, ...] = (
    AnomalyType.REVENUE_DROP,
    AnomalyType.SECURITY_BREACH,
    AnomalyType.PAYMENT_FAILURE_SPIKE,
    AnomalyType.SYSTEM_PERFORMANCE,
)

MEDIUM_IMPACT_TYPES: Tuple[AnomalyType, ...] = (
    AnomalyType.APPOINTMENT_CANCELLATION_SPIKE,
    AnomalyType.NO_SHOW_SPIKE,
    AnomalyType.BOOKING_DROP,
    AnomalyType.PATIENT_CHURN_SPIKE,
)


class SeverityThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    critical: float = 80.0
    high: float = 60.0
    medium: float = 40.0

    def level_for(self, score: float) -> AnomalySeverity:
        if score >= self.critical:
            return AnomalySeverity.CRITICAL
        if score >= self.high:
            return AnomalySeverity.HIGH
        if score >= self.medium:
            return AnomalySeverity.MEDIUM
        return AnomalySeverity.LOW


class AnomalyConfig(BaseModel):
    """
    Detection thresholds and severity point tables.

    Ladder values are points (not fractions): |zScore| > 3 adds 40, and so on.
    """
    model_config = ConfigDict(frozen=True)

    zscore_threshold: float = Field(default=2.0, gt=0.0)
    iqr_multiplier: float = Field(default=1.5, gt=0.0)
    percentage_change_threshold: float = Field(default=30.0, gt=0.0)

    zscore_points: ThresholdLadder = _ladder("gt", [(3, 40), (2, 30), (1.5, 20)], default=10)
    percentage_change_points: ThresholdLadder = _ladder("gt", [(50, 30), (30, 20), (15, 10)], default=5)

    high_impact_types: Tuple[AnomalyType, ...] = HIGH_IMPACT_TYPES
    medium_impact_types: Tuple[AnomalyType, ...] = MEDIUM_IMPACT_TYPES
    high_impact_points: float = 30.0
    medium_impact_points: float = 20.0
    low_impact_points: float = 10.0

    severity: SeverityThresholds = Field(default_factory=SeverityThresholds)

    def impact_points(self, anomaly_type: AnomalyType) -> float:
        if anomaly_type in self.high_impact_types:
            return self.high_impact_points
        if anomaly_type in self.medium_impact_types:
            return self.medium_impact_points
        return self.low_impact_points


# =============================================================================
# Loading
# =============================================================================


def _read_overrides(path: Optional[str]) -> Dict:
    if not path:
        return {}

    config_file = Path(path)
    with config_file.open("r", encoding="utf-8") as f:
        overrides = json.load(f)

    logger.info(f"Loaded risk model overrides from {config_file}")
    return overrides


def _deep_merge(base: Dict, overrides: Dict) -> Dict:
    """Nested objects are merged key by key; any other value replaces the default."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_risk_model_config(path: Optional[str] = None) -> RiskModelConfig:
    """
    Build the churn risk model configuration.

    Args:
        path: Optional JSON override file. Defaults to the
            RISK_MODEL_CONFIG_PATH setting.

    Returns:
        RiskModelConfig with overrides applied on top of the defaults.
    """
    settings = get_settings()
    overrides = _read_overrides(path or settings.risk_model_config_path)

    defaults = RiskModelConfig(base_confidence=settings.default_confidence)
    data = _deep_merge(defaults.model_dump(mode="json"), overrides.get("risk_model", {}))

    return RiskModelConfig.model_validate(data)


def load_anomaly_config(path: Optional[str] = None) -> AnomalyConfig:
    """
    Build the anomaly detection configuration.

    Scalar thresholds come from settings (environment) unless the JSON file
    overrides them explicitly.
    """
    settings = get_settings()
    overrides = _read_overrides(path or settings.risk_model_config_path)

    defaults = AnomalyConfig(
        zscore_threshold=settings.zscore_threshold,
        iqr_multiplier=settings.iqr_multiplier,
        percentage_change_threshold=settings.percentage_change_threshold,
    )
    data = _deep_merge(defaults.model_dump(mode="json"), overrides.get("anomaly", {}))

    return AnomalyConfig.model_validate(data)


@lru_cache()
def get_risk_model_config() -> RiskModelConfig:
    return load_risk_model_config()


@lru_cache()
def get_anomaly_config() -> AnomalyConfig:
    return load_anomaly_config()
