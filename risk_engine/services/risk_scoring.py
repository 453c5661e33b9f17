"""
Churn Risk Scoring Service

Maps a FeatureSet to a 0-100 churn risk score and a risk level using the
weighted category ladders from scoring_config.

For every category present in the FeatureSet with a non-zero weight:

    contribution = sum(ladder_fraction * weight)

    score = round(sum(contribution) / sum(weight_used) * 100), clamped to [0, 100]

Categories that are missing from the FeatureSet (None) or carry weight 0 add
nothing and are excluded from sum(weight_used). When nothing is scored the
score is 0. Engagement can contribute up to 1.5 * weight (recency plus trend
modifier), which is why the final clamp exists.

Rounding is half-up (90.5 -> 91), not Python's banker's rounding.

Level thresholds (configurable): >= 75 Critical, >= 50 High, >= 25 Medium,
else Low.

The scorer is pure and deterministic: the same FeatureSet and config always
produce the same result.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from risk_engine.models.enums import RiskLevel
from risk_engine.models.schemas import FeatureSet
from risk_engine.services.scoring_config import RiskModelConfig, get_risk_model_config


# =============================================================================
# Result Type
# =============================================================================


@dataclass(frozen=True)
class RiskScore:
    """
    Output of score_features.

    contributions holds the points each scored category added before
    normalisation, keyed by category name (engagement, appointment_behavior,
    payment_behavior, communication, relationship, treatment_compliance).
    """
    score: int
    level: RiskLevel
    contributions: Dict[str, float] = field(default_factory=dict)
    weight_used: float = 0.0


# =============================================================================
# Category Scorers
# =============================================================================
# Each scorer returns points in [0, k * weight]; None means the category's
# feature block is absent and the category is skipped.


def _score_engagement(features: FeatureSet, config: RiskModelConfig, weight: float) -> Optional[float]:
    engagement = features.engagement
    if engagement is None:
        return None

    ladders = config.engagement
    fraction = ladders.days_since_last_event.fraction_for(engagement.daysSinceLastEvent)
    fraction += ladders.trend_modifiers.get(engagement.trend, 0.0)
    return weight * fraction


def _score_appointment_behavior(features: FeatureSet, config: RiskModelConfig, weight: float) -> Optional[float]:
    behavior = features.appointmentBehavior
    if behavior is None:
        return None

    ladders = config.appointment_behavior
    fraction = ladders.cancellation_rate.fraction_for(behavior.cancellationRate)
    fraction += ladders.no_show_rate.fraction_for(behavior.noShowRate)
    return weight * fraction


def _score_payment_behavior(features: FeatureSet, config: RiskModelConfig, weight: float) -> Optional[float]:
    payment = features.paymentBehavior
    if payment is None:
        return None

    ladders = config.payment_behavior
    fraction = ladders.outstanding_balance.fraction_for(payment.outstandingBalance)
    fraction += ladders.declined_payments.fraction_for(payment.declinedPayments)
    return weight * fraction


def _score_communication(features: FeatureSet, config: RiskModelConfig, weight: float) -> Optional[float]:
    communication = features.communication
    if communication is None:
        return None

    ladders = config.communication
    response_rate = ((communication.emailResponseRate or 0.0) + (communication.smsResponseRate or 0.0)) / 2
    fraction = ladders.response_rate.fraction_for(response_rate)
    if communication.unsubscribedFromMarketing:
        fraction += ladders.unsubscribed_modifier
    return weight * fraction


def _score_relationship(features: FeatureSet, config: RiskModelConfig, weight: float) -> Optional[float]:
    relationship = features.relationship
    if relationship is None:
        return None

    fraction = config.relationship.counterpart_changes.fraction_for(relationship.counterpartChanges)
    return weight * fraction


def _score_treatment_compliance(features: FeatureSet, config: RiskModelConfig, weight: float) -> Optional[float]:
    treatment = features.treatment
    if treatment is None:
        return None

    ladders = config.treatment_compliance
    compliance = treatment.treatmentPlanCompliance
    if compliance is None:
        compliance = ladders.missing_compliance_value
    return weight * ladders.compliance.fraction_for(compliance)


CategoryScorer = Callable[[FeatureSet, RiskModelConfig, float], Optional[float]]

# temporal and competitive have no ladder; they only count if given weight
# and are then scored as 0 contribution.
CATEGORY_SCORERS: Dict[str, CategoryScorer] = {
    "engagement": _score_engagement,
    "appointment_behavior": _score_appointment_behavior,
    "payment_behavior": _score_payment_behavior,
    "communication": _score_communication,
    "relationship": _score_relationship,
    "treatment_compliance": _score_treatment_compliance,
    "temporal": lambda f, c, w: None if f.temporal is None else 0.0,
    "competitive": lambda f, c, w: None if f.competitive is None else 0.0,
}


# =============================================================================
# Public API
# =============================================================================


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def classify_risk_level(score: float, config: Optional[RiskModelConfig] = None) -> RiskLevel:
    config = config or get_risk_model_config()
    return config.levels.level_for(score)


def score_features(features: FeatureSet, config: Optional[RiskModelConfig] = None) -> RiskScore:
    """
    Compute the churn risk score for a FeatureSet.

    Args:
        features: Extracted features; categories may be missing.
        config: Weights and ladders. Defaults to the loaded RiskModelConfig.

    Returns:
        RiskScore with score in [0, 100], level, and per-category points.

    Example:
        Only engagement (95 days, declining) and appointment behavior
        (35% cancellations) present:
            engagement  = 35 * (0.8 + 0.3) = 38.5
            appointment = 20 * 0.6          = 12.0
            score = round(50.5 / 55 * 100) = 92 -> Critical
    """
    config = config or get_risk_model_config()
    weights = config.weights

    contributions: Dict[str, float] = {}
    weight_used = 0.0

    for category, scorer in CATEGORY_SCORERS.items():
        weight = getattr(weights, category)
        if weight <= 0:
            continue

        points = scorer(features, config, weight)
        if points is None:
            continue

        contributions[category] = points
        weight_used += weight

    if weight_used <= 0:
        score = 0
    else:
        raw = sum(contributions.values()) / weight_used * 100
        score = min(100, max(0, round_half_up(raw)))

    return RiskScore(
        score=score,
        level=config.levels.level_for(score),
        contributions=contributions,
        weight_used=weight_used,
    )


def compute_confidence(config: Optional[RiskModelConfig] = None) -> float:
    """Confidence is the configured base value clamped to [0, 100]."""
    config = config or get_risk_model_config()
    return float(min(100.0, max(0.0, config.base_confidence)))
