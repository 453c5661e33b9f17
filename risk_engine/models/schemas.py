"""
Pydantic request/response models for the Practice Risk Engine.

This module provides type-safe data validation and serialization for the
engine's inputs (entity event history, anomaly detection requests) and its
outputs (feature sets, churn risk assessments, anomaly records, accuracy
reports).

Groups:
- Event history input: HistoryEvent, PaymentEvent, CommunicationEvent,
  SupplementalFeatures, EntityHistory
- Feature categories: EngagementFeatures ... CompetitiveFeatures, FeatureSet
- Churn assessment: RedFlag, ProtectiveFactor, RetentionAction,
  RetentionEffort, ChurnOutcome, RiskAssessment
- Anomalies: AnomalyStatistics, AnomalyRecommendation, InvestigationNote,
  AnomalyRecord and its lifecycle requests
- Validation and reporting: AccuracyReport, AccuracyDelta,
  BatchAssessmentResult, EntityRiskHistory, ChurnDashboard,
  AnomalyStatisticsReport

FeatureSet and its category models are frozen: a feature snapshot is created
once per assessment request and never mutated. RiskAssessment and
AnomalyRecord are updated through model_copy(update=...) by the outcome
validator so that earlier snapshots stay untouched.

All models use Pydantic v2 syntax.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from risk_engine.models.enums import (
    ActionPriority,
    AnomalySeverity,
    AnomalyStatus,
    AnomalyType,
    BookingConsistency,
    ChurnReason,
    CommunicationChannel,
    DetectionMethod,
    EngagementTrend,
    EventStatus,
    ExpectedImpact,
    FactorStrength,
    FlagSeverity,
    MarketSaturation,
    PaymentStatus,
    PriceComparison,
    RetentionEffortOutcome,
    RetentionEffortType,
    RiskLevel,
    ScoreTrend,
)


# =============================================================================
# Event History Input
# =============================================================================


class HistoryEvent(BaseModel):
    """
    One timestamped appointment-like event in an entity's history.

    Numeric fields are deliberately not range-checked here; the feature
    extractor rejects NaN/negative values with InvalidNumericInputError so the
    failure surfaces as an engine error rather than a schema error.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "timestamp": "2026-08-14T15:00:00Z",
                "status": "completed",
                "amount": 120.0,
                "counterpartId": "practitioner-7",
                "serviceType": "RMT",
            }
        }
    )

    timestamp: datetime = Field(..., description="When the event took place")
    status: EventStatus = Field(..., description="Event status")
    amount: Optional[float] = Field(default=None, description="Billed amount, if any")
    counterpartId: Optional[str] = Field(
        default=None,
        description="Practitioner (or other counterpart) attached to the event"
    )
    serviceType: Optional[str] = Field(default=None, description="Service category")
    cancelledAt: Optional[datetime] = Field(
        default=None,
        description="When a cancelled event was cancelled"
    )


class PaymentEvent(BaseModel):
    timestamp: datetime
    amount: float
    status: PaymentStatus = PaymentStatus.COMPLETED


class CommunicationEvent(BaseModel):
    timestamp: datetime
    channel: CommunicationChannel
    responded: bool = False


class SupplementalFeatures(BaseModel):
    """
    Values known to collaborating systems (billing, messaging, CRM) that the
    event stream alone cannot derive. Anything left unset falls back to the
    extractor defaults.
    """
    outstandingBalance: float = 0.0
    latePaymentCount: int = 0
    paymentMethodChanges: int = 0
    emailResponseRate: Optional[float] = None
    smsResponseRate: Optional[float] = None
    reminderResponseRate: Optional[float] = None
    unsubscribedFromMarketing: bool = False
    complaintsCount: int = 0
    hasReferredOthers: bool = False
    referralSource: Optional[str] = None
    treatmentPlanCompliance: Optional[float] = None
    nearbyCompetitorCount: Optional[int] = None
    marketSaturation: Optional[MarketSaturation] = None
    priceComparison: Optional[PriceComparison] = None


class EntityHistory(BaseModel):
    """
    Everything the feature extractor needs for one entity.

    Supplied by the persistence collaborator (see services/repository.py) or
    directly by callers of the scoring service.
    """
    entityId: str = Field(..., min_length=1, description="Entity (patient) identifier")
    events: List[HistoryEvent] = Field(default_factory=list)
    payments: List[PaymentEvent] = Field(default_factory=list)
    communications: List[CommunicationEvent] = Field(default_factory=list)
    supplemental: SupplementalFeatures = Field(default_factory=SupplementalFeatures)


# =============================================================================
# Feature Categories
# =============================================================================


class EngagementFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    daysSinceLastEvent: int = Field(..., ge=0)
    frequency: float = Field(..., ge=0.0, description="Events per 30 days of tenure")
    trend: EngagementTrend
    totalLifetimeEvents: int = Field(..., ge=0)
    averageDaysBetweenEvents: float = 0.0
    last90DaysEvents: int = 0
    last180DaysEvents: int = 0
    engagementScore: float = Field(default=0.0, ge=0.0, le=100.0)


class AppointmentBehaviorFeatures(BaseModel):
    """Behavior rates are percentages (0-100) of all events."""
    model_config = ConfigDict(frozen=True)

    cancellationRate: float = Field(..., ge=0.0, le=100.0)
    noShowRate: float = Field(..., ge=0.0, le=100.0)
    completionRate: float = Field(..., ge=0.0, le=100.0)
    lastMinuteCancellations: int = 0
    reschedulingFrequency: int = 0
    bookingConsistency: Optional[BookingConsistency] = None


class PaymentBehaviorFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    totalRevenue: float = 0.0
    averagePaymentAmount: float = 0.0
    outstandingBalance: float = 0.0
    declinedPayments: int = 0
    latePaymentCount: int = 0
    paymentMethodChanges: int = 0


class CommunicationFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    emailResponseRate: Optional[float] = None
    smsResponseRate: Optional[float] = None
    reminderResponseRate: Optional[float] = None
    daysSinceLastContact: Optional[int] = None
    unsubscribedFromMarketing: bool = False
    complaintsCount: int = 0


class RelationshipFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenureDays: int = Field(..., ge=0)
    counterpartChanges: int = Field(default=0, ge=0)
    currentCounterpartId: Optional[str] = None
    counterpartRetentionRate: Optional[float] = None
    referralSource: Optional[str] = None
    hasReferredOthers: bool = False


class TreatmentFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    primaryServiceType: Optional[str] = None
    serviceTypeDiversity: int = 0
    treatmentPlanCompliance: Optional[float] = None
    hasActiveTreatmentPlan: bool = False


class TemporalFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    currentMonth: int = Field(..., ge=1, le=12)
    currentQuarter: int = Field(..., ge=1, le=4)
    dayOfWeek: int = Field(..., ge=0, le=6, description="0 = Sunday")
    seasonalPatternScore: float = 50.0


class CompetitiveFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    nearbyCompetitorCount: int = 3
    marketSaturation: MarketSaturation = MarketSaturation.MEDIUM
    priceComparison: PriceComparison = PriceComparison.COMPETITIVE


class FeatureSet(BaseModel):
    """
    Immutable snapshot of derived features for one entity.

    Every category is optional. The extractor always fills all eight, but a
    caller may score a partial snapshot: categories left as None are skipped
    by the risk scorer and excluded from the weight denominator.
    """
    model_config = ConfigDict(frozen=True)

    entityId: str
    extractedAt: datetime
    engagement: Optional[EngagementFeatures] = None
    appointmentBehavior: Optional[AppointmentBehaviorFeatures] = None
    paymentBehavior: Optional[PaymentBehaviorFeatures] = None
    communication: Optional[CommunicationFeatures] = None
    relationship: Optional[RelationshipFeatures] = None
    treatment: Optional[TreatmentFeatures] = None
    temporal: Optional[TemporalFeatures] = None
    competitive: Optional[CompetitiveFeatures] = None


# =============================================================================
# Churn Assessment
# =============================================================================


class RedFlag(BaseModel):
    indicator: str
    severity: FlagSeverity
    description: str


class ProtectiveFactor(BaseModel):
    factor: str
    strength: FactorStrength
    description: str


class RetentionAction(BaseModel):
    priority: ActionPriority
    action: str
    description: str
    timeline: str = Field(..., description='e.g. "Within 24 hours"')
    expectedImpact: ExpectedImpact


class RetentionEffortCreate(BaseModel):
    type: RetentionEffortType
    description: Optional[str] = None
    outcome: Optional[RetentionEffortOutcome] = None
    performedBy: Optional[str] = None


class RetentionEffort(RetentionEffortCreate):
    performedAt: datetime


class ChurnOutcome(BaseModel):
    """Ground truth for a churn prediction."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "churned": True,
                "churnDate": "2026-10-01T00:00:00Z",
                "reason": "competitor",
                "details": "Moved to a clinic closer to work",
            }
        }
    )

    churned: bool
    churnDate: Optional[datetime] = None
    reason: Optional[ChurnReason] = None
    details: Optional[str] = None


class RiskAssessment(BaseModel):
    """
    Churn risk assessment for one entity.

    Created by the risk scorer. Afterwards only the outcome validator
    (actualOutcome, predictionAccurate, validatedAt) and retention-effort
    logging (append-only retentionEfforts) change it. Never deleted.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "5b0c7a3e-0d1f-4a5e-9d42-8f3a1c2b7e61",
                "entityId": "patient-42",
                "computedAt": "2026-10-19T09:00:00Z",
                "modelVersion": "1.0",
                "score": 82,
                "level": "Critical",
                "confidence": 75.0,
                "categoryContributions": {"engagement": 38.5, "appointment_behavior": 12.0},
                "redFlags": [
                    {"indicator": "Extended Absence", "severity": "critical",
                     "description": "No appointment for 95 days"}
                ],
                "protectiveFactors": [],
                "recommendedActions": [],
            }
        }
    )

    id: str = Field(..., description="Unique assessment identifier")
    entityId: str = Field(..., description="Assessed entity")
    computedAt: datetime = Field(..., description="When the assessment was computed")
    modelVersion: str = "1.0"
    featureSet: FeatureSet
    score: int = Field(..., ge=0, le=100, description="Churn risk score (0-100)")
    level: RiskLevel
    confidence: float = Field(..., ge=0.0, le=100.0)
    categoryContributions: Dict[str, float] = Field(
        default_factory=dict,
        description="Points contributed by each scored category before normalisation"
    )
    redFlags: List[RedFlag] = Field(default_factory=list)
    protectiveFactors: List[ProtectiveFactor] = Field(default_factory=list)
    recommendedActions: List[RetentionAction] = Field(default_factory=list)
    retentionEfforts: List[RetentionEffort] = Field(default_factory=list)
    actualOutcome: Optional[ChurnOutcome] = None
    predictionAccurate: Optional[bool] = None
    validatedAt: Optional[datetime] = None
    calculationDurationMs: Optional[float] = Field(default=None, ge=0.0)


# =============================================================================
# Anomalies
# =============================================================================


class AnomalyStatistics(BaseModel):
    mean: Optional[float] = None
    median: Optional[float] = None
    stdDev: Optional[float] = None
    zScore: Optional[float] = None
    percentageChange: Optional[float] = None
    lowerBound: Optional[float] = None
    upperBound: Optional[float] = None


class AnomalyRecommendation(BaseModel):
    action: str
    priority: ActionPriority
    estimatedImpact: str


class InvestigationNote(BaseModel):
    note: str
    addedBy: Optional[str] = None
    addedAt: datetime


class AnomalyRecord(BaseModel):
    """
    A detected anomaly in a business metric.

    Status transitions only move forward; RESOLVED and FALSE_POSITIVE are
    terminal (see services/outcome_validation.py).
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "0f7d4c1a-3b8e-4e0f-a2d6-9c5b1e7f3a20",
                "anomalyType": "revenue_drop",
                "metricName": "daily_revenue",
                "value": 1200.0,
                "expectedValue": 4100.0,
                "statistics": {"mean": 4100.0, "stdDev": 350.0, "zScore": -8.29,
                               "percentageChange": -70.73},
                "detectionMethod": "z_score",
                "severity": "critical",
                "severityScore": 100,
                "confidence": 100.0,
                "status": "new",
            }
        }
    )

    id: str
    anomalyType: AnomalyType
    metricName: str = Field(..., min_length=1)
    value: float
    expectedValue: Optional[float] = None
    previousValue: Optional[float] = None
    unit: str = Field(default="count", description="currency, percentage, count, seconds")
    statistics: AnomalyStatistics = Field(default_factory=AnomalyStatistics)
    detectionMethod: DetectionMethod
    severity: AnomalySeverity
    severityScore: int = Field(..., ge=0)
    confidence: float = Field(..., ge=0.0, le=100.0)
    status: AnomalyStatus = AnomalyStatus.NEW
    description: str = ""
    possibleCauses: List[str] = Field(default_factory=list)
    recommendations: List[AnomalyRecommendation] = Field(default_factory=list)
    detectedAt: datetime
    dataPointDate: Optional[datetime] = None
    timeWindow: Optional[str] = Field(default=None, description="'1h', '24h', '7d', '30d'")
    assignedTo: Optional[str] = None
    investigationStartedAt: Optional[datetime] = None
    investigationNotes: List[InvestigationNote] = Field(default_factory=list)
    resolution: Optional[str] = None
    rootCause: Optional[str] = None
    resolvedAt: Optional[datetime] = None
    resolvedBy: Optional[str] = None
    falsePositiveReason: Optional[str] = None


class AnomalyDetectionRequest(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "metricName": "no_show_rate",
                "value": 18.0,
                "series": [6.0, 7.5, 5.0, 6.5, 7.0, 6.0, 5.5],
                "method": "iqr",
                "anomalyType": "no_show_spike",
            }
        }
    )

    metricName: str = Field(..., min_length=1)
    value: float
    series: List[float] = Field(default_factory=list)
    method: DetectionMethod = DetectionMethod.Z_SCORE
    anomalyType: AnomalyType = AnomalyType.CUSTOM
    previousValue: Optional[float] = Field(
        default=None,
        description="Required for percentage_change; defaults to the last series value"
    )
    threshold: Optional[float] = Field(default=None, gt=0.0)
    unit: str = "count"
    dataPointDate: Optional[datetime] = None
    timeWindow: Optional[str] = None


class AcknowledgeRequest(BaseModel):
    userId: Optional[str] = None


class InvestigationNoteCreate(BaseModel):
    note: str = Field(..., min_length=1)
    addedBy: Optional[str] = None


class AnomalyResolveRequest(BaseModel):
    resolution: str = Field(..., min_length=1)
    rootCause: Optional[str] = None
    resolvedBy: Optional[str] = None


class FalsePositiveRequest(BaseModel):
    reason: str = Field(..., min_length=1)


# =============================================================================
# Validation and Reporting
# =============================================================================


class AccuracyReport(BaseModel):
    """
    Confusion matrix over validated assessments in a window.

    A prediction counts as positive when the level is High or Critical.
    Ratios with a zero denominator are reported as 0.
    """
    total: int = 0
    truePositives: int = 0
    falsePositives: int = 0
    trueNegatives: int = 0
    falseNegatives: int = 0
    accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    precision: float = Field(default=0.0, ge=0.0, le=1.0)
    recall: float = Field(default=0.0, ge=0.0, le=1.0)
    f1: float = Field(default=0.0, ge=0.0, le=1.0)
    windowStart: Optional[datetime] = None
    windowEnd: Optional[datetime] = None


class AccuracyDelta(BaseModel):
    assessmentId: str
    predictionAccurate: bool
    before: AccuracyReport
    after: AccuracyReport
    accuracyChange: float


class BatchAssessmentRequest(BaseModel):
    entityIds: List[str] = Field(default_factory=list)
    riskLevelFilter: Optional[RiskLevel] = None


class BatchItemError(BaseModel):
    entityId: str
    errorType: str
    error: str


class BatchAssessmentResult(BaseModel):
    total: int = 0
    successful: int = 0
    cached: int = 0
    failed: int = 0
    assessments: List[RiskAssessment] = Field(default_factory=list)
    errors: List[BatchItemError] = Field(default_factory=list)


class EntityRiskHistory(BaseModel):
    entityId: str
    count: int
    latest: Optional[RiskAssessment] = None
    trend: ScoreTrend = ScoreTrend.STABLE
    assessments: List[RiskAssessment] = Field(default_factory=list)


class IndicatorCount(BaseModel):
    indicator: str
    count: int


class ChurnDashboard(BaseModel):
    totalAssessments: int
    byLevel: Dict[str, int]
    averageScore: float
    topIndicators: List[IndicatorCount] = Field(default_factory=list)
    validatedCount: int = 0
    actualChurnRate: Optional[float] = Field(
        default=None,
        description="Percentage of validated assessments that churned; None without validation data"
    )


class AnomalyStatisticsReport(BaseModel):
    total: int
    bySeverity: Dict[str, int]
    byStatus: Dict[str, int]
    byType: Dict[str, int]
    avgResolutionHours: float = 0.0
    falsePositiveRate: float = Field(default=0.0, description="Percentage of anomalies marked false positive")
