"""
Package initialization file for risk engine models.

Re-exports all Pydantic schemas and enumerations so other modules can import
them from risk_engine.models directly.

Usage:
    from risk_engine.models import (
        EntityHistory,
        FeatureSet,
        RiskAssessment,
        RiskLevel,
        # ... etc
    )
"""

# =============================================================================
# Enums
# =============================================================================

from risk_engine.models.enums import (
    # Event history
    EventStatus,
    PaymentStatus,
    CommunicationChannel,
    # Churn features
    EngagementTrend,
    BookingConsistency,
    MarketSaturation,
    PriceComparison,
    # Churn classification
    RiskLevel,
    FlagSeverity,
    FactorStrength,
    ActionPriority,
    ExpectedImpact,
    # Outcome tracking
    ChurnReason,
    RetentionEffortType,
    RetentionEffortOutcome,
    ScoreTrend,
    # Anomalies
    AnomalyType,
    DetectionMethod,
    AnomalySeverity,
    AnomalyStatus,
)


# =============================================================================
# Schemas
# =============================================================================

from risk_engine.models.schemas import (
    # -------------------------------------------------------------------------
    # Event history input
    # -------------------------------------------------------------------------
    HistoryEvent,
    PaymentEvent,
    CommunicationEvent,
    SupplementalFeatures,
    EntityHistory,

    # -------------------------------------------------------------------------
    # Feature categories
    # -------------------------------------------------------------------------
    EngagementFeatures,
    AppointmentBehaviorFeatures,
    PaymentBehaviorFeatures,
    CommunicationFeatures,
    RelationshipFeatures,
    TreatmentFeatures,
    TemporalFeatures,
    CompetitiveFeatures,
    FeatureSet,

    # -------------------------------------------------------------------------
    # Churn assessment
    # -------------------------------------------------------------------------
    RedFlag,
    ProtectiveFactor,
    RetentionAction,
    RetentionEffortCreate,
    RetentionEffort,
    ChurnOutcome,
    RiskAssessment,

    # -------------------------------------------------------------------------
    # Anomalies
    # -------------------------------------------------------------------------
    AnomalyStatistics,
    AnomalyRecommendation,
    InvestigationNote,
    AnomalyRecord,
    AnomalyDetectionRequest,
    AcknowledgeRequest,
    InvestigationNoteCreate,
    AnomalyResolveRequest,
    FalsePositiveRequest,

    # -------------------------------------------------------------------------
    # Validation and reporting
    # -------------------------------------------------------------------------
    AccuracyReport,
    AccuracyDelta,
    BatchAssessmentRequest,
    BatchItemError,
    BatchAssessmentResult,
    EntityRiskHistory,
    IndicatorCount,
    ChurnDashboard,
    AnomalyStatisticsReport,
)


__all__ = [
    # Enums
    'EventStatus',
    'PaymentStatus',
    'CommunicationChannel',
    'EngagementTrend',
    'BookingConsistency',
    'MarketSaturation',
    'PriceComparison',
    'RiskLevel',
    'FlagSeverity',
    'FactorStrength',
    'ActionPriority',
    'ExpectedImpact',
    'ChurnReason',
    'RetentionEffortType',
    'RetentionEffortOutcome',
    'ScoreTrend',
    'AnomalyType',
    'DetectionMethod',
    'AnomalySeverity',
    'AnomalyStatus',
    # Event history input
    'HistoryEvent',
    'PaymentEvent',
    'CommunicationEvent',
    'SupplementalFeatures',
    'EntityHistory',
    # Feature categories
    'EngagementFeatures',
    'AppointmentBehaviorFeatures',
    'PaymentBehaviorFeatures',
    'CommunicationFeatures',
    'RelationshipFeatures',
    'TreatmentFeatures',
    'TemporalFeatures',
    'CompetitiveFeatures',
    'FeatureSet',
    # Churn assessment
    'RedFlag',
    'ProtectiveFactor',
    'RetentionAction',
    'RetentionEffortCreate',
    'RetentionEffort',
    'ChurnOutcome',
    'RiskAssessment',
    # Anomalies
    'AnomalyStatistics',
    'AnomalyRecommendation',
    'InvestigationNote',
    'AnomalyRecord',
    'AnomalyDetectionRequest',
    'AcknowledgeRequest',
    'InvestigationNoteCreate',
    'AnomalyResolveRequest',
    'FalsePositiveRequest',
    # Validation and reporting
    'AccuracyReport',
    'AccuracyDelta',
    'BatchAssessmentRequest',
    'BatchItemError',
    'BatchAssessmentResult',
    'EntityRiskHistory',
    'IndicatorCount',
    'ChurnDashboard',
    'AnomalyStatisticsReport',
]
