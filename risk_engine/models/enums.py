"""
Enumeration definitions for the Practice Risk Engine.

All enums inherit from both `str` and `Enum` to ensure JSON serialization
compatibility with Pydantic models, so values round-trip unchanged through
the API and the assessment store.

Groups:
- Event history: EventStatus, PaymentStatus, CommunicationChannel
- Churn features: EngagementTrend, BookingConsistency, MarketSaturation, PriceComparison
- Churn classification: RiskLevel, FlagSeverity, FactorStrength, ActionPriority, ExpectedImpact
- Outcome tracking: ChurnReason, RetentionEffortType, RetentionEffortOutcome, ScoreTrend
- Anomalies: AnomalyType, DetectionMethod, AnomalySeverity, AnomalyStatus
"""

from enum import Enum


# =============================================================================
# Event History
# =============================================================================


class EventStatus(str, Enum):
    """
    Status of a historical appointment-like event.

    Only COMPLETED, CANCELLED and NO_SHOW feed the behavior rates; the other
    statuses still count toward totals, recency and trend windows.
    """
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    DECLINED = "declined"
    PENDING = "pending"
    REFUNDED = "refunded"


class CommunicationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PHONE = "phone"


# =============================================================================
# Churn Features
# =============================================================================


class EngagementTrend(str, Enum):
    """
    Direction of engagement comparing the last 90 days against days 90-180.

    - inactive: no event in more than 90 days
    - declining: recent window below 70% of the prior window
    - increasing: recent window above 130% of the prior window
    - stable: otherwise
    """
    INCREASING = "increasing"
    STABLE = "stable"
    DECLINING = "declining"
    INACTIVE = "inactive"


class BookingConsistency(str, Enum):
    REGULAR = "regular"
    IRREGULAR = "irregular"
    SPORADIC = "sporadic"


class MarketSaturation(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PriceComparison(str, Enum):
    LOWER = "lower"
    COMPETITIVE = "competitive"
    HIGHER = "higher"


# =============================================================================
# Churn Classification
# =============================================================================


class RiskLevel(str, Enum):
    """
    Churn risk classification derived from the 0-100 score.

    Thresholds:
    - Critical: score >= 75
    - High: score >= 50
    - Medium: score >= 25
    - Low: otherwise
    """
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class FlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FactorStrength(str, Enum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class ActionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ExpectedImpact(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


# =============================================================================
# Outcome Tracking
# =============================================================================


class ChurnReason(str, Enum):
    PRICE = "price"
    QUALITY = "quality"
    CONVENIENCE = "convenience"
    MOVED = "moved"
    INSURANCE = "insurance"
    HEALTH_IMPROVED = "health_improved"
    COMPETITOR = "competitor"
    DISSATISFACTION = "dissatisfaction"
    OTHER = "other"


class RetentionEffortType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    SMS = "sms"
    MAIL = "mail"
    VISIT = "visit"
    PROMOTION = "promotion"
    OTHER = "other"


class RetentionEffortOutcome(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    NO_RESPONSE = "no_response"


class ScoreTrend(str, Enum):
    """Movement between an entity's two most recent assessments (±10 points)."""
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


# =============================================================================
# Anomalies
# =============================================================================


class AnomalyType(str, Enum):
    """
    Business metric categories an anomaly can be raised against.

    The type drives the business-impact component of the severity score and
    selects the possible-causes / recommendations entry.
    """
    REVENUE_DROP = "revenue_drop"
    REVENUE_SPIKE = "revenue_spike"
    APPOINTMENT_CANCELLATION_SPIKE = "appointment_cancellation_spike"
    NO_SHOW_SPIKE = "no_show_spike"
    PATIENT_CHURN_SPIKE = "patient_churn_spike"
    BOOKING_DROP = "booking_drop"
    PAYMENT_FAILURE_SPIKE = "payment_failure_spike"
    SYSTEM_PERFORMANCE = "system_performance"
    SECURITY_BREACH = "security_breach"
    DATA_QUALITY = "data_quality"
    INVENTORY_SHORTAGE = "inventory_shortage"
    STAFF_UTILIZATION_DROP = "staff_utilization_drop"
    REVIEW_SENTIMENT_DROP = "review_sentiment_drop"
    CUSTOM = "custom"


class DetectionMethod(str, Enum):
    Z_SCORE = "z_score"
    IQR = "iqr"
    PERCENTAGE_CHANGE = "percentage_change"


class AnomalySeverity(str, Enum):
    """
    Severity derived from the summed severity score.

    Thresholds:
    - critical: >= 80
    - high: >= 60
    - medium: >= 40
    - low: otherwise
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AnomalyStatus(str, Enum):
    """
    Lifecycle of a detected anomaly.

    Transitions only move forward along new -> acknowledged -> investigating
    -> resolved. RESOLVED and FALSE_POSITIVE are terminal.
    """
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"
