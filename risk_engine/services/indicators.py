"""
Indicator & Recommendation Generator

Explains scores in business terms:
- Churn red flags and protective factors derived from a FeatureSet
- A retention strategy (ordered list of actions) for a risk level
- Possible causes and recommendations for each anomaly type

All lookup tables are immutable (MappingProxyType over tuples) and shared by
every request. Output lists are always built in the fixed order the rules are
declared below, so the same input produces the same list every time.

Red flags (in order):
    Extended Absence                 daysSince > 90            critical
    Declining Engagement             trend == declining        high
    High Cancellation Rate           cancellationRate > 30     high
    Outstanding Balance              outstanding > 200         medium
    Unsubscribed from Communications unsubscribed              medium
    Multiple Practitioner Changes    counterpartChanges > 2    medium

Protective factors (in order):
    Established Patient              lifetime events > 20      strong
    High Lifetime Value              totalRevenue > 2000       strong
    Active Referrer                  hasReferredOthers         strong
    High Completion Rate             completionRate > 90       moderate
    Strong Practitioner Relationship retention rate > 80       moderate
"""

from types import MappingProxyType
from typing import List, Mapping, NamedTuple, Tuple

from risk_engine.models.enums import (
    ActionPriority,
    AnomalyType,
    EngagementTrend,
    ExpectedImpact,
    FactorStrength,
    FlagSeverity,
    RiskLevel,
)
from risk_engine.models.schemas import (
    AnomalyRecommendation,
    FeatureSet,
    ProtectiveFactor,
    RedFlag,
    RetentionAction,
)


# =============================================================================
# Churn Thresholds
# =============================================================================

EXTENDED_ABSENCE_DAYS: int = 90
HIGH_CANCELLATION_RATE: float = 30.0
OUTSTANDING_BALANCE_FLAG: float = 200.0
PRACTITIONER_CHANGES_FLAG: int = 2

ESTABLISHED_EVENT_COUNT: int = 20
HIGH_LIFETIME_VALUE: float = 2000.0
HIGH_COMPLETION_RATE: float = 90.0
STRONG_RETENTION_RATE: float = 80.0

REENGAGEMENT_AFTER_DAYS: int = 60


# =============================================================================
# Red Flags & Protective Factors
# =============================================================================


def identify_red_flags(features: FeatureSet) -> List[RedFlag]:
    flags: List[RedFlag] = []
    engagement = features.engagement
    behavior = features.appointmentBehavior
    payment = features.paymentBehavior
    communication = features.communication
    relationship = features.relationship

    if engagement is not None and engagement.daysSinceLastEvent > EXTENDED_ABSENCE_DAYS:
        flags.append(RedFlag(
            indicator="Extended Absence",
            severity=FlagSeverity.CRITICAL,
            description=f"No appointment for {engagement.daysSinceLastEvent} days",
        ))

    if engagement is not None and engagement.trend == EngagementTrend.DECLINING:
        flags.append(RedFlag(
            indicator="Declining Engagement",
            severity=FlagSeverity.HIGH,
            description="Appointment frequency is decreasing over time",
        ))

    if behavior is not None and behavior.cancellationRate > HIGH_CANCELLATION_RATE:
        flags.append(RedFlag(
            indicator="High Cancellation Rate",
            severity=FlagSeverity.HIGH,
            description=f"{behavior.cancellationRate:.1f}% cancellation rate",
        ))

    if payment is not None and payment.outstandingBalance > OUTSTANDING_BALANCE_FLAG:
        flags.append(RedFlag(
            indicator="Outstanding Balance",
            severity=FlagSeverity.MEDIUM,
            description=f"${payment.outstandingBalance:.2f} outstanding",
        ))

    if communication is not None and communication.unsubscribedFromMarketing:
        flags.append(RedFlag(
            indicator="Unsubscribed from Communications",
            severity=FlagSeverity.MEDIUM,
            description="Patient has opted out of marketing communications",
        ))

    if relationship is not None and relationship.counterpartChanges > PRACTITIONER_CHANGES_FLAG:
        flags.append(RedFlag(
            indicator="Multiple Practitioner Changes",
            severity=FlagSeverity.MEDIUM,
            description=f"Changed practitioner {relationship.counterpartChanges} times",
        ))

    return flags


def identify_protective_factors(features: FeatureSet) -> List[ProtectiveFactor]:
    factors: List[ProtectiveFactor] = []
    engagement = features.engagement
    behavior = features.appointmentBehavior
    payment = features.paymentBehavior
    relationship = features.relationship

    if engagement is not None and engagement.totalLifetimeEvents > ESTABLISHED_EVENT_COUNT:
        factors.append(ProtectiveFactor(
            factor="Established Patient",
            strength=FactorStrength.STRONG,
            description=f"{engagement.totalLifetimeEvents} lifetime appointments",
        ))

    if payment is not None and payment.totalRevenue > HIGH_LIFETIME_VALUE:
        factors.append(ProtectiveFactor(
            factor="High Lifetime Value",
            strength=FactorStrength.STRONG,
            description=f"${payment.totalRevenue:.2f} total revenue",
        ))

    if relationship is not None and relationship.hasReferredOthers:
        factors.append(ProtectiveFactor(
            factor="Active Referrer",
            strength=FactorStrength.STRONG,
            description="Patient has referred other patients",
        ))

    if behavior is not None and behavior.completionRate > HIGH_COMPLETION_RATE:
        factors.append(ProtectiveFactor(
            factor="High Completion Rate",
            strength=FactorStrength.MODERATE,
            description=f"{behavior.completionRate:.1f}% completion rate",
        ))

    if (
        relationship is not None
        and relationship.counterpartRetentionRate is not None
        and relationship.counterpartRetentionRate > STRONG_RETENTION_RATE
    ):
        factors.append(ProtectiveFactor(
            factor="Strong Practitioner Relationship",
            strength=FactorStrength.MODERATE,
            description="Consistent with preferred practitioner",
        ))

    return factors


# =============================================================================
# Retention Strategy
# =============================================================================

_PERSONAL_CALL = RetentionAction(
    priority=ActionPriority.URGENT,
    action="Personal Phone Call",
    description="Have senior staff member call patient to check in and understand their needs",
    timeline="Within 24 hours",
    expectedImpact=ExpectedImpact.HIGH,
)
_RETENTION_OFFER = RetentionAction(
    priority=ActionPriority.URGENT,
    action="Special Retention Offer",
    description="Offer complimentary consultation or discounted session",
    timeline="Within 48 hours",
    expectedImpact=ExpectedImpact.HIGH,
)
_REENGAGEMENT_EMAIL = RetentionAction(
    priority=ActionPriority.HIGH,
    action="Re-engagement Email Campaign",
    description="Send personalized email highlighting benefits and success stories",
    timeline="Within 1 week",
    expectedImpact=ExpectedImpact.MEDIUM,
)
_PAYMENT_PLAN = RetentionAction(
    priority=ActionPriority.HIGH,
    action="Payment Plan Discussion",
    description="Contact patient to discuss flexible payment options",
    timeline="Within 1 week",
    expectedImpact=ExpectedImpact.MEDIUM,
)
_APPOINTMENT_REMINDER = RetentionAction(
    priority=ActionPriority.MEDIUM,
    action="Appointment Reminder",
    description="Send friendly reminder about booking next appointment",
    timeline="Within 2 weeks",
    expectedImpact=ExpectedImpact.MEDIUM,
)
_FEEDBACK_SURVEY = RetentionAction(
    priority=ActionPriority.MEDIUM,
    action="Feedback Survey",
    description="Request feedback on their experience and areas for improvement",
    timeline="Within 2 weeks",
    expectedImpact=ExpectedImpact.LOW,
)
_EDUCATIONAL_CONTENT = RetentionAction(
    priority=ActionPriority.LOW,
    action="Educational Content",
    description="Share relevant health tips and wellness content",
    timeline="Ongoing",
    expectedImpact=ExpectedImpact.LOW,
)
_LOYALTY_APPRECIATION = RetentionAction(
    priority=ActionPriority.LOW,
    action="Loyalty Appreciation",
    description="Thank patient for referrals and offer loyalty rewards",
    timeline="Within 1 month",
    expectedImpact=ExpectedImpact.MEDIUM,
)


def generate_retention_strategy(level: RiskLevel, features: FeatureSet) -> List[RetentionAction]:
    """
    Build the ordered retention actions for a risk level.

    Critical           -> Personal Phone Call, Special Retention Offer
    High or Critical   -> Re-engagement Email Campaign (absent > 60 days),
                          Payment Plan Discussion (outstanding balance > 0)
    Medium or High     -> Appointment Reminder, Feedback Survey
    every level        -> Educational Content
    referred others    -> Loyalty Appreciation

    Returned actions are copies; callers may modify them freely.
    """
    actions: List[RetentionAction] = []
    engagement = features.engagement
    payment = features.paymentBehavior
    relationship = features.relationship

    if level == RiskLevel.CRITICAL:
        actions.extend([_PERSONAL_CALL, _RETENTION_OFFER])

    if level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        if engagement is not None and engagement.daysSinceLastEvent > REENGAGEMENT_AFTER_DAYS:
            actions.append(_REENGAGEMENT_EMAIL)
        if payment is not None and payment.outstandingBalance > 0:
            actions.append(_PAYMENT_PLAN)

    if level in (RiskLevel.MEDIUM, RiskLevel.HIGH):
        actions.extend([_APPOINTMENT_REMINDER, _FEEDBACK_SURVEY])

    actions.append(_EDUCATIONAL_CONTENT)

    if relationship is not None and relationship.hasReferredOthers:
        actions.append(_LOYALTY_APPRECIATION)

    return [action.model_copy() for action in actions]


# =============================================================================
# Anomaly Context
# =============================================================================


class AnomalyContext(NamedTuple):
    possible_causes: Tuple[str, ...]
    recommendations: Tuple[Tuple[str, ActionPriority, str], ...]  # (action, priority, impact)


_EMPTY_CONTEXT = AnomalyContext(possible_causes=(), recommendations=())

ANOMALY_CONTEXT: Mapping[AnomalyType, AnomalyContext] = MappingProxyType({
    AnomalyType.REVENUE_DROP: AnomalyContext(
        possible_causes=(
            "Decreased appointment volume",
            "Lower service pricing",
            "Increased cancellations",
            "Seasonal variation",
            "Payment processing issues",
        ),
        recommendations=(
            ("Review appointment booking trends", ActionPriority.HIGH, "Identify booking issues"),
            ("Check for system outages or errors", ActionPriority.HIGH, "Resolve technical problems"),
            ("Analyze cancellation patterns", ActionPriority.MEDIUM, "Reduce cancellations"),
        ),
    ),
    AnomalyType.APPOINTMENT_CANCELLATION_SPIKE: AnomalyContext(
        possible_causes=(
            "Practitioner unavailability",
            "System issues",
            "Weather/external events",
            "Patient dissatisfaction",
            "Reminder system failure",
        ),
        recommendations=(
            ("Contact patients to understand reasons", ActionPriority.HIGH, "Improve retention"),
            ("Review practitioner schedules", ActionPriority.MEDIUM, "Optimize availability"),
        ),
    ),
    AnomalyType.NO_SHOW_SPIKE: AnomalyContext(
        possible_causes=(
            "Reminder system not working",
            "Seasonal patterns",
            "Patient engagement issues",
            "Booking confirmation problems",
        ),
        recommendations=(
            ("Verify reminder system is working", ActionPriority.URGENT, "Reduce no-shows"),
            ("Implement confirmation calls for high-risk patients", ActionPriority.HIGH, "Improve attendance"),
        ),
    ),
    AnomalyType.BOOKING_DROP: AnomalyContext(
        possible_causes=(
            "Marketing campaign ended",
            "Website/booking system issues",
            "Competitor activity",
            "Seasonal decline",
            "Negative reviews",
        ),
        recommendations=(
            ("Test booking system functionality", ActionPriority.URGENT, "Restore booking capability"),
            ("Review recent marketing changes", ActionPriority.HIGH, "Identify marketing gaps"),
        ),
    ),
    AnomalyType.PAYMENT_FAILURE_SPIKE: AnomalyContext(
        possible_causes=(
            "Payment processor outage",
            "Card expiration wave",
            "Fraud detection false positives",
            "System integration issues",
        ),
        recommendations=(
            ("Check payment processor status", ActionPriority.URGENT, "Resolve payment issues"),
            ("Contact patients with failed payments", ActionPriority.HIGH, "Recover revenue"),
        ),
    ),
    AnomalyType.SECURITY_BREACH: AnomalyContext(
        possible_causes=(
            "Unauthorized access attempts",
            "Data exfiltration",
            "Suspicious login patterns",
            "Malware detection",
        ),
        recommendations=(
            ("Immediately review security logs", ActionPriority.URGENT, "Prevent data loss"),
            ("Reset passwords for affected accounts", ActionPriority.URGENT, "Secure accounts"),
            ("Contact security team/vendor", ActionPriority.URGENT, "Expert investigation"),
        ),
    ),
})


def anomaly_context(anomaly_type: AnomalyType) -> Tuple[List[str], List[AnomalyRecommendation]]:
    """
    Possible causes and recommendations for an anomaly type.

    Types without an entry get two empty lists.
    """
    context = ANOMALY_CONTEXT.get(anomaly_type, _EMPTY_CONTEXT)
    causes = list(context.possible_causes)
    recommendations = [
        AnomalyRecommendation(action=action, priority=priority, estimatedImpact=impact)
        for action, priority, impact in context.recommendations
    ]
    return causes, recommendations
