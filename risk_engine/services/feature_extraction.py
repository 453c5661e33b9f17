"""
Feature Extraction Service

Derives the churn FeatureSet for one entity from its event history. The
extractor is pure: it takes a snapshot (EntityHistory) and a reference time
and returns an immutable FeatureSet. Loading the snapshot is the
repository's job (see services/repository.py).

Feature categories (all eight are always populated):
1. Engagement - recency, frequency, 90/180-day trend, engagement score
2. Appointment behavior - cancellation / no-show / completion rates
3. Payment behavior - revenue from completed payments, declines, balance
4. Communication - response rates per channel, unsubscribe, complaints
5. Relationship - tenure, counterpart (practitioner) changes and retention
6. Treatment - service mix, plan compliance, active plan
7. Temporal - month, quarter, weekday (0 = Sunday)
8. Competitive - market context, defaults unless supplied

Trend rule:
    w0 = events in the last 90 days
    w1 = events between 90 and 180 days ago
    inactive   if daysSinceLastEvent > 90
    declining  if w0 < 0.7 * w1
    increasing if w0 > 1.3 * w1
    stable     otherwise

Errors:
    InsufficientDataError    - the entity has no events
    InvalidNumericInputError - NaN / infinite / negative amounts or counts,
                               or timestamps later than the reference time

Timestamps without tzinfo are treated as UTC.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from risk_engine.core.exceptions import InsufficientDataError, InvalidNumericInputError
from risk_engine.models.enums import (
    BookingConsistency,
    CommunicationChannel,
    EngagementTrend,
    EventStatus,
    MarketSaturation,
    PaymentStatus,
    PriceComparison,
)
from risk_engine.models.schemas import (
    AppointmentBehaviorFeatures,
    CommunicationFeatures,
    CommunicationEvent,
    CompetitiveFeatures,
    EngagementFeatures,
    EntityHistory,
    FeatureSet,
    PaymentBehaviorFeatures,
    RelationshipFeatures,
    TemporalFeatures,
    TreatmentFeatures,
)


# =============================================================================
# Constants
# =============================================================================

SECONDS_PER_DAY: int = 24 * 60 * 60

RECENT_WINDOW_DAYS: int = 90
PRIOR_WINDOW_DAYS: int = 180
INACTIVE_AFTER_DAYS: int = 90
DECLINING_FACTOR: float = 0.7
INCREASING_FACTOR: float = 1.3

REGULAR_GAP_DAYS: float = 40.0
IRREGULAR_GAP_DAYS: float = 70.0

LAST_MINUTE_HOURS: int = 24
ACTIVE_PLAN_DAYS: int = 30

DEFAULT_EMAIL_RESPONSE_RATE: float = 50.0
DEFAULT_SMS_RESPONSE_RATE: float = 60.0
DEFAULT_REMINDER_RESPONSE_RATE: float = 70.0
DEFAULT_PLAN_COMPLIANCE: float = 70.0
DEFAULT_SEASONAL_SCORE: float = 50.0
DEFAULT_COMPETITOR_COUNT: int = 3
DEFAULT_REFERRAL_SOURCE: str = "organic"
DEFAULT_SERVICE_TYPE: str = "General"


# =============================================================================
# Validation Helpers
# =============================================================================


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _check_amount(value: Optional[float], field: str, entity_id: str) -> None:
    if value is None:
        return
    if not math.isfinite(value) or value < 0:
        raise InvalidNumericInputError(
            f"Invalid {field} for entity {entity_id}: {value!r}",
            entity_id=entity_id,
        )


def _check_not_future(ts: datetime, now: datetime, field: str, entity_id: str) -> None:
    if _as_utc(ts) > now:
        raise InvalidNumericInputError(
            f"{field} {ts.isoformat()} is later than reference time {now.isoformat()}",
            entity_id=entity_id,
        )


def validate_history(history: EntityHistory, now: datetime) -> None:
    """
    Reject malformed input before any feature is computed.

    Raises:
        InsufficientDataError: No events at all.
        InvalidNumericInputError: NaN / infinite / negative numbers, or
            event/payment timestamps after `now`.
    """
    entity_id = history.entityId

    if not history.events:
        raise InsufficientDataError(
            f"No event history for entity {entity_id}",
            entity_id=entity_id,
        )

    for event in history.events:
        _check_not_future(event.timestamp, now, "Event timestamp", entity_id)
        _check_amount(event.amount, "event amount", entity_id)

    for payment in history.payments:
        _check_not_future(payment.timestamp, now, "Payment timestamp", entity_id)
        _check_amount(payment.amount, "payment amount", entity_id)

    for communication in history.communications:
        _check_not_future(communication.timestamp, now, "Communication timestamp", entity_id)

    supplemental = history.supplemental
    for field in (
        "outstandingBalance",
        "latePaymentCount",
        "paymentMethodChanges",
        "emailResponseRate",
        "smsResponseRate",
        "reminderResponseRate",
        "complaintsCount",
        "treatmentPlanCompliance",
        "nearbyCompetitorCount",
    ):
        _check_amount(getattr(supplemental, field), field, entity_id)


# =============================================================================
# Event Frame
# =============================================================================


def _build_event_frame(history: EntityHistory) -> pd.DataFrame:
    """
    One row per event, sorted by timestamp (stable for equal timestamps).
    """
    df = pd.DataFrame(
        [
            {
                "timestamp": _as_utc(e.timestamp),
                "status": e.status.value,
                "amount": e.amount,
                "counterpart_id": e.counterpartId,
                "service_type": e.serviceType,
                "cancelled_at": _as_utc(e.cancelledAt) if e.cancelledAt else None,
            }
            for e in history.events
        ]
    )
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    df["cancelled_at"] = pd.to_datetime(df["cancelled_at"], utc=True)
    return df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)


def _whole_days(later: pd.Timestamp, earlier: pd.Timestamp) -> int:
    return int((later - earlier).total_seconds() // SECONDS_PER_DAY)


# =============================================================================
# Category Extractors
# =============================================================================


def _classify_trend(days_since: int, recent: int, prior: int) -> EngagementTrend:
    if days_since > INACTIVE_AFTER_DAYS:
        return EngagementTrend.INACTIVE
    if recent < prior * DECLINING_FACTOR:
        return EngagementTrend.DECLINING
    if recent > prior * INCREASING_FACTOR:
        return EngagementTrend.INCREASING
    return EngagementTrend.STABLE


def _average_gap_days(timestamps: pd.Series) -> float:
    if len(timestamps) < 2:
        return 0.0
    gaps = timestamps.diff().dropna().dt.total_seconds() / SECONDS_PER_DAY
    return float(np.mean(gaps.to_numpy(dtype=np.float64)))


def _booking_consistency(avg_gap: float) -> BookingConsistency:
    if avg_gap < REGULAR_GAP_DAYS:
        return BookingConsistency.REGULAR
    if avg_gap < IRREGULAR_GAP_DAYS:
        return BookingConsistency.IRREGULAR
    return BookingConsistency.SPORADIC


def extract_engagement(df: pd.DataFrame, now: pd.Timestamp) -> EngagementFeatures:
    total = len(df)
    days_since = _whole_days(now, df["timestamp"].iloc[-1])
    tenure = _whole_days(now, df["timestamp"].iloc[0])

    recent_cutoff = now - pd.Timedelta(days=RECENT_WINDOW_DAYS)
    prior_cutoff = now - pd.Timedelta(days=PRIOR_WINDOW_DAYS)
    last_90 = int((df["timestamp"] >= recent_cutoff).sum())
    last_180 = int((df["timestamp"] >= prior_cutoff).sum())

    return EngagementFeatures(
        daysSinceLastEvent=days_since,
        frequency=total / max(tenure / 30, 1),
        trend=_classify_trend(days_since, last_90, last_180 - last_90),
        totalLifetimeEvents=total,
        averageDaysBetweenEvents=_average_gap_days(df["timestamp"]),
        last90DaysEvents=last_90,
        last180DaysEvents=last_180,
        engagementScore=float(np.clip(100 - days_since / 2, 0, 100)),
    )


def extract_appointment_behavior(df: pd.DataFrame) -> AppointmentBehaviorFeatures:
    total = len(df)
    status_counts = df["status"].value_counts()

    def rate(status: EventStatus) -> float:
        return int(status_counts.get(status.value, 0)) / total * 100

    cancelled = df[df["status"] == EventStatus.CANCELLED.value]
    lead_time = cancelled["timestamp"] - cancelled["cancelled_at"]
    last_minute = int((lead_time < pd.Timedelta(hours=LAST_MINUTE_HOURS)).sum())

    return AppointmentBehaviorFeatures(
        cancellationRate=rate(EventStatus.CANCELLED),
        noShowRate=rate(EventStatus.NO_SHOW),
        completionRate=rate(EventStatus.COMPLETED),
        lastMinuteCancellations=last_minute,
        reschedulingFrequency=int(status_counts.get(EventStatus.RESCHEDULED.value, 0)),
        bookingConsistency=_booking_consistency(_average_gap_days(df["timestamp"])),
    )


def extract_payment_behavior(history: EntityHistory) -> PaymentBehaviorFeatures:
    completed = np.array(
        [p.amount for p in history.payments if p.status == PaymentStatus.COMPLETED],
        dtype=np.float64,
    )
    declined = sum(1 for p in history.payments if p.status == PaymentStatus.DECLINED)
    supplemental = history.supplemental

    total_revenue = float(completed.sum()) if completed.size else 0.0
    average = total_revenue / completed.size if completed.size else 0.0

    return PaymentBehaviorFeatures(
        totalRevenue=total_revenue,
        averagePaymentAmount=average,
        outstandingBalance=supplemental.outstandingBalance,
        declinedPayments=declined,
        latePaymentCount=supplemental.latePaymentCount,
        paymentMethodChanges=supplemental.paymentMethodChanges,
    )


def _channel_response_rate(
    communications: Iterable[CommunicationEvent],
    channel: CommunicationChannel,
) -> Optional[float]:
    responses = [c.responded for c in communications if c.channel == channel]
    if not responses:
        return None
    return sum(responses) / len(responses) * 100


def _first_known(*values: Optional[float]) -> float:
    for value in values:
        if value is not None:
            return float(value)
    raise ValueError("no fallback value supplied")


def extract_communication(
    history: EntityHistory,
    now: pd.Timestamp,
    days_since_last_event: int,
) -> CommunicationFeatures:
    supplemental = history.supplemental

    email_rate = _first_known(
        _channel_response_rate(history.communications, CommunicationChannel.EMAIL),
        supplemental.emailResponseRate,
        DEFAULT_EMAIL_RESPONSE_RATE,
    )
    sms_rate = _first_known(
        _channel_response_rate(history.communications, CommunicationChannel.SMS),
        supplemental.smsResponseRate,
        DEFAULT_SMS_RESPONSE_RATE,
    )
    reminder_rate = _first_known(supplemental.reminderResponseRate, DEFAULT_REMINDER_RESPONSE_RATE)

    if history.communications:
        last_contact = max(_as_utc(c.timestamp) for c in history.communications)
        days_since_contact = _whole_days(now, pd.Timestamp(last_contact))
    else:
        days_since_contact = days_since_last_event

    return CommunicationFeatures(
        emailResponseRate=email_rate,
        smsResponseRate=sms_rate,
        reminderResponseRate=reminder_rate,
        daysSinceLastContact=days_since_contact,
        unsubscribedFromMarketing=supplemental.unsubscribedFromMarketing,
        complaintsCount=supplemental.complaintsCount,
    )


def extract_relationship(history: EntityHistory, df: pd.DataFrame, now: pd.Timestamp) -> RelationshipFeatures:
    # events without a counterpart count as one distinct "unknown" counterpart
    counterparts: List[Optional[str]] = [
        None if pd.isna(c) else c for c in df["counterpart_id"]
    ]
    current = counterparts[-1]
    with_current = sum(1 for c in counterparts if c == current)

    return RelationshipFeatures(
        tenureDays=_whole_days(now, df["timestamp"].iloc[0]),
        counterpartChanges=len(set(counterparts)) - 1,
        currentCounterpartId=current,
        counterpartRetentionRate=with_current / len(counterparts) * 100,
        referralSource=history.supplemental.referralSource or DEFAULT_REFERRAL_SOURCE,
        hasReferredOthers=history.supplemental.hasReferredOthers,
    )


def extract_treatment(history: EntityHistory, df: pd.DataFrame, days_since_last_event: int) -> TreatmentFeatures:
    service_types = [s for s in df["service_type"].dropna().unique() if s]
    compliance = history.supplemental.treatmentPlanCompliance

    return TreatmentFeatures(
        primaryServiceType=service_types[0] if service_types else DEFAULT_SERVICE_TYPE,
        serviceTypeDiversity=len(service_types),
        treatmentPlanCompliance=DEFAULT_PLAN_COMPLIANCE if compliance is None else compliance,
        hasActiveTreatmentPlan=days_since_last_event < ACTIVE_PLAN_DAYS,
    )


def extract_temporal(now: datetime) -> TemporalFeatures:
    # isoweekday: Monday=1 .. Sunday=7 -> Sunday=0
    return TemporalFeatures(
        currentMonth=now.month,
        currentQuarter=(now.month - 1) // 3 + 1,
        dayOfWeek=now.isoweekday() % 7,
        seasonalPatternScore=DEFAULT_SEASONAL_SCORE,
    )


def extract_competitive(history: EntityHistory) -> CompetitiveFeatures:
    supplemental = history.supplemental
    return CompetitiveFeatures(
        nearbyCompetitorCount=(
            DEFAULT_COMPETITOR_COUNT
            if supplemental.nearbyCompetitorCount is None
            else supplemental.nearbyCompetitorCount
        ),
        marketSaturation=supplemental.marketSaturation or MarketSaturation.MEDIUM,
        priceComparison=supplemental.priceComparison or PriceComparison.COMPETITIVE,
    )


# =============================================================================
# Public API
# =============================================================================


def extract_features(history: EntityHistory, now: Optional[datetime] = None) -> FeatureSet:
    """
    Extract the full FeatureSet for one entity.

    Args:
        history: Event history snapshot for the entity.
        now: Reference time. Defaults to the current UTC time. Passing it
            explicitly makes extraction deterministic.

    Returns:
        Frozen FeatureSet with all eight categories populated.

    Raises:
        InsufficientDataError: The entity has no events.
        InvalidNumericInputError: Malformed numeric input or future timestamps.

    Example:
        >>> features = extract_features(history, now=datetime(2026, 10, 19, tzinfo=timezone.utc))
        >>> features.engagement.trend
        <EngagementTrend.DECLINING: 'declining'>
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    validate_history(history, now)

    df = _build_event_frame(history)
    now_ts = pd.Timestamp(now)

    engagement = extract_engagement(df, now_ts)
    days_since = engagement.daysSinceLastEvent

    return FeatureSet(
        entityId=history.entityId,
        extractedAt=now,
        engagement=engagement,
        appointmentBehavior=extract_appointment_behavior(df),
        paymentBehavior=extract_payment_behavior(history),
        communication=extract_communication(history, now_ts, days_since),
        relationship=extract_relationship(history, df, now_ts),
        treatment=extract_treatment(history, df, days_since),
        temporal=extract_temporal(now),
        competitive=extract_competitive(history),
    )
