"""
Outcome Validation Service

Closes the loop between predictions and what actually happened.

Churn:
- A prediction is accurate when the entity churned and the level was High or
  Critical, or did not churn and the level was Low or Medium.
- A confusion matrix over validated assessments in a time window gives
  accuracy, precision, recall and F1. Every ratio with a zero denominator
  is 0; an empty window yields all zeros.

Anomalies:
- Lifecycle transitions only move forward:

      new -> acknowledged -> investigating -> resolved
      any non-terminal status -> false_positive

  RESOLVED and FALSE_POSITIVE are terminal. Any other move raises
  InvalidStatusTransitionError.
- Statistics over a window: counts by severity / status / type, average
  resolution time in hours, false-positive rate in percent.

Every function here is pure: records are returned as updated copies
(model_copy) and the inputs are left unchanged.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from risk_engine.core.exceptions import InvalidStatusTransitionError
from risk_engine.models.enums import AnomalySeverity, AnomalyStatus, RiskLevel
from risk_engine.models.schemas import (
    AccuracyDelta,
    AccuracyReport,
    AnomalyRecord,
    AnomalyStatisticsReport,
    ChurnOutcome,
    InvestigationNote,
    RiskAssessment,
)


POSITIVE_LEVELS = (RiskLevel.HIGH, RiskLevel.CRITICAL)


# =============================================================================
# Churn Predictions
# =============================================================================


def is_prediction_accurate(level: RiskLevel, churned: bool) -> bool:
    predicted_churn = level in POSITIVE_LEVELS
    return predicted_churn == churned


def apply_outcome(
    assessment: RiskAssessment,
    outcome: ChurnOutcome,
    now: Optional[datetime] = None,
) -> RiskAssessment:
    """
    Attach ground truth to an assessment.

    Returns a new RiskAssessment with actualOutcome, predictionAccurate and
    validatedAt set. Recording a second outcome replaces the first.
    """
    return assessment.model_copy(
        update={
            "actualOutcome": outcome,
            "predictionAccurate": is_prediction_accurate(assessment.level, outcome.churned),
            "validatedAt": now or datetime.now(timezone.utc),
        }
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Window bounds without a timezone are read as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _in_window(ts: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and ts < start:
        return False
    if end is not None and ts > end:
        return False
    return True


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def compute_accuracy_report(
    assessments: Iterable[RiskAssessment],
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
) -> AccuracyReport:
    """
    Confusion matrix over validated assessments computed inside the window.

    Assessments without an actualOutcome are ignored.

    Example:
        TP=2, FP=1, TN=1, FN=0
        -> accuracy 0.75, precision 2/3, recall 1.0, f1 0.8
    """
    window_start, window_end = as_utc(window_start), as_utc(window_end)
    tp = fp = tn = fn = 0

    for assessment in assessments:
        if assessment.actualOutcome is None:
            continue
        if not _in_window(assessment.computedAt, window_start, window_end):
            continue

        predicted = assessment.level in POSITIVE_LEVELS
        actual = assessment.actualOutcome.churned

        if predicted and actual:
            tp += 1
        elif predicted and not actual:
            fp += 1
        elif not predicted and not actual:
            tn += 1
        else:
            fn += 1

    total = tp + fp + tn + fn
    precision = _ratio(tp, tp + fp)
    recall = _ratio(tp, tp + fn)

    return AccuracyReport(
        total=total,
        truePositives=tp,
        falsePositives=fp,
        trueNegatives=tn,
        falseNegatives=fn,
        accuracy=_ratio(tp + tn, total),
        precision=precision,
        recall=recall,
        f1=_ratio(2 * precision * recall, precision + recall),
        windowStart=window_start,
        windowEnd=window_end,
    )


def build_accuracy_delta(
    assessment: RiskAssessment,
    before: AccuracyReport,
    after: AccuracyReport,
) -> AccuracyDelta:
    return AccuracyDelta(
        assessmentId=assessment.id,
        predictionAccurate=bool(assessment.predictionAccurate),
        before=before,
        after=after,
        accuracyChange=after.accuracy - before.accuracy,
    )


# =============================================================================
# Anomaly Lifecycle
# =============================================================================

TERMINAL_STATUSES = (AnomalyStatus.RESOLVED, AnomalyStatus.FALSE_POSITIVE)

# allowed source statuses per target status
_ALLOWED_FROM: Dict[AnomalyStatus, Sequence[AnomalyStatus]] = {
    AnomalyStatus.ACKNOWLEDGED: (AnomalyStatus.NEW,),
    AnomalyStatus.INVESTIGATING: (AnomalyStatus.NEW, AnomalyStatus.ACKNOWLEDGED),
    AnomalyStatus.RESOLVED: (AnomalyStatus.NEW, AnomalyStatus.ACKNOWLEDGED, AnomalyStatus.INVESTIGATING),
    AnomalyStatus.FALSE_POSITIVE: (AnomalyStatus.NEW, AnomalyStatus.ACKNOWLEDGED, AnomalyStatus.INVESTIGATING),
}


def ensure_transition(record: AnomalyRecord, target: AnomalyStatus) -> None:
    """
    Raises:
        InvalidStatusTransitionError: target is not reachable from the
            record's current status.
    """
    if record.status not in _ALLOWED_FROM.get(target, ()):
        raise InvalidStatusTransitionError(
            f"Cannot move anomaly {record.id} from '{record.status.value}' to '{target.value}'"
        )


def acknowledge(record: AnomalyRecord, user_id: Optional[str] = None, now: Optional[datetime] = None) -> AnomalyRecord:
    ensure_transition(record, AnomalyStatus.ACKNOWLEDGED)
    return record.model_copy(
        update={
            "status": AnomalyStatus.ACKNOWLEDGED,
            "assignedTo": user_id,
            "investigationStartedAt": now or datetime.now(timezone.utc),
        }
    )


def start_investigation(record: AnomalyRecord, now: Optional[datetime] = None) -> AnomalyRecord:
    ensure_transition(record, AnomalyStatus.INVESTIGATING)
    update = {"status": AnomalyStatus.INVESTIGATING}
    if record.investigationStartedAt is None:
        update["investigationStartedAt"] = now or datetime.now(timezone.utc)
    return record.model_copy(update=update)


def add_note(
    record: AnomalyRecord,
    note: str,
    added_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AnomalyRecord:
    if record.status in TERMINAL_STATUSES:
        raise InvalidStatusTransitionError(
            f"Cannot add notes to anomaly {record.id} in terminal status '{record.status.value}'"
        )

    entry = InvestigationNote(note=note, addedBy=added_by, addedAt=now or datetime.now(timezone.utc))
    return record.model_copy(update={"investigationNotes": [*record.investigationNotes, entry]})


def resolve(
    record: AnomalyRecord,
    resolution: str,
    root_cause: Optional[str] = None,
    resolved_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AnomalyRecord:
    ensure_transition(record, AnomalyStatus.RESOLVED)
    return record.model_copy(
        update={
            "status": AnomalyStatus.RESOLVED,
            "resolution": resolution,
            "rootCause": root_cause,
            "resolvedBy": resolved_by,
            "resolvedAt": now or datetime.now(timezone.utc),
        }
    )


def mark_false_positive(record: AnomalyRecord, reason: str, now: Optional[datetime] = None) -> AnomalyRecord:
    ensure_transition(record, AnomalyStatus.FALSE_POSITIVE)
    return record.model_copy(
        update={
            "status": AnomalyStatus.FALSE_POSITIVE,
            "falsePositiveReason": reason,
            "resolvedAt": now or datetime.now(timezone.utc),
        }
    )


# =============================================================================
# Anomaly Statistics
# =============================================================================


def compute_anomaly_statistics(
    records: Iterable[AnomalyRecord],
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
) -> AnomalyStatisticsReport:
    """
    Summarise anomalies detected inside the window.

    Resolution time is only measured for RESOLVED records; false positives
    count toward falsePositiveRate but not toward avgResolutionHours.
    """
    window_start, window_end = as_utc(window_start), as_utc(window_end)
    in_window: List[AnomalyRecord] = [
        r for r in records if _in_window(r.detectedAt, window_start, window_end)
    ]

    by_severity = {s.value: 0 for s in AnomalySeverity}
    by_status = {s.value: 0 for s in AnomalyStatus}
    by_type: Dict[str, int] = {}
    resolution_hours: List[float] = []

    for record in in_window:
        by_severity[record.severity.value] += 1
        by_status[record.status.value] += 1
        by_type[record.anomalyType.value] = by_type.get(record.anomalyType.value, 0) + 1

        if record.status == AnomalyStatus.RESOLVED and record.resolvedAt is not None:
            resolution_hours.append((record.resolvedAt - record.detectedAt).total_seconds() / 3600)

    total = len(in_window)

    return AnomalyStatisticsReport(
        total=total,
        bySeverity=by_severity,
        byStatus=by_status,
        byType=by_type,
        avgResolutionHours=_ratio(sum(resolution_hours), len(resolution_hours)),
        falsePositiveRate=_ratio(by_status[AnomalyStatus.FALSE_POSITIVE.value] * 100, total),
    )
