"""
Outcome Validation Test Module

Tests for risk_engine/services/outcome_validation.py.

Test Coverage:
- Prediction accuracy per level and outcome
- Confusion matrix, accuracy / precision / recall / F1, empty windows, naive bounds
- Anomaly lifecycle: forward-only transitions, terminal states, notes
- Anomaly statistics: counts, resolution hours, false-positive rate
"""

from datetime import datetime, timedelta, timezone

import pytest

from risk_engine.core.exceptions import InvalidStatusTransitionError
from risk_engine.models.enums import AnomalySeverity, AnomalyStatus, AnomalyType, RiskLevel
from risk_engine.models.schemas import ChurnOutcome
from risk_engine.services.outcome_validation import (
    acknowledge,
    add_note,
    apply_outcome,
    compute_accuracy_report,
    compute_anomaly_statistics,
    is_prediction_accurate,
    mark_false_positive,
    resolve,
    start_investigation,
)
from risk_engine.tests.factories import REFERENCE_NOW, make_anomaly, make_assessment


# ============================================================
# TEST CLASS: Churn Predictions
# ============================================================

class TestPredictionAccuracy:
    """Tests for per-assessment accuracy."""

    @pytest.mark.parametrize("level,churned,expected", [
        (RiskLevel.CRITICAL, True, True),
        (RiskLevel.HIGH, True, True),
        (RiskLevel.MEDIUM, True, False),
        (RiskLevel.LOW, True, False),
        (RiskLevel.CRITICAL, False, False),
        (RiskLevel.HIGH, False, False),
        (RiskLevel.MEDIUM, False, True),
        (RiskLevel.LOW, False, True),
    ])
    def test_accuracy_by_level(self, level, churned, expected):
        assert is_prediction_accurate(level, churned) is expected

    def test_apply_outcome_returns_updated_copy(self):
        assessment = make_assessment(level=RiskLevel.HIGH)
        validated_at = REFERENCE_NOW + timedelta(days=45)

        updated = apply_outcome(assessment, ChurnOutcome(churned=True), now=validated_at)

        assert updated.predictionAccurate is True
        assert updated.validatedAt == validated_at
        assert updated.actualOutcome.churned is True
        assert assessment.actualOutcome is None, "Original assessment is left untouched"
        assert updated.id == assessment.id
        assert updated.score == assessment.score


# ============================================================
# TEST CLASS: Confusion Matrix
# ============================================================

class TestAccuracyReport:
    """Tests for the confusion matrix over validated assessments."""

    def test_confusion_matrix_example(self):
        """TP=2, FP=1, TN=1, FN=0."""
        assessments = [
            make_assessment(level=RiskLevel.CRITICAL, churned=True),
            make_assessment(level=RiskLevel.HIGH, churned=True),
            make_assessment(level=RiskLevel.LOW, churned=False),
            make_assessment(level=RiskLevel.HIGH, churned=False),
        ]

        report = compute_accuracy_report(assessments)

        assert report.total == 4
        assert (report.truePositives, report.falsePositives, report.trueNegatives, report.falseNegatives) == (2, 1, 1, 0)
        assert report.accuracy == pytest.approx(0.75)
        assert report.precision == pytest.approx(2 / 3)
        assert report.recall == pytest.approx(1.0)
        assert report.f1 == pytest.approx(0.8)

    def test_empty_population_gives_zeros(self):
        report = compute_accuracy_report([])

        assert report.total == 0
        assert report.accuracy == 0.0
        assert report.precision == 0.0
        assert report.recall == 0.0
        assert report.f1 == 0.0

    def test_unvalidated_assessments_ignored(self):
        assessments = [
            make_assessment(level=RiskLevel.HIGH),
            make_assessment(level=RiskLevel.LOW, churned=True),
        ]

        report = compute_accuracy_report(assessments)

        assert report.total == 1
        assert report.falseNegatives == 1
        assert report.precision == 0.0, "No positive predictions means precision 0, not an error"
        assert report.recall == 0.0

    def test_window_filters_on_computed_at(self):
        assessments = [
            make_assessment(level=RiskLevel.HIGH, churned=True, computed_at=REFERENCE_NOW - timedelta(days=100)),
            make_assessment(level=RiskLevel.HIGH, churned=False, computed_at=REFERENCE_NOW - timedelta(days=10)),
        ]

        report = compute_accuracy_report(
            assessments,
            window_start=REFERENCE_NOW - timedelta(days=30),
            window_end=REFERENCE_NOW,
        )

        assert report.total == 1
        assert report.falsePositives == 1
        assert report.windowStart == REFERENCE_NOW - timedelta(days=30)

    def test_naive_window_bounds_read_as_utc(self):
        assessments = [
            make_assessment(level=RiskLevel.HIGH, churned=True, computed_at=REFERENCE_NOW - timedelta(days=100)),
            make_assessment(level=RiskLevel.HIGH, churned=True),
        ]

        report = compute_accuracy_report(
            assessments,
            window_start=datetime(2026, 10, 1),
            window_end=datetime(2026, 10, 31),
        )

        assert report.total == 1
        assert report.truePositives == 1
        assert report.windowStart == datetime(2026, 10, 1, tzinfo=timezone.utc)
        assert report.windowEnd == datetime(2026, 10, 31, tzinfo=timezone.utc)


# ============================================================
# TEST CLASS: Anomaly Lifecycle
# ============================================================

class TestAnomalyLifecycle:
    """Tests for forward-only status transitions."""

    def test_full_forward_path(self):
        record = make_anomaly()
        t1 = REFERENCE_NOW + timedelta(hours=1)
        t2 = REFERENCE_NOW + timedelta(hours=2)
        t3 = REFERENCE_NOW + timedelta(hours=6)

        record = acknowledge(record, "analyst-1", now=t1)
        assert record.status == AnomalyStatus.ACKNOWLEDGED
        assert record.assignedTo == "analyst-1"
        assert record.investigationStartedAt == t1

        record = start_investigation(record, now=t2)
        assert record.status == AnomalyStatus.INVESTIGATING
        assert record.investigationStartedAt == t1, "Start time is kept from acknowledgement"

        record = resolve(record, "Payment gateway restored", root_cause="Gateway outage", resolved_by="analyst-1", now=t3)
        assert record.status == AnomalyStatus.RESOLVED
        assert record.resolvedAt == t3
        assert record.rootCause == "Gateway outage"

    def test_investigation_directly_from_new(self):
        record = start_investigation(make_anomaly(), now=REFERENCE_NOW)

        assert record.status == AnomalyStatus.INVESTIGATING
        assert record.investigationStartedAt == REFERENCE_NOW

    def test_cannot_move_backwards(self):
        record = make_anomaly(status=AnomalyStatus.INVESTIGATING)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            acknowledge(record, "analyst-1")

        assert exc_info.value.status_code == 409

    @pytest.mark.parametrize("terminal", [AnomalyStatus.RESOLVED, AnomalyStatus.FALSE_POSITIVE])
    def test_terminal_states_are_final(self, terminal):
        record = make_anomaly(status=terminal)

        with pytest.raises(InvalidStatusTransitionError):
            start_investigation(record)
        with pytest.raises(InvalidStatusTransitionError):
            resolve(record, "again")
        with pytest.raises(InvalidStatusTransitionError):
            mark_false_positive(record, "again")
        with pytest.raises(InvalidStatusTransitionError):
            add_note(record, "late note")

    def test_false_positive_from_any_open_status(self):
        for status in (AnomalyStatus.NEW, AnomalyStatus.ACKNOWLEDGED, AnomalyStatus.INVESTIGATING):
            record = mark_false_positive(make_anomaly(status=status), "Holiday closure", now=REFERENCE_NOW)

            assert record.status == AnomalyStatus.FALSE_POSITIVE
            assert record.falsePositiveReason == "Holiday closure"
            assert record.resolvedAt == REFERENCE_NOW

    def test_notes_append_without_status_change(self):
        record = make_anomaly(status=AnomalyStatus.ACKNOWLEDGED)

        record = add_note(record, "Checked processor dashboard", added_by="analyst-1", now=REFERENCE_NOW)
        record = add_note(record, "Escalated to vendor", now=REFERENCE_NOW)

        assert record.status == AnomalyStatus.ACKNOWLEDGED
        assert [n.note for n in record.investigationNotes] == [
            "Checked processor dashboard",
            "Escalated to vendor",
        ]

    def test_transitions_do_not_mutate_input(self):
        original = make_anomaly()

        acknowledge(original, "analyst-1")

        assert original.status == AnomalyStatus.NEW


# ============================================================
# TEST CLASS: Anomaly Statistics
# ============================================================

class TestAnomalyStatistics:
    """Tests for counts and rates over a window."""

    def test_counts_and_rates(self):
        records = [
            make_anomaly(
                status=AnomalyStatus.RESOLVED,
                severity=AnomalySeverity.CRITICAL,
                resolved_at=REFERENCE_NOW + timedelta(hours=4),
            ),
            make_anomaly(
                status=AnomalyStatus.RESOLVED,
                severity=AnomalySeverity.HIGH,
                resolved_at=REFERENCE_NOW + timedelta(hours=8),
            ),
            make_anomaly(
                status=AnomalyStatus.FALSE_POSITIVE,
                anomaly_type=AnomalyType.NO_SHOW_SPIKE,
                resolved_at=REFERENCE_NOW + timedelta(hours=100),
            ),
            make_anomaly(status=AnomalyStatus.NEW, anomaly_type=AnomalyType.NO_SHOW_SPIKE),
        ]

        report = compute_anomaly_statistics(records)

        assert report.total == 4
        assert report.bySeverity == {"low": 0, "medium": 0, "high": 3, "critical": 1}
        assert report.byStatus["resolved"] == 2
        assert report.byStatus["false_positive"] == 1
        assert report.byStatus["investigating"] == 0
        assert report.byType == {"revenue_drop": 2, "no_show_spike": 2}
        assert report.avgResolutionHours == pytest.approx(6.0), "False positives are not resolution times"
        assert report.falsePositiveRate == pytest.approx(25.0)

    def test_empty_window(self):
        report = compute_anomaly_statistics([])

        assert report.total == 0
        assert report.avgResolutionHours == 0.0
        assert report.falsePositiveRate == 0.0

    def test_window_filters_on_detected_at(self):
        records = [
            make_anomaly(detected_at=REFERENCE_NOW - timedelta(days=40)),
            make_anomaly(detected_at=REFERENCE_NOW - timedelta(days=2)),
        ]

        report = compute_anomaly_statistics(records, window_start=REFERENCE_NOW - timedelta(days=7))

        assert report.total == 1

    def test_naive_window_bounds_read_as_utc(self):
        records = [
            make_anomaly(detected_at=REFERENCE_NOW - timedelta(days=40)),
            make_anomaly(),
        ]

        report = compute_anomaly_statistics(records, window_start=datetime(2026, 10, 1), window_end=datetime(2026, 10, 20))

        assert report.total == 1
