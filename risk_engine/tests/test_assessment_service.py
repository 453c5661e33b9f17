"""
Risk Engine Service Test Module

Tests for risk_engine/services/assessment_service.py using the in-memory
repository from conftest.py and a fixed clock.

Test Coverage:
- build_risk_assessment: assembled assessment, entity mismatch
- Read-through cache: idempotence inside the TTL, recompute after it,
  force refresh, TTL 0, concurrent misses converge to one stored record
- Batch scoring: per-entity error isolation, duplicate ids, counts, level filter
- Outcome recording with before/after accuracy
- Retention efforts, at-risk listing, history trend, dashboard
- Report windows given without a timezone are read as UTC
- Anomaly detection persistence and lifecycle through the service
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from risk_engine.core.exceptions import (
    AnomalyNotFoundError,
    AssessmentNotFoundError,
    EntityNotFoundError,
    InsufficientDataError,
    InvalidStatusTransitionError,
)
from risk_engine.models.enums import (
    AnomalyStatus,
    AnomalyType,
    DetectionMethod,
    RetentionEffortOutcome,
    RetentionEffortType,
    RiskLevel,
    ScoreTrend,
)
from risk_engine.models.schemas import (
    AnomalyDetectionRequest,
    ChurnOutcome,
    RetentionEffortCreate,
)
from risk_engine.services.assessment_service import (
    RiskEngineService,
    build_risk_assessment,
    score_trend,
)
from risk_engine.tests.factories import (
    REFERENCE_NOW,
    lapsed_history,
    make_assessment,
    make_history,
    steady_history,
)


# ============================================================
# TEST CLASS: Pure Builder
# ============================================================

class TestBuildRiskAssessment:
    """Tests for assembling one assessment without persistence."""

    def test_lapsed_assessment_contents(self, risk_config):
        assessment = build_risk_assessment("patient-lapsed", lapsed_history(), now=REFERENCE_NOW, config=risk_config)

        assert assessment.entityId == "patient-lapsed"
        assert assessment.computedAt == REFERENCE_NOW
        assert assessment.score == 100
        assert assessment.level == RiskLevel.CRITICAL
        assert assessment.confidence == 75.0
        assert assessment.redFlags[0].indicator == "Extended Absence"
        assert assessment.recommendedActions[0].action == "Personal Phone Call"
        assert assessment.featureSet.engagement.daysSinceLastEvent == 130
        assert assessment.calculationDurationMs is not None and assessment.calculationDurationMs >= 0

    def test_entity_mismatch_rejected(self, risk_config):
        with pytest.raises(ValueError):
            build_risk_assessment("someone-else", steady_history(), now=REFERENCE_NOW, config=risk_config)

    def test_each_build_gets_new_id(self, risk_config):
        first = build_risk_assessment("patient-steady", steady_history(), now=REFERENCE_NOW, config=risk_config)
        second = build_risk_assessment("patient-steady", steady_history(), now=REFERENCE_NOW, config=risk_config)

        assert first.id != second.id
        assert first.score == second.score


# ============================================================
# TEST CLASS: Cache
# ============================================================

class TestAssessmentCache:
    """Tests for at most one computation per entity per TTL window."""

    @pytest.mark.asyncio
    async def test_second_call_within_ttl_returns_same_assessment(self, engine_service, fake_repository, clock):
        fake_repository.add_history(steady_history())

        first, first_cached = await engine_service.compute_risk_assessment("patient-steady")
        clock.advance(days=6, hours=23)
        second, second_cached = await engine_service.compute_risk_assessment("patient-steady")

        assert first_cached is False
        assert second_cached is True
        assert second.id == first.id
        assert second.computedAt == first.computedAt
        assert len(fake_repository.assessments) == 1, "No duplicate computation inside the window"
        assert fake_repository.history_loads == ["patient-steady"]

    @pytest.mark.asyncio
    async def test_recomputed_after_ttl(self, engine_service, fake_repository, clock):
        fake_repository.add_history(steady_history())

        first, _ = await engine_service.compute_risk_assessment("patient-steady")
        clock.advance(days=8)
        second, cached = await engine_service.compute_risk_assessment("patient-steady")

        assert cached is False
        assert second.id != first.id
        assert second.computedAt == REFERENCE_NOW + timedelta(days=8)
        assert len(fake_repository.assessments) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_skips_cache(self, engine_service, fake_repository):
        fake_repository.add_history(steady_history())

        first, _ = await engine_service.compute_risk_assessment("patient-steady")
        second, cached = await engine_service.compute_risk_assessment("patient-steady", force_refresh=True)

        assert cached is False
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self, fake_repository, test_settings, clock):
        settings = test_settings.model_copy(update={"cache_ttl_days": 0})
        service = RiskEngineService(repository=fake_repository, settings=settings, clock=clock)
        fake_repository.add_history(steady_history())

        await service.compute_risk_assessment("patient-steady")
        _, cached = await service.compute_risk_assessment("patient-steady")

        assert cached is False
        assert len(fake_repository.assessments) == 2

    @pytest.mark.asyncio
    async def test_supplied_history_not_loaded_from_repository(self, engine_service, fake_repository):
        assessment, _ = await engine_service.compute_risk_assessment("patient-lapsed", history=lapsed_history())

        assert assessment.level == RiskLevel.CRITICAL
        assert fake_repository.history_loads == []

    @pytest.mark.asyncio
    async def test_unknown_entity(self, engine_service):
        with pytest.raises(EntityNotFoundError):
            await engine_service.compute_risk_assessment("nobody")

    @pytest.mark.asyncio
    async def test_failed_computation_is_not_stored(self, engine_service, fake_repository):
        fake_repository.add_history(make_history("patient-empty"))

        with pytest.raises(InsufficientDataError):
            await engine_service.compute_risk_assessment("patient-empty")

        assert fake_repository.assessments == {}

    @pytest.mark.asyncio
    async def test_concurrent_misses_keep_one_assessment(self, engine_service, fake_repository):
        fake_repository.add_history(steady_history())
        fake_repository.fetch_delay = 0.01

        results = await asyncio.gather(
            engine_service.compute_risk_assessment("patient-steady"),
            engine_service.compute_risk_assessment("patient-steady"),
        )

        assert fake_repository.history_loads == ["patient-steady", "patient-steady"], "Both requests missed the cache"
        assert len(fake_repository.assessments) == 1, "Racing computations converge to one stored record"
        stored_id = next(iter(fake_repository.assessments))
        assert stored_id in {assessment.id for assessment, _ in results}

        again, cached = await engine_service.compute_risk_assessment("patient-steady")
        dashboard = await engine_service.get_dashboard()

        assert cached is True
        assert again.id == stored_id
        assert dashboard.totalAssessments == 1

    @pytest.mark.asyncio
    async def test_force_refresh_does_not_prune(self, engine_service, fake_repository, clock):
        fake_repository.add_history(steady_history())

        first, _ = await engine_service.compute_risk_assessment("patient-steady")
        clock.advance(hours=1)
        second, _ = await engine_service.compute_risk_assessment("patient-steady", force_refresh=True)

        assert set(fake_repository.assessments) == {first.id, second.id}


# ============================================================
# TEST CLASS: Batch
# ============================================================

class TestBatchCompute:
    """Tests for concurrent batch scoring with error isolation."""

    @pytest.mark.asyncio
    async def test_failures_do_not_affect_other_entities(self, engine_service, fake_repository):
        fake_repository.add_history(steady_history())
        fake_repository.add_history(lapsed_history())
        fake_repository.add_history(make_history("patient-empty"))
        fake_repository.failing_entities["patient-broken"] = RuntimeError("connection reset")

        result = await engine_service.batch_compute([
            "patient-steady", "patient-empty", "patient-lapsed", "patient-missing", "patient-broken",
        ])

        assert result.total == 5
        assert result.successful == 2
        assert result.failed == 3
        assert {e.entityId: e.errorType for e in result.errors} == {
            "patient-empty": "InsufficientDataError",
            "patient-missing": "EntityNotFoundError",
            "patient-broken": "RuntimeError",
        }
        assert {a.entityId for a in result.assessments} == {"patient-steady", "patient-lapsed"}

    @pytest.mark.asyncio
    async def test_duplicates_assessed_once_and_cache_counted(self, engine_service, fake_repository):
        fake_repository.add_history(steady_history())
        fake_repository.add_history(lapsed_history())
        await engine_service.compute_risk_assessment("patient-steady")

        result = await engine_service.batch_compute(["patient-steady", "patient-lapsed", "patient-lapsed"])

        assert result.total == 2
        assert result.cached == 1
        assert result.successful == 1
        assert fake_repository.history_loads.count("patient-lapsed") == 1

    @pytest.mark.asyncio
    async def test_level_filter_limits_returned_assessments_only(self, engine_service, fake_repository):
        fake_repository.add_history(steady_history())
        fake_repository.add_history(lapsed_history())

        result = await engine_service.batch_compute(
            ["patient-steady", "patient-lapsed"],
            risk_level_filter=RiskLevel.CRITICAL,
        )

        assert result.successful == 2
        assert [a.entityId for a in result.assessments] == ["patient-lapsed"]

    @pytest.mark.asyncio
    async def test_empty_batch(self, engine_service):
        result = await engine_service.batch_compute([])

        assert result.total == 0
        assert result.assessments == []


# ============================================================
# TEST CLASS: Outcomes & Retention
# ============================================================

class TestOutcomesAndRetention:
    """Tests for ground truth recording and retention-effort logging."""

    @pytest.mark.asyncio
    async def test_record_outcome_reports_accuracy_change(self, engine_service, fake_repository, clock):
        correct = make_assessment("patient-a", level=RiskLevel.HIGH, churned=True)
        pending = make_assessment("patient-b", level=RiskLevel.CRITICAL)
        await fake_repository.save_assessment(correct)
        await fake_repository.save_assessment(pending)
        clock.advance(days=60)

        delta = await engine_service.record_outcome(pending.id, ChurnOutcome(churned=False))

        assert delta.predictionAccurate is False
        assert delta.before.total == 1
        assert delta.before.accuracy == pytest.approx(1.0)
        assert delta.after.total == 2
        assert delta.after.accuracy == pytest.approx(0.5)
        assert delta.accuracyChange == pytest.approx(-0.5)

        stored = fake_repository.assessments[pending.id]
        assert stored.actualOutcome.churned is False
        assert stored.validatedAt == clock.now

    @pytest.mark.asyncio
    async def test_recording_twice_replaces_outcome(self, engine_service, fake_repository):
        assessment = make_assessment(level=RiskLevel.HIGH)
        await fake_repository.save_assessment(assessment)

        await engine_service.record_outcome(assessment.id, ChurnOutcome(churned=False))
        delta = await engine_service.record_outcome(assessment.id, ChurnOutcome(churned=True))

        assert delta.before.total == 1, "Previous outcome for the same assessment counted once"
        assert delta.after.total == 1
        assert delta.after.truePositives == 1

    @pytest.mark.asyncio
    async def test_record_outcome_unknown_assessment(self, engine_service):
        with pytest.raises(AssessmentNotFoundError):
            await engine_service.record_outcome("missing", ChurnOutcome(churned=True))

    @pytest.mark.asyncio
    async def test_retention_efforts_are_appended(self, engine_service, fake_repository, clock):
        assessment = make_assessment()
        await fake_repository.save_assessment(assessment)

        await engine_service.add_retention_effort(
            assessment.id,
            RetentionEffortCreate(type=RetentionEffortType.CALL, performedBy="front-desk"),
        )
        clock.advance(days=2)
        updated = await engine_service.add_retention_effort(
            assessment.id,
            RetentionEffortCreate(type=RetentionEffortType.EMAIL, outcome=RetentionEffortOutcome.POSITIVE),
        )

        assert [e.type for e in updated.retentionEfforts] == [RetentionEffortType.CALL, RetentionEffortType.EMAIL]
        assert updated.retentionEfforts[1].performedAt == REFERENCE_NOW + timedelta(days=2)
        assert updated.score == assessment.score, "Logging an effort never changes the score"


# ============================================================
# TEST CLASS: Listings & Reports
# ============================================================

class TestListingsAndReports:
    """Tests for at-risk listing, history and dashboard."""

    @pytest.mark.asyncio
    async def test_at_risk_defaults_to_high_and_critical(self, engine_service, fake_repository):
        for entity_id, score, level in [
            ("patient-a", 90, RiskLevel.CRITICAL),
            ("patient-b", 60, RiskLevel.HIGH),
            ("patient-c", 30, RiskLevel.MEDIUM),
        ]:
            await fake_repository.save_assessment(make_assessment(entity_id, score=score, level=level))

        at_risk = await engine_service.get_entities_at_risk()
        critical = await engine_service.get_entities_at_risk(RiskLevel.CRITICAL)

        assert [a.entityId for a in at_risk] == ["patient-a", "patient-b"]
        assert [a.entityId for a in critical] == ["patient-a"]

    @pytest.mark.asyncio
    async def test_history_trend(self, engine_service, fake_repository):
        await fake_repository.save_assessment(
            make_assessment("patient-a", score=40, level=RiskLevel.MEDIUM, computed_at=REFERENCE_NOW - timedelta(days=30))
        )
        await fake_repository.save_assessment(
            make_assessment("patient-a", score=80, level=RiskLevel.CRITICAL, computed_at=REFERENCE_NOW)
        )

        history = await engine_service.get_entity_history("patient-a")

        assert history.count == 2
        assert history.latest.score == 80
        assert history.trend == ScoreTrend.INCREASING

    @pytest.mark.asyncio
    async def test_history_for_unknown_entity(self, engine_service):
        with pytest.raises(AssessmentNotFoundError):
            await engine_service.get_entity_history("nobody")

    def test_score_trend_thresholds(self):
        newer = make_assessment(score=55)

        assert score_trend([newer]) == ScoreTrend.STABLE
        assert score_trend([newer, make_assessment(score=45)]) == ScoreTrend.STABLE
        assert score_trend([newer, make_assessment(score=70)]) == ScoreTrend.DECREASING

    @pytest.mark.asyncio
    async def test_dashboard(self, engine_service, fake_repository):
        flags = [{"indicator": "Extended Absence", "severity": "critical", "description": "No appointment for 120 days"}]
        await fake_repository.save_assessment(make_assessment("patient-a", score=90, level=RiskLevel.CRITICAL, red_flags=flags, churned=True))
        await fake_repository.save_assessment(make_assessment("patient-b", score=60, level=RiskLevel.HIGH, red_flags=flags, churned=False))
        await fake_repository.save_assessment(make_assessment("patient-c", score=30, level=RiskLevel.MEDIUM))

        dashboard = await engine_service.get_dashboard()

        assert dashboard.totalAssessments == 3
        assert dashboard.byLevel == {"Low": 0, "Medium": 1, "High": 1, "Critical": 1}
        assert dashboard.averageScore == pytest.approx(60.0)
        assert dashboard.topIndicators[0].indicator == "Extended Absence"
        assert dashboard.topIndicators[0].count == 2
        assert dashboard.validatedCount == 2
        assert dashboard.actualChurnRate == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_dashboard_without_data(self, engine_service):
        dashboard = await engine_service.get_dashboard()

        assert dashboard.totalAssessments == 0
        assert dashboard.averageScore == 0.0
        assert dashboard.actualChurnRate is None

    @pytest.mark.asyncio
    async def test_model_accuracy(self, engine_service, fake_repository):
        await fake_repository.save_assessment(make_assessment(level=RiskLevel.HIGH, churned=True))
        await fake_repository.save_assessment(make_assessment(level=RiskLevel.LOW, churned=True))
        await fake_repository.save_assessment(make_assessment(level=RiskLevel.LOW))

        report = await engine_service.get_model_accuracy()

        assert report.total == 2
        assert report.accuracy == pytest.approx(0.5)
        assert report.recall == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_naive_window_read_as_utc(self, engine_service, fake_repository):
        await fake_repository.save_assessment(
            make_assessment(level=RiskLevel.HIGH, churned=True, computed_at=REFERENCE_NOW - timedelta(days=100))
        )
        await fake_repository.save_assessment(make_assessment(level=RiskLevel.HIGH, churned=False))

        report = await engine_service.get_model_accuracy(window_start=datetime(2026, 10, 1))
        dashboard = await engine_service.get_dashboard(window_start=datetime(2026, 10, 1))

        assert report.total == 1
        assert report.falsePositives == 1
        assert report.windowStart == datetime(2026, 10, 1, tzinfo=timezone.utc)
        assert dashboard.totalAssessments == 1


# ============================================================
# TEST CLASS: Anomalies
# ============================================================

class TestAnomalyHandling:
    """Tests for anomaly detection and lifecycle through the service."""

    @pytest.mark.asyncio
    async def test_detected_anomaly_is_stored(self, engine_service, fake_repository):
        request = AnomalyDetectionRequest(
            metricName="no_show_rate",
            value=18.0,
            series=[6.0, 7.5, 5.0, 6.5, 7.0, 6.0, 5.5],
            method=DetectionMethod.IQR,
            anomalyType=AnomalyType.NO_SHOW_SPIKE,
        )

        record = await engine_service.detect_anomaly(request)

        assert record is not None
        assert fake_repository.anomalies[record.id] == record
        assert record.detectedAt == REFERENCE_NOW
        assert record.possibleCauses[0] == "Reminder system not working"

    @pytest.mark.asyncio
    async def test_normal_value_not_stored(self, engine_service, fake_repository):
        request = AnomalyDetectionRequest(metricName="bookings", value=10.0, series=[9.0, 10.0, 11.0])

        assert await engine_service.detect_anomaly(request) is None
        assert fake_repository.anomalies == {}

    @pytest.mark.asyncio
    async def test_lifecycle_through_service(self, engine_service, clock):
        request = AnomalyDetectionRequest(
            metricName="daily_revenue",
            value=1000.0,
            series=[4000.0, 4100.0, 3900.0, 4050.0],
            anomalyType=AnomalyType.REVENUE_DROP,
        )
        record = await engine_service.detect_anomaly(request)

        await engine_service.acknowledge_anomaly(record.id, "analyst-1")
        await engine_service.investigate_anomaly(record.id)
        await engine_service.add_anomaly_note(record.id, "Card processor outage confirmed", "analyst-1")
        clock.advance(hours=5)
        resolved = await engine_service.resolve_anomaly(record.id, "Processor restored", "Processor outage", "analyst-1")

        assert resolved.status == AnomalyStatus.RESOLVED
        assert len(resolved.investigationNotes) == 1

        with pytest.raises(InvalidStatusTransitionError):
            await engine_service.acknowledge_anomaly(record.id, "analyst-2")

        statistics = await engine_service.get_anomaly_statistics()
        assert statistics.total == 1
        assert statistics.avgResolutionHours == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_active_anomalies_exclude_closed(self, engine_service, fake_repository):
        request = AnomalyDetectionRequest(
            metricName="daily_revenue",
            value=1000.0,
            series=[4000.0, 4100.0, 3900.0, 4050.0],
            anomalyType=AnomalyType.REVENUE_DROP,
        )
        open_record = await engine_service.detect_anomaly(request)
        closed_record = await engine_service.detect_anomaly(request)
        await engine_service.mark_false_positive(closed_record.id, "Bank holiday")

        active = await engine_service.list_active_anomalies()

        assert [r.id for r in active] == [open_record.id]

    @pytest.mark.asyncio
    async def test_unknown_anomaly(self, engine_service):
        with pytest.raises(AnomalyNotFoundError):
            await engine_service.get_anomaly("missing")
