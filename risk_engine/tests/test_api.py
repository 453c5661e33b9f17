"""
API Router Test Module

Tests for risk_engine/api/churn.py and risk_engine/api/anomalies.py.

Endpoint functions are called directly with a RiskEngineService built on the
in-memory repository, so these tests cover request handling and the mapping
of engine errors to HTTP status codes without a running server.

Test Coverage:
- Churn: assessment with cache flag, batch validation, history, outcome, efforts
- Anomalies: detection response shape, lifecycle endpoints, 409 on invalid moves
- Error mapping: 404 unknown ids, 422 insufficient data / bad series
- Route registration on the application
"""

import pytest
from fastapi import HTTPException

from risk_engine.api import anomalies as anomalies_api
from risk_engine.api import churn as churn_api
from risk_engine.models.enums import AnomalyStatus, AnomalyType, RetentionEffortType, RiskLevel
from risk_engine.models.schemas import (
    AcknowledgeRequest,
    AnomalyDetectionRequest,
    AnomalyResolveRequest,
    BatchAssessmentRequest,
    ChurnOutcome,
    FalsePositiveRequest,
    InvestigationNoteCreate,
    RetentionEffortCreate,
)
from risk_engine.tests.factories import lapsed_history, make_history, steady_history


REVENUE_DROP = AnomalyDetectionRequest(
    metricName="daily_revenue",
    value=1000.0,
    series=[4000.0, 4100.0, 3900.0, 4050.0],
    anomalyType=AnomalyType.REVENUE_DROP,
)


# ============================================================
# TEST CLASS: Churn Endpoints
# ============================================================

class TestChurnEndpoints:
    """Tests for /churn routes."""

    @pytest.mark.asyncio
    async def test_assessment_then_cached(self, engine_service, fake_repository):
        fake_repository.add_history(lapsed_history())

        first = await churn_api.get_churn_assessment("patient-lapsed", engine_service)
        second = await churn_api.get_churn_assessment("patient-lapsed", engine_service)

        assert first["cached"] is False
        assert second["cached"] is True
        assert second["assessment"].id == first["assessment"].id
        assert first["assessment"].level == RiskLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_refresh_recomputes(self, engine_service, fake_repository):
        fake_repository.add_history(steady_history())

        first = await churn_api.get_churn_assessment("patient-steady", engine_service)
        refreshed = await churn_api.get_churn_assessment("patient-steady", engine_service, refresh=True)

        assert refreshed["cached"] is False
        assert refreshed["assessment"].id != first["assessment"].id

    @pytest.mark.asyncio
    async def test_unknown_entity_is_404(self, engine_service):
        with pytest.raises(HTTPException) as exc_info:
            await churn_api.get_churn_assessment("nobody", engine_service)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_no_events_is_422(self, engine_service, fake_repository):
        fake_repository.add_history(make_history("patient-empty"))

        with pytest.raises(HTTPException) as exc_info:
            await churn_api.get_churn_assessment("patient-empty", engine_service)

        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, engine_service, fake_repository):
        fake_repository.failing_entities["patient-broken"] = RuntimeError("connection reset")

        with pytest.raises(HTTPException) as exc_info:
            await churn_api.get_churn_assessment("patient-broken", engine_service)

        assert exc_info.value.status_code == 500
        assert "connection reset" not in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_batch_rejects_empty_list(self, engine_service):
        with pytest.raises(HTTPException) as exc_info:
            await churn_api.batch_assess(BatchAssessmentRequest(entityIds=[]), engine_service)

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_batch_rejects_oversized_list(self, engine_service):
        request = BatchAssessmentRequest(entityIds=[f"patient-{i}" for i in range(churn_api.MAX_BATCH_SIZE + 1)])

        with pytest.raises(HTTPException) as exc_info:
            await churn_api.batch_assess(request, engine_service)

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_batch_reports_item_errors(self, engine_service, fake_repository):
        fake_repository.add_history(steady_history())

        result = await churn_api.batch_assess(
            BatchAssessmentRequest(entityIds=["patient-steady", "nobody"]),
            engine_service,
        )

        assert result.successful == 1
        assert result.failed == 1
        assert result.errors[0].entityId == "nobody"

    @pytest.mark.asyncio
    async def test_outcome_and_effort_endpoints(self, engine_service, fake_repository):
        fake_repository.add_history(lapsed_history())
        response = await churn_api.get_churn_assessment("patient-lapsed", engine_service)
        assessment_id = response["assessment"].id

        delta = await churn_api.record_outcome(assessment_id, ChurnOutcome(churned=True), engine_service)
        updated = await churn_api.add_retention_effort(
            assessment_id,
            RetentionEffortCreate(type=RetentionEffortType.CALL),
            engine_service,
        )
        history = await churn_api.get_entity_history("patient-lapsed", engine_service)

        assert delta.predictionAccurate is True
        assert updated.actualOutcome.churned is True
        assert len(updated.retentionEfforts) == 1
        assert history.count == 1

    @pytest.mark.asyncio
    async def test_unknown_assessment_is_404(self, engine_service):
        with pytest.raises(HTTPException) as exc_info:
            await churn_api.get_assessment("missing", engine_service)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_reports(self, engine_service, fake_repository):
        fake_repository.add_history(lapsed_history())
        fake_repository.add_history(steady_history())
        await churn_api.batch_assess(
            BatchAssessmentRequest(entityIds=["patient-lapsed", "patient-steady"]),
            engine_service,
        )

        at_risk = await churn_api.get_entities_at_risk(engine_service)
        dashboard = await churn_api.get_dashboard(engine_service)
        accuracy = await churn_api.get_model_accuracy(engine_service)

        assert [a.entityId for a in at_risk] == ["patient-lapsed"]
        assert dashboard.totalAssessments == 2
        assert accuracy.total == 0


# ============================================================
# TEST CLASS: Anomaly Endpoints
# ============================================================

class TestAnomalyEndpoints:
    """Tests for /anomalies routes."""

    @pytest.mark.asyncio
    async def test_detect_response_shape(self, engine_service):
        found = await anomalies_api.detect_anomaly(REVENUE_DROP, engine_service)
        normal = await anomalies_api.detect_anomaly(
            AnomalyDetectionRequest(metricName="bookings", value=10.0, series=[9.0, 10.0, 11.0]),
            engine_service,
        )

        assert found["isAnomaly"] is True
        assert found["anomaly"].anomalyType == AnomalyType.REVENUE_DROP
        assert normal == {"isAnomaly": False, "anomaly": None}

    @pytest.mark.asyncio
    async def test_empty_series_is_422(self, engine_service):
        request = AnomalyDetectionRequest(metricName="bookings", value=10.0, series=[])

        with pytest.raises(HTTPException) as exc_info:
            await anomalies_api.detect_anomaly(request, engine_service)

        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_lifecycle_endpoints(self, engine_service):
        found = await anomalies_api.detect_anomaly(REVENUE_DROP, engine_service)
        anomaly_id = found["anomaly"].id

        await anomalies_api.acknowledge_anomaly(anomaly_id, AcknowledgeRequest(userId="analyst-1"), engine_service)
        await anomalies_api.investigate_anomaly(anomaly_id, engine_service)
        noted = await anomalies_api.add_anomaly_note(
            anomaly_id,
            InvestigationNoteCreate(note="Looking at processor logs", addedBy="analyst-1"),
            engine_service,
        )
        resolved = await anomalies_api.resolve_anomaly(
            anomaly_id,
            AnomalyResolveRequest(resolution="Processor restored", rootCause="Outage"),
            engine_service,
        )

        assert noted.status == AnomalyStatus.INVESTIGATING
        assert resolved.status == AnomalyStatus.RESOLVED

        with pytest.raises(HTTPException) as exc_info:
            await anomalies_api.mark_false_positive(anomaly_id, FalsePositiveRequest(reason="late"), engine_service)

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_active_and_statistics(self, engine_service):
        first = await anomalies_api.detect_anomaly(REVENUE_DROP, engine_service)
        await anomalies_api.detect_anomaly(REVENUE_DROP, engine_service)
        await anomalies_api.mark_false_positive(first["anomaly"].id, FalsePositiveRequest(reason="Holiday"), engine_service)

        active = await anomalies_api.list_active_anomalies(engine_service)
        statistics = await anomalies_api.get_anomaly_statistics(engine_service)

        assert len(active) == 1
        assert statistics.total == 2
        assert statistics.falsePositiveRate == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_unknown_anomaly_is_404(self, engine_service):
        with pytest.raises(HTTPException) as exc_info:
            await anomalies_api.get_anomaly("missing", engine_service)

        assert exc_info.value.status_code == 404


# ============================================================
# TEST CLASS: Application
# ============================================================

class TestApplication:
    """Tests for route registration."""

    def test_routes_mounted(self):
        from risk_engine.main import app

        paths = {getattr(route, "path", None) for route in app.routes}

        assert "/health" in paths
        assert "/churn/entities/{entity_id}" in paths
        assert "/churn/batch" in paths
        assert "/anomalies/detect" in paths
        assert "/anomalies/{anomaly_id}/false-positive" in paths
