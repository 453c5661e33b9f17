"""
Risk Engine Service

Orchestrates the pure scoring components around the repository:

    repository -> feature extraction -> risk scoring -> indicators
               -> persisted RiskAssessment -> (later) outcome validation

Responsibilities:
- Read-through cache: at most one fresh assessment per entity per TTL window
  (cache_ttl_days, default 7). A request inside the window returns the
  stored assessment unchanged (same id and computedAt).
- Batch scoring: entities are assessed concurrently with asyncio.gather,
  bounded by a semaphore (batch_concurrency, default 8). One entity failing
  never affects the others; failures are collected into `errors`.
- Outcome recording with before/after accuracy reports.
- Retention-effort logging, at-risk listings, entity history and the churn
  dashboard.
- Anomaly detection with persistence, lifecycle transitions and statistics.

Two concurrent requests for the same entity may both compute an assessment
when neither finds a cached one. After saving, each prunes the other rows of
the window, so the store converges to the newest record of the window.
"""

import asyncio
import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from risk_engine.core.config import Settings, get_settings
from risk_engine.core.exceptions import (
    AnomalyNotFoundError,
    AssessmentNotFoundError,
    RiskEngineError,
)
from risk_engine.models.enums import AnomalyStatus, RiskLevel, ScoreTrend
from risk_engine.models.schemas import (
    AccuracyDelta,
    AccuracyReport,
    AnomalyDetectionRequest,
    AnomalyRecord,
    AnomalyStatisticsReport,
    BatchAssessmentResult,
    BatchItemError,
    ChurnDashboard,
    ChurnOutcome,
    EntityHistory,
    EntityRiskHistory,
    IndicatorCount,
    RetentionEffort,
    RetentionEffortCreate,
    RiskAssessment,
)
from risk_engine.services import anomaly_detection, outcome_validation
from risk_engine.services.feature_extraction import extract_features
from risk_engine.services.indicators import (
    generate_retention_strategy,
    identify_protective_factors,
    identify_red_flags,
)
from risk_engine.services.repository import AssessmentRepository
from risk_engine.services.risk_scoring import compute_confidence, score_features
from risk_engine.services.scoring_config import (
    AnomalyConfig,
    RiskModelConfig,
    get_anomaly_config,
    get_risk_model_config,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# score movement between the two latest assessments that counts as a trend
SCORE_TREND_DELTA: int = 10
TOP_INDICATOR_COUNT: int = 5
ACTIVE_ANOMALY_STATUSES = (
    AnomalyStatus.NEW,
    AnomalyStatus.ACKNOWLEDGED,
    AnomalyStatus.INVESTIGATING,
)


# =============================================================================
# Pure Assessment Builder
# =============================================================================


def build_risk_assessment(
    entity_id: str,
    history: EntityHistory,
    now: Optional[datetime] = None,
    config: Optional[RiskModelConfig] = None,
    model_version: str = "1.0",
) -> RiskAssessment:
    """
    Compute a RiskAssessment without touching the cache or the database.

    Args:
        entity_id: Entity being assessed; must match history.entityId.
        history: Event history snapshot.
        now: Reference time for extraction and computedAt.
        config: Risk model configuration.
        model_version: Stamped on the assessment.

    Returns:
        A new RiskAssessment with a fresh id.

    Raises:
        InsufficientDataError: No events.
        InvalidNumericInputError: Malformed numeric input.
        ValueError: entity_id does not match the history.
    """
    if history.entityId != entity_id:
        raise ValueError(f"History belongs to {history.entityId}, not {entity_id}")

    started = time.perf_counter()
    config = config or get_risk_model_config()
    now = now or datetime.now(timezone.utc)

    features = extract_features(history, now=now)
    result = score_features(features, config)

    assessment = RiskAssessment(
        id=str(uuid.uuid4()),
        entityId=entity_id,
        computedAt=features.extractedAt,
        modelVersion=model_version,
        featureSet=features,
        score=result.score,
        level=result.level,
        confidence=compute_confidence(config),
        categoryContributions=result.contributions,
        redFlags=identify_red_flags(features),
        protectiveFactors=identify_protective_factors(features),
        recommendedActions=generate_retention_strategy(result.level, features),
    )

    duration_ms = (time.perf_counter() - started) * 1000
    return assessment.model_copy(update={"calculationDurationMs": duration_ms})


def score_trend(assessments: Sequence[RiskAssessment]) -> ScoreTrend:
    """Trend between the two newest assessments (list ordered newest first)."""
    if len(assessments) < 2:
        return ScoreTrend.STABLE

    diff = assessments[0].score - assessments[1].score
    if diff > SCORE_TREND_DELTA:
        return ScoreTrend.INCREASING
    if diff < -SCORE_TREND_DELTA:
        return ScoreTrend.DECREASING
    return ScoreTrend.STABLE


# =============================================================================
# Service
# =============================================================================


class RiskEngineService:
    """
    Entry point for churn assessments and anomaly handling.

    The repository is injected so tests can substitute an in-memory store;
    `clock` returns the current time and defaults to UTC now.
    """

    def __init__(
        self,
        repository: Optional[AssessmentRepository] = None,
        settings: Optional[Settings] = None,
        risk_config: Optional[RiskModelConfig] = None,
        anomaly_config: Optional[AnomalyConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository or AssessmentRepository()
        self.settings = settings or get_settings()
        self.risk_config = risk_config or get_risk_model_config()
        self.anomaly_config = anomaly_config or get_anomaly_config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # Churn Assessments
    # =========================================================================

    async def compute_risk_assessment(
        self,
        entity_id: str,
        history: Optional[EntityHistory] = None,
        force_refresh: bool = False,
    ) -> Tuple[RiskAssessment, bool]:
        """
        Return a fresh-enough assessment for the entity.

        Args:
            entity_id: Entity to assess.
            history: Snapshot to use instead of loading from the repository.
            force_refresh: Skip the cache lookup.

        Returns:
            (assessment, cached) where cached is True when the stored
            assessment from inside the TTL window was returned, including
            one a concurrent request stored while this one was computing.

        Raises:
            EntityNotFoundError, InsufficientDataError, InvalidNumericInputError
        """
        now = self._clock()
        ttl_days = self.settings.cache_ttl_days
        use_cache = not force_refresh and ttl_days > 0
        window_start = now - timedelta(days=ttl_days)

        if use_cache:
            cached = await self.repository.get_latest_assessment(entity_id, window_start)
            if cached is not None:
                logger.info(f"Using cached assessment {cached.id} for entity {entity_id}")
                return cached, True

        if history is None:
            history = await self.repository.fetch_entity_history(entity_id)

        assessment = build_risk_assessment(
            entity_id,
            history,
            now=now,
            config=self.risk_config,
            model_version=self.settings.model_version,
        )
        await self.repository.save_assessment(assessment)

        if use_cache:
            # a concurrent request may have stored its own assessment meanwhile
            removed = await self.repository.prune_superseded_assessments(entity_id, window_start)
            latest = await self.repository.get_latest_assessment(entity_id, window_start)
            if latest is not None and latest.id != assessment.id:
                logger.warning(
                    f"Assessment {assessment.id} for entity {entity_id} superseded by concurrent assessment {latest.id}"
                )
                return latest, True
            if removed:
                logger.warning(f"Removed {removed} superseded assessment(s) for entity {entity_id}")

        logger.info(
            f"Computed assessment {assessment.id} for entity {entity_id}: "
            f"score={assessment.score} level={assessment.level.value}"
        )
        return assessment, False

    async def batch_compute(
        self,
        entity_ids: Sequence[str],
        risk_level_filter: Optional[RiskLevel] = None,
    ) -> BatchAssessmentResult:
        """
        Assess many entities concurrently with per-item error isolation.

        Duplicate ids are assessed once. `successful` counts newly computed
        assessments, `cached` counts cache hits, `failed` counts errors.
        With risk_level_filter only assessments at that level are returned,
        the counts still cover every entity.
        """
        unique_ids = list(dict.fromkeys(entity_ids))
        semaphore = asyncio.Semaphore(self.settings.batch_concurrency)

        async def assess_one(entity_id: str):
            async with semaphore:
                try:
                    assessment, cached = await self.compute_risk_assessment(entity_id)
                    return entity_id, assessment, cached, None
                except RiskEngineError as e:
                    logger.warning(f"Batch assessment failed for {entity_id}: {e.message}")
                    return entity_id, None, False, e
                except Exception as e:
                    logger.warning(f"Batch assessment failed for {entity_id}: {e}", exc_info=True)
                    return entity_id, None, False, e

        outcomes = await asyncio.gather(*(assess_one(entity_id) for entity_id in unique_ids))

        result = BatchAssessmentResult(total=len(unique_ids))
        for entity_id, assessment, cached, error in outcomes:
            if error is not None:
                result.failed += 1
                result.errors.append(
                    BatchItemError(entityId=entity_id, errorType=type(error).__name__, error=str(error))
                )
                continue

            if cached:
                result.cached += 1
            else:
                result.successful += 1

            if risk_level_filter is None or assessment.level == risk_level_filter:
                result.assessments.append(assessment)

        logger.info(
            f"Batch assessment finished: total={result.total} successful={result.successful} "
            f"cached={result.cached} failed={result.failed}"
        )
        return result

    async def get_assessment(self, assessment_id: str) -> RiskAssessment:
        assessment = await self.repository.get_assessment(assessment_id)
        if assessment is None:
            raise AssessmentNotFoundError(f"Assessment {assessment_id} not found")
        return assessment

    async def record_outcome(
        self,
        assessment_id: str,
        outcome: ChurnOutcome,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> AccuracyDelta:
        """
        Attach ground truth to an assessment and report the accuracy change.

        The before/after reports cover validated assessments computed in the
        window (all time when no bounds are given).
        """
        window_start, window_end = outcome_validation.as_utc(window_start), outcome_validation.as_utc(window_end)
        assessment = await self.get_assessment(assessment_id)

        population = await self.repository.list_assessments(window_start, window_end, validated_only=True)
        before = outcome_validation.compute_accuracy_report(population, window_start, window_end)

        updated = outcome_validation.apply_outcome(assessment, outcome, now=self._clock())
        await self.repository.save_assessment(updated)

        population = [a for a in population if a.id != updated.id] + [updated]
        after = outcome_validation.compute_accuracy_report(population, window_start, window_end)

        logger.info(
            f"Recorded outcome for assessment {assessment_id}: churned={outcome.churned} "
            f"accurate={updated.predictionAccurate}"
        )
        return outcome_validation.build_accuracy_delta(updated, before, after)

    async def add_retention_effort(self, assessment_id: str, effort: RetentionEffortCreate) -> RiskAssessment:
        assessment = await self.get_assessment(assessment_id)
        entry = RetentionEffort(performedAt=self._clock(), **effort.model_dump())
        updated = assessment.model_copy(update={"retentionEfforts": [*assessment.retentionEfforts, entry]})
        return await self.repository.save_assessment(updated)

    async def get_entities_at_risk(self, level: Optional[RiskLevel] = None, limit: int = 50) -> List[RiskAssessment]:
        levels = [level] if level is not None else [RiskLevel.HIGH, RiskLevel.CRITICAL]
        return await self.repository.list_assessments_at_risk(levels, limit)

    async def get_entity_history(self, entity_id: str, limit: int = 10) -> EntityRiskHistory:
        assessments = await self.repository.list_entity_assessments(entity_id, limit)
        if not assessments:
            raise AssessmentNotFoundError(f"No assessments for entity {entity_id}", entity_id=entity_id)

        return EntityRiskHistory(
            entityId=entity_id,
            count=len(assessments),
            latest=assessments[0],
            trend=score_trend(assessments),
            assessments=assessments,
        )

    async def get_model_accuracy(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> AccuracyReport:
        window_start, window_end = outcome_validation.as_utc(window_start), outcome_validation.as_utc(window_end)
        population = await self.repository.list_assessments(window_start, window_end, validated_only=True)
        return outcome_validation.compute_accuracy_report(population, window_start, window_end)

    async def get_dashboard(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> ChurnDashboard:
        window_start, window_end = outcome_validation.as_utc(window_start), outcome_validation.as_utc(window_end)
        assessments = await self.repository.list_assessments(window_start, window_end)

        by_level = {level.value: 0 for level in RiskLevel}
        indicators: Counter = Counter()
        for assessment in assessments:
            by_level[assessment.level.value] += 1
            indicators.update(flag.indicator for flag in assessment.redFlags)

        validated = [a for a in assessments if a.actualOutcome is not None]
        churned = sum(1 for a in validated if a.actualOutcome.churned)

        return ChurnDashboard(
            totalAssessments=len(assessments),
            byLevel=by_level,
            averageScore=(sum(a.score for a in assessments) / len(assessments)) if assessments else 0.0,
            topIndicators=[
                IndicatorCount(indicator=name, count=count)
                for name, count in indicators.most_common(TOP_INDICATOR_COUNT)
            ],
            validatedCount=len(validated),
            actualChurnRate=(churned / len(validated) * 100) if validated else None,
        )

    # =========================================================================
    # Anomalies
    # =========================================================================

    async def detect_anomaly(self, request: AnomalyDetectionRequest) -> Optional[AnomalyRecord]:
        """
        Run detection and persist the record when the value is anomalous.

        Returns:
            The stored AnomalyRecord, or None for a normal value.
        """
        record = anomaly_detection.detect_anomaly(
            request.metricName,
            request.value,
            request.series,
            method=request.method,
            anomaly_type=request.anomalyType,
            previous_value=request.previousValue,
            threshold=request.threshold,
            unit=request.unit,
            data_point_date=request.dataPointDate,
            time_window=request.timeWindow,
            now=self._clock(),
            config=self.anomaly_config,
        )
        if record is None:
            return None

        return await self.repository.save_anomaly(record)

    async def get_anomaly(self, anomaly_id: str) -> AnomalyRecord:
        record = await self.repository.get_anomaly(anomaly_id)
        if record is None:
            raise AnomalyNotFoundError(f"Anomaly {anomaly_id} not found")
        return record

    async def list_active_anomalies(self, limit: int = 50) -> List[AnomalyRecord]:
        return await self.repository.list_anomalies(statuses=ACTIVE_ANOMALY_STATUSES, limit=limit)

    async def _save_transition(self, record: AnomalyRecord, action: str) -> AnomalyRecord:
        saved = await self.repository.save_anomaly(record)
        logger.info(f"Anomaly {record.id} {action}: status={record.status.value}")
        return saved

    async def acknowledge_anomaly(self, anomaly_id: str, user_id: Optional[str] = None) -> AnomalyRecord:
        record = await self.get_anomaly(anomaly_id)
        updated = outcome_validation.acknowledge(record, user_id, now=self._clock())
        return await self._save_transition(updated, "acknowledged")

    async def investigate_anomaly(self, anomaly_id: str) -> AnomalyRecord:
        record = await self.get_anomaly(anomaly_id)
        updated = outcome_validation.start_investigation(record, now=self._clock())
        return await self._save_transition(updated, "under investigation")

    async def add_anomaly_note(self, anomaly_id: str, note: str, added_by: Optional[str] = None) -> AnomalyRecord:
        record = await self.get_anomaly(anomaly_id)
        updated = outcome_validation.add_note(record, note, added_by, now=self._clock())
        return await self.repository.save_anomaly(updated)

    async def resolve_anomaly(
        self,
        anomaly_id: str,
        resolution: str,
        root_cause: Optional[str] = None,
        resolved_by: Optional[str] = None,
    ) -> AnomalyRecord:
        record = await self.get_anomaly(anomaly_id)
        updated = outcome_validation.resolve(record, resolution, root_cause, resolved_by, now=self._clock())
        return await self._save_transition(updated, "resolved")

    async def mark_false_positive(self, anomaly_id: str, reason: str) -> AnomalyRecord:
        record = await self.get_anomaly(anomaly_id)
        updated = outcome_validation.mark_false_positive(record, reason, now=self._clock())
        return await self._save_transition(updated, "marked false positive")

    async def get_anomaly_statistics(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> AnomalyStatisticsReport:
        window_start, window_end = outcome_validation.as_utc(window_start), outcome_validation.as_utc(window_end)
        records = await self.repository.list_anomalies(window_start, window_end)
        return outcome_validation.compute_anomaly_statistics(records, window_start, window_end)
