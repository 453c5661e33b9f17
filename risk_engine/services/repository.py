"""
Assessment Repository

asyncpg-backed persistence for the risk engine: loads entity event history
and stores churn assessments and anomaly records. This is the only module
that talks to PostgreSQL; the scoring services receive and return plain
Pydantic models.

Storage model:
- RiskAssessment and AnomalyRecord are stored whole as JSONB payloads, with
  the filter/sort columns duplicated next to them (see risk_engine.sql).
- Saving is an upsert by id, so outcome validation, retention efforts and
  anomaly lifecycle changes rewrite the stored record in place.

Usage:
    repository = AssessmentRepository()
    history = await repository.fetch_entity_history("patient-42")
    await repository.save_assessment(assessment)
"""

import json
import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

from risk_engine.core.database import get_db_pool
from risk_engine.core.exceptions import EntityNotFoundError
from risk_engine.models.enums import AnomalyStatus, RiskLevel
from risk_engine.models.schemas import (
    AnomalyRecord,
    CommunicationEvent,
    EntityHistory,
    HistoryEvent,
    PaymentEvent,
    RiskAssessment,
    SupplementalFeatures,
)
from risk_engine.sql import (
    PRUNE_SUPERSEDED_ASSESSMENTS,
    SELECT_ANOMALY_BY_ID,
    SELECT_ASSESSMENT_BY_ID,
    SELECT_ASSESSMENTS_AT_RISK,
    SELECT_ENTITY_ASSESSMENTS,
    SELECT_ENTITY_COMMUNICATIONS,
    SELECT_ENTITY_EVENTS,
    SELECT_ENTITY_PAYMENTS,
    SELECT_ENTITY_PROFILE,
    SELECT_LATEST_ASSESSMENT_SINCE,
    UPSERT_ANOMALY,
    UPSERT_ASSESSMENT,
    get_anomalies_query,
    get_assessments_in_window_query,
)


logger = logging.getLogger(__name__)


def _load_json(value: Any) -> Any:
    # asyncpg returns json/jsonb as str unless a codec is registered
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class AssessmentRepository:
    """
    PostgreSQL store for event history, churn assessments and anomalies.
    """

    # =========================================================================
    # Event History
    # =========================================================================

    async def fetch_entity_history(self, entity_id: str) -> EntityHistory:
        """
        Load everything the feature extractor needs for one entity.

        Raises:
            EntityNotFoundError: No profile row exists for entity_id.
        """
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            profile = await conn.fetchrow(SELECT_ENTITY_PROFILE, entity_id)
            if profile is None:
                raise EntityNotFoundError(f"Entity {entity_id} not found", entity_id=entity_id)

            event_rows = await conn.fetch(SELECT_ENTITY_EVENTS, entity_id)
            payment_rows = await conn.fetch(SELECT_ENTITY_PAYMENTS, entity_id)
            communication_rows = await conn.fetch(SELECT_ENTITY_COMMUNICATIONS, entity_id)

        logger.debug(
            f"Loaded history for {entity_id}: {len(event_rows)} events, "
            f"{len(payment_rows)} payments, {len(communication_rows)} communications"
        )

        supplemental = _load_json(profile["supplemental"]) or {}

        return EntityHistory(
            entityId=entity_id,
            events=[
                HistoryEvent(
                    timestamp=row["occurred_at"],
                    status=row["status"],
                    amount=float(row["amount"]) if row["amount"] is not None else None,
                    counterpartId=row["counterpart_id"],
                    serviceType=row["service_type"],
                    cancelledAt=row["cancelled_at"],
                )
                for row in event_rows
            ],
            payments=[
                PaymentEvent(timestamp=row["paid_at"], amount=float(row["amount"]), status=row["status"])
                for row in payment_rows
            ],
            communications=[
                CommunicationEvent(timestamp=row["sent_at"], channel=row["channel"], responded=row["responded"])
                for row in communication_rows
            ],
            supplemental=SupplementalFeatures.model_validate(supplemental),
        )

    # =========================================================================
    # Churn Assessments
    # =========================================================================

    async def save_assessment(self, assessment: RiskAssessment) -> RiskAssessment:
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            await conn.execute(
                UPSERT_ASSESSMENT,
                assessment.id,
                assessment.entityId,
                assessment.computedAt,
                assessment.score,
                assessment.level.value,
                assessment.validatedAt,
                assessment.model_dump_json(),
            )

        return assessment

    async def get_assessment(self, assessment_id: str) -> Optional[RiskAssessment]:
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_ASSESSMENT_BY_ID, assessment_id)

        return self._to_assessment(row)

    async def get_latest_assessment(self, entity_id: str, since: datetime) -> Optional[RiskAssessment]:
        """Most recent assessment for the entity computed at or after `since`."""
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_LATEST_ASSESSMENT_SINCE, entity_id, since)

        return self._to_assessment(row)

    async def prune_superseded_assessments(self, entity_id: str, since: datetime) -> int:
        """
        Drop all but the newest assessment for the entity computed at or after
        `since`, keeping any that carry an outcome or retention efforts.

        Returns:
            Number of rows deleted.
        """
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            status = await conn.execute(PRUNE_SUPERSEDED_ASSESSMENTS, entity_id, since)

        # status is e.g. "DELETE 1"
        return int(status.split()[-1])

    async def list_entity_assessments(self, entity_id: str, limit: int = 10) -> List[RiskAssessment]:
        """Assessments for one entity, newest first."""
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            rows = await conn.fetch(SELECT_ENTITY_ASSESSMENTS, entity_id, limit)

        return [self._to_assessment(row) for row in rows]

    async def list_assessments_at_risk(self, levels: Sequence[RiskLevel], limit: int = 50) -> List[RiskAssessment]:
        """Latest assessment per entity at one of `levels`, highest score first."""
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            rows = await conn.fetch(SELECT_ASSESSMENTS_AT_RISK, [level.value for level in levels], limit)

        return [self._to_assessment(row) for row in rows]

    async def list_assessments(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        validated_only: bool = False,
    ) -> List[RiskAssessment]:
        query, params = get_assessments_in_window_query(window_start, window_end, validated_only)
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._to_assessment(row) for row in rows]

    @staticmethod
    def _to_assessment(row: Any) -> Optional[RiskAssessment]:
        if row is None:
            return None
        return RiskAssessment.model_validate(_load_json(row["payload"]))

    # =========================================================================
    # Anomalies
    # =========================================================================

    async def save_anomaly(self, record: AnomalyRecord) -> AnomalyRecord:
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            await conn.execute(
                UPSERT_ANOMALY,
                record.id,
                record.anomalyType.value,
                record.metricName,
                record.severity.value,
                record.severityScore,
                record.status.value,
                record.detectedAt,
                record.model_dump_json(),
            )

        return record

    async def get_anomaly(self, anomaly_id: str) -> Optional[AnomalyRecord]:
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_ANOMALY_BY_ID, anomaly_id)

        if row is None:
            return None
        return AnomalyRecord.model_validate(_load_json(row["payload"]))

    async def list_anomalies(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        statuses: Optional[Sequence[AnomalyStatus]] = None,
        limit: Optional[int] = None,
    ) -> List[AnomalyRecord]:
        query, params = get_anomalies_query(
            window_start,
            window_end,
            [s.value for s in statuses] if statuses else None,
            limit,
        )
        pool = await get_db_pool()

        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [AnomalyRecord.model_validate(_load_json(row["payload"])) for row in rows]
