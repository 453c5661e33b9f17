"""
SQL Query Module for the Practice Risk Engine.

Provides parameterized asyncpg queries for:
- Entity event history (history_queries)
- Churn assessment store (assessment_queries)
- Anomaly record store (anomaly_queries)

The repository (risk_engine.services.repository) is the only consumer;
scoring services never build SQL.

Example usage:
    from risk_engine.sql import SELECT_ENTITY_EVENTS, get_anomalies_query

    rows = await conn.fetch(SELECT_ENTITY_EVENTS, entity_id)

    query, params = get_anomalies_query(statuses=["new", "acknowledged"], limit=50)
    rows = await conn.fetch(query, *params)
"""

# =============================================================================
# HISTORY QUERIES - Event history for feature extraction
# =============================================================================

from risk_engine.sql.history_queries import (
    SELECT_ENTITY_PROFILE,
    SELECT_ENTITY_EVENTS,
    SELECT_ENTITY_PAYMENTS,
    SELECT_ENTITY_COMMUNICATIONS,
)

# =============================================================================
# ASSESSMENT QUERIES - Churn assessment store
# =============================================================================

from risk_engine.sql.assessment_queries import (
    UPSERT_ASSESSMENT,
    SELECT_ASSESSMENT_BY_ID,
    SELECT_LATEST_ASSESSMENT_SINCE,
    PRUNE_SUPERSEDED_ASSESSMENTS,
    SELECT_ENTITY_ASSESSMENTS,
    SELECT_ASSESSMENTS_AT_RISK,
    get_assessments_in_window_query,
)

# =============================================================================
# ANOMALY QUERIES - Anomaly record store
# =============================================================================

from risk_engine.sql.anomaly_queries import (
    UPSERT_ANOMALY,
    SELECT_ANOMALY_BY_ID,
    get_anomalies_query,
)


__all__ = [
    # History
    "SELECT_ENTITY_PROFILE",
    "SELECT_ENTITY_EVENTS",
    "SELECT_ENTITY_PAYMENTS",
    "SELECT_ENTITY_COMMUNICATIONS",
    # Assessments
    "UPSERT_ASSESSMENT",
    "SELECT_ASSESSMENT_BY_ID",
    "SELECT_LATEST_ASSESSMENT_SINCE",
    "PRUNE_SUPERSEDED_ASSESSMENTS",
    "SELECT_ENTITY_ASSESSMENTS",
    "SELECT_ASSESSMENTS_AT_RISK",
    "get_assessments_in_window_query",
    # Anomalies
    "UPSERT_ANOMALY",
    "SELECT_ANOMALY_BY_ID",
    "get_anomalies_query",
]
