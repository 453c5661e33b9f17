"""
Parameterized SQL for the churn assessment store (churn_assessments).

The full RiskAssessment is stored as JSONB in `payload`; the scalar columns
duplicate the fields that are filtered or sorted on:

    id             TEXT PRIMARY KEY
    entity_id      TEXT NOT NULL
    computed_at    TIMESTAMPTZ NOT NULL
    score          INTEGER NOT NULL
    level          TEXT NOT NULL
    validated_at   TIMESTAMPTZ NULL
    payload        JSONB NOT NULL

Assessments are only deleted when a concurrent computation for the same
entity inside the cache window superseded them. Outcome validation and
retention-effort logging rewrite the payload in place through UPSERT_ASSESSMENT.
"""

from typing import List, Optional, Tuple


UPSERT_ASSESSMENT = """
    INSERT INTO churn_assessments (id, entity_id, computed_at, score, level, validated_at, payload)
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
    ON CONFLICT (id) DO UPDATE SET
        validated_at = EXCLUDED.validated_at,
        payload = EXCLUDED.payload
"""


SELECT_ASSESSMENT_BY_ID = """
    SELECT payload
    FROM churn_assessments
    WHERE id = $1
"""


SELECT_LATEST_ASSESSMENT_SINCE = """
    SELECT payload
    FROM churn_assessments
    WHERE entity_id = $1
      AND computed_at >= $2
    ORDER BY computed_at DESC, id DESC
    LIMIT 1
"""


SELECT_ENTITY_ASSESSMENTS = """
    SELECT payload
    FROM churn_assessments
    WHERE entity_id = $1
    ORDER BY computed_at DESC
    LIMIT $2
"""


# Deletes every row in the entity's window except the newest one (same
# ordering as SELECT_LATEST_ASSESSMENT_SINCE). Rows that carry an outcome or
# retention efforts are kept. $1: entity id, $2: window start.
PRUNE_SUPERSEDED_ASSESSMENTS = """
    DELETE FROM churn_assessments
    WHERE entity_id = $1
      AND computed_at >= $2
      AND validated_at IS NULL
      AND COALESCE(jsonb_array_length(payload->'retentionEfforts'), 0) = 0
      AND id <> (
          SELECT id
          FROM churn_assessments
          WHERE entity_id = $1
            AND computed_at >= $2
          ORDER BY computed_at DESC, id DESC
          LIMIT 1
      )
"""


# Latest assessment per entity, kept only when that latest one is at one of
# the given levels. $1: level names (text[]), $2: limit.
SELECT_ASSESSMENTS_AT_RISK = """
    SELECT payload
    FROM (
        SELECT DISTINCT ON (entity_id) payload, score, level
        FROM churn_assessments
        ORDER BY entity_id, computed_at DESC
    ) latest
    WHERE level = ANY($1::text[])
    ORDER BY score DESC
    LIMIT $2
"""


def get_assessments_in_window_query(
    window_start: Optional[object] = None,
    window_end: Optional[object] = None,
    validated_only: bool = False,
) -> Tuple[str, List[object]]:
    """
    Build a query for assessments computed inside an optional time window.

    Args:
        window_start: Inclusive lower bound on computed_at.
        window_end: Inclusive upper bound on computed_at.
        validated_only: Restrict to assessments with a recorded outcome.

    Returns:
        (query, params) ready for conn.fetch(query, *params).
    """
    conditions: List[str] = []
    params: List[object] = []

    if window_start is not None:
        params.append(window_start)
        conditions.append(f"computed_at >= ${len(params)}")

    if window_end is not None:
        params.append(window_end)
        conditions.append(f"computed_at <= ${len(params)}")

    if validated_only:
        conditions.append("validated_at IS NOT NULL")

    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    query = f"""
    SELECT payload
    FROM churn_assessments
    {where_clause}
    ORDER BY computed_at ASC
"""
    return query, params
