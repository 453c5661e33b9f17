"""
Parameterized SQL for the anomaly record store (anomaly_records).

    id             TEXT PRIMARY KEY
    anomaly_type   TEXT NOT NULL
    metric_name    TEXT NOT NULL
    severity       TEXT NOT NULL
    severity_score INTEGER NOT NULL
    status         TEXT NOT NULL
    detected_at    TIMESTAMPTZ NOT NULL
    payload        JSONB NOT NULL

Lifecycle changes rewrite status and payload through UPSERT_ANOMALY.
"""

from typing import List, Optional, Sequence, Tuple


UPSERT_ANOMALY = """
    INSERT INTO anomaly_records
        (id, anomaly_type, metric_name, severity, severity_score, status, detected_at, payload)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
    ON CONFLICT (id) DO UPDATE SET
        status = EXCLUDED.status,
        payload = EXCLUDED.payload
"""


SELECT_ANOMALY_BY_ID = """
    SELECT payload
    FROM anomaly_records
    WHERE id = $1
"""


def get_anomalies_query(
    window_start: Optional[object] = None,
    window_end: Optional[object] = None,
    statuses: Optional[Sequence[str]] = None,
    limit: Optional[int] = None,
) -> Tuple[str, List[object]]:
    """
    Build a filtered anomaly listing, highest severity score first.

    Returns:
        (query, params) ready for conn.fetch(query, *params).
    """
    conditions: List[str] = []
    params: List[object] = []

    if window_start is not None:
        params.append(window_start)
        conditions.append(f"detected_at >= ${len(params)}")

    if window_end is not None:
        params.append(window_end)
        conditions.append(f"detected_at <= ${len(params)}")

    if statuses:
        params.append(list(statuses))
        conditions.append(f"status = ANY(${len(params)}::text[])")

    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    limit_clause = ""
    if limit is not None:
        params.append(limit)
        limit_clause = f"LIMIT ${len(params)}"

    query = f"""
    SELECT payload
    FROM anomaly_records
    {where_clause}
    ORDER BY severity_score DESC, detected_at DESC
    {limit_clause}
"""
    return query, params
