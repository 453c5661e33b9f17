"""
Parameterized SQL for loading an entity's event history.

Tables read:
    entity_profiles        one row per entity; supplemental JSONB holds the
                           externally-known values (balance, response rates,
                           unsubscribe flag, plan compliance, ...)
    entity_events          appointment-like events
    entity_payments        payments with status
    entity_communications  outbound messages and whether they got a response

All queries take the entity id as $1 and use asyncpg positional placeholders.
"""


SELECT_ENTITY_PROFILE = """
    SELECT entity_id, supplemental
    FROM entity_profiles
    WHERE entity_id = $1
"""


SELECT_ENTITY_EVENTS = """
    SELECT
        occurred_at,
        status,
        amount,
        counterpart_id,
        service_type,
        cancelled_at
    FROM entity_events
    WHERE entity_id = $1
    ORDER BY occurred_at ASC
"""


SELECT_ENTITY_PAYMENTS = """
    SELECT paid_at, amount, status
    FROM entity_payments
    WHERE entity_id = $1
    ORDER BY paid_at ASC
"""


SELECT_ENTITY_COMMUNICATIONS = """
    SELECT sent_at, channel, responded
    FROM entity_communications
    WHERE entity_id = $1
    ORDER BY sent_at ASC
"""
