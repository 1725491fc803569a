"""Processed events repository - dedupe receipts for inbound webhooks.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor


def record_event(cur: PgCursor, *, source: str, external_id: str) -> bool:
    """Insert a receipt for (source, external_id).

    Returns:
        True if this is the first delivery, False if it was already recorded.
    """
    cur.execute(
        """
        INSERT INTO processed_events (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (source, external_id),
    )
    return cur.rowcount > 0
