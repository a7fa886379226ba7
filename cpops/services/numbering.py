# cpops/services/numbering.py
import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection

from .errors import NotFound
from .transactions import atomic, for_update

logger = logging.getLogger(__name__)


def next_intervention_number(conn: Connection, event_id: int) -> int:
    """
    max(existing numbers) + 1 for the event.
    Locks the event row first so concurrent creations in one event queue up;
    must run in the same transaction as the INSERT.
    """
    locked = conn.execute(
        text("SELECT id FROM events WHERE id = :eid" + for_update(conn)),
        {"eid": event_id},
    ).scalar_one_or_none()
    if locked is None:
        raise NotFound("event not found", entity="event", id=event_id)

    max_no = conn.execute(
        text("SELECT MAX(intervention_number) FROM interventions WHERE event_id = :eid"),
        {"eid": event_id},
    ).scalar_one_or_none()
    return int(max_no or 0) + 1


def repair_intervention_numbering(conn: Connection, event_id: int) -> int:
    """
    Renumber an event's interventions 1..N in (created_at, id) order.
    Only run at controlled checkpoints (process start), never mid-operation.
    Returns the number of rows rewritten.
    """
    with atomic(conn):
        rows = conn.execute(
            text("""
                SELECT id, intervention_number
                FROM interventions
                WHERE event_id = :eid
                ORDER BY created_at ASC, id ASC
            """),
            {"eid": event_id},
        ).mappings().all()

        fixes = [
            {"id": int(r["id"]), "no": expected}
            for expected, r in enumerate(rows, start=1)
            if r["intervention_number"] is None or int(r["intervention_number"]) != expected
        ]
        if fixes:
            conn.execute(
                text("UPDATE interventions SET intervention_number = :no WHERE id = :id"),
                fixes,
            )
            logger.info("renumbered %d intervention(s) in event %s", len(fixes), event_id)
        return len(fixes)


def repair_all_numbering(conn: Connection) -> int:
    with atomic(conn):
        event_ids = conn.execute(text("SELECT id FROM events ORDER BY id")).scalars().all()
        return sum(repair_intervention_numbering(conn, int(eid)) for eid in event_ids)
