# cpops/services/durations.py
"""
Read-only duration projections over the status history.

Nothing here writes; each call reflects whatever snapshot of links and
history the connection observes.
"""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from . import history
from .clock import as_utc, elapsed_seconds, utcnow
from .errors import NotFound
from .types import InterventionView, StatusDuration, TeamView

_SELECT_INTERVENTION = """
    SELECT id, event_id, intervention_number, title, location, description,
           created_at, closed_at
    FROM interventions
"""


def open_seconds(created_at: datetime, closed_at: Optional[datetime], now: datetime) -> int:
    """(closed_at or now) - created_at, floored at zero."""
    return elapsed_seconds(as_utc(created_at), as_utc(closed_at) or now)


def team_status_durations(
    conn: Connection, intervention_id: int, now: Optional[datetime] = None
) -> List[TeamView]:
    """Currently linked teams with their status and time spent on it."""
    now = now or utcnow()
    started = history.active_started_at(conn, intervention_id)
    rows = conn.execute(
        text("""
            SELECT t.id AS team_id, t.name, t.type,
                   it.status_id, s.name AS status_name, s.color AS status_color,
                   s.is_closed AS status_is_closed
            FROM intervention_teams it
            JOIN teams t ON t.id = it.team_id
            LEFT JOIN statuses s ON s.id = it.status_id
            WHERE it.intervention_id = :iid
            ORDER BY t.name, t.id
        """),
        {"iid": intervention_id},
    ).mappings().all()

    out: List[TeamView] = []
    for r in rows:
        since = started.get(int(r["team_id"]))
        out.append(TeamView(
            team_id=int(r["team_id"]),
            name=r["name"],
            type=r["type"],
            status_id=(int(r["status_id"]) if r["status_id"] is not None else None),
            status_name=r["status_name"],
            status_color=r["status_color"],
            status_is_closed=bool(r["status_is_closed"]),
            status_started_at=since,
            # unknown rather than zero when no interval is running
            status_duration_seconds=(elapsed_seconds(since, now) if since else None),
        ))
    return out


def status_durations(
    conn: Connection, intervention_id: int, now: Optional[datetime] = None
) -> List[StatusDuration]:
    """Seconds spent per status across all teams, open intervals counted up to now."""
    now = now or utcnow()
    rows = conn.execute(
        text("""
            SELECT h.status_id, s.name AS status_name, h.started_at, h.ended_at
            FROM intervention_status_history h
            LEFT JOIN statuses s ON s.id = h.status_id
            WHERE h.intervention_id = :iid
            ORDER BY h.started_at, h.id
        """),
        {"iid": intervention_id},
    ).mappings().all()

    totals: Dict[str, int] = {}
    for r in rows:
        start = as_utc(r["started_at"])
        end = as_utc(r["ended_at"]) or now
        label = r["status_name"] or f"Status {r['status_id'] if r['status_id'] is not None else 'unknown'}"
        totals[label] = totals.get(label, 0) + elapsed_seconds(start, end)

    return [StatusDuration(status_name=k, total_seconds=v) for k, v in totals.items()]


def _build_view(conn: Connection, row, now: datetime) -> InterventionView:
    created_at = as_utc(row["created_at"])
    closed_at = as_utc(row["closed_at"])
    return InterventionView(
        id=int(row["id"]),
        event_id=int(row["event_id"]),
        intervention_number=int(row["intervention_number"]),
        title=row["title"],
        location=row["location"],
        description=row["description"],
        created_at=created_at,
        closed_at=closed_at,
        open_seconds=open_seconds(created_at, closed_at, now),
        teams=team_status_durations(conn, int(row["id"]), now),
        status_durations=status_durations(conn, int(row["id"]), now),
    )


def get_intervention_view(
    conn: Connection, intervention_id: int, now: Optional[datetime] = None
) -> InterventionView:
    now = now or utcnow()
    row = conn.execute(
        text(_SELECT_INTERVENTION + " WHERE id = :iid"), {"iid": intervention_id}
    ).mappings().one_or_none()
    if row is None:
        raise NotFound("intervention not found", entity="intervention", id=intervention_id)
    return _build_view(conn, row, now)


def list_intervention_views(
    conn: Connection, event_id: int, now: Optional[datetime] = None
) -> List[InterventionView]:
    """All interventions of an event, newest first."""
    now = now or utcnow()
    rows = conn.execute(
        text(_SELECT_INTERVENTION + " WHERE event_id = :eid ORDER BY created_at DESC, id DESC"),
        {"eid": event_id},
    ).mappings().all()
    return [_build_view(conn, r, now) for r in rows]
