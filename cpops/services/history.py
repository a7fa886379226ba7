# cpops/services/history.py
"""
Status history store.

Append-only interval log per (intervention, team). A record is inserted open
(ended_at null) and closed exactly once; at most one record per pair is open.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

from ..db.types import utc_param
from .clock import as_utc
from .types import HistoryRecord


def open_interval(
    conn: Connection,
    intervention_id: int,
    team_id: int,
    status_id: Optional[int],
    now: datetime,
) -> None:
    conn.execute(
        text("""
            INSERT INTO intervention_status_history
                (intervention_id, team_id, status_id, started_at, ended_at)
            VALUES (:iid, :tid, :sid, :now, NULL)
        """).bindparams(utc_param("now")),
        {"iid": intervention_id, "tid": team_id, "sid": status_id, "now": now},
    )


def close_open_intervals(
    conn: Connection,
    intervention_id: int,
    now: datetime,
    team_ids: Optional[Iterable[int]] = None,
) -> int:
    """Stop the clock for the given pairs, or for every pair when team_ids is None."""
    if team_ids is None:
        res = conn.execute(
            text("""
                UPDATE intervention_status_history SET ended_at = :now
                WHERE intervention_id = :iid AND ended_at IS NULL
            """).bindparams(utc_param("now")),
            {"iid": intervention_id, "now": now},
        )
        return int(res.rowcount or 0)

    ids = sorted({int(t) for t in team_ids})
    if not ids:
        return 0
    res = conn.execute(
        text("""
            UPDATE intervention_status_history SET ended_at = :now
            WHERE intervention_id = :iid AND team_id IN :ids AND ended_at IS NULL
        """).bindparams(utc_param("now"), bindparam("ids", expanding=True)),
        {"iid": intervention_id, "ids": ids, "now": now},
    )
    return int(res.rowcount or 0)


def open_team_ids(conn: Connection, intervention_id: int) -> set:
    rows = conn.execute(
        text("""
            SELECT DISTINCT team_id FROM intervention_status_history
            WHERE intervention_id = :iid AND ended_at IS NULL
        """),
        {"iid": intervention_id},
    ).all()
    return {int(r[0]) for r in rows}


def active_started_at(conn: Connection, intervention_id: int) -> Dict[int, datetime]:
    """{team_id: started_at} of each pair's open interval."""
    rows = conn.execute(
        text("""
            SELECT team_id, started_at FROM intervention_status_history
            WHERE intervention_id = :iid AND ended_at IS NULL
            ORDER BY started_at, id
        """),
        {"iid": intervention_id},
    ).mappings().all()
    # latest wins if the single-open-interval invariant was ever broken
    return {int(r["team_id"]): as_utc(r["started_at"]) for r in rows}


def list_history(
    conn: Connection, intervention_id: int, team_id: Optional[int] = None
) -> List[HistoryRecord]:
    sql = """
        SELECT id, intervention_id, team_id, status_id, started_at, ended_at
        FROM intervention_status_history
        WHERE intervention_id = :iid
    """
    params = {"iid": intervention_id}
    if team_id is not None:
        sql += " AND team_id = :tid"
        params["tid"] = team_id
    sql += " ORDER BY team_id, started_at, id"

    rows = conn.execute(text(sql), params).mappings().all()
    return [
        HistoryRecord(
            id=int(r["id"]),
            intervention_id=int(r["intervention_id"]),
            team_id=int(r["team_id"]),
            status_id=(int(r["status_id"]) if r["status_id"] is not None else None),
            started_at=as_utc(r["started_at"]),
            ended_at=as_utc(r["ended_at"]),
        )
        for r in rows
    ]
