# cpops/services/action_log.py
"""Audit trail of operator actions, one row per action, per event."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ..db.types import utc_param
from .clock import as_utc, utcnow
from .types import Actor


def write_action_log(
    conn: Connection,
    event_id: int,
    message: str,
    actor: Optional[Actor] = None,
    team_id: Optional[int] = None,
    intervention_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> None:
    actor = actor or Actor()
    conn.execute(
        text("""
            INSERT INTO logs
                (event_id, actor_user_id, actor_username, team_id, intervention_id, message, created_at)
            VALUES (:eid, :uid, :uname, :tid, :iid, :msg, :now)
        """).bindparams(utc_param("now")),
        {
            "eid": event_id,
            "uid": actor.user_id,
            "uname": actor.username,
            "tid": team_id,
            "iid": intervention_id,
            "msg": message,
            "now": now or utcnow(),
        },
    )


def _clamp_page(page: Any, limit: Any) -> tuple[int, int]:
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = 20
    return max(1, page), min(100, max(10, limit))


def list_logs(
    conn: Connection,
    event_id: int,
    page: Any = 1,
    limit: Any = 20,
    user_id: Optional[int] = None,
    team_id: Optional[int] = None,
    intervention_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Paginated, newest-first log listing with optional filters.
    page >= 1; limit is clamped to [10, 100].
    """
    page, limit = _clamp_page(page, limit)

    where = ["event_id = :eid"]
    params: Dict[str, Any] = {"eid": event_id}
    if user_id:
        where.append("actor_user_id = :uid")
        params["uid"] = int(user_id)
    if team_id:
        where.append("team_id = :tid")
        params["tid"] = int(team_id)
    if intervention_id:
        where.append("intervention_id = :iid")
        params["iid"] = int(intervention_id)
    clause = " AND ".join(where)

    total = conn.execute(
        text(f"SELECT COUNT(*) FROM logs WHERE {clause}"), params
    ).scalar_one()

    rows = conn.execute(
        text(f"""
            SELECT id, event_id, actor_user_id, actor_username, team_id,
                   intervention_id, message, created_at
            FROM logs
            WHERE {clause}
            ORDER BY created_at DESC, id DESC
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": limit, "offset": (page - 1) * limit},
    ).mappings().all()

    items: List[Dict[str, Any]] = []
    for r in rows:
        d = dict(r)
        d["created_at"] = as_utc(d["created_at"]).isoformat()
        items.append(d)

    total = int(total or 0)
    return {
        "items": items,
        "page": page,
        "limit": limit,
        "total": total,
        "has_more": page * limit < total,
    }


def list_log_users(conn: Connection, event_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        text("""
            SELECT actor_user_id, actor_username
            FROM logs
            WHERE event_id = :eid AND actor_user_id IS NOT NULL
            GROUP BY actor_user_id, actor_username
            ORDER BY actor_username ASC
        """),
        {"eid": event_id},
    ).mappings().all()
    return [
        {
            "id": int(r["actor_user_id"]),
            "username": r["actor_username"] or f"User {r['actor_user_id']}",
        }
        for r in rows
    ]
