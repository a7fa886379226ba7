# cpops/services/links.py
"""Team-status link store: the current status per (intervention, team)."""
from typing import Dict, Iterable, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

from .transactions import for_update
from .types import TeamLink


def _to_link(r) -> TeamLink:
    return TeamLink(
        intervention_id=int(r["intervention_id"]),
        team_id=int(r["team_id"]),
        status_id=(int(r["status_id"]) if r["status_id"] is not None else None),
        status_name=r["status_name"],
        status_color=r["status_color"],
        is_closed=bool(r["is_closed"]) if r["is_closed"] is not None else False,
    )


def get_link(
    conn: Connection, intervention_id: int, team_id: int, lock: bool = False
) -> Optional[TeamLink]:
    """Fetch one link; `lock` takes a row lock so concurrent transitions serialise."""
    if lock:
        # FOR UPDATE cannot be combined with an outer join on PostgreSQL
        row = conn.execute(
            text(
                "SELECT intervention_id, team_id, status_id FROM intervention_teams"
                " WHERE intervention_id = :iid AND team_id = :tid" + for_update(conn)
            ),
            {"iid": intervention_id, "tid": team_id},
        ).mappings().one_or_none()
        if row is None:
            return None
        return TeamLink(
            intervention_id=int(row["intervention_id"]),
            team_id=int(row["team_id"]),
            status_id=(int(row["status_id"]) if row["status_id"] is not None else None),
        )

    row = conn.execute(
        text("""
            SELECT it.intervention_id, it.team_id, it.status_id,
                   s.name AS status_name, s.color AS status_color, s.is_closed
            FROM intervention_teams it
            LEFT JOIN statuses s ON s.id = it.status_id
            WHERE it.intervention_id = :iid AND it.team_id = :tid
        """),
        {"iid": intervention_id, "tid": team_id},
    ).mappings().one_or_none()
    return _to_link(row) if row else None


def list_links(conn: Connection, intervention_id: int) -> List[TeamLink]:
    """All links of an intervention joined to their status' closed flag."""
    rows = conn.execute(
        text("""
            SELECT it.intervention_id, it.team_id, it.status_id,
                   s.name AS status_name, s.color AS status_color, s.is_closed
            FROM intervention_teams it
            LEFT JOIN statuses s ON s.id = it.status_id
            WHERE it.intervention_id = :iid
            ORDER BY it.team_id
        """),
        {"iid": intervention_id},
    ).mappings().all()
    return [_to_link(r) for r in rows]


def linked_team_ids(conn: Connection, intervention_id: int, team_ids: Iterable[int]) -> List[int]:
    ids = sorted({int(t) for t in team_ids})
    if not ids:
        return []
    rows = conn.execute(
        text("""
            SELECT team_id FROM intervention_teams
            WHERE intervention_id = :iid AND team_id IN :ids
        """).bindparams(bindparam("ids", expanding=True)),
        {"iid": intervention_id, "ids": ids},
    ).all()
    return [int(r[0]) for r in rows]


def insert_links(
    conn: Connection, intervention_id: int, team_ids: Iterable[int], status_id: Optional[int]
) -> None:
    payload = [
        {"iid": intervention_id, "tid": int(t), "sid": status_id}
        for t in team_ids
    ]
    if not payload:
        return
    conn.execute(
        text("""
            INSERT INTO intervention_teams (intervention_id, team_id, status_id)
            VALUES (:iid, :tid, :sid)
        """),
        payload,
    )


def set_link_status(
    conn: Connection, intervention_id: int, team_id: int, status_id: Optional[int]
) -> None:
    conn.execute(
        text("""
            UPDATE intervention_teams SET status_id = :sid
            WHERE intervention_id = :iid AND team_id = :tid
        """),
        {"iid": intervention_id, "tid": team_id, "sid": status_id},
    )


def delete_links(conn: Connection, intervention_id: int, team_ids: Iterable[int]) -> int:
    ids = sorted({int(t) for t in team_ids})
    if not ids:
        return 0
    res = conn.execute(
        text("""
            DELETE FROM intervention_teams
            WHERE intervention_id = :iid AND team_id IN :ids
        """).bindparams(bindparam("ids", expanding=True)),
        {"iid": intervention_id, "ids": ids},
    )
    return int(res.rowcount or 0)


def links_using_status(conn: Connection, status_id: int) -> Dict[int, List[int]]:
    """{intervention_id: [team_id, ...]} for every link pointing at status_id."""
    rows = conn.execute(
        text("""
            SELECT intervention_id, team_id FROM intervention_teams
            WHERE status_id = :sid
            ORDER BY intervention_id, team_id
        """),
        {"sid": status_id},
    ).mappings().all()
    out: Dict[int, List[int]] = {}
    for r in rows:
        out.setdefault(int(r["intervention_id"]), []).append(int(r["team_id"]))
    return out


def repoint_status(conn: Connection, from_status_id: int, to_status_id: Optional[int]) -> int:
    """Move every link off from_status_id (to another status or to null)."""
    res = conn.execute(
        text("UPDATE intervention_teams SET status_id = :to_sid WHERE status_id = :from_sid"),
        {"from_sid": from_status_id, "to_sid": to_status_id},
    )
    return int(res.rowcount or 0)
