# cpops/services/catalog.py
"""
Event catalog: events, statuses, team types, teams and their members.

Status edits and deletions re-point team links and then recalculate every
intervention that referenced the status, in the same transaction as the
catalog change.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from . import history, links
from .action_log import write_action_log
from .clock import as_utc, utcnow
from .errors import (
    BadRequest,
    InvalidReassignTarget,
    MinimumCardinalityViolation,
    NotFound,
    StatusLinked,
)
from .lifecycle import lock_interventions, recalculate_closed_state
from .transactions import atomic
from .types import Actor

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = [
    {"name": "Available at first-aid post", "color": "#94a3b8", "is_closed": False},
    {"name": "On site (radio)", "color": "#3b82f6", "is_closed": False},
    {"name": "Departed to intervention", "color": "#f59e0b", "is_closed": False},
    {"name": "Arrived at intervention", "color": "#eab308", "is_closed": False},
    {"name": "Departed to first-aid post", "color": "#f97316", "is_closed": False},
    {"name": "Arrived at first-aid post", "color": "#22c55e", "is_closed": True},
]

DEFAULT_TEAM_TYPES = ["Field", "Intervention", "Medical", "Mobile", "Command"]

POLICY_REJECT = "reject"
POLICY_SET_NULL = "set_null"
POLICY_REASSIGN = "reassign"


def _clean(v: Any) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


# ---------- events ----------

def create_event(
    conn: Connection,
    name: str,
    date: str,
    end_date: Optional[str] = None,
    location: Optional[str] = None,
    organizer: Optional[str] = None,
    contact_info: Optional[str] = None,
    description: Optional[str] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> int:
    """Create an event seeded with the default statuses and team types."""
    name, date = _clean(name), _clean(date)
    if not name or not date:
        raise BadRequest("name and date are required")
    now = now or utcnow()

    with atomic(conn):
        event_id = int(conn.execute(
            text("""
                INSERT INTO events (name, date, end_date, location, organizer, contact_info, description)
                VALUES (:name, :date, :end_date, :location, :organizer, :contact_info, :description)
                RETURNING id
            """),
            {
                "name": name,
                "date": date,
                "end_date": _clean(end_date),
                "location": _clean(location),
                "organizer": _clean(organizer),
                "contact_info": _clean(contact_info),
                "description": description,
            },
        ).scalar_one())

        conn.execute(
            text("""
                INSERT INTO statuses (event_id, name, color, is_closed)
                VALUES (:eid, :name, :color, :is_closed)
            """),
            [{"eid": event_id, **s} for s in DEFAULT_STATUSES],
        )
        conn.execute(
            text("INSERT INTO team_types (event_id, name) VALUES (:eid, :name)"),
            [{"eid": event_id, "name": n} for n in DEFAULT_TEAM_TYPES],
        )
        write_action_log(conn, event_id, f"Event created: {name}", actor=actor, now=now)
        return event_id


def require_event(conn: Connection, event_id: int) -> None:
    found = conn.execute(
        text("SELECT 1 FROM events WHERE id = :eid"), {"eid": event_id}
    ).scalar_one_or_none()
    if found is None:
        raise NotFound("event not found", entity="event", id=event_id)


_EVENT_COLUMNS = "id, name, date, end_date, location, organizer, contact_info, description, created_at"


def _event_dict(r) -> Dict[str, Any]:
    d = dict(r)
    d["created_at"] = as_utc(d["created_at"]).isoformat() if d["created_at"] is not None else None
    return d


def list_events(conn: Connection) -> List[Dict[str, Any]]:
    rows = conn.execute(
        text(f"SELECT {_EVENT_COLUMNS} FROM events ORDER BY date DESC, id DESC")
    ).mappings().all()
    return [_event_dict(r) for r in rows]


def get_event(conn: Connection, event_id: int) -> Dict[str, Any]:
    row = conn.execute(
        text(f"SELECT {_EVENT_COLUMNS} FROM events WHERE id = :eid"), {"eid": event_id}
    ).mappings().one_or_none()
    if row is None:
        raise NotFound("event not found", entity="event", id=event_id)
    return _event_dict(row)


def update_event(
    conn: Connection,
    event_id: int,
    name: Any,
    date: Any,
    end_date: Any = None,
    location: Any = None,
    organizer: Any = None,
    contact_info: Any = None,
    description: Any = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Replace the editable event details.

    name and date must be non-empty strings. The optional fields must be
    strings or null; blank strings are stored as null, except description
    which is kept as sent.
    """
    if not isinstance(name, str) or not name.strip():
        raise BadRequest("name is required")
    if not isinstance(date, str) or not date.strip():
        raise BadRequest("date is required")
    optional = {
        "end_date": end_date,
        "location": location,
        "organizer": organizer,
        "contact_info": contact_info,
        "description": description,
    }
    for field, value in optional.items():
        if value is not None and not isinstance(value, str):
            raise BadRequest(f"{field} is invalid", field=field)

    values = {k: _clean(v) for k, v in optional.items() if k != "description"}
    values["description"] = description
    with atomic(conn):
        require_event(conn, event_id)
        conn.execute(
            text("""
                UPDATE events
                SET name = :name, date = :date, end_date = :end_date, location = :location,
                    organizer = :organizer, contact_info = :contact_info, description = :description
                WHERE id = :eid
            """),
            {"eid": event_id, "name": name.strip(), "date": date.strip(), **values},
        )
        write_action_log(conn, event_id, "Event details updated", actor=actor, now=now)


def delete_event(conn: Connection, event_id: int) -> None:
    """Delete an event together with its catalog, interventions, history, messages and logs."""
    with atomic(conn):
        require_event(conn, event_id)
        intervention_ids = conn.execute(
            text("SELECT id FROM interventions WHERE event_id = :eid"), {"eid": event_id}
        ).scalars().all()
        lock_interventions(conn, intervention_ids)

        in_event = "SELECT id FROM interventions WHERE event_id = :eid"
        for stmt in (
            f"DELETE FROM intervention_messages WHERE intervention_id IN ({in_event})",
            f"DELETE FROM intervention_status_history WHERE intervention_id IN ({in_event})",
            f"DELETE FROM intervention_teams WHERE intervention_id IN ({in_event})",
            "DELETE FROM interventions WHERE event_id = :eid",
            "DELETE FROM team_members WHERE team_id IN (SELECT id FROM teams WHERE event_id = :eid)",
            "DELETE FROM teams WHERE event_id = :eid",
            "DELETE FROM team_types WHERE event_id = :eid",
            "DELETE FROM statuses WHERE event_id = :eid",
            "DELETE FROM logs WHERE event_id = :eid",
            "DELETE FROM events WHERE id = :eid",
        ):
            conn.execute(text(stmt), {"eid": event_id})
        logger.info("event %s deleted (%d intervention(s))", event_id, len(intervention_ids))


# ---------- statuses ----------

def _status_dict(r) -> Dict[str, Any]:
    return {
        "id": int(r["id"]),
        "event_id": int(r["event_id"]),
        "name": r["name"],
        "color": r["color"],
        "is_closed": bool(r["is_closed"]),
    }


def get_status(conn: Connection, status_id: int) -> Dict[str, Any]:
    row = conn.execute(
        text("SELECT id, event_id, name, color, is_closed FROM statuses WHERE id = :sid"),
        {"sid": status_id},
    ).mappings().one_or_none()
    if row is None:
        raise NotFound("status not found", entity="status", id=status_id)
    return _status_dict(row)


def list_statuses(conn: Connection, event_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        text("""
            SELECT id, event_id, name, color, is_closed
            FROM statuses WHERE event_id = :eid ORDER BY id
        """),
        {"eid": event_id},
    ).mappings().all()
    return [_status_dict(r) for r in rows]


def create_status(
    conn: Connection,
    event_id: int,
    name: str,
    color: Optional[str] = None,
    is_closed: bool = False,
) -> int:
    name = _clean(name)
    if not name:
        raise BadRequest("name is required")
    with atomic(conn):
        require_event(conn, event_id)
        return int(conn.execute(
            text("""
                INSERT INTO statuses (event_id, name, color, is_closed)
                VALUES (:eid, :name, :color, :is_closed)
                RETURNING id
            """),
            {"eid": event_id, "name": name, "color": _clean(color) or "#3b82f6", "is_closed": bool(is_closed)},
        ).scalar_one())


def _recalculate_all(conn: Connection, intervention_ids, now: datetime) -> None:
    for iid in sorted(intervention_ids):
        recalculate_closed_state(conn, iid, now)


def update_status(
    conn: Connection,
    status_id: int,
    name: Optional[str] = None,
    color: Optional[str] = None,
    is_closed: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> None:
    """Rename, recolor or toggle closed-ness, then recalculate every intervention using the status."""
    updates: Dict[str, Any] = {}
    if _clean(name):
        updates["name"] = _clean(name)
    if _clean(color):
        updates["color"] = _clean(color)
    if is_closed is not None:
        updates["is_closed"] = bool(is_closed)
    if not updates:
        raise BadRequest("no valid fields to update")
    now = now or utcnow()

    with atomic(conn):
        get_status(conn, status_id)
        affected = links.links_using_status(conn, status_id)
        lock_interventions(conn, affected.keys())
        sets = ", ".join(f"{k} = :{k}" for k in updates)
        conn.execute(
            text(f"UPDATE statuses SET {sets} WHERE id = :sid"),
            {**updates, "sid": status_id},
        )
        _recalculate_all(conn, affected.keys(), now)


def delete_status(
    conn: Connection,
    status_id: int,
    policy: Optional[str] = None,
    reassign_to: Optional[int] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Delete a status.

    policy:
      None / "reject" - fail with StatusLinked if any link still uses it
      "set_null"      - linked teams lose their status
      "reassign"      - linked teams move to `reassign_to` (same event, not itself)

    Running history intervals of re-pointed pairs roll over to the new value
    at `now`; closed intervals keep the old status id.
    """
    now = now or utcnow()
    with atomic(conn):
        status = get_status(conn, status_id)
        event_id = status["event_id"]

        total = conn.execute(
            text("SELECT COUNT(*) FROM statuses WHERE event_id = :eid"),
            {"eid": event_id},
        ).scalar_one()
        if int(total or 0) <= 1:
            raise MinimumCardinalityViolation("an event needs at least one status")

        affected = links.links_using_status(conn, status_id)
        lock_interventions(conn, affected.keys())
        if affected:
            if policy == POLICY_SET_NULL:
                target = None
            elif policy == POLICY_REASSIGN:
                target = _reassign_target(conn, status_id, event_id, reassign_to)
            else:
                raise StatusLinked(
                    "status is in use by interventions",
                    options=[POLICY_SET_NULL, POLICY_REASSIGN],
                )

            links.repoint_status(conn, status_id, target)
            for iid, team_ids in affected.items():
                running = history.open_team_ids(conn, iid) & set(team_ids)
                if not running:
                    continue
                history.close_open_intervals(conn, iid, now, team_ids=running)
                for tid in sorted(running):
                    history.open_interval(conn, iid, tid, target, now)

        conn.execute(text("DELETE FROM statuses WHERE id = :sid"), {"sid": status_id})
        _recalculate_all(conn, affected.keys(), now)

        write_action_log(
            conn, event_id, f"Status deleted: {status['name']}", actor=actor, now=now,
        )
        logger.info(
            "status %s deleted (policy=%s, %d intervention(s) affected)",
            status_id, policy, len(affected),
        )


def _reassign_target(conn: Connection, status_id: int, event_id: int, reassign_to) -> int:
    try:
        target_id = int(reassign_to)
    except (TypeError, ValueError):
        raise InvalidReassignTarget("reassignment target is required")
    if target_id == int(status_id):
        raise InvalidReassignTarget("cannot reassign a status to itself")
    found = conn.execute(
        text("SELECT id FROM statuses WHERE id = :sid AND event_id = :eid"),
        {"sid": target_id, "eid": event_id},
    ).scalar_one_or_none()
    if found is None:
        raise InvalidReassignTarget("reassignment target is not a status of this event")
    return target_id


# ---------- team types ----------

def _get_team_type(conn: Connection, team_type_id: int):
    row = conn.execute(
        text("SELECT id, event_id, name FROM team_types WHERE id = :ttid"),
        {"ttid": team_type_id},
    ).mappings().one_or_none()
    if row is None:
        raise NotFound("team type not found", entity="team_type", id=team_type_id)
    return row


def list_team_types(conn: Connection, event_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        text("SELECT id, event_id, name FROM team_types WHERE event_id = :eid ORDER BY name ASC"),
        {"eid": event_id},
    ).mappings().all()
    return [dict(r) for r in rows]


def create_team_type(conn: Connection, event_id: int, name: str) -> int:
    name = _clean(name)
    if not name:
        raise BadRequest("name is required")
    with atomic(conn):
        require_event(conn, event_id)
        return int(conn.execute(
            text("INSERT INTO team_types (event_id, name) VALUES (:eid, :name) RETURNING id"),
            {"eid": event_id, "name": name},
        ).scalar_one())


def rename_team_type(conn: Connection, team_type_id: int, name: str) -> None:
    """Rename a team type and the type label of every team using it."""
    name = _clean(name)
    if not name:
        raise BadRequest("name is required")
    with atomic(conn):
        tt = _get_team_type(conn, team_type_id)
        conn.execute(
            text("UPDATE team_types SET name = :name WHERE id = :ttid"),
            {"name": name, "ttid": team_type_id},
        )
        conn.execute(
            text("UPDATE teams SET type = :new WHERE event_id = :eid AND type = :old"),
            {"new": name, "eid": tt["event_id"], "old": tt["name"]},
        )


def delete_team_type(
    conn: Connection,
    team_type_id: int,
    policy: Optional[str] = None,
    reassign_to: Optional[int] = None,
) -> None:
    """Same rules as delete_status; the only remediation for linked teams is "reassign"."""
    with atomic(conn):
        tt = _get_team_type(conn, team_type_id)
        event_id = tt["event_id"]

        total = conn.execute(
            text("SELECT COUNT(*) FROM team_types WHERE event_id = :eid"),
            {"eid": event_id},
        ).scalar_one()
        if int(total or 0) <= 1:
            raise MinimumCardinalityViolation("an event needs at least one team type")

        in_use = conn.execute(
            text("SELECT COUNT(*) FROM teams WHERE event_id = :eid AND type = :name"),
            {"eid": event_id, "name": tt["name"]},
        ).scalar_one()

        if int(in_use or 0) > 0:
            if policy != POLICY_REASSIGN:
                raise StatusLinked(
                    "team type is in use by existing teams",
                    options=[POLICY_REASSIGN],
                    code="team_type_linked",
                )
            try:
                target_id = int(reassign_to)
            except (TypeError, ValueError):
                raise InvalidReassignTarget("reassignment target is required")
            target = conn.execute(
                text("SELECT id, name FROM team_types WHERE id = :ttid AND event_id = :eid"),
                {"ttid": target_id, "eid": event_id},
            ).mappings().one_or_none()
            if target is None or int(target["id"]) == int(team_type_id):
                raise InvalidReassignTarget("invalid target team type for reassignment")

            conn.execute(
                text("UPDATE teams SET type = :new WHERE event_id = :eid AND type = :old"),
                {"new": target["name"], "eid": event_id, "old": tt["name"]},
            )

        conn.execute(text("DELETE FROM team_types WHERE id = :ttid"), {"ttid": team_type_id})


# ---------- teams ----------

def create_team(
    conn: Connection,
    event_id: int,
    name: str,
    type: str,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> int:
    name, type = _clean(name), _clean(type)
    if not name or not type:
        raise BadRequest("name and type are required")
    with atomic(conn):
        require_event(conn, event_id)
        known = conn.execute(
            text("SELECT 1 FROM team_types WHERE event_id = :eid AND name = :name"),
            {"eid": event_id, "name": type},
        ).scalar_one_or_none()
        if known is None:
            raise BadRequest("unknown team type for this event")

        team_id = int(conn.execute(
            text("INSERT INTO teams (event_id, name, type) VALUES (:eid, :name, :type) RETURNING id"),
            {"eid": event_id, "name": name, "type": type},
        ).scalar_one())
        write_action_log(
            conn, event_id, f"Team created: {name} ({type})",
            actor=actor, team_id=team_id, now=now,
        )
        return team_id


def list_teams(conn: Connection, event_id: int) -> List[Dict[str, Any]]:
    """Teams of an event ordered by name, each with its members."""
    rows = conn.execute(
        text("SELECT id, event_id, name, type FROM teams WHERE event_id = :eid ORDER BY name, id"),
        {"eid": event_id},
    ).mappings().all()
    members = conn.execute(
        text("""
            SELECT m.id, m.team_id, m.name, m.role
            FROM team_members m JOIN teams t ON t.id = m.team_id
            WHERE t.event_id = :eid
            ORDER BY m.id
        """),
        {"eid": event_id},
    ).mappings().all()
    by_team: Dict[int, List[Dict[str, Any]]] = {}
    for m in members:
        by_team.setdefault(int(m["team_id"]), []).append(dict(m))
    return [{**dict(r), "members": by_team.get(int(r["id"]), [])} for r in rows]


def _get_team(conn: Connection, team_id: int):
    row = conn.execute(
        text("SELECT id, event_id, name FROM teams WHERE id = :tid"), {"tid": team_id}
    ).mappings().one_or_none()
    if row is None:
        raise NotFound("team not found", entity="team", id=team_id)
    return row


def add_team_member(
    conn: Connection,
    team_id: int,
    name: str,
    role: Optional[str] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> int:
    name, role = _clean(name), _clean(role)
    if not name:
        raise BadRequest("name is required")
    with atomic(conn):
        team = _get_team(conn, team_id)
        member_id = int(conn.execute(
            text("INSERT INTO team_members (team_id, name, role) VALUES (:tid, :name, :role) RETURNING id"),
            {"tid": team_id, "name": name, "role": role},
        ).scalar_one())
        label = f"{name} ({role})" if role else name
        write_action_log(
            conn, team["event_id"], f'Member added to team "{team["name"]}": {label}',
            actor=actor, team_id=team_id, now=now,
        )
        return member_id


def remove_team_member(
    conn: Connection,
    member_id: int,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> None:
    with atomic(conn):
        member = conn.execute(
            text("SELECT id, team_id, name FROM team_members WHERE id = :mid"), {"mid": member_id}
        ).mappings().one_or_none()
        if member is None:
            raise NotFound("team member not found", entity="team_member", id=member_id)
        team = _get_team(conn, member["team_id"])
        conn.execute(text("DELETE FROM team_members WHERE id = :mid"), {"mid": member_id})
        write_action_log(
            conn, team["event_id"], f'Member removed from team "{team["name"]}": {member["name"]}',
            actor=actor, team_id=team["id"], now=now,
        )
