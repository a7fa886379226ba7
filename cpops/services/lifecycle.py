# cpops/services/lifecycle.py
"""
Intervention status lifecycle.

An intervention is closed exactly when it has at least one team-status link
and every linked status is a closing one. Each operation here captures a
single `now`, applies its mutation, rolls the status history over and then
reconciles `closed_at` through recalculate_closed_state(), all inside the
caller's transaction. Every writer locks the intervention row before any of
its link rows, so concurrent writers on one intervention queue up.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

from ..db.types import utc_param
from . import history, links
from .action_log import write_action_log
from .clock import utcnow
from .errors import BadRequest, NotFound
from .numbering import next_intervention_number
from .transactions import atomic, for_update
from .types import Actor

logger = logging.getLogger(__name__)


# --- lookups ----------------------------------------------------------------

def _get_intervention(conn: Connection, intervention_id: int, lock: bool = False):
    sql = """
        SELECT id, event_id, intervention_number, title, location, description,
               created_at, closed_at
        FROM interventions
        WHERE id = :iid
    """
    if lock:
        sql += for_update(conn)
    row = conn.execute(text(sql), {"iid": intervention_id}).mappings().one_or_none()
    if row is None:
        raise NotFound("intervention not found", entity="intervention", id=intervention_id)
    return row


def lock_interventions(conn: Connection, intervention_ids: Iterable[int]) -> None:
    """Row-lock several interventions in id order, before touching their links."""
    ids = sorted({int(i) for i in intervention_ids})
    if not ids:
        return
    conn.execute(
        text(
            "SELECT id FROM interventions WHERE id IN :ids ORDER BY id" + for_update(conn)
        ).bindparams(bindparam("ids", expanding=True)),
        {"ids": ids},
    ).all()


def _get_team(conn: Connection, team_id: int):
    row = conn.execute(
        text("SELECT id, event_id, name, type FROM teams WHERE id = :tid"),
        {"tid": team_id},
    ).mappings().one_or_none()
    if row is None:
        raise NotFound("team not found", entity="team", id=team_id)
    return row


def _get_status(conn: Connection, status_id: int, event_id: int):
    row = conn.execute(
        text("SELECT id, event_id, name, is_closed FROM statuses WHERE id = :sid"),
        {"sid": status_id},
    ).mappings().one_or_none()
    if row is None or int(row["event_id"]) != int(event_id):
        raise NotFound("status not found", entity="status", id=status_id)
    return row


def _resolve_default_status(
    conn: Connection, event_id: int, status_id: Optional[int]
) -> Optional[int]:
    """Requested status if it belongs to the event, else the event's lowest-id status, else None."""
    if status_id:
        ok = conn.execute(
            text("SELECT id FROM statuses WHERE id = :sid AND event_id = :eid"),
            {"sid": int(status_id), "eid": event_id},
        ).scalar_one_or_none()
        if ok is not None:
            return int(ok)
    first = conn.execute(
        text("SELECT MIN(id) FROM statuses WHERE event_id = :eid"),
        {"eid": event_id},
    ).scalar_one_or_none()
    return int(first) if first is not None else None


def _event_teams(conn: Connection, event_id: int, team_ids: Iterable[int]):
    ids = sorted({int(t) for t in team_ids if t})
    if not ids:
        return []
    return conn.execute(
        text("""
            SELECT id, name FROM teams
            WHERE event_id = :eid AND id IN :ids
            ORDER BY id
        """).bindparams(bindparam("ids", expanding=True)),
        {"eid": event_id, "ids": ids},
    ).mappings().all()


# --- closed-state recalculation ---------------------------------------------

def recalculate_closed_state(
    conn: Connection, intervention_id: int, now: Optional[datetime] = None
) -> None:
    """
    Reconcile interventions.closed_at with the aggregate of the team links.

    open -> closed: stamp closed_at and stop every running history interval.
    closed -> open: clear closed_at and restart an interval for each link
    whose pair has none running. Idempotent when nothing changed.
    """
    now = now or utcnow()
    with atomic(conn):
        inter = _get_intervention(conn, intervention_id, lock=True)
        current = links.list_links(conn, intervention_id)
        all_closed = bool(current) and all(l.is_closed for l in current)
        is_closed = inter["closed_at"] is not None

        if all_closed and not is_closed:
            conn.execute(
                text("UPDATE interventions SET closed_at = :now WHERE id = :iid")
                .bindparams(utc_param("now")),
                {"iid": intervention_id, "now": now},
            )
            stopped = history.close_open_intervals(conn, intervention_id, now)
            logger.info(
                "intervention %s closed (%d interval(s) stopped)", intervention_id, stopped
            )
            return

        if not all_closed and is_closed:
            conn.execute(
                text("UPDATE interventions SET closed_at = NULL WHERE id = :iid"),
                {"iid": intervention_id},
            )
            running = history.open_team_ids(conn, intervention_id)
            restarted = 0
            for link in current:
                if link.team_id in running:
                    continue
                history.open_interval(conn, intervention_id, link.team_id, link.status_id, now)
                restarted += 1
            logger.info(
                "intervention %s reopened (%d interval(s) restarted)", intervention_id, restarted
            )


# --- status transition ------------------------------------------------------

def transition_team_status(
    conn: Connection,
    intervention_id: int,
    team_id: int,
    status_id: Optional[int],
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Move one team of an intervention to status_id (None allowed).
    Returns True when the status actually changed. Recalculation and the
    audit entry run either way.
    """
    now = now or utcnow()
    with atomic(conn):
        inter = _get_intervention(conn, intervention_id, lock=True)
        team = _get_team(conn, team_id)
        status = _get_status(conn, status_id, inter["event_id"]) if status_id is not None else None

        link = links.get_link(conn, intervention_id, team_id, lock=True)
        if link is None:
            raise NotFound(
                "team is not linked to this intervention",
                entity="link", intervention_id=intervention_id, team_id=team_id,
            )

        changed = link.status_id != status_id
        if changed:
            links.set_link_status(conn, intervention_id, team_id, status_id)
            history.close_open_intervals(conn, intervention_id, now, team_ids=[team_id])
            history.open_interval(conn, intervention_id, team_id, status_id, now)
            logger.info(
                "intervention %s team %s: status %s -> %s",
                intervention_id, team_id, link.status_id, status_id,
            )

        recalculate_closed_state(conn, intervention_id, now)

        status_label = status["name"] if status is not None else "none"
        write_action_log(
            conn, inter["event_id"],
            f'Status of team "{team["name"]}" in intervention "{inter["title"]}" '
            f'changed to "{status_label}"',
            actor=actor, team_id=team_id, intervention_id=intervention_id, now=now,
        )
        return changed


# --- attach / detach --------------------------------------------------------

def _attach(conn, inter, team_ids, default_status_id, actor, now) -> List[int]:
    candidates = _event_teams(conn, inter["event_id"], team_ids)
    already = set(links.linked_team_ids(conn, inter["id"], [t["id"] for t in candidates]))
    to_add = [t for t in candidates if int(t["id"]) not in already]
    if not to_add:
        return []

    target = _resolve_default_status(conn, inter["event_id"], default_status_id)
    links.insert_links(conn, inter["id"], [t["id"] for t in to_add], target)
    for t in to_add:
        history.open_interval(conn, inter["id"], int(t["id"]), target, now)
        write_action_log(
            conn, inter["event_id"],
            f'Team "{t["name"]}" added to intervention "{inter["title"]}"',
            actor=actor, team_id=int(t["id"]), intervention_id=inter["id"], now=now,
        )
    return [int(t["id"]) for t in to_add]


def _detach(conn, inter, team_ids, actor, now) -> List[int]:
    candidates = _event_teams(conn, inter["event_id"], team_ids)
    linked = set(links.linked_team_ids(conn, inter["id"], [t["id"] for t in candidates]))
    to_remove = [t for t in candidates if int(t["id"]) in linked]
    if not to_remove:
        return []

    ids = [int(t["id"]) for t in to_remove]
    links.delete_links(conn, inter["id"], ids)
    # a removed team's clock stops
    history.close_open_intervals(conn, inter["id"], now, team_ids=ids)
    for t in to_remove:
        write_action_log(
            conn, inter["event_id"],
            f'Team "{t["name"]}" removed from intervention "{inter["title"]}"',
            actor=actor, team_id=int(t["id"]), intervention_id=inter["id"], now=now,
        )
    return ids


def attach_teams(
    conn: Connection,
    intervention_id: int,
    team_ids: Iterable[int],
    default_status_id: Optional[int] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> List[int]:
    """Link teams (set-union; foreign or already linked teams are skipped). Returns the new team ids."""
    now = now or utcnow()
    with atomic(conn):
        inter = _get_intervention(conn, intervention_id, lock=True)
        added = _attach(conn, inter, team_ids, default_status_id, actor, now)
        recalculate_closed_state(conn, intervention_id, now)
        return added


def detach_teams(
    conn: Connection,
    intervention_id: int,
    team_ids: Iterable[int],
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> List[int]:
    now = now or utcnow()
    with atomic(conn):
        inter = _get_intervention(conn, intervention_id, lock=True)
        removed = _detach(conn, inter, team_ids, actor, now)
        recalculate_closed_state(conn, intervention_id, now)
        return removed


# --- intervention CRUD ------------------------------------------------------

def create_intervention(
    conn: Connection,
    event_id: int,
    title: str,
    location: Optional[str] = None,
    description: Optional[str] = None,
    status_id: Optional[int] = None,
    team_ids: Optional[Iterable[int]] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> int:
    """Insert an auto-numbered intervention, attach its teams and reconcile. Returns the new id."""
    title = (title or "").strip()
    if not title:
        raise BadRequest("title is required")
    now = now or utcnow()

    with atomic(conn):
        number = next_intervention_number(conn, event_id)
        new_id = conn.execute(
            text("""
                INSERT INTO interventions
                    (event_id, intervention_number, title, location, description, created_at)
                VALUES (:eid, :no, :title, :location, :description, :now)
                RETURNING id
            """).bindparams(utc_param("now")),
            {
                "eid": event_id,
                "no": number,
                "title": title,
                "location": location,
                "description": description,
                "now": now,
            },
        ).scalar_one()
        new_id = int(new_id)

        write_action_log(
            conn, event_id, f"New intervention created: {title}",
            actor=actor, intervention_id=new_id, now=now,
        )
        if team_ids:
            inter = _get_intervention(conn, new_id)
            _attach(conn, inter, team_ids, status_id, actor, now)
        recalculate_closed_state(conn, new_id, now)

        logger.info("intervention %s created as #%d in event %s", new_id, number, event_id)
        return new_id


_EDITABLE = ("title", "location", "description")


def update_intervention(
    conn: Connection,
    intervention_id: int,
    fields: Optional[dict] = None,
    add_team_ids: Optional[Iterable[int]] = None,
    remove_team_ids: Optional[Iterable[int]] = None,
    default_status_id: Optional[int] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> None:
    """Edit details, detach then attach teams, and recalculate once."""
    now = now or utcnow()
    fields = {k: v for k, v in (fields or {}).items() if k in _EDITABLE}
    if "title" in fields and not (fields["title"] or "").strip():
        raise BadRequest("title cannot be empty")

    with atomic(conn):
        inter = _get_intervention(conn, intervention_id, lock=True)

        changes = {k: v for k, v in fields.items() if v != inter[k]}
        if changes:
            sets = ", ".join(f"{k} = :{k}" for k in changes)
            conn.execute(
                text(f"UPDATE interventions SET {sets} WHERE id = :iid"),
                {**changes, "iid": intervention_id},
            )
            for k, v in changes.items():
                write_action_log(
                    conn, inter["event_id"],
                    f'{k.capitalize()} of intervention "{inter["title"]}" changed to "{v or ""}"',
                    actor=actor, intervention_id=intervention_id, now=now,
                )

        if remove_team_ids:
            _detach(conn, inter, remove_team_ids, actor, now)
        if add_team_ids:
            _attach(conn, inter, add_team_ids, default_status_id, actor, now)

        recalculate_closed_state(conn, intervention_id, now)


def delete_intervention(
    conn: Connection,
    intervention_id: int,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> None:
    """Delete an intervention with its links, history and messages."""
    with atomic(conn):
        inter = _get_intervention(conn, intervention_id, lock=True)
        params = {"iid": intervention_id}
        conn.execute(text("DELETE FROM intervention_messages WHERE intervention_id = :iid"), params)
        conn.execute(text("DELETE FROM intervention_status_history WHERE intervention_id = :iid"), params)
        conn.execute(text("DELETE FROM intervention_teams WHERE intervention_id = :iid"), params)
        conn.execute(text("DELETE FROM interventions WHERE id = :iid"), params)
        write_action_log(
            conn, inter["event_id"], f"Intervention deleted: {inter['title']}",
            actor=actor, intervention_id=intervention_id, now=now,
        )
        logger.info("intervention %s deleted", intervention_id)
