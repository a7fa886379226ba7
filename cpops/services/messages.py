# cpops/services/messages.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ..db.types import utc_param
from .action_log import write_action_log
from .clock import as_utc, utcnow
from .errors import BadRequest, NotFound
from .transactions import atomic
from .types import Actor


def _event_of(conn: Connection, intervention_id: int) -> int:
    event_id = conn.execute(
        text("SELECT event_id FROM interventions WHERE id = :iid"),
        {"iid": intervention_id},
    ).scalar_one_or_none()
    if event_id is None:
        raise NotFound("intervention not found", entity="intervention", id=intervention_id)
    return int(event_id)


def post_message(
    conn: Connection,
    intervention_id: int,
    message: str,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> int:
    """Append a chat message to an intervention and mirror it in the action log."""
    message = (message or "").strip()
    if not message:
        raise BadRequest("message is required")
    actor = actor or Actor()
    now = now or utcnow()

    with atomic(conn):
        event_id = _event_of(conn, intervention_id)
        msg_id = conn.execute(
            text("""
                INSERT INTO intervention_messages
                    (intervention_id, actor_user_id, actor_username, message, created_at)
                VALUES (:iid, :uid, :uname, :msg, :now)
                RETURNING id
            """).bindparams(utc_param("now")),
            {
                "iid": intervention_id,
                "uid": actor.user_id,
                "uname": actor.username,
                "msg": message,
                "now": now,
            },
        ).scalar_one()
        write_action_log(
            conn, event_id, f"Intervention message added: {message}",
            actor=actor, intervention_id=intervention_id, now=now,
        )
        return int(msg_id)


def list_messages(conn: Connection, intervention_id: int) -> List[Dict[str, Any]]:
    _event_of(conn, intervention_id)
    rows = conn.execute(
        text("""
            SELECT id, intervention_id, actor_user_id, actor_username, message, created_at
            FROM intervention_messages
            WHERE intervention_id = :iid
            ORDER BY created_at DESC, id DESC
        """),
        {"iid": intervention_id},
    ).mappings().all()
    out = []
    for r in rows:
        d = dict(r)
        d["created_at"] = as_utc(d["created_at"]).isoformat()
        out.append(d)
    return out
