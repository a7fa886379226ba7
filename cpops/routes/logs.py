# cpops/routes/logs.py
from __future__ import annotations
from flask import Blueprint, request, jsonify, g

from .. import get_conn
from ..auth.guards import require_auth, require_editor
from ..services.action_log import list_logs, list_log_users, write_action_log
from ..services.catalog import require_event

logs_bp = Blueprint("logs", __name__)


def _opt_int(v) -> int | None:
    try:
        return int(v) if v not in (None, "") else None
    except (TypeError, ValueError):
        return None


@logs_bp.get("/events/<int:event_id>/logs")
@require_auth()
def get_logs(event_id: int):
    """
    GET /api/events/{event_id}/logs?page=&limit=&user_id=&team_id=&intervention_id=
    Returns: { items, page, limit, total, has_more }
    """
    with get_conn() as conn:
        out = list_logs(
            conn, event_id,
            page=request.args.get("page", 1),
            limit=request.args.get("limit", 20),
            user_id=_opt_int(request.args.get("user_id")),
            team_id=_opt_int(request.args.get("team_id")),
            intervention_id=_opt_int(request.args.get("intervention_id")),
        )
    return jsonify(out), 200


@logs_bp.get("/events/<int:event_id>/log-users")
@require_auth()
def get_log_users(event_id: int):
    with get_conn() as conn:
        return jsonify(list_log_users(conn, event_id)), 200


@logs_bp.post("/events/<int:event_id>/logs")
@require_editor
def post_log(event_id: int):
    """Free-text operator log line, optionally tied to a team or intervention."""
    data = request.get_json(silent=True) or {}
    message = str(data.get("message") or "").strip()
    if not message:
        return {"error": "bad_request", "message": "message is required"}, 400
    with get_conn() as conn, conn.begin():
        require_event(conn, event_id)
        write_action_log(
            conn, event_id, message,
            actor=g.actor,
            team_id=_opt_int(data.get("team_id")),
            intervention_id=_opt_int(data.get("intervention_id")),
        )
    return jsonify({"success": True}), 201
