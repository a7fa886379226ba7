# cpops/routes/interventions.py
from __future__ import annotations
from flask import Blueprint, request, jsonify, current_app, g

from .. import get_conn
from ..auth.guards import require_auth, require_admin, require_editor
from ..services import lifecycle, messages
from ..services.durations import get_intervention_view, list_intervention_views
from ..services.errors import BadRequest, LifecycleError

interventions_bp = Blueprint("interventions", __name__)

# --- helpers ---------------------------------------------------------------
def _int_list(v) -> list[int]:
    if not isinstance(v, list):
        return []
    out = []
    for x in v:
        try:
            out.append(int(x))
        except (TypeError, ValueError):
            continue
    return [x for x in out if x]

def _opt_int(v) -> int | None:
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        raise BadRequest("expected an integer id")

# --- routes ----------------------------------------------------------------

@interventions_bp.get("/events/<int:event_id>/interventions")
@require_auth()
def list_interventions(event_id: int):
    """
    GET /api/events/{event_id}/interventions - newest first, each with its
    linked teams (status + time on status), open_seconds and status_durations.
    """
    with get_conn() as conn:
        views = list_intervention_views(conn, event_id)
    return jsonify([v.to_dict() for v in views]), 200


@interventions_bp.post("/events/<int:event_id>/interventions")
@require_editor
def create_intervention(event_id: int):
    """
    POST /api/events/{event_id}/interventions

    Request (JSON):
      - title (str, required)
      - location, description (str, optional)
      - status_id (int, optional) - initial status for every team
      - team_ids (list[int], optional)

    Responses:
      - 201: { "id": int }
      - 400: { "error": "bad_request" }
      - 404: { "error": "not_found" } unknown event
    """
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            new_id = lifecycle.create_intervention(
                conn, event_id,
                title=data.get("title"),
                location=data.get("location"),
                description=data.get("description"),
                status_id=_opt_int(data.get("status_id")),
                team_ids=_int_list(data.get("team_ids")),
                actor=g.actor,
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("create_intervention failed")
        return {"error": "server_error"}, 500
    return jsonify({"id": new_id}), 201


@interventions_bp.get("/interventions/<int:intervention_id>")
@require_auth()
def get_intervention(intervention_id: int):
    with get_conn() as conn:
        view = get_intervention_view(conn, intervention_id)
    return jsonify(view.to_dict()), 200


@interventions_bp.patch("/interventions/<int:intervention_id>")
@require_editor
def update_intervention(intervention_id: int):
    """
    PATCH /api/interventions/{id}
    Body: { title?, location?, description?, add_team_ids?, remove_team_ids?, default_status_id? }
    """
    data = request.get_json(silent=True) or {}
    fields = {k: data[k] for k in ("title", "location", "description") if isinstance(data.get(k), str)}
    try:
        with get_conn() as conn, conn.begin():
            lifecycle.update_intervention(
                conn, intervention_id,
                fields=fields,
                add_team_ids=_int_list(data.get("add_team_ids")),
                remove_team_ids=_int_list(data.get("remove_team_ids")),
                default_status_id=_opt_int(data.get("default_status_id")),
                actor=g.actor,
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("update_intervention failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True}), 200


@interventions_bp.delete("/interventions/<int:intervention_id>")
@require_admin
def delete_intervention(intervention_id: int):
    try:
        with get_conn() as conn, conn.begin():
            lifecycle.delete_intervention(conn, intervention_id, actor=g.actor)
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("delete_intervention failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True}), 200


@interventions_bp.post("/interventions/<int:intervention_id>/recalculate")
@require_editor
def recalculate(intervention_id: int):
    """Idempotent reconciliation of closed_at; no body."""
    with get_conn() as conn, conn.begin():
        lifecycle.recalculate_closed_state(conn, intervention_id)
    return jsonify({"success": True}), 200


@interventions_bp.patch("/interventions/<int:intervention_id>/teams/<int:team_id>")
@require_editor
def transition_team_status(intervention_id: int, team_id: int):
    """
    PATCH /api/interventions/{id}/teams/{team_id}
    Body: { "status_id": int | null }

    Responses:
      - 200: { "success": true, "changed": bool }
      - 404: { "error": "not_found" } intervention, team, status or link missing
    """
    data = request.get_json(silent=True) or {}
    if "status_id" not in data:
        return {"error": "bad_request", "message": "status_id is required"}, 400
    try:
        with get_conn() as conn, conn.begin():
            changed = lifecycle.transition_team_status(
                conn, intervention_id, team_id,
                _opt_int(data.get("status_id")),
                actor=g.actor,
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("transition_team_status failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True, "changed": changed}), 200


# ---------- chat messages ----------
@interventions_bp.get("/interventions/<int:intervention_id>/messages")
@require_auth()
def list_messages(intervention_id: int):
    with get_conn() as conn:
        return jsonify(messages.list_messages(conn, intervention_id)), 200


@interventions_bp.post("/interventions/<int:intervention_id>/messages")
@require_auth()
def post_message(intervention_id: int):
    data = request.get_json(silent=True) or {}
    with get_conn() as conn, conn.begin():
        msg_id = messages.post_message(conn, intervention_id, str(data.get("message") or ""), actor=g.actor)
    return jsonify({"id": msg_id}), 201
