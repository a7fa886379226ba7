# cpops/routes/statuses.py
from __future__ import annotations
from flask import Blueprint, request, jsonify, current_app, g

from .. import get_conn
from ..auth.guards import require_auth, require_admin
from ..services import catalog
from ..services.errors import LifecycleError

statuses_bp = Blueprint("statuses", __name__)


@statuses_bp.get("/events/<int:event_id>/statuses")
@require_auth()
def list_statuses(event_id: int):
    with get_conn() as conn:
        return jsonify(catalog.list_statuses(conn, event_id)), 200


@statuses_bp.post("/events/<int:event_id>/statuses")
@require_admin
def create_status(event_id: int):
    data = request.get_json(silent=True) or {}
    with get_conn() as conn, conn.begin():
        status_id = catalog.create_status(
            conn, event_id,
            name=data.get("name"),
            color=data.get("color"),
            is_closed=bool(data.get("is_closed")),
        )
    return jsonify({"id": status_id}), 201


@statuses_bp.patch("/statuses/<int:status_id>")
@require_admin
def update_status(status_id: int):
    """
    PATCH /api/statuses/{id}
    Body: { name?, color?, is_closed? }
    Every intervention using the status is recalculated in the same transaction.
    """
    data = request.get_json(silent=True) or {}
    is_closed = data.get("is_closed")
    try:
        with get_conn() as conn, conn.begin():
            catalog.update_status(
                conn, status_id,
                name=data.get("name") if isinstance(data.get("name"), str) else None,
                color=data.get("color") if isinstance(data.get("color"), str) else None,
                is_closed=(bool(is_closed) if is_closed is not None else None),
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("update_status failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True}), 200


@statuses_bp.delete("/statuses/<int:status_id>")
@require_admin
def delete_status(status_id: int):
    """
    DELETE /api/statuses/{id}
    Body (optional): { action: "set_null" | "reassign", reassign_to_status_id: int }

    Responses:
      - 200: { success: true }
      - 400: { error: "minimum_cardinality" | "invalid_reassign_target" }
      - 404: { error: "not_found" }
      - 409: { error: "status_linked", options: ["set_null", "reassign"] }
    """
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            catalog.delete_status(
                conn, status_id,
                policy=data.get("action"),
                reassign_to=data.get("reassign_to_status_id"),
                actor=g.actor,
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("delete_status failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True}), 200
