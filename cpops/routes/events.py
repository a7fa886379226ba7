# cpops/routes/events.py
from __future__ import annotations
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.exc import IntegrityError

from .. import get_conn
from ..auth.guards import require_auth, require_admin, require_editor
from ..services import catalog
from ..services.errors import LifecycleError

events_bp = Blueprint("events", __name__)


@events_bp.post("/events")
@require_editor
def create_event():
    """
    POST /api/events - create an event with the default statuses and team types.
    Body: { name, date, end_date?, location?, organizer?, contact_info?, description? }
    Returns: 201 { id }
    """
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            event_id = catalog.create_event(
                conn,
                name=data.get("name"),
                date=data.get("date"),
                end_date=data.get("end_date"),
                location=data.get("location"),
                organizer=data.get("organizer"),
                contact_info=data.get("contact_info"),
                description=data.get("description"),
                actor=g.actor,
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("create_event failed")
        return {"error": "server_error"}, 500
    return jsonify({"id": event_id}), 201


@events_bp.get("/events")
@require_auth()
def list_events():
    with get_conn() as conn:
        return jsonify(catalog.list_events(conn)), 200


@events_bp.get("/events/<int:event_id>")
@require_auth()
def get_event(event_id: int):
    with get_conn() as conn:
        return jsonify(catalog.get_event(conn, event_id)), 200


@events_bp.patch("/events/<int:event_id>")
@require_admin
def update_event(event_id: int):
    """
    PATCH /api/events/{event_id} - replace the event details.
    Body: { name, date, end_date?, location?, organizer?, contact_info?, description? }
    """
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            catalog.update_event(
                conn, event_id,
                name=data.get("name"),
                date=data.get("date"),
                end_date=data.get("end_date"),
                location=data.get("location"),
                organizer=data.get("organizer"),
                contact_info=data.get("contact_info"),
                description=data.get("description"),
                actor=g.actor,
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("update_event failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True}), 200


@events_bp.delete("/events/<int:event_id>")
@require_admin
def delete_event(event_id: int):
    try:
        with get_conn() as conn, conn.begin():
            catalog.delete_event(conn, event_id)
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("delete_event failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True}), 200


# ---------- teams ----------
@events_bp.get("/events/<int:event_id>/teams")
@require_auth()
def list_teams(event_id: int):
    with get_conn() as conn:
        return jsonify(catalog.list_teams(conn, event_id)), 200


@events_bp.post("/events/<int:event_id>/teams")
@require_editor
def create_team(event_id: int):
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            team_id = catalog.create_team(
                conn, event_id, data.get("name"), data.get("type"), actor=g.actor
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("create_team failed")
        return {"error": "server_error"}, 500
    return jsonify({"id": team_id}), 201


@events_bp.post("/teams/<int:team_id>/members")
@require_editor
def add_team_member(team_id: int):
    """POST /api/teams/{team_id}/members  Body: { name, role? }  Returns: 201 { id }"""
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            member_id = catalog.add_team_member(
                conn, team_id, data.get("name"), data.get("role"), actor=g.actor
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("add_team_member failed")
        return {"error": "server_error"}, 500
    return jsonify({"id": member_id}), 201


@events_bp.delete("/members/<int:member_id>")
@require_editor
def remove_team_member(member_id: int):
    with get_conn() as conn, conn.begin():
        catalog.remove_team_member(conn, member_id, actor=g.actor)
    return jsonify({"success": True}), 200


# ---------- team types ----------
@events_bp.get("/events/<int:event_id>/team-types")
@require_auth()
def list_team_types(event_id: int):
    with get_conn() as conn:
        return jsonify(catalog.list_team_types(conn, event_id)), 200


@events_bp.post("/events/<int:event_id>/team-types")
@require_admin
def create_team_type(event_id: int):
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            tt_id = catalog.create_team_type(conn, event_id, data.get("name"))
    except IntegrityError:
        return {"error": "team_type_exists"}, 409
    return jsonify({"id": tt_id}), 201


@events_bp.patch("/team-types/<int:team_type_id>")
@require_admin
def rename_team_type(team_type_id: int):
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            catalog.rename_team_type(conn, team_type_id, data.get("name"))
    except IntegrityError:
        return {"error": "team_type_exists"}, 409
    return jsonify({"success": True}), 200


@events_bp.delete("/team-types/<int:team_type_id>")
@require_admin
def delete_team_type(team_type_id: int):
    """
    DELETE /api/team-types/{id}
    Body (optional): { action: "reassign", reassign_to_type_id: int }
    409 { error: "team_type_linked", options: ["reassign"] } while teams still use it.
    """
    data = request.get_json(silent=True) or {}
    try:
        with get_conn() as conn, conn.begin():
            catalog.delete_team_type(
                conn, team_type_id,
                policy=data.get("action"),
                reassign_to=data.get("reassign_to_type_id"),
            )
    except LifecycleError:
        raise
    except Exception:
        current_app.logger.exception("delete_team_type failed")
        return {"error": "server_error"}, 500
    return jsonify({"success": True}), 200
