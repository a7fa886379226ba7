# cpops/auth/guards.py
from __future__ import annotations
from functools import wraps
from typing import Iterable, Optional
from flask import request, jsonify, current_app, g
import jwt

from ..services.types import Actor

ROLES = {"ROOT", "ADMIN", "OPERATOR", "VIEWER"}
EDITORS = {"ROOT", "ADMIN", "OPERATOR"}
ADMINS = {"ROOT", "ADMIN"}

# ---------- helpers ----------
def _json(status: int, payload: dict):
    return jsonify(payload), status

def _unauth(msg="unauthorized"):
    return _json(401, {"error": msg})

def _forbid(msg="forbidden"):
    return _json(403, {"error": msg})

def _decode_jwt_from_auth_header() -> Optional[dict]:
    auth = request.headers.get("Authorization", "")
    if not auth.lower().startswith("bearer "):
        return None
    token = auth.split(None, 1)[1]
    secret = current_app.config.get("JWT_SECRET")
    if not secret:
        return None
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError):
        return None

# ---------- top-level auth ----------
def require_auth(roles: Optional[Iterable[str]] = None):
    """Require a valid JWT; optional role filter. Sets g.actor for the action log."""
    roles = set(roles or [])
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            payload = _decode_jwt_from_auth_header()
            if not payload:
                return _unauth()
            try:
                g.user_id = int(payload.get("sub") or 0)
            except (TypeError, ValueError):
                g.user_id = 0
            g.user_role = payload.get("role")
            if not g.user_id or g.user_role not in ROLES:
                return _unauth()
            if roles and g.user_role not in roles:
                return _forbid("insufficient_role")
            g.actor = Actor(user_id=g.user_id, username=payload.get("username"))
            return fn(*args, **kwargs)
        return wrapper
    return deco

def require_editor(fn):
    return require_auth(roles=EDITORS)(fn)

def require_admin(fn):
    return require_auth(roles=ADMINS)(fn)
