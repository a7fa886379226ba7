# cpops/__init__.py
import os
from flask import Flask, current_app, jsonify
from dotenv import load_dotenv
from flask_cors import CORS

from .db.engine import make_engine
from .services.errors import LifecycleError


def _parse_bool(v) -> bool:
    return str(v).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def create_app(overrides: dict | None = None):
    load_dotenv()
    app = Flask(__name__)

    # ---- Config ----
    app.config["DATABASE_URL"] = os.environ.get("DATABASE_URL")
    app.config["JWT_SECRET"] = os.environ.get("JWT_SECRET", "dev-secret-change-me")
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO").upper()
    app.config["REPAIR_NUMBERING_ON_STARTUP"] = _parse_bool(
        os.environ.get("REPAIR_NUMBERING_ON_STARTUP", "true")
    )
    app.config["CORS_ORIGINS"] = os.environ.get("CORS_ORIGINS", "*")
    app.config.update(overrides or {})

    if not app.config["DATABASE_URL"]:
        raise RuntimeError("DATABASE_URL is not set. Put it in your .env")
    app.config["DB_ENGINE"] = make_engine(app.config["DATABASE_URL"])

    app.logger.setLevel(app.config["LOG_LEVEL"])
    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})

    # ---- Errors ----
    @app.errorhandler(LifecycleError)
    def _lifecycle_error(exc: LifecycleError):
        return jsonify(exc.to_dict()), exc.http_status

    # ---- Blueprints ----
    from .routes.events import events_bp
    from .routes.statuses import statuses_bp
    from .routes.interventions import interventions_bp
    from .routes.logs import logs_bp

    app.register_blueprint(events_bp, url_prefix="/api")
    app.register_blueprint(statuses_bp, url_prefix="/api")
    app.register_blueprint(interventions_bp, url_prefix="/api")
    app.register_blueprint(logs_bp, url_prefix="/api")

    @app.get("/api/healthz")
    def health():
        return jsonify(ok=True)

    # ---- Startup maintenance ----
    if app.config["REPAIR_NUMBERING_ON_STARTUP"]:
        _repair_numbering(app)

    return app


def _repair_numbering(app: Flask) -> None:
    """Heal gaps/duplicates in intervention numbers once, before serving requests."""
    from sqlalchemy import inspect
    from .services.numbering import repair_all_numbering

    engine = app.config["DB_ENGINE"]
    if not inspect(engine).has_table("interventions"):
        app.logger.warning("interventions table missing; skipping numbering repair")
        return
    with engine.connect() as conn, conn.begin():
        fixed = repair_all_numbering(conn)
    if fixed:
        app.logger.info("numbering repair rewrote %d intervention(s)", fixed)


def get_conn():
    engine = current_app.config["DB_ENGINE"]
    conn = engine.connect()

    if conn.in_transaction():
        conn.rollback()

    return conn
