import os
import traceback

import click
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from homecheff.extensions import db, migrate, cors
from homecheff.integrations.payments.factory import payout_health
from homecheff.segments.segment_admin import admin_bp
from homecheff.segments.segment_carrier_webhooks import webhooks_bp
from homecheff.segments.segment_delivery import delivery_bp
from homecheff.segments.segment_reviews import reviews_bp
from homecheff.utils.observability import init_sentry, init_otel, install_request_observers


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _env_config() -> dict:
    return {
        "PAYMENTS_PROVIDER": (os.getenv("PAYMENTS_PROVIDER") or "disabled").strip().lower(),
        "STRIPE_SECRET_KEY": (os.getenv("STRIPE_SECRET_KEY") or "").strip(),
        "PAYOUT_CURRENCY": (os.getenv("PAYOUT_CURRENCY") or "eur").strip().lower(),
        "DELIVERY_PAYOUT_TRANSFERS_ENABLED": (os.getenv("DELIVERY_PAYOUT_TRANSFERS_ENABLED") or "").strip().lower()
        in ("1", "true", "yes", "on"),
        "ECTAROSHIP_WEBHOOK_SECRET": (os.getenv("ECTAROSHIP_WEBHOOK_SECRET") or "").strip(),
        "EMAIL_PROVIDER": (os.getenv("EMAIL_PROVIDER") or "disabled").strip().lower(),
        "SMTP_HOST": (os.getenv("SMTP_HOST") or "").strip(),
        "SMTP_PORT": _env_int("SMTP_PORT", 587, maximum=65535),
        "SMTP_USER": (os.getenv("SMTP_USER") or "").strip(),
        "SMTP_PASS": os.getenv("SMTP_PASS") or "",
        "SMTP_FROM": (os.getenv("SMTP_FROM") or "").strip(),
        "SMTP_REPLY_TO": (os.getenv("SMTP_REPLY_TO") or "").strip(),
        "PUBLIC_BASE_URL": (os.getenv("PUBLIC_BASE_URL") or "https://homecheff.nl").strip(),
        "REVIEW_TOKEN_TTL_DAYS": _env_int("REVIEW_TOKEN_TTL_DAYS", 30, maximum=365),
    }


def create_app(config_overrides: dict | None = None):
    app = Flask(__name__)
    init_sentry(app)

    overrides = dict(config_overrides or {})
    env = (overrides.get("HOMECHEFF_ENV") or os.getenv("HOMECHEFF_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    app.config["HOMECHEFF_ENV"] = env
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config.update(_env_config())

    # Database config
    database_url = (
        overrides.get("SQLALCHEMY_DATABASE_URI")
        or os.getenv("SQLALCHEMY_DATABASE_URI")
        or os.getenv("DATABASE_URL")
    )
    if not database_url:
        if env in ("prod", "production"):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
        os.makedirs(instance_dir, exist_ok=True)
        database_url = f"sqlite:///{os.path.join(instance_dir, 'homecheff.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url

    engine_options = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_reset_on_return": "rollback",
                "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    app.config.update(overrides)

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)
    with app.app_context():
        init_otel(app, enabled=(os.getenv("OTEL_ENABLED") or "").strip() == "1")

    def _with_trace(payload: dict) -> dict:
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return payload

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        return jsonify(_with_trace(payload)), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        try:
            db.session.rollback()
        except Exception:
            app.logger.warning("rollback_after_unhandled_exception_failed")
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        if env not in ("prod", "production"):
            payload["details"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return jsonify(_with_trace(payload)), 500

    # Register API routes
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(delivery_bp)
    app.register_blueprint(reviews_bp)
    app.register_blueprint(admin_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "homecheff-fulfillment",
            "env": env,
            "db": db_state,
            "payouts": payout_health(app.config),
            "git_sha": (os.getenv("GIT_SHA") or "unknown").strip(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables for the configured database."""
        db.create_all()
        click.echo("init_db_ok")

    @app.cli.command("reconcile-payouts")
    @click.option("--limit", default=100, show_default=True, type=int)
    def reconcile_payouts_command(limit):
        """Retry transfers for escrows stuck in payout_scheduled."""
        from homecheff.jobs.payout_runner import run_payout_reconciliation

        result = run_payout_reconciliation(limit=max(1, min(int(limit), 500)))
        click.echo(
            f"payout_reconcile processed={result['processed']} paid={result['paid']} "
            f"skipped={result['skipped']} errors={result['errors']}"
        )
        if result["errors"]:
            raise click.ClickException("payout reconciliation finished with errors")

    return app
