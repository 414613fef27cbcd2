"""
Milestone Benefit Engine
Flask Application Factory.

Usage:
    from benefit_engine import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from benefit_engine.config import config
from benefit_engine.core.exceptions import (
    ConflictError,
    DuplicateBenefitError,
    InvalidTransitionError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from benefit_engine.middleware.logging_config import configure_logging
from benefit_engine.middleware.rate_limiter import init_rate_limits
from benefit_engine.middleware.timing import init_request_timing
from benefit_engine.models import db
from benefit_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without DATABASE_URL
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        from flask import abort, request as _req
        if _req.method in ("POST", "PUT", "PATCH") and _req.path.startswith("/api/"):
            ct = _req.content_type or ""
            if _req.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from benefit_engine.models import audit as _audit_models          # noqa: F401
    from benefit_engine.models import benefit as _benefit_models      # noqa: F401
    from benefit_engine.models import registry as _registry_models    # noqa: F401
    from benefit_engine.models import scheduling as _scheduling_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ───────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from benefit_engine.blueprints.benefit_bp import benefit_bp
    from benefit_engine.blueprints.health_bp import health_bp
    from benefit_engine.blueprints.statistics_bp import statistics_bp

    app.register_blueprint(benefit_bp)
    app.register_blueprint(statistics_bp)
    app.register_blueprint(health_bp)

    _register_error_handlers(app)
    _register_cli(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Audit dispatcher (retry thread when AUDIT_RETRY_BACKGROUND) ──────
    from benefit_engine.services.audit_sink import init_audit_dispatcher
    init_audit_dispatcher(app)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("benefit_engine.services.scheduled_jobs")  # registers @register_job handlers
    from benefit_engine.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app


def _register_error_handlers(app):
    @app.errorhandler(NotFoundError)
    def _not_found_error(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @app.errorhandler(ValidationError)
    def _validation_error(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @app.errorhandler(DuplicateBenefitError)
    def _duplicate_error(exc):
        return api_error(
            E.CONFLICT_DUPLICATE, str(exc),
            details={"beneficiary_id": exc.beneficiary_id, "benefit_code": exc.benefit_code},
        )

    @app.errorhandler(ConflictError)
    def _conflict_error(exc):
        return api_error(E.CONFLICT_STATE, str(exc))

    @app.errorhandler(InvalidTransitionError)
    def _transition_error(exc):
        return api_error(
            E.CONFLICT_STATE, str(exc),
            details={"source": exc.source, "target": exc.target},
        )

    @app.errorhandler(TransientStoreError)
    def _store_error(exc):
        logger.error("Store unavailable: %s", exc)
        return api_error(E.STORE_UNAVAILABLE, "Storage temporarily unavailable, retry later")

    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def _register_cli(app):
    @app.cli.command("generate-applications")
    @click.option("--year", "program_year", type=int, required=True, help="Program year to generate.")
    @click.option("--actor", default="cli", show_default=True, help="Recorded as created_by.")
    def generate_applications_cmd(program_year, actor):
        """Generate benefit applications for every eligible beneficiary."""
        from benefit_engine.services.batch_generator import generate_applications

        try:
            result = generate_applications(program_year, actor)
        except ValidationError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(
            f"Program year {program_year}: created={result.created} "
            f"skipped={result.skipped} errors={len(result.errors)} "
            f"(run {result.run_id})"
        )
        for beneficiary_id, reason in result.errors[:20]:
            click.echo(f"  beneficiary {beneficiary_id}: {reason}", err=True)
        if result.failure:
            raise click.ClickException(f"Run stopped early: {result.failure}")

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered scheduled job now."""
        from benefit_engine.services.scheduler_service import SchedulerService

        SchedulerService.ensure_jobs_registered()
        outcome = SchedulerService.run_job(job_name)
        click.echo(f"{job_name}: {outcome['status']}")
        if outcome.get("error"):
            raise click.ClickException(outcome["error"])
