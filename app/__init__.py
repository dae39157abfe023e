"""
Tenant Integrity Service
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask

from app.config import config
from app.models import db
from app.middleware.logging_config import configure_logging
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine

# Tests switch this off so dangling references can be seeded on purpose.
_SQLITE_FK_ENFORCEMENT = True


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if not _SQLITE_FK_ENFORCEMENT:
        return
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _import_models():
    """Register every table on ``db.metadata`` before ``create_all``."""
    from app.models import audit, auth, chat, project, time_tracking, workspace  # noqa: F401


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
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Request timing ───────────────────────────────────────────────────
    from app.middleware.timing import init_request_timing
    init_request_timing(app)

    # ── Extensions ───────────────────────────────────────────────────────
    _import_models()
    db.init_app(app)

    from app.services.tenancy_services import init_app as init_tenancy
    services = init_tenancy(app)
    if not app.config.get("TESTING"):
        logger.info(
            "Tenancy remediation: mode=%s backfill=%s actions=%s delete=%s",
            services.settings.enforcement_mode,
            services.settings.backfill_enabled,
            services.settings.actions_enabled,
            services.settings.delete_enabled,
        )

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.tenancy_admin_bp import tenancy_admin_bp
    app.register_blueprint(tenancy_admin_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("tenancy-backfill")
    @click.option("--apply", "apply_", is_flag=True, help="Write changes (default: dry run).")
    def tenancy_backfill_cmd(apply_):
        """Infer missing tenant_id values; unresolved rows go to quarantine."""
        from app.services.tenancy_services import get_services
        result = get_services().backfill.run("apply" if apply_ else "dry_run")
        click.echo(json.dumps(result, indent=2, default=str))

    @app.cli.command("tenancy-integrity")
    def tenancy_integrity_cmd():
        """Print the cross-tenant integrity report."""
        from app.services.tenancy_services import get_services
        click.echo(json.dumps(get_services().integrity.run(), indent=2, default=str))

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Tenant Integrity Service"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    return app
