"""
Tenancy Admin Blueprint — super-user control plane for tenant data repair.

API Endpoints (JSON), all under /api/v1/super/tenancy:
  GET    /health                 — Dashboard snapshot (orphans, quarantine, readiness)
  GET    /orphans                — Per-table orphan scan
  POST   /orphans/fix            — Move every orphan into quarantine (FIX_ORPHANS)
  GET    /scan                   — Missing tenant_id counts + backfill availability
  POST   /backfill?mode=         — dry_run | apply (X-Confirm-Backfill header for apply)
  GET    /backfill/decision      — Single-row inference result
  POST   /backfill/row           — Apply the inference for one row
  GET    /quarantine/summary     — Quarantined rows per table
  GET    /quarantine/list        — Paginated, searchable quarantined rows
  POST   /quarantine/assign      — Move a quarantined row to an active tenant
  POST   /quarantine/archive     — Soft-disable a quarantined row
  POST   /quarantine/delete      — Hard delete (flag + phrase + X-Confirm-Delete)
  GET    /integrity              — Cross-tenant consistency report
  GET    /config                 — Flags, confirmation phrases and table catalog

All endpoints require a super user when a JWT identity is present.
"""

import logging

from flask import Blueprint, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    AmbiguousResolutionError,
    ConfirmationMismatchError,
    ConflictError,
    FeatureDisabledError,
    InvalidStateError,
    NotFoundError,
    SchemaDriftError,
)
from app.models import db
from app.models.auth import User, UserRole
from app.services.tenancy_services import get_services
from app.services.tenancy_settings import (
    BACKFILL_CONFIRM_HEADER,
    BACKFILL_CONFIRM_PHRASE,
    DELETE_CONFIRM_HEADER,
)
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

tenancy_admin_bp = Blueprint("tenancy_admin", __name__, url_prefix="/api/v1/super/tenancy")


# ═══════════════════════════════════════════════════════════════════════════════
# ACCESS CONTROL
# ═══════════════════════════════════════════════════════════════════════════════


@tenancy_admin_bp.before_request
def _require_super_user():
    """Reject authenticated callers that are not super users."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        # No JWT identity: authentication is enforced upstream
        return None
    user = db.session.get(User, user_id)
    if user is None or user.role != UserRole.SUPER_USER:
        return api_error(E.FORBIDDEN, "Super user access required")
    return None


def _actor_id():
    return getattr(g, "jwt_user_id", None)


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR MAPPING
# ═══════════════════════════════════════════════════════════════════════════════


@tenancy_admin_bp.errorhandler(NotFoundError)
def _not_found(exc):
    return api_error(E.NOT_FOUND, str(exc))


@tenancy_admin_bp.errorhandler(InvalidStateError)
def _invalid_state(exc):
    return api_error(E.CONFLICT_STATE, str(exc), details=exc.details)


@tenancy_admin_bp.errorhandler(AmbiguousResolutionError)
def _ambiguous(exc):
    return api_error(
        E.AMBIGUOUS, str(exc),
        details={"table": exc.table, "record_id": exc.record_id, "candidates": exc.candidates},
    )


@tenancy_admin_bp.errorhandler(SchemaDriftError)
def _schema_drift(exc):
    return api_error(
        E.SCHEMA_DRIFT, str(exc),
        details={"table": exc.table, "missing_columns": exc.missing_columns},
    )


@tenancy_admin_bp.errorhandler(ConfirmationMismatchError)
def _confirmation(exc):
    details = {"expected": exc.expected_hint} if exc.expected_hint else None
    return api_error(E.CONFIRMATION_MISMATCH, str(exc), details=details)


@tenancy_admin_bp.errorhandler(FeatureDisabledError)
def _feature_disabled(exc):
    return api_error(E.FEATURE_DISABLED, str(exc), details={"flag": exc.flag})


@tenancy_admin_bp.errorhandler(ConflictError)
def _conflict(exc):
    return api_error(E.CONFLICT_DUPLICATE, str(exc))


@tenancy_admin_bp.errorhandler(SQLAlchemyError)
def _database(exc):
    db.session.rollback()
    logger.exception("Database error on %s", request.path)
    return api_error(E.DATABASE, "Database error")


# ── request helpers ──────────────────────────────────────────────────────────


def _body():
    return request.get_json(silent=True) or {}


def _table_and_id(data):
    """Pull ``table`` and an integer ``id`` from a body or query dict.

    Returns ``(table, record_id, error_response)``.
    """
    table = (data.get("table") or "").strip()
    raw_id = data.get("id")
    if not table or raw_id in (None, ""):
        return None, None, api_error(E.VALIDATION_REQUIRED, "table and id are required")
    try:
        return table, int(raw_id), None
    except (TypeError, ValueError):
        return None, None, api_error(E.VALIDATION_INVALID, "id must be an integer")


def _as_bool(value, default):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# ═══════════════════════════════════════════════════════════════════════════════
# VISIBILITY
# ═══════════════════════════════════════════════════════════════════════════════


@tenancy_admin_bp.route("/health", methods=["GET"])
def tenancy_health():
    return jsonify(get_services().health.snapshot())


@tenancy_admin_bp.route("/orphans", methods=["GET"])
def orphan_scan():
    return jsonify(get_services().scanner.scan_all())


@tenancy_admin_bp.route("/scan", methods=["GET"])
def tenant_id_scan():
    return jsonify(get_services().health.tenant_id_scan())


@tenancy_admin_bp.route("/integrity", methods=["GET"])
def integrity_checks():
    return jsonify(get_services().integrity.run())


@tenancy_admin_bp.route("/config", methods=["GET"])
def tenancy_config():
    services = get_services()
    return jsonify({
        **services.settings.to_public_dict(),
        "tables": [t.to_dict() for t in services.registry],
    })


# ═══════════════════════════════════════════════════════════════════════════════
# BACKFILL
# ═══════════════════════════════════════════════════════════════════════════════


@tenancy_admin_bp.route("/backfill", methods=["POST"])
def run_backfill():
    """Dry run (default) or apply the tenant-id backfill."""
    services = get_services()
    mode = request.args.get("mode") or _body().get("mode") or "dry_run"
    if mode not in ("dry_run", "apply"):
        return api_error(E.VALIDATION_INVALID, "mode must be 'dry_run' or 'apply'")

    if mode == "apply":
        if not services.settings.backfill_enabled:
            raise FeatureDisabledError("Tenant-id backfill apply", "BACKFILL_TENANT_IDS_ALLOWED")
        if request.headers.get(BACKFILL_CONFIRM_HEADER) != BACKFILL_CONFIRM_PHRASE:
            raise ConfirmationMismatchError(
                f"Include header '{BACKFILL_CONFIRM_HEADER}: {BACKFILL_CONFIRM_PHRASE}' to apply",
                expected_hint=BACKFILL_CONFIRM_HEADER,
            )

    result = services.backfill.run(mode, actor_user_id=_actor_id())
    return jsonify(result)


@tenancy_admin_bp.route("/backfill/decision", methods=["GET"])
def backfill_decision():
    table, record_id, err = _table_and_id(request.args)
    if err:
        return err
    return jsonify(get_services().backfill.decide(table, record_id).to_dict())


@tenancy_admin_bp.route("/backfill/row", methods=["POST"])
def backfill_row():
    table, record_id, err = _table_and_id(_body())
    if err:
        return err
    if request.headers.get(BACKFILL_CONFIRM_HEADER) != BACKFILL_CONFIRM_PHRASE:
        raise ConfirmationMismatchError(
            f"Include header '{BACKFILL_CONFIRM_HEADER}: {BACKFILL_CONFIRM_PHRASE}' to apply",
            expected_hint=BACKFILL_CONFIRM_HEADER,
        )
    result = get_services().backfill.resolve_one(table, record_id, actor_user_id=_actor_id())
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════════════════════
# QUARANTINE
# ═══════════════════════════════════════════════════════════════════════════════


@tenancy_admin_bp.route("/orphans/fix", methods=["POST"])
def fix_orphans():
    data = _body()
    result = get_services().quarantine.quarantine_orphans(
        dry_run=_as_bool(data.get("dry_run"), True),
        confirm_text=data.get("confirm_text"),
        actor_user_id=_actor_id(),
    )
    return jsonify(result)


@tenancy_admin_bp.route("/quarantine/summary", methods=["GET"])
def quarantine_summary():
    return jsonify(get_services().catalog.summary())


@tenancy_admin_bp.route("/quarantine/list", methods=["GET"])
def quarantine_list():
    table = (request.args.get("table") or "").strip()
    if not table:
        return api_error(E.VALIDATION_REQUIRED, "table is required")
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", type=int)
    search = request.args.get("search", "")
    return jsonify(get_services().catalog.list(table, page=page, limit=limit, search=search))


@tenancy_admin_bp.route("/quarantine/assign", methods=["POST"])
def quarantine_assign():
    data = _body()
    table, record_id, err = _table_and_id(data)
    if err:
        return err
    tenant_id = data.get("tenant_id")
    if tenant_id in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "tenant_id is required")
    workspace_id = data.get("workspace_id")
    try:
        tenant_id = int(tenant_id)
        workspace_id = int(workspace_id) if workspace_id not in (None, "") else None
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "tenant_id and workspace_id must be integers")

    result = get_services().quarantine.assign(
        table, record_id, tenant_id, workspace_id=workspace_id, actor_user_id=_actor_id(),
    )
    return jsonify(result)


@tenancy_admin_bp.route("/quarantine/archive", methods=["POST"])
def quarantine_archive():
    table, record_id, err = _table_and_id(_body())
    if err:
        return err
    return jsonify(get_services().quarantine.archive(table, record_id, actor_user_id=_actor_id()))


@tenancy_admin_bp.route("/quarantine/delete", methods=["POST"])
def quarantine_delete():
    data = _body()
    table, record_id, err = _table_and_id(data)
    if err:
        return err
    result = get_services().quarantine.delete(
        table,
        record_id,
        confirm_text=data.get("confirm_phrase"),
        confirm_header=request.headers.get(DELETE_CONFIRM_HEADER),
        actor_user_id=_actor_id(),
    )
    return jsonify(result)
