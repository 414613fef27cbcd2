"""
Milestone Benefit Engine
Benefits blueprint — generation, applications and workflow endpoints.

Endpoints summary:
    GENERATE  /api/v1/benefits/generate                            POST
              /api/v1/benefits/generation-runs                     GET

    APPS      /api/v1/benefits/applications                        GET, POST (manual filing)
              /api/v1/benefits/applications/<id>                   GET
              /api/v1/benefits/applications/<id>/transition        POST
              /api/v1/benefits/applications/bulk-transition        POST
              /api/v1/benefits/applications/<id>/audit             GET

    HISTORY   /api/v1/benefits/beneficiaries/<id>/applications     GET
              /api/v1/benefits/beneficiaries/<id>/eligibility      GET

Domain errors (NotFoundError, ValidationError, ConflictError,
InvalidTransitionError, TransientStoreError) are rendered by the app-level
error handlers.  The acting user comes from the ``X-Actor`` header.
"""

import logging

from flask import Blueprint, jsonify, request

from benefit_engine.blueprints import pagination_args
from benefit_engine.core.exceptions import ValidationError
from benefit_engine.models.audit import AuditLog
from benefit_engine.services import application_store
from benefit_engine.services.batch_generator import generate_applications, list_generation_runs
from benefit_engine.services.filters import filters_from_args
from benefit_engine.services.status_workflow import bulk_update_status
from benefit_engine.utils.errors import E, api_error
from benefit_engine.utils.helpers import get_actor, parse_date_input

logger = logging.getLogger(__name__)

benefit_bp = Blueprint("benefits", __name__, url_prefix="/api/v1/benefits")


# ── Helpers ──────────────────────────────────────────────────────────────────

def _payment_date(data):
    try:
        return parse_date_input(data.get("payment_date"))
    except ValueError as exc:
        raise ValidationError(str(exc), details={"payment_date": data.get("payment_date")}) from exc


def _optional_int_arg(name):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", details={name: raw}) from exc


# ═══════════════════════════════════════════════════════════════════════════
#  Batch generation
# ═══════════════════════════════════════════════════════════════════════════

@benefit_bp.route("/generate", methods=["POST"])
def generate():
    data = request.get_json(silent=True) or {}
    if data.get("program_year") is None:
        return api_error(E.VALIDATION_REQUIRED, "program_year is required")

    result = generate_applications(data["program_year"], get_actor())
    return jsonify(result.to_dict()), 200


@benefit_bp.route("/generation-runs", methods=["GET"])
def generation_runs():
    limit, _ = pagination_args(default_limit=20, max_limit=200)
    runs = list_generation_runs(_optional_int_arg("program_year"), limit=limit)
    return jsonify({"items": [r.to_dict() for r in runs], "total": len(runs)})


# ═══════════════════════════════════════════════════════════════════════════
#  Applications
# ═══════════════════════════════════════════════════════════════════════════

@benefit_bp.route("/applications", methods=["GET"])
def list_applications():
    filters = filters_from_args(request.args)
    limit, offset = pagination_args()
    items = application_store.query_applications(filters, limit=limit, offset=offset)
    total = application_store.count_applications(filters)
    return jsonify({
        "items": [a.to_dict() for a in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@benefit_bp.route("/applications", methods=["POST"])
def file_application():
    data = request.get_json(silent=True) or {}
    missing = [f for f in ("beneficiary_id", "program_year") if data.get(f) is None]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} is required")

    app_obj = application_store.file_application(
        data["beneficiary_id"],
        data["program_year"],
        actor=get_actor(),
        remarks=data.get("remarks"),
    )
    return jsonify(app_obj.to_dict()), 201


@benefit_bp.route("/applications/<int:application_id>", methods=["GET"])
def get_application(application_id):
    return jsonify(application_store.get_application(application_id).to_dict())


@benefit_bp.route("/applications/<int:application_id>/transition", methods=["POST"])
def transition_application(application_id):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")

    app_obj = application_store.update_status(
        application_id,
        data["status"],
        get_actor(),
        remarks=data.get("remarks"),
        payment_date=_payment_date(data),
    )
    return jsonify(app_obj.to_dict())


@benefit_bp.route("/applications/bulk-transition", methods=["POST"])
def bulk_transition():
    data = request.get_json(silent=True) or {}
    ids = data.get("application_ids")
    if not data.get("status") or not isinstance(ids, list):
        return api_error(E.VALIDATION_REQUIRED, "status and application_ids (list) are required")

    result = bulk_update_status(
        ids,
        data["status"],
        get_actor(),
        remarks=data.get("remarks"),
        payment_date=_payment_date(data),
    )
    return jsonify(result)


@benefit_bp.route("/applications/<int:application_id>/audit", methods=["GET"])
def application_audit(application_id):
    application_store.get_application(application_id)
    logs = (
        AuditLog.query
        .filter_by(entity_type="benefit_application", entity_id=str(application_id))
        .order_by(AuditLog.timestamp, AuditLog.id)
        .all()
    )
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)})


# ═══════════════════════════════════════════════════════════════════════════
#  Beneficiary history
# ═══════════════════════════════════════════════════════════════════════════

@benefit_bp.route("/beneficiaries/<int:beneficiary_id>/applications", methods=["GET"])
def beneficiary_applications(beneficiary_id):
    items = application_store.list_by_beneficiary(beneficiary_id)
    return jsonify({"items": [a.to_dict() for a in items], "total": len(items)})


@benefit_bp.route("/beneficiaries/<int:beneficiary_id>/eligibility", methods=["GET"])
def beneficiary_eligibility(beneficiary_id):
    return jsonify(application_store.beneficiary_eligibility(
        beneficiary_id,
        first_year=_optional_int_arg("first_year"),
        last_year=_optional_int_arg("last_year"),
    ))
