"""
Milestone Benefit Engine
Statistics blueprint — dashboard aggregates.

Every endpoint accepts the application filter query params:
    created_from, created_to, program_year (repeatable / comma list),
    status, benefit_code, payment_date_from, payment_date_to,
    province_code, lgu_code, barangay_code, age_min, age_max, beneficiary_id

Endpoints:
    GET /api/v1/benefits/statistics                       — totals per status
    GET /api/v1/benefits/statistics/provinces             — per province bucket
    GET /api/v1/benefits/statistics/provinces/<code>/lgus — per LGU bucket
    GET /api/v1/benefits/statistics/summary               — year × code × status
    GET /api/v1/benefits/statistics/years                 — per year summary
    GET /api/v1/benefits/statistics/paid-by-milestone     — paid per age, by sex
    GET /api/v1/benefits/statistics/paid-by-province      — paid per province × year
"""

from flask import Blueprint, jsonify, request

from benefit_engine.services import statistics
from benefit_engine.services.filters import filters_from_args

statistics_bp = Blueprint(
    "benefit_statistics", __name__, url_prefix="/api/v1/benefits/statistics",
)


@statistics_bp.route("", methods=["GET"])
def overview():
    filters = filters_from_args(request.args)
    return jsonify({"filters": filters.to_dict(), **statistics.aggregate(filters)})


@statistics_bp.route("/provinces", methods=["GET"])
def provinces():
    items = statistics.by_province(filters_from_args(request.args))
    return jsonify({"items": items, "total": len(items)})


@statistics_bp.route("/provinces/<code>/lgus", methods=["GET"])
def lgus(code):
    items = statistics.by_lgu(code, filters_from_args(request.args))
    return jsonify({"items": items, "total": len(items)})


@statistics_bp.route("/summary", methods=["GET"])
def summary():
    items = statistics.summary_by_year_and_type(filters_from_args(request.args))
    return jsonify({"items": items, "total": len(items)})


@statistics_bp.route("/years", methods=["GET"])
def years():
    items = statistics.year_summaries(filters_from_args(request.args))
    return jsonify({"items": items, "total": len(items)})


@statistics_bp.route("/paid-by-milestone", methods=["GET"])
def paid_by_milestone():
    return jsonify(statistics.paid_by_milestone(filters_from_args(request.args)))


@statistics_bp.route("/paid-by-province", methods=["GET"])
def paid_by_province():
    items = statistics.paid_by_province_and_year(filters_from_args(request.args))
    return jsonify({"items": items, "total": len(items)})
