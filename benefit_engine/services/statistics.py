"""
Milestone Benefit Engine
Statistics Aggregator — filtered counts and amounts over applications.

Every query joins ``Beneficiary`` (for geography and sex) and applies the
shared ``ApplicationFilters``.  Amounts always sum the ``cash_amount``
locked into each application, never the current milestone table.

Geography buckets outer-join the geography directory so provinces and
LGUs with no matching applications still appear, with zeros, ordered by
name.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import case, func

from benefit_engine.core.exceptions import ValidationError
from benefit_engine.models import db
from benefit_engine.models.benefit import (
    APPLICATION_STATUSES,
    BENEFIT_CODES,
    DISQUALIFIED,
    PAID,
    BenefitApplication,
)
from benefit_engine.models.registry import Beneficiary, Lgu, Province
from benefit_engine.services.filters import (
    ApplicationFilters,
    apply_filters,
    validate_filters,
)
from benefit_engine.services.milestones import milestone_for_code, milestone_label

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(_CENT)


def _prepare(filters: ApplicationFilters | None) -> ApplicationFilters:
    return validate_filters(filters or ApplicationFilters())


def _filtered(query, filters: ApplicationFilters):
    query = query.select_from(BenefitApplication).join(
        Beneficiary, Beneficiary.id == BenefitApplication.beneficiary_id,
    )
    return apply_filters(query, filters)


def _status_columns():
    """count_<status> and amount_<status> columns for every status."""
    cols = []
    for status in APPLICATION_STATUSES:
        key = status.lower()
        cols.append(func.count(case((BenefitApplication.status == status, 1))).label(f"count_{key}"))
        cols.append(
            func.sum(case((BenefitApplication.status == status, BenefitApplication.cash_amount)))
            .label(f"amount_{key}")
        )
    return cols


def _bucket_columns(sub):
    cols = []
    for status in APPLICATION_STATUSES:
        key = status.lower()
        cols.append(sub.c[f"count_{key}"])
        cols.append(sub.c[f"amount_{key}"])
    return cols


def _status_breakdown(row) -> dict:
    counts = {s: int(getattr(row, f"count_{s.lower()}") or 0) for s in APPLICATION_STATUSES}
    amounts = {s: _money(getattr(row, f"amount_{s.lower()}")) for s in APPLICATION_STATUSES}
    return {
        "counts": counts,
        "amounts": amounts,
        "total": sum(counts.values()),
        "total_amount": sum(amounts.values(), ZERO),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Aggregate
# ═════════════════════════════════════════════════════════════════════════════


def aggregate(filters: ApplicationFilters | None = None) -> dict:
    """Counts and locked amounts per status, all five statuses present.

    Returns ``{counts, amounts, total, total_amount}``.
    """
    filters = _prepare(filters)
    row = _filtered(db.session.query(*_status_columns()), filters).one()
    return _status_breakdown(row)


def by_province(filters: ApplicationFilters | None = None) -> list[dict]:
    """One bucket per province (zero buckets included), ordered by name."""
    filters = _prepare(filters)
    sub = (
        _filtered(
            db.session.query(Beneficiary.province_code.label("code"), *_status_columns()),
            filters,
        )
        .group_by(Beneficiary.province_code)
        .subquery()
    )
    q = (
        db.session.query(Province.code, Province.name, *_bucket_columns(sub))
        .outerjoin(sub, sub.c.code == Province.code)
    )
    if filters.province_code:
        q = q.filter(Province.code == filters.province_code)
    rows = q.order_by(Province.name, Province.code).all()
    return [
        {"province_code": r.code, "province_name": r.name, **_status_breakdown(r)}
        for r in rows
    ]


def by_lgu(province_code: str, filters: ApplicationFilters | None = None) -> list[dict]:
    """One bucket per LGU of *province_code* (zero buckets included), ordered by name."""
    if db.session.get(Province, province_code) is None:
        raise ValidationError(
            f"Unknown province code: {province_code}",
            details={"province_code": province_code},
        )
    filters = _prepare(filters)
    sub = (
        _filtered(
            db.session.query(Beneficiary.lgu_code.label("code"), *_status_columns()),
            filters,
        )
        .filter(Beneficiary.province_code == province_code)
        .group_by(Beneficiary.lgu_code)
        .subquery()
    )
    q = (
        db.session.query(Lgu.code, Lgu.name, *_bucket_columns(sub))
        .outerjoin(sub, sub.c.code == Lgu.code)
        .filter(Lgu.province_code == province_code)
    )
    if filters.lgu_code:
        q = q.filter(Lgu.code == filters.lgu_code)
    rows = q.order_by(Lgu.name, Lgu.code).all()
    return [
        {"lgu_code": r.code, "lgu_name": r.name, "province_code": province_code, **_status_breakdown(r)}
        for r in rows
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Year / type summaries
# ═════════════════════════════════════════════════════════════════════════════

_CODE_ORDER = {code: i for i, code in enumerate(BENEFIT_CODES)}
_STATUS_ORDER = {status: i for i, status in enumerate(APPLICATION_STATUSES)}


def summary_by_year_and_type(filters: ApplicationFilters | None = None) -> list[dict]:
    """Count, total and average amount per program year × benefit code × status."""
    filters = _prepare(filters)
    rows = (
        _filtered(
            db.session.query(
                BenefitApplication.program_year,
                BenefitApplication.benefit_code,
                BenefitApplication.status,
                func.count(BenefitApplication.id).label("application_count"),
                func.sum(BenefitApplication.cash_amount).label("total_amount"),
                func.avg(BenefitApplication.cash_amount).label("average_amount"),
            ),
            filters,
        )
        .group_by(
            BenefitApplication.program_year,
            BenefitApplication.benefit_code,
            BenefitApplication.status,
        )
        .all()
    )
    rows = sorted(
        rows,
        key=lambda r: (-r.program_year, _CODE_ORDER.get(r.benefit_code, 99), _STATUS_ORDER.get(r.status, 99)),
    )
    return [
        {
            "program_year": r.program_year,
            "benefit_code": r.benefit_code,
            "benefit_label": milestone_label(r.benefit_code),
            "status": r.status,
            "application_count": int(r.application_count),
            "total_amount": _money(r.total_amount),
            "average_amount": _money(r.average_amount),
        }
        for r in rows
    ]


def year_summaries(filters: ApplicationFilters | None = None) -> list[dict]:
    """Per program year: totals, paid, pending and disqualified.

    Pending is every status other than Paid and Disqualified.
    """
    years: dict[int, dict] = {}
    for row in summary_by_year_and_type(filters):
        summary = years.setdefault(row["program_year"], {
            "program_year": row["program_year"],
            "total_applications": 0,
            "total_amount": ZERO,
            "paid_applications": 0,
            "paid_amount": ZERO,
            "pending_applications": 0,
            "disqualified_applications": 0,
        })
        summary["total_applications"] += row["application_count"]
        summary["total_amount"] += row["total_amount"]
        if row["status"] == PAID:
            summary["paid_applications"] += row["application_count"]
            summary["paid_amount"] += row["total_amount"]
        elif row["status"] == DISQUALIFIED:
            summary["disqualified_applications"] += row["application_count"]
        else:
            summary["pending_applications"] += row["application_count"]
    return sorted(years.values(), key=lambda s: -s["program_year"])


# ═════════════════════════════════════════════════════════════════════════════
# Paid breakdowns
# ═════════════════════════════════════════════════════════════════════════════


def paid_by_milestone(filters: ApplicationFilters | None = None) -> dict:
    """Paid applications per milestone with male/female split and share of all paid."""
    filters = _prepare(filters)
    rows = (
        _filtered(
            db.session.query(
                BenefitApplication.benefit_code,
                func.count(BenefitApplication.id).label("paid"),
                func.count(case((Beneficiary.sex == "Male", 1))).label("male"),
                func.count(case((Beneficiary.sex == "Female", 1))).label("female"),
                func.sum(BenefitApplication.cash_amount).label("amount"),
            ),
            filters,
        )
        .filter(BenefitApplication.status == PAID)
        .group_by(BenefitApplication.benefit_code)
        .all()
    )
    by_code = {r.benefit_code: r for r in rows}
    total_paid = sum(int(r.paid) for r in rows)

    milestones = []
    for code in BENEFIT_CODES:
        r = by_code.get(code)
        paid = int(r.paid) if r else 0
        milestones.append({
            "qualifying_age": milestone_for_code(code).qualifying_age,
            "benefit_code": code,
            "benefit_label": milestone_label(code),
            "paid": paid,
            "male": int(r.male) if r else 0,
            "female": int(r.female) if r else 0,
            "share": round(paid / total_paid * 100, 1) if total_paid else 0.0,
            "total_amount": _money(r.amount) if r else ZERO,
        })
    return {
        "milestones": milestones,
        "total_paid": total_paid,
        "total_amount": sum((m["total_amount"] for m in milestones), ZERO),
    }


def paid_by_province_and_year(filters: ApplicationFilters | None = None) -> list[dict]:
    """Paid counts per province × program year, split by milestone age.

    Only provinces with at least one paid application appear.
    """
    filters = _prepare(filters)
    age_cols = [
        func.count(case((BenefitApplication.benefit_code == code, 1))).label(f"age_{milestone_for_code(code).qualifying_age}")
        for code in BENEFIT_CODES
    ]
    rows = (
        _filtered(
            db.session.query(
                Province.code, Province.name, BenefitApplication.program_year,
                *age_cols,
                func.count(BenefitApplication.id).label("total_paid"),
            ),
            filters,
        )
        .join(Province, Province.code == Beneficiary.province_code)
        .filter(BenefitApplication.status == PAID)
        .group_by(Province.code, Province.name, BenefitApplication.program_year)
        .order_by(Province.name, BenefitApplication.program_year)
        .all()
    )
    result = []
    for r in rows:
        entry = {"province_code": r.code, "province_name": r.name, "program_year": r.program_year}
        for code in BENEFIT_CODES:
            key = f"age_{milestone_for_code(code).qualifying_age}"
            entry[key] = int(getattr(r, key))
        entry["total_paid"] = int(r.total_paid)
        result.append(entry)
    return result
