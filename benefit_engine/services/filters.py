"""
Filter set shared by application queries and statistics.

All filters are optional and conjunctive.  ``validate_filters`` rejects
malformed values (unknown status, program year before launch, unknown
geography code, inverted ranges) before any query runs.

Age semantic: an application matches the age range when its calendar-year
age falls inside the range for ANY selected program year.  With no program
years selected, the application's own program year is used.

Either age bound works on its own: a missing ``age_min`` means 0 and a
missing ``age_max`` means ``ELIGIBILITY_MAX_AGE``.  Bounds outside
``0..ELIGIBILITY_MAX_AGE`` (130 by default) are rejected rather than
widened, so the age filter and the eligibility resolver share one sanity
bound.  Older dashboards only applied the age filter when both bounds were
present, with 200 as the implicit ceiling.  That behaviour is deliberately
not reproduced.

``created_from`` / ``created_to`` accept timestamps or bare dates; a bare
date covers the whole UTC day (see ``ApplicationFilters.created_bounds``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import and_, extract, or_

from benefit_engine.core.exceptions import ValidationError
from benefit_engine.models.benefit import (
    APPLICATION_STATUSES,
    BENEFIT_CODES,
    BenefitApplication,
)
from benefit_engine.models.registry import Beneficiary
from benefit_engine.services.registry_service import GeographyDirectory
from benefit_engine.utils.helpers import parse_date_input, parse_datetime_input


@dataclass
class ApplicationFilters:
    created_from: datetime | date | None = None
    created_to: datetime | date | None = None
    program_years: list[int] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)
    benefit_codes: list[str] = field(default_factory=list)
    payment_date_from: date | None = None
    payment_date_to: date | None = None
    province_code: str | None = None
    lgu_code: str | None = None
    barangay_code: str | None = None
    age_min: int | None = None
    age_max: int | None = None
    beneficiary_id: int | None = None

    def created_bounds(self) -> tuple[datetime | None, datetime | None]:
        """Return ``created_at`` bounds as ``[start, end)`` aware datetimes.

        A bare ``date`` covers that whole day on either side, so
        ``created_from=created_to=<day>`` selects everything created that day.
        An explicit timestamp end bound is inclusive.
        """
        start = self.created_from
        if start is not None and not isinstance(start, datetime):
            start = datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
        end = self.created_to
        if end is not None:
            if isinstance(end, datetime):
                end = end + timedelta(microseconds=1)
            else:
                end = datetime(end.year, end.month, end.day, tzinfo=timezone.utc) + timedelta(days=1)
        return start, end

    @property
    def has_age_range(self) -> bool:
        return self.age_min is not None or self.age_max is not None

    def to_dict(self) -> dict:
        return {
            "created_from": self.created_from.isoformat() if self.created_from else None,
            "created_to": self.created_to.isoformat() if self.created_to else None,
            "program_years": list(self.program_years),
            "statuses": list(self.statuses),
            "benefit_codes": list(self.benefit_codes),
            "payment_date_from": self.payment_date_from.isoformat() if self.payment_date_from else None,
            "payment_date_to": self.payment_date_to.isoformat() if self.payment_date_to else None,
            "province_code": self.province_code,
            "lgu_code": self.lgu_code,
            "barangay_code": self.barangay_code,
            "age_min": self.age_min,
            "age_max": self.age_max,
            "beneficiary_id": self.beneficiary_id,
        }


# ── Parsing ─────────────────────────────────────────────────────────────────


def _split_list(values) -> list[str]:
    items = []
    for value in values:
        items.extend(v.strip() for v in str(value).split(",") if v.strip())
    return items


def _as_int(value, name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer", details={name: value}) from exc


def filters_from_args(args) -> ApplicationFilters:
    """Build filters from a Flask ``request.args`` MultiDict.

    Lists accept repeated keys or comma-separated values
    (``?program_year=2024&program_year=2025`` or ``?program_year=2024,2025``).
    """
    try:
        created_from = parse_datetime_input(args.get("created_from"))
        created_to = parse_datetime_input(args.get("created_to"))
        payment_date_from = parse_date_input(args.get("payment_date_from"))
        payment_date_to = parse_date_input(args.get("payment_date_to"))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    years = [_as_int(v, "program_year") for v in _split_list(args.getlist("program_year"))]

    return ApplicationFilters(
        created_from=created_from,
        created_to=created_to,
        program_years=years,
        statuses=_split_list(args.getlist("status")),
        benefit_codes=_split_list(args.getlist("benefit_code")),
        payment_date_from=payment_date_from,
        payment_date_to=payment_date_to,
        province_code=args.get("province_code") or None,
        lgu_code=args.get("lgu_code") or None,
        barangay_code=args.get("barangay_code") or None,
        age_min=_as_int(args.get("age_min"), "age_min"),
        age_max=_as_int(args.get("age_max"), "age_max"),
        beneficiary_id=_as_int(args.get("beneficiary_id"), "beneficiary_id"),
    )


# ── Validation ──────────────────────────────────────────────────────────────


def validate_program_year(program_year) -> int:
    """Return *program_year* as int or raise ValidationError when out of range."""
    launch = current_app.config.get("PROGRAM_LAUNCH_YEAR", 2024)
    upper = current_app.config.get("MAX_PROGRAM_YEAR", 2100)
    if isinstance(program_year, bool) or not isinstance(program_year, int):
        raise ValidationError(
            "program_year must be an integer", details={"program_year": program_year},
        )
    if program_year < launch or program_year > upper:
        raise ValidationError(
            f"program_year must be between {launch} and {upper}",
            details={"program_year": program_year},
        )
    return program_year


def validate_filters(filters: ApplicationFilters, geography: GeographyDirectory | None = None) -> ApplicationFilters:
    errors = {}

    for year in filters.program_years:
        try:
            validate_program_year(year)
        except ValidationError as exc:
            errors.setdefault("program_years", []).append(str(exc))

    bad_status = sorted(set(filters.statuses) - set(APPLICATION_STATUSES))
    if bad_status:
        errors["statuses"] = f"Unknown status: {', '.join(bad_status)}"

    bad_codes = sorted(set(filters.benefit_codes) - set(BENEFIT_CODES))
    if bad_codes:
        errors["benefit_codes"] = f"Unknown benefit code: {', '.join(bad_codes)}"

    created_start, created_end = filters.created_bounds()
    if created_start and created_end and created_start >= created_end:
        errors["created_from"] = "created_from is after created_to"
    if (filters.payment_date_from and filters.payment_date_to
            and filters.payment_date_from > filters.payment_date_to):
        errors["payment_date_from"] = "payment_date_from is after payment_date_to"

    max_age = current_app.config.get("ELIGIBILITY_MAX_AGE", 130)
    for name in ("age_min", "age_max"):
        value = getattr(filters, name)
        if value is not None and not 0 <= value <= max_age:
            errors[name] = f"{name} must be between 0 and {max_age}"
    if (filters.age_min is not None and filters.age_max is not None
            and filters.age_min > filters.age_max):
        errors["age_min"] = "age_min is greater than age_max"

    geography = geography or GeographyDirectory()
    if filters.province_code and not geography.province_exists(filters.province_code):
        errors["province_code"] = f"Unknown province code: {filters.province_code}"
    if filters.lgu_code and not geography.lgu_exists(filters.lgu_code):
        errors["lgu_code"] = f"Unknown LGU code: {filters.lgu_code}"
    if filters.barangay_code and not geography.barangay_exists(filters.barangay_code):
        errors["barangay_code"] = f"Unknown barangay code: {filters.barangay_code}"

    if errors:
        raise ValidationError("Invalid filters", details=errors)
    return filters


# ── Query application ───────────────────────────────────────────────────────


def _age_condition(filters: ApplicationFilters):
    app_cls = BenefitApplication
    birth_year = extract("year", app_cls.birth_date)
    lo = filters.age_min if filters.age_min is not None else 0
    hi = filters.age_max if filters.age_max is not None else current_app.config.get("ELIGIBILITY_MAX_AGE", 130)

    if not filters.program_years:
        age = app_cls.program_year - birth_year
        return and_(age >= lo, age <= hi)

    # birth_year in [year - hi, year - lo] for some selected year
    return or_(*[
        and_(birth_year >= year - hi, birth_year <= year - lo)
        for year in sorted(set(filters.program_years))
    ])


def apply_filters(q, filters: ApplicationFilters):
    """Apply *filters* to a query that already joins ``Beneficiary``."""
    app_cls = BenefitApplication

    created_start, created_end = filters.created_bounds()
    if created_start:
        q = q.filter(app_cls.created_at >= created_start)
    if created_end:
        q = q.filter(app_cls.created_at < created_end)
    if filters.program_years:
        q = q.filter(app_cls.program_year.in_(filters.program_years))
    if filters.statuses:
        q = q.filter(app_cls.status.in_(filters.statuses))
    if filters.benefit_codes:
        q = q.filter(app_cls.benefit_code.in_(filters.benefit_codes))
    if filters.payment_date_from:
        q = q.filter(app_cls.payment_date >= filters.payment_date_from)
    if filters.payment_date_to:
        q = q.filter(app_cls.payment_date <= filters.payment_date_to)
    if filters.province_code:
        q = q.filter(Beneficiary.province_code == filters.province_code)
    if filters.lgu_code:
        q = q.filter(Beneficiary.lgu_code == filters.lgu_code)
    if filters.barangay_code:
        q = q.filter(Beneficiary.barangay_code == filters.barangay_code)
    if filters.beneficiary_id is not None:
        q = q.filter(app_cls.beneficiary_id == filters.beneficiary_id)
    if filters.has_age_range:
        q = q.filter(_age_condition(filters))
    return q
