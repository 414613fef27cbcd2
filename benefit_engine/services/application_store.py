"""Application store — durable BenefitApplication records.

Transaction policy: public write functions commit on success and roll back
on failure.  Every creation is its own transaction so a batch never holds
one long-lived transaction across the registry.

Lifetime uniqueness of (beneficiary_id, benefit_code) is enforced by the
``uq_benefit_app_beneficiary_code`` constraint alone: the row is inserted
and the integrity error is translated, never checked beforehand.

Provides:
- create_application / file_application
- get_application / list_by_beneficiary
- update_status (delegates to the status workflow)
- query_applications / count_applications over ApplicationFilters
- beneficiary_eligibility (upcoming milestone years for one beneficiary)
"""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy.exc import IntegrityError

from benefit_engine.core.exceptions import (
    DuplicateBenefitError,
    NotFoundError,
    ValidationError,
)
from benefit_engine.models import db
from benefit_engine.models.benefit import (
    BENEFIT_CODES,
    INITIAL_STATUS,
    BenefitApplication,
)
from benefit_engine.models.registry import Beneficiary
from benefit_engine.services import status_workflow
from benefit_engine.services.audit_sink import dispatch_audit
from benefit_engine.services.eligibility import eligible_years, resolve
from benefit_engine.services.filters import (
    ApplicationFilters,
    apply_filters,
    validate_filters,
    validate_program_year,
)
from benefit_engine.services.milestones import current_milestone_table
from benefit_engine.services.registry_service import SqlBeneficiaryRegistry
from benefit_engine.services.store_retry import with_store_retry

logger = logging.getLogger(__name__)


def _as_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("cash_amount must be a decimal", details={"cash_amount": str(value)}) from exc
    if amount <= 0:
        raise ValidationError("cash_amount must be positive", details={"cash_amount": str(value)})
    return amount


def _application_exists(beneficiary_id: int, benefit_code: str) -> bool:
    return db.session.query(
        BenefitApplication.query.filter_by(
            beneficiary_id=beneficiary_id, benefit_code=benefit_code,
        ).exists()
    ).scalar()


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════


@with_store_retry("create_application")
def create_application(
    beneficiary_id: int,
    program_year: int,
    benefit_code: str,
    birth_date: date,
    cash_amount,
    created_by: str = "system",
    remarks: str | None = None,
) -> BenefitApplication:
    """Insert one Applied application.

    Raises:
        ValidationError:       bad year, unknown code, missing birth date, bad amount
        DuplicateBenefitError: the beneficiary already holds this milestone
    """
    validate_program_year(program_year)
    if benefit_code not in BENEFIT_CODES:
        raise ValidationError(f"Unknown benefit code: {benefit_code}", details={"benefit_code": benefit_code})
    if birth_date is None:
        raise ValidationError("birth_date is required", details={"beneficiary_id": beneficiary_id})
    amount = _as_amount(cash_amount)

    app_obj = BenefitApplication(
        beneficiary_id=beneficiary_id,
        program_year=program_year,
        benefit_code=benefit_code,
        birth_date=birth_date,
        status=INITIAL_STATUS,
        cash_amount=amount,
        created_by=created_by,
        updated_by=created_by,
        remarks=remarks,
    )
    db.session.add(app_obj)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if _application_exists(beneficiary_id, benefit_code):
            raise DuplicateBenefitError(beneficiary_id, benefit_code) from exc
        logger.warning("Integrity error creating application: %s", exc.orig,
                       extra={"beneficiary_id": beneficiary_id})
        raise ValidationError(
            "Application violates a store constraint",
            details={"beneficiary_id": beneficiary_id, "error": str(exc.orig)},
        ) from exc

    dispatch_audit(
        entity_type="benefit_application",
        entity_id=app_obj.id,
        action="benefit_application.create",
        actor=created_by,
        diff={
            "beneficiary_id": beneficiary_id,
            "program_year": program_year,
            "benefit_code": benefit_code,
            "cash_amount": f"{amount:.2f}",
        },
    )
    return app_obj


def file_application(
    beneficiary_id: int,
    program_year: int,
    actor: str = "system",
    remarks: str | None = None,
) -> BenefitApplication:
    """Manually file the milestone a registry beneficiary qualifies for in *program_year*."""
    validate_program_year(program_year)
    registry = SqlBeneficiaryRegistry()
    beneficiary = registry.get(beneficiary_id)

    if registry.is_disqualified(beneficiary):
        raise ValidationError(
            f"Beneficiary status {beneficiary.status!r} is not eligible for benefits",
            details={"beneficiary_id": beneficiary_id, "status": beneficiary.status},
        )
    if beneficiary.birth_date is None:
        raise ValidationError("Beneficiary has no birth date", details={"beneficiary_id": beneficiary_id})

    milestone = resolve(
        beneficiary.birth_date, program_year, current_milestone_table(),
        max_age=current_app.config.get("ELIGIBILITY_MAX_AGE", 130),
    )
    if milestone is None:
        raise ValidationError(
            f"Beneficiary is not at a milestone age in {program_year}",
            details={
                "beneficiary_id": beneficiary_id,
                "age": program_year - beneficiary.birth_date.year,
            },
        )

    return create_application(
        beneficiary_id=beneficiary_id,
        program_year=program_year,
        benefit_code=milestone.benefit_code,
        birth_date=beneficiary.birth_date,
        cash_amount=milestone.cash_amount,
        created_by=actor,
        remarks=remarks,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════════


def get_application(application_id: int) -> BenefitApplication:
    app_obj = db.session.get(BenefitApplication, application_id)
    if app_obj is None:
        raise NotFoundError("BenefitApplication", application_id)
    return app_obj


def list_by_beneficiary(beneficiary_id: int) -> list[BenefitApplication]:
    """Every application of one beneficiary, most recent program year first."""
    if db.session.get(Beneficiary, beneficiary_id) is None:
        raise NotFoundError("Beneficiary", beneficiary_id)
    return (
        BenefitApplication.query
        .filter_by(beneficiary_id=beneficiary_id)
        .order_by(BenefitApplication.program_year.desc(), BenefitApplication.id.desc())
        .all()
    )


def _filtered_query(filters: ApplicationFilters | None):
    filters = validate_filters(filters or ApplicationFilters())
    q = BenefitApplication.query.join(
        Beneficiary, Beneficiary.id == BenefitApplication.beneficiary_id,
    )
    return apply_filters(q, filters)


def query_applications(
    filters: ApplicationFilters | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[BenefitApplication]:
    q = _filtered_query(filters).order_by(
        BenefitApplication.program_year.desc(), BenefitApplication.id.desc(),
    )
    if offset:
        q = q.offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def count_applications(filters: ApplicationFilters | None = None) -> int:
    return _filtered_query(filters).count()


def beneficiary_eligibility(beneficiary_id: int, first_year: int | None = None, last_year: int | None = None) -> dict:
    """Milestone years for one beneficiary between *first_year* and *last_year*.

    Each entry is flagged with the application already held for that
    milestone, if any.
    """
    beneficiary = SqlBeneficiaryRegistry().get(beneficiary_id)
    cfg = current_app.config
    first_year = validate_program_year(first_year or cfg.get("PROGRAM_LAUNCH_YEAR", 2024))
    last_year = validate_program_year(last_year or cfg.get("MAX_PROGRAM_YEAR", 2100))
    if first_year > last_year:
        raise ValidationError("first_year is after last_year",
                              details={"first_year": first_year, "last_year": last_year})

    held = {
        a.benefit_code: a
        for a in BenefitApplication.query.filter_by(beneficiary_id=beneficiary_id).all()
    }
    milestones = []
    if beneficiary.birth_date is not None:
        for year, milestone in eligible_years(
            beneficiary.birth_date, first_year, last_year, current_milestone_table(),
        ):
            existing = held.get(milestone.benefit_code)
            milestones.append({
                "program_year": year,
                **milestone.to_dict(),
                "application_id": existing.id if existing else None,
                "application_status": existing.status if existing else None,
            })
    return {
        "beneficiary_id": beneficiary_id,
        "birth_date": beneficiary.birth_date.isoformat() if beneficiary.birth_date else None,
        "registry_status": beneficiary.status,
        "milestones": milestones,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Update
# ═════════════════════════════════════════════════════════════════════════════


def update_status(
    application_id: int,
    new_status: str,
    actor: str = "system",
    remarks: str | None = None,
    payment_date: date | None = None,
) -> BenefitApplication:
    """Apply a workflow transition.  See ``status_workflow.transition``."""
    return status_workflow.transition(
        application_id, new_status, actor,
        remarks=remarks, payment_date=payment_date,
    )
