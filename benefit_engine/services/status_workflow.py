"""
Milestone Benefit Engine
Status Workflow Engine — validated BenefitApplication transitions.

Transition legality comes from ``STATUS_TRANSITIONS`` in
``benefit_engine.models.benefit``.  Each change is one conditional UPDATE
keyed on the status the caller validated against; if another writer got
there first, the row is re-read and the transition re-validated from the
new status.

Side effects:
    → Paid        payment_date = caller value or today
    Paid →        payment_date cleared
    every change  updated_by / updated_at stamped, audit event dispatched
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy import update

from benefit_engine.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from benefit_engine.models import db
from benefit_engine.models.benefit import (
    APPLICATION_STATUSES,
    DISQUALIFIED,
    PAID,
    BenefitApplication,
    validate_status_transition,
)
from benefit_engine.services.audit_sink import dispatch_audit
from benefit_engine.services.store_retry import with_store_retry

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_ATTEMPTS = 3


def _validate_target(new_status: str) -> None:
    if new_status not in APPLICATION_STATUSES:
        raise ValidationError(
            f"Unknown status: {new_status}",
            details={"status": new_status, "allowed": list(APPLICATION_STATUSES)},
        )


def _current_status(application_id: int) -> str:
    status = (
        db.session.query(BenefitApplication.status)
        .filter(BenefitApplication.id == application_id)
        .scalar()
    )
    if status is None:
        raise NotFoundError("BenefitApplication", application_id)
    return status


def _transition_values(current: str, new_status: str, actor: str, payment_date, remarks) -> dict:
    if payment_date is not None and new_status != PAID:
        raise ValidationError(
            "payment_date can only be set when moving to Paid",
            details={"status": new_status},
        )
    values = {
        "status": new_status,
        "updated_by": actor,
        "updated_at": datetime.now(timezone.utc),
    }
    if new_status == PAID:
        values["payment_date"] = payment_date or date.today()
    elif current == PAID:
        values["payment_date"] = None
    if remarks is not None:
        values["remarks"] = remarks
    return values


@with_store_retry("update_status")
def transition(
    application_id: int,
    new_status: str,
    actor: str = "system",
    *,
    remarks: str | None = None,
    payment_date: date | None = None,
) -> BenefitApplication:
    """Move an application to *new_status*.

    Raises:
        ValidationError:        unknown target status or misplaced payment_date
        NotFoundError:          no such application
        InvalidTransitionError: target not reachable from the current status
        ConflictError:          status kept changing under us past the retry bound
    """
    _validate_target(new_status)
    attempts = int(current_app.config.get("STATUS_UPDATE_ATTEMPTS", DEFAULT_UPDATE_ATTEMPTS))

    for _ in range(max(1, attempts)):
        current = _current_status(application_id)

        if current == DISQUALIFIED and new_status == DISQUALIFIED:
            return db.session.get(BenefitApplication, application_id)

        if not validate_status_transition(current, new_status):
            raise InvalidTransitionError(current, new_status, application_id)

        values = _transition_values(current, new_status, actor, payment_date, remarks)
        result = db.session.execute(
            update(BenefitApplication)
            .where(
                BenefitApplication.id == application_id,
                BenefitApplication.status == current,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            logger.info(
                "Application %s changed concurrently (expected %s), re-validating",
                application_id, current,
                extra={"application_id": application_id, "event_type": "status_race"},
            )
            continue

        db.session.commit()
        app_obj = db.session.get(BenefitApplication, application_id, populate_existing=True)
        logger.info(
            "Application %s: %s → %s by %s",
            application_id, current, new_status, actor,
            extra={"application_id": application_id, "event_type": "status_change"},
        )

        diff = {"status": {"old": current, "new": new_status}}
        if "payment_date" in values:
            diff["payment_date"] = {"new": values["payment_date"]}
        if remarks is not None:
            diff["remarks"] = remarks
        dispatch_audit(
            entity_type="benefit_application",
            entity_id=application_id,
            action="benefit_application.status_change",
            actor=actor,
            diff=diff,
        )
        return app_obj

    raise ConflictError(
        "BenefitApplication", "status", str(application_id),
        message=f"BenefitApplication id={application_id} status kept changing; retry the transition",
    )


def bulk_update_status(
    application_ids,
    new_status: str,
    actor: str = "system",
    *,
    remarks: str | None = None,
    payment_date: date | None = None,
) -> dict:
    """Apply one transition to many applications, each independently.

    Returns ``{"updated": [app dicts], "failed": [{"id", "error"}]}``.
    """
    _validate_target(new_status)
    ids = list(dict.fromkeys(application_ids or []))
    if not ids:
        raise ValidationError("application_ids must be a non-empty list")

    updated, failed = [], []
    for application_id in ids:
        try:
            app_obj = transition(
                application_id, new_status, actor,
                remarks=remarks, payment_date=payment_date,
            )
            updated.append(app_obj.to_dict())
        except (NotFoundError, InvalidTransitionError, ConflictError,
                ValidationError, TransientStoreError) as exc:
            db.session.rollback()
            failed.append({"id": application_id, "error": str(exc)})

    logger.info(
        "Bulk transition to %s: %d updated, %d failed",
        new_status, len(updated), len(failed),
        extra={"event_type": "bulk_status_change"},
    )
    return {"updated": updated, "failed": failed}
