"""
Milestone Benefit Engine
Batch Generator — yearly materialisation of benefit applications.

For every non-disqualified registry beneficiary, resolve the milestone for
the program year and create the application.  Each creation commits on its
own, so the run never holds one transaction across the population:

    DuplicateBenefitError   → skipped   (re-runs are no-ops)
    any other failure       → errors    (the batch continues)

A ``GenerationRun`` row records every run.  Cancelling through
``cancel_event`` stops between beneficiaries and keeps completed work;
re-running the year converges to the same application set.  When the
registry stays unreachable after the storage retries, the run is marked
``failed`` and the partial summary is returned with ``failure`` set.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app

from benefit_engine.core.exceptions import DuplicateBenefitError, TransientStoreError
from benefit_engine.models import db
from benefit_engine.models.benefit import GenerationRun
from benefit_engine.services.application_store import create_application
from benefit_engine.services.audit_sink import dispatch_audit
from benefit_engine.services.eligibility import resolve
from benefit_engine.services.filters import validate_program_year
from benefit_engine.services.milestones import current_milestone_table
from benefit_engine.services.registry_service import SqlBeneficiaryRegistry

logger = logging.getLogger(__name__)

ERRORS_SAMPLE_SIZE = 50


@dataclass
class GenerationResult:
    program_year: int
    created: int = 0
    skipped: int = 0
    errors: list[tuple[int, str]] = field(default_factory=list)
    evaluated: int = 0
    eligible: int = 0
    cancelled: bool = False
    failure: str | None = None
    run_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "program_year": self.program_year,
            "run_id": self.run_id,
            "created": self.created,
            "skipped": self.skipped,
            "errors": [
                {"beneficiary_id": beneficiary_id, "reason": reason}
                for beneficiary_id, reason in self.errors
            ],
            "error_count": len(self.errors),
            "evaluated": self.evaluated,
            "eligible": self.eligible,
            "cancelled": self.cancelled,
            "failure": self.failure,
        }


def _finish_run(run_id: int, result: GenerationResult, status: str) -> None:
    run = db.session.get(GenerationRun, run_id)
    run.status = status
    run.evaluated_count = result.evaluated
    run.eligible_count = result.eligible
    run.created_count = result.created
    run.skipped_count = result.skipped
    run.error_count = len(result.errors)
    run.errors_sample = [
        {"beneficiary_id": beneficiary_id, "reason": reason}
        for beneficiary_id, reason in result.errors[:ERRORS_SAMPLE_SIZE]
    ]
    run.finished_at = datetime.now(timezone.utc)
    db.session.commit()


def generate_applications(
    program_year: int,
    actor: str = "system",
    *,
    registry=None,
    page_size: int | None = None,
    cancel_event: threading.Event | None = None,
) -> GenerationResult:
    """Create every missing application for *program_year*.

    Returns a summary even when individual beneficiaries fail or the
    registry becomes unavailable part way through.

    Raises:
        ValidationError: program year out of range (nothing is written).
    """
    validate_program_year(program_year)
    cfg = current_app.config
    registry = registry or SqlBeneficiaryRegistry()
    page_size = page_size or int(cfg.get("GENERATION_PAGE_SIZE", 500))
    max_age = int(cfg.get("ELIGIBILITY_MAX_AGE", 130))
    table = current_milestone_table()

    run = GenerationRun(program_year=program_year, actor=actor, status="running")
    db.session.add(run)
    db.session.commit()
    run_id = run.id

    result = GenerationResult(program_year=program_year, run_id=run_id)
    logger.info(
        "Generation run %s started for %s by %s", run_id, program_year, actor,
        extra={"program_year": program_year, "event_type": "generation_start"},
    )

    try:
        for ref in registry.iter_active_beneficiaries(page_size):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break

            result.evaluated += 1
            if ref.birth_date is None:
                result.errors.append((ref.id, "missing birth_date"))
                continue

            milestone = resolve(ref.birth_date, program_year, table, max_age=max_age)
            if milestone is None:
                continue
            result.eligible += 1

            try:
                create_application(
                    beneficiary_id=ref.id,
                    program_year=program_year,
                    benefit_code=milestone.benefit_code,
                    birth_date=ref.birth_date,
                    cash_amount=milestone.cash_amount,
                    created_by=actor,
                )
                result.created += 1
            except DuplicateBenefitError:
                result.skipped += 1
            except Exception as exc:
                db.session.rollback()
                result.errors.append((ref.id, str(exc)))
                logger.warning(
                    "Generation failed for beneficiary %s: %s", ref.id, exc,
                    extra={
                        "program_year": program_year,
                        "beneficiary_id": ref.id,
                        "event_type": "generation_error",
                    },
                )
    except TransientStoreError as exc:
        result.failure = str(exc)
        logger.error(
            "Generation run %s for %s stopped: %s", run_id, program_year, exc,
            extra={"program_year": program_year, "event_type": "generation_failed"},
        )
    except Exception:
        db.session.rollback()
        _finish_run(run_id, result, "failed")
        logger.exception(
            "Generation run %s for %s aborted", run_id, program_year,
            extra={"program_year": program_year, "event_type": "generation_failed"},
        )
        raise

    if result.failure:
        status = "failed"
    elif result.cancelled:
        status = "cancelled"
    else:
        status = "completed"
    _finish_run(run_id, result, status)

    logger.info(
        "Generation run %s %s for %s: evaluated=%d eligible=%d created=%d skipped=%d errors=%d",
        run_id, status, program_year, result.evaluated, result.eligible,
        result.created, result.skipped, len(result.errors),
        extra={"program_year": program_year, "event_type": "generation_summary"},
    )
    dispatch_audit(
        entity_type="generation_run",
        entity_id=run_id,
        action="generation_run.complete",
        actor=actor,
        diff={
            "program_year": program_year,
            "status": status,
            "created": result.created,
            "skipped": result.skipped,
            "errors": len(result.errors),
        },
    )
    return result


def list_generation_runs(program_year: int | None = None, limit: int = 20) -> list[GenerationRun]:
    q = GenerationRun.query
    if program_year is not None:
        q = q.filter_by(program_year=program_year)
    return q.order_by(GenerationRun.id.desc()).limit(limit).all()
