"""
Milestone Benefit Engine
Scheduled Jobs.

Jobs:
    - annual_application_generation: generate applications for the current calendar year
    - audit_retry_drain:             re-deliver audit events the sink rejected
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from benefit_engine.services.scheduler_service import register_job

logger = logging.getLogger(__name__)

JOB_ACTOR = "scheduler"


@register_job("annual_application_generation")
def generate_current_year(app) -> dict[str, Any]:
    """Generate benefit applications for the current calendar year."""
    from benefit_engine.services.batch_generator import generate_applications

    program_year = date.today().year
    result = generate_applications(program_year, actor=JOB_ACTOR)
    summary = result.to_dict()
    # keep the job record small
    summary["errors"] = summary["errors"][:20]
    return summary


@register_job("audit_retry_drain")
def drain_audit_queue(app) -> dict[str, Any]:
    """Retry audit events that are waiting for the audit sink."""
    from benefit_engine.services.audit_sink import get_dispatcher

    return get_dispatcher().retry_pending()
