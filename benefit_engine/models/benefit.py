"""
Milestone Benefit Engine
Benefit domain models.

Models:
    - BenefitApplication:  one beneficiary's claim to one milestone cash gift
    - GenerationRun:       ledger row for each batch generation run

Architecture:
    Beneficiary ──1:N──▶ BenefitApplication   (at most one per benefit_code, ever)

Lifecycle states:
    BenefitApplication:  Applied → Validated → Paid | Unpaid
                         Unpaid → Validated | Paid,  Paid → Unpaid (reversal)
                         any (except Disqualified) → Disqualified
    GenerationRun:       running → completed | cancelled | failed
"""

from datetime import datetime, timezone

from benefit_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

BENEFIT_CODES = (
    "octogenarian_80",
    "octogenarian_85",
    "nonagenarian_90",
    "nonagenarian_95",
    "centenarian_100",
)

APPLIED = "Applied"
VALIDATED = "Validated"
PAID = "Paid"
UNPAID = "Unpaid"
DISQUALIFIED = "Disqualified"

APPLICATION_STATUSES = (APPLIED, VALIDATED, PAID, UNPAID, DISQUALIFIED)

INITIAL_STATUS = APPLIED
TERMINAL_STATUSES = frozenset({PAID, DISQUALIFIED})

GENERATION_RUN_STATUSES = {"running", "completed", "cancelled", "failed"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STATUS_TRANSITIONS = {
    APPLIED:      [VALIDATED, DISQUALIFIED],
    VALIDATED:    [PAID, UNPAID, DISQUALIFIED],
    UNPAID:       [VALIDATED, PAID, DISQUALIFIED],
    PAID:         [UNPAID, DISQUALIFIED],   # reversal / clawback
    DISQUALIFIED: [],
}


def validate_status_transition(old_status, new_status):
    """Return True if BenefitApplication status transition is valid."""
    return new_status in STATUS_TRANSITIONS.get(old_status, [])


class BenefitApplication(db.Model):
    """
    Application for a one-time milestone cash gift.

    ``birth_date`` and ``cash_amount`` are copied at generation time and
    never rewritten: age recomputation and payouts use the locked values
    even if the registry or the milestone table changes later.
    """

    __tablename__ = "benefit_applications"

    id = db.Column(db.Integer, primary_key=True)
    beneficiary_id = db.Column(
        db.Integer, db.ForeignKey("beneficiaries.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    program_year = db.Column(
        db.Integer, nullable=False,
        comment="Year for which eligibility was evaluated",
    )
    benefit_code = db.Column(
        db.String(30), nullable=False,
        comment="octogenarian_80 | octogenarian_85 | nonagenarian_90 | nonagenarian_95 | centenarian_100",
    )
    birth_date = db.Column(
        db.Date, nullable=False,
        comment="Copy of the registry birth date at generation time",
    )
    status = db.Column(
        db.String(20), nullable=False, default=INITIAL_STATUS,
        comment="Applied | Validated | Paid | Unpaid | Disqualified",
    )
    payment_date = db.Column(db.Date, nullable=True)
    cash_amount = db.Column(
        db.Numeric(12, 2), nullable=False,
        comment="Milestone amount locked in at creation",
    )

    # Metadata
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint(
            "beneficiary_id", "benefit_code",
            name="uq_benefit_app_beneficiary_code",
        ),
        db.Index("ix_benefit_app_year_status", "program_year", "status"),
        db.Index("ix_benefit_app_payment_date", "payment_date"),
        db.CheckConstraint("program_year >= 2024", name="ck_benefit_app_program_year"),
        db.CheckConstraint(
            "status IN ('Applied','Validated','Paid','Unpaid','Disqualified')",
            name="ck_benefit_app_status",
        ),
        db.CheckConstraint(
            "benefit_code IN ('octogenarian_80','octogenarian_85','nonagenarian_90',"
            "'nonagenarian_95','centenarian_100')",
            name="ck_benefit_app_code",
        ),
        db.CheckConstraint(
            "(status = 'Paid') = (payment_date IS NOT NULL)",
            name="ck_benefit_app_payment_date",
        ),
    )

    @property
    def age_when_received(self) -> int:
        return self.program_year - self.birth_date.year

    def to_dict(self):
        from benefit_engine.services.milestones import milestone_label

        return {
            "id": self.id,
            "beneficiary_id": self.beneficiary_id,
            "program_year": self.program_year,
            "benefit_code": self.benefit_code,
            "benefit_label": milestone_label(self.benefit_code),
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "age_when_received": self.age_when_received if self.birth_date else None,
            "status": self.status,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "cash_amount": f"{self.cash_amount:.2f}" if self.cash_amount is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "remarks": self.remarks,
        }

    def __repr__(self):
        return f"<BenefitApplication {self.id}: {self.benefit_code} [{self.status}]>"


class GenerationRun(db.Model):
    """One execution of batch generation for a program year."""

    __tablename__ = "generation_runs"

    id = db.Column(db.Integer, primary_key=True)
    program_year = db.Column(db.Integer, nullable=False, index=True)
    actor = db.Column(db.String(150), nullable=False, default="system")
    status = db.Column(
        db.String(20), nullable=False, default="running",
        comment="running | completed | cancelled | failed",
    )
    evaluated_count = db.Column(db.Integer, default=0)
    eligible_count = db.Column(db.Integer, default=0)
    created_count = db.Column(db.Integer, default=0)
    skipped_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    errors_sample = db.Column(
        db.JSON, default=list,
        comment="First errors of the run: [{beneficiary_id, reason}]",
    )
    started_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "program_year": self.program_year,
            "actor": self.actor,
            "status": self.status,
            "evaluated_count": self.evaluated_count,
            "eligible_count": self.eligible_count,
            "created_count": self.created_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "errors_sample": self.errors_sample or [],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def __repr__(self):
        return f"<GenerationRun {self.id}: {self.program_year} [{self.status}]>"
