"""benefit_engine_initial

Geography directory, beneficiary registry, benefit applications,
generation runs, audit log and scheduled jobs.

Revision ID: 0001a7c3e9b1
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001a7c3e9b1"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "provinces" not in existing_tables:
        op.create_table(
            "provinces",
            sa.Column("code", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.PrimaryKeyConstraint("code"),
        )

    if "lgus" not in existing_tables:
        op.create_table(
            "lgus",
            sa.Column("code", sa.String(length=20), nullable=False),
            sa.Column("province_code", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.ForeignKeyConstraint(["province_code"], ["provinces.code"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("code"),
        )
        op.create_index("ix_lgus_province_code", "lgus", ["province_code"])

    if "barangays" not in existing_tables:
        op.create_table(
            "barangays",
            sa.Column("code", sa.String(length=20), nullable=False),
            sa.Column("lgu_code", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.ForeignKeyConstraint(["lgu_code"], ["lgus.code"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("code"),
        )
        op.create_index("ix_barangays_lgu_code", "barangays", ["lgu_code"])

    if "beneficiaries" not in existing_tables:
        op.create_table(
            "beneficiaries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("sex", sa.String(length=10), nullable=True),
            sa.Column("birth_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="Encoded"),
            sa.Column("province_code", sa.String(length=20), nullable=True),
            sa.Column("lgu_code", sa.String(length=20), nullable=True),
            sa.Column("barangay_code", sa.String(length=20), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["province_code"], ["provinces.code"]),
            sa.ForeignKeyConstraint(["lgu_code"], ["lgus.code"]),
            sa.ForeignKeyConstraint(["barangay_code"], ["barangays.code"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_beneficiaries_status", "beneficiaries", ["status"])
        op.create_index("ix_beneficiaries_province_lgu", "beneficiaries", ["province_code", "lgu_code"])
        op.create_index("ix_beneficiaries_barangay_code", "beneficiaries", ["barangay_code"])

    if "benefit_applications" not in existing_tables:
        op.create_table(
            "benefit_applications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("beneficiary_id", sa.Integer(), nullable=False),
            sa.Column("program_year", sa.Integer(), nullable=False),
            sa.Column("benefit_code", sa.String(length=30), nullable=False),
            sa.Column("birth_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Applied"),
            sa.Column("payment_date", sa.Date(), nullable=True),
            sa.Column("cash_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            sa.Column("updated_by", sa.String(length=150), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["beneficiary_id"], ["beneficiaries.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("beneficiary_id", "benefit_code", name="uq_benefit_app_beneficiary_code"),
            sa.CheckConstraint("program_year >= 2024", name="ck_benefit_app_program_year"),
            sa.CheckConstraint(
                "status IN ('Applied','Validated','Paid','Unpaid','Disqualified')",
                name="ck_benefit_app_status",
            ),
            sa.CheckConstraint(
                "benefit_code IN ('octogenarian_80','octogenarian_85','nonagenarian_90',"
                "'nonagenarian_95','centenarian_100')",
                name="ck_benefit_app_code",
            ),
            sa.CheckConstraint(
                "(status = 'Paid') = (payment_date IS NOT NULL)",
                name="ck_benefit_app_payment_date",
            ),
        )
        op.create_index("ix_benefit_applications_beneficiary_id", "benefit_applications", ["beneficiary_id"])
        op.create_index("ix_benefit_app_year_status", "benefit_applications", ["program_year", "status"])
        op.create_index("ix_benefit_app_payment_date", "benefit_applications", ["payment_date"])

    if "generation_runs" not in existing_tables:
        op.create_table(
            "generation_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("program_year", sa.Integer(), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("evaluated_count", sa.Integer(), nullable=True),
            sa.Column("eligible_count", sa.Integer(), nullable=True),
            sa.Column("created_count", sa.Integer(), nullable=True),
            sa.Column("skipped_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("errors_sample", sa.JSON(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_generation_runs_program_year", "generation_runs", ["program_year"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_index("idx_audit_ts", table_name="audit_logs")
    op.drop_index("idx_audit_action", table_name="audit_logs")
    op.drop_index("idx_audit_actor", table_name="audit_logs")
    op.drop_index("idx_audit_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_generation_runs_program_year", table_name="generation_runs")
    op.drop_table("generation_runs")
    op.drop_index("ix_benefit_app_payment_date", table_name="benefit_applications")
    op.drop_index("ix_benefit_app_year_status", table_name="benefit_applications")
    op.drop_index("ix_benefit_applications_beneficiary_id", table_name="benefit_applications")
    op.drop_table("benefit_applications")
    op.drop_index("ix_beneficiaries_barangay_code", table_name="beneficiaries")
    op.drop_index("ix_beneficiaries_province_lgu", table_name="beneficiaries")
    op.drop_index("ix_beneficiaries_status", table_name="beneficiaries")
    op.drop_table("beneficiaries")
    op.drop_index("ix_barangays_lgu_code", table_name="barangays")
    op.drop_table("barangays")
    op.drop_index("ix_lgus_province_code", table_name="lgus")
    op.drop_table("lgus")
    op.drop_table("provinces")
