"""
Application store — creation, lifetime uniqueness, reads and filters.

Covers:
  - create_application: Applied status, locked birth date + amount, validation
  - DuplicateBenefitError on a second create for the same milestone
  - file_application: registry lookup, disqualified / non-milestone rejection
  - list_by_beneficiary ordering, query/count over ApplicationFilters
  - beneficiary_eligibility milestone calendar
"""

import threading
from datetime import date
from decimal import Decimal

import pytest

from benefit_engine import create_app
from benefit_engine.config import TestingConfig, config

from benefit_engine.core.exceptions import (
    ConflictError,
    DuplicateBenefitError,
    NotFoundError,
    ValidationError,
)
from benefit_engine.models import db
from benefit_engine.models.audit import AuditLog
from benefit_engine.models.benefit import APPLIED, PAID, BenefitApplication
from benefit_engine.models.registry import Beneficiary
from benefit_engine.services import application_store
from benefit_engine.services.filters import ApplicationFilters
from benefit_engine.services.scheduler_service import SchedulerService


def _create(beneficiary, program_year=2024, benefit_code="octogenarian_80", amount="10000.00"):
    return application_store.create_application(
        beneficiary_id=beneficiary.id,
        program_year=program_year,
        benefit_code=benefit_code,
        birth_date=beneficiary.birth_date,
        cash_amount=amount,
        created_by="clerk",
    )


class TestCreateApplication:

    def test_creates_applied_row(self, make_beneficiary):
        b = make_beneficiary()
        app_obj = _create(b)
        assert app_obj.id is not None
        assert app_obj.status == APPLIED
        assert app_obj.payment_date is None
        assert app_obj.cash_amount == Decimal("10000.00")
        assert app_obj.birth_date == date(1944, 1, 15)
        assert app_obj.created_by == "clerk"

    def test_create_emits_audit_event(self, make_beneficiary):
        app_obj = _create(make_beneficiary())
        log = AuditLog.query.filter_by(entity_id=str(app_obj.id)).one()
        assert log.action == "benefit_application.create"
        assert log.diff["benefit_code"] == "octogenarian_80"

    def test_duplicate_raises(self, make_beneficiary):
        b = make_beneficiary()
        _create(b)
        with pytest.raises(DuplicateBenefitError) as exc:
            _create(b)
        assert exc.value.beneficiary_id == b.id
        assert exc.value.benefit_code == "octogenarian_80"
        assert isinstance(exc.value, ConflictError)
        assert BenefitApplication.query.count() == 1

    def test_uniqueness_spans_program_years(self, make_beneficiary):
        b = make_beneficiary()
        _create(b, program_year=2024)
        with pytest.raises(DuplicateBenefitError):
            _create(b, program_year=2025)

    def test_two_callers_exactly_one_wins(self, make_beneficiary):
        """Both callers saw no application; the store lets only one insert."""
        b = make_beneficiary()
        outcomes = []
        for caller in ("batch", "clerk"):
            try:
                application_store.create_application(
                    b.id, 2024, "octogenarian_80", b.birth_date, "10000.00", created_by=caller,
                )
                outcomes.append("created")
            except DuplicateBenefitError:
                outcomes.append("duplicate")
        assert outcomes == ["created", "duplicate"]
        assert BenefitApplication.query.filter_by(beneficiary_id=b.id).count() == 1

    def test_different_milestones_coexist(self, make_beneficiary):
        b = make_beneficiary(birth_date=date(1939, 3, 1))
        _create(b, program_year=2024, benefit_code="octogenarian_85")
        _create(b, program_year=2029, benefit_code="nonagenarian_90")
        assert BenefitApplication.query.filter_by(beneficiary_id=b.id).count() == 2

    @pytest.mark.parametrize("kwargs,field", [
        ({"program_year": 2019}, "program_year"),
        ({"benefit_code": "septuagenarian_70"}, "benefit_code"),
        ({"amount": "0"}, "cash_amount"),
        ({"amount": "abc"}, "cash_amount"),
    ])
    def test_invalid_input_writes_nothing(self, make_beneficiary, kwargs, field):
        b = make_beneficiary()
        with pytest.raises(ValidationError) as exc:
            _create(b, **kwargs)
        assert field in exc.value.details
        assert BenefitApplication.query.count() == 0

    def test_missing_birth_date_rejected(self, make_beneficiary):
        b = make_beneficiary()
        with pytest.raises(ValidationError):
            application_store.create_application(b.id, 2024, "octogenarian_80", None, "10000.00")

    def test_unknown_beneficiary_is_validation_error(self):
        with pytest.raises(ValidationError):
            application_store.create_application(999, 2024, "octogenarian_80", date(1944, 1, 15), "10000.00")

    def test_amount_is_locked_at_creation(self, app, make_beneficiary, monkeypatch):
        b = make_beneficiary()
        app_obj = _create(b)
        monkeypatch.setitem(app.config, "MILESTONE_AMOUNTS", {"octogenarian_80": "25000"})
        db.session.expire_all()
        assert db.session.get(BenefitApplication, app_obj.id).cash_amount == Decimal("10000.00")


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    """Second app on a file-backed SQLite database; each thread gets its own connection."""
    monkeypatch.setattr(SchedulerService, "_app", SchedulerService._app)
    file_config = type("FileBackedConfig", (TestingConfig,), {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}",
    })
    monkeypatch.setitem(config, "file_backed", file_config)
    application = create_app("file_backed")
    yield application
    with application.app_context():
        db.engine.dispose()


class TestConcurrentCreate:

    def test_threads_race_on_unique_constraint(self, file_app):
        with file_app.app_context():
            b = Beneficiary(first_name="Lola", last_name="Reyes", sex="Female",
                            birth_date=date(1944, 1, 15), status="Validated")
            db.session.add(b)
            db.session.commit()
            beneficiary_id = b.id

        barrier = threading.Barrier(2)
        outcomes = []

        def file_concurrently():
            with file_app.app_context():
                barrier.wait(timeout=10)
                try:
                    application_store.create_application(
                        beneficiary_id, 2024, "octogenarian_80", date(1944, 1, 15), "10000.00",
                    )
                    outcomes.append("created")
                except DuplicateBenefitError:
                    outcomes.append("duplicate")
                except Exception as exc:
                    outcomes.append(repr(exc))

        threads = [threading.Thread(target=file_concurrently) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["created", "duplicate"]
        with file_app.app_context():
            assert BenefitApplication.query.filter_by(beneficiary_id=beneficiary_id).count() == 1


class TestFileApplication:

    def test_files_current_milestone(self, make_beneficiary):
        b = make_beneficiary(birth_date=date(1929, 5, 5))
        app_obj = application_store.file_application(b.id, 2024, actor="clerk", remarks="walk-in")
        assert app_obj.benefit_code == "nonagenarian_95"
        assert app_obj.remarks == "walk-in"

    def test_uses_configured_amount(self, app, make_beneficiary, monkeypatch):
        monkeypatch.setitem(app.config, "MILESTONE_AMOUNTS", {"octogenarian_80": "15000"})
        app_obj = application_store.file_application(make_beneficiary().id, 2024)
        assert app_obj.cash_amount == Decimal("15000.00")

    def test_not_at_milestone(self, make_beneficiary):
        b = make_beneficiary(birth_date=date(1942, 1, 1))
        with pytest.raises(ValidationError) as exc:
            application_store.file_application(b.id, 2024)
        assert exc.value.details["age"] == 82

    def test_disqualified_registry_status(self, make_beneficiary):
        b = make_beneficiary(status="Waitlisted")
        with pytest.raises(ValidationError):
            application_store.file_application(b.id, 2024)

    def test_missing_birth_date(self, make_beneficiary):
        b = make_beneficiary(birth_date=None)
        with pytest.raises(ValidationError):
            application_store.file_application(b.id, 2024)

    def test_unknown_beneficiary(self):
        with pytest.raises(NotFoundError):
            application_store.file_application(4242, 2024)


class TestReads:

    def test_get_application_not_found(self):
        with pytest.raises(NotFoundError):
            application_store.get_application(1)

    def test_list_by_beneficiary_most_recent_first(self, make_beneficiary, make_application):
        b = make_beneficiary(birth_date=date(1939, 3, 1))
        make_application(b, 2024, "octogenarian_85", status=PAID)
        make_application(b, 2029, "nonagenarian_90")
        other = make_beneficiary()
        make_application(other, 2024, "octogenarian_80")

        rows = application_store.list_by_beneficiary(b.id)
        assert [r.program_year for r in rows] == [2029, 2024]

    def test_list_by_beneficiary_empty(self, make_beneficiary):
        assert application_store.list_by_beneficiary(make_beneficiary().id) == []

    def test_list_by_unknown_beneficiary(self):
        with pytest.raises(NotFoundError):
            application_store.list_by_beneficiary(77)

    def test_query_with_filters(self, geography, make_beneficiary, make_application):
        b1 = make_beneficiary(province_code="P01", lgu_code="L01")
        b2 = make_beneficiary(province_code="P02", lgu_code="L03")
        make_application(b1, 2024, status=PAID)
        make_application(b2, 2024)

        only_paid = ApplicationFilters(statuses=[PAID])
        assert [a.beneficiary_id for a in application_store.query_applications(only_paid)] == [b1.id]
        assert application_store.count_applications(ApplicationFilters(province_code="P02")) == 1
        assert application_store.count_applications() == 2

    def test_query_pagination(self, make_beneficiary, make_application):
        for _ in range(5):
            make_application(make_beneficiary())
        page = application_store.query_applications(limit=2, offset=2)
        assert len(page) == 2

    def test_invalid_filter_rejected(self):
        with pytest.raises(ValidationError) as exc:
            application_store.query_applications(ApplicationFilters(statuses=["Pending"]))
        assert "statuses" in exc.value.details


class TestBeneficiaryEligibility:

    def test_lists_milestones_with_held_applications(self, make_beneficiary, make_application):
        b = make_beneficiary(birth_date=date(1944, 1, 15))
        held = make_application(b, 2024, "octogenarian_80", status=PAID)

        result = application_store.beneficiary_eligibility(b.id, 2024, 2044)
        assert [m["program_year"] for m in result["milestones"]] == [2024, 2029, 2034, 2039, 2044]
        first = result["milestones"][0]
        assert first["application_id"] == held.id
        assert first["application_status"] == PAID
        assert result["milestones"][1]["application_id"] is None
        assert result["milestones"][-1]["cash_amount"] == "100000.00"

    def test_inverted_range(self, make_beneficiary):
        with pytest.raises(ValidationError):
            application_store.beneficiary_eligibility(make_beneficiary().id, 2030, 2025)

    def test_no_birth_date(self, make_beneficiary):
        result = application_store.beneficiary_eligibility(make_beneficiary(birth_date=None).id)
        assert result["milestones"] == []
