"""
Storage-boundary retry (tenacity) for transient database failures.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from benefit_engine.core.exceptions import TransientStoreError
from benefit_engine.models import db
from benefit_engine.models.benefit import VALIDATED, BenefitApplication, GenerationRun
from benefit_engine.models.registry import Beneficiary
from benefit_engine.services import application_store
from benefit_engine.services.batch_generator import generate_applications
from benefit_engine.services.status_workflow import transition
from benefit_engine.services.store_retry import with_store_retry


def _locked():
    return OperationalError("INSERT INTO benefit_applications", {}, Exception("database is locked"))


def _flaky_commit(monkeypatch, failures):
    """Make the next *failures* commits of the current session raise OperationalError."""
    sess = db.session()
    calls = {"n": 0}

    def commit():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise _locked()
        Session.commit(sess)

    monkeypatch.setattr(sess, "commit", commit)
    return calls


class TestWithStoreRetry:

    def test_retries_until_success(self):
        attempts = []

        @with_store_retry("probe")
        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise _locked()
            return "ok"

        assert flaky() == "ok"
        assert len(attempts) == 3

    def test_exhausted_budget_raises_transient_error(self, app):
        attempts = []

        @with_store_retry("probe")
        def always_down():
            attempts.append(1)
            raise _locked()

        with pytest.raises(TransientStoreError) as exc:
            always_down()
        assert exc.value.operation == "probe"
        assert exc.value.attempts == app.config["STORE_RETRY_ATTEMPTS"]
        assert len(attempts) == app.config["STORE_RETRY_ATTEMPTS"]
        assert isinstance(exc.value.cause, OperationalError)

    def test_integrity_errors_not_retried(self):
        attempts = []

        @with_store_retry("probe")
        def conflict():
            attempts.append(1)
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            conflict()
        assert len(attempts) == 1


class TestStoreOperations:

    def test_create_survives_transient_failure(self, make_beneficiary, monkeypatch):
        b = make_beneficiary()
        calls = _flaky_commit(monkeypatch, failures=1)

        app_obj = application_store.create_application(
            b.id, 2024, "octogenarian_80", b.birth_date, "10000.00",
        )
        assert app_obj.id is not None
        assert calls["n"] >= 2
        assert BenefitApplication.query.count() == 1

    def test_create_gives_up(self, make_beneficiary, monkeypatch):
        b = make_beneficiary()
        _flaky_commit(monkeypatch, failures=100)

        with pytest.raises(TransientStoreError):
            application_store.create_application(
                b.id, 2024, "octogenarian_80", b.birth_date, "10000.00",
            )
        monkeypatch.undo()
        assert BenefitApplication.query.count() == 0

    def test_transition_survives_transient_failure(self, make_beneficiary, make_application, monkeypatch):
        a = make_application(make_beneficiary())
        _flaky_commit(monkeypatch, failures=1)

        assert transition(a.id, VALIDATED).status == VALIDATED

    def test_transient_error_maps_to_503(self, client, make_beneficiary, make_application, monkeypatch):
        a = make_application(make_beneficiary())
        _flaky_commit(monkeypatch, failures=100)

        res = client.post(f"/api/v1/benefits/applications/{a.id}/transition", json={"status": VALIDATED})
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_STORE_UNAVAILABLE"


def _flaky_registry(monkeypatch, failures, after=0):
    """Fail registry page reads with OperationalError once *after* pages have been served."""
    sess = db.session()
    calls = {"n": 0}

    def query(*entities, **kw):
        if entities and entities[0] is Beneficiary.id:
            calls["n"] += 1
            if after < calls["n"] <= after + failures:
                raise OperationalError("SELECT beneficiaries", {}, Exception("connection reset"))
        return Session.query(sess, *entities, **kw)

    monkeypatch.setattr(sess, "query", query)
    return calls


class TestRegistryPaging:
    """Page size is 3 under the testing config."""

    def test_generation_survives_transient_page_failure(self, make_beneficiary, monkeypatch):
        for _ in range(4):
            make_beneficiary()
        calls = _flaky_registry(monkeypatch, failures=1)

        result = generate_applications(2024, "scheduler")
        assert result.failure is None
        assert result.created == 4
        # failed read, retried first page, second page
        assert calls["n"] == 3
        assert db.session.get(GenerationRun, result.run_id).status == "completed"

    def test_returns_summary_when_registry_stays_down(self, make_beneficiary, monkeypatch):
        make_beneficiary()
        _flaky_registry(monkeypatch, failures=100)

        result = generate_applications(2024)
        assert result.created == 0
        assert "registry_page" in result.failure
        assert result.to_dict()["failure"] == result.failure
        assert db.session.get(GenerationRun, result.run_id).status == "failed"

    def test_keeps_work_done_before_outage(self, make_beneficiary, monkeypatch):
        for _ in range(4):
            make_beneficiary()
        _flaky_registry(monkeypatch, failures=100, after=1)

        result = generate_applications(2024)
        assert result.failure
        assert result.created == 3
        assert result.evaluated == 3
        assert BenefitApplication.query.count() == 3

        run = db.session.get(GenerationRun, result.run_id)
        assert run.status == "failed"
        assert run.created_count == 3
