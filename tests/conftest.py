"""
Shared pytest fixtures for the Milestone Benefit Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - geography: two provinces, three LGUs, one barangay
    - make_beneficiary / make_application: committed ORM factories
"""

from datetime import date
from decimal import Decimal

import pytest

from benefit_engine import create_app
from benefit_engine.models import db as _db
from benefit_engine.models.benefit import APPLIED, PAID, BenefitApplication
from benefit_engine.models.registry import Barangay, Beneficiary, Lgu, Province
from benefit_engine.services.audit_sink import AuditDispatcher


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, fresh audit queue, recreate tables afterwards."""
    with app.app_context():
        app.extensions["audit_dispatcher"] = AuditDispatcher(
            max_attempts=app.config["AUDIT_RETRY_ATTEMPTS"],
        )
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def dispatcher(app):
    """The audit dispatcher installed for the current test."""
    return app.extensions["audit_dispatcher"]


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def geography():
    """Benguet (P01: La Trinidad, Itogon) and Abra (P02: Bangued)."""
    _db.session.add_all([
        Province(code="P01", name="Benguet"),
        Province(code="P02", name="Abra"),
    ])
    _db.session.flush()
    _db.session.add_all([
        Lgu(code="L01", province_code="P01", name="La Trinidad"),
        Lgu(code="L02", province_code="P01", name="Itogon"),
        Lgu(code="L03", province_code="P02", name="Bangued"),
    ])
    _db.session.flush()
    _db.session.add(Barangay(code="B01", lgu_code="L01", name="Betag"))
    _db.session.commit()
    return {"provinces": ["P01", "P02"], "lgus": ["L01", "L02", "L03"], "barangays": ["B01"]}


@pytest.fixture()
def make_beneficiary():
    """Factory: insert and commit a registry beneficiary."""

    def _make(birth_date=date(1944, 1, 15), **kw):
        b = Beneficiary(
            first_name=kw.get("first_name", "Lola"),
            last_name=kw.get("last_name", "Santos"),
            sex=kw.get("sex", "Female"),
            birth_date=birth_date,
            status=kw.get("status", "Validated"),
            province_code=kw.get("province_code"),
            lgu_code=kw.get("lgu_code"),
            barangay_code=kw.get("barangay_code"),
        )
        _db.session.add(b)
        _db.session.commit()
        return b

    return _make


@pytest.fixture()
def make_application():
    """Factory: insert an application directly, in any starting status."""

    def _make(beneficiary, program_year=2024, benefit_code="octogenarian_80", **kw):
        status = kw.get("status", APPLIED)
        payment_date = kw.get("payment_date")
        if status == PAID and payment_date is None:
            payment_date = date(program_year, 6, 30)
        a = BenefitApplication(
            beneficiary_id=beneficiary.id,
            program_year=program_year,
            benefit_code=benefit_code,
            birth_date=kw.get("birth_date", beneficiary.birth_date),
            status=status,
            payment_date=payment_date,
            cash_amount=Decimal(kw.get("cash_amount", "10000.00")),
            created_by="fixture",
        )
        _db.session.add(a)
        _db.session.commit()
        return a

    return _make
