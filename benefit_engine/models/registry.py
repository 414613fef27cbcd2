"""
Milestone Benefit Engine
Reference data read by the engine — beneficiary registry + geography directory.

Models:
    - Province, Lgu, Barangay:  geography directory (code → name)
    - Beneficiary:              registry record (birth date, lifecycle status, address codes)

The engine never writes these tables; they are owned by the registry and
address-reference screens of the surrounding application.

Architecture:
    Province ──1:N──▶ Lgu ──1:N──▶ Barangay
    Beneficiary ──N:1──▶ Province / Lgu / Barangay (by code)
"""

from datetime import datetime, timezone

from benefit_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REGISTRY_STATUSES = {
    "Encoded", "Validated", "Cleanlisted", "Waitlisted",
    "Paid", "Unpaid", "Compliance", "Disqualified",
}

SEXES = {"Male", "Female"}


class Province(db.Model):
    __tablename__ = "provinces"

    code = db.Column(db.String(20), primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    def to_dict(self):
        return {"code": self.code, "name": self.name}

    def __repr__(self):
        return f"<Province {self.code}: {self.name}>"


class Lgu(db.Model):
    __tablename__ = "lgus"

    code = db.Column(db.String(20), primary_key=True)
    province_code = db.Column(
        db.String(20), db.ForeignKey("provinces.code", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(120), nullable=False)

    def to_dict(self):
        return {"code": self.code, "province_code": self.province_code, "name": self.name}

    def __repr__(self):
        return f"<Lgu {self.code}: {self.name}>"


class Barangay(db.Model):
    __tablename__ = "barangays"

    code = db.Column(db.String(20), primary_key=True)
    lgu_code = db.Column(
        db.String(20), db.ForeignKey("lgus.code", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(120), nullable=False)

    def to_dict(self):
        return {"code": self.code, "lgu_code": self.lgu_code, "name": self.name}


class Beneficiary(db.Model):
    """
    Registry record for a senior citizen.

    Only ``birth_date``, ``status``, ``sex`` and the address codes matter to
    the engine; the rest of the registry row lives outside this repository.
    """

    __tablename__ = "beneficiaries"
    __table_args__ = (
        db.Index("ix_beneficiaries_status", "status"),
        db.Index("ix_beneficiaries_province_lgu", "province_code", "lgu_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    last_name = db.Column(db.String(100), default="")
    first_name = db.Column(db.String(100), default="")
    sex = db.Column(db.String(10), nullable=True)
    birth_date = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(30), nullable=False, default="Encoded",
        comment="Encoded | Validated | Cleanlisted | Waitlisted | Paid | Unpaid | Compliance | Disqualified",
    )
    province_code = db.Column(db.String(20), db.ForeignKey("provinces.code"), nullable=True)
    lgu_code = db.Column(db.String(20), db.ForeignKey("lgus.code"), nullable=True)
    barangay_code = db.Column(
        db.String(20), db.ForeignKey("barangays.code"), nullable=True, index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "sex": self.sex,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "status": self.status,
            "province_code": self.province_code,
            "lgu_code": self.lgu_code,
            "barangay_code": self.barangay_code,
        }

    def __repr__(self):
        return f"<Beneficiary {self.id} [{self.status}]>"
