"""
Read-only adapters over the beneficiary registry and geography directory.

The engine consumes these collaborators through two small objects:

    SqlBeneficiaryRegistry  — lazy, keyset-paged iteration of eligible candidates
    GeographyDirectory      — code existence checks + code → name resolution

Batch generation accepts any object with the same
``iter_active_beneficiaries(page_size)`` method, which is how tests feed
malformed records without touching the registry table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterator

from flask import current_app

from benefit_engine.core.exceptions import NotFoundError
from benefit_engine.models import db
from benefit_engine.models.registry import Barangay, Beneficiary, Lgu, Province
from benefit_engine.services.store_retry import with_store_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BeneficiaryRef:
    id: int
    birth_date: date | None


class SqlBeneficiaryRegistry:
    """Beneficiary registry backed by the ``beneficiaries`` table."""

    def __init__(self, disqualifying_statuses=None):
        if disqualifying_statuses is None:
            disqualifying_statuses = current_app.config.get(
                "DISQUALIFYING_REGISTRY_STATUSES", ("Disqualified",),
            )
        self.disqualifying_statuses = tuple(disqualifying_statuses)

    def iter_active_beneficiaries(self, page_size: int = 500) -> Iterator[BeneficiaryRef]:
        """Yield every non-disqualified beneficiary, ``page_size`` rows per query.

        Keyset pagination on the primary key keeps each page independent of
        rows committed while the caller processes the previous one.
        """
        last_id = 0
        while True:
            rows = self._fetch_page(last_id, page_size)
            if not rows:
                return
            for row in rows:
                yield BeneficiaryRef(id=row.id, birth_date=row.birth_date)
            last_id = rows[-1].id
            if len(rows) < page_size:
                return

    @with_store_retry("registry_page")
    def _fetch_page(self, last_id: int, page_size: int):
        q = (
            db.session.query(Beneficiary.id, Beneficiary.birth_date)
            .filter(Beneficiary.id > last_id)
        )
        if self.disqualifying_statuses:
            q = q.filter(Beneficiary.status.notin_(self.disqualifying_statuses))
        return q.order_by(Beneficiary.id).limit(page_size).all()

    def get(self, beneficiary_id: int) -> Beneficiary:
        beneficiary = db.session.get(Beneficiary, beneficiary_id)
        if beneficiary is None:
            raise NotFoundError("Beneficiary", beneficiary_id)
        return beneficiary

    def is_disqualified(self, beneficiary: Beneficiary) -> bool:
        return beneficiary.status in self.disqualifying_statuses


class GeographyDirectory:
    """Province / LGU / barangay code lookups."""

    def province_exists(self, code: str) -> bool:
        return db.session.get(Province, code) is not None

    def lgu_exists(self, code: str) -> bool:
        return db.session.get(Lgu, code) is not None

    def barangay_exists(self, code: str) -> bool:
        return db.session.get(Barangay, code) is not None

    def resolve_province_name(self, code: str) -> str | None:
        province = db.session.get(Province, code)
        return province.name if province else None

    def resolve_lgu_name(self, code: str) -> str | None:
        lgu = db.session.get(Lgu, code)
        return lgu.name if lgu else None
