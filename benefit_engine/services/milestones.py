"""
Milestone table — qualifying age → benefit code + cash amount.

Static configuration, never persisted per row.  Applications copy the
amount at creation time, so overriding ``MILESTONE_AMOUNTS`` only affects
applications created afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from types import MappingProxyType

from flask import current_app, has_app_context

from benefit_engine.core.exceptions import ValidationError
from benefit_engine.models.benefit import BENEFIT_CODES

STANDARD_AMOUNT = Decimal("10000.00")
CENTENARIAN_AMOUNT = Decimal("100000.00")


@dataclass(frozen=True)
class Milestone:
    qualifying_age: int
    benefit_code: str
    cash_amount: Decimal
    label: str

    def to_dict(self) -> dict:
        return {
            "qualifying_age": self.qualifying_age,
            "benefit_code": self.benefit_code,
            "cash_amount": f"{self.cash_amount:.2f}",
            "label": self.label,
        }


DEFAULT_MILESTONES = MappingProxyType({
    80: Milestone(80, "octogenarian_80", STANDARD_AMOUNT, "80 Years Old"),
    85: Milestone(85, "octogenarian_85", STANDARD_AMOUNT, "85 Years Old"),
    90: Milestone(90, "nonagenarian_90", STANDARD_AMOUNT, "90 Years Old"),
    95: Milestone(95, "nonagenarian_95", STANDARD_AMOUNT, "95 Years Old"),
    100: Milestone(100, "centenarian_100", CENTENARIAN_AMOUNT, "100 Years Old"),
})

QUALIFYING_AGES = tuple(sorted(DEFAULT_MILESTONES))

_BY_CODE = {m.benefit_code: m for m in DEFAULT_MILESTONES.values()}


def build_milestone_table(amount_overrides: dict | None = None):
    """Return an immutable age → Milestone table with amount overrides applied.

    Raises:
        ValidationError: unknown benefit code or a non-positive amount.
    """
    if not amount_overrides:
        return DEFAULT_MILESTONES

    unknown = set(amount_overrides) - set(BENEFIT_CODES)
    if unknown:
        raise ValidationError(
            "Unknown benefit code in milestone amounts",
            details={"benefit_codes": sorted(unknown)},
        )

    table = {}
    for age, milestone in DEFAULT_MILESTONES.items():
        raw = amount_overrides.get(milestone.benefit_code)
        if raw is None:
            table[age] = milestone
            continue
        amount = Decimal(str(raw)).quantize(Decimal("0.01"))
        if amount <= 0:
            raise ValidationError(
                "Milestone amount must be positive",
                details={milestone.benefit_code: str(raw)},
            )
        table[age] = replace(milestone, cash_amount=amount)
    return MappingProxyType(table)


def current_milestone_table():
    """Milestone table for the running app (defaults outside an app context)."""
    if not has_app_context():
        return DEFAULT_MILESTONES
    return build_milestone_table(current_app.config.get("MILESTONE_AMOUNTS"))


def milestone_for_code(benefit_code: str, table=None) -> Milestone | None:
    if table is None:
        return _BY_CODE.get(benefit_code)
    for milestone in table.values():
        if milestone.benefit_code == benefit_code:
            return milestone
    return None


def milestone_label(benefit_code: str) -> str:
    milestone = _BY_CODE.get(benefit_code)
    return milestone.label if milestone else benefit_code
