"""
Milestone table + eligibility resolver.

Covers:
  - Default table (ages, codes, amounts) and amount overrides
  - resolve(): exact-age matching, calendar-year arithmetic, malformed input
  - eligible_years(): every milestone a birth date reaches in a range
"""

from datetime import date
from decimal import Decimal

import pytest

from benefit_engine.core.exceptions import ValidationError
from benefit_engine.services.eligibility import age_in_year, eligible_years, resolve
from benefit_engine.services.milestones import (
    DEFAULT_MILESTONES,
    QUALIFYING_AGES,
    build_milestone_table,
    current_milestone_table,
    milestone_for_code,
    milestone_label,
)


class TestMilestoneTable:
    """Static age → code → amount table."""

    def test_default_ages(self):
        assert QUALIFYING_AGES == (80, 85, 90, 95, 100)

    @pytest.mark.parametrize("age,code,amount", [
        (80, "octogenarian_80", "10000.00"),
        (85, "octogenarian_85", "10000.00"),
        (90, "nonagenarian_90", "10000.00"),
        (95, "nonagenarian_95", "10000.00"),
        (100, "centenarian_100", "100000.00"),
    ])
    def test_default_entries(self, age, code, amount):
        milestone = DEFAULT_MILESTONES[age]
        assert milestone.benefit_code == code
        assert milestone.cash_amount == Decimal(amount)

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_MILESTONES[81] = DEFAULT_MILESTONES[80]

    def test_override_amount(self):
        table = build_milestone_table({"centenarian_100": "150000"})
        assert table[100].cash_amount == Decimal("150000.00")
        assert table[80].cash_amount == Decimal("10000.00")
        # defaults untouched
        assert DEFAULT_MILESTONES[100].cash_amount == Decimal("100000.00")

    def test_override_unknown_code_rejected(self):
        with pytest.raises(ValidationError) as exc:
            build_milestone_table({"septuagenarian_70": "5000"})
        assert exc.value.details["benefit_codes"] == ["septuagenarian_70"]

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_override_non_positive_rejected(self, amount):
        with pytest.raises(ValidationError):
            build_milestone_table({"octogenarian_80": amount})

    def test_current_table_reads_config(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "MILESTONE_AMOUNTS", {"octogenarian_85": "12500.50"})
        assert current_milestone_table()[85].cash_amount == Decimal("12500.50")

    def test_lookup_by_code(self):
        assert milestone_for_code("nonagenarian_95").qualifying_age == 95
        assert milestone_for_code("unknown") is None
        assert milestone_label("centenarian_100") == "100 Years Old"
        assert milestone_label("unknown") == "unknown"


class TestResolve:
    """resolve(birth_date, program_year)."""

    def test_octogenarian_2024(self):
        milestone = resolve(date(1944, 1, 15), 2024)
        assert milestone.benefit_code == "octogenarian_80"
        assert milestone.cash_amount == Decimal("10000.00")

    def test_centenarian_2044(self):
        milestone = resolve(date(1944, 1, 15), 2044)
        assert milestone.benefit_code == "centenarian_100"
        assert milestone.cash_amount == Decimal("100000.00")

    @pytest.mark.parametrize("age", [80, 85, 90, 95, 100])
    def test_every_milestone_age_matches(self, age):
        assert resolve(date(2024 - age, 7, 1), 2024).qualifying_age == age

    @pytest.mark.parametrize("age", [79, 81, 82, 83, 84, 86, 99, 101, 105])
    def test_non_milestone_ages_return_none(self, age):
        assert resolve(date(2024 - age, 7, 1), 2024) is None

    def test_birthday_within_year_is_ignored(self):
        # born on the last day of the year still counts as 80 for the whole year
        assert resolve(date(1944, 12, 31), 2024).qualifying_age == 80
        assert age_in_year(date(1944, 12, 31), 2024) == 80

    def test_missing_birth_date(self):
        assert resolve(None, 2024) is None

    def test_birth_after_program_year(self):
        assert resolve(date(2030, 1, 1), 2024) is None

    def test_age_above_plausible_max(self):
        assert resolve(date(1800, 1, 1), 2024) is None

    def test_custom_table(self):
        table = build_milestone_table({"octogenarian_80": "20000"})
        assert resolve(date(1944, 1, 15), 2024, table).cash_amount == Decimal("20000.00")


class TestEligibleYears:

    def test_all_milestones_in_range(self):
        pairs = eligible_years(date(1944, 1, 15), 2024, 2044)
        assert [(y, m.qualifying_age) for y, m in pairs] == [
            (2024, 80), (2029, 85), (2034, 90), (2039, 95), (2044, 100),
        ]

    def test_empty_range(self):
        assert eligible_years(date(1944, 1, 15), 2025, 2028) == []
