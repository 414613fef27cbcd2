"""
Eligibility resolver.

A beneficiary qualifies for a milestone in a program year when
``program_year - birth_year`` is exactly one of the qualifying ages.
Calendar-year arithmetic only: the birthday within the year is ignored.

Usage:
    from benefit_engine.services.eligibility import resolve

    milestone = resolve(date(1944, 1, 15), 2024)   # -> octogenarian_80
"""

from __future__ import annotations

from datetime import date

from benefit_engine.services.milestones import DEFAULT_MILESTONES, Milestone

DEFAULT_MAX_AGE = 130


def age_in_year(birth_date: date, program_year: int) -> int:
    """Calendar-year age: ``program_year - birth_date.year``."""
    return program_year - birth_date.year


def resolve(
    birth_date: date | None,
    program_year: int,
    table=None,
    *,
    max_age: int = DEFAULT_MAX_AGE,
) -> Milestone | None:
    """Return the milestone that applies in *program_year*, or None.

    Malformed input (missing birth date, negative age, age above
    *max_age*) is treated as not eligible so one bad registry row cannot
    crash a batch.
    """
    if birth_date is None:
        return None
    age = age_in_year(birth_date, program_year)
    if age < 0 or age > max_age:
        return None
    table = DEFAULT_MILESTONES if table is None else table
    return table.get(age)


def eligible_years(birth_date: date, first_year: int, last_year: int, table=None) -> list[tuple[int, Milestone]]:
    """All (program_year, milestone) pairs in ``[first_year, last_year]``."""
    pairs = []
    for year in range(first_year, last_year + 1):
        milestone = resolve(birth_date, year, table)
        if milestone is not None:
            pairs.append((year, milestone))
    return pairs
