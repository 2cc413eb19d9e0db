"""
Dosage Validator — checks each resolved entry against its dose rule.

    fixed  → amount must equal the catalog dose exactly (no tolerance)
    ranged → min ≤ amount ≤ max, inclusive

Entries that fail are excluded from the budget total: they will be
resubmitted anyway, so they must not count toward the ceiling.
"""

from typing import NamedTuple

from formula_agent.engine.normalizer import NormalizedEntry
from formula_agent.models import (
    ErrorCode,
    FixedDose,
    RangedDose,
    ResolvedEntry,
    ValidationError,
)


class DosageResult(NamedTuple):
    valid: list[ResolvedEntry]
    errors: list[ValidationError]


def check_dose(item: NormalizedEntry) -> ValidationError | None:
    """Return the dose error for one entry, or None if its amount is allowed."""
    entry, rule = item.entry, item.rule
    amount = entry.amount_mg
    dose = rule.dose

    if isinstance(dose, FixedDose):
        if amount != dose.dose_mg:
            return ValidationError(
                code=ErrorCode.FIXED_DOSE_MISMATCH,
                entry_ref=item.index,
                detail=(
                    f"{rule.canonical_name} has a fixed dose of {dose.dose_mg:g}mg; "
                    f"submitted {amount:g}mg"
                ),
                suggested_fix=dose.dose_mg,
            )
        return None

    if isinstance(dose, RangedDose):
        if amount < dose.min_mg or amount > dose.max_mg:
            nearer = dose.min_mg if amount < dose.min_mg else dose.max_mg
            return ValidationError(
                code=ErrorCode.DOSE_OUT_OF_RANGE,
                entry_ref=item.index,
                detail=(
                    f"{rule.canonical_name} must be between {dose.min_mg:g}mg and "
                    f"{dose.max_mg:g}mg; submitted {amount:g}mg"
                ),
                suggested_fix=nearer,
            )
        return None

    raise TypeError(f"Unknown dose rule for {rule.canonical_name}: {dose!r}")


def validate(resolved: list[NormalizedEntry]) -> DosageResult:
    valid: list[ResolvedEntry] = []
    errors: list[ValidationError] = []

    for item in resolved:
        error = check_dose(item)
        if error is not None:
            errors.append(error)
            continue
        valid.append(
            ResolvedEntry(
                ingredient=item.rule.canonical_name,
                raw_name=item.entry.raw_name,
                amount_mg=item.entry.amount_mg,
                role=item.entry.role,
                purpose=item.entry.purpose,
                rule=item.rule,
            )
        )

    return DosageResult(valid, errors)
