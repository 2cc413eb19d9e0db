"""
Candidate Normalizer — binds each candidate entry to its catalog rule.

Entries with a unit other than mg, or a name the catalog cannot resolve,
produce an error and are dropped from the later stages. They are never
dropped silently: the error keeps the whole candidate from being accepted.
"""

from typing import NamedTuple

from formula_agent.catalog import IngredientCatalog
from formula_agent.models import (
    CandidateEntry,
    ErrorCode,
    FormulaCandidate,
    IngredientRule,
    ValidationError,
)

# Known mass units and their factor to mg.
UNIT_FACTORS_TO_MG = {
    "g": 1000.0,
    "gram": 1000.0,
    "grams": 1000.0,
    "mcg": 0.001,
    "ug": 0.001,
    "µg": 0.001,
    "microgram": 0.001,
    "micrograms": 0.001,
}


class NormalizedEntry(NamedTuple):
    index: int
    entry: CandidateEntry
    rule: IngredientRule


class NormalizationResult(NamedTuple):
    resolved: list[NormalizedEntry]
    errors: list[ValidationError]


def _unit_error(index: int, entry: CandidateEntry) -> ValidationError:
    unit = entry.unit.strip()
    factor = UNIT_FACTORS_TO_MG.get(unit.lower())
    if factor is not None:
        converted = round(entry.amount_mg * factor, 3)
        hint = {"unit": "mg", "amountMg": converted}
        detail = (
            f'"{entry.raw_name}" is given in {unit}; amounts must be in mg '
            f"({entry.amount_mg:g}{unit} = {converted:g}mg)"
        )
    else:
        hint = {"unit": "mg"}
        detail = f'"{entry.raw_name}" uses unsupported unit "{unit}"; amounts must be in mg'
    return ValidationError(
        code=ErrorCode.UNSUPPORTED_UNIT,
        entry_ref=index,
        detail=detail,
        suggested_fix=hint,
    )


def normalize(candidate: FormulaCandidate, catalog: IngredientCatalog) -> NormalizationResult:
    resolved: list[NormalizedEntry] = []
    errors: list[ValidationError] = []

    for index, entry in enumerate(candidate.entries):
        ok = True

        if entry.unit.strip().lower() != "mg":
            errors.append(_unit_error(index, entry))
            ok = False

        rule = catalog.resolve(entry.raw_name)
        if rule is None:
            errors.append(
                ValidationError(
                    code=ErrorCode.UNKNOWN_INGREDIENT,
                    entry_ref=index,
                    detail=f'"{entry.raw_name}" is not in the approved ingredient catalog',
                )
            )
            ok = False

        if ok:
            resolved.append(NormalizedEntry(index, entry, rule))

    return NormalizationResult(resolved, errors)
