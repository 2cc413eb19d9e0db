"""
Correction-Loop Coordinator — the engine's single entry point.

    normalize → validate doses → enforce budget → build record

All three checking stages always run, and the report carries the union of
their errors, so the agent can fix every problem in one resubmission
instead of discovering them one at a time. Acceptance is all-or-nothing.

The coordinator is stateless: the attempt number and the previous formula
version come from the caller, which also owns the retry cap.
"""

from datetime import datetime
from typing import Optional, Union

from formula_agent.catalog import IngredientCatalog
from formula_agent.config import EngineConfig
from formula_agent.engine import budget, dosage, normalizer, record
from formula_agent.models import AcceptedFormula, FormulaCandidate, ValidationReport


def coordinate(
    candidate: FormulaCandidate,
    attempt_number: int,
    catalog: IngredientCatalog,
    config: EngineConfig,
    previous_version: int = 0,
    created_at: Optional[datetime] = None,
) -> Union[AcceptedFormula, ValidationReport]:
    normalized = normalizer.normalize(candidate, catalog)
    dosed = dosage.validate(normalized.resolved)
    budgeted = budget.enforce(dosed.valid, config.ceiling_mg, config.minor_overage_fraction)

    errors = [*normalized.errors, *dosed.errors, *budgeted.errors]
    if errors:
        return ValidationReport(attempt_number=attempt_number, errors=errors)

    return record.build(
        budgeted.entries,
        capsule_capacity_mg=config.capsule_capacity_mg,
        previous_version=previous_version,
        trim_notes=budgeted.notes,
        candidate=candidate,
        created_at=created_at,
    )
