"""
Formula Record Builder — turns surviving entries into an AcceptedFormula.

The total is always recomputed from the entries; nothing the agent claimed
about the total is ever copied. The version number is the only state this
touches, and it is supplied by the caller's persistence layer.
"""

import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from formula_agent.engine.budget import total_mg
from formula_agent.models import (
    AcceptedFormula,
    FormulaCandidate,
    NameCorrection,
    ResolvedEntry,
    TrimNote,
)


def capsule_count(total: float, capsule_capacity_mg: float) -> int:
    return math.ceil(total / capsule_capacity_mg)


def build(
    entries: Sequence[ResolvedEntry],
    capsule_capacity_mg: float,
    previous_version: int = 0,
    trim_notes: Sequence[TrimNote] = (),
    candidate: Optional[FormulaCandidate] = None,
    created_at: Optional[datetime] = None,
) -> AcceptedFormula:
    total = total_mg(list(entries))

    corrections = [
        NameCorrection(raw_name=e.raw_name, ingredient=e.ingredient)
        for e in entries
        if e.raw_name != e.ingredient
    ]

    return AcceptedFormula(
        version=previous_version + 1,
        bases=[e for e in entries if e.role == "base"],
        additions=[e for e in entries if e.role == "addition"],
        total_mg=total,
        capsule_count=capsule_count(total, capsule_capacity_mg),
        created_at=created_at or datetime.now(timezone.utc),
        trimmed=bool(trim_notes),
        trim_notes=list(trim_notes),
        name_corrections=corrections,
        rationale=candidate.rationale if candidate else "",
        warnings=list(candidate.warnings) if candidate else [],
        disclaimers=list(candidate.disclaimers) if candidate else [],
    )
