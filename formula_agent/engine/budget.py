"""
Budget Enforcer & Trimmer — keeps the formula under the mass ceiling.

    total ≤ ceiling                         → unchanged
    overage < minor_overage_fraction·ceiling → automatic trim
    otherwise                               → BUDGET_EXCEEDED, no trim

Small overages are mechanical (rounding, one extra ingredient) and are fixed
here. Large ones mean the agent chose an oversized combination and must
re-reason it, so the engine reports the exact overage and does not guess.

TRIM ORDER (policy table, see CATEGORY_TRIM_RANK):
    1. priority_weight ascending (lowest priority trimmed first)
    2. individual ingredients before bases (bases are structural)
    3. submission order

Entries are trimmed one at a time from the front of that order. A ranged
entry is first reduced toward its min_mg; if the formula is still over the
ceiling it is removed, and only then does the next entry get touched. Fixed
doses are exact, so they can only ever be removed. Trimming stops as soon as
the total fits. It is not an error; every action is returned as a TrimNote
so the caller can tell the user.

Totals and comparisons use Decimal over each amount's shortest repr, so a
formula summing to exactly the ceiling never reads as 1e-12mg over it.
Reduced amounts are floored to MG_PRECISION.
"""

from decimal import ROUND_FLOOR, Decimal
from typing import NamedTuple

from formula_agent.models import (
    ErrorCode,
    RangedDose,
    ResolvedEntry,
    TrimNote,
    ValidationError,
)

CATEGORY_TRIM_RANK = {"individual": 0, "base": 1}

MG_PRECISION = Decimal("0.001")


class BudgetResult(NamedTuple):
    entries: list[ResolvedEntry]
    trimmed: bool
    errors: list[ValidationError]
    notes: list[TrimNote]


def _mg(value: float) -> Decimal:
    return Decimal(repr(float(value)))


def _sum_mg(entries: list[ResolvedEntry]) -> Decimal:
    return sum((_mg(e.amount_mg) for e in entries), Decimal(0))


def total_mg(entries: list[ResolvedEntry]) -> float:
    return float(_sum_mg(entries))


def trim_order(entries: list[ResolvedEntry]) -> list[int]:
    """Indexes of entries, first-to-trim first."""
    return sorted(
        range(len(entries)),
        key=lambda i: (
            entries[i].rule.priority_weight,
            CATEGORY_TRIM_RANK.get(entries[i].rule.category, 0),
            i,
        ),
    )


def _over_budget(total: Decimal, ceiling: Decimal, detail_suffix: str = "") -> ValidationError:
    overage = total - ceiling
    detail = (
        f"Formula totals {float(total):g}mg, which is {float(overage):g}mg over the "
        f"{float(ceiling):g}mg ceiling ({float(overage / ceiling):.1%} over)"
    )
    return ValidationError(
        code=ErrorCode.BUDGET_EXCEEDED,
        entry_ref=None,
        detail=detail + detail_suffix,
        suggested_fix=float(ceiling),
    )


def _reduce(entry: ResolvedEntry, overage: Decimal) -> Decimal:
    """The amount a ranged entry can drop to while covering as much of overage as possible."""
    amount = _mg(entry.amount_mg)
    floor = _mg(entry.rule.dose.min_mg)
    target = (amount - overage).quantize(MG_PRECISION, rounding=ROUND_FLOOR)
    return max(target, floor)


def trim(entries: list[ResolvedEntry], ceiling_mg: float) -> tuple[list[ResolvedEntry], list[TrimNote]]:
    """Reduce or remove entries, front of the trim order first, until the total fits."""
    ceiling = _mg(ceiling_mg)
    working: list[ResolvedEntry | None] = list(entries)
    order = trim_order(entries)
    notes: list[TrimNote] = []

    for i in order:
        total = _sum_mg([e for e in working if e is not None])
        if total <= ceiling:
            break
        entry = working[i]

        if isinstance(entry.rule.dose, RangedDose):
            reduced = _reduce(entry, total - ceiling)
            if reduced < _mg(entry.amount_mg) and total - (_mg(entry.amount_mg) - reduced) <= ceiling:
                working[i] = entry.model_copy(update={"amount_mg": float(reduced)})
                notes.append(
                    TrimNote(
                        ingredient=entry.ingredient,
                        action="reduced",
                        from_mg=entry.amount_mg,
                        to_mg=float(reduced),
                    )
                )
                continue

        working[i] = None
        notes.append(TrimNote(ingredient=entry.ingredient, action="removed", from_mg=entry.amount_mg, to_mg=0))

    kept = [e for e in working if e is not None]
    return kept, notes


def enforce(
    entries: list[ResolvedEntry],
    ceiling_mg: float,
    minor_overage_fraction: float = 0.15,
) -> BudgetResult:
    ceiling = _mg(ceiling_mg)
    total = _sum_mg(entries)
    if total <= ceiling:
        return BudgetResult(list(entries), False, [], [])

    overage = total - ceiling
    if overage / ceiling >= _mg(minor_overage_fraction):
        return BudgetResult(list(entries), False, [_over_budget(total, ceiling)], [])

    kept, notes = trim(entries, ceiling_mg)
    if not kept or _sum_mg(kept) > ceiling:
        return BudgetResult(
            list(entries),
            False,
            [_over_budget(total, ceiling, "; trimming would remove every ingredient")],
            [],
        )

    return BudgetResult(kept, True, [], notes)
