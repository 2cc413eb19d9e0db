"""
Formula models — the typed values exchanged between the agent, the
validation engine and the caller.

Every model is frozen: a FormulaCandidate is consumed once, a
ValidationReport never changes after it is produced, and a new formula
version is a new AcceptedFormula, never an edit of an old one.

JSON uses camelCase keys (attemptNumber, totalMg, entryRef, ...). Input is
accepted in either camelCase or snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Role = Literal["base", "addition"]
Category = Literal["base", "individual"]


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ── Catalog rules ───────────────────────────────────────────────────────────


class FixedDose(_Frozen):
    """Amount must equal dose_mg exactly."""

    kind: Literal["fixed"] = "fixed"
    dose_mg: float = Field(..., gt=0)


class RangedDose(_Frozen):
    """Amount must fall within [min_mg, max_mg], inclusive."""

    kind: Literal["ranged"] = "ranged"
    min_mg: float = Field(..., gt=0)
    max_mg: float = Field(..., gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "RangedDose":
        if self.min_mg > self.max_mg:
            raise ValueError(f"min_mg ({self.min_mg}) must not exceed max_mg ({self.max_mg})")
        return self


DoseRule = Annotated[Union[FixedDose, RangedDose], Field(discriminator="kind")]


class IngredientRule(_Frozen):
    """One approved catalog ingredient and its dosage rule."""

    canonical_name: str
    category: Category
    dose: DoseRule
    priority_weight: int = 0  # lower = trimmed first
    aliases: frozenset[str] = frozenset()

    @property
    def dose_kind(self) -> str:
        return self.dose.kind

    @property
    def fixed_dose_mg(self) -> Optional[float]:
        return self.dose.dose_mg if isinstance(self.dose, FixedDose) else None

    @property
    def min_dose_mg(self) -> Optional[float]:
        return self.dose.min_mg if isinstance(self.dose, RangedDose) else None

    @property
    def max_dose_mg(self) -> Optional[float]:
        return self.dose.max_mg if isinstance(self.dose, RangedDose) else None


# ── Candidate (agent output) ────────────────────────────────────────────────


class CandidateEntry(_Frozen):
    raw_name: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("rawName", "raw_name", "ingredient", "name")
    )
    amount_mg: float = Field(
        ..., allow_inf_nan=False, validation_alias=AliasChoices("amountMg", "amount_mg", "amount")
    )
    unit: str = "mg"
    role: Role
    purpose: str = ""

    @field_validator("amount_mg", mode="before")
    @classmethod
    def _reject_non_numeric(cls, value: Any) -> Any:
        # pydantic would coerce "600" → 600.0; the agent must send a number.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"amount must be a number, got {value!r}")
        return value


class FormulaCandidate(_Frozen):
    """
    A proposed formula, exactly as the agent emitted it.

    There is intentionally no total field: a submitted totalMg is dropped
    on parse and the engine computes its own.
    """

    entries: list[CandidateEntry] = Field(..., min_length=1)
    rationale: str = ""
    warnings: list[str] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)


# ── Engine output ───────────────────────────────────────────────────────────


class ErrorCode(str, Enum):
    UNKNOWN_INGREDIENT = "UNKNOWN_INGREDIENT"
    FIXED_DOSE_MISMATCH = "FIXED_DOSE_MISMATCH"
    DOSE_OUT_OF_RANGE = "DOSE_OUT_OF_RANGE"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    UNSUPPORTED_UNIT = "UNSUPPORTED_UNIT"


class ValidationError(_Frozen):
    """A recoverable business-rule failure the agent can fix by resubmitting."""

    code: ErrorCode
    entry_ref: Optional[int] = None  # candidate entry index; None = whole formula
    detail: str
    suggested_fix: Optional[Union[float, dict]] = None


class ValidationReport(_Frozen):
    attempt_number: int = Field(..., ge=1)
    errors: list[ValidationError] = Field(..., min_length=1)

    @property
    def codes(self) -> list[str]:
        return [e.code.value for e in self.errors]


class ResolvedEntry(_Frozen):
    """A candidate entry bound to its catalog rule."""

    ingredient: str
    raw_name: str
    amount_mg: float
    unit: Literal["mg"] = "mg"
    role: Role
    purpose: str = ""
    rule: IngredientRule = Field(..., exclude=True)


class TrimNote(_Frozen):
    """Side-channel record of one automatic trim action (not an error)."""

    ingredient: str
    action: Literal["reduced", "removed"]
    from_mg: float
    to_mg: float


class NameCorrection(_Frozen):
    raw_name: str
    ingredient: str


class AcceptedFormula(_Frozen):
    version: int = Field(..., ge=1)
    bases: list[ResolvedEntry]
    additions: list[ResolvedEntry]
    total_mg: float
    capsule_count: int
    created_at: datetime
    trimmed: bool = False
    trim_notes: list[TrimNote] = Field(default_factory=list)
    name_corrections: list[NameCorrection] = Field(default_factory=list)
    rationale: str = ""
    warnings: list[str] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)

    @property
    def entries(self) -> list[ResolvedEntry]:
        return [*self.bases, *self.additions]


class CorrectionAttempt(_Frozen):
    """One turn of the caller's retry loop. Owned by the conversation, not the engine."""

    attempt_number: int
    candidate: FormulaCandidate
    outcome: Literal["accepted", "report"]
