"""
Feedback Renderer — turns a ValidationReport into the feedback message that is
appended to the transcript so the agent can repair its formula.

One fixed template per error code. The engine only produces structured
data; the wording lives here, on the caller side.
"""

from formula_agent.models import AcceptedFormula, ErrorCode, ValidationError, ValidationReport

TEMPLATES = {
    ErrorCode.UNKNOWN_INGREDIENT: (
        "Entry {ref}: {detail}. Replace it with an approved catalog ingredient or remove it."
    ),
    ErrorCode.FIXED_DOSE_MISMATCH: (
        "Entry {ref}: {detail}. Use exactly {fix}mg."
    ),
    ErrorCode.DOSE_OUT_OF_RANGE: (
        "Entry {ref}: {detail}. Use a dose inside the allowed range (nearest allowed: {fix}mg)."
    ),
    ErrorCode.BUDGET_EXCEEDED: (
        "Whole formula: {detail}. Remove or reduce ingredients so the total is at most {fix}mg."
    ),
    ErrorCode.UNSUPPORTED_UNIT: (
        "Entry {ref}: {detail}. Restate the amount in mg."
    ),
}

TERMINAL_APOLOGY = (
    "I'm sorry, I couldn't finalize your formula automatically. "
    "Please try rephrasing your goals, or ask a team member to review your formula with you."
)


def _format_fix(fix) -> str:
    if isinstance(fix, float):
        return f"{fix:g}"
    if isinstance(fix, dict) and "amountMg" in fix:
        return f"{fix['amountMg']:g}"
    return "" if fix is None else str(fix)


def render_error(error: ValidationError) -> str:
    return TEMPLATES[error.code].format(
        ref="-" if error.entry_ref is None else error.entry_ref,
        detail=error.detail,
        fix=_format_fix(error.suggested_fix),
    )


def render_report(report: ValidationReport, max_attempts: int) -> str:
    remaining = max(max_attempts - report.attempt_number, 0)
    lines = [
        f"FORMULA REJECTED (attempt {report.attempt_number} of {max_attempts}, "
        f"{remaining} remaining). Fix ALL of the following and resubmit the complete "
        "formula as a single ```json block. Do not include a totalMg field.",
    ]
    lines += [f"- [{e.code.value}] {render_error(e)}" for e in report.errors]
    return "\n".join(lines)


def render_acceptance(formula: AcceptedFormula) -> str:
    """Short user-facing summary of an accepted formula, including trim notes."""
    lines = [
        f"Your formula (version {formula.version}) is ready: "
        f"{formula.total_mg:g}mg per day in {formula.capsule_count} capsules."
    ]
    for note in formula.trim_notes:
        if note.action == "removed":
            lines.append(f"- {note.ingredient} was removed to stay within the daily limit.")
        else:
            lines.append(
                f"- {note.ingredient} was reduced from {note.from_mg:g}mg to {note.to_mg:g}mg "
                "to stay within the daily limit."
            )
    return "\n".join(lines)
