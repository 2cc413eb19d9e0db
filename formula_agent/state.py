"""
ConsultState — the typed state object that flows through the correction-loop
graph.

The engine is stateless; everything that persists across attempts (the
transcript, the attempt counter, the attempt history) lives here and is
owned by the conversation.

status values:
    pending       a candidate is being proposed / checked
    accepted      the engine accepted a candidate (accepted_formula is set)
    reply         the agent answered without proposing a formula
    failed        attempt cap reached, or the agent could not be reached
    schema_error  the agent emitted malformed formula JSON (terminal)
"""

from typing import Optional, TypedDict


class ConsultState(TypedDict):
    """Persistent state flowing through the correction-loop graph."""

    # ── Conversation ────────────────────────────────────────────────────────
    user_message: str
    messages: list  # LangChain messages after the system prompt
    previous_version: int  # Latest persisted formula version for this user (0 = none)

    # ── Current attempt ─────────────────────────────────────────────────────
    attempt: int                 # 1-based number of the candidate being checked
    agent_reply: Optional[str]   # Raw text of the agent's latest reply

    # ── Outcome ─────────────────────────────────────────────────────────────
    status: str
    accepted_formula: Optional[dict]  # AcceptedFormula JSON (camelCase)
    last_report: Optional[dict]       # ValidationReport JSON (camelCase)
    history: list                     # CorrectionAttempt JSON, one per checked candidate
    final_message: str                # What the human user sees
