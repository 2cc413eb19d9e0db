"""
Checker Node — runs the validation engine on the agent's latest reply.

Outcomes:
    accepted     → status "accepted", formula stored, loop ends
    report       → feedback appended to the transcript; the loop retries
                   until config.max_attempts candidates have been checked
    no JSON      → status "reply": the agent asked a question, loop ends
    malformed    → status "schema_error": terminal, no retry
"""

import logging

from langchain_core.messages import HumanMessage

from formula_agent.candidate_parser import CandidateSchemaError, parse_agent_reply, strip_formula_json
from formula_agent.catalog import IngredientCatalog
from formula_agent.config import EngineConfig
from formula_agent.engine.coordinator import coordinate
from formula_agent.feedback import render_acceptance, render_report
from formula_agent.models import AcceptedFormula, CorrectionAttempt
from formula_agent.state import ConsultState

logger = logging.getLogger(__name__)


def run(state: ConsultState, catalog: IngredientCatalog, config: EngineConfig) -> dict:
    attempt = state.get("attempt", 1)
    reply = state.get("agent_reply") or ""

    try:
        candidate = parse_agent_reply(reply)
    except CandidateSchemaError as exc:
        logger.error("Attempt %d: malformed formula JSON from agent: %s", attempt, exc)
        return {"status": "schema_error"}

    if candidate is None:
        logger.info("Attempt %d: agent replied without a formula", attempt)
        return {"status": "reply", "final_message": reply}

    outcome = coordinate(
        candidate,
        attempt,
        catalog,
        config,
        previous_version=state.get("previous_version", 0),
    )
    history = list(state.get("history", []))

    if isinstance(outcome, AcceptedFormula):
        history.append(
            CorrectionAttempt(attempt_number=attempt, candidate=candidate, outcome="accepted")
            .model_dump(mode="json", by_alias=True)
        )
        logger.info(
            "Attempt %d accepted: version=%d total=%gmg capsules=%d trimmed=%s",
            attempt, outcome.version, outcome.total_mg, outcome.capsule_count, outcome.trimmed,
        )
        for note in outcome.trim_notes:
            logger.info("Trim: %s %s %g→%gmg", note.action, note.ingredient, note.from_mg, note.to_mg)

        prose = strip_formula_json(reply)
        summary = render_acceptance(outcome)
        return {
            "status": "accepted",
            "accepted_formula": outcome.model_dump(mode="json", by_alias=True),
            "last_report": None,
            "history": history,
            "final_message": f"{prose}\n\n{summary}" if prose else summary,
        }

    history.append(
        CorrectionAttempt(attempt_number=attempt, candidate=candidate, outcome="report")
        .model_dump(mode="json", by_alias=True)
    )
    logger.warning("Attempt %d rejected: %s", attempt, outcome.codes)

    report = outcome.model_dump(mode="json", by_alias=True)
    if attempt >= config.max_attempts:
        return {"status": "failed", "last_report": report, "history": history}

    feedback = render_report(outcome, config.max_attempts)
    return {
        "status": "pending",
        "last_report": report,
        "history": history,
        "messages": [*state.get("messages", []), HumanMessage(content=feedback)],
        "attempt": attempt + 1,
    }
