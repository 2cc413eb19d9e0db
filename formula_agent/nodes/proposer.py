"""
Proposer Node — asks the agent (LLM) for a formula.

The agent sees the system prompt (catalog + hard limits) followed by the
transcript. On a retry the transcript already ends with the rendered
validation feedback, so the agent repairs its own previous candidate.

The agent is an external actor: it is reached only through the transcript
and its reply is treated as untrusted text until the checker node has run.
"""

import logging
from pathlib import Path

from langchain_core.messages import AIMessage, SystemMessage

from formula_agent.catalog import IngredientCatalog
from formula_agent.config import EngineConfig
from formula_agent.feedback import TERMINAL_APOLOGY
from formula_agent.llm import get_llm
from formula_agent.models import FixedDose, IngredientRule
from formula_agent.state import ConsultState

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).resolve().parent.parent / "prompts" / "formula_system.txt"


def _load_prompt_template() -> str:
    return _PROMPT_PATH.read_text()


def _describe_rule(rule: IngredientRule) -> str:
    if isinstance(rule.dose, FixedDose):
        dose = f"exactly {rule.dose.dose_mg:g}mg"
    else:
        dose = f"{rule.dose.min_mg:g}-{rule.dose.max_mg:g}mg"
    return f"- {rule.canonical_name} ({rule.category}): {dose}"


def build_system_prompt(catalog: IngredientCatalog, config: EngineConfig) -> str:
    return _load_prompt_template().format(
        catalog_table="\n".join(_describe_rule(rule) for rule in catalog),
        ceiling_mg=f"{config.ceiling_mg:g}",
        capsule_capacity_mg=f"{config.capsule_capacity_mg:g}",
    )


def run(state: ConsultState, catalog: IngredientCatalog, config: EngineConfig) -> dict:
    """Invoke the agent on the transcript and record its reply."""
    attempt = state.get("attempt", 1)
    messages = list(state.get("messages", []))

    try:
        llm = get_llm()
        response = llm.invoke([SystemMessage(content=build_system_prompt(catalog, config)), *messages])
        reply = response.content if isinstance(response.content, str) else str(response.content)
    except Exception as exc:
        logger.error("Agent call failed on attempt %d: %s", attempt, exc)
        return {"status": "failed", "final_message": TERMINAL_APOLOGY}

    logger.info("Agent replied on attempt %d (%d chars)", attempt, len(reply))
    return {
        "agent_reply": reply,
        "messages": [*messages, AIMessage(content=reply)],
        "status": "pending",
    }
