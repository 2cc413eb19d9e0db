"""
Graph Assembly — wires the correction loop into a LangGraph StateGraph.

Canonical loop:
    propose → check → (END | propose | give_up)

The agent is reached only through transcript appends: a rejected candidate
becomes a feedback message, and the next propose step sees it. The engine
behind the check step holds no state; the attempt counter and cap live in
ConsultState and in this graph.
"""

import logging
from typing import Optional

from langchain_core.messages import HumanMessage
from langgraph.graph import END, StateGraph

from formula_agent.catalog import IngredientCatalog
from formula_agent.config import EngineConfig
from formula_agent.nodes import checker, fallback, proposer
from formula_agent.state import ConsultState

logger = logging.getLogger(__name__)


def _after_propose(state: ConsultState) -> str:
    return "give_up" if state.get("status") == "failed" else "check"


def _after_check(state: ConsultState) -> str:
    status = state.get("status")
    if status in ("accepted", "reply"):
        return "end"
    if status == "pending":
        return "propose"
    return "give_up"


def build_graph(catalog: IngredientCatalog, config: EngineConfig):
    """
    Constructs and compiles the correction-loop graph.

    The catalog and config are bound here, once, so every run shares the
    same immutable catalog without any module-level state.
    """
    g = StateGraph(ConsultState)

    # ── Register nodes ──────────────────────────────────────────────────────
    g.add_node("propose", lambda state: proposer.run(state, catalog, config))
    g.add_node("check", lambda state: checker.run(state, catalog, config))
    g.add_node("give_up", fallback.run)

    # ── Edges ───────────────────────────────────────────────────────────────
    g.set_entry_point("propose")
    g.add_conditional_edges(
        "propose",
        _after_propose,
        {"check": "check", "give_up": "give_up"},
    )
    g.add_conditional_edges(
        "check",
        _after_check,
        {"end": END, "propose": "propose", "give_up": "give_up"},
    )
    g.add_edge("give_up", END)

    logger.info("Correction-loop graph compiled (max_attempts=%d)", config.max_attempts)
    return g.compile()


def initial_state(user_message: str, history: Optional[list] = None, previous_version: int = 0) -> ConsultState:
    """Fresh state for one user turn. history is prior transcript messages, if any."""
    return {
        "user_message": user_message,
        "messages": [*(history or []), HumanMessage(content=user_message)],
        "previous_version": previous_version,
        "attempt": 1,
        "agent_reply": None,
        "status": "pending",
        "accepted_formula": None,
        "last_report": None,
        "history": [],
        "final_message": "",
    }


def recursion_limit(config: EngineConfig) -> int:
    """Upper bound on node executions for one run: two per attempt plus the exit."""
    return 2 * config.max_attempts + 5
