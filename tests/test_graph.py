"""
Integration tests — the full correction loop through the compiled graph.

The agent LLM is replaced with a scripted mock (tests/mocks/agent_llm.py),
so each test plays out a conversation deterministically: the agent's
successive replies are fixed, and the engine decides what happens next.
"""

from unittest.mock import patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from formula_agent.config import EngineConfig
from formula_agent.feedback import TERMINAL_APOLOGY
from formula_agent.graph import build_graph, initial_state, recursion_limit
from formula_agent.nodes import checker, fallback
from formula_agent.nodes.proposer import build_system_prompt
from tests.mocks.agent_llm import formula_reply, make_failing_llm, make_scripted_llm
from tests.mocks.catalog import make_catalog

CONFIG = EngineConfig(max_attempts=3)

GOOD = formula_reply([("Heart Support", 450, "base"), ("Ashwagandha", 600, "addition")])
WRONG_DOSE = formula_reply([("Heart Support", 450, "base"), ("Ashwagandha", 500, "addition")])
UNKNOWN = formula_reply([("Unicorn Dust", 100, "addition")])


def run_loop(replies, config=CONFIG, message="I feel stressed and tired", **state_kwargs):
    llm = make_scripted_llm(replies)
    with patch("formula_agent.nodes.proposer.get_llm", return_value=llm):
        graph = build_graph(make_catalog(), config)
        final_state = graph.invoke(
            initial_state(message, **state_kwargs),
            config={"recursion_limit": recursion_limit(config)},
        )
    return final_state, llm


# ── Correction loop ─────────────────────────────────────────────────────────


class TestCorrectionLoop:
    def test_first_candidate_accepted(self):
        state, llm = run_loop([GOOD])
        assert state["status"] == "accepted"
        assert llm.invoke.call_count == 1
        assert state["accepted_formula"]["totalMg"] == 1050
        assert state["accepted_formula"]["version"] == 1
        assert len(state["history"]) == 1
        assert state["history"][0]["outcome"] == "accepted"

    def test_rejected_candidate_is_fed_back_and_repaired(self):
        state, llm = run_loop([WRONG_DOSE, GOOD])
        assert state["status"] == "accepted"
        assert llm.invoke.call_count == 2

        second_call = llm.invoke.call_args_list[1].args[0]
        assert isinstance(second_call[0], SystemMessage)
        assert isinstance(second_call[-2], AIMessage)
        feedback = second_call[-1]
        assert isinstance(feedback, HumanMessage)
        assert feedback.content.startswith("FORMULA REJECTED (attempt 1 of 3")
        assert "[FIXED_DOSE_MISMATCH]" in feedback.content
        assert "Use exactly 600mg" in feedback.content

        assert [h["outcome"] for h in state["history"]] == ["report", "accepted"]
        assert [h["attemptNumber"] for h in state["history"]] == [1, 2]

    def test_gives_up_after_max_attempts(self):
        state, llm = run_loop([UNKNOWN, UNKNOWN, UNKNOWN, GOOD])
        assert state["status"] == "failed"
        assert state["final_message"] == TERMINAL_APOLOGY
        assert llm.invoke.call_count == 3
        assert len(state["history"]) == 3
        assert state["accepted_formula"] is None
        assert state["last_report"]["attemptNumber"] == 3
        assert state["last_report"]["errors"][0]["code"] == "UNKNOWN_INGREDIENT"

    def test_attempt_cap_comes_from_config(self):
        state, llm = run_loop([UNKNOWN, GOOD], config=EngineConfig(max_attempts=1))
        assert state["status"] == "failed"
        assert llm.invoke.call_count == 1

    def test_malformed_json_is_terminal(self):
        bad = "Here it is:\n```json\n{\"entries\": [{\"rawName\": \"Alfalfa\", \"amountMg\": \"lots\"}]}\n```"
        state, llm = run_loop([bad, GOOD])
        assert state["status"] == "schema_error"
        assert state["final_message"] == TERMINAL_APOLOGY
        assert llm.invoke.call_count == 1

    def test_reply_without_formula_ends_the_turn(self):
        question = "Before I suggest anything, how many hours do you sleep?"
        state, llm = run_loop([question])
        assert state["status"] == "reply"
        assert state["final_message"] == question
        assert state["history"] == []

    def test_llm_failure_ends_with_apology(self):
        with patch("formula_agent.nodes.proposer.get_llm", return_value=make_failing_llm(RuntimeError("boom"))):
            graph = build_graph(make_catalog(), CONFIG)
            state = graph.invoke(initial_state("hi"), config={"recursion_limit": recursion_limit(CONFIG)})
        assert state["status"] == "failed"
        assert state["final_message"] == TERMINAL_APOLOGY

    def test_version_follows_previous_version(self):
        state, _ = run_loop([GOOD], previous_version=3)
        assert state["accepted_formula"]["version"] == 4

    def test_acceptance_message_keeps_agent_prose_and_reports_trim(self):
        over = formula_reply(
            [
                ("Beta Max", 2500, "base"),
                ("Camu Camu", 2500, "addition"),
                ("Alfalfa", 800, "addition"),
            ],
            prose="This supports immunity.",
        )
        state, _ = run_loop([over])
        assert state["status"] == "accepted"
        assert state["accepted_formula"]["trimmed"] is True
        assert state["final_message"].startswith("This supports immunity.")
        assert "Alfalfa was reduced from 800mg to 500mg" in state["final_message"]
        assert "```json" not in state["final_message"]


# ── Nodes ───────────────────────────────────────────────────────────────────


class TestNodes:
    def test_system_prompt_lists_catalog_and_limits(self):
        prompt = build_system_prompt(make_catalog(), CONFIG)
        assert "- Ashwagandha (individual): exactly 600mg" in prompt
        assert "- Alfalfa (individual): 100-1000mg" in prompt
        assert "5500" in prompt
        assert "{" in prompt  # escaped JSON example survives formatting

    def test_checker_feedback_increments_attempt(self):
        state = initial_state("hi")
        state.update(agent_reply=WRONG_DOSE, attempt=1)
        result = checker.run(state, make_catalog(), CONFIG)
        assert result["status"] == "pending"
        assert result["attempt"] == 2
        assert result["last_report"]["errors"][0]["suggestedFix"] == 600

    @pytest.mark.parametrize("status", ["failed", "schema_error"])
    def test_fallback_keeps_terminal_status(self, status):
        state = initial_state("hi")
        state.update(status=status)
        assert fallback.run(state) == {"status": status, "final_message": TERMINAL_APOLOGY}
