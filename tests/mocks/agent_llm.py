"""
Mock replacement for the agent LLM returned by formula_agent.llm.get_llm.

The scripted model answers each invoke() with the next canned reply, so a
test can play out a full correction loop: a bad candidate, the feedback,
then a repaired candidate. Used via
patch("formula_agent.nodes.proposer.get_llm", return_value=...).
"""

import json
from unittest.mock import MagicMock


def formula_reply(entries, prose="Here is your personalized formula.", **extra) -> str:
    """An agent reply with a fenced formula JSON block."""
    payload = {
        "entries": [
            {"rawName": name, "amountMg": amount, "unit": "mg", "role": role, "purpose": "test"}
            for name, amount, role in entries
        ],
        "rationale": "test rationale",
        "warnings": [],
        "disclaimers": ["Not medical advice."],
        **extra,
    }
    return f"{prose}\n\n```json\n{json.dumps(payload, indent=2)}\n```"


def make_scripted_llm(replies) -> MagicMock:
    """A mock chat model whose successive invoke() calls return the given replies."""
    llm = MagicMock()
    llm.invoke.side_effect = [MagicMock(content=reply) for reply in replies]
    return llm


def make_failing_llm(exc: Exception) -> MagicMock:
    llm = MagicMock()
    llm.invoke.side_effect = exc
    return llm
