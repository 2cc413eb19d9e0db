"""
Candidate Parser — turns the agent's raw output into a FormulaCandidate.

Two input shapes are accepted:

    {"entries": [{"rawName", "amountMg", "unit", "role", "purpose"}, ...], ...}
    {"bases": [{"ingredient", "amount", "unit", "purpose"}], "additions": [...], ...}

In the second shape each item takes its role from the list it appears in.
A "totalMg" key, if present, is dropped: the engine computes its own total.

Anything that is not a well-formed candidate (wrong JSON shape, missing
field, non-numeric amount, no entries) raises CandidateSchemaError. That is
a hard failure, not part of the retry loop: a different ingredient choice
cannot fix malformed JSON.
"""

import json
import re
from typing import Any

import pydantic

from formula_agent.models import FormulaCandidate


class CandidateSchemaError(ValueError):
    """The submitted candidate is not structurally valid."""


def _find_formula(text: str) -> tuple[str, tuple[int, int]] | None:
    """Locate the formula JSON: (payload, span of the block it was found in)."""
    fence_match = re.search(r"```(?:[\w+\-]*)\s*\n([\s\S]*?)\n?```", text)
    if fence_match and fence_match.group(1).strip().startswith("{"):
        return fence_match.group(1).strip(), fence_match.span()

    json_match = re.search(r"\{[\s\S]*\}", text)
    if json_match:
        return json_match.group(0).strip(), json_match.span()

    return None


def extract_formula_json(text: str) -> str | None:
    """Extract the formula JSON object from an agent reply.

    Handles:
    - JSON inside ```json ... ``` fences (with or without preamble text)
    - JSON inside any other fence language
    - A bare JSON object anywhere in the text
    Returns None when the reply contains no JSON object at all.
    """
    found = _find_formula(text)
    return found[0] if found else None


def strip_formula_json(text: str) -> str:
    """Remove the block extract_formula_json reads, leaving only the agent's prose."""
    found = _find_formula(text)
    if found is None:
        return text.strip()
    start, end = found[1]
    return f"{text[:start].rstrip()}\n\n{text[end:].lstrip()}".strip()


def _reshape(data: dict) -> dict:
    """Map the bases/additions shape onto the entries shape."""
    if "entries" in data or not ("bases" in data or "additions" in data):
        return data

    entries = []
    for role, key in (("base", "bases"), ("addition", "additions")):
        items = data.get(key) or []
        if not isinstance(items, list):
            raise CandidateSchemaError(f'"{key}" must be a list, got {type(items).__name__}')
        for item in items:
            if not isinstance(item, dict):
                raise CandidateSchemaError(f'Items in "{key}" must be objects, got {item!r}')
            entries.append({**item, "role": role})

    reshaped = {k: v for k, v in data.items() if k not in ("bases", "additions")}
    reshaped["entries"] = entries
    return reshaped


def _describe(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "candidate"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_candidate(raw: Any) -> FormulaCandidate:
    """Validate a dict (or JSON string) into a FormulaCandidate."""
    if isinstance(raw, FormulaCandidate):
        return raw

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CandidateSchemaError(f"Candidate is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise CandidateSchemaError(f"Candidate must be a JSON object, got {type(raw).__name__}")

    try:
        return FormulaCandidate.model_validate(_reshape(raw))
    except pydantic.ValidationError as exc:
        raise CandidateSchemaError(f"Malformed formula candidate: {_describe(exc)}") from exc


def parse_agent_reply(text: str) -> FormulaCandidate | None:
    """Parse the formula out of an agent reply. None if the reply has no JSON."""
    payload = extract_formula_json(text)
    if payload is None:
        return None
    return parse_candidate(payload)
