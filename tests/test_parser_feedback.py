"""
Unit tests — candidate parsing, feedback rendering and engine config.
"""

import json

import pytest

from formula_agent.candidate_parser import (
    CandidateSchemaError,
    extract_formula_json,
    parse_agent_reply,
    parse_candidate,
    strip_formula_json,
)
from formula_agent.config import EngineConfig, get_engine_config
from formula_agent.feedback import TERMINAL_APOLOGY, render_acceptance, render_error, render_report
from formula_agent.models import (
    AcceptedFormula,
    ErrorCode,
    TrimNote,
    ValidationError,
    ValidationReport,
)
from tests.mocks.agent_llm import formula_reply


def entry(name="Ashwagandha", amount=600, role="addition", **extra):
    return {"rawName": name, "amountMg": amount, "unit": "mg", "role": role, **extra}


# ── Candidate parsing ───────────────────────────────────────────────────────


class TestParseCandidate:
    def test_entries_shape(self):
        candidate = parse_candidate({"entries": [entry(purpose="stress")], "rationale": "sleep"})
        assert candidate.entries[0].raw_name == "Ashwagandha"
        assert candidate.entries[0].amount_mg == 600
        assert candidate.entries[0].purpose == "stress"
        assert candidate.rationale == "sleep"

    def test_snake_case_keys_accepted(self):
        candidate = parse_candidate(
            {"entries": [{"raw_name": "Alfalfa", "amount_mg": 200, "role": "addition"}]}
        )
        assert candidate.entries[0].unit == "mg"

    def test_bases_additions_shape_takes_role_from_list(self):
        candidate = parse_candidate(
            {
                "bases": [{"ingredient": "Heart Support", "amount": 450, "unit": "mg"}],
                "additions": [{"ingredient": "Ginger Root", "amount": 200, "unit": "mg"}],
            }
        )
        assert [(e.raw_name, e.role) for e in candidate.entries] == [
            ("Heart Support", "base"),
            ("Ginger Root", "addition"),
        ]

    def test_submitted_total_is_ignored(self):
        candidate = parse_candidate({"entries": [entry()], "totalMg": 1})
        assert "totalMg" not in candidate.model_dump(by_alias=True)

    def test_json_string_and_bytes(self):
        payload = json.dumps({"entries": [entry()]})
        assert parse_candidate(payload) == parse_candidate(payload.encode())

    @pytest.mark.parametrize(
        "raw",
        [
            {"entries": [entry(amount="600")]},         # numeric string
            {"entries": [entry(amount=True)]},          # bool
            {"entries": [entry(amount=float("nan"))]},  # not finite
            {"entries": [{"rawName": "Alfalfa", "amountMg": 200}]},  # no role
            {"entries": [entry(role="booster")]},
            {"entries": [entry(name="")]},
            {"entries": []},
            {"rationale": "no entries at all"},
            {"bases": "Heart Support"},
            ["not", "an", "object"],
            "{not json",
            42,
        ],
    )
    def test_malformed_candidates_raise_schema_error(self, raw):
        with pytest.raises(CandidateSchemaError):
            parse_candidate(raw)

    def test_schema_error_names_the_field(self):
        with pytest.raises(CandidateSchemaError, match=r"entries\.0\.amount"):
            parse_candidate({"entries": [entry(amount="lots")]})


class TestAgentReply:
    def test_extracts_fenced_json_after_prose(self):
        reply = formula_reply([("Ashwagandha", 600, "addition")], prose="Here you go.")
        assert json.loads(extract_formula_json(reply))["entries"][0]["rawName"] == "Ashwagandha"

    def test_extracts_bare_json(self):
        reply = 'Sure: {"entries": [{"rawName": "Alfalfa", "amountMg": 200, "role": "addition"}]}'
        assert parse_agent_reply(reply).entries[0].raw_name == "Alfalfa"

    def test_reply_without_json_is_not_a_candidate(self):
        assert parse_agent_reply("Could you tell me more about your sleep?") is None

    def test_malformed_json_in_reply_raises(self):
        with pytest.raises(CandidateSchemaError):
            parse_agent_reply("```json\n{\"entries\": [}\n```")

    def test_strip_formula_json_keeps_prose(self):
        reply = formula_reply([("Ashwagandha", 600, "addition")], prose="Here you go.")
        assert strip_formula_json(reply) == "Here you go."

    @pytest.mark.parametrize(
        "block",
        [
            '```\n{"entries": [{"rawName": "Alfalfa", "amountMg": 200, "role": "addition"}]}\n```',
            '{"entries": [{"rawName": "Alfalfa", "amountMg": 200, "role": "addition"}]}',
        ],
    )
    def test_strip_removes_untagged_and_bare_json(self, block):
        reply = f"Here you go.\n\n{block}\n\nTake it with food."
        assert parse_agent_reply(reply) is not None
        assert strip_formula_json(reply) == "Here you go.\n\nTake it with food."

    def test_invalid_utf8_bytes_raise_schema_error(self):
        with pytest.raises(CandidateSchemaError, match="not valid JSON"):
            parse_candidate(b'{"entries": "\xff\xfe"}')


# ── Feedback rendering ──────────────────────────────────────────────────────


class TestFeedback:
    def test_fixed_dose_error_names_exact_dose(self):
        error = ValidationError(
            code=ErrorCode.FIXED_DOSE_MISMATCH,
            entry_ref=1,
            detail="Camu Camu has a fixed dose of 2500mg; submitted 1500mg",
            suggested_fix=2500,
        )
        assert render_error(error) == (
            "Entry 1: Camu Camu has a fixed dose of 2500mg; submitted 1500mg. Use exactly 2500mg."
        )

    def test_budget_error_refers_to_whole_formula(self):
        error = ValidationError(
            code=ErrorCode.BUDGET_EXCEEDED, detail="Formula totals 7000mg", suggested_fix=5500
        )
        text = render_error(error)
        assert text.startswith("Whole formula:")
        assert "at most 5500mg" in text

    def test_unit_error_hint(self):
        error = ValidationError(
            code=ErrorCode.UNSUPPORTED_UNIT,
            entry_ref=0,
            detail="given in g",
            suggested_fix={"unit": "mg", "amountMg": 600.0},
        )
        assert "Restate the amount in mg" in render_error(error)

    def test_every_code_has_a_template(self):
        for code in ErrorCode:
            text = render_error(ValidationError(code=code, entry_ref=0, detail="x"))
            assert text

    def test_report_lists_every_error_and_attempts_left(self):
        report = ValidationReport(
            attempt_number=2,
            errors=[
                ValidationError(code=ErrorCode.UNKNOWN_INGREDIENT, entry_ref=0, detail="a"),
                ValidationError(code=ErrorCode.DOSE_OUT_OF_RANGE, entry_ref=3, detail="b", suggested_fix=100),
            ],
        )
        text = render_report(report, max_attempts=3)
        lines = text.splitlines()
        assert lines[0].startswith("FORMULA REJECTED (attempt 2 of 3, 1 remaining)")
        assert lines[1].startswith("- [UNKNOWN_INGREDIENT] Entry 0:")
        assert lines[2].startswith("- [DOSE_OUT_OF_RANGE] Entry 3:")
        assert "nearest allowed: 100mg" in lines[2]

    def test_acceptance_summary_mentions_trims(self):
        formula = AcceptedFormula(
            version=2,
            bases=[],
            additions=[],
            total_mg=5500,
            capsule_count=10,
            created_at="2026-01-01T00:00:00Z",
            trimmed=True,
            trim_notes=[
                TrimNote(ingredient="Alfalfa", action="reduced", from_mg=800, to_mg=100),
                TrimNote(ingredient="Camu Camu", action="removed", from_mg=2500, to_mg=0),
            ],
        )
        text = render_acceptance(formula)
        assert "version 2" in text
        assert "5500mg per day in 10 capsules" in text
        assert "Alfalfa was reduced from 800mg to 100mg" in text
        assert "Camu Camu was removed" in text

    def test_apology_hides_error_details(self):
        assert "UNKNOWN" not in TERMINAL_APOLOGY
        assert "mg" not in TERMINAL_APOLOGY


# ── Config ──────────────────────────────────────────────────────────────────


class TestEngineConfig:
    def test_defaults(self, monkeypatch):
        for name in (
            "FORMULA_CEILING_MG",
            "FORMULA_MINOR_OVERAGE_FRACTION",
            "FORMULA_CAPSULE_CAPACITY_MG",
            "FORMULA_MAX_ATTEMPTS",
        ):
            monkeypatch.delenv(name, raising=False)
        assert get_engine_config() == EngineConfig(
            ceiling_mg=5500, minor_overage_fraction=0.15, capsule_capacity_mg=550, max_attempts=3
        )

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("FORMULA_CEILING_MG", "6000")
        monkeypatch.setenv("FORMULA_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("FORMULA_MINOR_OVERAGE_FRACTION", "")
        config = get_engine_config()
        assert config.ceiling_mg == 6000
        assert config.max_attempts == 5
        assert config.minor_overage_fraction == 0.15

    def test_bad_number_raises(self, monkeypatch):
        monkeypatch.setenv("FORMULA_CEILING_MG", "lots")
        with pytest.raises(ValueError, match="FORMULA_CEILING_MG") as excinfo:
            get_engine_config()
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_out_of_range_fraction_rejected(self, monkeypatch):
        monkeypatch.setenv("FORMULA_MINOR_OVERAGE_FRACTION", "1.5")
        with pytest.raises(ValueError):
            get_engine_config()
