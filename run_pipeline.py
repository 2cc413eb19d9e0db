"""
Quick script to validate a formula candidate or run the full agent loop.

Usage:
    python run_pipeline.py --json path/to/candidate.json [--attempt N] [--previous-version V]
    python run_pipeline.py "I'm stressed and sleep badly, what should I take?"

Examples:
    python run_pipeline.py --json tests/fixtures/candidate_over_budget.json
    python run_pipeline.py "Build me a heart health formula"
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from formula_agent.candidate_parser import CandidateSchemaError, parse_candidate
from formula_agent.catalog import load_catalog
from formula_agent.config import get_engine_config
from formula_agent.engine.coordinator import coordinate
from formula_agent.feedback import render_report
from formula_agent.graph import build_graph, initial_state, recursion_limit
from formula_agent.models import AcceptedFormula

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-30s | %(levelname)-7s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def validate_file(json_path: str, attempt: int, previous_version: int) -> int:
    """Run the engine on one candidate file. Returns a process exit code."""
    path = Path(json_path)
    if not path.exists():
        logger.error("File not found: %s", path)
        return 1

    config = get_engine_config()
    catalog = load_catalog()

    try:
        candidate = parse_candidate(path.read_text())
    except CandidateSchemaError as exc:
        logger.error("Schema error: %s", exc)
        return 2

    outcome = coordinate(candidate, attempt, catalog, config, previous_version=previous_version)
    print(json.dumps(outcome.model_dump(mode="json", by_alias=True), indent=2))

    if isinstance(outcome, AcceptedFormula):
        logger.info("ACCEPTED: %gmg in %d capsules", outcome.total_mg, outcome.capsule_count)
        return 0

    print()
    print(render_report(outcome, config.max_attempts))
    return 3


def run_agent(message: str, previous_version: int) -> int:
    """Run the correction loop for one user message."""
    config = get_engine_config()
    catalog = load_catalog()
    graph = build_graph(catalog, config)

    final_state = graph.invoke(
        initial_state(message, previous_version=previous_version),
        config={"recursion_limit": recursion_limit(config)},
    )

    print("=" * 80)
    print(f"STATUS: {final_state['status']}  (attempts: {len(final_state['history'])})")
    print("=" * 80)
    print(final_state["final_message"])
    if final_state.get("accepted_formula"):
        print()
        print(json.dumps(final_state["accepted_formula"], indent=2))
    return 0 if final_state["status"] in ("accepted", "reply") else 3


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("message", nargs="?", help="User message for the full agent loop")
    parser.add_argument("--json", dest="json_path", help="Validate a candidate JSON file")
    parser.add_argument("--attempt", type=int, default=1)
    parser.add_argument("--previous-version", type=int, default=0)
    args = parser.parse_args()

    if args.json_path:
        return validate_file(args.json_path, args.attempt, args.previous_version)
    if args.message:
        return run_agent(args.message, args.previous_version)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
