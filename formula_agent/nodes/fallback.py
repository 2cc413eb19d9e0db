"""
Fallback Node — ends the conversation turn with a generic apology.

Reached when the attempt cap is exhausted, when the agent emitted malformed
formula JSON, or when the agent could not be reached. The detailed error
codes stay in last_report for logs and the API; the human only sees the
apology.
"""

import logging

from formula_agent.feedback import TERMINAL_APOLOGY
from formula_agent.state import ConsultState

logger = logging.getLogger(__name__)


def run(state: ConsultState) -> dict:
    status = state.get("status")
    if status not in ("failed", "schema_error"):
        status = "failed"

    report = state.get("last_report") or {}
    logger.warning(
        "Giving up after attempt %d (status=%s, last errors=%s)",
        state.get("attempt", 1),
        status,
        [e.get("code") for e in report.get("errors", [])],
    )
    return {"status": status, "final_message": TERMINAL_APOLOGY}
