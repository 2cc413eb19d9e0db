"""
FastAPI Backend — Supplement Formula Agent.

This is the main entry point for the backend. It exposes:
  - POST /formulas/validate  run the validation engine on one candidate
  - POST /consult            run the full agent correction loop for a message
  - GET  /catalog            list approved ingredients and dose rules
  - GET  /health

The ingredient catalog is loaded once at startup and shared read-only by
every request. Persisting accepted formulas is the caller's job; this
service only returns them.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Load environment variables from .env file
load_dotenv()

from formula_agent.candidate_parser import CandidateSchemaError, parse_candidate
from formula_agent.catalog import load_catalog
from formula_agent.config import get_engine_config
from formula_agent.engine.coordinator import coordinate
from formula_agent.feedback import render_report
from formula_agent.graph import build_graph, initial_state, recursion_limit
from formula_agent.models import AcceptedFormula

# ── Logging ─────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-30s | %(levelname)-7s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Formula Agent starting up")
    logger.info("LLM_PROVIDER=%s", os.getenv("LLM_PROVIDER", "claude"))
    app.state.engine_config = get_engine_config()
    app.state.catalog = load_catalog()
    app.state.graph = build_graph(app.state.catalog, app.state.engine_config)
    logger.info(
        "Limits: ceiling=%gmg minor_overage=%.0f%% capsule=%gmg max_attempts=%d",
        app.state.engine_config.ceiling_mg,
        app.state.engine_config.minor_overage_fraction * 100,
        app.state.engine_config.capsule_capacity_mg,
        app.state.engine_config.max_attempts,
    )
    yield
    logger.info("Formula Agent shutting down")


# ── App ─────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Supplement Formula Agent",
    version="0.1.0",
    description="Validation and self-correction engine for agent-proposed supplement formulas",
    lifespan=lifespan,
)

# CORS — permissive for development, tighten for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request / Response Models ───────────────────────────────────────────────
class _Api(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidateRequest(_Api):
    """One candidate submission from the conversation layer."""

    candidate: dict[str, Any] = Field(..., description="FormulaCandidate JSON as emitted by the agent")
    attempt_number: int = Field(1, ge=1, description="1-based attempt counter owned by the caller")
    previous_version: int = Field(0, ge=0, description="Latest persisted formula version for this user")


class ValidateResponse(_Api):
    status: Literal["accepted", "rejected"]
    formula: Optional[dict[str, Any]] = None
    report: Optional[dict[str, Any]] = None
    feedback: Optional[str] = Field(None, description="Rendered message to append to the transcript")


class ConsultRequest(_Api):
    message: str = Field(..., min_length=1)
    previous_version: int = Field(0, ge=0)


class ConsultResponse(_Api):
    status: str
    reply: str
    formula: Optional[dict[str, Any]] = None
    report: Optional[dict[str, Any]] = None
    attempts: int


# ── Endpoints ───────────────────────────────────────────────────────────────
@app.post("/formulas/validate", response_model=ValidateResponse, response_model_by_alias=True)
async def validate_formula(body: ValidateRequest, request: Request):
    """
    Run the engine on one candidate.

    Business-rule failures come back as a 200 with status "rejected" and a
    report the caller feeds back to the agent. A malformed candidate is a
    hard failure (422) and is not retryable.
    """
    config = request.app.state.engine_config
    try:
        candidate = parse_candidate(body.candidate)
    except CandidateSchemaError as exc:
        logger.error("Schema error on attempt %d: %s", body.attempt_number, exc)
        raise HTTPException(status_code=422, detail=str(exc))

    outcome = coordinate(
        candidate,
        body.attempt_number,
        request.app.state.catalog,
        config,
        previous_version=body.previous_version,
    )

    if isinstance(outcome, AcceptedFormula):
        logger.info(
            "Accepted formula v%d: %gmg, %d capsules, trimmed=%s",
            outcome.version, outcome.total_mg, outcome.capsule_count, outcome.trimmed,
        )
        return ValidateResponse(status="accepted", formula=outcome.model_dump(mode="json", by_alias=True))

    logger.info("Rejected attempt %d: %s", body.attempt_number, outcome.codes)
    return ValidateResponse(
        status="rejected",
        report=outcome.model_dump(mode="json", by_alias=True),
        feedback=render_report(outcome, config.max_attempts),
    )


@app.post("/consult", response_model=ConsultResponse, response_model_by_alias=True)
async def consult(body: ConsultRequest, request: Request):
    """
    Run the agent correction loop for one user message.

    The agent proposes, the engine checks, rejected candidates are fed back
    as transcript messages until acceptance or the attempt cap.
    """
    config = request.app.state.engine_config
    logger.info("Consult request (%d chars, previous_version=%d)", len(body.message), body.previous_version)

    try:
        final_state = await request.app.state.graph.ainvoke(
            initial_state(body.message, previous_version=body.previous_version),
            config={"recursion_limit": recursion_limit(config)},
        )
    except Exception:
        logger.exception("Unexpected agent error")
        raise HTTPException(status_code=500, detail="Internal agent error")

    return ConsultResponse(
        status=final_state["status"],
        reply=final_state["final_message"],
        formula=final_state.get("accepted_formula"),
        report=final_state.get("last_report"),
        attempts=len(final_state.get("history", [])),
    )


@app.get("/catalog")
async def list_catalog(request: Request):
    """List every approved ingredient with its dose rule."""
    return [rule.model_dump(mode="json", by_alias=True) for rule in request.app.state.catalog]


@app.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "formula-agent",
        "llm_provider": os.getenv("LLM_PROVIDER", "claude"),
        "catalog_size": len(request.app.state.catalog),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
