"""
Engine configuration — the limits the caller injects into the engine.

Values come from the environment (a .env file is loaded by the entry
points). The engine itself never reads the environment; it receives an
EngineConfig as a plain parameter.
"""

import os

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CEILING_MG = 5500.0
DEFAULT_MINOR_OVERAGE_FRACTION = 0.15
DEFAULT_CAPSULE_CAPACITY_MG = 550.0
DEFAULT_MAX_ATTEMPTS = 3


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    ceiling_mg: float = Field(DEFAULT_CEILING_MG, gt=0)
    minor_overage_fraction: float = Field(DEFAULT_MINOR_OVERAGE_FRACTION, ge=0, lt=1)
    capsule_capacity_mg: float = Field(DEFAULT_CAPSULE_CAPACITY_MG, gt=0)
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc


def get_engine_config() -> EngineConfig:
    """Build the EngineConfig from FORMULA_* environment variables."""
    return EngineConfig(
        ceiling_mg=_env_number("FORMULA_CEILING_MG", DEFAULT_CEILING_MG, float),
        minor_overage_fraction=_env_number(
            "FORMULA_MINOR_OVERAGE_FRACTION", DEFAULT_MINOR_OVERAGE_FRACTION, float
        ),
        capsule_capacity_mg=_env_number("FORMULA_CAPSULE_CAPACITY_MG", DEFAULT_CAPSULE_CAPACITY_MG, float),
        max_attempts=_env_number("FORMULA_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, int),
    )
