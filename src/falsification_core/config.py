# falsification_core/config.py
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "BRENNER_"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CoreSettings(BaseModel):
    """Tunables of the core. Defaults match the scoring rules of the commitment protocol."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    amendment_penalty: int = Field(default=5, ge=0, le=100)
    amended_prediction_penalty: int = Field(default=10, ge=0, le=100)
    robustness_floor: float = Field(default=0.5, ge=0.0, le=1.0)
    session_dir: Path = Path("artifacts/sessions")
    log_level: str = "WARNING"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            level = value.strip().upper()
            if not isinstance(logging.getLevelName(level), int):
                raise ValueError(f"unknown log level: {value}")
            return level
        return value


def load_settings(environ: Mapping[str, str] | None = None) -> CoreSettings:
    """Build settings from BRENNER_* variables, e.g. BRENNER_AMENDMENT_PENALTY=3."""
    env = os.environ if environ is None else environ
    raw: dict[str, str] = {}
    for name in CoreSettings.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in env and env[key] != "":
            raw[name] = env[key]
    return CoreSettings.model_validate(raw)


@lru_cache(maxsize=1)
def get_settings() -> CoreSettings:
    return load_settings()


def configure_logging(level: str | int | None = None) -> None:
    """For hosts and scripts; the library itself never installs handlers."""
    resolved = level if level is not None else get_settings().log_level
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
