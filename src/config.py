"""
config.py

Runtime settings and logging setup for the Workstream Scheduling &
Gate-Status Engine.

Every setting can be supplied through a WORKSTREAM_* environment variable:

    WORKSTREAM_AMBER_THRESHOLD_DAYS    float (days) at or below which open tasks are AMBER
    WORKSTREAM_PROGRESS_LAG_AMBER_PCT  progress shortfall (points) that turns a task AMBER
    WORKSTREAM_UNMET_CRITERIA_AMBER    open gates with unmet criteria are AMBER
    WORKSTREAM_WRITE_BACK              persist cached schedule fields after each computation
    WORKSTREAM_LOG_LEVEL               DEBUG / INFO / WARNING / ERROR
    WORKSTREAM_HOST, WORKSTREAM_PORT, WORKSTREAM_RELOAD   uvicorn options
    WORKSTREAM_SEED_DEMO               seed a demo strategy on startup
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "WORKSTREAM_"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class Settings(BaseModel):
    amber_threshold_days: int = Field(default=3, ge=0)
    progress_lag_amber_pct: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    unmet_criteria_amber: bool = False
    write_back: bool = True

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    reload: bool = False
    seed_demo: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from WORKSTREAM_* variables; unset or empty ones keep their default."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        return cls.model_validate(values)


def configure_logging(level: str = "INFO") -> None:
    """Send all records to stdout in a single format.  Safe to call twice."""
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers:
        if getattr(handler, "_workstream", False):
            handler.setLevel(level)
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
    handler.setLevel(level)
    handler._workstream = True
    root.addHandler(handler)

    logging.getLogger(__name__).info("Logging initialized at %s", level)
