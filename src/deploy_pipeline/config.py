# src/deploy_pipeline/config.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field          # Field stays in pydantic

class Settings(BaseSettings):
    """
    Central configuration for the pipeline orchestrator.

    Any field can be overridden via environment variables prefixed
    with  `DEPLOY_PIPELINE_`, e.g.

        export DEPLOY_PIPELINE_MAX_WORKERS=4
        deploy-pipeline run pipeline.yml --build-id 42

    See https://docs.pydantic.dev/latest/concepts/settings/ for details.
    """

    #  step execution
    default_timeout: float = Field(
        3600.0,
        gt=0,
        description="Per-step deadline (seconds) when neither step nor stage sets one.",
    )

    output_limit: int = Field(
        1024 * 1024,
        gt=0,
        description="Bytes of combined stdout/stderr kept per step (tail).",
    )

    kill_grace_seconds: float = Field(
        5.0,
        ge=0,
        description="Time between SIGTERM and SIGKILL when stopping a step.",
    )

    poll_interval: float = Field(0.05, gt=0)

    # scheduling
    max_workers: int = Field(
        1,
        ge=1,
        description="Stages run concurrently when > 1 and they share no dependency edge.",
    )

    # outputs
    artifacts_dir: Optional[Path] = Field(None)
    report_path: Optional[Path] = Field(None)

    log_level: str = Field("INFO")

    # pydantic-v2
    model_config = {"env_prefix": "deploy_pipeline_"}
