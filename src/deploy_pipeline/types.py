# src/deploy_pipeline/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    NON_ZERO_EXIT = "non_zero_exit"
    TIMED_OUT = "timed_out"
    SPAWN_ERROR = "spawn_error"
    CANCELLED = "cancelled"
    ACTION_FAILED = "action_failed"


class Outcome(str, Enum):
    """Terminal state of a stage or of the whole run."""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    ABORTED = "ABORTED"


class SkipReason(str, Enum):
    CONDITION = "condition"
    DEPENDENCY_FAILED = "dependency_failed"
    DEPENDENCY_SKIPPED = "dependency_skipped"
    ABORTED = "aborted"


class HookTrigger(str, Enum):
    ALWAYS = "always"
    ON_SUCCESS = "success"
    ON_FAILURE = "failure"


@dataclass
class StepResult:
    """
    Outcome of one step invocation.

    ``exit_code`` is ``None`` when no process was started (spawn errors,
    internal actions). A killed process reports the negative signal number.
    ``output`` holds the combined stdout/stderr tail, capped by the executor.
    """

    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""
    truncated: bool = False
    duration: float = 0.0
    started_at: str = ""
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


@dataclass(frozen=True)
class StageResult:
    """Aggregate of a completed stage; never mutated after the stage ends."""

    name: str
    outcome: Outcome
    skip_reason: Optional[SkipReason] = None
    steps: List[StepResult] = field(default_factory=list)
    hooks: List[StepResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def skipped_by_design(self) -> bool:
        return self.outcome is Outcome.SKIPPED and self.skip_reason in (
            SkipReason.CONDITION,
            SkipReason.DEPENDENCY_SKIPPED,
        )


@dataclass(frozen=True)
class Artifact:
    """Structured result produced by a stage."""

    build_id: str
    stage: str
    kind: str
    payload: Any
    recorded_at: str = ""


@dataclass
class PipelineResult:
    build_id: str
    outcome: Outcome
    stages: List[StageResult] = field(default_factory=list)
    duration: float = 0.0
    artifacts: List[Artifact] = field(default_factory=list)

    def stage(self, name: str) -> StageResult:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)

    def outcomes(self) -> Dict[str, Outcome]:
        return {s.name: s.outcome for s in self.stages}
