# src/deploy_pipeline/__init__.py
"""
Top-level package API.

* Core objects: Pipeline, PipelineRunner, Settings, ExecutionContext,
  ArtifactStore, CommandExecutor
* Definition loading: load_definition, parse_definition
* Result types: PipelineResult, StageResult, StepResult and their enums
"""

from .artifacts import ArtifactStore
from .config import Settings
from .context import ExecutionContext
from .definition import PipelineDefinition, load_definition, parse_definition
from .errors import (
    ActionError,
    DefinitionError,
    ExecutionError,
    PipelineError,
    SpawnError,
    VariableNotFound,
)
from .executor import CommandExecutor
from .pipeline import Pipeline
from .runner import ExitCode, PipelineRunner
from .types import (
    Artifact,
    HookTrigger,
    Outcome,
    PipelineResult,
    SkipReason,
    StageResult,
    StepResult,
    StepStatus,
)

__all__ = [
    # core
    "Pipeline",
    "PipelineRunner",
    "Settings",
    "ExecutionContext",
    "ArtifactStore",
    "CommandExecutor",
    "PipelineDefinition",
    "load_definition",
    "parse_definition",
    "ExitCode",
    # results
    "Artifact",
    "HookTrigger",
    "Outcome",
    "PipelineResult",
    "SkipReason",
    "StageResult",
    "StepResult",
    "StepStatus",
    # errors
    "PipelineError",
    "DefinitionError",
    "ExecutionError",
    "SpawnError",
    "ActionError",
    "VariableNotFound",
]
