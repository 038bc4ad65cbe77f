# src/deploy_pipeline/errors.py
from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the orchestrator."""


class DefinitionError(PipelineError):
    """The pipeline document is malformed; raised before any stage runs."""


class ExecutionError(PipelineError):
    """A step could not be started at all."""


class SpawnError(ExecutionError):
    """Binary missing, not executable, or working directory unusable."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"Cannot start {command!r}: {reason}")
        self.command = command
        self.reason = reason


class ActionError(PipelineError):
    """An internal action failed."""


class VariableNotFound(KeyError):
    """Lookup of a context variable that was never set."""
