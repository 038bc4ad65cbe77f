# src/deploy_pipeline/actions/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError

from deploy_pipeline.artifacts import ArtifactStore
from deploy_pipeline.context import ExecutionContext
from deploy_pipeline.errors import ActionError


@dataclass
class ActionScope:
    """What an internal action may touch while it runs."""

    context: ExecutionContext
    store: ArtifactStore
    build_id: str
    stage: str
    working_dir: Optional[Path] = None

    def resolve(self, path: str) -> Path:
        p = Path(path)
        if not p.is_absolute() and self.working_dir is not None:
            p = self.working_dir / p
        return p


class ActionParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class Action(ABC):
    """Abstract base class for every internal (non-process) step."""

    name: ClassVar[str]
    Params: ClassVar[Type[BaseModel]] = ActionParams

    @classmethod
    def validate_params(cls, raw: Dict[str, Any]) -> BaseModel:
        return cls.Params.model_validate(raw)

    def execute(self, raw: Dict[str, Any], scope: ActionScope) -> str:
        try:
            params = self.validate_params(raw)
        except ValidationError as e:
            raise ActionError(f"{self.name}: invalid parameters: {e}") from e
        return self.run(params, scope)

    @abstractmethod
    def run(self, params: Any, scope: ActionScope) -> str:
        """Perform the action; return a line of output for the step log."""


def render_value(value: Any, context: ExecutionContext) -> Any:
    """Apply ``${VAR}`` rendering to every string inside *value*."""
    if isinstance(value, str):
        return context.render(value)
    if isinstance(value, dict):
        return {k: render_value(v, context) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_value(v, context) for v in value]
    return value
