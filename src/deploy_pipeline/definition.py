# src/deploy_pipeline/definition.py
"""
Pipeline definition
===================

Declarative document describing stages, their steps, dependency edges and
post hooks. Loaded once per run from YAML or JSON and frozen afterwards.

Example
-------
.. code-block:: yaml

    name: web-app
    environment:
      REGION: eu-west-1
    stages:
      - name: build
        steps:
          - command: mvn
            args: [-B, package, -DskipTests]
          - command: docker
            args: [build, -q, -t, "app:${BUILD_ID}", "."]
            capture_as: IMAGE_ID
      - name: test
        depends_on: [build]
        steps:
          - mvn -B test
        post:
          - trigger: always
            steps:
              - action: publish_report
                with: {path: target/surefire-reports/TEST-app.xml, format: junit}
      - name: deploy
        depends_on: [test]
        when: {variable: DEPLOY, equals: "true"}
        steps:
          - command: aws
            args: [ecs, update-service, --force-new-deployment]

A step given as a plain string is split with :func:`shlex.split` into
``command`` + ``args``; no shell is involved. A mapping without ``type`` is
an ``action`` step when it has an ``action`` key and a ``shell`` step
otherwise.
"""

from __future__ import annotations

import json
import logging
import shlex
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import yaml
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from tenacity import wait_exponential

from deploy_pipeline.actions import ACTIONS
from deploy_pipeline.context import ExecutionContext
from deploy_pipeline.errors import DefinitionError
from deploy_pipeline.types import HookTrigger, Outcome

log = logging.getLogger(__name__)

_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.\- ]*$"
_VAR_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

_FALSY = {"", "0", "false", "no", "off"}


def _scalar_str(v: Any) -> Any:
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    return v


def _stringify_map(v: Any) -> Any:
    if isinstance(v, Mapping):
        return {str(k): _scalar_str(x) for k, x in v.items()}
    return v


def _stringify_seq(v: Any) -> Any:
    if isinstance(v, (list, tuple)):
        return [_scalar_str(x) for x in v]
    return v


EnvMap = Annotated[Dict[str, str], BeforeValidator(_stringify_map)]
ArgList = Annotated[Tuple[str, ...], BeforeValidator(_stringify_seq)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RetryPolicy(_Frozen):
    """Explicit, bounded retry configuration attached to a step."""

    max_attempts: int = Field(1, ge=1, le=100)
    backoff_seconds: float = Field(0.0, ge=0)
    backoff_multiplier: float = Field(1.0, ge=1)

    def wait_strategy(self) -> wait_exponential:
        """Pause after the n-th failed attempt: ``backoff_seconds * backoff_multiplier ** (n - 1)``."""
        return wait_exponential(multiplier=self.backoff_seconds, exp_base=self.backoff_multiplier)


class ShellStep(_Frozen):
    type: Literal["shell"] = "shell"
    name: Optional[str] = None
    command: str = Field(min_length=1)
    args: ArgList = ()
    env: EnvMap = Field(default_factory=dict)
    working_dir: Optional[Path] = None
    timeout: Optional[float] = Field(None, gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    # stripped combined stdout+stderr of a successful run; keep diagnostics off stderr
    capture_as: Optional[str] = Field(None, pattern=_VAR_PATTERN)

    @property
    def label(self) -> str:
        return self.name or " ".join([self.command, *self.args])


class ActionStep(_Frozen):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    type: Literal["action"] = "action"
    name: Optional[str] = None
    action: str
    params: Dict[str, Any] = Field(default_factory=dict, alias="with")
    working_dir: Optional[Path] = None
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @model_validator(mode="after")
    def _known_action(self) -> "ActionStep":
        impl = ACTIONS.get(self.action)
        if impl is None:
            raise ValueError(
                f"unknown action {self.action!r} (known: {', '.join(sorted(ACTIONS))})"
            )
        # parameters are checked here so a bad document fails before any stage runs
        try:
            impl.validate_params(self.params)
        except ValidationError as e:
            raise ValueError(f"action {self.action!r}: {e}") from None
        return self

    @property
    def label(self) -> str:
        return self.name or self.action


def _normalise_step(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            parts = shlex.split(raw)
        except ValueError as e:
            raise ValueError(f"cannot split step {raw!r}: {e}") from e
        if not parts:
            raise ValueError("empty step string")
        return {"type": "shell", "command": parts[0], "args": parts[1:]}
    if isinstance(raw, Mapping) and "type" not in raw:
        return {"type": "action" if "action" in raw else "shell", **raw}
    return raw


Step = Annotated[Union[ShellStep, ActionStep], Field(discriminator="type")]


def _normalise_steps(v: Any) -> Any:
    if isinstance(v, (list, tuple)):
        return [_normalise_step(s) for s in v]
    return v


StepList = Annotated[Tuple[Step, ...], BeforeValidator(_normalise_steps)]


class Hook(_Frozen):
    trigger: HookTrigger
    steps: StepList = Field(min_length=1)

    def fires_on(self, outcome: Outcome) -> bool:
        if self.trigger is HookTrigger.ALWAYS:
            return True
        if self.trigger is HookTrigger.ON_SUCCESS:
            return outcome is Outcome.SUCCEEDED
        return outcome is Outcome.FAILED


class Condition(_Frozen):
    """``when`` clause: run the stage only if *variable* is set (and equals *equals*)."""

    variable: str = Field(pattern=_VAR_PATTERN)
    equals: Optional[str] = None

    @field_validator("equals", mode="before")
    @classmethod
    def _coerce_equals(cls, v):
        return _scalar_str(v)

    def holds(self, context: ExecutionContext) -> bool:
        value = context.get(self.variable, None)
        if value is None:
            return False
        if self.equals is None:
            return value.strip().lower() not in _FALSY
        return value == self.equals


class StageDefinition(_Frozen):
    name: str = Field(pattern=_NAME_PATTERN)
    depends_on: Tuple[str, ...] = ()
    steps: StepList = ()
    post: Tuple[Hook, ...] = ()
    when: Optional[Condition] = None
    environment: EnvMap = Field(default_factory=dict)
    timeout: Optional[float] = Field(None, gt=0)
    continue_on_dependency_failure: bool = False

    @field_validator("depends_on", mode="before")
    @classmethod
    def _single_dependency(cls, v):
        return (v,) if isinstance(v, str) else v

    def hooks_for(self, outcome: Outcome) -> List[Step]:
        """Hook steps to run for *outcome*, in declared order."""
        if outcome is Outcome.ABORTED:
            selected = [h for h in self.post if h.trigger is HookTrigger.ALWAYS]
        else:
            selected = [h for h in self.post if h.fires_on(outcome)]
        return [step for hook in selected for step in hook.steps]


class PipelineDefinition(_Frozen):
    name: str = "pipeline"
    environment: EnvMap = Field(default_factory=dict)
    stages: Tuple[StageDefinition, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_graph(self) -> "PipelineDefinition":
        seen: set = set()
        for stage in self.stages:
            if stage.name in seen:
                raise ValueError(f"duplicate stage name {stage.name!r}")
            for dep in stage.depends_on:
                if dep == stage.name:
                    raise ValueError(f"stage {stage.name!r} depends on itself")
                if dep not in seen:
                    raise ValueError(
                        f"stage {stage.name!r} depends on {dep!r}, "
                        "which is not defined before it"
                    )
            seen.add(stage.name)
        return self

    def stage(self, name: str) -> StageDefinition:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)

    def graph(self) -> Dict[str, Tuple[str, ...]]:
        return {s.name: s.depends_on for s in self.stages}

    def order(self) -> List[str]:
        return topological_order(self.graph())


def topological_order(graph: Mapping[str, Sequence[str]]) -> List[str]:
    """
    Kahn's algorithm over ``stage -> dependencies``.

    Ties are broken by the mapping's own order, so an already-consistent
    declaration order is returned unchanged.
    """
    names = list(graph)
    position = {n: i for i, n in enumerate(names)}
    for name, deps in graph.items():
        for dep in deps:
            if dep not in position:
                raise DefinitionError(f"Stage {name!r} depends on unknown stage {dep!r}")

    remaining = {n: len(set(graph[n])) for n in names}
    dependents: Dict[str, List[str]] = {n: [] for n in names}
    for name, deps in graph.items():
        for dep in set(deps):
            dependents[dep].append(name)

    ready = [n for n in names if remaining[n] == 0]
    order: List[str] = []
    while ready:
        ready.sort(key=position.__getitem__)
        node = ready.pop(0)
        order.append(node)
        for child in dependents[node]:
            remaining[child] -= 1
            if remaining[child] == 0:
                ready.append(child)

    if len(order) != len(names):
        stuck = sorted(n for n in names if n not in set(order))
        raise DefinitionError(f"Dependency cycle between stages: {', '.join(stuck)}")
    return order


# loading

def parse_definition(data: Any, source: str = "<definition>") -> PipelineDefinition:
    if not isinstance(data, Mapping):
        raise DefinitionError(f"{source}: top level must be a mapping, got {type(data).__name__}")
    try:
        return PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise DefinitionError(f"{source}: {e}") from e


def load_definition(path: Path) -> PipelineDefinition:
    """Read a YAML (or ``.json``) pipeline document from *path*."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionError(f"Cannot read pipeline definition {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise DefinitionError(f"{path}: not a valid document: {e}") from e

    definition = parse_definition(data, source=str(path))
    log.info("Loaded pipeline %r with %d stages from %s",
             definition.name, len(definition.stages), path)
    return definition
