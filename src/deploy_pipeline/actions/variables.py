# src/deploy_pipeline/actions/variables.py
"""
set_variable
============

Writes one or more variables into the execution context so later steps and
stages see them::

    - action: set_variable
      with:
        IMAGE_TAG: "registry.local/app:${BUILD_ID}"

Values are rendered against the context before being stored.
"""

from __future__ import annotations

import logging
import re
from typing import Dict

from pydantic import ConfigDict, RootModel, field_validator

from deploy_pipeline.actions.base import Action, ActionScope

log = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class _Assignments(RootModel[Dict[str, str]]):
    model_config = ConfigDict(frozen=True)

    @field_validator("root", mode="before")
    @classmethod
    def _stringify(cls, v):
        if isinstance(v, dict):
            return {k: _scalar(x) for k, x in v.items()}
        return v

    @field_validator("root")
    @classmethod
    def _check_names(cls, v):
        if not v:
            raise ValueError("set_variable needs at least one NAME: value pair")
        bad = [k for k in v if not _NAME_RE.match(k)]
        if bad:
            raise ValueError(f"invalid variable name(s): {', '.join(map(repr, bad))}")
        return v


def _scalar(x):
    if isinstance(x, bool):
        return "true" if x else "false"
    if isinstance(x, (int, float)):
        return str(x)
    return x


class SetVariable(Action):
    name = "set_variable"
    Params = _Assignments

    def run(self, params: _Assignments, scope: ActionScope) -> str:
        lines = []
        for key, raw in params.root.items():
            value = scope.context.render(raw)
            scope.context.set(key, value)
            lines.append(f"{key}={value}")
        log.info("[%s] set %s", scope.stage, ", ".join(params.root))
        return "\n".join(lines)
