# src/deploy_pipeline/actions/record.py
"""
record_artifact
===============

Stores a structured payload in the artifact store under the current build
and stage::

    - action: record_artifact
      with:
        kind: image
        payload:
          id: "${IMAGE_ID}"
          registry: ecr

Strings anywhere inside ``payload`` are rendered against the context.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field

from deploy_pipeline.actions.base import Action, ActionParams, ActionScope, render_value

log = logging.getLogger(__name__)


class _RecordParams(ActionParams):
    kind: str = Field(min_length=1)
    payload: Any = None


class RecordArtifact(Action):
    name = "record_artifact"
    Params = _RecordParams

    def run(self, params: _RecordParams, scope: ActionScope) -> str:
        payload = render_value(params.payload, scope.context)
        scope.store.record(scope.build_id, scope.stage, params.kind, payload)
        return f"recorded {params.kind} artifact"
