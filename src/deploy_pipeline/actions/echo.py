# src/deploy_pipeline/actions/echo.py
from __future__ import annotations

import logging

from deploy_pipeline.actions.base import Action, ActionParams, ActionScope

log = logging.getLogger(__name__)


class _Message(ActionParams):
    message: str


class Echo(Action):
    """Log a rendered message; handy for notifications in post hooks."""

    name = "echo"
    Params = _Message

    def run(self, params: _Message, scope: ActionScope) -> str:
        text = scope.context.render(params.message)
        log.info("[%s] %s", scope.stage, text)
        return text
