# src/deploy_pipeline/runner.py
from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from enum import IntEnum
from pathlib import Path
from typing import Iterator, Mapping, Optional

from deploy_pipeline.artifacts import ArtifactStore
from deploy_pipeline.config import Settings
from deploy_pipeline.context import ExecutionContext
from deploy_pipeline.definition import PipelineDefinition, load_definition
from deploy_pipeline.errors import DefinitionError
from deploy_pipeline.executor import CommandExecutor
from deploy_pipeline.pipeline import Pipeline
from deploy_pipeline.report import dump_report
from deploy_pipeline.types import Outcome, PipelineResult

log = logging.getLogger(__name__)


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    DEFINITION_ERROR = 2
    ABORTED = 130


def exit_code_for(outcome: Outcome) -> ExitCode:
    if outcome is Outcome.SUCCEEDED:
        return ExitCode.SUCCESS
    if outcome is Outcome.ABORTED:
        return ExitCode.ABORTED
    return ExitCode.FAILURE


class PipelineRunner:
    """
    Entry point used by the CLI: load a definition, seed the context, run
    the engine and translate the result into a process exit code.

    Context seeding order (later wins): definition ``environment``,
    ``BUILD_ID``, caller variables.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        executor: Optional[CommandExecutor] = None,
        store: Optional[ArtifactStore] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.executor = executor or CommandExecutor.from_settings(self.settings)
        self.store = store if store is not None else ArtifactStore()
        self.result: Optional[PipelineResult] = None
        self.error: Optional[DefinitionError] = None
        self._pipeline: Optional[Pipeline] = None

    def run(self, definition_path: Path, build_id: str,
            variables: Optional[Mapping[str, str]] = None) -> ExitCode:
        try:
            definition = load_definition(definition_path)
        except DefinitionError as e:
            log.error("%s", e)
            self.error = e
            return ExitCode.DEFINITION_ERROR
        self.result = self.execute(definition, build_id, variables)
        return exit_code_for(self.result.outcome)

    def execute(self, definition: PipelineDefinition, build_id: str,
                variables: Optional[Mapping[str, str]] = None) -> PipelineResult:
        ctx = ExecutionContext(definition.environment)
        ctx.set("BUILD_ID", build_id)
        if variables:
            ctx.update(variables)

        self._pipeline = Pipeline(definition, executor=self.executor,
                                  store=self.store, settings=self.settings)
        with self._cancel_on_signals(self._pipeline):
            result = self._pipeline(ctx, build_id)

        if self.settings.report_path is not None:
            dump_report(result, self.settings.report_path)
            log.info("Report written → %s", self.settings.report_path)
        if self.settings.artifacts_dir is not None:
            self.store.save(build_id, self.settings.artifacts_dir)
        return result

    def cancel(self) -> None:
        if self._pipeline is not None:
            self._pipeline.cancel()

    @staticmethod
    @contextmanager
    def _cancel_on_signals(pipeline: Pipeline) -> Iterator[None]:
        # signal handlers can only be installed from the main thread
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def handler(signum, frame):
            log.warning("Received %s", signal.Signals(signum).name)
            pipeline.cancel()

        previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            yield
        finally:
            for sig, old in previous.items():
                signal.signal(sig, old)
