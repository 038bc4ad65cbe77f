# src/deploy_pipeline/pipeline.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_when_event_set,
)

from deploy_pipeline.actions import ACTIONS, ActionScope
from deploy_pipeline.artifacts import ArtifactStore, check_build_id
from deploy_pipeline.config import Settings
from deploy_pipeline.context import ExecutionContext
from deploy_pipeline.definition import (
    ActionStep,
    PipelineDefinition,
    ShellStep,
    StageDefinition,
    Step,
)
from deploy_pipeline.errors import ActionError, SpawnError
from deploy_pipeline.executor import CommandExecutor, utc_timestamp
from deploy_pipeline.types import (
    Outcome,
    PipelineResult,
    SkipReason,
    StageResult,
    StepResult,
    StepStatus,
)

log = logging.getLogger(__name__)

STAGE_SUMMARY = "stage-summary"


class Pipeline:
    """
    Execution engine: walk the stage graph of a ``PipelineDefinition`` in
    dependency order, sharing one ``ExecutionContext`` across all stages.

    * a stage runs only once all of its dependencies SUCCEEDED
    * the first failing step ends its stage; later steps never start
    * post hooks run as soon as a stage's own steps finish, whatever the
      outcome, and their failures never change that outcome
    * ``cancel()`` kills the running child processes, lets in-flight stages
      run their ``always`` hooks and skips everything not yet started
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        executor: Optional[CommandExecutor] = None,
        store: Optional[ArtifactStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.definition = definition
        self.settings = settings or Settings()
        self.executor = executor or CommandExecutor.from_settings(self.settings)
        self.store = store if store is not None else ArtifactStore()
        self._cancel = threading.Event()

    def cancel(self) -> None:
        if not self._cancel.is_set():
            log.warning("Cancellation requested; stopping running steps.")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def __call__(self, ctx: ExecutionContext, build_id: str) -> PipelineResult:
        check_build_id(build_id)
        order = self.definition.order()
        start = time.perf_counter()

        if self.settings.max_workers > 1 and len(order) > 1:
            results = self._run_parallel(order, ctx, build_id)
        else:
            results = self._run_sequential(order, ctx, build_id)

        stages = [results[name] for name in order]
        outcome = overall_outcome(stages)
        elapsed = time.perf_counter() - start
        log.info("Pipeline %s finished %s in %.2f s", self.definition.name, outcome.value, elapsed)
        return PipelineResult(
            build_id=build_id,
            outcome=outcome,
            stages=stages,
            duration=elapsed,
            artifacts=self.store.query(build_id),
        )

    # scheduling

    def _run_sequential(self, order: List[str], ctx: ExecutionContext, build_id: str) -> Dict[str, StageResult]:
        results: Dict[str, StageResult] = {}
        for name in order:
            stage = self.definition.stage(name)
            deps = {d: results[d] for d in stage.depends_on}
            results[name] = self._run_stage(stage, deps, ctx, build_id)
        return results

    def _run_parallel(self, order: List[str], ctx: ExecutionContext, build_id: str) -> Dict[str, StageResult]:
        results: Dict[str, StageResult] = {}
        pending = list(order)
        running: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=self.settings.max_workers,
                                thread_name_prefix="stage") as pool:
            while pending or running:
                for name in list(pending):
                    stage = self.definition.stage(name)
                    if all(d in results for d in stage.depends_on):
                        pending.remove(name)
                        deps = {d: results[d] for d in stage.depends_on}
                        running[pool.submit(self._run_stage, stage, deps, ctx, build_id)] = name
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for fut in done:
                    name = running.pop(fut)
                    results[name] = fut.result()
        return results

    # stages

    def _skip_reason(self, stage: StageDefinition, deps: Mapping[str, StageResult],
                     ctx: ExecutionContext) -> Optional[SkipReason]:
        if self._cancel.is_set():
            return SkipReason.ABORTED

        failed = [r for r in deps.values()
                  if r.outcome in (Outcome.FAILED, Outcome.ABORTED)
                  or r.skip_reason in (SkipReason.DEPENDENCY_FAILED, SkipReason.ABORTED)]
        if failed and not stage.continue_on_dependency_failure:
            return SkipReason.DEPENDENCY_FAILED
        if any(r.skipped_by_design for r in deps.values()):
            return SkipReason.DEPENDENCY_SKIPPED
        if stage.when is not None and not stage.when.holds(ctx):
            return SkipReason.CONDITION
        return None

    def _run_stage(self, stage: StageDefinition, deps: Mapping[str, StageResult],
                   ctx: ExecutionContext, build_id: str) -> StageResult:
        name = stage.name
        reason = self._skip_reason(stage, deps, ctx)
        if reason is not None:
            log.info("↷ Skipping stage %s (%s)", name, reason.value)
            return StageResult(name=name, outcome=Outcome.SKIPPED, skip_reason=reason)

        log.info("▶️  Running stage: %s", name)
        start = time.perf_counter()
        try:
            outcome, step_results = self._run_steps(stage, ctx, build_id)
        except Exception:  # noqa: BLE001  (we re-raise after cleanup)
            log.exception("Stage %s raised an exception", name)
            self._run_hooks(stage, Outcome.FAILED, ctx, build_id)
            raise
        hook_results = self._run_hooks(stage, outcome, ctx, build_id)
        elapsed = time.perf_counter() - start

        result = StageResult(
            name=name,
            outcome=outcome,
            steps=step_results,
            hooks=hook_results,
            duration=elapsed,
        )
        self.store.record(build_id, name, STAGE_SUMMARY, {
            "outcome": outcome.value,
            "duration": round(elapsed, 3),
            "steps": [
                {"name": s.name, "status": s.status.value, "exit_code": s.exit_code, "attempts": s.attempts}
                for s in step_results
            ],
        })
        log.info("Finished %s (%s) in %.2f s", name, outcome.value, elapsed)
        return result

    def _run_steps(self, stage: StageDefinition, ctx: ExecutionContext, build_id: str):
        results: List[StepResult] = []
        for step in stage.steps:
            if self._cancel.is_set():
                return Outcome.ABORTED, results
            res = self._run_step(step, stage, ctx, build_id, self._cancel)
            results.append(res)
            if res.status is StepStatus.CANCELLED:
                return Outcome.ABORTED, results
            if not res.ok:
                log.error("Stage %s: step %r failed (%s, exit code %s)",
                          stage.name, res.name, res.status.value, res.exit_code)
                return Outcome.FAILED, results
        return Outcome.SUCCEEDED, results

    def _run_hooks(self, stage: StageDefinition, outcome: Outcome,
                   ctx: ExecutionContext, build_id: str) -> List[StepResult]:
        results: List[StepResult] = []
        for step in stage.hooks_for(outcome):
            try:
                # hooks are cleanup: they run even after cancel()
                res = self._run_step(step, stage, ctx, build_id, cancel=None)
            except Exception as e:  # noqa: BLE001  (hook errors never escape the hook)
                log.exception("Post hook %r of stage %s raised", step.label, stage.name)
                res = StepResult(name=step.label, status=StepStatus.ACTION_FAILED,
                                 output=str(e), started_at=utc_timestamp())
            if not res.ok:
                log.warning("Post hook %r of stage %s failed (%s); stage outcome stays %s",
                            res.name, stage.name, res.status.value, outcome.value)
            results.append(res)
        return results

    # steps

    def _run_step(self, step: Step, stage: StageDefinition, ctx: ExecutionContext,
                  build_id: str, cancel: Optional[threading.Event]) -> StepResult:
        policy = step.retry
        attempts = 0

        def attempt() -> StepResult:
            nonlocal attempts
            attempts += 1
            res = self._attempt(step, stage, ctx, build_id, cancel)
            res.attempts = attempts
            return res

        def before_sleep(state: RetryCallState) -> None:
            res = state.outcome.result()
            log.warning("Step %r failed (%s); retry %d/%d in %.1f s", res.name, res.status.value,
                        state.attempt_number + 1, policy.max_attempts, state.next_action.sleep)

        stop = stop_after_attempt(policy.max_attempts)
        if cancel is not None:
            stop = stop | stop_when_event_set(cancel)
        retryer = Retrying(
            stop=stop,
            wait=policy.wait_strategy(),
            retry=retry_if_result(lambda r: not r.ok and r.status is not StepStatus.CANCELLED),
            # a cancel() during the backoff ends the pause early
            sleep=cancel.wait if cancel is not None else time.sleep,
            before_sleep=before_sleep,
            retry_error_callback=lambda state: state.outcome.result(),
            reraise=True,
        )
        return retryer(attempt)

    def _attempt(self, step: Step, stage: StageDefinition, ctx: ExecutionContext,
                 build_id: str, cancel: Optional[threading.Event]) -> StepResult:
        if cancel is not None and cancel.is_set():
            return StepResult(name=step.label, status=StepStatus.CANCELLED, started_at=utc_timestamp())
        try:
            if isinstance(step, ShellStep):
                return self._run_shell(step, stage, ctx, cancel)
            return self._run_action(step, stage, ctx, build_id)
        except Exception as e:  # noqa: BLE001  (a broken step fails its stage, not the run)
            log.exception("Stage %s: step %r raised", stage.name, step.label)
            status = StepStatus.SPAWN_ERROR if isinstance(step, ShellStep) else StepStatus.ACTION_FAILED
            return StepResult(name=step.label, status=status, output=f"{type(e).__name__}: {e}",
                              started_at=utc_timestamp())

    def _run_shell(self, step: ShellStep, stage: StageDefinition, ctx: ExecutionContext,
                   cancel: Optional[threading.Event]) -> StepResult:
        env = dict(ctx.snapshot())
        env.update({k: ctx.render(v) for k, v in stage.environment.items()})
        env.update({k: ctx.render(v) for k, v in step.env.items()})
        working_dir = Path(ctx.render(str(step.working_dir))) if step.working_dir else None
        timeout = step.timeout or stage.timeout or self.settings.default_timeout

        try:
            res = self.executor.run(
                ctx.render(step.command),
                [ctx.render(a) for a in step.args],
                env=env,
                working_dir=working_dir,
                timeout=timeout,
                cancel=cancel,
                name=step.label,
            )
        except SpawnError as e:
            log.error("Stage %s: %s", stage.name, e)
            return StepResult(name=step.label, status=StepStatus.SPAWN_ERROR,
                              output=str(e), started_at=utc_timestamp())

        if res.ok and step.capture_as:
            ctx.set(step.capture_as, res.output.strip())
        return res

    def _run_action(self, step: ActionStep, stage: StageDefinition,
                    ctx: ExecutionContext, build_id: str) -> StepResult:
        working_dir = Path(ctx.render(str(step.working_dir))) if step.working_dir else None
        scope = ActionScope(context=ctx, store=self.store, build_id=build_id,
                            stage=stage.name, working_dir=working_dir)
        started_at = utc_timestamp()
        start = time.perf_counter()
        try:
            output = ACTIONS[step.action]().execute(step.params, scope)
            status = StepStatus.SUCCEEDED
        except ActionError as e:
            log.error("Stage %s: %s", stage.name, e)
            output, status = str(e), StepStatus.ACTION_FAILED
        return StepResult(
            name=step.label,
            status=status,
            output=output,
            duration=time.perf_counter() - start,
            started_at=started_at,
        )


def overall_outcome(stages: List[StageResult]) -> Outcome:
    if any(s.outcome is Outcome.ABORTED or s.skip_reason is SkipReason.ABORTED for s in stages):
        return Outcome.ABORTED
    if any(s.outcome is Outcome.FAILED or s.skip_reason is SkipReason.DEPENDENCY_FAILED for s in stages):
        return Outcome.FAILED
    return Outcome.SUCCEEDED
