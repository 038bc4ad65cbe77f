# src/deploy_pipeline/cli.py
import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer

from deploy_pipeline.artifacts import check_build_id
from deploy_pipeline.config import Settings
from deploy_pipeline.definition import load_definition
from deploy_pipeline.errors import DefinitionError
from deploy_pipeline.report import summary_lines
from deploy_pipeline.runner import ExitCode, PipelineRunner
from deploy_pipeline.types import Outcome

settings = Settings()
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")
app = typer.Typer(add_completion=False, help="Run declarative multi-stage deployment pipelines.")

OUTCOME_COLOURS = {
    Outcome.SUCCEEDED: typer.colors.GREEN,
    Outcome.FAILED: typer.colors.RED,
    Outcome.SKIPPED: typer.colors.YELLOW,
    Outcome.ABORTED: typer.colors.MAGENTA,
}

# helpers

def _parse_vars(values: Optional[List[str]]) -> Dict[str, str]:
    parsed: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {item!r}")
        parsed[key] = value
    return parsed


def _check_build_id(value: str) -> str:
    try:
        return check_build_id(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


# CLI

@app.command()
def run(
    definition: Path = typer.Argument(..., help="Pipeline document (YAML, or JSON by .json suffix)"),
    build_id: str = typer.Option(..., "--build-id", callback=_check_build_id,
                                  help="Identifier of this run; keys artifacts and reports"),
    var: Optional[List[str]] = typer.Option(None, "--var", help="KEY=VALUE seeded into the context (repeatable)"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write the JSON run report here"),
    artifacts_dir: Optional[Path] = typer.Option(None, "--artifacts-dir", help="Persist artifacts as <dir>/<build-id>.json"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Run independent stages concurrently"),
):
    """Execute DEFINITION and exit 0 on success, 1 on stage failure, 2 on a bad definition."""
    variables = _parse_vars(var)

    overrides = {}
    if report is not None:
        overrides["report_path"] = report
    if artifacts_dir is not None:
        overrides["artifacts_dir"] = artifacts_dir
    if workers is not None:
        overrides["max_workers"] = workers
    cfg = settings.model_copy(update=overrides)

    runner = PipelineRunner(cfg)
    code = runner.run(definition, build_id, variables)

    if code is ExitCode.DEFINITION_ERROR:
        typer.secho(f"\n Invalid pipeline definition: {runner.error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(int(code))

    result = runner.result
    typer.echo("")
    lines = summary_lines(result)
    for stage, line in zip(result.stages, lines):
        typer.secho(f" {line}", fg=OUTCOME_COLOURS[stage.outcome])
    typer.secho(f" {lines[-1]}", fg=OUTCOME_COLOURS[result.outcome], bold=True)
    raise typer.Exit(int(code))


@app.command()
def validate(
    definition: Path = typer.Argument(..., help="Pipeline document to check"),
):
    """Load DEFINITION, check its stage graph and print the execution order."""
    try:
        pipeline_def = load_definition(definition)
    except DefinitionError as e:
        typer.secho(f"Invalid pipeline definition: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(int(ExitCode.DEFINITION_ERROR))

    for i, name in enumerate(pipeline_def.order(), start=1):
        stage = pipeline_def.stage(name)
        after = f"  (after {', '.join(stage.depends_on)})" if stage.depends_on else ""
        typer.echo(f"{i:>2}. {name}{after}")
    typer.secho(f"\n Pipeline {pipeline_def.name!r} is valid", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
