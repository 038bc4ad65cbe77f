# tests/test_report.py

import json

from conftest import py_step
from deploy_pipeline.artifacts import ArtifactStore
from deploy_pipeline.context import ExecutionContext
from deploy_pipeline.definition import parse_definition
from deploy_pipeline.pipeline import Pipeline
from deploy_pipeline.report import dump_report, parse_report, summary_lines
from deploy_pipeline.types import Outcome, SkipReason, StepStatus


def _run(settings):
    definition = parse_definition({"stages": [
        {"name": "build", "steps": [py_step("print('built')")]},
        {"name": "test", "depends_on": ["build"], "steps": [py_step("raise SystemExit(2)")],
         "post": [{"trigger": "always", "steps": [py_step("pass")]}]},
        {"name": "deploy", "depends_on": ["test"], "steps": [py_step("pass")]},
        {"name": "notify", "when": {"variable": "SLACK"}, "steps": [py_step("pass")]},
    ]})
    return Pipeline(definition, store=ArtifactStore(), settings=settings)(ExecutionContext(), "77")


def test_report_round_trip_preserves_outcomes_and_order(settings):
    result = _run(settings)
    parsed = parse_report(dump_report(result))

    assert parsed.build_id == "77"
    assert parsed.outcome is result.outcome is Outcome.FAILED
    assert [(s.name, s.outcome, s.skip_reason) for s in parsed.stages] == [
        (s.name, s.outcome, s.skip_reason) for s in result.stages
    ]
    assert parsed.stage("deploy").skip_reason is SkipReason.DEPENDENCY_FAILED
    assert parsed.stage("notify").skip_reason is SkipReason.CONDITION

    test = parsed.stage("test")
    assert test.steps[0].status is StepStatus.NON_ZERO_EXIT
    assert test.steps[0].exit_code == 2
    assert test.hooks[0].status is StepStatus.SUCCEEDED
    assert [a.stage for a in parsed.artifacts] == ["build", "test"]


def test_report_is_written_to_path(settings, tmp_path):
    result = _run(settings)
    path = tmp_path / "out" / "report.json"
    dump_report(result, path, include_output=False)

    data = json.loads(path.read_text())
    assert data["outcome"] == "FAILED"
    assert [s["name"] for s in data["stages"]] == ["build", "test", "deploy", "notify"]
    assert "output" not in data["stages"][0]["steps"][0]


def test_summary_lines(settings):
    result = _run(settings)
    lines = summary_lines(result)
    assert len(lines) == len(result.stages) + 1
    assert "SKIPPED" in lines[2] and "dependency_failed" in lines[2]
    assert lines[-1].startswith("pipeline") and "FAILED" in lines[-1]
