# tests/test_runner.py

import json

import pytest
import yaml
from typer.testing import CliRunner

from conftest import py_step
from deploy_pipeline.cli import app
from deploy_pipeline.runner import ExitCode, PipelineRunner, exit_code_for
from deploy_pipeline.types import Outcome

cli = CliRunner()


def _write(tmp_path, test_step, name="pipeline.yml"):
    doc = {
        "name": "web-app",
        "environment": {"REGION": "eu-west-1", "TARGET": "staging"},
        "stages": [
            {"name": "build", "steps": [py_step(
                "import os; print('app:' + os.environ['BUILD_ID'])", capture_as="IMAGE_ID")]},
            {"name": "test", "depends_on": ["build"], "steps": [test_step],
             "post": [{"trigger": "always", "steps": [
                 {"action": "record_artifact", "with": {"kind": "cleanup", "payload": "${IMAGE_ID}"}},
             ]}]},
            {"name": "deploy", "depends_on": ["test"], "steps": [py_step(
                "import os; print(os.environ['TARGET'], os.environ['IMAGE_ID'])", capture_as="DEPLOYED")]},
        ],
    }
    path = tmp_path / name
    path.write_text(yaml.safe_dump(doc))
    return path


PASS = py_step("pass")
FAIL = py_step("raise SystemExit(1)")


def test_exit_code_mapping():
    assert exit_code_for(Outcome.SUCCEEDED) == 0
    assert exit_code_for(Outcome.FAILED) == 1
    assert exit_code_for(Outcome.ABORTED) == 130


def test_runner_success(settings, tmp_path):
    runner = PipelineRunner(settings)
    code = runner.run(_write(tmp_path, PASS), "42", {"TARGET": "prod"})

    assert code is ExitCode.SUCCESS
    assert runner.result.outcome is Outcome.SUCCEEDED
    deploy = runner.result.stage("deploy").steps[0]
    # caller variables override definition environment
    assert deploy.output.strip() == "prod app:42"
    cleanup = runner.store.query("42", kind="cleanup")
    assert [a.payload for a in cleanup] == ["app:42"]


def test_runner_stage_failure(settings, tmp_path):
    runner = PipelineRunner(settings)
    code = runner.run(_write(tmp_path, FAIL), "43")

    assert code is ExitCode.FAILURE
    assert runner.result.stage("deploy").outcome is Outcome.SKIPPED
    # always hook of the failed stage still ran
    assert len(runner.store.query("43", stage="test", kind="cleanup")) == 1


def test_runner_definition_error(settings, tmp_path):
    bad = tmp_path / "bad.yml"
    bad.write_text("stages:\n  - name: deploy\n    depends_on: [build]\n")
    runner = PipelineRunner(settings)

    assert runner.run(bad, "1") is ExitCode.DEFINITION_ERROR
    assert runner.result is None
    assert "build" in str(runner.error)


def test_runner_writes_report_and_artifacts(settings, tmp_path):
    cfg = settings.model_copy(update={
        "report_path": tmp_path / "report.json",
        "artifacts_dir": tmp_path / "artifacts",
    })
    PipelineRunner(cfg).run(_write(tmp_path, PASS), "44")

    report = json.loads((tmp_path / "report.json").read_text())
    assert report["build_id"] == "44"
    assert [s["outcome"] for s in report["stages"]] == ["SUCCEEDED"] * 3
    artifacts = json.loads((tmp_path / "artifacts" / "44.json").read_text())
    assert {a["kind"] for a in artifacts} == {"stage-summary", "cleanup"}


def test_cli_run_success(tmp_path):
    path = _write(tmp_path, PASS)
    result = cli.invoke(app, ["run", str(path), "--build-id", "7", "--var", "TARGET=qa"])
    assert result.exit_code == 0, result.output
    assert "deploy" in result.output
    assert "SUCCEEDED" in result.output


def test_cli_run_failure_exit_code(tmp_path):
    path = _write(tmp_path, FAIL)
    result = cli.invoke(app, ["run", str(path), "--build-id", "8"])
    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_cli_definition_error_exit_code(tmp_path):
    result = cli.invoke(app, ["run", str(tmp_path / "missing.yml"), "--build-id", "9"])
    assert result.exit_code == 2


@pytest.mark.parametrize("bad_var", ["NOVALUE", "=value"])
def test_cli_rejects_malformed_var(tmp_path, bad_var):
    path = _write(tmp_path, PASS)
    result = cli.invoke(app, ["run", str(path), "--build-id", "1", "--var", bad_var])
    assert result.exit_code == 2


def test_cli_writes_report(tmp_path):
    path = _write(tmp_path, PASS)
    report = tmp_path / "r.json"
    result = cli.invoke(app, ["run", str(path), "--build-id", "5", "--report", str(report), "--workers", "2"])
    assert result.exit_code == 0, result.output
    assert json.loads(report.read_text())["outcome"] == "SUCCEEDED"


def test_cli_validate(tmp_path):
    path = _write(tmp_path, PASS)
    result = cli.invoke(app, ["validate", str(path)])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].strip() == "1. build"
    assert "deploy" in lines[2] and "after test" in lines[2]


def test_cli_validate_rejects_bad_definition(tmp_path):
    bad = tmp_path / "bad.yml"
    bad.write_text("stages: []\n")
    result = cli.invoke(app, ["validate", str(bad)])
    assert result.exit_code == 2


@pytest.mark.parametrize("build_id", ["feature/123", "../x"])
def test_cli_rejects_build_id_that_is_not_a_file_name(tmp_path, build_id):
    path = _write(tmp_path, PASS)
    result = cli.invoke(app, ["run", str(path), "--build-id", build_id,
                              "--artifacts-dir", str(tmp_path / "artifacts")])
    assert result.exit_code == 2
    assert not (tmp_path / "artifacts").exists()
    assert not (tmp_path / "x.json").exists()
