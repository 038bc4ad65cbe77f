# src/deploy_pipeline/report.py
"""
Run report
==========

Machine-readable summary of one pipeline run::

    {
      "build_id": "42",
      "outcome": "FAILED",
      "duration": 12.3,
      "stages": [
        {"name": "build", "outcome": "SUCCEEDED", "skip_reason": null,
         "duration": 8.1, "steps": [...], "hooks": [...]},
        ...
      ],
      "artifacts": [...]
    }

Stages keep execution (topological) order, so ``parse_report(dump_report(r))``
yields the same outcomes in the same order.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from deploy_pipeline.artifacts import artifact_from_dict, artifact_to_dict
from deploy_pipeline.types import (
    Outcome,
    PipelineResult,
    SkipReason,
    StageResult,
    StepResult,
    StepStatus,
)


def _step_to_dict(s: StepResult) -> Dict[str, Any]:
    return {
        "name": s.name,
        "status": s.status.value,
        "exit_code": s.exit_code,
        "duration": round(s.duration, 3),
        "started_at": s.started_at,
        "attempts": s.attempts,
        "truncated": s.truncated,
        "output": s.output,
    }


def _step_from_dict(d: Dict[str, Any]) -> StepResult:
    return StepResult(
        name=d["name"],
        status=StepStatus(d["status"]),
        exit_code=d.get("exit_code"),
        output=d.get("output", ""),
        truncated=d.get("truncated", False),
        duration=d.get("duration", 0.0),
        started_at=d.get("started_at", ""),
        attempts=d.get("attempts", 1),
    )


def result_to_dict(result: PipelineResult, include_output: bool = True) -> Dict[str, Any]:
    def steps(items: List[StepResult]) -> List[Dict[str, Any]]:
        rows = [_step_to_dict(s) for s in items]
        if not include_output:
            for r in rows:
                r.pop("output")
        return rows

    return {
        "build_id": result.build_id,
        "outcome": result.outcome.value,
        "duration": round(result.duration, 3),
        "stages": [
            {
                "name": s.name,
                "outcome": s.outcome.value,
                "skip_reason": s.skip_reason.value if s.skip_reason else None,
                "duration": round(s.duration, 3),
                "steps": steps(s.steps),
                "hooks": steps(s.hooks),
            }
            for s in result.stages
        ],
        "artifacts": [artifact_to_dict(a) for a in result.artifacts],
    }


def result_from_dict(d: Dict[str, Any]) -> PipelineResult:
    stages = [
        StageResult(
            name=s["name"],
            outcome=Outcome(s["outcome"]),
            skip_reason=SkipReason(s["skip_reason"]) if s.get("skip_reason") else None,
            steps=[_step_from_dict(x) for x in s.get("steps", [])],
            hooks=[_step_from_dict(x) for x in s.get("hooks", [])],
            duration=s.get("duration", 0.0),
        )
        for s in d["stages"]
    ]
    return PipelineResult(
        build_id=d["build_id"],
        outcome=Outcome(d["outcome"]),
        stages=stages,
        duration=d.get("duration", 0.0),
        artifacts=[artifact_from_dict(a) for a in d.get("artifacts", [])],
    )


def dump_report(result: PipelineResult, path: Optional[Path] = None,
                include_output: bool = True) -> str:
    text = json.dumps(result_to_dict(result, include_output), indent=2)
    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text + "\n", encoding="utf-8")
    return text


def parse_report(text: str) -> PipelineResult:
    return result_from_dict(json.loads(text))


def summary_lines(result: PipelineResult) -> List[str]:
    """One human-readable line per stage, then the overall outcome."""
    width = max((len(s.name) for s in result.stages), default=0)
    lines = []
    for s in result.stages:
        detail = f"({s.skip_reason.value})" if s.skip_reason else f"{s.duration:.2f} s"
        lines.append(f"{s.name.ljust(width)}  {s.outcome.value:<9}  {detail}")
    lines.append(f"{'pipeline'.ljust(width)}  {result.outcome.value:<9}  {result.duration:.2f} s")
    return lines
