# src/deploy_pipeline/actions/report.py
"""
publish_report
==============

Reads a report file written by an external tool (test runner, scanner) and
records it as an artifact, independent of the step log text.

Formats
-------
* ``json``  : the parsed document becomes the payload
* ``junit`` : JUnit XML, summarised to ``tests / failures / errors / skipped``
  plus the names of failing test cases
* ``text``  : ``{"path": ..., "content": ...}``

``allow_missing: true`` turns a missing file into a no-op instead of an
error (tools that write nothing when there is nothing to report).
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from deploy_pipeline.actions.base import Action, ActionParams, ActionScope
from deploy_pipeline.errors import ActionError

log = logging.getLogger(__name__)


class _ReportParams(ActionParams):
    path: str
    kind: str = "report"
    format: Literal["json", "junit", "text"] = "json"
    allow_missing: bool = False


class PublishReport(Action):
    name = "publish_report"
    Params = _ReportParams

    def run(self, params: _ReportParams, scope: ActionScope) -> str:
        path = scope.resolve(scope.context.render(params.path))
        if not path.is_file():
            if params.allow_missing:
                log.info("[%s] report %s not found; nothing published", scope.stage, path)
                return f"no report at {path}"
            raise ActionError(f"Report file not found: {path}")

        try:
            if params.format == "json":
                payload = json.loads(path.read_text(encoding="utf-8"))
            elif params.format == "junit":
                payload = summarise_junit(path)
            else:
                payload = {"path": str(path), "content": path.read_text(encoding="utf-8")}
        except (OSError, ValueError, ET.ParseError) as e:
            raise ActionError(f"Cannot read {params.format} report {path}: {e}") from e

        scope.store.record(scope.build_id, scope.stage, params.kind, payload)
        return f"published {params.kind} from {path}"


def summarise_junit(path: Path) -> Dict[str, Any]:
    root = ET.parse(path).getroot()
    suites = [root] if root.tag == "testsuite" else root.findall("testsuite")

    totals = {"tests": 0, "failures": 0, "errors": 0, "skipped": 0}
    failed = []
    for suite in suites:
        for case in suite.iter("testcase"):
            totals["tests"] += 1
            outcome: Optional[str] = None
            for child in case:
                if child.tag in ("failure", "error", "skipped"):
                    outcome = child.tag
                    break
            if outcome == "failure":
                totals["failures"] += 1
            elif outcome == "error":
                totals["errors"] += 1
            elif outcome == "skipped":
                totals["skipped"] += 1
            if outcome in ("failure", "error"):
                failed.append(f"{case.get('classname', '')}.{case.get('name', '')}".lstrip("."))

    totals["failed_cases"] = failed
    return totals
