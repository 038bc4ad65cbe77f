# src/deploy_pipeline/artifacts.py
"""
Artifact & report store
=======================

Append-only record of structured stage outputs (test summaries, scan
findings, produced image ids), keyed by build id so distinct runs never
collide. Records live in memory; ``save``/``load`` persist one JSON file per
build under a directory.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from deploy_pipeline.executor import utc_timestamp
from deploy_pipeline.types import Artifact

log = logging.getLogger(__name__)


def check_build_id(build_id: str) -> str:
    """Reject build ids that cannot be used as a file name inside the artifacts directory."""
    if not build_id:
        raise ValueError("build_id must be non-empty.")
    if build_id in (".", "..") or any(c in build_id for c in ("/", "\\", "\0")):
        raise ValueError(f"build_id {build_id!r} must not contain path separators or be '.'/'..'.")
    return build_id


class ArtifactStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, List[Artifact]] = {}

    def record(self, build_id: str, stage: str, kind: str, payload: Any) -> Artifact:
        check_build_id(build_id)
        art = Artifact(
            build_id=build_id,
            stage=stage,
            kind=kind,
            payload=payload,
            recorded_at=utc_timestamp(),
        )
        with self._lock:
            self._records.setdefault(build_id, []).append(art)
        log.debug("Recorded %s artifact for %s/%s", kind, build_id, stage)
        return art

    def query(
        self,
        build_id: str,
        stage: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> List[Artifact]:
        with self._lock:
            records = list(self._records.get(build_id, []))
        return [
            a for a in records
            if (stage is None or a.stage == stage) and (kind is None or a.kind == kind)
        ]

    def build_ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    # persistence

    def save(self, build_id: str, directory: Path) -> Path:
        """Write every record of *build_id* to ``directory/<build_id>.json`` atomically."""
        check_build_id(build_id)
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{build_id}.json"
        rows = [artifact_to_dict(a) for a in self.query(build_id)]

        fd, tmp = tempfile.mkstemp(dir=str(directory), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(rows, f, indent=2)
                f.write("\n")
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        log.info("Wrote %d artifacts → %s", len(rows), path)
        return path

    def load(self, build_id: str, directory: Path) -> List[Artifact]:
        """Append records previously saved for *build_id*; returns what was loaded."""
        check_build_id(build_id)
        path = Path(directory) / f"{build_id}.json"
        with open(path, "r", encoding="utf-8") as f:
            rows = json.load(f)
        loaded = [artifact_from_dict(r) for r in rows]
        with self._lock:
            self._records.setdefault(build_id, []).extend(loaded)
        return loaded


def artifact_to_dict(a: Artifact) -> Dict[str, Any]:
    return {
        "build_id": a.build_id,
        "stage": a.stage,
        "kind": a.kind,
        "payload": a.payload,
        "recorded_at": a.recorded_at,
    }


def artifact_from_dict(d: Dict[str, Any]) -> Artifact:
    return Artifact(
        build_id=d["build_id"],
        stage=d["stage"],
        kind=d["kind"],
        payload=d.get("payload"),
        recorded_at=d.get("recorded_at", ""),
    )
