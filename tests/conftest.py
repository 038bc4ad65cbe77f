# tests/conftest.py

import sys

import pytest

from deploy_pipeline.config import Settings

PY = sys.executable


def py_step(code: str, **extra) -> dict:
    """Shell step running an inline Python snippet with the test interpreter."""
    return {"command": PY, "args": ["-c", code], **extra}


def touch_step(path, text: str = "x", **extra) -> dict:
    """Step appending *text* to *path*; lets tests count executions."""
    return py_step(f"open({str(path)!r}, 'a').write({text!r})", **extra)


@pytest.fixture
def settings() -> Settings:
    return Settings(poll_interval=0.01, kill_grace_seconds=1.0, default_timeout=30.0)
