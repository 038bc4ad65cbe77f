# src/deploy_pipeline/executor.py
"""
Command executor
================

Runs one external process and reports how it ended. The executor never
raises for a non-zero exit code; only failures to start the process at all
(binary missing, permission denied, bad working directory) raise
:class:`~deploy_pipeline.errors.SpawnError`.

stdout and stderr are merged and streamed into a buffer that keeps the last
``output_limit`` bytes. On timeout or cancellation the child's process group
receives SIGTERM, then SIGKILL after ``kill_grace_seconds``. Once the
command itself exits, anything it left running in its process group (a
``cmd &`` in a script, say) is stopped the same way, so a step never outlives
its own result.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Sequence

from deploy_pipeline.config import Settings
from deploy_pipeline.errors import SpawnError
from deploy_pipeline.types import StepResult, StepStatus

log = logging.getLogger(__name__)

_POSIX = os.name == "posix"
_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class _TailBuffer:
    """Byte buffer that keeps only the last *limit* bytes."""

    def __init__(self, limit: int):
        self.limit = limit
        self.truncated = False
        self._data = bytearray()

    def write(self, chunk: bytes) -> None:
        self._data += chunk
        overflow = len(self._data) - self.limit
        if overflow > 0:
            del self._data[:overflow]
            self.truncated = True

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


class CommandExecutor:
    """Spawn processes with merged env, capped output and a deadline."""

    def __init__(
        self,
        output_limit: int = 1024 * 1024,
        kill_grace_seconds: float = 5.0,
        poll_interval: float = 0.05,
    ):
        self.output_limit = output_limit
        self.kill_grace_seconds = kill_grace_seconds
        self.poll_interval = poll_interval

    @classmethod
    def from_settings(cls, settings: Settings) -> "CommandExecutor":
        return cls(
            output_limit=settings.output_limit,
            kill_grace_seconds=settings.kill_grace_seconds,
            poll_interval=settings.poll_interval,
        )

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        working_dir: Optional[Path] = None,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        name: Optional[str] = None,
    ) -> StepResult:
        """
        Run ``command args...`` and wait for it.

        Parameters
        ----------
        env : mapping, optional
            Merged over the current process environment.
        timeout : float, optional
            Seconds before the process is killed and ``TIMED_OUT`` returned.
        cancel : threading.Event, optional
            When set while the process runs, it is killed and
            ``CANCELLED`` returned.
        """
        argv = [command, *args]
        full_env = dict(os.environ)
        if env:
            full_env.update(env)
        if working_dir is not None and not Path(working_dir).is_dir():
            raise SpawnError(command, f"working directory {working_dir} does not exist")

        started_at = utc_timestamp()
        start = time.perf_counter()
        log.debug("$ %s", shlex.join(argv))
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=full_env,
                cwd=str(working_dir) if working_dir is not None else None,
                start_new_session=_POSIX,
            )
        except FileNotFoundError as e:
            raise SpawnError(command, "command not found") from e
        except PermissionError as e:
            raise SpawnError(command, "permission denied") from e
        except OSError as e:
            raise SpawnError(command, e.strerror or str(e)) from e
        except ValueError as e:
            # e.g. an embedded NUL byte in argv or env
            raise SpawnError(command, str(e)) from e

        buf = _TailBuffer(self.output_limit)
        reader = threading.Thread(target=self._pump, args=(proc, buf), daemon=True)
        reader.start()

        status = self._wait(proc, timeout, cancel)
        self._drain(proc, reader, name or command)
        elapsed = time.perf_counter() - start

        if status is None:
            status = StepStatus.SUCCEEDED if proc.returncode == 0 else StepStatus.NON_ZERO_EXIT
        if status is StepStatus.TIMED_OUT:
            log.warning("%s timed out after %.1f s", name or command, timeout)

        return StepResult(
            name=name or command,
            status=status,
            exit_code=proc.returncode,
            output=buf.text(),
            truncated=buf.truncated,
            duration=elapsed,
            started_at=started_at,
        )

    def _drain(self, proc: subprocess.Popen, reader: threading.Thread, label: str) -> None:
        """Stop what the command left running in its process group, then collect its output."""
        # background children must not outlive the step or hold the output pipe open
        self._signal(proc, signal.SIGTERM)
        reader.join(timeout=self.kill_grace_seconds)
        if reader.is_alive():
            self._signal(proc, _SIGKILL)
            reader.join(timeout=self.kill_grace_seconds)
        if reader.is_alive():
            log.warning("Output pipe of %s is still held open by a process outside its group", label)
            return
        proc.stdout.close()

    @staticmethod
    def _pump(proc: subprocess.Popen, buf: _TailBuffer) -> None:
        for chunk in iter(lambda: proc.stdout.read1(65536), b""):
            buf.write(chunk)

    def _wait(
        self,
        proc: subprocess.Popen,
        timeout: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Optional[StepStatus]:
        deadline = time.monotonic() + timeout if timeout else None
        while True:
            try:
                proc.wait(timeout=self.poll_interval)
                return None
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.is_set():
                self._terminate(proc)
                return StepStatus.CANCELLED
            if deadline is not None and time.monotonic() >= deadline:
                self._terminate(proc)
                return StepStatus.TIMED_OUT

    def _terminate(self, proc: subprocess.Popen) -> None:
        self._signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=self.kill_grace_seconds)
            return
        except subprocess.TimeoutExpired:
            pass
        self._signal(proc, _SIGKILL)
        proc.wait()

    @staticmethod
    def _signal(proc: subprocess.Popen, sig: int) -> None:
        try:
            if _POSIX:
                os.killpg(proc.pid, sig)
            else:
                proc.send_signal(sig)
        except (ProcessLookupError, PermissionError):
            pass
