# src/deploy_pipeline/context.py
"""
Execution context
=================

One mutable ``name -> str`` store per pipeline run, shared by reference
across every stage. Writes from an earlier stage are visible to later ones
(e.g. an image id captured in *build* reaching *deploy*). All access goes
through one re-entrant lock so concurrent stages never lose an update.

``${NAME}`` references are rendered per argument; ``$${NAME}`` yields a
literal ``${NAME}``. Unknown names are left as written.
"""

from __future__ import annotations

import re
import threading
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from deploy_pipeline.errors import VariableNotFound

_VAR_RE = re.compile(r"\$(\$?)\{([A-Za-z_][A-Za-z0-9_]*)\}")

_MISSING = object()


class ExecutionContext:
    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._lock = threading.RLock()
        self._vars: Dict[str, str] = {}
        if initial:
            self.update(initial)

    def set(self, key: str, value) -> None:
        if not key:
            raise ValueError("Context variable name must be non-empty.")
        with self._lock:
            self._vars[key] = str(value)

    def update(self, values: Mapping[str, str] | Iterable[Tuple[str, str]]) -> None:
        items = values.items() if isinstance(values, Mapping) else values
        with self._lock:
            for k, v in items:
                self.set(k, v)

    def get(self, key: str, default=_MISSING) -> str:
        with self._lock:
            try:
                return self._vars[key]
            except KeyError:
                if default is _MISSING:
                    raise VariableNotFound(key) from None
                return default

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._vars

    def snapshot(self) -> Mapping[str, str]:
        """Immutable copy of the current variables."""
        with self._lock:
            return MappingProxyType(dict(self._vars))

    def render(self, text: str) -> str:
        with self._lock:
            variables = dict(self._vars)

        def replacer(m: re.Match) -> str:
            if m.group(1):  # escaped: $${NAME}
                return "${" + m.group(2) + "}"
            return variables.get(m.group(2), m.group(0))

        return _VAR_RE.sub(replacer, text)

    def __repr__(self) -> str:
        return f"ExecutionContext({len(self.snapshot())} vars)"
