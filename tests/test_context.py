# tests/test_context.py

import threading

import pytest

from deploy_pipeline.context import ExecutionContext
from deploy_pipeline.errors import VariableNotFound


def test_set_and_get():
    ctx = ExecutionContext()
    ctx.set("IMAGE_ID", "v1")
    assert ctx.get("IMAGE_ID") == "v1"
    assert "IMAGE_ID" in ctx


def test_missing_variable_raises_not_found():
    ctx = ExecutionContext()
    with pytest.raises(VariableNotFound):
        ctx.get("NOPE")
    # still a KeyError for callers that only know dict semantics
    with pytest.raises(KeyError):
        ctx.get("NOPE")
    assert ctx.get("NOPE", None) is None


def test_values_are_stored_as_strings():
    ctx = ExecutionContext({"COUNT": 3})
    assert ctx.get("COUNT") == "3"


def test_empty_key_rejected():
    with pytest.raises(ValueError):
        ExecutionContext().set("", "x")


def test_snapshot_is_immutable_copy():
    ctx = ExecutionContext({"A": "1"})
    snap = ctx.snapshot()
    with pytest.raises(TypeError):
        snap["A"] = "2"
    ctx.set("A", "changed")
    ctx.set("B", "new")
    assert snap["A"] == "1"
    assert "B" not in snap


def test_render_substitutes_known_variables():
    ctx = ExecutionContext({"BUILD_ID": "42", "REGION": "eu-west-1"})
    assert ctx.render("app:${BUILD_ID}@${REGION}") == "app:42@eu-west-1"


def test_render_leaves_unknown_and_escaped_references():
    ctx = ExecutionContext({"X": "1"})
    assert ctx.render("${UNKNOWN}") == "${UNKNOWN}"
    assert ctx.render("$${X}") == "${X}"
    assert ctx.render("$X and ${X}") == "$X and 1"


def test_concurrent_writes_are_not_lost():
    ctx = ExecutionContext()

    def writer(i):
        for j in range(50):
            ctx.set(f"K_{i}_{j}", str(j))

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(ctx.snapshot()) == 8 * 50
