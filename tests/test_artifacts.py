# tests/test_artifacts.py

import json

import pytest

from deploy_pipeline.artifacts import ArtifactStore, check_build_id


def test_records_are_keyed_by_build_id():
    store = ArtifactStore()
    store.record("101", "build", "image", {"id": "sha256:aaa"})
    store.record("102", "build", "image", {"id": "sha256:bbb"})

    assert [a.payload["id"] for a in store.query("101")] == ["sha256:aaa"]
    assert [a.payload["id"] for a in store.query("102")] == ["sha256:bbb"]
    assert store.query("999") == []
    assert sorted(store.build_ids()) == ["101", "102"]


def test_query_filters_by_stage_and_kind():
    store = ArtifactStore()
    store.record("1", "test", "junit", {"tests": 10})
    store.record("1", "scan", "findings", {"critical": 0})
    store.record("1", "scan", "image", "app:1")

    assert [a.kind for a in store.query("1", stage="scan")] == ["findings", "image"]
    assert [a.stage for a in store.query("1", kind="junit")] == ["test"]
    assert store.query("1", stage="scan", kind="junit") == []


def test_records_are_append_only_in_order():
    store = ArtifactStore()
    for i in range(5):
        store.record("1", f"s{i}", "summary", i)
    assert [a.payload for a in store.query("1")] == [0, 1, 2, 3, 4]
    # the returned list is a copy
    store.query("1").clear()
    assert len(store.query("1")) == 5


def test_empty_build_id_rejected():
    with pytest.raises(ValueError):
        ArtifactStore().record("", "build", "image", None)


def test_save_and_load(tmp_path):
    store = ArtifactStore()
    store.record("42", "build", "image", {"id": "sha256:abc"})
    store.record("42", "test", "junit", {"tests": 3, "failures": 0})
    store.record("43", "build", "image", {"id": "other"})

    path = store.save("42", tmp_path / "artifacts")
    assert path.name == "42.json"
    rows = json.loads(path.read_text())
    assert [r["stage"] for r in rows] == ["build", "test"]

    fresh = ArtifactStore()
    loaded = fresh.load("42", tmp_path / "artifacts")
    assert loaded == store.query("42")
    assert fresh.query("43") == []


@pytest.mark.parametrize("build_id", ["feature/123", "../x", "..", ".", "a\\b"])
def test_build_id_must_be_a_plain_file_name(tmp_path, build_id):
    with pytest.raises(ValueError):
        check_build_id(build_id)
    with pytest.raises(ValueError):
        ArtifactStore().record(build_id, "build", "image", None)
    with pytest.raises(ValueError):
        ArtifactStore().save(build_id, tmp_path)
    assert list(tmp_path.iterdir()) == []


def test_branch_style_build_id_is_saved_inside_directory(tmp_path):
    store = ArtifactStore()
    store.record("feature-123.7", "build", "image", {"id": "x"})
    path = store.save("feature-123.7", tmp_path)
    assert path.parent == tmp_path
    assert path.name == "feature-123.7.json"
