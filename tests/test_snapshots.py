from assessment_ingest.snapshots import SnapshotStore


def test_save_load_round_trip(tmp_path):
    store = SnapshotStore("imports", root=tmp_path)
    path = store.save("roster 2024/25", {"step": 2, "school_id": "SCH-1"})
    assert path.parent == tmp_path / "imports"
    assert store.exists("roster 2024/25")
    assert store.load("roster 2024/25") == {"step": 2, "school_id": "SCH-1"}
    assert store.keys() == ["roster 2024/25"]


def test_missing_key_returns_default(tmp_path):
    store = SnapshotStore(root=tmp_path)
    assert store.load("nope") is None
    assert store.load("nope", default={}) == {}
    assert store.keys() == []


def test_every_load_reads_the_file(tmp_path):
    store = SnapshotStore(root=tmp_path)
    store.save("k", [1])
    other = SnapshotStore(root=tmp_path)
    other.save("k", [2])
    assert store.load("k") == [2]


def test_clear_and_clear_all(tmp_path):
    store = SnapshotStore("s", root=tmp_path)
    store.save("a", 1)
    store.save("b", 2)
    assert store.clear("a") is True
    assert store.clear("a") is False
    assert store.load("a") is None
    assert store.clear_all() == 1
    assert store.keys() == []


def test_namespaces_are_isolated(tmp_path):
    SnapshotStore("one", root=tmp_path).save("k", "x")
    assert SnapshotStore("two", root=tmp_path).load("k") is None


def test_corrupt_snapshot_is_ignored(tmp_path):
    store = SnapshotStore(root=tmp_path)
    path = store.save("k", 1)
    path.write_text("{not json", encoding="utf-8")
    assert store.load("k", default="fallback") == "fallback"
