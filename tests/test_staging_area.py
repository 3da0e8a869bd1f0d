from snapvcs.errors import ErrorKind
from snapvcs.impl.memory import MemoryStagingArea


def test_stage_last_write_wins():
    stage = MemoryStagingArea()
    stage.stage("a.txt", "h1")
    stage.stage("a.txt", "h2")

    assert stage.get("a.txt") == "h2"
    assert stage.count() == 1


def test_unstage_returns_prior_hash():
    stage = MemoryStagingArea()
    stage.stage("a.txt", "h1")

    assert stage.unstage("a.txt").unwrap() == "h1"
    assert stage.count() == 0
    assert stage.is_dirty() is False


def test_unstage_unknown_path():
    stage = MemoryStagingArea()
    result = stage.unstage("never.txt")
    assert result.error is ErrorKind.NOT_STAGED


def test_entries_is_a_snapshot():
    stage = MemoryStagingArea()
    stage.stage("a.txt", "h1")
    stage.stage("b.txt", "h2")

    entries = stage.entries()
    for path, _ in entries:
        stage.unstage(path)

    assert sorted(entries) == [("a.txt", "h1"), ("b.txt", "h2")]
    assert stage.count() == 0


def test_clear_and_state():
    stage = MemoryStagingArea()
    stage.stage("dir/a.txt", "h1")
    restored = MemoryStagingArea.from_state(stage.to_state())
    assert restored.snapshot() == {"dir/a.txt": "h1"}

    stage.clear()
    assert stage.entries() == []
    assert restored.count() == 1


def test_removals_apply_over_head_tree():
    stage = MemoryStagingArea()
    stage.stage("a.txt", "h2")
    stage.mark_removed("b.txt")

    head = {"a.txt": "h1", "b.txt": "h3", "c.txt": "h4"}
    assert stage.apply_to(head) == {"a.txt": "h2", "c.txt": "h4"}
    assert stage.removals() == ["b.txt"]
    assert stage.count() == 1
    assert stage.is_dirty()

    stage.stage("b.txt", "h5")
    assert stage.removals() == [], "staging a path again cancels its removal"


def test_removals_survive_state_and_clear():
    stage = MemoryStagingArea()
    stage.mark_removed("gone.txt")
    restored = MemoryStagingArea.from_state(stage.to_state())
    assert restored.removals() == ["gone.txt"]

    restored.clear()
    assert restored.is_dirty() is False
    assert MemoryStagingArea.from_state({"entries": {}}).removals() == []
