"""
Tests for checkpoints, rollback and branching.
"""

import os

from backend import LocalBackend
from orchestrator.checkpoints import CheckpointAction, CheckpointStore


def _store(tmp_path):
    backend = LocalBackend(str(tmp_path))
    return backend, CheckpointStore(backend)


def test_rollback_restores_modified_and_deletes_created(tmp_path):
    backend, store = _store(tmp_path)
    backend.write_file("app.py", "original\n")
    messages = [{"role": "user", "content": "change things"}]

    cp = store.create_checkpoint(0, "change things")
    store.snapshot_file("app.py")
    backend.write_file("app.py", "modified\n")
    store.snapshot_file("new.py")
    backend.write_file("new.py", "created\n")
    store.record_shell_command("npm install")
    store.finalize_current()
    messages.append({"role": "assistant", "content": "done"})

    result = store.rollback(cp, messages=messages)

    assert result.success
    assert backend.read_file("app.py") == "original\n"
    assert not os.path.exists(tmp_path / "new.py")
    assert sorted(os.path.basename(p) for p in result.restored_files) == ["app.py", "new.py"]
    assert result.shell_commands_warning == ["npm install"]
    # The anchoring user message is kept, later ones dropped
    assert messages == [{"role": "user", "content": "change things"}]
    assert result.messages_removed == 1
    assert store.checkpoints == []


def test_first_snapshot_wins(tmp_path):
    backend, store = _store(tmp_path)
    backend.write_file("a.txt", "v1")
    cp = store.create_checkpoint(0, "edit")
    assert store.snapshot_file("a.txt") is True
    backend.write_file("a.txt", "v2")
    assert store.snapshot_file("a.txt") is False
    backend.write_file("a.txt", "v3")
    store.finalize_current()
    store.rollback(cp)
    assert backend.read_file("a.txt") == "v1"


def test_rollback_covers_later_checkpoints(tmp_path):
    backend, store = _store(tmp_path)
    backend.write_file("a.txt", "v1")
    first = store.create_checkpoint(0, "first")
    store.snapshot_file("a.txt")
    backend.write_file("a.txt", "v2")
    store.create_checkpoint(2, "second")
    store.snapshot_file("a.txt")
    store.snapshot_file("b.txt")
    backend.write_file("a.txt", "v3")
    backend.write_file("b.txt", "new")
    store.finalize_current()

    result = store.rollback(first)
    assert result.success
    assert backend.read_file("a.txt") == "v1"
    assert not backend.file_exists("b.txt")


def test_empty_checkpoint_is_discarded(tmp_path):
    _, store = _store(tmp_path)
    store.create_checkpoint(0, "just a question")
    assert store.finalize_current() is None
    assert store.checkpoints == []


def test_failed_restore_does_not_stop_others(tmp_path):
    backend, store = _store(tmp_path)
    backend.write_file("good.txt", "before")
    cp = store.create_checkpoint(0, "edit")
    store.snapshot_file("good.txt")
    cp.record_file_change("/outside/of/workdir.txt", "x", was_created=False)
    backend.write_file("good.txt", "after")
    store.finalize_current()

    result = store.rollback(cp)
    assert not result.success
    assert [p for p, _ in result.failed_files] == ["/outside/of/workdir.txt"]
    assert backend.read_file("good.txt") == "before"


def test_branch_keeps_files_and_truncates_messages(tmp_path):
    backend, store = _store(tmp_path)
    messages = [{"role": "user", "content": "one"}, {"role": "assistant", "content": "ok"}]
    cp = store.create_checkpoint(0, "one")
    store.snapshot_file("x.txt")
    backend.write_file("x.txt", "kept")
    store.finalize_current()

    removed = store.branch(cp, "one, but differently", messages)
    assert removed == 2
    assert messages == []
    assert backend.read_file("x.txt") == "kept"


def test_preview_and_serialization(tmp_path):
    backend, store = _store(tmp_path)
    cp = store.create_checkpoint(0, "make file")
    store.snapshot_file("f.txt")
    backend.write_file("f.txt", "data")
    store.finalize_current()

    files, commands, to_remove = store.preview(cp, message_count=4)
    assert [s.file_name for s in files] == ["f.txt"]
    assert commands == []
    assert to_remove == 3

    restored = CheckpointStore.from_dict(store.to_dict(), backend)
    assert restored.checkpoints[0].id == cp.id
    assert restored.checkpoints[0].created_files[0].file_name == "f.txt"


def test_checkpoint_action_kinds():
    assert CheckpointAction.rollback().restores_files
    assert CheckpointAction.edit_and_rollback("x").restores_files
    assert not CheckpointAction.edit_and_keep_changes("x").restores_files


def test_rollback_keeps_crlf_line_endings(tmp_path):
    backend, store = _store(tmp_path)
    original = b"line one\r\nline two\r\n"
    backend.write_bytes("dos.txt", original)
    cp = store.create_checkpoint(0, "edit dos file")
    store.snapshot_file("dos.txt")
    backend.write_file("dos.txt", "rewritten\n")
    store.finalize_current()

    result = store.rollback(cp)
    assert result.success
    assert backend.read_bytes("dos.txt") == original


def test_rollback_keeps_non_utf8_bytes(tmp_path):
    backend, store = _store(tmp_path)
    original = b"caf\xe9\n"
    backend.write_bytes("latin1.txt", original)
    cp = store.create_checkpoint(0, "edit latin-1 file")
    store.snapshot_file("latin1.txt")
    backend.write_file("latin1.txt", "cafe\n")
    store.finalize_current()

    # snapshots survive a save and reload as bytes
    reloaded = CheckpointStore.from_dict(store.to_dict(), backend)
    result = reloaded.rollback(reloaded.checkpoints[0])
    assert result.success
    assert backend.read_bytes("latin1.txt") == original


def test_legacy_text_snapshot_still_restores(tmp_path):
    backend, _ = _store(tmp_path)
    data = {"checkpoints": [{
        "id": "old", "message_index": 0, "message_preview": "old session",
        "file_snapshots": {
            os.path.join(str(tmp_path), "a.txt"): {
                "path": os.path.join(str(tmp_path), "a.txt"),
                "content_before": "before\n", "was_created": False,
            },
        },
    }]}
    backend.write_file("a.txt", "after\n")
    store = CheckpointStore.from_dict(data, backend)
    assert store.rollback(store.checkpoints[0]).success
    assert backend.read_bytes("a.txt") == b"before\n"
