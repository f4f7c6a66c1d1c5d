"""Tests for validated execution, backups and undo."""

import asyncio
import os
import tempfile
import time
from pathlib import Path

import pytest

from codeagent.actions import CreateFile, CreateFolder, DeleteFile, EditFile
from codeagent.errors import ActionValidationError, AgentError, ConfirmationDenied, UndoError
from codeagent.safety import SafetyManager


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir) / "project"
        root.mkdir()
        yield root


def _manager(workspace: Path, **kwargs) -> SafetyManager:
    return SafetyManager(workspace, workspace.parent / "backups", **kwargs)


def test_validate_scope_violation(workspace):
    """Test paths outside the scope need confirmation but stay valid."""
    report = _manager(workspace).validate(
        [CreateFile(path="a.js", content="a"), CreateFile(path="b.js", content="b")],
        scoped_files={"a.js"},
    )

    assert report.valid
    assert report.scoped_violations == ["b.js"]
    assert report.requires_confirmation


def test_validate_empty_scope_is_unrestricted(workspace):
    report = _manager(workspace).validate([CreateFile(path="b.js", content="b")], scoped_files=[])
    assert report.valid
    assert not report.requires_confirmation
    assert report.warnings == []


def test_validate_risky_actions(workspace):
    """Test deletes and critical files need confirmation; large content only warns."""
    manager = _manager(workspace, large_content_threshold=10)

    report = manager.validate([DeleteFile(path="old.js")])
    assert report.requires_confirmation

    report = manager.validate([EditFile(path="config/package.json", content="{}")])
    assert report.requires_confirmation
    assert any("critical" in warning for warning in report.warnings)

    report = manager.validate([CreateFile(path="big.js", content="x" * 11)])
    assert not report.requires_confirmation
    assert any("Large content" in warning for warning in report.warnings)


@pytest.mark.parametrize("path", ["/etc/passwd", "../outside.js", "src/../../outside.js", "C:/temp/x.js"])
def test_validate_rejects_escaping_paths(workspace, path):
    report = _manager(workspace).validate([CreateFile(path=path, content="x")])
    assert not report.valid
    assert report.errors


def test_execute_invalid_batch_raises(workspace):
    manager = _manager(workspace)
    with pytest.raises(ActionValidationError):
        asyncio.run(manager.execute([
            CreateFile(path="ok.js", content="x"),
            CreateFile(path="../evil.js", content="x"),
        ]))
    assert not (workspace / "ok.js").exists()


def test_execute_creates_files_and_folders(workspace):
    manager = _manager(workspace)
    results = asyncio.run(manager.execute([
        CreateFolder(path="src/lib"),
        CreateFile(path="src/components/Footer.jsx", content="<footer />\n"),
    ]))

    assert [r.executed for r in results] == [True, True]
    assert (workspace / "src/lib").is_dir()
    assert (workspace / "src/components/Footer.jsx").read_text(encoding="utf-8") == "<footer />\n"
    assert "+<footer />" in results[1].diff


def test_content_is_written_exactly(workspace):
    """Test line endings and unicode are written as given."""
    content = "line one\r\nline two\nünïcödé\n"
    asyncio.run(_manager(workspace).execute([CreateFile(path="exact.txt", content=content)]))
    assert (workspace / "exact.txt").read_bytes() == content.encode("utf-8")


def test_partial_failure_isolation(workspace):
    """Test one failing action does not stop the others."""
    (workspace / "blocker").write_text("I am a file", encoding="utf-8")
    manager = _manager(workspace)
    results = asyncio.run(manager.execute([
        CreateFile(path="first.js", content="1"),
        CreateFile(path="blocker/second.js", content="2"),
        CreateFile(path="third.js", content="3"),
    ]))

    assert len(results) == 3
    assert [r.executed for r in results] == [True, False, True]
    assert results[1].error
    assert (workspace / "first.js").exists()
    assert (workspace / "third.js").exists()
    assert len(manager.undo_stack) == 2


def test_delete_missing_file_fails(workspace):
    results = _manager(workspace).apply([DeleteFile(path="missing.js")])
    assert not results[0].executed
    assert "does not exist" in results[0].error


def test_undo_restores_workspace(workspace):
    """Test undoing every action in reverse restores the original bytes."""
    (workspace / "edit.js").write_bytes(b"original edit\r\n")
    (workspace / "delete.js").write_bytes(b"to be deleted\n")
    (workspace / "overwrite.js").write_bytes(b"old content\n")
    before = {p.name: p.read_bytes() for p in workspace.iterdir()}

    manager = _manager(workspace)
    results = manager.apply([
        CreateFile(path="new/created.js", content="new file"),
        EditFile(path="edit.js", content="edited"),
        DeleteFile(path="delete.js"),
        CreateFile(path="overwrite.js", content="replaced"),
        CreateFolder(path="assets"),
    ])
    assert all(r.executed for r in results)
    assert results[1].backup_path is not None

    for _ in range(len(results)):
        assert manager.undo()["success"]

    assert not (workspace / "new/created.js").exists()
    assert not (workspace / "assets").exists()
    after = {p.name: p.read_bytes() for p in workspace.iterdir() if p.is_file()}
    assert after == before
    assert manager.get_undo_info() == {"can_undo": False, "undo_count": 0, "last_action": None}


def test_undo_leaves_non_empty_folder(workspace):
    manager = _manager(workspace)
    manager.apply([CreateFolder(path="lib")])
    (workspace / "lib" / "keep.txt").write_text("x", encoding="utf-8")

    manager.undo()
    assert (workspace / "lib").is_dir()


def test_undo_by_index(workspace):
    """Test undo indices are stack positions, oldest first."""
    manager = _manager(workspace)
    manager.apply([
        CreateFile(path="a.js", content="a"),
        CreateFile(path="b.js", content="b"),
        CreateFile(path="c.js", content="c"),
    ])

    details = manager.get_undo_details()
    assert [d["index"] for d in details] == [2, 1, 0]
    assert details[0]["description"] == "Created file: c.js"

    result = manager.undo(0)
    assert result["path"] == "a.js"
    assert not (workspace / "a.js").exists()
    assert [e.action.path for e in manager.undo_stack] == ["b.js", "c.js"]

    with pytest.raises(UndoError):
        manager.undo(5)


def test_undo_multiple(workspace):
    manager = _manager(workspace)
    manager.apply([CreateFile(path=f"{name}.js", content=name) for name in "abcd"])

    results = manager.undo_multiple([0, 2, 2, 9])
    assert [r["index"] for r in results] == [9, 2, 0]
    assert [r["success"] for r in results] == [False, True, True]
    assert sorted(p.name for p in workspace.iterdir()) == ["b.js", "d.js"]


def test_undo_empty_stack(workspace):
    with pytest.raises(UndoError):
        _manager(workspace).undo()


def test_undo_stack_is_bounded(workspace):
    manager = _manager(workspace, max_undo_steps=3)
    manager.apply([CreateFile(path=f"f{i}.js", content=str(i)) for i in range(5)])

    assert manager.get_undo_info()["undo_count"] == 3
    assert manager.undo_stack[0].action.path == "f2.js"
    manager.clear_undo()
    assert manager.get_undo_info()["can_undo"] is False


def test_backup_names_are_unique(workspace):
    (workspace / "same.js").write_text("0", encoding="utf-8")
    manager = _manager(workspace)
    results = manager.apply([EditFile(path="same.js", content=str(i)) for i in range(1, 4)])

    backups = {r.backup_path for r in results}
    assert len(backups) == 3
    assert all(Path(b).name.startswith("same.js.") for b in backups)


def test_cleanup_backups(workspace):
    """Test old backups are removed and their undo entries dropped."""
    (workspace / "a.js").write_text("a", encoding="utf-8")
    manager = _manager(workspace)
    results = manager.apply([EditFile(path="a.js", content="changed"), CreateFile(path="b.js", content="b")])

    old = time.time() - 3600
    os.utime(results[0].backup_path, (old, old))
    outcome = manager.cleanup_backups(max_age=60)

    assert outcome == {"removed_backups": 1, "dropped_entries": 1}
    assert not Path(results[0].backup_path).exists()
    assert [e.action.path for e in manager.undo_stack] == ["b.js"]


def test_confirmation_gate_denies(workspace):
    """Test a denied confirmation applies nothing."""
    (workspace / "old.js").write_text("keep me", encoding="utf-8")

    async def deny(actions, report):
        return False

    manager = _manager(workspace, confirmation_gate=deny)
    with pytest.raises(ConfirmationDenied):
        asyncio.run(manager.execute([DeleteFile(path="old.js")]))
    assert (workspace / "old.js").exists()
    assert manager.undo_stack == []


@pytest.mark.parametrize("error", [AgentError("prompt unavailable"), EOFError(), RuntimeError("no terminal")])
def test_confirmation_gate_error_denies(workspace, error):
    """Test any exception raised by the gate counts as a denial."""
    (workspace / "old.js").write_text("keep me", encoding="utf-8")

    async def broken(actions, report):
        raise error

    manager = _manager(workspace, confirmation_gate=broken)
    with pytest.raises(ConfirmationDenied):
        asyncio.run(manager.execute([DeleteFile(path="old.js")]))
    assert (workspace / "old.js").exists()


def test_confirmation_timeout_auto_approves(workspace):
    """Test an unanswered confirmation approves after the timeout."""
    (workspace / "old.js").write_text("bye", encoding="utf-8")
    manager = _manager(workspace, confirmation_timeout=0.05)

    results = asyncio.run(manager.execute([DeleteFile(path="old.js")]))
    assert results[0].executed
    assert not (workspace / "old.js").exists()


def test_confirmation_timeout_can_deny(workspace):
    (workspace / "old.js").write_text("stay", encoding="utf-8")
    manager = _manager(workspace, confirmation_timeout=0.05, auto_approve_on_timeout=False)

    with pytest.raises(ConfirmationDenied):
        asyncio.run(manager.execute([DeleteFile(path="old.js")]))
    assert (workspace / "old.js").exists()


def test_confirm_pending_externally(workspace):
    """Test a pending confirmation resolved through confirm_pending."""
    (workspace / "old.js").write_text("stay", encoding="utf-8")
    manager = _manager(workspace, confirmation_timeout=5)
    assert manager.confirm_pending(True) is False

    async def scenario():
        task = asyncio.ensure_future(manager.execute([DeleteFile(path="old.js")]))
        while not manager.has_pending_confirmation:
            await asyncio.sleep(0.01)
        assert manager.confirm_pending(False) is True
        with pytest.raises(ConfirmationDenied):
            await task

    asyncio.run(scenario())
    assert (workspace / "old.js").exists()
