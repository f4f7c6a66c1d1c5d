"""Tests for workspace indexing and search."""

import os
import tempfile
from pathlib import Path

from codeagent.indexer import CodebaseIndexer, content_hash
from codeagent.models import WorkspaceConfig

EXTENSIONS = ['.js', '.jsx', '.py', '.json', '.md']


def _write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding='utf-8')
    return path


def _indexer(root: Path, **overrides) -> CodebaseIndexer:
    config = WorkspaceConfig(
        path=root,
        ignore_patterns=['node_modules', '.git', '*.min.js'],
        file_extensions=EXTENSIONS,
        **overrides,
    )
    return CodebaseIndexer(config)


def _sample_project(root: Path):
    _write(root, "package.json", '{"name": "demo", "dependencies": {"react": "^18.0.0"}}')
    _write(root, "src/api.js", "export function fetchUsers() {\n  return fetch('/users');\n}\n")
    _write(root, "src/App.jsx", "import { fetchUsers } from './api';\n\nexport default function App() {\n  fetchUsers();\n}\n")
    _write(root, "README.md", "# Demo\n\nA demo project.\n")
    _write(root, "node_modules/react/index.js", "module.exports = {};\n")
    _write(root, "dist/app.min.js", "var a=1;\n")
    _write(root, "image.png", "not really a png")


def test_content_hash():
    assert content_hash("abc") == "900150983cd24fb0d6963f7d28e17f72"


def test_index_empty_workspace():
    """Test indexing an empty directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        indexer = _indexer(Path(tmpdir))
        report = indexer.index_all()

        assert report.scanned == 0
        assert indexer.get_index_stats()["total_files"] == 0
        assert indexer.search("anything") == []


def test_index_respects_ignore_patterns_and_extensions():
    """Test ignored directories, wildcard patterns and unknown extensions are skipped."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sample_project(root)
        indexer = _indexer(root)
        indexer.index_all()

        assert sorted(indexer.files) == ["README.md", "package.json", "src/App.jsx", "src/api.js"]
        assert indexer.files["src/api.js"].language == "javascript"
        assert indexer.files["README.md"].category == "doc"
        assert indexer.files["package.json"].category == "config"


def test_gitignore_patterns_apply():
    """Test .gitignore entries exclude files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write(root, ".gitignore", "# generated\ngenerated/\nsecret.js\n")
        _write(root, "generated/out.js", "const x = 1;\n")
        _write(root, "src/secret.js", "const key = 'x';\n")
        _write(root, "src/main.js", "const y = 2;\n")
        indexer = _indexer(root)
        indexer.index_all()

        assert "src/main.js" in indexer.files
        assert "generated/out.js" not in indexer.files
        assert "src/secret.js" not in indexer.files


def test_index_is_idempotent():
    """Test a second pass over an unchanged tree changes nothing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sample_project(root)
        indexer = _indexer(root)

        first = indexer.index_all()
        stats = indexer.get_index_stats()
        chunk_ids = sorted(indexer._chunk_by_id)
        last_update = indexer.last_update

        second = indexer.index_all()
        assert first.indexed == 4
        assert second.indexed == 0
        assert second.unchanged == 4
        assert not second.changed
        assert sorted(indexer._chunk_by_id) == chunk_ids
        assert indexer.last_update == last_update
        assert indexer.get_index_stats()["total_chunks"] == stats["total_chunks"]


def test_index_detects_changes_and_deletions():
    """Test modified files are re-indexed and deleted files dropped."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sample_project(root)
        indexer = _indexer(root)
        indexer.index_all()

        _write(root, "src/api.js", "export function fetchOrders() {\n  return [];\n}\n")
        (root / "README.md").unlink()
        report = indexer.index_all()

        assert report.indexed == 1
        assert report.removed == 1
        assert "README.md" not in indexer.files
        assert "fetchOrders" in indexer.files["src/api.js"].content


def test_unreadable_files_are_skipped():
    """Test binary, oversized and non-UTF-8 files do not stop indexing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write(root, "good.js", "const ok = true;\n")
        (root / "binary.js").write_bytes(b"const a = 1;\x00\x01")
        (root / "latin1.js").write_bytes("const name = 'café';\n".encode('latin-1'))
        _write(root, "huge.js", "x" * 200)
        indexer = _indexer(root, max_file_size=100)
        report = indexer.index_all()

        assert list(indexer.files) == ["good.js"]
        assert report.failed == 3


def test_max_depth_limits_walk():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write(root, "a/top.js", "const a = 1;\n")
        _write(root, "a/b/c/deep.js", "const d = 1;\n")
        indexer = _indexer(root, max_depth=2)
        indexer.index_all()

        assert "a/top.js" in indexer.files
        assert "a/b/c/deep.js" not in indexer.files


def test_update_index_handles_changes_and_removals():
    """Test targeted re-indexing of files and removed directories."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sample_project(root)
        indexer = _indexer(root)
        indexer.index_all()

        _write(root, "src/new.js", "export const answer = 42;\n")
        report = indexer.update_index(["src/new.js"])
        assert report.indexed == 1
        assert "src/new.js" in indexer.files

        report = indexer.update_index([root / "src/new.js"])
        assert report.unchanged == 1

        for name in ("api.js", "App.jsx", "new.js"):
            (root / "src" / name).unlink()
        os.rmdir(root / "src")
        report = indexer.update_index(["src"])
        assert report.removed == 3
        assert sorted(indexer.files) == ["README.md", "package.json"]
        assert all(not chunk_id.startswith("src/") for chunk_id in indexer._chunk_by_id)


def test_update_index_drops_files_that_become_unindexable():
    """Test a file turned binary or ignored leaves the index like a full pass would."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write(root, "a.js", "const secretValue = 1;\n")
        _write(root, "b.js", "const other = 2;\n")
        indexer = _indexer(root)
        indexer.index_all()

        (root / "a.js").write_bytes(b"\x00\x01binary")
        report = indexer.update_index(["a.js"])
        assert report.failed == 1
        assert report.removed == 1
        assert "a.js" not in indexer.files
        assert all(r.chunk.file_path != "a.js" for r in indexer.search("secretValue"))

        indexer.config.ignore_patterns.append("b.js")
        report = indexer.update_index(["b.js"])
        assert report.removed == 1
        assert indexer.files == {}
        assert indexer.get_index_stats()["total_embeddings"] == 0


def test_update_index_ignores_outside_paths():
    with tempfile.TemporaryDirectory() as tmpdir, tempfile.TemporaryDirectory() as other:
        indexer = _indexer(Path(tmpdir))
        report = indexer.update_index([Path(other) / "x.js"])
        assert report.scanned == 0


def test_search_ranks_relevant_chunks_first():
    """Test search returns the most similar chunk first."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write(root, "auth.js", "function login user password\n")
        _write(root, "math.js", "function add numbers together\n")
        indexer = _indexer(root)
        indexer.index_all()

        results = indexer.search("login user", limit=2)
        assert [r.chunk.file_path for r in results] == ["auth.js", "math.js"]
        assert results[0].score > results[1].score
        assert results[1].score == 0.0
        assert len(indexer.search("login user", limit=1)) == 1


def test_get_context_and_dependencies():
    """Test context lists relevant files and dependency links."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sample_project(root)
        indexer = _indexer(root)
        indexer.index_all()

        context = indexer.get_context("fetchUsers", max_chunks=3)
        assert context["total_files"] == 4
        assert context["relevant_files"]
        assert len(context["relevant_chunks"]) == 3

        api = indexer.get_dependencies("src/api.js")
        assert api.used_by == ["src/App.jsx"]
        assert indexer.get_dependencies("src/App.jsx").references == ["src/api.js"]
        assert indexer.get_file_chunks("src/api.js")[0].file_path == "src/api.js"
        assert indexer.get_file("missing.js") is None


def test_detect_project_type():
    """Test stack detection from file names and package.json."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sample_project(root)
        indexer = _indexer(root)
        indexer.index_all()
        project = indexer.detect_project_type()

        assert project["is_react"] is True
        assert project["is_node"] is True
        assert project["is_typescript"] is False
        assert project["preferred_language"] == "javascript"
        assert project["config_files"] == ["package.json"]


def test_clear():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sample_project(root)
        indexer = _indexer(root)
        indexer.index_all()
        indexer.clear()

        assert indexer.get_index_stats()["total_files"] == 0
        assert indexer.search("fetchUsers") == []
