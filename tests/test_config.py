"""Tests for settings and per-user directories."""

import tempfile
from pathlib import Path

import pytest

from codeagent import config as config_module
from codeagent.config import AgentSettings, ConfigManager


@pytest.fixture
def user_dirs(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        monkeypatch.setattr(config_module, "user_config_dir", lambda *args: str(base / "config"))
        monkeypatch.setattr(config_module, "user_data_dir", lambda *args: str(base / "data"))
        monkeypatch.setattr(config_module, "user_state_dir", lambda *args: str(base / "state"))
        yield base


def test_settings_defaults():
    settings = AgentSettings(_env_file=None)

    assert settings.provider == "openrouter"
    assert settings.openrouter_model == "deepseek/deepseek-chat-v3-0324:free"
    assert settings.llm_timeout == 120.0
    assert settings.confirmation_timeout == 10.0
    assert settings.auto_approve_on_timeout is True
    assert settings.max_undo_steps == 10
    assert "package.json" in settings.critical_files


def test_settings_from_environment(monkeypatch):
    """Test CODEAGENT_ variables override defaults."""
    monkeypatch.setenv("CODEAGENT_PROVIDER", "gemini")
    monkeypatch.setenv("CODEAGENT_GEMINI_API_KEYS", '["g1", "g2"]')
    monkeypatch.setenv("CODEAGENT_LLM_TIMEOUT", "30")
    monkeypatch.setenv("CODEAGENT_AUTO_APPROVE_ON_TIMEOUT", "false")
    settings = AgentSettings(_env_file=None)

    assert settings.provider == "gemini"
    assert settings.gemini_api_keys == ["g1", "g2"]
    assert settings.llm_timeout == 30.0
    assert settings.auto_approve_on_timeout is False


def test_workspace_config_projection():
    settings = AgentSettings(_env_file=None, chunk_size=300, max_depth=5)
    with tempfile.TemporaryDirectory() as tmpdir:
        workspace = settings.workspace_config(Path(tmpdir))

        assert workspace.path == Path(tmpdir).resolve()
        assert workspace.chunk_size == 300
        assert workspace.max_depth == 5
        assert "node_modules" in workspace.ignore_patterns
        assert ".jsx" in workspace.file_extensions


def test_config_manager_directories(user_dirs):
    """Test directories are created and backups are kept per workspace."""
    manager = ConfigManager(AgentSettings(_env_file=None))

    assert manager.config_dir.is_dir()
    assert manager.data_dir.is_dir()
    assert manager.state_dir.is_dir()
    assert manager.log_file.parent == manager.state_dir

    first = manager.backup_dir(user_dirs / "projects" / "app")
    second = manager.backup_dir(user_dirs / "other" / "app")
    assert first.is_dir()
    assert first.parent == manager.data_dir / "backups"
    assert first.name.startswith("app-")
    assert first != second
    assert manager.backup_dir(user_dirs / "projects" / "app") == first
