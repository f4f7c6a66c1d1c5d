"""Configuration management for codeagent using platformdirs."""

import hashlib
from pathlib import Path
from typing import List, Optional

from platformdirs import user_config_dir, user_data_dir, user_state_dir
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import WorkspaceConfig

APP_NAME = "codeagent"


class AgentSettings(BaseSettings):
    """Global configuration for codeagent.

    List fields are read from the environment as JSON, e.g.
    ``CODEAGENT_OPENROUTER_API_KEYS='["key-1", "key-2"]'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODEAGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider
    provider: str = Field(default="openrouter", description="LLM provider: openrouter or gemini")
    openrouter_api_keys: List[str] = Field(default_factory=list, description="OpenRouter API keys, rotated on failure")
    gemini_api_keys: List[str] = Field(default_factory=list, description="Gemini API keys, rotated on failure")
    openrouter_model: str = Field(default="deepseek/deepseek-chat-v3-0324:free")
    gemini_model: str = Field(default="gemini-1.5-flash")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")
    gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    fallback_to_openrouter: bool = Field(default=True, description="Retry failed Gemini calls on OpenRouter")
    http_timeout: float = Field(default=60.0, description="Timeout for a single HTTP request")
    llm_timeout: float = Field(default=120.0, description="Budget for the whole model call")
    temperature: float = Field(default=0.7)
    max_tokens: int = Field(default=4000)
    stream: bool = Field(default=False, description="Stream OpenRouter responses")

    # Safety
    confirmation_timeout: Optional[float] = Field(
        default=10.0, description="Seconds before a confirmation request resolves itself, None waits indefinitely"
    )
    auto_approve_on_timeout: bool = Field(default=True, description="Approve (True) or deny (False) on confirmation timeout")
    max_undo_steps: int = Field(default=10)
    backup_max_age: float = Field(default=24 * 60 * 60, description="Backup retention in seconds")
    large_content_threshold: int = Field(default=10000)
    critical_files: List[str] = Field(
        default=['package.json', 'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml', '.gitignore', 'README.md']
    )

    # Context
    max_context_chunks: int = Field(default=8, description="Chunks retrieved for a new request")
    follow_up_chunks: int = Field(default=4, description="Extra search chunks for a follow-up request")

    # Indexing
    chunk_size: int = Field(default=500)
    max_chunk_size: int = Field(default=2000)
    max_file_size: int = Field(default=1048576)  # 1MB
    max_depth: int = Field(default=20)
    update_delay: float = Field(default=2.0, description="Delay before re-indexing watched changes")
    use_gitignore: bool = Field(default=True)
    ignore_patterns: List[str] = Field(
        default=[
            '.git', 'node_modules', '__pycache__', '.venv', 'venv', 'dist', 'build',
            '.next', '.cache', 'coverage', '.pytest_cache', '.mypy_cache',
            '*.pyc', '*.min.js', '*.map', '.DS_Store', 'thumbs.db',
        ]
    )
    file_extensions: List[str] = Field(
        default=[
            '.js', '.jsx', '.ts', '.tsx', '.mjs', '.cjs', '.py', '.json', '.md',
            '.css', '.scss', '.less', '.html', '.vue', '.svelte', '.yml', '.yaml',
            '.toml', '.sh', '.go', '.rs', '.java', '.rb', '.php',
        ]
    )

    def workspace_config(self, path: Path) -> WorkspaceConfig:
        """Project these settings onto one workspace."""
        return WorkspaceConfig(
            path=Path(path).resolve(),
            ignore_patterns=list(self.ignore_patterns),
            file_extensions=list(self.file_extensions),
            max_file_size=self.max_file_size,
            max_depth=self.max_depth,
            chunk_size=self.chunk_size,
            max_chunk_size=self.max_chunk_size,
            use_gitignore=self.use_gitignore,
        )


class ConfigManager:
    """Resolves the per-user directories codeagent keeps its state in."""

    def __init__(self, settings: Optional[AgentSettings] = None):
        self.config_dir = Path(user_config_dir(APP_NAME, APP_NAME))
        self.data_dir = Path(user_data_dir(APP_NAME, APP_NAME))
        self.state_dir = Path(user_state_dir(APP_NAME, APP_NAME))

        # Create directories if they don't exist
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_dir.mkdir(parents=True, exist_ok=True)

        self.log_file = self.state_dir / "codeagent.log"
        self.settings = settings or AgentSettings()

    def backup_dir(self, workspace: Path) -> Path:
        """Backup directory for one workspace, keyed by its name and path digest."""
        workspace = Path(workspace).resolve()
        digest = hashlib.sha1(str(workspace).encode('utf-8')).hexdigest()[:12]
        path = self.data_dir / "backups" / f"{workspace.name or 'root'}-{digest}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def workspace_config(self, workspace: Path) -> WorkspaceConfig:
        return self.settings.workspace_config(workspace)
