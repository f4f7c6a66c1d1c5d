"""
codeagent - an AI coding agent for local workspaces.

Indexes a codebase, asks an LLM for file operations and applies them
with validation, backups and undo.
"""

__version__ = "0.1.0"

from .agent import AgentOrchestrator, AgentPhase, AgentResult
from .config import AgentSettings, ConfigManager
from .indexer import CodebaseIndexer
from .parser import ResponseParser
from .safety import SafetyManager

__all__ = [
    "AgentOrchestrator",
    "AgentPhase",
    "AgentResult",
    "AgentSettings",
    "CodebaseIndexer",
    "ConfigManager",
    "ResponseParser",
    "SafetyManager",
    "__version__",
]
