"""Data models for codeagent."""

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Tuple

from .actions import AgentAction, describe_action

OPERATION_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class FileRecord:
    """A single indexed file."""

    path: str
    content: str
    hash: str
    language: str
    category: str
    size: int
    indexed_at: float


@dataclass(frozen=True)
class Chunk:
    """A line-addressed slice of a file.

    ``content`` keeps the raw text, including surrounding whitespace, so the
    chunks of a file concatenate back to the file itself.
    """

    id: str
    content: str
    file_path: str
    start_line: int
    end_line: int
    token_count: int
    language: str = "text"
    functions: Tuple[str, ...] = ()
    classes: Tuple[str, ...] = ()
    purpose: str = "general"

    @property
    def text(self) -> str:
        return self.content.strip()


@dataclass
class EmbeddingEntry:
    """Sparse term-frequency vector for one chunk."""

    chunk_id: str
    vector: Dict[str, int]
    magnitude: float
    purpose: str = "general"
    functions: List[str] = field(default_factory=list)
    classes: List[str] = field(default_factory=list)
    doc_excerpts: List[str] = field(default_factory=list)


@dataclass
class ImportRef:
    module: str
    line: int
    items: List[str] = field(default_factory=list)


@dataclass
class ExportRef:
    line: int
    names: List[str] = field(default_factory=list)


@dataclass
class SymbolRef:
    name: str
    line: int
    signature: str = ""


@dataclass
class DependencyRecord:
    """Imports, exports and declarations found in a file."""

    path: str
    imports: List[ImportRef] = field(default_factory=list)
    exports: List[ExportRef] = field(default_factory=list)
    functions: List[SymbolRef] = field(default_factory=list)
    classes: List[SymbolRef] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    used_by: List[str] = field(default_factory=list)

    @property
    def exported_names(self) -> List[str]:
        return [name for export in self.exports for name in export.names]


@dataclass(frozen=True)
class SearchResult:
    """A chunk matched by a query."""

    chunk: Chunk
    score: float


@dataclass
class ContextBundle:
    """Code context gathered for a single request."""

    query: str
    relevant_chunks: List[SearchResult] = field(default_factory=list)
    relevant_files: List[str] = field(default_factory=list)
    dependencies: List[DependencyRecord] = field(default_factory=list)
    total_files: int = 0
    total_chunks: int = 0
    session_type: str = "none"

    def stats(self) -> Dict[str, Any]:
        return {
            "files_analyzed": len(self.relevant_files),
            "chunks_retrieved": len(self.relevant_chunks),
            "dependencies_found": len(self.dependencies),
            "session_context": self.session_type,
        }


@dataclass
class ActionResult:
    """Outcome of executing one action."""

    type: str
    path: str
    executed: bool
    timestamp: str
    error: Optional[str] = None
    diff: Optional[str] = None
    backup_path: Optional[str] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "path": self.path,
            "executed": self.executed,
            "error": self.error,
            "diff": self.diff,
            "backup_path": self.backup_path,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Backup:
    """Snapshot of a file taken before it was changed."""

    original_path: str
    backup_path: Path
    timestamp: str


@dataclass
class UndoEntry:
    action: AgentAction
    backup: Optional[Backup]
    existed_before: bool
    timestamp: str

    @property
    def description(self) -> str:
        return describe_action(self.action)


@dataclass
class OperationRecord:
    """One completed agent operation as remembered by the session."""

    id: str
    timestamp: str
    request: str
    analysis: str
    actions: List[ActionResult] = field(default_factory=list)
    files_analyzed: int = 0
    chunks_retrieved: int = 0


@dataclass
class SessionContext:
    """Conversation state for one open workspace."""

    session_id: str
    workspace: str
    created_at: str
    last_activity: str
    last_request: Optional[str] = None
    last_files_modified: List[str] = field(default_factory=list)
    last_chunks: List[SearchResult] = field(default_factory=list)
    operation_history: Deque[OperationRecord] = field(
        default_factory=lambda: deque(maxlen=OPERATION_HISTORY_LIMIT)
    )
    summary: str = ""


@dataclass
class WorkspaceConfig:
    """Indexing configuration for a workspace."""

    path: Path
    ignore_patterns: List[str] = field(default_factory=list)
    file_extensions: List[str] = field(default_factory=list)
    max_file_size: int = 1048576  # 1MB
    max_depth: int = 20
    chunk_size: int = 500
    max_chunk_size: int = 2000
    use_gitignore: bool = True
