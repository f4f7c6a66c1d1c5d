"""Core indexing functionality for codeagent."""

import asyncio
import fnmatch
import hashlib
import json
import logging
import os
import time
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Union

from .analyzer import CodeAnalyzer
from .chunker import ChunkSplitter
from .embeddings import EmbeddingIndex
from .errors import WorkspaceIOError
from .languages import CONFIG_NAMES, categorize, detect_language
from .models import Chunk, DependencyRecord, FileRecord, SearchResult, WorkspaceConfig

logger = logging.getLogger(__name__)

WILDCARD_CHARS = set('*?[')


def content_hash(text: str) -> str:
    """Hex md5 digest of text, used to detect changed files."""
    return hashlib.md5(text.encode('utf-8')).hexdigest()


@dataclass
class IndexReport:
    """Counters from one indexing pass."""

    scanned: int = 0
    indexed: int = 0
    unchanged: int = 0
    removed: int = 0
    failed: int = 0
    duration: float = 0.0

    @property
    def changed(self) -> bool:
        return bool(self.indexed or self.removed)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CodebaseIndexer:
    """Maintains the searchable in-memory index of one workspace."""

    def __init__(self, config: WorkspaceConfig):
        self.config = config
        self.root_path = Path(config.path).resolve()
        self.files: Dict[str, FileRecord] = {}
        self.chunks: Dict[str, List[Chunk]] = {}
        self.dependencies: Dict[str, DependencyRecord] = {}
        self.embeddings = EmbeddingIndex()
        self.splitter = ChunkSplitter(config.chunk_size, config.max_chunk_size)
        self.analyzer = CodeAnalyzer()
        self.last_update: Optional[datetime] = None
        # Shared by the agent and the workspace monitor.
        self.lock = asyncio.Lock()
        self._chunk_by_id: Dict[str, Chunk] = {}
        self._gitignore: List[str] = []

    # -- path filtering -------------------------------------------------

    def _parse_gitignore(self) -> List[str]:
        """Parse .gitignore file and return list of patterns."""
        patterns = []
        gitignore_path = self.root_path / '.gitignore'
        if not self.config.use_gitignore or not gitignore_path.is_file():
            return patterns
        try:
            for line in gitignore_path.read_text(encoding='utf-8').splitlines():
                line = line.strip()
                if line and not line.startswith(('#', '!')):
                    patterns.append(line.lstrip('/').rstrip('/'))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read .gitignore: {e}")
        return [p for p in patterns if p]

    def _should_ignore(self, relative: str) -> bool:
        """Check if a workspace-relative posix path should be ignored."""
        parts = PurePosixPath(relative).parts
        name = parts[-1] if parts else relative

        for pattern in self.config.ignore_patterns:
            if WILDCARD_CHARS & set(pattern):
                if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(relative, pattern):
                    return True
            elif pattern in parts:
                return True

        for pattern in self._gitignore:
            if '/' in pattern:
                if fnmatch.fnmatch(relative, pattern) or relative.startswith(pattern + '/'):
                    return True
            elif any(fnmatch.fnmatch(part, pattern) for part in parts):
                return True
        return False

    def is_indexable(self, relative: str) -> bool:
        path = PurePosixPath(relative)
        if not self.config.file_extensions:
            return True
        return path.suffix.lower() in self.config.file_extensions or path.name in CONFIG_NAMES

    def relative_path(self, path: Union[str, Path]) -> Optional[str]:
        """Workspace-relative posix path, or None when outside the workspace."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root_path / candidate
        try:
            relative = candidate.resolve().relative_to(self.root_path)
        except ValueError:
            return None
        relative_str = relative.as_posix()
        return None if relative_str == '.' else relative_str

    # -- reading --------------------------------------------------------

    def _read(self, relative: str) -> str:
        """Read a workspace file as text.

        Raises FileNotFoundError when the file is gone and WorkspaceIOError
        when it exists but cannot be indexed.
        """
        full_path = self.root_path / relative
        try:
            size = full_path.stat().st_size
            if size > self.config.max_file_size:
                raise WorkspaceIOError(relative, f"file too large ({size} bytes)")
            data = full_path.read_bytes()
        except FileNotFoundError:
            raise
        except IsADirectoryError:
            raise FileNotFoundError(relative)
        except OSError as e:
            raise WorkspaceIOError(relative, str(e)) from e

        if b'\x00' in data:
            raise WorkspaceIOError(relative, "binary content")
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise WorkspaceIOError(relative, "not valid UTF-8 text") from e

    # -- mutation -------------------------------------------------------

    def _index_file(self, relative: str, content: str) -> bool:
        """Store a file and its chunks; returns False when the hash is unchanged."""
        file_hash = content_hash(content)
        existing = self.files.get(relative)
        if existing is not None and existing.hash == file_hash:
            return False

        language = detect_language(relative)
        self.files[relative] = FileRecord(
            path=relative,
            content=content,
            hash=file_hash,
            language=language,
            category=categorize(relative),
            size=len(content.encode('utf-8')),
            indexed_at=time.time(),
        )
        self.chunks[relative] = self.splitter.split(relative, content, language)
        logger.debug(f"Indexed {relative} ({len(self.chunks[relative])} chunks)")
        return True

    def _remove_file(self, relative: str) -> None:
        self.files.pop(relative, None)
        self.chunks.pop(relative, None)
        self.dependencies.pop(relative, None)
        logger.debug(f"Removed {relative} from index")

    def _rebuild_derived(self) -> None:
        """Recompute dependency records, cross references and embeddings."""
        self.dependencies = {
            path: self.analyzer.analyze(path, record.content, record.language)
            for path, record in self.files.items()
        }
        self.analyzer.link_references(
            self.dependencies, {path: record.content for path, record in self.files.items()}
        )

        self.embeddings.clear()
        self._chunk_by_id = {}
        for path in self.files:
            for chunk in self.chunks.get(path, []):
                self.embeddings.add(chunk)
                self._chunk_by_id[chunk.id] = chunk
        self.last_update = datetime.now()

    def _walk(self) -> Iterable[str]:
        for root, dirs, files in os.walk(self.root_path):
            root_path = Path(root)
            rel_root = root_path.relative_to(self.root_path)
            depth = len(rel_root.parts)

            dirs[:] = sorted(
                d for d in dirs if not self._should_ignore((rel_root / d).as_posix())
            )
            if depth >= self.config.max_depth:
                dirs[:] = []
            if depth > self.config.max_depth:
                continue

            for name in sorted(files):
                relative = (rel_root / name).as_posix()
                if self._should_ignore(relative) or not self.is_indexable(relative):
                    continue
                yield relative

    def index_all(self) -> IndexReport:
        """Scan the whole workspace, re-indexing only files whose content changed."""
        started = time.monotonic()
        report = IndexReport()
        self._gitignore = self._parse_gitignore()
        seen = set()

        for relative in self._walk():
            report.scanned += 1
            try:
                content = self._read(relative)
            except FileNotFoundError:
                continue
            except WorkspaceIOError as e:
                logger.warning(f"Skipping {e}")
                report.failed += 1
                continue
            seen.add(relative)
            if self._index_file(relative, content):
                report.indexed += 1
            else:
                report.unchanged += 1

        for relative in [path for path in self.files if path not in seen]:
            self._remove_file(relative)
            report.removed += 1

        if report.changed:
            self._rebuild_derived()

        report.duration = time.monotonic() - started
        logger.info(
            f"Indexed {self.root_path}: {report.indexed} new/changed, {report.unchanged} unchanged, "
            f"{report.removed} removed, {report.failed} failed in {report.duration:.2f}s"
        )
        return report

    def update_index(self, paths: Iterable[Union[str, Path]]) -> IndexReport:
        """Re-index a set of paths; missing paths are treated as deletions."""
        started = time.monotonic()
        report = IndexReport()
        self._gitignore = self._parse_gitignore()

        for path in paths:
            relative = self.relative_path(path)
            if relative is None:
                logger.debug(f"Ignoring path outside workspace: {path}")
                continue
            report.scanned += 1

            if not (self.root_path / relative).exists():
                removed = [p for p in self.files if p == relative or p.startswith(relative + '/')]
                for known in removed:
                    self._remove_file(known)
                report.removed += len(removed)
                continue

            if self._should_ignore(relative) or not self.is_indexable(relative):
                if relative in self.files:
                    self._remove_file(relative)
                    report.removed += 1
                continue
            try:
                content = self._read(relative)
            except FileNotFoundError:
                continue
            except WorkspaceIOError as e:
                logger.warning(f"Skipping {e}")
                report.failed += 1
                # Drop the stale record, as a full pass would.
                if relative in self.files:
                    self._remove_file(relative)
                    report.removed += 1
                continue
            if self._index_file(relative, content):
                report.indexed += 1
            else:
                report.unchanged += 1

        if report.changed:
            self._rebuild_derived()
        report.duration = time.monotonic() - started
        return report

    def clear(self) -> None:
        self.files.clear()
        self.chunks.clear()
        self.dependencies.clear()
        self.embeddings.clear()
        self._chunk_by_id.clear()
        self.last_update = None

    # -- queries --------------------------------------------------------

    def search(self, query: str, limit: int = 10) -> List[SearchResult]:
        """Top ``limit`` chunks by cosine similarity, ties in index order."""
        if not self._chunk_by_id or limit <= 0:
            return []
        scored = sorted(self.embeddings.score(query), key=lambda item: item[1], reverse=True)
        return [
            SearchResult(chunk=self._chunk_by_id[chunk_id], score=score)
            for chunk_id, score in scored[:limit]
        ]

    def get_context(self, query: str, max_chunks: int = 10) -> Dict[str, Any]:
        results = self.search(query, max_chunks)
        relevant_files: List[str] = []
        for result in results:
            if result.chunk.file_path not in relevant_files:
                relevant_files.append(result.chunk.file_path)
        return {
            "relevant_chunks": results,
            "relevant_files": relevant_files,
            "total_files": len(self.files),
            "total_chunks": len(self._chunk_by_id),
        }

    def get_file(self, path: str) -> Optional[FileRecord]:
        return self.files.get(path)

    def get_file_chunks(self, path: str) -> List[Chunk]:
        return list(self.chunks.get(path, []))

    def get_dependencies(self, path: str) -> Optional[DependencyRecord]:
        return self.dependencies.get(path)

    def get_index_stats(self) -> Dict[str, Any]:
        return {
            "total_files": len(self.files),
            "total_chunks": sum(len(chunks) for chunks in self.chunks.values()),
            "total_embeddings": len(self.embeddings),
            "languages": dict(Counter(record.language for record in self.files.values())),
            "categories": dict(Counter(record.category for record in self.files.values())),
            "last_update": self.last_update.isoformat() if self.last_update else None,
        }

    def detect_project_type(self) -> Dict[str, Any]:
        """Guess the project's stack from file names and package.json."""
        names = {PurePosixPath(path).name for path in self.files}
        suffixes = {PurePosixPath(path).suffix for path in self.files}
        project = {
            "is_typescript": 'tsconfig.json' in names or bool(suffixes & {'.ts', '.tsx'}),
            "is_react": '.jsx' in suffixes or '.tsx' in suffixes,
            "is_vue": 'vue.config.js' in names or '.vue' in suffixes,
            "is_angular": 'angular.json' in names,
            "is_node": 'package.json' in names,
            "is_python": '.py' in suffixes or bool(names & {'pyproject.toml', 'setup.py', 'requirements.txt'}),
            "config_files": sorted(path for path in self.files if PurePosixPath(path).name in CONFIG_NAMES),
        }

        package = self.files.get('package.json')
        if package is not None:
            try:
                manifest = json.loads(package.content)
            except json.JSONDecodeError:
                logger.debug("package.json is not valid JSON")
                manifest = {}
            if isinstance(manifest, dict):
                deps = {}
                for key in ('dependencies', 'devDependencies', 'peerDependencies'):
                    if isinstance(manifest.get(key), dict):
                        deps.update(manifest[key])
                project["is_react"] = project["is_react"] or 'react' in deps
                project["is_vue"] = project["is_vue"] or 'vue' in deps
                project["is_angular"] = project["is_angular"] or '@angular/core' in deps
                project["is_typescript"] = project["is_typescript"] or 'typescript' in deps

        if project["is_typescript"]:
            project["preferred_language"] = 'typescript'
        elif project["is_node"] or project["is_react"] or project["is_vue"] or not project["is_python"]:
            project["preferred_language"] = 'javascript'
        else:
            project["preferred_language"] = 'python'
        return project
