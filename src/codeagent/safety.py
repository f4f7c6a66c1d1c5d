"""Validated, backed-up execution of agent actions with an undo history."""

import asyncio
import difflib
import hashlib
import itertools
import logging
import re
import shutil
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from .actions import (
    CONTENT_ACTIONS,
    CREATE_FILE,
    CREATE_FOLDER,
    DELETE_FILE,
    EDIT_FILE,
    AgentAction,
    describe_action,
)
from .errors import ActionValidationError, AgentError, ConfirmationDenied, UndoError, WorkspaceIOError
from .models import ActionResult, Backup, UndoEntry

logger = logging.getLogger(__name__)

CRITICAL_FILES = ('package.json', 'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml', '.gitignore', 'README.md')
DEFAULT_MAX_UNDO_STEPS = 10
DEFAULT_CONFIRMATION_TIMEOUT = 10.0
DEFAULT_LARGE_CONTENT = 10000
DEFAULT_BACKUP_MAX_AGE = 24 * 60 * 60

_WINDOWS_DRIVE = re.compile(r'^[A-Za-z]:')


@dataclass
class ValidationReport:
    valid: bool = True
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    requires_confirmation: bool = False
    scoped_violations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ConfirmationGate = Callable[[Sequence[AgentAction], ValidationReport], Awaitable[bool]]


def unified_diff(path: str, old: str, new: str) -> str:
    return ''.join(
        difflib.unified_diff(
            old.splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        )
    )


def _now() -> str:
    return datetime.now().isoformat()


class SafetyManager:
    """Guards every mutation the agent makes to a workspace.

    Actions are validated against the workspace boundary, the operation
    scope and a small risk policy. Risky batches go through a confirmation
    gate. Each executed action is recorded on a bounded undo stack together
    with a snapshot of the file it replaced.

    Undo indices are stack positions: 0 is the oldest entry still held.
    """

    def __init__(
        self,
        workspace: Path,
        backup_dir: Path,
        max_undo_steps: int = DEFAULT_MAX_UNDO_STEPS,
        confirmation_timeout: Optional[float] = DEFAULT_CONFIRMATION_TIMEOUT,
        auto_approve_on_timeout: bool = True,
        large_content_threshold: int = DEFAULT_LARGE_CONTENT,
        critical_files: Iterable[str] = CRITICAL_FILES,
        confirmation_gate: Optional[ConfirmationGate] = None,
    ):
        self.workspace = Path(workspace).resolve()
        self.backup_dir = Path(backup_dir)
        self.max_undo_steps = max_undo_steps
        self.confirmation_timeout = confirmation_timeout
        self.auto_approve_on_timeout = auto_approve_on_timeout
        self.large_content_threshold = large_content_threshold
        self.critical_files = set(critical_files)
        self.confirmation_gate = confirmation_gate
        self.undo_stack: List[UndoEntry] = []
        self._pending: Optional[asyncio.Future] = None
        self._counter = itertools.count()

    # -- validation -----------------------------------------------------

    def resolve(self, relative: str) -> Path:
        """Absolute path for a workspace-relative path, refusing anything that escapes."""
        if PurePosixPath(relative).is_absolute() or _WINDOWS_DRIVE.match(relative):
            raise ValueError(f"Absolute path not allowed: {relative}")
        if '..' in PurePosixPath(relative).parts:
            raise ValueError(f"Path escapes the workspace: {relative}")
        full_path = (self.workspace / relative).resolve()
        try:
            full_path.relative_to(self.workspace)
        except ValueError:
            raise ValueError(f"Path escapes the workspace: {relative}") from None
        return full_path

    def validate(self, actions: Sequence[AgentAction], scoped_files: Optional[Iterable[str]] = None) -> ValidationReport:
        report = ValidationReport()
        scope = set(scoped_files or ())

        for action in actions:
            try:
                self.resolve(action.path)
            except ValueError as e:
                report.valid = False
                report.errors.append(str(e))
                continue

            if scope and action.path not in scope:
                if action.path not in report.scoped_violations:
                    report.scoped_violations.append(action.path)
                    report.warnings.append(f"File {action.path} is outside the current scope")
                report.requires_confirmation = True

            if action.type == DELETE_FILE:
                report.requires_confirmation = True
                report.warnings.append(f"Deleting file: {action.path}")

            content = getattr(action, 'content', None)
            if content is not None and len(content) > self.large_content_threshold:
                report.warnings.append(f"Large content change in {action.path} ({len(content)} characters)")

            if PurePosixPath(action.path).name in self.critical_files:
                report.requires_confirmation = True
                report.warnings.append(f"Modifying critical file: {action.path}")

        return report

    # -- confirmation ---------------------------------------------------

    async def request_confirmation(self, actions: Sequence[AgentAction], report: ValidationReport) -> bool:
        """Ask the gate (or an external ``confirm_pending`` call) to approve a batch.

        When nobody answers within ``confirmation_timeout`` seconds the batch
        is approved or denied according to ``auto_approve_on_timeout``.
        """
        logger.info(f"Requesting confirmation: {'; '.join(report.warnings)}")
        if self.confirmation_gate is not None:
            waiter = self.confirmation_gate(actions, report)
        else:
            self._pending = asyncio.get_running_loop().create_future()
            waiter = self._pending

        try:
            approved = await asyncio.wait_for(waiter, self.confirmation_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Confirmation timed out after {self.confirmation_timeout}s, "
                f"{'approving' if self.auto_approve_on_timeout else 'denying'}"
            )
            approved = self.auto_approve_on_timeout
        except Exception as e:
            logger.error(f"Confirmation failed: {e}")
            approved = False
        finally:
            self._pending = None
        return bool(approved)

    def confirm_pending(self, approved: bool) -> bool:
        """Resolve an outstanding confirmation request; False when none is waiting."""
        if self._pending is None or self._pending.done():
            return False
        self._pending.set_result(approved)
        return True

    @property
    def has_pending_confirmation(self) -> bool:
        return self._pending is not None and not self._pending.done()

    # -- execution ------------------------------------------------------

    async def execute(
        self, actions: Sequence[AgentAction], scoped_files: Optional[Iterable[str]] = None
    ) -> List[ActionResult]:
        """Validate, confirm if needed, then apply every action independently."""
        report = self.validate(actions, scoped_files)
        if not report.valid:
            raise ActionValidationError(report.errors)
        if report.requires_confirmation:
            if not await self.request_confirmation(actions, report):
                logger.info("User cancelled the operation")
                raise ConfirmationDenied()
        return self.apply(actions)

    def apply(self, actions: Sequence[AgentAction]) -> List[ActionResult]:
        results = []
        for action in actions:
            try:
                result = self._apply_one(action)
                logger.info(f"{action.type}: {action.path}")
            except (OSError, ValueError, AgentError) as e:
                logger.error(f"Failed to execute {action.type}: {action.path}: {e}")
                result = ActionResult(
                    type=action.type,
                    path=action.path,
                    executed=False,
                    timestamp=_now(),
                    error=str(e),
                    reason=action.reason,
                )
            results.append(result)
        return results

    def _apply_one(self, action: AgentAction) -> ActionResult:
        full_path = self.resolve(action.path)
        existed = full_path.exists()
        backup = None
        diff = None

        if action.type in CONTENT_ACTIONS:
            if full_path.is_dir():
                raise WorkspaceIOError(action.path, "is a directory")
            old = self._read_for_diff(full_path) if existed else ''
            if existed:
                backup = self._backup(action.path, full_path)
            full_path.parent.mkdir(parents=True, exist_ok=True)
            with open(full_path, 'w', encoding='utf-8', newline='') as f:
                f.write(action.content)
            diff = unified_diff(action.path, old, action.content)
        elif action.type == DELETE_FILE:
            if not existed:
                raise WorkspaceIOError(action.path, "file does not exist")
            if full_path.is_dir():
                raise WorkspaceIOError(action.path, "is a directory")
            old = self._read_for_diff(full_path)
            backup = self._backup(action.path, full_path)
            full_path.unlink()
            diff = unified_diff(action.path, old, '')
        elif action.type == CREATE_FOLDER:
            if existed and not full_path.is_dir():
                raise WorkspaceIOError(action.path, "a file with this name exists")
            full_path.mkdir(parents=True, exist_ok=True)
        else:
            raise ValueError(f"Unknown action type: {action.type}")

        timestamp = _now()
        self._push_undo(UndoEntry(action=action, backup=backup, existed_before=existed, timestamp=timestamp))
        return ActionResult(
            type=action.type,
            path=action.path,
            executed=True,
            timestamp=timestamp,
            diff=diff,
            backup_path=str(backup.backup_path) if backup else None,
            reason=action.reason,
        )

    @staticmethod
    def _read_for_diff(path: Path) -> str:
        return path.read_bytes().decode('utf-8', errors='replace')

    def _backup(self, relative: str, full_path: Path) -> Backup:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        digest = hashlib.sha1(relative.encode('utf-8')).hexdigest()[:10]
        name = f"{full_path.name}.{digest}.{time.time_ns()}.{next(self._counter)}.backup"
        backup_path = self.backup_dir / name
        shutil.copyfile(full_path, backup_path)
        logger.debug(f"Backed up {relative} to {backup_path}")
        return Backup(original_path=relative, backup_path=backup_path, timestamp=_now())

    def _push_undo(self, entry: UndoEntry) -> None:
        self.undo_stack.append(entry)
        while len(self.undo_stack) > self.max_undo_steps:
            self.undo_stack.pop(0)

    # -- undo -----------------------------------------------------------

    def undo(self, index: Optional[int] = None) -> Dict[str, Any]:
        """Revert one entry, the most recent by default."""
        if not self.undo_stack:
            raise UndoError("No actions to undo")
        if index is None:
            index = len(self.undo_stack) - 1
        if index < 0 or index >= len(self.undo_stack):
            raise UndoError("Invalid action index")

        entry = self.undo_stack.pop(index)
        try:
            self._revert(entry)
        except (OSError, ValueError) as e:
            self.undo_stack.insert(index, entry)
            raise UndoError(f"Failed to undo {describe_action(entry.action)}: {e}") from e
        logger.info(f"Undid {entry.action.type}: {entry.action.path}")
        return {
            "success": True,
            "index": index,
            "action": entry.action.type,
            "path": entry.action.path,
            "description": entry.description,
        }

    def undo_multiple(self, indices: Iterable[int]) -> List[Dict[str, Any]]:
        """Undo several entries, highest index first so positions stay valid."""
        results = []
        for index in sorted(set(indices), reverse=True):
            try:
                results.append(self.undo(index))
            except UndoError as e:
                results.append({"success": False, "index": index, "error": str(e)})
        return results

    def _revert(self, entry: UndoEntry) -> None:
        action = entry.action
        full_path = self.resolve(action.path)

        if entry.backup is not None:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(entry.backup.backup_path, full_path)
            entry.backup.backup_path.unlink(missing_ok=True)
        elif action.type in (CREATE_FILE, EDIT_FILE):
            full_path.unlink(missing_ok=True)
        elif action.type == CREATE_FOLDER and not entry.existed_before and full_path.is_dir():
            if any(full_path.iterdir()):
                logger.info(f"Leaving non-empty folder {action.path} in place")
            else:
                full_path.rmdir()

    def get_undo_info(self) -> Dict[str, Any]:
        last = self.undo_stack[-1] if self.undo_stack else None
        return {
            "can_undo": bool(self.undo_stack),
            "undo_count": len(self.undo_stack),
            "last_action": last.description if last else None,
        }

    def get_undo_details(self) -> List[Dict[str, Any]]:
        """Undo entries, newest first, each with its stack index."""
        details = []
        for index in range(len(self.undo_stack) - 1, -1, -1):
            entry = self.undo_stack[index]
            details.append({
                "index": index,
                "type": entry.action.type,
                "path": entry.action.path,
                "timestamp": entry.timestamp,
                "description": entry.description,
                "has_backup": entry.backup is not None,
                "can_undo": True,
            })
        return details

    def clear_undo(self) -> None:
        self.undo_stack.clear()
        logger.info("Cleared undo stack")

    def cleanup_backups(self, max_age: float = DEFAULT_BACKUP_MAX_AGE) -> Dict[str, int]:
        """Delete backups older than ``max_age`` seconds and forget undo entries that used them."""
        removed = set()
        if self.backup_dir.is_dir():
            now = time.time()
            for path in self.backup_dir.iterdir():
                try:
                    if path.is_file() and now - path.stat().st_mtime > max_age:
                        path.unlink()
                        removed.add(path)
                        logger.debug(f"Cleaned up old backup: {path.name}")
                except OSError as e:
                    logger.warning(f"Could not remove backup {path}: {e}")

        before = len(self.undo_stack)
        self.undo_stack = [
            entry for entry in self.undo_stack
            if entry.backup is None or entry.backup.backup_path not in removed
        ]
        return {"removed_backups": len(removed), "dropped_entries": before - len(self.undo_stack)}
