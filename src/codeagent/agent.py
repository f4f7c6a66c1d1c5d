"""The agent pipeline: request -> context -> model -> parsed actions -> safe execution."""

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .actions import AgentAction
from .config import AgentSettings, ConfigManager
from .context import ContextRetriever
from .errors import (
    ActionValidationError,
    AgentError,
    ConfirmationDenied,
    LLMTimeoutError,
    OperationInProgress,
    ScopeViolation,
    UndoError,
)
from .indexer import CodebaseIndexer
from .models import ActionResult
from .parser import ResponseParser
from .prompts import build_system_prompt, build_user_prompt
from .providers import CompletionOptions, LLMProvider, build_provider
from .request import RequestAnalyzer
from .safety import ConfirmationGate, SafetyManager
from .session import SessionManager

logger = logging.getLogger(__name__)


class AgentPhase(str, Enum):
    ANALYZING = "analyzing"
    RETRIEVING_CONTEXT = "retrieving_context"
    AWAITING_MODEL = "awaiting_model"
    PARSING = "parsing"
    VALIDATING = "validating"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    REINDEXING = "reindexing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AgentResult:
    """Outcome of one ``process`` call."""

    success: bool
    operation_id: str
    phase: AgentPhase = AgentPhase.ANALYZING
    actions: List[ActionResult] = field(default_factory=list)
    analysis: str = ""
    explanation: str = ""
    context_stats: Dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data


class AgentObserver(Protocol):
    def on_progress(self, message: str, percent: int) -> None:
        ...

    def on_action_result(self, result: ActionResult) -> None:
        ...

    def on_files_changed(self, paths: List[str]) -> None:
        ...


class AgentOrchestrator:
    """Runs agent operations against one workspace.

    Only one ``process`` call may run at a time; the workspace lock lives on
    the indexer so the file monitor can share it. Public methods never
    raise: failures are reported in the returned result.
    """

    def __init__(
        self,
        indexer: CodebaseIndexer,
        safety: SafetyManager,
        provider: LLMProvider,
        settings: Optional[AgentSettings] = None,
        session: Optional[SessionManager] = None,
        parser: Optional[ResponseParser] = None,
        retriever: Optional[ContextRetriever] = None,
        observers: Optional[Iterable[AgentObserver]] = None,
    ):
        self.settings = settings or AgentSettings()
        self.indexer = indexer
        self.safety = safety
        self.provider = provider
        self.session = session or SessionManager()
        self.parser = parser or ResponseParser()
        self.retriever = retriever or ContextRetriever(
            indexer,
            follow_up_limit=self.settings.follow_up_chunks,
            search_limit=self.settings.max_context_chunks,
        )
        self.request_analyzer = RequestAnalyzer()
        self.observers: List[AgentObserver] = list(observers or [])

    @classmethod
    def create(
        cls,
        workspace: Path,
        settings: Optional[AgentSettings] = None,
        config_manager: Optional[ConfigManager] = None,
        provider: Optional[LLMProvider] = None,
        confirmation_gate: Optional[ConfirmationGate] = None,
        observers: Optional[Iterable[AgentObserver]] = None,
    ) -> "AgentOrchestrator":
        """Wire an orchestrator for ``workspace`` from settings and user directories."""
        config_manager = config_manager or ConfigManager(settings)
        settings = settings or config_manager.settings
        workspace = Path(workspace).resolve()
        indexer = CodebaseIndexer(settings.workspace_config(workspace))
        safety = SafetyManager(
            workspace,
            config_manager.backup_dir(workspace),
            max_undo_steps=settings.max_undo_steps,
            confirmation_timeout=settings.confirmation_timeout,
            auto_approve_on_timeout=settings.auto_approve_on_timeout,
            large_content_threshold=settings.large_content_threshold,
            critical_files=settings.critical_files,
            confirmation_gate=confirmation_gate,
        )
        return cls(
            indexer,
            safety,
            provider or build_provider(settings),
            settings=settings,
            observers=observers,
        )

    @property
    def workspace(self) -> str:
        return str(self.indexer.root_path)

    @property
    def is_busy(self) -> bool:
        return self.indexer.lock.locked()

    # -- observers ------------------------------------------------------

    def add_observer(self, observer: AgentObserver) -> None:
        self.observers.append(observer)

    def _notify(self, method: str, *args) -> None:
        for observer in self.observers:
            callback = getattr(observer, method, None)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception as e:
                logger.warning(f"Observer {method} failed: {e}")

    def _progress(self, result: AgentResult, phase: AgentPhase, message: str, percent: int) -> None:
        result.phase = phase
        logger.debug(f"[{result.operation_id}] {phase.value}: {message}")
        self._notify("on_progress", message, percent)

    # -- main entry point -----------------------------------------------

    async def process(
        self,
        request: str,
        current_file: Optional[Dict[str, str]] = None,
        options: Optional[CompletionOptions] = None,
    ) -> AgentResult:
        """Handle one natural-language request end to end."""
        started = time.monotonic()
        result = AgentResult(success=False, operation_id=f"op_{uuid.uuid4().hex[:12]}")

        if self.indexer.lock.locked():
            result.phase = AgentPhase.FAILED
            result.error = str(OperationInProgress())
            return result

        async with self.indexer.lock:
            try:
                await self._run(request, current_file, options, result)
            except AgentError as e:
                logger.error(f"Operation {result.operation_id} failed during {result.phase.value}: {e}")
                result.error = str(e)
                result.phase = AgentPhase.FAILED
            except Exception as e:
                logger.exception(f"Unexpected error in operation {result.operation_id}")
                result.error = f"Unexpected error: {e}"
                result.phase = AgentPhase.FAILED

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Operation {result.operation_id} finished in {result.duration_ms}ms "
            f"({'success' if result.success else result.error})"
        )
        return result

    async def _run(
        self,
        request: str,
        current_file: Optional[Dict[str, str]],
        options: Optional[CompletionOptions],
        result: AgentResult,
    ) -> None:
        self._progress(result, AgentPhase.ANALYZING, "Analyzing request...", 10)
        analysis = self.request_analyzer.analyze(request, (current_file or {}).get("path"))
        session_context = self.session.get_incremental_context(self.workspace, request)

        self._progress(result, AgentPhase.RETRIEVING_CONTEXT, "Retrieving relevant code...", 25)
        context = self.retriever.retrieve(request, session_context)
        result.context_stats = context.stats()
        system_prompt = build_system_prompt(
            analysis, context, session_context, self.indexer.detect_project_type()
        )
        user_prompt = build_user_prompt(request, current_file)

        self._progress(result, AgentPhase.AWAITING_MODEL, "Waiting for the AI model...", 40)
        raw = await self._complete(system_prompt, user_prompt, options)

        self._progress(result, AgentPhase.PARSING, "Parsing response...", 60)
        outcome = self.parser.parse(raw)
        result.analysis = outcome.response.analysis
        result.explanation = outcome.response.explanation
        if not outcome.ok:
            result.error = f"Failed to parse AI response: {outcome.error}"
            result.phase = AgentPhase.FAILED
            return
        actions = outcome.response.actions

        self._progress(result, AgentPhase.VALIDATING, f"Validating {len(actions)} actions...", 70)
        await self._confirm(actions, context.relevant_files, result)

        self._progress(result, AgentPhase.EXECUTING, "Applying changes...", 80)
        results = self.safety.apply(actions)
        result.actions = results
        for action_result in results:
            self._notify("on_action_result", action_result)

        self._progress(result, AgentPhase.REINDEXING, "Updating index...", 90)
        changed = list(dict.fromkeys(r.path for r in results if r.executed))
        if changed:
            self.indexer.update_index(changed)
            self._notify("on_files_changed", changed)
        self.session.update_session(
            self.workspace,
            result.operation_id,
            request,
            result.analysis,
            results,
            context.relevant_chunks,
            files_analyzed=len(context.relevant_files),
        )

        result.success = True
        self._progress(result, AgentPhase.DONE, "Done", 100)

    async def _complete(
        self, system_prompt: str, user_prompt: str, options: Optional[CompletionOptions]
    ) -> str:
        if options is None:
            options = CompletionOptions(
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
                stream=self.settings.stream,
            )
        if options.stream and options.on_delta is None:
            received = [0]

            def on_delta(delta: str) -> None:
                received[0] += len(delta)
                self._notify("on_progress", f"Receiving response... {received[0]} characters", 50)

            options = replace(options, on_delta=on_delta)

        timeout = self.settings.llm_timeout
        try:
            return await asyncio.wait_for(
                self.provider.complete(system_prompt, user_prompt, options), timeout
            )
        except asyncio.TimeoutError:
            raise LLMTimeoutError(timeout) from None

    async def _confirm(self, actions: List[AgentAction], scope: List[str], result: AgentResult) -> None:
        report = self.safety.validate(actions, scope)
        for warning in report.warnings:
            logger.warning(warning)
        if not report.valid:
            raise ActionValidationError(report.errors)
        if report.scoped_violations:
            logger.info(str(ScopeViolation(report.scoped_violations)))
        if report.requires_confirmation:
            self._progress(result, AgentPhase.AWAITING_CONFIRMATION, "Waiting for confirmation...", 75)
            if not await self.safety.request_confirmation(actions, report):
                raise ConfirmationDenied()

    # -- auxiliary surface ----------------------------------------------

    def search(self, query: str, limit: int = 10) -> Dict[str, Any]:
        results = self.indexer.search(query, limit)
        return {
            "success": True,
            "results": [
                {
                    "chunk_id": r.chunk.id,
                    "file_path": r.chunk.file_path,
                    "start_line": r.chunk.start_line,
                    "end_line": r.chunk.end_line,
                    "score": r.score,
                    "content": r.chunk.text,
                }
                for r in results
            ],
        }

    def get_index_stats(self) -> Dict[str, Any]:
        return {"success": True, "stats": self.indexer.get_index_stats()}

    def _reindex(self, paths: List[str]) -> None:
        if paths:
            self.indexer.update_index(paths)
            self._notify("on_files_changed", paths)

    def undo(self, index: Optional[int] = None) -> Dict[str, Any]:
        try:
            result = self.safety.undo(index)
        except UndoError as e:
            return {"success": False, "error": str(e)}
        self._reindex([result["path"]])
        return result

    def undo_multiple(self, indices: Iterable[int]) -> Dict[str, Any]:
        results = self.safety.undo_multiple(indices)
        self._reindex(list(dict.fromkeys(r["path"] for r in results if r["success"])))
        return {
            "success": all(r["success"] for r in results),
            "results": results,
            "undone": sum(1 for r in results if r["success"]),
        }

    def get_undo_info(self) -> Dict[str, Any]:
        return {"success": True, **self.safety.get_undo_info()}

    def get_undo_details(self) -> Dict[str, Any]:
        return {"success": True, "actions": self.safety.get_undo_details()}

    def clear_undo(self) -> Dict[str, Any]:
        self.safety.clear_undo()
        return {"success": True}

    def cleanup_backups(self, max_age: Optional[float] = None) -> Dict[str, Any]:
        if max_age is None:
            max_age = self.settings.backup_max_age
        return {"success": True, **self.safety.cleanup_backups(max_age)}

    def confirm_pending(self, approved: bool) -> Dict[str, Any]:
        if self.safety.confirm_pending(approved):
            return {"success": True, "approved": approved}
        return {"success": False, "error": "No confirmation is pending"}

    def get_session_stats(self) -> Dict[str, Any]:
        stats = self.session.get_session_stats(self.workspace)
        if stats is None:
            return {"success": False, "error": "No active session"}
        return {"success": True, "session": stats}

    def clear_session(self) -> Dict[str, Any]:
        self.session.clear_session(self.workspace)
        return {"success": True}
