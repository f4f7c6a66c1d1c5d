"""Per-workspace conversation continuity."""

import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from .actions import CONTENT_ACTIONS
from .models import ActionResult, OperationRecord, SearchResult, SessionContext

logger = logging.getLogger(__name__)

FOLLOW_UP_PHRASES = [
    'make it', 'make the', 'make this', 'make that',
    'add more', 'add some', 'improve', 'enhance', 'better', 'more',
    'fix the', 'fix this', 'update the', 'update this',
    'change', 'modify', 'adjust', 'also', 'instead',
]
_FOLLOW_UP_PATTERN = re.compile(r'\b(' + '|'.join(re.escape(p) for p in FOLLOW_UP_PHRASES) + r')\b')
_PRONOUN_PATTERN = re.compile(r'\b(it|this|that|them|those)\b', re.IGNORECASE)

COMMON_WORDS = {'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by'}
SUMMARY_OPERATIONS = 3


def _now() -> str:
    return datetime.now().isoformat()


def _significant_terms(text: str) -> set:
    return {word for word in text.lower().split() if len(word) > 2 and word not in COMMON_WORDS}


def has_context_continuity(current: str, previous: str) -> bool:
    """True when two requests share at least two significant terms."""
    return len(_significant_terms(current) & _significant_terms(previous)) >= 2


def is_follow_up(current: str, previous: str) -> bool:
    if _FOLLOW_UP_PATTERN.search(current.lower()):
        return True
    if _PRONOUN_PATTERN.search(current):
        return True
    return has_context_continuity(current, previous)


class SessionManager:
    """Tracks one session per workspace."""

    def __init__(self):
        self.sessions: Dict[str, SessionContext] = {}

    def get_session(self, workspace: str) -> SessionContext:
        session = self.sessions.get(workspace)
        if session is None:
            now = _now()
            session = SessionContext(
                session_id=f"session_{uuid.uuid4().hex[:12]}",
                workspace=workspace,
                created_at=now,
                last_activity=now,
            )
            self.sessions[workspace] = session
            logger.debug(f"Created session {session.session_id} for {workspace}")
        return session

    def get_incremental_context(self, workspace: str, request: str) -> Optional[Dict[str, Any]]:
        """Continuity context for a new request, None before the first operation."""
        session = self.sessions.get(workspace)
        if session is None or not session.operation_history:
            return None

        last = session.operation_history[-1]
        if is_follow_up(request, last.request):
            return {
                "type": "follow_up",
                "last_request": last.request,
                "last_files_modified": list(session.last_files_modified),
                "last_chunks": list(session.last_chunks),
                "summary": session.summary,
                "operation_history": list(session.operation_history)[-SUMMARY_OPERATIONS:],
            }
        return {"type": "new_request", "summary": session.summary}

    def update_session(
        self,
        workspace: str,
        operation_id: str,
        request: str,
        analysis: str,
        results: List[ActionResult],
        chunks: List[SearchResult],
        files_analyzed: int = 0,
    ) -> None:
        session = self.get_session(workspace)
        executed = [result for result in results if result.executed]
        now = _now()

        session.last_activity = now
        session.last_request = request
        session.last_files_modified = [r.path for r in executed if r.type in CONTENT_ACTIONS]
        session.last_chunks = list(chunks)
        session.operation_history.append(
            OperationRecord(
                id=operation_id,
                timestamp=now,
                request=request,
                analysis=analysis,
                actions=executed,
                files_analyzed=files_analyzed,
                chunks_retrieved=len(chunks),
            )
        )
        session.summary = self._summarize(session)
        logger.debug(f"Updated session {session.session_id} with operation {operation_id}")

    @staticmethod
    def _summarize(session: SessionContext) -> str:
        recent = list(session.operation_history)[-SUMMARY_OPERATIONS:]
        if not recent:
            return "No recent operations"
        parts = []
        for operation in recent:
            types = list(dict.fromkeys(action.type for action in operation.actions))
            files = list(dict.fromkeys(action.path for action in operation.actions))
            parts.append(f"{operation.request} → {', '.join(types) or 'no changes'} on {', '.join(files) or 'no files'}")
        return "; ".join(parts)

    def get_session_stats(self, workspace: str) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(workspace)
        if session is None:
            return None
        return {
            "session_id": session.session_id,
            "created_at": session.created_at,
            "last_activity": session.last_activity,
            "total_operations": len(session.operation_history),
            "total_files_modified": len(session.last_files_modified),
            "total_code_chunks": len(session.last_chunks),
            "summary": session.summary,
        }

    def clear_session(self, workspace: Optional[str] = None) -> None:
        if workspace is None:
            self.sessions.clear()
        else:
            self.sessions.pop(workspace, None)
        logger.debug(f"Cleared session {workspace or 'all'}")
