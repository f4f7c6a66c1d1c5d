"""Exception hierarchy for codeagent."""

from typing import List, Optional


class AgentError(Exception):
    """Base class for all codeagent errors."""


class WorkspaceIOError(AgentError):
    """A file could not be read, written, stat'ed or removed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class ResponseParseError(AgentError):
    """The LLM reply could not be turned into structured data."""


class ActionValidationError(AgentError):
    """A proposed action batch is malformed or unsafe to run."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Action validation failed: {', '.join(errors)}")
        self.errors = errors


class ScopeViolation(AgentError):
    """An action touches a file outside the operation scope."""

    def __init__(self, paths: List[str]):
        super().__init__(f"{len(paths)} files are outside the current scope")
        self.paths = paths


class LLMTimeoutError(AgentError):
    """The LLM call exceeded its time budget."""

    def __init__(self, timeout: float):
        super().__init__(f"AI service timeout after {timeout:.0f}s")
        self.timeout = timeout


class ConfirmationDenied(AgentError):
    """The user declined a batch that required confirmation."""

    def __init__(self):
        super().__init__("User cancelled the operation")


class ProviderError(AgentError):
    """An LLM provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OperationInProgress(AgentError):
    """Another agent operation already holds the workspace."""

    def __init__(self):
        super().__init__("Another agent operation is already in progress")


class UndoError(AgentError):
    """An undo request could not be satisfied."""
