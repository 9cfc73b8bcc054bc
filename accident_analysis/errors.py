"""
Analysis error types.

Kept in their own module so every layer (graph engine, AI collaborators,
storage, orchestrator) raises and catches the same classes.
"""

from typing import Any, List, Optional


class AnalysisError(Exception):
    """Base class for all accident-analysis errors."""


class NotFound(AnalysisError):
    """Referenced entity is absent."""

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key!r}")


class InvalidEdge(AnalysisError):
    """Self-loop or malformed relation type."""


class MalformedTree(AnalysisError):
    """Persisted tree has a dangling edge, duplicate node id or bad shape."""


class InsufficientFacts(AnalysisError):
    """Tree generation or summary validation requested with zero verified facts."""


class AIServiceUnavailable(AnalysisError):
    """Timeout or transport failure while calling an AI collaborator."""


class AIResponseInvalid(AnalysisError):
    """AI collaborator returned a payload that fails validation."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}: {'; '.join(self.problems[:5])}"
        super().__init__(message)
