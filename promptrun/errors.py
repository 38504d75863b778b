"""Exception hierarchy for promptrun."""

from __future__ import annotations

from typing import Any, List, Optional


class PromptrunError(Exception):
    """Base class for all promptrun errors."""


class WorkflowValidationError(PromptrunError):
    """Raised when a workflow definition is malformed.

    Validation happens before any execution starts, so a run rejected with
    this error never produces a checkpoint.
    """

    def __init__(self, message: str, errors: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class StepExecutionError(PromptrunError):
    """Runner-level failure. Never escapes a step runner."""


class UnresolvedVariableError(StepExecutionError):
    """A ``{{var}}`` reference had no value in the workflow context."""

    def __init__(self, names: List[str]) -> None:
        super().__init__(f"Unresolved template variables: {', '.join(names)}")
        self.names = names


class PersistenceError(PromptrunError):
    """The storage backend failed while writing or reading a checkpoint."""


class OrchestrationError(PromptrunError):
    """Internal engine fault, fatal for the run."""


class PromptNotFoundError(PromptrunError):
    """The prompt service has no template with the requested id."""
