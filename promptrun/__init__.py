"""Promptrun: checkpointed workflow execution for prompt pipelines."""

from .audit import AuditEvent, AuditSink, JsonLinesAuditLog, LoggingAuditSink
from .contracts import (
    ExecutionState,
    HttpStep,
    ParallelStep,
    PromptStep,
    RunWorkflowResult,
    ShellStep,
    StepResult,
    WorkflowDefinition,
    WorkflowStatus,
)
from .engine import WorkflowEngine, partition_steps
from .errors import (
    OrchestrationError,
    PersistenceError,
    PromptrunError,
    StepExecutionError,
    WorkflowValidationError,
)
from .persistence import get_repository
from .prompts import InMemoryPromptService
from .runners import default_runners

__version__ = "0.1.0"
__all__ = [
    "AuditEvent",
    "AuditSink",
    "JsonLinesAuditLog",
    "LoggingAuditSink",
    "ExecutionState",
    "HttpStep",
    "InMemoryPromptService",
    "OrchestrationError",
    "ParallelStep",
    "PersistenceError",
    "PromptStep",
    "PromptrunError",
    "RunWorkflowResult",
    "ShellStep",
    "StepExecutionError",
    "StepResult",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowStatus",
    "WorkflowValidationError",
    "default_runners",
    "get_repository",
    "partition_steps",
]
