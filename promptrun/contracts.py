"""Core data contracts for promptrun workflows."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_THREADS
from .errors import OrchestrationError

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)


class PromptStep(_StepBase):
    """Render a stored prompt template."""

    type: Literal["prompt"] = "prompt"
    prompt_id: str = Field(alias="promptId", min_length=1)
    input: Dict[str, Any] = Field(default_factory=dict)
    output: str = Field(min_length=1)
    timeout: Optional[float] = Field(default=None, gt=0)


class ShellStep(_StepBase):
    """Run a shell command and capture its standard output."""

    type: Literal["shell"] = "shell"
    command: str = Field(min_length=1)
    output: str = Field(min_length=1)
    timeout: Optional[float] = Field(default=None, gt=0)


class BasicAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str


class HttpStep(_StepBase):
    """Issue an HTTP request and capture the response body."""

    type: Literal["http"] = "http"
    method: str = "GET"
    url: str = Field(min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Union[Dict[str, Any], List[Any], str]] = None
    auth: Optional[BasicAuth] = None
    output_field: Optional[str] = Field(default=None, alias="outputField")
    output: str = Field(min_length=1)
    timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("method")
    @classmethod
    def _check_method(cls, v: str) -> str:
        # Templated methods are checked again once resolved.
        if "{{" in v:
            return v
        method = v.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method


AtomicStep = Annotated[
    Union[PromptStep, ShellStep, HttpStep], Field(discriminator="type")
]


class ParallelStep(_StepBase):
    """Fan a block of steps out over ``workflow.threads`` partitions."""

    type: Literal["parallel"] = "parallel"
    steps: List[AtomicStep] = Field(min_length=1)

    @field_validator("steps", mode="before")
    @classmethod
    def _reject_nesting(cls, v: Any) -> Any:
        for item in v or []:
            kind = item.get("type") if isinstance(item, dict) else getattr(item, "type", None)
            if kind == "parallel":
                raise ValueError("Parallel steps cannot be nested")
        return v


Step = Annotated[
    Union[PromptStep, ShellStep, HttpStep, ParallelStep], Field(discriminator="type")
]


class WorkflowDefinition(BaseModel):
    """Named, versioned pipeline of steps."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    version: int = 1
    threads: int = Field(default=DEFAULT_THREADS, ge=1)
    variables: Dict[str, Any] = Field(default_factory=dict)
    steps: List[Step] = Field(min_length=1)

    def uniqueness_errors(self) -> List[str]:
        """Describe duplicate step ids and output names, if any.

        Not part of model validation: the stateless loop accepts overlapping
        outputs and applies them last-write-wins.
        """
        problems: List[str] = []
        step_ids: set[str] = set()
        outputs: set[str] = set()
        for step in self.iter_steps():
            if step.id in step_ids:
                problems.append(f"Duplicate step id: '{step.id}'")
            step_ids.add(step.id)
            output = getattr(step, "output", None)
            if output is None:
                continue
            if output in outputs:
                problems.append(f"Duplicate output name: '{output}'")
            outputs.add(output)
        return problems

    def iter_steps(self):
        """Yield every step, descending into parallel blocks."""
        for step in self.steps:
            yield step
            if isinstance(step, ParallelStep):
                yield from step.steps


class StepResult(BaseModel):
    """Outcome of a single step execution."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    success: bool
    output: Any = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def failure(cls, step_id: str, error: str) -> "StepResult":
        """Failure synthesised outside a runner; carries no timestamps."""
        return cls(step_id=step_id, success=False, error=error)


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: Dict[WorkflowStatus, tuple[WorkflowStatus, ...]] = {
    WorkflowStatus.PENDING: (
        WorkflowStatus.RUNNING,
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
    ),
    WorkflowStatus.RUNNING: (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED),
    WorkflowStatus.COMPLETED: (),
    WorkflowStatus.FAILED: (),
}


class ExecutionState(BaseModel):
    """Immutable snapshot of a workflow run.

    Every checkpoint is a new snapshot tagged with the run's
    ``execution_id``. ``sequence`` orders snapshots of one execution;
    ``partition`` marks checkpoints written by a parallel partition.
    """

    model_config = ConfigDict(frozen=True)

    execution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_step_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    history: List[StepResult] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sequence: int = 0
    partition: Optional[int] = None

    @classmethod
    def start(cls, workflow: WorkflowDefinition) -> "ExecutionState":
        """Create the pending state of a fresh run of ``workflow``."""
        return cls(workflow_id=workflow.id, context=dict(workflow.variables))

    @property
    def is_terminal(self) -> bool:
        return self.status in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)

    def advance(
        self, status: Optional[WorkflowStatus] = None, **changes: Any
    ) -> "ExecutionState":
        """Return a new snapshot with ``changes`` applied.

        Raises:
            OrchestrationError: If ``status`` would move the run backwards or
                out of a terminal state.
        """
        update = dict(changes)
        if status is not None and status != self.status:
            if status not in _TRANSITIONS[self.status]:
                raise OrchestrationError(
                    f"Illegal status transition {self.status.value} -> {status.value} "
                    f"for execution {self.execution_id}"
                )
            update["status"] = status
        update.setdefault("updated_at", utcnow())
        return self.model_copy(update=update)


class RunWorkflowResult(BaseModel):
    """Result of running a workflow."""

    success: bool
    message: str
    outputs: Dict[str, Any] = Field(default_factory=dict)
    history: List[StepResult] = Field(default_factory=list)
    execution_id: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.COMPLETED
