"""Workflow orchestration engine for promptrun."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, TypeVar

from pydantic import ValidationError

from .audit import (
    STEP_FAILED,
    WORKFLOW_ABORTED,
    WORKFLOW_SETTLED,
    WORKFLOW_STARTED,
    AuditEvent,
    AuditSink,
    audit_sink_from_config,
)
from .config import PromptrunConfig, load_config
from .contracts import (
    ExecutionState,
    ParallelStep,
    RunWorkflowResult,
    StepResult,
    WorkflowDefinition,
    WorkflowStatus,
)
from .errors import (
    OrchestrationError,
    PersistenceError,
    PromptrunError,
    WorkflowValidationError,
)
from .persistence import WorkflowStateRepository, get_repository
from .prompts import PromptService
from .runners import StepRunner, default_runners

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COMPLETED_MESSAGE = "Workflow completed successfully"


def partition_steps(steps: Sequence[T], threads: int) -> List[List[T]]:
    """Deal ``steps`` round-robin into ``threads`` partitions.

    Step ``i`` lands in partition ``i % threads``; partitions may be empty.
    """
    if threads < 1:
        raise OrchestrationError(f"Fan-out degree must be at least 1, got {threads}")
    partitions: List[List[T]] = [[] for _ in range(threads)]
    for index, step in enumerate(steps):
        partitions[index % threads].append(step)
    return partitions


@dataclass
class PartitionOutcome:
    """What one partition of a parallel block produced."""

    index: int
    success: bool
    context: Dict[str, Any]
    outputs: Dict[str, Any] = field(default_factory=dict)
    history: List[StepResult] = field(default_factory=list)
    error: Optional[PersistenceError] = None


@dataclass
class _Outcome:
    success: bool
    message: str
    context: Dict[str, Any]
    outputs: Dict[str, Any]
    history: List[StepResult]
    settled: bool = False


def _status_of(outcome: _Outcome) -> WorkflowStatus:
    return WorkflowStatus.COMPLETED if outcome.success else WorkflowStatus.FAILED


@dataclass
class _BlockOutcome:
    success: bool
    outputs: Dict[str, Any]
    history: List[StepResult]
    error: Optional[str] = None


class _CheckpointWriter:
    """Writes the checkpoints of one execution.

    Holds the latest main-line snapshot and numbers every checkpoint,
    partition checkpoints included, in the order it is issued.
    """

    def __init__(self, repository: WorkflowStateRepository, state: ExecutionState):
        self._repository = repository
        self.state = state
        self._sequence = -1

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    async def _write(self, state: ExecutionState) -> None:
        try:
            await self._repository.save_workflow_state(state)
        except Exception as e:
            logger.error(
                f"Failed to persist checkpoint {state.sequence} for "
                f"execution_id={state.execution_id}: {e}"
            )
            raise PersistenceError(
                f"Failed to persist checkpoint {state.sequence} of execution "
                f"{state.execution_id}: {e}"
            ) from e

    async def initial(self) -> None:
        self.state = self.state.advance(sequence=self._next_sequence())
        await self._write(self.state)

    def begin(self) -> None:
        self.state = self.state.advance(WorkflowStatus.RUNNING)

    async def step_settled(
        self,
        step_id: str,
        context: Mapping[str, Any],
        outputs: Mapping[str, Any],
        history: Sequence[StepResult],
    ) -> None:
        self.state = self.state.advance(
            current_step_id=step_id,
            context=dict(context),
            outputs=dict(outputs),
            history=list(history),
            sequence=self._next_sequence(),
            partition=None,
        )
        await self._write(self.state)

    async def partition_settled(self, block_id: str, outcome: PartitionOutcome) -> None:
        last_step = outcome.history[-1].step_id if outcome.history else block_id
        snapshot = self.state.advance(
            current_step_id=last_step,
            context=dict(outcome.context),
            outputs={**self.state.outputs, **outcome.outputs},
            history=[*self.state.history, *outcome.history],
            sequence=self._next_sequence(),
            partition=outcome.index,
        )
        await self._write(snapshot)

    async def settle(
        self, status: WorkflowStatus, outcome: _Outcome, step_id: Optional[str] = None
    ) -> None:
        """Write the terminal checkpoint.

        ``self.state`` keeps its running status until the write succeeds.
        """
        changes: Dict[str, Any] = dict(
            context=dict(outcome.context),
            outputs=dict(outcome.outputs),
            history=list(outcome.history),
            sequence=self._next_sequence(),
            partition=None,
        )
        if step_id is not None:
            changes["current_step_id"] = step_id
        self.state = self.state.advance(**changes)
        terminal = self.state.advance(status)
        await self._write(terminal)
        self.state = terminal

    async def abort(self, error: BaseException) -> None:
        """Best-effort failed terminal checkpoint after an internal fault."""
        step_id = self.state.current_step_id or self.state.workflow_id
        try:
            self.state = self.state.advance(
                WorkflowStatus.FAILED,
                history=[*self.state.history, StepResult.failure(step_id, str(error))],
                sequence=self._next_sequence(),
                partition=None,
            )
            await self._write(self.state)
        except PromptrunError as e:
            logger.error(
                f"Could not record failed state for execution_id={self.state.execution_id}: {e}"
            )


class WorkflowEngine:
    """Runs workflow definitions and checkpoints their progress."""

    def __init__(
        self,
        repository: WorkflowStateRepository | None = None,
        runners: Optional[Mapping[str, StepRunner]] = None,
        prompt_service: Optional[PromptService] = None,
        config: Optional[PromptrunConfig] = None,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self._repository = (
            repository if repository is not None else get_repository(config=config)
        )
        self._runners: Dict[str, StepRunner] = (
            dict(runners)
            if runners is not None
            else default_runners(prompt_service, config)
        )
        self._audit_sink = (
            audit if audit is not None else audit_sink_from_config(config or load_config())
        )

    # ------------------------------------------------------------------
    # Definitions
    @staticmethod
    def _build(data: Any) -> WorkflowDefinition:
        if isinstance(data, WorkflowDefinition):
            return data
        try:
            return WorkflowDefinition.model_validate(data)
        except ValidationError as e:
            raise WorkflowValidationError(
                f"Invalid workflow: {e}", errors=e.errors(include_url=False)
            ) from e

    def parse_workflow(self, data: Any) -> WorkflowDefinition:
        """Parse and validate a workflow definition.

        Raises:
            WorkflowValidationError: If the definition is malformed, including
                duplicate step ids or output names and nested parallel blocks.
        """
        workflow = self._build(data)
        problems = workflow.uniqueness_errors()
        if problems:
            raise WorkflowValidationError(
                f"Invalid workflow: {'; '.join(problems)}", errors=problems
            )
        return workflow

    def validate_workflow(self, data: Any) -> bool:
        """Return ``True`` when ``data`` is a valid workflow definition."""
        try:
            self.parse_workflow(data)
        except WorkflowValidationError:
            return False
        return True

    # ------------------------------------------------------------------
    # Execution
    async def run_workflow_steps(
        self,
        workflow: WorkflowDefinition | Mapping[str, Any],
        initial_state: Optional[ExecutionState] = None,
        runners: Optional[Mapping[str, StepRunner]] = None,
    ) -> RunWorkflowResult:
        """Run ``workflow`` without persisting anything.

        The context starts from ``workflow.variables`` overlaid with
        ``initial_state.context``. Execution stops at the first failed step.
        """
        workflow = self._build(workflow)
        context = dict(workflow.variables)
        if initial_state is not None:
            context.update(initial_state.context)

        outcome = await self._drive(workflow, context, runners or self._runners)
        return RunWorkflowResult(
            success=outcome.success,
            message=outcome.message,
            outputs=outcome.outputs,
            history=outcome.history,
            execution_id=initial_state.execution_id if initial_state else None,
            status=WorkflowStatus.COMPLETED if outcome.success else WorkflowStatus.FAILED,
        )

    async def run_workflow(
        self,
        workflow: WorkflowDefinition | Mapping[str, Any],
        user_id: Optional[str] = None,
    ) -> RunWorkflowResult:
        """Run ``workflow`` and checkpoint it through the repository.

        Writes the initial pending state, one checkpoint per top-level step
        and a final checkpoint carrying the terminal status. A parallel block
        writes one checkpoint per partition plus one at the join. When the
        block opens the workflow its partition checkpoints are the first
        states written, and when it closes the run its join checkpoint is the
        terminal one. A workflow made of a single block with ``threads=N``
        therefore writes exactly ``N + 1`` checkpoints.

        Start, step failures and the outcome are reported to the audit sink
        together with ``user_id``.

        Raises:
            WorkflowValidationError: Before anything is persisted.
            PersistenceError: If a checkpoint cannot be written.
            OrchestrationError: On an internal fault.
        """
        workflow = self.parse_workflow(workflow)
        writer = _CheckpointWriter(self._repository, ExecutionState.start(workflow))
        execution_id = writer.state.execution_id
        logger.info(f"Starting workflow {workflow.id} execution_id={execution_id}")
        await self._audit(
            WORKFLOW_STARTED,
            workflow.id,
            execution_id,
            user_id,
            {"name": workflow.name, "version": workflow.version},
        )

        try:
            if not isinstance(workflow.steps[0], ParallelStep):
                await writer.initial()
            writer.begin()
            outcome = await self._drive(workflow, writer.state.context, self._runners, writer)
            status = _status_of(outcome)
            if not outcome.settled:
                await writer.settle(status, outcome)
        except Exception as e:
            await writer.abort(e)
            await self._audit(
                WORKFLOW_ABORTED, workflow.id, execution_id, user_id, {"error": str(e)}
            )
            if isinstance(e, PromptrunError):
                raise
            raise OrchestrationError(
                f"Workflow {workflow.id} aborted (execution_id={execution_id}): {e}"
            ) from e

        for result in outcome.history:
            if not result.success:
                await self._audit(
                    STEP_FAILED,
                    workflow.id,
                    execution_id,
                    user_id,
                    {"step_id": result.step_id, "error": result.error},
                )
        await self._audit(
            WORKFLOW_SETTLED,
            workflow.id,
            execution_id,
            user_id,
            {"status": status.value, "message": outcome.message},
        )
        logger.info(
            f"Workflow {workflow.id} {status.value} execution_id={execution_id}"
        )
        return RunWorkflowResult(
            success=outcome.success,
            message=outcome.message,
            outputs=outcome.outputs,
            history=outcome.history,
            execution_id=execution_id,
            status=status,
        )

    async def get_execution(self, execution_id: str) -> ExecutionState | None:
        """Return the latest checkpoint of an execution."""
        return await self._repository.get_workflow_state(execution_id)

    async def list_executions(self, workflow_id: str) -> list[ExecutionState]:
        """Return the latest checkpoint of every execution of a workflow."""
        return await self._repository.list_workflow_states(workflow_id)

    # ------------------------------------------------------------------
    # Internals
    async def _audit(
        self,
        event_type: str,
        workflow_id: str,
        execution_id: str,
        user_id: Optional[str],
        details: Any = None,
    ) -> None:
        event = AuditEvent(
            user_id=user_id,
            workflow_id=workflow_id,
            execution_id=execution_id,
            event_type=event_type,
            details=details,
        )
        try:
            await self._audit_sink.record(event)
        except Exception as e:
            logger.error(
                f"Failed to record audit event {event_type} for "
                f"execution_id={execution_id}: {e}"
            )

    async def _drive(
        self,
        workflow: WorkflowDefinition,
        context: Mapping[str, Any],
        runners: Mapping[str, StepRunner],
        writer: Optional[_CheckpointWriter] = None,
    ) -> _Outcome:
        context = dict(context)
        outputs: Dict[str, Any] = {}
        history: List[StepResult] = []
        last = len(workflow.steps) - 1

        for index, step in enumerate(workflow.steps):
            if isinstance(step, ParallelStep):
                block = await self._run_parallel(
                    step, context, runners, workflow.threads, writer
                )
                history = [*history, *block.history]
                failure = None if block.success else block.error
                if block.success:
                    context = {**context, **block.outputs}
                    outputs = {**outputs, **block.outputs}
            else:
                result = await self._run_step(step, context, runners)
                history = [*history, result]
                failure = None if result.success else f"Step {step.id} failed: {result.error}"
                if result.success:
                    context = {**context, step.output: result.output}
                    outputs = {**outputs, step.output: result.output}

            outcome: Optional[_Outcome] = None
            if failure is not None:
                logger.info(f"Workflow {workflow.id} halted at step {step.id}")
                outcome = _Outcome(False, failure, context, outputs, history)
            elif index == last:
                outcome = _Outcome(True, _COMPLETED_MESSAGE, context, outputs, history)

            if writer is not None:
                if outcome is not None and isinstance(step, ParallelStep):
                    # Join checkpoint of a closing block carries the terminal status.
                    await writer.settle(_status_of(outcome), outcome, step_id=step.id)
                    outcome.settled = True
                else:
                    await writer.step_settled(step.id, context, outputs, history)
            if outcome is not None:
                return outcome

        return _Outcome(True, _COMPLETED_MESSAGE, context, outputs, history)

    async def _run_parallel(
        self,
        step: ParallelStep,
        context: Mapping[str, Any],
        runners: Mapping[str, StepRunner],
        threads: int,
        writer: Optional[_CheckpointWriter],
    ) -> _BlockOutcome:
        fork = MappingProxyType(dict(context))
        partitions = partition_steps(step.steps, threads)
        logger.debug(
            f"Parallel step {step.id}: {len(step.steps)} steps over {threads} partitions"
        )

        async def _partition(index: int, steps: List[Any]) -> PartitionOutcome:
            outcome = await self._run_partition(index, steps, fork, runners)
            if writer is not None:
                try:
                    await writer.partition_settled(step.id, outcome)
                except PersistenceError as e:
                    outcome.error = e
            return outcome

        outcomes = await asyncio.gather(
            *(_partition(index, steps) for index, steps in enumerate(partitions))
        )
        return self._merge(step, partitions, outcomes)

    def _merge(
        self,
        step: ParallelStep,
        partitions: List[List[Any]],
        outcomes: Sequence[PartitionOutcome],
    ) -> _BlockOutcome:
        if [o.index for o in outcomes] != list(range(len(partitions))):
            raise OrchestrationError(
                f"Parallel step {step.id} joined {len(outcomes)} partitions, "
                f"expected {len(partitions)}"
            )
        for outcome in outcomes:
            if outcome.error is not None:
                raise outcome.error

        merged: Dict[str, Any] = {}
        history: List[StepResult] = []
        failures: List[str] = []
        for outcome, steps in zip(outcomes, partitions):
            if len(outcome.history) > len(steps):
                raise OrchestrationError(
                    f"Partition {outcome.index} of step {step.id} reported more "
                    "results than it was assigned"
                )
            history.extend(outcome.history)
            for key, value in outcome.outputs.items():
                merged.setdefault(key, value)
            if not outcome.success:
                failed = outcome.history[-1]
                failures.append(f"Step {failed.step_id} failed: {failed.error}")

        if failures:
            return _BlockOutcome(False, {}, history, "; ".join(failures))
        return _BlockOutcome(True, merged, history)

    async def _run_partition(
        self,
        index: int,
        steps: Sequence[Any],
        fork: Mapping[str, Any],
        runners: Mapping[str, StepRunner],
    ) -> PartitionOutcome:
        context = dict(fork)
        outputs: Dict[str, Any] = {}
        history: List[StepResult] = []
        for step in steps:
            result = await self._run_step(step, context, runners)
            history.append(result)
            if not result.success:
                logger.info(f"Partition {index} halted at step {step.id}")
                return PartitionOutcome(index, False, context, outputs, history)
            context = {**context, step.output: result.output}
            outputs[step.output] = result.output
        logger.info(f"Partition {index} settled after {len(history)} steps")
        return PartitionOutcome(index, True, context, outputs, history)

    async def _run_step(
        self, step: Any, context: Mapping[str, Any], runners: Mapping[str, StepRunner]
    ) -> StepResult:
        runner = runners.get(step.type)
        if runner is None:
            error = OrchestrationError(f"No step runner registered for step type: {step.type}")
            logger.error(f"Step {step.id}: {error}")
            return StepResult.failure(step.id, str(error))

        try:
            result = await runner.run_step(step, MappingProxyType(dict(context)))
            if not isinstance(result, StepResult):
                result = StepResult.model_validate({**dict(result), "step_id": step.id})
            elif result.step_id != step.id:
                result = result.model_copy(update={"step_id": step.id})
        except Exception as e:
            logger.exception(f"Runner for step {step.id} raised unexpectedly")
            return StepResult.failure(step.id, f"{type(e).__name__}: {e}")
        return result

