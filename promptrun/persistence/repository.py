"""Repository abstraction for workflow checkpoint persistence."""

from __future__ import annotations

from typing import Dict, Iterable, List, Protocol

from ..contracts import ExecutionState


class WorkflowStateRepository(Protocol):
    """Protocol for checkpoint storage backends.

    Every ``save_workflow_state`` call records a new snapshot; snapshots are
    never updated in place. The latest snapshot of an execution is the one
    with the highest ``sequence`` (the most recently written on ties).
    """

    async def save_workflow_state(self, state: ExecutionState) -> None:
        """Persist one checkpoint."""

    async def get_workflow_state(self, execution_id: str) -> ExecutionState | None:
        """Return the latest checkpoint of an execution, if any."""

    async def list_workflow_states(self, workflow_id: str) -> list[ExecutionState]:
        """Return the latest checkpoint of each execution of a workflow."""

    async def list_checkpoints(self, execution_id: str) -> list[ExecutionState]:
        """Return every checkpoint of an execution ordered by sequence."""


def latest_snapshots(states: Iterable[ExecutionState]) -> List[ExecutionState]:
    """Reduce checkpoints given in write order to the latest per execution.

    Executions keep the order in which they were first written.
    """
    latest: Dict[str, ExecutionState] = {}
    for state in states:
        current = latest.get(state.execution_id)
        if current is None or state.sequence >= current.sequence:
            latest[state.execution_id] = state
    return list(latest.values())
