"""In-memory implementation of the checkpoint repository."""

from __future__ import annotations

from typing import Dict, List

from ..contracts import ExecutionState
from .repository import WorkflowStateRepository, latest_snapshots


class InMemoryWorkflowStateRepository(WorkflowStateRepository):
    """Store checkpoints in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._checkpoints: List[ExecutionState] = []
        self._by_execution: Dict[str, List[ExecutionState]] = {}

    # ------------------------------------------------------------------
    async def save_workflow_state(self, state: ExecutionState) -> None:
        self._checkpoints.append(state)
        self._by_execution.setdefault(state.execution_id, []).append(state)

    async def get_workflow_state(self, execution_id: str) -> ExecutionState | None:
        snapshots = latest_snapshots(self._by_execution.get(execution_id, []))
        return snapshots[0] if snapshots else None

    async def list_workflow_states(self, workflow_id: str) -> list[ExecutionState]:
        return latest_snapshots(
            s for s in self._checkpoints if s.workflow_id == workflow_id
        )

    async def list_checkpoints(self, execution_id: str) -> list[ExecutionState]:
        return sorted(
            self._by_execution.get(execution_id, []), key=lambda s: s.sequence
        )
