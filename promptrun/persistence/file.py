"""JSON-file implementation of the checkpoint repository."""

from __future__ import annotations

import time
import uuid
from pathlib import Path as SyncPath

import anyio

from ..contracts import ExecutionState
from .repository import WorkflowStateRepository


class FileWorkflowStateRepository(WorkflowStateRepository):
    """Persist checkpoints as JSON documents on disk.

    Layout: ``<root>/<execution_id>/<sequence>-<write time>.json``. File names
    sort in checkpoint order, so the last one is the latest snapshot.
    """

    def __init__(self, root: str | SyncPath):
        self.root = anyio.Path(root)

    def _execution_dir(self, execution_id: str) -> anyio.Path:
        if not execution_id or SyncPath(execution_id).name != execution_id:
            raise ValueError(f"Invalid execution id: {execution_id!r}")
        return self.root / execution_id

    async def _read_dir(self, directory: anyio.Path) -> list[ExecutionState]:
        if not await directory.is_dir():
            return []
        names = sorted(
            [p.name async for p in directory.iterdir() if p.suffix == ".json"]
        )
        return [
            ExecutionState.model_validate_json(await (directory / name).read_text())
            for name in names
        ]

    # ------------------------------------------------------------------
    async def save_workflow_state(self, state: ExecutionState) -> None:
        directory = self._execution_dir(state.execution_id)
        await directory.mkdir(parents=True, exist_ok=True)
        name = f"{state.sequence:08d}-{time.time_ns():020d}"
        tmp = directory / f".{name}.{uuid.uuid4().hex}.tmp"
        await tmp.write_text(state.model_dump_json(indent=2))
        await tmp.rename(directory / f"{name}.json")

    async def get_workflow_state(self, execution_id: str) -> ExecutionState | None:
        snapshots = await self._read_dir(self._execution_dir(execution_id))
        return snapshots[-1] if snapshots else None

    async def list_workflow_states(self, workflow_id: str) -> list[ExecutionState]:
        if not await self.root.is_dir():
            return []
        latest = []
        async for directory in self.root.iterdir():
            if not await directory.is_dir():
                continue
            snapshots = await self._read_dir(directory)
            if snapshots and snapshots[-1].workflow_id == workflow_id:
                latest.append(snapshots[-1])
        return sorted(latest, key=lambda s: s.created_at)

    async def list_checkpoints(self, execution_id: str) -> list[ExecutionState]:
        return await self._read_dir(self._execution_dir(execution_id))
