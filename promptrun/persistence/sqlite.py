"""SQLite implementation of the checkpoint repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..contracts import ExecutionState
from .repository import WorkflowStateRepository, latest_snapshots


class SQLiteWorkflowStateRepository(WorkflowStateRepository):
    """Persist checkpoints using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # Partition checkpoints are written from worker threads concurrently.
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_checkpoints (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    execution_id TEXT NOT NULL,
                    workflow_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    partition INTEGER,
                    status TEXT NOT NULL,
                    state TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_checkpoints_execution
                ON workflow_checkpoints (execution_id, sequence)
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    async def save_workflow_state(self, state: ExecutionState) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_checkpoints
                (execution_id, workflow_id, sequence, partition, status, state)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            state.execution_id,
            state.workflow_id,
            state.sequence,
            state.partition,
            state.status.value,
            state.model_dump_json(),
        )

    async def get_workflow_state(self, execution_id: str) -> ExecutionState | None:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT state FROM workflow_checkpoints WHERE execution_id = ?
            ORDER BY sequence DESC, id DESC LIMIT 1
            """,
            execution_id,
        )
        if not rows:
            return None
        return ExecutionState.model_validate_json(rows[0]["state"])

    async def list_workflow_states(self, workflow_id: str) -> list[ExecutionState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT state FROM workflow_checkpoints WHERE workflow_id = ? ORDER BY id",
            workflow_id,
        )
        return latest_snapshots(
            ExecutionState.model_validate_json(r["state"]) for r in rows
        )

    async def list_checkpoints(self, execution_id: str) -> list[ExecutionState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT state FROM workflow_checkpoints WHERE execution_id = ? ORDER BY sequence, id",
            execution_id,
        )
        return [ExecutionState.model_validate_json(r["state"]) for r in rows]
