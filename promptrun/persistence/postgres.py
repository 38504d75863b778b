"""PostgreSQL implementation of the checkpoint repository."""

from __future__ import annotations

import asyncpg

from ..contracts import ExecutionState
from .repository import WorkflowStateRepository, latest_snapshots


class PostgresWorkflowStateRepository(WorkflowStateRepository):
    """Persist checkpoints using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_checkpoints (
                id BIGSERIAL PRIMARY KEY,
                execution_id TEXT NOT NULL,
                workflow_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                partition INTEGER,
                status TEXT NOT NULL,
                state JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_checkpoints_execution
            ON workflow_checkpoints (execution_id, sequence)
            """
        )

    # ------------------------------------------------------------------
    async def save_workflow_state(self, state: ExecutionState) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_checkpoints
                    (execution_id, workflow_id, sequence, partition, status, state)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                state.execution_id,
                state.workflow_id,
                state.sequence,
                state.partition,
                state.status.value,
                state.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_workflow_state(self, execution_id: str) -> ExecutionState | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                """
                SELECT state FROM workflow_checkpoints WHERE execution_id = $1
                ORDER BY sequence DESC, id DESC LIMIT 1
                """,
                execution_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return ExecutionState.model_validate_json(row["state"])

    async def list_workflow_states(self, workflow_id: str) -> list[ExecutionState]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT state FROM workflow_checkpoints WHERE workflow_id = $1 ORDER BY id",
                workflow_id,
            )
        finally:
            await conn.close()
        return latest_snapshots(
            ExecutionState.model_validate_json(r["state"]) for r in rows
        )

    async def list_checkpoints(self, execution_id: str) -> list[ExecutionState]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT state FROM workflow_checkpoints WHERE execution_id = $1 ORDER BY sequence, id",
                execution_id,
            )
        finally:
            await conn.close()
        return [ExecutionState.model_validate_json(r["state"]) for r in rows]
