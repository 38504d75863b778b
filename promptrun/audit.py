"""Audit trail of workflow runs."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path as SyncPath
from typing import Any, Optional, Protocol

import anyio
from pydantic import BaseModel, Field

from .config import PromptrunConfig
from .contracts import utcnow

logger = logging.getLogger(__name__)

WORKFLOW_STARTED = "workflow_started"
STEP_FAILED = "step_failed"
WORKFLOW_SETTLED = "workflow_settled"
WORKFLOW_ABORTED = "workflow_aborted"


class AuditEvent(BaseModel):
    """One line of the audit trail."""

    timestamp: datetime = Field(default_factory=utcnow)
    user_id: Optional[str] = None
    workflow_id: str
    execution_id: str
    event_type: str
    details: Any = None


class AuditSink(Protocol):
    async def record(self, event: AuditEvent) -> None:
        """Store ``event``."""


class LoggingAuditSink(AuditSink):
    """Emit audit events as JSON through the ``promptrun.audit`` logger."""

    async def record(self, event: AuditEvent) -> None:
        logger.info(event.model_dump_json())


class JsonLinesAuditLog(AuditSink):
    """Append audit events to a JSON-lines file."""

    def __init__(self, path: str | SyncPath):
        self.path = anyio.Path(path)

    async def record(self, event: AuditEvent) -> None:
        await self.path.parent.mkdir(parents=True, exist_ok=True)
        async with await self.path.open("a") as f:
            await f.write(event.model_dump_json() + "\n")


def audit_sink_from_config(config: PromptrunConfig) -> AuditSink:
    if config.audit_log_path:
        return JsonLinesAuditLog(config.audit_log_path)
    return LoggingAuditSink()
