"""Tests for the workflow audit trail."""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from promptrun import WorkflowEngine
from promptrun.audit import (
    AuditEvent,
    JsonLinesAuditLog,
    LoggingAuditSink,
    audit_sink_from_config,
)
from promptrun.config import PromptrunConfig
from promptrun.errors import PersistenceError
from promptrun.persistence import InMemoryWorkflowStateRepository


class ListAuditSink:
    def __init__(self):
        self.events = []

    async def record(self, event):
        self.events.append(event)


def _definition(steps):
    return {"id": "audited", "name": "Audited", "version": 3, "steps": steps}


def _shell(step_id, output):
    return {"id": step_id, "type": "shell", "command": "true", "output": output}


@pytest.mark.asyncio
async def test_successful_run_emits_started_and_settled(recording_runner):
    sink = ListAuditSink()
    engine = WorkflowEngine(
        repository=InMemoryWorkflowStateRepository(),
        runners={"shell": recording_runner()},
        audit=sink,
    )

    result = await engine.run_workflow(_definition([_shell("s1", "o1")]), user_id="u-1")

    assert [e.event_type for e in sink.events] == ["workflow_started", "workflow_settled"]
    started, settled = sink.events
    assert started.user_id == "u-1"
    assert started.workflow_id == "audited"
    assert started.execution_id == result.execution_id
    assert started.details == {"name": "Audited", "version": 3}
    assert settled.details == {
        "status": "completed",
        "message": "Workflow completed successfully",
    }


@pytest.mark.asyncio
async def test_failed_step_is_audited(recording_runner):
    sink = ListAuditSink()
    engine = WorkflowEngine(
        repository=InMemoryWorkflowStateRepository(),
        runners={"shell": recording_runner(fail={"s2"})},
        audit=sink,
    )

    await engine.run_workflow(_definition([_shell("s1", "o1"), _shell("s2", "o2")]))

    assert [e.event_type for e in sink.events] == [
        "workflow_started",
        "step_failed",
        "workflow_settled",
    ]
    assert sink.events[1].details == {"step_id": "s2", "error": "s2 broke"}
    assert sink.events[1].user_id is None
    assert sink.events[2].details["status"] == "failed"


@pytest.mark.asyncio
async def test_aborted_run_is_audited(recording_runner):
    sink = ListAuditSink()
    repo = AsyncMock()
    repo.save_workflow_state.side_effect = [None, RuntimeError("disk full"), None]
    engine = WorkflowEngine(
        repository=repo, runners={"shell": recording_runner()}, audit=sink
    )

    with pytest.raises(PersistenceError):
        await engine.run_workflow(_definition([_shell("s1", "o1")]))

    assert [e.event_type for e in sink.events] == ["workflow_started", "workflow_aborted"]
    assert "disk full" in sink.events[-1].details["error"]


@pytest.mark.asyncio
async def test_broken_audit_sink_does_not_fail_the_run(recording_runner):
    sink = AsyncMock()
    sink.record.side_effect = OSError("read-only file system")
    engine = WorkflowEngine(
        repository=InMemoryWorkflowStateRepository(),
        runners={"shell": recording_runner()},
        audit=sink,
    )

    result = await engine.run_workflow(_definition([_shell("s1", "o1")]))

    assert result.success is True
    assert sink.record.await_count == 2


@pytest.mark.asyncio
async def test_json_lines_audit_log_appends(tmp_path):
    path = tmp_path / "logs" / "workflow-audit.log"
    sink = JsonLinesAuditLog(path)

    await sink.record(
        AuditEvent(workflow_id="wf", execution_id="e-1", event_type="workflow_started")
    )
    await sink.record(
        AuditEvent(
            user_id="u-1",
            workflow_id="wf",
            execution_id="e-1",
            event_type="step_failed",
            details={"step_id": "s1", "error": "boom"},
        )
    )

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [line["event_type"] for line in lines] == ["workflow_started", "step_failed"]
    assert lines[1]["user_id"] == "u-1"
    assert lines[1]["details"] == {"step_id": "s1", "error": "boom"}
    assert "timestamp" in lines[0]


@pytest.mark.asyncio
async def test_logging_audit_sink(caplog):
    caplog.set_level(logging.INFO, logger="promptrun.audit")
    await LoggingAuditSink().record(
        AuditEvent(workflow_id="wf", execution_id="e-1", event_type="workflow_settled")
    )
    assert '"event_type":"workflow_settled"' in caplog.text


def test_audit_sink_from_config(tmp_path):
    assert isinstance(audit_sink_from_config(PromptrunConfig()), LoggingAuditSink)
    sink = audit_sink_from_config(
        PromptrunConfig(audit_log_path=str(tmp_path / "audit.log"))
    )
    assert isinstance(sink, JsonLinesAuditLog)
