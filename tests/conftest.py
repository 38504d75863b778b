"""Shared fixtures for promptrun tests."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, Mapping, Optional

import pytest

import promptrun.persistence as persistence
from promptrun.contracts import StepResult


class RecordingRunner:
    """Deterministic runner recording the steps and contexts it receives."""

    def __init__(
        self,
        outputs: Optional[Dict[str, Any]] = None,
        fail: Iterable[str] = (),
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.outputs = outputs or {}
        self.fail = set(fail)
        self.delays = delays or {}
        self.calls: list[tuple[str, Dict[str, Any]]] = []
        self.contexts: list[Mapping[str, Any]] = []

    @property
    def step_ids(self) -> list[str]:
        return [step_id for step_id, _ in self.calls]

    async def run_step(self, step: Any, context: Mapping[str, Any]) -> StepResult:
        self.calls.append((step.id, dict(context)))
        self.contexts.append(context)
        if step.id in self.delays:
            await asyncio.sleep(self.delays[step.id])
        if step.id in self.fail:
            return StepResult(step_id=step.id, success=False, error=f"{step.id} broke")
        return StepResult(
            step_id=step.id,
            success=True,
            output=self.outputs.get(step.id, f"{step.id}-out"),
        )


@pytest.fixture
def recording_runner():
    """Factory for :class:`RecordingRunner` instances."""
    return RecordingRunner


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from ambient configuration and cached repositories."""
    for name in (
        "PROMPTRUN_CONFIG",
        "PROMPTRUN_DATABASE_URL",
        "DATABASE_URL",
        "PROMPTRUN_PROMPTS",
        "PROMPTRUN_AUDIT_LOG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PROMPTRUN_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.setenv("PROMPTRUN_SHELL_SANDBOXED", "1")
    monkeypatch.setattr(persistence, "_repository_instance", None)
