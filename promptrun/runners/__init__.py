"""Step runners keyed by step type."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol

from ..config import PromptrunConfig, load_config
from ..contracts import StepResult
from ..prompts import InMemoryPromptService, PromptService
from .base import BaseStepRunner
from .http import HttpRunner
from .prompt import PromptRunner
from .shell import ShellRunner


class StepRunner(Protocol):
    """Anything able to execute one step against a context."""

    async def run_step(self, step: Any, context: Mapping[str, Any]) -> StepResult:
        """Execute ``step`` and describe the outcome."""


def default_runners(
    prompt_service: Optional[PromptService] = None,
    config: Optional[PromptrunConfig] = None,
) -> Dict[str, StepRunner]:
    """Build the standard runner table from configuration.

    Without an explicit ``prompt_service`` templates are loaded from
    ``config.prompts_path`` when set, otherwise an empty in-memory service is
    used.
    """

    config = config or load_config()
    if prompt_service is None:
        prompt_service = (
            InMemoryPromptService.from_file(config.prompts_path)
            if config.prompts_path
            else InMemoryPromptService()
        )
    return {
        "prompt": PromptRunner(prompt_service, timeout=config.runners.prompt_timeout),
        "shell": ShellRunner(timeout=config.runners.shell_timeout),
        "http": HttpRunner(timeout=config.runners.http_timeout),
    }


__all__ = [
    "BaseStepRunner",
    "HttpRunner",
    "PromptRunner",
    "ShellRunner",
    "StepRunner",
    "default_runners",
]
