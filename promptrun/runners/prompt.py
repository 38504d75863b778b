"""Runner for ``prompt`` steps."""

from __future__ import annotations

from typing import Any, Mapping

from .. import templating
from ..constants import DEFAULT_STEP_TIMEOUT
from ..contracts import PromptStep
from ..errors import PromptNotFoundError, StepExecutionError, UnresolvedVariableError
from ..prompts import PromptService
from .base import BaseStepRunner


class PromptRunner(BaseStepRunner[PromptStep]):
    """Render a prompt template through a :class:`PromptService`."""

    step_type = "prompt"

    def __init__(
        self, prompt_service: PromptService, timeout: float = DEFAULT_STEP_TIMEOUT
    ) -> None:
        super().__init__(timeout)
        self._prompt_service = prompt_service

    async def execute(self, step: PromptStep, context: Mapping[str, Any]) -> str:
        variables = {}
        for key, value in step.input.items():
            resolved = templating.resolve(value, context)
            variables[key] = "" if resolved is None else str(resolved)

        try:
            result = await self._prompt_service.apply_template(step.prompt_id, variables)
        except PromptNotFoundError as e:
            raise StepExecutionError(str(e)) from e

        if result.missing_variables:
            raise UnresolvedVariableError(list(result.missing_variables))
        return result.content
