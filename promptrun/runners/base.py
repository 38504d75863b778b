"""Base step runner for promptrun workflows."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, ClassVar, Generic, Mapping, Optional, TypeVar

from ..constants import DEFAULT_STEP_TIMEOUT
from ..contracts import StepResult, utcnow
from ..errors import StepExecutionError

logger = logging.getLogger(__name__)

StepT = TypeVar("StepT")


class BaseStepRunner(Generic[StepT], metaclass=abc.ABCMeta):
    """Abstract runner for one step kind.

    ``run_step`` never raises for expected failures: a
    :class:`StepExecutionError` or an exceeded timeout becomes a failed
    :class:`StepResult`. Anything else propagates to the orchestrator.
    """

    step_type: ClassVar[str]

    def __init__(self, timeout: float = DEFAULT_STEP_TIMEOUT) -> None:
        self.timeout = timeout

    async def run_step(self, step: StepT, context: Mapping[str, Any]) -> StepResult:
        """Execute ``step`` against a read-only ``context``."""
        step_id = getattr(step, "id", "<unknown>")
        if getattr(step, "type", None) != self.step_type:
            return StepResult.failure(step_id, f"Invalid {self.step_type} step structure")

        timeout = self._timeout_for(step)
        started_at = utcnow()
        try:
            output = await asyncio.wait_for(self.execute(step, context), timeout)
        except asyncio.TimeoutError:
            error = f"Step {step_id} timed out after {timeout}s"
        except StepExecutionError as e:
            error = str(e)
        else:
            logger.debug(f"Step {step_id} ({self.step_type}) succeeded")
            return StepResult(
                step_id=step_id,
                success=True,
                output=output,
                started_at=started_at,
                finished_at=utcnow(),
            )

        logger.debug(f"Step {step_id} ({self.step_type}) failed: {error}")
        return StepResult(
            step_id=step_id,
            success=False,
            error=error,
            started_at=started_at,
            finished_at=utcnow(),
        )

    def _timeout_for(self, step: StepT) -> float:
        step_timeout: Optional[float] = getattr(step, "timeout", None)
        return step_timeout or self.timeout

    @abc.abstractmethod
    async def execute(self, step: StepT, context: Mapping[str, Any]) -> Any:
        """Run ``step`` and return its output.

        Raises:
            StepExecutionError: For template, command or network failures.
        """
        raise NotImplementedError
