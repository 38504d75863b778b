"""Runner for ``shell`` steps."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import Any, Mapping, Optional

from .. import templating
from ..constants import DEFAULT_STEP_TIMEOUT, SHELL_SANDBOX_ENV
from ..contracts import ShellStep
from ..errors import StepExecutionError
from .base import BaseStepRunner

logger = logging.getLogger(__name__)


class ShellRunner(BaseStepRunner[ShellStep]):
    """Execute a command through the system shell and capture stdout."""

    step_type = "shell"

    def __init__(
        self,
        timeout: float = DEFAULT_STEP_TIMEOUT,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(timeout)
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self._warned = False

    def _warn_unsandboxed(self) -> None:
        if self._warned or os.getenv(SHELL_SANDBOX_ENV):
            return
        logger.warning(
            "ShellRunner is not sandboxed; commands run with the privileges "
            f"of this process. Set {SHELL_SANDBOX_ENV}=1 once they are isolated."
        )
        self._warned = True

    async def execute(self, step: ShellStep, context: Mapping[str, Any]) -> str:
        self._warn_unsandboxed()
        command = templating.render(step.command, context)
        logger.debug(f"Step {step.id} running command: {command}")

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=self.env,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Timed out (or cancelled); do not leave the child running.
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise StepExecutionError(
                message or f"Command exited with status {proc.returncode}"
            )
        return stdout.decode(errors="replace").strip()
