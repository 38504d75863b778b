"""Runner for ``http`` steps."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from .. import templating
from ..constants import DEFAULT_STEP_TIMEOUT
from ..contracts import HTTP_METHODS, HttpStep
from ..errors import StepExecutionError
from .base import BaseStepRunner

logger = logging.getLogger(__name__)


def _pluck(data: Any, path: str) -> Any:
    """Follow a dotted ``path`` through mappings and lists."""
    value = data
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            raise StepExecutionError(f"Response has no field '{path}'")
    return value


class HttpRunner(BaseStepRunner[HttpStep]):
    """Issue the request described by an ``http`` step with httpx."""

    step_type = "http"

    def __init__(
        self,
        timeout: float = DEFAULT_STEP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeout)
        self._transport = transport

    async def execute(self, step: HttpStep, context: Mapping[str, Any]) -> Any:
        method = templating.render(step.method, context).upper()
        if method not in HTTP_METHODS:
            raise StepExecutionError(f"Unsupported HTTP method: {method}")
        url = templating.render(step.url, context)
        headers: Dict[str, str] = {
            key: templating.render(value, context) for key, value in step.headers.items()
        }

        request_kwargs: Dict[str, Any] = {}
        body = templating.resolve(step.body, context)
        if isinstance(body, (dict, list)):
            request_kwargs["json"] = body
        elif body is not None:
            request_kwargs["content"] = str(body)
        if step.auth is not None:
            request_kwargs["auth"] = httpx.BasicAuth(
                templating.render(step.auth.username, context),
                templating.render(step.auth.password, context),
            )

        logger.debug(f"Step {step.id} sending {method} {url}")
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._timeout_for(step)
        ) as client:
            try:
                response = await client.request(
                    method, url, headers=headers, **request_kwargs
                )
            except httpx.HTTPError as e:
                raise StepExecutionError(f"{method} {url} failed: {e}") from e

        if not response.is_success:
            raise StepExecutionError(f"HTTP {response.status_code}: {response.text}")

        if step.output_field:
            try:
                payload = response.json()
            except ValueError as e:
                raise StepExecutionError(
                    f"Response from {url} is not JSON; cannot read '{step.output_field}'"
                ) from e
            return _pluck(payload, step.output_field)
        return response.text
