"""Prompt-rendering contract consumed by prompt steps."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

import yaml
from pydantic import BaseModel, Field

from . import templating
from .errors import PromptNotFoundError

logger = logging.getLogger(__name__)


class ApplyTemplateResult(BaseModel):
    """Rendered prompt content."""

    content: str
    applied_variables: Dict[str, Any] = Field(default_factory=dict)
    missing_variables: Optional[List[str]] = None


class PromptService(Protocol):
    """Protocol for services able to render a stored prompt template."""

    async def apply_template(
        self, prompt_id: str, variables: Mapping[str, Any]
    ) -> ApplyTemplateResult:
        """Render ``prompt_id`` with ``variables``."""


class InMemoryPromptService(PromptService):
    """Render templates held in local memory.

    Useful for tests and for running workflow files from the command line
    without a prompt server.
    """

    def __init__(self, templates: Optional[Mapping[str, str]] = None) -> None:
        self._templates: Dict[str, str] = dict(templates or {})

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryPromptService":
        """Load templates from a YAML or JSON mapping of ``id -> content``.

        Entries may also be mappings with a ``content`` key.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, Mapping):
            raise ValueError(f"Prompt file {path} must map prompt ids to templates")
        templates = {}
        for prompt_id, entry in data.items():
            if isinstance(entry, Mapping):
                entry = entry.get("content", "")
            templates[str(prompt_id)] = str(entry)
        logger.debug(f"Loaded {len(templates)} prompt templates from {path}")
        return cls(templates)

    def add_template(self, prompt_id: str, content: str) -> None:
        self._templates[prompt_id] = content

    async def apply_template(
        self, prompt_id: str, variables: Mapping[str, Any]
    ) -> ApplyTemplateResult:
        template = self._templates.get(prompt_id)
        if template is None:
            raise PromptNotFoundError(f"Template prompt not found: {prompt_id}")
        content = templating.render(template, variables, strict=False)
        missing = templating.find_references(content)
        return ApplyTemplateResult(
            content=content,
            applied_variables=dict(variables),
            missing_variables=missing or None,
        )
