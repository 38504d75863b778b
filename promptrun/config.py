from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_STEP_TIMEOUT


class RunnerConfig(BaseModel):
    """Default bounded waits for step runners, in seconds."""

    prompt_timeout: float = Field(default=DEFAULT_STEP_TIMEOUT, gt=0)
    shell_timeout: float = Field(default=DEFAULT_STEP_TIMEOUT, gt=0)
    http_timeout: float = Field(default=DEFAULT_STEP_TIMEOUT, gt=0)


class PromptrunConfig(BaseModel):
    """Top-level configuration model."""

    runners: RunnerConfig = RunnerConfig()
    database_url: Optional[str] = None
    prompts_path: Optional[str] = None
    audit_log_path: Optional[str] = None


def load_config(path: Optional[str] = None) -> PromptrunConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PROMPTRUN_CONFIG env
            variable or 'promptrun.yaml' in the current directory.
    """

    config_path = path or os.getenv("PROMPTRUN_CONFIG", "promptrun.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PromptrunConfig(**data)
    else:
        config = PromptrunConfig()

    env_db_url = os.getenv("PROMPTRUN_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_prompts = os.getenv("PROMPTRUN_PROMPTS")
    if env_prompts:
        config.prompts_path = env_prompts
    env_audit = os.getenv("PROMPTRUN_AUDIT_LOG")
    if env_audit:
        config.audit_log_path = env_audit
    return config
