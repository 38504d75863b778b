"""Checkpoint persistence for promptrun workflow executions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PromptrunConfig, load_config
from .file import FileWorkflowStateRepository
from .inmemory import InMemoryWorkflowStateRepository
from .repository import WorkflowStateRepository, latest_snapshots
from .sqlite import SQLiteWorkflowStateRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowStateRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowStateRepository = None  # type: ignore

_repository_instance: WorkflowStateRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[PromptrunConfig] = None
) -> WorkflowStateRepository:
    """Factory function to obtain a checkpoint repository.

    The backend is selected from ``database_url`` which can be provided
    explicitly, via environment variable ``PROMPTRUN_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. Supported schemes are
    ``sqlite://<path>``, ``file://<directory>`` and ``postgres(ql)://``. When
    no database is configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("PROMPTRUN_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryWorkflowStateRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteWorkflowStateRepository(path)
    elif database_url.startswith("file://"):
        path = database_url.replace("file://", "", 1)
        _repository_instance = FileWorkflowStateRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresWorkflowStateRepository is None:
            raise RuntimeError("Postgres support not available; install promptrun[postgres]")
        _repository_instance = PostgresWorkflowStateRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "WorkflowStateRepository",
    "InMemoryWorkflowStateRepository",
    "FileWorkflowStateRepository",
    "SQLiteWorkflowStateRepository",
    "PostgresWorkflowStateRepository",
    "get_repository",
    "latest_snapshots",
]
