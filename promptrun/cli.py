"""Command line interface for running promptrun workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
import yaml

from promptrun import WorkflowEngine, get_repository
from promptrun.config import load_config
from promptrun.errors import PromptrunError, WorkflowValidationError
from promptrun.persistence import InMemoryWorkflowStateRepository
from promptrun.prompts import InMemoryPromptService
from promptrun.runners import default_runners

app = typer.Typer(help="CLI for promptrun workflows")

workflow_app = typer.Typer(help="Commands for running and inspecting workflows")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for engine output"),
) -> None:
    """Promptrun CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_prompts(path: Path) -> InMemoryPromptService:
    try:
        return InMemoryPromptService.from_file(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        typer.secho(f"Could not load prompts from {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _load_definition(path: Path) -> Any:
    if not path.exists():
        typer.secho(f"Workflow file not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    with open(path) as f:
        # JSON documents are valid YAML.
        return yaml.safe_load(f)


@workflow_app.command("run")
def workflow_run(
    workflow_path: Path,
    prompts: Optional[Path] = typer.Option(
        None, help="YAML/JSON file mapping prompt ids to templates"
    ),
    database_url: Optional[str] = typer.Option(
        None, help="Checkpoint store, e.g. sqlite://runs.db or file://./runs"
    ),
    user: Optional[str] = typer.Option(None, help="User id recorded in the audit trail"),
) -> None:
    """
    Run a workflow file and checkpoint its progress.

    Prints the execution id, terminal status and outputs. Exits with code 1
    when the definition is invalid or the run fails.

    Example:
        promptrun workflow run ./pipeline.yaml --prompts ./prompts.yaml
        # Output: Execution 3f2b...: completed
        #         Workflow completed successfully
        #         {"summary": "..."}
    """
    data = _load_definition(workflow_path)
    config = load_config()
    prompt_service = _load_prompts(prompts) if prompts else None
    engine = WorkflowEngine(
        repository=get_repository(database_url),
        runners=default_runners(prompt_service, config),
        config=config,
    )

    try:
        result = asyncio.run(engine.run_workflow(data, user_id=user))
    except WorkflowValidationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except PromptrunError as exc:
        typer.secho(f"Workflow aborted: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Execution {result.execution_id}: {result.status.value}")
    typer.echo(result.message)
    if result.outputs:
        typer.echo(json.dumps(result.outputs, indent=2, default=str))
    if not result.success:
        raise typer.Exit(code=1)


@workflow_app.command("validate")
def workflow_validate(workflow_path: Path) -> None:
    """Check a workflow file without running it."""
    data = _load_definition(workflow_path)
    engine = WorkflowEngine(repository=InMemoryWorkflowStateRepository(), runners={})
    try:
        workflow = engine.parse_workflow(data)
    except WorkflowValidationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(
        f"Workflow {workflow.id} v{workflow.version} is valid "
        f"({len(workflow.steps)} steps, threads={workflow.threads})"
    )


@workflow_app.command("list")
def workflow_list(workflow_id: str) -> None:
    """
    List executions of a workflow with their latest status.

    Example:
        promptrun workflow list nightly-report
        # Output: 3f2b...    completed    2024-01-01 10:00:00+00:00
    """
    repo = get_repository()
    states = asyncio.run(repo.list_workflow_states(workflow_id))
    if not states:
        typer.echo("No executions found")
        return
    for state in states:
        typer.echo(f"{state.execution_id}\t{state.status.value}\t{state.updated_at}")


@workflow_app.command("show")
def workflow_show(execution_id: str) -> None:
    """
    Show the latest checkpoint of an execution and its step history.

    Example:
        promptrun workflow show 3f2b...
        # Output: Execution 3f2b... (workflow nightly-report): failed
        #         - fetch: ok
        #         - summarize: failed (Unresolved template variables: topic)
    """
    repo = get_repository()
    state = asyncio.run(repo.get_workflow_state(execution_id))
    if state is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Execution {state.execution_id} (workflow {state.workflow_id}): {state.status.value}"
    )
    if state.outputs:
        typer.echo(f"Outputs: {json.dumps(state.outputs, default=str)}")
    for result in state.history:
        typer.echo(
            f"- {result.step_id}: "
            + ("ok" if result.success else f"failed ({result.error})")
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
