"""Simple example running a sequential workflow with checkpoints."""

import asyncio

from promptrun import InMemoryPromptService, WorkflowEngine, default_runners
from promptrun.persistence import SQLiteWorkflowStateRepository


async def main():
    """Render a prompt from the output of a shell step."""
    prompts = InMemoryPromptService(
        {"daily-summary": "Summarise today's work on {{project}}:\n{{log}}"}
    )
    engine = WorkflowEngine(
        repository=SQLiteWorkflowStateRepository("guides.db"),
        runners=default_runners(prompt_service=prompts),
    )

    workflow = {
        "id": "daily-summary",
        "name": "Daily summary",
        "variables": {"project": "promptrun"},
        "steps": [
            {
                "id": "collect",
                "type": "shell",
                "command": "git log --oneline -5 || echo 'no history'",
                "output": "log",
            },
            {
                "id": "summarize",
                "type": "prompt",
                "promptId": "daily-summary",
                "input": {"project": "{{project}}", "log": "{{log}}"},
                "output": "prompt",
            },
        ],
    }

    result = await engine.run_workflow(workflow)

    print(f"✅ Execution {result.execution_id}: {result.status.value}")
    print(f"📋 {result.message}")
    print(result.outputs.get("prompt", ""))

    state = await engine.get_execution(result.execution_id)
    print(f"🔗 Steps: {[r.step_id for r in state.history]}")


if __name__ == "__main__":
    asyncio.run(main())
