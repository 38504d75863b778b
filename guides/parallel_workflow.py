"""Fan steps out over partitions and inspect the checkpoints they write."""

import asyncio

from promptrun import WorkflowEngine
from promptrun.persistence import InMemoryWorkflowStateRepository


async def main():
    repo = InMemoryWorkflowStateRepository()
    engine = WorkflowEngine(repository=repo)

    workflow = {
        "id": "disk-report",
        "name": "Disk report",
        "threads": 2,
        "steps": [
            {
                "id": "gather",
                "type": "parallel",
                "steps": [
                    {"id": "host", "type": "shell", "command": "hostname", "output": "host"},
                    {"id": "disk", "type": "shell", "command": "df -h / | tail -1", "output": "disk"},
                    {"id": "uptime", "type": "shell", "command": "uptime", "output": "uptime"},
                ],
            },
            {
                "id": "report",
                "type": "shell",
                "command": "echo '{{host}}: {{disk}} ({{uptime}})'",
                "output": "report",
            },
        ],
    }

    result = await engine.run_workflow(workflow)
    print(f"✅ {result.message}")
    print(result.outputs["report"] if result.success else result.outputs)

    for checkpoint in await repo.list_checkpoints(result.execution_id):
        tag = f"partition {checkpoint.partition}" if checkpoint.partition is not None else "main"
        print(f"#{checkpoint.sequence} {checkpoint.status.value:<9} {tag}: {checkpoint.current_step_id}")


if __name__ == "__main__":
    asyncio.run(main())
