"""Tests for the stateless step loop and parallel fan-out."""

from types import MappingProxyType

import pytest

from promptrun import WorkflowEngine, partition_steps
from promptrun.contracts import ExecutionState, StepResult, WorkflowDefinition
from promptrun.errors import OrchestrationError
from promptrun.persistence import InMemoryWorkflowStateRepository


def _shell(step_id, output):
    return {"id": step_id, "type": "shell", "command": f"echo {step_id}", "output": output}


def _workflow(steps, **extra):
    return WorkflowDefinition.model_validate(
        {"id": "wf", "name": "Test", "steps": steps, **extra}
    )


def _engine(runner):
    return WorkflowEngine(
        repository=InMemoryWorkflowStateRepository(),
        runners={"shell": runner, "prompt": runner, "http": runner},
    )


def test_partition_steps_deals_round_robin():
    assert partition_steps([1, 2, 3, 4, 5], 2) == [[1, 3, 5], [2, 4]]
    assert partition_steps(["a"], 3) == [["a"], [], []]
    with pytest.raises(OrchestrationError):
        partition_steps([1], 0)


@pytest.mark.asyncio
async def test_steps_run_in_order_and_collect_outputs(recording_runner):
    runner = recording_runner(outputs={"step1": "output1", "step2": "output2"})
    workflow = _workflow([_shell("step1", "out1"), _shell("step2", "out2")])

    result = await _engine(runner).run_workflow_steps(workflow)

    assert result.success is True
    assert result.message == "Workflow completed successfully"
    assert result.outputs == {"out1": "output1", "out2": "output2"}
    assert [r.step_id for r in result.history] == ["step1", "step2"]
    assert runner.step_ids == ["step1", "step2"]
    # Later steps see earlier outputs.
    assert runner.calls[1][1]["out1"] == "output1"


@pytest.mark.asyncio
async def test_first_failure_halts_the_loop(recording_runner):
    runner = recording_runner(fail={"step2"})
    workflow = _workflow(
        [_shell("step1", "out1"), _shell("step2", "out2"), _shell("step3", "out3")]
    )

    result = await _engine(runner).run_workflow_steps(workflow)

    assert result.success is False
    assert result.message == "Step step2 failed: step2 broke"
    assert result.outputs == {"out1": "step1-out"}
    assert [r.success for r in result.history] == [True, False]
    assert "step3" not in runner.step_ids


@pytest.mark.asyncio
async def test_context_seeded_from_variables_and_initial_state(recording_runner):
    runner = recording_runner()
    workflow = _workflow([_shell("step1", "out1")], variables={"a": 1, "b": 2})
    initial = ExecutionState(workflow_id="wf", context={"b": 20, "c": 30})

    result = await _engine(runner).run_workflow_steps(workflow, initial_state=initial)

    assert runner.calls[0][1] == {"a": 1, "b": 20, "c": 30}
    assert result.execution_id == initial.execution_id


@pytest.mark.asyncio
async def test_runner_receives_read_only_context(recording_runner):
    runner = recording_runner()
    await _engine(runner).run_workflow_steps(_workflow([_shell("step1", "out1")]))

    context = runner.contexts[0]
    assert isinstance(context, MappingProxyType)
    with pytest.raises(TypeError):
        context["x"] = 1


@pytest.mark.asyncio
async def test_overlapping_outputs_are_last_write_wins(recording_runner):
    runner = recording_runner(outputs={"step1": "first", "step2": "second"})
    workflow = _workflow([_shell("step1", "same"), _shell("step2", "same")])

    result = await _engine(runner).run_workflow_steps(workflow)

    assert result.outputs == {"same": "second"}


@pytest.mark.asyncio
async def test_stateless_run_is_idempotent(recording_runner):
    engine = _engine(recording_runner())
    workflow = _workflow([_shell("step1", "out1"), _shell("step2", "out2")])

    first = await engine.run_workflow_steps(workflow)
    second = await engine.run_workflow_steps(workflow)

    assert first.outputs == second.outputs
    assert [r.output for r in first.history] == [r.output for r in second.history]


@pytest.mark.asyncio
async def test_runner_override_per_call(recording_runner):
    default = recording_runner()
    override = recording_runner(outputs={"step1": "override"})
    engine = _engine(default)

    result = await engine.run_workflow_steps(
        _workflow([_shell("step1", "out1")]), runners={"shell": override}
    )

    assert result.outputs == {"out1": "override"}
    assert default.calls == []


@pytest.mark.asyncio
async def test_missing_runner_fails_the_step(recording_runner):
    engine = WorkflowEngine(
        repository=InMemoryWorkflowStateRepository(), runners={"shell": recording_runner()}
    )
    workflow = _workflow(
        [{"id": "h", "type": "http", "url": "https://example.test", "output": "o"}]
    )

    result = await engine.run_workflow_steps(workflow)

    assert result.success is False
    assert result.history[0].error == "No step runner registered for step type: http"


@pytest.mark.asyncio
async def test_raising_runner_becomes_failed_result():
    class ExplodingRunner:
        async def run_step(self, step, context):
            raise RuntimeError("kaboom")

    engine = _engine(ExplodingRunner())
    result = await engine.run_workflow_steps(_workflow([_shell("step1", "out1")]))

    assert result.success is False
    assert result.history[0].error == "RuntimeError: kaboom"
    assert result.message == "Step step1 failed: RuntimeError: kaboom"


@pytest.mark.asyncio
async def test_synthesised_failures_are_idempotent():
    class ExplodingRunner:
        async def run_step(self, step, context):
            raise RuntimeError("kaboom")

    engine = WorkflowEngine(
        repository=InMemoryWorkflowStateRepository(),
        runners={"shell": ExplodingRunner()},
    )
    exploding = _workflow([_shell("step1", "out1")])
    unrouted = _workflow(
        [{"id": "h", "type": "http", "url": "https://example.test", "output": "o"}]
    )

    for workflow in (exploding, unrouted):
        first = await engine.run_workflow_steps(workflow)
        second = await engine.run_workflow_steps(workflow)
        assert first.history == second.history
        assert first.history[0].started_at is None


@pytest.mark.asyncio
async def test_mapping_results_are_normalised():
    class DictRunner:
        async def run_step(self, step, context):
            return {"step_id": "wrong", "success": True, "output": 7}

    result = await _engine(DictRunner()).run_workflow_steps(
        _workflow([_shell("step1", "out1")])
    )

    assert result.outputs == {"out1": 7}
    assert isinstance(result.history[0], StepResult)
    assert result.history[0].step_id == "step1"


def _parallel(*steps, block_id="block"):
    return {"id": block_id, "type": "parallel", "steps": list(steps)}


@pytest.mark.asyncio
async def test_parallel_block_merges_partitions(recording_runner):
    runner = recording_runner()
    workflow = _workflow(
        [
            _shell("before", "pre"),
            _parallel(_shell("a", "a"), _shell("b", "b"), _shell("c", "c")),
            _shell("after", "post"),
        ],
        threads=2,
    )

    result = await _engine(runner).run_workflow_steps(workflow)

    assert result.success is True
    assert result.outputs == {
        "pre": "before-out",
        "a": "a-out",
        "b": "b-out",
        "c": "c-out",
        "post": "after-out",
    }
    # Partition 0 ran a then c; partition 1 ran b. History lists partitions in order.
    assert [r.step_id for r in result.history] == ["before", "a", "c", "b", "after"]
    after_context = runner.calls[-1][1]
    assert {"a", "b", "c", "pre"} <= set(after_context)


@pytest.mark.asyncio
async def test_partitions_are_isolated(recording_runner):
    runner = recording_runner(delays={"b": 0.05})
    workflow = _workflow(
        [_parallel(_shell("a", "a"), _shell("b", "b"), _shell("c", "c"))], threads=2
    )

    await _engine(runner).run_workflow_steps(workflow)

    seen = {step_id: context for step_id, context in runner.calls}
    # c shares partition 0 with a and sees its output; b never does.
    assert seen["c"]["a"] == "a-out"
    assert "a" not in seen["b"]
    assert "c" not in seen["b"]


@pytest.mark.asyncio
async def test_failed_partition_lets_siblings_settle(recording_runner):
    runner = recording_runner(fail={"a"}, delays={"b": 0.05})
    workflow = _workflow(
        [
            _parallel(_shell("a", "a"), _shell("b", "b"), _shell("c", "c")),
            _shell("after", "post"),
        ],
        threads=2,
    )

    result = await _engine(runner).run_workflow_steps(workflow)

    assert result.success is False
    assert result.message == "Step a failed: a broke"
    assert "b" in runner.step_ids
    # Partition 0 stops at a; c and the following step never run.
    assert "c" not in runner.step_ids
    assert "after" not in runner.step_ids
    assert result.outputs == {}
    assert {r.step_id for r in result.history} == {"a", "b"}


@pytest.mark.asyncio
async def test_lower_partition_wins_output_collision(recording_runner):
    runner = recording_runner(outputs={"a": "from-a", "b": "from-b"})
    workflow = _workflow([_parallel(_shell("a", "dup"), _shell("b", "dup"))], threads=2)

    result = await _engine(runner).run_workflow_steps(workflow)

    assert result.outputs == {"dup": "from-a"}


@pytest.mark.asyncio
async def test_more_threads_than_steps(recording_runner):
    runner = recording_runner()
    workflow = _workflow([_parallel(_shell("a", "a"))], threads=4)

    result = await _engine(runner).run_workflow_steps(workflow)

    assert result.success is True
    assert result.outputs == {"a": "a-out"}
