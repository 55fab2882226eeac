"""Tests for the workflow runner."""

import asyncio

import pytest

from nodeflow.core.config import RateLimitSettings
from nodeflow.core.exceptions import (
    InvalidDefinitionError,
    NodeNotFoundError,
    NoStartNodeError,
    UnknownTypeError,
)
from nodeflow.engine.rate_limiter import RateLimiterRegistry
from nodeflow.engine.types import (
    ExecutionEventType,
    ExecutionRequest,
    NodeConnectionType,
    NodeStatus,
    RunStatus,
    SkipReason,
)
from nodeflow.engine.workflow_runner import WorkflowRunner

from .helpers import build, chain, edge, items, jsons, node


def statuses(record):
    return {name: run.status for name, run in record.nodes.items()}


class TestLinearRun:
    @pytest.mark.asyncio
    async def test_items_flow_downstream(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Greet", "Set", parameters={
                    "fields": [{"name": "greeting", "value": "hello {{ $json.mode }}"}],
                }),
                node("End"),
            ],
            chain("Start", "Greet", "End"),
        )

        record = await runner.run(workflow)

        assert record.status == RunStatus.FINISHED
        assert record.finished
        assert set(statuses(record).values()) == {NodeStatus.SUCCEEDED}
        assert record.node_output("End")[0].json["greeting"] == "hello manual"
        assert record.nodes["End"].source == "executed"
        assert record.start_node == "Start"
        assert record.end_time >= record.start_time
        assert record.id.startswith("exec_")

    @pytest.mark.asyncio
    async def test_input_data_reaches_the_start_node(self, runner):
        workflow = build([node("Start", "Start"), node("End")], chain("Start", "End"))

        record = await runner.run(workflow, input_data=items({"n": 1}, {"n": 2}))

        assert jsons(record.node_output("End")) == [{"n": 1}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_reference_to_an_ancestor(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Answer", "Set", parameters={"fields": [{"name": "answer", "value": "{{ 6 * 7 }}"}]}),
                node("Copy", "Set", parameters={
                    "keepOnlySet": True,
                    "fields": [{"name": "copied", "value": '{{ $node["Answer"].json.answer }}'}],
                }),
            ],
            chain("Start", "Answer", "Copy"),
        )

        record = await runner.run(workflow)

        assert jsons(record.node_output("Copy")) == [{"copied": 42}]

    @pytest.mark.asyncio
    async def test_input_mapping(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Pick", input_mapping="json.payload")],
            chain("Start", "Pick"),
        )

        record = await runner.run(workflow, input_data=items({"payload": {"a": 1}}, {"payload": 5}))

        assert jsons(record.node_output("Pick")) == [{"a": 1}, {"value": 5}]

    @pytest.mark.asyncio
    async def test_execute_request(self, runner, store):
        workflow = build([node("Start", "Start"), node("End")], chain("Start", "End"), id="wf_1")

        record = await runner.execute(
            ExecutionRequest(workflow=workflow, input_data=items({"x": 1}), mode="webhook", user_id="u_1")
        )

        assert record.mode == "webhook"
        assert record.user_id == "u_1"
        assert record.workflow_id == "wf_1"
        assert store.get(record.id) is record
        assert jsons(record.node_output("End")) == [{"x": 1}]


class TestBranching:
    @pytest.mark.asyncio
    async def test_if_routes_items_by_output(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Check", "If", parameters={"field": "n", "operation": "gt", "value": "3"}),
                node("Big"),
                node("Small"),
            ],
            [
                edge("Start", "Check"),
                edge("Check", "Big", source_index=0),
                edge("Check", "Small", source_index=1),
            ],
        )

        record = await runner.run(workflow, input_data=items({"n": 1}, {"n": 5}))

        assert record.status == RunStatus.FINISHED
        assert jsons(record.node_output("Big")) == [{"n": 5}]
        assert jsons(record.node_output("Small")) == [{"n": 1}]
        assert len(record.nodes["Check"].outputs) == 2

    @pytest.mark.asyncio
    async def test_branch_without_items_is_skipped(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Check", "If", parameters={"condition": "{{ $json.n > 3 }}"}),
                node("Big"),
                node("AfterBig"),
                node("Small"),
            ],
            [
                edge("Start", "Check"),
                edge("Check", "Big", source_index=0),
                edge("Big", "AfterBig"),
                edge("Check", "Small", source_index=1),
            ],
        )

        record = await runner.run(workflow, input_data=items({"n": 1}))

        assert record.status == RunStatus.FINISHED
        assert record.nodes["Big"].status == NodeStatus.SKIPPED
        assert record.nodes["Big"].skip_reason == SkipReason.BRANCH_NOT_TAKEN
        assert record.nodes["AfterBig"].skip_reason == SkipReason.BRANCH_NOT_TAKEN
        assert record.nodes["Small"].status == NodeStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_merge_waits_for_every_branch(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Left", "Set", parameters={"keepOnlySet": True, "fields": [{"name": "side", "value": "left"}]}),
                node("Slow", "Sleep", parameters={"seconds": 0.05}),
                node("Right", "Set", parameters={"keepOnlySet": True, "fields": [{"name": "side", "value": "right"}]}),
                node("Join", "Merge", parameters={"mode": "append"}),
            ],
            [
                edge("Start", "Left"),
                edge("Start", "Slow"),
                edge("Slow", "Right"),
                edge("Left", "Join", target_index=0),
                edge("Right", "Join", target_index=1),
            ],
        )

        record = await runner.run(workflow)

        assert jsons(record.node_output("Join")) == [{"side": "left"}, {"side": "right"}]


class TestFailures:
    @pytest.mark.asyncio
    async def test_error_branch(self, runner):
        """Trigger -> A -> B with A -> C on the error output."""
        workflow = build(
            [node("Trigger", "Start"), node("A", "Flaky", parameters={"failTimes": 99}), node("B"), node("C")],
            chain("Trigger", "A", "B") + [edge("A", "C", NodeConnectionType.ERROR)],
        )

        record = await runner.run(workflow)

        assert record.status == RunStatus.FAILED
        assert record.failed
        assert record.nodes["A"].status == NodeStatus.FAILED
        assert record.nodes["B"].status == NodeStatus.SKIPPED
        assert record.nodes["B"].skip_reason == SkipReason.UPSTREAM_FAILED
        assert record.nodes["C"].status == NodeStatus.SUCCEEDED
        assert jsons(record.node_output("C")) == [
            {"error": "attempt 1 failed", "errorType": "NodeExecutionFailedError", "node": "A"}
        ]
        assert [e.node_name for e in record.errors] == ["A"]
        assert record.nodes["A"].error is record.errors[0]

    @pytest.mark.asyncio
    async def test_failure_skips_everything_downstream(self, runner):
        workflow = build(
            [node("Start", "Start"), node("A", "Flaky", parameters={"failTimes": 99}), node("B"), node("C"), node("Side")],
            chain("Start", "A", "B", "C") + [edge("Start", "Side")],
        )

        record = await runner.run(workflow)

        assert record.status == RunStatus.FAILED
        assert record.nodes["B"].skip_reason == SkipReason.UPSTREAM_FAILED
        assert record.nodes["C"].skip_reason == SkipReason.UPSTREAM_FAILED
        assert record.nodes["Side"].status == NodeStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_continue_on_fail_emits_error_item(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("A", "Flaky", parameters={"failTimes": 99}, continue_on_fail=True),
                node("B"),
            ],
            chain("Start", "A", "B"),
        )

        record = await runner.run(workflow)

        assert record.nodes["A"].status == NodeStatus.FAILED
        assert record.nodes["B"].status == NodeStatus.SUCCEEDED
        assert record.node_output("B")[0].json["node"] == "A"
        assert record.status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_retries_until_success(self, runner):
        workflow = build(
            [node("Start", "Start"), node("A", "Flaky", parameters={"failTimes": 2}, retry_on_fail=2, retry_delay=0)],
            chain("Start", "A"),
        )

        record = await runner.run(workflow)

        assert record.status == RunStatus.FINISHED
        assert record.nodes["A"].retry_count == 2
        assert record.errors == []

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, runner, registry):
        workflow = build(
            [node("Start", "Start"), node("A", "Flaky", parameters={"failTimes": 99}, retry_on_fail=1, retry_delay=0)],
            chain("Start", "A"),
        )

        record = await runner.run(workflow)

        run = record.nodes["A"]
        assert run.status == NodeStatus.FAILED
        assert run.retry_count == 1
        assert run.error.error == "attempt 2 failed (after 2 attempts)"
        assert registry.get("Flaky").attempts[(record.id, "A")] == 2

    @pytest.mark.asyncio
    async def test_structural_errors_are_not_retried(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Sibling"),
                node("Use", "Set", retry_on_fail=3, retry_delay=0, parameters={
                    "fields": [{"name": "x", "value": '{{ $node["Sibling"].json }}'}],
                }),
            ],
            [edge("Start", "Sibling"), edge("Start", "Use")],
        )

        record = await runner.run(workflow)

        run = record.nodes["Use"]
        assert run.status == NodeStatus.FAILED
        assert run.retry_count == 0
        assert run.error.error_type == "UnresolvedReferenceError"
        assert "not an ancestor" in run.error.error

    @pytest.mark.asyncio
    async def test_invalid_parameters_fail_the_node(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Call", "HttpRequest", parameters={"method": "GET"})],
            chain("Start", "Call"),
        )

        record = await runner.run(workflow)

        assert record.nodes["Call"].error.error_type == "ParameterValidationError"
        assert 'Missing required parameter "url"' in record.nodes["Call"].error.error

    @pytest.mark.asyncio
    async def test_stop_and_error(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Stop", "StopAndError", retry_on_fail=2, parameters={"message": "bad input in {{ $execution.mode }}"}),
            ],
            chain("Start", "Stop"),
        )

        record = await runner.run(workflow)

        run = record.nodes["Stop"]
        assert run.error.error == "bad input in manual"
        assert run.error.error_type == "StopWorkflowError"
        assert run.retry_count == 0

    @pytest.mark.asyncio
    async def test_timeout_is_a_node_failure(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Slow", "Sleep", parameters={"seconds": 5}, timeout=0.05)],
            chain("Start", "Slow"),
        )

        record = await runner.run(workflow)

        assert record.nodes["Slow"].status == NodeStatus.FAILED
        assert record.nodes["Slow"].error.error_type == "NodeTimeoutError"
        assert record.status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_workflow_timeout_setting(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Slow", "Sleep", parameters={"seconds": 5})],
            chain("Start", "Slow"),
            settings={"nodeTimeout": 0.05},
        )

        record = await runner.run(workflow)

        assert record.nodes["Slow"].error.error_type == "NodeTimeoutError"

    @pytest.mark.asyncio
    async def test_validate_crash_fails_only_that_node(self, runner, store):
        workflow = build(
            [
                node("Start", "Start"),
                node("Check", "BrokenValidate", retry_on_fail=2, retry_delay=0),
                node("After"),
            ],
            chain("Start", "Check", "After"),
        )

        record = await runner.run(workflow)

        assert record.status == RunStatus.FAILED
        error = record.nodes["Check"].error
        assert error.error_type == "ParameterValidationError"
        assert error.error == "Invalid parameters: validate blew up"
        assert record.nodes["Check"].retry_count == 0
        assert record.nodes["After"].skip_reason == SkipReason.UPSTREAM_FAILED
        assert store.get(record.id).status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_internal_error_still_closes_the_record(self, runner, store, monkeypatch):
        succeed = runner._succeed

        def broken_succeed(state, node_def, outputs, source):
            if node_def.name == "B":
                raise RuntimeError("bookkeeping lost")
            succeed(state, node_def, outputs, source)

        monkeypatch.setattr(runner, "_succeed", broken_succeed)
        workflow = build([node("Start", "Start"), node("B"), node("C")], chain("Start", "B", "C"))
        events = []

        with pytest.raises(RuntimeError, match="bookkeeping lost"):
            await runner.run(workflow, on_event=lambda e: events.append(e.type))

        record = store.list()[0]
        assert record.status == RunStatus.FAILED
        assert record.end_time is not None
        assert record.nodes["Start"].status == NodeStatus.SUCCEEDED
        assert record.nodes["B"].status == NodeStatus.FAILED
        assert record.nodes["B"].error.error == "bookkeeping lost"
        assert record.nodes["C"].skip_reason == SkipReason.CANCELED
        assert events[-2:] == [ExecutionEventType.EXECUTION_ERROR, ExecutionEventType.EXECUTION_COMPLETE]
        assert runner.cancel(record.id) is False


class TestPreRunChecks:
    @pytest.mark.asyncio
    async def test_unknown_type(self, runner, store):
        workflow = build([node("Start", "Start"), node("X", "Teleport")], chain("Start", "X"))
        with pytest.raises(UnknownTypeError):
            await runner.run(workflow)
        assert store.list() == []

    @pytest.mark.asyncio
    async def test_invalid_definition(self, runner, store):
        workflow = build([node("Start", "Start"), node("A"), node("B")], chain("Start", "A", "B"))
        workflow.connect("B", "A")
        with pytest.raises(InvalidDefinitionError):
            await runner.run(workflow)
        assert store.list() == []

    @pytest.mark.asyncio
    async def test_no_start_node(self, runner):
        workflow = build([node("A", disabled=True)])
        with pytest.raises(NoStartNodeError):
            await runner.run(workflow)

    @pytest.mark.asyncio
    async def test_unknown_start_node(self, runner):
        workflow = build([node("Start", "Start")])
        with pytest.raises(NodeNotFoundError):
            await runner.run(workflow, start_node="Ghost")

    @pytest.mark.asyncio
    async def test_unreachable_destination(self, runner):
        workflow = build([node("Start", "Start"), node("A"), node("Island")], chain("Start", "A"))
        with pytest.raises(NoStartNodeError):
            await runner.run(workflow, start_node="Start", destination_node="Island")


class TestRunScope:
    @pytest.mark.asyncio
    async def test_destination_limits_the_run(self, runner):
        workflow = build(
            [node("Start", "Start"), node("A"), node("B"), node("C")],
            chain("Start", "A", "B") + [edge("Start", "C")],
        )

        record = await runner.run(workflow, destination_node="A")

        assert list(record.nodes) == ["Start", "A"]
        assert record.destination_node == "A"

    @pytest.mark.asyncio
    async def test_explicit_start_node(self, runner):
        workflow = build([node("Start", "Start"), node("A"), node("B")], chain("Start", "A", "B"))

        record = await runner.run(workflow, start_node="A", input_data=items({"x": 1}))

        assert list(record.nodes) == ["A", "B"]
        assert jsons(record.node_output("B")) == [{"x": 1}]

    @pytest.mark.asyncio
    async def test_pinned_data_replaces_execution(self, runner, registry):
        workflow = build(
            [node("Start", "Start"), node("A", "Flaky", parameters={"failTimes": 99}), node("B")],
            chain("Start", "A", "B"),
            pin_data={"A": items({"pinned": True})},
        )

        record = await runner.run(workflow)

        assert record.status == RunStatus.FINISHED
        assert record.nodes["A"].source == "pinned"
        assert jsons(record.node_output("B")) == [{"pinned": True}]
        assert registry.get("Flaky").attempts == {}

    @pytest.mark.asyncio
    async def test_disabled_node_passes_input_through(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Mutate", "Set", disabled=True, parameters={"fields": [{"name": "x", "value": "changed"}]}),
                node("End"),
            ],
            chain("Start", "Mutate", "End"),
        )

        record = await runner.run(workflow, input_data=items({"x": "original"}))

        assert record.status == RunStatus.FINISHED
        assert record.nodes["Mutate"].status == NodeStatus.SKIPPED
        assert record.nodes["Mutate"].skip_reason == SkipReason.DISABLED
        assert record.nodes["Mutate"].source == "passthrough"
        assert jsons(record.node_output("End")) == [{"x": "original"}]


class TestConcurrency:
    @pytest.fixture
    def fan_out(self):
        sleepers = [node(f"S{i}", "Sleep", parameters={"seconds": 0.05}) for i in range(4)]
        return [node("Start", "Start"), *sleepers], [edge("Start", s.name) for s in sleepers]

    @pytest.mark.asyncio
    async def test_independent_nodes_run_concurrently(self, runner, registry, fan_out):
        record = await runner.run(build(*fan_out))

        assert record.status == RunStatus.FINISHED
        assert registry.get("Sleep").peak == 4

    @pytest.mark.asyncio
    async def test_worker_limit(self, runner, registry, fan_out):
        record = await runner.run(build(*fan_out, settings={"maxConcurrency": 2}))

        assert record.status == RunStatus.FINISHED
        assert registry.get("Sleep").peak == 2

    @pytest.mark.asyncio
    async def test_rate_limited_type_takes_a_slot_per_attempt(self, registry, store, fan_out):
        limited = WorkflowRunner(
            registry=registry,
            store=store,
            rate_limiters=RateLimiterRegistry(
                overrides={"Sleep": RateLimitSettings(max_calls=1, period=0.1)}
            ),
        )

        record = await limited.run(build(*fan_out))

        assert record.status == RunStatus.FINISHED
        assert registry.get("Sleep").peak == 1

    @pytest.mark.asyncio
    async def test_node_waits_for_all_parents(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Fast"),
                node("Slow", "Sleep", parameters={"seconds": 0.05}),
                node("Join", "Merge"),
            ],
            [
                edge("Start", "Fast"),
                edge("Start", "Slow"),
                edge("Fast", "Join"),
                edge("Slow", "Join", target_index=1),
            ],
        )

        record = await runner.run(workflow)

        assert record.nodes["Join"].started_at >= record.nodes["Slow"].finished_at


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_the_run(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Slow", "Sleep", parameters={"seconds": 5}), node("After")],
            chain("Start", "Slow", "After"),
        )
        started = asyncio.Event()
        execution_ids = []

        def on_event(event):
            if event.type == ExecutionEventType.NODE_START and event.node_name == "Slow":
                execution_ids.append(event.execution_id)
                started.set()

        task = asyncio.create_task(runner.run(workflow, on_event=on_event))
        await asyncio.wait_for(started.wait(), timeout=2)
        assert runner.cancel(execution_ids[0]) is True

        record = await asyncio.wait_for(task, timeout=2)

        assert record.status == RunStatus.CANCELED
        assert record.nodes["Start"].status == NodeStatus.SUCCEEDED
        assert record.node_output("Start") != []
        assert record.nodes["Slow"].skip_reason == SkipReason.CANCELED
        assert record.nodes["After"].skip_reason == SkipReason.CANCELED
        assert runner.cancel(record.id) is False

    @pytest.mark.asyncio
    async def test_external_cancel_event(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Pause", "Wait", parameters={"duration": 5})],
            chain("Start", "Pause"),
        )
        cancel_event = asyncio.Event()

        async def cancel_soon():
            await asyncio.sleep(0.05)
            cancel_event.set()

        canceller = asyncio.create_task(cancel_soon())
        record = await asyncio.wait_for(runner.run(workflow, cancel_event=cancel_event), timeout=2)
        await canceller

        assert record.status == RunStatus.CANCELED

    def test_cancel_unknown_execution(self, runner):
        assert runner.cancel("exec_missing") is False


class TestStaticData:
    @pytest.mark.asyncio
    async def test_static_data_persists_across_runs(self, runner):
        workflow = build(
            [
                node("Start", "Start"),
                node("Writer", "Counter"),
                node("Reader", "Set", parameters={
                    "keepOnlySet": True,
                    "fields": [{"name": "seen", "value": "{{ $static.global['runs'] }}"}],
                }),
            ],
            [edge("Start", "Writer"), edge("Start", "Reader")],
        )

        first = await runner.run(workflow, destination_node="Writer")
        second = await runner.run(workflow, destination_node="Reader")

        assert "Reader" not in first.nodes
        assert jsons(second.node_output("Reader")) == [{"seen": 1}]
        assert second.static_data == {"global": {"runs": 1}}

    @pytest.mark.asyncio
    async def test_outputs_do_not_persist(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Writer", "Counter")],
            chain("Start", "Writer"),
        )

        first = await runner.run(workflow)
        second = await runner.run(workflow)

        assert jsons(first.node_output("Writer")) == [{"runs": 1}]
        assert jsons(second.node_output("Writer")) == [{"runs": 2}]
        assert first.nodes["Writer"] is not second.nodes["Writer"]

    @pytest.mark.asyncio
    async def test_concurrent_writers_are_serialized(self, runner):
        workflow = build(
            [node("Start", "Start"), node("Left", "Counter"), node("Right", "Counter")],
            [edge("Start", "Left"), edge("Start", "Right")],
        )

        record = await runner.run(workflow)

        counts = [record.node_output(name)[0].json["runs"] for name in ("Left", "Right")]
        assert sorted(counts) == [1, 2]
        assert record.static_data == {"global": {"runs": 2}}

    @pytest.mark.asyncio
    async def test_cron_cursor(self, runner):
        workflow = build([node("Schedule", "Cron")])

        first = await runner.run(workflow, mode="cron")
        second = await runner.run(workflow, mode="cron")

        assert first.node_output("Schedule")[0].json["previousRunAt"] is None
        assert (
            second.node_output("Schedule")[0].json["previousRunAt"]
            == first.node_output("Schedule")[0].json["triggeredAt"]
        )
        assert "lastRunAt" in workflow.static_data["node:Schedule"]


class TestEvents:
    @pytest.mark.asyncio
    async def test_event_sequence(self, runner):
        workflow = build(
            [node("Start", "Start"), node("A", "Flaky", parameters={"failTimes": 99}), node("B")],
            chain("Start", "A", "B"),
        )
        events = []

        record = await runner.run(workflow, on_event=events.append)

        types = [e.type for e in events]
        assert types[0] == ExecutionEventType.EXECUTION_START
        assert types[-2:] == [ExecutionEventType.EXECUTION_ERROR, ExecutionEventType.EXECUTION_COMPLETE]
        assert all(e.execution_id == record.id for e in events)

        by_node = [(e.type, e.node_name) for e in events if e.node_name]
        assert by_node == [
            (ExecutionEventType.NODE_START, "Start"),
            (ExecutionEventType.NODE_COMPLETE, "Start"),
            (ExecutionEventType.NODE_START, "A"),
            (ExecutionEventType.NODE_ERROR, "A"),
            (ExecutionEventType.NODE_SKIPPED, "B"),
        ]
        assert events[-1].progress == {"completed": 3, "total": 3}

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_the_run(self, runner):
        workflow = build([node("Start", "Start"), node("A")], chain("Start", "A"))

        def on_event(event):
            raise RuntimeError("listener crashed")

        record = await runner.run(workflow, on_event=on_event)

        assert record.status == RunStatus.FINISHED
