"""Tests for loading, dumping and serializing workflows and execution records."""

from datetime import datetime, timezone

import pytest

from nodeflow.core.exceptions import InvalidDefinitionError
from nodeflow.engine.types import (
    ExecutionRecord,
    NodeConnectionType,
    NodeData,
    NodeRunRecord,
    NodeStatus,
    RunStatus,
    SkipReason,
)
from nodeflow.schemas import (
    ExecutionListItem,
    ExecutionRecordSchema,
    WorkflowDefinitionSchema,
    dump_workflow,
    load_workflow,
)

from .helpers import build, chain, edge, items, node


@pytest.fixture
def definition():
    return {
        "id": "wf_42",
        "name": "Sync users",
        "active": True,
        "settings": {"maxConcurrency": 4, "timezone": "Europe/Oslo"},
        "nodes": [
            {"name": "Start", "type": "Start"},
            {
                "name": "Fetch",
                "type": "HttpRequest",
                "parameters": {"url": "https://api.test/users"},
                "retryOnFail": 2,
                "retryDelay": 50,
                "continueOnFail": True,
                "inputMapping": "json.body",
            },
            {"name": "Save", "type": "NoOp", "disabled": True},
            {"name": "Alert", "type": "NoOp"},
        ],
        "connections": {
            "Start": {"main": [[{"node": "Fetch", "type": "main", "index": 0}]]},
            "Fetch": {
                "main": [[{"node": "Save", "type": "main", "index": 0}]],
                "error": [[{"node": "Alert", "type": "error", "index": 0}]],
            },
        },
        "staticData": {"global": {"cursor": 10}},
        "pinData": {"Start": [{"json": {"page": 1}}]},
    }


class TestLoadWorkflow:
    def test_nested_connections(self, definition):
        workflow = load_workflow(definition)

        assert workflow.id == "wf_42"
        assert workflow.active
        assert list(workflow.nodes) == ["Start", "Fetch", "Save", "Alert"]
        assert [(c.source_node, c.target_node, c.type) for c in workflow.connections] == [
            ("Start", "Fetch", "main"),
            ("Fetch", "Save", "main"),
            ("Fetch", "Alert", "error"),
        ]
        assert workflow.outgoing("Fetch", NodeConnectionType.ERROR)[0].target_node == "Alert"

    def test_source_index_comes_from_port_position(self):
        workflow = load_workflow({
            "name": "branches",
            "nodes": [{"name": "Check", "type": "If"}, {"name": "Yes", "type": "NoOp"}, {"name": "No", "type": "Merge"}],
            "connections": {"Check": {"main": [[{"node": "Yes"}], [{"node": "No", "index": 1}]]}},
        })

        conn = workflow.incoming("No")[0]
        assert (conn.source_index, conn.target_index) == (1, 1)
        assert workflow.incoming("Yes")[0].source_index == 0

    def test_flat_connections_with_aliases(self):
        workflow = load_workflow({
            "name": "flat",
            "nodes": [{"name": "A", "type": "NoOp"}, {"name": "B", "type": "NoOp"}],
            "connections": [{"sourceNode": "A", "targetNode": "B", "targetIndex": 2}],
        })

        assert workflow.connections[0] == edge("A", "B", target_index=2)

    def test_node_fields(self, definition):
        workflow = load_workflow(definition)

        fetch = workflow.nodes["Fetch"]
        assert fetch.retry_on_fail == 2
        assert fetch.retry_delay == 50
        assert fetch.continue_on_fail
        assert fetch.input_mapping == "json.body"
        assert workflow.nodes["Save"].disabled
        assert workflow.static_data == {"global": {"cursor": 10}}
        assert workflow.get_pinned_data("Start") == items({"page": 1})

    @pytest.mark.parametrize(
        "data, expected",
        [
            ({"nodes": []}, "name: Field required"),
            ({"name": "x", "nodes": [{"name": "A"}]}, "nodes.0.type: Field required"),
            ({"name": "x", "nodes": [{"name": "A", "type": "NoOp", "retryOnFail": -1}]}, "nodes.0.retryOnFail"),
            ({"name": "x", "nodes": [], "connections": {"A": ["B"]}}, "connections"),
            ({"name": "x", "nodes": [], "connections": {"A": {"main": [["B"]]}}}, "connections"),
        ],
    )
    def test_malformed_definitions(self, data, expected):
        with pytest.raises(InvalidDefinitionError) as exc_info:
            load_workflow(data)
        assert any(expected in problem for problem in exc_info.value.problems)

    def test_traversal_filters_are_not_connection_types(self):
        with pytest.raises(InvalidDefinitionError) as exc_info:
            load_workflow({
                "name": "x",
                "nodes": [{"name": "A", "type": "NoOp"}, {"name": "B", "type": "NoOp"}],
                "connections": [{"sourceNode": "A", "targetNode": "B", "type": "ALL"}],
            })
        assert "traversal filter" in exc_info.value.problems[0]

    def test_structural_problems(self):
        with pytest.raises(InvalidDefinitionError, match="dangling"):
            load_workflow({
                "name": "x",
                "nodes": [{"name": "A", "type": "NoOp"}],
                "connections": [{"sourceNode": "A", "targetNode": "Ghost"}],
            })
        with pytest.raises(InvalidDefinitionError, match="cycle"):
            load_workflow({
                "name": "x",
                "nodes": [{"name": "A", "type": "NoOp"}, {"name": "B", "type": "NoOp"}],
                "connections": {"A": {"main": [[{"node": "B"}]]}, "B": {"main": [[{"node": "A"}]]}},
            })


class TestDumpWorkflow:
    def test_uses_aliases_and_flat_connections(self, definition):
        data = dump_workflow(load_workflow(definition))

        assert data["staticData"] == {"global": {"cursor": 10}}
        assert data["pinData"] == {"Start": [{"json": {"page": 1}}]}
        assert data["nodes"][1]["retryOnFail"] == 2
        assert "retry_on_fail" not in data["nodes"][1]
        assert data["connections"][2] == {
            "sourceNode": "Fetch",
            "targetNode": "Alert",
            "type": "error",
            "sourceIndex": 0,
            "targetIndex": 0,
        }

    def test_dump_then_load_keeps_the_graph(self, definition):
        original = load_workflow(definition)
        reloaded = load_workflow(dump_workflow(original))

        assert reloaded.nodes == original.nodes
        assert reloaded.connections == original.connections
        assert reloaded.settings == original.settings
        assert reloaded.pin_data == original.pin_data

    def test_schema_accepts_python_field_names(self):
        schema = WorkflowDefinitionSchema(
            name="x",
            nodes=[{"name": "A", "type": "NoOp", "retry_on_fail": 1}],
            static_data={"global": {}},
        )
        assert schema.to_workflow().nodes["A"].retry_on_fail == 1


class TestExecutionRecordSchema:
    @pytest.fixture
    def record(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        failed = NodeRunRecord(node_name="Fetch", node_type="HttpRequest", status=NodeStatus.FAILED)
        return ExecutionRecord(
            id="exec_1",
            workflow_id="wf_1",
            workflow_name="Sync",
            mode="manual",
            start_time=now,
            end_time=now,
            status=RunStatus.FAILED,
            nodes={
                "Start": NodeRunRecord(
                    node_name="Start",
                    node_type="Start",
                    status=NodeStatus.SUCCEEDED,
                    outputs=[[NodeData(json={"a": 1}, binary={"file": b"12345"})]],
                    source="executed",
                ),
                "Fetch": failed,
                "Save": NodeRunRecord(
                    node_name="Save",
                    node_type="NoOp",
                    status=NodeStatus.SKIPPED,
                    skip_reason=SkipReason.UPSTREAM_FAILED,
                ),
            },
        )

    def test_from_record(self, record):
        data = ExecutionRecordSchema.from_record(record).model_dump(mode="json")

        assert data["status"] == "failed"
        assert data["nodes"]["Start"]["outputs"] == [[{"json": {"a": 1}, "binary": {"file": {"size": 5}}}]]
        assert data["nodes"]["Fetch"]["outputs"] is None
        assert data["nodes"]["Save"]["skip_reason"] == "upstream_failed"
        assert data["start_time"].startswith("2024-01-01")

    def test_list_item(self, record):
        item = ExecutionListItem.from_record(record)
        assert (item.id, item.status, item.error_count) == ("exec_1", "failed", 0)

    @pytest.mark.asyncio
    async def test_real_run(self, runner):
        workflow = build(
            [node("Start", "Start"), node("A", "Flaky", parameters={"failTimes": 1})],
            chain("Start", "A"),
        )

        record = await runner.run(workflow)
        data = ExecutionRecordSchema.from_record(record).model_dump(mode="json")

        assert data["errors"][0]["node_name"] == "A"
        assert data["errors"][0]["error_type"] == "NodeExecutionFailedError"
        assert data["nodes"]["A"]["error"]["error"] == "attempt 1 failed"
