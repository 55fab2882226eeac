"""Execution record Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..engine.types import ExecutionError, ExecutionRecord, NodeData, NodeRunRecord


class ExecutionErrorSchema(BaseModel):
    """Schema for execution error."""

    node_name: str
    error: str
    error_type: str
    timestamp: datetime
    description: str | None = None

    @classmethod
    def from_error(cls, error: ExecutionError) -> ExecutionErrorSchema:
        return cls(
            node_name=error.node_name,
            error=error.error,
            error_type=error.error_type,
            timestamp=error.timestamp,
            description=error.description,
        )


class NodeRunSchema(BaseModel):
    """Outcome of one node in a run."""

    node_name: str
    node_type: str
    status: str
    outputs: list[list[dict[str, Any]]] | None = Field(
        None, description="Items emitted per output port"
    )
    error: ExecutionErrorSchema | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    retry_count: int = 0
    skip_reason: str | None = None
    source: str | None = Field(None, description="executed, pinned or passthrough")

    @classmethod
    def from_run(cls, run: NodeRunRecord) -> NodeRunSchema:
        return cls(
            node_name=run.node_name,
            node_type=run.node_type,
            status=run.status.value,
            outputs=[[_item(i) for i in port] for port in run.outputs] if run.outputs is not None else None,
            error=ExecutionErrorSchema.from_error(run.error) if run.error else None,
            started_at=run.started_at,
            finished_at=run.finished_at,
            retry_count=run.retry_count,
            skip_reason=run.skip_reason.value if run.skip_reason else None,
            source=run.source,
        )


class ExecutionRecordSchema(BaseModel):
    """JSON-safe snapshot of a run for persistence and display."""

    id: str
    workflow_id: str | None
    workflow_name: str
    status: str = Field(..., description="running, finished, failed or canceled")
    mode: str
    start_time: datetime
    end_time: datetime | None = None
    start_node: str | None = None
    destination_node: str | None = None
    user_id: str | None = None
    nodes: dict[str, NodeRunSchema] = Field(default_factory=dict)
    errors: list[ExecutionErrorSchema] = Field(default_factory=list)
    static_data: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> ExecutionRecordSchema:
        return cls(
            id=record.id,
            workflow_id=record.workflow_id,
            workflow_name=record.workflow_name,
            status=record.status.value,
            mode=record.mode,
            start_time=record.start_time,
            end_time=record.end_time,
            start_node=record.start_node,
            destination_node=record.destination_node,
            user_id=record.user_id,
            nodes={name: NodeRunSchema.from_run(run) for name, run in record.nodes.items()},
            errors=[ExecutionErrorSchema.from_error(e) for e in record.errors],
            static_data=record.static_data,
        )


class ExecutionListItem(BaseModel):
    """Schema for execution in list response."""

    id: str
    workflow_id: str | None
    workflow_name: str
    status: str
    mode: str
    start_time: datetime
    end_time: datetime | None
    error_count: int

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> ExecutionListItem:
        return cls(
            id=record.id,
            workflow_id=record.workflow_id,
            workflow_name=record.workflow_name,
            status=record.status.value,
            mode=record.mode,
            start_time=record.start_time,
            end_time=record.end_time,
            error_count=len(record.errors),
        )


def _item(item: NodeData) -> dict[str, Any]:
    # Binary payloads are summarized, never inlined
    data: dict[str, Any] = {"json": item.json}
    if item.binary:
        data["binary"] = {key: {"size": len(value)} for key, value in item.binary.items()}
    return data
