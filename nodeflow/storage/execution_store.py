"""In-memory execution history."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.config import settings

if TYPE_CHECKING:
    from ..engine.types import ExecutionRecord


class ExecutionStore:
    """Bounded in-memory execution history, oldest runs evicted first."""

    def __init__(self, max_records: int | None = None) -> None:
        self._executions: dict[str, ExecutionRecord] = {}
        self._max_records = max_records if max_records is not None else settings.max_execution_records

    def start(self, record: ExecutionRecord) -> ExecutionRecord:
        """Track a record when its run starts."""
        self._executions[record.id] = record
        self._cleanup()
        return record

    def complete(self, record: ExecutionRecord) -> ExecutionRecord:
        """Store the final state of a run."""
        self._executions[record.id] = record
        self._cleanup()
        return record

    def get(self, execution_id: str) -> ExecutionRecord | None:
        """Get an execution record by ID."""
        return self._executions.get(execution_id)

    def list(self, workflow_id: str | None = None) -> list[ExecutionRecord]:
        """List execution records, optionally filtered by workflow ID."""
        records = list(self._executions.values())

        if workflow_id:
            records = [r for r in records if r.workflow_id == workflow_id]

        # Newest first
        records.sort(key=lambda r: r.start_time, reverse=True)
        return records

    def delete(self, execution_id: str) -> bool:
        """Delete an execution record."""
        return self._executions.pop(execution_id, None) is not None

    def clear(self) -> None:
        self._executions.clear()

    def __len__(self) -> int:
        return len(self._executions)

    def _cleanup(self) -> None:
        """Remove old records if over max."""
        excess = len(self._executions) - self._max_records
        if excess <= 0:
            return
        oldest = sorted(self._executions.values(), key=lambda r: r.start_time)[:excess]
        for record in oldest:
            del self._executions[record.id]


execution_store = ExecutionStore()
