"""
Workflow runner - executes DAG-based workflows.

Nodes are dispatched as soon as every parent inside the run has reached a
terminal state, with at most `maxConcurrency` node tasks in flight.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, AsyncIterator

import httpx

from ..core.config import settings
from ..core.exceptions import (
    NodeError,
    NodeExecutionFailedError,
    NodeTimeoutError,
    NoStartNodeError,
    ParameterValidationError,
)
from .expression_engine import expression_engine
from .graph import get_child_nodes, get_parent_nodes, get_start_node
from .input_mapping import apply_input_mapping
from .rate_limiter import RateLimiter, RateLimiterRegistry, rate_limiters as shared_rate_limiters
from .types import (
    ExecutionContext,
    ExecutionError,
    ExecutionEvent,
    ExecutionEventCallback,
    ExecutionEventType,
    ExecutionMode,
    ExecutionRecord,
    ExecutionRequest,
    NodeConnectionType,
    NodeData,
    NodeDefinition,
    NodeExecutionResult,
    NodeRunRecord,
    NodeStatus,
    RunStatus,
    SkipReason,
)

if TYPE_CHECKING:
    from ..nodes.base import BaseNode
    from ..storage.execution_store import ExecutionStore
    from .node_registry import NodeRegistry
    from .types import Connection
    from .workflow import Workflow

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _RunState:
    """Bookkeeping for one run."""

    context: ExecutionContext
    run_set: set[str]
    on_event: ExecutionEventCallback | None
    node_timeout: float | None

    @property
    def total(self) -> int:
        return len(self.run_set)

    @property
    def completed(self) -> int:
        return sum(1 for r in self.context.record.nodes.values() if r.status.is_terminal)


class WorkflowRunner:
    """Executes DAG-based workflows with bounded concurrency."""

    def __init__(
        self,
        registry: NodeRegistry | None = None,
        store: ExecutionStore | None = None,
        rate_limiters: RateLimiterRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if registry is None:
            from .node_registry import register_all_nodes

            registry = register_all_nodes()
        self._registry = registry
        self._store = store
        self._rate_limiters = rate_limiters or shared_rate_limiters
        self._http_client = http_client
        self._active: dict[str, asyncio.Event] = {}

    async def execute(
        self,
        request: ExecutionRequest,
        on_event: ExecutionEventCallback | None = None,
    ) -> ExecutionRecord:
        """Run a workflow as described by an execution request."""
        return await self.run(
            request.workflow,
            start_node=request.start_node,
            destination_node=request.destination_node,
            input_data=request.input_data,
            mode=request.mode,
            user_id=request.user_id,
            on_event=on_event,
        )

    def cancel(self, execution_id: str) -> bool:
        """Signal a running execution to stop. Returns False if it is not running."""
        event = self._active.get(execution_id)
        if event is None:
            return False
        logger.info("Execution %s marked for cancellation", execution_id)
        event.set()
        return True

    async def run(
        self,
        workflow: Workflow,
        start_node: str | None = None,
        destination_node: str | None = None,
        input_data: list[NodeData] | None = None,
        mode: ExecutionMode = "manual",
        user_id: str | None = None,
        on_event: ExecutionEventCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionRecord:
        """
        Run a workflow.

        Args:
            workflow: The workflow to execute
            start_node: Node to start from; picked automatically when omitted
            destination_node: Only run what is needed to reach this node
            input_data: Items handed to the start node
            mode: Execution mode (manual, trigger, webhook, cron)
            user_id: User requesting the run
            on_event: Optional callback for real-time execution events
            cancel_event: Optional externally owned cancellation signal

        Returns:
            ExecutionRecord with the outcome of every node in the run

        Raises:
            InvalidDefinitionError: If the workflow breaks a structural invariant
            NodeNotFoundError: If a requested start or destination node does not exist
            NoStartNodeError: If no start node can be determined
            UnknownTypeError: If a node in the run has an unregistered type
        """
        workflow.validate()
        if destination_node is not None:
            workflow.get_node(destination_node)
        if start_node is None:
            start_node = get_start_node(workflow, self._registry, destination_node=destination_node)
        else:
            workflow.get_node(start_node)

        run_set = self._run_set(workflow, start_node, destination_node)
        for name in run_set:
            self._registry.get(workflow.nodes[name].type)

        execution_id = self._generate_id()
        record = ExecutionRecord(
            id=execution_id,
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            mode=mode,
            start_time=_now(),
            status=RunStatus.RUNNING,
            start_node=start_node,
            destination_node=destination_node,
            user_id=user_id,
            nodes={
                name: NodeRunRecord(node_name=name, node_type=node.type)
                for name, node in workflow.nodes.items()
                if name in run_set
            },
        )
        context = ExecutionContext(
            workflow=workflow,
            execution_id=execution_id,
            start_time=record.start_time,
            mode=mode,
            record=record,
            cancel_event=cancel_event or asyncio.Event(),
            rate_limiters=self._rate_limiters,
            trigger_data=list(input_data) if input_data is not None else None,
        )
        context.node_inputs[start_node] = {0: list(input_data or [NodeData(json={})])}

        state = _RunState(
            context=context,
            run_set=run_set,
            on_event=on_event,
            node_timeout=workflow.settings.get("nodeTimeout", settings.default_node_timeout),
        )
        max_concurrency = max(1, int(workflow.settings.get("maxConcurrency", settings.max_concurrency)))

        self._active[execution_id] = context.cancel_event
        if self._store is not None:
            self._store.start(record)

        logger.info(
            "Starting execution %s of workflow %r from %s (%d nodes)",
            execution_id, workflow.name, start_node, len(run_set),
        )
        self._emit(state, ExecutionEventType.EXECUTION_START)

        try:
            async with self._client() as client:
                context.http_client = client
                await self._dispatch(state, max_concurrency)
        except Exception as e:
            self._abort(state, e)
            raise
        finally:
            self._active.pop(execution_id, None)
            context.http_client = None

        return self._finish(state)

    # --- Dispatch ---

    async def _dispatch(self, state: _RunState, max_concurrency: int) -> None:
        """Start ready nodes until every node in the run is terminal or the run is canceled."""
        context = state.context
        pending = list(context.record.nodes)
        running: dict[asyncio.Task[None], str] = {}
        cancel_waiter = asyncio.ensure_future(context.cancel_event.wait())

        try:
            while pending or running:
                if context.canceled:
                    break

                progressed = True
                while progressed and len(running) < max_concurrency:
                    progressed = False
                    for name in list(pending):
                        if len(running) >= max_concurrency:
                            break
                        if not self._is_ready(state, name):
                            continue
                        pending.remove(name)
                        progressed = True
                        if self._has_input(state, name):
                            task = asyncio.create_task(self._run_node(state, name))
                            running[task] = name
                        else:
                            self._skip(state, name, self._skip_reason(state, name))

                if not running:
                    if pending:
                        # Unreachable for a validated acyclic workflow
                        raise RuntimeError(f"No node is ready to run: {', '.join(pending)}")
                    break

                done, _ = await asyncio.wait(
                    [*running, cancel_waiter], return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    if task is cancel_waiter:
                        continue
                    running.pop(task)
                    task.result()
        finally:
            cancel_waiter.cancel()
            if running:
                for task in running:
                    task.cancel()
                await asyncio.gather(*running, return_exceptions=True)
                for name in running.values():
                    if not context.record.nodes[name].status.is_terminal:
                        self._skip(state, name, SkipReason.CANCELED)
            if context.canceled:
                for name in pending:
                    self._skip(state, name, SkipReason.CANCELED)

    def _run_set(self, workflow: Workflow, start_node: str, destination_node: str | None) -> set[str]:
        """Nodes reachable from the start node, limited to what the destination needs."""
        run_set = {start_node, *get_child_nodes(workflow, start_node, NodeConnectionType.DISPATCH)}
        if destination_node is not None:
            needed = {destination_node, *get_parent_nodes(workflow, destination_node, NodeConnectionType.DISPATCH)}
            if destination_node not in run_set:
                raise NoStartNodeError(
                    f'Destination node "{destination_node}" is not reachable from "{start_node}"'
                )
            run_set &= needed
        return run_set

    def _dispatch_parents(self, state: _RunState, name: str) -> list[str]:
        workflow = state.context.workflow
        parents = []
        for conn in workflow.incoming(name):
            if conn.type in NodeConnectionType.DISPATCH and conn.source_node in state.run_set:
                if conn.source_node not in parents:
                    parents.append(conn.source_node)
        return parents

    def _is_ready(self, state: _RunState, name: str) -> bool:
        nodes = state.context.record.nodes
        return all(nodes[p].status.is_terminal for p in self._dispatch_parents(state, name))

    def _has_input(self, state: _RunState, name: str) -> bool:
        ports = state.context.node_inputs.get(name, {})
        return any(ports.values())

    def _skip_reason(self, state: _RunState, name: str) -> SkipReason:
        nodes = state.context.record.nodes
        for parent in self._dispatch_parents(state, name):
            run = nodes[parent]
            if run.status == NodeStatus.FAILED or run.skip_reason in (
                SkipReason.UPSTREAM_FAILED,
                SkipReason.CANCELED,
            ):
                return SkipReason.UPSTREAM_FAILED
        return SkipReason.BRANCH_NOT_TAKEN

    def _collect_input(self, state: _RunState, name: str) -> list[NodeData]:
        ports = state.context.node_inputs.get(name, {})
        return [item for port in sorted(ports) for item in ports[port]]

    def _deliver(self, state: _RunState, conn: Connection, items: list[NodeData] | None) -> None:
        if not items or conn.target_node not in state.run_set:
            return
        ports = state.context.node_inputs.setdefault(conn.target_node, {})
        ports.setdefault(conn.target_index, []).extend(items)

    def _deliver_outputs(self, state: _RunState, name: str, outputs: list[list[NodeData]]) -> None:
        for conn in state.context.workflow.outgoing(name, NodeConnectionType.MAIN):
            if conn.source_index < len(outputs):
                self._deliver(state, conn, outputs[conn.source_index])

    # --- Per node ---

    async def _run_node(self, state: _RunState, name: str) -> None:
        """Run one node and route its result."""
        context = state.context
        workflow = context.workflow
        node_def = workflow.nodes[name]
        run = context.record.nodes[name]
        input_data = self._collect_input(state, name)

        if node_def.disabled:
            run.outputs = [input_data]
            run.source = "passthrough"
            self._skip(state, name, SkipReason.DISABLED)
            self._deliver_outputs(state, name, run.outputs)
            return

        run.status = NodeStatus.RUNNING
        run.started_at = _now()
        self._emit(state, ExecutionEventType.NODE_START, node_def)

        pinned = workflow.get_pinned_data(name)
        if pinned is not None:
            self._succeed(state, node_def, [list(pinned)], source="pinned")
            return

        node = self._registry.get(node_def.type)
        try:
            resolved, mapped_input = self._prepare(context, node, node_def, input_data)
            result = await self._execute_with_retry(state, node, resolved, mapped_input)
        except NodeError as e:
            self._fail(state, node_def, e)
            return

        self._succeed(state, node_def, [list(o) if o else [] for o in result.outputs], source="executed")

    def _prepare(
        self,
        context: ExecutionContext,
        node: BaseNode,
        node_def: NodeDefinition,
        input_data: list[NodeData],
    ) -> tuple[NodeDefinition, list[NodeData]]:
        """
        Resolve parameters, apply the input mapping and validate.

        Per-item ($json) templates are left for the node to resolve per item.
        Failures here are structural and never retried.
        """
        expr_context = context.expression_context(node_def.name, input_data)
        parameters = expression_engine.resolve(
            node_def.parameters, expr_context, node_def.name, skip_json=True
        )
        mapped = apply_input_mapping(node_def.input_mapping, input_data, node_def.name)

        try:
            problems = node.validate(parameters)
        except NodeError:
            raise
        except Exception as e:
            raise ParameterValidationError(node_def.name, [str(e) or type(e).__name__]) from e
        if problems:
            raise ParameterValidationError(node_def.name, problems)

        return dataclasses.replace(node_def, parameters=parameters), mapped

    async def _execute_with_retry(
        self,
        state: _RunState,
        node: BaseNode,
        node_def: NodeDefinition,
        input_data: list[NodeData],
    ) -> NodeExecutionResult:
        """Execute node with retry and timeout handling."""
        run = state.context.record.nodes[node_def.name]
        max_retries = max(0, node_def.retry_on_fail)
        retry_delay = node_def.retry_delay if node_def.retry_delay is not None else settings.default_retry_delay
        timeout = node_def.timeout if node_def.timeout is not None else state.node_timeout
        limiter = None if node.limits_own_calls else self._rate_limiters.for_node(node)
        last_error: NodeError | None = None

        for attempt in range(max_retries + 1):
            run.retry_count = attempt
            try:
                return await self._attempt(state.context, node, node_def, input_data, limiter, timeout)
            except NodeError as e:
                if not e.retryable:
                    raise
                last_error = e
            except Exception as e:
                last_error = NodeExecutionFailedError(node_def.name, str(e) or type(e).__name__)
                last_error.__cause__ = e

            if attempt < max_retries:
                logger.warning(
                    "Node %s failed (attempt %d/%d): %s",
                    node_def.name, attempt + 1, max_retries + 1, last_error.message,
                )
                await asyncio.sleep(retry_delay / 1000)

        assert last_error is not None
        if max_retries == 0:
            raise last_error
        raise NodeExecutionFailedError(
            node_def.name, last_error.message, attempts=max_retries + 1
        ) from last_error

    async def _attempt(
        self,
        context: ExecutionContext,
        node: BaseNode,
        node_def: NodeDefinition,
        input_data: list[NodeData],
        limiter: RateLimiter | None,
        timeout: float | None,
    ) -> NodeExecutionResult:
        if limiter is not None:
            await limiter.acquire()

        if timeout is None:
            return await node.execute(context, node_def, input_data)
        try:
            return await asyncio.wait_for(node.execute(context, node_def, input_data), timeout)
        except asyncio.TimeoutError as e:
            raise NodeTimeoutError(node_def.name, timeout) from e

    def _succeed(
        self,
        state: _RunState,
        node_def: NodeDefinition,
        outputs: list[list[NodeData]],
        source: str,
    ) -> None:
        run = state.context.record.nodes[node_def.name]
        run.outputs = outputs
        run.source = source
        run.status = NodeStatus.SUCCEEDED
        run.finished_at = _now()
        self._deliver_outputs(state, node_def.name, outputs)
        self._emit(state, ExecutionEventType.NODE_COMPLETE, node_def, data=run.main_output)

    def _fail(self, state: _RunState, node_def: NodeDefinition, error: NodeError) -> None:
        """Record a node failure and follow its error policy."""
        context = state.context
        run = context.record.nodes[node_def.name]
        run.status = NodeStatus.FAILED
        run.finished_at = _now()
        run.error = ExecutionError(
            node_name=node_def.name,
            error=error.message,
            timestamp=run.finished_at,
            error_type=type(error).__name__,
            description=error.description,
        )
        context.record.errors.append(run.error)
        logger.warning("Node %s failed: %s", node_def.name, error.message)

        error_item = NodeData(json={
            "error": error.message,
            "errorType": type(error).__name__,
            "node": node_def.name,
        })
        error_conns = context.workflow.outgoing(node_def.name, NodeConnectionType.ERROR)
        if error_conns:
            for conn in error_conns:
                self._deliver(state, conn, [error_item])
        elif node_def.continue_on_fail:
            run.outputs = [[error_item]]
            self._deliver_outputs(state, node_def.name, run.outputs)

        self._emit(state, ExecutionEventType.NODE_ERROR, node_def, error=error.message)

    def _skip(self, state: _RunState, name: str, reason: SkipReason) -> None:
        run = state.context.record.nodes[name]
        run.status = NodeStatus.SKIPPED
        run.skip_reason = reason
        run.finished_at = _now()
        self._emit(
            state,
            ExecutionEventType.NODE_SKIPPED,
            state.context.workflow.nodes[name],
            error=reason.value,
        )

    # --- Completion ---

    def _finish(self, state: _RunState) -> ExecutionRecord:
        context = state.context
        record = context.record

        if context.canceled:
            record.status = RunStatus.CANCELED
        elif any(r.status == NodeStatus.FAILED for r in record.nodes.values()):
            record.status = RunStatus.FAILED
        else:
            record.status = RunStatus.FINISHED
        record.end_time = _now()
        record.static_data = context.workflow.static_data_snapshot()

        if self._store is not None:
            self._store.complete(record)

        logger.info(
            "Execution %s %s in %.3fs (%d errors)",
            record.id,
            record.status.value,
            (record.end_time - record.start_time).total_seconds(),
            len(record.errors),
        )
        if record.status != RunStatus.FINISHED:
            message = (
                "Execution canceled"
                if record.status == RunStatus.CANCELED
                else "; ".join(f"{e.node_name}: {e.error}" for e in record.errors)
            )
            self._emit(state, ExecutionEventType.EXECUTION_ERROR, error=message)
        self._emit(state, ExecutionEventType.EXECUTION_COMPLETE)
        return record

    def _abort(self, state: _RunState, error: Exception) -> None:
        """Close out a run whose dispatch loop raised, so the record never stays running."""
        record = state.context.record
        record.status = RunStatus.FAILED
        record.end_time = _now()
        record.static_data = state.context.workflow.static_data_snapshot()
        for run in record.nodes.values():
            if run.status == NodeStatus.PENDING:
                run.status = NodeStatus.SKIPPED
                run.skip_reason = SkipReason.CANCELED
                run.finished_at = record.end_time
            elif run.status == NodeStatus.RUNNING:
                run.status = NodeStatus.FAILED
                run.finished_at = record.end_time
                run.error = ExecutionError(
                    node_name=run.node_name,
                    error=str(error) or type(error).__name__,
                    timestamp=record.end_time,
                    error_type=type(error).__name__,
                )
                record.errors.append(run.error)

        if self._store is not None:
            self._store.complete(record)

        logger.exception("Execution %s aborted", record.id)
        self._emit(state, ExecutionEventType.EXECUTION_ERROR, error=str(error) or type(error).__name__)
        self._emit(state, ExecutionEventType.EXECUTION_COMPLETE)

    # --- Helpers ---

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Shared HTTP client for the run."""
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=settings.http_timeout, follow_redirects=True) as client:
            yield client

    def _emit(
        self,
        state: _RunState,
        event_type: ExecutionEventType,
        node_def: NodeDefinition | None = None,
        data: list[NodeData] | None = None,
        error: str | None = None,
    ) -> None:
        """Helper to emit events safely."""
        if not state.on_event:
            return
        event = ExecutionEvent(
            type=event_type,
            execution_id=state.context.execution_id,
            timestamp=_now(),
            node_name=node_def.name if node_def else None,
            node_type=node_def.type if node_def else None,
            data=data,
            error=error,
            progress={"completed": state.completed, "total": state.total},
        )
        try:
            state.on_event(event)
        except Exception:
            logger.exception("Error in execution event callback")

    def _generate_id(self) -> str:
        """Generate unique execution ID."""
        return f"exec_{int(_now().timestamp() * 1000)}_{uuid.uuid4().hex[:7]}"
