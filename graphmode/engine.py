# graphmode/engine.py
import copy
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .errors import ConfigurationError, NodeExecutionError, RetryExhausted
from .logging_config import ctx_node_type, ctx_run_id
from .models import END, MAX_ITERATIONS_REACHED, Node, RunState, RunStatus, identity_of
from .retry import RetryPolicy
from .store import RunStore, serialize_payload

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 100


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_payload(exc: BaseException) -> str:
    cause = getattr(exc, "last_error", None) or exc
    payload = {"error": cause.__class__.__name__, "message": str(exc)}
    if isinstance(exc, RetryExhausted):
        payload["attempts"] = exc.attempts
    return serialize_payload(payload)


class GraphExecutor:
    """Runs one graph: start node first, then whatever each node's routing picks.

    Every attempted node execution is appended to ``store`` as a step. A run
    stops when routing returns None/END, when a node exhausts its retries
    (the error propagates), or after ``max_steps`` executions (a cap step is
    recorded and the last output is returned).
    """

    def __init__(self, graph_name: str, nodes: Iterable[Node], store: RunStore,
                 start_node: Union[str, Enum], *, max_steps: int = DEFAULT_MAX_STEPS,
                 retry_policy: Optional[RetryPolicy] = None):
        if max_steps < 1:
            raise ConfigurationError(f"max_steps must be >= 1, got {max_steps}")
        self.graph_name = graph_name
        self.store = store
        self.max_steps = max_steps
        self.retry_policy = retry_policy or RetryPolicy()
        self.nodes: Dict[str, Node] = {}
        for node in nodes:
            if node.node_type == END:
                raise ConfigurationError(f"node identity {END!r} is reserved")
            if node.node_type in self.nodes:
                raise ConfigurationError(f"duplicate node {node.node_type!r} in graph {graph_name!r}")
            self.nodes[node.node_type] = node
        self.start_node = identity_of(start_node)
        if self.start_node not in self.nodes:
            raise ConfigurationError(f"start node {self.start_node!r} is not registered in graph {graph_name!r}")
        self._graph_id: Optional[str] = None

    @classmethod
    async def create(cls, *args, **kwargs) -> "GraphExecutor":
        executor = cls(*args, **kwargs)
        await executor.ensure_graph()
        return executor

    async def ensure_graph(self) -> str:
        self._graph_id = await self.store.ensure_graph(self.graph_name)
        return self._graph_id

    def new_run_state(self) -> RunState:
        return RunState(run_id=str(uuid.uuid4()), graph_name=self.graph_name)

    def _resolve(self, identity: str) -> Node:
        node = self.nodes.get(identity)
        if node is None:
            raise ConfigurationError(f"graph {self.graph_name!r} has no node {identity!r}")
        return node

    async def run(self, input: Any, *, run_state: Optional[RunState] = None) -> Any:
        """Traverse the graph from the start node and return the last output.

        Pass ``run_state`` (see ``new_run_state``) to observe progress while the
        run is in flight; it is updated in place.
        """
        if self._graph_id is None:
            await self.ensure_graph()
        graph_id = await self.store.get_graph_id(self.graph_name)
        if graph_id is None:
            raise ConfigurationError(f"could not find graph id for {self.graph_name!r}")

        if run_state is None:
            run_state = self.new_run_state()
        run_state.graph_id = graph_id
        run_state.status = RunStatus.RUNNING

        run_token = ctx_run_id.set(run_state.run_id)
        try:
            return await self._execute(input, run_state)
        except Exception as e:
            run_state.status = RunStatus.FAILED
            run_state.error = str(e)
            logger.error("run %s of %r failed: %s", run_state.run_id, self.graph_name, e)
            raise
        finally:
            run_state.finished = True
            run_state.current_node = None
            ctx_run_id.reset(run_token)

    async def _execute(self, input: Any, run_state: RunState) -> Any:
        node: Optional[Node] = self._resolve(self.start_node)
        current_input = input
        output = None
        step_count = 0

        while node is not None and step_count < self.max_steps:
            run_state.current_node = node.node_type
            run_state.logs.append(f"running {node.node_type}")
            output, next_identity = await self._execute_node(node, current_input, run_state)
            step_count += 1
            run_state.steps = step_count
            run_state.output = output
            run_state.logs.append(f"{node.node_type} -> next: {next_identity or END}")

            if next_identity is None:
                node = None
                break
            node = self._resolve(next_identity)
            # next node must never observe later mutation of this output
            current_input = copy.deepcopy(output)

        if node is not None:
            await self.store.append_step(
                run_state.run_id, run_state.graph_id, node.node_type, serialize_payload(current_input),
                MAX_ITERATIONS_REACHED, node.node_type, False, _now(),
            )
            run_state.status = RunStatus.CAP_REACHED
            run_state.logs.append("max steps reached; aborting")
            logger.warning("run %s of %r hit the %d step cap before %r", run_state.run_id,
                           self.graph_name, self.max_steps, node.node_type)
        else:
            run_state.status = RunStatus.COMPLETED
            logger.info("run %s of %r completed in %d step(s)", run_state.run_id, self.graph_name, step_count)
        return output

    async def _execute_node(self, node: Node, input: Any, run_state: RunState) -> Tuple[Any, Optional[str]]:
        node_token = ctx_node_type.set(node.node_type)
        try:
            input_snapshot = serialize_payload(input)
            try:
                output = await self.retry_policy.call(lambda: node.exec(input), node_type=node.node_type)
            except RetryExhausted as e:
                await self._record_failure(node, input_snapshot, e, run_state)
                raise

            try:
                next_identity = identity_of(node.routing(output))
            except Exception as e:
                await self._record_failure(node, input_snapshot, e, run_state)
                raise NodeExecutionError(f"routing of node {node.node_type!r} failed: {e}",
                                         node_type=node.node_type) from e
            if next_identity == END:
                next_identity = None

            await self.store.append_step(
                run_state.run_id, run_state.graph_id, node.node_type, input_snapshot,
                serialize_payload(output), next_identity or END, True, _now(),
            )
            logger.info("node %r succeeded, routed to %s", node.node_type, next_identity or END)
            return output, next_identity
        finally:
            ctx_node_type.reset(node_token)

    async def _record_failure(self, node: Node, input_snapshot: str, exc: BaseException,
                              run_state: RunState) -> None:
        run_state.logs.append(f"{node.node_type}: failed: {exc}")
        await self.store.append_step(
            run_state.run_id, run_state.graph_id, node.node_type, input_snapshot,
            _error_payload(exc), node.node_type, False, _now(),
        )


GraphRunner = GraphExecutor
