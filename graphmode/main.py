# graphmode/main.py
import asyncio
import json
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from .config import Settings
from .engine import GraphExecutor
from .errors import GraphModeError
from .logging_config import setup_logger
from .models import GraphRecord, RunState, RunStatus, RunSummary, StepRecord
from .registry import GRAPHS, get_graph
from .retry import RetryPolicy
from .store import SqliteRunStore, run_status, serialize_payload
from . import workflows  # noqa: F401  import to ensure example graphs are registered

logger = logging.getLogger(__name__)


class RunPayload(BaseModel):
    input: Any = None
    run_in_background: bool = False


class RunResponse(BaseModel):
    run_id: str
    status: str
    output: Any = None
    error: Optional[str] = None
    steps: int
    logs: List[str]


def _response(run_state: RunState) -> RunResponse:
    return RunResponse(
        run_id=run_state.run_id,
        status=run_state.status.value,
        output=json.loads(serialize_payload(run_state.output)),
        error=run_state.error,
        steps=run_state.steps,
        logs=run_state.logs,
    )


def _response_from_steps(run_id: str, steps: List[StepRecord]) -> RunResponse:
    """Rebuild a run's outcome from its persisted history."""
    last = steps[-1]
    status = run_status(last)
    succeeded = [s for s in steps if s.success]
    error = None
    if status == RunStatus.FAILED:
        payload = json.loads(last.output)
        error = payload.get("message") if isinstance(payload, dict) else str(payload)
    return RunResponse(
        run_id=run_id,
        status=status.value,
        output=json.loads(succeeded[-1].output) if succeeded else None,
        error=error,
        steps=len(succeeded),
        logs=[],
    )


def _track(runs: "OrderedDict[str, RunState]", run_state: RunState, limit: int) -> None:
    runs[run_state.run_id] = run_state
    while len(runs) > limit:
        oldest_finished = next((run_id for run_id, state in runs.items() if state.finished), None)
        if oldest_finished is None:
            break
        del runs[oldest_finished]


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logger(settings.log_format, settings.log_level)
        async with SqliteRunStore(settings.db_path) as store:
            app.state.store = store
            app.state.runs = OrderedDict()
            app.state.tasks = set()
            yield
            pending = list(app.state.tasks)
            for task in pending:
                task.cancel()
            # let cancelled runs unwind before the store closes
            await asyncio.gather(*pending, return_exceptions=True)

    app = FastAPI(title="graph-mode", lifespan=lifespan)
    app.state.settings = settings

    def _executor(request: Request, graph_name: str) -> GraphExecutor:
        factory = get_graph(graph_name)
        if factory is None:
            raise HTTPException(status_code=404, detail=f"graph {graph_name} is not registered")
        nodes, start_node = factory()
        return GraphExecutor(
            graph_name, nodes, request.app.state.store, start_node,
            max_steps=settings.max_steps,
            retry_policy=RetryPolicy(settings.retry_max_attempts, settings.retry_base_delay),
        )

    @app.get("/graphs", response_model=List[GraphRecord])
    async def list_graphs(request: Request):
        return await request.app.state.store.list_graphs()

    @app.get("/graphs/registered")
    async def list_registered_graphs():
        return {"graphs": sorted(GRAPHS)}

    @app.get("/graphs/{graph_name}/runs", response_model=List[RunSummary])
    async def list_runs(graph_name: str, request: Request):
        store = request.app.state.store
        graph_id = await store.get_graph_id(graph_name)
        if graph_id is None:
            raise HTTPException(status_code=404, detail="graph not found")
        return await store.list_runs(graph_id)

    @app.post("/graphs/{graph_name}/run", response_model=RunResponse)
    async def run_graph(graph_name: str, payload: RunPayload, request: Request):
        executor = _executor(request, graph_name)
        run_state = executor.new_run_state()
        _track(request.app.state.runs, run_state, settings.max_tracked_runs)

        async def _runner():
            try:
                await executor.run(payload.input, run_state=run_state)
            except GraphModeError as e:
                # already recorded on run_state and in the step history
                logger.warning("run %s ended with %s", run_state.run_id, e.__class__.__name__)
            except Exception:
                # run() has marked run_state failed; keep the error out of the event loop
                logger.exception("run %s crashed", run_state.run_id)

        if payload.run_in_background:
            task = asyncio.create_task(_runner())
            request.app.state.tasks.add(task)
            task.add_done_callback(request.app.state.tasks.discard)
        else:
            await _runner()
        return _response(run_state)

    @app.get("/runs/{run_id}", response_model=RunResponse)
    async def get_run_state(run_id: str, request: Request):
        run_state = request.app.state.runs.get(run_id)
        if run_state is not None:
            return _response(run_state)
        steps = await request.app.state.store.list_steps(run_id)
        if not steps:
            raise HTTPException(status_code=404, detail="run not found")
        return _response_from_steps(run_id, steps)

    @app.get("/runs/{run_id}/steps", response_model=List[StepRecord])
    async def list_steps(run_id: str, request: Request):
        steps = await request.app.state.store.list_steps(run_id)
        if not steps:
            raise HTTPException(status_code=404, detail="run not found")
        return steps

    return app


app = create_app()


if __name__ == "__main__":
    _settings = Settings()
    uvicorn.run("graphmode.main:app", host=_settings.host, port=_settings.port)
