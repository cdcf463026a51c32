# graphmode/store.py
"""Run history persistence.

Two tables back the audit log: ``Graphs`` (one row per graph name) and
``Steps`` (one row per attempted node execution). Steps are append-only; the
``seq`` column is the execution order the store guarantees to preserve.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

import aiosqlite
from pydantic import BaseModel

from .errors import PersistenceError
from .models import END, MAX_ITERATIONS_REACHED, GraphRecord, RunStatus, RunSummary, StepRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS Graphs(
    id TEXT PRIMARY KEY,
    graphName TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS Steps(
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    runId TEXT NOT NULL,
    graphId TEXT NOT NULL,
    nodeType TEXT NOT NULL,
    input TEXT,
    output TEXT,
    routed TEXT NOT NULL,
    datetime TEXT NOT NULL,
    success INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_steps_run ON Steps(runId, seq);
CREATE INDEX IF NOT EXISTS idx_steps_graph ON Steps(graphId, seq);
"""


def _json_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def _str_keys(value: Any, seen: frozenset = frozenset()) -> Any:
    if isinstance(value, (dict, list, tuple)):
        if id(value) in seen:
            raise ValueError("circular reference")
        seen = seen | {id(value)}
    if isinstance(value, dict):
        return {k if isinstance(k, (str, int, float, bool)) or k is None else str(k): _str_keys(v, seen)
                for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_str_keys(v, seen) for v in value]
    return value


def serialize_payload(value: Any) -> str:
    """JSON text for a node input/output.

    Never raises: unknown objects fall back to str(), non-JSON dict keys to
    str(key), and anything still unencodable (cycles) to its repr().
    """
    try:
        return json.dumps(value, default=_json_default)
    except (TypeError, ValueError):
        pass
    try:
        return json.dumps(_str_keys(value), default=_json_default)
    except (TypeError, ValueError):
        return json.dumps(repr(value))


class RunStore(Protocol):
    async def ensure_graph(self, graph_name: str) -> str: ...

    async def get_graph_id(self, graph_name: str) -> Optional[str]: ...

    async def append_step(self, run_id: str, graph_id: str, node_type: str, input: str, output: str,
                          routed: str, success: bool, timestamp: str) -> None: ...

    async def list_graphs(self) -> List[GraphRecord]: ...

    async def list_runs(self, graph_id: str) -> List[RunSummary]: ...

    async def list_steps(self, run_id: str) -> List[StepRecord]: ...


def run_status(last: StepRecord) -> RunStatus:
    if last.success and last.routed == END:
        return RunStatus.COMPLETED
    if not last.success and last.output == MAX_ITERATIONS_REACHED:
        return RunStatus.CAP_REACHED
    if not last.success:
        return RunStatus.FAILED
    return RunStatus.RUNNING


def summarise_runs(steps: List[StepRecord]) -> List[RunSummary]:
    """Group seq-ordered steps into per-run summaries, in order of first step."""
    grouped: Dict[str, List[StepRecord]] = {}
    for step in steps:
        grouped.setdefault(step.run_id, []).append(step)
    summaries = []
    for run_id, run_steps in grouped.items():
        first, last = run_steps[0], run_steps[-1]
        summaries.append(RunSummary(
            run_id=run_id,
            graph_id=first.graph_id,
            steps=len(run_steps),
            started_at=first.datetime,
            finished_at=last.datetime,
            last_node=last.node_type,
            status=run_status(last),
        ))
    return summaries


class InMemoryRunStore:
    def __init__(self):
        self.graphs: Dict[str, str] = {}
        self.steps: List[StepRecord] = []
        self._seq = 0

    async def ensure_graph(self, graph_name: str) -> str:
        if graph_name not in self.graphs:
            self.graphs[graph_name] = str(uuid.uuid4())
        return self.graphs[graph_name]

    async def get_graph_id(self, graph_name: str) -> Optional[str]:
        return self.graphs.get(graph_name)

    async def append_step(self, run_id: str, graph_id: str, node_type: str, input: str, output: str,
                          routed: str, success: bool, timestamp: str) -> None:
        self._seq += 1
        self.steps.append(StepRecord(
            id=str(uuid.uuid4()), seq=self._seq, run_id=run_id, graph_id=graph_id,
            node_type=node_type, input=input, output=output, routed=routed,
            datetime=timestamp, success=success,
        ))

    async def list_graphs(self) -> List[GraphRecord]:
        return [GraphRecord(id=gid, graph_name=name) for name, gid in self.graphs.items()]

    async def list_runs(self, graph_id: str) -> List[RunSummary]:
        return summarise_runs([s for s in self.steps if s.graph_id == graph_id])

    async def list_steps(self, run_id: str) -> List[StepRecord]:
        return [s for s in self.steps if s.run_id == run_id]


class SqliteRunStore:
    """aiosqlite-backed store. Use as ``async with SqliteRunStore(path) as store``."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def open(self) -> "SqliteRunStore":
        try:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row
            await self._db.executescript(SCHEMA)
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"could not open run store at {self.db_path}: {exc}") from exc
        logger.info("run store opened at %s", self.db_path)
        return self

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "SqliteRunStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise PersistenceError("run store is not open")
        return self._db

    async def ensure_graph(self, graph_name: str) -> str:
        db = self._conn()
        async with self._lock:
            try:
                await db.execute("INSERT OR IGNORE INTO Graphs(id, graphName) VALUES(?, ?)",
                                 (str(uuid.uuid4()), graph_name))
                await db.commit()
                async with db.execute("SELECT id FROM Graphs WHERE graphName = ? LIMIT 1", (graph_name,)) as cur:
                    row = await cur.fetchone()
            except aiosqlite.Error as exc:
                raise PersistenceError(f"could not ensure graph {graph_name!r}: {exc}") from exc
        if row is None:
            raise PersistenceError(f"graph {graph_name!r} missing after insert")
        return row["id"]

    async def get_graph_id(self, graph_name: str) -> Optional[str]:
        rows = await self._fetch("SELECT id FROM Graphs WHERE graphName = ? LIMIT 1", (graph_name,))
        return rows[0]["id"] if rows else None

    async def append_step(self, run_id: str, graph_id: str, node_type: str, input: str, output: str,
                          routed: str, success: bool, timestamp: str) -> None:
        db = self._conn()
        async with self._lock:
            try:
                await db.execute(
                    "INSERT INTO Steps(id, runId, graphId, nodeType, input, output, routed, datetime, success) "
                    "VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (str(uuid.uuid4()), run_id, graph_id, node_type, input, output, routed, timestamp,
                     1 if success else 0),
                )
                await db.commit()
            except aiosqlite.Error as exc:
                raise PersistenceError(f"could not record step {node_type!r} of run {run_id}: {exc}") from exc

    async def list_graphs(self) -> List[GraphRecord]:
        rows = await self._fetch("SELECT id, graphName FROM Graphs ORDER BY graphName")
        return [GraphRecord(id=r["id"], graph_name=r["graphName"]) for r in rows]

    async def list_runs(self, graph_id: str) -> List[RunSummary]:
        rows = await self._fetch("SELECT * FROM Steps WHERE graphId = ? ORDER BY seq", (graph_id,))
        return summarise_runs([self._to_step(r) for r in rows])

    async def list_steps(self, run_id: str) -> List[StepRecord]:
        rows = await self._fetch("SELECT * FROM Steps WHERE runId = ? ORDER BY seq", (run_id,))
        return [self._to_step(r) for r in rows]

    async def _fetch(self, sql: str, params: tuple = ()) -> List[aiosqlite.Row]:
        db = self._conn()
        async with self._lock:
            try:
                async with db.execute(sql, params) as cur:
                    return list(await cur.fetchall())
            except aiosqlite.Error as exc:
                raise PersistenceError(f"run store query failed: {exc}") from exc

    @staticmethod
    def _to_step(row: aiosqlite.Row) -> StepRecord:
        return StepRecord(
            id=row["id"], seq=row["seq"], run_id=row["runId"], graph_id=row["graphId"],
            node_type=row["nodeType"], input=row["input"], output=row["output"],
            routed=row["routed"], datetime=row["datetime"], success=bool(row["success"]),
        )
