# graphmode/models.py
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, field_validator

END = "END"
MAX_ITERATIONS_REACHED = "MAX ITERATIONS reached"

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


def identity_of(value: Any) -> Optional[str]:
    """Normalise a node identity (str or Enum member) to its string form."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class Node(BaseModel, Generic[InputT, OutputT]):
    """A unit of work: ``exec`` turns the input into an output, ``routing``
    picks the identity of the next node from that output (None ends the run)."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    node_type: str
    exec: Callable[[InputT], Union[OutputT, Awaitable[OutputT]]]
    routing: Callable[[OutputT], Any]

    @field_validator("node_type", mode="before")
    @classmethod
    def _normalise_node_type(cls, value: Any) -> Any:
        return identity_of(value) if isinstance(value, Enum) else value


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CAP_REACHED = "cap_reached"


class RunState(BaseModel):
    run_id: str
    graph_name: str
    graph_id: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    current_node: Optional[str] = None
    steps: int = 0
    output: Any = None
    error: Optional[str] = None
    finished: bool = False
    logs: List[str] = []


class GraphRecord(BaseModel):
    id: str
    graph_name: str


class StepRecord(BaseModel):
    id: str
    seq: int
    run_id: str
    graph_id: str
    node_type: str
    input: str
    output: str
    routed: str
    datetime: str
    success: bool


class RunSummary(BaseModel):
    run_id: str
    graph_id: str
    steps: int
    started_at: str
    finished_at: str
    last_node: str
    status: RunStatus
