# graphmode/__init__.py
from .engine import GraphExecutor, GraphRunner
from .errors import ConfigurationError, GraphModeError, NodeExecutionError, PersistenceError, RetryExhausted
from .models import END, Node, RunState, RunStatus
from .retry import RetryPolicy, retry
from .store import InMemoryRunStore, RunStore, SqliteRunStore

__all__ = [
    "END",
    "ConfigurationError",
    "GraphExecutor",
    "GraphModeError",
    "GraphRunner",
    "InMemoryRunStore",
    "Node",
    "NodeExecutionError",
    "PersistenceError",
    "RetryExhausted",
    "RetryPolicy",
    "RunState",
    "RunStatus",
    "RunStore",
    "SqliteRunStore",
    "retry",
]
