# graphmode/errors.py
from typing import Optional


class GraphModeError(Exception):
    """Base class for everything the engine raises."""


class ConfigurationError(GraphModeError):
    """Bad graph definition: duplicate or unknown node identity, missing graph row."""


class NodeExecutionError(GraphModeError):
    def __init__(self, message: str, node_type: Optional[str] = None):
        super().__init__(message)
        self.node_type = node_type


class RetryExhausted(NodeExecutionError):
    """All attempts failed. The message is the last failure's message."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None,
                 node_type: Optional[str] = None):
        super().__init__(message, node_type=node_type)
        self.attempts = attempts
        self.last_error = last_error


class PersistenceError(GraphModeError):
    """The run store failed to record history. Fatal to the run."""
