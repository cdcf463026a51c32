"""Shared fixtures for engine tests."""

from __future__ import annotations

from typing import List

import pytest

from graphmode import InMemoryRunStore, Node, RetryPolicy, SqliteRunStore


class RecordingSleep:
    """Stands in for asyncio.sleep so backoff delays are observed, not waited."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def policy(sleeper) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, sleep=sleeper)


@pytest.fixture
def memory_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
async def sqlite_store():
    async with SqliteRunStore(":memory:") as store:
        yield store


def suffix_node(node_type: str, suffix: str, next_node: str | None) -> Node:
    return Node(node_type=node_type, exec=lambda s: s + suffix, routing=lambda _: next_node)


@pytest.fixture
def linear_nodes() -> List[Node]:
    """Start -> Middle -> End, each appending one letter."""
    return [
        suffix_node("Start", "b", "Middle"),
        suffix_node("Middle", "c", "End"),
        suffix_node("End", "d", None),
    ]
