"""Tests for the bundled code-review example graph."""

from __future__ import annotations

from graphmode import END, GraphExecutor
from graphmode.registry import get_graph
from graphmode.workflows import code_review

SAMPLE = (
    "import os\n"
    "\n"
    "def foo(x):\n"
    "    # TODO: fix this\n"
    "    if x > 0:\n"
    "        print(x)\n"
    "\n"
    "def bar(y):\n"
    "    for i in range(y):\n"
    "        if i % 2 == 0:\n"
    "            print(i)\n"
)


class TestHelpers:
    def test_split_functions_skips_header(self):
        funcs = code_review.split_functions(SAMPLE)
        assert [f["name"] for f in funcs] == ["foo", "bar"]
        assert funcs[0]["code"].startswith("def foo(x):")
        assert funcs[0]["code"].endswith("print(x)")

    def test_complexity_and_smells(self):
        foo, bar = code_review.split_functions(SAMPLE)
        assert code_review.complexity(foo["code"]) == 2
        assert code_review.complexity(bar["code"]) == 3
        assert code_review.smells(foo["code"]) == 2
        assert code_review.smells(bar["code"]) == 1

    def test_check_done_lowers_threshold(self):
        state = code_review.check_done({"quality_score": 40, "threshold": 50})
        assert state["done"] is False
        assert state["threshold"] == 45
        assert state["passes"] == 1


class TestGraph:
    def test_registered(self):
        assert get_graph(code_review.GRAPH_NAME) is code_review.build_graph

    async def test_loops_until_threshold_met(self, memory_store, policy):
        nodes, start = code_review.build_graph()
        executor = GraphExecutor(code_review.GRAPH_NAME, nodes, memory_store, start, retry_policy=policy)

        result = await executor.run({"code": SAMPLE, "threshold": 85})

        # complexity 5 and 3 issues give 45; threshold decays 85 -> 45 in 8 passes
        assert result["quality_score"] == 45
        assert result["done"] is True
        assert result["passes"] == 8
        assert result["threshold"] == 45
        assert result["suggestions"] == ["Fix TODOs and prints"]
        assert len(memory_store.steps) == 1 + 9 * 4
        assert memory_store.steps[-1].node_type == "check_done"
        assert memory_store.steps[-1].routed == END

    async def test_clean_code_finishes_in_one_pass(self, memory_store, policy):
        nodes, start = code_review.build_graph()
        executor = GraphExecutor(code_review.GRAPH_NAME, nodes, memory_store, start, retry_policy=policy)
        result = await executor.run({"code": "def ok():\n    return 1\n"})
        assert result["quality_score"] == 95
        assert [s.node_type for s in memory_store.steps] == [
            "extract", "check_complexity", "detect_issues", "suggest", "check_done",
        ]
