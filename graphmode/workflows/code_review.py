# graphmode/workflows/code_review.py
import asyncio
from enum import Enum
from typing import Any, Dict, List, Tuple

from ..models import Node
from ..registry import register_graph

GRAPH_NAME = "code-review"

State = Dict[str, Any]

# Example nodes for the code-review mini-agent. Each node returns a new state
# dict; check_done loops back to check_complexity until the score clears the
# threshold, lowering the threshold a little on every pass.


class NodeNames(str, Enum):
    EXTRACT = "extract"
    CHECK_COMPLEXITY = "check_complexity"
    DETECT_ISSUES = "detect_issues"
    SUGGEST = "suggest"
    CHECK_DONE = "check_done"


BRANCH_KEYWORDS = ("if ", "for ", "while ", "try:", "except")


def complexity(func_code: str) -> int:
    # naive: one plus a point per branching keyword
    return 1 + sum(func_code.count(kw) for kw in BRANCH_KEYWORDS)


def smells(code: str) -> int:
    issues = int("TODO" in code) + int("print(" in code)
    if len(code.splitlines()) > 200:
        issues += 2
    return issues


def split_functions(code: str) -> List[Dict[str, str]]:
    """Split source on top-level ``def`` lines; anything before the first def is ignored."""
    funcs: List[Dict[str, str]] = []
    current: List[str] = []
    for line in code.splitlines():
        if line.startswith("def "):
            if current:
                funcs.append(_function_entry(current))
            current = [line]
        elif current:
            current.append(line)
    if current:
        funcs.append(_function_entry(current))
    return funcs


def _function_entry(lines: List[str]) -> Dict[str, str]:
    name = lines[0][len("def "):].split("(")[0].strip()
    return {"name": name, "code": "\n".join(lines).strip()}


async def extract_functions(state: State) -> State:
    """Expects state['code']; adds state['functions'] = [{'name', 'code'}, ...]."""
    funcs = split_functions(state.get("code", ""))
    await asyncio.sleep(0)
    return {**state, "functions": funcs}


def check_complexity(state: State) -> State:
    report = [{"name": f["name"], "complexity": complexity(f["code"])} for f in state.get("functions", [])]
    return {**state, "complexity_report": report}


def detect_basic_issues(state: State) -> State:
    detail = [{"name": f["name"], "issues": smells(f["code"])} for f in state.get("functions", [])]
    total = sum(d["issues"] for d in detail)
    return {**state, "issues": {"total": total, "detail": detail}}


def suggest_improvements(state: State) -> State:
    # quality_score = 100 - complexity*5 - issues*10, floored at zero
    total_complexity = sum(item["complexity"] for item in state.get("complexity_report", []))
    issues = state.get("issues", {}).get("total", 0)
    quality_score = max(0, 100 - total_complexity * 5 - issues * 10)
    suggestions = []
    if issues > 0:
        suggestions.append("Fix TODOs and prints")
    if total_complexity > 10:
        suggestions.append("Refactor complex functions into smaller pieces")
    return {**state, "quality_score": quality_score, "suggestions": suggestions}


def check_done(state: State) -> State:
    threshold = state.get("threshold", 80)
    quality = state.get("quality_score", 0)
    if quality >= threshold:
        return {**state, "done": True}
    step = state.get("threshold_step", 5)
    return {
        **state,
        "done": False,
        "threshold": max(0, threshold - step),
        "passes": state.get("passes", 0) + 1,
    }


def _route_after_check(state: State):
    return None if state.get("done") else NodeNames.CHECK_COMPLEXITY


@register_graph(GRAPH_NAME)
def build_graph() -> Tuple[List[Node], str]:
    nodes = [
        Node(node_type=NodeNames.EXTRACT, exec=extract_functions,
             routing=lambda _: NodeNames.CHECK_COMPLEXITY),
        Node(node_type=NodeNames.CHECK_COMPLEXITY, exec=check_complexity,
             routing=lambda _: NodeNames.DETECT_ISSUES),
        Node(node_type=NodeNames.DETECT_ISSUES, exec=detect_basic_issues,
             routing=lambda _: NodeNames.SUGGEST),
        Node(node_type=NodeNames.SUGGEST, exec=suggest_improvements,
             routing=lambda _: NodeNames.CHECK_DONE),
        Node(node_type=NodeNames.CHECK_DONE, exec=check_done, routing=_route_after_check),
    ]
    return nodes, NodeNames.EXTRACT.value
