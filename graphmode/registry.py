# graphmode/registry.py
from typing import Callable, Dict, List, Optional, Tuple

from .models import Node

# graph name -> factory returning (nodes, start node identity)
GraphFactory = Callable[[], Tuple[List[Node], str]]

GRAPHS: Dict[str, GraphFactory] = {}


def register_graph(name: str):
    def decorator(fn: GraphFactory) -> GraphFactory:
        GRAPHS[name] = fn
        return fn
    return decorator


def get_graph(name: str) -> Optional[GraphFactory]:
    return GRAPHS.get(name)
