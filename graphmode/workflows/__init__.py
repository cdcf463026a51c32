# graphmode/workflows/__init__.py
from . import code_review  # noqa: F401  registers the example graph
