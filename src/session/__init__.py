"""Session/tab state engine for sqltabs.

The engine owns the open tabs of the selected connection, their cached execution results,
the debounced persistence of the tab layout and the routing of user actions.
"""

__all__ = [
    "binding",
    "engine",
    "persistence",
    "result_cache",
    "router",
    "tab_registry",
]
