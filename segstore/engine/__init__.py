"""
Storage engine components: segment store, indexes, queries and lifecycle.
"""

from segstore.engine.engine import Engine, EngineState

__all__ = ["Engine", "EngineState"]
