from .base import ToolRegistry, bind_callable

__all__ = ["ToolRegistry", "bind_callable"]
