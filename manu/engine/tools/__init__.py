"""Built-in tools and the registry that dispatches them."""
from .base import ToolContext, ToolDefinition, ToolOutput, fail, ok
from .registry import ToolRegistry, build_default_registry

__all__ = [
    "ToolContext",
    "ToolDefinition",
    "ToolOutput",
    "ToolRegistry",
    "build_default_registry",
    "fail",
    "ok",
]
