"""Engine: providers, permissions, tools and the agent loop.

Core classes:
    AgentLoop: drives model turns and tool dispatch for one conversation
    PermissionEngine: decides whether a tool invocation may run
    ToolRegistry: name -> tool lookup and guarded execution
    ProviderRegistry: name -> streaming provider adapter
"""
from .agent_loop import AgentLoop, TurnOutcome
from .config import AppConfig
from .permissions import PermissionEngine, PermissionPolicy
from .providers import ProviderRegistry
from .tools import ToolRegistry

__all__ = [
    "AgentLoop",
    "TurnOutcome",
    "AppConfig",
    "PermissionEngine",
    "PermissionPolicy",
    "ProviderRegistry",
    "ToolRegistry",
]
