"""Tool registry and dispatch boundary.

Maps tool names to definitions and executes approved invocations.
Whatever a tool body does, ``execute`` returns a ToolResult: raised
exceptions and blown deadlines become error-flagged results so one
failing tool never aborts the surrounding turn.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from typing import Any

from ..errors import ToolNotFoundError, ToolTimeoutError
from ..models import ToolResult
from .base import ToolContext, ToolDefinition, ToolOutput, trim_output

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry of available tools, keyed by name."""

    def __init__(
        self,
        context: ToolContext | None = None,
        default_timeout: float = 60.0,
    ) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self.context = context or ToolContext()
        # Set to 0 (or a negative value) to disable the fallback deadline.
        self.default_timeout = default_timeout
        self._call_seq = 0

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered")
        self._tools[definition.name] = definition
        logger.debug(
            "Registered tool %s (tier=%s category=%s)",
            definition.name, definition.tier.value, definition.category.value,
        )

    def register_all(self, definitions: Iterable[ToolDefinition]) -> None:
        for definition in definitions:
            self.register(definition)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_or_raise(self, name: str) -> ToolDefinition:
        definition = self._tools.get(name)
        if definition is None:
            raise ToolNotFoundError(name)
        return definition

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def _deadline(
        self, definition: ToolDefinition, params: dict[str, Any],
    ) -> float | None:
        if definition.timeout_param:
            requested = params.get(definition.timeout_param)
            if (
                isinstance(requested, (int, float))
                and not isinstance(requested, bool)
                and requested > 0
            ):
                return float(requested)
        if definition.timeout_seconds is not None and definition.timeout_seconds > 0:
            return definition.timeout_seconds
        if self.default_timeout > 0:
            return self.default_timeout
        return None

    async def execute(
        self,
        name: str,
        params: dict[str, Any],
        *,
        invocation_id: str = "",
    ) -> ToolResult:
        """Run tool *name* with *params* under its deadline.

        Raises:
            ToolNotFoundError: if *name* is not registered.
        """
        definition = self.get_or_raise(name)
        deadline = self._deadline(definition, params)
        self._call_seq += 1
        call_seq = self._call_seq
        started = time.monotonic()
        logger.info(
            "Tool start seq=%s tool=%s id=%s timeout_s=%s",
            call_seq, name, invocation_id[:12], deadline,
        )
        try:
            if deadline is None:
                output = await definition.handler(params, self.context)
            else:
                output = await asyncio.wait_for(
                    definition.handler(params, self.context), timeout=deadline,
                )
        except asyncio.TimeoutError:
            logger.error(
                "Tool timeout seq=%s tool=%s id=%s timeout_s=%s",
                call_seq, name, invocation_id[:12], deadline,
            )
            return ToolResult(
                invocation_id=invocation_id,
                output=f"Error: {ToolTimeoutError(name, deadline or 0)}",
                is_error=True,
            )
        except Exception as exc:
            logger.exception(
                "Tool crash seq=%s tool=%s id=%s duration_s=%.2f",
                call_seq, name, invocation_id[:12], time.monotonic() - started,
            )
            return ToolResult(
                invocation_id=invocation_id,
                output=f"Error: {exc}",
                is_error=True,
            )

        if not isinstance(output, ToolOutput):
            output = ToolOutput(str(output))
        logger.info(
            "Tool end seq=%s tool=%s id=%s duration_s=%.2f is_error=%s",
            call_seq, name, invocation_id[:12],
            time.monotonic() - started, output.is_error,
        )
        return ToolResult(
            invocation_id=invocation_id,
            output=trim_output(output.text),
            is_error=output.is_error,
        )


def build_default_registry(
    context: ToolContext | None = None,
    default_timeout: float = 60.0,
) -> ToolRegistry:
    """Registry holding the built-in file, search, shell, git and web tools."""
    from .file_ops import FILE_TOOLS
    from .git import GIT_TOOLS
    from .search import SEARCH_TOOLS
    from .shell import SHELL_TOOLS
    from .web import WEB_TOOLS

    registry = ToolRegistry(context=context, default_timeout=default_timeout)
    for group in (FILE_TOOLS, SEARCH_TOOLS, SHELL_TOOLS, GIT_TOOLS, WEB_TOOLS):
        registry.register_all(group)
    logger.info("Tool registry built with %d tools", len(registry))
    return registry
