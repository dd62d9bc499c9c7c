"""Agent loop: alternates model turns and tool-execution turns.

One ``advance(user_text)`` call runs until the model answers without
requesting tools (TURN_COMPLETE) or a provider error ends the turn
(ERROR). See lifecycle.py for the state diagram.

Tool calls proposed in one response are dispatched sequentially in
stream order, and all of their results are appended as a single tool
message before the next model request, so the conversation keeps the
strict request/response alternation vendor APIs require.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from .config import EventCallback, fire_event
from .conversation import Conversation
from .errors import ToolNotFoundError
from .events import Done, StreamError, TextFragment, ToolCallComplete, Usage
from .lifecycle import is_terminal, validate_transition
from .models import Message, TokenUsage, ToolInvocation, ToolResult, TurnState
from .permissions import SKIPPED_BY_USER, PermissionEngine
from .providers.base import ChatOptions, Provider
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

INTERRUPTED_BY_USER = "Tool execution interrupted by user"


@dataclass
class TurnOutcome:
    """How one ``advance`` call ended."""
    state: TurnState
    iterations: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state == TurnState.TURN_COMPLETE


@dataclass
class _ModelResponse:
    text: str = ""
    calls: list[ToolInvocation] = field(default_factory=list)
    usage: TokenUsage | None = None
    error: str | None = None


class AgentLoop:
    """Owns conversation state and drives provider, permissions and tools.

    Thread-safe for single-event-loop usage. ``advance`` must not be
    called again while a previous call is still running.
    """

    def __init__(
        self,
        provider: Provider,
        tools: ToolRegistry,
        permissions: PermissionEngine,
        options: ChatOptions,
        *,
        history: Iterable[Message] | None = None,
        event_callback: EventCallback | None = None,
        max_iterations: int = 0,
    ) -> None:
        self.provider = provider
        self.tools = tools
        self.permissions = permissions
        self.options = options
        self.conversation = Conversation(history)
        self.event_callback = event_callback
        self.max_iterations = max_iterations
        self.state = TurnState.TURN_COMPLETE
        self.total_usage = TokenUsage()
        # Calls of the last assistant message still owed a result
        self._pending_calls: list[ToolInvocation] = []
        self._pending_results: list[ToolResult] = []
        self._task: asyncio.Task | None = None

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.conversation.messages

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _transition(self, target: TurnState) -> None:
        validate_transition(self.state, target)
        logger.debug("Turn state %s -> %s", self.state.value, target.value)
        self.state = target

    async def _emit(self, event: dict) -> None:
        await fire_event(self.event_callback, event)

    def cancel(self) -> bool:
        """Cancel the running ``advance`` call. Returns False when idle."""
        if not self.running:
            return False
        logger.info("Cancelling running turn")
        self._task.cancel()
        return True

    def reset(self) -> None:
        """Clear the conversation (system messages survive)."""
        self.conversation.clear(keep_system=True)
        self._pending_calls = []
        self._pending_results = []
        self.state = TurnState.TURN_COMPLETE

    async def advance(self, user_text: str) -> TurnOutcome:
        """Advance the conversation with a new user message.

        Runs until TURN_COMPLETE or ERROR. Cancellation propagates to
        the caller after the state is marked CANCELLED.
        """
        if self.running:
            raise RuntimeError("A turn is already running")
        self._task = asyncio.current_task()
        try:
            return await self._run_turn(user_text)
        except asyncio.CancelledError:
            if not is_terminal(self.state):
                self._transition(TurnState.CANCELLED)
            logger.info(
                "Turn cancelled (%d results kept, %d calls unanswered)",
                len(self._pending_results),
                len(self._pending_calls) - len(self._pending_results),
            )
            raise
        finally:
            self._task = None

    def _flush_interrupted(self) -> None:
        """Answer calls left unanswered by a cancelled dispatch."""
        if not self._pending_calls:
            return
        answered = {r.invocation_id for r in self._pending_results}
        results = list(self._pending_results)
        for call in self._pending_calls:
            if call.id not in answered:
                results.append(ToolResult(call.id, INTERRUPTED_BY_USER, is_error=True))
        self.conversation.add_tool_results(results)
        self._pending_calls = []
        self._pending_results = []

    async def _run_turn(self, user_text: str) -> TurnOutcome:
        self._transition(TurnState.AWAITING_MODEL)
        self._flush_interrupted()
        self.conversation.add_user(user_text)

        iterations = 0
        turn_usage = TokenUsage()
        while True:
            if self.max_iterations > 0 and iterations >= self.max_iterations:
                return await self._fail(
                    f"Stopped after {iterations} model requests "
                    f"(max_iterations={self.max_iterations})",
                    iterations, turn_usage,
                )
            iterations += 1
            response = await self._stream_response()

            if response.usage is not None:
                turn_usage = turn_usage + response.usage
                self.total_usage = self.total_usage + response.usage
                await self._emit({
                    "event": "usage",
                    "input_tokens": response.usage.input_tokens,
                    "output_tokens": response.usage.output_tokens,
                    "total_input_tokens": self.total_usage.input_tokens,
                    "total_output_tokens": self.total_usage.output_tokens,
                })

            if response.error is not None:
                # Nothing from the truncated response is kept or dispatched
                return await self._fail(response.error, iterations, turn_usage)

            self.conversation.add_assistant(response.text, response.calls)
            if not response.calls:
                self._transition(TurnState.TURN_COMPLETE)
                await self._emit({
                    "event": "turn_complete",
                    "iterations": iterations,
                    "input_tokens": turn_usage.input_tokens,
                    "output_tokens": turn_usage.output_tokens,
                })
                return TurnOutcome(TurnState.TURN_COMPLETE, iterations, turn_usage)

            self._pending_calls = list(response.calls)
            self._pending_results = []
            self._transition(TurnState.HAS_PENDING_CALLS)
            self._transition(TurnState.DISPATCHING_CALLS)
            try:
                for call in response.calls:
                    self._pending_results.append(await self._dispatch(call))
            except Exception as exc:
                logger.exception("Tool dispatch aborted")
                self._fill_unanswered(f"Tool dispatch aborted: {exc}")
                self.conversation.add_tool_results(self._pending_results)
                self._pending_calls = []
                self._pending_results = []
                return await self._fail(
                    f"Tool dispatch failed: {exc}", iterations, turn_usage,
                )

            self.conversation.add_tool_results(self._pending_results)
            self._pending_calls = []
            self._pending_results = []
            self._transition(TurnState.AWAITING_MODEL)

    def _fill_unanswered(self, message: str) -> None:
        answered = {r.invocation_id for r in self._pending_results}
        for call in self._pending_calls:
            if call.id not in answered:
                self._pending_results.append(ToolResult(call.id, message, is_error=True))

    async def _fail(
        self, message: str, iterations: int, usage: TokenUsage,
    ) -> TurnOutcome:
        logger.warning("Turn ended in error: %s", message)
        self._transition(TurnState.ERROR)
        await self._emit({"event": "turn_error", "error": message})
        return TurnOutcome(TurnState.ERROR, iterations, usage, error=message)

    async def _stream_response(self) -> _ModelResponse:
        response = _ModelResponse()
        text_parts: list[str] = []
        terminated = False
        stream = self.provider.stream_chat(list(self.conversation.messages), self.options)
        try:
            async for event in stream:
                if isinstance(event, TextFragment):
                    text_parts.append(event.text)
                    await self._emit({"event": "text", "text": event.text})
                elif isinstance(event, ToolCallComplete):
                    response.calls.append(event.invocation)
                elif isinstance(event, Usage):
                    response.usage = event.to_token_usage()
                elif isinstance(event, Done):
                    if response.usage is None:
                        response.usage = event.usage
                    terminated = True
                    break
                elif isinstance(event, StreamError):
                    response.error = event.message or "provider error"
                    terminated = True
                    break
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        response.text = "".join(text_parts)
        if not terminated:
            response.error = f"{self.provider.name}: stream ended without completing"
        if response.error is not None:
            response.calls = []
        return response

    async def _dispatch(self, call: ToolInvocation) -> ToolResult:
        await self._emit({
            "event": "tool_call_started",
            "tool_id": call.id,
            "tool_name": call.name,
            "arguments": dict(call.input),
        })
        started = time.monotonic()
        status = "ok"
        reason = None

        if call.name not in self.tools:
            result = ToolResult(call.id, f"Unknown tool: {call.name}", is_error=True)
            status = "error"
        else:
            decision = await self.permissions.decide(call)
            reason = decision.reason.value
            if not decision.approved:
                result = ToolResult(
                    call.id, decision.message or SKIPPED_BY_USER, is_error=True,
                )
                status = "blocked" if decision.blocked else "skipped"
                logger.info(
                    "Tool %s %s id=%s reason=%s",
                    call.name, status, call.id, decision.reason.value,
                )
            else:
                try:
                    result = await self.tools.execute(
                        call.name, dict(call.input), invocation_id=call.id,
                    )
                except ToolNotFoundError:
                    result = ToolResult(call.id, f"Unknown tool: {call.name}", is_error=True)
                status = "error" if result.is_error else "ok"

        await self._emit({
            "event": "tool_call_completed",
            "tool_id": call.id,
            "tool_name": call.name,
            "status": status,
            "reason": reason,
            "output": result.output,
            "is_error": result.is_error,
            "duration_seconds": time.monotonic() - started,
        })
        return result
