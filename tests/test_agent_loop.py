"""End-to-end tests for the AgentLoop state machine with a scripted provider."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from manu.engine.agent_loop import INTERRUPTED_BY_USER, AgentLoop
from manu.engine.events import (
    Done,
    StreamError,
    TextFragment,
    ToolCallComplete,
    ToolCallStart,
    Usage,
)
from manu.engine.models import (
    Message,
    PermissionTier,
    Role,
    TokenUsage,
    ToolCategory,
    ToolInvocation,
    TurnState,
)
from manu.engine.permissions import (
    SKIPPED_BY_USER,
    PermissionEngine,
    PermissionPolicy,
    PromptChoice,
)
from manu.engine.providers.base import ChatOptions
from manu.engine.tools.base import ToolDefinition, object_schema, ok
from manu.engine.tools.registry import ToolRegistry


class ScriptedProvider:
    """Replays one scripted event list per model request."""

    name = "scripted"

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests: list[list[Message]] = []

    def stream_chat(self, messages, options):
        self.requests.append(list(messages))
        return self._replay(self.responses.pop(0))

    async def _replay(self, events):
        for event in events:
            if callable(event):
                await event()
            else:
                yield event


def _text(text, input_tokens=10, output_tokens=5):
    usage = TokenUsage(input_tokens, output_tokens)
    return [
        TextFragment(text=text),
        Usage(input_tokens=input_tokens, output_tokens=output_tokens),
        Done(usage=usage, stop_reason="end_turn"),
    ]


def _calls(*invocations, text=""):
    events = [TextFragment(text=text)] if text else []
    for invocation in invocations:
        events.append(ToolCallStart(id=invocation.id, name=invocation.name))
        events.append(ToolCallComplete(invocation=invocation))
    events.append(Usage(input_tokens=1, output_tokens=1))
    events.append(Done(usage=TokenUsage(1, 1), stop_reason="tool_use"))
    return events


class Recorder:
    def __init__(self):
        self.events = []
        self.executed = []

    async def __call__(self, event):
        self.events.append(event)

    def of(self, kind):
        return [e for e in self.events if e["event"] == kind]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def registry(recorder):
    async def echo(params, ctx):
        recorder.executed.append(("echo", params))
        return ok(f"echo: {params.get('text', '')}")

    async def write(params, ctx):
        recorder.executed.append(("write_file", params))
        return ok("written")

    async def shell(params, ctx):
        recorder.executed.append(("run_command", params))
        return ok("ran")

    reg = ToolRegistry()
    reg.register_all([
        ToolDefinition("echo", "Echo", object_schema({}), PermissionTier.AUTO, echo),
        ToolDefinition(
            "write_file", "Write", object_schema({}), PermissionTier.ASK, write,
            category=ToolCategory.FILE,
        ),
        ToolDefinition(
            "run_command", "Shell", object_schema({}), PermissionTier.ASK, shell,
            category=ToolCategory.SHELL,
        ),
    ])
    return reg


def _loop(provider, registry, recorder, prompter=None, **kwargs):
    permissions = PermissionEngine(registry, PermissionPolicy(), prompter=prompter)
    return AgentLoop(
        provider,
        registry,
        permissions,
        ChatOptions(tools=registry.definitions()),
        event_callback=recorder,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_text_only_turn_completes(registry, recorder):
    provider = ScriptedProvider([_text("Hello there")])
    loop = _loop(provider, registry, recorder)

    outcome = await loop.advance("hi")

    assert outcome.ok
    assert outcome.state == TurnState.TURN_COMPLETE
    assert outcome.iterations == 1
    assert outcome.usage == TokenUsage(10, 5)
    assert [m.role for m in loop.messages] == [Role.USER, Role.ASSISTANT]
    assert loop.messages[1].text == "Hello there"
    assert "".join(e["text"] for e in recorder.of("text")) == "Hello there"
    assert len(recorder.of("turn_complete")) == 1


@pytest.mark.asyncio
async def test_tool_round_trip(registry, recorder):
    call = ToolInvocation("c1", "echo", {"text": "ping"})
    provider = ScriptedProvider([_calls(call, text="Let me check."), _text("Done.")])
    loop = _loop(provider, registry, recorder)

    outcome = await loop.advance("go")

    assert outcome.ok
    assert outcome.iterations == 2
    assert recorder.executed == [("echo", {"text": "ping"})]
    roles = [m.role for m in loop.messages]
    assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert loop.messages[1].tool_calls == (call,)
    result = loop.messages[2].tool_results[0]
    assert (result.invocation_id, result.output, result.is_error) == ("c1", "echo: ping", False)
    # The second request carries the tool result
    assert provider.requests[1][-1].role == Role.TOOL
    completed = recorder.of("tool_call_completed")
    assert [e["status"] for e in completed] == ["ok"]


@pytest.mark.asyncio
async def test_handler_mutating_params_leaves_history_intact(recorder):
    async def normalize(params, ctx):
        params["text"] = params["text"].upper()
        params["extra"] = True
        return ok(params["text"])

    registry = ToolRegistry()
    registry.register(
        ToolDefinition("normalize", "Normalize", object_schema({}), PermissionTier.AUTO, normalize),
    )
    call = ToolInvocation("c1", "normalize", {"text": "ping"})
    provider = ScriptedProvider([_calls(call), _text("Done.")])
    loop = _loop(provider, registry, recorder)

    outcome = await loop.advance("go")

    assert outcome.ok
    assert loop.messages[1].tool_calls[0].input == {"text": "ping"}
    assert provider.requests[1][1].tool_calls[0].input == {"text": "ping"}
    assert loop.messages[2].tool_results[0].output == "PING"


@pytest.mark.asyncio
async def test_multiple_calls_single_tool_message_in_order(registry, recorder):
    calls = [
        ToolInvocation("c1", "echo", {"text": "a"}),
        ToolInvocation("c2", "echo", {"text": "b"}),
        ToolInvocation("c3", "echo", {"text": "c"}),
    ]
    provider = ScriptedProvider([_calls(*calls), _text("ok")])
    loop = _loop(provider, registry, recorder)

    await loop.advance("go")

    tool_messages = [m for m in loop.messages if m.role == Role.TOOL]
    assert len(tool_messages) == 1
    assert [r.invocation_id for r in tool_messages[0].tool_results] == ["c1", "c2", "c3"]
    assert [p["text"] for _, p in recorder.executed] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_user_denial_reported_to_model(registry, recorder):
    call = ToolInvocation("c1", "write_file", {"path": "a.txt", "content": "x"})
    provider = ScriptedProvider([_calls(call), _text("Understood.")])
    prompter = AsyncMock(return_value=PromptChoice.DENY)
    loop = _loop(provider, registry, recorder, prompter=prompter)

    outcome = await loop.advance("write it")

    assert outcome.ok
    assert recorder.executed == []
    result = loop.messages[2].tool_results[0]
    assert result.is_error
    assert result.output == SKIPPED_BY_USER
    assert recorder.of("tool_call_completed")[0]["status"] == "skipped"


@pytest.mark.asyncio
async def test_dangerous_command_blocked_without_prompt(registry, recorder):
    call = ToolInvocation("c1", "run_command", {"command": "rm -rf /"})
    provider = ScriptedProvider([_calls(call), _text("Sorry.")])
    prompter = AsyncMock(return_value=PromptChoice.APPROVE_ONCE)
    loop = _loop(provider, registry, recorder, prompter=prompter)

    await loop.advance("clean up")

    prompter.assert_not_awaited()
    assert recorder.executed == []
    result = loop.messages[2].tool_results[0]
    assert result.is_error
    assert result.output.startswith("Blocked:")
    assert recorder.of("tool_call_completed")[0]["status"] == "blocked"


@pytest.mark.asyncio
async def test_unknown_tool_gets_error_result(registry, recorder):
    call = ToolInvocation("c1", "teleport", {})
    provider = ScriptedProvider([_calls(call), _text("ok")])
    prompter = AsyncMock(return_value=PromptChoice.APPROVE_ONCE)
    loop = _loop(provider, registry, recorder, prompter=prompter)

    outcome = await loop.advance("go")

    assert outcome.ok
    prompter.assert_not_awaited()
    result = loop.messages[2].tool_results[0]
    assert result.output == "Unknown tool: teleport"
    assert result.is_error


@pytest.mark.asyncio
async def test_stream_error_ends_turn_without_partial_message(registry, recorder):
    provider = ScriptedProvider([
        [TextFragment(text="I will"), StreamError(message="scripted: overloaded")],
        _text("recovered"),
    ])
    loop = _loop(provider, registry, recorder)

    outcome = await loop.advance("hi")

    assert outcome.state == TurnState.ERROR
    assert outcome.error == "scripted: overloaded"
    assert [m.role for m in loop.messages] == [Role.USER]
    assert recorder.of("turn_error")[0]["error"] == "scripted: overloaded"

    # The loop is usable again after an error
    outcome = await loop.advance("again")
    assert outcome.ok


@pytest.mark.asyncio
async def test_calls_before_stream_error_are_not_dispatched(registry, recorder):
    call = ToolInvocation("c1", "echo", {"text": "x"})
    provider = ScriptedProvider([
        [ToolCallStart(id="c1", name="echo"), ToolCallComplete(invocation=call),
         StreamError(message="scripted: dropped")],
    ])
    loop = _loop(provider, registry, recorder)

    outcome = await loop.advance("go")

    assert outcome.state == TurnState.ERROR
    assert recorder.executed == []
    assert not any(m.role == Role.ASSISTANT for m in loop.messages)


@pytest.mark.asyncio
async def test_stream_without_terminal_event_is_error(registry, recorder):
    provider = ScriptedProvider([[TextFragment(text="cut off")]])
    loop = _loop(provider, registry, recorder)

    outcome = await loop.advance("go")

    assert outcome.state == TurnState.ERROR
    assert "without completing" in outcome.error


@pytest.mark.asyncio
async def test_max_iterations_bounds_model_requests(registry, recorder):
    call = ToolInvocation("c1", "echo", {})
    provider = ScriptedProvider([_calls(call), _calls(ToolInvocation("c2", "echo", {}))])
    loop = _loop(provider, registry, recorder, max_iterations=2)

    outcome = await loop.advance("loop forever")

    assert outcome.state == TurnState.ERROR
    assert outcome.iterations == 2
    assert "max_iterations=2" in outcome.error
    assert len(provider.requests) == 2
    # Alternation still holds: the last message answers the last calls
    assert loop.messages[-1].role == Role.TOOL


@pytest.mark.asyncio
async def test_usage_accumulates_across_turns(registry, recorder):
    provider = ScriptedProvider([_text("a", 10, 2), _text("b", 20, 3)])
    loop = _loop(provider, registry, recorder)

    await loop.advance("one")
    await loop.advance("two")

    assert loop.total_usage == TokenUsage(30, 5)
    assert recorder.of("usage")[-1]["total_input_tokens"] == 30


@pytest.mark.asyncio
async def test_callback_failure_does_not_break_turn(registry):
    async def broken(event):
        raise RuntimeError("display crashed")

    provider = ScriptedProvider([_text("fine")])
    loop = AgentLoop(
        provider, registry, PermissionEngine(registry), ChatOptions(),
        event_callback=broken,
    )
    outcome = await loop.advance("hi")
    assert outcome.ok


@pytest.mark.asyncio
async def test_cancel_during_streaming_appends_nothing(registry, recorder):
    streaming = asyncio.Event()

    async def hang():
        streaming.set()
        await asyncio.sleep(10)

    provider = ScriptedProvider([[TextFragment(text="part"), hang], _text("after")])
    loop = _loop(provider, registry, recorder)

    task = asyncio.create_task(loop.advance("go"))
    await streaming.wait()
    assert loop.cancel() is True
    with pytest.raises(asyncio.CancelledError):
        await task

    assert loop.state == TurnState.CANCELLED
    assert [m.role for m in loop.messages] == [Role.USER]
    assert loop.cancel() is False

    outcome = await loop.advance("try again")
    assert outcome.ok


@pytest.mark.asyncio
async def test_cancel_during_dispatch_keeps_alternation(recorder):
    blocked = asyncio.Event()

    async def quick(params, ctx):
        return ok("quick done")

    async def slow(params, ctx):
        blocked.set()
        await asyncio.sleep(10)
        return ok("never")

    registry = ToolRegistry()
    registry.register_all([
        ToolDefinition("quick", "q", object_schema({}), PermissionTier.AUTO, quick),
        ToolDefinition("slow", "s", object_schema({}), PermissionTier.AUTO, slow),
    ])
    calls = [ToolInvocation("c1", "quick", {}), ToolInvocation("c2", "slow", {})]
    provider = ScriptedProvider([_calls(*calls), _text("resumed")])
    loop = _loop(provider, registry, recorder)

    task = asyncio.create_task(loop.advance("go"))
    await blocked.wait()
    loop.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert loop.state == TurnState.CANCELLED
    assert loop.messages[-1].role == Role.ASSISTANT

    outcome = await loop.advance("continue")

    assert outcome.ok
    roles = [m.role for m in loop.messages]
    assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.USER, Role.ASSISTANT]
    results = loop.messages[2].tool_results
    assert [(r.invocation_id, r.output, r.is_error) for r in results] == [
        ("c1", "quick done", False),
        ("c2", INTERRUPTED_BY_USER, True),
    ]


@pytest.mark.asyncio
async def test_history_resumption_and_reset(registry, recorder):
    history = [
        Message(Role.SYSTEM, "be terse"),
        Message(Role.USER, "earlier"),
        Message(Role.ASSISTANT, "reply"),
    ]
    provider = ScriptedProvider([_text("continued")])
    loop = _loop(provider, registry, recorder, history=history)

    await loop.advance("next")

    assert provider.requests[0][:3] == history
    assert len(loop.messages) == 5

    loop.reset()
    assert [m.role for m in loop.messages] == [Role.SYSTEM]


@pytest.mark.asyncio
async def test_concurrent_advance_rejected(registry, recorder):
    started = asyncio.Event()

    async def hang():
        started.set()
        await asyncio.sleep(10)

    provider = ScriptedProvider([[hang]])
    loop = _loop(provider, registry, recorder)
    task = asyncio.create_task(loop.advance("one"))
    await started.wait()

    with pytest.raises(RuntimeError):
        await loop.advance("two")

    loop.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
