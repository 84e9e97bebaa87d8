"""Tests for the agent loop."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from overseer.agent import AgentLoop
from overseer.config.models import OverseerConfig
from overseer.exceptions import AgentInputError, ProviderError
from overseer.models import (
    AgentResponse,
    AgentStatus,
    ConversationContext,
    MessageRole,
    ProviderOptions,
    StreamChunk,
    ToolCall,
    ToolResult,
)
from overseer.permissions import (
    DecisionStore,
    PermissionDecision,
    PolicyMode,
    StaticPermissionPrompt,
)
from overseer.tools import ToolRegistry


class TestScenarios:
    """End-to-end turns with a scripted provider."""

    @pytest.mark.asyncio
    async def test_plain_answer(self, make_loop, response) -> None:
        """A response without tool calls completes the turn immediately."""
        loop, provider = make_loop([response("Test response")])
        context = ConversationContext()

        result = await loop.process("Hello", context)

        assert result.content == "Test response"
        assert result.tool_results == []
        assert result.status == AgentStatus.COMPLETED
        assert result.rounds == 1
        assert [(m.role, m.content) for m in context.messages] == [
            (MessageRole.USER, "Hello"),
            (MessageRole.ASSISTANT, "Test response"),
        ]
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, make_loop, response, registry) -> None:
        """A tool call is executed and its result fed into the next round."""
        call = ToolCall(id="tool-call-1", name="file-tool", arguments={"path": "/test/file.txt"})
        loop, provider = make_loop(
            [
                response("", call),
                response("Here is the file content: File content"),
            ]
        )
        context = ConversationContext()

        result = await loop.process("Read the file", context)

        assert result.content == "Here is the file content: File content"
        assert len(result.tool_results) == 1
        assert result.tool_results[0].tool_call_id == "tool-call-1"
        assert result.tool_results[0].success is True
        assert result.tool_results[0].output == "File content"

        roles = [m.role for m in context.messages]
        assert roles == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]
        tool_message = context.messages[2]
        assert tool_message.tool_call_id == "tool-call-1"
        assert tool_message.content == "File content"

        # The second model call sees the tool result
        second_messages, _ = provider.calls[1]
        assert second_messages[-1].role == MessageRole.TOOL

        executions = registry.get_tool("file-tool").executions
        assert executions[0][0] == {"path": "/test/file.txt"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_loop, response, telemetry) -> None:
        """An unknown tool yields a failed result and the loop carries on."""
        call = ToolCall(id="c1", name="non-existent-tool", arguments={})
        loop, _ = make_loop([response("", call), response("Sorry, no such tool")])

        result = await loop.process("Do it", ConversationContext())

        assert result.content == "Sorry, no such tool"
        assert len(result.tool_results) == 1
        failed = result.tool_results[0]
        assert failed.success is False
        assert "not found" in failed.error
        assert "non-existent-tool" in failed.error
        # No permission check happened
        assert telemetry.events_named("permission.decision") == []


class TestInputValidation:
    """Invalid input fails before the model is called."""

    @pytest.mark.asyncio
    async def test_missing_text(self, make_loop, response) -> None:
        loop, provider = make_loop([response("unused")])
        with pytest.raises(AgentInputError):
            await loop.process(None, ConversationContext())
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_context(self, make_loop, response) -> None:
        loop, provider = make_loop([response("unused")])
        with pytest.raises(AgentInputError):
            await loop.process("Hello", None)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_input_error_is_value_error(self, make_loop, response) -> None:
        """AgentInputError can be caught as a ValueError."""
        loop, _ = make_loop([response("unused")])
        with pytest.raises(ValueError):
            await loop.process(42, ConversationContext())  # type: ignore[arg-type]


class TestToolFailures:
    """Tool-level failures become failed results instead of aborting."""

    @pytest.mark.asyncio
    async def test_permission_denied(self, make_loop, response, registry) -> None:
        """A denied call is never executed."""
        call = ToolCall(id="c1", name="shell-tool", arguments={"command": "ls"})
        loop, _ = make_loop(
            [response("", call), response("Could not run it")],
            prompt=StaticPermissionPrompt(PermissionDecision.DENY),
        )

        result = await loop.process("List files", ConversationContext())

        assert result.content == "Could not run it"
        failed = result.tool_results[0]
        assert failed.success is False
        assert failed.error == "Permission denied to execute tool 'shell-tool'"
        assert failed.metadata["permission_source"] == "prompt"
        assert registry.get_tool("shell-tool").executions == []

    @pytest.mark.asyncio
    async def test_deny_mode_blocks_everything(self, make_loop, response, registry) -> None:
        call = ToolCall(id="c1", name="file-tool", arguments={"path": "a.txt"})
        loop, _ = make_loop([response("", call), response("done")], mode=PolicyMode.DENY)

        result = await loop.process("Read", ConversationContext())

        assert result.tool_results[0].success is False
        assert registry.get_tool("file-tool").executions == []

    @pytest.mark.asyncio
    async def test_execution_error(self, make_loop, response, registry, recording_tool) -> None:
        """An exception raised by a tool becomes a failed result."""
        registry.register(recording_tool("broken-tool", error=RuntimeError("disk on fire")))
        call = ToolCall(id="c1", name="broken-tool", arguments={})
        loop, _ = make_loop([response("", call), response("It failed")])

        result = await loop.process("Go", ConversationContext())

        assert result.content == "It failed"
        failed = result.tool_results[0]
        assert failed.success is False
        assert failed.error == "Tool execution failed: disk on fire"
        assert failed.tool_call_id == "c1"

    @pytest.mark.asyncio
    async def test_invalid_arguments_skip_permission(
        self, make_loop, response, registry, recording_tool, telemetry
    ) -> None:
        """Arguments are validated before the permission check."""
        tool = registry.register(
            recording_tool("picky-tool", invalid="Invalid arguments for tool 'picky-tool'")
        )
        call = ToolCall(id="c1", name="picky-tool", arguments={"bogus": 1})
        loop, _ = make_loop([response("", call), response("ok")])

        result = await loop.process("Go", ConversationContext())

        failed = result.tool_results[0]
        assert failed.success is False
        assert failed.error.startswith("Invalid arguments")
        assert tool.executions == []
        assert telemetry.events_named("permission.decision") == []

    @pytest.mark.asyncio
    async def test_calls_run_in_order(self, make_loop, response) -> None:
        """Multiple tool calls in one response run in declaration order."""
        calls = [
            ToolCall(id="c1", name="file-tool", arguments={"path": "a"}),
            ToolCall(id="c2", name="missing", arguments={}),
            ToolCall(id="c3", name="file-tool", arguments={"path": "b"}),
        ]
        loop, _ = make_loop([response("", *calls), response("done")])
        context = ConversationContext()

        result = await loop.process("Go", context)

        assert [r.tool_call_id for r in result.tool_results] == ["c1", "c2", "c3"]
        assert [r.success for r in result.tool_results] == [True, False, True]
        tool_ids = [m.tool_call_id for m in context.messages if m.role == MessageRole.TOOL]
        assert tool_ids == ["c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_duplicate_call_ids_renamed(self, make_loop, response) -> None:
        """Reused tool call ids get fresh ones so each tool message is unambiguous."""
        calls = [
            ToolCall(id="c1", name="file-tool", arguments={"path": "a"}),
            ToolCall(id="c1", name="file-tool", arguments={"path": "b"}),
        ]
        loop, _ = make_loop(
            [
                response("", *calls),
                response("", ToolCall(id="c1", name="file-tool")),
                response("done"),
            ]
        )
        context = ConversationContext()

        result = await loop.process("Go", context)

        ids = [r.tool_call_id for r in result.tool_results]
        assert ids[0] == "c1"
        assert len(set(ids)) == 3
        requested = [c.id for c in context.tool_call_history()]
        answered = [m.tool_call_id for m in context.messages if m.role == MessageRole.TOOL]
        assert requested == answered == ids


class TestRememberedDecisions:
    """Remembered decisions carry across turns of a session."""

    @pytest.mark.asyncio
    async def test_prompt_only_once(self, make_loop, response) -> None:
        prompt = StaticPermissionPrompt(PermissionDecision.ALLOW, remember=True)
        call_1 = ToolCall(id="c1", name="write-tool", arguments={"path": "a"})
        call_2 = ToolCall(id="c2", name="write-tool", arguments={"path": "b"})
        loop, _ = make_loop(
            [response("", call_1), response("first"), response("", call_2), response("second")],
            prompt=prompt,
        )
        context = ConversationContext(session_id="s1")

        await loop.process("one", context)
        result = await loop.process("two", context)

        assert result.tool_results[0].success is True
        assert len(prompt.requests) == 1

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, make_loop, response) -> None:
        store = DecisionStore()
        prompt = StaticPermissionPrompt(PermissionDecision.ALLOW, remember=True)
        loop, _ = make_loop(
            [
                response("", ToolCall(id="c1", name="write-tool", arguments={})),
                response("first"),
                response("", ToolCall(id="c2", name="write-tool", arguments={})),
                response("second"),
            ],
            prompt=prompt,
            store=store,
        )

        await loop.process("one", ConversationContext(session_id="s1"))
        await loop.process("two", ConversationContext(session_id="s2"))

        assert len(prompt.requests) == 2
        assert store.sessions() == ["s1", "s2"]


class TestLoopLimits:
    """Runaway turns end with LOOP_LIMIT_EXCEEDED."""

    @pytest.mark.asyncio
    async def test_round_limit(self, make_loop, response) -> None:
        responses = [
            response("", ToolCall(id=f"c{i}", name="file-tool", arguments={"path": str(i)}))
            for i in range(5)
        ]
        loop, provider = make_loop(responses, max_rounds=3)

        result = await loop.process("Loop forever", ConversationContext())

        assert result.status == AgentStatus.LOOP_LIMIT_EXCEEDED
        assert result.completed is False
        assert result.rounds == 3
        assert len(provider.calls) == 3
        assert len(result.tool_results) == 3

    @pytest.mark.asyncio
    async def test_tool_call_budget(self, make_loop, response, registry) -> None:
        calls = [
            ToolCall(id=f"c{i}", name="file-tool", arguments={"path": str(i)}) for i in range(3)
        ]
        loop, provider = make_loop([response("", *calls)], max_tool_calls=2)
        context = ConversationContext()

        result = await loop.process("Go", context)

        assert result.status == AgentStatus.LOOP_LIMIT_EXCEEDED
        assert [r.success for r in result.tool_results] == [True, True, False]
        assert "budget exceeded" in result.tool_results[2].error
        assert len(registry.get_tool("file-tool").executions) == 2
        # Every call still has a tool message
        assert sum(1 for m in context.messages if m.role == MessageRole.TOOL) == 3
        assert len(provider.calls) == 1


class TestProviderHandling:
    """Provider interaction and failures."""

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, make_loop) -> None:
        loop, _ = make_loop([ProviderError("rate limited", provider_name="x", status_code=429)])
        with pytest.raises(ProviderError) as exc_info:
            await loop.process("Hello", ConversationContext())
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, make_loop) -> None:
        loop, _ = make_loop([ConnectionError("connection reset")])
        with pytest.raises(ProviderError) as exc_info:
            await loop.process("Hello", ConversationContext())
        assert exc_info.value.provider_name == "scripted"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_tools_offered(self, make_loop, response) -> None:
        loop, provider = make_loop([response("hi")])
        await loop.process("Hello", ConversationContext())

        _, options = provider.calls[0]
        assert {t.name for t in options.tools} == {"file-tool", "write-tool", "shell-tool"}

    @pytest.mark.asyncio
    async def test_explicit_tools_respected(self, make_loop, response) -> None:
        """An explicit empty tool list offers no tools."""
        loop, provider = make_loop([response("hi")])
        await loop.process("Hello", ConversationContext(options=ProviderOptions(tools=[])))

        _, options = provider.calls[0]
        assert options.tools == []

    @pytest.mark.asyncio
    async def test_usage_summed(self, make_loop, response) -> None:
        call = ToolCall(id="c1", name="file-tool", arguments={})
        loop, _ = make_loop([response("", call, tokens=(10, 5)), response("done", tokens=(20, 7))])

        result = await loop.process("Go", ConversationContext())

        assert result.usage.input_tokens == 30
        assert result.usage.output_tokens == 12
        assert result.usage.total_tokens == 42

    @pytest.mark.asyncio
    async def test_system_prompt_added_once(self, make_loop, response) -> None:
        loop, _ = make_loop([response("a"), response("b")], system_prompt="Be brief.")
        context = ConversationContext()

        await loop.process("one", context)
        await loop.process("two", context)

        systems = [m for m in context.messages if m.role == MessageRole.SYSTEM]
        assert len(systems) == 1
        assert context.messages[0].content == "Be brief."


class TestCancellation:
    """Cancelled turns leave no half-written steps."""

    @pytest.mark.asyncio
    async def test_cancel_during_prompt(self, make_loop, response) -> None:
        started = asyncio.Event()

        async def slow_prompt(tool_call, risk, inspection):
            started.set()
            await asyncio.sleep(3600)

        prompt = AsyncMock()
        prompt.prompt.side_effect = slow_prompt
        store = DecisionStore()
        call = ToolCall(id="c1", name="shell-tool", arguments={"command": "ls"})
        loop, _ = make_loop([response("", call)], prompt=prompt, store=store)
        context = ConversationContext(session_id="s1")

        task = asyncio.create_task(loop.process("Go", context))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # The pending call is answered as cancelled; nothing was remembered
        assert [m.role for m in context.messages] == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
        ]
        assert context.messages[-1].tool_call_id == "c1"
        assert "cancelled" in context.messages[-1].content
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_next_turn_after_cancel(self, make_loop, response) -> None:
        """A turn following a cancelled one sends no unanswered tool calls."""
        started = asyncio.Event()

        async def slow_prompt(tool_call, risk, inspection):
            started.set()
            await asyncio.sleep(3600)

        prompt = AsyncMock()
        prompt.prompt.side_effect = slow_prompt
        calls = [
            ToolCall(id="c1", name="shell-tool", arguments={"command": "ls"}),
            ToolCall(id="c2", name="file-tool", arguments={"path": "a"}),
        ]
        loop, provider = make_loop(
            [response("", *calls), response("Starting over")], prompt=prompt
        )
        context = ConversationContext(session_id="s1")

        task = asyncio.create_task(loop.process("Go", context))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        result = await loop.process("Try again", context)

        assert result.content == "Starting over"
        sent, _ = provider.calls[1]
        requested = {c.id for m in sent if m.role == MessageRole.ASSISTANT for c in m.tool_calls}
        answered = {m.tool_call_id for m in sent if m.role == MessageRole.TOOL}
        assert requested == answered == {"c1", "c2"}


class TestTelemetry:
    """Turn telemetry."""

    @pytest.mark.asyncio
    async def test_turn_events(self, make_loop, response, telemetry) -> None:
        call = ToolCall(id="c1", name="file-tool", arguments={})
        loop, _ = make_loop([response("", call), response("done")])

        await loop.process("Go", ConversationContext(session_id="s1"))

        started = telemetry.events_named("agent.turn.started")
        completed = telemetry.events_named("agent.turn.completed")
        executed = telemetry.events_named("agent.tool.executed")
        assert len(started) == len(completed) == len(executed) == 1
        assert completed[0].attributes["status"] == "completed"
        assert completed[0].attributes["rounds"] == 2
        assert executed[0].attributes["tool"] == "file-tool"
        assert telemetry.counters["agent.rounds"] == 2
        assert telemetry.counters["agent.tool_calls"] == 1

    @pytest.mark.asyncio
    async def test_events_share_turn_id(self, make_loop, response, telemetry) -> None:
        call = ToolCall(id="c1", name="file-tool", arguments={})
        loop, _ = make_loop([response("", call), response("done")])

        await loop.process("Go", ConversationContext())

        ids = {event.correlation_id for event in telemetry.events}
        assert len(ids) == 1
        assert next(iter(ids)).startswith("turn-")


class TestFromConfig:
    """Building a loop from configuration."""

    @pytest.mark.asyncio
    async def test_builtin_tools(self, scripted_provider, response, telemetry) -> None:
        config = OverseerConfig()
        provider = scripted_provider([response("hi")])

        loop = AgentLoop.from_config(config, provider, telemetry=telemetry)

        assert isinstance(loop.tools, ToolRegistry)
        assert "run_shell" in loop.tools
        assert loop.permissions.config is config.permissions
        assert loop.config is config.agent

        result = await loop.process("Hello", ConversationContext())
        assert result.content == "hi"

    def test_shared_store(self, scripted_provider) -> None:
        """Loops built with one empty store share it."""
        store = DecisionStore()
        config = OverseerConfig()

        first = AgentLoop.from_config(config, scripted_provider([]), store=store)
        second = AgentLoop.from_config(config, scripted_provider([]), store=store)

        assert first.permissions.store is store
        assert second.permissions.store is store


class TestStreaming:
    """process_stream yields chunks, tool results and the final response."""

    @pytest.mark.asyncio
    async def test_event_order(self, make_loop, response, registry) -> None:
        call = ToolCall(id="c1", name="file-tool", arguments={"path": "a.txt"})
        loop, _ = make_loop(
            [response("Reading it", call), response("Here it is")], streaming=True
        )
        context = ConversationContext()

        events = [event async for event in loop.process_stream("Read a.txt", context)]

        kinds = [type(event) for event in events]
        assert kinds[-1] is AgentResponse
        assert kinds.count(ToolResult) == 1
        tool_index = kinds.index(ToolResult)
        before = "".join(e.content for e in events[:tool_index] if isinstance(e, StreamChunk))
        after = "".join(e.content for e in events[tool_index:] if isinstance(e, StreamChunk))
        assert before == "Reading it"
        assert after == "Here it is"
        assert all(not e.is_final for e in events if isinstance(e, StreamChunk))

        final = events[-1]
        assert final.content == "Here it is"
        assert final.tool_results == [events[tool_index]]
        assert final.rounds == 2
        assert [m.role for m in context.messages] == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]

    @pytest.mark.asyncio
    async def test_provider_without_streaming(self, make_loop, response) -> None:
        """Non-streaming providers deliver each response as one chunk."""
        loop, _ = make_loop([response("Test response")])

        events = [event async for event in loop.process_stream("Hello", ConversationContext())]

        assert events[0] == StreamChunk(content="Test response")
        assert isinstance(events[1], AgentResponse)
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_invalid_input(self, make_loop, response) -> None:
        loop, provider = make_loop([response("unused")], streaming=True)
        with pytest.raises(AgentInputError):
            async for _ in loop.process_stream(None, ConversationContext()):
                pass
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_provider_error(self, make_loop) -> None:
        loop, _ = make_loop([ConnectionError("reset")], streaming=True)
        with pytest.raises(ProviderError):
            async for _ in loop.process_stream("Hello", ConversationContext()):
                pass

    @pytest.mark.asyncio
    async def test_abandoned_stream_answers_pending_calls(self, make_loop, response) -> None:
        """Closing the stream mid-round leaves no unanswered tool call."""
        calls = [
            ToolCall(id="c1", name="file-tool", arguments={"path": "a"}),
            ToolCall(id="c2", name="file-tool", arguments={"path": "b"}),
        ]
        loop, _ = make_loop([response("", *calls), response("done")], streaming=True)
        context = ConversationContext()

        stream = loop.process_stream("Go", context)
        async for event in stream:
            if isinstance(event, ToolResult):
                break
        await stream.aclose()

        tool_messages = [m for m in context.messages if m.role == MessageRole.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["c1", "c2"]
        assert "cancelled" in tool_messages[1].content
