"""Pytest configuration and shared fixtures for overseer tests."""

from __future__ import annotations

import re
from typing import Any, AsyncIterator, Callable

import pytest

from overseer.agent import AgentLoop
from overseer.config.models import AgentConfig, PermissionConfig
from overseer.models import (
    Message,
    ProviderOptions,
    ProviderResponse,
    ProviderUsage,
    StreamChunk,
    ToolCall,
    ToolContext,
    ToolResult,
    ValidationResult,
)
from overseer.permissions import (
    DecisionStore,
    PermissionDecision,
    PermissionOrchestrator,
    PolicyMode,
    RiskClass,
    StaticPermissionPrompt,
)
from overseer.telemetry import InMemoryTelemetry
from overseer.tools import ToolRegistry


class ScriptedProvider:
    """Model provider that replays a fixed list of responses.

    Items that are exceptions are raised instead of returned. Every call
    is recorded with a snapshot of the messages it received.
    """

    name = "scripted"

    def __init__(self, responses: list[ProviderResponse | BaseException]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[list[Message], ProviderOptions]] = []

    async def generate(
        self, messages: list[Message], options: ProviderOptions
    ) -> ProviderResponse:
        self.calls.append((list(messages), options))
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class StreamingScriptedProvider(ScriptedProvider):
    """Scripted provider that also streams, one word or space per chunk."""

    async def stream(
        self, messages: list[Message], options: ProviderOptions
    ) -> AsyncIterator[StreamChunk]:
        response = await self.generate(messages, options)
        for token in re.split(r"(\s)", response.content):
            if token:
                yield StreamChunk(content=token)
        yield StreamChunk(is_final=True, response=response)


class RecordingTool:
    """Tool implementation that records executions and returns canned output."""

    def __init__(
        self,
        name: str,
        risk_level: RiskClass = RiskClass.READ_ONLY,
        output: str = "ok",
        error: Exception | None = None,
        invalid: str | None = None,
    ) -> None:
        self.name = name
        self.description = f"Test tool {name}"
        self.parameter_schema: dict[str, Any] = {
            "type": "object",
            "properties": {"path": {"type": "string"}},
        }
        self.risk_level = risk_level
        self.output = output
        self.error = error
        self.invalid = invalid
        self.executions: list[tuple[dict[str, Any], ToolContext]] = []

    async def validate(
        self, arguments: dict[str, Any], context: ToolContext
    ) -> ValidationResult:
        if self.invalid:
            return ValidationResult.failure(self.invalid)
        return ValidationResult.success()

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        self.executions.append((dict(arguments), context))
        if self.error is not None:
            raise self.error
        return ToolResult.ok(context.tool_call_id or "", self.output)


def respond(content: str = "", *calls: ToolCall, tokens: tuple[int, int] = (0, 0)) -> ProviderResponse:
    """Build a provider response."""
    return ProviderResponse(
        content=content,
        model_id="scripted-model",
        usage=ProviderUsage(input_tokens=tokens[0], output_tokens=tokens[1]),
        tool_calls=list(calls),
    )


@pytest.fixture
def telemetry() -> InMemoryTelemetry:
    """Provide an in-memory telemetry backend."""
    return InMemoryTelemetry()


@pytest.fixture
def recording_tool() -> type[RecordingTool]:
    """Provide the RecordingTool class for building test tools."""
    return RecordingTool


@pytest.fixture
def scripted_provider() -> type[ScriptedProvider]:
    """Provide the ScriptedProvider class for building test providers."""
    return ScriptedProvider


@pytest.fixture
def response() -> Callable[..., ProviderResponse]:
    """Provide a helper building ProviderResponse objects."""
    return respond


@pytest.fixture
def registry() -> ToolRegistry:
    """Provide a registry with one tool per risk class.

    Returns:
        Registry holding file-tool (read-only), write-tool (read-write)
        and shell-tool (destructive).
    """
    registry = ToolRegistry()
    registry.register(RecordingTool("file-tool", RiskClass.READ_ONLY, output="File content"))
    registry.register(RecordingTool("write-tool", RiskClass.READ_WRITE, output="written"))
    registry.register(RecordingTool("shell-tool", RiskClass.DESTRUCTIVE, output="done"))
    return registry


@pytest.fixture
def make_loop(
    registry: ToolRegistry, telemetry: InMemoryTelemetry
) -> Callable[..., tuple[AgentLoop, ScriptedProvider]]:
    """Provide a factory building an AgentLoop around a ScriptedProvider.

    The factory accepts the scripted responses plus optional ``mode``,
    ``prompt``, ``store``, ``streaming`` and ``AgentConfig`` keyword
    arguments. With ``streaming`` the provider also implements ``stream``.
    """

    def factory(
        responses: list[ProviderResponse | BaseException],
        *,
        mode: PolicyMode = PolicyMode.SMART_APPROVE,
        prompt: Any = None,
        store: DecisionStore | None = None,
        streaming: bool = False,
        **agent_options: Any,
    ) -> tuple[AgentLoop, ScriptedProvider]:
        provider_class = StreamingScriptedProvider if streaming else ScriptedProvider
        provider = provider_class(responses)
        permissions = PermissionOrchestrator(
            PermissionConfig(mode=mode),
            prompt=prompt or StaticPermissionPrompt(PermissionDecision.DENY),
            store=store,
            telemetry=telemetry,
            tools=registry,
        )
        loop = AgentLoop(
            provider,
            registry,
            permissions,
            config=AgentConfig(**agent_options),
            telemetry=telemetry,
        )
        return loop, provider

    return factory
