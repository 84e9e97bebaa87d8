"""The agent loop: model call, permission gate, tool execution, repeat.

One call to :meth:`AgentLoop.process` handles one user message. The loop
asks the model for a response, runs every tool call it requests (in the
order requested, one at a time, each through the permission gate), feeds
the results back and asks again, until the model answers without tool
calls or a loop limit is hit. :meth:`AgentLoop.process_stream` runs the
same turn and yields content chunks and tool results as they happen.

A failing tool call never aborts the turn: unknown tools, invalid
arguments, denied permissions and tool exceptions all become failed tool
results that the model gets to see. Only invalid input and provider
failures are fatal.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import time
import uuid
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, AsyncIterator, Union

from overseer.correlation import correlation_scope
from overseer.exceptions import AgentInputError, ProviderError
from overseer.models import (
    AgentResponse,
    AgentStatus,
    ConversationContext,
    Message,
    MessageRole,
    ProviderOptions,
    ProviderResponse,
    ProviderUsage,
    StreamChunk,
    ToolCall,
    ToolContext,
    ToolDefinition,
    ToolResult,
)
from overseer.providers.base import StreamingModelProvider
from overseer.telemetry import (
    NullTelemetry,
    Telemetry,
    create_telemetry,
    safe_increment,
    safe_metric,
    safe_track,
)

if TYPE_CHECKING:
    from overseer.config.models import AgentConfig, OverseerConfig
    from overseer.permissions.orchestrator import PermissionOrchestrator
    from overseer.permissions.prompts import PermissionPrompt
    from overseer.permissions.store import DecisionStore
    from overseer.providers.base import ModelProvider
    from overseer.tools.base import Tool, ToolLookup

__all__ = ["AgentLoop", "TurnEvent"]

logger = logging.getLogger(__name__)

TurnEvent = Union[StreamChunk, ToolResult, AgentResponse]

CANCELLED_TOOL_MESSAGE = "Tool call was cancelled before it completed"


class AgentLoop:
    """Drives a full agent turn against a model provider and a set of tools.

    The loop itself is stateless between turns; all conversation state
    lives in the :class:`ConversationContext` passed to :meth:`process`
    and all remembered permissions live in the orchestrator's store. One
    instance can therefore serve many sessions concurrently, as long as
    each context is used by one turn at a time.

    Attributes:
        provider: Model provider
        tools: Tool lookup
        permissions: Permission orchestrator gating every tool call
        config: Loop limits and system prompt
        telemetry: Telemetry backend

    Example:
        >>> loop = AgentLoop.from_config(
        ...     load_config(),
        ...     LangChainProvider(ChatAnthropic(model="claude-3-5-sonnet-latest")),
        ...     prompt=CliPermissionPrompt(),
        ... )
        >>> context = ConversationContext(working_directory="/path/to/project")
        >>> response = await loop.process("List the files here", context)
        >>> print(response.content)
    """

    def __init__(
        self,
        provider: ModelProvider,
        tools: ToolLookup,
        permissions: PermissionOrchestrator,
        config: AgentConfig | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        if config is None:
            from overseer.config.models import AgentConfig

            config = AgentConfig()

        self.provider = provider
        self.tools = tools
        self.permissions = permissions
        self.config = config
        self.telemetry = telemetry or NullTelemetry()

    @classmethod
    def from_config(
        cls,
        config: OverseerConfig,
        provider: ModelProvider,
        *,
        prompt: PermissionPrompt | None = None,
        tools: ToolLookup | None = None,
        store: DecisionStore | None = None,
        telemetry: Telemetry | None = None,
    ) -> AgentLoop:
        """Build a loop and its permission subsystem from configuration.

        Args:
            config: Root configuration
            provider: Model provider
            prompt: Human prompt for ASK decisions (defaults to denying)
            tools: Tool lookup (defaults to the built-in tools)
            store: Decision store shared with other loops, if any
            telemetry: Telemetry backend (defaults to the configured one)

        Returns:
            A ready-to-use AgentLoop
        """
        from overseer.permissions.orchestrator import PermissionOrchestrator
        from overseer.tools.implementations import create_default_registry

        tools = tools if tools is not None else create_default_registry(config.tools)
        telemetry = telemetry or create_telemetry(config.telemetry)
        permissions = PermissionOrchestrator(
            config.permissions,
            prompt=prompt,
            store=store,
            telemetry=telemetry,
            tools=tools,
        )
        return cls(provider, tools, permissions, config=config.agent, telemetry=telemetry)

    @staticmethod
    def _check_input(user_text: Any, context: Any) -> None:
        if user_text is None:
            raise AgentInputError("user_text is required")
        if context is None:
            raise AgentInputError("context is required")
        if not isinstance(user_text, str):
            raise AgentInputError(
                f"user_text must be a string, got {type(user_text).__name__}"
            )
        if not isinstance(context, ConversationContext):
            raise AgentInputError(
                f"context must be a ConversationContext, got {type(context).__name__}"
            )

    async def process(
        self, user_text: str | None, context: ConversationContext | None
    ) -> AgentResponse:
        """Process one user message.

        Args:
            user_text: The user's message
            context: Conversation to extend; mutated in place

        Returns:
            AgentResponse with the final assistant content and every tool
            result produced during the turn

        Raises:
            AgentInputError: If user_text or context is missing or malformed.
                Raised before any model call.
            ProviderError: If the model provider fails
            asyncio.CancelledError: If the turn is cancelled. Tool calls
                left unanswered get a "cancelled" tool message, so the
                context stays valid for the next turn.
        """
        self._check_input(user_text, context)

        with correlation_scope() as turn_id:
            final: AgentResponse | None = None
            events = self._turn(user_text, context, turn_id, stream=False)  # type: ignore[arg-type]
            async for event in events:
                if isinstance(event, AgentResponse):
                    final = event
            return final  # type: ignore[return-value]

    async def process_stream(
        self, user_text: str | None, context: ConversationContext | None
    ) -> AsyncIterator[TurnEvent]:
        """Process one user message, yielding progress as it happens.

        Yields, in order: :class:`StreamChunk` content deltas of each model
        response, the :class:`ToolResult` of every tool call as soon as it
        finishes, and finally the :class:`AgentResponse` of the turn.
        Providers without streaming support yield each response as one
        chunk.

        Raises:
            AgentInputError: If user_text or context is missing or malformed
            ProviderError: If the model provider fails

        Example:
            >>> async for event in loop.process_stream("Summarize README.md", context):
            ...     if isinstance(event, StreamChunk):
            ...         print(event.content, end="", flush=True)
        """
        self._check_input(user_text, context)

        with correlation_scope() as turn_id:
            turn = self._turn(user_text, context, turn_id, stream=True)  # type: ignore[arg-type]
            async with aclosing(turn) as events:
                async for event in events:
                    yield event

    async def _turn(
        self,
        user_text: str,
        context: ConversationContext,
        turn_id: str,
        *,
        stream: bool,
    ) -> AsyncIterator[TurnEvent]:
        if self.config.system_prompt and not context.messages:
            context.add_message(
                Message(role=MessageRole.SYSTEM, content=self.config.system_prompt)
            )
        context.add_message(Message(role=MessageRole.USER, content=user_text))

        safe_track(
            self.telemetry,
            "agent.turn.started",
            {"session_id": context.session_id, "turn_id": turn_id, "stream": stream},
        )
        logger.debug(f"Turn {turn_id} started for session {context.session_id}")

        results: list[ToolResult] = []
        usage = ProviderUsage()
        rounds = 0
        tool_calls_used = 0
        content = ""
        status = AgentStatus.COMPLETED

        while True:
            if rounds >= self.config.max_rounds:
                logger.warning(
                    f"Turn {turn_id} hit the round limit ({self.config.max_rounds})"
                )
                status = AgentStatus.LOOP_LIMIT_EXCEEDED
                break

            if stream:
                response: ProviderResponse | None = None
                async with aclosing(self._stream(context)) as items:
                    async for item in items:
                        if isinstance(item, ProviderResponse):
                            response = item
                        else:
                            yield item
            else:
                response = await self._generate(context)
            assert response is not None
            rounds += 1
            usage = usage + response.usage

            prior_calls = context.tool_call_history()
            calls = self._unique_calls(response.tool_calls, prior_calls)
            context.add_message(
                Message(
                    role=MessageRole.ASSISTANT,
                    content=response.content,
                    tool_calls=calls,
                )
            )
            content = response.content

            if not calls:
                break

            budget_exhausted = False
            answered: set[str] = set()
            try:
                for index, call in enumerate(calls):
                    if tool_calls_used >= self.config.max_tool_calls:
                        budget_exhausted = True
                        result = ToolResult.failure(
                            call.id,
                            f"Tool call budget exceeded ({self.config.max_tool_calls} "
                            "calls per message); tool was not executed",
                        )
                    else:
                        tool_calls_used += 1
                        history = prior_calls + calls[:index]
                        result = await self._run_tool_call(call, context, history)

                    context.add_message(
                        Message(
                            role=MessageRole.TOOL,
                            content=result.content,
                            tool_call_id=call.id,
                        )
                    )
                    answered.add(call.id)
                    results.append(result)
                    yield result
            except (asyncio.CancelledError, GeneratorExit):
                self._close_unanswered(context, calls, answered)
                raise

            if budget_exhausted:
                logger.warning(
                    f"Turn {turn_id} hit the tool call limit ({self.config.max_tool_calls})"
                )
                status = AgentStatus.LOOP_LIMIT_EXCEEDED
                break

        safe_track(
            self.telemetry,
            "agent.turn.completed",
            {
                "session_id": context.session_id,
                "turn_id": turn_id,
                "status": status.value,
                "rounds": rounds,
                "tool_calls": len(results),
                "failed_tool_calls": sum(1 for r in results if not r.success),
                "total_tokens": usage.total_tokens,
            },
        )
        safe_increment(self.telemetry, "agent.rounds", rounds)
        safe_increment(self.telemetry, "agent.tool_calls", len(results))

        yield AgentResponse(
            content=content,
            tool_results=results,
            status=status,
            rounds=rounds,
            usage=usage,
        )

    @staticmethod
    def _unique_calls(calls: list[ToolCall], prior_calls: list[ToolCall]) -> list[ToolCall]:
        """Give every call an id not used earlier in the conversation.

        Tool messages are matched to calls by id, so a reused or empty id
        would make the transcript ambiguous.
        """
        seen = {call.id for call in prior_calls}
        unique = []
        for call in calls:
            if not call.id or call.id in seen:
                new_id = f"call_{uuid.uuid4().hex[:12]}"
                logger.warning(
                    f"Model reused tool call id '{call.id}' for '{call.name}'; "
                    f"using '{new_id}'"
                )
                call = dataclasses.replace(call, id=new_id)
            seen.add(call.id)
            unique.append(call)
        return unique

    @staticmethod
    def _close_unanswered(
        context: ConversationContext, calls: list[ToolCall], answered: set[str]
    ) -> None:
        for call in calls:
            if call.id not in answered:
                context.add_message(
                    Message(
                        role=MessageRole.TOOL,
                        content=CANCELLED_TOOL_MESSAGE,
                        tool_call_id=call.id,
                    )
                )
        logger.info(f"Turn cancelled with {len(calls) - len(answered)} tool call(s) pending")

    def _options_for(self, context: ConversationContext) -> ProviderOptions:
        if context.options.tools is not None:
            return context.options
        definitions = [
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                parameters=dict(tool.parameter_schema),
            )
            for tool in self.tools.get_all()
        ]
        return dataclasses.replace(context.options, tools=definitions)

    def _provider_error(self, error: Exception) -> ProviderError:
        provider_name = getattr(self.provider, "name", None)
        logger.error(f"Model provider {provider_name} failed: {error}", exc_info=True)
        return ProviderError(str(error), provider_name=provider_name)

    async def _generate(self, context: ConversationContext) -> ProviderResponse:
        options = self._options_for(context)
        try:
            return await self.provider.generate(list(context.messages), options)
        except ProviderError:
            raise
        except Exception as e:
            raise self._provider_error(e) from e

    async def _stream(
        self, context: ConversationContext
    ) -> AsyncIterator[StreamChunk | ProviderResponse]:
        """Yield the content chunks of one model response, then the response."""
        if not isinstance(self.provider, StreamingModelProvider):
            response = await self._generate(context)
            if response.content:
                yield StreamChunk(content=response.content)
            yield response
            return

        options = self._options_for(context)
        final: ProviderResponse | None = None
        try:
            chunks = self.provider.stream(list(context.messages), options)
            async with aclosing(chunks):  # type: ignore[type-var]
                async for chunk in chunks:
                    if chunk.is_final:
                        final = chunk.response
                    elif chunk.content:
                        yield chunk
        except ProviderError:
            raise
        except Exception as e:
            raise self._provider_error(e) from e

        if final is None:
            raise ProviderError(
                "Model stream ended without a final response",
                provider_name=getattr(self.provider, "name", None),
            )
        yield final

    def _tool_context(self, call: ToolCall, context: ConversationContext) -> ToolContext:
        return ToolContext(
            working_directory=context.working_directory or os.getcwd(),
            tool_call_id=call.id,
            session_id=context.session_id,
            metadata=dict(context.metadata),
        )

    async def _run_tool_call(
        self,
        call: ToolCall,
        context: ConversationContext,
        history: list[ToolCall],
    ) -> ToolResult:
        """Resolve, validate, authorize and execute one tool call.

        Always returns a ToolResult; only cancellation propagates.
        """
        tool = self.tools.try_get(call.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool '{call.name}'")
            return ToolResult.failure(call.id, f"Tool '{call.name}' not found")

        tool_context = self._tool_context(call, context)

        try:
            validation = await tool.validate(call.arguments, tool_context)
        except Exception as e:
            logger.error(f"Validation of tool '{call.name}' failed: {e}", exc_info=True)
            return ToolResult.failure(call.id, f"Tool validation failed: {e}")
        if not validation.is_valid:
            message = validation.error_message or f"Invalid arguments for tool '{call.name}'"
            return ToolResult.failure(
                call.id, message, metadata={"validation_errors": list(validation.errors)}
            )

        outcome = await self.permissions.authorize(
            call, context.session_id, tool=tool, history=history
        )
        if not outcome.allowed:
            return ToolResult.failure(
                call.id,
                f"Permission denied to execute tool '{call.name}'",
                metadata={"permission_source": outcome.source, "reason": outcome.reason},
            )

        return await self._execute(tool, call, tool_context)

    async def _execute(self, tool: Tool, call: ToolCall, tool_context: ToolContext) -> ToolResult:
        start = time.perf_counter()
        try:
            result: Any = await tool.execute(call.arguments, tool_context)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(f"Tool execution error in '{call.name}': {e}", exc_info=True)
            result = ToolResult.failure(
                call.id, f"Tool execution failed: {e}", duration_ms=duration_ms
            )
        else:
            duration_ms = (time.perf_counter() - start) * 1000
            if not isinstance(result, ToolResult):
                result = ToolResult.failure(
                    call.id,
                    f"Tool '{call.name}' returned {type(result).__name__} "
                    "instead of a ToolResult",
                    duration_ms=duration_ms,
                )
            elif result.tool_call_id != call.id or not result.duration_ms:
                result = dataclasses.replace(
                    result,
                    tool_call_id=call.id,
                    duration_ms=result.duration_ms or duration_ms,
                )

        safe_track(
            self.telemetry,
            "agent.tool.executed",
            {
                "tool": call.name,
                "tool_call_id": call.id,
                "success": result.success,
                "duration_ms": round(result.duration_ms, 3),
            },
        )
        safe_metric(self.telemetry, "agent.tool.duration_ms", result.duration_ms, {"tool": call.name})
        return result
