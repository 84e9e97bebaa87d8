"""LangChain chat model provider.

Adapts any LangChain ``BaseChatModel`` (ChatOpenAI, ChatAnthropic,
ChatOllama, ...) to the :class:`StreamingModelProvider` protocol. Tool definitions
are bound per call with ``bind_tools``; the response's ``tool_calls`` and
``usage_metadata`` are mapped back onto overseer's models.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, AsyncIterator

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from overseer.exceptions import ProviderError
from overseer.models import (
    Message,
    MessageRole,
    ProviderOptions,
    ProviderResponse,
    ProviderUsage,
    StreamChunk,
    ToolCall,
    ToolDefinition,
)

if TYPE_CHECKING:
    from langchain_core.language_models.chat_models import BaseChatModel

__all__ = ["LangChainProvider", "to_langchain_message", "tool_to_openai_format"]

logger = logging.getLogger(__name__)


def to_langchain_message(message: Message) -> BaseMessage:
    """Convert a transcript message to its LangChain equivalent."""
    if message.role == MessageRole.SYSTEM:
        return SystemMessage(content=message.content)
    if message.role == MessageRole.USER:
        return HumanMessage(content=message.content)
    if message.role == MessageRole.ASSISTANT:
        return AIMessage(
            content=message.content,
            tool_calls=[
                {"name": call.name, "args": dict(call.arguments), "id": call.id}
                for call in message.tool_calls
            ],
        )
    return ToolMessage(content=message.content, tool_call_id=message.tool_call_id or "")


def tool_to_openai_format(definition: ToolDefinition) -> dict[str, Any]:
    """Render a tool definition in the function-calling format bind_tools accepts."""
    return {
        "type": "function",
        "function": {
            "name": definition.name,
            "description": definition.description,
            "parameters": definition.parameters or {"type": "object", "properties": {}},
        },
    }


def _content_text(content: Any) -> str:
    """Flatten LangChain message content (str or content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return str(content or "")


def _status_code(error: Exception) -> int | None:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class LangChainProvider:
    """Model provider backed by a LangChain chat model.

    Attributes:
        model: The chat model
        name: Provider name reported in errors and telemetry

    Example:
        >>> from langchain_anthropic import ChatAnthropic
        >>> provider = LangChainProvider(ChatAnthropic(model="claude-3-5-sonnet-latest"))
        >>> response = await provider.generate(messages, ProviderOptions())
    """

    def __init__(self, model: BaseChatModel, name: str | None = None) -> None:
        self.model = model
        self.name = name or getattr(model, "_llm_type", None) or type(model).__name__

    def _prepare(self, options: ProviderOptions) -> Any:
        runnable: Any = self.model
        if options.tools:
            try:
                runnable = self.model.bind_tools(
                    [tool_to_openai_format(t) for t in options.tools]
                )
            except NotImplementedError:
                logger.warning(
                    f"Model {self.name} does not support tool binding; "
                    f"{len(options.tools)} tool(s) will not be offered"
                )
        return runnable

    @staticmethod
    def _call_kwargs(options: ProviderOptions) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        # Forwarded to the request payload; chat models that take the model
        # name per request (OpenAI, Anthropic) honor the override.
        if options.model is not None:
            kwargs["model"] = options.model
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.stop_sequences:
            kwargs["stop"] = list(options.stop_sequences)
        return kwargs

    async def generate(
        self, messages: list[Message], options: ProviderOptions
    ) -> ProviderResponse:
        lc_messages = [to_langchain_message(m) for m in messages]
        runnable = self._prepare(options)

        try:
            result = await runnable.ainvoke(lc_messages, **self._call_kwargs(options))
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"Provider {self.name} failed: {e}", exc_info=True)
            raise ProviderError(
                f"Model call failed: {e}",
                provider_name=self.name,
                status_code=_status_code(e),
            ) from e

        return self._to_response(result)

    async def stream(
        self, messages: list[Message], options: ProviderOptions
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response with ``astream``.

        Chunks are merged as they arrive so the final chunk carries the
        complete tool calls and usage, exactly as :meth:`generate` would
        report them. Empty metadata chunks are not yielded.
        """
        lc_messages = [to_langchain_message(m) for m in messages]
        runnable = self._prepare(options)

        aggregate: Any = None
        try:
            async for chunk in runnable.astream(lc_messages, **self._call_kwargs(options)):
                aggregate = chunk if aggregate is None else aggregate + chunk
                token = _content_text(chunk.content)
                if token:
                    yield StreamChunk(content=token)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"Provider {self.name} failed while streaming: {e}", exc_info=True)
            raise ProviderError(
                f"Model stream failed: {e}",
                provider_name=self.name,
                status_code=_status_code(e),
            ) from e

        final = self._to_response(aggregate if aggregate is not None else AIMessage(content=""))
        yield StreamChunk(is_final=True, response=final)

    def _to_response(self, result: BaseMessage) -> ProviderResponse:
        tool_calls = [
            ToolCall(
                id=call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                name=call["name"],
                arguments=dict(call.get("args") or {}),
            )
            for call in getattr(result, "tool_calls", None) or []
        ]

        usage = ProviderUsage()
        usage_metadata = getattr(result, "usage_metadata", None)
        if usage_metadata:
            usage = ProviderUsage(
                input_tokens=int(usage_metadata.get("input_tokens", 0) or 0),
                output_tokens=int(usage_metadata.get("output_tokens", 0) or 0),
            )

        metadata = getattr(result, "response_metadata", None) or {}
        model_id = str(
            metadata.get("model_name")
            or metadata.get("model")
            or getattr(self.model, "model_name", None)
            or getattr(self.model, "model", None)
            or self.name
        )
        stop_reason = metadata.get("finish_reason") or metadata.get("stop_reason")

        return ProviderResponse(
            content=_content_text(result.content),
            model_id=model_id,
            usage=usage,
            tool_calls=tool_calls,
            stop_reason=stop_reason,
        )
