"""Model provider protocols."""

from __future__ import annotations

from typing import AsyncIterator, Protocol, runtime_checkable

from overseer.models import Message, ProviderOptions, ProviderResponse, StreamChunk

__all__ = ["ModelProvider", "StreamingModelProvider"]


@runtime_checkable
class ModelProvider(Protocol):
    """Protocol for language model backends.

    Implementations turn a transcript into the next assistant response.
    They own transport concerns (HTTP, auth, retries, timeouts) and must
    raise :class:`overseer.exceptions.ProviderError` when the backend
    cannot be reached. Cancellation must propagate unchanged.

    Example:
        >>> class EchoProvider:
        ...     name = "echo"
        ...     async def generate(self, messages, options):
        ...         return ProviderResponse(content=messages[-1].content, model_id="echo")
    """

    name: str

    async def generate(
        self, messages: list[Message], options: ProviderOptions
    ) -> ProviderResponse:
        """Generate the next assistant response.

        Args:
            messages: Full transcript, oldest first
            options: Generation options and offered tools

        Returns:
            ProviderResponse with content, usage and requested tool calls

        Raises:
            ProviderError: On transport, authentication or rate limit failures
        """
        ...


@runtime_checkable
class StreamingModelProvider(ModelProvider, Protocol):
    """A model provider that can also stream responses token by token.

    Providers without ``stream`` still work with
    :meth:`AgentLoop.process_stream`; their responses arrive as a single
    chunk.
    """

    def stream(
        self, messages: list[Message], options: ProviderOptions
    ) -> AsyncIterator[StreamChunk]:
        """Stream the next assistant response.

        Yields content deltas, then exactly one chunk with ``is_final``
        set whose ``response`` holds the assembled ProviderResponse.

        Raises:
            ProviderError: On transport, authentication or rate limit failures
        """
        ...
