"""Data models for conversations, tool calls and provider responses.

This module defines the provider-agnostic data structures that flow through
the agent loop. LangChain types stay inside the provider and tool adapters;
everything the loop touches is one of these dataclasses.

Example:
    >>> context = ConversationContext(session_id="demo")
    >>> context.add_message(Message(role=MessageRole.USER, content="Hello"))
    >>> usage = ProviderUsage(input_tokens=10, output_tokens=5)
    >>> usage.total_tokens
    15
"""

from __future__ import annotations

import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Role of a message within a conversation transcript."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    The argument payload is kept opaque; only the tool itself parses it
    during validation and execution.

    Attributes:
        id: Identifier assigned by the model, unique within one response
        name: Name of the requested tool
        arguments: JSON-like argument mapping

    Example:
        >>> call = ToolCall(id="call-1", name="read_file", arguments={"path": "a.txt"})
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
        )


@dataclass
class Message:
    """One turn in a conversation transcript.

    Attributes:
        role: Who produced the message
        content: Text content
        timestamp: When the message was created (UTC)
        tool_calls: Tool calls requested by an assistant message, in order
        tool_call_id: For tool messages, the id of the originating call
    """

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role == MessageRole.TOOL and not self.tool_call_id:
            raise ValueError("Tool messages require a tool_call_id")
        if self.tool_calls and self.role != MessageRole.ASSISTANT:
            raise ValueError("Only assistant messages may carry tool calls")

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "tool_calls": [call.to_dict() for call in self.tool_calls],
            "tool_call_id": self.tool_call_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        timestamp = data.get("timestamp")
        return cls(
            role=MessageRole(data["role"]),
            content=data.get("content", ""),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else _utcnow(),
            tool_calls=[ToolCall.from_dict(c) for c in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass
class ToolResult:
    """Outcome of a single tool call.

    Exactly one of ``output`` and ``error`` is populated, matching
    ``success``. Use :meth:`ok` and :meth:`failure` rather than building
    instances by hand.

    Attributes:
        tool_call_id: Id of the call this result answers
        success: Whether the tool ran successfully
        output: Tool output when successful
        error: Error description when unsuccessful
        duration_ms: Wall time spent, in milliseconds
        metadata: Extra information (exit codes, decision source, ...)

    Example:
        >>> ToolResult.ok("call-1", "File content").success
        True
        >>> ToolResult.failure("call-2", "Tool 'x' not found").error
        "Tool 'x' not found"
    """

    tool_call_id: str
    success: bool
    output: str | None = None
    error: str | None = None
    duration_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.success and (self.output is None or self.error is not None):
            raise ValueError("Successful results carry output and no error")
        if not self.success and (self.error is None or self.output is not None):
            raise ValueError("Failed results carry an error and no output")

    @classmethod
    def ok(
        cls,
        tool_call_id: str,
        output: str,
        duration_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> ToolResult:
        return cls(
            tool_call_id=tool_call_id,
            success=True,
            output=output,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def failure(
        cls,
        tool_call_id: str,
        error: str,
        duration_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> ToolResult:
        return cls(
            tool_call_id=tool_call_id,
            success=False,
            error=error,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @property
    def content(self) -> str:
        """Text fed back to the model for this result."""
        return self.output if self.success else self.error  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProviderUsage:
    """Token usage reported for one model call.

    ``total_tokens`` is derived, so it stays consistent after either
    count is updated.
    """

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: ProviderUsage) -> ProviderUsage:
        return ProviderUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ToolDefinition:
    """Description of a tool offered to the model.

    Attributes:
        name: Tool name
        description: What the tool does
        parameters: JSON schema of the tool arguments
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProviderOptions:
    """Generation options passed to the model provider.

    Attributes:
        model: Model override, if the provider supports one
        temperature: Sampling temperature
        max_tokens: Maximum output tokens
        top_p: Nucleus sampling parameter
        stop_sequences: Sequences that stop generation
        tools: Tools to offer; None offers every registered tool and an
            empty list offers none
    """

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stop_sequences: list[str] = field(default_factory=list)
    tools: list[ToolDefinition] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.tools is None:
            data["tools"] = None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderOptions:
        tools = data.get("tools")
        return cls(
            model=data.get("model"),
            temperature=data.get("temperature"),
            max_tokens=data.get("max_tokens"),
            top_p=data.get("top_p"),
            stop_sequences=list(data.get("stop_sequences") or []),
            tools=None if tools is None else [ToolDefinition(**t) for t in tools],
        )


@dataclass
class ProviderResponse:
    """Response returned by a model provider for one generation.

    Attributes:
        content: Text content of the response
        model_id: Identifier of the model that answered
        usage: Token usage
        tool_calls: Tool calls requested by the model, in order
        stop_reason: Why generation stopped, if reported
    """

    content: str
    model_id: str = ""
    usage: ProviderUsage = field(default_factory=ProviderUsage)
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class StreamChunk:
    """A piece of a streamed model response.

    Providers yield content deltas followed by one final chunk carrying
    the assembled response (tool calls and usage included).

    Attributes:
        content: Text delta
        is_final: Whether this chunk closes the stream
        response: The complete response, set on the final chunk only
    """

    content: str = ""
    is_final: bool = False
    response: ProviderResponse | None = None


@dataclass
class ToolContext:
    """Execution context handed to a tool.

    Attributes:
        working_directory: Directory relative paths resolve against
        tool_call_id: Id of the call being executed
        session_id: Session the call belongs to
        environment: Extra environment variables for subprocesses
        metadata: Free-form data for custom tools
    """

    working_directory: str = field(default_factory=os.getcwd)
    tool_call_id: str | None = None
    session_id: str | None = None
    environment: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """Result of validating tool arguments."""

    is_valid: bool
    error_message: str | None = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True)

    @classmethod
    def failure(cls, message: str, errors: list[str] | None = None) -> ValidationResult:
        return cls(is_valid=False, error_message=message, errors=errors or [message])


@dataclass
class ConversationContext:
    """Append-only transcript and generation options for one session.

    The agent loop is the only writer during a turn. Messages are never
    reordered or removed; :meth:`add_message` checks that every tool
    message answers a call made by an earlier assistant message.

    Attributes:
        session_id: Session identifier
        messages: Ordered transcript
        options: Generation options for the provider
        working_directory: Directory tools run in (defaults to the cwd)
        metadata: Free-form session data

    Example:
        >>> context = ConversationContext()
        >>> context.add_message(Message(role=MessageRole.USER, content="Hi"))
        >>> len(context.messages)
        1
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    messages: list[Message] = field(default_factory=list)
    options: ProviderOptions = field(default_factory=ProviderOptions)
    working_directory: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_message(self, message: Message) -> None:
        """Append a message to the transcript.

        Args:
            message: Message to append

        Raises:
            ValueError: If a tool message references an unknown call id
        """
        if message.role == MessageRole.TOOL:
            if message.tool_call_id not in self._emitted_call_ids():
                raise ValueError(
                    f"Tool message references unknown tool call '{message.tool_call_id}'"
                )
        self.messages.append(message)

    def _emitted_call_ids(self) -> set[str]:
        return {
            call.id
            for message in self.messages
            if message.role == MessageRole.ASSISTANT
            for call in message.tool_calls
        }

    def tool_call_history(self) -> list[ToolCall]:
        """Return every tool call requested so far, oldest first."""
        return [
            call
            for message in self.messages
            if message.role == MessageRole.ASSISTANT
            for call in message.tool_calls
        ]

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "messages": [m.to_dict() for m in self.messages],
            "options": self.options.to_dict(),
            "working_directory": self.working_directory,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationContext:
        return cls(
            session_id=data["session_id"],
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            options=ProviderOptions.from_dict(data.get("options") or {}),
            working_directory=data.get("working_directory"),
            metadata=dict(data.get("metadata") or {}),
        )


class AgentStatus(str, Enum):
    """How a turn of the agent loop ended."""

    COMPLETED = "completed"
    LOOP_LIMIT_EXCEEDED = "loop_limit_exceeded"


@dataclass
class AgentResponse:
    """Result of processing one user message.

    Attributes:
        content: Content of the final assistant message
        tool_results: Every tool result produced during the turn, in order
        status: Whether the turn completed or hit a loop limit
        rounds: Number of model calls made
        usage: Token usage summed over all rounds
    """

    content: str
    tool_results: list[ToolResult] = field(default_factory=list)
    status: AgentStatus = AgentStatus.COMPLETED
    rounds: int = 0
    usage: ProviderUsage = field(default_factory=ProviderUsage)

    @property
    def completed(self) -> bool:
        return self.status == AgentStatus.COMPLETED
