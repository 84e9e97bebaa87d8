"""Overseer - a tool-using agent loop with risk-aware permissions.

Runs the "ask the model, execute what it requests, report back" loop while
gating every tool call through a permission check that weighs the tool's
inherent risk, threats found in its arguments, remembered decisions and,
when policy demands it, a human.

Quick Start:
    >>> from overseer import AgentLoop, ConversationContext, load_config
    >>> from overseer.providers import LangChainProvider
    >>> from overseer.permissions import CliPermissionPrompt
    >>> loop = AgentLoop.from_config(
    ...     load_config(), LangChainProvider(chat_model), prompt=CliPermissionPrompt()
    ... )
    >>> response = await loop.process("Summarize README.md", ConversationContext())
"""

__version__ = "0.1.0"
__author__ = "GoatBytes.IO"
__license__ = "Apache-2.0"

from overseer.agent import AgentLoop
from overseer.config import OverseerConfig, load_config
from overseer.exceptions import (
    AgentInputError,
    OverseerError,
    ProviderError,
)
from overseer.models import (
    AgentResponse,
    AgentStatus,
    ConversationContext,
    Message,
    MessageRole,
    StreamChunk,
    ToolCall,
    ToolResult,
)

__all__ = [
    "AgentInputError",
    "AgentLoop",
    "AgentResponse",
    "AgentStatus",
    "ConversationContext",
    "Message",
    "MessageRole",
    "OverseerConfig",
    "OverseerError",
    "ProviderError",
    "StreamChunk",
    "ToolCall",
    "ToolResult",
    "__author__",
    "__license__",
    "__version__",
    "load_config",
]
