"""Custom exceptions for the agent loop and its collaborators.

This module defines the exception hierarchy used across overseer. Only
input validation and provider failures are fatal to a turn; tool and
permission failures are converted into failed tool results by the loop.
"""

from __future__ import annotations


class OverseerError(Exception):
    """Base exception for overseer operations."""


class AgentInputError(OverseerError, ValueError):
    """Exception raised when the agent loop is called with invalid input.

    Raised before any model call is made, e.g. when the user message or
    the conversation context is missing.
    """


class ProviderError(OverseerError):
    """Exception raised when the model provider fails to produce a response.

    Covers transport, authentication and rate limit failures reported by
    the underlying chat model. Retrying is the provider's responsibility.

    Attributes:
        provider_name: Name of the provider that failed, if known.
        status_code: HTTP-like status code reported by the backend, if any.

    Example:
        >>> try:
        ...     await provider.generate(messages, options)
        ... except ProviderError as e:
        ...     print(e.provider_name, e.status_code)
    """

    def __init__(
        self,
        message: str,
        provider_name: str | None = None,
        status_code: int | None = None,
    ):
        """Initialize ProviderError.

        Args:
            message: Error description.
            provider_name: Name of the failing provider.
            status_code: Status code from the backend, if available.
        """
        super().__init__(message)
        self.provider_name = provider_name
        self.status_code = status_code


class ToolError(OverseerError):
    """Base exception for tool lookup and execution errors."""


class ToolNotFoundError(ToolError):
    """Exception raised when a tool name is not registered.

    Attributes:
        tool_name: The name that was looked up.
        available: Names of the tools that are registered.
    """

    def __init__(self, tool_name: str, available: list[str] | None = None):
        self.tool_name = tool_name
        self.available = sorted(available or [])
        listing = ", ".join(self.available) or "none"
        super().__init__(
            f"Tool '{tool_name}' not found in registry. Available tools: {listing}"
        )


class ToolValidationError(ToolError):
    """Exception raised when tool arguments fail validation."""


class ToolExecutionError(ToolError):
    """Exception raised when a tool fails while running.

    Built-in tools raise this for timeouts, blocked commands and I/O
    failures. The agent loop turns it into a failed tool result.
    """


class SessionError(OverseerError):
    """Base exception for session store errors."""


class SessionNotFoundError(SessionError):
    """Exception raised when a session does not exist."""


class SessionExistsError(SessionError):
    """Exception raised when creating a session whose id is already taken."""


class ConfigError(OverseerError):
    """Exception raised when configuration cannot be loaded or is invalid."""
