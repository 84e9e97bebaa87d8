"""Agent loop."""

from overseer.agent.loop import AgentLoop

__all__ = ["AgentLoop"]
