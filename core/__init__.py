"""Core services: the default chat response generator."""

from .agent import AgentError, ChatAgent

__all__ = ["AgentError", "ChatAgent"]
