"""Agent runtime backends."""

from inbox_pilot.orchestrator.backend.base import (
    AgentBackend,
    AgentInvocationError,
    AgentRequest,
    AgentResult,
    ToolCall,
)
from inbox_pilot.orchestrator.backend.cli_backend import CliAgentBackend

__all__ = [
    "AgentBackend",
    "AgentInvocationError",
    "AgentRequest",
    "AgentResult",
    "CliAgentBackend",
    "ToolCall",
]
