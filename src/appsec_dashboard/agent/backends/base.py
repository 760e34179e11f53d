"""Agent backend base — pluggable interface for the analysis agent.

Learn: The dashboard doesn't implement security analysis itself. It talks
to an external agent through two small abstractions:

1. AgentBackend — a factory. It knows how to check its environment
   (credentials present?) and how to open a new conversation.
2. AgentContext — one open conversation. It owns the accumulated
   message history, so calling run() twice on the same context lets
   the agent see the first exchange when answering the second.

Answers come back through AgentResponse. Nothing reads the agent's
console output; if a backend has no text to return, that's a failure.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Capability(str, Enum):
    """What the agent is asked to do. Values match the wire format."""

    QUERY = "simple_query_agent"
    CODE_REVIEW = "code_reviewer"
    THREAT_MODEL = "threat_modeler"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Capability":
        """Map a wire string to a capability. Unknown values fall back to QUERY."""
        if value:
            try:
                return cls(value.strip())
            except ValueError:
                pass
        return cls.QUERY


@dataclass
class AgentConfig:
    """Everything needed to open an agent conversation."""

    capability: Capability = Capability.QUERY
    environment: str = "development"
    verbose: bool = False

    # Source tree under analysis (one-shot code review / threat modeling)
    src_dir: Optional[str] = None

    # Prior turns the client wants the new conversation to start from
    history: list[dict] = field(default_factory=list)


@dataclass
class AgentResponse:
    """Structured result of one agent turn."""

    text: str
    capability: Capability
    duration_seconds: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None


class AgentContext(ABC):
    """One live conversation with the agent."""

    @abstractmethod
    async def run(self, capability: Capability, message: str) -> AgentResponse:
        """Send a message and return the agent's answer.

        Implementations append the exchange to their history only when
        the turn succeeds.
        """

    @property
    @abstractmethod
    def turns(self) -> int:
        """Completed user→agent exchanges held in memory."""


class AgentBackend(ABC):
    """Factory for agent conversations."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier, e.g. 'anthropic'."""

    @abstractmethod
    async def create_context(self, config: AgentConfig) -> AgentContext:
        """Open a new, empty (or history-seeded) conversation."""

    def validate_environment(self) -> tuple[bool, str]:
        """Check credentials/config needed to reach the agent.

        Returns (is_valid, message). Override to check API keys etc.
        """
        return True, "ok"

    async def aclose(self) -> None:
        """Release resources shared by this backend's contexts (app shutdown)."""
