"""Agent backend registry.

Learn: The registry provides a simple interface:
    backend = get_backend("anthropic")
    context = await backend.create_context(AgentConfig(...))
    answer = await context.run(Capability.QUERY, "What is SSRF?")

settings.agent_backend picks the one the app uses at startup. Tests
register a stub so no network calls happen.
"""

from appsec_dashboard.agent.backends.anthropic import AnthropicBackend
from appsec_dashboard.agent.backends.base import (
    AgentBackend,
    AgentConfig,
    AgentContext,
    AgentResponse,
    Capability,
)

__all__ = [
    "AgentBackend",
    "AgentConfig",
    "AgentContext",
    "AgentResponse",
    "Capability",
    "get_backend",
    "list_backends",
    "register_backend",
]

# ─── Registry ──────────────────────────────────────────────

_BACKENDS: dict[str, type[AgentBackend]] = {
    "anthropic": AnthropicBackend,
}


def get_backend(name: str) -> AgentBackend:
    """Get a backend instance by name.

    Raises ValueError if the backend is not registered.
    """
    cls = _BACKENDS.get(name)
    if not cls:
        available = ", ".join(sorted(_BACKENDS.keys()))
        raise ValueError(f"Unknown agent backend '{name}'. Available: {available}")
    return cls()


def list_backends() -> list[str]:
    return sorted(_BACKENDS.keys())


def register_backend(name: str, backend_cls: type[AgentBackend]) -> None:
    """Register a custom backend (e.g. a local model server)."""
    _BACKENDS[name] = backend_cls
