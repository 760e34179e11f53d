"""Anthropic backend — conversations against the Messages API.

Learn: Every AgentContext shares the backend's one AsyncAnthropic client
(and its connection pool) and keeps its own running message list, so
ending a conversation has nothing to close. Capabilities become system
prompts; switching capability mid-conversation keeps the history and
only changes the system prompt for the next turn.

The Messages API wants strictly alternating user/assistant turns starting
with user, so client-supplied history is normalized before use.
"""

import time
from typing import Optional

from anthropic import AsyncAnthropic

from appsec_dashboard.agent.backends.base import (
    AgentBackend,
    AgentConfig,
    AgentContext,
    AgentResponse,
    Capability,
)
from appsec_dashboard.config import settings

SYSTEM_PROMPTS: dict[Capability, str] = {
    Capability.QUERY: (
        "You are an application security assistant. Answer questions about "
        "secure design, vulnerabilities, and remediation clearly and "
        "concisely. Use markdown. Say so when you are unsure."
    ),
    Capability.CODE_REVIEW: (
        "You are a senior application security code reviewer. Identify "
        "security vulnerabilities in the code you are given. For each "
        "finding give: title, severity (Critical/High/Medium/Low), "
        "location (file and line if known), description, and a concrete "
        "fix. Finish with a short summary. Output markdown."
    ),
    Capability.THREAT_MODEL: (
        "You are a threat modeling expert. Using STRIDE, analyse the system "
        "you are given: describe components and trust boundaries, list "
        "data flows, enumerate threats per category with likelihood and "
        "impact, and recommend mitigations. Output markdown."
    ),
}


def normalize_history(history: list[dict]) -> list[dict]:
    """Coerce arbitrary {role, content} turns into valid API messages.

    Drops unknown roles and empty content, merges consecutive turns from
    the same role, strips leading assistant turns, and drops a trailing
    user turn (the next run() supplies the user message).
    """
    messages: list[dict] = []
    for turn in history or []:
        role = turn.get("role")
        content = turn.get("content")
        if role not in ("user", "assistant") or not isinstance(content, str):
            continue
        content = content.strip()
        if not content:
            continue
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + content
        else:
            messages.append({"role": role, "content": content})
    if messages and messages[-1]["role"] == "user":
        messages.pop()
    return messages


class AnthropicContext(AgentContext):
    """A conversation held as a list of Messages API turns."""

    def __init__(
        self,
        client: AsyncAnthropic,
        model: str,
        max_tokens: int,
        history: Optional[list[dict]] = None,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.messages: list[dict] = normalize_history(history or [])

    @property
    def turns(self) -> int:
        return sum(1 for m in self.messages if m["role"] == "assistant")

    async def run(self, capability: Capability, message: str) -> AgentResponse:
        start = time.monotonic()
        outgoing = self.messages + [{"role": "user", "content": message}]
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SYSTEM_PROMPTS[capability],
            messages=outgoing,
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if text.strip():
            self.messages = outgoing + [{"role": "assistant", "content": text}]

        usage = getattr(response, "usage", None)
        return AgentResponse(
            text=text,
            capability=capability,
            duration_seconds=time.monotonic() - start,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            stop_reason=getattr(response, "stop_reason", None),
        )


class AnthropicBackend(AgentBackend):
    """Backend for Claude via the Anthropic Python SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ):
        self.api_key = settings.anthropic_api_key if api_key is None else api_key
        self.model = model or settings.agent_model
        self.max_tokens = max_tokens or settings.agent_max_tokens
        self._client: Optional[AsyncAnthropic] = None

    @property
    def name(self) -> str:
        return "anthropic"

    def validate_environment(self) -> tuple[bool, str]:
        if self.api_key is None or not self.api_key.strip():
            return (
                False,
                "ANTHROPIC_API_KEY is not set or is empty. "
                "Set it in the environment or in your .env file.",
            )
        return True, "Anthropic API key configured"

    def _get_client(self) -> AsyncAnthropic:
        """One client (and connection pool) shared by every conversation."""
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def create_context(self, config: AgentConfig) -> AgentContext:
        return AnthropicContext(
            self._get_client(),
            model=self.model,
            max_tokens=self.max_tokens,
            history=config.history,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
