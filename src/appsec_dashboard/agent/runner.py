"""Agent runner — sends one message through a user's session.

Learn: The runner is the thin seam between HTTP routes and the agent
backend. It enforces the preconditions the agent needs (a non-empty,
trimmed message), serializes turns on a session, bounds each call with
a timeout, and turns every backend failure into AgentExecutionFailed.
An agent that answers with nothing is a failure too: the caller always
gets either real text or an error, never an empty success.

A client disconnecting does not cancel an in-flight call.
"""

import asyncio
import logging
from typing import Optional

from fastapi import Request

from appsec_dashboard.agent.backends import AgentContext, AgentResponse, Capability
from appsec_dashboard.config import settings
from appsec_dashboard.errors import AgentExecutionFailed, InvalidInput
from appsec_dashboard.services.session_registry import ChatSession

logger = logging.getLogger("appsec_dashboard.agent.runner")


class AgentRunner:
    """Runs agent turns with validation, timeout and error mapping."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = (
            settings.agent_timeout_seconds if timeout_seconds is None else timeout_seconds
        )

    async def invoke(
        self, session: ChatSession, capability: Capability, message: str
    ) -> str:
        """Run `message` on the user's session and return the answer text."""
        async with session.lock:
            response = await self.run_once(session.context, capability, message)
            session.touch(capability)
        return response.text

    async def run_once(
        self, context: AgentContext, capability: Capability, message: Optional[str]
    ) -> AgentResponse:
        """Run a single turn on any context (session-bound or one-shot)."""
        text = (message or "").strip()
        if not text:
            raise InvalidInput("Message is required")

        logger.info(
            "Running %s turn (%d chars, timeout=%.0fs)",
            capability.value,
            len(text),
            self.timeout_seconds,
        )
        try:
            if self.timeout_seconds and self.timeout_seconds > 0:
                response = await asyncio.wait_for(
                    context.run(capability, text), timeout=self.timeout_seconds
                )
            else:
                response = await context.run(capability, text)
        except asyncio.TimeoutError:
            logger.error("Agent timed out after %.0fs", self.timeout_seconds)
            raise AgentExecutionFailed(
                message=f"Agent timed out after {self.timeout_seconds:.0f}s"
            )
        except Exception as e:
            logger.exception("Agent %s turn failed", capability.value)
            raise AgentExecutionFailed(
                message=f"Agent execution failed: {str(e) or type(e).__name__}"
            ) from e

        if response is None or not isinstance(response.text, str):
            raise AgentExecutionFailed(message="Agent returned no response")
        if not response.text.strip():
            logger.warning("Agent returned empty text for %s", capability.value)
            raise AgentExecutionFailed(
                message=(
                    "Agent returned an empty response. Check that the agent "
                    "API key is valid and the agent service is reachable."
                )
            )

        logger.info(
            "Agent %s turn completed (%.1fs, %d chars)",
            capability.value,
            response.duration_seconds,
            len(response.text),
        )
        return response


def get_agent_runner(request: Request) -> AgentRunner:
    """FastAPI dependency — the runner built in the app lifespan."""
    return request.app.state.agent_runner
