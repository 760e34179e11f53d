"""Chat API — per-user conversations with the analysis agent.

Learn: Routes:
- POST /chat → send a message on the caller's session (created lazily)
- POST /chat/end → drop the caller's session (idempotent)
- GET /chat/session → does the caller have a live session?

Sending the terminator command (default "/end", any case, surrounding
whitespace ignored) as the message ends the session instead of talking
to the agent. Ending a session that doesn't exist is fine.
"""

import structlog
from fastapi import APIRouter, Depends

from appsec_dashboard.agent.backends import AgentConfig, Capability
from appsec_dashboard.agent.runner import AgentRunner, get_agent_runner
from appsec_dashboard.auth.dependencies import CurrentIdentity, get_current_user
from appsec_dashboard.config import settings
from appsec_dashboard.errors import ConfigurationError, InvalidInput
from appsec_dashboard.schemas.chat import (
    ChatEndedResponse,
    ChatRequest,
    ChatResponse,
    SessionStatus,
)
from appsec_dashboard.services.session_registry import (
    SessionRegistry,
    get_session_registry,
    is_terminator,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/chat")


@router.post(
    "", response_model=ChatResponse | ChatEndedResponse, response_model_exclude_none=True
)
async def chat(
    body: ChatRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
    runner: AgentRunner = Depends(get_agent_runner),
):
    """Send a message to the agent on the caller's session."""
    if body.message is None or not body.message.strip():
        raise InvalidInput("Message is required")

    capability = Capability.parse(body.capability or body.role)

    if is_terminator(body.message, settings.session_terminator):
        await registry.end(identity.user_id)
        return ChatEndedResponse(
            response="Chat session ended. Starting a new conversation.",
            capability=capability.value,
        )

    ok, msg = registry.backend.validate_environment()
    if not ok:
        logger.error("chat.agent_not_configured", backend=registry.backend.name)
        raise ConfigurationError(message=msg)

    session = await registry.get_or_create(
        identity.user_id,
        AgentConfig(
            capability=capability,
            environment=settings.agent_environment,
            verbose=settings.agent_verbose,
            history=[turn.model_dump() for turn in body.history or []],
        ),
    )
    text = await runner.invoke(session, capability, body.message)
    return ChatResponse(
        response=text,
        capability=capability.value,
        role=capability.value,
    )


@router.post("/end", response_model=ChatEndedResponse, response_model_exclude_none=True)
async def end_chat(
    identity: CurrentIdentity = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Explicitly end the caller's chat session."""
    await registry.end(identity.user_id)
    return ChatEndedResponse(message="Chat session ended successfully")


@router.get("/session", response_model=SessionStatus)
async def session_status(
    identity: CurrentIdentity = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Report whether the caller has a live session."""
    session = registry.get(identity.user_id)
    if session is None:
        return SessionStatus(hasSession=False, message="No active chat session")
    return SessionStatus(
        hasSession=True,
        message="Active chat session exists",
        capability=session.capability.value,
        messageCount=session.message_count,
        createdAt=session.created_at,
        lastUsedAt=session.last_used_at,
    )
