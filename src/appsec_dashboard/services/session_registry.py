"""Session registry — one live agent conversation per user.

Learn: Opening an agent conversation is expensive and the conversation
accumulates context, so we keep it around between HTTP requests. The
registry maps user_id → ChatSession and is the only owner of those
sessions. It is created once in the app lifespan and handed to routes
through request.app.state; nothing else holds a reference to the map.

Concurrency model (single event loop, many concurrent requests):
- Each user has an asyncio.Lock that serializes get_or_create/end for
  that user, so two simultaneous first messages create one session.
- Each ChatSession has its own `lock`, held by the runner while a
  message is in flight, so two messages from the same user don't
  interleave their turns in the conversation history.
- Different users never wait on each other.

A per-user lock counts the coroutines holding or waiting on it and is
dropped when that count reaches zero. Lookup, counting and removal never
await, so on one event loop nobody can grab a lock that is about to be
dropped, and the map only holds users with a call in flight.

Sessions have no TTL: they live until end() or process exit.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import structlog
from fastapi import Request

from appsec_dashboard.agent.backends import AgentBackend, AgentConfig, AgentContext, Capability

logger = structlog.get_logger()


def is_terminator(message: Optional[str], terminator: str) -> bool:
    """True if the message is the end-of-session command (case-insensitive, trimmed)."""
    if message is None:
        return False
    return message.strip().lower() == terminator.strip().lower()


@dataclass
class ChatSession:
    """A user's live agent conversation plus bookkeeping."""

    user_id: int
    context: AgentContext
    capability: Capability
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_used_at: Optional[datetime] = None
    message_count: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def touch(self, capability: Capability) -> None:
        self.capability = capability
        self.message_count += 1
        self.last_used_at = datetime.now(timezone.utc)


@dataclass
class _UserLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionRegistry:
    """Process-local map of user_id → ChatSession."""

    def __init__(self, backend: AgentBackend):
        self.backend = backend
        self._sessions: dict[int, ChatSession] = {}
        self._locks: dict[int, _UserLock] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: int) -> AsyncIterator[None]:
        entry = self._locks.get(user_id)
        if entry is None:
            entry = self._locks[user_id] = _UserLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(user_id) is entry:
                del self._locks[user_id]

    async def get_or_create(self, user_id: int, config: AgentConfig) -> ChatSession:
        """Return the user's session, opening a new conversation if there is none.

        An existing session is returned as-is; `config` only applies when
        a new conversation has to be opened.
        """
        async with self._user_lock(user_id):
            session = self._sessions.get(user_id)
            if session is not None:
                logger.debug("chat.session_reused", user_id=user_id)
                return session

            context = await self.backend.create_context(config)
            session = ChatSession(
                user_id=user_id, context=context, capability=config.capability
            )
            self._sessions[user_id] = session
            logger.info(
                "chat.session_created",
                user_id=user_id,
                capability=config.capability.value,
                backend=self.backend.name,
            )
            return session

    async def end(self, user_id: int) -> bool:
        """Drop the user's session. Returns True if there was one; never raises."""
        async with self._user_lock(user_id):
            session = self._sessions.pop(user_id, None)
        if session is not None:
            logger.info(
                "chat.session_ended",
                user_id=user_id,
                messages=session.message_count,
            )
        return session is not None

    def exists(self, user_id: int) -> bool:
        return user_id in self._sessions

    def get(self, user_id: int) -> Optional[ChatSession]:
        return self._sessions.get(user_id)

    def active_user_ids(self) -> list[int]:
        return sorted(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def clear(self) -> None:
        """Drop every session (app shutdown)."""
        count = len(self._sessions)
        self._sessions.clear()
        if count:
            logger.info("chat.sessions_cleared", count=count)


def get_session_registry(request: Request) -> SessionRegistry:
    """FastAPI dependency — the registry built in the app lifespan."""
    return request.app.state.session_registry
