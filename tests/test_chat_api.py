"""Chat API tests.

Learn: Tests cover:
1. Lazy session creation and reuse (one agent conversation per user)
2. Isolation between users, including concurrent first messages
3. Ending a session (explicit /end route or the terminator message)
4. Failure modes — missing message, unconfigured agent, agent errors
"""

import asyncio

import pytest

from appsec_dashboard.agent.backends import Capability
from appsec_dashboard.agent.backends.anthropic import AnthropicBackend


async def _auth(client, username="alice"):
    r = await client.post(
        "/api/auth/register",
        json={"username": username, "email": f"{username}@x.com", "password": "secret1"},
    )
    assert r.status_code == 201
    return {"Authorization": f"Bearer {r.json()['token']}"}


async def _chat(client, headers, message, **extra):
    return await client.post("/api/chat", json={"message": message, **extra}, headers=headers)


# ═══════════════════════════════════════════════════════════
# Session lifecycle
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_chat_creates_and_reuses_session(client, stub_backend):
    """Two messages from one user share one agent conversation."""
    headers = await _auth(client)

    r1 = await _chat(client, headers, "Hello")
    assert r1.status_code == 200
    body = r1.json()
    assert body["status"] == "success"
    assert body["response"] == "echo: Hello"
    assert body["capability"] == "simple_query_agent"
    assert body["role"] == "simple_query_agent"
    assert body["sessionActive"] is True

    r2 = await _chat(client, headers, "What is SQLi?")
    assert r2.status_code == 200
    assert stub_backend.creations == 1
    assert [m for _, m in stub_backend.contexts[0].received] == ["Hello", "What is SQLi?"]


@pytest.mark.asyncio
async def test_users_get_separate_sessions(client, stub_backend, registry):
    alice = await _auth(client, "alice")
    bob = await _auth(client, "bob")

    await _chat(client, alice, "from alice")
    await _chat(client, bob, "from bob")

    assert stub_backend.creations == 2
    assert len(registry) == 2
    received = sorted(m for ctx in stub_backend.contexts for _, m in ctx.received)
    assert received == ["from alice", "from bob"]
    assert all(len(ctx.received) == 1 for ctx in stub_backend.contexts)


@pytest.mark.asyncio
async def test_concurrent_first_messages_open_one_session(client, stub_backend):
    headers = await _auth(client)

    results = await asyncio.gather(*[_chat(client, headers, f"m{i}") for i in range(5)])

    assert all(r.status_code == 200 for r in results)
    assert stub_backend.creations == 1
    assert stub_backend.contexts[0].turns == 5


@pytest.mark.asyncio
async def test_concurrent_users_stay_isolated(client, stub_backend, registry):
    names = ["u1", "u2", "u3"]
    headers = [await _auth(client, n) for n in names]

    await asyncio.gather(*[_chat(client, h, n) for h, n in zip(headers, names)])

    assert stub_backend.creations == 3
    assert len(registry) == 3
    assert sorted(ctx.received[0][1] for ctx in stub_backend.contexts) == names


@pytest.mark.asyncio
async def test_end_route_drops_session(client, stub_backend, registry):
    headers = await _auth(client)
    await _chat(client, headers, "Hello")
    assert len(registry) == 1

    r = await client.post("/api/chat/end", headers=headers)
    assert r.status_code == 200
    assert r.json() == {
        "status": "success",
        "message": "Chat session ended successfully",
        "sessionEnded": True,
    }
    assert len(registry) == 0

    # Next message starts a fresh conversation
    await _chat(client, headers, "Again")
    assert stub_backend.creations == 2
    assert stub_backend.contexts[1].received == [(Capability.QUERY, "Again")]


@pytest.mark.asyncio
async def test_end_without_session_is_ok(client):
    headers = await _auth(client)
    for _ in range(2):
        r = await client.post("/api/chat/end", headers=headers)
        assert r.status_code == 200
        assert r.json()["sessionEnded"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["/end", "/END", "  /end  ", "/End\n"])
async def test_terminator_message_ends_session(client, stub_backend, registry, command):
    headers = await _auth(client)
    await _chat(client, headers, "Hello")

    r = await _chat(client, headers, command)
    assert r.status_code == 200
    body = r.json()
    assert body["sessionEnded"] is True
    assert body["response"] == "Chat session ended. Starting a new conversation."
    assert len(registry) == 0
    # The terminator itself never reaches the agent
    assert stub_backend.contexts[0].received == [(Capability.QUERY, "Hello")]


@pytest.mark.asyncio
async def test_terminator_works_without_agent_credentials(client, stub_backend):
    headers = await _auth(client)
    stub_backend.configured = False

    r = await _chat(client, headers, "/end")
    assert r.status_code == 200
    assert r.json()["sessionEnded"] is True


@pytest.mark.asyncio
async def test_terminator_inside_text_is_a_normal_message(client, stub_backend):
    headers = await _auth(client)
    r = await _chat(client, headers, "how do I /end a session?")
    assert r.status_code == 200
    assert r.json()["sessionActive"] is True


@pytest.mark.asyncio
async def test_session_status(client):
    headers = await _auth(client)

    r = await client.get("/api/chat/session", headers=headers)
    assert r.status_code == 200
    assert r.json()["hasSession"] is False
    assert r.json()["message"] == "No active chat session"

    await _chat(client, headers, "one", capability="code_reviewer")
    await _chat(client, headers, "two", capability="code_reviewer")

    r = await client.get("/api/chat/session", headers=headers)
    data = r.json()
    assert data["hasSession"] is True
    assert data["message"] == "Active chat session exists"
    assert data["capability"] == "code_reviewer"
    assert data["messageCount"] == 2
    assert data["createdAt"] and data["lastUsedAt"]


# ═══════════════════════════════════════════════════════════
# Capability selection and history
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_capability_per_message(client, stub_backend):
    headers = await _auth(client)
    await _chat(client, headers, "a", capability="threat_modeler")
    await _chat(client, headers, "b", role="code_reviewer")
    r = await _chat(client, headers, "c", capability="not-a-capability")

    assert r.json()["capability"] == "simple_query_agent"
    assert [c for c, _ in stub_backend.contexts[0].received] == [
        Capability.THREAT_MODEL,
        Capability.CODE_REVIEW,
        Capability.QUERY,
    ]


@pytest.mark.asyncio
async def test_history_seeds_new_session_only(client, stub_backend):
    headers = await _auth(client)
    history = [
        {"role": "user", "content": "earlier question"},
        {"role": "assistant", "content": "earlier answer"},
    ]

    await _chat(client, headers, "first", history=history)
    await _chat(client, headers, "second", history=[{"role": "user", "content": "ignored"}])

    assert stub_backend.creations == 1
    assert stub_backend.contexts[0].config.history == history


# ═══════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"message": ""}, {"message": "   "}])
async def test_message_required(client, stub_backend, payload):
    headers = await _auth(client)
    r = await client.post("/api/chat", json=payload, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Message is required"
    assert stub_backend.creations == 0


@pytest.mark.asyncio
async def test_chat_requires_token(client):
    r = await client.post("/api/chat", json={"message": "hi"})
    assert r.status_code == 401
    assert (await client.post("/api/chat/end")).status_code == 401
    assert (await client.get("/api/chat/session")).status_code == 401


@pytest.mark.asyncio
async def test_unconfigured_agent_is_a_server_error(client, stub_backend, registry):
    headers = await _auth(client)
    stub_backend.configured = False

    r = await _chat(client, headers, "Hello")
    assert r.status_code == 500
    assert r.json()["error"] == "Configuration error"
    assert "ANTHROPIC_API_KEY" in r.json()["message"]
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_missing_api_key_with_real_backend(client, registry, monkeypatch):
    headers = await _auth(client)
    monkeypatch.setattr(registry, "backend", AnthropicBackend(api_key=""))

    r = await _chat(client, headers, "Hello")
    assert r.status_code == 500
    assert r.json()["error"] == "Configuration error"


@pytest.mark.asyncio
async def test_agent_failure_keeps_session(client, stub_backend, registry):
    headers = await _auth(client)
    await _chat(client, headers, "Hello")

    stub_backend.error = RuntimeError("upstream exploded")
    r = await _chat(client, headers, "again")
    assert r.status_code == 500
    assert r.json()["error"] == "Agent execution failed"
    assert "upstream exploded" in r.json()["message"]

    # The session survives and recovers
    stub_backend.error = None
    r = await _chat(client, headers, "third")
    assert r.status_code == 200
    assert stub_backend.creations == 1
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_empty_agent_answer_is_an_error(client, stub_backend):
    headers = await _auth(client)
    stub_backend.reply = ""
    r = await _chat(client, headers, "Hello")
    assert r.status_code == 500
    assert r.json()["error"] == "Agent execution failed"
