"""AppSec CLI — talk to the dashboard API from a terminal.

Usage:
    appsec serve                                  # Run the API server
    appsec register alice alice@example.com       # Create an account (prompts for password)
    appsec login alice                            # Log in, cache the token
    appsec whoami                                 # Show the logged-in user
    appsec change-password                        # Rotate your password
    appsec chat "What is SSRF?"                   # One message on your session
    appsec chat                                   # Interactive chat (type /end to reset)
    appsec chat -c code_reviewer "review this"    # Pick a capability
    appsec session                                # Is there a live session?
    appsec end                                    # End your session
    appsec review ./repo                          # One-shot code review
    appsec threat-model ./repo                    # One-shot threat model
    appsec logout                                 # Forget the cached token
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from pathlib import Path
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3001"
TOKEN_FILE = Path.home() / ".appsec_dashboard" / "token"
CAPABILITIES = ["simple_query_agent", "code_reviewer", "threat_modeler"]


def _api_url() -> str:
    return os.environ.get("APPSEC_API_URL", DEFAULT_API_URL).rstrip("/")


def _load_token() -> Optional[str]:
    token = os.environ.get("APPSEC_TOKEN")
    if token:
        return token
    if TOKEN_FILE.exists():
        return TOKEN_FILE.read_text().strip() or None
    return None


def _save_token(token: str) -> None:
    TOKEN_FILE.parent.mkdir(parents=True, exist_ok=True)
    TOKEN_FILE.write_text(token)
    TOKEN_FILE.chmod(0o600)


def _client(auth: bool = True, timeout: float = 30.0) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the dashboard API."""
    headers = {}
    if auth:
        token = _load_token()
        if not token:
            click.secho("Not logged in. Run: appsec login <username>", fg="red", err=True)
            sys.exit(1)
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=timeout)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. Click CliRunner inside an async
    test) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _check(r: httpx.Response) -> dict:
    """Return the JSON body, or print the API error and exit 1."""
    try:
        data = r.json()
    except ValueError:
        data = {}
    if r.is_error:
        error = data.get("error") or f"HTTP {r.status_code}"
        detail = data.get("message")
        click.secho(f"Error: {error}" + (f" ({detail})" if detail else ""), fg="red", err=True)
        if r.status_code in (401, 403) and "token" in error.lower():
            click.echo("Your login may have expired. Run: appsec login <username>", err=True)
        sys.exit(1)
    return data


def _print_user(user: dict) -> None:
    click.echo(f"  id:       {user['id']}")
    click.echo(f"  username: {user['username']}")
    click.echo(f"  email:    {user['email']}")
    if user.get("credential_is_default"):
        click.secho("  ! still using the default password, run: appsec change-password", fg="yellow")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="appsec")
def main():
    """AppSec Dashboard — chat with the AppSec agent from your terminal."""


@main.command()
@click.option("--host", default=None, help="Bind address (default from APPSEC_HOST)")
@click.option("--port", default=None, type=int, help="Port (default from APPSEC_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server with uvicorn."""
    import uvicorn

    from appsec_dashboard.config import settings

    uvicorn.run(
        "appsec_dashboard.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@main.command()
@click.argument("username")
@click.argument("email")
@click.password_option()
def register(username: str, email: str, password: str):
    """Create an account and log in as it."""
    _run(_register_impl(username, email, password))


async def _register_impl(username: str, email: str, password: str):
    async with _client(auth=False) as c:
        data = _check(await c.post(
            "/api/auth/register",
            json={"username": username, "email": email, "password": password},
        ))
    _save_token(data["token"])
    click.secho(f"Registered and logged in as {data['user']['username']}", fg="green")


@main.command()
@click.argument("username")
@click.password_option(confirmation_prompt=False)
def login(username: str, password: str):
    """Log in with a username or email and cache the token."""
    _run(_login_impl(username, password))


async def _login_impl(username: str, password: str):
    async with _client(auth=False) as c:
        data = _check(await c.post(
            "/api/auth/login", json={"username": username, "password": password},
        ))
    _save_token(data["token"])
    click.secho(f"Logged in as {data['user']['username']}", fg="green")
    if data["user"].get("credential_is_default"):
        click.secho("You are using the default password. Run: appsec change-password", fg="yellow")


@main.command()
def logout():
    """Forget the cached token. The token itself stays valid until it expires."""
    if TOKEN_FILE.exists():
        TOKEN_FILE.unlink()
    click.echo("Logged out")


@main.command()
def whoami():
    """Show the logged-in user."""
    _run(_whoami_impl())


async def _whoami_impl():
    async with _client() as c:
        data = _check(await c.get("/api/auth/me"))
    _print_user(data["user"])


@main.command("change-password")
@click.option("--current", prompt=True, hide_input=True, help="Current password")
@click.option("--new", "new_password", prompt=True, hide_input=True,
              confirmation_prompt=True, help="New password")
def change_password(current: str, new_password: str):
    """Change your password."""
    _run(_change_password_impl(current, new_password))


async def _change_password_impl(current: str, new_password: str):
    async with _client() as c:
        data = _check(await c.post(
            "/api/auth/change-password",
            json={"currentPassword": current, "newPassword": new_password},
        ))
    click.secho(data["message"], fg="green")


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@main.command()
@click.argument("message", required=False)
@click.option("--capability", "-c", type=click.Choice(CAPABILITIES),
              default="simple_query_agent", show_default=True)
def chat(message: Optional[str], capability: str):
    """Send MESSAGE to the agent, or start an interactive chat if omitted."""
    _run(_chat_impl(message, capability))


async def _send(c: httpx.AsyncClient, message: str, capability: str) -> dict:
    return _check(await c.post(
        "/api/chat", json={"message": message, "capability": capability},
    ))


async def _chat_impl(message: Optional[str], capability: str):
    # Agent turns can be slow; no client-side timeout
    async with _client(timeout=None) as c:
        if message:
            data = await _send(c, message, capability)
            click.echo(data["response"])
            return

        click.secho(f"Chatting as {capability}. /end resets the conversation, Ctrl-D quits.",
                    fg="cyan")
        while True:
            try:
                line = click.prompt("you", prompt_suffix="> ")
            except (EOFError, click.Abort):
                click.echo()
                return
            data = await _send(c, line, capability)
            if data.get("sessionEnded"):
                click.secho(data.get("response", "Session ended"), fg="yellow")
            else:
                click.echo(data["response"])


@main.command()
def end():
    """End your chat session."""
    _run(_end_impl())


async def _end_impl():
    async with _client() as c:
        _check(await c.post("/api/chat/end"))
    click.echo("Chat session ended")


@main.command()
def session():
    """Show whether you have a live chat session."""
    _run(_session_impl())


async def _session_impl():
    async with _client() as c:
        data = _check(await c.get("/api/chat/session"))
    click.echo(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# One-shot analysis
# ---------------------------------------------------------------------------


@main.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.option("--query", "-q", help="What to focus on")
def review(repo_path: str, query: Optional[str]):
    """Run a security code review over REPO_PATH (on the server host)."""
    _run(_analysis_impl("/api/code-review", repo_path, query))


@main.command("threat-model")
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False))
@click.option("--query", "-q", help="What to focus on")
def threat_model(repo_path: str, query: Optional[str]):
    """Produce a threat model for REPO_PATH (on the server host)."""
    _run(_analysis_impl("/api/threat-modeling", repo_path, query))


async def _analysis_impl(path: str, repo_path: str, query: Optional[str]):
    async with _client(timeout=None) as c:
        data = _check(await c.post(
            path, json={"repoPath": str(Path(repo_path).resolve()), "query": query},
        ))
    click.echo(data["reportContent"])
    click.secho(f"\nReport saved on server: {data['reportPath']}", fg="green")
