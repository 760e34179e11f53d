"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown:

startup:  create tables → bootstrap admin → build agent backend,
          session registry and runner (stored on app.state)
shutdown: drop all chat sessions → close the agent client → dispose
          the DB engine

The registry lives on app.state rather than in a module global so tests
(and anything else embedding the app) can swap in their own.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from appsec_dashboard import __version__
from appsec_dashboard.agent.backends import get_backend
from appsec_dashboard.agent.runner import AgentRunner
from appsec_dashboard.api import api_router
from appsec_dashboard.config import INSECURE_JWT_SECRET, settings
from appsec_dashboard.errors import register_exception_handlers
from appsec_dashboard.services.session_registry import SessionRegistry

logger = structlog.get_logger()


async def bootstrap_admin() -> None:
    """Create the default admin account on first run. Never fatal."""
    from appsec_dashboard.db.engine import async_session_factory
    from appsec_dashboard.services.user_service import UserService

    try:
        async with async_session_factory() as db:
            created = await UserService(db).ensure_default_admin(
                settings.admin_username, settings.admin_email, settings.admin_password
            )
        if created is None:
            logger.info("appsec.admin_exists", username=settings.admin_username)
    except Exception as e:
        logger.error("appsec.admin_bootstrap_failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        "appsec.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )
    if settings.jwt_secret == INSECURE_JWT_SECRET:
        logger.warning("appsec.insecure_jwt_secret", hint="set APPSEC_JWT_SECRET")

    from appsec_dashboard.db.engine import engine, init_models
    await init_models()
    await bootstrap_admin()

    backend = get_backend(settings.agent_backend)
    ok, msg = backend.validate_environment()
    if not ok:
        # Chat requests will answer 500 Configuration error until fixed
        logger.warning("appsec.agent_unavailable", backend=backend.name, reason=msg)

    app.state.session_registry = SessionRegistry(backend)
    app.state.agent_runner = AgentRunner()

    yield

    logger.info("appsec.shutdown")
    app.state.session_registry.clear()
    await app.state.session_registry.backend.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="AppSec Agent Dashboard",
        description="Authenticated access to a stateful application-security agent",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → CORS → handler

    from appsec_dashboard.middleware.request_id import RequestIdMiddleware
    from appsec_dashboard.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: appsec_dashboard.main:app)
app = create_app()
