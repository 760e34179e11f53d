"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. Health and auth routers are
open; the auth router protects /me and /change-password itself.
"""

from fastapi import APIRouter, Depends

from appsec_dashboard.api.analysis import router as analysis_router
from appsec_dashboard.api.auth import router as auth_router
from appsec_dashboard.api.chat import router as chat_router
from appsec_dashboard.api.health import router as health_router
from appsec_dashboard.auth.dependencies import get_current_user

# All protected routers require a valid bearer token
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Protected routes
api_router.include_router(chat_router, tags=["chat"], dependencies=_auth)
api_router.include_router(analysis_router, tags=["analysis"], dependencies=_auth)
