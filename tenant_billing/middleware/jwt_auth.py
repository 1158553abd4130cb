import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tenant_billing.dependencies import get_service_context
from tenant_billing.services.jwt_service import verify_access_token

logger = logging.getLogger("tenant-billing")


def _error(status: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"detail": detail})


# Paths that don't require JWT
PUBLIC_PATHS = {
    "/health",
    "/ready",
    "/docs",
    "/openapi.json",
    "/redoc",
}

PUBLIC_PREFIXES = [
    "/billing/v1/webhooks/",  # Stripe signature instead of JWT
    "/billing/v1/internal/",  # X-Internal-Secret
]


class JwtAuthMiddleware(BaseHTTPMiddleware):
    """Resolve JWT Bearer token -> user context on protected endpoints."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in PUBLIC_PATHS:
            return await call_next(request)

        for prefix in PUBLIC_PREFIXES:
            if path.startswith(prefix):
                return await call_next(request)

        if not path.startswith("/billing/v1/"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return _error(401, "Missing or invalid Authorization header")

        token = auth_header[7:]

        try:
            payload = verify_access_token(token)
        except ValueError as e:
            return _error(401, str(e))

        ctx = get_service_context(request)
        user_resp = ctx.db.table("users").select("*").eq("id", payload["sub"]).limit(1).execute()
        if not user_resp.data:
            return _error(401, "User not found")

        user = user_resp.data[0]
        if not user.get("is_active", True):
            return _error(403, "User is deactivated")

        request.state.current_user = user
        request.state.jwt_payload = payload

        return await call_next(request)
