from fastapi import Request, HTTPException

from tenant_billing.config import settings
from tenant_billing.context import ServiceContext, build_service_context


def get_service_context(request: Request) -> ServiceContext:
    """Application-scoped clients, built on first use if lifespan did not run."""
    ctx = getattr(request.app.state, "service_context", None)
    if ctx is None:
        ctx = build_service_context(settings)
        request.app.state.service_context = ctx
    return ctx


def get_current_user(request: Request) -> dict:
    """Extract current user from request state (set by JWT middleware)."""
    user = getattr(request.state, "current_user", None)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_current_organization_id(request: Request) -> str:
    user = get_current_user(request)
    organization_id = user.get("organization_id")
    if not organization_id:
        raise HTTPException(status_code=400, detail="User is not assigned to an organization")
    return organization_id


def require_role(*allowed_roles: str):
    """Returns a dependency that checks user role."""
    def checker(request: Request) -> dict:
        user = get_current_user(request)
        if user.get("role") not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Requires one of roles: {', '.join(allowed_roles)}",
            )
        return user
    return checker


def require_super_admin(request: Request) -> dict:
    user = get_current_user(request)
    if not (user.get("role") == "admin" and user.get("is_super_admin") is True):
        raise HTTPException(status_code=403, detail="Super admin access required")
    return user


def require_internal_secret(request: Request) -> None:
    """Validate X-Internal-Secret header for internal API calls."""
    secret = request.headers.get("X-Internal-Secret")
    if not secret or secret != settings.internal_secret:
        raise HTTPException(status_code=401, detail="Invalid internal secret")
