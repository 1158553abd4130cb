from fastapi import APIRouter, HTTPException, Request

from tenant_billing.dependencies import get_current_organization_id, get_service_context
from tenant_billing.models.limits import AllLimits, FeatureAccessResponse, LimitCheckResult
from tenant_billing.services import package_limits

router = APIRouter(prefix="/billing/v1", tags=["Limits"])


@router.get("/limits", response_model=AllLimits)
async def all_limits(request: Request):
    """Limits, feature flags and support level for the current organization."""
    organization_id = get_current_organization_id(request)
    return package_limits.get_all_limits(get_service_context(request), organization_id)


@router.get("/limits/{resource}", response_model=LimitCheckResult)
async def check_limit(resource: str, request: Request, allow_paid_users: bool = True):
    """Check whether one more project, user or template may be created."""
    organization_id = get_current_organization_id(request)
    ctx = get_service_context(request)

    if resource == "projects":
        return package_limits.can_create_project(ctx, organization_id)
    if resource == "users":
        return package_limits.can_add_user(ctx, organization_id, allow_paid_users=allow_paid_users)
    if resource == "templates":
        return package_limits.can_create_template(ctx, organization_id)
    raise HTTPException(status_code=404, detail=f"Unknown resource: {resource}")


@router.get("/features/{feature}", response_model=FeatureAccessResponse)
async def check_feature(feature: str, request: Request):
    organization_id = get_current_organization_id(request)
    gate = package_limits.FEATURE_GATES.get(feature)
    if gate is None:
        raise HTTPException(status_code=404, detail=f"Unknown feature: {feature}")

    enabled = gate(get_service_context(request), organization_id)
    return FeatureAccessResponse(feature=feature, enabled=enabled)
