from fastapi import APIRouter, Depends, HTTPException, Request

from tenant_billing.dependencies import (
    get_current_organization_id,
    get_service_context,
    require_internal_secret,
    require_role,
)
from tenant_billing.models.billing import (
    CheckoutRequest,
    PortalRequest,
    QuantityUpdateResult,
    SessionUrlResponse,
)
from tenant_billing.models.package import SubscriptionSummary
from tenant_billing.services import organization_context, subscriptions

router = APIRouter(prefix="/billing/v1", tags=["Billing"])


@router.get("/subscription", response_model=SubscriptionSummary)
async def get_subscription(request: Request):
    """Current subscription and package of the caller's organization."""
    organization_id = get_current_organization_id(request)
    return organization_context.get_subscription_summary(get_service_context(request), organization_id)


@router.post("/checkout", response_model=SessionUrlResponse)
async def checkout(body: CheckoutRequest, request: Request):
    """Start a Stripe checkout for a package (owner/admin)."""
    require_role("owner", "admin")(request)
    organization_id = get_current_organization_id(request)

    url = subscriptions.create_checkout_session(
        get_service_context(request),
        organization_id,
        body.package_id,
        body.success_url,
        body.cancel_url,
        body.billing_interval,
    )
    if not url:
        raise HTTPException(status_code=502, detail="Could not create checkout session")
    return SessionUrlResponse(url=url)


@router.post("/portal", response_model=SessionUrlResponse)
async def portal(body: PortalRequest, request: Request):
    """Open the Stripe customer portal (owner/admin)."""
    require_role("owner", "admin")(request)
    organization_id = get_current_organization_id(request)

    url = subscriptions.create_portal_session(get_service_context(request), organization_id, body.return_url)
    if not url:
        raise HTTPException(status_code=502, detail="Could not create portal session")
    return SessionUrlResponse(url=url)


@router.post("/subscription/sync-quantity", response_model=QuantityUpdateResult)
async def sync_quantity(request: Request):
    """Push the current user count to Stripe as subscription quantity (owner/admin)."""
    require_role("owner", "admin")(request)
    organization_id = get_current_organization_id(request)
    return subscriptions.update_subscription_quantity_for_users(get_service_context(request), organization_id)


@router.post(
    "/internal/organizations/{organization_id}/sync-quantity",
    response_model=QuantityUpdateResult,
    dependencies=[Depends(require_internal_secret)],
)
async def internal_sync_quantity(organization_id: str, request: Request):
    """Called by other services after adding or removing users."""
    return subscriptions.update_subscription_quantity_for_users(get_service_context(request), organization_id)
