from pydantic import BaseModel

from tenant_billing.models.package import BillingInterval


class QuantityUpdateResult(BaseModel):
    success: bool
    error: str | None = None
    new_quantity: int | None = None


class CheckoutRequest(BaseModel):
    package_id: str
    success_url: str
    cancel_url: str
    billing_interval: BillingInterval = "month"


class PortalRequest(BaseModel):
    return_url: str


class SessionUrlResponse(BaseModel):
    url: str
