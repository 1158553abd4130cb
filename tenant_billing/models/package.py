from typing import Literal

import pydantic
from pydantic import BaseModel

PricingModel = Literal["per_user", "flat_rate"]
BillingInterval = Literal["month", "year"]
SubscriptionStatus = Literal["active", "canceled", "past_due", "trialing"]
SupportLevel = Literal["community", "email", "priority", "dedicated"]

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


class PackageFeatures(BaseModel):
    # None = unlimited
    max_projects: int | None = None
    max_users: int | None = None
    max_templates: int | None = None
    ai_features_enabled: bool | None = False
    export_features_enabled: bool | None = False
    ops_tool_enabled: bool | None = False
    analytics_enabled: bool | None = False
    api_access_enabled: bool | None = False
    custom_dashboards_enabled: bool | None = False
    support_level: SupportLevel = "community"

    @pydantic.field_validator("support_level", mode="before")
    @classmethod
    def default_support_level(cls, v):
        return v or "community"


class Package(BaseModel):
    id: str
    name: str
    pricing_model: PricingModel = "per_user"
    # Flat-rate packages usually leave the per-user prices null
    price_per_user_monthly: float | None = None
    price_per_user_yearly: float | None = None
    base_price_monthly: float | None = None
    base_price_yearly: float | None = None
    stripe_product_id: str | None = None
    stripe_price_id_monthly: str | None = None
    stripe_price_id_yearly: str | None = None
    features: PackageFeatures = PackageFeatures()
    is_active: bool = True

    @pydantic.field_validator("pricing_model", mode="before")
    @classmethod
    def default_pricing_model(cls, v):
        return v or "per_user"

    @pydantic.field_validator("features", mode="before")
    @classmethod
    def default_features(cls, v):
        return PackageFeatures() if v is None else v


class Subscription(BaseModel):
    id: str
    organization_id: str
    package_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_price_id: str | None = None
    status: SubscriptionStatus
    billing_interval: BillingInterval | None = None
    current_period_start: str | None = None
    current_period_end: str | None = None
    cancel_at_period_end: bool = False

    @pydantic.field_validator("cancel_at_period_end", mode="before")
    @classmethod
    def null_is_false(cls, v):
        return bool(v)


class Organization(BaseModel):
    id: str
    name: str = ""
    stripe_customer_id: str | None = None
    subscription_status: str | None = None
    module_overrides: dict[str, bool | None] | None = None


class PackageContext(BaseModel):
    organization: Organization
    subscription: Subscription
    package: Package


class UsageSnapshot(BaseModel):
    projects: int = 0
    users: int = 0
    templates: int = 0


class SubscriptionSummary(BaseModel):
    subscription: Subscription | None = None
    package: Package | None = None
