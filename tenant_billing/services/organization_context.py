import logging
from typing import Literal

from tenant_billing.context import ServiceContext
from tenant_billing.models.package import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    Organization,
    Package,
    PackageContext,
    Subscription,
    SubscriptionSummary,
    UsageSnapshot,
)

logger = logging.getLogger("tenant-billing")

ResourceKind = Literal["projects", "users", "templates"]

RESOURCE_TABLES: dict[str, str] = {
    "projects": "projects",
    "users": "users",
    "templates": "project_templates",
}


def get_organization(ctx: ServiceContext, organization_id: str) -> Organization | None:
    resp = ctx.db.table("organizations").select("*").eq("id", organization_id).limit(1).execute()
    return Organization.model_validate(resp.data[0]) if resp.data else None


def get_package(ctx: ServiceContext, package_id: str) -> Package | None:
    resp = ctx.db.table("packages").select("*").eq("id", package_id).limit(1).execute()
    return Package.model_validate(resp.data[0]) if resp.data else None


def get_active_subscription(ctx: ServiceContext, organization_id: str) -> Subscription | None:
    """Most recent active or trialing subscription for an organization."""
    resp = (
        ctx.db.table("subscriptions")
        .select("*")
        .eq("organization_id", organization_id)
        .in_("status", list(ACTIVE_SUBSCRIPTION_STATUSES))
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    return Subscription.model_validate(resp.data[0]) if resp.data else None


def get_package_context(ctx: ServiceContext, organization_id: str) -> PackageContext | None:
    """
    Resolve the organization's entitlements: organization, active subscription
    and its package. Returns None when any of them is missing, which callers
    treat as "no entitlements".

    Storage errors propagate; the limit evaluator and feature gates turn them
    into a denial.
    """
    organization = get_organization(ctx, organization_id)
    if organization is None:
        logger.warning("Organization %s not found", organization_id)
        return None
    return package_context_for(ctx, organization)


def package_context_for(ctx: ServiceContext, organization: Organization) -> PackageContext | None:
    """Same as get_package_context for an organization row already loaded."""
    subscription = get_active_subscription(ctx, organization.id)
    if subscription is None:
        logger.info("No active subscription for organization %s", organization.id)
        return None

    if not subscription.package_id:
        logger.warning("Subscription %s has no package_id", subscription.id)
        return None

    package = get_package(ctx, subscription.package_id)
    if package is None:
        logger.warning(
            "Package %s for subscription %s not found", subscription.package_id, subscription.id
        )
        return None

    return PackageContext(organization=organization, subscription=subscription, package=package)


def get_resource_count(ctx: ServiceContext, organization_id: str, kind: ResourceKind) -> int:
    """Live row count for one resource kind. Never cached."""
    table = RESOURCE_TABLES[kind]
    resp = (
        ctx.db.table(table)
        .select("id", count="exact", head=True)
        .eq("organization_id", organization_id)
        .execute()
    )
    return max(resp.count or 0, 0)


def get_organization_usage(ctx: ServiceContext, organization_id: str) -> UsageSnapshot:
    return UsageSnapshot(
        projects=get_resource_count(ctx, organization_id, "projects"),
        users=get_resource_count(ctx, organization_id, "users"),
        templates=get_resource_count(ctx, organization_id, "templates"),
    )


def feature_enabled(organization: Organization | None, package: Package | None, feature: str) -> bool:
    """
    Organization module_overrides win over package features; a null package
    flag counts as enabled. No package means no features.
    """
    overrides = (organization.module_overrides if organization else None) or {}
    if feature in overrides:
        return overrides[feature] is True
    if package is None:
        return False

    features = package.features.model_dump()
    if feature not in features:
        return False
    value = features[feature]
    return value is True or value is None


def has_feature_access(ctx: ServiceContext, organization_id: str, feature: str) -> bool:
    """Check a boolean feature flag for an organization. Fails closed."""
    try:
        organization = get_organization(ctx, organization_id)
        if organization is None:
            return False
        if feature in (organization.module_overrides or {}):
            return feature_enabled(organization, None, feature)

        context = package_context_for(ctx, organization)
        return feature_enabled(organization, context.package if context else None, feature)
    except Exception:
        logger.exception("Error checking feature %s for organization %s", feature, organization_id)
        return False


def get_subscription_summary(ctx: ServiceContext, organization_id: str) -> SubscriptionSummary:
    """Current subscription with its package; falls back to the latest one in any status."""
    subscription = get_active_subscription(ctx, organization_id)
    if subscription is None:
        resp = (
            ctx.db.table("subscriptions")
            .select("*")
            .eq("organization_id", organization_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        if not resp.data:
            return SubscriptionSummary()
        subscription = Subscription.model_validate(resp.data[0])

    package = get_package(ctx, subscription.package_id) if subscription.package_id else None
    return SubscriptionSummary(subscription=subscription, package=package)
