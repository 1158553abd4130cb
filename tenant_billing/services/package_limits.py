"""
Package limits enforcement.

Checks whether an organization may create more resources under its package
and exposes the package feature flags. Every check fails closed: a storage
or lookup error denies.
"""
import logging

from tenant_billing.context import ServiceContext
from tenant_billing.models.limits import AllLimits, FeatureFlags, LimitCheckResult
from tenant_billing.models.package import PackageContext, SupportLevel
from tenant_billing.services.organization_context import (
    ResourceKind,
    feature_enabled,
    get_organization,
    get_package_context,
    get_resource_count,
    has_feature_access,
    package_context_for,
)

logger = logging.getLogger("tenant-billing")

NO_SUBSCRIPTION_REASON = "No active subscription found"

# resource kind -> (feature key, singular label)
_LIMITS: dict[str, tuple[str, str]] = {
    "projects": ("max_projects", "project"),
    "users": ("max_users", "user"),
    "templates": ("max_templates", "template"),
}


def _error_result(kind: ResourceKind) -> LimitCheckResult:
    return LimitCheckResult(allowed=False, reason=f"Error checking {_LIMITS[kind][1]} limit")


def _evaluate_limit(
    ctx: ServiceContext,
    organization_id: str,
    context: PackageContext | None,
    kind: ResourceKind,
    soft_limit: bool = False,
) -> LimitCheckResult:
    feature_key, label = _LIMITS[kind]
    if context is None:
        return LimitCheckResult(allowed=False, reason=NO_SUBSCRIPTION_REASON)

    limit = getattr(context.package.features, feature_key)
    if limit is None:
        return LimitCheckResult(allowed=True)

    try:
        current = get_resource_count(ctx, organization_id, kind)
    except Exception:
        logger.exception("Error counting %ss for organization %s", label, organization_id)
        return _error_result(kind)

    if current < limit:
        return LimitCheckResult(allowed=True, current=current, limit=limit)

    reached = f"{label.capitalize()} limit reached. Maximum {limit} {label}s allowed."
    if soft_limit:
        return LimitCheckResult(
            allowed=True,
            reason=f"{reached} Adding more users will increase your monthly subscription cost.",
            current=current,
            limit=limit,
        )
    return LimitCheckResult(allowed=False, reason=reached, current=current, limit=limit)


def _check_limit(
    ctx: ServiceContext,
    organization_id: str,
    kind: ResourceKind,
    soft_limit: bool = False,
) -> LimitCheckResult:
    try:
        context = get_package_context(ctx, organization_id)
    except Exception:
        logger.exception("Error checking %s limit for organization %s", _LIMITS[kind][1], organization_id)
        return _error_result(kind)
    return _evaluate_limit(ctx, organization_id, context, kind, soft_limit=soft_limit)


def can_create_project(ctx: ServiceContext, organization_id: str) -> LimitCheckResult:
    return _check_limit(ctx, organization_id, "projects")


def can_add_user(ctx: ServiceContext, organization_id: str, allow_paid_users: bool = True) -> LimitCheckResult:
    """
    Users are soft-capped: with ``allow_paid_users`` (admin-driven creation)
    the limit only attaches a cost warning; without it the limit is hard.
    """
    return _check_limit(ctx, organization_id, "users", soft_limit=allow_paid_users)


def can_create_template(ctx: ServiceContext, organization_id: str) -> LimitCheckResult:
    return _check_limit(ctx, organization_id, "templates")


def has_ai_features(ctx: ServiceContext, organization_id: str) -> bool:
    return has_feature_access(ctx, organization_id, "ai_features_enabled")


def has_export_features(ctx: ServiceContext, organization_id: str) -> bool:
    return has_feature_access(ctx, organization_id, "export_features_enabled")


def has_ops_tool(ctx: ServiceContext, organization_id: str) -> bool:
    return has_feature_access(ctx, organization_id, "ops_tool_enabled")


def has_analytics(ctx: ServiceContext, organization_id: str) -> bool:
    return has_feature_access(ctx, organization_id, "analytics_enabled")


def has_api_access(ctx: ServiceContext, organization_id: str) -> bool:
    return has_feature_access(ctx, organization_id, "api_access_enabled")


def has_custom_dashboards(ctx: ServiceContext, organization_id: str) -> bool:
    return has_feature_access(ctx, organization_id, "custom_dashboards_enabled")


FEATURE_GATES = {
    "ai": has_ai_features,
    "export": has_export_features,
    "ops_tool": has_ops_tool,
    "analytics": has_analytics,
    "api_access": has_api_access,
    "custom_dashboards": has_custom_dashboards,
}

# gate name -> package feature flag
FEATURE_KEYS = {
    "ai": "ai_features_enabled",
    "export": "export_features_enabled",
    "ops_tool": "ops_tool_enabled",
    "analytics": "analytics_enabled",
    "api_access": "api_access_enabled",
    "custom_dashboards": "custom_dashboards_enabled",
}


def get_support_level(ctx: ServiceContext, organization_id: str) -> SupportLevel | None:
    try:
        context = get_package_context(ctx, organization_id)
        if context is None:
            return None
        return context.package.features.support_level
    except Exception:
        logger.exception("Error getting support level for organization %s", organization_id)
        return None


def get_all_limits(ctx: ServiceContext, organization_id: str) -> AllLimits:
    """
    All limit checks, feature gates and the support level in one result.
    The package context is resolved once and shared by every check.
    """
    try:
        organization = get_organization(ctx, organization_id)
        context = package_context_for(ctx, organization) if organization else None
    except Exception:
        logger.exception("Error resolving package context for organization %s", organization_id)
        return AllLimits(
            projects=_error_result("projects"),
            users=_error_result("users"),
            templates=_error_result("templates"),
            features=FeatureFlags(),
        )

    package = context.package if context else None
    return AllLimits(
        projects=_evaluate_limit(ctx, organization_id, context, "projects"),
        users=_evaluate_limit(ctx, organization_id, context, "users", soft_limit=True),
        templates=_evaluate_limit(ctx, organization_id, context, "templates"),
        features=FeatureFlags(
            **{name: feature_enabled(organization, package, key) for name, key in FEATURE_KEYS.items()}
        ),
        support_level=package.features.support_level if package else None,
    )
