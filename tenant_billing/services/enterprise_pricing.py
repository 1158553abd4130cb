"""
Enterprise pricing: volume discounts and custom enterprise packages.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable

from tenant_billing.context import ServiceContext
from tenant_billing.models.enterprise import (
    CustomEnterprisePackage,
    EffectivePricing,
    EnterprisePackageUpdate,
    EnterpriseQuote,
    ValidationResult,
    VolumeDiscountRule,
)
from tenant_billing.models.package import BillingInterval

logger = logging.getLogger("tenant-billing")


def calculate_enterprise_price(
    user_count: int,
    base_price_per_user: float,
    volume_discount_rules: Iterable[VolumeDiscountRule | dict],
) -> EnterpriseQuote:
    """
    Price ``user_count`` seats at ``base_price_per_user`` with the highest
    volume tier the user count meets. Rules are trusted to be validated.
    """
    rules = [VolumeDiscountRule.model_validate(r) for r in volume_discount_rules]
    rules.sort(key=lambda r: r.min_users, reverse=True)
    applicable = next((r for r in rules if user_count >= r.min_users), None)

    base_price = base_price_per_user * user_count
    discount_percent = applicable.discount_percent if applicable else 0
    discount_amount = base_price * (discount_percent / 100)
    discounted_price = base_price - discount_amount
    effective_price_per_user = discounted_price / user_count if user_count > 0 else 0

    return EnterpriseQuote(
        base_price=base_price,
        discounted_price=discounted_price,
        discount_percent=discount_percent,
        discount_amount=discount_amount,
        price_per_user=base_price_per_user,
        effective_price_per_user=effective_price_per_user,
        applied_rule=(
            f"{applicable.min_users}+ users: {applicable.discount_percent:g}% off" if applicable else None
        ),
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_volume_discount_rules(rules: Any) -> ValidationResult:
    """Validate raw volume discount rules. The first violation is reported."""
    if not isinstance(rules, list):
        return ValidationResult(is_valid=False, error="Volume discount rules must be a list")

    seen: set[float] = set()
    for index, rule in enumerate(rules, start=1):
        if isinstance(rule, VolumeDiscountRule):
            rule = rule.model_dump()
        if not isinstance(rule, dict):
            return ValidationResult(
                is_valid=False,
                error=f"Rule {index}: must be an object with min_users and discount_percent",
            )

        min_users = rule.get("min_users")
        if not _is_number(min_users) or min_users < 1:
            return ValidationResult(is_valid=False, error=f"Rule {index}: min_users must be a positive number")
        if min_users != int(min_users):
            return ValidationResult(is_valid=False, error=f"Rule {index}: min_users must be a whole number")

        discount_percent = rule.get("discount_percent")
        if not _is_number(discount_percent) or not 0 <= discount_percent <= 100:
            return ValidationResult(
                is_valid=False,
                error=f"Rule {index}: discount_percent must be between 0 and 100",
            )

        if min_users in seen:
            return ValidationResult(
                is_valid=False,
                error=f"Rule {index}: duplicate user threshold {int(min_users)} is not allowed",
            )
        seen.add(min_users)

    return ValidationResult(is_valid=True)


def get_custom_enterprise_package(ctx: ServiceContext, organization_id: str) -> CustomEnterprisePackage | None:
    """Active enterprise override for an organization, or None (the common case)."""
    try:
        resp = (
            ctx.db.table("custom_enterprise_packages")
            .select("*")
            .eq("organization_id", organization_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        return CustomEnterprisePackage.model_validate(resp.data[0]) if resp.data else None
    except Exception:
        logger.exception("Error fetching enterprise package for organization %s", organization_id)
        return None


def _base_package_price_per_user(ctx: ServiceContext, package_id: str, interval: BillingInterval) -> float:
    resp = (
        ctx.db.table("packages")
        .select("price_per_user_monthly,price_per_user_yearly")
        .eq("id", package_id)
        .limit(1)
        .execute()
    )
    if not resp.data:
        return 0.0
    column = "price_per_user_monthly" if interval == "month" else "price_per_user_yearly"
    return float(resp.data[0].get(column) or 0)


def get_effective_pricing(
    ctx: ServiceContext,
    organization_id: str,
    user_count: int,
    billing_interval: BillingInterval,
) -> EffectivePricing:
    """
    Effective per-user price for an organization with an enterprise package.

    Without one, returns non-enterprise zero pricing and the caller falls back
    to standard package pricing. Errors degrade to the same result.
    """
    try:
        custom_package = get_custom_enterprise_package(ctx, organization_id)
        if custom_package is None:
            return EffectivePricing()

        if billing_interval == "month":
            custom_price = custom_package.custom_price_per_user_monthly
        else:
            custom_price = custom_package.custom_price_per_user_yearly

        if custom_price is not None:
            base_price_per_user = custom_price
        elif custom_package.package_id:
            base_price_per_user = _base_package_price_per_user(ctx, custom_package.package_id, billing_interval)
        else:
            base_price_per_user = 0.0

        quote = calculate_enterprise_price(user_count, base_price_per_user, custom_package.volume_discount_rules)

        logger.debug(
            "Enterprise pricing for %s: users=%s interval=%s base=%s effective=%s rule=%s",
            organization_id,
            user_count,
            billing_interval,
            base_price_per_user,
            quote.effective_price_per_user,
            quote.applied_rule,
        )

        return EffectivePricing(
            price_per_user=quote.effective_price_per_user,
            quote=quote,
            is_enterprise=True,
            custom_package=custom_package,
        )
    except Exception:
        logger.exception("Error getting effective pricing for organization %s", organization_id)
        return EffectivePricing()


def get_enterprise_package(ctx: ServiceContext, package_id: str) -> CustomEnterprisePackage | None:
    resp = ctx.db.table("custom_enterprise_packages").select("*").eq("id", package_id).limit(1).execute()
    return CustomEnterprisePackage.model_validate(resp.data[0]) if resp.data else None


def update_enterprise_package(
    ctx: ServiceContext,
    package_id: str,
    body: EnterprisePackageUpdate,
) -> CustomEnterprisePackage | None:
    """
    Apply a partial update to an enterprise package. Returns None if it does
    not exist; raises ValueError for an unknown base package or invalid rules.
    """
    existing = get_enterprise_package(ctx, package_id)
    if existing is None:
        return None

    update_data = body.model_dump(exclude_unset=True)

    if update_data.get("package_id") is not None:
        pkg_resp = ctx.db.table("packages").select("id").eq("id", update_data["package_id"]).limit(1).execute()
        if not pkg_resp.data:
            raise ValueError("Package not found")

    if "volume_discount_rules" in update_data:
        rules = update_data["volume_discount_rules"]
        if rules is None:
            rules = []
        validation = validate_volume_discount_rules(rules)
        if not validation.is_valid:
            raise ValueError(validation.error or "Invalid volume discount rules")
        update_data["volume_discount_rules"] = rules

    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()

    resp = ctx.db.table("custom_enterprise_packages").update(update_data).eq("id", package_id).execute()
    if not resp.data:
        raise ValueError("Failed to update enterprise package")

    logger.info("Updated enterprise package %s for organization %s", package_id, existing.organization_id)
    return CustomEnterprisePackage.model_validate(resp.data[0])
