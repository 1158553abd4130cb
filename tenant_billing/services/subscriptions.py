"""
Stripe subscription management: per-user quantity reconciliation, customers,
checkout/portal sessions and webhook resynchronisation.
"""
import logging
from datetime import datetime, timezone
from typing import Any

import stripe

from tenant_billing.context import ServiceContext
from tenant_billing.models.billing import QuantityUpdateResult
from tenant_billing.models.package import ACTIVE_SUBSCRIPTION_STATUSES, BillingInterval, Package
from tenant_billing.services.organization_context import (
    get_organization,
    get_package,
    get_package_context,
    get_resource_count,
)
from tenant_billing.services.stripe_client import stripe_field

logger = logging.getLogger("tenant-billing")

PRORATION_BEHAVIOR = "always_invoice"

# Stripe subscription status -> local subscriptions.status
_LOCAL_STATUS = {
    "active": "active",
    "trialing": "trialing",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "paused": "past_due",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _timestamp_to_iso(value: int | None) -> str | None:
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat() if value else None


def update_subscription_quantity_for_users(ctx: ServiceContext, organization_id: str) -> QuantityUpdateResult:
    """
    Set the Stripe subscription quantity of a per-user package to the
    organization's current user count, invoicing the proration immediately.

    Runs as a side effect of user management, so it never raises: every
    failure comes back as ``success=False`` with an error message.
    """
    if not ctx.billing_configured:
        logger.warning("Stripe is not configured, skipping quantity update for %s", organization_id)
        return QuantityUpdateResult(success=False, error="Stripe is not configured")

    try:
        context = get_package_context(ctx, organization_id)
    except Exception as e:
        logger.exception("Error resolving package context for %s", organization_id)
        return QuantityUpdateResult(success=False, error=str(e))

    if context is None:
        return QuantityUpdateResult(success=False, error="No active subscription or package found")

    if context.package.pricing_model != "per_user":
        logger.debug("Package %s is %s, no quantity to update", context.package.id, context.package.pricing_model)
        return QuantityUpdateResult(success=True)

    subscription = context.subscription
    if subscription.status not in ACTIVE_SUBSCRIPTION_STATUSES or not subscription.stripe_subscription_id:
        return QuantityUpdateResult(success=False, error="No active Stripe subscription found")

    try:
        user_count = get_resource_count(ctx, organization_id, "users")
    except Exception as e:
        logger.exception("Error counting users for %s", organization_id)
        return QuantityUpdateResult(success=False, error=str(e))

    # Stripe rejects quantity < 1
    if user_count < 1:
        return QuantityUpdateResult(success=False, error="User count must be at least 1")

    stripe_subscription_id = subscription.stripe_subscription_id
    try:
        stripe_subscription = ctx.billing.retrieve_subscription(stripe_subscription_id)
        items = stripe_field(stripe_subscription, "items", "data", default=[])
        if not items:
            logger.error("Stripe subscription %s has no items", stripe_subscription_id)
            return QuantityUpdateResult(success=False, error="Subscription has no items")

        ctx.billing.update_subscription_item_quantity(
            stripe_subscription_id,
            items[0]["id"],
            user_count,
            proration_behavior=PRORATION_BEHAVIOR,
        )
    except stripe.StripeError as e:
        logger.error(
            "Stripe error updating quantity for %s (subscription %s): %s",
            organization_id,
            stripe_subscription_id,
            e,
        )
        return QuantityUpdateResult(success=False, error=str(e))
    except Exception as e:
        logger.exception("Error updating subscription quantity for %s", organization_id)
        return QuantityUpdateResult(success=False, error=str(e))

    logger.info(
        "Updated subscription %s quantity to %s for organization %s",
        stripe_subscription_id,
        user_count,
        organization_id,
    )
    return QuantityUpdateResult(success=True, new_quantity=user_count)


def create_stripe_customer(ctx: ServiceContext, organization_id: str, email: str, name: str) -> str | None:
    """Create a Stripe customer and store its id on the organization."""
    if not ctx.billing_configured:
        logger.warning("Stripe is not configured, skipping customer creation")
        return None

    try:
        customer = ctx.billing.create_customer(email, name, {"organization_id": organization_id})
        ctx.db.table("organizations").update({"stripe_customer_id": customer["id"]}).eq(
            "id", organization_id
        ).execute()
        logger.debug("Created Stripe customer %s for organization %s", customer["id"], organization_id)
        return customer["id"]
    except Exception:
        logger.exception("Error creating Stripe customer for %s", organization_id)
        return None


def _price_column(interval: BillingInterval) -> str:
    return "stripe_price_id_monthly" if interval == "month" else "stripe_price_id_yearly"


def _unit_amount_cents(package: Package, interval: BillingInterval) -> int:
    if package.pricing_model == "per_user":
        amount = package.price_per_user_monthly if interval == "month" else package.price_per_user_yearly
    else:
        amount = package.base_price_monthly if interval == "month" else package.base_price_yearly
    return round((amount or 0) * 100)


def _resolve_price_from_product(ctx: ServiceContext, package: Package, interval: BillingInterval) -> str | None:
    """
    Find an active product price for the interval, or create a licensed one.
    Metered prices cannot carry a quantity, so per-user packages replace them.
    """
    prices = ctx.billing.list_active_prices(package.stripe_product_id)
    matching = next(
        (p for p in prices if stripe_field(p, "recurring", "interval") == interval),
        None,
    )

    is_metered = matching is not None and stripe_field(matching, "recurring", "usage_type") == "metered"
    if matching is not None and not (is_metered and package.pricing_model == "per_user"):
        price_id = matching["id"]
    else:
        new_price = ctx.billing.create_licensed_price(
            package.stripe_product_id, _unit_amount_cents(package, interval), interval
        )
        price_id = new_price["id"]
        logger.info("Created licensed price %s for package %s (%s)", price_id, package.id, interval)

    ctx.db.table("packages").update({_price_column(interval): price_id}).eq("id", package.id).execute()
    return price_id


def _organization_owner(ctx: ServiceContext, organization_id: str) -> dict | None:
    resp = (
        ctx.db.table("users")
        .select("email,name")
        .eq("organization_id", organization_id)
        .order("created_at")
        .limit(1)
        .execute()
    )
    return resp.data[0] if resp.data else None


def create_checkout_session(
    ctx: ServiceContext,
    organization_id: str,
    package_id: str,
    success_url: str,
    cancel_url: str,
    billing_interval: BillingInterval = "month",
) -> str | None:
    """Create a subscription checkout session and return its URL, or None."""
    if not ctx.billing_configured:
        logger.warning("Stripe is not configured, skipping checkout session creation")
        return None

    try:
        organization = get_organization(ctx, organization_id)
        if organization is None:
            logger.error("Organization %s not found", organization_id)
            return None

        package = get_package(ctx, package_id)
        if package is None:
            logger.error("Package %s not found", package_id)
            return None

        price_id = package.stripe_price_id_monthly if billing_interval == "month" else package.stripe_price_id_yearly
        if not price_id and package.stripe_product_id:
            price_id = _resolve_price_from_product(ctx, package, billing_interval)
        if not price_id:
            logger.error("Package %s has no Stripe price for interval %s", package_id, billing_interval)
            return None

        customer_id = organization.stripe_customer_id
        if not customer_id:
            owner = _organization_owner(ctx, organization_id)
            if owner:
                customer_id = create_stripe_customer(
                    ctx, organization_id, owner["email"], owner.get("name") or "Organization"
                )
        if not customer_id:
            logger.error("Could not create or find Stripe customer for %s", organization_id)
            return None

        price = ctx.billing.retrieve_price(price_id)
        is_metered = stripe_field(price, "recurring", "usage_type") == "metered"

        line_item: dict[str, Any] = {"price": price_id}
        if not is_metered and package.pricing_model == "per_user":
            line_item["quantity"] = max(get_resource_count(ctx, organization_id, "users"), 1)

        metadata = {"organization_id": organization_id, "package_id": package_id}
        session = ctx.billing.create_checkout_session(
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[line_item],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": {**metadata, "billing_interval": billing_interval}},
        )
        logger.debug("Created checkout session %s for organization %s", session["id"], organization_id)
        return stripe_field(session, "url")
    except Exception:
        logger.exception("Error creating checkout session for %s", organization_id)
        return None


def create_portal_session(ctx: ServiceContext, organization_id: str, return_url: str) -> str | None:
    """Create a customer portal session and return its URL, or None."""
    if not ctx.billing_configured:
        logger.warning("Stripe is not configured, skipping portal session creation")
        return None

    try:
        organization = get_organization(ctx, organization_id)
        if organization is None or not organization.stripe_customer_id:
            logger.error("Organization %s has no Stripe customer", organization_id)
            return None

        session = ctx.billing.create_portal_session(organization.stripe_customer_id, return_url)
        return stripe_field(session, "url")
    except Exception:
        logger.exception("Error creating portal session for %s", organization_id)
        return None


def _organization_status(stripe_status: str) -> str:
    if stripe_status in ACTIVE_SUBSCRIPTION_STATUSES:
        return "active"
    if stripe_status == "canceled":
        return "canceled"
    return "past_due"


def update_subscription_from_webhook(ctx: ServiceContext, stripe_subscription: Any) -> bool:
    """
    Copy a Stripe subscription's state onto the local subscription row and
    the owning organization. Returns False when the subscription is unknown.
    """
    stripe_subscription_id = stripe_subscription["id"]
    resp = (
        ctx.db.table("subscriptions")
        .select("id,organization_id,package_id")
        .eq("stripe_subscription_id", stripe_subscription_id)
        .limit(1)
        .execute()
    )
    if not resp.data:
        logger.warning("Subscription %s not found in database", stripe_subscription_id)
        return False

    subscription = resp.data[0]
    stripe_status = stripe_field(stripe_subscription, "status", default="past_due")
    metadata = stripe_field(stripe_subscription, "metadata", default={})
    items = stripe_field(stripe_subscription, "items", "data", default=[])
    first_item = items[0] if items else None

    # Newer API versions carry the period on the subscription item
    period_start = stripe_field(stripe_subscription, "current_period_start") or stripe_field(
        first_item, "current_period_start"
    )
    period_end = stripe_field(stripe_subscription, "current_period_end") or stripe_field(
        first_item, "current_period_end"
    )

    update_data: dict[str, Any] = {
        "status": _LOCAL_STATUS.get(stripe_status, "past_due"),
        "current_period_start": _timestamp_to_iso(period_start),
        "current_period_end": _timestamp_to_iso(period_end),
        "cancel_at_period_end": bool(stripe_field(stripe_subscription, "cancel_at_period_end")),
        "updated_at": _now(),
    }

    package_id = stripe_field(metadata, "package_id")
    if package_id and package_id != subscription.get("package_id"):
        if get_package(ctx, package_id) is not None:
            update_data["package_id"] = package_id
            logger.info("Backfilling package %s on subscription %s", package_id, subscription["id"])

    price_id = stripe_field(first_item, "price", "id")
    if price_id:
        update_data["stripe_price_id"] = price_id

    interval = stripe_field(first_item, "price", "recurring", "interval") or stripe_field(
        metadata, "billing_interval"
    )
    if interval in ("month", "year"):
        update_data["billing_interval"] = interval

    ctx.db.table("subscriptions").update(update_data).eq("id", subscription["id"]).execute()
    ctx.db.table("organizations").update(
        {"subscription_status": _organization_status(stripe_status), "updated_at": _now()}
    ).eq("id", subscription["organization_id"]).execute()

    logger.debug("Synced subscription %s from webhook, status=%s", subscription["id"], stripe_status)
    return True


def _invoice_subscription_id(invoice: Any) -> str | None:
    subscription_id = stripe_field(invoice, "subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else stripe_field(subscription_id, "id")
    # Newer API versions: invoice.parent.subscription_details.subscription
    return stripe_field(invoice, "parent", "subscription_details", "subscription")


def update_subscription_status_from_invoice(ctx: ServiceContext, invoice: Any, status: str) -> bool:
    """Set the local subscription (and organization) status after an invoice payment event."""
    invoice_id = stripe_field(invoice, "id")
    stripe_subscription_id = _invoice_subscription_id(invoice)
    if not stripe_subscription_id:
        logger.debug("Invoice %s is not tied to a subscription", invoice_id)
        return False

    resp = (
        ctx.db.table("subscriptions")
        .update({"status": status, "updated_at": _now()})
        .eq("stripe_subscription_id", stripe_subscription_id)
        .execute()
    )
    if not resp.data:
        logger.warning("Subscription %s not found for invoice %s", stripe_subscription_id, invoice_id)
        return False

    ctx.db.table("organizations").update(
        {"subscription_status": _organization_status(status), "updated_at": _now()}
    ).eq("id", resp.data[0]["organization_id"]).execute()

    logger.info("Subscription %s marked %s from invoice %s", stripe_subscription_id, status, invoice_id)
    return True
