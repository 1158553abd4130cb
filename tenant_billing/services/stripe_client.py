import logging
from typing import Any

import stripe

logger = logging.getLogger("tenant-billing")


def stripe_field(obj: Any, *path: str, default: Any = None) -> Any:
    """
    Read a nested field from a Stripe object or a plain dict.

    StripeObject is not a dict in current SDK releases, so only item access
    is used. Missing or null values along the path give ``default``.
    """
    for key in path:
        if obj is None:
            return default
        try:
            obj = obj[key]
        except (KeyError, TypeError):
            return default
    return default if obj is None else obj


class StripeBilling:
    """Stripe API calls bound to one set of credentials.

    Every call passes ``api_key`` explicitly, so several instances with
    different keys can live in one process without touching ``stripe.api_key``.
    """

    def __init__(self, secret_key: str, webhook_secret: str = "", currency: str = "usd"):
        if not secret_key:
            raise ValueError("Stripe secret key is required")
        self._api_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    # Subscriptions

    def retrieve_subscription(self, subscription_id: str) -> Any:
        return stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)

    def update_subscription_item_quantity(
        self,
        subscription_id: str,
        item_id: str,
        quantity: int,
        proration_behavior: str = "always_invoice",
    ) -> Any:
        return stripe.Subscription.modify(
            subscription_id,
            api_key=self._api_key,
            items=[{"id": item_id, "quantity": quantity}],
            proration_behavior=proration_behavior,
        )

    # Customers and prices

    def create_customer(self, email: str, name: str, metadata: dict[str, str]) -> Any:
        return stripe.Customer.create(email=email, name=name, metadata=metadata, api_key=self._api_key)

    def retrieve_price(self, price_id: str) -> Any:
        return stripe.Price.retrieve(price_id, api_key=self._api_key)

    def list_active_prices(self, product_id: str) -> list[Any]:
        prices = stripe.Price.list(product=product_id, active=True, api_key=self._api_key)
        return list(stripe_field(prices, "data", default=[]))

    def create_licensed_price(self, product_id: str, unit_amount_cents: int, interval: str) -> Any:
        return stripe.Price.create(
            product=product_id,
            unit_amount=unit_amount_cents,
            currency=self.currency,
            recurring={"interval": interval, "usage_type": "licensed"},
            api_key=self._api_key,
        )

    # Hosted pages

    def create_checkout_session(self, **params: Any) -> Any:
        return stripe.checkout.Session.create(api_key=self._api_key, **params)

    def create_portal_session(self, customer_id: str, return_url: str) -> Any:
        return stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
            api_key=self._api_key,
        )

    # Webhooks

    def construct_event(self, payload: bytes, signature: str) -> Any:
        """Verify a webhook signature. Raises ValueError or SignatureVerificationError."""
        if not self.webhook_secret:
            raise RuntimeError("Stripe webhook secret is not configured")
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)


def create_stripe_billing(secret_key: str, webhook_secret: str = "", currency: str = "usd") -> StripeBilling | None:
    """Return a billing client, or None when Stripe is not configured."""
    if not secret_key:
        logger.warning("Stripe secret key not set, billing provider disabled")
        return None
    masked = f"{secret_key[:8]}..." if len(secret_key) > 8 else secret_key
    logger.info("Stripe billing enabled with key %s", masked)
    return StripeBilling(secret_key, webhook_secret=webhook_secret, currency=currency)
