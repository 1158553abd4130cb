import logging

import stripe
from fastapi import APIRouter, Header, HTTPException, Request

from tenant_billing.dependencies import get_service_context
from tenant_billing.services import subscriptions

router = APIRouter(prefix="/billing/v1/webhooks", tags=["Webhooks"])
logger = logging.getLogger("tenant-billing")

SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


@router.post("/stripe", include_in_schema=False)
async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
    """Resynchronise local subscription state from Stripe events."""
    ctx = get_service_context(request)
    if ctx.billing is None or not ctx.billing.webhook_secret:
        logger.error("Stripe webhook received but Stripe or the webhook secret is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    payload = await request.body()
    try:
        event = ctx.billing.construct_event(payload, stripe_signature)
    except ValueError as e:
        logger.error("Invalid webhook payload: %s", e)
        raise HTTPException(status_code=400, detail=f"Invalid payload: {e}")
    except stripe.SignatureVerificationError as e:
        logger.error("Invalid webhook signature: %s", e)
        raise HTTPException(status_code=400, detail=f"Invalid signature: {e}")

    event_type = event["type"]
    obj = event["data"]["object"]
    logger.info("Stripe event %s (%s)", event_type, event["id"])

    try:
        if event_type in SUBSCRIPTION_EVENTS:
            subscriptions.update_subscription_from_webhook(ctx, obj)
        elif event_type == "invoice.payment_failed":
            subscriptions.update_subscription_status_from_invoice(ctx, obj, "past_due")
        elif event_type == "invoice.payment_succeeded":
            subscriptions.update_subscription_status_from_invoice(ctx, obj, "active")
        else:
            logger.debug("Unhandled Stripe event type: %s", event_type)
    except Exception as e:
        # Acknowledge anyway; Stripe retries would hit the same error
        logger.exception("Error processing Stripe event %s: %s", event_type, e)

    return {"status": "success"}
